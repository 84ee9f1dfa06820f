# consentlink/utils/token_utils.py
"""
Opaque bearer tokens for connection invitations and public share links.

Tokens are random handles, not self-describing: nothing is encoded in them,
so nothing needs independent integrity protection. The record id is never
derivable from the token and vice versa.
"""

import hmac
import secrets
import string

# 32 random bytes -> 43 URL-safe characters, 256 bits of entropy
TOKEN_BYTES = 32
TOKEN_LENGTH = 43
_TOKEN_ALPHABET = frozenset(string.ascii_letters + string.digits + "-_")


def generate_token() -> str:
    """Generate a secure random, fixed-length, URL-safe token."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def constant_time_equals(a: str | None, b: str | None) -> bool:
    """
    Compare two tokens without leaking the position of the first mismatch.
    None never matches anything, including None.
    """
    if a is None or b is None:
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def looks_like_token(value: str | None) -> bool:
    """Cheap shape check so obviously malformed input never reaches the store."""
    if not value or len(value) != TOKEN_LENGTH:
        return False
    return all(c in _TOKEN_ALPHABET for c in value)

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from consentlink.core.caller import Caller
from consentlink.core.config import get_settings

settings = get_settings()

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60


def create_access_token(
    subject: str,
    tenant_id: str | None,
    roles: list[str] | None = None,
    profile_id: str | None = None,
    email: str | None = None,
    email_verified: bool = False,
    expires_delta_minutes: int | None = None,
) -> str:
    """
    Create a JWT access token describing a caller.

    Tokens are normally minted by the identity service; this is used by
    local tooling and tests.
    """
    if expires_delta_minutes is None:
        expires_delta_minutes = ACCESS_TOKEN_EXPIRE_MINUTES

    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_delta_minutes)
    to_encode: dict[str, Any] = {
        "sub": str(subject),
        "tenant_id": tenant_id,
        "profile_id": profile_id,
        "email": email,
        "email_verified": email_verified,
        "roles": roles or [],
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> dict[str, Any]:
    """
    Decode and validate a JWT token.
    Raises ValueError with descriptive message if token is invalid or expired.
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError as exc:
        error_str = str(exc).lower()
        if "expired" in error_str:
            raise ValueError("Token has expired. Please log in again.") from None
        raise ValueError("Invalid token") from exc
    return payload


def caller_from_claims(payload: dict[str, Any]) -> Caller:
    return Caller(
        tenant_id=payload.get("tenant_id"),
        user_id=payload.get("sub"),
        profile_id=payload.get("profile_id"),
        email=payload.get("email"),
        email_verified=bool(payload.get("email_verified", False)),
        roles=frozenset(payload.get("roles") or []),
    )

# consentlink/utils/email_utils.py
from email_validator import EmailNotValidError, validate_email

from consentlink.core.exceptions import ValidationError


def normalise_email(value: str | None, *, field_name: str = "email") -> str | None:
    """
    Syntax-check an address and return its lower-cased normalized form.
    Blank input is treated as absent. No DNS lookups are made.
    """
    if value is None or not value.strip():
        return None
    try:
        checked = validate_email(value.strip(), check_deliverability=False)
    except EmailNotValidError as exc:
        raise ValidationError(f"{field_name} is not a valid address: {exc}")
    return checked.normalized.lower()


def emails_match(presented: str | None, expected: str | None) -> bool:
    """Compare a presented address against a stored (normalized) one."""
    if not presented or not expected:
        return False
    try:
        return normalise_email(presented) == expected
    except ValidationError:
        return False

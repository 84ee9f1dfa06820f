# consentlink/schemas/access.py
from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field


class FilteredView(BaseModel):
    """Records a grant's counterpart may see right now, already filtered and redacted."""

    grant_id: str
    resource_type: str
    access_level: str
    forward_only: bool
    resource_ids: list[str] | None = None
    effective_from: date | None = None
    effective_to: date | None = None
    records: list[dict] = Field(default_factory=list)


class ShareFailureReason(str, Enum):
    NOT_FOUND = "not_found"
    REVOKED = "revoked"
    EXPIRED = "expired"
    EMAIL_LOCK_REQUIRES_LOGIN = "email_lock_requires_login"
    EMAIL_MISMATCH = "email_mismatch"


class ShareSummary(BaseModel):
    id: str
    date_from: date | None
    date_to: date | None
    expires_at: datetime | None
    scope: dict[str, bool]


class SharedResourceData(BaseModel):
    """Public, read-only view of one subject resource and its included categories"""

    subject: dict
    vet_records: list[dict] = Field(default_factory=list)
    lab_results: list[dict] = Field(default_factory=list)
    files: list[dict] = Field(default_factory=list)


class ShareResolution(BaseModel):
    """
    Outcome of resolving a public share token.

    Failures are values, not exceptions, so the public page can show a
    specific, non-technical message per reason.
    """

    success: bool
    error: ShareFailureReason | None = None
    share: ShareSummary | None = None
    data: SharedResourceData | None = None

    @classmethod
    def failure(cls, reason: ShareFailureReason) -> "ShareResolution":
        return cls(success=False, error=reason)

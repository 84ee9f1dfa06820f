# consentlink/schemas/share_token.py
from datetime import date, datetime
from typing import Annotated

from pydantic import BaseModel, EmailStr, Field, field_validator

from consentlink.models.share_token import ShareStatus, ShareToken
from consentlink.services.share_token_service import MAX_EXPIRY_DAYS, derive_share_status


class ShareScope(BaseModel):
    includeVet: bool | None = None
    includeLab: bool | None = None
    includeFiles: bool | None = None


class ShareCreate(BaseModel):
    subject_resource_id: str = Field(..., min_length=1, max_length=64, description="e.g. the horse id")
    pack_key: str = Field("custom", description="Named pack, or 'custom'")
    scope: ShareScope | None = Field(None, description="Per-flag overrides of the pack defaults")
    date_from: date | None = None
    date_to: date | None = None
    recipient_email: EmailStr | None = None
    expires_in: Annotated[int, Field(ge=1, le=MAX_EXPIRY_DAYS)] | str | None = Field(
        None,
        description=f"Days until expiry (1-{MAX_EXPIRY_DAYS}), or 'never'. Defaults to the configured validity.",
    )

    @field_validator("expires_in")
    @classmethod
    def _days_or_never(cls, value):
        if not isinstance(value, str) or value.strip().lower() == "never":
            return value
        if not value.strip().isdigit() or not 1 <= int(value.strip()) <= MAX_EXPIRY_DAYS:
            raise ValueError(f"expires_in must be 1-{MAX_EXPIRY_DAYS} days or 'never'")
        return value


class ShareCreated(BaseModel):
    id: str
    token: str


class ShareResponse(BaseModel):
    id: str
    owning_tenant_id: str
    subject_resource_id: str
    token: str
    pack_key: str
    scope: dict[str, bool]
    recipient_email: str | None
    date_from: date | None
    date_to: date | None
    status: ShareStatus
    expires_at: datetime | None
    revoked_at: datetime | None = None
    created_by_user_id: str | None = None
    created_at: datetime

    @classmethod
    def from_share(cls, share: ShareToken, now: datetime | None = None) -> "ShareResponse":
        return cls(
            id=share.id,
            owning_tenant_id=share.owning_tenant_id,
            subject_resource_id=share.subject_resource_id,
            token=share.token,
            pack_key=share.pack_key,
            scope=share.scope,
            recipient_email=share.recipient_email,
            date_from=share.date_from,
            date_to=share.date_to,
            status=derive_share_status(share, now),
            expires_at=share.expires_at,
            revoked_at=share.revoked_at,
            created_by_user_id=share.created_by_user_id,
            created_at=share.created_at,
        )


class ShareListResponse(BaseModel):
    active: list[ShareResponse] = Field(default_factory=list)
    inactive: list[ShareResponse] = Field(default_factory=list)

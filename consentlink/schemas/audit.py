# consentlink/schemas/audit.py
from datetime import datetime

from pydantic import BaseModel, Field


class AuditEntryResponse(BaseModel):
    id: str
    event_type: str
    actor_tenant_id: str | None
    actor_user_id: str | None = None
    target_tenant_id: str | None
    connection_id: str | None
    grant_id: str | None
    share_id: str | None = None
    created_at: datetime
    detail: dict = Field(default_factory=dict)

    class Config:
        from_attributes = True


class AuditPage(BaseModel):
    items: list[AuditEntryResponse]
    next_before: datetime | None = Field(
        None, description="Pass as `before` to fetch the next page; null on the last page"
    )
    next_before_id: str | None = Field(
        None, description="Pass as `before_id` together with `before`; null on the last page"
    )

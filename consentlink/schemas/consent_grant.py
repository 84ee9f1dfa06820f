# consentlink/schemas/consent_grant.py
from datetime import date, datetime

from pydantic import BaseModel, Field

from consentlink.models.consent_grant import ConsentGrant, GrantStatus
from consentlink.services.consent_grant_service import effective_grant_status


class GrantCreate(BaseModel):
    resource_type: str = Field(..., min_length=1, max_length=50, description="e.g. lab_results, vet_records")
    resource_ids: list[str] | None = Field(None, description="Allow-list; omit for every record of the type")
    access_level: str = "read"
    date_from: date | None = None
    date_to: date | None = None
    forward_only: bool = False
    excluded_fields: list[str] = Field(default_factory=list)
    expires_at: datetime | None = None
    metadata: dict = Field(default_factory=dict)


class GrantCreated(BaseModel):
    grant_id: str


class GrantResponse(BaseModel):
    id: str
    connection_id: str
    grantor_tenant_id: str
    resource_type: str
    resource_ids: list[str] | None
    access_level: str
    date_from: date | None
    date_to: date | None
    forward_only: bool
    excluded_fields: list[str]
    status: GrantStatus
    expires_at: datetime | None
    revoked_at: datetime | None = None
    created_at: datetime
    metadata: dict = Field(default_factory=dict)

    class Config:
        from_attributes = True

    @classmethod
    def from_grant(cls, grant: ConsentGrant, now: datetime | None = None) -> "GrantResponse":
        return cls(
            id=grant.id,
            connection_id=grant.connection_id,
            grantor_tenant_id=grant.grantor_tenant_id,
            resource_type=grant.resource_type,
            resource_ids=grant.resource_ids,
            access_level=grant.access_level,
            date_from=grant.date_from,
            date_to=grant.date_to,
            forward_only=grant.forward_only,
            excluded_fields=grant.excluded_fields or [],
            status=effective_grant_status(grant, now),
            expires_at=grant.expires_at,
            revoked_at=grant.revoked_at,
            created_at=grant.created_at,
            metadata=grant.metadata_json or {},
        )

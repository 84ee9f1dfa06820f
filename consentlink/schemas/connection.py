# consentlink/schemas/connection.py
from datetime import datetime

from pydantic import BaseModel, EmailStr, Field

from consentlink.models.connection import Connection, ConnectionStatus
from consentlink.services.connection_service import effective_status


class ConnectionCreate(BaseModel):
    connection_type: str = Field(..., min_length=1, max_length=50, description="Domain tag, e.g. veterinary")
    recipient_tenant_id: str | None = None
    recipient_profile_id: str | None = None
    recipient_email: EmailStr | None = None
    recipient_phone: str | None = Field(None, max_length=50)
    expires_at: datetime | None = None
    metadata: dict = Field(default_factory=dict, description="Opaque bag, stored verbatim")


class ConnectionTokenAction(BaseModel):
    token: str = Field(..., min_length=1, max_length=128)


class ConnectionAccepted(BaseModel):
    connection_id: str


class ConnectionResponse(BaseModel):
    id: str
    connection_type: str
    initiator_tenant_id: str
    initiator_user_id: str | None = None
    recipient_tenant_id: str | None = None
    recipient_profile_id: str | None = None
    recipient_email: str | None = None
    recipient_phone: str | None = None
    accepted_profile_id: str | None = None
    status: ConnectionStatus
    token: str
    expires_at: datetime | None
    accepted_at: datetime | None = None
    revoked_at: datetime | None = None
    created_at: datetime
    metadata: dict = Field(default_factory=dict)

    class Config:
        from_attributes = True

    @classmethod
    def from_connection(cls, connection: Connection, now: datetime | None = None) -> "ConnectionResponse":
        """Serialise with the effective status (stale pending rows read as expired)."""
        return cls(
            id=connection.id,
            connection_type=connection.connection_type,
            initiator_tenant_id=connection.initiator_tenant_id,
            initiator_user_id=connection.initiator_user_id,
            recipient_tenant_id=connection.recipient_tenant_id,
            recipient_profile_id=connection.recipient_profile_id,
            recipient_email=connection.recipient_email,
            recipient_phone=connection.recipient_phone,
            accepted_profile_id=connection.accepted_profile_id,
            status=effective_status(connection, now),
            token=connection.token,
            expires_at=connection.expires_at,
            accepted_at=connection.accepted_at,
            revoked_at=connection.revoked_at,
            created_at=connection.created_at,
            metadata=connection.metadata_json or {},
        )

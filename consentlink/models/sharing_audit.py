# consentlink/models/sharing_audit.py
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import DateTime, Index, String, event, text
from sqlalchemy.orm import Mapped, mapped_column

from consentlink.models.base import Base, JSONType, new_id


class AuditEventType(str, PyEnum):
    CONNECTION_CREATED = "connection_created"
    CONNECTION_ACCEPTED = "connection_accepted"
    CONNECTION_REJECTED = "connection_rejected"
    CONNECTION_REVOKED = "connection_revoked"
    CONNECTION_EXPIRED = "connection_expired"
    GRANT_CREATED = "grant_created"
    GRANT_REVOKED = "grant_revoked"
    GRANT_EXPIRED = "grant_expired"
    SHARE_CREATED = "share_created"
    SHARE_REVOKED = "share_revoked"
    DATA_ACCESSED = "data_accessed"


class SharingAuditLog(Base):
    """
    Append-only trail of sharing lifecycle and access events.

    Rows are written in the same transaction as the state change they record
    and are never updated or deleted. Access events carry counts, never
    record contents.
    """

    __tablename__ = "sharing_audit_log"
    __table_args__ = (
        Index("idx_sharing_audit_actor", "actor_tenant_id", "created_at"),
        Index("idx_sharing_audit_target", "target_tenant_id", "created_at"),
    )

    # Primary Key
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    event_type: Mapped[str] = mapped_column(String(50), nullable=False)

    # Parties
    actor_tenant_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    actor_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    target_tenant_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Subjects (plain ids: entries must survive whatever happens to the rows they describe)
    connection_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    grant_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    share_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)

    detail: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )


class AuditLogImmutableError(RuntimeError):
    pass


@event.listens_for(SharingAuditLog, "before_update")
def _refuse_update(mapper, connection, target) -> None:
    raise AuditLogImmutableError("sharing_audit_log entries cannot be updated")


@event.listens_for(SharingAuditLog, "before_delete")
def _refuse_delete(mapper, connection, target) -> None:
    raise AuditLogImmutableError("sharing_audit_log entries cannot be deleted")

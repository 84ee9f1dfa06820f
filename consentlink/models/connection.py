# consentlink/models/connection.py
"""
A relationship between an initiator tenant and one recipient
(tenant, registered profile, or an unregistered contact reached by email/phone).
"""

from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    Index,
    String,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from consentlink.models.base import Base, JSONType, enum_values, new_id


class ConnectionStatus(str, PyEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    REVOKED = "revoked"
    EXPIRED = "expired"


TERMINAL_CONNECTION_STATUSES = frozenset(
    {ConnectionStatus.REJECTED, ConnectionStatus.REVOKED, ConnectionStatus.EXPIRED}
)

RECIPIENT_FIELDS = (
    "recipient_tenant_id",
    "recipient_profile_id",
    "recipient_email",
    "recipient_phone",
)


class Connection(Base):
    """
    Connection handshake record.

    Status moves pending -> accepted|rejected|revoked|expired and accepted -> revoked.
    Nothing leaves rejected, revoked or expired.
    """

    __tablename__ = "connections"
    __table_args__ = (
        Index("idx_connection_initiator", "initiator_tenant_id"),
        Index("idx_connection_recipient_tenant", "recipient_tenant_id"),
        Index("idx_connection_expires", "expires_at"),
        CheckConstraint(
            "(CASE WHEN recipient_tenant_id IS NULL THEN 0 ELSE 1 END"
            " + CASE WHEN recipient_profile_id IS NULL THEN 0 ELSE 1 END"
            " + CASE WHEN recipient_email IS NULL THEN 0 ELSE 1 END"
            " + CASE WHEN recipient_phone IS NULL THEN 0 ELSE 1 END) = 1",
            name="ck_connection_single_recipient",
        ),
    )

    # Primary Key
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    connection_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        doc="Domain tag, e.g. veterinary, laboratory",
    )

    # Initiator
    initiator_tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    initiator_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Recipient (exactly one is set)
    recipient_tenant_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    recipient_profile_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    recipient_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    recipient_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    accepted_profile_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        index=True,
        doc="Profile that accepted an email/phone invitation",
    )

    # Status
    status: Mapped[ConnectionStatus] = mapped_column(
        Enum(ConnectionStatus, name="connection_status_enum", values_callable=enum_values),
        nullable=False,
        default=ConnectionStatus.PENDING,
        server_default=text("'pending'"),
    )
    token: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        index=True,
        doc="Secret used to accept/reject/revoke before the recipient is a confirmed party",
    )
    metadata_json: Mapped[dict] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
        doc="Opaque key-value bag, passed through verbatim",
    )

    # Timestamps
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    grants: Mapped[list["ConsentGrant"]] = relationship(  # noqa: F821
        "ConsentGrant", back_populates="connection"
    )

    @property
    def recipient_kind(self) -> str:
        for name in RECIPIENT_FIELDS:
            if getattr(self, name) is not None:
                return name.removeprefix("recipient_")
        return "unknown"

    def tenant_parties(self) -> set[str]:
        parties = {self.initiator_tenant_id}
        if self.recipient_tenant_id:
            parties.add(self.recipient_tenant_id)
        return parties

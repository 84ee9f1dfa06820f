# consentlink/models/consent_grant.py
from datetime import date, datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    String,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from consentlink.models.base import Base, JSONType, enum_values, new_id
from consentlink.models.connection import Connection


class GrantStatus(str, PyEnum):
    ACTIVE = "active"
    REVOKED = "revoked"
    EXPIRED = "expired"


class ConsentGrant(Base):
    """
    Scoped, time-bounded read permission issued by one party of an accepted
    connection to the other.
    """

    __tablename__ = "consent_grants"
    __table_args__ = (
        Index("idx_consent_grant_connection", "connection_id"),
        Index("idx_consent_grant_grantor", "grantor_tenant_id"),
    )

    # Primary Key
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    # Foreign Keys
    # No ON DELETE CASCADE: revocation is an explicit, audited step
    connection_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("connections.id"),
        nullable=False,
    )
    grantor_tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Scope
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_ids: Mapped[list[str] | None] = mapped_column(
        JSONType,
        nullable=True,
        doc="Allow-list of resource ids; NULL means every record of resource_type",
    )
    access_level: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="read",
        server_default=text("'read'"),
    )
    date_from: Mapped[date | None] = mapped_column(Date, nullable=True)
    date_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    forward_only: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
        doc="Bearer may not re-share",
    )
    excluded_fields: Mapped[list[str]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
    )
    metadata_json: Mapped[dict] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
    )

    # Status
    status: Mapped[GrantStatus] = mapped_column(
        Enum(GrantStatus, name="grant_status_enum", values_callable=enum_values),
        nullable=False,
        default=GrantStatus.ACTIVE,
        server_default=text("'active'"),
    )

    # Timestamps
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    connection: Mapped["Connection"] = relationship("Connection", back_populates="grants")

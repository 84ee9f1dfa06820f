# consentlink/models/share_token.py
"""
Public, bearer-authenticated links scoped to a single resource instance.
Independent of connections: a share works without any prior relationship.
"""

from datetime import date, datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    Index,
    String,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from consentlink.models.base import Base, enum_values, new_id


class ShareStatus(str, PyEnum):
    ACTIVE = "active"
    REVOKED = "revoked"
    # Never stored: derived when an active share is past expires_at
    EXPIRED = "expired"


class ShareToken(Base):
    __tablename__ = "share_tokens"
    __table_args__ = (
        Index("idx_share_token_subject", "owning_tenant_id", "subject_resource_id"),
        Index("idx_share_token_expires", "expires_at"),
    )

    # Primary Key
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    owning_tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    subject_resource_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        doc="The single resource (e.g. one horse) the link exposes",
    )
    created_by_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Share Information
    token: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        index=True,
        doc="Secure random token embedded in the public link",
    )
    pack_key: Mapped[str] = mapped_column(String(50), nullable=False)
    include_vet: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    include_lab: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    include_files: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    recipient_email: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        doc="When set, the bearer must present this verified email",
    )
    date_from: Mapped[date | None] = mapped_column(Date, nullable=True)
    date_to: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Status
    status: Mapped[ShareStatus] = mapped_column(
        Enum(ShareStatus, name="share_token_status_enum", values_callable=enum_values),
        nullable=False,
        default=ShareStatus.ACTIVE,
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

    @property
    def scope(self) -> dict[str, bool]:
        return {
            "includeVet": self.include_vet,
            "includeLab": self.include_lab,
            "includeFiles": self.include_files,
        }

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from consentlink.models.base import Base, new_id
from consentlink.models.connection import Connection


class ConnectionMessage(Base):
    """
    Free-text note exchanged between the two parties of a connection.
    Messages are never edited; only parties can post or read them.
    """

    __tablename__ = "connection_messages"
    __table_args__ = (
        Index("idx_connection_message_thread", "connection_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    connection_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("connections.id"),
        nullable=False,
    )

    # Sender
    sender_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sender_tenant_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sender_profile_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        doc="Set when the sender is the individual recipient",
    )

    body: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    connection: Mapped[Connection] = relationship(Connection)

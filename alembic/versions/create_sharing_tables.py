"""create_sharing_tables

Revision ID: create_sharing_tables
Revises:
Create Date: 2025-02-03 09:00:00.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "create_sharing_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

connection_status_enum = sa.Enum(
    "pending", "accepted", "rejected", "revoked", "expired", name="connection_status_enum"
)
grant_status_enum = sa.Enum("active", "revoked", "expired", name="grant_status_enum")
share_token_status_enum = sa.Enum("active", "revoked", "expired", name="share_token_status_enum")


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.text("CURRENT_TIMESTAMP"),
        nullable=False,
    )


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "connections",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("connection_type", sa.String(length=50), nullable=False),
        sa.Column("initiator_tenant_id", sa.String(length=64), nullable=False),
        sa.Column("initiator_user_id", sa.String(length=64), nullable=True),
        sa.Column("recipient_tenant_id", sa.String(length=64), nullable=True),
        sa.Column("recipient_profile_id", sa.String(length=64), nullable=True),
        sa.Column("recipient_email", sa.String(length=255), nullable=True),
        sa.Column("recipient_phone", sa.String(length=50), nullable=True),
        sa.Column("accepted_profile_id", sa.String(length=64), nullable=True),
        sa.Column("status", connection_status_enum, server_default=sa.text("'pending'"), nullable=False),
        sa.Column("token", sa.String(length=64), nullable=False),
        sa.Column("metadata", JSONType, nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.CheckConstraint(
            "(CASE WHEN recipient_tenant_id IS NULL THEN 0 ELSE 1 END"
            " + CASE WHEN recipient_profile_id IS NULL THEN 0 ELSE 1 END"
            " + CASE WHEN recipient_email IS NULL THEN 0 ELSE 1 END"
            " + CASE WHEN recipient_phone IS NULL THEN 0 ELSE 1 END) = 1",
            name="ck_connection_single_recipient",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_connections_token", "connections", ["token"], unique=True)
    op.create_index("ix_connections_recipient_profile_id", "connections", ["recipient_profile_id"])
    op.create_index("ix_connections_accepted_profile_id", "connections", ["accepted_profile_id"])
    op.create_index("idx_connection_initiator", "connections", ["initiator_tenant_id"])
    op.create_index("idx_connection_recipient_tenant", "connections", ["recipient_tenant_id"])
    op.create_index("idx_connection_expires", "connections", ["expires_at"])

    op.create_table(
        "consent_grants",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("connection_id", sa.String(length=36), nullable=False),
        sa.Column("grantor_tenant_id", sa.String(length=64), nullable=False),
        sa.Column("resource_type", sa.String(length=50), nullable=False),
        sa.Column("resource_ids", JSONType, nullable=True),
        sa.Column("access_level", sa.String(length=20), server_default=sa.text("'read'"), nullable=False),
        sa.Column("date_from", sa.Date(), nullable=True),
        sa.Column("date_to", sa.Date(), nullable=True),
        sa.Column("forward_only", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("excluded_fields", JSONType, nullable=False),
        sa.Column("metadata", JSONType, nullable=False),
        sa.Column("status", grant_status_enum, server_default=sa.text("'active'"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["connection_id"], ["connections.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_consent_grant_connection", "consent_grants", ["connection_id"])
    op.create_index("idx_consent_grant_grantor", "consent_grants", ["grantor_tenant_id"])

    op.create_table(
        "share_tokens",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("owning_tenant_id", sa.String(length=64), nullable=False),
        sa.Column("subject_resource_id", sa.String(length=64), nullable=False),
        sa.Column("created_by_user_id", sa.String(length=64), nullable=True),
        sa.Column("token", sa.String(length=64), nullable=False),
        sa.Column("pack_key", sa.String(length=50), nullable=False),
        sa.Column("include_vet", sa.Boolean(), nullable=False),
        sa.Column("include_lab", sa.Boolean(), nullable=False),
        sa.Column("include_files", sa.Boolean(), nullable=False),
        sa.Column("recipient_email", sa.String(length=255), nullable=True),
        sa.Column("date_from", sa.Date(), nullable=True),
        sa.Column("date_to", sa.Date(), nullable=True),
        sa.Column("status", share_token_status_enum, server_default=sa.text("'active'"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_share_tokens_token", "share_tokens", ["token"], unique=True)
    op.create_index("idx_share_token_subject", "share_tokens", ["owning_tenant_id", "subject_resource_id"])
    op.create_index("idx_share_token_expires", "share_tokens", ["expires_at"])

    op.create_table(
        "sharing_audit_log",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("event_type", sa.String(length=50), nullable=False),
        sa.Column("actor_tenant_id", sa.String(length=64), nullable=True),
        sa.Column("actor_user_id", sa.String(length=64), nullable=True),
        sa.Column("target_tenant_id", sa.String(length=64), nullable=True),
        sa.Column("connection_id", sa.String(length=36), nullable=True),
        sa.Column("grant_id", sa.String(length=36), nullable=True),
        sa.Column("share_id", sa.String(length=36), nullable=True),
        sa.Column("detail", JSONType, nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sharing_audit_log_connection_id", "sharing_audit_log", ["connection_id"])
    op.create_index("ix_sharing_audit_log_grant_id", "sharing_audit_log", ["grant_id"])
    op.create_index("ix_sharing_audit_log_share_id", "sharing_audit_log", ["share_id"])
    op.create_index("ix_sharing_audit_log_created_at", "sharing_audit_log", ["created_at"])
    op.create_index("idx_sharing_audit_actor", "sharing_audit_log", ["actor_tenant_id", "created_at"])
    op.create_index("idx_sharing_audit_target", "sharing_audit_log", ["target_tenant_id", "created_at"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("sharing_audit_log")
    op.drop_table("share_tokens")
    op.drop_table("consent_grants")
    op.drop_table("connections")

    bind = op.get_bind()
    share_token_status_enum.drop(bind, checkfirst=True)
    grant_status_enum.drop(bind, checkfirst=True)
    connection_status_enum.drop(bind, checkfirst=True)

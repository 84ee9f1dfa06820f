"""add_connection_messages_table

Revision ID: add_connection_messages
Revises: create_sharing_tables
Create Date: 2025-02-17 14:20:00.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "add_connection_messages"
down_revision: Union[str, None] = "create_sharing_tables"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "connection_messages",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("connection_id", sa.String(length=36), nullable=False),
        sa.Column("sender_user_id", sa.String(length=64), nullable=True),
        sa.Column("sender_tenant_id", sa.String(length=64), nullable=True),
        sa.Column("sender_profile_id", sa.String(length=64), nullable=True),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["connection_id"], ["connections.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_connection_message_thread",
        "connection_messages",
        ["connection_id", "created_at"],
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("idx_connection_message_thread", table_name="connection_messages")
    op.drop_table("connection_messages")

"""create support chat tables

Revision ID: 5c1e9a7d2b40
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import mysql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5c1e9a7d2b40"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _datetime() -> sa.types.TypeEngine:
    return sa.DateTime(timezone=True).with_variant(mysql.DATETIME(fsp=6), "mysql")


def upgrade() -> None:
    """Create chat_sessions, chat_participants, chat_messages and chat_audit_entries."""
    op.create_table(
        "chat_sessions",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("subject_id", sa.String(64), nullable=False),
        sa.Column("is_support", sa.Boolean(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("assigned_admin_id", sa.String(64), nullable=True),
        sa.Column("last_admin_id", sa.String(64), nullable=True),
        sa.Column("last_message_preview", sa.String(255), nullable=True),
        sa.Column("created_at", _datetime(), nullable=False),
        sa.Column("last_message_at", _datetime(), nullable=True),
        sa.Column("updated_at", _datetime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_chat_sessions_status"), "chat_sessions", ["status"], unique=False
    )
    op.create_index(
        op.f("ix_chat_sessions_assigned_admin_id"),
        "chat_sessions",
        ["assigned_admin_id"],
        unique=False,
    )
    op.create_index(
        "ix_chat_sessions_subject_id_status",
        "chat_sessions",
        ["subject_id", "status"],
        unique=False,
    )
    op.create_index(
        "ix_chat_sessions_updated_at_id",
        "chat_sessions",
        ["updated_at", "id"],
        unique=False,
    )

    op.create_table(
        "chat_participants",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("chat_id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("unread_count", sa.Integer(), nullable=False),
        sa.Column("joined_at", _datetime(), nullable=False),
        sa.ForeignKeyConstraint(["chat_id"], ["chat_sessions.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_chat_participants_chat_id"),
        "chat_participants",
        ["chat_id"],
        unique=False,
    )
    op.create_index(
        "ix_chat_participants_user_id_chat_id",
        "chat_participants",
        ["user_id", "chat_id"],
        unique=False,
    )

    op.create_table(
        "chat_messages",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("chat_id", sa.String(36), nullable=False),
        sa.Column("sender_id", sa.String(64), nullable=False),
        sa.Column("sender_role", sa.String(20), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("message_type", sa.String(20), nullable=False),
        sa.Column("timestamp", _datetime(), nullable=False),
        sa.Column("read_by", sa.JSON(), nullable=False),
        sa.ForeignKeyConstraint(["chat_id"], ["chat_sessions.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_chat_messages_chat_id_timestamp_id",
        "chat_messages",
        ["chat_id", "timestamp", "id"],
        unique=False,
    )

    op.create_table(
        "chat_audit_entries",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("chat_id", sa.String(36), nullable=False),
        sa.Column("actor_id", sa.String(64), nullable=False),
        sa.Column("action", sa.String(32), nullable=False),
        sa.Column("from_status", sa.String(20), nullable=True),
        sa.Column("to_status", sa.String(20), nullable=True),
        sa.Column("detail", sa.String(255), nullable=True),
        sa.Column("created_at", _datetime(), nullable=False),
        sa.ForeignKeyConstraint(["chat_id"], ["chat_sessions.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_chat_audit_entries_chat_id"),
        "chat_audit_entries",
        ["chat_id"],
        unique=False,
    )


def downgrade() -> None:
    """Drop the support chat tables."""
    op.drop_index(op.f("ix_chat_audit_entries_chat_id"), table_name="chat_audit_entries")
    op.drop_table("chat_audit_entries")
    op.drop_index("ix_chat_messages_chat_id_timestamp_id", table_name="chat_messages")
    op.drop_table("chat_messages")
    op.drop_index("ix_chat_participants_user_id_chat_id", table_name="chat_participants")
    op.drop_index(op.f("ix_chat_participants_chat_id"), table_name="chat_participants")
    op.drop_table("chat_participants")
    op.drop_index("ix_chat_sessions_updated_at_id", table_name="chat_sessions")
    op.drop_index("ix_chat_sessions_subject_id_status", table_name="chat_sessions")
    op.drop_index(op.f("ix_chat_sessions_assigned_admin_id"), table_name="chat_sessions")
    op.drop_index(op.f("ix_chat_sessions_status"), table_name="chat_sessions")
    op.drop_table("chat_sessions")

"""Initial schema: messages, push_subscriptions, contacts

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = '0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "messages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("type", sa.String(16), nullable=False, server_default="text"),
        sa.Column("from", sa.String(64), nullable=True),
        sa.Column("to", sa.String(64), nullable=True),
        sa.Column("text", sa.Text(), nullable=True),
        sa.Column("media_url", sa.Text(), nullable=True),
        sa.Column("is_reply", sa.String(16), nullable=True),
        sa.Column("reply_to_mid", sa.String(255), nullable=True),
        sa.Column("mid", sa.String(255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("ix_messages_mid", "messages", ["mid"])
    op.create_index("ix_messages_created_at", "messages", ["created_at"])

    op.create_table(
        "push_subscriptions",
        sa.Column("endpoint", sa.Text(), primary_key=True),
        sa.Column("keys", postgresql.JSONB(), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    )

    op.create_table(
        "contacts",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(255), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("contacts")
    op.drop_table("push_subscriptions")
    op.drop_index("ix_messages_created_at", table_name="messages")
    op.drop_index("ix_messages_mid", table_name="messages")
    op.drop_table("messages")

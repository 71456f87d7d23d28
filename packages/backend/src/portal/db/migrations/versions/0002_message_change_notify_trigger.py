"""Message change NOTIFY trigger

Learn: PostgreSQL LISTEN/NOTIFY is the change-event stream. Every insert,
update and delete on messages emits one JSON payload on the
'message_changes' channel:

    {"eventType": "INSERT" | "UPDATE" | "DELETE", "new": row, "old": row}

The server's ChangeListener LISTENs on the channel, fans inserts out to
push endpoints and republishes every payload for WebSocket clients.
Superseded by 0003, which sends ids only.

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-19 09:05:00.000000
"""
from typing import Sequence, Union

from alembic import op


revision: str = '0002'
down_revision: Union[str, None] = '0001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE OR REPLACE FUNCTION notify_message_change()
        RETURNS TRIGGER AS $$
        BEGIN
            PERFORM pg_notify('message_changes', json_build_object(
                'eventType', TG_OP,
                'new', CASE WHEN TG_OP = 'DELETE' THEN NULL ELSE row_to_json(NEW) END,
                'old', CASE WHEN TG_OP = 'INSERT' THEN NULL ELSE row_to_json(OLD) END
            )::text);
            RETURN NULL;
        END;
        $$ LANGUAGE plpgsql;
    """)

    op.execute("""
        CREATE TRIGGER message_change_notify
            AFTER INSERT OR UPDATE OR DELETE ON messages
            FOR EACH ROW
            EXECUTE FUNCTION notify_message_change();
    """)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS message_change_notify ON messages;")
    op.execute("DROP FUNCTION IF EXISTS notify_message_change;")

"""Id-only change notifications on a configurable channel

Learn: NOTIFY payloads must stay under 8000 bytes, and an AFTER trigger
that raises aborts the write that fired it. Sending whole rows meant a
long (or multi-byte) message text could not be stored at all, and an
UPDATE doubled the size by carrying old and new.

The trigger now sends only what identifies the change:

    {"eventType": "INSERT" | "UPDATE" | "DELETE", "id": 42}

and the ChangeListener loads the committed row itself before
republishing it. The channel name comes from PORTAL_CHANGE_CHANNEL at
migration time, so the trigger and the listener always agree; after
changing the setting, re-run this migration.

Revision ID: 0003
Revises: 0002
Create Date: 2026-10-19 14:30:00.000000
"""
import re
from typing import Sequence, Union

from alembic import op

from portal.config import settings


revision: str = '0003'
down_revision: Union[str, None] = '0002'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_CHANNEL_RE = re.compile(r"^[a-z_][a-z0-9_]*$")


def notify_function_sql(channel: str) -> str:
    if not _CHANNEL_RE.match(channel):
        raise ValueError(f"invalid NOTIFY channel name {channel!r}")
    return f"""
        CREATE OR REPLACE FUNCTION notify_message_change()
        RETURNS TRIGGER AS $$
        BEGIN
            PERFORM pg_notify('{channel}', json_build_object(
                'eventType', TG_OP,
                'id', CASE WHEN TG_OP = 'DELETE' THEN OLD.id ELSE NEW.id END
            )::text);
            RETURN NULL;
        END;
        $$ LANGUAGE plpgsql;
    """


def upgrade() -> None:
    op.execute(notify_function_sql(settings.change_channel))


def downgrade() -> None:
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

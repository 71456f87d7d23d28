"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: the messages table keeps the provider's raw shape. A row never stores
its conversation or direction; both are derived from whichever of "from" /
"to" holds a phone number (see portal.schemas.message). "from" and "to" are
SQL keywords, so the Python attributes are sender/recipient and only the
column names keep the wire spelling.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Message(Base):
    """One WhatsApp message, incoming or outgoing.

    Learn: every INSERT/UPDATE/DELETE on this table fires the
    notify_message_change trigger, which is the change-event stream both
    the server listener and the client bridge consume.
    """

    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False, default="text")
    sender: Mapped[Optional[str]] = mapped_column("from", String(64))
    recipient: Mapped[Optional[str]] = mapped_column("to", String(64))
    text: Mapped[Optional[str]] = mapped_column(Text)
    media_url: Mapped[Optional[str]] = mapped_column(Text)
    is_reply: Mapped[Optional[str]] = mapped_column(String(16))
    reply_to_mid: Mapped[Optional[str]] = mapped_column(String(255))
    mid: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )


class PushSubscription(Base):
    """A browser push endpoint. The endpoint URL is the identity."""

    __tablename__ = "push_subscriptions"

    endpoint: Mapped[str] = mapped_column(Text, primary_key=True)
    keys: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=utcnow
    )


class Contact(Base):
    """Display names for phone numbers. Read-only from this service."""

    __tablename__ = "contacts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String(255))

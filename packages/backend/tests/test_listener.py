"""Change listener tests — NOTIFY notice → row lookup → fan-out.

Learn: the listener is exercised without a LISTEN connection: process()
and _on_notify() are called with what the trigger would deliver
({eventType, id}), and the session factory hands out the per-test
session, so rows written in the test are what the listener loads.
"""

import asyncio
import json
import uuid
from contextlib import asynccontextmanager

import pytest

from portal.db.models import Message
from portal.events.types import ChangeNotice, Delete, Insert, Update
from portal.listener.change_listener import ChangeListener, ListenerConfig, asyncpg_dsn
from portal.services.notification_service import BODY_LIMIT
from portal.services.subscription_service import SubscriptionRegistry

CONTACT = "447700900123"


def factory_for(db):
    @asynccontextmanager
    async def session_factory():
        yield db

    return session_factory


async def subscribed(db):
    e = f"https://push.example.test/listener-{uuid.uuid4().hex[:12]}"
    await SubscriptionRegistry(db).register(e, {"p256dh": "k", "auth": "a"})
    return e


async def stored_message(db, sender, text, **fields):
    message = Message(type="text", sender=sender, text=text, **fields)
    db.add(message)
    await db.flush()
    await db.refresh(message)
    return message


# ═══════════════════════════════════════════════════════════
# Event handling
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_incoming_insert_fans_out(db_session, make_sender):
    e = await subscribed(db_session)
    sender = make_sender()
    listener = ChangeListener(ListenerConfig(), sender, factory_for(db_session))

    await listener.handle(Insert(row={"id": 1, "from": CONTACT, "text": "hi"}))

    assert e in sender.attempts
    assert listener.get_stats()["fanouts"] == 1


@pytest.mark.asyncio
async def test_outgoing_insert_and_delete_do_not_fan_out(db_session, make_sender):
    await subscribed(db_session)
    sender = make_sender()
    listener = ChangeListener(ListenerConfig(), sender, factory_for(db_session))

    await listener.handle(Insert(row={"id": 2, "from": None, "to": CONTACT}))
    await listener.handle(Delete(old={"id": 2}))

    assert sender.attempts == []


# ═══════════════════════════════════════════════════════════
# Resolving id-only notices
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_resolve_loads_long_multibyte_row(db_session, make_sender):
    """A text well past the 8000-byte NOTIFY cap still flows end to end."""
    long_text = "é" * 4100
    message = await stored_message(db_session, CONTACT, long_text)
    e = await subscribed(db_session)
    sender = make_sender()
    listener = ChangeListener(ListenerConfig(), sender, factory_for(db_session))

    event = await listener.resolve(ChangeNotice(kind="insert", id=message.id))
    assert isinstance(event, Insert)
    assert event.row["id"] == message.id
    assert event.row["from"] == CONTACT
    assert event.row["text"] == long_text
    assert isinstance(event.row["created_at"], str)

    await listener.process(ChangeNotice(kind="insert", id=message.id))
    payload = sender.payloads[sender.attempts.index(e)]
    assert len(payload["body"]) == BODY_LIMIT


@pytest.mark.asyncio
async def test_resolve_update_and_delete(db_session, make_sender):
    message = await stored_message(db_session, CONTACT, "edited")
    listener = ChangeListener(ListenerConfig(), make_sender(), factory_for(db_session))

    update = await listener.resolve(ChangeNotice(kind="update", id=message.id))
    assert isinstance(update, Update)
    assert update.new["text"] == "edited"

    delete = await listener.resolve(ChangeNotice(kind="delete", id=message.id))
    assert delete == Delete(old={"id": message.id})


@pytest.mark.asyncio
async def test_row_deleted_before_resolve_is_skipped(db_session, make_sender):
    await subscribed(db_session)
    sender = make_sender()
    listener = ChangeListener(ListenerConfig(), sender, factory_for(db_session))

    await listener.process(ChangeNotice(kind="insert", id=-1))

    assert sender.attempts == []
    assert listener.get_stats()["errors"] == 0


@pytest.mark.asyncio
async def test_on_notify_decodes_and_schedules(db_session, make_sender):
    message = await stored_message(db_session, CONTACT, "yo")
    e = await subscribed(db_session)
    sender = make_sender()
    listener = ChangeListener(ListenerConfig(), sender, factory_for(db_session))

    listener._on_notify(None, 1, "message_changes", json.dumps({
        "eventType": "INSERT",
        "id": message.id,
    }))
    listener._on_notify(None, 1, "message_changes", "not json")
    listener._on_notify(None, 1, "message_changes", json.dumps({"eventType": "INSERT"}))
    await asyncio.gather(*list(listener._tasks))

    stats = listener.get_stats()
    assert stats["received"] == 3
    assert stats["errors"] == 2
    assert e in sender.attempts


# ═══════════════════════════════════════════════════════════
# Connection lifecycle
# ═══════════════════════════════════════════════════════════


class FakeConnection:
    def __init__(self):
        self.closed = False

    def is_closed(self):
        return self.closed

    async def remove_listener(self, channel, callback):
        pass

    async def close(self):
        self.closed = True


@pytest.mark.asyncio
async def test_watchdog_recovers_after_failed_start(make_sender, monkeypatch):
    listener = ChangeListener(
        ListenerConfig(watchdog_interval=0.01), make_sender(), factory_for(None)
    )
    attempts = []

    async def connect_when_postgres_is_back():
        attempts.append(1)
        if len(attempts) < 3:
            raise OSError("connection refused")
        listener._conn = FakeConnection()

    monkeypatch.setattr(listener, "_connect", connect_when_postgres_is_back)

    # Same sequence as the app lifespan: try once, then always watch.
    with pytest.raises(OSError):
        await listener.start()
    watch_task = asyncio.create_task(listener.watch())

    for _ in range(200):
        if listener._conn is not None:
            break
        await asyncio.sleep(0.01)

    await listener.stop()
    await asyncio.wait_for(watch_task, timeout=1)

    assert len(attempts) == 3
    assert listener.get_stats()["reconnects"] == 1


@pytest.mark.asyncio
async def test_run_keeps_retrying_until_stopped(make_sender, monkeypatch):
    listener = ChangeListener(
        ListenerConfig(watchdog_interval=0.01), make_sender(), factory_for(None)
    )
    attempts = []

    async def refused():
        attempts.append(1)
        raise OSError("connection refused")

    monkeypatch.setattr(listener, "_connect", refused)

    task = asyncio.create_task(listener.run())
    for _ in range(200):
        if len(attempts) >= 3:
            break
        await asyncio.sleep(0.01)
    await listener.stop()
    await asyncio.wait_for(task, timeout=1)

    assert len(attempts) >= 3
    assert not task.exception()


def test_asyncpg_dsn():
    assert (
        asyncpg_dsn("postgresql+asyncpg://u:p@db:5432/portal")
        == "postgresql://u:p@db:5432/portal"
    )

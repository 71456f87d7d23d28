"""WebSocketTransport tests — reconnects and the resync they trigger.

Learn: websockets.connect() is replaced by a generator of fake sockets.
The first connection delivers an event and then drops; a row is
committed while the client is disconnected; the second connection must
fire on_connect so the session fetches a snapshot that contains it.
"""

import asyncio
import json
from datetime import datetime, timezone

import pytest
from websockets.exceptions import ConnectionClosed

from portal.sync import transport as transport_module
from portal.sync.bridge import ChangeEventBridge
from portal.sync.session import ChatSession
from portal.sync.store import MessageStore
from portal.sync.transport import WebSocketTransport

CONTACT = "447700900123"


def row(id):
    return {
        "id": id,
        "type": "text",
        "from": CONTACT,
        "to": None,
        "text": f"message {id}",
        "created_at": datetime(2026, 10, 19, 9, id, tzinfo=timezone.utc).isoformat(),
    }


def insert_frame(id):
    return json.dumps({"eventType": "INSERT", "new": row(id), "old": None})


class SnapshotAPI:
    def __init__(self, rows):
        self.rows = list(rows)
        self.fetches = 0

    async def fetch_messages(self, conversation_id=None):
        self.fetches += 1
        return list(self.rows)


class FakeSocket:
    def __init__(self, frames, drop=False):
        self.frames = frames
        self.drop = drop

    async def __aiter__(self):
        for frame in self.frames:
            yield frame
        if self.drop:
            raise ConnectionClosed(None, None)


@pytest.mark.asyncio
async def test_every_connect_triggers_a_resync(monkeypatch):
    api = SnapshotAPI([row(1)])

    def fake_connect(url):
        async def connections():
            yield FakeSocket([insert_frame(10), "<not json>"], drop=True)
            api.rows.append(row(3))  # committed while disconnected
            yield FakeSocket([insert_frame(11)])

        return connections()

    monkeypatch.setattr(transport_module.websockets, "connect", fake_connect)

    store = MessageStore()
    transport = WebSocketTransport("ws://portal.test/ws/messages")
    bridge = ChangeEventBridge(transport)
    session = ChatSession(api, store, bridge, poll_interval=60)
    transport.on_connect = session.on_transport_connect

    await session.start()
    try:
        # The fake runs out of connections, which ends the read loop.
        await asyncio.wait_for(bridge._task, timeout=2)

        assert api.fetches == 3  # startup + two connects
        assert sorted(m.id for m in store.messages) == [1, 3, 10, 11]
        assert bridge.received == 2
    finally:
        await session.stop()
        await bridge.stop()


@pytest.mark.asyncio
async def test_failing_connect_hook_does_not_stop_the_stream(monkeypatch):
    def fake_connect(url):
        async def connections():
            yield FakeSocket([insert_frame(5)])

        return connections()

    monkeypatch.setattr(transport_module.websockets, "connect", fake_connect)

    async def broken_hook():
        raise RuntimeError("resync blew up")

    transport = WebSocketTransport("ws://portal.test/ws/messages", on_connect=broken_hook)
    payloads = [p async for p in transport.events()]

    assert [p["new"]["id"] for p in payloads] == [5]

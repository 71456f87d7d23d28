"""/ws/messages tests — Redis change payloads forwarded to the client.

Learn: the endpoint only needs get_redis().pubsub() and
redis_available(), so both are swapped for an in-memory pub/sub that
replays the payloads published before the client connected.
"""

import asyncio
import json

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from portal.main import app
from portal.realtime import websocket as websocket_module

CHANGE = {
    "eventType": "INSERT",
    "new": {"id": 7, "from": "447700900123", "text": "hi"},
    "old": None,
}


class FakePubSub:
    def __init__(self, published):
        self.published = published
        self.channels = []
        self.closed = False

    async def subscribe(self, channel):
        self.channels.append(channel)

    async def unsubscribe(self, channel):
        self.channels.remove(channel)

    async def listen(self):
        yield {"type": "subscribe", "data": 1}
        for payload in self.published:
            yield {"type": "message", "data": json.dumps(payload)}
        await asyncio.Event().wait()

    async def aclose(self):
        self.closed = True


class FakeRedis:
    def __init__(self, published):
        self.pubsubs = []
        self.published = published

    def pubsub(self):
        ps = FakePubSub(self.published)
        self.pubsubs.append(ps)
        return ps


@pytest.fixture()
def fake_redis(monkeypatch):
    redis = FakeRedis([CHANGE])
    monkeypatch.setattr(websocket_module, "redis_available", lambda: True)
    monkeypatch.setattr(websocket_module, "get_redis", lambda: redis)
    return redis


def test_forwards_change_payloads_and_answers_ping(fake_redis):
    client = TestClient(app)
    with client.websocket_connect("/ws/messages") as ws:
        assert ws.receive_json() == CHANGE

        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}

    [pubsub] = fake_redis.pubsubs
    assert pubsub.closed is True


def test_closes_with_1013_without_redis(monkeypatch):
    monkeypatch.setattr(websocket_module, "redis_available", lambda: False)
    client = TestClient(app)
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws/messages") as ws:
            ws.receive_json()
    assert exc.value.code == 1013

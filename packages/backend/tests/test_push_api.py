"""Push API tests — VAPID key, subscribe/unsubscribe, manual fan-out.

Learn: Tests cover:
1. The public key endpoint
2. Subscribe validation (400 without an endpoint) and idempotent upsert
3. Unsubscribe, including unknown endpoints
4. GET /push/test reaching exactly the registered endpoints
"""

import uuid

import pytest

from portal.config import settings
from portal.services.subscription_service import SubscriptionRegistry


def endpoint(tag="sub"):
    return f"https://push.example.test/{tag}-{uuid.uuid4().hex[:12]}"


KEYS = {"p256dh": "BNc-test-key", "auth": "tBHI-test-auth"}


# ═══════════════════════════════════════════════════════════
# VAPID key
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_vapid_key(client):
    r = await client.get("/api/push/vapid-key")
    assert r.status_code == 200
    assert r.json() == {"publicKey": settings.vapid_public_key}


# ═══════════════════════════════════════════════════════════
# Subscribe / unsubscribe
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_subscribe_stores_endpoint(client, db_session):
    e = endpoint()
    r = await client.post("/api/push/subscribe", json={"endpoint": e, "keys": KEYS})
    assert r.status_code == 200
    assert r.json()["success"] is True

    sub = await SubscriptionRegistry(db_session).get(e)
    assert sub is not None
    assert sub.keys == KEYS


@pytest.mark.asyncio
async def test_subscribe_without_endpoint_is_400(client):
    r = await client.post("/api/push/subscribe", json={"keys": KEYS})
    assert r.status_code == 400
    assert r.json()["detail"] == "Invalid subscription"


@pytest.mark.asyncio
async def test_resubscribe_refreshes_keys_without_duplicating(client, db_session):
    registry = SubscriptionRegistry(db_session)
    e = endpoint()
    await client.post("/api/push/subscribe", json={"endpoint": e, "keys": KEYS})
    before = await registry.count()

    new_keys = {"p256dh": "rotated", "auth": "rotated-auth"}
    r = await client.post("/api/push/subscribe", json={"endpoint": e, "keys": new_keys})

    assert r.status_code == 200
    assert await registry.count() == before
    assert (await registry.get(e)).keys == new_keys


@pytest.mark.asyncio
async def test_unsubscribe_removes_endpoint(client, db_session):
    e = endpoint()
    await client.post("/api/push/subscribe", json={"endpoint": e, "keys": KEYS})

    r = await client.post("/api/push/unsubscribe", json={"endpoint": e})
    assert r.status_code == 200
    assert r.json()["success"] is True
    assert await SubscriptionRegistry(db_session).get(e) is None


@pytest.mark.asyncio
async def test_unsubscribe_unknown_endpoint_is_ok(client):
    r = await client.post("/api/push/unsubscribe", json={"endpoint": endpoint("never")})
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_unsubscribe_without_endpoint_is_400(client):
    r = await client.post("/api/push/unsubscribe", json={})
    assert r.status_code == 400
    assert r.json()["detail"] == "Missing endpoint"


# ═══════════════════════════════════════════════════════════
# Test trigger
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_push_test_reaches_subscriber_until_unsubscribed(client, push_sender):
    e1 = endpoint("e1")
    await client.post("/api/push/subscribe", json={"endpoint": e1, "keys": KEYS})

    r = await client.get("/api/push/test")
    assert r.status_code == 200
    assert r.json()["success"] is True
    assert "Test push sent to" in r.json()["message"]
    assert push_sender.attempts.count(e1) == 1
    assert push_sender.payloads[0]["title"] == "Test Notification"

    await client.post("/api/push/unsubscribe", json={"endpoint": e1})
    push_sender.attempts.clear()

    r = await client.get("/api/push/test")
    assert r.status_code == 200
    assert e1 not in push_sender.attempts


@pytest.mark.asyncio
async def test_push_test_prunes_gone_endpoint(client, db_session, push_sender):
    live, gone = endpoint("live"), endpoint("gone")
    push_sender.gone.add(gone)
    for e in (live, gone):
        await client.post("/api/push/subscribe", json={"endpoint": e, "keys": KEYS})

    r = await client.get("/api/push/test")

    assert r.status_code == 200
    assert "1 pruned" in r.json()["message"]
    registry = SubscriptionRegistry(db_session)
    assert await registry.get(live) is not None
    assert await registry.get(gone) is None


@pytest.mark.asyncio
async def test_push_test_registry_failure_is_500(client, monkeypatch):
    async def broken(self):
        raise RuntimeError("registry unavailable")

    monkeypatch.setattr(SubscriptionRegistry, "list_all", broken)

    r = await client.get("/api/push/test")
    assert r.status_code == 500
    assert r.json()["detail"] == "registry unavailable"

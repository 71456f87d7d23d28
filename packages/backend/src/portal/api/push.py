"""Push API — VAPID key, subscription management, manual fan-out.

Learn: the browser flow is
1. GET /api/push/vapid-key → applicationServerKey for pushManager.subscribe()
2. POST /api/push/subscribe with subscription.toJSON() ({endpoint, keys})
3. POST /api/push/unsubscribe {endpoint} when the user opts out

GET /api/push/test runs one real fan-out pass with a fixed payload, so
the whole chain (registry → push service → service worker) can be
checked without waiting for an incoming message.
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from portal.config import settings
from portal.db.engine import get_db
from portal.schemas.push import (
    PushAck,
    PushPayload,
    SubscribeBody,
    UnsubscribeBody,
    VapidKeyRead,
)
from portal.services.notification_service import NotificationService
from portal.services.push_sender import PushSender, sender_from_settings
from portal.services.subscription_service import SubscriptionRegistry

logger = structlog.get_logger()
router = APIRouter(prefix="/push")

TEST_PAYLOAD = PushPayload(
    title="Test Notification",
    body="If you see this, push is working!",
    data={},
)


def get_push_sender() -> PushSender:
    """FastAPI dependency — overridden in tests with a recording fake."""
    return sender_from_settings()


@router.get("/vapid-key", response_model=VapidKeyRead)
async def vapid_key():
    return {"publicKey": settings.vapid_public_key}


@router.post("/subscribe", response_model=PushAck)
async def subscribe(
    body: SubscribeBody,
    db: AsyncSession = Depends(get_db),
):
    if not body.endpoint:
        raise HTTPException(status_code=400, detail="Invalid subscription")

    await SubscriptionRegistry(db).register(body.endpoint, body.keys)
    logger.info("push.subscribed", endpoint=body.endpoint[-24:])
    return {"success": True}


@router.post("/unsubscribe", response_model=PushAck)
async def unsubscribe(
    body: UnsubscribeBody,
    db: AsyncSession = Depends(get_db),
):
    if not body.endpoint:
        raise HTTPException(status_code=400, detail="Missing endpoint")

    removed = await SubscriptionRegistry(db).unregister(body.endpoint)
    logger.info("push.unsubscribed", endpoint=body.endpoint[-24:], removed=removed)
    return {"success": True}


@router.get("/test", response_model=PushAck)
async def push_test(
    db: AsyncSession = Depends(get_db),
    sender: PushSender = Depends(get_push_sender),
):
    logger.info("push.test_requested")
    try:
        result = await NotificationService(db, sender).fan_out(TEST_PAYLOAD)
    except Exception as e:
        logger.exception("push.test_failed")
        raise HTTPException(status_code=500, detail=str(e))

    return {
        "success": True,
        "message": (
            f"Test push sent to {result.delivered}/{result.attempted} "
            f"subscriber(s), {len(result.pruned)} pruned"
        ),
    }

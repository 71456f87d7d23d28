"""Notification fan-out — one incoming message, every registered browser.

Learn: a fan-out pass is a chain of steps that each fail on their own:

1. Resolve the sender's display name (contacts table, best effort —
   falls back to "+<number>")
2. Build the payload {title, body, data}
3. Load every subscription from the registry
4. Deliver to all of them concurrently (asyncio.gather); each delivery
   catches its own errors, so one slow or broken endpoint never delays or
   aborts the others
5. Classify failures: EndpointGoneError prunes the subscription, anything
   else is logged and the subscription stays for the next event

There is no retry and nothing is persisted about notifications owed. The
next qualifying event is the retry: delivery is at most once per event.

An AsyncSession can't run two statements at once, so the few DB calls
made from inside concurrent deliveries (the prunes) take a lock. Only the
deletes serialise; the network sends stay concurrent.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from portal.db.models import Contact
from portal.schemas.push import PushPayload
from portal.services.push_sender import EndpointGoneError, PushSender
from portal.services.subscription_service import SubscriptionRegistry

logger = structlog.get_logger()

DELIVERED = "delivered"
PRUNED = "pruned"
FAILED = "failed"

MEDIA_BODY = "Media message"

# Push services reject encrypted payloads over 4096 bytes; 500 chars of
# 4-byte text still leaves room for title and data.
BODY_LIMIT = 500


def preview_body(text: Optional[str]) -> str:
    if not text:
        return MEDIA_BODY
    if len(text) > BODY_LIMIT:
        return text[: BODY_LIMIT - 1] + "…"
    return text


@dataclass
class FanoutResult:
    attempted: int = 0
    delivered: int = 0
    failed: int = 0
    pruned: list[str] = field(default_factory=list)


class NotificationService:
    def __init__(self, db: AsyncSession, sender: PushSender):
        self.db = db
        self.sender = sender
        self.registry = SubscriptionRegistry(db)
        self._db_lock = asyncio.Lock()

    # ─── Incoming message → notification ───────────────────

    async def resolve_display_name(self, phone: str) -> str:
        fallback = f"+{phone}"
        try:
            async with self._db_lock:
                contact = await self.db.get(Contact, phone)
        except SQLAlchemyError as e:
            logger.warning("fanout.contact_lookup_failed", phone=phone, error=str(e))
            return fallback
        if contact is not None and contact.name:
            return contact.name
        return fallback

    async def build_payload(self, row: dict[str, Any]) -> PushPayload:
        sender = str(row["from"])
        return PushPayload(
            title=await self.resolve_display_name(sender),
            body=preview_body(row.get("text")),
            data={"contactId": sender, "messageId": row.get("id")},
        )

    async def notify_incoming(self, row: dict[str, Any]) -> Optional[FanoutResult]:
        """Fan out for an inserted row. Outgoing rows (no "from") are skipped."""
        if not row.get("from"):
            logger.debug("fanout.skipped_outgoing", message_id=row.get("id"))
            return None
        payload = await self.build_payload(row)
        return await self.fan_out(payload)

    # ─── Fan-out pass ──────────────────────────────────────

    async def fan_out(self, payload: PushPayload) -> FanoutResult:
        """Deliver to every registered endpoint. Registry read errors raise."""
        subscriptions = await self.registry.list_all()
        if not subscriptions:
            logger.info("fanout.no_subscriptions")
            return FanoutResult()

        # Detach from the ORM before going concurrent.
        targets = [(s.endpoint, dict(s.keys or {})) for s in subscriptions]
        body = payload.model_dump()

        logger.info("fanout.started", subscribers=len(targets), title=payload.title)
        outcomes = await asyncio.gather(
            *(self._deliver(endpoint, keys, body) for endpoint, keys in targets)
        )

        result = FanoutResult(attempted=len(targets))
        for (endpoint, _), outcome in zip(targets, outcomes):
            if outcome == DELIVERED:
                result.delivered += 1
            elif outcome == PRUNED:
                result.pruned.append(endpoint)
            else:
                result.failed += 1

        logger.info(
            "fanout.completed",
            attempted=result.attempted,
            delivered=result.delivered,
            pruned=len(result.pruned),
            failed=result.failed,
        )
        return result

    async def _deliver(self, endpoint: str, keys: dict, body: dict) -> str:
        log = logger.bind(endpoint=endpoint[-24:])
        try:
            await self.sender.send(endpoint, keys, body)
        except EndpointGoneError as e:
            log.info("fanout.endpoint_gone", status=e.status)
            try:
                async with self._db_lock:
                    await self.registry.unregister(endpoint)
            except SQLAlchemyError as db_error:
                log.error("fanout.prune_failed", error=str(db_error))
                return FAILED
            return PRUNED
        except Exception as e:
            log.warning("fanout.delivery_failed", error=str(e))
            return FAILED
        return DELIVERED

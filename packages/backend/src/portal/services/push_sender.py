"""Web Push transport — one delivery to one endpoint.

Learn: the push service (FCM, Mozilla autopush, Apple) answers each
delivery with an HTTP status. Two answers mean the browser subscription
is dead for good:

    404 Not Found / 410 Gone  -> EndpointGoneError (prune it)

Everything else that fails (429, 5xx, timeouts, DNS) is
EndpointTransientError: log it and try again on the next event.

pywebpush does the payload encryption and VAPID signing. Its webpush()
call is blocking (requests under the hood), so it runs in a worker thread
to keep concurrent deliveries from serialising on the event loop.
"""

import asyncio
import json
from typing import Optional, Protocol

from pywebpush import WebPushException, webpush

GONE_STATUSES = frozenset({404, 410})


class EndpointGoneError(Exception):
    """The push service says this endpoint no longer exists."""

    def __init__(self, endpoint: str, status: Optional[int] = None):
        super().__init__(f"endpoint gone (status={status})")
        self.endpoint = endpoint
        self.status = status


class EndpointTransientError(Exception):
    """Delivery failed but the endpoint may still be valid."""

    def __init__(self, endpoint: str, reason: str, status: Optional[int] = None):
        super().__init__(reason)
        self.endpoint = endpoint
        self.status = status


class PushSender(Protocol):
    async def send(self, endpoint: str, keys: dict, payload: dict) -> None:
        """Deliver or raise EndpointGoneError / EndpointTransientError."""
        ...


class WebPushSender:
    def __init__(
        self,
        vapid_private_key: str,
        vapid_email: str,
        ttl: int = 86400,
    ):
        self.vapid_private_key = vapid_private_key
        self.vapid_claims = {"sub": vapid_email}
        self.ttl = ttl

    async def send(self, endpoint: str, keys: dict, payload: dict) -> None:
        if not self.vapid_private_key:
            raise EndpointTransientError(endpoint, "VAPID private key not configured")

        try:
            await asyncio.to_thread(
                webpush,
                subscription_info={"endpoint": endpoint, "keys": keys},
                data=json.dumps(payload),
                vapid_private_key=self.vapid_private_key,
                vapid_claims=dict(self.vapid_claims),
                ttl=self.ttl,
            )
        except WebPushException as e:
            status = getattr(e.response, "status_code", None)
            if status in GONE_STATUSES:
                raise EndpointGoneError(endpoint, status) from e
            raise EndpointTransientError(endpoint, str(e), status) from e
        except Exception as e:
            raise EndpointTransientError(endpoint, str(e)) from e


def sender_from_settings() -> WebPushSender:
    from portal.config import settings

    return WebPushSender(
        vapid_private_key=settings.vapid_private_key,
        vapid_email=settings.vapid_email,
        ttl=settings.push_ttl_seconds,
    )

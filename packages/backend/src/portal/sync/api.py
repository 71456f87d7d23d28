"""HTTP client for the Portal server.

Learn: every network failure (connection refused, timeout, 5xx, a body
that is not the JSON we asked for) comes out of this module as
TransientNetworkError. Callers on the sync path never treat it as fatal:
the store keeps its last good state and the next poll or reconnect is
the recovery.
"""

from typing import Any, Optional

import httpx


class TransientNetworkError(Exception):
    """A fetch, poll or send that failed and may succeed next time."""


class PortalAPI:
    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout, transport=transport
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "PortalAPI":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            resp = await self._client.request(method, path, **kwargs)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise TransientNetworkError(f"{method} {path}: {e}") from e
        try:
            return resp.json()
        except ValueError as e:
            # A proxy or captive portal answering 200 with HTML, or a cut-off body.
            raise TransientNetworkError(f"{method} {path}: response is not JSON") from e

    # ─── Messages ──────────────────────────────────────────

    async def fetch_messages(self, conversation_id: Optional[str] = None) -> list[dict]:
        """Full snapshot, ascending by created_at."""
        params = {"conversation_id": conversation_id} if conversation_id else None
        rows = await self._request("GET", "/api/messages", params=params)
        if not isinstance(rows, list):
            raise TransientNetworkError(
                f"GET /api/messages: expected a list, got {type(rows).__name__}"
            )
        return rows

    async def create_message(self, body: dict) -> dict:
        return await self._request("POST", "/api/messages", json=body)

    async def delete_message(self, message_id: int) -> dict:
        return await self._request("DELETE", f"/api/messages/{message_id}")

    # ─── Push ──────────────────────────────────────────────

    async def vapid_key(self) -> str:
        data = await self._request("GET", "/api/push/vapid-key")
        return data["publicKey"]

    async def subscribe_push(self, endpoint: str, keys: dict) -> dict:
        return await self._request(
            "POST", "/api/push/subscribe", json={"endpoint": endpoint, "keys": keys}
        )

    async def unsubscribe_push(self, endpoint: str) -> dict:
        return await self._request(
            "POST", "/api/push/unsubscribe", json={"endpoint": endpoint}
        )

    async def push_test(self) -> dict:
        return await self._request("GET", "/api/push/test")

    @property
    def websocket_url(self) -> str:
        if self.base_url.startswith("https://"):
            return "wss://" + self.base_url[len("https://"):] + "/ws/messages"
        return "ws://" + self.base_url.removeprefix("http://") + "/ws/messages"

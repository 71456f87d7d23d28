"""Change-stream transports for the client bridge.

Learn: a transport is anything with an async iterator of raw change
payloads (dicts). WebSocketTransport reads the server's /ws/messages
endpoint. Reconnecting after a dropped socket is the transport's job —
websockets.connect() used as an async iterator reconnects with
exponential backoff — so the bridge above it only ever sees a stream.

on_connect fires after every successful (re)connect. Events emitted while
the socket was down are gone, so the owning layer uses this hook to run a
snapshot resync.
"""

import asyncio
import json
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Protocol

import structlog
import websockets
from websockets.exceptions import ConnectionClosed

logger = structlog.get_logger()

ConnectHook = Callable[[], Awaitable[None]]


class ChangeTransport(Protocol):
    def events(self) -> AsyncIterator[Any]: ...


class WebSocketTransport:
    """Reads JSON change payloads from the server WebSocket."""

    def __init__(self, url: str, on_connect: Optional[ConnectHook] = None):
        self.url = url
        self.on_connect = on_connect

    async def events(self) -> AsyncIterator[Any]:
        async for ws in websockets.connect(self.url):
            logger.info("transport.connected", url=self.url)
            if self.on_connect is not None:
                try:
                    await self.on_connect()
                except Exception:
                    logger.exception("transport.on_connect_failed")
            try:
                async for raw in ws:
                    try:
                        yield json.loads(raw)
                    except json.JSONDecodeError:
                        logger.warning("transport.bad_frame", size=len(raw))
            except ConnectionClosed as e:
                logger.warning(
                    "transport.disconnected",
                    code=e.rcvd.code if e.rcvd is not None else None,
                )
                continue


class QueueTransport:
    """In-process transport fed by put(). Used by tests and local tools."""

    _CLOSE = object()

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()

    def put(self, payload: Any) -> None:
        self._queue.put_nowait(payload)

    def close(self) -> None:
        self._queue.put_nowait(self._CLOSE)

    async def events(self) -> AsyncIterator[Any]:
        while True:
            payload = await self._queue.get()
            if payload is self._CLOSE:
                return
            yield payload

"""Change Event Bridge — one live change subscription per process.

Learn: every view that needs live messages (the transcript, the sidebar)
registers a consumer here instead of opening its own connection. One
socket, one stream of events, N consumers — mounting another view never
multiplies connections or duplicate events.

The bridge is a process-wide singleton with an explicit lifecycle, the
same shape as the server's Redis handle:

    init_bridge(transport)   # once, at startup
    get_bridge()             # anywhere after that
    await close_bridge()     # at shutdown

It does not filter or deduplicate. Each consumer is expected to ingest
idempotently (the MessageStore does). It does not reconnect either: the
transport handles sockets, and the owning ChatSession resyncs by snapshot
when the page comes back, the network returns, or its safety poll fires.
"""

import asyncio
from typing import Any, Callable, Optional

import structlog

from portal.events.types import ChangeEvent, MalformedChangeError, decode_change
from portal.sync.transport import ChangeTransport

logger = structlog.get_logger()

Consumer = Callable[[ChangeEvent], None]


class ChangeEventBridge:
    """Multiplexes one change stream to many consumers, in emission order."""

    def __init__(self, transport: ChangeTransport):
        self.transport = transport
        self._consumers: list[Consumer] = []
        self._task: Optional[asyncio.Task] = None
        self.received = 0
        self.dropped = 0

    # ─── Consumers ─────────────────────────────────────────

    def add_consumer(self, consumer: Consumer) -> None:
        if consumer not in self._consumers:
            self._consumers.append(consumer)

    def remove_consumer(self, consumer: Consumer) -> None:
        if consumer in self._consumers:
            self._consumers.remove(consumer)

    @property
    def consumer_count(self) -> int:
        return len(self._consumers)

    def publish(self, event: ChangeEvent) -> None:
        """Hand one event to every consumer; a failing consumer is skipped."""
        for consumer in list(self._consumers):
            try:
                consumer(event)
            except Exception:
                logger.exception("bridge.consumer_failed", kind=event.kind)

    def feed(self, payload: Any) -> bool:
        """Decode a raw payload and publish it. Returns False if dropped."""
        self.received += 1
        try:
            event = decode_change(payload)
        except MalformedChangeError as e:
            self.dropped += 1
            logger.warning("bridge.payload_dropped", error=str(e))
            return False
        self.publish(event)
        return True

    # ─── Lifecycle ─────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Start reading the transport. Calling it again is a no-op."""
        if not self.running:
            self._task = asyncio.create_task(self._read_loop())
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _read_loop(self) -> None:
        logger.info("bridge.started", consumers=len(self._consumers))
        try:
            async for payload in self.transport.events():
                self.feed(payload)
        except asyncio.CancelledError:
            raise
        except Exception:
            # The owning layer's polls keep the store fresh without us.
            logger.exception("bridge.transport_failed")
        logger.info("bridge.stopped", received=self.received, dropped=self.dropped)


# ─── Process-wide singleton ─────────────────────────────────

_bridge: Optional[ChangeEventBridge] = None


def init_bridge(transport: ChangeTransport) -> ChangeEventBridge:
    """Create the process bridge. Returns the existing one if already set."""
    global _bridge
    if _bridge is None:
        _bridge = ChangeEventBridge(transport)
    return _bridge


def get_bridge() -> ChangeEventBridge:
    """Get the bridge (must be initialized first)."""
    if _bridge is None:
        raise RuntimeError("Bridge not initialized. Call init_bridge() first.")
    return _bridge


async def close_bridge() -> None:
    """Stop the bridge and forget it."""
    global _bridge
    if _bridge is not None:
        await _bridge.stop()
        _bridge = None

"""ChatSession — the owning layer that keeps the store fresh.

Learn: the live change stream is the fast path, not the reliable one. A
backgrounded tab or a network drop can kill it silently, so the session
owns every recovery path and they all end in the same call, resync():

1. page becomes visible again      -> on_visibility_change(True)
2. network comes back              -> on_network_change(True)
3. transport (re)connects          -> on_transport_connect()
4. fixed-interval safety poll      -> always running, independent of 1-3

resync() fetches a full snapshot and merges it into the store. The merge
rules guarantee a late or stale snapshot never undoes a confirmation or
drops an in-flight send, so these paths may overlap freely.

send() is the optimistic write: the record appears immediately as
"sending", the server is told to record the row with the same mid, and
the confirmed row (from the response or the change stream, whichever
lands first) replaces it.
"""

import asyncio
from typing import Optional

import structlog

from portal.sync.api import PortalAPI, TransientNetworkError
from portal.sync.bridge import ChangeEventBridge
from portal.sync.sidebar import SidebarAggregator
from portal.sync.store import Message, MessageStore

logger = structlog.get_logger()


class ChatSession:
    def __init__(
        self,
        api: PortalAPI,
        store: MessageStore,
        bridge: ChangeEventBridge,
        sidebar: Optional[SidebarAggregator] = None,
        *,
        poll_interval: float = 30.0,
    ):
        self.api = api
        self.store = store
        self.bridge = bridge
        self.sidebar = sidebar
        self.poll_interval = poll_interval
        self.last_error: Optional[str] = None
        self.resync_count = 0
        self._tasks: list[asyncio.Task] = []
        self._pending: set[asyncio.Task] = set()

    # ─── Lifecycle ─────────────────────────────────────────

    async def start(self) -> None:
        self.bridge.add_consumer(self.store.apply_change)
        if self.sidebar is not None:
            self.bridge.add_consumer(self.sidebar.on_change_event)

        await self.resync("startup")
        self.bridge.start()

        self._tasks.append(asyncio.create_task(self._safety_poll()))
        if self.sidebar is not None:
            self._tasks.append(asyncio.create_task(self.sidebar.run_poll()))
        logger.info("session.started", poll_interval=self.poll_interval)

    async def stop(self) -> None:
        """Detach from the bridge and stop polling. The bridge keeps running."""
        self.bridge.remove_consumer(self.store.apply_change)
        if self.sidebar is not None:
            self.bridge.remove_consumer(self.sidebar.on_change_event)
            self.sidebar.stop()

        for task in [*self._tasks, *self._pending]:
            task.cancel()
        for task in [*self._tasks, *self._pending]:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        self._pending.clear()
        logger.info("session.stopped", resyncs=self.resync_count)

    # ─── Resync ────────────────────────────────────────────

    async def resync(self, reason: str = "manual") -> bool:
        """Fetch a snapshot and merge it. False if the fetch failed."""
        try:
            rows = await self.api.fetch_messages()
        except TransientNetworkError as e:
            self.last_error = str(e)
            logger.warning("session.resync_failed", reason=reason, error=str(e))
            return False

        self.last_error = None
        self.resync_count += 1
        if self.store.loaded:
            self.store.reconcile_snapshot(rows)
        else:
            self.store.seed(rows)
        logger.debug("session.resynced", reason=reason, rows=len(rows))
        return True

    def on_visibility_change(self, visible: bool) -> Optional[asyncio.Task]:
        if visible:
            return self._schedule_resync("visible")
        return None

    def on_network_change(self, online: bool) -> Optional[asyncio.Task]:
        if online:
            return self._schedule_resync("online")
        return None

    async def on_transport_connect(self) -> None:
        await self._resync_safely("reconnect")

    def _schedule_resync(self, reason: str) -> asyncio.Task:
        task = asyncio.create_task(self._resync_safely(reason))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _resync_safely(self, reason: str) -> bool:
        """resync() for background callers: nothing escapes into the task."""
        try:
            return await self.resync(reason)
        except Exception as e:
            self.last_error = str(e)
            logger.exception("session.resync_crashed", reason=reason)
            return False

    async def _safety_poll(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            await self._resync_safely("poll")

    # ─── Sending ───────────────────────────────────────────

    async def send(
        self,
        to: str,
        text: Optional[str] = None,
        *,
        type: str = "text",
        media_url: Optional[str] = None,
        mid: Optional[str] = None,
        reply_to_mid: Optional[str] = None,
    ) -> Message:
        """Optimistically append, record on the server, reconcile.

        Returns the final local record: "sent" with the server id, or
        "error" if recording failed.
        """
        optimistic = self.store.apply_optimistic(
            to=to,
            type=type,
            text=text,
            media_url=media_url,
            mid=mid,
            reply_to_mid=reply_to_mid,
            is_reply="true" if reply_to_mid else "false",
        )
        log = logger.bind(local_id=optimistic.id, mid=optimistic.mid)

        try:
            row = await self.api.create_message({
                "to": to,
                "type": type,
                "text": text,
                "media_url": media_url,
                "mid": optimistic.mid,
                "reply_to_mid": reply_to_mid,
            })
        except TransientNetworkError as e:
            log.warning("session.send_failed", error=str(e))
            return self.store.mark_failed(optimistic.id) or optimistic

        self.store.apply_remote_event("insert", row)
        log.info("session.sent", id=row.get("id"))
        return self.store.get(row.get("id")) or optimistic

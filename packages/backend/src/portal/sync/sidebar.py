"""Sidebar Aggregator — per-conversation read model.

Learn: the sidebar never queries anything itself. It groups the Message
Store's entries by conversation and joins them with local state:

    conversation_id -> last message text/time, unread count, AI toggle

Unread means: incoming, and the id is not in the local read set. Opening a
conversation marks every id in it read. The summary is re-derived on each
store change, on each bridge event, and on its own timer (which also
re-reads the state file, in case another process marked something read).
Listeners only hear about it when the derived list actually changed.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import structlog

from portal.events.types import ChangeEvent
from portal.sync.local_state import LocalState
from portal.sync.store import Message, MessageStore

logger = structlog.get_logger()

MEDIA_PLACEHOLDERS = {
    "audio": "Voice message",
    "image": "Photo",
    "video": "Video",
}


@dataclass(frozen=True)
class ConversationSummary:
    conversation_id: str
    last_message_text: str
    last_message_time: datetime
    unread_count: int
    ai_enabled: bool = True


def preview_text(message: Message) -> str:
    if message.text:
        return message.text
    return MEDIA_PLACEHOLDERS.get(message.type, "Media")


def summarize(
    messages: list[Message], state: LocalState
) -> list[ConversationSummary]:
    """Group sorted messages by conversation. Newest conversation first."""
    latest: dict[str, Message] = {}
    unread: dict[str, int] = {}

    for m in messages:
        cid = m.conversation_id
        if cid is None:
            continue
        # Input is ascending by created_at, so the last one seen wins.
        latest[cid] = m
        unread.setdefault(cid, 0)
        if m.direction == "incoming" and not state.is_read(m.id):
            unread[cid] += 1

    summaries = [
        ConversationSummary(
            conversation_id=cid,
            last_message_text=preview_text(m),
            last_message_time=m.created_at,
            unread_count=unread[cid],
            ai_enabled=state.ai_enabled(cid),
        )
        for cid, m in latest.items()
    ]
    summaries.sort(key=lambda s: s.last_message_time, reverse=True)
    return summaries


class SidebarAggregator:
    def __init__(
        self,
        store: MessageStore,
        state: LocalState,
        poll_interval: float = 10.0,
    ):
        self.store = store
        self.state = state
        self.poll_interval = poll_interval
        self.active_conversation: Optional[str] = None
        self.summaries: list[ConversationSummary] = []
        self._listeners: list[Callable[[list[ConversationSummary]], None]] = []
        self._running = False

        store.add_listener(self._on_store_change)

    # ─── Read model ────────────────────────────────────────

    def refresh(self) -> list[ConversationSummary]:
        """Re-derive the summaries from the store and local state."""
        if self.active_conversation is not None:
            # Anything that arrives in the open conversation is seen.
            self.state.mark_read(
                m.id for m in self.store.conversation(self.active_conversation)
            )

        summaries = summarize(self.store.messages, self.state)
        if summaries != self.summaries:
            self.summaries = summaries
            for listener in list(self._listeners):
                try:
                    listener(summaries)
                except Exception:
                    logger.exception("sidebar.listener_failed")
        return summaries

    def get(self, conversation_id: str) -> Optional[ConversationSummary]:
        for s in self.summaries:
            if s.conversation_id == conversation_id:
                return s
        return None

    @property
    def total_unread(self) -> int:
        return sum(s.unread_count for s in self.summaries)

    # ─── User actions ──────────────────────────────────────

    def open_conversation(self, conversation_id: str) -> int:
        """Mark the whole conversation read. Returns how many became read."""
        self.active_conversation = conversation_id
        marked = self.state.mark_read(
            m.id for m in self.store.conversation(conversation_id)
        )
        logger.debug("sidebar.opened", conversation_id=conversation_id, marked=marked)
        self.refresh()
        return marked

    def close_conversation(self) -> None:
        self.active_conversation = None

    def set_ai_enabled(self, conversation_id: str, enabled: bool) -> None:
        self.state.set_ai_enabled(conversation_id, enabled)
        self.refresh()

    # ─── Wiring ────────────────────────────────────────────

    def add_listener(self, listener: Callable[[list[ConversationSummary]], None]) -> None:
        self._listeners.append(listener)

    def on_change_event(self, event: ChangeEvent) -> None:
        """Bridge consumer."""
        self.refresh()

    def _on_store_change(self, store: MessageStore) -> None:
        self.refresh()

    async def run_poll(self) -> None:
        """Re-derive on a fixed interval, independent of the store's poll."""
        self._running = True
        while self._running:
            await asyncio.sleep(self.poll_interval)
            self.state.load()
            self.refresh()

    def stop(self) -> None:
        self._running = False

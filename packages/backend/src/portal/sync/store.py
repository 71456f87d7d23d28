"""Message Store — the client's canonical, deduplicated transcript.

Learn: three sources feed this store and none of them is ordered with
respect to the others:

1. Optimistic writes — a local record shown as "sending" the moment the
   user hits send.
2. Change events — insert/update/delete pushed by the bridge.
3. Snapshot polls — the full message list, fetched periodically as a
   safety net for a dead live connection.

Correctness therefore lives in the merge rules, not in sequencing. The
rules are plain functions over (entries, event-or-snapshot) -> entries,
with no timing or I/O, so every race can be replayed in a unit test:

- identity: same id, or same mid (correlation key) when both sides have one
- status only advances: sending -> sent | error; sent and error are final
- a snapshot replaces what it contains and keeps what it doesn't — an
  in-flight send, a failed send, or a row the poll has not caught up with
  is never dropped by a poll

MessageStore holds the current entries and tells listeners (the sidebar,
UIs) when they change. Ingestion never raises: a row that does not parse is
logged and skipped.
"""

import secrets
import time
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Literal, Optional, Sequence

import structlog
from pydantic import ValidationError

from portal.events.types import (
    ChangeEvent,
    Delete,
    Insert,
    MalformedChangeError,
    Update,
    make_change,
)
from portal.schemas.message import MessageRow

logger = structlog.get_logger()

SENDING = "sending"
SENT = "sent"
ERROR = "error"

DeliveryStatus = Literal["sending", "sent", "error"]


class MalformedRowError(ValueError):
    """A row that cannot become a Message (missing id or created_at, bad type)."""


class Message(MessageRow):
    """A transcript entry: the committed row shape plus local delivery status."""

    status: DeliveryStatus = SENT

    model_config = {"frozen": True}


Listener = Callable[["MessageStore"], None]


# ─── Pure merge rules ───────────────────────────────────────


def parse_row(row: Any, status: str = SENT) -> Message:
    """Validate one raw row into a Message. Raises MalformedRowError."""
    if isinstance(row, MessageRow):
        row = row.model_dump()
    if not isinstance(row, dict):
        raise MalformedRowError(f"row is {type(row).__name__}, not an object")
    try:
        return Message.model_validate({**row, "status": status})
    except ValidationError as e:
        raise MalformedRowError(str(e)) from e


def parse_rows(rows: Iterable[Any]) -> list[Message]:
    """Parse a snapshot, dropping (and logging) rows that don't validate."""
    parsed = []
    for row in rows:
        try:
            parsed.append(parse_row(row))
        except MalformedRowError as e:
            logger.warning("store.row_rejected", source="snapshot", error=str(e))
    return parsed


def same_identity(a: MessageRow, b: MessageRow) -> bool:
    if a.id == b.id:
        return True
    return bool(a.mid and b.mid and a.mid == b.mid)


def advance_status(current: str, target: str) -> str:
    """sending may move to sent or error; anything else stays put."""
    if current == SENDING:
        return target
    return current


def sort_messages(entries: Iterable[Message]) -> list[Message]:
    """Ascending created_at. sorted() is stable, so ties keep arrival order."""
    return sorted(entries, key=lambda m: m.created_at)


def merge_change(entries: Sequence[Message], event: ChangeEvent) -> list[Message]:
    """Apply one change event. Raises MalformedRowError for unusable rows."""
    if isinstance(event, Insert):
        incoming = parse_row(event.row)
        matches = [i for i, m in enumerate(entries) if same_identity(m, incoming)]
        if not matches:
            return [*entries, incoming]

        # Replace in the first matching slot; any other entry resolving to
        # the same identity is a duplicate and goes away.
        first = matches[0]
        merged = incoming.model_copy(
            update={"status": advance_status(entries[first].status, SENT)}
        )
        duplicates = set(matches[1:])
        return [
            merged if i == first else m
            for i, m in enumerate(entries)
            if i not in duplicates
        ]

    if isinstance(event, Update):
        incoming = parse_row(event.new)
        return [
            incoming.model_copy(update={"status": advance_status(m.status, SENT)})
            if m.id == incoming.id
            else m
            for m in entries
        ]

    if isinstance(event, Delete):
        try:
            deleted_id = int(event.old["id"])
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedRowError(f"delete with unusable id: {event.old!r}") from e
        return [m for m in entries if m.id != deleted_id]

    raise MalformedRowError(f"unsupported event {event!r}")


def merge_snapshot(
    entries: Sequence[Message], snapshot: Sequence[Message]
) -> list[Message]:
    """Merge a full poll result into the current entries.

    Snapshot rows win on content. Status never moves backward, so a row a
    live event already confirmed stays "sent" and a failed send stays
    "error". Local entries whose identity the snapshot doesn't contain are
    kept verbatim after the snapshot rows.
    """
    by_id = {m.id: m for m in entries}
    by_mid = {m.mid: m for m in entries if m.mid}

    merged: list[Message] = []
    seen_ids: set[int] = set()
    seen_mids: set[str] = set()

    for row in snapshot:
        if row.id in seen_ids or (row.mid and row.mid in seen_mids):
            continue
        seen_ids.add(row.id)
        if row.mid:
            seen_mids.add(row.mid)

        local = by_id.get(row.id) or (by_mid.get(row.mid) if row.mid else None)
        status = advance_status(local.status, SENT) if local else SENT
        merged.append(row.model_copy(update={"status": status}))

    for m in entries:
        if m.id in seen_ids or (m.mid and m.mid in seen_mids):
            continue
        merged.append(m)

    return merged


def new_correlation_key() -> str:
    """Client-generated mid for an optimistic record."""
    return f"tmp_{secrets.token_hex(8)}"


# ─── Stateful store ─────────────────────────────────────────


class MessageStore:
    """Holds the transcript for every conversation and notifies listeners."""

    def __init__(self):
        self._entries: list[Message] = []
        self._listeners: list[Listener] = []
        self.loaded = False

    # ─── Reads ─────────────────────────────────────────────

    @property
    def messages(self) -> list[Message]:
        return sort_messages(self._entries)

    def conversation(self, conversation_id: str) -> list[Message]:
        return [m for m in self.messages if m.conversation_id == conversation_id]

    def get(self, message_id: int) -> Optional[Message]:
        for m in self._entries:
            if m.id == message_id:
                return m
        return None

    def __len__(self) -> int:
        return len(self._entries)

    # ─── Writes ────────────────────────────────────────────

    def seed(self, rows: Iterable[Any]) -> None:
        """Replace the store wholesale (initial load)."""
        self._entries = parse_rows(rows)
        self.loaded = True
        logger.info("store.seeded", count=len(self._entries))
        self._notify()

    def apply_optimistic(self, partial: Optional[dict] = None, **fields) -> Message:
        """Append a local "sending" record and return it.

        id defaults to the current time in milliseconds (bumped until it is
        unique here) and mid to a fresh client token. Pass the same mid to
        the server when recording the send, and the committed row will
        replace this record instead of appearing next to it.
        """
        data = {**(partial or {}), **fields}
        data["id"] = data.get("id") or self._next_local_id()
        data["mid"] = data.get("mid") or new_correlation_key()
        data["created_at"] = data.get("created_at") or datetime.now(timezone.utc)

        message = parse_row(data, status=SENDING)
        for existing in self._entries:
            if same_identity(existing, message):
                return existing

        self._entries.append(message)
        logger.debug("store.optimistic", id=message.id, mid=message.mid)
        self._notify()
        return message

    def apply_remote_event(self, kind: str, row: dict) -> bool:
        """Ingest (kind, row) from the change stream. Returns True if changed."""
        try:
            event = make_change(kind, row)
        except MalformedChangeError as e:
            logger.warning("store.event_rejected", kind=kind, error=str(e))
            return False
        return self.apply_change(event)

    def apply_change(self, event: ChangeEvent) -> bool:
        try:
            entries = merge_change(self._entries, event)
        except MalformedRowError as e:
            logger.warning("store.row_rejected", source=event.kind, error=str(e))
            return False
        return self._replace(entries)

    def reconcile_snapshot(self, rows: Iterable[Any]) -> bool:
        """Merge a poll result; see merge_snapshot for the rules."""
        changed = self._replace(merge_snapshot(self._entries, parse_rows(rows)))
        self.loaded = True
        return changed

    def mark_failed(self, message_id: int) -> Optional[Message]:
        """Move a "sending" record to "error" after its send failed."""
        for i, m in enumerate(self._entries):
            if m.id == message_id:
                failed = m.model_copy(update={"status": advance_status(m.status, ERROR)})
                if failed != m:
                    self._entries[i] = failed
                    self._notify()
                return failed
        return None

    # ─── Listeners ─────────────────────────────────────────

    def add_listener(self, listener: Listener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ─── Internals ─────────────────────────────────────────

    def _replace(self, entries: list[Message]) -> bool:
        if entries == self._entries:
            return False
        self._entries = entries
        self._notify()
        return True

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("store.listener_failed")

    def _next_local_id(self) -> int:
        candidate = int(time.time() * 1000)
        taken = {m.id for m in self._entries}
        while candidate in taken:
            candidate += 1
        return candidate

"""Change-event types — the tagged variant decoded from the change stream.

Learn: change events travel as loosely shaped JSON
({"eventType": ..., "new": ..., "old": ...}). decode_change() turns it into
exactly one of Insert / Update / Delete at the boundary, so consumers
match on the type instead of poking at optional keys.

The database trigger itself only sends a ChangeNotice (kind + id), which
fits any row under the NOTIFY size cap; the server listener loads the
row and publishes the full event.

Rows stay plain dicts here. Each consumer validates the fields it needs
(the Message Store parses full rows, the fan-out only reads "from").
"""

from dataclasses import dataclass
from typing import Any, Optional, Union

INSERT = "insert"
UPDATE = "update"
DELETE = "delete"

KINDS = (INSERT, UPDATE, DELETE)


class MalformedChangeError(ValueError):
    """A change payload that is not one of the three known shapes."""


@dataclass(frozen=True)
class Insert:
    row: dict[str, Any]
    kind: str = INSERT


@dataclass(frozen=True)
class Update:
    old: Optional[dict[str, Any]]
    new: dict[str, Any]
    kind: str = UPDATE


@dataclass(frozen=True)
class Delete:
    old: dict[str, Any]
    kind: str = DELETE


ChangeEvent = Union[Insert, Update, Delete]


@dataclass(frozen=True)
class ChangeNotice:
    """What the database trigger sends: which row changed and how."""

    kind: str
    id: int


def decode_change(payload: Any) -> ChangeEvent:
    """Decode a raw change payload. Raises MalformedChangeError."""
    if not isinstance(payload, dict):
        raise MalformedChangeError(f"payload is {type(payload).__name__}, not an object")

    event_type = str(payload.get("eventType", "")).lower()
    new = payload.get("new")
    old = payload.get("old")

    if event_type == INSERT:
        if not isinstance(new, dict):
            raise MalformedChangeError("insert without a new row")
        return Insert(row=new)
    if event_type == UPDATE:
        if not isinstance(new, dict):
            raise MalformedChangeError("update without a new row")
        return Update(old=old if isinstance(old, dict) else None, new=new)
    if event_type == DELETE:
        if not isinstance(old, dict) or "id" not in old:
            raise MalformedChangeError("delete without an old row id")
        return Delete(old=old)

    raise MalformedChangeError(f"unknown eventType {payload.get('eventType')!r}")


def decode_notice(payload: Any) -> ChangeNotice:
    """Decode an id-only NOTIFY payload ({"eventType", "id"}). Raises MalformedChangeError."""
    if not isinstance(payload, dict):
        raise MalformedChangeError(f"payload is {type(payload).__name__}, not an object")

    kind = str(payload.get("eventType", "")).lower()
    if kind not in KINDS:
        raise MalformedChangeError(f"unknown eventType {payload.get('eventType')!r}")
    try:
        message_id = int(payload["id"])
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedChangeError(f"notice without a usable id: {payload!r}") from e
    return ChangeNotice(kind=kind, id=message_id)


def encode_change(event: ChangeEvent) -> dict[str, Any]:
    """Inverse of decode_change, in the trigger's wire shape."""
    if isinstance(event, Insert):
        return {"eventType": "INSERT", "new": event.row, "old": None}
    if isinstance(event, Update):
        return {"eventType": "UPDATE", "new": event.new, "old": event.old}
    return {"eventType": "DELETE", "new": None, "old": event.old}


def make_change(kind: str, row: dict[str, Any]) -> ChangeEvent:
    """Build an event from (kind, row) as used by apply_remote_event."""
    kind = kind.lower()
    if kind == INSERT:
        return Insert(row=row)
    if kind == UPDATE:
        return Update(old=None, new=row)
    if kind == DELETE:
        return Delete(old=row)
    raise MalformedChangeError(f"unknown change kind {kind!r}")

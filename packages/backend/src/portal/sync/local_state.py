"""Locally persisted client state: read markers and AI-reply toggles.

Learn: read-state is deliberately local-only — it lives in one JSON file
per client and is never sent to the server:

    {"read": [101, 102, ...], "ai_disabled": ["447700900123", ...]}

A missing or corrupt file is not an error; the client starts with
everything unread rather than refusing to start.
"""

import contextlib
import json
import os
import tempfile
from pathlib import Path
from typing import Iterable, Union

import structlog

logger = structlog.get_logger()


class LocalState:
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.read_ids: set[int] = set()
        self.ai_disabled: set[str] = set()
        self.load()

    def load(self) -> None:
        if not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            self.read_ids = {int(i) for i in data.get("read", [])}
            self.ai_disabled = {str(c) for c in data.get("ai_disabled", [])}
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning("local_state.load_failed", path=str(self.path), error=str(e))

    def save(self) -> None:
        payload = json.dumps(
            {"read": sorted(self.read_ids), "ai_disabled": sorted(self.ai_disabled)}
        )
        tmp = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".portal-state-")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp, self.path)
        except OSError as e:
            if tmp is not None:
                with contextlib.suppress(OSError):
                    os.unlink(tmp)
            logger.warning("local_state.save_failed", path=str(self.path), error=str(e))

    def mark_read(self, ids: Iterable[int]) -> int:
        """Add ids to the read set and persist. Returns how many were new."""
        new = set(ids) - self.read_ids
        if new:
            self.read_ids |= new
            self.save()
        return len(new)

    def is_read(self, message_id: int) -> bool:
        return message_id in self.read_ids

    def set_ai_enabled(self, conversation_id: str, enabled: bool) -> None:
        if enabled:
            self.ai_disabled.discard(conversation_id)
        else:
            self.ai_disabled.add(conversation_id)
        self.save()

    def ai_enabled(self, conversation_id: str) -> bool:
        return conversation_id not in self.ai_disabled

"""Bounded log of operator-facing monitoring events."""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Deque

logger = logging.getLogger(__name__)

CATEGORIES = ("monitoring", "recording", "sync", "analysis")


@dataclass(slots=True)
class EventEntry:
    """A single event shown to whoever watches the monitor."""

    timestamp: float
    category: str
    event: str
    message: str
    metadata: dict[str, object] | None = None

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "timestamp": self.timestamp,
            "category": self.category,
            "event": self.event,
            "message": self.message,
        }
        if self.metadata:
            payload["metadata"] = self.metadata
        return payload


class EventLog:
    """Thread-safe ring of events, optionally mirrored to a JSON-lines file."""

    def __init__(self, path: Path | str | None = None, *, max_entries: int = 200) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._path: Path | None = Path(path) if path is not None else None
        self._entries: Deque[EventEntry] = deque(maxlen=max_entries)
        self._lock = threading.Lock()
        if self._path is not None:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                logger.warning("Unable to prepare event log directory: %s", exc)
                self._path = None

    @property
    def path(self) -> Path | None:
        return self._path

    def record(
        self,
        category: str,
        event: str,
        message: str,
        **metadata: object,
    ) -> EventEntry:
        """Append an event; ``None`` metadata values are dropped."""

        cleaned = category.strip() if isinstance(category, str) else ""
        if cleaned not in CATEGORIES:
            cleaned = "monitoring"
        entry = EventEntry(
            timestamp=time.time(),
            category=cleaned,
            event=event,
            message=message,
            metadata={key: value for key, value in metadata.items() if value is not None} or None,
        )
        with self._lock:
            self._entries.append(entry)
            self._append_persistent(entry)
        return entry

    def tail(self, limit: int | None = None, *, category: str | None = None) -> list[EventEntry]:
        """Return the most recent entries, oldest first."""

        with self._lock:
            entries = list(self._entries)
        if category:
            entries = [entry for entry in entries if entry.category == category]
        if limit is not None:
            entries = entries[-max(1, int(limit)):]
        return entries

    def _append_persistent(self, entry: EventEntry) -> None:
        if self._path is None:
            return
        try:
            with self._path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(entry.to_dict(), separators=(",", ":"), default=str) + "\n")
        except OSError as exc:
            logger.warning("Unable to persist event log: %s", exc)


__all__ = ["CATEGORIES", "EventEntry", "EventLog"]

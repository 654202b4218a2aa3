"""Recent-uploads history for Chibisafe Uploader.

Keeps the last few successful uploads, most recent first, in a JSON
file next to the configuration so the tray menu can offer them again
after a restart.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 10


@dataclass(frozen=True)
class RecentUploadEntry:
    """One successful upload."""
    filename: str
    url: str
    timestamp: float

    @property
    def timestamp_str(self) -> str:
        """Human-readable upload time."""
        return datetime.fromtimestamp(self.timestamp).strftime("%Y-%m-%d %H:%M:%S")


class HistoryStore(Protocol):
    """Durable ordered list with atomic read-modify-write."""

    def read(self) -> list[dict[str, Any]]:
        ...

    def update(
        self, fn: Callable[[list[dict[str, Any]]], list[dict[str, Any]]]
    ) -> list[dict[str, Any]]:
        """Apply *fn* to the stored list and persist the result atomically."""
        ...


class JsonHistoryStore:
    """Thread-safe :class:`HistoryStore` backed by a JSON file."""

    def __init__(self, path: Path):
        self._path = path
        self._lock = threading.Lock()

    def _load(self) -> list[dict[str, Any]]:
        if not self._path.exists():
            return []
        try:
            with open(self._path, encoding="utf-8") as fh:
                stored = json.load(fh)
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Could not read upload history (%s); starting empty.", exc)
            return []
        if not isinstance(stored, list):
            logger.warning("Upload history at %s is not a list; ignoring it.", self._path)
            return []
        return [item for item in stored if isinstance(item, dict)]

    def _save(self, items: list[dict[str, Any]]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(items, fh, indent=2)
        tmp.replace(self._path)

    def read(self) -> list[dict[str, Any]]:
        with self._lock:
            return self._load()

    def update(
        self, fn: Callable[[list[dict[str, Any]]], list[dict[str, Any]]]
    ) -> list[dict[str, Any]]:
        with self._lock:
            items = fn(self._load())
            try:
                self._save(items)
            except OSError as exc:
                logger.error("Failed to save upload history: %s", exc)
            return items


class RecentUploads:
    """Bounded, most-recent-first list of successful uploads."""

    def __init__(self, store: HistoryStore, limit: int = DEFAULT_HISTORY_LIMIT):
        self._store = store
        self._limit = max(1, limit)

    @property
    def limit(self) -> int:
        return self._limit

    def add(self, filename: str, url: str, timestamp: float | None = None) -> RecentUploadEntry:
        """Prepend an entry and drop anything beyond the limit."""
        entry = RecentUploadEntry(filename, url, timestamp if timestamp is not None else time.time())
        self._store.update(lambda items: [asdict(entry), *items][: self._limit])
        return entry

    def entries(self) -> list[RecentUploadEntry]:
        result = []
        for item in self._store.read():
            try:
                result.append(
                    RecentUploadEntry(
                        filename=str(item["filename"]),
                        url=str(item["url"]),
                        timestamp=float(item["timestamp"]),
                    )
                )
            except (KeyError, TypeError, ValueError):
                logger.debug("Dropping malformed history entry: %r", item)
        return result

    def clear(self) -> None:
        self._store.update(lambda items: [])
        logger.info("Upload history cleared.")

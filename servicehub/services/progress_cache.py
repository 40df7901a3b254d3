"""Bounded per-process TTL cache for progress analytics.

Entries expire after ``ttl_seconds`` and the oldest entry is evicted once
``max_entries`` is reached. Every write to a booking invalidates its key.
Nothing here is shared across workers.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any


@dataclass
class _CacheEntry:
    value: Any
    expires_at: datetime


def _now() -> datetime:
    return datetime.now(UTC)


class ProgressCache:
    def __init__(self, ttl_seconds: int = 300, max_entries: int = 1024) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._entries: OrderedDict[str, _CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if not entry:
                return None
            if entry.expires_at <= _now():
                self._entries.pop(key, None)
                return None
            return entry.value

    def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_entries:
                self._entries.popitem(last=False)
            self._entries[key] = _CacheEntry(value=value, expires_at=_now() + timedelta(seconds=ttl))

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def analytics_key(booking_id) -> str:
    return f"progress_analytics:{booking_id}"

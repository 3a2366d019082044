"""Content-addressed embedding cache with a fixed TTL."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Sequence

from scoped_workspace.core.logging import get_logger
from scoped_workspace.utils.hashing import sha256_text
from scoped_workspace.utils.time import Clock, now_s

logger = get_logger(__name__)


@dataclass(slots=True, frozen=True)
class EmbeddingCacheEntry:
    vector: tuple[float, ...]
    computed_at: float


def cache_key(text: str, model: str) -> str:
    return sha256_text(text, model)


class EmbeddingCache:
    """Entries older than ``ttl`` read as absent.

    When the cache grows past ``max_entries`` only stale entries are trimmed,
    so it may stay above the threshold until entries age out.
    """

    def __init__(self, ttl: float, max_entries: int, clock: Clock = now_s) -> None:
        self.ttl = ttl
        self.max_entries = max_entries
        self.clock = clock
        self._entries: dict[str, EmbeddingCacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> list[float] | None:
        with self._lock:
            entry = self._entries.get(key)
        if entry is None or self.clock() - entry.computed_at >= self.ttl:
            return None
        return list(entry.vector)

    def put(self, key: str, vector: Sequence[float]) -> None:
        entry = EmbeddingCacheEntry(vector=tuple(vector), computed_at=self.clock())
        with self._lock:
            self._entries[key] = entry
            oversized = len(self._entries) > self.max_entries
        if oversized:
            self.trim()

    def trim(self) -> int:
        """Drop entries older than the TTL; returns how many were removed."""
        now = self.clock()
        with self._lock:
            stale = [key for key, entry in self._entries.items() if now - entry.computed_at >= self.ttl]
            for key in stale:
                del self._entries[key]
            remaining = len(self._entries)
        if stale:
            logger.debug("Trimmed embedding cache", extra={"ctx_removed": len(stale), "ctx_remaining": remaining})
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = ["EmbeddingCache", "EmbeddingCacheEntry", "cache_key"]

"""
Memory tiers: short-term ring buffer, long-term keyed store, episodic log.
"""

from __future__ import annotations

import math
import threading
from collections import deque
from collections.abc import Iterator

from .items import MemoryItem, MemoryTier


class ShortTermMemory:
    """Fixed-capacity ring buffer; the oldest item is evicted first."""

    def __init__(self, capacity: int = 50):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._items: deque[MemoryItem] = deque(maxlen=capacity)

    def append(self, item: MemoryItem) -> None:
        item.tier = MemoryTier.SHORT
        self._items.append(item)

    def items(self) -> list[MemoryItem]:
        return list(self._items)

    def remove_expired(self, now: float) -> int:
        kept = [i for i in self._items if not i.is_expired(now)]
        removed = len(self._items) - len(kept)
        if removed:
            self._items = deque(kept, maxlen=self.capacity)
        return removed

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[MemoryItem]:
        return iter(list(self._items))


class LongTermMemory:
    """Bounded store keyed by semantic key.

    When full, the entry with the lowest combined recency and frequency
    score is evicted: ``log1p(access_count) + 0.5 ** (idle / recency_window)``.
    """

    def __init__(self, capacity: int = 500, recency_window: float = 3600.0):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self.recency_window = recency_window
        self._items: dict[str, MemoryItem] = {}

    def put(self, item: MemoryItem, now: float) -> bool:
        """Insert or merge *item*. Returns True when a new key was created."""
        item.tier = MemoryTier.LONG
        existing = self._items.get(item.key)
        if existing is not None:
            existing.content = item.content
            existing.importance = max(existing.importance, item.importance)
            existing.metadata.update(item.metadata)
            existing.expires_at = item.expires_at
            existing.touch(now)
            return False

        if len(self._items) >= self.capacity:
            self._evict(now)
        item.last_accessed = item.last_accessed or now
        self._items[item.key] = item
        return True

    def get(self, key: str, now: float) -> MemoryItem | None:
        item = self._items.get(key)
        if item is not None:
            item.touch(now)
        return item

    def peek(self, key: str) -> MemoryItem | None:
        return self._items.get(key)

    def remove_expired(self, now: float) -> int:
        expired = [k for k, i in self._items.items() if i.is_expired(now)]
        for key in expired:
            del self._items[key]
        return len(expired)

    def items(self) -> list[MemoryItem]:
        return list(self._items.values())

    def keys(self) -> list[str]:
        return list(self._items)

    def _retention_score(self, item: MemoryItem, now: float) -> float:
        idle = max(0.0, now - item.last_accessed)
        return math.log1p(item.access_count) + 0.5 ** (idle / self.recency_window)

    def _evict(self, now: float) -> None:
        victim = min(
            self._items.values(),
            key=lambda i: (self._retention_score(i, now), i.last_accessed),
        )
        del self._items[victim.key]

    def __contains__(self, key: str) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)


class EpisodicLog:
    """Append-only log of complete task executions, FIFO-capped.

    The log may be shared between agents, so appends take a lock. Entries
    are never edited; they leave only by FIFO eviction or expiry.
    """

    def __init__(self, capacity: int = 200):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._entries: deque[MemoryItem] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def append(self, item: MemoryItem) -> None:
        item.tier = MemoryTier.EPISODIC
        with self._lock:
            self._entries.append(item)

    def entries(self) -> list[MemoryItem]:
        with self._lock:
            return list(self._entries)

    def by_task_type(self) -> dict[str, list[MemoryItem]]:
        groups: dict[str, list[MemoryItem]] = {}
        for entry in self.entries():
            task_type = entry.metadata.get("task_type", "unknown")
            groups.setdefault(task_type, []).append(entry)
        return groups

    def remove_expired(self, now: float) -> int:
        with self._lock:
            kept = [e for e in self._entries if not e.is_expired(now)]
            removed = len(self._entries) - len(kept)
            if removed:
                self._entries = deque(kept, maxlen=self.capacity)
            return removed

    def __len__(self) -> int:
        return len(self._entries)

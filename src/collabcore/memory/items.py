"""Memory records and semantic keys."""

from __future__ import annotations

import hashlib
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

_TOKEN_RE = re.compile(r"[a-z0-9]+")

STOPWORDS = frozenset(
    "a an and are as at be by for from has have in is it its of on or that the "
    "this to was were will with".split()
)


class MemoryTier(Enum):
    SHORT = "short"
    LONG = "long"
    EPISODIC = "episodic"


@dataclass
class MemoryItem:
    """A single remembered piece of content."""

    content: str
    importance: float = 0.0
    timestamp: float = field(default_factory=time.time)
    tier: MemoryTier = MemoryTier.SHORT
    key: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    expires_at: float | None = None
    access_count: int = 0
    last_accessed: float = 0.0

    def __post_init__(self) -> None:
        if not self.key:
            self.key = semantic_key(self.content)
        if not self.last_accessed:
            self.last_accessed = self.timestamp

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def touch(self, now: float) -> None:
        self.access_count += 1
        self.last_accessed = now

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "importance": self.importance,
            "timestamp": self.timestamp,
            "tier": self.tier.value,
            "key": self.key,
            "metadata": self.metadata,
            "expires_at": self.expires_at,
            "access_count": self.access_count,
            "last_accessed": self.last_accessed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MemoryItem:
        return cls(
            content=data.get("content", ""),
            importance=float(data.get("importance", 0.0)),
            timestamp=float(data.get("timestamp", time.time())),
            tier=MemoryTier(data.get("tier", "short")),
            key=data.get("key", ""),
            metadata=data.get("metadata", {}),
            expires_at=data.get("expires_at"),
            access_count=int(data.get("access_count", 0)),
            last_accessed=float(data.get("last_accessed", 0.0)),
        )


def tokenize(text: str) -> list[str]:
    """Lowercase word tokens without stopwords."""
    return [t for t in _TOKEN_RE.findall(text.lower()) if t not in STOPWORDS]


def semantic_key(content: str) -> str:
    """Derive a stable key from the distinct content words of *content*.

    Reordered or repeated wording of the same facts maps to the same key.
    """
    words = sorted(set(tokenize(content)))
    digest = hashlib.sha1(" ".join(words).encode("utf-8")).hexdigest()
    return digest[:16]

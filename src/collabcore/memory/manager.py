"""
Per-agent memory: three tiers, consolidation, retrieval and persistence.

An ``AgentMemory`` is mutated only by the agent that owns it. The episodic
log can be shared between several memories; it only ever grows (bounded by
FIFO eviction) and is never edited in place.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any

from ..config import MemoryConfig
from .importance import ImportanceScorer
from .items import MemoryItem, MemoryTier, tokenize
from .persistence import InMemoryBackend, MemoryBackend
from .privacy import sanitize
from .tiers import EpisodicLog, LongTermMemory, ShortTermMemory

logger = logging.getLogger(__name__)

PATTERN_PREFIX = "pattern:"


@dataclass
class ConsolidationReport:
    """What one ``consolidate()`` run changed."""

    promoted: list[str] = field(default_factory=list)
    patterns: list[str] = field(default_factory=list)
    expired: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"promoted": self.promoted, "patterns": self.patterns, "expired": self.expired}


class AgentMemory:
    """Tiered memory owned by a single agent."""

    def __init__(
        self,
        owner_id: str,
        config: MemoryConfig | None = None,
        scorer: ImportanceScorer | None = None,
        episodic: EpisodicLog | None = None,
        backend: MemoryBackend | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.owner_id = owner_id
        self.config = config or MemoryConfig()
        self._clock = clock
        self.scorer = scorer or ImportanceScorer.from_config(self.config, clock)
        self.short_term = ShortTermMemory(self.config.short_term_capacity)
        self.long_term = LongTermMemory(self.config.long_term_capacity)
        self.episodic = episodic if episodic is not None else EpisodicLog(self.config.episodic_capacity)
        self.backend = backend or InMemoryBackend()

    def _new_item(self, content: str, metadata: dict[str, Any] | None, key: str = "") -> MemoryItem:
        now = self._clock()
        return MemoryItem(
            content=sanitize(content),
            timestamp=now,
            key=key,
            metadata=_sanitize_metadata(metadata or {}),
            expires_at=now + self.config.retention_seconds,
        )

    def remember(self, content: str, metadata: dict[str, Any] | None = None) -> MemoryItem:
        """Store *content* in short-term memory with a computed importance."""
        item = self._new_item(content, metadata)
        item.importance = self.scorer.score(item, item.timestamp)
        self.short_term.append(item)
        return item

    def record_episode(
        self,
        task_id: str,
        task_type: str,
        success: bool | None,
        summary: str,
        metadata: dict[str, Any] | None = None,
    ) -> MemoryItem:
        """Append a complete task execution to the episodic log."""
        meta = dict(metadata or {})
        meta.update(
            {"task_id": task_id, "task_type": task_type, "success": success, "agent_id": self.owner_id}
        )
        item = self._new_item(summary, meta)
        item.importance = self.scorer.score(item, item.timestamp)
        self.episodic.append(item)
        return item

    def record_pattern(
        self, key: str, content: str, metadata: dict[str, Any] | None = None
    ) -> MemoryItem:
        """Write a derived entry straight into long-term memory under *key*."""
        meta = {"kind": "pattern", **(metadata or {})}
        item = self._new_item(content, meta, key=key)
        item.importance = 1.0
        self.long_term.put(item, item.timestamp)
        stored = self.long_term.peek(key)
        return stored if stored is not None else item

    def consolidate(self) -> ConsolidationReport:
        """Promote important short-term items and mine episodic patterns.

        Re-running on unchanged state adds nothing: promotion is keyed by the
        semantic key and pattern entries by ``pattern:<task_type>``.
        """
        now = self._clock()
        report = ConsolidationReport(expired=self.purge_expired(now))

        for item in self.short_term:
            item.importance = self.scorer.score(item, now)
            if item.importance < self.config.promotion_threshold:
                continue
            existing = self.long_term.peek(item.key)
            if existing is not None:
                existing.importance = max(existing.importance, item.importance)
                continue
            self.long_term.put(replace(item, metadata=dict(item.metadata)), now)
            report.promoted.append(item.key)

        for task_type, episodes in sorted(self.episodic.by_task_type().items()):
            # Support counts tasks; every agent involved in a task logs its own episode.
            outcomes: dict[str, list[bool]] = {}
            for n, e in enumerate(episodes):
                task_outcomes = outcomes.setdefault(e.metadata.get("task_id") or f"#{n}", [])
                if e.metadata.get("success") is not None:
                    task_outcomes.append(bool(e.metadata["success"]))
            support = len(outcomes)
            if support < self.config.pattern_min_support:
                continue
            known = [results for results in outcomes.values() if results]
            successes = sum(1 for results in known if all(results))
            rate = successes / len(known) if known else 0.0
            key = f"{PATTERN_PREFIX}{task_type}"
            self.record_pattern(
                key,
                f"{task_type}: {support} tasks, success rate {rate:.2f}",
                {"task_type": task_type, "support": support, "success_rate": rate},
            )
            report.patterns.append(key)

        if report.promoted or report.patterns:
            logger.debug(
                f"{self.owner_id}: consolidated {len(report.promoted)} item(s), "
                f"{len(report.patterns)} pattern(s)"
            )
        return report

    def retrieve(
        self,
        query: str,
        tier: MemoryTier | None = None,
        limit: int = 5,
    ) -> list[MemoryItem]:
        """Rank items by token overlap with *query*; ties go to the newest."""
        now = self._clock()
        self.purge_expired(now)
        terms = set(tokenize(query))
        if not terms:
            return []

        scored: list[tuple[float, float, MemoryItem]] = []
        for item in self._candidates(tier):
            words = set(tokenize(item.content))
            if not words:
                continue
            overlap = len(terms & words) / len(terms | words)
            if overlap > 0:
                scored.append((overlap, item.timestamp, item))

        scored.sort(key=lambda entry: (entry[0], entry[1]), reverse=True)
        results = [item for _, _, item in scored[:limit]]
        for item in results:
            if item.tier == MemoryTier.LONG:
                item.touch(now)
        return results

    def _candidates(self, tier: MemoryTier | None) -> list[MemoryItem]:
        if tier == MemoryTier.SHORT:
            return self.short_term.items()
        if tier == MemoryTier.LONG:
            return self.long_term.items()
        if tier == MemoryTier.EPISODIC:
            return self.episodic.entries()
        return self.short_term.items() + self.long_term.items() + self.episodic.entries()

    def patterns(self) -> list[MemoryItem]:
        return [i for i in self.long_term.items() if i.key.startswith(PATTERN_PREFIX)]

    def purge_expired(self, now: float | None = None) -> int:
        now = self._clock() if now is None else now
        removed = (
            self.short_term.remove_expired(now)
            + self.long_term.remove_expired(now)
            + self.episodic.remove_expired(now)
        )
        if removed:
            logger.debug(f"{self.owner_id}: purged {removed} expired item(s)")
        return removed

    def persist(self) -> None:
        """Save the short- and long-term tiers through the backend."""
        self.purge_expired()
        for name, items in (
            ("short_term", self.short_term.items()),
            ("long_term", self.long_term.items()),
        ):
            self.backend.save(self.owner_id, name, json.dumps([i.to_dict() for i in items]))

    def restore(self) -> int:
        """Load previously persisted tiers, skipping expired items."""
        now = self._clock()
        restored = 0
        blob = self.backend.load(self.owner_id, "short_term")
        for data in json.loads(blob) if blob else []:
            item = MemoryItem.from_dict(data)
            if not item.is_expired(now):
                self.short_term.append(item)
                restored += 1
        blob = self.backend.load(self.owner_id, "long_term")
        for data in json.loads(blob) if blob else []:
            item = MemoryItem.from_dict(data)
            if not item.is_expired(now):
                self.long_term.put(item, item.last_accessed)
                restored += 1
        return restored

    def get_stats(self) -> dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "short_term": len(self.short_term),
            "long_term": len(self.long_term),
            "episodic": len(self.episodic),
            "patterns": len(self.patterns()),
        }


def _sanitize_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    return {k: sanitize(v) if isinstance(v, str) else v for k, v in metadata.items()}

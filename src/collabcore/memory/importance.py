"""
Importance scoring for memory items.

score = recency decay x keyword multiplier x outcome weight, clamped to [0, 1].
"""

from __future__ import annotations

import re
import time
from collections.abc import Callable

from ..config import MemoryConfig
from .items import MemoryItem

IDENTITY_MARKERS = [
    r"\bmy name is\b",
    r"\bi am\b",
    r"\bcall me\b",
    r"\bidentity\b",
    r"\bprefer(s|red|ence)?\b",
    r"\bbrand\b",
]
DECISION_MARKERS = [
    r"\bdecid(e|ed|ing)\b",
    r"\bdecision\b",
    r"\bapproved?\b",
    r"\bchos(e|en)\b",
    r"\bwill use\b",
    r"\baction\b",
    r"\bagreed\b",
]


class ImportanceScorer:
    """Scores memory items; parameters come from ``MemoryConfig``."""

    def __init__(
        self,
        half_life_seconds: float = 86400.0,
        identity_multiplier: float = 1.5,
        decision_multiplier: float = 1.3,
        success_weight: float = 1.0,
        unknown_outcome_weight: float = 0.8,
        failure_weight: float = 0.5,
        clock: Callable[[], float] = time.time,
    ):
        if half_life_seconds <= 0:
            raise ValueError("half_life_seconds must be positive")
        self.half_life = half_life_seconds
        self.identity_multiplier = identity_multiplier
        self.decision_multiplier = decision_multiplier
        self.success_weight = success_weight
        self.unknown_outcome_weight = unknown_outcome_weight
        self.failure_weight = failure_weight
        self._clock = clock
        self._identity = [re.compile(p, re.I) for p in IDENTITY_MARKERS]
        self._decision = [re.compile(p, re.I) for p in DECISION_MARKERS]

    @classmethod
    def from_config(cls, config: MemoryConfig, clock: Callable[[], float] = time.time) -> ImportanceScorer:
        return cls(
            half_life_seconds=config.half_life_seconds,
            identity_multiplier=config.identity_multiplier,
            decision_multiplier=config.decision_multiplier,
            success_weight=config.success_weight,
            unknown_outcome_weight=config.unknown_outcome_weight,
            failure_weight=config.failure_weight,
            clock=clock,
        )

    def decay(self, timestamp: float, now: float | None = None) -> float:
        now = self._clock() if now is None else now
        age = max(0.0, now - timestamp)
        return 0.5 ** (age / self.half_life)

    def keyword_multiplier(self, content: str) -> float:
        multiplier = 1.0
        if any(p.search(content) for p in self._identity):
            multiplier *= self.identity_multiplier
        if any(p.search(content) for p in self._decision):
            multiplier *= self.decision_multiplier
        return multiplier

    def outcome_weight(self, success: bool | None) -> float:
        if success is None:
            return self.unknown_outcome_weight
        return self.success_weight if success else self.failure_weight

    def score(self, item: MemoryItem, now: float | None = None) -> float:
        value = (
            self.decay(item.timestamp, now)
            * self.keyword_multiplier(item.content)
            * self.outcome_weight(item.metadata.get("success"))
        )
        return max(0.0, min(1.0, value))

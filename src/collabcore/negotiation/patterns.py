"""
Success-pattern learning for negotiation.

Sessions that reach consensus leave a feature record behind. Records are
summarised into long-term ``pattern`` entries of a memory and used to
pull participants' flexibility toward what worked before.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from ..memory import PATTERN_PREFIX, AgentMemory
from .models import NegotiationSession
from .strategies import Participant

logger = logging.getLogger(__name__)


@dataclass
class FeatureRecord:
    """Features of one successful negotiation."""

    session_id: str
    task_id: str
    kind: str
    rounds: int
    attributes: dict[str, Any] = field(default_factory=dict)
    flexibility: dict[str, float] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    @property
    def mean_flexibility(self) -> float:
        if not self.flexibility:
            return 0.0
        return sum(self.flexibility.values()) / len(self.flexibility)


class SuccessPatternStore:
    def __init__(
        self,
        memory: AgentMemory | None = None,
        learning_rate: float = 0.2,
        max_records: int = 500,
    ):
        if not 0.0 <= learning_rate <= 1.0:
            raise ValueError("learning_rate must be within [0, 1]")
        self.memory = memory
        self.learning_rate = learning_rate
        self._records: deque[FeatureRecord] = deque(maxlen=max_records)
        self._lock = threading.Lock()

    def record(
        self,
        session: NegotiationSession,
        participants: Iterable[Participant],
        kind: str = "general",
    ) -> FeatureRecord | None:
        """Keep the features of *session* if it reached consensus."""
        if not session.consensus:
            return None
        proposal = session.final_proposal
        attributes = dict(proposal.attributes) if proposal else {}
        if proposal is not None:
            attributes.setdefault("length", len(proposal.content))
            attributes.setdefault("modifications", len(proposal.modifications))
        record = FeatureRecord(
            session_id=session.session_id,
            task_id=session.task_id,
            kind=kind,
            rounds=session.round_count,
            attributes=attributes,
            flexibility={p.agent_id: p.flexibility for p in participants},
        )
        with self._lock:
            self._records.append(record)
        self._write_pattern(kind)
        return record

    def records(self, kind: str | None = None) -> list[FeatureRecord]:
        with self._lock:
            return [r for r in self._records if kind is None or r.kind == kind]

    def mean_flexibility(self, kind: str | None = None) -> float | None:
        records = self.records(kind)
        if not records:
            return None
        return sum(r.mean_flexibility for r in records) / len(records)

    def suggest_flexibility(self, current: float, kind: str | None = None) -> float:
        """Move *current* a learning-rate step toward the successful mean."""
        target = self.mean_flexibility(kind)
        if target is None:
            return current
        return current + self.learning_rate * (target - current)

    def apply(self, participants: Iterable[Participant], kind: str | None = None) -> dict[str, float]:
        """Bias each participant's flexibility; returns the new values."""
        updated = {}
        for participant in participants:
            participant.flexibility = self.suggest_flexibility(participant.flexibility, kind)
            updated[participant.agent_id] = participant.flexibility
        return updated

    def _write_pattern(self, kind: str) -> None:
        if self.memory is None:
            return
        records = self.records(kind)
        mean_rounds = sum(r.rounds for r in records) / len(records)
        flexibility = self.mean_flexibility(kind) or 0.0
        self.memory.record_pattern(
            f"{PATTERN_PREFIX}negotiation:{kind}",
            f"{kind} negotiations reach consensus in {mean_rounds:.1f} rounds "
            f"at flexibility {flexibility:.2f}",
            {
                "kind": "pattern",
                "source": "negotiation",
                "support": len(records),
                "mean_rounds": mean_rounds,
                "mean_flexibility": flexibility,
            },
        )
        logger.debug(f"Updated negotiation pattern for {kind} ({len(records)} sessions)")

"""
Negotiation records: proposals, evaluations, rounds and sessions.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..errors import ConsensusFailure


class TerminalReason(Enum):
    CONSENSUS = "consensus"
    MAX_ROUNDS = "max_rounds"
    VETO = "veto"


@dataclass
class Proposal:
    """A candidate result put up for agreement."""

    agent_id: str
    content: str
    approval: float = 0.0
    concerns: list[str] = field(default_factory=list)
    modifications: list[str] = field(default_factory=list)
    attributes: dict[str, Any] = field(default_factory=dict)
    revision: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "content": self.content,
            "approval": self.approval,
            "concerns": list(self.concerns),
            "modifications": list(self.modifications),
            "attributes": dict(self.attributes),
            "revision": self.revision,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Proposal:
        return cls(
            agent_id=data.get("agent_id", ""),
            content=data.get("content", ""),
            approval=float(data.get("approval", 0.0)),
            concerns=list(data.get("concerns", [])),
            modifications=list(data.get("modifications", [])),
            attributes=dict(data.get("attributes", {})),
            revision=int(data.get("revision", 0)),
        )


@dataclass
class Evaluation:
    """One participant's verdict on a proposal."""

    agent_id: str
    approval: float
    concerns: list[str] = field(default_factory=list)
    modifications: list[str] = field(default_factory=list)
    timed_out: bool = False

    def __post_init__(self) -> None:
        self.approval = max(0.0, min(1.0, float(self.approval)))

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "approval": self.approval,
            "concerns": list(self.concerns),
            "modifications": list(self.modifications),
            "timed_out": self.timed_out,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Evaluation:
        return cls(
            agent_id=data.get("agent_id", ""),
            approval=data.get("approval", 0.0),
            concerns=list(data.get("concerns", [])),
            modifications=list(data.get("modifications", [])),
            timed_out=bool(data.get("timed_out", False)),
        )


@dataclass
class NegotiationRound:
    number: int
    proposal: Proposal
    evaluations: list[Evaluation]
    aggregate: float = 0.0

    @property
    def approvals(self) -> dict[str, float]:
        return {e.agent_id: e.approval for e in self.evaluations}

    def to_dict(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "proposal": self.proposal.to_dict(),
            "evaluations": [e.to_dict() for e in self.evaluations],
            "aggregate": self.aggregate,
        }


@dataclass
class NegotiationSession:
    """Full history and outcome of one negotiation."""

    task_id: str
    phase_id: str | None = None
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    rounds: list[NegotiationRound] = field(default_factory=list)
    consensus: bool = False
    terminal_reason: TerminalReason | None = None
    vetoed_by: str | None = None
    veto_reason: str = ""
    final_proposal: Proposal | None = None
    needs_manual_resolution: bool = False
    started_at: float = field(default_factory=time.time)
    finished_at: float | None = None

    @property
    def round_count(self) -> int:
        return len(self.rounds)

    def best_round(self) -> NegotiationRound | None:
        if not self.rounds:
            return None
        # Earliest round wins ties.
        return max(self.rounds, key=lambda r: (r.aggregate, -r.number))

    def raise_for_consensus(self) -> None:
        """Raise ``ConsensusFailure`` unless the session reached consensus."""
        if not self.consensus:
            raise ConsensusFailure(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "task_id": self.task_id,
            "phase_id": self.phase_id,
            "rounds": [r.to_dict() for r in self.rounds],
            "consensus": self.consensus,
            "terminal_reason": self.terminal_reason.value if self.terminal_reason else None,
            "vetoed_by": self.vetoed_by,
            "veto_reason": self.veto_reason,
            "final_proposal": self.final_proposal.to_dict() if self.final_proposal else None,
            "needs_manual_resolution": self.needs_manual_resolution,
        }

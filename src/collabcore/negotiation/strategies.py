"""
Consensus strategies.

A strategy decides three things: whether an evaluation set contains a
veto, how approvals aggregate into one score, and how the next proposal
is mediated from the concerns of dissenting participants. The engine
always checks for a veto before aggregating.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol

from ..errors import ValidationError
from .models import Evaluation, Proposal


class Participant(Protocol):
    agent_id: str
    trust_weight: float
    critical: bool
    approval_threshold: float
    flexibility: float

    async def evaluate(self, proposal: Proposal, context: dict[str, Any]) -> Evaluation: ...


class WeightedVotingStrategy:
    """Trust-weighted mean of approvals; mediation merges every dissenter."""

    name = "weighted"

    def check_veto(
        self, evaluations: Sequence[Evaluation], participants: dict[str, Participant]
    ) -> Evaluation | None:
        return None

    def aggregate(
        self, evaluations: Sequence[Evaluation], participants: dict[str, Participant]
    ) -> float:
        if not evaluations:
            return 0.0
        weights = [max(0.0, getattr(participants.get(e.agent_id), "trust_weight", 1.0)) for e in evaluations]
        total = sum(weights)
        if total == 0:
            return sum(e.approval for e in evaluations) / len(evaluations)
        return sum(w * e.approval for w, e in zip(weights, evaluations)) / total

    def dissenters(self, evaluations: Sequence[Evaluation], threshold: float) -> list[Evaluation]:
        return [e for e in evaluations if e.approval < threshold]

    def mediate(
        self,
        proposal: Proposal,
        evaluations: Sequence[Evaluation],
        threshold: float,
    ) -> Proposal:
        """Fold the concerns and modifications of dissenters into a new proposal."""
        chosen = self.dissenters(evaluations, threshold)
        concerns = _unique(c for e in chosen for c in e.concerns)
        modifications = _unique(m for e in chosen for m in e.modifications)
        additions = [m for m in modifications if m.lower() not in proposal.content.lower()]
        content = proposal.content
        if additions:
            content = content.rstrip() + "\n" + "\n".join(f"- {m}" for m in additions)
        return Proposal(
            agent_id=proposal.agent_id,
            content=content,
            concerns=concerns,
            modifications=modifications,
            attributes=dict(proposal.attributes),
            revision=proposal.revision + 1,
        )


class VetoStrategy(WeightedVotingStrategy):
    """Weighted voting where critical agents can reject outright."""

    name = "veto"

    def check_veto(
        self, evaluations: Sequence[Evaluation], participants: dict[str, Participant]
    ) -> Evaluation | None:
        for evaluation in evaluations:
            participant = participants.get(evaluation.agent_id)
            if participant is None or not participant.critical:
                continue
            if evaluation.approval < participant.approval_threshold:
                return evaluation
        return None


class CompromiseSearchStrategy(WeightedVotingStrategy):
    """Mediate only between the two lowest-scoring dissenters."""

    name = "compromise"

    def dissenters(self, evaluations: Sequence[Evaluation], threshold: float) -> list[Evaluation]:
        below = sorted(
            (e for e in evaluations if e.approval < threshold),
            key=lambda e: (e.approval, e.agent_id),
        )
        return below[:2]


STRATEGIES: dict[str, type[WeightedVotingStrategy]] = {
    WeightedVotingStrategy.name: WeightedVotingStrategy,
    VetoStrategy.name: VetoStrategy,
    CompromiseSearchStrategy.name: CompromiseSearchStrategy,
}


def get_strategy(name: str) -> WeightedVotingStrategy:
    try:
        return STRATEGIES[name]()
    except KeyError:
        raise ValidationError(
            f"Unknown negotiation strategy '{name}' (known: {sorted(STRATEGIES)})"
        ) from None


def _unique(values: Any) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        seen.setdefault(value, None)
    return list(seen)

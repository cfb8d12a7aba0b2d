"""
Negotiation / Consensus Engine.

Each round every participant evaluates the current proposal concurrently,
bounded by a per-round timeout. A veto ends the session at once; consensus
needs every approval at or above the threshold; otherwise the strategy
mediates a revised proposal for the next round.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from typing import Any

from ..config import NegotiationConfig
from ..errors import ValidationError
from ..observability import EventEmitter, EventType
from .models import Evaluation, NegotiationRound, NegotiationSession, Proposal, TerminalReason
from .patterns import SuccessPatternStore
from .strategies import Participant, WeightedVotingStrategy, get_strategy

logger = logging.getLogger(__name__)


class NegotiationEngine:
    """Runs bounded negotiation sessions between participants."""

    def __init__(
        self,
        config: NegotiationConfig | None = None,
        strategy: WeightedVotingStrategy | None = None,
        emitter: EventEmitter | None = None,
        pattern_store: SuccessPatternStore | None = None,
    ):
        self.config = config or NegotiationConfig()
        self.strategy = strategy or get_strategy(self.config.strategy)
        self.emitter = emitter or EventEmitter()
        self.pattern_store = pattern_store
        self.sessions: list[NegotiationSession] = []

    @property
    def threshold(self) -> float:
        return self.config.consensus_threshold

    async def negotiate(
        self,
        task_id: str,
        proposal: Proposal,
        agents: Sequence[Participant],
        max_rounds: int | None = None,
        phase_id: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> NegotiationSession:
        """Negotiate *proposal* among *agents* for at most *max_rounds* rounds."""
        max_rounds = self.config.max_rounds if max_rounds is None else max_rounds
        if max_rounds < 1:
            raise ValidationError("max_rounds must be >= 1")
        if not agents:
            raise ValidationError("Negotiation needs at least one participant")
        participants = {a.agent_id: a for a in agents}
        if len(participants) != len(agents):
            raise ValidationError("Negotiation participants must have unique ids")

        context = dict(context or {})
        kind = str(context.get("task_type") or "general")
        if self.pattern_store is not None:
            self.pattern_store.apply(agents, kind)

        session = NegotiationSession(task_id=task_id, phase_id=phase_id)
        current = proposal
        for number in range(1, max_rounds + 1):
            evaluations = await self._collect(current, agents, context)
            # A veto short-circuits the round; vetoed proposals are never averaged.
            veto = self.strategy.check_veto(evaluations, participants)
            aggregate = 0.0
            if veto is None:
                aggregate = self.strategy.aggregate(evaluations, participants)
                current.approval = aggregate
            round_ = NegotiationRound(number, current, evaluations, aggregate)
            session.rounds.append(round_)
            self.emitter.emit(
                EventType.NEGOTIATION_ROUND,
                task_id,
                session_id=session.session_id,
                phase_id=phase_id,
                round=number,
                approvals=round_.approvals,
                aggregate=aggregate,
                vetoed_by=veto.agent_id if veto else None,
            )

            if veto is not None:
                session.terminal_reason = TerminalReason.VETO
                session.vetoed_by = veto.agent_id
                session.veto_reason = "; ".join(veto.concerns) or (
                    f"approval {veto.approval:.2f} below personal threshold "
                    f"{participants[veto.agent_id].approval_threshold:.2f}"
                )
                session.final_proposal = current
                session.needs_manual_resolution = True
                logger.warning(
                    f"Negotiation for {task_id} vetoed by {veto.agent_id}: {session.veto_reason}"
                )
                break

            if all(e.approval >= self.threshold for e in evaluations):
                session.consensus = True
                session.terminal_reason = TerminalReason.CONSENSUS
                session.final_proposal = current
                logger.info(f"Consensus for {task_id} after {number} round(s)")
                break

            if number < max_rounds:
                current = self.strategy.mediate(current, evaluations, self.threshold)
        else:
            best = session.best_round()
            session.terminal_reason = TerminalReason.MAX_ROUNDS
            session.final_proposal = best.proposal if best else current
            session.needs_manual_resolution = True
            logger.warning(
                f"No consensus for {task_id} after {max_rounds} round(s); "
                f"best aggregate {best.aggregate if best else 0.0:.2f} flagged for review"
            )

        session.finished_at = time.time()
        self.sessions.append(session)
        if session.consensus and self.pattern_store is not None:
            self.pattern_store.record(session, agents, kind)
        return session

    async def _collect(
        self,
        proposal: Proposal,
        agents: Sequence[Participant],
        context: dict[str, Any],
    ) -> list[Evaluation]:
        timeout = self.config.round_timeout
        snapshot = Proposal.from_dict(proposal.to_dict())

        async def ask(agent: Participant) -> Evaluation:
            try:
                evaluation = await asyncio.wait_for(agent.evaluate(snapshot, context), timeout)
            except asyncio.TimeoutError:
                logger.warning(f"{agent.agent_id} did not evaluate within {timeout}s")
                return Evaluation(
                    agent.agent_id,
                    0.0,
                    concerns=[f"no evaluation within {timeout}s"],
                    timed_out=True,
                )
            except Exception as exc:
                logger.warning(f"{agent.agent_id} failed to evaluate: {exc}")
                return Evaluation(agent.agent_id, 0.0, concerns=[f"evaluation failed: {exc}"])
            evaluation.agent_id = agent.agent_id
            return evaluation

        evaluations = await asyncio.gather(*(ask(a) for a in agents))
        return sorted(evaluations, key=lambda e: e.agent_id)

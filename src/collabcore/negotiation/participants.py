"""
Negotiation participants that live behind the communication bus.
"""

from __future__ import annotations

from typing import Any

from ..agents.base import MessageType
from ..agents.communication import AgentCommunicationBus
from ..errors import TransientError
from .models import Evaluation, Proposal


class BusParticipant:
    """Forwards evaluation requests to an agent over the bus.

    The remote agent answers through its message handler (see
    ``Agent.handle_message``). A missing reply surfaces as ``TimeoutError``,
    which the engine turns into a zero-approval evaluation.
    """

    def __init__(
        self,
        bus: AgentCommunicationBus,
        agent_id: str,
        sender_id: str = "negotiation",
        trust_weight: float = 1.0,
        critical: bool = False,
        approval_threshold: float = 0.7,
        flexibility: float = 0.5,
        timeout: float | None = None,
    ):
        self.bus = bus
        self.agent_id = agent_id
        self.sender_id = sender_id
        self.trust_weight = trust_weight
        self.critical = critical
        self.approval_threshold = approval_threshold
        self.flexibility = flexibility
        self.timeout = timeout

    async def evaluate(self, proposal: Proposal, context: dict[str, Any]) -> Evaluation:
        result = await self.bus.send_message(
            self.sender_id,
            self.agent_id,
            {"proposal": proposal.to_dict(), "context": context},
            msg_type=MessageType.EVALUATION_REQUEST,
            requires_response=True,
            timeout=self.timeout,
        )
        if not result.ok or not isinstance(result.response, dict):
            raise TransientError(result.error or f"{self.agent_id} sent no evaluation")
        evaluation = Evaluation.from_dict(result.response)
        evaluation.agent_id = self.agent_id
        return evaluation

"""
Base Agent Types for Multi-Agent Orchestration.

This module defines the message types exchanged over the bus, agent
capabilities and performance statistics, and the single concrete
``Agent`` type. Role-specific behaviour lives in a strategy object
(see ``strategies.RoleStrategy``) instead of agent subclasses.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..errors import ValidationError
from ..memory import AgentMemory, MemoryItem
from ..negotiation.models import Evaluation, Proposal
from ..tools import ToolRegistry, ToolResult
from .lifecycle import AgentLifecycle, AgentState

if TYPE_CHECKING:
    from .communication import AgentCommunicationBus, DeliveryResult
    from .strategies import RoleStrategy

logger = logging.getLogger(__name__)


class MessageType(Enum):
    """Types of messages that can be exchanged between agents."""

    # Task-related messages
    TASK_ASSIGN = "task_assign"
    TASK_COMPLETE = "task_complete"
    TASK_FAIL = "task_fail"
    FEEDBACK = "feedback"

    # Coordination messages
    STATUS_REQUEST = "status_request"
    STATUS_RESPONSE = "status_response"

    # Data exchange messages
    DATA_REQUEST = "data_request"
    DATA_RESPONSE = "data_response"
    DATA_PUSH = "data_push"

    # Negotiation messages
    EVALUATION_REQUEST = "evaluation_request"
    EVALUATION_RESPONSE = "evaluation_response"

    # Error handling
    ERROR = "error"


class MessageStatus(Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


@dataclass
class AgentMessage:
    """Message exchanged between agents."""

    msg_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    msg_type: MessageType = MessageType.DATA_PUSH
    sender_id: str = ""
    recipient_id: str = ""
    topic: str = ""
    timestamp: float = field(default_factory=time.time)
    payload: dict[str, Any] = field(default_factory=dict)
    correlation_id: str = ""
    requires_response: bool = False
    status: MessageStatus = MessageStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        """Convert message to dictionary."""
        return {
            "msg_id": self.msg_id,
            "msg_type": self.msg_type.value,
            "sender_id": self.sender_id,
            "recipient_id": self.recipient_id,
            "topic": self.topic,
            "timestamp": self.timestamp,
            "payload": self.payload,
            "correlation_id": self.correlation_id,
            "requires_response": self.requires_response,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AgentMessage:
        """Create message from dictionary."""
        return cls(
            msg_id=data.get("msg_id", str(uuid.uuid4())),
            msg_type=MessageType(data.get("msg_type", "data_push")),
            sender_id=data.get("sender_id", ""),
            recipient_id=data.get("recipient_id", ""),
            topic=data.get("topic", ""),
            timestamp=data.get("timestamp", time.time()),
            payload=data.get("payload", {}),
            correlation_id=data.get("correlation_id", ""),
            requires_response=data.get("requires_response", False),
            status=MessageStatus(data.get("status", "pending")),
        )


@dataclass
class AgentCapability:
    """A named skill an agent may use, backed by a registered tool."""

    name: str
    description: str = ""
    tool_name: str = ""

    def __post_init__(self) -> None:
        if not self.tool_name:
            self.tool_name = self.name


@dataclass
class AgentStats:
    """Performance figures used for agent selection.

    ``initial_success_rate`` is reported until the agent has finished at
    least one task.
    """

    tasks_completed: int = 0
    tasks_failed: int = 0
    total_latency: float = 0.0
    last_assigned_at: float = 0.0
    initial_success_rate: float = 1.0

    @property
    def total(self) -> int:
        return self.tasks_completed + self.tasks_failed

    @property
    def success_rate(self) -> float:
        if not self.total:
            return self.initial_success_rate
        return self.tasks_completed / self.total

    @property
    def mean_latency(self) -> float:
        return self.total_latency / self.total if self.total else 0.0

    def record(self, success: bool, latency: float) -> None:
        if success:
            self.tasks_completed += 1
        else:
            self.tasks_failed += 1
        self.total_latency += max(0.0, latency)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tasks_completed": self.tasks_completed,
            "tasks_failed": self.tasks_failed,
            "success_rate": self.success_rate,
            "mean_latency": self.mean_latency,
            "last_assigned_at": self.last_assigned_at,
        }


@dataclass
class Decision:
    """What an agent decided to do: one capability with its parameters."""

    agent_id: str
    capability: str
    params: dict[str, Any] = field(default_factory=dict)
    rationale: str = ""
    task_id: str | None = None
    recalled: list[str] = field(default_factory=list)


@dataclass
class ActionResult:
    """Outcome of ``Agent.act``."""

    agent_id: str
    capability: str
    output: Any = None
    success: bool = True
    degraded: bool = False
    duration: float = 0.0
    error: str | None = None
    task_id: str | None = None
    tool_result: ToolResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "capability": self.capability,
            "output": self.output,
            "success": self.success,
            "degraded": self.degraded,
            "duration": self.duration,
            "error": self.error,
            "task_id": self.task_id,
        }


class Agent:
    """A role-bound unit of reasoning and action.

    Args:
        agent_id: Unique identifier.
        role: Role id; must be known to the registry's role table.
        capabilities: Skills the agent may use. Each maps to a tool.
        strategy: Role behaviour implementing ``evaluate`` and ``execute``.
        tools: Registry through which every capability is invoked.
        memory: The agent's own memory; created when omitted.
        trust_weight: Weight of this agent's vote in weighted negotiation.
        flexibility: Willingness in [0, 1] to approve imperfect proposals.
        approval_threshold: Personal threshold used by the veto strategy.
        critical: Whether this agent may veto a proposal.
        consolidate_every: Run memory consolidation every N reflections.
    """

    def __init__(
        self,
        agent_id: str,
        role: str,
        capabilities: list[AgentCapability],
        strategy: RoleStrategy,
        tools: ToolRegistry | None = None,
        memory: AgentMemory | None = None,
        trust_weight: float = 1.0,
        flexibility: float = 0.5,
        approval_threshold: float = 0.7,
        critical: bool = False,
        consolidate_every: int = 10,
        stats: AgentStats | None = None,
    ):
        if not capabilities:
            raise ValidationError(f"Agent {agent_id} needs at least one capability")
        self.agent_id = agent_id
        self.role = role
        self.capabilities = list(capabilities)
        self.strategy = strategy
        self.tools = tools
        self.memory = memory or AgentMemory(agent_id)
        self.trust_weight = trust_weight
        self.flexibility = flexibility
        self.approval_threshold = approval_threshold
        self.critical = critical
        self.consolidate_every = max(1, consolidate_every)
        self.stats = stats or AgentStats()
        self.lifecycle = AgentLifecycle(agent_id)
        self._reflections = 0

    @property
    def state(self) -> AgentState:
        return self.lifecycle.state

    @property
    def capability_names(self) -> list[str]:
        return [c.name for c in self.capabilities]

    @property
    def tool_names(self) -> list[str]:
        return [c.tool_name for c in self.capabilities]

    def get_capability(self, name: str) -> AgentCapability | None:
        """Get a capability by name."""
        for cap in self.capabilities:
            if cap.name == name:
                return cap
        return None

    def has_capability(self, name: str) -> bool:
        """Check if agent has a specific capability."""
        return self.get_capability(name) is not None

    def think(self, context: dict[str, Any]) -> Decision:
        """Decide on one capability to use for *context*."""
        query = " ".join(
            str(context.get(k, "")) for k in ("objective", "phase", "task_type") if context.get(k)
        )
        recalled = self.memory.retrieve(query, limit=3) if query else []
        decision = self.strategy.execute(context, self, recalled)
        if not self.has_capability(decision.capability):
            raise ValidationError(
                f"Agent {self.agent_id} decided on undeclared capability '{decision.capability}'"
            )
        decision.agent_id = self.agent_id
        decision.task_id = decision.task_id or context.get("task_id")
        decision.recalled = [item.key for item in recalled]
        return decision

    async def act(self, decision: Decision) -> ActionResult:
        """Invoke the decision's tool through the tool registry."""
        if self.tools is None:
            raise ValidationError(f"Agent {self.agent_id} has no tool registry")
        cap = self.get_capability(decision.capability)
        if cap is None:
            raise ValidationError(f"Unknown capability '{decision.capability}'")

        tool_result = await self.tools.invoke(
            cap.tool_name,
            decision.params,
            capabilities=self.tool_names,
            task_id=decision.task_id,
        )
        result = ActionResult(
            agent_id=self.agent_id,
            capability=cap.name,
            output=tool_result.output,
            success=not tool_result.degraded,
            degraded=tool_result.degraded,
            duration=tool_result.duration,
            error=tool_result.error,
            task_id=decision.task_id,
            tool_result=tool_result,
        )
        self.memory.remember(
            f"{self.role} used {cap.name}: {decision.rationale}".strip(),
            metadata={"task_id": decision.task_id, "capability": cap.name, "kind": "action"},
        )
        return result

    def reflect(self, result: ActionResult) -> MemoryItem:
        """Store the outcome of *result* and consolidate every N reflections."""
        outcome = "succeeded" if result.success else "failed"
        summary = _summarize(result.output if result.success else result.error)
        item = self.memory.remember(
            f"{result.capability} {outcome}: {summary}",
            metadata={
                "task_id": result.task_id,
                "capability": result.capability,
                "success": result.success,
                "kind": "reflection",
            },
        )
        self._reflections += 1
        if self._reflections % self.consolidate_every == 0:
            self.memory.consolidate()
        return item

    async def run(self, context: dict[str, Any]) -> ActionResult:
        """One full think-act-reflect cycle for an assignment."""
        task_id = context.get("task_id")
        # Already reserved for this task by the registry.
        if task_id is None or not (
            self.state == AgentState.WORKING and self.lifecycle.current_task == task_id
        ):
            self.lifecycle.assign(task_id)
        self.stats.last_assigned_at = time.monotonic()
        started = time.monotonic()
        try:
            decision = self.think(context)
            result = await self.act(decision)
        except asyncio.CancelledError:
            self.lifecycle.reset("cancelled")
            raise
        except Exception as exc:
            self.stats.record(False, time.monotonic() - started)
            self.memory.remember(
                f"{self.role} failed on {task_id or 'task'}: {exc}",
                metadata={"task_id": task_id, "success": False, "kind": "failure"},
            )
            self.lifecycle.fail(exc)
            logger.warning(f"Agent {self.agent_id} failed: {type(exc).__name__}: {exc}")
            raise

        self.reflect(result)
        self.stats.record(result.success, time.monotonic() - started)
        self.lifecycle.complete()
        return result

    async def evaluate(self, proposal: Proposal, context: dict[str, Any] | None = None) -> Evaluation:
        """Score *proposal* for negotiation."""
        evaluation = self.strategy.evaluate(proposal, context or {}, self)
        evaluation.agent_id = self.agent_id
        return evaluation

    async def consult(
        self,
        bus: AgentCommunicationBus,
        recipient: str,
        payload: dict[str, Any],
        timeout: float | None = None,
    ) -> DeliveryResult:
        """Ask another agent over the bus, blocked until the reply arrives."""
        self.lifecycle.block(f"waiting on {recipient}")
        try:
            return await bus.send_message(
                self.agent_id,
                recipient,
                payload,
                msg_type=MessageType.DATA_REQUEST,
                requires_response=True,
                timeout=timeout,
            )
        finally:
            self.lifecycle.resume()

    async def handle_message(self, message: AgentMessage) -> dict[str, Any] | None:
        """Answer requests delivered by the bus."""
        if message.msg_type == MessageType.EVALUATION_REQUEST:
            proposal = Proposal.from_dict(message.payload.get("proposal", {}))
            evaluation = await self.evaluate(proposal, message.payload.get("context", {}))
            return evaluation.to_dict()
        if message.msg_type == MessageType.STATUS_REQUEST:
            return self.status()
        if message.msg_type == MessageType.FEEDBACK:
            self.memory.remember(
                str(message.payload.get("feedback", "")),
                metadata={"kind": "feedback", "from": message.sender_id},
            )
        return None

    def status(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "role": self.role,
            "state": self.state.value,
            "current_task": self.lifecycle.current_task,
            "capabilities": self.capability_names,
            "stats": self.stats.to_dict(),
        }


def _summarize(value: Any, limit: int = 200) -> str:
    text = str(value) if value is not None else ""
    return text if len(text) <= limit else text[: limit - 3] + "..."

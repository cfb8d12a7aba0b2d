"""
Role strategies and the role table.

Every agent is the same ``Agent`` type; what a role does is decided by a
strategy object with two methods, ``execute`` (choose an action) and
``evaluate`` (judge a proposal). Roles are looked up in a ``RoleTable``
that is validated when agents are registered.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

from ..errors import ValidationError
from ..memory import MemoryItem
from ..negotiation.models import Evaluation, Proposal
from .base import Agent, Decision


class RoleStrategy(Protocol):
    def execute(
        self, context: dict[str, Any], agent: Agent, recalled: list[MemoryItem]
    ) -> Decision: ...

    def evaluate(self, proposal: Proposal, context: dict[str, Any], agent: Agent) -> Evaluation: ...


class RuleBasedStrategy:
    """Keyword-driven role behaviour.

    ``execute`` builds a single text parameter for the role's capability out
    of the objective, the previous step's output, reviewer feedback and
    recalled memories. ``evaluate`` approves a proposal by the share of
    ``criteria`` terms it mentions, softened by the agent's flexibility.
    """

    def __init__(
        self,
        capability: str,
        param: str = "prompt",
        criteria: Iterable[str] = (),
        leniency: float = 0.5,
    ):
        self.capability = capability
        self.param = param
        self.criteria = [c.lower() for c in criteria]
        self.leniency = leniency

    def execute(
        self, context: dict[str, Any], agent: Agent, recalled: list[MemoryItem]
    ) -> Decision:
        parts = [str(context.get("objective", ""))]
        if context.get("inputs"):
            parts.append(f"Input: {context['inputs']}")
        for item in context.get("feedback") or []:
            fix = item.get("suggested_fix") if isinstance(item, dict) else item
            parts.append(f"Fix: {fix}")
        if recalled:
            parts.append("Notes: " + "; ".join(m.content for m in recalled))
        return Decision(
            agent_id=agent.agent_id,
            capability=self.capability,
            params={self.param: "\n".join(p for p in parts if p)},
            rationale=f"{agent.role} handles {context.get('phase', 'the task')}",
            task_id=context.get("task_id"),
        )

    def evaluate(self, proposal: Proposal, context: dict[str, Any], agent: Agent) -> Evaluation:
        text = proposal.content.lower()
        missing = [term for term in self.criteria if term not in text]
        base = 1.0 - len(missing) / len(self.criteria) if self.criteria else 1.0
        approval = base + (1.0 - base) * agent.flexibility * self.leniency
        return Evaluation(
            agent_id=agent.agent_id,
            approval=approval,
            concerns=[f"does not mention '{term}'" for term in missing],
            modifications=missing,
        )


@dataclass
class RoleSpec:
    """Entry of the role table."""

    role: str
    strategy_factory: Callable[[], RoleStrategy]
    required_capabilities: list[str] = field(default_factory=list)
    description: str = ""


class RoleTable:
    """Lookup table from role id to its behaviour, validated up front."""

    def __init__(self, specs: Iterable[RoleSpec] | None = None):
        self._specs: dict[str, RoleSpec] = {}
        self._lock = threading.RLock()
        for spec in specs or []:
            self.register(spec)

    def register(self, spec: RoleSpec) -> None:
        with self._lock:
            if spec.role in self._specs:
                raise ValidationError(f"Role {spec.role} already defined")
            self._specs[spec.role] = spec

    def get(self, role: str) -> RoleSpec:
        with self._lock:
            spec = self._specs.get(role)
        if spec is None:
            raise ValidationError(f"Unknown role: {role}")
        return spec

    def roles(self) -> list[str]:
        with self._lock:
            return sorted(self._specs)

    def __contains__(self, role: str) -> bool:
        return role in self._specs

    def validate(self, agent: Agent) -> None:
        """Check that *agent*'s role exists and it has the role's capabilities."""
        spec = self.get(agent.role)
        missing = [c for c in spec.required_capabilities if not agent.has_capability(c)]
        if missing:
            raise ValidationError(
                f"Agent {agent.agent_id} lacks capabilities {missing} required by role {agent.role}"
            )

    def build_agent(self, agent_id: str, role: str, capabilities: list[Any], **kwargs: Any) -> Agent:
        """Create an agent whose strategy comes from the table."""
        spec = self.get(role)
        agent = Agent(agent_id, role, capabilities, spec.strategy_factory(), **kwargs)
        self.validate(agent)
        return agent

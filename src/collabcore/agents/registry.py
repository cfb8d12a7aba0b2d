"""
Agent Registry for Agent Discovery and Selection.

Agents are registered once at start-up and persist across tasks. The
registry validates each agent against the role table, indexes agents by
role, capability and tag, and picks the fittest idle agent for a role.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from ..errors import NoAgentAvailable, ValidationError
from .base import Agent
from .lifecycle import AgentState
from .strategies import RoleTable

logger = logging.getLogger(__name__)


@dataclass
class AgentMetadata:
    """Metadata about a registered agent."""

    agent_id: str
    role: str
    capabilities: list[str]
    registered_at: float = field(default_factory=time.time)
    tags: list[str] = field(default_factory=list)


class AgentRegistry:
    """Registry for managing, discovering and selecting agents.

    Args:
        role_table: Roles agents may take. When omitted any role is accepted.
        latency_scale: Seconds at which mean latency halves an agent's fitness.
    """

    def __init__(self, role_table: RoleTable | None = None, latency_scale: float = 10.0):
        self.role_table = role_table
        self.latency_scale = latency_scale
        self._agents: dict[str, Agent] = {}
        self._metadata: dict[str, AgentMetadata] = {}
        self._lock = threading.RLock()
        self._capabilities_index: dict[str, set[str]] = {}
        self._role_index: dict[str, set[str]] = {}
        self._tag_index: dict[str, set[str]] = {}
        self._listeners: list[Callable[[str, str], None]] = []

    def register(self, agent: Agent, tags: Iterable[str] | None = None) -> None:
        """Register an agent with the registry."""
        if self.role_table is not None:
            self.role_table.validate(agent)

        with self._lock:
            agent_id = agent.agent_id

            # Check for duplicates
            if agent_id in self._agents:
                raise ValidationError(f"Agent {agent_id} already registered")

            self._agents[agent_id] = agent
            self._metadata[agent_id] = AgentMetadata(
                agent_id=agent_id,
                role=agent.role,
                capabilities=agent.capability_names,
                tags=list(tags or []),
            )

            for cap in agent.capability_names:
                self._capabilities_index.setdefault(cap, set()).add(agent_id)
            self._role_index.setdefault(agent.role, set()).add(agent_id)
            for tag in tags or []:
                self._tag_index.setdefault(tag, set()).add(agent_id)

        logger.info(f"Registered agent {agent_id} as {agent.role}")
        self._notify_listeners(agent_id, "registered")

    def unregister(self, agent_id: str) -> None:
        """Unregister an agent from the registry."""
        with self._lock:
            if agent_id not in self._agents:
                raise ValidationError(f"Agent {agent_id} not found")

            metadata = self._metadata.pop(agent_id)
            for cap in metadata.capabilities:
                self._capabilities_index[cap].discard(agent_id)
            self._role_index[metadata.role].discard(agent_id)
            for tag in metadata.tags:
                self._tag_index[tag].discard(agent_id)
            del self._agents[agent_id]

        self._notify_listeners(agent_id, "unregistered")

    def get_agent(self, agent_id: str) -> Agent | None:
        """Get an agent by ID."""
        with self._lock:
            return self._agents.get(agent_id)

    def get_metadata(self, agent_id: str) -> AgentMetadata | None:
        """Get agent metadata by ID."""
        with self._lock:
            return self._metadata.get(agent_id)

    def list_agents(
        self,
        role: str | None = None,
        state: AgentState | None = None,
        tags: Iterable[str] | None = None,
    ) -> list[Agent]:
        """List agents with optional filters, ordered by agent id."""
        with self._lock:
            results = [self._agents[a] for a in sorted(self._agents)]
            metadata = dict(self._metadata)

        if role:
            results = [a for a in results if a.role == role]

        if state:
            results = [a for a in results if a.state == state]

        if tags:
            tag_set = set(tags)
            results = [a for a in results if tag_set.issubset(metadata[a.agent_id].tags)]

        return results

    def find_by_capability(self, capability: str) -> list[str]:
        """Find agent IDs that have a specific capability."""
        with self._lock:
            return sorted(self._capabilities_index.get(capability, set()))

    def find_by_capabilities(self, capabilities: Iterable[str]) -> list[str]:
        """Find agent IDs that have all specified capabilities."""
        capabilities = list(capabilities)
        with self._lock:
            if not capabilities:
                return sorted(self._agents)
            result_sets = [self._capabilities_index.get(cap, set()) for cap in capabilities]
            return sorted(set.intersection(*result_sets))

    def find_by_role(self, role: str) -> list[str]:
        with self._lock:
            return sorted(self._role_index.get(role, set()))

    def fitness(self, agent: Agent) -> float:
        """Success rate weighted by inverse mean latency."""
        latency_weight = 1.0 / (1.0 + agent.stats.mean_latency / self.latency_scale)
        return agent.stats.success_rate * latency_weight

    def select(
        self,
        role: str,
        capabilities: Iterable[str] | None = None,
        exclude: Iterable[str] | None = None,
    ) -> Agent:
        """Pick the fittest idle agent for *role* having all *capabilities*.

        Capability match is a hard filter. Equal fitness goes to the agent
        assigned least recently, then to the lowest agent id.

        Raises:
            NoAgentAvailable: no idle agent qualifies.
        """
        required = list(capabilities or [])
        excluded = set(exclude or [])
        with self._lock:
            ids = self._role_index.get(role, set())
            if required:
                ids = ids & set(self.find_by_capabilities(required))
            candidates = [
                self._agents[a]
                for a in ids
                if a not in excluded and self._agents[a].state == AgentState.IDLE
            ]

        if not candidates:
            raise NoAgentAvailable(role, required)

        best = min(
            candidates,
            key=lambda a: (-self.fitness(a), a.stats.last_assigned_at, a.agent_id),
        )
        logger.debug(f"Selected {best.agent_id} for role {role} (fitness {self.fitness(best):.3f})")
        return best

    def reserve(
        self,
        role: str,
        task_id: str,
        capabilities: Iterable[str] | None = None,
        exclude: Iterable[str] | None = None,
        preferred: str | None = None,
    ) -> Agent:
        """Select an agent and move it to WORKING on *task_id* in one step.

        *preferred* is taken when it is idle, not excluded and has every
        capability; otherwise this falls back to :meth:`select`. Concurrent
        callers never receive the same agent.

        Raises:
            NoAgentAvailable: no idle agent qualifies.
        """
        required = list(capabilities or [])
        excluded = set(exclude or [])
        with self._lock:
            agent = self._agents.get(preferred) if preferred else None
            if (
                agent is None
                or agent.agent_id in excluded
                or agent.state != AgentState.IDLE
                or not all(agent.has_capability(c) for c in required)
            ):
                agent = self.select(role, required, excluded)
            agent.lifecycle.assign(task_id)
            agent.stats.last_assigned_at = time.monotonic()
        return agent

    def add_listener(self, listener: Callable[[str, str], None]) -> None:
        """Add a listener for agent registration/unregistration events."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[str, str], None]) -> None:
        """Remove a listener."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify_listeners(self, agent_id: str, event: str) -> None:
        """Notify all listeners of an event."""
        for listener in self._listeners:
            try:
                listener(agent_id, event)
            except Exception as exc:
                logger.warning(f"Registry listener failed on {event} of {agent_id}: {exc}")

    def count_agents(self, role: str | None = None, state: AgentState | None = None) -> int:
        """Count agents with optional filters."""
        return len(self.list_agents(role=role, state=state))

    def get_registry_stats(self) -> dict[str, Any]:
        """Get statistics about the registry."""
        with self._lock:
            agents = list(self._agents.values())
            return {
                "total_agents": len(agents),
                "by_state": {
                    state.value: len([a for a in agents if a.state == state]) for state in AgentState
                },
                "by_role": {
                    role: len(ids) for role, ids in sorted(self._role_index.items()) if ids
                },
                "total_capabilities": len([c for c, ids in self._capabilities_index.items() if ids]),
                "total_tags": len([t for t, ids in self._tag_index.items() if ids]),
            }

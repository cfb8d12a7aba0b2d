"""
Explicit wiring of the components an orchestrator works with.

Nothing in the core is a process-wide singleton: every registry, breaker
map and bus belongs to one ``OrchestratorContext``, so several independent
orchestrators can coexist (in tests, for example).
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from ..agents import Agent, AgentCapability, AgentCommunicationBus, AgentRegistry, RoleTable
from ..config import CoreConfig
from ..errors import ValidationError
from ..memory import AgentMemory, EpisodicLog, MemoryBackend
from ..negotiation import NegotiationEngine, SuccessPatternStore
from ..observability import EventEmitter, EventSink
from ..quality import Evaluator, QualityGate
from ..resilience import ResilienceLayer
from ..tools import ToolRegistry

logger = logging.getLogger(__name__)


@dataclass
class OrchestratorContext:
    config: CoreConfig
    emitter: EventEmitter
    resilience: ResilienceLayer
    tools: ToolRegistry
    registry: AgentRegistry
    bus: AgentCommunicationBus
    episodic: EpisodicLog
    pattern_store: SuccessPatternStore
    negotiation: NegotiationEngine
    quality_gate: QualityGate
    memory_backend: MemoryBackend | None = None

    @classmethod
    def build(
        cls,
        config: CoreConfig | None = None,
        role_table: RoleTable | None = None,
        sinks: Iterable[EventSink] | None = None,
        evaluators: Mapping[str, Evaluator] | None = None,
        quality_gate: QualityGate | None = None,
        memory_backend: MemoryBackend | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> OrchestratorContext:
        """Construct a fully wired context from configuration."""
        config = config or CoreConfig()
        emitter = EventEmitter(sinks)
        resilience = ResilienceLayer(
            config.circuit_breaker, config.retry, emitter=emitter, clock=clock, sleep=sleep
        )
        episodic = EpisodicLog(config.memory.episodic_capacity)
        pattern_memory = AgentMemory(
            "negotiation", config.memory, episodic=episodic, backend=memory_backend
        )
        if memory_backend is not None:
            pattern_memory.restore()
        pattern_store = SuccessPatternStore(
            pattern_memory, learning_rate=config.negotiation.flexibility_learning_rate
        )
        return cls(
            config=config,
            emitter=emitter,
            resilience=resilience,
            tools=ToolRegistry(resilience),
            registry=AgentRegistry(role_table, latency_scale=config.orchestrator.latency_scale),
            bus=AgentCommunicationBus(config.bus),
            episodic=episodic,
            pattern_store=pattern_store,
            negotiation=NegotiationEngine(
                config.negotiation, emitter=emitter, pattern_store=pattern_store
            ),
            quality_gate=quality_gate or QualityGate.from_config(config.quality, evaluators),
            memory_backend=memory_backend,
        )

    def new_memory(self, agent_id: str) -> AgentMemory:
        """Memory for a new agent, sharing this context's episodic log."""
        return AgentMemory(
            agent_id, self.config.memory, episodic=self.episodic, backend=self.memory_backend
        )

    def create_agent(
        self,
        agent_id: str,
        role: str,
        capabilities: list[AgentCapability],
        tags: Iterable[str] | None = None,
        **kwargs: Any,
    ) -> Agent:
        """Build an agent from the role table and register it."""
        if self.registry.role_table is None:
            raise ValidationError("create_agent needs a registry with a role table")
        kwargs.setdefault("tools", self.tools)
        kwargs.setdefault("memory", self.new_memory(agent_id))
        kwargs.setdefault("consolidate_every", self.config.memory.consolidate_every)
        agent = self.registry.role_table.build_agent(agent_id, role, capabilities, **kwargs)
        self.add_agent(agent, tags)
        return agent

    def add_agent(self, agent: Agent, tags: Iterable[str] | None = None) -> None:
        """Register *agent* with the registry and the bus.

        With a memory backend configured, the agent's previously persisted
        memory is restored once it is registered.
        """
        if agent.tools is None:
            agent.tools = self.tools
        self.registry.register(agent, tags)
        self.bus.register_agent(agent.agent_id, agent.handle_message)
        if self.memory_backend is not None:
            restored = agent.memory.restore()
            if restored:
                logger.info(f"Restored {restored} memory item(s) for {agent.agent_id}")

    def persist_memory(self, agent_ids: Iterable[str]) -> None:
        """Save the memory of *agent_ids* and the negotiation patterns."""
        if self.memory_backend is None:
            return
        for agent_id in agent_ids:
            agent = self.registry.get_agent(agent_id)
            if agent is not None:
                agent.memory.persist()
        if self.pattern_store.memory is not None:
            self.pattern_store.memory.persist()

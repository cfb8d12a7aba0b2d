from collections.abc import Callable
from typing import Any

import pytest

from collabcore.agents import AgentCapability
from collabcore.config import CoreConfig
from collabcore.memory import MemoryBackend
from collabcore.observability import InMemoryEventSink
from collabcore.orchestration import Orchestrator, OrchestratorContext
from collabcore.quality import QualityGate
from collabcore.tools import ToolSpec

from fakes import (
    ROLE_CAPABILITIES,
    FakeClock,
    RecordingSleep,
    TextProvider,
    accept_all_gate,
    make_role_table,
)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeps() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def events() -> InMemoryEventSink:
    return InMemoryEventSink()


@pytest.fixture
def make_orchestrator(events: InMemoryEventSink, sleeps: RecordingSleep) -> Callable[..., Orchestrator]:
    """Factory wiring an orchestrator with one agent and one tool per role.

    ``providers`` overrides the tool provider of a role; roles missing
    from ``agents`` get a single agent named ``<role>-1``.
    """

    def build(
        providers: dict[str, Any] | None = None,
        agents: dict[str, list[str]] | None = None,
        config: CoreConfig | None = None,
        quality_gate: QualityGate | None = None,
        clock: Callable[[], float] | None = None,
        tool_timeout: float = 5.0,
        memory_backend: MemoryBackend | None = None,
    ) -> Orchestrator:
        context = OrchestratorContext.build(
            config=config,
            role_table=make_role_table(),
            sinks=[events],
            quality_gate=quality_gate or accept_all_gate(),
            memory_backend=memory_backend,
            sleep=sleeps,
        )
        providers = providers or {}
        agents = agents or {}
        for role, cap in ROLE_CAPABILITIES.items():
            context.tools.register(
                ToolSpec(cap, params={"prompt": str}, required=["prompt"], timeout=tool_timeout),
                providers.get(role) or TextProvider(role),
            )
            for agent_id in agents.get(role, [f"{role}-1"]):
                context.create_agent(agent_id, role, [AgentCapability(cap)])
        if clock is None:
            return Orchestrator(context)
        return Orchestrator(context, clock=clock)

    return build

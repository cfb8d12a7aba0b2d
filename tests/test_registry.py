import pytest

from collabcore.agents import (
    Agent,
    AgentCapability,
    AgentRegistry,
    AgentState,
    AgentStats,
    RoleSpec,
    RoleTable,
    RuleBasedStrategy,
)
from collabcore.errors import NoAgentAvailable, ValidationError


def writer(agent_id: str, stats: AgentStats | None = None, capabilities=("write",)) -> Agent:
    return Agent(
        agent_id,
        "writer",
        [AgentCapability(c) for c in capabilities],
        RuleBasedStrategy("write"),
        stats=stats,
    )


def test_select_prefers_higher_success_rate():
    registry = AgentRegistry()
    registry.register(writer("w-80", AgentStats(tasks_completed=80, tasks_failed=20)))
    registry.register(writer("w-95", AgentStats(tasks_completed=95, tasks_failed=5)))

    assert registry.select("writer").agent_id == "w-95"


def test_select_penalises_slow_agents():
    registry = AgentRegistry(latency_scale=10.0)
    registry.register(writer("fast", AgentStats(tasks_completed=9, tasks_failed=1, total_latency=10.0)))
    registry.register(writer("slow", AgentStats(tasks_completed=10, total_latency=300.0)))

    assert registry.fitness(registry.get_agent("fast")) == pytest.approx(0.9 / 1.1)
    assert registry.select("writer").agent_id == "fast"


def test_select_ties_go_to_least_recently_assigned_then_id():
    registry = AgentRegistry()
    registry.register(writer("w-b", AgentStats(last_assigned_at=5.0)))
    registry.register(writer("w-a", AgentStats(last_assigned_at=5.0)))
    registry.register(writer("w-c", AgentStats(last_assigned_at=9.0)))

    assert registry.select("writer").agent_id == "w-a"
    assert registry.select("writer", exclude={"w-a"}).agent_id == "w-b"


def test_select_only_idle_agents_with_required_capabilities():
    registry = AgentRegistry()
    busy = writer("w-busy", capabilities=("write", "translate"))
    plain = writer("w-plain")
    registry.register(busy)
    registry.register(plain)
    busy.lifecycle.assign("task-1")

    with pytest.raises(NoAgentAvailable) as excinfo:
        registry.select("writer", capabilities=["translate"])
    assert excinfo.value.role == "writer"
    assert registry.select("writer").agent_id == "w-plain"
    with pytest.raises(NoAgentAvailable):
        registry.select("reviewer")


def test_reserve_marks_agent_working_so_it_is_not_handed_out_twice():
    registry = AgentRegistry()
    registry.register(writer("w-a"))
    registry.register(writer("w-b"))

    first = registry.reserve("writer", "task-1")
    second = registry.reserve("writer", "task-2")

    assert (first.agent_id, second.agent_id) == ("w-a", "w-b")
    assert first.state == AgentState.WORKING
    assert first.lifecycle.current_task == "task-1"
    with pytest.raises(NoAgentAvailable):
        registry.reserve("writer", "task-3")


def test_reserve_takes_preferred_agent_only_when_idle():
    registry = AgentRegistry()
    registry.register(writer("w-a"))
    registry.register(writer("w-b"))

    assert registry.reserve("writer", "task-1", preferred="w-b").agent_id == "w-b"
    assert registry.reserve("writer", "task-2", preferred="w-b").agent_id == "w-a"


def test_register_validates_against_role_table():
    table = RoleTable([RoleSpec("writer", lambda: RuleBasedStrategy("write"), ["write"])])
    registry = AgentRegistry(table)

    with pytest.raises(ValidationError, match="lacks capabilities"):
        registry.register(writer("w-1", capabilities=("draft",)))
    with pytest.raises(ValidationError, match="Unknown role"):
        registry.register(
            Agent("r-1", "reviewer", [AgentCapability("review")], RuleBasedStrategy("review"))
        )

    registry.register(writer("w-2"))
    with pytest.raises(ValidationError, match="already registered"):
        registry.register(writer("w-2"))


def test_role_table_builds_agents_with_role_strategy():
    table = RoleTable([RoleSpec("writer", lambda: RuleBasedStrategy("write"), ["write"])])
    agent = table.build_agent("w-1", "writer", [AgentCapability("write")], flexibility=0.9)
    assert isinstance(agent.strategy, RuleBasedStrategy)
    assert agent.flexibility == 0.9
    assert "writer" in table
    assert table.roles() == ["writer"]


def test_lookup_and_listing():
    events = []
    registry = AgentRegistry()
    registry.add_listener(lambda agent_id, event: events.append((agent_id, event)))
    registry.register(writer("w-1", capabilities=("write", "edit")), tags=["en"])
    registry.register(writer("w-2"), tags=["de"])

    assert registry.find_by_capability("edit") == ["w-1"]
    assert registry.find_by_role("writer") == ["w-1", "w-2"]
    assert [a.agent_id for a in registry.list_agents(tags=["de"])] == ["w-2"]
    assert registry.count_agents(state=AgentState.IDLE) == 2
    assert registry.get_metadata("w-1").tags == ["en"]

    registry.unregister("w-1")
    assert registry.get_agent("w-1") is None
    assert registry.find_by_capability("edit") == []
    assert events == [("w-1", "registered"), ("w-2", "registered"), ("w-1", "unregistered")]
    assert registry.get_registry_stats()["total_agents"] == 1

import pytest

from collabcore.agents import (
    Agent,
    AgentCapability,
    AgentCommunicationBus,
    AgentMessage,
    AgentState,
    Decision,
    MessageType,
    RuleBasedStrategy,
)
from collabcore.config import RetryConfig
from collabcore.errors import ValidationError
from collabcore.memory import AgentMemory
from collabcore.negotiation import Proposal
from collabcore.resilience import ResilienceLayer
from collabcore.tools import ToolRegistry, ToolSpec

from fakes import RecordingSleep, ScriptedProvider, TextProvider


def tool_registry(provider, **retry) -> ToolRegistry:
    tools = ToolRegistry(ResilienceLayer(retry_config=RetryConfig(**retry), sleep=RecordingSleep()))
    tools.register(ToolSpec("write", params={"prompt": str}, required=["prompt"]), provider)
    return tools


def make_writer(tools=None, **kwargs) -> Agent:
    return Agent(
        "writer-1",
        "writer",
        [AgentCapability("write", "Draft prose")],
        RuleBasedStrategy("write", criteria=kwargs.pop("criteria", ())),
        tools=tools,
        **kwargs,
    )


CONTEXT = {
    "task_id": "task-1",
    "task_type": "report",
    "objective": "Summarise quarterly sales",
    "phase": "draft",
    "inputs": "Sales grew 12%",
    "feedback": [{"dimension": "readability", "suggested_fix": "Use shorter sentences"}],
}


def test_think_builds_prompt_from_context():
    agent = make_writer()
    decision = agent.think(CONTEXT)

    assert decision.capability == "write"
    assert decision.task_id == "task-1"
    prompt = decision.params["prompt"]
    assert prompt.splitlines()[0] == "Summarise quarterly sales"
    assert "Input: Sales grew 12%" in prompt
    assert "Fix: Use shorter sentences" in prompt


def test_think_rejects_undeclared_capability():
    class Rogue(RuleBasedStrategy):
        def execute(self, context, agent, recalled):
            return Decision(agent.agent_id, "delete_everything")

    agent = Agent("w", "writer", [AgentCapability("write")], Rogue("write"))
    with pytest.raises(ValidationError, match="undeclared capability"):
        agent.think(CONTEXT)


def test_agent_needs_a_capability():
    with pytest.raises(ValidationError):
        Agent("w", "writer", [], RuleBasedStrategy("write"))


@pytest.mark.asyncio
async def test_run_completes_full_cycle_and_learns():
    agent = make_writer(tool_registry(TextProvider("draft")))
    result = await agent.run(CONTEXT)

    assert result.success is True
    assert result.output.startswith("draft: Summarise quarterly sales")
    assert agent.state == AgentState.IDLE
    assert agent.stats.tasks_completed == 1
    kinds = [m.metadata.get("kind") for m in agent.memory.short_term.items()]
    assert kinds == ["action", "reflection"]


@pytest.mark.asyncio
async def test_run_recalls_earlier_memories():
    agent = make_writer(tool_registry(TextProvider("draft")))
    agent.memory.remember("quarterly sales reports use a table")
    decision = agent.think(CONTEXT)

    assert decision.recalled
    assert "Notes: quarterly sales reports use a table" in decision.params["prompt"]


@pytest.mark.asyncio
async def test_run_failure_returns_agent_to_idle_and_reraises():
    tools = tool_registry(ScriptedProvider(ValidationError("bad prompt")))
    agent = make_writer(tools)

    with pytest.raises(ValidationError):
        await agent.run(CONTEXT)
    assert agent.state == AgentState.IDLE
    assert agent.stats.tasks_failed == 1
    assert agent.lifecycle.failures == 1
    assert agent.memory.short_term.items()[-1].metadata["kind"] == "failure"


@pytest.mark.asyncio
async def test_degraded_tool_result_is_unsuccessful_action():
    tools = tool_registry(ScriptedProvider(ConnectionError("connection reset")), max_attempts=1)
    agent = make_writer(tools)

    result = await agent.run(CONTEXT)
    assert result.success is False
    assert result.degraded is True
    assert agent.stats.tasks_failed == 1


@pytest.mark.asyncio
async def test_reflect_consolidates_every_n_reflections():
    agent = make_writer(tool_registry(TextProvider("draft")), consolidate_every=2)
    await agent.run(CONTEXT)
    assert len(agent.memory.long_term) == 0
    await agent.run(CONTEXT)
    assert len(agent.memory.long_term) > 0


@pytest.mark.asyncio
async def test_evaluate_scores_by_criteria_and_flexibility():
    agent = make_writer(criteria=["revenue", "margin"], flexibility=0.0)
    proposal = Proposal("orchestrator", "Revenue is up this quarter")

    evaluation = await agent.evaluate(proposal)
    assert evaluation.agent_id == "writer-1"
    assert evaluation.approval == pytest.approx(0.5)
    assert evaluation.modifications == ["margin"]


@pytest.mark.asyncio
async def test_handle_message_answers_status_and_evaluation_and_stores_feedback():
    agent = make_writer(criteria=["revenue"])
    status = await agent.handle_message(
        AgentMessage(msg_type=MessageType.STATUS_REQUEST, sender_id="orchestrator")
    )
    assert status["state"] == "idle"

    evaluation = await agent.handle_message(
        AgentMessage(
            msg_type=MessageType.EVALUATION_REQUEST,
            payload={"proposal": Proposal("o", "revenue up").to_dict()},
        )
    )
    assert evaluation["approval"] == 1.0

    await agent.handle_message(
        AgentMessage(msg_type=MessageType.FEEDBACK, payload={"feedback": "cite sources"})
    )
    assert agent.memory.short_term.items()[-1].content == "cite sources"


@pytest.mark.asyncio
async def test_consult_blocks_until_reply():
    states = []

    async def analyst(message):
        states.append(agent.state)
        return {"figures": [12]}

    agent = make_writer()
    async with AgentCommunicationBus() as bus:
        bus.register_agent("analyst-1", analyst)
        agent.lifecycle.assign("task-1")
        result = await agent.consult(bus, "analyst-1", {"need": "figures"}, timeout=1.0)

    assert result.response == {"figures": [12]}
    assert states == [AgentState.BLOCKED]
    assert agent.state == AgentState.WORKING


def test_memory_is_per_agent():
    first = make_writer()
    second = Agent("writer-2", "writer", [AgentCapability("write")], RuleBasedStrategy("write"))
    first.memory.remember("private note")
    assert isinstance(second.memory, AgentMemory)
    assert len(second.memory.short_term) == 0

import asyncio

import pytest

from collabcore.agents import AgentState, MessageType
from collabcore.config import CoreConfig, OrchestratorConfig
from collabcore.errors import ValidationError
from collabcore.memory import InMemoryBackend
from collabcore.observability import EventType
from collabcore.orchestration import PhaseStatus, TaskStatus
from collabcore.quality import QualityDimension, QualityGate

from fakes import ScriptedProvider, TextProvider


def research_brief(timeout: float = 5.0) -> dict:
    return {
        "objective": "Market overview for e-bikes",
        "task_type": "report",
        "phases": [
            {
                "name": "research",
                "roles": ["researcher", "analyst"],
                "parallel": True,
                "timeout": timeout,
            }
        ],
    }


def memo_brief(**extra) -> dict:
    brief = {"objective": "Write a memo", "task_type": "memo", "roles": ["writer"]}
    brief.update(extra)
    return brief


def gate_with(evaluator) -> QualityGate:
    return QualityGate(
        [QualityDimension("style", 1.0, evaluator, suggested_fix="Tighten the prose")], threshold=0.7
    )


@pytest.mark.asyncio
async def test_timed_out_branch_yields_partial_phase(make_orchestrator):
    orchestrator = make_orchestrator(providers={"analyst": TextProvider("analyst", hang=True)})

    task = await orchestrator.execute(research_brief(timeout=0.2))

    assert task.status == TaskStatus.COMPLETE
    result = task.results["research"]
    assert result.status == PhaseStatus.PARTIAL
    by_agent = {b.agent_id: b for b in result.branches}
    assert by_agent["analyst-1"].error_type == "TimeoutError"
    assert by_agent["researcher-1"].success is True
    assert result.output.startswith("researcher: Market overview for e-bikes")
    assert result.deficiencies[0]["agent_id"] == "analyst-1"

    analyst = orchestrator.context.registry.get_agent("analyst-1")
    assert analyst.state == AgentState.IDLE
    assert analyst.stats.tasks_failed == 1


@pytest.mark.asyncio
async def test_phase_aborts_when_most_branches_fail(make_orchestrator):
    bad = ScriptedProvider(ValidationError("bad prompt"))
    orchestrator = make_orchestrator(providers={"analyst": bad, "writer": bad})
    brief = research_brief()
    brief["phases"][0]["roles"] = ["researcher", "analyst", "writer"]

    task = await orchestrator.execute(brief)

    assert task.status == TaskStatus.FAILED
    assert task.results["research"].status == PhaseStatus.FAILED
    assert "aborted: 2/3 branches failed" in task.failure_reason
    assert task.error_type == "ValidationError"


@pytest.mark.asyncio
async def test_degraded_tool_result_fails_sequential_phase(make_orchestrator, sleeps):
    orchestrator = make_orchestrator(providers={"writer": ScriptedProvider(ConnectionError("reset"))})

    task = await orchestrator.execute(memo_brief())

    assert task.status == TaskStatus.FAILED
    assert task.error_type == "Degraded"
    branch = task.results["main"].branches[0]
    assert branch.degraded is True
    assert sleeps.delays == [0.5, 1.0]


@pytest.mark.asyncio
async def test_missing_role_fails_with_no_agent_available(make_orchestrator):
    orchestrator = make_orchestrator()
    task = await orchestrator.execute(memo_brief(roles=["editor"]))
    assert task.status == TaskStatus.FAILED
    assert task.error_type == "NoAgentAvailable"


@pytest.mark.asyncio
async def test_divergent_parallel_outputs_are_negotiated(make_orchestrator, events):
    orchestrator = make_orchestrator()

    task = await orchestrator.execute(research_brief())

    result = task.results["research"]
    assert result.status == PhaseStatus.SUCCESS
    assert result.negotiation is not None
    assert result.negotiation.consensus is True
    assert result.output.startswith("analyst: ")
    assert "\n\nresearcher: " in result.output
    assert task.needs_review is False
    assert len(events.of_type(EventType.NEGOTIATION_ROUND)) == 1
    assert orchestrator.get_stats()["negotiations"] == 1


@pytest.mark.asyncio
async def test_rejected_output_is_revised_with_feedback(make_orchestrator, events):
    gate = gate_with(lambda content: 1.0 if "Fix:" in content else 0.3)
    async with make_orchestrator(quality_gate=gate) as orchestrator:
        task = await orchestrator.execute(memo_brief())
        feedback = orchestrator.context.bus.get_history(msg_type=MessageType.FEEDBACK)

    assert task.status == TaskStatus.COMPLETE
    result = task.results["main"]
    assert result.revisions == 1
    assert "Fix: Tighten the prose" in result.output
    assert [s for s, _, _ in task.status_history] == [
        "planning",
        "executing",
        "revising",
        "executing",
        "complete",
    ]
    assert len(feedback) == 1
    assert feedback[0].recipient_id == "writer-1"
    assert feedback[0].payload["feedback"] == "style: Tighten the prose"
    verdicts = [e.payload["accepted"] for e in events.of_type(EventType.QUALITY_GATE)]
    assert verdicts == [False, True]


@pytest.mark.asyncio
async def test_exhausted_revisions_escalate_to_manual_review(make_orchestrator):
    async with make_orchestrator(quality_gate=gate_with(lambda content: 0.2)) as orchestrator:
        task = await orchestrator.execute(memo_brief())

    assert task.status == TaskStatus.FAILED
    assert task.needs_review is True
    assert task.error_type == "QualityRejected"
    assert task.failure_reason.startswith("escalated to manual review")
    assert task.results["main"].revisions == 2


@pytest.mark.asyncio
async def test_escalation_can_continue_with_review_flag(make_orchestrator):
    config = CoreConfig(orchestrator=OrchestratorConfig(continue_on_escalation=True))
    async with make_orchestrator(
        config=config, quality_gate=gate_with(lambda content: 0.2)
    ) as orchestrator:
        task = await orchestrator.execute(memo_brief())

    assert task.status == TaskStatus.COMPLETE
    assert task.needs_review is True
    assert task.results["main"].quality.accepted is False


@pytest.mark.asyncio
async def test_concurrent_tasks_get_distinct_agents(make_orchestrator):
    orchestrator = make_orchestrator(
        providers={"writer": TextProvider("writer", delay=0.05)},
        agents={"writer": ["writer-1", "writer-2"]},
    )

    first, second = await asyncio.gather(
        orchestrator.execute(memo_brief()), orchestrator.execute(memo_brief())
    )

    assert first.status == TaskStatus.COMPLETE
    assert second.status == TaskStatus.COMPLETE
    writers = {t.results["main"].branches[0].agent_id for t in (first, second)}
    assert writers == {"writer-1", "writer-2"}
    registry = orchestrator.context.registry
    assert all(registry.get_agent(a).state == AgentState.IDLE for a in writers)


@pytest.mark.asyncio
async def test_busy_agents_leave_extra_concurrent_task_unassigned(make_orchestrator):
    orchestrator = make_orchestrator(providers={"writer": TextProvider("writer", delay=0.05)})

    first, second = await asyncio.gather(
        orchestrator.execute(memo_brief()), orchestrator.execute(memo_brief())
    )

    assert first.status == TaskStatus.COMPLETE
    assert second.status == TaskStatus.FAILED
    assert second.error_type == "NoAgentAvailable"
    assert orchestrator.context.registry.get_agent("writer-1").stats.tasks_completed == 1


@pytest.mark.asyncio
async def test_passed_deadline_fails_task(make_orchestrator, clock):
    orchestrator = make_orchestrator(clock=clock)
    task = await orchestrator.execute(memo_brief(deadline=clock() - 1))
    assert task.status == TaskStatus.FAILED
    assert task.error_type == "TimeoutError"


@pytest.mark.asyncio
async def test_deadline_clips_phase_timeout(make_orchestrator, clock):
    orchestrator = make_orchestrator(
        providers={"writer": TextProvider("writer", hang=True)}, clock=clock
    )
    task = await orchestrator.execute(memo_brief(deadline=clock() + 0.1))

    assert task.status == TaskStatus.FAILED
    assert task.error_type == "TimeoutError"
    assert orchestrator.context.registry.get_agent("writer-1").state == AgentState.IDLE


@pytest.mark.asyncio
async def test_cancel_running_task(make_orchestrator):
    orchestrator = make_orchestrator(providers={"writer": TextProvider("writer", hang=True)})
    task_id = orchestrator.submit_task(memo_brief())
    runner = asyncio.create_task(orchestrator.run_task(task_id))
    await asyncio.sleep(0.05)

    assert orchestrator.get_task_status(task_id) == TaskStatus.EXECUTING
    assert await orchestrator.cancel_task(task_id) is True

    assert runner.cancelled()
    task = orchestrator.get_task(task_id)
    assert task.status == TaskStatus.FAILED
    assert task.failure_reason == "cancelled"
    assert task.archived is True
    assert orchestrator.context.registry.get_agent("writer-1").state == AgentState.IDLE
    assert await orchestrator.cancel_task(task_id) is False


@pytest.mark.asyncio
async def test_cancel_before_start(make_orchestrator):
    orchestrator = make_orchestrator()
    task_id = orchestrator.submit_task(memo_brief())
    assert await orchestrator.cancel_task(task_id) is True
    assert orchestrator.get_task_status(task_id) == TaskStatus.FAILED
    with pytest.raises(ValidationError, match="already failed"):
        await orchestrator.run_task(task_id)


@pytest.mark.asyncio
async def test_status_events_and_episodes(make_orchestrator, events, clock):
    orchestrator = make_orchestrator(clock=clock)

    task = await orchestrator.execute(memo_brief())

    statuses = [e.payload["status"] for e in events.of_type(EventType.TASK_STATUS)]
    assert statuses == ["pending", "planning", "executing", "complete"]
    assert task.archived_at == clock()

    episodes = orchestrator.context.episodic.entries()
    assert [e.metadata["agent_id"] for e in episodes] == ["writer-1"]
    assert episodes[0].metadata["success"] is True
    assert episodes[0].metadata["task_id"] == task.task_id

    stats = orchestrator.get_stats()
    assert stats["tasks"]["complete"] == 1
    assert stats["needs_review"] == 0
    assert stats["registry"]["total_agents"] == 4


@pytest.mark.asyncio
async def test_agent_memory_is_persisted_and_restored_across_orchestrators(make_orchestrator):
    backend = InMemoryBackend()
    first = make_orchestrator(memory_backend=backend)

    await first.execute(memo_brief())

    assert ("writer-1", "short_term") in backend.keys()
    assert ("writer-1", "long_term") in backend.keys()
    assert ("researcher-1", "short_term") not in backend.keys()
    learned = [i.content for i in first.context.registry.get_agent("writer-1").memory.short_term.items()]
    assert learned

    second = make_orchestrator(memory_backend=backend)
    restored = second.context.registry.get_agent("writer-1").memory
    assert [i.content for i in restored.short_term.items()] == learned


@pytest.mark.asyncio
async def test_template_plan_chains_phase_outputs(make_orchestrator):
    plans = {
        "report": [
            {"name": "draft", "roles": ["writer"]},
            {"name": "review", "roles": ["reviewer"]},
        ]
    }
    orchestrator = make_orchestrator(config=CoreConfig(orchestrator=OrchestratorConfig(plans=plans)))

    task = await orchestrator.execute({"objective": "Quarterly report", "task_type": "report"})

    assert task.status == TaskStatus.COMPLETE
    assert [p.phase_id for p in task.plan.phases] == ["draft", "review"]
    review = task.results["review"]
    assert review.inputs == task.results["draft"].output
    assert "Input: writer: Quarterly report" in review.output


@pytest.mark.parametrize(
    "brief",
    [
        {"objective": ""},
        {"objective": "Write", "roles": "writer"},
        {"objective": "Write", "roles": ["writer"], "deadline": True},
        {"objective": "Write", "roles": ["writer"], "requirements": ["short"]},
        {"objective": "Write"},
    ],
)
def test_submit_rejects_invalid_briefs(make_orchestrator, brief):
    orchestrator = make_orchestrator()
    with pytest.raises(ValidationError):
        orchestrator.submit_task(brief)
    assert orchestrator.list_tasks() == []


def test_unknown_task_lookup(make_orchestrator):
    orchestrator = make_orchestrator()
    with pytest.raises(ValidationError, match="Unknown task"):
        orchestrator.get_task("task-missing")

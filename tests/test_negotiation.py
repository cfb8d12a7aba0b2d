import pytest

from collabcore.agents import (
    Agent,
    AgentCapability,
    AgentCommunicationBus,
    RuleBasedStrategy,
)
from collabcore.config import NegotiationConfig
from collabcore.errors import ConsensusFailure, ValidationError
from collabcore.memory import AgentMemory
from collabcore.negotiation import (
    CompromiseSearchStrategy,
    Evaluation,
    NegotiationEngine,
    Proposal,
    SuccessPatternStore,
    TerminalReason,
    VetoStrategy,
    WeightedVotingStrategy,
    get_strategy,
)
from collabcore.negotiation.participants import BusParticipant
from collabcore.observability import EventEmitter, EventType, InMemoryEventSink

from fakes import ScriptedParticipant


def proposal() -> Proposal:
    return Proposal("orchestrator", "Launch plan for the spring campaign")


@pytest.mark.asyncio
async def test_consensus_after_mediation():
    sink = InMemoryEventSink()
    engine = NegotiationEngine(emitter=EventEmitter([sink]))
    a = ScriptedParticipant("a", [0.9, 0.9])
    b = ScriptedParticipant("b", [0.6, 0.75])
    c = ScriptedParticipant("c", [0.8, 0.85])

    session = await engine.negotiate("task-1", proposal(), [a, b, c])

    assert session.consensus is True
    assert session.round_count == 2
    assert session.terminal_reason == TerminalReason.CONSENSUS
    assert session.rounds[0].approvals == {"a": 0.9, "b": 0.6, "c": 0.8}
    assert session.rounds[1].approvals == {"a": 0.9, "b": 0.75, "c": 0.85}
    revised = session.final_proposal
    assert revised.revision == 1
    assert "- add detail for b" in revised.content
    assert revised.concerns == ["b wants more detail"]
    assert b.seen[1].content == revised.content
    assert [e.payload["round"] for e in sink.of_type(EventType.NEGOTIATION_ROUND)] == [1, 2]
    session.raise_for_consensus()


@pytest.mark.asyncio
async def test_critical_agent_vetoes_before_averaging():
    class CountingVeto(VetoStrategy):
        averaged = 0

        def aggregate(self, evaluations, participants):
            self.averaged += 1
            return super().aggregate(evaluations, participants)

    sink = InMemoryEventSink()
    strategy = CountingVeto()
    engine = NegotiationEngine(strategy=strategy, emitter=EventEmitter([sink]))
    legal = ScriptedParticipant("legal", [0.4], critical=True, approval_threshold=0.6)
    fans = [ScriptedParticipant(f"fan-{n}", [1.0], trust_weight=5.0) for n in range(3)]
    offer = proposal()

    session = await engine.negotiate("task-1", offer, [legal, *fans])

    assert session.round_count == 1
    assert session.terminal_reason == TerminalReason.VETO
    assert session.vetoed_by == "legal"
    assert session.veto_reason == "legal wants more detail"
    assert session.needs_manual_resolution is True
    assert strategy.averaged == 0
    assert session.rounds[0].aggregate == 0.0
    assert offer.approval == 0.0
    assert session.rounds[0].approvals["fan-0"] == 1.0
    assert sink.of_type(EventType.NEGOTIATION_ROUND)[0].payload["vetoed_by"] == "legal"
    with pytest.raises(ConsensusFailure):
        session.raise_for_consensus()


@pytest.mark.asyncio
async def test_non_critical_low_approval_is_not_a_veto():
    engine = NegotiationEngine(strategy=VetoStrategy())
    picky = ScriptedParticipant("picky", [0.4, 0.8], approval_threshold=0.6)
    session = await engine.negotiate("task-1", proposal(), [picky])
    assert session.consensus is True
    assert session.round_count == 2


@pytest.mark.asyncio
async def test_max_rounds_returns_best_proposal_for_review():
    engine = NegotiationEngine(NegotiationConfig(max_rounds=3))
    stubborn = ScriptedParticipant("stubborn", [0.5, 0.6, 0.55])
    happy = ScriptedParticipant("happy", [0.9])

    session = await engine.negotiate("task-1", proposal(), [stubborn, happy])

    assert session.consensus is False
    assert session.terminal_reason == TerminalReason.MAX_ROUNDS
    assert session.round_count == 3
    assert session.needs_manual_resolution is True
    assert session.final_proposal is session.rounds[1].proposal
    assert engine.sessions == [session]


@pytest.mark.asyncio
async def test_silent_participant_counts_as_zero_approval():
    engine = NegotiationEngine(NegotiationConfig(round_timeout=0.05, max_rounds=1))
    slow = ScriptedParticipant("slow", [1.0], delay=1.0)
    quick = ScriptedParticipant("quick", [1.0])

    session = await engine.negotiate("task-1", proposal(), [slow, quick])

    evaluation = session.rounds[0].evaluations[1]
    assert evaluation.agent_id == "slow"
    assert evaluation.approval == 0.0
    assert evaluation.timed_out is True
    assert session.consensus is False


@pytest.mark.asyncio
async def test_negotiate_validates_arguments():
    engine = NegotiationEngine()
    with pytest.raises(ValidationError):
        await engine.negotiate("task-1", proposal(), [])
    with pytest.raises(ValidationError):
        await engine.negotiate("task-1", proposal(), [ScriptedParticipant("a", [1.0])], max_rounds=0)
    with pytest.raises(ValidationError):
        await engine.negotiate(
            "task-1", proposal(), [ScriptedParticipant("a", [1.0]), ScriptedParticipant("a", [1.0])]
        )


def test_weighted_aggregate_uses_trust():
    strategy = WeightedVotingStrategy()
    participants = {
        "a": ScriptedParticipant("a", [1.0], trust_weight=3.0),
        "b": ScriptedParticipant("b", [0.0], trust_weight=1.0),
    }
    evaluations = [Evaluation("a", 1.0), Evaluation("b", 0.2)]
    assert strategy.aggregate(evaluations, participants) == pytest.approx(0.8)


def test_compromise_mediates_between_two_lowest_dissenters():
    strategy = CompromiseSearchStrategy()
    evaluations = [
        Evaluation("a", 0.1, modifications=["cut cost"]),
        Evaluation("b", 0.5, modifications=["add charts"]),
        Evaluation("c", 0.3, modifications=["shorter intro"]),
        Evaluation("d", 0.9),
    ]
    revised = strategy.mediate(proposal(), evaluations, 0.7)
    assert revised.modifications == ["cut cost", "shorter intro"]


def test_get_strategy_by_name():
    assert isinstance(get_strategy("veto"), VetoStrategy)
    with pytest.raises(ValidationError):
        get_strategy("dictator")


@pytest.mark.asyncio
async def test_successful_sessions_feed_pattern_memory():
    memory = AgentMemory("negotiation")
    store = SuccessPatternStore(memory, learning_rate=0.5)
    engine = NegotiationEngine(pattern_store=store)
    a = ScriptedParticipant("a", [0.9], flexibility=0.8)
    b = ScriptedParticipant("b", [0.9], flexibility=0.4)

    await engine.negotiate("task-1", proposal(), [a, b], context={"task_type": "campaign"})

    records = store.records("campaign")
    assert len(records) == 1
    assert records[0].flexibility == {"a": 0.8, "b": 0.4}
    assert memory.patterns()[0].key == "pattern:negotiation:campaign"

    newcomer = ScriptedParticipant("c", [0.9], flexibility=0.2)
    store.apply([newcomer], "campaign")
    assert newcomer.flexibility == pytest.approx(0.2 + 0.5 * (0.6 - 0.2))


@pytest.mark.asyncio
async def test_failed_sessions_are_not_recorded():
    store = SuccessPatternStore()
    engine = NegotiationEngine(NegotiationConfig(max_rounds=1), pattern_store=store)
    await engine.negotiate("task-1", proposal(), [ScriptedParticipant("a", [0.1])])
    assert store.records() == []


@pytest.mark.asyncio
async def test_agents_negotiate_over_the_bus():
    reviewer = Agent(
        "reviewer-1",
        "reviewer",
        [AgentCapability("review")],
        RuleBasedStrategy("review", criteria=["budget"]),
    )
    async with AgentCommunicationBus() as bus:
        bus.register_agent(reviewer.agent_id, reviewer.handle_message)
        participant = BusParticipant(bus, "reviewer-1", timeout=1.0)
        session = await NegotiationEngine().negotiate(
            "task-1", Proposal("orchestrator", "Plan with budget table"), [participant]
        )
    assert session.consensus is True
    assert session.rounds[0].approvals == {"reviewer-1": 1.0}

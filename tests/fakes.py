"""Test doubles shared by the test modules."""

import asyncio
from typing import Any

from collabcore.agents import RoleSpec, RoleTable, RuleBasedStrategy
from collabcore.negotiation import Evaluation, Proposal
from collabcore.quality import QualityDimension, QualityGate

ROLE_CAPABILITIES = {
    "researcher": "research",
    "analyst": "analyze",
    "writer": "write",
    "reviewer": "review",
}


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class ScriptedProvider:
    """Plays back a script of results; exceptions in it are raised.

    The last entry repeats once the script runs out.
    """

    def __init__(self, *script: Any):
        self.script = list(script)
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def execute(self, tool_name: str, params: dict[str, Any]) -> Any:
        self.calls.append((tool_name, params))
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, BaseException):
            raise item
        return item


class TextProvider:
    """Answers with ``<tag>: <prompt>``, optionally after a delay or never."""

    def __init__(self, tag: str, delay: float = 0.0, hang: bool = False):
        self.tag = tag
        self.delay = delay
        self.hang = hang
        self.calls = 0

    async def execute(self, tool_name: str, params: dict[str, Any]) -> dict[str, Any]:
        self.calls += 1
        if self.hang:
            await asyncio.Event().wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        text = f"{self.tag}: {params['prompt']}"
        return {"output": text, "cost": {"tokens": len(text.split())}}


class ScriptedParticipant:
    """Negotiation participant answering from a list of approvals."""

    def __init__(
        self,
        agent_id: str,
        approvals: list[float],
        trust_weight: float = 1.0,
        critical: bool = False,
        approval_threshold: float = 0.7,
        flexibility: float = 0.5,
        delay: float = 0.0,
    ):
        self.agent_id = agent_id
        self.approvals = approvals
        self.trust_weight = trust_weight
        self.critical = critical
        self.approval_threshold = approval_threshold
        self.flexibility = flexibility
        self.delay = delay
        self.seen: list[Proposal] = []

    async def evaluate(self, proposal: Proposal, context: dict[str, Any]) -> Evaluation:
        if self.delay:
            await asyncio.sleep(self.delay)
        approval = self.approvals[min(len(self.seen), len(self.approvals) - 1)]
        self.seen.append(proposal)
        if approval >= 0.7:
            return Evaluation(self.agent_id, approval)
        return Evaluation(
            self.agent_id,
            approval,
            concerns=[f"{self.agent_id} wants more detail"],
            modifications=[f"add detail for {self.agent_id}"],
        )


def make_role_table() -> RoleTable:
    return RoleTable(
        [
            RoleSpec(role, (lambda cap=cap: RuleBasedStrategy(cap)), [cap])
            for role, cap in ROLE_CAPABILITIES.items()
        ]
    )


def accept_all_gate() -> QualityGate:
    return QualityGate([QualityDimension("accept", 1.0, lambda content: 1.0)], threshold=0.7)

"""
Example usage of the collabcore orchestration core.

This script wires four role-based agents to a toy text provider, loads
the sample configuration and drives a "report" task through its plan:
parallel research, a draft and a review, with events written to a JSONL
audit file.
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from collabcore import Orchestrator, OrchestratorContext, load_config
from collabcore.agents import AgentCapability, RoleSpec, RoleTable, RuleBasedStrategy
from collabcore.observability import JsonlEventSink
from collabcore.tools import ToolSpec

ROLES = {
    "researcher": "research",
    "analyst": "analyze",
    "writer": "write",
    "reviewer": "review",
}


class EchoProvider:
    """Stands in for a language model: answers with a tagged copy of the prompt."""

    def __init__(self, tag: str):
        self.tag = tag

    async def execute(self, tool_name: str, params: dict) -> dict:
        await asyncio.sleep(0.05)
        text = f"[{self.tag}] {params['prompt']}"
        return {"output": text, "cost": {"tokens": len(text.split())}}


async def main():
    """Main example function."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    project_root = Path(__file__).parent.parent
    config = load_config(project_root / "configs" / "collabcore.yaml")
    audit_path = project_root / ".collabcore" / "events.jsonl"

    print("=" * 60)
    print("collabcore Orchestration Demo")
    print("=" * 60)
    print(f"Audit log: {audit_path}")
    print()

    role_table = RoleTable(
        [
            RoleSpec(role, (lambda cap=cap: RuleBasedStrategy(cap)), [cap])
            for role, cap in ROLES.items()
        ]
    )
    context = OrchestratorContext.build(
        config=config, role_table=role_table, sinks=[JsonlEventSink(audit_path)]
    )
    for role, cap in ROLES.items():
        context.tools.register(
            ToolSpec(cap, description=f"{role} model", params={"prompt": str}, required=["prompt"]),
            EchoProvider(role),
        )
        context.create_agent(f"{role}-1", role, [AgentCapability(cap)])

    async with Orchestrator(context) as orchestrator:
        task = await orchestrator.execute(
            {
                "objective": "Quarterly report on e-bike sales in Europe",
                "task_type": "report",
                "requirements": {"audience": "board"},
            }
        )

        print(f"Task {task.task_id}: {task.status.value}")
        if task.failure_reason:
            print(f"  Reason: {task.failure_reason}")
        print(f"  Needs review: {task.needs_review}")
        print()

        for phase_id, result in task.results.items():
            print(f"Phase '{phase_id}' -> {result.status.value} (revisions: {result.revisions})")
            if result.quality:
                print(f"  Quality: {result.quality.weighted:.2f}")
            if result.negotiation:
                print(
                    f"  Negotiation: {result.negotiation.round_count} round(s), "
                    f"consensus={result.negotiation.consensus}"
                )
            for line in result.output.splitlines()[:3]:
                print(f"    {line}")
        print()

        stats = orchestrator.get_stats()
        print("Final Statistics:")
        print("-" * 60)
        print(f"  Agents: {stats['registry']['total_agents']}")
        print(f"  Messages sent: {stats['bus']['sent']}")
        print(f"  Negotiations: {stats['negotiations']}")


if __name__ == "__main__":
    asyncio.run(main())

"""
Orchestrator (Supervisor) driving tasks from brief to accepted result.

A task is planned into phases, each phase is executed by agents picked
from the registry (concurrently for parallel phases, in order for
sequential ones), divergent parallel outputs are negotiated, and every
phase result passes the quality gate with a bounded revision loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from collections.abc import Callable
from typing import Any

from ..agents import Agent, MessageType
from ..errors import (
    CollabError,
    FatalError,
    NoAgentAvailable,
    QualityRejected,
    ValidationError,
)
from ..negotiation import NegotiationSession, Proposal
from ..observability import EventType
from .context import OrchestratorContext
from .models import (
    BranchResult,
    ExecutionPlan,
    Phase,
    PhaseResult,
    PhaseStatus,
    Task,
    TaskStatus,
)
from .planner import ExecutionPlanner

logger = logging.getLogger(__name__)

ORCHESTRATOR_ID = "orchestrator"


class Orchestrator:
    """Supervisor of task execution.

    Args:
        context: Wired components to work with; built from defaults when
            omitted.
        clock: Wall clock used for deadlines and archive timestamps.
    """

    def __init__(
        self,
        context: OrchestratorContext | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.context = context or OrchestratorContext.build()
        self.config = self.context.config.orchestrator
        self.planner = ExecutionPlanner(self.config)
        self._clock = clock
        self._tasks: dict[str, Task] = {}
        self._runners: dict[str, asyncio.Task[Any]] = {}
        self._involved: dict[str, set[str]] = {}
        self._lock = threading.RLock()

    async def __aenter__(self) -> Orchestrator:
        await self.context.bus.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Stop the bus consumers owned by this orchestrator's context."""
        await self.context.bus.stop()

    # ------------------------------------------------------------------
    # Task intake
    # ------------------------------------------------------------------

    def submit_task(self, brief: dict[str, Any]) -> str:
        """Validate *brief* and create a pending task.

        Raises:
            ValidationError: the brief is malformed or cannot be planned.
        """
        self._validate_brief(brief)
        task = Task(brief=dict(brief), deadline=brief.get("deadline"))
        with self._lock:
            self._tasks[task.task_id] = task
            self._involved[task.task_id] = set()
        self.context.emitter.emit(
            EventType.TASK_STATUS, task.task_id, status=task.status.value, previous=None
        )
        logger.info(f"Submitted {task.task_id} ({task.task_type}): {task.objective[:80]}")
        return task.task_id

    def _validate_brief(self, brief: Any) -> None:
        if not isinstance(brief, dict):
            raise ValidationError("Brief must be a mapping")
        objective = brief.get("objective")
        if not isinstance(objective, str) or not objective.strip():
            raise ValidationError("Brief needs a non-empty 'objective' string")
        if not isinstance(brief.get("task_type", "general"), str):
            raise ValidationError("Brief 'task_type' must be a string")
        roles = brief.get("roles")
        if roles is not None and (
            not isinstance(roles, list) or not all(isinstance(r, str) and r for r in roles)
        ):
            raise ValidationError("Brief 'roles' must be a list of role names")
        if brief.get("phases") is not None and not isinstance(brief["phases"], list):
            raise ValidationError("Brief 'phases' must be a list")
        deadline = brief.get("deadline")
        if deadline is not None and (isinstance(deadline, bool) or not isinstance(deadline, (int, float))):
            raise ValidationError("Brief 'deadline' must be a timestamp")
        if brief.get("requirements") is not None and not isinstance(brief["requirements"], dict):
            raise ValidationError("Brief 'requirements' must be a mapping")
        self.planner.definitions_for(brief)

    def get_task(self, task_id: str) -> Task:
        with self._lock:
            task = self._tasks.get(task_id)
        if task is None:
            raise ValidationError(f"Unknown task: {task_id}")
        return task

    def get_task_status(self, task_id: str) -> TaskStatus:
        return self.get_task(task_id).status

    def list_tasks(self, status: TaskStatus | None = None) -> list[Task]:
        with self._lock:
            tasks = list(self._tasks.values())
        return [t for t in tasks if status is None or t.status == status]

    def create_execution_plan(self, task: Task) -> ExecutionPlan:
        """Plan *task*; a planning error fails the task and is re-raised."""
        if task.status == TaskStatus.PENDING:
            self._set_status(task, TaskStatus.PLANNING)
        try:
            task.plan = self.planner.plan(task)
        except ValidationError as exc:
            self._fail(task, f"planning failed: {exc}", type(exc).__name__)
            raise
        return task.plan

    # ------------------------------------------------------------------
    # Task execution
    # ------------------------------------------------------------------

    async def execute(self, brief: dict[str, Any]) -> Task:
        """Submit and run a brief to completion."""
        return await self.run_task(self.submit_task(brief))

    async def run_task(self, task_id: str) -> Task:
        """Drive a submitted task through all of its phases.

        The returned task is ``complete`` or ``failed``; its
        ``failure_reason`` and ``error_type`` state why, and results of
        finished phases are kept either way.
        """
        task = self.get_task(task_id)
        if task.status != TaskStatus.PENDING:
            raise ValidationError(f"Task {task_id} is already {task.status.value}")
        runner = asyncio.current_task()
        with self._lock:
            if runner is not None:
                self._runners[task_id] = runner

        try:
            self.create_execution_plan(task)
            self._set_status(task, TaskStatus.EXECUTING)
            await self._run_phases(task)
        except asyncio.CancelledError:
            self._reset_agents(task_id)
            self._fail(task, "cancelled", "CancelledError")
            raise
        except QualityRejected as exc:
            task.needs_review = True
            self._fail(task, f"escalated to manual review: {exc}", type(exc).__name__)
        except FatalError as exc:
            self._abort(task, exc, exc.snapshot)
        except (CollabError, TimeoutError) as exc:
            self._fail(task, str(exc), type(exc).__name__)
        except Exception as exc:
            self._abort(task, exc, {})
        finally:
            with self._lock:
                self._runners.pop(task_id, None)
            self._finish(task)
        return task

    async def _run_phases(self, task: Task) -> None:
        assert task.plan is not None
        outputs: dict[str, str] = {}
        for phase in task.plan.phases:
            inputs = "\n\n".join(outputs[d] for d in phase.depends_on if outputs.get(d)) or None
            result = await self.execute_phase(task, phase, inputs)
            task.results[phase.phase_id] = result
            if result.status == PhaseStatus.FAILED:
                self._fail_phase(task, result)
                return

            try:
                result = await self.quality_gate_check(task, phase, result)
            except QualityRejected as exc:
                if not self.config.continue_on_escalation:
                    raise
                task.needs_review = True
                logger.warning(
                    f"{task.task_id}: phase '{phase.phase_id}' accepted for manual review ({exc})"
                )
                result = task.results[phase.phase_id]

            if result.status == PhaseStatus.FAILED:
                self._fail_phase(task, result)
                return
            outputs[phase.phase_id] = result.output

        self._set_status(task, TaskStatus.COMPLETE)

    async def execute_phase(
        self,
        task: Task,
        phase: Phase,
        inputs: str | None = None,
        feedback: list[dict[str, Any]] | None = None,
        revision: int = 0,
        preferred: dict[str, str] | None = None,
    ) -> PhaseResult:
        """Run one phase and merge its branches.

        Raises:
            TimeoutError: the task deadline passed before the phase started.
            FatalError: a branch hit an unrecoverable error.
        """
        timeout = self._phase_timeout(task, phase)
        self.context.emitter.emit(
            EventType.PHASE_START,
            task.task_id,
            phase_id=phase.phase_id,
            parallel=phase.parallel,
            roles=list(phase.required_roles),
            timeout=timeout,
            revision=revision,
        )
        started = time.monotonic()
        if phase.parallel:
            result = await self._run_parallel(task, phase, inputs, timeout, feedback, revision, preferred)
        else:
            result = await self._run_sequential(
                task, phase, inputs, timeout, feedback, revision, preferred
            )
        result.inputs = inputs
        result.revisions = revision

        self.context.emitter.emit(
            EventType.PHASE_END,
            task.task_id,
            phase_id=phase.phase_id,
            status=result.status.value,
            duration=time.monotonic() - started,
            failures=[b.to_dict() for b in result.failures],
            revision=revision,
        )
        log = logger.warning if result.status != PhaseStatus.SUCCESS else logger.info
        log(
            f"{task.task_id}: phase '{phase.phase_id}' {result.status.value} "
            f"({len(result.failures)}/{len(result.branches)} branch failures)"
        )
        return result

    async def _run_parallel(
        self,
        task: Task,
        phase: Phase,
        inputs: str | None,
        timeout: float,
        feedback: list[dict[str, Any]] | None,
        revision: int,
        preferred: dict[str, str] | None,
    ) -> PhaseResult:
        branches: list[BranchResult] = []
        runs: dict[asyncio.Task[BranchResult], tuple[str, Agent]] = {}
        exclude: set[str] = set()
        context = self._agent_context(task, phase, inputs, feedback, revision)

        for role in phase.required_roles:
            try:
                agent = self._assign(task, phase, role, exclude, preferred)
            except NoAgentAvailable as exc:
                branches.append(_unassigned(role, exc))
                continue
            exclude.add(agent.agent_id)
            run = asyncio.create_task(
                self._run_branch(agent, role, dict(context)),
                name=f"{task.task_id}:{phase.phase_id}:{agent.agent_id}",
            )
            runs[run] = (role, agent)

        if runs:
            _, pending = await self._join(set(runs), timeout)
            for run, (role, agent) in runs.items():
                if run in pending:
                    branches.append(_timed_out(agent, role, timeout, task.task_id))
                else:
                    branches.append(run.result())

        return await self._merge(task, phase, branches)

    async def _run_sequential(
        self,
        task: Task,
        phase: Phase,
        inputs: str | None,
        timeout: float,
        feedback: list[dict[str, Any]] | None,
        revision: int,
        preferred: dict[str, str] | None,
    ) -> PhaseResult:
        loop = asyncio.get_running_loop()
        ends_at = loop.time() + timeout
        previous = inputs
        branches: list[BranchResult] = []

        for role in phase.required_roles:
            remaining = ends_at - loop.time()
            if remaining <= 0:
                branches.append(
                    BranchResult(
                        f"<unassigned:{role}>",
                        role,
                        False,
                        error=f"phase time of {timeout:.1f}s used up",
                        error_type="TimeoutError",
                    )
                )
                break
            context = self._agent_context(task, phase, previous, feedback, revision)
            try:
                agent = self._assign(task, phase, role, set(), preferred)
            except NoAgentAvailable as exc:
                branches.append(_unassigned(role, exc))
                break

            run = asyncio.create_task(
                self._run_branch(agent, role, context),
                name=f"{task.task_id}:{phase.phase_id}:{agent.agent_id}",
            )
            _, pending = await self._join({run}, remaining)
            if pending:
                branches.append(_timed_out(agent, role, remaining, task.task_id))
                break
            branch = run.result()
            branches.append(branch)
            if not branch.success:
                break
            previous = branch.output

        complete = len(branches) == len(phase.required_roles) and all(b.success for b in branches)
        return PhaseResult(
            phase_id=phase.phase_id,
            status=PhaseStatus.SUCCESS if complete else PhaseStatus.FAILED,
            output=previous or "",
            branches=branches,
            deficiencies=[_branch_deficiency(b) for b in branches if not b.success],
        )

    async def _join(
        self, runs: set[asyncio.Task[BranchResult]], timeout: float
    ) -> tuple[set[asyncio.Task[BranchResult]], set[asyncio.Task[BranchResult]]]:
        """Wait for *runs* up to *timeout*; cancel whatever is unfinished."""
        try:
            done, pending = await asyncio.wait(runs, timeout=timeout)
        except asyncio.CancelledError:
            for run in runs:
                run.cancel()
            await asyncio.gather(*runs, return_exceptions=True)
            raise
        for run in pending:
            run.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        return done, pending

    async def _run_branch(self, agent: Agent, role: str, context: dict[str, Any]) -> BranchResult:
        started = time.monotonic()
        try:
            result = await agent.run(context)
        except FatalError:
            raise
        except Exception as exc:
            return BranchResult(
                agent.agent_id,
                role,
                False,
                error=str(exc),
                error_type=type(exc).__name__,
                duration=time.monotonic() - started,
            )
        duration = time.monotonic() - started
        if not result.success:
            return BranchResult(
                agent.agent_id,
                role,
                False,
                output=result.output,
                error=result.error or "degraded to manual review",
                error_type="Degraded",
                duration=duration,
                degraded=True,
            )
        output = result.output if isinstance(result.output, str) else json.dumps(result.output, default=str)
        return BranchResult(agent.agent_id, role, True, output=output, duration=duration)

    async def _merge(self, task: Task, phase: Phase, branches: list[BranchResult]) -> PhaseResult:
        """Combine parallel branches deterministically (ordered by agent id)."""
        branches = sorted(branches, key=lambda b: b.agent_id)
        successes = [b for b in branches if b.success]
        failures = [b for b in branches if not b.success]
        deficiencies = [_branch_deficiency(b) for b in failures]

        if not successes or len(failures) / len(branches) > self.config.abort_failure_ratio:
            return PhaseResult(
                phase_id=phase.phase_id,
                status=PhaseStatus.FAILED,
                output="\n\n".join(b.output for b in successes),
                branches=branches,
                deficiencies=deficiencies,
            )

        output, session = await self._reconcile(task, phase, successes)
        if session is not None and not session.consensus:
            deficiencies.append(
                {
                    "dimension": "negotiation",
                    "reason": session.terminal_reason.value if session.terminal_reason else "",
                    "vetoed_by": session.vetoed_by,
                    "suggested_fix": session.veto_reason or "Resolve the disagreement manually",
                }
            )
        return PhaseResult(
            phase_id=phase.phase_id,
            status=PhaseStatus.PARTIAL if failures else PhaseStatus.SUCCESS,
            output=output,
            branches=branches,
            deficiencies=deficiencies,
            negotiation=session,
        )

    async def _reconcile(
        self, task: Task, phase: Phase, successes: list[BranchResult]
    ) -> tuple[str, NegotiationSession | None]:
        distinct = list(dict.fromkeys(b.output for b in successes))
        merged = "\n\n".join(distinct)
        if len(distinct) < 2 or not phase.should_negotiate:
            return merged, None

        participants = [
            agent
            for agent in (self.context.registry.get_agent(b.agent_id) for b in successes)
            if agent is not None
        ]
        proposal = Proposal(
            agent_id=ORCHESTRATOR_ID,
            content=merged,
            attributes={"phase": phase.phase_id, "alternatives": len(distinct)},
        )
        session = await self.context.negotiation.negotiate(
            task.task_id,
            proposal,
            participants,
            phase_id=phase.phase_id,
            context={
                "task_type": task.task_type,
                "objective": task.objective,
                "phase": phase.phase_id,
            },
        )
        if not session.consensus:
            task.needs_review = True
            logger.warning(
                f"{task.task_id}: no consensus in phase '{phase.phase_id}' "
                f"({session.terminal_reason.value if session.terminal_reason else '-'}), "
                f"continuing with best proposal"
            )
        final = session.final_proposal.content if session.final_proposal else merged
        return final, session

    def select_agent(
        self,
        role: str,
        capabilities: list[str] | None = None,
        exclude: set[str] | None = None,
    ) -> Agent:
        """Fittest idle agent for *role*; raises ``NoAgentAvailable``."""
        return self.context.registry.select(role, capabilities, exclude)

    def _assign(
        self,
        task: Task,
        phase: Phase,
        role: str,
        exclude: set[str],
        preferred: dict[str, str] | None,
    ) -> Agent:
        """Reserve an agent for *role*; it stays WORKING until its branch ends."""
        agent = self.context.registry.reserve(
            role,
            task.task_id,
            phase.capabilities_for(role),
            exclude,
            preferred=(preferred or {}).get(role),
        )
        with self._lock:
            self._involved.setdefault(task.task_id, set()).add(agent.agent_id)
        return agent

    # ------------------------------------------------------------------
    # Quality gate and revisions
    # ------------------------------------------------------------------

    async def quality_gate_check(self, task: Task, phase: Phase, result: PhaseResult) -> PhaseResult:
        """Score *result*, revising up to ``max_revisions`` times.

        Raises:
            QualityRejected: still below the bar after the last revision.
        """
        revisions = result.revisions
        while True:
            report = self.context.quality_gate.score(result.output)
            result.quality = report
            task.results[phase.phase_id] = result
            self.context.emitter.emit(
                EventType.QUALITY_GATE,
                task.task_id,
                phase_id=phase.phase_id,
                accepted=report.accepted,
                weighted=report.weighted,
                scores=report.scores,
                revision=revisions,
                deficiencies=report.feedback(),
            )
            if report.accepted:
                return result
            if revisions >= self.config.max_revisions:
                logger.warning(
                    f"{task.task_id}: phase '{phase.phase_id}' still below quality bar "
                    f"after {revisions} revision(s), escalating"
                )
                raise QualityRejected(report, revisions)

            revisions += 1
            feedback = report.feedback()
            self._set_status(task, TaskStatus.REVISING, f"{phase.phase_id} revision {revisions}")
            await self._send_feedback(result, feedback)
            preferred = {b.role: b.agent_id for b in result.branches if b.success}
            revised = await self.execute_phase(
                task, phase, result.inputs, feedback, revisions, preferred
            )
            self._set_status(task, TaskStatus.EXECUTING, f"{phase.phase_id} revised")
            result = revised
            if result.status == PhaseStatus.FAILED:
                task.results[phase.phase_id] = result
                return result

    async def _send_feedback(self, result: PhaseResult, feedback: list[dict[str, Any]]) -> None:
        summary = "; ".join(f"{d['dimension']}: {d['suggested_fix']}" for d in feedback)
        for agent_id in result.agent_ids:
            if not self.context.bus.is_registered(agent_id):
                continue
            await self.context.bus.send_message(
                ORCHESTRATOR_ID,
                agent_id,
                {"feedback": summary, "deficiencies": feedback},
                msg_type=MessageType.FEEDBACK,
            )

    # ------------------------------------------------------------------
    # Cancellation, failure and bookkeeping
    # ------------------------------------------------------------------

    async def cancel_task(self, task_id: str) -> bool:
        """Cancel a task; every active branch stops and its agents go idle.

        Returns False if the task had already finished.
        """
        task = self.get_task(task_id)
        if task.status.terminal:
            return False
        with self._lock:
            runner = self._runners.get(task_id)
        if runner is asyncio.current_task():
            raise ValidationError("A task cannot cancel itself")
        if runner is None or runner.done():
            self._fail(task, "cancelled", "CancelledError")
            self._finish(task)
            return True
        runner.cancel()
        await asyncio.wait({runner})
        return True

    def _reset_agents(self, task_id: str) -> None:
        with self._lock:
            involved = sorted(self._involved.get(task_id, set()))
        for agent_id in involved:
            agent = self.context.registry.get_agent(agent_id)
            if agent is not None and agent.lifecycle.current_task == task_id:
                agent.lifecycle.reset(f"task {task_id} cancelled")

    def _phase_timeout(self, task: Task, phase: Phase) -> float:
        timeout = phase.timeout
        if task.deadline is not None:
            remaining = task.deadline - self._clock()
            if remaining <= 0:
                raise TimeoutError(f"Deadline passed before phase '{phase.phase_id}'")
            timeout = min(timeout, remaining)
        return timeout

    def _agent_context(
        self,
        task: Task,
        phase: Phase,
        inputs: str | None,
        feedback: list[dict[str, Any]] | None,
        revision: int,
    ) -> dict[str, Any]:
        return {
            "task_id": task.task_id,
            "task_type": task.task_type,
            "objective": task.objective,
            "requirements": dict(task.brief.get("requirements") or {}),
            "phase": phase.phase_id,
            "inputs": inputs,
            "feedback": list(feedback or []),
            "revision": revision,
        }

    def _set_status(self, task: Task, status: TaskStatus, reason: str = "") -> None:
        previous = task.transition(status, reason)
        self.context.emitter.emit(
            EventType.TASK_STATUS,
            task.task_id,
            status=status.value,
            previous=previous.value,
            reason=reason,
        )
        logger.info(f"{task.task_id}: {previous.value} -> {status.value} {reason}".rstrip())

    def _fail(self, task: Task, reason: str, error_type: str) -> None:
        if task.status.terminal:
            return
        task.failure_reason = reason
        task.error_type = error_type
        self._set_status(task, TaskStatus.FAILED, reason)
        logger.warning(f"Task {task.task_id} failed: {reason}")

    def _fail_phase(self, task: Task, result: PhaseResult) -> None:
        failures = result.failures
        reason = (
            f"phase '{result.phase_id}' aborted: {len(failures)}/{len(result.branches)} "
            f"branches failed"
        )
        error_type = "PhaseFailed"
        if failures:
            first = failures[0]
            reason += f" ({first.agent_id}: {first.error_type}: {first.error})"
            error_type = first.error_type or error_type
        self._fail(task, reason, error_type)

    def _abort(self, task: Task, exc: BaseException, detail: dict[str, Any]) -> None:
        snapshot = {
            "task": task.to_dict(),
            "error": detail,
            "agents": {
                a.agent_id: a.status()
                for a in self.context.registry.list_agents()
                if a.agent_id in self._involved.get(task.task_id, set())
            },
            "circuits": self.context.resilience.get_stats()["circuits"],
        }
        logger.error(
            f"Task {task.task_id} aborted: {type(exc).__name__}: {exc}\n"
            f"snapshot: {json.dumps(snapshot, default=str)}"
        )
        self._fail(task, f"fatal: {exc}", type(exc).__name__)

    def _finish(self, task: Task) -> None:
        """Record episodes for every involved agent and archive the task."""
        success = task.status == TaskStatus.COMPLETE
        summary = f"{task.objective} -> {task.status.value}"
        if task.failure_reason:
            summary += f" ({task.failure_reason})"
        with self._lock:
            involved = sorted(self._involved.get(task.task_id, set()))
        for agent_id in involved:
            agent = self.context.registry.get_agent(agent_id)
            if agent is None:
                continue
            agent.memory.record_episode(
                task.task_id, task.task_type, success, summary, metadata={"role": agent.role}
            )
            agent.memory.consolidate()
        self.context.persist_memory(involved)
        task.archived = True
        task.archived_at = self._clock()

    def get_stats(self) -> dict[str, Any]:
        """Aggregate statistics across tasks and components."""
        tasks = self.list_tasks()
        return {
            "tasks": {
                status.value: len([t for t in tasks if t.status == status]) for status in TaskStatus
            },
            "needs_review": len([t for t in tasks if t.needs_review]),
            "registry": self.context.registry.get_registry_stats(),
            "bus": self.context.bus.get_bus_stats(),
            "resilience": self.context.resilience.get_stats(),
            "tools": self.context.tools.usage_summary(),
            "negotiations": len(self.context.negotiation.sessions),
        }


def _unassigned(role: str, exc: NoAgentAvailable) -> BranchResult:
    return BranchResult(
        f"<unassigned:{role}>", role, False, error=str(exc), error_type=type(exc).__name__
    )


def _timed_out(agent: Agent, role: str, timeout: float, task_id: str) -> BranchResult:
    agent.stats.record(False, timeout)
    if agent.lifecycle.current_task == task_id:
        agent.lifecycle.reset("phase timeout")
    return BranchResult(
        agent.agent_id,
        role,
        False,
        error=f"no result within {timeout:.2f}s",
        error_type="TimeoutError",
        duration=timeout,
    )


def _branch_deficiency(branch: BranchResult) -> dict[str, Any]:
    return {
        "dimension": "branch",
        "agent_id": branch.agent_id,
        "role": branch.role,
        "error_type": branch.error_type,
        "error": branch.error,
        "suggested_fix": f"Re-run {branch.role} or resolve {branch.error_type}",
    }

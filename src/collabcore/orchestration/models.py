"""
Task, plan and result records owned by the orchestrator.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..errors import InvalidTransition
from ..negotiation import NegotiationSession
from ..quality import QualityReport


class TaskStatus(Enum):
    PENDING = "pending"
    PLANNING = "planning"
    EXECUTING = "executing"
    REVISING = "revising"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (TaskStatus.COMPLETE, TaskStatus.FAILED)


_TASK_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING: {TaskStatus.PLANNING, TaskStatus.FAILED},
    TaskStatus.PLANNING: {TaskStatus.EXECUTING, TaskStatus.FAILED},
    TaskStatus.EXECUTING: {TaskStatus.REVISING, TaskStatus.COMPLETE, TaskStatus.FAILED},
    TaskStatus.REVISING: {TaskStatus.EXECUTING, TaskStatus.FAILED},
    TaskStatus.COMPLETE: set(),
    TaskStatus.FAILED: set(),
}


class PhaseStatus(Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class Phase:
    """One step of an execution plan."""

    phase_id: str
    required_roles: list[str]
    parallel: bool = False
    timeout: float = 300.0
    depends_on: list[str] = field(default_factory=list)
    required_capabilities: dict[str, list[str]] = field(default_factory=dict)
    negotiate: bool | None = None
    description: str = ""

    @property
    def should_negotiate(self) -> bool:
        return self.parallel if self.negotiate is None else self.negotiate

    def capabilities_for(self, role: str) -> list[str]:
        return list(self.required_capabilities.get(role, []))

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase_id": self.phase_id,
            "required_roles": list(self.required_roles),
            "parallel": self.parallel,
            "timeout": self.timeout,
            "depends_on": list(self.depends_on),
            "required_capabilities": {k: list(v) for k, v in self.required_capabilities.items()},
            "negotiate": self.should_negotiate,
            "description": self.description,
        }


@dataclass
class ExecutionPlan:
    """Phases in execution order."""

    task_id: str
    phases: list[Phase]

    def phase(self, phase_id: str) -> Phase:
        for phase in self.phases:
            if phase.phase_id == phase_id:
                return phase
        raise KeyError(phase_id)

    def to_dict(self) -> dict[str, Any]:
        return {"task_id": self.task_id, "phases": [p.to_dict() for p in self.phases]}


@dataclass
class BranchResult:
    """What one agent produced (or failed to produce) within a phase."""

    agent_id: str
    role: str
    success: bool
    output: Any = None
    error: str | None = None
    error_type: str | None = None
    duration: float = 0.0
    degraded: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "role": self.role,
            "success": self.success,
            "output": self.output,
            "error": self.error,
            "error_type": self.error_type,
            "duration": self.duration,
            "degraded": self.degraded,
        }


@dataclass
class PhaseResult:
    phase_id: str
    status: PhaseStatus
    output: str = ""
    branches: list[BranchResult] = field(default_factory=list)
    deficiencies: list[dict[str, Any]] = field(default_factory=list)
    revisions: int = 0
    quality: QualityReport | None = None
    negotiation: NegotiationSession | None = None
    inputs: str | None = None

    @property
    def failures(self) -> list[BranchResult]:
        return [b for b in self.branches if not b.success]

    @property
    def agent_ids(self) -> list[str]:
        return [b.agent_id for b in self.branches if b.success]

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase_id": self.phase_id,
            "status": self.status.value,
            "output": self.output,
            "branches": [b.to_dict() for b in self.branches],
            "deficiencies": list(self.deficiencies),
            "revisions": self.revisions,
            "quality": self.quality.to_dict() if self.quality else None,
            "negotiation": self.negotiation.to_dict() if self.negotiation else None,
        }


@dataclass
class Task:
    """A unit of work driven from brief to accepted result."""

    brief: dict[str, Any]
    task_id: str = field(default_factory=lambda: f"task-{uuid.uuid4().hex[:12]}")
    status: TaskStatus = TaskStatus.PENDING
    deadline: float | None = None
    plan: ExecutionPlan | None = None
    results: dict[str, PhaseResult] = field(default_factory=dict)
    failure_reason: str | None = None
    error_type: str | None = None
    needs_review: bool = False
    status_history: list[tuple[str, float, str]] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    archived: bool = False
    archived_at: float | None = None

    @property
    def task_type(self) -> str:
        return str(self.brief.get("task_type") or "general")

    @property
    def objective(self) -> str:
        return str(self.brief.get("objective", ""))

    def transition(self, target: TaskStatus, reason: str = "") -> TaskStatus:
        """Move to *target*; returns the previous status."""
        if target not in _TASK_TRANSITIONS[self.status]:
            raise InvalidTransition(f"task {self.task_id}", self.status, target)
        previous = self.status
        self.status = target
        self.status_history.append((target.value, time.time(), reason))
        return previous

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "brief": self.brief,
            "status": self.status.value,
            "deadline": self.deadline,
            "plan": self.plan.to_dict() if self.plan else None,
            "results": {k: v.to_dict() for k, v in self.results.items()},
            "failure_reason": self.failure_reason,
            "error_type": self.error_type,
            "needs_review": self.needs_review,
            "status_history": list(self.status_history),
            "archived": self.archived,
            "archived_at": self.archived_at,
        }

"""
Task orchestration: planning, phase execution, quality gating.
"""

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
from .orchestrator import ORCHESTRATOR_ID, Orchestrator
from .planner import PHASE_KEYS, ExecutionPlanner

__all__ = [
    "BranchResult",
    "ExecutionPlan",
    "ExecutionPlanner",
    "ORCHESTRATOR_ID",
    "Orchestrator",
    "OrchestratorContext",
    "PHASE_KEYS",
    "Phase",
    "PhaseResult",
    "PhaseStatus",
    "Task",
    "TaskStatus",
]

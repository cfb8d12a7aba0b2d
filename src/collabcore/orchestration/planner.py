"""
Execution planning: turn a brief into ordered phases.

Phase definitions come from the brief's ``phases``, else from a configured
plan template for the brief's ``task_type``, else a single sequential
phase over the brief's ``roles``.
"""

from __future__ import annotations

import logging
from typing import Any

from ..config import OrchestratorConfig
from ..errors import ValidationError
from ..graph import topological_sort
from .models import ExecutionPlan, Phase, Task

logger = logging.getLogger(__name__)

PHASE_KEYS = {
    "name",
    "roles",
    "parallel",
    "timeout",
    "depends_on",
    "capabilities",
    "negotiate",
    "description",
}


class ExecutionPlanner:
    def __init__(self, config: OrchestratorConfig | None = None):
        self.config = config or OrchestratorConfig()

    def has_template(self, task_type: str) -> bool:
        return task_type in self.config.plans

    def definitions_for(self, brief: dict[str, Any]) -> list[dict[str, Any]]:
        if brief.get("phases"):
            return list(brief["phases"])
        task_type = str(brief.get("task_type") or "general")
        if self.has_template(task_type):
            return list(self.config.plans[task_type])
        if brief.get("roles"):
            return [{"name": "main", "roles": list(brief["roles"]), "parallel": False}]
        raise ValidationError(
            f"Brief has no phases, no roles and no plan template for task type '{task_type}'"
        )

    def plan(self, task: Task) -> ExecutionPlan:
        """Build and order the phases of *task*.

        Raises:
            ValidationError: malformed phase definitions, unknown
                dependencies or dependency cycles.
        """
        phases: list[Phase] = []
        previous: str | None = None
        for index, raw in enumerate(self.definitions_for(task.brief)):
            phase = self._build_phase(raw, index, previous)
            phases.append(phase)
            previous = phase.phase_id

        names = [p.phase_id for p in phases]
        edges = [(dep, p.phase_id) for p in phases for dep in p.depends_on]
        order = topological_sort(names, edges)
        by_id = {p.phase_id: p for p in phases}
        plan = ExecutionPlan(task_id=task.task_id, phases=[by_id[name] for name in order])
        logger.info(f"Planned {task.task_id}: {' -> '.join(order)}")
        return plan

    def _build_phase(self, raw: Any, index: int, previous: str | None) -> Phase:
        if not isinstance(raw, dict):
            raise ValidationError(f"Phase #{index} must be a mapping")
        unknown = set(raw) - PHASE_KEYS
        if unknown:
            raise ValidationError(f"Phase #{index} has unknown keys: {sorted(unknown)}")

        name = raw.get("name") or f"phase-{index + 1}"
        roles = raw.get("roles")
        if not isinstance(roles, list) or not roles or not all(isinstance(r, str) for r in roles):
            raise ValidationError(f"Phase '{name}' needs a non-empty list of roles")

        timeout = raw.get("timeout", self.config.default_phase_timeout)
        if not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ValidationError(f"Phase '{name}' timeout must be a positive number")

        if "depends_on" in raw:
            depends_on = raw["depends_on"]
            if not isinstance(depends_on, list):
                raise ValidationError(f"Phase '{name}' depends_on must be a list")
        else:
            depends_on = [previous] if previous else []

        capabilities = raw.get("capabilities") or {}
        if not isinstance(capabilities, dict):
            raise ValidationError(f"Phase '{name}' capabilities must map roles to lists")

        return Phase(
            phase_id=str(name),
            required_roles=list(roles),
            parallel=bool(raw.get("parallel", False)),
            timeout=float(timeout),
            depends_on=[str(d) for d in depends_on],
            required_capabilities={str(k): list(v) for k, v in capabilities.items()},
            negotiate=raw.get("negotiate"),
            description=str(raw.get("description", "")),
        )

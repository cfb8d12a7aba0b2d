"""
Quality Gate.

A result is accepted only when the weighted score reaches the threshold
and every dimension reaches its own floor. Rejections come with an ordered
list of deficiencies that the orchestrator feeds back to the agents.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from ..config import QualityConfig
from ..errors import ValidationError
from .evaluators import BUILTIN_EVALUATORS, Evaluator

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS = {"completeness": 0.5, "readability": 0.5}

DEFAULT_FIXES = {
    "completeness": "Fill in missing sections and remove placeholders",
    "readability": "Use shorter sentences",
    "length": "Adjust the length to the expected range",
}


@dataclass
class QualityDimension:
    name: str
    weight: float
    evaluator: Evaluator
    floor: float = 0.0
    suggested_fix: str = ""


@dataclass
class Deficiency:
    """One reason for rejection."""

    dimension: str
    shortfall: float
    suggested_fix: str
    floor_violation: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "dimension": self.dimension,
            "shortfall": round(self.shortfall, 4),
            "suggested_fix": self.suggested_fix,
            "floor_violation": self.floor_violation,
        }


@dataclass
class QualityReport:
    scores: dict[str, float]
    weighted: float
    threshold: float
    accepted: bool
    deficiencies: list[Deficiency] = field(default_factory=list)

    def feedback(self) -> list[dict[str, Any]]:
        return [d.to_dict() for d in self.deficiencies]

    def to_dict(self) -> dict[str, Any]:
        return {
            "scores": dict(self.scores),
            "weighted": self.weighted,
            "threshold": self.threshold,
            "accepted": self.accepted,
            "deficiencies": self.feedback(),
        }


class QualityGate:
    """Weighted, floor-constrained acceptance check."""

    def __init__(self, dimensions: list[QualityDimension], threshold: float = 0.7):
        if not dimensions:
            raise ValidationError("Quality gate needs at least one dimension")
        names = [d.name for d in dimensions]
        if len(set(names)) != len(names):
            raise ValidationError(f"Duplicate quality dimensions: {names}")
        if any(d.weight < 0 for d in dimensions):
            raise ValidationError("Quality weights must be non-negative")
        total = sum(d.weight for d in dimensions)
        if not math.isclose(total, 1.0, abs_tol=1e-6):
            raise ValidationError(f"Quality weights must sum to 1.0, got {total:.4f}")
        if not 0.0 <= threshold <= 1.0:
            raise ValidationError("Quality threshold must be within [0, 1]")
        self.dimensions = list(dimensions)
        self.threshold = threshold

    @classmethod
    def from_config(
        cls,
        config: QualityConfig,
        evaluators: Mapping[str, Evaluator] | None = None,
    ) -> QualityGate:
        """Build a gate from configured weights and floors.

        Dimension names resolve first against *evaluators*, then against the
        built-in evaluators.
        """
        available = {**BUILTIN_EVALUATORS, **(evaluators or {})}
        weights = config.weights or DEFAULT_WEIGHTS
        unknown = sorted(set(weights) - set(available))
        if unknown:
            raise ValidationError(f"No evaluator for quality dimensions: {unknown}")
        stray = sorted(set(config.floors) - set(weights))
        if stray:
            raise ValidationError(f"Floors set for unweighted dimensions: {stray}")
        dimensions = [
            QualityDimension(
                name=name,
                weight=weight,
                evaluator=available[name],
                floor=config.floors.get(name, 0.0),
                suggested_fix=DEFAULT_FIXES.get(name, ""),
            )
            for name, weight in weights.items()
        ]
        return cls(dimensions, threshold=config.threshold)

    def score(self, content: Any) -> QualityReport:
        """Score *content* on every dimension and decide acceptance."""
        text = content if isinstance(content, str) else str(content)
        scores = {d.name: _clamp(d.evaluator(text)) for d in self.dimensions}
        weighted = sum(d.weight * scores[d.name] for d in self.dimensions)
        floors_ok = all(scores[d.name] >= d.floor for d in self.dimensions)
        accepted = floors_ok and weighted >= self.threshold - 1e-9

        deficiencies: list[Deficiency] = []
        if not accepted:
            deficiencies = self._deficiencies(scores)
            logger.info(
                f"Quality gate rejected result (weighted {weighted:.3f}, "
                f"threshold {self.threshold:.2f}, {len(deficiencies)} deficiencies)"
            )
        return QualityReport(scores, weighted, self.threshold, accepted, deficiencies)

    def _deficiencies(self, scores: dict[str, float]) -> list[Deficiency]:
        floor_hits: list[Deficiency] = []
        others: list[Deficiency] = []
        for d in self.dimensions:
            value = scores[d.name]
            fix = d.suggested_fix or f"Improve {d.name}"
            if value < d.floor:
                floor_hits.append(Deficiency(d.name, d.floor - value, fix, floor_violation=True))
            elif value < self.threshold:
                others.append(Deficiency(d.name, self.threshold - value, fix))

        def order(x: Deficiency) -> tuple[float, str]:
            return (-x.shortfall, x.dimension)

        return sorted(floor_hits, key=order) + sorted(others, key=order)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))

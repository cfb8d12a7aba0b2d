"""
Quality Gate: weighted, floor-constrained scoring of phase results.
"""

from .evaluators import (
    BUILTIN_EVALUATORS,
    Evaluator,
    completeness,
    keyword_coverage,
    length_score,
    readability,
)
from .gate import Deficiency, QualityDimension, QualityGate, QualityReport

__all__ = [
    "BUILTIN_EVALUATORS",
    "Deficiency",
    "Evaluator",
    "QualityDimension",
    "QualityGate",
    "QualityReport",
    "completeness",
    "keyword_coverage",
    "length_score",
    "readability",
]

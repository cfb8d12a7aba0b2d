"""
Built-in quality evaluators.

An evaluator is a pure function ``content -> float`` in [0, 1]. The
parameterised ones are factories returning such a function.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable

Evaluator = Callable[[str], float]

PLACEHOLDER_PATTERNS = [
    r"\bTODO\b",
    r"\bTBD\b",
    r"\bFIXME\b",
    r"lorem ipsum",
    r"\[placeholder\]",
    r"\.\.\.\s*$",
]

_PLACEHOLDERS = [re.compile(p, re.I | re.M) for p in PLACEHOLDER_PATTERNS]
_SENTENCE_END = re.compile(r"[.!?]+(?:\s|$)")
_WORD = re.compile(r"\b\w+\b")


def completeness(content: str) -> float:
    """1.0 for non-empty content without placeholders; -0.25 per placeholder."""
    if not content.strip():
        return 0.0
    hits = sum(len(p.findall(content)) for p in _PLACEHOLDERS)
    return max(0.0, 1.0 - 0.25 * hits)


def readability(content: str, target_words: int = 20, tolerance: int = 30) -> float:
    """Penalise average sentence length beyond *target_words*."""
    words = _WORD.findall(content)
    if not words:
        return 0.0
    sentences = max(1, len(_SENTENCE_END.findall(content)))
    average = len(words) / sentences
    if average <= target_words:
        return 1.0
    return max(0.0, 1.0 - (average - target_words) / tolerance)


def keyword_coverage(keywords: Iterable[str]) -> Evaluator:
    """Share of *keywords* mentioned in the content (case-insensitive)."""
    terms = [k.lower() for k in keywords if k]

    def evaluate(content: str) -> float:
        if not terms:
            return 1.0
        text = content.lower()
        return sum(1 for t in terms if t in text) / len(terms)

    return evaluate


def length_score(min_words: int = 50, max_words: int | None = None) -> Evaluator:
    """1.0 inside the word range, falling off linearly outside it."""

    def evaluate(content: str) -> float:
        count = len(_WORD.findall(content))
        if count < min_words:
            return count / min_words if min_words else 1.0
        if max_words is not None and count > max_words:
            return max(0.0, 1.0 - (count - max_words) / max_words)
        return 1.0

    return evaluate


BUILTIN_EVALUATORS: dict[str, Evaluator] = {
    "completeness": completeness,
    "readability": readability,
    "length": length_score(),
}

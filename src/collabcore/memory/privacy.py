"""
Masking of structured personal identifiers before anything is persisted.
"""

from __future__ import annotations

import re

SENSITIVE_PATTERNS: list[tuple[str, str]] = [
    ("email", r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
    ("card", r"\b(?:\d[ -]?){13,16}\b"),
    ("national_id", r"\b\d{3}-\d{2}-\d{4}\b"),
    ("phone", r"(?<!\w)(?:\+?\d{1,3}[ .-]?)?\(?\d{3}\)?[ .-]?\d{3}[ .-]\d{4}\b"),
    ("iban", r"\b[A-Z]{2}\d{2}(?: ?[A-Z0-9]{4}){3,7}\b"),
]

_COMPILED = [(kind, re.compile(pattern)) for kind, pattern in SENSITIVE_PATTERNS]


def sanitize(text: str) -> str:
    """Replace every sensitive identifier in *text* with ``[REDACTED:<kind>]``."""
    for kind, pattern in _COMPILED:
        text = pattern.sub(f"[REDACTED:{kind}]", text)
    return text


def contains_sensitive(text: str) -> bool:
    return any(pattern.search(text) for _, pattern in _COMPILED)

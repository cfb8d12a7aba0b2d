"""
Error classification for retry decisions.

Typed errors from :mod:`collabcore.errors` are classified by type. Foreign
exceptions raised by providers are classified by their type first and by
message patterns second, so that e.g. an HTTP client's "503 Service
Unavailable" is treated as transient.
"""

from __future__ import annotations

import asyncio
import re
from enum import Enum

from ..errors import (
    FatalError,
    RateLimitError,
    ToolUnavailableError,
    TransientError,
    ValidationError,
)


class ErrorCategory(str, Enum):
    TRANSIENT = "transient"
    RATE_LIMIT = "rate_limit"
    VALIDATION = "validation"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


TRANSIENT_PATTERNS = [
    r"timeout",
    r"timed out",
    r"connection (refused|reset|aborted)",
    r"temporar(y|ily) (failure|unavailable)",
    r"\b50[234]\b",
    r"network.*unreachable",
    r"broken ?pipe",
]
RATE_LIMIT_PATTERNS = [
    r"\b429\b",
    r"rate.?limit",
    r"too many requests",
    r"quota exceeded",
]
VALIDATION_PATTERNS = [
    r"\b4(00|22)\b",
    r"invalid (param|argument|input|request)",
    r"schema",
]

_TRANSIENT_RE = [re.compile(p, re.I) for p in TRANSIENT_PATTERNS]
_RATE_LIMIT_RE = [re.compile(p, re.I) for p in RATE_LIMIT_PATTERNS]
_VALIDATION_RE = [re.compile(p, re.I) for p in VALIDATION_PATTERNS]


def classify_error(exc: BaseException) -> ErrorCategory:
    """Map an exception onto a retry category."""
    if isinstance(exc, ValidationError):
        return ErrorCategory.VALIDATION
    if isinstance(exc, RateLimitError):
        return ErrorCategory.RATE_LIMIT
    if isinstance(exc, ToolUnavailableError):
        return ErrorCategory.UNAVAILABLE
    if isinstance(exc, (TransientError, TimeoutError, asyncio.TimeoutError, ConnectionError)):
        return ErrorCategory.TRANSIENT
    if isinstance(exc, FatalError):
        return ErrorCategory.UNKNOWN
    text = f"{type(exc).__name__} {exc}"
    if any(p.search(text) for p in _RATE_LIMIT_RE):
        return ErrorCategory.RATE_LIMIT
    if any(p.search(text) for p in _TRANSIENT_RE):
        return ErrorCategory.TRANSIENT
    if any(p.search(text) for p in _VALIDATION_RE):
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


def counts_as_failure(exc: BaseException) -> bool:
    """Whether an error says something about the health of the provider.

    Validation errors mean the provider answered; they must not trip the
    circuit.
    """
    return classify_error(exc) is not ErrorCategory.VALIDATION

"""
Error Taxonomy for the Orchestration Core.

Every component raises one of these classes so that the resilience layer
and the orchestrator can decide between retry, fallback, revision,
partial continuation and abort without inspecting message strings.
"""

from __future__ import annotations

from typing import Any


class CollabError(Exception):
    """Base class for all orchestration-core errors."""

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary."""
        return {"type": type(self).__name__, "message": str(self)}


class ValidationError(CollabError):
    """Malformed input. Never retried, surfaced immediately."""


class TransientError(CollabError):
    """Timeout or connection failure of an external dependency."""


class RateLimitError(CollabError):
    """The provider asked the caller to slow down."""

    def __init__(self, message: str = "rate limited", retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["retry_after"] = self.retry_after
        return data


class ToolUnavailableError(CollabError):
    """The circuit for a service is open (or its half-open trial is in flight)."""

    def __init__(self, service_id: str, retry_at: float | None = None, message: str = ""):
        super().__init__(message or f"Service '{service_id}' is unavailable")
        self.service_id = service_id
        self.retry_at = retry_at

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update({"service_id": self.service_id, "retry_at": self.retry_at})
        return data


class ConsensusFailure(CollabError):
    """Negotiation ended without agreement; the best proposal needs manual review."""

    def __init__(self, session: Any, message: str = ""):
        reason = getattr(getattr(session, "terminal_reason", None), "value", "unknown")
        super().__init__(message or f"No consensus reached ({reason})")
        self.session = session

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["session_id"] = getattr(self.session, "session_id", None)
        return data


class QualityRejected(CollabError):
    """Output stayed below the quality bar after the revision budget ran out."""

    def __init__(self, report: Any, revisions: int = 0, message: str = ""):
        super().__init__(message or f"Quality gate rejected result after {revisions} revision(s)")
        self.report = report
        self.revisions = revisions

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["revisions"] = self.revisions
        if self.report is not None and hasattr(self.report, "to_dict"):
            data["report"] = self.report.to_dict()
        return data


class FatalError(CollabError):
    """Unclassified failure that aborts the task."""

    def __init__(self, message: str, snapshot: dict[str, Any] | None = None):
        super().__init__(message)
        self.snapshot = snapshot or {}


class NoAgentAvailable(CollabError):
    """No idle agent satisfies the requested role and capabilities."""

    def __init__(self, role: str, capabilities: list[str] | None = None):
        caps = ", ".join(capabilities or []) or "-"
        super().__init__(f"No idle agent for role '{role}' (capabilities: {caps})")
        self.role = role
        self.capabilities = list(capabilities or [])


class InvalidTransition(CollabError):
    """A state machine was asked to perform a transition it does not allow."""

    def __init__(self, subject: str, current: Any, target: Any):
        cur = getattr(current, "value", current)
        tgt = getattr(target, "value", target)
        super().__init__(f"{subject}: invalid transition {cur} -> {tgt}")
        self.current = current
        self.target = target

"""
Agent Lifecycle State Machine.

idle -> working (assign), working -> idle (complete or fail),
working -> blocked (waiting on a dependency or reply), blocked -> working
(resume). ``reset`` forces any state back to idle when a task is cancelled.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..errors import InvalidTransition

logger = logging.getLogger(__name__)


class AgentState(Enum):
    """States in an agent's lifecycle."""

    IDLE = "idle"
    WORKING = "working"
    BLOCKED = "blocked"


_ALLOWED: dict[AgentState, set[AgentState]] = {
    AgentState.IDLE: {AgentState.WORKING},
    AgentState.WORKING: {AgentState.IDLE, AgentState.BLOCKED},
    AgentState.BLOCKED: {AgentState.WORKING},
}


@dataclass
class StateChange:
    old: AgentState
    new: AgentState
    reason: str = ""
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "old": self.old.value,
            "new": self.new.value,
            "reason": self.reason,
            "timestamp": self.timestamp,
        }


StateCallback = Callable[[str, AgentState, AgentState], None]


class AgentLifecycle:
    """Tracks and validates the state of one agent."""

    def __init__(self, agent_id: str, max_history: int = 100):
        self.agent_id = agent_id
        self._state = AgentState.IDLE
        self._lock = threading.RLock()
        self._history: deque[StateChange] = deque(maxlen=max_history)
        self._callbacks: list[StateCallback] = []
        self.current_task: str | None = None
        self.last_error: BaseException | None = None
        self.failures = 0

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def is_idle(self) -> bool:
        return self._state == AgentState.IDLE

    def assign(self, task_id: str | None = None) -> None:
        with self._lock:
            self._move(AgentState.WORKING, f"assigned {task_id or '-'}")
            self.current_task = task_id

    def complete(self) -> None:
        with self._lock:
            self._move(AgentState.IDLE, "completed")
            self.current_task = None

    def block(self, reason: str = "awaiting response") -> None:
        with self._lock:
            self._move(AgentState.BLOCKED, reason)

    def resume(self) -> None:
        with self._lock:
            self._move(AgentState.WORKING, "resumed")

    def fail(self, error: BaseException) -> None:
        """Record an unrecoverable failure and return to idle."""
        with self._lock:
            if self._state == AgentState.BLOCKED:
                self._move(AgentState.WORKING, "resumed for failure")
            self._move(AgentState.IDLE, f"failed: {type(error).__name__}")
            self.last_error = error
            self.failures += 1
            self.current_task = None

    def reset(self, reason: str = "reset") -> None:
        """Return to idle from any state (task cancellation)."""
        with self._lock:
            old = self._state
            self.current_task = None
            if old == AgentState.IDLE:
                return
            self._state = AgentState.IDLE
            self._history.append(StateChange(old, AgentState.IDLE, reason))
        self._notify(old, AgentState.IDLE)

    def _move(self, target: AgentState, reason: str) -> None:
        old = self._state
        if target not in _ALLOWED[old]:
            raise InvalidTransition(f"agent {self.agent_id}", old, target)
        self._state = target
        self._history.append(StateChange(old, target, reason))
        self._notify(old, target)

    def _notify(self, old: AgentState, new: AgentState) -> None:
        for callback in list(self._callbacks):
            try:
                callback(self.agent_id, old, new)
            except Exception as exc:
                logger.warning(f"State callback for {self.agent_id} failed: {exc}")

    def add_state_change_callback(self, callback: StateCallback) -> None:
        """Add a state change callback."""
        self._callbacks.append(callback)

    def remove_state_change_callback(self, callback: StateCallback) -> None:
        """Remove a state change callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def history(self) -> list[StateChange]:
        with self._lock:
            return list(self._history)

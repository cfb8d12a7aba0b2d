"""
Circuit breaker: CLOSED -> OPEN -> HALF_OPEN -> {CLOSED | OPEN}.

One breaker exists per external service. All state changes happen under
the breaker's own ``asyncio.Lock`` so concurrent callers of the same
service cannot race each other; the provider call itself runs outside the
lock.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

from ..config import CircuitBreakerConfig
from ..errors import InvalidTransition, ToolUnavailableError
from .classifier import counts_as_failure

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


_ALLOWED_TRANSITIONS: dict[CircuitState, set[CircuitState]] = {
    CircuitState.CLOSED: {CircuitState.OPEN},
    CircuitState.OPEN: {CircuitState.HALF_OPEN},
    CircuitState.HALF_OPEN: {CircuitState.CLOSED, CircuitState.OPEN},
}

TransitionCallback = Callable[[str, CircuitState, CircuitState], None]


@dataclass
class CircuitSnapshot:
    """Point-in-time view of a breaker."""

    service_id: str
    state: CircuitState
    consecutive_failures: int
    next_retry_at: float | None
    cooldown_seconds: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "service_id": self.service_id,
            "state": self.state.value,
            "consecutive_failures": self.consecutive_failures,
            "next_retry_at": self.next_retry_at,
            "cooldown_seconds": self.cooldown_seconds,
        }


class CircuitBreaker:
    """
    Guard for one external service.

    failure_threshold: consecutive failures that open the circuit.
    cooldown_seconds: time spent OPEN before a single HALF_OPEN trial.
    backoff_multiplier / max_cooldown_seconds: growth of the cooldown each
    time a trial fails.
    """

    def __init__(
        self,
        service_id: str,
        failure_threshold: int = 5,
        cooldown_seconds: float = 30.0,
        backoff_multiplier: float = 2.0,
        max_cooldown_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        on_transition: TransitionCallback | None = None,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.service_id = service_id
        self.failure_threshold = failure_threshold
        self.base_cooldown = cooldown_seconds
        self.backoff_multiplier = backoff_multiplier
        self.max_cooldown = max_cooldown_seconds
        self._clock = clock
        self._on_transition = on_transition

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._cooldown = cooldown_seconds
        self._next_retry_at: float | None = None
        self._trial_in_flight = False
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(
        cls,
        service_id: str,
        config: CircuitBreakerConfig,
        clock: Callable[[], float] = time.monotonic,
        on_transition: TransitionCallback | None = None,
    ) -> CircuitBreaker:
        return cls(
            service_id,
            failure_threshold=config.failure_threshold,
            cooldown_seconds=config.cooldown_seconds,
            backoff_multiplier=config.backoff_multiplier,
            max_cooldown_seconds=config.max_cooldown_seconds,
            clock=clock,
            on_transition=on_transition,
        )

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    @property
    def next_retry_at(self) -> float | None:
        return self._next_retry_at

    def snapshot(self) -> CircuitSnapshot:
        return CircuitSnapshot(
            service_id=self.service_id,
            state=self._state,
            consecutive_failures=self._failures,
            next_retry_at=self._next_retry_at,
            cooldown_seconds=self._cooldown,
        )

    async def call(self, func: Callable[[], Awaitable[T]]) -> T:
        """Run *func* if the circuit allows it; otherwise raise ToolUnavailableError."""
        async with self._lock:
            self._admit()

        try:
            result = await func()
        except asyncio.CancelledError:
            async with self._lock:
                # Cancelled trial: free the slot for the next caller.
                self._trial_in_flight = False
            raise
        except Exception as exc:
            async with self._lock:
                if counts_as_failure(exc):
                    self._record_failure()
                else:
                    self._record_success()
            raise

        async with self._lock:
            self._record_success()
        return result

    def _admit(self) -> None:
        if self._state == CircuitState.OPEN:
            now = self._clock()
            if self._next_retry_at is not None and now < self._next_retry_at:
                raise ToolUnavailableError(self.service_id, retry_at=self._next_retry_at)
            self._transition(CircuitState.HALF_OPEN)

        if self._state == CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                raise ToolUnavailableError(
                    self.service_id,
                    retry_at=self._next_retry_at,
                    message=f"Service '{self.service_id}' trial call already in flight",
                )
            self._trial_in_flight = True

    def _record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._trial_in_flight = False
            self._cooldown = self.base_cooldown
            self._next_retry_at = None
            self._failures = 0
            self._transition(CircuitState.CLOSED)
        self._failures = 0

    def _record_failure(self) -> None:
        now = self._clock()
        if self._state == CircuitState.HALF_OPEN:
            self._trial_in_flight = False
            self._cooldown = min(self._cooldown * self.backoff_multiplier, self.max_cooldown)
            self._next_retry_at = now + self._cooldown
            self._transition(CircuitState.OPEN)
            return

        self._failures += 1
        if self._state == CircuitState.CLOSED and self._failures >= self.failure_threshold:
            self._next_retry_at = now + self._cooldown
            self._transition(CircuitState.OPEN)

    def _transition(self, target: CircuitState) -> None:
        if target not in _ALLOWED_TRANSITIONS[self._state]:
            raise InvalidTransition(f"circuit '{self.service_id}'", self._state, target)
        previous = self._state
        self._state = target
        if target == CircuitState.OPEN:
            logger.warning(
                f"Circuit '{self.service_id}' opened after {self._failures} failure(s); "
                f"cooldown {self._cooldown:.2f}s"
            )
        else:
            logger.info(f"Circuit '{self.service_id}' {previous.value} -> {target.value}")
        if self._on_transition:
            self._on_transition(self.service_id, previous, target)


class CircuitBreakerRegistry:
    """Creates breakers lazily, one per service id, for the process lifetime."""

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        on_transition: TransitionCallback | None = None,
    ):
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._on_transition = on_transition
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, service_id: str) -> CircuitBreaker:
        """Get or create the breaker for *service_id*."""
        with self._lock:
            breaker = self._breakers.get(service_id)
            if breaker is None:
                breaker = CircuitBreaker.from_config(
                    service_id,
                    self.config,
                    clock=self._clock,
                    on_transition=self._on_transition,
                )
                self._breakers[service_id] = breaker
            return breaker

    def __contains__(self, service_id: str) -> bool:
        return service_id in self._breakers

    def snapshots(self) -> dict[str, CircuitSnapshot]:
        with self._lock:
            return {sid: b.snapshot() for sid, b in self._breakers.items()}

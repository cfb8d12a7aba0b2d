"""
Resilience Layer wrapping every external call.

Flow for one logical call: circuit breaker -> classify failure -> retry
or give up -> fallback chain (alternate providers, then a degraded
manual-review result). Every decision is logged and emitted.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeVar

from ..config import CircuitBreakerConfig, RetryConfig
from ..errors import FatalError
from ..observability import EventEmitter, EventType
from .circuit_breaker import CircuitBreakerRegistry, CircuitState
from .classifier import ErrorCategory, classify_error
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[Any]]


class ResilienceAction:
    RETRY = "retry"
    RAISE = "raise"
    FALLBACK = "fallback"
    ALTERNATE_OK = "alternate_ok"
    DEGRADED = "degraded"


@dataclass
class ResilienceDecision:
    """One recorded decision of the resilience layer."""

    service_id: str
    category: str
    attempt: int
    action: str
    delay: float = 0.0
    error: str = ""
    task_id: str | None = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "service_id": self.service_id,
            "category": self.category,
            "attempt": self.attempt,
            "action": self.action,
            "delay": self.delay,
            "error": self.error,
            "task_id": self.task_id,
            "timestamp": self.timestamp,
        }


@dataclass
class Alternate:
    """An alternate provider in a fallback chain."""

    service_id: str
    operation: Operation


class ResilienceLayer:
    """Circuit breaking, retry classification and fallback for external calls."""

    def __init__(
        self,
        breaker_config: CircuitBreakerConfig | None = None,
        retry_config: RetryConfig | None = None,
        emitter: EventEmitter | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        max_decisions: int = 1000,
    ):
        self.retry_config = retry_config or RetryConfig()
        self.policy = RetryPolicy.from_config(self.retry_config)
        self.emitter = emitter or EventEmitter()
        self.breakers = CircuitBreakerRegistry(
            breaker_config,
            clock=clock,
            on_transition=self._on_transition,
        )
        self._sleep = sleep
        self._decisions: deque[ResilienceDecision] = deque(maxlen=max_decisions)

    @property
    def decisions(self) -> list[ResilienceDecision]:
        return list(self._decisions)

    async def call(
        self,
        service_id: str,
        operation: Operation,
        *,
        alternates: Sequence[Alternate] = (),
        degraded: Callable[[BaseException], Any] | None = None,
        task_id: str | None = None,
    ) -> Any:
        """Invoke *operation* for *service_id* with full resilience handling.

        Args:
            service_id: Breaker key of the primary provider.
            operation: Zero-argument coroutine factory doing the actual call.
            alternates: Fallback providers tried once each, in order.
            degraded: Builds the last-resort result from the final error.
                Ignored when ``degraded_fallback`` is disabled.
            task_id: Attached to emitted events.

        Raises:
            ValidationError: immediately, never retried.
            FatalError: unclassified failure with no fallback left.
            Exception: the last classified error when no fallback is left.
        """
        breaker = self.breakers.get(service_id)
        attempt = 0
        while True:
            attempt += 1
            try:
                return await breaker.call(operation)
            except Exception as exc:
                category = classify_error(exc)
                if category == ErrorCategory.VALIDATION:
                    self._record(service_id, category, attempt, ResilienceAction.RAISE, exc, task_id)
                    raise

                if self.policy.should_retry(category, attempt):
                    delay = self.policy.delay_for(category, attempt, exc)
                    self._record(
                        service_id, category, attempt, ResilienceAction.RETRY, exc, task_id, delay
                    )
                    await self._sleep(delay)
                    continue

                self._record(service_id, category, attempt, ResilienceAction.FALLBACK, exc, task_id)
                return await self._fallback(
                    service_id, category, exc, alternates, degraded, task_id
                )

    async def _fallback(
        self,
        service_id: str,
        category: ErrorCategory,
        error: Exception,
        alternates: Sequence[Alternate],
        degraded: Callable[[BaseException], Any] | None,
        task_id: str | None,
    ) -> Any:
        last_error: Exception = error
        for alt in alternates:
            try:
                result = await self.breakers.get(alt.service_id).call(alt.operation)
            except Exception as exc:
                alt_category = classify_error(exc)
                if alt_category == ErrorCategory.VALIDATION:
                    self._record(alt.service_id, alt_category, 1, ResilienceAction.RAISE, exc, task_id)
                    raise
                self._record(
                    alt.service_id, alt_category, 1, ResilienceAction.FALLBACK, exc, task_id
                )
                last_error = exc
                continue
            self._record(alt.service_id, category, 1, ResilienceAction.ALTERNATE_OK, None, task_id)
            return result

        if degraded is not None and self.retry_config.degraded_fallback:
            self._record(service_id, category, 0, ResilienceAction.DEGRADED, last_error, task_id)
            logger.warning(f"Service '{service_id}' degraded to manual review: {last_error}")
            return degraded(last_error)

        if category == ErrorCategory.UNKNOWN:
            raise FatalError(
                f"Unclassified failure calling '{service_id}': {last_error}",
                snapshot={
                    "service_id": service_id,
                    "circuit": self.breakers.get(service_id).snapshot().to_dict(),
                    "error_type": type(last_error).__name__,
                },
            ) from last_error
        raise last_error

    def _record(
        self,
        service_id: str,
        category: ErrorCategory,
        attempt: int,
        action: str,
        exc: BaseException | None,
        task_id: str | None,
        delay: float = 0.0,
    ) -> None:
        decision = ResilienceDecision(
            service_id=service_id,
            category=category.value,
            attempt=attempt,
            action=action,
            delay=delay,
            error=f"{type(exc).__name__}: {exc}" if exc else "",
            task_id=task_id,
        )
        self._decisions.append(decision)
        if action == ResilienceAction.RETRY:
            logger.warning(
                f"{service_id}: {category.value} error on attempt {attempt}, "
                f"retrying in {delay:.2f}s ({decision.error})"
            )
        else:
            logger.info(f"{service_id}: {category.value} -> {action} (attempt {attempt})")
        payload = decision.to_dict()
        payload.pop("task_id")
        self.emitter.emit(EventType.RESILIENCE_DECISION, task_id, **payload)

    def _on_transition(self, service_id: str, old: CircuitState, new: CircuitState) -> None:
        breaker = self.breakers.get(service_id) if service_id in self.breakers else None
        self.emitter.emit(
            EventType.CIRCUIT_TRANSITION,
            None,
            service_id=service_id,
            from_state=old.value,
            to_state=new.value,
            next_retry_at=breaker.next_retry_at if breaker else None,
        )

    def get_stats(self) -> dict[str, Any]:
        by_action: dict[str, int] = {}
        for d in self._decisions:
            by_action[d.action] = by_action.get(d.action, 0) + 1
        return {
            "circuits": {sid: s.to_dict() for sid, s in self.breakers.snapshots().items()},
            "decisions": len(self._decisions),
            "by_action": by_action,
        }

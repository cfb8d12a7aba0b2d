"""
Resilience Layer: circuit breakers, retry classification and fallback.
"""

from .circuit_breaker import CircuitBreaker, CircuitBreakerRegistry, CircuitSnapshot, CircuitState
from .classifier import ErrorCategory, classify_error
from .layer import Alternate, ResilienceAction, ResilienceDecision, ResilienceLayer
from .retry import RetryPolicy

__all__ = [
    "Alternate",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitSnapshot",
    "CircuitState",
    "ErrorCategory",
    "ResilienceAction",
    "ResilienceDecision",
    "ResilienceLayer",
    "RetryPolicy",
    "classify_error",
]

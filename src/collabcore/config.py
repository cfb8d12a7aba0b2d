"""
Configuration for the Orchestration Core.

Configuration is a tree of frozen dataclasses. It can be built in code,
from a plain dictionary, or from a YAML file; unknown keys are rejected so
that typos in a config file fail loudly instead of silently using defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .errors import ValidationError

CONFIG_ENV_VAR = "COLLABCORE_CONFIG"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Per-service circuit breaker settings."""

    failure_threshold: int = 5
    cooldown_seconds: float = 30.0
    backoff_multiplier: float = 2.0
    max_cooldown_seconds: float = 300.0


@dataclass(frozen=True)
class RetryConfig:
    """Retry classification settings.

    Attributes:
        max_attempts: Total attempts for transient and rate-limit errors.
        initial_delay: First backoff delay in seconds.
        max_delay: Upper bound for a single backoff delay.
        exponential_base: Growth factor between attempts.
        rate_limit_wait: Wait used when the provider gives no retry-after.
        unknown_retries: Extra attempts for unclassified errors.
        jitter: Random extra share of each backoff delay, in [0, jitter].
        degraded_fallback: Whether the fallback chain ends in a degraded
            manual-review result instead of an error.
    """

    max_attempts: int = 3
    initial_delay: float = 0.5
    max_delay: float = 30.0
    exponential_base: float = 2.0
    rate_limit_wait: float = 1.0
    unknown_retries: int = 1
    jitter: float = 0.0
    degraded_fallback: bool = True


@dataclass(frozen=True)
class MemoryConfig:
    short_term_capacity: int = 50
    long_term_capacity: int = 500
    episodic_capacity: int = 200
    half_life_seconds: float = 86400.0
    promotion_threshold: float = 0.6
    pattern_min_support: int = 3
    retention_seconds: float = 30 * 86400.0
    consolidate_every: int = 10
    identity_multiplier: float = 1.5
    decision_multiplier: float = 1.3
    success_weight: float = 1.0
    unknown_outcome_weight: float = 0.8
    failure_weight: float = 0.5


@dataclass(frozen=True)
class NegotiationConfig:
    consensus_threshold: float = 0.7
    max_rounds: int = 5
    round_timeout: float = 30.0
    strategy: str = "weighted"
    flexibility_learning_rate: float = 0.2


@dataclass(frozen=True)
class QualityConfig:
    threshold: float = 0.7
    weights: dict[str, float] = field(default_factory=dict)
    floors: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class BusConfig:
    request_timeout: float = 5.0
    max_history: int = 1000


@dataclass(frozen=True)
class OrchestratorConfig:
    """Supervisor settings.

    ``plans`` maps a task type to a list of phase definitions
    (``name``, ``roles``, ``parallel``, ``timeout``, ``depends_on``).
    """

    max_revisions: int = 2
    default_phase_timeout: float = 300.0
    abort_failure_ratio: float = 0.5
    continue_on_escalation: bool = False
    latency_scale: float = 10.0
    plans: dict[str, list[dict[str, Any]]] = field(default_factory=dict)


@dataclass(frozen=True)
class CoreConfig:
    """Root configuration object."""

    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    negotiation: NegotiationConfig = field(default_factory=NegotiationConfig)
    quality: QualityConfig = field(default_factory=QualityConfig)
    bus: BusConfig = field(default_factory=BusConfig)

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> CoreConfig:
        """Build a config from a (possibly partial) dictionary."""
        raw = raw or {}
        if not isinstance(raw, dict):
            raise ValidationError("Configuration root must be a mapping")

        sections = {
            "orchestrator": OrchestratorConfig,
            "circuit_breaker": CircuitBreakerConfig,
            "retry": RetryConfig,
            "memory": MemoryConfig,
            "negotiation": NegotiationConfig,
            "quality": QualityConfig,
            "bus": BusConfig,
        }
        unknown = set(raw) - set(sections)
        if unknown:
            raise ValidationError(f"Unknown configuration sections: {sorted(unknown)}")

        kwargs = {
            name: _build_section(name, section_cls, raw.get(name))
            for name, section_cls in sections.items()
        }
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, path: str | Path) -> CoreConfig:
        """Load configuration from a YAML file."""
        text = Path(path).read_text(encoding="utf-8")
        raw = yaml.safe_load(text) or {}
        return cls.from_dict(raw)


def _build_section(name: str, section_cls: type, values: Any) -> Any:
    if values is None:
        return section_cls()
    if not isinstance(values, dict):
        raise ValidationError(f"Configuration section '{name}' must be a mapping")
    allowed = {f.name for f in fields(section_cls)}
    unknown = set(values) - allowed
    if unknown:
        raise ValidationError(f"Unknown keys in '{name}': {sorted(unknown)}")
    return section_cls(**values)


def load_config(path: str | Path | None = None) -> CoreConfig:
    """Load configuration from *path*, ``$COLLABCORE_CONFIG``, or defaults."""
    path = path or os.getenv(CONFIG_ENV_VAR)
    if not path:
        return CoreConfig()
    return CoreConfig.from_yaml(path)

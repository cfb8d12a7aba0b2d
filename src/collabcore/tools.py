"""
Tool Registry for Pluggable External Capabilities.

Concrete providers (media generation, search, storage, language models)
are supplied by the surrounding application and only have to satisfy the
``ToolProvider`` contract. The registry validates parameters, enforces a
timeout, routes each call through the Resilience Layer and keeps usage
totals from the cost metadata providers return.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

from .errors import TransientError, ValidationError
from .resilience import Alternate, ResilienceLayer

logger = logging.getLogger(__name__)


@dataclass
class ToolResult:
    """Result of one tool invocation."""

    tool_name: str
    output: Any = None
    cost: dict[str, float] = field(default_factory=dict)
    provider: str = ""
    duration: float = 0.0
    degraded: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool_name": self.tool_name,
            "output": self.output,
            "cost": self.cost,
            "provider": self.provider,
            "duration": self.duration,
            "degraded": self.degraded,
            "error": self.error,
        }


class ToolProvider(Protocol):
    async def execute(self, tool_name: str, params: dict[str, Any]) -> ToolResult | dict[str, Any]: ...


@dataclass
class ToolSpec:
    """Describes a tool and the parameters it accepts.

    ``params`` maps parameter names to the accepted Python type (or tuple
    of types); names listed in ``required`` must be present.
    """

    name: str
    description: str = ""
    params: dict[str, type | tuple[type, ...]] = field(default_factory=dict)
    required: list[str] = field(default_factory=list)
    timeout: float = 30.0
    service_id: str = ""

    def __post_init__(self) -> None:
        if not self.service_id:
            self.service_id = self.name
        missing = [p for p in self.required if p not in self.params]
        if missing:
            raise ValidationError(f"Tool '{self.name}' requires undeclared params: {missing}")


@dataclass
class _Registration:
    spec: ToolSpec
    provider: ToolProvider
    alternates: list[tuple[str, ToolProvider]] = field(default_factory=list)


class ToolRegistry:
    """Registry of tools and the providers that execute them."""

    def __init__(self, resilience: ResilienceLayer | None = None):
        self.resilience = resilience or ResilienceLayer()
        self._tools: dict[str, _Registration] = {}
        self._usage: dict[str, dict[str, float]] = {}
        self._calls: dict[str, int] = {}
        self._lock = threading.RLock()

    def register(
        self,
        spec: ToolSpec,
        provider: ToolProvider,
        alternates: Iterable[tuple[str, ToolProvider]] | None = None,
    ) -> None:
        """Register a tool with its primary provider and optional alternates.

        Each alternate is ``(service_id, provider)``; alternates get their own
        circuit breakers.
        """
        with self._lock:
            if spec.name in self._tools:
                raise ValidationError(f"Tool {spec.name} already registered")
            self._tools[spec.name] = _Registration(spec, provider, list(alternates or []))

    def unregister(self, name: str) -> None:
        with self._lock:
            if name not in self._tools:
                raise ValidationError(f"Tool {name} not found")
            del self._tools[name]

    def get(self, name: str) -> ToolSpec:
        with self._lock:
            reg = self._tools.get(name)
        if reg is None:
            raise ValidationError(f"Unknown tool: {name}")
        return reg.spec

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    def list_tools(self) -> list[str]:
        with self._lock:
            return sorted(self._tools)

    def validate(
        self,
        name: str,
        params: dict[str, Any],
        capabilities: Iterable[str] | None = None,
    ) -> ToolSpec:
        """Check that *name* is allowed and *params* match its schema."""
        spec = self.get(name)
        if capabilities is not None and name not in set(capabilities):
            raise ValidationError(f"Tool '{name}' is not among the caller's capabilities")
        if not isinstance(params, dict):
            raise ValidationError(f"Params for '{name}' must be a mapping")

        missing = [p for p in spec.required if p not in params]
        if missing:
            raise ValidationError(f"Missing required params for '{name}': {missing}")
        unknown = [p for p in params if p not in spec.params]
        if unknown:
            raise ValidationError(f"Unknown params for '{name}': {unknown}")
        for key, value in params.items():
            expected = spec.params[key]
            if value is not None and not isinstance(value, expected):
                raise ValidationError(
                    f"Param '{key}' of '{name}' must be {_type_name(expected)}, "
                    f"got {type(value).__name__}"
                )
        return spec

    async def invoke(
        self,
        name: str,
        params: dict[str, Any],
        capabilities: Iterable[str] | None = None,
        task_id: str | None = None,
    ) -> ToolResult:
        """Validate and execute a tool through the Resilience Layer."""
        spec = self.validate(name, params, capabilities)
        with self._lock:
            reg = self._tools[name]

        alternates = [
            Alternate(service_id, self._operation(spec, provider, params, service_id))
            for service_id, provider in reg.alternates
        ]
        result = await self.resilience.call(
            spec.service_id,
            self._operation(spec, reg.provider, params, spec.service_id),
            alternates=alternates,
            degraded=lambda exc: ToolResult(
                tool_name=name,
                provider="manual_review",
                degraded=True,
                error=f"{type(exc).__name__}: {exc}",
            ),
            task_id=task_id,
        )
        self._track_usage(name, result)
        return result

    def _operation(
        self,
        spec: ToolSpec,
        provider: ToolProvider,
        params: dict[str, Any],
        service_id: str,
    ):
        async def run() -> ToolResult:
            started = time.monotonic()
            try:
                raw = await asyncio.wait_for(provider.execute(spec.name, dict(params)), spec.timeout)
            except asyncio.TimeoutError as exc:
                raise TransientError(
                    f"Tool '{spec.name}' timed out after {spec.timeout}s on {service_id}"
                ) from exc
            return _normalize(spec.name, raw, service_id, time.monotonic() - started)

        return run

    def _track_usage(self, name: str, result: ToolResult) -> None:
        with self._lock:
            self._calls[name] = self._calls.get(name, 0) + 1
            totals = self._usage.setdefault(name, {})
            for key, value in result.cost.items():
                if isinstance(value, (int, float)):
                    totals[key] = totals.get(key, 0.0) + float(value)

    def usage_summary(self) -> dict[str, Any]:
        """Call counts and accumulated cost metadata per tool."""
        with self._lock:
            return {
                name: {"calls": self._calls.get(name, 0), "cost": dict(self._usage.get(name, {}))}
                for name in sorted(self._calls)
            }


def _normalize(name: str, raw: Any, provider: str, duration: float) -> ToolResult:
    if isinstance(raw, ToolResult):
        raw.provider = raw.provider or provider
        raw.duration = raw.duration or duration
        return raw
    if isinstance(raw, dict) and "output" in raw:
        return ToolResult(
            tool_name=name,
            output=raw["output"],
            cost=dict(raw.get("cost") or {}),
            provider=provider,
            duration=duration,
        )
    return ToolResult(tool_name=name, output=raw, provider=provider, duration=duration)


def _type_name(expected: type | tuple[type, ...]) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__

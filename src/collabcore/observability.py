"""
Structured Event Emission.

The core reports what it does as ``Event`` records handed to pluggable
sinks. Collection and storage of events belong to the surrounding
application; two sinks are shipped for tests and local audit trails.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class EventType:
    """Names of the events emitted by the core."""

    TASK_STATUS = "task_status"
    PHASE_START = "phase_start"
    PHASE_END = "phase_end"
    CIRCUIT_TRANSITION = "circuit_transition"
    RESILIENCE_DECISION = "resilience_decision"
    NEGOTIATION_ROUND = "negotiation_round"
    QUALITY_GATE = "quality_gate"


@dataclass
class Event:
    """A structured observability event."""

    type: str
    task_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        """Convert event to dictionary."""
        return {
            "type": self.type,
            "timestamp": self.timestamp,
            "task_id": self.task_id,
            "payload": self.payload,
        }


class EventSink(Protocol):
    def emit(self, event: Event) -> None: ...


class InMemoryEventSink:
    """Keeps events in a list; handy for tests and debugging."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    def emit(self, event: Event) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list[Event]:
        return [e for e in self.events if e.type == event_type]


class JsonlEventSink:
    """Appends one JSON document per event to a file."""

    def __init__(self, path: str | Path = ".collabcore/events.jsonl") -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def emit(self, event: Event) -> None:
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(event.to_dict(), default=str) + "\n")


class EventEmitter:
    """Fans events out to every registered sink."""

    def __init__(self, sinks: Iterable[EventSink] | None = None):
        self._sinks: list[EventSink] = list(sinks or [])

    def add_sink(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    def emit(self, event_type: str, task_id: str | None = None, **payload: Any) -> Event:
        """Build an event and deliver it to all sinks."""
        event = Event(type=event_type, task_id=task_id, payload=payload)
        logger.debug(f"event {event_type} task={task_id} payload={payload}")
        for sink in self._sinks:
            try:
                sink.emit(event)
            except Exception as exc:
                # Sink failures are logged, never raised.
                logger.warning(f"Event sink {type(sink).__name__} failed: {exc}")
        return event

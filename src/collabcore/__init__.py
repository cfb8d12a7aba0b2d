"""
collabcore: a multi-agent collaboration core.

Agents with role strategies are picked from a registry, talk over an
asyncio message bus, negotiate divergent outputs, and pass a weighted
quality gate, while tool calls run behind circuit breakers and retries.
"""

from .config import CoreConfig, load_config
from .errors import (
    CollabError,
    ConsensusFailure,
    FatalError,
    InvalidTransition,
    NoAgentAvailable,
    QualityRejected,
    RateLimitError,
    ToolUnavailableError,
    TransientError,
    ValidationError,
)
from .orchestration import Orchestrator, OrchestratorContext, Task, TaskStatus

__version__ = "0.1.0"

__all__ = [
    "CollabError",
    "ConsensusFailure",
    "CoreConfig",
    "FatalError",
    "InvalidTransition",
    "NoAgentAvailable",
    "Orchestrator",
    "OrchestratorContext",
    "QualityRejected",
    "RateLimitError",
    "Task",
    "TaskStatus",
    "ToolUnavailableError",
    "TransientError",
    "ValidationError",
    "load_config",
]

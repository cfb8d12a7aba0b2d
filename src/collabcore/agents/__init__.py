"""
Agents: the single role-parameterised agent type, its lifecycle, role
strategies, the registry used for selection and the communication bus.
"""

from .base import (
    ActionResult,
    Agent,
    AgentCapability,
    AgentMessage,
    AgentStats,
    Decision,
    MessageStatus,
    MessageType,
)
from .communication import AgentCommunicationBus, BroadcastResult, DeliveryResult, Mailbox
from .lifecycle import AgentLifecycle, AgentState, StateChange
from .registry import AgentMetadata, AgentRegistry
from .strategies import RoleSpec, RoleStrategy, RoleTable, RuleBasedStrategy

__all__ = [
    # Base types
    "ActionResult",
    "Agent",
    "AgentCapability",
    "AgentMessage",
    "AgentStats",
    "Decision",
    "MessageStatus",
    "MessageType",
    # Communication
    "AgentCommunicationBus",
    "BroadcastResult",
    "DeliveryResult",
    "Mailbox",
    # Lifecycle
    "AgentLifecycle",
    "AgentState",
    "StateChange",
    # Registry
    "AgentMetadata",
    "AgentRegistry",
    # Strategies
    "RoleSpec",
    "RoleStrategy",
    "RoleTable",
    "RuleBasedStrategy",
]

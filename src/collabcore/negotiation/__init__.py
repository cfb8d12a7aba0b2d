"""
Negotiation / Consensus Engine.

``BusParticipant`` lives in ``collabcore.negotiation.participants`` and is
imported from there, since it depends on the agents package.
"""

from .engine import NegotiationEngine
from .models import Evaluation, NegotiationRound, NegotiationSession, Proposal, TerminalReason
from .patterns import FeatureRecord, SuccessPatternStore
from .strategies import (
    STRATEGIES,
    CompromiseSearchStrategy,
    Participant,
    VetoStrategy,
    WeightedVotingStrategy,
    get_strategy,
)

__all__ = [
    "STRATEGIES",
    "CompromiseSearchStrategy",
    "Evaluation",
    "FeatureRecord",
    "NegotiationEngine",
    "NegotiationRound",
    "NegotiationSession",
    "Participant",
    "Proposal",
    "SuccessPatternStore",
    "TerminalReason",
    "VetoStrategy",
    "WeightedVotingStrategy",
    "get_strategy",
]

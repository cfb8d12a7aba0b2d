"""
Memory Subsystem: tiered per-agent memory with importance scoring,
consolidation, retrieval, privacy masking and pluggable persistence.
"""

from .importance import ImportanceScorer
from .items import MemoryItem, MemoryTier, semantic_key, tokenize
from .manager import PATTERN_PREFIX, AgentMemory, ConsolidationReport
from .persistence import InMemoryBackend, JsonFileBackend, MemoryBackend
from .privacy import contains_sensitive, sanitize
from .tiers import EpisodicLog, LongTermMemory, ShortTermMemory

__all__ = [
    "PATTERN_PREFIX",
    "AgentMemory",
    "ConsolidationReport",
    "EpisodicLog",
    "ImportanceScorer",
    "InMemoryBackend",
    "JsonFileBackend",
    "LongTermMemory",
    "MemoryBackend",
    "MemoryItem",
    "MemoryTier",
    "ShortTermMemory",
    "contains_sensitive",
    "sanitize",
    "semantic_key",
    "tokenize",
]

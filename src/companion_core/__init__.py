"""
Companion Core - memory consolidation and relationship progression

Per-(user, character) long-term memory with semantic deduplication, and a
ten-level relationship state machine driven by heuristically scored chat
messages.
"""

from .models import (
    ConsolidationResult,
    InteractionAnalysis,
    InteractionResult,
    LevelUpEvent,
    MemoryAction,
    MemoryCategory,
    MemoryRecord,
    Milestone,
    RelationshipState,
    Scope,
)
from .config import CompanionConfig, load_config
from .exceptions import (
    CompanionCoreError,
    EmbeddingUnavailable,
    InvalidScope,
    PersistenceError,
    VersionConflict,
)
from .analyzer import KeywordInteractionAnalyzer
from .classifier import KeywordMemoryClassifier
from .consolidator import MemoryConsolidator
from .context_provider import ContextProvider
from .embedding import (
    LocalEmbeddingClient,
    OpenAIEmbeddingClient,
    RetryingEmbeddingClient,
    create_embedding_client,
)
from .engine import CompanionEngine, create_engine
from .logging_config import setup_logging
from .relationship import RelationshipStateMachine, level_for_points
from .storage import InMemoryStore, SQLiteStore

__all__ = [
    "ConsolidationResult",
    "InteractionAnalysis",
    "InteractionResult",
    "LevelUpEvent",
    "MemoryAction",
    "MemoryCategory",
    "MemoryRecord",
    "Milestone",
    "RelationshipState",
    "Scope",
    "CompanionConfig",
    "load_config",
    "CompanionCoreError",
    "EmbeddingUnavailable",
    "InvalidScope",
    "PersistenceError",
    "VersionConflict",
    "KeywordInteractionAnalyzer",
    "KeywordMemoryClassifier",
    "MemoryConsolidator",
    "ContextProvider",
    "LocalEmbeddingClient",
    "OpenAIEmbeddingClient",
    "RetryingEmbeddingClient",
    "create_embedding_client",
    "CompanionEngine",
    "create_engine",
    "setup_logging",
    "RelationshipStateMachine",
    "level_for_points",
    "InMemoryStore",
    "SQLiteStore",
]

"""Collaborator interfaces.

Protocols separate the core from the storage, embedding and heuristic
implementations so each can be swapped without touching the state machine.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from .models import (
    InteractionAnalysis,
    MemoryCategory,
    MemoryRecord,
    RelationshipState,
    Scope,
)


@runtime_checkable
class EmbeddingClient(Protocol):
    """Turns text into a fixed-length vector."""

    async def embed(self, text: str) -> list[float]:
        """
        Embed a single text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector
        """
        ...


@runtime_checkable
class MemoryStore(Protocol):
    """Persists memory records and answers vector-similarity queries."""

    async def similarity_search(
        self,
        embedding: list[float],
        scope: Scope,
        top_k: int = 1,
        min_similarity: float = 0.9,
    ) -> list[MemoryRecord]:
        """
        Find records in a scope whose cosine similarity reaches a threshold.

        Args:
            embedding: Query vector
            scope: (user, character) pair to search in
            top_k: Maximum number of records
            min_similarity: Inclusive similarity threshold

        Returns:
            Records ordered by similarity, highest first
        """
        ...

    async def insert(self, record: MemoryRecord) -> MemoryRecord:
        """
        Insert a new record.

        Args:
            record: Record to store

        Returns:
            The stored record
        """
        ...

    async def update(self, record_id: str, patch: dict[str, Any]) -> MemoryRecord:
        """
        Apply a partial update to an existing record.

        Args:
            record_id: Record identifier
            patch: Field names mapped to new values

        Returns:
            The updated record
        """
        ...

    async def top_memories(self, scope: Scope, limit: int = 10) -> list[MemoryRecord]:
        """
        Highest-importance records for a scope.

        Args:
            scope: (user, character) pair
            limit: Maximum results

        Returns:
            Records ordered by importance, highest first
        """
        ...


@runtime_checkable
class RelationshipStore(Protocol):
    """Persists one relationship state per (user, character) pair."""

    async def get(self, user_id: str, character_id: str) -> RelationshipState | None:
        """
        Load the relationship state for a pair.

        Returns:
            The stored state or None when the pair has never interacted
        """
        ...

    async def upsert(
        self,
        state: RelationshipState,
        expected_version: int,
    ) -> RelationshipState:
        """
        Store a state if the persisted version still equals ``expected_version``.

        Args:
            state: New state
            expected_version: Version read before the modification
                (0 when no state existed)

        Returns:
            The stored state carrying its new version

        Raises:
            VersionConflict: The stored version changed since it was read
        """
        ...


@runtime_checkable
class MemoryClassifier(Protocol):
    """Maps raw text to a memory category and a baseline importance."""

    def classify(self, text: str) -> MemoryCategory:
        ...

    def score_importance(self, text: str, category: MemoryCategory) -> float:
        ...


@runtime_checkable
class InteractionAnalyzer(Protocol):
    """Scores a single message against the prior relationship snapshot."""

    def analyze(self, text: str, prior_state: RelationshipState) -> InteractionAnalysis:
        ...

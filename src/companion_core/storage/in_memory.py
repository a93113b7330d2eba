"""Dict-backed stores for development and tests.

Behaves like SQLiteStore: identical records merge on insert and relationship
writes are compare-and-swap on the version. Records are copied on the way in
and out so callers never share mutable state with the store.
"""

from __future__ import annotations

from typing import Any

from loguru import logger

from ..embedding import cosine_similarity
from ..exceptions import PersistenceError, VersionConflict
from ..models import MemoryRecord, RelationshipState, Scope

_UPDATABLE_MEMORY_FIELDS = frozenset(
    {
        "category",
        "content",
        "embedding",
        "confidence",
        "importance",
        "access_count",
        "last_accessed_at",
        "metadata",
    }
)


class InMemoryStore:
    """Process-local MemoryStore and RelationshipStore."""

    def __init__(self):
        self._memories: dict[str, MemoryRecord] = {}
        self._relationships: dict[tuple[str, str], RelationshipState] = {}

    async def initialize(self) -> None:
        logger.debug("InMemoryStore ready")

    async def close(self) -> None:
        self.clear()

    def clear(self) -> None:
        self._memories.clear()
        self._relationships.clear()

    # -- memory records -----------------------------------------------------

    def _scoped(self, scope: Scope) -> list[MemoryRecord]:
        return [
            record
            for record in self._memories.values()
            if record.user_id == scope.user_id and record.character_id == scope.character_id
        ]

    async def get_memory(self, record_id: str) -> MemoryRecord | None:
        record = self._memories.get(record_id)
        return record.model_copy(deep=True) if record else None

    async def insert(self, record: MemoryRecord) -> MemoryRecord:
        for existing in self._scoped(record.scope):
            if existing.category == record.category and existing.content == record.content:
                merged = existing.model_copy(
                    update={
                        "access_count": existing.access_count + 1,
                        "importance": max(existing.importance, record.importance),
                        "last_accessed_at": record.last_accessed_at,
                    }
                )
                self._memories[merged.id] = merged
                return merged.model_copy(deep=True)

        self._memories[record.id] = record.model_copy(deep=True)
        return record.model_copy(deep=True)

    async def update(self, record_id: str, patch: dict[str, Any]) -> MemoryRecord:
        unknown = set(patch) - _UPDATABLE_MEMORY_FIELDS
        if unknown:
            raise ValueError(f"Cannot update memory fields: {sorted(unknown)}")
        existing = self._memories.get(record_id)
        if existing is None:
            raise PersistenceError("memory_update", f"record {record_id} not found")
        updated = MemoryRecord.model_validate({**existing.model_dump(), **patch})
        self._memories[record_id] = updated
        return updated.model_copy(deep=True)

    async def similarity_search(
        self,
        embedding: list[float],
        scope: Scope,
        top_k: int = 1,
        min_similarity: float = 0.9,
    ) -> list[MemoryRecord]:
        if not embedding or top_k <= 0:
            return []
        scored = [
            (cosine_similarity(embedding, record.embedding), record)
            for record in self._scoped(scope)
        ]
        matches = [pair for pair in scored if pair[0] >= min_similarity]
        matches.sort(key=lambda pair: pair[0], reverse=True)
        return [record.model_copy(deep=True) for _, record in matches[:top_k]]

    async def top_memories(self, scope: Scope, limit: int = 10) -> list[MemoryRecord]:
        records = sorted(
            self._scoped(scope),
            key=lambda r: (-r.importance, -r.access_count, r.created_at),
        )
        return [record.model_copy(deep=True) for record in records[:limit]]

    async def count_memories(self, scope: Scope) -> int:
        return len(self._scoped(scope))

    # -- relationship states ------------------------------------------------

    async def get(self, user_id: str, character_id: str) -> RelationshipState | None:
        state = self._relationships.get((user_id, character_id))
        return state.model_copy(deep=True) if state else None

    async def upsert(self, state: RelationshipState, expected_version: int) -> RelationshipState:
        key = (state.user_id, state.character_id)
        current = self._relationships.get(key)
        current_version = current.version if current else 0
        if current_version != expected_version:
            raise VersionConflict(state.user_id, state.character_id, expected_version)

        stored = state.model_copy(update={"version": expected_version + 1}, deep=True)
        self._relationships[key] = stored
        return stored.model_copy(deep=True)

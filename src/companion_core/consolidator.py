"""Memory consolidation.

classify -> embed -> similarity search -> insert or merge.

Within one (user, character) scope no two records may be near-duplicates:
a message whose embedding reaches ``dedup_threshold`` against an existing
record is merged into it (access_count + 1, importance = max, last access
refreshed) instead of being inserted. Every call performs exactly one store
write.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Sequence

from loguru import logger

from .classifier import KeywordMemoryClassifier
from .config import ConsolidationConfig
from .exceptions import CompanionCoreError
from .guards import store_call
from .interfaces import EmbeddingClient, MemoryClassifier, MemoryStore
from .locks import KeyedLocks
from .logging_config import preview
from .models import (
    ConsolidationResult,
    MemoryAction,
    MemoryCategory,
    MemoryRecord,
    Scope,
)

# Phrases that mark a message as worth remembering.
MEMORY_INDICATORS: tuple[str, ...] = (
    # self-introduction
    "我是", "我叫", "我的名字", "我来自", "我住在",
    "i am", "my name is", "i'm called", "i come from", "i live in", "i'm from",
    # preference
    "我喜欢", "我不喜欢", "我爱", "我讨厌",
    "i like", "i love", "i hate", "i don't like", "i enjoy", "i prefer",
    # shared experience
    "我们一起", "记得吗", "还记得", "第一次",
    "we did", "remember when", "do you remember", "first time", "together",
    # goal
    "我想", "我希望", "我的梦想", "我的目标",
    "i want", "i hope", "my dream", "my goal", "i wish", "i plan to",
    # habit
    "我通常", "我经常", "我总是", "我从不",
    "i usually", "i often", "i always", "i never", "i typically",
)


class MemoryConsolidator:
    """Extracts, deduplicates and stores long-term memories."""

    def __init__(
        self,
        store: MemoryStore,
        embedding_client: EmbeddingClient,
        classifier: MemoryClassifier | None = None,
        config: ConsolidationConfig | None = None,
        locks: KeyedLocks | None = None,
    ):
        """Initialize the consolidator.

        Args:
            store: Memory persistence and similarity search
            embedding_client: Embedding client, normally a RetryingEmbeddingClient
            classifier: Category and importance strategy (keywords by default)
            config: Thresholds, limits and timeouts
            locks: Per-scope lock registry for the search-then-write section
        """
        self._store = store
        self._embedding = embedding_client
        self._classifier = classifier or KeywordMemoryClassifier()
        self._config = config or ConsolidationConfig()
        self._locks = locks or KeyedLocks("memory")

    def should_consolidate(self, text: str) -> bool:
        """Whether a chat message carries something durable enough to store."""
        if not text or not text.strip():
            return False
        if not self._config.gate_enabled:
            return True
        lowered = text.lower()
        if any(indicator in lowered for indicator in MEMORY_INDICATORS):
            return True
        return len(text) > self._config.min_detail_length

    async def consolidate(
        self,
        user_id: str,
        character_id: str,
        text: str,
        category: MemoryCategory | str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ConsolidationResult:
        """Store ``text`` as a memory, merging it into a near-duplicate if one exists.

        Args:
            user_id: User identifier
            character_id: Character identifier
            text: Message text
            category: Explicit category, bypassing the classifier
            metadata: Extra metadata stored with a newly created record

        Returns:
            ConsolidationResult with action "created" or "merged"

        Raises:
            InvalidScope: Missing user or character id
            ValueError: Blank text
            EmbeddingUnavailable: Embedding retries exhausted
            PersistenceError: Store read or write failed
        """
        scope = Scope.of(user_id, character_id)
        if not text or not text.strip():
            raise ValueError("Memory text must not be empty")

        if category is None:
            category = self._classifier.classify(text)
        else:
            category = MemoryCategory(category)
        importance = self._classifier.score_importance(text, category)

        embedding = await self._embedding.embed(text)
        timeout = self._config.store_timeout_seconds

        async with self._locks.acquire(scope):
            candidates = await store_call(
                self._store.similarity_search(
                    embedding,
                    scope,
                    top_k=1,
                    min_similarity=self._config.dedup_threshold,
                ),
                "memory_search",
                timeout,
            )

            if candidates:
                existing = candidates[0]
                patch = {
                    "access_count": existing.access_count + 1,
                    "importance": max(existing.importance, importance),
                    "last_accessed_at": datetime.now(timezone.utc),
                }
                record = await store_call(
                    self._store.update(existing.id, patch),
                    "memory_update",
                    timeout,
                    shield=True,
                )
                action = MemoryAction.MERGED
            else:
                new_record = MemoryRecord(
                    user_id=scope.user_id,
                    character_id=scope.character_id,
                    category=category,
                    content=text,
                    embedding=embedding,
                    confidence=self._config.default_confidence,
                    importance=importance,
                    metadata=metadata or {},
                )
                record = await store_call(
                    self._store.insert(new_record),
                    "memory_insert",
                    timeout,
                    shield=True,
                )
                # A store with a uniqueness constraint folds an identical
                # record into the existing row.
                action = MemoryAction.CREATED if record.id == new_record.id else MemoryAction.MERGED

        logger.info(
            f"Memory {action.value}: {scope.key} [{record.category.value}] "
            f"importance={record.importance:.2f} '{preview(text)}'"
        )
        return ConsolidationResult(action=action, record=record)

    async def consolidate_batch(
        self,
        user_id: str,
        character_id: str,
        texts: Sequence[str],
    ) -> list[ConsolidationResult | CompanionCoreError | ValueError]:
        """Consolidate several texts in order.

        Each text yields either its result or the error it failed with, so
        one bad text does not stop the rest.

        Raises:
            InvalidScope: Missing user or character id
            ValueError: More texts than ``batch_limit``
        """
        Scope.of(user_id, character_id)
        limit = self._config.batch_limit
        if len(texts) > limit:
            raise ValueError(f"Batch size {len(texts)} exceeds the limit of {limit}")

        results: list[ConsolidationResult | CompanionCoreError | ValueError] = []
        for text in texts:
            try:
                results.append(await self.consolidate(user_id, character_id, text))
            except (CompanionCoreError, ValueError) as e:
                logger.warning(f"Batch item failed for {user_id}:{character_id}: {e}")
                results.append(e)

        created = sum(
            1 for r in results
            if isinstance(r, ConsolidationResult) and r.action == MemoryAction.CREATED
        )
        logger.info(
            f"Batch consolidation: {user_id}:{character_id} {len(texts)} texts, "
            f"{created} created"
        )
        return results

    async def search(
        self,
        user_id: str,
        character_id: str,
        query: str,
        limit: int | None = None,
        threshold: float | None = None,
    ) -> list[MemoryRecord]:
        """Scoped semantic search, most similar first. Does not modify records."""
        scope = Scope.of(user_id, character_id)
        if not query or not query.strip():
            return []

        embedding = await self._embedding.embed(query)
        results = await store_call(
            self._store.similarity_search(
                embedding,
                scope,
                top_k=limit if limit is not None else self._config.search_limit,
                min_similarity=(
                    threshold if threshold is not None else self._config.search_threshold
                ),
            ),
            "memory_search",
            self._config.store_timeout_seconds,
        )
        logger.debug(f"Memory search: {scope.key} '{preview(query)}' -> {len(results)} results")
        return results

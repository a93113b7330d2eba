"""Companion engine - facade for relationship progression and memory.

Consuming applications (the chat-routing layer) use this class. Each inbound
message runs two sibling operations for the (user, character) pair:

- the relationship state machine applies the message to the relationship
- the memory consolidator stores any durable content in the message

A failure in one does not prevent the other; the result reports the outcome
of each separately.
"""

from __future__ import annotations

import asyncio

from loguru import logger

from .analyzer import KeywordInteractionAnalyzer
from .config import CompanionConfig
from .consolidator import MemoryConsolidator
from .context_provider import ContextProvider
from .embedding import RetryingEmbeddingClient, create_embedding_client
from .exceptions import CompanionCoreError
from .interfaces import (
    EmbeddingClient,
    InteractionAnalyzer,
    MemoryClassifier,
    MemoryStore,
    RelationshipStore,
)
from .locks import KeyedLocks
from .logging_config import preview
from .models import (
    ConsolidationResult,
    InteractionResult,
    MemoryRecord,
    RelationshipState,
    Scope,
)
from .relationship import RelationshipStateMachine
from .storage import InMemoryStore, SQLiteStore


def _describe(error: BaseException) -> str:
    return f"{type(error).__name__}: {error}"


class CompanionEngine:
    """Main companion core facade.

    Provides:
    - process_interaction: relationship update + memory consolidation
    - get_context: cached relationship/memory summary for the generator
    - get_relationship / search_memories: read-only queries

    Use ``await engine.initialize()`` before the first call and
    ``await engine.close()`` on shutdown, or ``async with engine``.
    """

    def __init__(
        self,
        relationship_store: RelationshipStore,
        memory_store: MemoryStore,
        embedding_client: EmbeddingClient,
        config: CompanionConfig | None = None,
        classifier: MemoryClassifier | None = None,
        analyzer: InteractionAnalyzer | None = None,
    ):
        """Initialize companion engine.

        Args:
            relationship_store: Relationship state persistence
            memory_store: Memory persistence and similarity search
            embedding_client: Embedding provider; wrapped in the configured
                retry policy unless it already is a RetryingEmbeddingClient
            config: Engine configuration (uses defaults if not provided)
            classifier: Memory classification strategy
            analyzer: Interaction analysis strategy
        """
        self.config = config or CompanionConfig()
        if not isinstance(embedding_client, RetryingEmbeddingClient):
            embedding_client = RetryingEmbeddingClient.from_config(
                embedding_client, self.config.embedding
            )

        self._relationship_store = relationship_store
        self._memory_store = memory_store
        self._relationship_locks = KeyedLocks("relationship")
        self._memory_locks = KeyedLocks("memory")

        self.relationships = RelationshipStateMachine(
            store=relationship_store,
            analyzer=analyzer or KeywordInteractionAnalyzer(),
            config=self.config.relationship,
            locks=self._relationship_locks,
        )
        self.consolidator = MemoryConsolidator(
            store=memory_store,
            embedding_client=embedding_client,
            classifier=classifier,
            config=self.config.consolidation,
            locks=self._memory_locks,
        )
        self.context_provider = ContextProvider(
            relationships=self.relationships,
            memory_store=memory_store,
            config=self.config.context,
        )
        self._initialized = False

    def _stores(self) -> list[object]:
        stores: list[object] = [self._relationship_store]
        if self._memory_store is not self._relationship_store:
            stores.append(self._memory_store)
        return stores

    async def initialize(self) -> None:
        """Initialize stores that need it (open connections, create tables)."""
        if self._initialized:
            return
        for store in self._stores():
            initialize = getattr(store, "initialize", None)
            if initialize is not None:
                await initialize()
        self._initialized = True
        logger.info("CompanionEngine initialized")

    async def close(self) -> None:
        """Drop cached context and idle locks, then close the stores."""
        self.context_provider.clear()
        self._relationship_locks.clear()
        self._memory_locks.clear()
        for store in self._stores():
            close = getattr(store, "close", None)
            if close is not None:
                await close()
        self._initialized = False
        logger.info("CompanionEngine closed")

    async def __aenter__(self) -> "CompanionEngine":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _consolidate(self, scope: Scope, text: str) -> list[ConsolidationResult]:
        if not self.consolidator.should_consolidate(text):
            logger.debug(f"No durable content in message for {scope.key}, memory skipped")
            return []
        result = await self.consolidator.consolidate(scope.user_id, scope.character_id, text)
        return [result]

    async def process_interaction(
        self,
        user_id: str,
        character_id: str,
        text: str,
    ) -> InteractionResult:
        """Process one inbound chat message.

        Args:
            user_id: User identifier
            character_id: Character identifier
            text: Message text

        Returns:
            InteractionResult with the outcome of each sub-operation

        Raises:
            InvalidScope: Missing user or character id (nothing is written)
            ValueError: Blank message text (nothing is written)
        """
        scope = Scope.of(user_id, character_id)
        if not isinstance(text, str) or not text.strip():
            raise ValueError("Message text must not be empty")

        logger.debug(f"Processing interaction for {scope.key}: '{preview(text)}'")
        try:
            relationship_outcome, memory_outcome = await asyncio.gather(
                self.relationships.process(scope, text),
                self._consolidate(scope, text),
                return_exceptions=True,
            )
        finally:
            self.context_provider.invalidate(scope)

        for outcome in (relationship_outcome, memory_outcome):
            if isinstance(outcome, BaseException) and not isinstance(outcome, CompanionCoreError):
                raise outcome

        result = InteractionResult()
        if isinstance(relationship_outcome, CompanionCoreError):
            result.relationship_error = _describe(relationship_outcome)
            logger.warning(
                f"Relationship update failed for {scope.key}: {result.relationship_error}"
            )
        else:
            result.relationship_state = relationship_outcome.state
            result.analysis = relationship_outcome.analysis
            result.points_change = relationship_outcome.points_change
            result.level_up_event = relationship_outcome.level_up_event

        if isinstance(memory_outcome, CompanionCoreError):
            result.memory_error = _describe(memory_outcome)
            logger.warning(f"Memory consolidation failed for {scope.key}: {result.memory_error}")
        else:
            result.memory_actions = memory_outcome

        return result

    async def get_context(self, user_id: str, character_id: str) -> str:
        """Relationship/memory summary for the text generator."""
        return await self.context_provider.get_context(user_id, character_id)

    async def get_relationship(self, user_id: str, character_id: str) -> RelationshipState:
        """Current relationship state (a default level-1 state if none is stored)."""
        return await self.relationships.get_state(Scope.of(user_id, character_id))

    async def search_memories(
        self,
        user_id: str,
        character_id: str,
        query: str,
        limit: int | None = None,
        threshold: float | None = None,
    ) -> list[MemoryRecord]:
        """Semantic memory search for one (user, character) pair."""
        return await self.consolidator.search(
            user_id, character_id, query, limit=limit, threshold=threshold
        )


def create_engine(
    config: CompanionConfig | None = None,
    embedding_client: EmbeddingClient | None = None,
) -> CompanionEngine:
    """Build an engine from configuration.

    Args:
        config: Engine configuration (uses defaults if not provided)
        embedding_client: Overrides the configured embedding provider

    Returns:
        An engine sharing one store for memories and relationships; call
        ``initialize()`` before use
    """
    config = config or CompanionConfig()
    if config.storage.backend == "memory":
        store: InMemoryStore | SQLiteStore = InMemoryStore()
    else:
        store = SQLiteStore(db_path=config.storage.sqlite_db_path)

    if embedding_client is None:
        embedding_client = create_embedding_client(config.embedding)

    logger.info(
        f"Creating CompanionEngine: storage={config.storage.backend}, "
        f"embedding={config.embedding.provider}"
    )
    return CompanionEngine(
        relationship_store=store,
        memory_store=store,
        embedding_client=embedding_client,
        config=config,
    )

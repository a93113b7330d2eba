"""Relationship/memory context for the downstream text generator.

Read-only: builds a deterministic plain-text summary of where the
relationship stands and what the character remembers about the user. The
output is handed to the generator as-is and never parsed back.
"""

from __future__ import annotations

from loguru import logger

from .cache import ContextCache
from .config import ContextConfig
from .guards import store_call
from .interfaces import MemoryStore
from .models import MemoryRecord, RelationshipState, Scope
from .relationship import MAX_LEVEL, RelationshipStateMachine, level_info


def _memory_rank(record: MemoryRecord) -> tuple:
    return (-record.importance, -record.access_count, record.created_at, record.content)


def render_context(
    state: RelationshipState,
    memories: list[MemoryRecord],
    max_memories: int = 3,
    max_milestones: int = 3,
) -> str:
    """Render the summary for one (user, character) pair.

    The same inputs always produce the same text: memories are ranked by
    importance, then access count, creation time and content, and grouped by
    category in rank order.
    """
    info = level_info(state.level)
    lines = [
        f"Relationship stage: {info.name} ({info.stage})",
        f"Intimacy level: {state.level}/{MAX_LEVEL}",
        f"Total interactions: {state.total_interactions}",
        f"Communication style: {state.communication_style.value}",
        f"Guidance: {info.guidance}",
    ]

    milestones = state.recent_milestones(max_milestones)
    lines.append(f"Recent milestones: {', '.join(milestones) if milestones else 'none'}")

    top = sorted(memories, key=_memory_rank)[: max(0, max_memories)]
    if not top:
        lines.append("Key memories: none")
        return "\n".join(lines)

    grouped: dict[str, list[str]] = {}
    for record in top:
        grouped.setdefault(record.category.value, []).append(record.content)
    lines.append("Key memories:")
    for category, contents in grouped.items():
        lines.append(f"- {category}: {'; '.join(contents)}")
    return "\n".join(lines)


class ContextProvider:
    """Assembles and caches generation context per (user, character).

    Cached entries expire after the configured TTL and are invalidated
    explicitly whenever an interaction for the pair is processed.
    """

    def __init__(
        self,
        relationships: RelationshipStateMachine,
        memory_store: MemoryStore,
        config: ContextConfig | None = None,
        cache: ContextCache | None = None,
    ):
        self._relationships = relationships
        self._memory_store = memory_store
        self._config = config or ContextConfig()
        self._cache = cache or ContextCache(
            maxsize=self._config.cache_maxsize,
            ttl_seconds=self._config.cache_ttl_seconds,
        )

    @property
    def cache(self) -> ContextCache:
        return self._cache

    async def get_context(self, user_id: str, character_id: str) -> str:
        scope = Scope.of(user_id, character_id)

        cached = self._cache.get(scope)
        if cached is not None:
            logger.debug(f"Context cache hit: {scope.key}")
            return cached

        generation = self._cache.generation(scope)
        state = await self._relationships.get_state(scope)
        memories = await store_call(
            self._memory_store.top_memories(scope, limit=self._config.memory_pool_size),
            "memory_top",
            self._config.store_timeout_seconds,
        )
        context = render_context(
            state,
            memories,
            max_memories=self._config.max_memories,
            max_milestones=self._config.max_milestones,
        )
        if not self._cache.set(scope, context, generation=generation):
            logger.debug(f"Context for {scope.key} changed during rebuild, not cached")
        logger.debug(
            f"Context built: {scope.key} level={state.level} memories={len(memories)}"
        )
        return context

    def invalidate(self, scope: Scope) -> bool:
        return self._cache.invalidate(scope)

    def clear(self) -> int:
        return self._cache.clear()

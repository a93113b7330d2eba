"""SQLite storage backend.

Persists memory records and relationship states with aiosqlite. One store
instance implements both the MemoryStore and RelationshipStore interfaces.

Concurrency guarantees provided at the storage layer:
- ``memory_records`` is unique on (user_id, character_id, category, content);
  inserting an identical record merges into the existing row atomically.
- ``relationship_states`` carries a version column; writes are
  compare-and-swap on that version and raise VersionConflict on mismatch.
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

import aiosqlite
from loguru import logger

from ..embedding import cosine_similarity, deserialize_embedding, serialize_embedding
from ..exceptions import PersistenceError, VersionConflict
from ..models import MemoryRecord, MilestoneEntry, RelationshipState, Scope

_MEMORY_COLUMNS = (
    "id, user_id, character_id, category, content, embedding, confidence, "
    "importance, access_count, created_at, last_accessed_at, metadata"
)

_RELATIONSHIP_COLUMNS = (
    "user_id, character_id, level, points, total_interactions, "
    "positive_interactions, negative_interactions, trust_level, emotional_bond, "
    "milestones, milestone_log, created_at, last_interaction_at, version"
)

# Fields a memory update may touch, mapped to their column encoders.
_UPDATABLE_MEMORY_FIELDS = {
    "category": lambda v: getattr(v, "value", v),
    "content": lambda v: v,
    "embedding": lambda v: serialize_embedding(v) if v else None,
    "confidence": float,
    "importance": float,
    "access_count": int,
    "last_accessed_at": lambda v: _to_iso(v),
    "metadata": lambda v: json.dumps(v or {}, ensure_ascii=False),
}


def _to_iso(value: datetime | str | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return value.isoformat()


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except aiosqlite.Error as e:
        logger.error(f"SQLite {operation} failed: {e}")
        raise PersistenceError(operation, str(e)) from e


class SQLiteStore:
    """SQLite storage for memories and relationship states.

    Uses WAL mode for concurrent reads. Call ``initialize()`` before use and
    ``close()`` on shutdown.
    """

    def __init__(self, db_path: str = "./memory/companion.db"):
        """Initialize SQLite store.

        Args:
            db_path: Path to SQLite database file (":memory:" for a private
                in-memory database)
        """
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None
        logger.info(f"SQLiteStore initialized with db_path: {db_path}")

    async def initialize(self) -> None:
        """Create database tables and indexes if they don't exist."""
        if self._db is not None:
            return

        if self.db_path != ":memory:":
            db_dir = Path(self.db_path).parent
            db_dir.mkdir(parents=True, exist_ok=True)
            logger.debug(f"Ensured database directory exists: {db_dir}")

        with _translate_errors("initialize"):
            self._db = await aiosqlite.connect(self.db_path)
            await self._db.execute("PRAGMA journal_mode=WAL")
            await self._create_tables()
            await self._create_indexes()
            await self._db.commit()
        logger.info("SQLite database initialized successfully")

    async def _create_tables(self) -> None:
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS memory_records (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                character_id TEXT NOT NULL,
                category TEXT NOT NULL,
                content TEXT NOT NULL,
                embedding BLOB,
                confidence REAL DEFAULT 0.8,
                importance REAL DEFAULT 0.5,
                access_count INTEGER DEFAULT 0,
                created_at TEXT NOT NULL,
                last_accessed_at TEXT NOT NULL,
                metadata TEXT,
                UNIQUE (user_id, character_id, category, content)
            )
        """)

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS relationship_states (
                user_id TEXT NOT NULL,
                character_id TEXT NOT NULL,
                level INTEGER NOT NULL DEFAULT 1,
                points INTEGER NOT NULL DEFAULT 0,
                total_interactions INTEGER DEFAULT 0,
                positive_interactions INTEGER DEFAULT 0,
                negative_interactions INTEGER DEFAULT 0,
                trust_level REAL DEFAULT 0.0,
                emotional_bond REAL DEFAULT 0.0,
                milestones TEXT,
                milestone_log TEXT,
                created_at TEXT NOT NULL,
                last_interaction_at TEXT,
                version INTEGER NOT NULL DEFAULT 1,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (user_id, character_id)
            )
        """)
        logger.debug("All tables created successfully")

    async def _create_indexes(self) -> None:
        await self._db.execute("""
            CREATE INDEX IF NOT EXISTS idx_memory_scope
            ON memory_records(user_id, character_id)
        """)

        await self._db.execute("""
            CREATE INDEX IF NOT EXISTS idx_memory_importance
            ON memory_records(user_id, character_id, importance DESC)
        """)
        logger.debug("All indexes created successfully")

    async def close(self) -> None:
        """Close database connection."""
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("SQLite database connection closed")

    def _require_db(self) -> aiosqlite.Connection:
        if not self._db:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._db

    # -- memory records -----------------------------------------------------

    @staticmethod
    def _row_to_record(row: tuple) -> MemoryRecord:
        return MemoryRecord(
            id=row[0],
            user_id=row[1],
            character_id=row[2],
            category=row[3],
            content=row[4],
            embedding=deserialize_embedding(row[5]),
            confidence=row[6],
            importance=row[7],
            access_count=row[8],
            created_at=_from_iso(row[9]),
            last_accessed_at=_from_iso(row[10]),
            metadata=json.loads(row[11]) if row[11] else {},
        )

    async def get_memory(self, record_id: str) -> MemoryRecord | None:
        db = self._require_db()
        with _translate_errors("memory_get"):
            async with db.execute(
                f"SELECT {_MEMORY_COLUMNS} FROM memory_records WHERE id = ?",
                (record_id,),
            ) as cursor:
                row = await cursor.fetchone()
        return self._row_to_record(row) if row else None

    async def insert(self, record: MemoryRecord) -> MemoryRecord:
        """Insert a memory record.

        An existing row with the same scope, category and content absorbs the
        insert instead: access_count + 1, importance = max, last access
        refreshed. The stored row is returned either way.
        """
        db = self._require_db()
        with _translate_errors("memory_insert"):
            await db.execute(
                f"""
                INSERT INTO memory_records ({_MEMORY_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, character_id, category, content) DO UPDATE SET
                    access_count = memory_records.access_count + 1,
                    importance = MAX(memory_records.importance, excluded.importance),
                    last_accessed_at = excluded.last_accessed_at
                """,
                (
                    record.id,
                    record.user_id,
                    record.character_id,
                    record.category.value,
                    record.content,
                    serialize_embedding(record.embedding) if record.embedding else None,
                    record.confidence,
                    record.importance,
                    record.access_count,
                    _to_iso(record.created_at),
                    _to_iso(record.last_accessed_at),
                    json.dumps(record.metadata, ensure_ascii=False),
                ),
            )
            await db.commit()

            async with db.execute(
                f"""
                SELECT {_MEMORY_COLUMNS} FROM memory_records
                WHERE user_id = ? AND character_id = ? AND category = ? AND content = ?
                """,
                (record.user_id, record.character_id, record.category.value, record.content),
            ) as cursor:
                row = await cursor.fetchone()

        stored = self._row_to_record(row)
        logger.debug(f"Memory record stored: {stored.id}")
        return stored

    async def update(self, record_id: str, patch: dict[str, Any]) -> MemoryRecord:
        """Apply a partial update to a memory record.

        Raises:
            ValueError: The patch names a field that cannot be updated
            PersistenceError: No record with ``record_id``
        """
        db = self._require_db()
        unknown = set(patch) - set(_UPDATABLE_MEMORY_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update memory fields: {sorted(unknown)}")
        if not patch:
            record = await self.get_memory(record_id)
            if record is None:
                raise PersistenceError("memory_update", f"record {record_id} not found")
            return record

        assignments = ", ".join(f"{field} = ?" for field in patch)
        values = [_UPDATABLE_MEMORY_FIELDS[field](value) for field, value in patch.items()]

        with _translate_errors("memory_update"):
            cursor = await db.execute(
                f"UPDATE memory_records SET {assignments} WHERE id = ?",
                (*values, record_id),
            )
            await db.commit()
            if cursor.rowcount == 0:
                raise PersistenceError("memory_update", f"record {record_id} not found")

        logger.debug(f"Memory record updated: {record_id} {sorted(patch)}")
        record = await self.get_memory(record_id)
        if record is None:
            raise PersistenceError("memory_update", f"record {record_id} not found")
        return record

    async def similarity_search(
        self,
        embedding: list[float],
        scope: Scope,
        top_k: int = 1,
        min_similarity: float = 0.9,
    ) -> list[MemoryRecord]:
        """Brute-force cosine search over the records of one scope."""
        db = self._require_db()
        if not embedding or top_k <= 0:
            return []

        with _translate_errors("memory_search"):
            async with db.execute(
                f"""
                SELECT {_MEMORY_COLUMNS} FROM memory_records
                WHERE user_id = ? AND character_id = ? AND embedding IS NOT NULL
                """,
                (scope.user_id, scope.character_id),
            ) as cursor:
                rows = await cursor.fetchall()

        scored: list[tuple[float, MemoryRecord]] = []
        for row in rows:
            record = self._row_to_record(row)
            similarity = cosine_similarity(embedding, record.embedding)
            if similarity >= min_similarity:
                scored.append((similarity, record))

        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [record for _, record in scored[:top_k]]

    async def top_memories(self, scope: Scope, limit: int = 10) -> list[MemoryRecord]:
        db = self._require_db()
        with _translate_errors("memory_top"):
            async with db.execute(
                f"""
                SELECT {_MEMORY_COLUMNS} FROM memory_records
                WHERE user_id = ? AND character_id = ?
                ORDER BY importance DESC, access_count DESC, created_at ASC
                LIMIT ?
                """,
                (scope.user_id, scope.character_id, limit),
            ) as cursor:
                rows = await cursor.fetchall()
        return [self._row_to_record(row) for row in rows]

    async def count_memories(self, scope: Scope) -> int:
        db = self._require_db()
        with _translate_errors("memory_count"):
            async with db.execute(
                "SELECT COUNT(*) FROM memory_records WHERE user_id = ? AND character_id = ?",
                (scope.user_id, scope.character_id),
            ) as cursor:
                row = await cursor.fetchone()
        return row[0] if row else 0

    # -- relationship states ------------------------------------------------

    @staticmethod
    def _row_to_state(row: tuple) -> RelationshipState:
        log = json.loads(row[10]) if row[10] else []
        return RelationshipState(
            user_id=row[0],
            character_id=row[1],
            level=row[2],
            points=row[3],
            total_interactions=row[4],
            positive_interactions=row[5],
            negative_interactions=row[6],
            trust_level=row[7],
            emotional_bond=row[8],
            milestones=set(json.loads(row[9])) if row[9] else set(),
            milestone_log=[MilestoneEntry.model_validate(entry) for entry in log],
            created_at=_from_iso(row[11]),
            last_interaction_at=_from_iso(row[12]),
            version=row[13],
        )

    async def get(self, user_id: str, character_id: str) -> RelationshipState | None:
        db = self._require_db()
        with _translate_errors("relationship_get"):
            async with db.execute(
                f"""
                SELECT {_RELATIONSHIP_COLUMNS} FROM relationship_states
                WHERE user_id = ? AND character_id = ?
                """,
                (user_id, character_id),
            ) as cursor:
                row = await cursor.fetchone()
        return self._row_to_state(row) if row else None

    async def upsert(self, state: RelationshipState, expected_version: int) -> RelationshipState:
        """Compare-and-swap write of a relationship state.

        ``expected_version == 0`` inserts a new row; otherwise the row is only
        updated while its version still equals ``expected_version``.

        Raises:
            VersionConflict: Another writer got there first
        """
        db = self._require_db()
        new_version = expected_version + 1
        milestones = json.dumps(sorted(state.milestones), ensure_ascii=False)
        milestone_log = json.dumps(
            [entry.model_dump(mode="json") for entry in state.milestone_log],
            ensure_ascii=False,
        )

        with _translate_errors("relationship_upsert"):
            if expected_version == 0:
                cursor = await db.execute(
                    f"""
                    INSERT INTO relationship_states ({_RELATIONSHIP_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(user_id, character_id) DO NOTHING
                    """,
                    (
                        state.user_id,
                        state.character_id,
                        state.level,
                        state.points,
                        state.total_interactions,
                        state.positive_interactions,
                        state.negative_interactions,
                        state.trust_level,
                        state.emotional_bond,
                        milestones,
                        milestone_log,
                        _to_iso(state.created_at),
                        _to_iso(state.last_interaction_at),
                        new_version,
                    ),
                )
            else:
                cursor = await db.execute(
                    """
                    UPDATE relationship_states SET
                        level = ?, points = ?, total_interactions = ?,
                        positive_interactions = ?, negative_interactions = ?,
                        trust_level = ?, emotional_bond = ?,
                        milestones = ?, milestone_log = ?,
                        last_interaction_at = ?, version = ?,
                        updated_at = CURRENT_TIMESTAMP
                    WHERE user_id = ? AND character_id = ? AND version = ?
                    """,
                    (
                        state.level,
                        state.points,
                        state.total_interactions,
                        state.positive_interactions,
                        state.negative_interactions,
                        state.trust_level,
                        state.emotional_bond,
                        milestones,
                        milestone_log,
                        _to_iso(state.last_interaction_at),
                        new_version,
                        state.user_id,
                        state.character_id,
                        expected_version,
                    ),
                )
            await db.commit()

        if cursor.rowcount == 0:
            raise VersionConflict(state.user_id, state.character_id, expected_version)

        logger.debug(
            f"Relationship state stored: {state.user_id}:{state.character_id} v{new_version}"
        )
        return state.model_copy(update={"version": new_version})

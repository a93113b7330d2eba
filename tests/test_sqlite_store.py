"""Tests for SQLiteStore memory records and relationship states."""

import os
import tempfile

import pytest

from conftest import unit
from companion_core.exceptions import PersistenceError, VersionConflict
from companion_core.models import MemoryRecord, MilestoneEntry, RelationshipState, Scope
from companion_core.storage.sqlite_store import SQLiteStore

SCOPE = Scope.of("u1", "c1")


@pytest.fixture
async def store():
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = os.path.join(tmpdir, "test.db")
        s = SQLiteStore(db_path=db_path)
        await s.initialize()
        yield s
        await s.close()


def record(content="我喜欢猫", embedding=None, **kwargs) -> MemoryRecord:
    return MemoryRecord(
        user_id=kwargs.pop("user_id", "u1"),
        character_id=kwargs.pop("character_id", "c1"),
        category=kwargs.pop("category", "preference"),
        content=content,
        embedding=embedding if embedding is not None else unit(1.0, 0.0),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_tables_exist(store):
    async with store._db.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
    ) as cursor:
        rows = await cursor.fetchall()
    names = {r[0] for r in rows}
    assert {"memory_records", "relationship_states"} <= names


@pytest.mark.asyncio
async def test_relationship_states_has_version_column(store):
    async with store._db.execute("PRAGMA table_info(relationship_states)") as cursor:
        rows = await cursor.fetchall()
    assert "version" in {r[1] for r in rows}


@pytest.mark.asyncio
async def test_uninitialized_store_raises():
    s = SQLiteStore(db_path=":memory:")
    with pytest.raises(RuntimeError):
        await s.get("u1", "c1")


# ---------------------------------------------------------------------------
# Memory records
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_insert_and_get_memory(store):
    r = record(metadata={"source": "chat"}, importance=0.7)
    stored = await store.insert(r)

    assert stored.id == r.id
    fetched = await store.get_memory(r.id)
    assert fetched.content == "我喜欢猫"
    assert fetched.category.value == "preference"
    assert fetched.importance == pytest.approx(0.7)
    assert fetched.metadata == {"source": "chat"}
    assert fetched.embedding == pytest.approx(r.embedding)
    assert fetched.created_at.tzinfo is not None


@pytest.mark.asyncio
async def test_identical_insert_merges_atomically(store):
    first = await store.insert(record(importance=0.5))
    second = await store.insert(record(importance=0.9))

    assert second.id == first.id
    assert second.access_count == 1
    assert second.importance == pytest.approx(0.9)
    assert await store.count_memories(SCOPE) == 1


@pytest.mark.asyncio
async def test_update_applies_patch(store):
    r = await store.insert(record(importance=0.5))
    updated = await store.update(r.id, {"access_count": 3, "importance": 0.8})

    assert updated.access_count == 3
    assert updated.importance == pytest.approx(0.8)
    assert updated.content == r.content


@pytest.mark.asyncio
async def test_update_missing_record(store):
    with pytest.raises(PersistenceError):
        await store.update("missing", {"access_count": 1})


@pytest.mark.asyncio
async def test_update_rejects_unknown_fields(store):
    r = await store.insert(record())
    with pytest.raises(ValueError):
        await store.update(r.id, {"user_id": "someone-else"})


@pytest.mark.asyncio
async def test_similarity_search_scoped_and_ordered(store):
    await store.insert(record("a", embedding=unit(1.0, 0.0)))
    await store.insert(record("b", embedding=unit(0.8, 0.6)))
    await store.insert(record("c", embedding=unit(0.0, 1.0)))
    await store.insert(record("other", embedding=unit(1.0, 0.0), character_id="c2"))

    results = await store.similarity_search(unit(1.0, 0.0), SCOPE, top_k=5, min_similarity=0.5)
    assert [r.content for r in results] == ["a", "b"]

    top = await store.similarity_search(unit(1.0, 0.0), SCOPE, top_k=1, min_similarity=0.9)
    assert [r.content for r in top] == ["a"]


@pytest.mark.asyncio
async def test_similarity_threshold_is_inclusive(store):
    await store.insert(record("a", embedding=unit(1.0, 0.0)))
    results = await store.similarity_search(unit(1.0, 0.0), SCOPE, min_similarity=1.0 - 1e-9)
    assert len(results) == 1


@pytest.mark.asyncio
async def test_top_memories_by_importance(store):
    await store.insert(record("low", importance=0.3))
    await store.insert(record("high", importance=0.9))
    await store.insert(record("mid", importance=0.6))

    top = await store.top_memories(SCOPE, limit=2)
    assert [r.content for r in top] == ["high", "mid"]


# ---------------------------------------------------------------------------
# Relationship states
# ---------------------------------------------------------------------------


def state(**kwargs) -> RelationshipState:
    return RelationshipState(user_id="u1", character_id="c1", **kwargs)


@pytest.mark.asyncio
async def test_get_missing_relationship(store):
    assert await store.get("u1", "c1") is None


@pytest.mark.asyncio
async def test_relationship_round_trip(store):
    s = state(
        level=3,
        points=160,
        total_interactions=12,
        positive_interactions=9,
        negative_interactions=1,
        trust_level=4.2,
        emotional_bond=2.7,
        milestones={"first_meeting", "first_confession"},
        milestone_log=[MilestoneEntry(name="first_meeting"), MilestoneEntry(name="first_confession")],
    )
    stored = await store.upsert(s, expected_version=0)
    assert stored.version == 1

    fetched = await store.get("u1", "c1")
    assert fetched.level == 3
    assert fetched.points == 160
    assert fetched.trust_level == pytest.approx(4.2)
    assert fetched.milestones == {"first_meeting", "first_confession"}
    assert fetched.recent_milestones(1) == ["first_confession"]
    assert fetched.version == 1


@pytest.mark.asyncio
async def test_upsert_compare_and_swap(store):
    v1 = await store.upsert(state(points=5), expected_version=0)
    v2 = await store.upsert(v1.model_copy(update={"points": 10}), expected_version=1)
    assert v2.version == 2

    with pytest.raises(VersionConflict):
        await store.upsert(v1.model_copy(update={"points": 99}), expected_version=1)
    with pytest.raises(VersionConflict):
        await store.upsert(state(points=1), expected_version=0)

    fetched = await store.get("u1", "c1")
    assert fetched.points == 10
    assert fetched.version == 2


@pytest.mark.asyncio
async def test_data_survives_reopen():
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = os.path.join(tmpdir, "nested", "test.db")
        s = SQLiteStore(db_path=db_path)
        await s.initialize()
        await s.upsert(state(points=42), expected_version=0)
        await s.insert(record())
        await s.close()

        reopened = SQLiteStore(db_path=db_path)
        await reopened.initialize()
        assert (await reopened.get("u1", "c1")).points == 42
        assert await reopened.count_memories(SCOPE) == 1
        await reopened.close()

import sqlite3
import time

import pytest

from conftest import TEST_DIMENSIONS, unit_vector
from core.errors import EmbeddingDimensionError, NotFoundError, ValidationIssue
from core.models import ListOptions, Memory, MemoryType, SearchOptions


def make_memory(content: str, memory_type=MemoryType.decision, area: str = "db", **kwargs) -> Memory:
    return Memory(type=memory_type, area=area, content=content, **kwargs)


def test_add_assigns_id_and_timestamp(sqlite_store):
    first = sqlite_store.add(make_memory("Use postgres"), unit_vector(0))
    second = sqlite_store.add(make_memory("Use redis"), unit_vector(1))

    assert first.id > 0
    assert second.id > first.id
    assert first.is_valid is True
    assert first.superseded_by is None
    assert first.created_at.tzinfo is not None


def test_add_persists_attribution(sqlite_store):
    sqlite_store.add(
        make_memory(
            "Use postgres",
            rationale="Team knows it",
            author_name="Alice",
            author_email="alice@example.com",
            project_scope="acme/api",
        ),
        unit_vector(0),
    )

    [memory] = sqlite_store.list(ListOptions())
    assert memory.rationale == "Team knows it"
    assert memory.author_name == "Alice"
    assert memory.author_email == "alice@example.com"
    assert memory.project_scope == "acme/api"


def test_add_rejects_invalid_type_without_writing(sqlite_store):
    with pytest.raises(ValidationIssue):
        sqlite_store.add(make_memory("x", memory_type="bogus"), unit_vector(0))

    assert sqlite_store.list(ListOptions(include_invalid=True)) == []


def test_add_rejects_wrong_dimensions_without_writing(sqlite_store):
    with pytest.raises(EmbeddingDimensionError):
        sqlite_store.add(make_memory("x"), [1.0] * (TEST_DIMENSIONS + 1))

    assert sqlite_store.list(ListOptions(include_invalid=True)) == []


def test_search_orders_by_similarity(sqlite_store):
    near = sqlite_store.add(make_memory("near"), unit_vector(2))
    sqlite_store.add(make_memory("far"), unit_vector(5))

    results = sqlite_store.search(unit_vector(2), SearchOptions(limit=2))

    assert [memory.content for memory in results] == ["near", "far"]
    assert results[0].id == near.id


def test_search_excludes_invalid_memories(sqlite_store):
    stale = sqlite_store.add(make_memory("stale"), unit_vector(2))
    sqlite_store.add(make_memory("fresh"), unit_vector(3))
    sqlite_store.invalidate(stale.id)

    results = sqlite_store.search(unit_vector(2), SearchOptions(limit=5))

    assert [memory.content for memory in results] == ["fresh"]


def test_search_filters_are_conjunctive(sqlite_store):
    sqlite_store.add(make_memory("a", area="db", project_scope="acme/api"), unit_vector(0))
    sqlite_store.add(make_memory("b", area="db", project_scope="acme/web"), unit_vector(0))
    sqlite_store.add(make_memory("c", memory_type=MemoryType.learning, area="db", project_scope="acme/api"), unit_vector(0))

    results = sqlite_store.search(
        unit_vector(0),
        SearchOptions(limit=10, memory_type=MemoryType.decision, area="db", project_scope="acme/api"),
    )

    assert [memory.content for memory in results] == ["a"]


def test_search_respects_limit_and_default(sqlite_store):
    for index in range(7):
        sqlite_store.add(make_memory(f"m{index}"), unit_vector(index % TEST_DIMENSIONS))

    assert len(sqlite_store.search(unit_vector(0), SearchOptions(limit=3))) == 3
    assert len(sqlite_store.search(unit_vector(0), SearchOptions(limit=0))) == 5


def test_search_rejects_wrong_query_dimensions(sqlite_store):
    with pytest.raises(EmbeddingDimensionError):
        sqlite_store.search([1.0, 2.0], SearchOptions())


def test_list_newest_first_with_pagination(sqlite_store):
    for index in range(5):
        sqlite_store.add(make_memory(f"m{index}"), unit_vector(0))
        time.sleep(0.002)

    first_page = sqlite_store.list(ListOptions(limit=2))
    second_page = sqlite_store.list(ListOptions(limit=2, offset=2))

    assert [memory.content for memory in first_page] == ["m4", "m3"]
    assert [memory.content for memory in second_page] == ["m2", "m1"]


def test_list_include_invalid(sqlite_store):
    kept = sqlite_store.add(make_memory("kept"), unit_vector(0))
    dropped = sqlite_store.add(make_memory("dropped"), unit_vector(0))
    sqlite_store.invalidate(dropped.id, superseded_by=kept.id)

    assert [memory.id for memory in sqlite_store.list(ListOptions())] == [kept.id]

    everything = sqlite_store.list(ListOptions(include_invalid=True))
    assert {memory.id for memory in everything} == {kept.id, dropped.id}
    invalid = next(memory for memory in everything if memory.id == dropped.id)
    assert invalid.is_valid is False
    assert invalid.superseded_by == kept.id


def test_list_filters_by_scope(sqlite_store):
    sqlite_store.add(make_memory("api", project_scope="acme/api"), unit_vector(0))
    sqlite_store.add(make_memory("unscoped"), unit_vector(0))

    results = sqlite_store.list(ListOptions(project_scope="acme/api"))

    assert [memory.content for memory in results] == ["api"]


def test_invalidate_unknown_id(sqlite_store):
    with pytest.raises(NotFoundError):
        sqlite_store.invalidate(999)


def test_invalidate_twice_keeps_first_successor(sqlite_store):
    target = sqlite_store.add(make_memory("old"), unit_vector(0))
    first = sqlite_store.add(make_memory("new"), unit_vector(1))
    second = sqlite_store.add(make_memory("newer"), unit_vector(2))

    sqlite_store.invalidate(target.id, superseded_by=first.id)
    sqlite_store.invalidate(target.id, superseded_by=second.id)

    invalid = next(m for m in sqlite_store.list(ListOptions(include_invalid=True)) if m.id == target.id)
    assert invalid.superseded_by == first.id


def test_reopen_keeps_data(sqlite_store):
    from core.storage.sqlite_store import SQLiteMemoryStore

    sqlite_store.add(make_memory("persisted"), unit_vector(0))
    reopened = SQLiteMemoryStore(sqlite_store.path, dimensions=TEST_DIMENSIONS)
    try:
        assert [memory.content for memory in reopened.list(ListOptions())] == ["persisted"]
    finally:
        reopened.close()


def test_creates_parent_directory(tmp_path):
    pytest.importorskip("sqlite_vec")
    if not hasattr(sqlite3.Connection, "enable_load_extension"):
        pytest.skip("sqlite3 built without extension loading")
    from core.storage.sqlite_store import SQLiteMemoryStore

    path = tmp_path / "nested" / "dir" / "memory.db"
    store = SQLiteMemoryStore(str(path), dimensions=TEST_DIMENSIONS)
    store.close()

    assert path.exists()

"""
Test cases for the SQLite + FAISS vector store.
"""

import numpy as np
import pytest

from treevec.core.errors import DimensionMismatchError, StorageError
from treevec.vector.faiss_store import FaissVectorStore
from treevec.vector.index_policy import IndexPolicy
from treevec.vector.types import EmbeddingItem, EmbeddingKind


def _item(path, vector, kind="origin", item_type="file", **kwargs):
    return EmbeddingItem(type=item_type, path=path, kind=kind, vector=list(vector), **kwargs)


def _random_vectors(count, dimension=16, seed=0):
    return np.random.default_rng(seed).normal(size=(count, dimension)).astype(np.float32)


@pytest.fixture
def store(tmp_path):
    store = FaissVectorStore(tmp_path / "store")
    store.initialize()
    yield store
    store.dispose()


def test_add_and_get(store):
    """Records round-trip with their provenance fields."""
    item = _item("/p/a.py", [1.0, 2.0, 3.0], raw="print(1)", parent="dir-id")
    store.add_embedding(item)

    loaded = store.get_by_id(item.id)
    assert loaded.path == "/p/a.py"
    assert loaded.kind == EmbeddingKind.ORIGIN
    assert loaded.raw == "print(1)"
    assert loaded.parent == "dir-id"
    assert loaded.vector == pytest.approx([1.0, 2.0, 3.0])
    assert store.dimension == 3
    assert store.get_count() == 1
    assert store.exists("/p/a.py", EmbeddingKind.ORIGIN)
    assert not store.exists("/p/a.py", EmbeddingKind.SUMMARIZE)


def test_structured_raw_and_children(store):
    child = _item("/p/a.py", [1.0, 0.0])
    store.add_embedding(child)
    parent = _item("/p", [1.0, 0.0], kind="vs_origin", item_type="directory",
                   raw={"description": "Sum of 1 vectors", "count": 1}, childs=[child.id])
    store.add_embedding(parent)

    loaded = store.get_by_id(parent.id)
    assert loaded.raw == {"description": "Sum of 1 vectors", "count": 1}
    assert loaded.childs == [child.id]


def test_dimension_mismatch_is_rejected(store):
    store.add_embedding(_item("/p/a.py", [1.0, 0.0, 0.0]))

    with pytest.raises(DimensionMismatchError) as excinfo:
        store.add_embedding(_item("/p/b.py", [1.0, 0.0]))

    assert excinfo.value.expected == 3
    assert excinfo.value.actual == 2
    assert "clearing" in str(excinfo.value)
    assert store.get_count() == 1

    with pytest.raises(DimensionMismatchError):
        store.search_similar([1.0, 0.0])


def test_invalid_records_are_rejected(store):
    item = _item("/p/a.py", [1.0, 0.0])
    store.add_embedding(item)

    with pytest.raises(StorageError):
        store.add_embedding(_item("/p/b.py", [0.0, 1.0], id=item.id))
    with pytest.raises(StorageError):
        store.add_embedding(_item("/p/c.py", []))
    with pytest.raises(StorageError):
        store.add_embedding(_item("/p/d.py", [float("nan"), 1.0]))
    assert store.get_count() == 1


def test_search_on_empty_store(store):
    assert store.search_similar([1.0, 0.0, 0.0]) == []


def test_search_ranks_by_cosine(store):
    store.add_embedding(_item("/p/x.py", [1.0, 0.0]))
    store.add_embedding(_item("/p/diag.py", [1.0, 1.0]))
    store.add_embedding(_item("/p/y.py", [0.0, 1.0]))

    results = store.search_similar([2.0, 0.0], limit=2)

    assert [r.item.path for r in results] == ["/p/x.py", "/p/diag.py"]
    assert results[0].similarity == pytest.approx(1.0, abs=1e-6)
    assert results[1].similarity == pytest.approx(np.sqrt(0.5), abs=1e-5)

    again = store.search_similar([2.0, 0.0], limit=2)
    assert [r.item.id for r in again] == [r.item.id for r in results]


def test_search_limit_zero(store):
    store.add_embedding(_item("/p/x.py", [1.0, 0.0]))
    assert store.search_similar([1.0, 0.0], limit=0) == []


def test_replace_and_delete(store):
    first = _item("/p/a.py", [1.0, 0.0])
    summary = _item("/p/a.py", [0.0, 1.0], kind="summarize")
    store.add_embedding(first)
    store.add_embedding(summary)

    second = _item("/p/a.py", [0.5, 0.5])
    store.replace_embedding(second)

    kinds = {item.kind: item.id for item in store.get_by_path("/p/a.py")}
    assert kinds == {EmbeddingKind.ORIGIN: second.id, EmbeddingKind.SUMMARIZE: summary.id}
    assert store.get_by_id(first.id) is None

    store.delete_embedding(summary.id)
    assert [item.id for item in store.get_by_path("/p/a.py")] == [second.id]

    store.delete_by_path("/p/a.py")
    assert store.get_count() == 0
    # Dimension stays fixed until the store is cleared
    assert store.dimension == 2


def test_get_children_and_limit(store):
    parent = _item("/p", [1.0, 0.0], kind="vs_origin", item_type="directory")
    store.add_embedding(parent)
    for name in ("a", "b", "c"):
        store.add_embedding(_item(f"/p/{name}.py", [0.0, 1.0], parent=parent.id))

    assert [item.path for item in store.get_children(parent.id)] == ["/p/a.py", "/p/b.py", "/p/c.py"]
    assert len(store.get_all_items(limit=2)) == 2
    assert len(store.get_all_items()) == 4


def test_persistence_across_reopen(tmp_path):
    directory = tmp_path / "store"
    store = FaissVectorStore(directory)
    item = _item("/p/a.py", [1.0, 2.0, 3.0, 4.0], raw="text")
    store.add_embedding(item)
    store.dispose()

    reopened = FaissVectorStore(directory)
    reopened.initialize()
    try:
        assert reopened.get_count() == 1
        assert reopened.dimension == 4
        assert reopened.get_by_id(item.id).raw == "text"
        with pytest.raises(DimensionMismatchError):
            reopened.add_embedding(_item("/p/b.py", [1.0]))
    finally:
        reopened.dispose()


def test_corrupt_database_is_recreated(tmp_path):
    directory = tmp_path / "store"
    directory.mkdir()
    (directory / "embeddings.db").write_bytes(b"not a database" * 100)

    store = FaissVectorStore(directory)
    store.initialize()
    try:
        assert store.get_count() == 0
        assert store.dimension is None
        store.add_embedding(_item("/p/a.py", [1.0, 0.0]))
        assert store.get_count() == 1
    finally:
        store.dispose()


def test_clear_resets_dimension(store):
    store.add_embedding(_item("/p/a.py", [1.0, 0.0, 0.0]))
    assert store.get_storage_size() > 0

    store.clear()

    assert store.get_count() == 0
    assert store.dimension is None
    store.add_embedding(_item("/p/a.py", [1.0, 0.0]))
    assert store.dimension == 2


def _fill(store, vectors, start=0):
    items = []
    for i, vector in enumerate(vectors, start=start):
        item = _item(f"/p/file_{i}.py", vector)
        store.add_embedding(item)
        items.append(item)
    return items


def test_index_built_at_threshold(tmp_path):
    store = FaissVectorStore(tmp_path / "store", policy=IndexPolicy(min_records=100, update_interval=50))
    vectors = _random_vectors(200)
    try:
        _fill(store, vectors[:99])
        assert not store.has_index

        _fill(store, vectors[99:100], start=99)
        assert store.has_index
        assert store.last_index_count == 100
        assert (tmp_path / "store" / "embeddings.faiss").exists()

        _fill(store, vectors[100:], start=100)
        assert store.last_index_count == 200
    finally:
        store.dispose()


def test_indexed_search_matches_exact_results(tmp_path):
    store = FaissVectorStore(tmp_path / "store", policy=IndexPolicy(min_records=100, update_interval=1000))
    vectors = _random_vectors(150, seed=1)
    try:
        items = _fill(store, vectors)
        assert store.has_index

        for i in (0, 77, 149):
            [top] = store.search_similar(vectors[i], limit=1)
            assert top.item.id == items[i].id
            assert top.similarity == pytest.approx(1.0, abs=1e-5)
    finally:
        store.dispose()


def test_deleted_records_leave_index_results(tmp_path):
    store = FaissVectorStore(tmp_path / "store", policy=IndexPolicy(min_records=100, update_interval=1000))
    vectors = _random_vectors(120, seed=2)
    try:
        items = _fill(store, vectors)
        assert store.has_index

        store.delete_embedding(items[5].id)

        results = store.search_similar(vectors[5], limit=5)
        assert len(results) == 5
        assert items[5].id not in [r.item.id for r in results]
    finally:
        store.dispose()


def test_index_reloaded_after_reopen(tmp_path):
    directory = tmp_path / "store"
    policy = IndexPolicy(min_records=100, update_interval=1000)
    store = FaissVectorStore(directory, policy=policy)
    vectors = _random_vectors(100, seed=3)
    items = _fill(store, vectors)
    store.dispose()

    reopened = FaissVectorStore(directory, policy=policy)
    reopened.initialize()
    try:
        assert reopened.has_index
        assert reopened.last_index_count == 100
        [top] = reopened.search_similar(vectors[42], limit=1)
        assert top.item.id == items[42].id
    finally:
        reopened.dispose()


def test_index_rebuilt_when_writes_followed_last_save(tmp_path):
    """A replace after the index was saved, with no dispose, must not hide the new row after reopen."""
    directory = tmp_path / "store"
    policy = IndexPolicy(min_records=100, update_interval=1000)
    store = FaissVectorStore(directory, policy=policy)
    vectors = _random_vectors(101, seed=6)
    _fill(store, vectors[:100])
    assert store.has_index

    store.replace_embedding(_item("/p/file_7.py", vectors[100]))
    # Process ends here without dispose(); the index file predates the replace

    reopened = FaissVectorStore(directory, policy=policy)
    reopened.initialize()
    try:
        [top] = reopened.search_similar(vectors[100], limit=1)
        assert top.item.path == "/p/file_7.py"
        assert top.similarity == pytest.approx(1.0, abs=1e-5)
        assert reopened.has_index
    finally:
        reopened.dispose()


def test_saved_index_discarded_after_unsaved_deletes(tmp_path):
    directory = tmp_path / "store"
    policy = IndexPolicy(min_records=100, update_interval=1000)
    store = FaissVectorStore(directory, policy=policy)
    vectors = _random_vectors(100, seed=7)
    items = _fill(store, vectors)
    for item in items[4:]:
        store.delete_embedding(item.id)

    reopened = FaissVectorStore(directory, policy=policy)
    reopened.initialize()
    try:
        assert not reopened.has_index
        results = reopened.search_similar(vectors[0], limit=5)
        assert [r.item.id for r in results][0] == items[0].id
        assert len(results) == 4
    finally:
        reopened.dispose()


def test_background_index_build(tmp_path):
    store = FaissVectorStore(
        tmp_path / "store",
        policy=IndexPolicy(min_records=100, update_interval=1000),
        background_index_build=True,
    )
    vectors = _random_vectors(110, seed=4)
    try:
        items = _fill(store, vectors)
        store._wait_for_build()

        assert store.has_index
        assert store.last_index_count >= 100
        [top] = store.search_similar(vectors[105], limit=1)
        assert top.item.id == items[105].id
    finally:
        store.dispose()


def test_rebuild_index_on_demand(store):
    vectors = _random_vectors(20, seed=5)
    _fill(store, vectors)
    assert not store.has_index

    assert store.rebuild_index() is True
    assert store.last_index_count == 20
    [top] = store.search_similar(vectors[3], limit=1)
    assert top.item.path == "/p/file_3.py"

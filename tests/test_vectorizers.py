"""
Tests for FileVectorizer and DirectoryVectorizer in isolation.
"""

import asyncio
import os

import numpy as np

from conftest import FakeGenerator, RecordingEmbedding
from treevec.core.errors import EmbeddingError
from treevec.vector.index import SimpleInMemoryVectorStore
from treevec.vector.summarizer import TextSummarizer
from treevec.vector.types import EmbeddingItem, EmbeddingKind
from treevec.vectorize.directory_vectorizer import DirectoryVectorizer
from treevec.vectorize.file_status import FileStatus, FileStatusService, normalize_path
from treevec.vectorize.file_vectorizer import FileVectorizer


def _file_vectorizer(store=None, embedding=None, generator=None, file_status=None):
    store = store or SimpleInMemoryVectorStore()
    return FileVectorizer(
        store,
        embedding or RecordingEmbedding(),
        TextSummarizer(generator or FakeGenerator()),
        file_status,
    )


class FailingEmbedding(RecordingEmbedding):
    async def get_embedding(self, text):
        self.calls.append(text)
        raise EmbeddingError("provider down", "test")


def test_file_origin_record(tmp_path):
    path = tmp_path / "a.py"
    path.write_text("x = 1\n")
    vectorizer = _file_vectorizer()

    result = asyncio.run(vectorizer.vectorize_file(str(path), "parent-1", True, False))

    assert result.processed == 1
    assert result.errors == 0
    [item] = vectorizer.store.get_by_path(str(path))
    assert item.kind == EmbeddingKind.ORIGIN
    assert item.raw == "x = 1\n"
    assert item.parent == "parent-1"
    assert item.childs == []
    assert result.item_ids == [item.id]


def test_file_with_nothing_to_do_makes_no_calls(tmp_path):
    path = tmp_path / "a.py"
    path.write_text("x = 1\n")
    embedding = RecordingEmbedding()
    vectorizer = _file_vectorizer(embedding=embedding)
    asyncio.run(vectorizer.vectorize_file(str(path), None, True, False))

    result = asyncio.run(vectorizer.vectorize_file(str(path), None, True, False))

    assert (result.processed, result.errors) == (0, 0)
    assert len(embedding.calls) == 1


def test_cleanup_only_reports_zero(tmp_path):
    """Disabling a stored kind deletes it without counting it as processed."""
    path = tmp_path / "a.py"
    path.write_text("x = 1\n")
    embedding = RecordingEmbedding()
    vectorizer = _file_vectorizer(embedding=embedding)
    asyncio.run(vectorizer.vectorize_file(str(path), None, True, True))
    assert len(vectorizer.store.get_by_path(str(path))) == 2

    result = asyncio.run(vectorizer.vectorize_file(str(path), None, True, False))

    assert (result.processed, result.errors) == (0, 0)
    assert [item.kind for item in vectorizer.store.get_by_path(str(path))] == [EmbeddingKind.ORIGIN]
    assert len(embedding.calls) == 2


def test_kind_failures_counted_independently(tmp_path):
    path = tmp_path / "a.py"
    path.write_text("x = 1\n")
    vectorizer = _file_vectorizer(embedding=FailingEmbedding())

    result = asyncio.run(vectorizer.vectorize_file(str(path), None, True, True))

    assert result.processed == 0
    assert result.errors == 2
    assert "provider down" in result.error_messages[0]
    assert vectorizer.store.get_count() == 0


def test_excluded_file_is_skipped(tmp_path):
    path = tmp_path / "a.py"
    path.write_text("x = 1\n")
    store = SimpleInMemoryVectorStore()
    status = FileStatusService(store)
    status.set_status(str(path), FileStatus.EXCLUDED)
    embedding = RecordingEmbedding()
    vectorizer = _file_vectorizer(store=store, embedding=embedding, file_status=status)

    result = asyncio.run(vectorizer.vectorize_file(str(path), None, True, True))

    assert (result.processed, result.errors) == (0, 0)
    assert embedding.calls == []


def test_summary_input_is_truncated(tmp_path):
    path = tmp_path / "long.txt"
    path.write_text("a" * 50)
    generator = FakeGenerator()
    vectorizer = _file_vectorizer(generator=generator)
    vectorizer.summarizer.max_text_length = 10
    vectorizer.summarizer.truncate_message = "[cut]"

    asyncio.run(vectorizer.vectorize_file(str(path), None, False, True, "Summarize briefly."))

    assert generator.prompts == ["Summarize briefly.\n\n" + "a" * 10 + "[cut]"]
    [item] = vectorizer.store.get_by_path(str(path))
    assert item.raw == "SUMMARY " + "a" * 10 + "[cut]"


def _seed(store, path, kind, vector, item_type="file"):
    item = EmbeddingItem(type=item_type, path=os.path.normpath(str(path)), kind=kind, vector=vector)
    store.add_embedding(item)
    return item


def test_directory_sum_uses_direct_children_only(tmp_path):
    root = tmp_path / "dir"
    (root / "sub").mkdir(parents=True)
    (root / "a.txt").write_text("a")
    (root / "sub" / "b.txt").write_text("b")

    store = SimpleInMemoryVectorStore()
    a = _seed(store, root / "a.txt", "origin", [1.0, 0.0, 0.0])
    _seed(store, root / "sub" / "b.txt", "origin", [0.0, 5.0, 0.0])
    sub = _seed(store, root / "sub", "vs_origin", [0.0, 1.0, 2.0], "directory")
    _seed(store, root / "sub", "origin", [9.0, 9.0, 9.0], "directory")

    vectorizer = DirectoryVectorizer(store, RecordingEmbedding(dimension=3))
    result = asyncio.run(vectorizer.vectorize_directory(str(root), None, False, True, False))

    assert result.processed == 1
    [total] = [item for item in store.get_by_path(os.path.normpath(str(root)))
               if item.kind == EmbeddingKind.VS_ORIGIN]
    assert np.allclose(total.vector, [1.0, 1.0, 2.0])
    assert total.childs == [a.id, sub.id]
    assert total.raw["count"] == 2


def test_directory_sum_without_children_is_skipped(tmp_path):
    root = tmp_path / "empty"
    root.mkdir()
    store = SimpleInMemoryVectorStore()
    vectorizer = DirectoryVectorizer(store, RecordingEmbedding())

    result = asyncio.run(vectorizer.vectorize_directory(str(root), None, False, True, True))

    assert (result.processed, result.errors) == (0, 0)
    assert store.get_count() == 0


def test_directory_origin_ignores_hidden_files(tmp_path):
    root = tmp_path / "dir"
    root.mkdir()
    (root / "b.py").write_text("b")
    (root / "a.py").write_text("a")
    (root / ".hidden").write_text("h")
    (root / "nested").mkdir()

    store = SimpleInMemoryVectorStore()
    embedding = RecordingEmbedding()
    vectorizer = DirectoryVectorizer(store, embedding)
    result = asyncio.run(vectorizer.vectorize_directory(str(root), None, True, False, False))

    assert result.processed == 1
    assert embedding.calls == ["Directory contains 2 files: a.py, b.py"]
    [item] = store.get_by_path(os.path.normpath(str(root)))
    assert item.raw == {"description": "Directory contains 2 files: a.py, b.py", "files": ["a.py", "b.py"]}


def test_directory_sum_of_zero_vectors_is_stored(tmp_path):
    """Zero-valued children still produce an aggregate; it is simply all zeros."""
    root = tmp_path / "dir"
    root.mkdir()
    (root / "a.txt").write_text("a")
    (root / "b.txt").write_text("b")

    store = SimpleInMemoryVectorStore()
    a = _seed(store, root / "a.txt", "origin", [0.0, 0.0, 0.0])
    b = _seed(store, root / "b.txt", "origin", [0.0, 0.0, 0.0])

    vectorizer = DirectoryVectorizer(store, RecordingEmbedding(dimension=3))
    result = asyncio.run(vectorizer.vectorize_directory(str(root), None, False, True, False))

    assert result.processed == 1
    [total] = store.get_by_path(os.path.normpath(str(root)))
    assert total.vector == [0.0, 0.0, 0.0]
    assert total.childs == [a.id, b.id]
    assert total.raw["count"] == 2


def test_wrong_length_child_vector_is_skipped(tmp_path):
    root = tmp_path / "dir"
    root.mkdir()
    (root / "a.txt").write_text("a")
    (root / "b.txt").write_text("b")

    store = SimpleInMemoryVectorStore()
    a = _seed(store, root / "a.txt", "origin", [1.0, 0.0, 0.0])
    b = _seed(store, root / "b.txt", "origin", [0.0, 2.0, 0.0])
    # Stored records are shared with the caller; shorten one in place
    b.vector = [1.0]

    vectorizer = DirectoryVectorizer(store, RecordingEmbedding(dimension=3))
    result = asyncio.run(vectorizer.vectorize_directory(str(root), None, False, True, False))

    assert (result.processed, result.errors) == (1, 0)
    [total] = [item for item in store.get_by_path(os.path.normpath(str(root)))
               if item.kind == EmbeddingKind.VS_ORIGIN]
    assert np.allclose(total.vector, [1.0, 0.0, 0.0])
    assert total.childs == [a.id]
    assert total.raw["count"] == 1


class PathRecordingStore(SimpleInMemoryVectorStore):
    def __init__(self):
        super().__init__()
        self.looked_up = []

    def get_by_path(self, path):
        self.looked_up.append(path)
        return super().get_by_path(path)


def test_directory_sum_reads_only_immediate_entries(tmp_path):
    root = tmp_path / "dir"
    (root / "sub" / "deeper").mkdir(parents=True)
    (root / "a.txt").write_text("a")
    (root / "sub" / "b.txt").write_text("b")
    (root / "sub" / "deeper" / "c.txt").write_text("c")
    (root / ".cache").mkdir()
    (root / ".cache" / "d.txt").write_text("d")

    store = PathRecordingStore()
    _seed(store, root / "a.txt", "origin", [1.0, 0.0])
    _seed(store, root / "sub" / "b.txt", "origin", [0.0, 1.0])
    _seed(store, root / "sub" / "deeper" / "c.txt", "origin", [0.0, 1.0])
    _seed(store, root / "sub", "vs_origin", [0.0, 2.0], "directory")

    vectorizer = DirectoryVectorizer(store, RecordingEmbedding(dimension=2))
    asyncio.run(vectorizer.vectorize_directory(str(root), None, False, True, False))

    looked_up = set(store.looked_up)
    assert os.path.normpath(str(root / "a.txt")) in looked_up
    assert os.path.normpath(str(root / "sub")) in looked_up
    assert os.path.normpath(str(root / "sub" / "b.txt")) not in looked_up
    assert os.path.normpath(str(root / "sub" / "deeper" / "c.txt")) not in looked_up
    assert os.path.normpath(str(root / ".cache")) not in looked_up

    [total] = [item for item in store.get_by_path(os.path.normpath(str(root)))
               if item.kind == EmbeddingKind.VS_ORIGIN]
    assert np.allclose(total.vector, [1.0, 2.0])


def test_relative_paths_are_stored_absolute(tmp_path, monkeypatch):
    root = tmp_path / "dir"
    root.mkdir()
    (root / "a.py").write_text("x = 1\n")
    monkeypatch.chdir(tmp_path)

    store = SimpleInMemoryVectorStore()
    embedding = RecordingEmbedding()
    file_vectorizer = _file_vectorizer(store=store, embedding=embedding)
    asyncio.run(file_vectorizer.vectorize_file(os.path.join("dir", ".", "a.py"), None, True, False))

    directory_vectorizer = DirectoryVectorizer(store, embedding)
    result = asyncio.run(directory_vectorizer.vectorize_directory("dir", None, True, True, False))

    assert result.processed == 2
    file_path = normalize_path(root / "a.py")
    assert file_path == str(root / "a.py")
    [origin] = store.get_by_path(file_path)
    dir_records = store.get_by_path(str(root))
    assert {item.kind for item in dir_records} == {EmbeddingKind.ORIGIN, EmbeddingKind.VS_ORIGIN}
    [total] = [item for item in dir_records if item.kind == EmbeddingKind.VS_ORIGIN]
    assert total.childs == [origin.id]

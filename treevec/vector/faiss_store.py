"""
Persistent vector store: embedding rows in SQLite, approximate index in FAISS.

SQLite is the source of truth. The FAISS IVF index is an accelerator built
once the corpus is large enough and rebuilt in large increments; any query
it cannot answer is served by an exact scan over the stored vectors.
"""

import json
import os
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple

import faiss
import numpy as np

from .index import IVectorStore, cosine_to_similarity, normalize_rows, to_vector_array
from .index_policy import RERANK_FACTOR, IndexPolicy
from .types import EmbeddingItem, EmbeddingKind, SearchResult
from ..core.errors import StorageError
from ..util.logging import logger

TABLE_NAME = "embedding_item"
DB_FILENAME = "embeddings.db"
INDEX_FILENAME = "embeddings.faiss"

_ITEM_COLUMNS = "seq, id, type, parent, childs, path, kind, raw, vector"
_SQLITE_MAX_PARAMS = 900


class FaissVectorStore(IVectorStore):
    """SQLite + FAISS implementation of IVectorStore."""

    def __init__(self, storage_dir, policy: Optional[IndexPolicy] = None, background_index_build: bool = False):
        """
        Initialize the store.

        Args:
            storage_dir: Directory holding the database and index files
            policy: Index build thresholds (defaults: build at 512 rows, rebuild every 5000)
            background_index_build: Train new indexes on a worker thread instead of inline
        """
        super().__init__()
        self.storage_dir = Path(storage_dir)
        self.db_path = self.storage_dir / DB_FILENAME
        self.index_path = self.storage_dir / INDEX_FILENAME
        self.policy = policy or IndexPolicy()
        self.background_index_build = background_index_build

        self._initialized = False
        self._index = None
        self._last_index_count = 0

        # Guards the live index object and the build flag
        self._index_lock = threading.RLock()
        self._index_building = False
        self._pending_removals = set()
        # Highest row seq already present in the live index
        self._indexed_seq = 0
        # Mirrors the index_dirty meta flag: the saved index file lags the database
        self._index_dirty = False
        self._build_thread: Optional[threading.Thread] = None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def initialize(self) -> None:
        if self._initialized:
            return

        try:
            self.storage_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create storage directory {self.storage_dir}: {e}", e)

        try:
            with self._db() as conn:
                self._create_tables(conn)
        except StorageError as e:
            logger.warning(f"Vector store database {self.db_path} is damaged, recreating it: {e}")
            self._remove_files()
            with self._db() as conn:
                self._create_tables(conn)

        with self._db() as conn:
            self._dimension = self._load_dimension(conn)
            self._last_index_count = int(self._get_meta(conn, "last_index_count") or 0)

        self._initialized = True
        self._load_index()
        self._ensure_index()
        logger.log_operation("vector.initialize", "success", {
            "storage_dir": str(self.storage_dir),
            "dimension": self._dimension,
            "indexed": self._index is not None,
        })

    def dispose(self) -> None:
        if not self._initialized:
            return
        self._wait_for_build()
        self._save_index()
        with self._index_lock:
            self._index = None
        self._initialized = False

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            self.initialize()

    def _location(self) -> Optional[str]:
        return str(self.storage_dir)

    @contextmanager
    def _db(self) -> Iterator[sqlite3.Connection]:
        """Open a connection for one unit of work; commit on success, roll back on error."""
        conn = sqlite3.connect(self.db_path)
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(f"Vector store database error: {e}", e)
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @staticmethod
    def _create_tables(conn: sqlite3.Connection) -> None:
        conn.execute(f'''
            CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                type TEXT NOT NULL,
                parent TEXT,
                childs TEXT NOT NULL DEFAULT '[]',
                path TEXT NOT NULL,
                kind TEXT NOT NULL,
                raw TEXT NOT NULL,
                vector BLOB NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')
        conn.execute(f'CREATE INDEX IF NOT EXISTS idx_{TABLE_NAME}_path_kind ON {TABLE_NAME}(path, kind)')
        conn.execute(f'CREATE INDEX IF NOT EXISTS idx_{TABLE_NAME}_parent ON {TABLE_NAME}(parent)')
        conn.execute('''
            CREATE TABLE IF NOT EXISTS store_meta (
                key TEXT PRIMARY KEY,
                value TEXT
            )
        ''')

    @staticmethod
    def _get_meta(conn: sqlite3.Connection, key: str) -> Optional[str]:
        row = conn.execute("SELECT value FROM store_meta WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    @staticmethod
    def _set_meta(conn: sqlite3.Connection, key: str, value) -> None:
        conn.execute(
            "INSERT INTO store_meta (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, str(value)),
        )

    def _load_dimension(self, conn: sqlite3.Connection) -> Optional[int]:
        stored = self._get_meta(conn, "dimension")
        if stored is not None:
            return int(stored)

        # Rows written before the dimension was recorded
        row = conn.execute(f"SELECT vector FROM {TABLE_NAME} ORDER BY seq LIMIT 1").fetchone()
        if row is None:
            return None
        dimension = len(row[0]) // np.dtype(np.float32).itemsize
        self._set_meta(conn, "dimension", dimension)
        logger.debug(f"Vector dimension detected from stored rows: {dimension}")
        return dimension

    def _remove_files(self) -> None:
        for path in (self.db_path, self.index_path):
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                raise StorageError(f"Cannot remove {path}: {e}", e)

    # =========================================================================
    # Writes
    # =========================================================================

    def add_embedding(self, item: EmbeddingItem) -> str:
        self._ensure_initialized()
        array = to_vector_array(item.vector)
        self._check_dimension(array.size)

        with self._db() as conn:
            seq = self._insert_row(conn, item, array)

        self._after_insert(item, array, seq)
        return item.id

    def replace_embedding(self, item: EmbeddingItem) -> str:
        """Swap the (path, kind) record for `item` in a single transaction."""
        self._ensure_initialized()
        array = to_vector_array(item.vector)
        self._check_dimension(array.size)

        with self._db() as conn:
            removed = [row[0] for row in conn.execute(
                f"SELECT seq FROM {TABLE_NAME} WHERE path = ? AND kind = ?",
                (item.path, item.kind.value),
            )]
            conn.execute(
                f"DELETE FROM {TABLE_NAME} WHERE path = ? AND kind = ?",
                (item.path, item.kind.value),
            )
            seq = self._insert_row(conn, item, array)

        self._remove_from_index(removed)
        self._after_insert(item, array, seq)
        return item.id

    def _insert_row(self, conn: sqlite3.Connection, item: EmbeddingItem, array: np.ndarray) -> int:
        if self._dimension is None:
            self._set_meta(conn, "dimension", array.size)

        try:
            cursor = conn.execute(
                f"INSERT INTO {TABLE_NAME} (id, type, parent, childs, path, kind, raw, vector) "
                f"VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    item.id,
                    item.type.value,
                    item.parent,
                    json.dumps(list(item.childs)),
                    item.path,
                    item.kind.value,
                    json.dumps(item.raw, ensure_ascii=False),
                    array.tobytes(),
                ),
            )
        except sqlite3.IntegrityError as e:
            raise StorageError(f"Embedding with id {item.id} already exists", e)
        return cursor.lastrowid

    def _after_insert(self, item: EmbeddingItem, array: np.ndarray, seq: int) -> None:
        if self._dimension is None:
            self._dimension = int(array.size)
            logger.info(f"Vector store dimension established: {self._dimension}")

        with self._index_lock:
            self._mark_index_dirty()
            if self._index is not None and seq > self._indexed_seq:
                self._index.add_with_ids(self._prepare(array.reshape(1, -1)), np.array([seq], dtype=np.int64))
                self._indexed_seq = seq

        logger.log_vector_operation("add", item.id, {"path": item.path, "kind": item.kind.value})
        self._ensure_index()

    def delete_embedding(self, item_id: str) -> None:
        self._ensure_initialized()
        with self._db() as conn:
            seqs = [row[0] for row in conn.execute(f"SELECT seq FROM {TABLE_NAME} WHERE id = ?", (item_id,))]
            conn.execute(f"DELETE FROM {TABLE_NAME} WHERE id = ?", (item_id,))

        self._remove_from_index(seqs)
        logger.log_vector_operation("delete", item_id, {"found": bool(seqs)})

    def delete_by_path(self, path: str) -> None:
        self._ensure_initialized()
        with self._db() as conn:
            seqs = [row[0] for row in conn.execute(f"SELECT seq FROM {TABLE_NAME} WHERE path = ?", (path,))]
            conn.execute(f"DELETE FROM {TABLE_NAME} WHERE path = ?", (path,))

        self._remove_from_index(seqs)
        logger.log_operation("vector.delete_by_path", "success", {"path": path, "deleted": len(seqs)})

    def clear(self) -> None:
        self._ensure_initialized()
        self._wait_for_build()

        with self._db() as conn:
            conn.execute(f"DROP TABLE IF EXISTS {TABLE_NAME}")
            conn.execute("DELETE FROM store_meta")
            self._create_tables(conn)

        with self._index_lock:
            self._index = None
            self._indexed_seq = 0
            self._index_dirty = False
        try:
            self.index_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageError(f"Cannot remove index file {self.index_path}: {e}", e)

        self._vacuum()
        self._dimension = None
        self._last_index_count = 0
        logger.log_operation("vector.clear", "success", {"storage_dir": str(self.storage_dir)})

    def _vacuum(self) -> None:
        conn = sqlite3.connect(self.db_path, isolation_level=None)
        try:
            conn.execute("VACUUM")
        except sqlite3.Error as e:
            logger.warning(f"VACUUM failed for {self.db_path}: {e}")
        finally:
            conn.close()

    # =========================================================================
    # Reads
    # =========================================================================

    def get_by_id(self, item_id: str) -> Optional[EmbeddingItem]:
        self._ensure_initialized()
        with self._db() as conn:
            row = conn.execute(f"SELECT {_ITEM_COLUMNS} FROM {TABLE_NAME} WHERE id = ?", (item_id,)).fetchone()
        return self._row_to_item(row) if row else None

    def get_by_path(self, path: str) -> List[EmbeddingItem]:
        self._ensure_initialized()
        with self._db() as conn:
            rows = conn.execute(
                f"SELECT {_ITEM_COLUMNS} FROM {TABLE_NAME} WHERE path = ? ORDER BY seq", (path,)
            ).fetchall()
        return [self._row_to_item(row) for row in rows]

    def get_children(self, parent_id: str) -> List[EmbeddingItem]:
        self._ensure_initialized()
        with self._db() as conn:
            rows = conn.execute(
                f"SELECT {_ITEM_COLUMNS} FROM {TABLE_NAME} WHERE parent = ? ORDER BY seq", (parent_id,)
            ).fetchall()
        return [self._row_to_item(row) for row in rows]

    def exists(self, path: str, kind: EmbeddingKind) -> bool:
        self._ensure_initialized()
        with self._db() as conn:
            row = conn.execute(
                f"SELECT 1 FROM {TABLE_NAME} WHERE path = ? AND kind = ? LIMIT 1",
                (path, EmbeddingKind(kind).value),
            ).fetchone()
        return row is not None

    def get_all_items(self, limit: Optional[int] = None) -> List[EmbeddingItem]:
        self._ensure_initialized()
        query = f"SELECT {_ITEM_COLUMNS} FROM {TABLE_NAME} ORDER BY seq"
        params: Tuple = ()
        if limit and limit > 0:
            query += " LIMIT ?"
            params = (limit,)
        with self._db() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_item(row) for row in rows]

    def get_count(self) -> int:
        self._ensure_initialized()
        with self._db() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM {TABLE_NAME}").fetchone()[0]

    def get_storage_size(self) -> int:
        if not self.storage_dir.exists():
            return 0
        total = 0
        for dirpath, _, filenames in os.walk(self.storage_dir):
            for name in filenames:
                try:
                    total += os.path.getsize(os.path.join(dirpath, name))
                except OSError:
                    # File removed while walking
                    continue
        return total

    @staticmethod
    def _decode_raw(raw: str):
        try:
            return json.loads(raw)
        except ValueError:
            return raw

    def _row_to_item(self, row) -> EmbeddingItem:
        _, item_id, item_type, parent, childs, path, kind, raw, blob = row
        try:
            child_ids = json.loads(childs) if childs else []
        except ValueError:
            child_ids = []
        return EmbeddingItem(
            id=item_id,
            type=item_type,
            parent=parent or None,
            childs=child_ids,
            path=path,
            kind=kind,
            raw=self._decode_raw(raw),
            vector=np.frombuffer(blob, dtype=np.float32).tolist(),
        )

    # =========================================================================
    # Similarity search
    # =========================================================================

    def search_similar(self, vector: Sequence[float], limit: int = 5) -> List[SearchResult]:
        self._ensure_initialized()
        if self._dimension is None or limit <= 0:
            return []

        query = to_vector_array(vector)
        self._check_dimension(query.size)

        count = self.get_count()
        if count == 0:
            return []

        normalized_query = self._prepare(query.reshape(1, -1))
        candidates = self._index_candidates(normalized_query, limit, count)
        indexed = candidates is not None

        with self._db() as conn:
            if candidates is None:
                rows = conn.execute(f"SELECT seq, vector FROM {TABLE_NAME}").fetchall()
            else:
                rows = self._select_in(conn, "seq, vector", candidates)
                if len(rows) < min(limit, count):
                    # Candidates point at deleted rows
                    rows = conn.execute(f"SELECT seq, vector FROM {TABLE_NAME}").fetchall()
                    indexed = False

            ranked = self._rank(rows, normalized_query[0], limit)
            item_rows = self._select_in(conn, _ITEM_COLUMNS, [seq for seq, _ in ranked])

        items = {row[0]: self._row_to_item(row) for row in item_rows}
        results = [
            SearchResult(item=items[seq], similarity=cosine_to_similarity(score))
            for seq, score in ranked
            if seq in items
        ]
        logger.log_search(limit, len(results), indexed)
        return results

    def _index_candidates(self, normalized_query: np.ndarray, limit: int, count: int) -> Optional[List[int]]:
        """Candidate row ids from the approximate index, or None to fall back to an exact scan."""
        with self._index_lock:
            index = self._index
            if index is None or index.ntotal == 0:
                return None
            k = min(index.ntotal, limit * RERANK_FACTOR)
            _, ids = index.search(normalized_query, k)

        seqs = list(dict.fromkeys(int(i) for i in ids[0] if i >= 0))
        if len(seqs) < min(limit, count):
            return None
        return seqs

    def _select_in(self, conn: sqlite3.Connection, columns: str, seqs: List[int]) -> list:
        rows = []
        for start in range(0, len(seqs), _SQLITE_MAX_PARAMS):
            chunk = seqs[start:start + _SQLITE_MAX_PARAMS]
            placeholders = ",".join("?" * len(chunk))
            rows.extend(conn.execute(
                f"SELECT {columns} FROM {TABLE_NAME} WHERE seq IN ({placeholders})", chunk
            ).fetchall())
        return rows

    @staticmethod
    def _rank(rows, normalized_query: np.ndarray, limit: int) -> List[Tuple[int, float]]:
        """Exact cosine ranking of (seq, vector blob) rows."""
        if not rows:
            return []
        seqs = [row[0] for row in rows]
        matrix = normalize_rows(np.vstack([np.frombuffer(row[1], dtype=np.float32) for row in rows]))
        scores = matrix @ normalized_query
        order = np.argsort(-scores, kind="stable")[:limit]
        return [(seqs[i], float(scores[i])) for i in order]

    @staticmethod
    def _prepare(matrix: np.ndarray) -> np.ndarray:
        return np.ascontiguousarray(normalize_rows(matrix.astype(np.float32)), dtype=np.float32)

    # =========================================================================
    # Approximate index maintenance
    # =========================================================================

    @property
    def has_index(self) -> bool:
        with self._index_lock:
            return self._index is not None

    @property
    def last_index_count(self) -> int:
        return self._last_index_count

    def rebuild_index(self) -> bool:
        """Force an index rebuild regardless of thresholds. Returns whether an index is live."""
        self._ensure_initialized()
        self._wait_for_build()
        self._ensure_index(force=True)
        self._wait_for_build()
        return self.has_index

    def _ensure_index(self, force: bool = False) -> None:
        with self._index_lock:
            if self._index_building or self._dimension is None:
                return
            count = self.get_count()
            if count == 0:
                return
            if not force and not self.policy.should_build(count, self._last_index_count):
                return
            self._index_building = True

        if self.background_index_build and not force:
            self._build_thread = threading.Thread(target=self._build_index, args=(count,), daemon=True)
            self._build_thread.start()
        else:
            self._build_index(count)

    def _build_index(self, count: int) -> None:
        dimension = self._dimension
        partitions = self.policy.num_partitions(count)
        description = self.policy.factory_string(dimension, count)
        try:
            with self._db() as conn:
                rows = conn.execute(f"SELECT seq, vector FROM {TABLE_NAME} ORDER BY seq").fetchall()
            if not rows:
                return

            count = len(rows)
            partitions = self.policy.num_partitions(count)
            description = self.policy.factory_string(dimension, count)

            seqs = np.array([row[0] for row in rows], dtype=np.int64)
            vectors = self._prepare(np.vstack([np.frombuffer(row[1], dtype=np.float32) for row in rows]))

            index = faiss.index_factory(dimension, description, faiss.METRIC_INNER_PRODUCT)
            training_size = self.policy.training_size(count, partitions)
            if training_size < count:
                sample = np.random.default_rng(0).choice(count, size=training_size, replace=False)
                index.train(vectors[sample])
            else:
                index.train(vectors)
            index.add_with_ids(vectors, seqs)
            faiss.extract_index_ivf(index).nprobe = self.policy.nprobe(partitions)

            with self._index_lock:
                self._indexed_seq = self._catch_up(index, int(seqs[-1]))
                self._index = index

            self._last_index_count = count
            with self._db() as conn:
                self._set_meta(conn, "last_index_count", count)
            self._save_index()
            logger.log_index_build(count, partitions, description)
        except Exception as e:
            # Exact search keeps working without an index
            logger.log_index_build(count, partitions, description, status="failed", details={"error": str(e)})
        finally:
            with self._index_lock:
                self._index_building = False
                self._pending_removals.clear()

    def _catch_up(self, index, last_seq: int) -> int:
        """Apply writes that landed while `index` was being trained; returns the highest seq indexed."""
        with self._db() as conn:
            rows = conn.execute(
                f"SELECT seq, vector FROM {TABLE_NAME} WHERE seq > ? ORDER BY seq", (last_seq,)
            ).fetchall()
        if rows:
            index.add_with_ids(
                self._prepare(np.vstack([np.frombuffer(row[1], dtype=np.float32) for row in rows])),
                np.array([row[0] for row in rows], dtype=np.int64),
            )
        if self._pending_removals:
            index.remove_ids(np.array(sorted(self._pending_removals), dtype=np.int64))
        return int(rows[-1][0]) if rows else last_seq

    def _remove_from_index(self, seqs: List[int]) -> None:
        if not seqs:
            return
        with self._index_lock:
            self._mark_index_dirty()
            if self._index is not None:
                self._index.remove_ids(np.array(seqs, dtype=np.int64))
            if self._index_building:
                self._pending_removals.update(seqs)

    def _wait_for_build(self) -> None:
        thread = self._build_thread
        if thread is not None and thread.is_alive():
            thread.join()
        self._build_thread = None

    def _mark_index_dirty(self) -> None:
        """Record that the index file on disk no longer matches the database. Call under _index_lock."""
        if self._index_dirty:
            return
        with self._db() as conn:
            self._set_meta(conn, "index_dirty", 1)
        self._index_dirty = True

    def _save_index(self) -> None:
        with self._index_lock:
            if self._index is None:
                return
            try:
                faiss.write_index(self._index, str(self.index_path))
            except Exception as e:
                logger.warning(f"Could not persist vector index to {self.index_path}: {e}")
                return

            # The live index holds every row up to _indexed_seq, so the file is now current
            with self._db() as conn:
                self._set_meta(conn, "indexed_seq", self._indexed_seq)
                self._set_meta(conn, "index_dirty", 0)
            self._index_dirty = False

    def _load_index(self) -> None:
        with self._db() as conn:
            dirty = self._get_meta(conn, "index_dirty") == "1"
            saved_seq = self._get_meta(conn, "indexed_seq")
            max_seq = conn.execute(f"SELECT MAX(seq) FROM {TABLE_NAME}").fetchone()[0] or 0
        self._index_dirty = dirty

        if not self.index_path.exists() or self._dimension is None:
            return

        if dirty or saved_seq is None or int(saved_seq) != max_seq:
            logger.warning(
                f"Vector index {self.index_path} was not saved after the last writes "
                f"(indexed up to row {saved_seq}, store at row {max_seq}), it will be rebuilt"
            )
            self._last_index_count = 0
            return

        try:
            index = faiss.read_index(str(self.index_path))
        except Exception as e:
            logger.warning(f"Could not load vector index from {self.index_path}, it will be rebuilt: {e}")
            self._last_index_count = 0
            return

        count = self.get_count()
        if index.d != self._dimension or index.ntotal != count:
            logger.warning(
                f"Stale vector index discarded (dimension {index.d}, {index.ntotal} vectors; "
                f"store has dimension {self._dimension}, {count} rows)"
            )
            self._last_index_count = 0
            return

        with self._index_lock:
            self._index = index
            self._indexed_seq = max_seq

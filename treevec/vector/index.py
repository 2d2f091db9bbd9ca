"""
Vector store interface and the in-memory implementation.

Every component reads and writes embeddings through IVectorStore; nothing
touches the underlying storage directly.
"""

from abc import ABC, abstractmethod
import math
from typing import List, Optional, Sequence

import numpy as np

from .types import EmbeddingItem, EmbeddingKind, SearchResult
from ..core.errors import DimensionMismatchError, StorageError


def to_vector_array(vector: Sequence[float]) -> np.ndarray:
    """Convert a vector to a float32 array, rejecting empty or non-finite input."""
    try:
        array = np.asarray(vector, dtype=np.float32)
    except (TypeError, ValueError) as e:
        raise StorageError(f"Vector is not a numeric array: {e}", e)

    if array.ndim != 1 or array.size == 0:
        raise StorageError("Vector must be a non-empty one-dimensional array")
    if not np.all(np.isfinite(array)):
        raise StorageError("Vector contains NaN or infinite values")
    return array


def normalize_rows(matrix: np.ndarray) -> np.ndarray:
    """L2-normalize each row; zero rows stay zero."""
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return matrix / norms


def cosine_to_similarity(cosine: float) -> float:
    """similarity = 1 - cosine distance, clamped to [0, 1]."""
    distance = 1.0 - float(cosine)
    return min(1.0, max(0.0, 1.0 - distance))


class IVectorStore(ABC):
    """Abstract interface for embedding storage and similarity search."""

    def __init__(self):
        self._dimension: Optional[int] = None

    @property
    def dimension(self) -> Optional[int]:
        """Vector length fixed by the first record, None while the store is empty."""
        return self._dimension

    @abstractmethod
    def initialize(self) -> None:
        """Prepare the store; repeated calls are no-ops."""
        pass

    @abstractmethod
    def dispose(self) -> None:
        """Release resources held by the store."""
        pass

    @abstractmethod
    def add_embedding(self, item: EmbeddingItem) -> str:
        """Add a record and return its id."""
        pass

    @abstractmethod
    def get_by_id(self, item_id: str) -> Optional[EmbeddingItem]:
        pass

    @abstractmethod
    def get_by_path(self, path: str) -> List[EmbeddingItem]:
        pass

    @abstractmethod
    def get_children(self, parent_id: str) -> List[EmbeddingItem]:
        pass

    @abstractmethod
    def delete_embedding(self, item_id: str) -> None:
        pass

    @abstractmethod
    def delete_by_path(self, path: str) -> None:
        """Delete every record (all kinds) stored for a path."""
        pass

    @abstractmethod
    def search_similar(self, vector: Sequence[float], limit: int = 5) -> List[SearchResult]:
        """Return up to `limit` records ranked by cosine similarity."""
        pass

    @abstractmethod
    def get_all_items(self, limit: Optional[int] = None) -> List[EmbeddingItem]:
        pass

    @abstractmethod
    def get_count(self) -> int:
        pass

    @abstractmethod
    def get_storage_size(self) -> int:
        """Bytes used on disk."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Drop every record and forget the dimension."""
        pass

    def exists(self, path: str, kind: EmbeddingKind) -> bool:
        """Check whether a record of `kind` is stored for `path`."""
        kind = EmbeddingKind(kind)
        return any(item.kind == kind for item in self.get_by_path(path))

    def replace_embedding(self, item: EmbeddingItem) -> str:
        """Delete records sharing the item's (path, kind), then add the item."""
        for existing in self.get_by_path(item.path):
            if existing.kind == item.kind:
                self.delete_embedding(existing.id)
        return self.add_embedding(item)

    def _check_dimension(self, actual: int) -> None:
        if self._dimension is not None and self._dimension != actual:
            raise DimensionMismatchError(self._dimension, actual, self._location())

    def _location(self) -> Optional[str]:
        return None


class SimpleInMemoryVectorStore(IVectorStore):
    """In-memory implementation of IVectorStore using exact cosine similarity."""

    def __init__(self):
        super().__init__()
        self._items = {}    # record_id -> EmbeddingItem, insertion ordered
        self._index = {}    # record_id -> normalized vector
        self._initialized = False

    def initialize(self) -> None:
        self._initialized = True

    def dispose(self) -> None:
        self._initialized = False

    def add_embedding(self, item: EmbeddingItem) -> str:
        array = to_vector_array(item.vector)
        self._check_dimension(array.size)
        if item.id in self._items:
            raise StorageError(f"Embedding with id {item.id} already exists")

        if self._dimension is None:
            self._dimension = int(array.size)

        item.vector = array.tolist()
        self._items[item.id] = item

        # Store normalized vector for similarity calculations
        norm = np.linalg.norm(array)
        self._index[item.id] = array / norm if norm > 0 else array
        return item.id

    def get_by_id(self, item_id: str) -> Optional[EmbeddingItem]:
        return self._items.get(item_id)

    def get_by_path(self, path: str) -> List[EmbeddingItem]:
        return [item for item in self._items.values() if item.path == path]

    def get_children(self, parent_id: str) -> List[EmbeddingItem]:
        return [item for item in self._items.values() if item.parent == parent_id]

    def delete_embedding(self, item_id: str) -> None:
        self._items.pop(item_id, None)
        self._index.pop(item_id, None)

    def delete_by_path(self, path: str) -> None:
        for item in self.get_by_path(path):
            self.delete_embedding(item.id)

    def search_similar(self, vector: Sequence[float], limit: int = 5) -> List[SearchResult]:
        if not self._index or limit <= 0:
            return []

        query = to_vector_array(vector)
        self._check_dimension(query.size)

        norm = np.linalg.norm(query)
        normalized_query = query / norm if norm > 0 else query

        # Calculate cosine similarities
        similarities = {
            record_id: float(np.dot(normalized_query, stored_vector))
            for record_id, stored_vector in self._index.items()
        }

        # Sort by similarity (descending) and return top results
        ranked = sorted(similarities.items(), key=lambda x: x[1], reverse=True)
        return [
            SearchResult(item=self._items[record_id], similarity=cosine_to_similarity(score))
            for record_id, score in ranked[:limit]
            if not math.isnan(score)
        ]

    def get_all_items(self, limit: Optional[int] = None) -> List[EmbeddingItem]:
        items = list(self._items.values())
        if limit and limit > 0:
            return items[:limit]
        return items

    def get_count(self) -> int:
        return len(self._items)

    def get_storage_size(self) -> int:
        return 0

    def clear(self) -> None:
        self._items.clear()
        self._index.clear()
        self._dimension = None

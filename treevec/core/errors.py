"""
Exception taxonomy for treevec.

Tree-wide vectorization runs contain node-level errors and only count them;
single-item operations (one file, one search) let these propagate.
"""

from typing import Optional


class TreeVecError(Exception):
    """Base exception for all treevec errors."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class ConfigError(TreeVecError):
    """
    A required setting is absent or invalid.

    Raised before any provider call is made, aborting the operation.
    """
    pass


class VectorizationError(TreeVecError):
    """A specific file or directory could not be processed."""

    def __init__(self, message: str, file_path: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message, cause)
        self.file_path = file_path


class VectorizationBusyError(VectorizationError):
    """A full-tree run is already in flight."""
    pass


class EmbeddingError(TreeVecError):
    """
    Embedding provider call failed or returned a malformed vector.

    Raised when:
    - Provider is unreachable or times out
    - Provider returns an error response
    - Result is not a non-empty list of numbers
    """

    def __init__(self, message: str, provider: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message, cause)
        self.provider = provider


class StorageError(TreeVecError):
    """
    Vector store failure.

    Raised when:
    - Database or index files cannot be read or written
    - A record is malformed (empty vector, duplicate id)
    - Vector dimensions disagree (see DimensionMismatchError)
    """
    pass


class DimensionMismatchError(StorageError):
    """A vector's length differs from the store's established dimension."""

    def __init__(self, expected: int, actual: int, location: Optional[str] = None):
        where = f" (delete {location})" if location else ""
        message = (
            f"Vector dimension mismatch: store holds vectors of dimension {expected}, "
            f"got {actual}. Use the same embedding model for indexing and search; "
            f"changing the embedding model requires clearing the store{where}."
        )
        super().__init__(message)
        self.expected = expected
        self.actual = actual

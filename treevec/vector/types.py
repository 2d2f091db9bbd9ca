"""
Embedding record types shared by the vector stores, vectorizers and search.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class EmbeddingType(str, Enum):
    """What a record was computed from."""
    FILE = "file"
    DIRECTORY = "directory"


class EmbeddingKind(str, Enum):
    """Which vector of a node a record holds."""
    ORIGIN = "origin"
    SUMMARIZE = "summarize"
    VS_ORIGIN = "vs_origin"
    VS_SUMMARIZE = "vs_summarize"


# Aggregate kind -> (kind taken from child files, kind taken from child directories)
AGGREGATE_SOURCES = {
    EmbeddingKind.VS_ORIGIN: (EmbeddingKind.ORIGIN, EmbeddingKind.VS_ORIGIN),
    EmbeddingKind.VS_SUMMARIZE: (EmbeddingKind.SUMMARIZE, EmbeddingKind.VS_SUMMARIZE),
}


def new_item_id() -> str:
    """Generate a fresh record id."""
    return str(uuid.uuid4())


@dataclass
class EmbeddingItem:
    """Represents one embedding record with its provenance."""

    type: EmbeddingType
    """Whether the record describes a file or a directory"""

    path: str
    """Absolute path of the source file or directory"""

    kind: EmbeddingKind
    """Which of the node's vectors this record holds"""

    vector: List[float]
    """The embedding; its length must match the store dimension"""

    raw: Union[str, Dict[str, Any]] = ""
    """Text (or small structured payload) that was embedded"""

    parent: Optional[str] = None
    """Id of the parent directory's record, lookup only"""

    childs: List[str] = field(default_factory=list)
    """Ids of contributing child records"""

    id: str = field(default_factory=new_item_id)
    """Unique identifier, never reused"""

    def __post_init__(self):
        self.type = EmbeddingType(self.type)
        self.kind = EmbeddingKind(self.kind)

    def to_dict(self, include_vector: bool = False) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "type": self.type.value,
            "parent": self.parent,
            "childs": list(self.childs),
            "path": self.path,
            "kind": self.kind.value,
            "raw": self.raw,
        }
        if include_vector:
            data["vector"] = list(self.vector)
        return data


@dataclass
class SearchResult:
    """Represents a similarity search hit."""

    item: EmbeddingItem
    """The matching record"""

    similarity: float
    """Cosine similarity clamped to [0, 1]"""


@dataclass
class VectorizationResult:
    """Outcome counters of vectorizing one node or a whole tree."""

    processed: int = 0
    errors: int = 0
    item_ids: List[str] = field(default_factory=list)
    error_messages: List[str] = field(default_factory=list)

    def merge(self, other: "VectorizationResult") -> None:
        self.processed += other.processed
        self.errors += other.errors
        self.item_ids.extend(other.item_ids)
        self.error_messages.extend(other.error_messages)

    def record_success(self, item_id: str) -> None:
        self.processed += 1
        self.item_ids.append(item_id)

    def record_error(self, message: str) -> None:
        self.errors += 1
        self.error_messages.append(message)

"""
Shared plumbing for the file and directory vectorizers.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..vector.embeddings import IEmbeddingProvider
from ..vector.index import IVectorStore
from ..vector.types import EmbeddingItem, EmbeddingKind
from .file_status import FileStatus, FileStatusService


@dataclass
class KindPlan:
    """What has to happen to one node's records."""
    needed: List[EmbeddingKind] = field(default_factory=list)
    stale: List[EmbeddingItem] = field(default_factory=list)

    @property
    def idle(self) -> bool:
        return not self.needed and not self.stale


class BaseVectorizer:
    """
    Common diffing logic: a kind is needed when it is enabled and not stored;
    a stored kind that is disabled is stale and gets deleted.
    """

    def __init__(self, store: IVectorStore, embedding_provider: IEmbeddingProvider,
                 file_status: Optional[FileStatusService] = None):
        self.store = store
        self.embedding_provider = embedding_provider
        self.file_status = file_status

    def plan(self, path: str, flags: Dict[EmbeddingKind, bool]) -> KindPlan:
        existing = self.store.get_by_path(path)
        stored = {item.kind for item in existing}
        return KindPlan(
            needed=[kind for kind, enabled in flags.items() if enabled and kind not in stored],
            stale=[item for item in existing if item.kind in flags and not flags[item.kind]],
        )

    def remove_stale(self, plan: KindPlan) -> None:
        for item in plan.stale:
            self.store.delete_embedding(item.id)

    def is_excluded(self, path: str) -> bool:
        return self.file_status is not None and self.file_status.is_excluded(path)

    def mark_processing(self, path: str) -> None:
        if self.file_status is not None:
            self.file_status.set_status(path, FileStatus.PROCESSING)

    def clear_processing(self, path: str) -> None:
        if self.file_status is not None:
            self.file_status.clear_processing(path)

"""
Vectorization of a directory: a description of its files plus aggregate
vectors summed from its direct children.
"""

import os
from typing import Iterable, List, Optional

import numpy as np

from .base import BaseVectorizer
from .file_status import normalize_path
from ..core.config import DEFAULT_IGNORED_DIRS, is_ignored
from ..vector.types import (
    AGGREGATE_SOURCES,
    EmbeddingItem,
    EmbeddingKind,
    EmbeddingType,
    VectorizationResult,
)
from ..util.logging import logger


class DirectoryVectorizer(BaseVectorizer):
    """Creates the missing origin/vs_origin/vs_summarize records of a directory."""

    def __init__(self, store, embedding_provider, file_status=None, ignored_dirs: Iterable[str] = DEFAULT_IGNORED_DIRS):
        super().__init__(store, embedding_provider, file_status)
        self.ignored_dirs = frozenset(ignored_dirs)

    async def vectorize_directory(self, path: str, parent_id: Optional[str], enable_origin: bool,
                                  enable_vs_origin: bool, enable_vs_summarize: bool) -> VectorizationResult:
        """
        Vectorize one directory. Its descendants must already be processed for
        the aggregates to be complete.

        Per-kind failures are counted; a missing aggregate (no contributing
        child vectors) is skipped without counting an error.
        """
        path = normalize_path(path)
        result = VectorizationResult()

        if self.is_excluded(path):
            return result

        plan = self.plan(path, {
            EmbeddingKind.ORIGIN: enable_origin,
            EmbeddingKind.VS_ORIGIN: enable_vs_origin,
            EmbeddingKind.VS_SUMMARIZE: enable_vs_summarize,
        })
        if plan.idle:
            return result

        self.remove_stale(plan)
        if not plan.needed:
            return result

        self.mark_processing(path)
        try:
            for kind in plan.needed:
                try:
                    if kind == EmbeddingKind.ORIGIN:
                        item_id = await self._create_origin(path, parent_id)
                    else:
                        item_id = self._create_vector_sum(path, parent_id, kind)
                        if item_id is None:
                            continue
                    result.record_success(item_id)
                except Exception as e:
                    message = f"Failed to create {kind.value} vector for directory {path}: {e}"
                    logger.error(message)
                    result.record_error(message)
        finally:
            self.clear_processing(path)

        logger.log_vectorization("directory", path, result.processed, result.errors)
        return result

    def list_files(self, path: str) -> List[str]:
        with os.scandir(path) as entries:
            return sorted(
                entry.name for entry in entries
                if entry.is_file() and not is_ignored(entry.name, False, self.ignored_dirs)
            )

    async def _create_origin(self, path: str, parent_id: Optional[str]) -> str:
        file_names = self.list_files(path)
        description = f"Directory contains {len(file_names)} files: {', '.join(file_names)}"
        vector = await self.embedding_provider.get_embedding(description)
        item = EmbeddingItem(
            type=EmbeddingType.DIRECTORY,
            parent=parent_id,
            path=path,
            kind=EmbeddingKind.ORIGIN,
            raw={"description": description, "files": file_names},
            vector=vector,
        )
        return self.store.replace_embedding(item)

    def _create_vector_sum(self, path: str, parent_id: Optional[str], kind: EmbeddingKind) -> Optional[str]:
        """Store the element-wise sum of the direct children's vectors; None when there are none."""
        file_kind, dir_kind = AGGREGATE_SOURCES[kind]
        children = self._child_items(path)

        contributors = [
            item for item in children
            if ((item.type == EmbeddingType.FILE and item.kind == file_kind)
                 or (item.type == EmbeddingType.DIRECTORY and item.kind == dir_kind))
        ]

        dimension = self.store.dimension
        vectors = []
        child_ids = []
        for item in contributors:
            if not item.vector:
                continue
            if dimension is None:
                dimension = len(item.vector)
            if len(item.vector) != dimension:
                logger.warning(
                    f"Skipping {item.kind.value} vector of {item.path} in {kind.value} of {path}: "
                    f"length {len(item.vector)}, expected {dimension}"
                )
                continue
            vectors.append(item.vector)
            child_ids.append(item.id)

        if not vectors:
            logger.warning(
                f"No {file_kind.value}/{dir_kind.value} child vectors under {path} "
                f"({len(children)} child records), {kind.value} not created"
            )
            return None

        total = np.sum(np.asarray(vectors, dtype=np.float64), axis=0)
        item = EmbeddingItem(
            type=EmbeddingType.DIRECTORY,
            parent=parent_id,
            childs=child_ids,
            path=path,
            kind=kind,
            raw={
                "description": f"Sum of {len(vectors)} vectors: {file_kind.value} of files "
                               f"and {dir_kind.value} of directories",
                "count": len(vectors),
            },
            vector=total.tolist(),
        )
        return self.store.replace_embedding(item)

    def _child_items(self, path: str) -> List[EmbeddingItem]:
        """Stored records of the non-ignored entries directly inside `path`, in name order."""
        try:
            with os.scandir(path) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            logger.warning(f"Could not list {path}: {e}")
            return []

        items = []
        for entry in entries:
            if is_ignored(entry.name, entry.is_dir(follow_symlinks=False), self.ignored_dirs):
                continue
            items.extend(self.store.get_by_path(os.path.normpath(entry.path)))
        return items

"""
Hierarchical vectorization of a project tree.

Nodes are processed deepest-first so that every directory's aggregate
vectors are computed after all of its descendants. One full-tree run at a
time; node failures are counted and the walk continues.
"""

import os
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from .directory_vectorizer import DirectoryVectorizer
from .file_status import FileStatus, FileStatusService, normalize_path
from .file_vectorizer import FileVectorizer
from ..core.config import DEFAULT_IGNORED_DIRS, VectorizationSettings, is_ignored, load_vectorization_settings
from ..core.errors import ConfigError, VectorizationBusyError, VectorizationError
from ..core.search_service import SimilaritySearchService, format_hit
from ..vector.embeddings import IEmbeddingProvider
from ..vector.index import IVectorStore
from ..vector.summarizer import TextSummarizer
from ..vector.types import EmbeddingKind, VectorizationResult
from ..util.logging import logger


@dataclass
class TreeNode:
    """A file or directory found while walking the project."""

    path: str
    is_dir: bool
    depth: int
    """Distance from the walk root, which is 0"""

    parent_path: Optional[str] = None


class VectorizationOrchestrator:
    """
    Drives file and directory vectorization over a project tree.

    Settings are read through `settings_loader` at the start of every run and
    every single-file call.
    """

    def __init__(self, store: IVectorStore, embedding_provider: IEmbeddingProvider,
                 summarizer: TextSummarizer, file_status: Optional[FileStatusService] = None,
                 settings_loader: Callable[[], VectorizationSettings] = load_vectorization_settings):
        self.store = store
        self.embedding_provider = embedding_provider
        self.summarizer = summarizer
        self.file_status = file_status or FileStatusService(store)
        self.settings_loader = settings_loader

        self.file_vectorizer = FileVectorizer(store, embedding_provider, summarizer, self.file_status)
        self.directory_vectorizer = DirectoryVectorizer(store, embedding_provider, self.file_status)
        self.search_service = SimilaritySearchService(embedding_provider, store)

        self._run_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    @contextmanager
    def _exclusive_run(self):
        if not self._run_lock.acquire(blocking=False):
            raise VectorizationBusyError("A vectorization run is already in progress")
        try:
            yield
        finally:
            self._run_lock.release()

    def _load_settings(self) -> VectorizationSettings:
        settings = self.settings_loader()
        if settings is None:
            raise ConfigError("Vectorization settings are not available")
        if not (settings.summarize_prompt or "").strip():
            raise ConfigError("Summarize prompt must not be blank")

        self.summarizer.max_text_length = settings.max_text_length
        self.summarizer.truncate_message = settings.truncate_message
        self.directory_vectorizer.ignored_dirs = frozenset(settings.ignored_dirs)
        return settings

    # =========================================================================
    # Tree runs
    # =========================================================================

    def collect_items(self, root: str, ignored_dirs: Iterable[str] = DEFAULT_IGNORED_DIRS) -> List[TreeNode]:
        """
        Walk `root` and return every non-ignored node, deepest first.

        The root itself is included at depth 0. Symlinked directories are not
        followed; unreadable directories are logged and skipped.
        """
        ignored_dirs = frozenset(ignored_dirs)
        root = normalize_path(root)
        nodes = [TreeNode(path=root, is_dir=True, depth=0)]

        def walk(directory: str, depth: int) -> None:
            try:
                with os.scandir(directory) as it:
                    entries = sorted(it, key=lambda e: e.name)
            except OSError as e:
                logger.warning(f"Skipping unreadable directory {directory}: {e}")
                return

            for entry in entries:
                try:
                    is_dir = entry.is_dir(follow_symlinks=False)
                    is_file = not is_dir and entry.is_file()
                except OSError as e:
                    logger.warning(f"Skipping {entry.path}: {e}")
                    continue
                if not (is_dir or is_file) or is_ignored(entry.name, is_dir, ignored_dirs):
                    continue

                path = os.path.normpath(entry.path)
                nodes.append(TreeNode(path=path, is_dir=is_dir, depth=depth, parent_path=directory))
                if is_dir:
                    walk(path, depth + 1)

        walk(root, 1)

        # sort() is stable, so siblings keep walk order within a depth
        nodes.sort(key=lambda node: node.depth, reverse=True)
        return nodes

    async def vectorize_all_unprocessed(self, root: str) -> VectorizationResult:
        """
        Bring every file and directory under `root` up to date with the enabled kinds.

        Raises:
            VectorizationBusyError: Another run is in progress
            ConfigError: Settings are missing or invalid (before any provider call)
            VectorizationError: `root` is not a directory
        """
        with self._exclusive_run():
            settings = self._load_settings()

            root = normalize_path(root)
            if not os.path.isdir(root):
                raise VectorizationError(f"Not a directory: {root}", root)

            self.store.initialize()
            started = time.perf_counter()
            nodes = self.collect_items(root, settings.ignored_dirs)
            work = [node for node in nodes if node.depth > 0]
            logger.log_operation("vectorize.run", "started", {"root": root, "nodes": len(work)})

            self.file_status.set_statuses(
                [node.path for node in work if not self.file_status.is_excluded(node.path)],
                FileStatus.QUEUED,
            )

            result = VectorizationResult()
            try:
                for node in work:
                    result.merge(await self._vectorize_node(node, settings))
            finally:
                self.file_status.reset_processing()

            logger.log_run_summary(root, result.processed, result.errors,
                                   (time.perf_counter() - started) * 1000)
            return result

    async def _vectorize_node(self, node: TreeNode, settings: VectorizationSettings) -> VectorizationResult:
        try:
            parent_id = self._resolve_parent_id(node.parent_path)
            if node.is_dir:
                return await self.directory_vectorizer.vectorize_directory(
                    node.path,
                    parent_id,
                    settings.enable_origin,
                    settings.enable_vs_origin,
                    settings.enable_vs_summarize,
                )
            return await self.file_vectorizer.vectorize_file(
                node.path,
                parent_id,
                settings.enable_origin,
                settings.enable_summarize,
                settings.summarize_prompt,
            )
        except Exception as e:
            message = f"Failed to vectorize {node.path}: {e}"
            logger.error(message)
            result = VectorizationResult()
            result.record_error(message)
            return result
        finally:
            self.file_status.clear_processing(node.path)

    def _resolve_parent_id(self, parent_path: Optional[str]) -> Optional[str]:
        """Id of a record of the parent directory, preferring its origin record."""
        if not parent_path:
            return None
        items = self.store.get_by_path(parent_path)
        if not items:
            return None
        for item in items:
            if item.kind == EmbeddingKind.ORIGIN:
                return item.id
        return items[0].id

    # =========================================================================
    # Single file
    # =========================================================================

    async def vectorize_file(self, path: str, kind: Optional[str] = None) -> str:
        """
        Re-vectorize one file, replacing its records (only those of `kind` when given).

        Returns:
            Id of the newest record created

        Raises:
            ConfigError: Settings are missing or invalid
            VectorizationError: The path is excluded or not a file, or no
                record could be created (carries the specific failure)
        """
        settings = self._load_settings()
        path = normalize_path(path)

        if not os.path.isfile(path):
            raise VectorizationError(f"Not a file: {path}", path)
        if self.file_status.is_excluded(path):
            raise VectorizationError(f"{path} is excluded from vectorization", path)

        if kind is not None:
            try:
                kind = EmbeddingKind(kind)
            except ValueError as e:
                raise VectorizationError(f"Unknown embedding kind: {kind}", path, e)
            if kind not in (EmbeddingKind.ORIGIN, EmbeddingKind.SUMMARIZE):
                raise VectorizationError(f"Kind {kind.value} applies to directories only", path)
            # The other kind keeps whatever record it has
            enable_origin = True if kind == EmbeddingKind.ORIGIN else None
            enable_summarize = True if kind == EmbeddingKind.SUMMARIZE else None
        else:
            enable_origin = settings.enable_origin
            enable_summarize = settings.enable_summarize

        if not enable_origin and not enable_summarize:
            raise VectorizationError("No file embedding kinds are enabled", path)

        self.store.initialize()
        for item in self.store.get_by_path(path):
            if kind is None or item.kind == kind:
                self.store.delete_embedding(item.id)

        result = await self.file_vectorizer.vectorize_file(
            path,
            self._resolve_parent_id(os.path.dirname(path)),
            enable_origin,
            enable_summarize,
            settings.summarize_prompt,
        )

        if not result.item_ids:
            message = result.error_messages[-1] if result.error_messages else f"No vectors were created for {path}"
            raise VectorizationError(message, path)
        return result.item_ids[-1]

    # =========================================================================
    # Passthroughs
    # =========================================================================

    def initialize(self) -> None:
        self.store.initialize()

    def dispose(self) -> None:
        self.store.dispose()

    async def search_similar(self, query_text: str, limit: int = 5) -> List[Dict[str, Any]]:
        return await self.search_service.search_similar(query_text, limit)

    def get_all_items(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Stored records for browsing; similarity is 1.0 for every row."""
        return [format_hit(item, 1.0) for item in self.store.get_all_items(limit)]

    def get_storage_count(self) -> int:
        return self.store.get_count()

    def get_storage_size(self) -> int:
        return self.store.get_storage_size()

    def clear_storage(self) -> None:
        if self.is_running:
            raise VectorizationBusyError("Cannot clear storage while a vectorization run is in progress")
        self.store.clear()
        self.file_status.reset_processing()
        logger.log_operation("storage.clear", "success")

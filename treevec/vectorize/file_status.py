"""
Per-path processing status for the files and directories of a project.

PROCESSED and NOT_PROCESSED are derived from the vector store; EXCLUDED is a
user choice (optionally persisted); QUEUED and PROCESSING are transient and
set while a run is in flight.
"""

import json
import os
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from ..core.errors import StorageError
from ..vector.types import EmbeddingKind
from ..util.logging import logger

StatusListener = Callable[[str, "FileStatus"], None]


class FileStatus(str, Enum):
    NOT_PROCESSED = "not_processed"
    QUEUED = "queued"
    PROCESSING = "processing"
    PROCESSED = "processed"
    EXCLUDED = "excluded"


def normalize_path(path) -> str:
    return os.path.normpath(os.path.abspath(os.fspath(path)))


class FileStatusService:
    """Tracks exclusions and in-flight work and notifies listeners of changes."""

    def __init__(self, store=None, excluded_file: Optional[Path] = None):
        """
        Args:
            store: Vector store consulted to tell processed from unprocessed paths
            excluded_file: JSON file persisting the exclusion set; in-memory only when None
        """
        self._store = store
        self._excluded_file = Path(excluded_file) if excluded_file else None
        self._excluded = set()
        self._processing = set()
        self._queued = set()
        self._listeners: List[StatusListener] = []
        self._load_excluded()

    def set_store(self, store) -> None:
        self._store = store

    def add_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: StatusListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def get_status(self, path) -> FileStatus:
        key = normalize_path(path)
        if key in self._excluded:
            return FileStatus.EXCLUDED
        if key in self._processing:
            return FileStatus.PROCESSING
        if key in self._queued:
            return FileStatus.QUEUED

        if self._store is not None:
            try:
                if self._store.exists(key, EmbeddingKind.ORIGIN):
                    return FileStatus.PROCESSED
            except StorageError as e:
                logger.warning(f"Could not check stored status of {key}: {e}")
        return FileStatus.NOT_PROCESSED

    def is_excluded(self, path) -> bool:
        return normalize_path(path) in self._excluded

    def set_status(self, path, status: FileStatus) -> None:
        """
        Record a status change.

        PROCESSED cannot be forced; setting it only ends the transient state
        so the stored records decide.
        """
        key = normalize_path(path)
        status = FileStatus(status)

        if status == FileStatus.EXCLUDED:
            self._excluded.add(key)
            self._processing.discard(key)
            self._queued.discard(key)
            self._save_excluded()
        elif status == FileStatus.NOT_PROCESSED:
            self._excluded.discard(key)
            self._processing.discard(key)
            self._queued.discard(key)
            self._save_excluded()
        elif status == FileStatus.QUEUED:
            self._queued.add(key)
        elif status == FileStatus.PROCESSING:
            self._queued.discard(key)
            self._processing.add(key)
        else:
            self._queued.discard(key)
            self._processing.discard(key)

        self._notify(key, status)

    def set_statuses(self, paths: Iterable, status: FileStatus) -> None:
        for path in paths:
            self.set_status(path, status)

    def clear_processing(self, path) -> None:
        key = normalize_path(path)
        if key in self._processing or key in self._queued:
            self._processing.discard(key)
            self._queued.discard(key)
            self._notify(key, self.get_status(key))

    def get_excluded(self) -> List[str]:
        return sorted(self._excluded)

    def get_in_progress(self) -> List[str]:
        return sorted(self._processing | self._queued)

    def reset_processing(self) -> None:
        """Drop queued/processing marks, keeping exclusions."""
        changed = self._processing | self._queued
        self._processing.clear()
        self._queued.clear()
        for key in sorted(changed):
            self._notify(key, self.get_status(key))

    def clear_all(self) -> None:
        """Forget exclusions and transient states."""
        changed = self._excluded | self._processing | self._queued
        self._excluded.clear()
        self._processing.clear()
        self._queued.clear()
        self._save_excluded()
        for key in sorted(changed):
            self._notify(key, FileStatus.NOT_PROCESSED)

    def _notify(self, path: str, status: FileStatus) -> None:
        for listener in list(self._listeners):
            try:
                listener(path, status)
            except Exception as e:
                logger.error(f"File status listener failed for {path}: {e}")

    def _load_excluded(self) -> None:
        if self._excluded_file is None or not self._excluded_file.exists():
            return
        try:
            with open(self._excluded_file, "r", encoding="utf-8") as f:
                self._excluded = {normalize_path(p) for p in json.load(f)}
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Could not read excluded paths from {self._excluded_file}: {e}")

    def _save_excluded(self) -> None:
        if self._excluded_file is None:
            return
        try:
            self._excluded_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self._excluded_file, "w", encoding="utf-8") as f:
                json.dump(sorted(self._excluded), f, indent=2)
        except OSError as e:
            logger.error(f"Could not save excluded paths to {self._excluded_file}: {e}")

"""
Vectorization of a single file into its origin and summarize records.
"""

import os
from typing import Optional

from .base import BaseVectorizer
from .file_status import normalize_path
from ..vector.summarizer import TextSummarizer
from ..vector.types import EmbeddingItem, EmbeddingKind, EmbeddingType, VectorizationResult
from ..util.logging import logger


class FileVectorizer(BaseVectorizer):
    """Creates the missing origin/summarize records of a file."""

    def __init__(self, store, embedding_provider, summarizer: TextSummarizer, file_status=None):
        super().__init__(store, embedding_provider, file_status)
        self.summarizer = summarizer

    async def vectorize_file(self, path: str, parent_id: Optional[str], enable_origin: Optional[bool],
                             enable_summarize: Optional[bool], summarize_prompt: Optional[str] = None) -> VectorizationResult:
        """
        Vectorize one file.

        Never raises for per-file problems: an unreadable file counts as one
        error, and each kind's failure is counted independently.

        Args:
            path: File to vectorize
            parent_id: Id of the containing directory's record, if any
            enable_origin: Whether an embedding of the raw content is wanted;
                None leaves a stored origin record untouched
            enable_summarize: Whether an embedding of an LLM summary is wanted;
                None leaves a stored summarize record untouched
            summarize_prompt: Prompt overriding the summarizer's default

        Returns:
            VectorizationResult with created ids and error messages
        """
        path = normalize_path(path)
        result = VectorizationResult()

        if self.is_excluded(path):
            return result

        flags = {EmbeddingKind.ORIGIN: enable_origin, EmbeddingKind.SUMMARIZE: enable_summarize}
        plan = self.plan(path, {kind: enabled for kind, enabled in flags.items() if enabled is not None})
        if plan.idle:
            return result

        self.remove_stale(plan)
        if not plan.needed:
            return result

        self.mark_processing(path)
        try:
            try:
                with open(path, "r", encoding="utf-8") as f:
                    content = f.read()
            except (OSError, UnicodeDecodeError) as e:
                message = f"Could not read {path} as UTF-8 text (binary file?): {e}"
                logger.warning(message)
                result.record_error(message)
                return result

            for kind in plan.needed:
                try:
                    if kind == EmbeddingKind.ORIGIN:
                        item_id = await self._create_origin(path, content, parent_id)
                    else:
                        item_id = await self._create_summarize(path, content, parent_id, summarize_prompt)
                    result.record_success(item_id)
                except Exception as e:
                    message = f"Failed to create {kind.value} vector for {path}: {e}"
                    logger.error(message)
                    result.record_error(message)
        finally:
            self.clear_processing(path)

        logger.log_vectorization("file", path, result.processed, result.errors)
        return result

    async def _create_origin(self, path: str, content: str, parent_id: Optional[str]) -> str:
        vector = await self.embedding_provider.get_embedding(content)
        item = EmbeddingItem(
            type=EmbeddingType.FILE,
            parent=parent_id,
            path=path,
            kind=EmbeddingKind.ORIGIN,
            raw=content,
            vector=vector,
        )
        return self.store.replace_embedding(item)

    async def _create_summarize(self, path: str, content: str, parent_id: Optional[str],
                                summarize_prompt: Optional[str]) -> str:
        summary = await self.summarizer.summarize(content, summarize_prompt)
        vector = await self.embedding_provider.get_embedding(summary)
        item = EmbeddingItem(
            type=EmbeddingType.FILE,
            parent=parent_id,
            path=path,
            kind=EmbeddingKind.SUMMARIZE,
            raw=summary,
            vector=vector,
        )
        return self.store.replace_embedding(item)

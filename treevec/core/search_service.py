"""
Similarity search over the vectorized project: embed the query, ask the store.
"""

from typing import Any, Dict, List

from ..vector.embeddings import IEmbeddingProvider
from ..vector.index import IVectorStore
from ..vector.types import EmbeddingItem
from ..util.logging import logger


def format_hit(item: EmbeddingItem, similarity: float) -> Dict[str, Any]:
    """Result row shared by search and browse views."""
    return {
        "id": item.id,
        "path": item.path,
        "type": item.type.value,
        "kind": item.kind.value,
        "similarity": similarity,
        "raw": item.raw,
    }


class SimilaritySearchService:
    """Answers "which files and directories are most like this text"."""

    def __init__(self, embedding_provider: IEmbeddingProvider, store: IVectorStore):
        self.embedding_provider = embedding_provider
        self.store = store

    async def search_similar(self, query_text: str, limit: int = 5) -> List[Dict[str, Any]]:
        """
        Perform similarity search for a free-text query.

        Args:
            query_text: Text to search for
            limit: Maximum number of results to return

        Returns:
            List of dicts with 'path', 'type', 'kind', 'similarity' and 'raw',
            best match first; empty when nothing is stored

        Raises:
            EmbeddingError: The query could not be embedded
            StorageError: The store failed, or the query's dimension does not
                match the stored vectors
        """
        if self.store.get_count() == 0:
            logger.log_search(limit, 0, False, query_text)
            return []

        query_vector = await self.embedding_provider.get_embedding(query_text)
        results = self.store.search_similar(query_vector, limit)

        logger.log_operation("search.similar", "success", {
            "query": query_text[:50] + "..." if len(query_text) > 50 else query_text,
            "limit": limit,
            "hits": len(results),
        })
        return [format_hit(result.item, result.similarity) for result in results]

"""
Vector storage, embedding providers and summarization.
"""

# Package initialization for vector module
from .index import IVectorStore, SimpleInMemoryVectorStore
from .faiss_store import FaissVectorStore
from .index_policy import IndexPolicy
from .types import EmbeddingItem, EmbeddingKind, EmbeddingType, SearchResult, VectorizationResult
from .embeddings import (
    IEmbeddingProvider,
    DeterministicHashEmbedding,
    OllamaEmbeddingProvider,
    OpenAICompatibleEmbeddingProvider,
    SentenceTransformerEmbedding,
)
from .summarizer import ITextGenerator, TextSummarizer

__all__ = [
    'IVectorStore',
    'SimpleInMemoryVectorStore',
    'FaissVectorStore',
    'IndexPolicy',
    'EmbeddingItem',
    'EmbeddingKind',
    'EmbeddingType',
    'SearchResult',
    'VectorizationResult',
    'IEmbeddingProvider',
    'DeterministicHashEmbedding',
    'OllamaEmbeddingProvider',
    'OpenAICompatibleEmbeddingProvider',
    'SentenceTransformerEmbedding',
    'ITextGenerator',
    'TextSummarizer',
]

"""
Embedding providers. Turn text into fixed-length vectors.

All providers expose the same async interface; blocking clients run on a
worker thread so the vectorization loop stays responsive.
"""

from abc import ABC, abstractmethod
import asyncio
import hashlib
import numbers
from typing import Any, List, Optional

import numpy as np
import ollama
import requests

from ..core.errors import EmbeddingError
from ..util.logging import logger


def validate_embedding(embedding: Any, provider: str) -> List[float]:
    """Check a provider response is a non-empty list of numbers and return it as floats."""
    if isinstance(embedding, np.ndarray):
        embedding = embedding.tolist()
    if not isinstance(embedding, (list, tuple)) or not embedding:
        raise EmbeddingError(f"{provider} returned an invalid embedding: expected a non-empty list of numbers", provider)
    if not all(isinstance(value, numbers.Real) and not isinstance(value, bool) for value in embedding):
        raise EmbeddingError(f"{provider} returned an embedding with non-numeric values", provider)
    return [float(value) for value in embedding]


class IEmbeddingProvider(ABC):
    """Abstract interface for embedding providers."""

    name = "embedding"

    @abstractmethod
    async def get_embedding(self, text: str) -> List[float]:
        """Generate embedding vector for given text."""
        pass


class DeterministicHashEmbedding(IEmbeddingProvider):
    """Deterministic hash-based embedding provider for offline use and tests.

    The text's SHA-256 digest seeds a random generator, so equal texts always
    map to equal vectors and every dimension carries signal.
    """

    name = "hash"

    def __init__(self, dimension: int = 384):
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        self.dimension = dimension

    def embed_text(self, text: str) -> List[float]:
        seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "big")
        rng = np.random.default_rng(seed)
        return rng.uniform(-1.0, 1.0, self.dimension).astype(np.float32).tolist()

    async def get_embedding(self, text: str) -> List[float]:
        return self.embed_text(text)

    def get_dimension(self) -> int:
        return self.dimension


class OllamaEmbeddingProvider(IEmbeddingProvider):
    """Embeddings from a local Ollama server (/api/embeddings)."""

    name = "ollama"

    def __init__(self, model_name: str, host: str = "http://localhost:11434", timeout: float = 60, client=None):
        self.model_name = model_name
        self.host = host
        self.timeout = timeout
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = ollama.Client(host=self.host, timeout=self.timeout)
        return self._client

    def embed_text(self, text: str) -> List[float]:
        try:
            response = self.client.embeddings(model=self.model_name, prompt=text)
        except ollama.ResponseError as e:
            logger.error(f"Ollama embedding error for model {self.model_name}: {e}")
            raise EmbeddingError(f"Ollama model error: {e}", self.name, e)
        except Exception as e:
            logger.error(f"Ollama embedding request to {self.host} failed: {e}")
            raise EmbeddingError(f"Could not get an embedding from Ollama at {self.host}: {e}", self.name, e)

        return validate_embedding(response.get("embedding") if response else None, "Ollama")

    async def get_embedding(self, text: str) -> List[float]:
        return await asyncio.to_thread(self.embed_text, text)


class OpenAICompatibleEmbeddingProvider(IEmbeddingProvider):
    """Embeddings from any OpenAI-compatible server (POST {base}/v1/embeddings)."""

    name = "openai"

    def __init__(self, model_name: str, base_url: str = "http://localhost:1234",
                 api_key: Optional[str] = None, timeout: float = 60, session=None):
        self.model_name = model_name
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key and self.api_key.strip():
            headers["Authorization"] = f"Bearer {self.api_key.strip()}"
        return headers

    def embed_text(self, text: str) -> List[float]:
        url = f"{self.base_url}/v1/embeddings"
        try:
            response = self.session.post(
                url,
                json={"model": self.model_name, "input": text},
                headers=self._headers(),
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.Timeout as e:
            raise EmbeddingError(f"Embedding request to {url} timed out after {self.timeout}s", self.name, e)
        except requests.RequestException as e:
            logger.error(f"Embedding request to {url} failed: {e}")
            raise EmbeddingError(f"Embedding request to {url} failed: {e}", self.name, e)
        except ValueError as e:
            raise EmbeddingError(f"Embedding server at {url} returned invalid JSON", self.name, e)

        embedding = None
        if isinstance(data, dict):
            entries = data.get("data")
            if isinstance(entries, list) and entries and isinstance(entries[0], dict):
                embedding = entries[0].get("embedding")
            if embedding is None:
                embedding = data.get("embedding")
        return validate_embedding(embedding, "OpenAI-compatible server")

    async def get_embedding(self, text: str) -> List[float]:
        return await asyncio.to_thread(self.embed_text, text)


class SentenceTransformerEmbedding(IEmbeddingProvider):
    """Sentence transformers embedding provider using a local pre-trained model."""

    name = "sentence_transformers"

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        self.model_name = model_name
        self._model = None

    @property
    def model(self):
        if self._model is None:
            # Import deferred: loading torch is slow and only this provider needs it
            from sentence_transformers import SentenceTransformer
            try:
                self._model = SentenceTransformer(self.model_name)
            except Exception as e:
                raise EmbeddingError(f"Could not load sentence-transformers model {self.model_name}: {e}", self.name, e)
        return self._model

    def embed_text(self, text: str) -> List[float]:
        model = self.model
        try:
            embedding = model.encode(text, convert_to_tensor=False)
        except Exception as e:
            logger.error(f"sentence-transformers encoding failed with model {self.model_name}: {e}")
            raise EmbeddingError(f"Could not encode text with {self.model_name}: {e}", self.name, e)
        return validate_embedding(embedding, "sentence-transformers")

    async def get_embedding(self, text: str) -> List[float]:
        return await asyncio.to_thread(self.embed_text, text)

"""
Configuration for treevec, read from TREEVEC_* environment variables.

Module constants are read once at import. Everything a vectorization run
depends on is re-read by the load_* functions at call time, so toggling a
setting takes effect on the next run.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import FrozenSet, Iterable, Optional

from .errors import ConfigError
from ..vector.index_policy import MAX_PARTITIONS, MIN_RECORDS, UPDATE_INTERVAL, IndexPolicy
from ..vector.summarizer import DEFAULT_MAX_TEXT_LENGTH, DEFAULT_SUMMARIZE_PROMPT, DEFAULT_TRUNCATE_MESSAGE

# Storage configuration
STORAGE_DIR = os.getenv("TREEVEC_STORAGE_DIR", "./data/treevec")
VECTOR_PROVIDER = os.getenv("TREEVEC_VECTOR_PROVIDER", "faiss")  # faiss|memory
EMBED_PROVIDER = os.getenv("TREEVEC_EMBED_PROVIDER", "ollama")  # hash|ollama|openai|sentence_transformers

# Debug flag; see debug_enabled() for the dynamic check
DEBUG = os.getenv("TREEVEC_DEBUG", "false").lower() == "true"

# Provider endpoints
DEFAULT_OLLAMA_URL = "http://localhost:11434"
DEFAULT_API_BASE_URL = "http://localhost:1234"
DEFAULT_TIMEOUT_SEC = 60
DEFAULT_EMBED_DIM = 384
DEFAULT_LLM_MODEL = "llama3"

# Directory names never walked or embedded, besides any name starting with "."
DEFAULT_IGNORED_DIRS = frozenset({
    "node_modules",
    "__pycache__",
    "venv",
    "site-packages",
    "bower_components",
})

EXCLUDED_PATHS_FILENAME = "excluded.json"

# Version string
VERSION = "1.0.0"


class VectorProvider(str, Enum):
    FAISS = "faiss"
    MEMORY = "memory"


class EmbedProvider(str, Enum):
    HASH = "hash"
    OLLAMA = "ollama"
    OPENAI = "openai"
    SENTENCE_TRANSFORMERS = "sentence_transformers"


class LLMProvider(str, Enum):
    OLLAMA = "ollama"
    OPENAI = "openai"


@dataclass
class VectorizationSettings:
    """Settings read at the start of every vectorization run."""

    enable_origin: bool = True
    enable_summarize: bool = False
    enable_vs_origin: bool = True
    enable_vs_summarize: bool = False
    summarize_prompt: str = DEFAULT_SUMMARIZE_PROMPT
    max_text_length: int = DEFAULT_MAX_TEXT_LENGTH
    truncate_message: str = DEFAULT_TRUNCATE_MESSAGE
    ignored_dirs: FrozenSet[str] = field(default_factory=lambda: DEFAULT_IGNORED_DIRS)


@dataclass
class ProviderSettings:
    """Embedding and text generation backends, chosen once at startup."""

    embed_provider: EmbedProvider = EmbedProvider.OLLAMA
    embed_model: Optional[str] = None
    embed_dim: int = DEFAULT_EMBED_DIM
    llm_provider: LLMProvider = LLMProvider.OLLAMA
    llm_model: str = DEFAULT_LLM_MODEL
    ollama_url: str = DEFAULT_OLLAMA_URL
    api_base_url: str = DEFAULT_API_BASE_URL
    api_key: Optional[str] = None
    timeout_sec: int = DEFAULT_TIMEOUT_SEC


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in ("true", "1", "yes", "on"):
        return True
    if value in ("false", "0", "no", "off"):
        return False
    raise ConfigError(f"{name} must be a boolean (true/false), got {raw!r}")


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw.strip())
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}", e)
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_enum(name: str, enum_cls, default):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return enum_cls(raw.strip().lower())
    except ValueError as e:
        choices = "|".join(member.value for member in enum_cls)
        raise ConfigError(f"Unknown {name}: {raw!r} (expected {choices})", e)


def is_ignored(name: str, is_dir: bool, ignored_dirs: Iterable[str] = DEFAULT_IGNORED_DIRS) -> bool:
    """Whether a directory entry is skipped by walks: dot entries and dependency directories."""
    if name.startswith("."):
        return True
    return is_dir and name in ignored_dirs


def load_vectorization_settings() -> VectorizationSettings:
    """Read the run settings from the environment, raising ConfigError on invalid values."""
    prompt = os.getenv("TREEVEC_SUMMARIZE_PROMPT")
    if prompt is None:
        prompt = DEFAULT_SUMMARIZE_PROMPT
    elif not prompt.strip():
        raise ConfigError("TREEVEC_SUMMARIZE_PROMPT must not be blank")

    ignored = os.getenv("TREEVEC_IGNORED_DIRS")
    if ignored is None:
        ignored_dirs = DEFAULT_IGNORED_DIRS
    else:
        ignored_dirs = frozenset(name.strip() for name in ignored.split(",") if name.strip())

    return VectorizationSettings(
        enable_origin=_env_bool("TREEVEC_ENABLE_ORIGIN", True),
        enable_summarize=_env_bool("TREEVEC_ENABLE_SUMMARIZE", False),
        enable_vs_origin=_env_bool("TREEVEC_ENABLE_VS_ORIGIN", True),
        enable_vs_summarize=_env_bool("TREEVEC_ENABLE_VS_SUMMARIZE", False),
        summarize_prompt=prompt.strip(),
        max_text_length=_env_int("TREEVEC_MAX_TEXT_LENGTH", DEFAULT_MAX_TEXT_LENGTH),
        truncate_message=os.getenv("TREEVEC_TRUNCATE_MESSAGE", DEFAULT_TRUNCATE_MESSAGE),
        ignored_dirs=ignored_dirs,
    )


def load_provider_settings(require_embed_model: bool = True) -> ProviderSettings:
    """
    Read the embedding/LLM backend settings from the environment.

    Args:
        require_embed_model: Fail when no embedding model is configured for a model-backed provider
    """
    embed_provider = _env_enum("TREEVEC_EMBED_PROVIDER", EmbedProvider, EmbedProvider.OLLAMA)
    embed_model = (os.getenv("TREEVEC_EMBED_MODEL") or "").strip() or None
    if require_embed_model and embed_model is None and embed_provider != EmbedProvider.HASH:
        raise ConfigError(
            f"TREEVEC_EMBED_MODEL is required for the {embed_provider.value} embedding provider"
        )

    return ProviderSettings(
        embed_provider=embed_provider,
        embed_model=embed_model,
        embed_dim=_env_int("TREEVEC_EMBED_DIM", DEFAULT_EMBED_DIM),
        llm_provider=_env_enum("TREEVEC_LLM_PROVIDER", LLMProvider, LLMProvider.OLLAMA),
        llm_model=(os.getenv("TREEVEC_LLM_MODEL") or "").strip() or DEFAULT_LLM_MODEL,
        ollama_url=(os.getenv("TREEVEC_OLLAMA_URL") or "").strip() or DEFAULT_OLLAMA_URL,
        api_base_url=(os.getenv("TREEVEC_API_BASE_URL") or "").strip() or DEFAULT_API_BASE_URL,
        api_key=(os.getenv("TREEVEC_API_KEY") or "").strip() or None,
        timeout_sec=_env_int("TREEVEC_TIMEOUT_SEC", DEFAULT_TIMEOUT_SEC),
    )


def load_index_policy() -> IndexPolicy:
    return IndexPolicy(
        min_records=_env_int("TREEVEC_INDEX_MIN_RECORDS", MIN_RECORDS),
        update_interval=_env_int("TREEVEC_INDEX_UPDATE_INTERVAL", UPDATE_INTERVAL),
        max_partitions=_env_int("TREEVEC_INDEX_MAX_PARTITIONS", MAX_PARTITIONS),
    )


def get_storage_dir() -> Path:
    return Path(os.getenv("TREEVEC_STORAGE_DIR", STORAGE_DIR))


def debug_enabled() -> bool:
    """Check if debug mode is enabled."""
    return os.getenv("TREEVEC_DEBUG", "false").lower() == "true"


def get_vector_store(provider: Optional[str] = None, storage_dir=None, background_index_build: Optional[bool] = None):
    """
    Get configured vector store implementation.

    background_index_build defaults to TREEVEC_INDEX_BACKGROUND_BUILD; the API
    server always trains indexes on a worker thread.
    """
    provider = VectorProvider(provider) if provider else _env_enum(
        "TREEVEC_VECTOR_PROVIDER", VectorProvider, VectorProvider.FAISS
    )

    if provider == VectorProvider.MEMORY:
        from ..vector.index import SimpleInMemoryVectorStore
        return SimpleInMemoryVectorStore()

    from ..vector.faiss_store import FaissVectorStore
    if background_index_build is None:
        background_index_build = _env_bool("TREEVEC_INDEX_BACKGROUND_BUILD", False)
    return FaissVectorStore(
        storage_dir or get_storage_dir(),
        policy=load_index_policy(),
        background_index_build=background_index_build,
    )


def get_embedding_provider(settings: Optional[ProviderSettings] = None):
    """Get configured embedding provider implementation."""
    settings = settings or load_provider_settings()

    if settings.embed_provider == EmbedProvider.HASH:
        from ..vector.embeddings import DeterministicHashEmbedding
        return DeterministicHashEmbedding(settings.embed_dim)
    elif settings.embed_provider == EmbedProvider.OLLAMA:
        from ..vector.embeddings import OllamaEmbeddingProvider
        return OllamaEmbeddingProvider(settings.embed_model, settings.ollama_url, settings.timeout_sec)
    elif settings.embed_provider == EmbedProvider.OPENAI:
        from ..vector.embeddings import OpenAICompatibleEmbeddingProvider
        return OpenAICompatibleEmbeddingProvider(
            settings.embed_model, settings.api_base_url, settings.api_key, settings.timeout_sec
        )
    else:
        from ..vector.embeddings import SentenceTransformerEmbedding
        return SentenceTransformerEmbedding(settings.embed_model)


def get_text_generator(settings: Optional[ProviderSettings] = None):
    """Get configured text generator used for summarization."""
    settings = settings or load_provider_settings()

    if settings.llm_provider == LLMProvider.OPENAI:
        from ..vector.summarizer import OpenAICompatibleTextGenerator
        return OpenAICompatibleTextGenerator(
            settings.llm_model, settings.api_base_url, settings.api_key, settings.timeout_sec
        )

    from ..vector.summarizer import OllamaTextGenerator
    return OllamaTextGenerator(settings.llm_model, settings.ollama_url, settings.timeout_sec)


def create_orchestrator(store=None, embedding_provider=None):
    """Wire a VectorizationOrchestrator from the environment."""
    from ..vector.summarizer import TextSummarizer
    from ..vectorize.file_status import FileStatusService
    from ..vectorize.orchestrator import VectorizationOrchestrator

    provider_settings = load_provider_settings(require_embed_model=embedding_provider is None)
    if embedding_provider is None:
        embedding_provider = get_embedding_provider(provider_settings)

    store = store or get_vector_store()
    storage_dir = getattr(store, "storage_dir", None)
    excluded_file = Path(storage_dir) / EXCLUDED_PATHS_FILENAME if storage_dir else None

    return VectorizationOrchestrator(
        store=store,
        embedding_provider=embedding_provider,
        summarizer=TextSummarizer(get_text_generator(provider_settings)),
        file_status=FileStatusService(store, excluded_file),
        settings_loader=load_vectorization_settings,
    )

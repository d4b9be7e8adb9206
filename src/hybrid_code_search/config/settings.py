"""Settings for hybrid code search, loaded from the environment."""

from enum import Enum
from pathlib import Path

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..core.exceptions import ConfigError
from .defaults import (
    DEFAULT_CHUNK_SIZE_LINES,
    DEFAULT_EMBEDDING_API_URL,
    DEFAULT_EMBEDDING_DIMENSION,
    DEFAULT_EMBEDDING_MODEL,
    DEFAULT_FILE_EXTENSIONS,
    DEFAULT_IGNORE_PATTERNS,
    DEFAULT_LOCAL_MODEL,
    DEFAULT_REQUESTS_PER_MINUTE,
    MAX_BATCH_ITEMS,
    MAX_BATCH_TOKENS,
    get_default_index_path,
)


class EmbeddingRuntime(str, Enum):
    """Local embedding runtime selection."""

    HASH = "hash"
    ONNX = "onnx"
    AUTO = "auto"


class IndexBackend(str, Enum):
    """Which index implementation serves requests."""

    LOCAL = "local"
    CLOUD = "cloud"


class IndexingSettings(BaseSettings):
    """Indexing and search configuration.

    Every field can be overridden with a ``HYBRID_SEARCH_`` prefixed
    environment variable, e.g. ``HYBRID_SEARCH_MAX_CONCURRENT_JOBS=4``.
    """

    model_config = SettingsConfigDict(
        env_prefix="HYBRID_SEARCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Feature flags
    indexing_enabled: bool = True
    semantic_search_enabled: bool = True

    # Backend selection
    backend: IndexBackend = IndexBackend.LOCAL
    embedding_runtime: EmbeddingRuntime = EmbeddingRuntime.AUTO

    # Indexing tunables
    chunk_size_lines: int = Field(default=DEFAULT_CHUNK_SIZE_LINES, ge=1)
    index_batch_size: int = Field(default=20, ge=1)
    embedding_batch_size: int = Field(default=50, ge=1, le=MAX_BATCH_ITEMS)
    max_batch_tokens: int = Field(default=MAX_BATCH_TOKENS, ge=2_000)
    debounce_ms: int = Field(default=500, ge=0)
    max_concurrent_jobs: int = Field(default=2, ge=1)

    # Search tunables
    search_top_k: int = Field(default=20, ge=1)
    lexical_row_limit: int = Field(default=50, ge=1)
    vector_page_size: int = Field(default=1000, ge=1)

    # Storage
    index_dir: Path = Field(default_factory=get_default_index_path)
    cache_dir: Path | None = None
    cache_max_size: int = Field(default=1000, ge=0)

    # Remote embedding provider
    embedding_api_key: str | None = None
    embedding_api_url: str = DEFAULT_EMBEDDING_API_URL
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    embedding_dimension: int = Field(default=DEFAULT_EMBEDDING_DIMENSION, ge=1)
    requests_per_minute: int = Field(default=DEFAULT_REQUESTS_PER_MINUTE, ge=1)
    request_timeout: float = Field(default=60.0, gt=0)

    # Local model runtime
    local_model_name: str = DEFAULT_LOCAL_MODEL

    # Cloud vector backend
    cloud_api_key: str | None = None
    cloud_index_host: str | None = None

    # Identity
    account_id: str | None = None

    # File selection
    file_extensions: list[str] = Field(
        default_factory=lambda: list(DEFAULT_FILE_EXTENSIONS)
    )
    ignore_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_IGNORE_PATTERNS)
    )

    @field_validator("file_extensions")
    @classmethod
    def _normalize_extensions(cls, value: list[str]) -> list[str]:
        return [ext if ext.startswith(".") else f".{ext}" for ext in value]

    @property
    def has_remote_provider(self) -> bool:
        """Whether a remote embedding provider is configured."""
        return bool(self.embedding_api_key)

    @property
    def has_cloud_backend(self) -> bool:
        """Whether the cloud vector backend is configured."""
        return bool(self.cloud_api_key and self.cloud_index_host)


def load_settings(**overrides) -> IndexingSettings:
    """Load settings from the environment with explicit overrides.

    Args:
        **overrides: Field values that take precedence over the environment

    Returns:
        Validated settings

    Raises:
        ConfigError: If any value fails validation
    """
    try:
        return IndexingSettings(**overrides)
    except ValidationError as e:
        raise ConfigError(
            f"Invalid indexing configuration: {e}",
            context={"errors": e.errors(include_url=False)},
        ) from e

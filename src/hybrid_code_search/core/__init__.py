"""Core functionality for Hybrid Code Search."""

from .exceptions import (
    CloudBackendError,
    ConfigError,
    DatabaseError,
    DatabaseInitializationError,
    EmbeddingError,
    EmbeddingProviderError,
    EmbeddingRateLimitError,
    HybridSearchError,
    IndexingError,
    InvalidCredentialsError,
    OperationCancelledError,
    ParsingError,
    ProviderUnavailableError,
    ReadOnlyDatabaseError,
    SchemaVersionError,
    SearchError,
    UnexpectedResponseShapeError,
)

__all__ = [
    "CloudBackendError",
    "ConfigError",
    "DatabaseError",
    "DatabaseInitializationError",
    "EmbeddingError",
    "EmbeddingProviderError",
    "EmbeddingRateLimitError",
    "HybridSearchError",
    "IndexingError",
    "InvalidCredentialsError",
    "OperationCancelledError",
    "ParsingError",
    "ProviderUnavailableError",
    "ReadOnlyDatabaseError",
    "SchemaVersionError",
    "SearchError",
    "UnexpectedResponseShapeError",
]

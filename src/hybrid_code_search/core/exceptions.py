"""Typed exception hierarchy for hybrid-code-search.

Hierarchy
---------
HybridSearchError (base)
├── DatabaseError                 – SQLite backing store errors
│   ├── DatabaseInitializationError
│   ├── SchemaVersionError        – unreadable on-disk schema version
│   └── ReadOnlyDatabaseError     – write attempted on a read-only store
├── EmbeddingError                – embedding provider errors
│   ├── EmbeddingProviderError    – non-2xx response (status + body)
│   ├── EmbeddingRateLimitError   – 429 after retries were exhausted
│   ├── InvalidCredentialsError   – 401, never retried
│   ├── UnexpectedResponseShapeError
│   └── ProviderUnavailableError  – runtime missing or unreachable
├── IndexingError                 – indexing-time failures
│   └── ParsingError
├── SearchError                   – search-time failures
├── CloudBackendError             – remote vector store failures
├── ConfigError                   – configuration / validation errors
└── OperationCancelledError       – cancellation observed mid-operation

Transient vs permanent: ``EmbeddingRateLimitError`` and
``ProviderUnavailableError`` are transient (``is_transient`` is True) and
allow falling back to another provider. Credential and shape errors are
permanent and surface to the caller immediately.

Data errors (missing file, path outside workspace) are not raised at all;
they are returned as :class:`ErrorInfo` values so tool layers can render
them verbatim.
"""

from dataclasses import dataclass, field
from typing import Any


class HybridSearchError(Exception):
    """Base exception for hybrid code search."""

    is_transient = False

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.context = context or {}


# ── Database layer ──────────────────────────────────────────────────────


class DatabaseError(HybridSearchError):
    """Backing store errors."""

    pass


class DatabaseInitializationError(DatabaseError):
    """Database could not be opened or its schema created."""

    pass


class SchemaVersionError(DatabaseError):
    """On-disk schema version cannot be interpreted."""

    pass


class ReadOnlyDatabaseError(DatabaseError):
    """Write attempted while the database is open read-only."""

    pass


# ── Embedding layer ─────────────────────────────────────────────────────


class EmbeddingError(HybridSearchError):
    """Embedding generation errors."""

    pass


class EmbeddingProviderError(EmbeddingError):
    """Provider answered with a non-success status."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str = "",
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.status_code = status_code
        self.body = body


class EmbeddingRateLimitError(EmbeddingProviderError):
    """Provider kept rate limiting after all retries."""

    is_transient = True


class InvalidCredentialsError(EmbeddingProviderError):
    """Provider rejected the API key."""

    pass


class UnexpectedResponseShapeError(EmbeddingError):
    """Vector count or dimension did not match the request."""

    pass


class ProviderUnavailableError(EmbeddingError):
    """Provider cannot be used (not configured, not installed, unreachable)."""

    is_transient = True


# ── Indexing / search ───────────────────────────────────────────────────


class IndexingError(HybridSearchError):
    """Indexing-time failures."""

    pass


class ParsingError(IndexingError):
    """Source could not be parsed into chunks."""

    pass


class SearchError(HybridSearchError):
    """Search-time failures."""

    pass


class CloudBackendError(HybridSearchError):
    """Remote vector store request failed."""

    pass


class ConfigError(HybridSearchError):
    """Configuration errors."""

    pass


class OperationCancelledError(HybridSearchError):
    """A cancellation token fired while an operation was running.

    ``partial`` holds whatever the operation completed before it stopped.
    """

    def __init__(
        self,
        message: str = "Operation cancelled",
        partial: Any = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.partial = partial


# ── Structured data errors ──────────────────────────────────────────────


@dataclass(frozen=True)
class ErrorInfo:
    """Structured error value for data problems reported to callers."""

    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


FILE_NOT_FOUND = "file_not_found"
PATH_OUTSIDE_WORKSPACE = "path_outside_workspace"
FILE_UNREADABLE = "file_unreadable"
EMBEDDING_FAILED = "embedding_failed"

"""Data models for hybrid code search."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

import numpy as np

from .exceptions import ErrorInfo


@dataclass(frozen=True)
class Position:
    """1-based line and column."""

    line: int
    column: int


@dataclass(frozen=True)
class Range:
    """Inclusive source span."""

    start: Position
    end: Position

    @classmethod
    def from_lines(
        cls, start_line: int, start_column: int, end_line: int, end_column: int
    ) -> "Range":
        return cls(Position(start_line, start_column), Position(end_line, end_column))

    def to_dict(self) -> dict[str, int]:
        return {
            "start_line": self.start.line,
            "start_column": self.start.column,
            "end_line": self.end.line,
            "end_column": self.end.column,
        }


@dataclass(frozen=True)
class Chunk:
    """A contiguous, addressable span of one file's text."""

    id: str
    uri: str
    content: str
    language_id: str | None = None
    range: Range | None = None


@dataclass
class LexicalPosting:
    """Per-chunk entry of a term's posting list."""

    term_frequency: int
    positions: list[int] = field(default_factory=list)


@dataclass(frozen=True)
class LexicalHit:
    """Result of a BM25 keyword query."""

    uri: str
    score: float
    snippet: str
    chunk_id: str
    range: Range | None = None
    language_id: str | None = None


@dataclass
class EmbeddingRecord:
    """A stored chunk vector."""

    chunk_id: str
    uri: str
    embedding: np.ndarray
    language_id: str | None = None
    chunk_hash: str | None = None
    model: str | None = None

    def __post_init__(self) -> None:
        self.embedding = np.asarray(self.embedding, dtype=np.float32)

    @property
    def dimension(self) -> int:
        return int(self.embedding.shape[0])


@dataclass(frozen=True)
class VectorHit:
    """Result of a nearest-neighbour query."""

    chunk_id: str
    uri: str
    score: float
    language_id: str | None = None


class IndexState(str, Enum):
    """Lifecycle state of a workspace index."""

    UNINITIALIZED = "uninitialized"
    IDLE = "idle"
    BUILDING = "building"
    INDEXING = "indexing"
    READY = "ready"
    STALE = "stale"
    DEGRADED = "degraded"
    ERROR = "error"

    @property
    def is_queryable(self) -> bool:
        """Whether an index in this state may hold data to query.

        Error keeps whatever was indexed before the failure.
        """
        return self not in (IndexState.UNINITIALIZED, IndexState.IDLE)


class InputType(str, Enum):
    """Embedding input role for asymmetric encoders."""

    DOCUMENT = "document"
    QUERY = "query"


class Provenance(str, Enum):
    """Which sub-index produced a search result."""

    LEXICAL = "lexical"
    VECTOR = "vector"


class ChangeType(str, Enum):
    """Kind of file system change."""

    ADDED = "added"
    CHANGED = "changed"
    DELETED = "deleted"


@dataclass
class IndexStatus:
    """Per-workspace index status. Only the orchestrator mutates it."""

    workspace: str
    state: IndexState = IndexState.UNINITIALIZED
    total_files: int = 0
    indexed_files: int = 0
    total_chunks: int = 0
    embedded_chunks: int = 0
    embedding_model: str | None = None
    last_indexed_time: datetime | None = None
    error_message: str | None = None
    paused: bool = False
    paused_reason: str | None = None
    degraded_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "workspace": self.workspace,
            "state": self.state.value,
            "total_files": self.total_files,
            "indexed_files": self.indexed_files,
            "total_chunks": self.total_chunks,
            "embedded_chunks": self.embedded_chunks,
            "embedding_model": self.embedding_model,
            "last_indexed_time": (
                self.last_indexed_time.isoformat() if self.last_indexed_time else None
            ),
            "error_message": self.error_message,
            "paused": self.paused,
            "paused_reason": self.paused_reason,
            "degraded_reason": self.degraded_reason,
        }


@dataclass(frozen=True)
class IndexDiagnostics:
    """Aggregate counts only; never file contents or vectors."""

    workspace: str
    state: IndexState
    backend: str
    documents: int = 0
    chunks: int = 0
    embeddings: int = 0
    embedding_model: str | None = None
    embedding_dimension: int | None = None
    schema_version: int | None = None
    read_only: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "workspace": self.workspace,
            "state": self.state.value,
            "backend": self.backend,
            "documents": self.documents,
            "chunks": self.chunks,
            "embeddings": self.embeddings,
            "embedding_model": self.embedding_model,
            "embedding_dimension": self.embedding_dimension,
            "schema_version": self.schema_version,
            "read_only": self.read_only,
        }


@dataclass
class SearchResult:
    """One merged hybrid search result."""

    chunk_id: str
    uri: str
    snippet: str
    score: float
    provenance: tuple[Provenance, ...]
    range: Range | None = None
    language_id: str | None = None
    lexical_score: float | None = None
    semantic_score: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "chunk_id": self.chunk_id,
            "uri": self.uri,
            "snippet": self.snippet,
            "score": round(self.score, 6),
            "provenance": [p.value for p in self.provenance],
            "range": self.range.to_dict() if self.range else None,
            "language_id": self.language_id,
        }


@dataclass
class SearchResponse:
    """Search façade response; ``state`` reports index freshness."""

    state: IndexState
    results: list[SearchResult] = field(default_factory=list)
    backend: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "backend": self.backend,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class IndexOperationResult:
    """Outcome of a control-plane indexing operation."""

    workspace: str
    state: IndexState
    files_processed: int = 0
    files_failed: int = 0
    chunks_indexed: int = 0
    cancelled: bool = False
    errors: list[ErrorInfo] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.cancelled and self.state in (
            IndexState.READY,
            IndexState.DEGRADED,
        )


@dataclass
class FileChangeBatch:
    """Coalesced file changes ready for incremental indexing."""

    added: set[Path] = field(default_factory=set)
    changed: set[Path] = field(default_factory=set)
    deleted: set[Path] = field(default_factory=set)

    def add(self, path: Path, change: ChangeType) -> None:
        """Record a change, letting the latest event for a path win."""
        self.added.discard(path)
        self.changed.discard(path)
        self.deleted.discard(path)
        if change is ChangeType.ADDED:
            self.added.add(path)
        elif change is ChangeType.CHANGED:
            self.changed.add(path)
        else:
            self.deleted.add(path)

    @property
    def paths(self) -> list[Path]:
        return sorted(self.added | self.changed | self.deleted)

    def __len__(self) -> int:
        return len(self.added) + len(self.changed) + len(self.deleted)


def utc_now() -> datetime:
    return datetime.now(UTC)

"""Per-workspace SQLite backing store.

One database file per workspace holds the lexical documents, chunks and
token postings plus the embedding vectors. Rows are decoded into typed
dataclasses here so nothing untyped reaches the scoring code.
"""

import sqlite3
import threading
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import orjson
from loguru import logger

from .exceptions import (
    DatabaseInitializationError,
    ReadOnlyDatabaseError,
    SchemaVersionError,
)
from .schema import (
    DATA_TABLES,
    SCHEMA_STATEMENTS,
    SCHEMA_VERSION,
    SCHEMA_VERSION_KEY,
    SchemaCompatibility,
    check_schema_compatibility,
)

DB_FILENAME = "index.db"


@dataclass(frozen=True)
class DocumentRow:
    uri: str
    language_id: str | None
    doc_hash: str
    mtime: float | None
    size: int | None
    doc_length: int
    indexed_at: str


@dataclass(frozen=True)
class ChunkRow:
    chunk_id: str
    uri: str
    ordinal: int
    language_id: str | None
    start_line: int | None
    start_column: int | None
    end_line: int | None
    end_column: int | None
    chunk_hash: str
    token_count: int
    content: str


@dataclass(frozen=True)
class TokenRow:
    term: str
    chunk_id: str
    tf: int
    positions: list[int]


@dataclass(frozen=True)
class EmbeddingRow:
    chunk_id: str
    uri: str
    language_id: str | None
    chunk_hash: str | None
    model: str | None
    dim: int
    norm: float
    vector: np.ndarray


class WorkspaceDatabase:
    """SQLite store for one workspace.

    Example:
        >>> db = WorkspaceDatabase(index_dir / workspace_hash / "index.db")
        >>> db.open()
        >>> db.get_document("file:///repo/app.py")
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the database wrapper.

        Args:
            db_path: Path to the SQLite file (created on open if missing)
        """
        self.db_path = db_path
        self.read_only = False
        self.schema_version: int | None = None
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    # ── lifecycle ───────────────────────────────────────────────────────

    def open(self) -> None:
        """Open the database and reconcile its schema version.

        Raises:
            DatabaseInitializationError: If the file cannot be opened
            SchemaVersionError: If the stored schema version is unreadable
        """
        if self._conn is not None:
            return

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
            try:
                stored = self._read_schema_version(conn)
            except SchemaVersionError:
                conn.close()
                raise
            compatibility, message = check_schema_compatibility(stored)

            if compatibility is SchemaCompatibility.NEWER:
                conn.close()
                logger.warning(f"{self.db_path}: {message}")
                conn = sqlite3.connect(
                    f"file:{self.db_path}?mode=ro", uri=True, check_same_thread=False
                )
                self.read_only = True
                self.schema_version = stored
            else:
                if compatibility is SchemaCompatibility.OLDER:
                    logger.info(f"{self.db_path}: {message}")
                    self._drop_data_tables(conn)
                else:
                    logger.debug(f"{self.db_path}: {message}")
                self._create_schema(conn)
                self.schema_version = SCHEMA_VERSION

            self._conn = conn
        except sqlite3.Error as e:
            raise DatabaseInitializationError(
                f"Failed to open workspace database {self.db_path}: {e}",
                context={"db_path": str(self.db_path)},
            ) from e

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @staticmethod
    def _read_schema_version(conn: sqlite3.Connection) -> int | None:
        try:
            row = conn.execute(
                "SELECT value FROM meta WHERE key = ?", (SCHEMA_VERSION_KEY,)
            ).fetchone()
        except sqlite3.OperationalError:
            # meta table does not exist yet
            return None
        if row is None:
            return None
        try:
            return int(row[0])
        except ValueError as e:
            raise SchemaVersionError(f"Unreadable schema version {row[0]!r}") from e

    @staticmethod
    def _drop_data_tables(conn: sqlite3.Connection) -> None:
        for table in DATA_TABLES:
            conn.execute(f"DROP TABLE IF EXISTS {table}")
        conn.commit()

    @staticmethod
    def _create_schema(conn: sqlite3.Connection) -> None:
        for statement in SCHEMA_STATEMENTS:
            conn.execute(statement)
        conn.execute(
            "INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)",
            (SCHEMA_VERSION_KEY, str(SCHEMA_VERSION)),
        )
        conn.commit()

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self.open()
        assert self._conn is not None
        return self._conn

    def _ensure_writable(self, operation: str) -> None:
        if self.read_only:
            raise ReadOnlyDatabaseError(
                f"Cannot {operation}: database schema {self.schema_version} is "
                f"newer than supported version {SCHEMA_VERSION}",
                context={"db_path": str(self.db_path)},
            )

    # ── metadata ────────────────────────────────────────────────────────

    def get_meta(self, key: str) -> str | None:
        with self._lock:
            row = (
                self._connection()
                .execute("SELECT value FROM meta WHERE key = ?", (key,))
                .fetchone()
            )
        return row[0] if row else None

    def set_meta(self, key: str, value: str) -> None:
        self._ensure_writable("write metadata")
        with self._lock:
            conn = self._connection()
            conn.execute(
                "INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)", (key, value)
            )
            conn.commit()

    # ── documents / chunks / tokens ─────────────────────────────────────

    def replace_document(
        self,
        document: DocumentRow,
        chunks: list[ChunkRow],
        tokens: list[TokenRow],
    ) -> None:
        """Atomically replace a document with its chunks and postings."""
        self._ensure_writable("write document")
        with self._lock:
            conn = self._connection()
            with conn:
                self._delete_document_rows(conn, document.uri)
                conn.execute(
                    """
                    INSERT INTO documents
                        (uri, language_id, doc_hash, mtime, size, doc_length, indexed_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        document.uri,
                        document.language_id,
                        document.doc_hash,
                        document.mtime,
                        document.size,
                        document.doc_length,
                        document.indexed_at,
                    ),
                )
                conn.executemany(
                    """
                    INSERT OR REPLACE INTO chunks
                        (chunk_id, uri, ordinal, language_id, start_line, start_column,
                         end_line, end_column, chunk_hash, token_count, content)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            c.chunk_id,
                            c.uri,
                            c.ordinal,
                            c.language_id,
                            c.start_line,
                            c.start_column,
                            c.end_line,
                            c.end_column,
                            c.chunk_hash,
                            c.token_count,
                            c.content,
                        )
                        for c in chunks
                    ],
                )
                conn.executemany(
                    "INSERT INTO tokens (term, chunk_id, tf, positions) VALUES (?, ?, ?, ?)",
                    [
                        (t.term, t.chunk_id, t.tf, orjson.dumps(t.positions))
                        for t in tokens
                    ],
                )

    def delete_document(self, uri: str) -> None:
        self._ensure_writable("delete document")
        with self._lock:
            conn = self._connection()
            with conn:
                self._delete_document_rows(conn, uri)

    @staticmethod
    def _delete_document_rows(conn: sqlite3.Connection, uri: str) -> None:
        conn.execute(
            "DELETE FROM tokens WHERE chunk_id IN (SELECT chunk_id FROM chunks WHERE uri = ?)",
            (uri,),
        )
        conn.execute("DELETE FROM chunks WHERE uri = ?", (uri,))
        conn.execute("DELETE FROM documents WHERE uri = ?", (uri,))

    def get_document(self, uri: str) -> DocumentRow | None:
        with self._lock:
            row = (
                self._connection()
                .execute(
                    """
                    SELECT uri, language_id, doc_hash, mtime, size, doc_length, indexed_at
                    FROM documents WHERE uri = ?
                    """,
                    (uri,),
                )
                .fetchone()
            )
        return DocumentRow(*row) if row else None

    def list_documents(self) -> list[DocumentRow]:
        with self._lock:
            rows = (
                self._connection()
                .execute(
                    """
                    SELECT uri, language_id, doc_hash, mtime, size, doc_length, indexed_at
                    FROM documents ORDER BY uri
                    """
                )
                .fetchall()
            )
        return [DocumentRow(*row) for row in rows]

    def list_chunks(self, uri: str | None = None) -> list[ChunkRow]:
        query = """
            SELECT chunk_id, uri, ordinal, language_id, start_line, start_column,
                   end_line, end_column, chunk_hash, token_count, content
            FROM chunks
        """
        params: tuple = ()
        if uri is not None:
            query += " WHERE uri = ?"
            params = (uri,)
        query += " ORDER BY uri, ordinal"
        with self._lock:
            rows = self._connection().execute(query, params).fetchall()
        return [ChunkRow(*row) for row in rows]

    def iter_tokens(self) -> Iterator[TokenRow]:
        with self._lock:
            rows = (
                self._connection()
                .execute("SELECT term, chunk_id, tf, positions FROM tokens")
                .fetchall()
            )
        for term, chunk_id, tf, positions in rows:
            yield TokenRow(term, chunk_id, int(tf), orjson.loads(positions))

    # ── embeddings ──────────────────────────────────────────────────────

    def upsert_embeddings(self, rows: list[EmbeddingRow]) -> None:
        self._ensure_writable("write embeddings")
        with self._lock:
            conn = self._connection()
            with conn:
                conn.executemany(
                    """
                    INSERT OR REPLACE INTO embeddings
                        (chunk_id, uri, language_id, chunk_hash, model, dim, norm, vector)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            r.chunk_id,
                            r.uri,
                            r.language_id,
                            r.chunk_hash,
                            r.model,
                            r.dim,
                            r.norm,
                            np.asarray(r.vector, dtype=np.float32).tobytes(),
                        )
                        for r in rows
                    ],
                )

    def delete_embeddings_for_uri(self, uri: str) -> None:
        self._ensure_writable("delete embeddings")
        with self._lock:
            conn = self._connection()
            with conn:
                conn.execute("DELETE FROM embeddings WHERE uri = ?", (uri,))

    def embeddings_by_hash(self, chunk_hash: str) -> list[EmbeddingRow]:
        with self._lock:
            rows = (
                self._connection()
                .execute(
                    """
                    SELECT chunk_id, uri, language_id, chunk_hash, model, dim, norm, vector
                    FROM embeddings WHERE chunk_hash = ? ORDER BY chunk_id
                    """,
                    (chunk_hash,),
                )
                .fetchall()
            )
        return [self._decode_embedding(row) for row in rows]

    def iter_embedding_pages(self, page_size: int) -> Iterator[list[EmbeddingRow]]:
        """Yield embeddings in pages of at most ``page_size`` rows."""
        offset = 0
        while True:
            with self._lock:
                rows = (
                    self._connection()
                    .execute(
                        """
                        SELECT chunk_id, uri, language_id, chunk_hash, model, dim, norm, vector
                        FROM embeddings ORDER BY chunk_id LIMIT ? OFFSET ?
                        """,
                        (page_size, offset),
                    )
                    .fetchall()
                )
            if not rows:
                return
            yield [self._decode_embedding(row) for row in rows]
            if len(rows) < page_size:
                return
            offset += page_size

    @staticmethod
    def _decode_embedding(row: tuple) -> EmbeddingRow:
        chunk_id, uri, language_id, chunk_hash, model, dim, norm, blob = row
        vector = np.frombuffer(blob, dtype=np.float32)
        return EmbeddingRow(
            chunk_id=chunk_id,
            uri=uri,
            language_id=language_id,
            chunk_hash=chunk_hash,
            model=model,
            dim=int(dim),
            norm=float(norm),
            vector=vector,
        )

    # ── maintenance ─────────────────────────────────────────────────────

    def clear(self) -> None:
        """Delete every document, chunk, posting and vector."""
        self._ensure_writable("clear index")
        with self._lock:
            conn = self._connection()
            with conn:
                for table in DATA_TABLES:
                    conn.execute(f"DELETE FROM {table}")

    def counts(self) -> dict[str, int]:
        """Row counts per data table."""
        result: dict[str, int] = {}
        with self._lock:
            conn = self._connection()
            for table in DATA_TABLES:
                result[table] = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        return result

    def embedding_model_info(self) -> tuple[str | None, int | None]:
        """Return the (model, dimension) of the most common stored vectors."""
        with self._lock:
            row = (
                self._connection()
                .execute(
                    """
                    SELECT model, dim FROM embeddings
                    GROUP BY model, dim ORDER BY COUNT(*) DESC LIMIT 1
                    """
                )
                .fetchone()
            )
        if row is None:
            return None, None
        return row[0], int(row[1])

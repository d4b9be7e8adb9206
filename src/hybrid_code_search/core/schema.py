"""Schema versioning and compatibility checking for workspace databases.

The schema version lives in the ``meta`` table of each workspace database.
An older on-disk schema is reset and rebuilt; a newer one (written by a
later release) is opened read-only so this code never corrupts it.
"""

from enum import Enum

# Schema version - ONLY bump when the table layout changes
SCHEMA_VERSION = 3

# Schema changelog - documents when schema actually changed
SCHEMA_CHANGELOG = {
    3: "Added model and dim columns to embeddings; chunk column ranges",
    2: "Split lexical tokens into their own table with positions",
    1: "Initial documents/chunks/embeddings layout",
}

SCHEMA_VERSION_KEY = "schema_version"

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS meta (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS documents (
        uri TEXT PRIMARY KEY,
        language_id TEXT,
        doc_hash TEXT NOT NULL,
        mtime REAL,
        size INTEGER,
        doc_length INTEGER NOT NULL DEFAULT 0,
        indexed_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chunks (
        chunk_id TEXT PRIMARY KEY,
        uri TEXT NOT NULL,
        ordinal INTEGER NOT NULL,
        language_id TEXT,
        start_line INTEGER,
        start_column INTEGER,
        end_line INTEGER,
        end_column INTEGER,
        chunk_hash TEXT NOT NULL,
        token_count INTEGER NOT NULL DEFAULT 0,
        content TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tokens (
        term TEXT NOT NULL,
        chunk_id TEXT NOT NULL,
        tf INTEGER NOT NULL,
        positions BLOB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS embeddings (
        chunk_id TEXT PRIMARY KEY,
        uri TEXT NOT NULL,
        language_id TEXT,
        chunk_hash TEXT,
        model TEXT,
        dim INTEGER NOT NULL,
        norm REAL NOT NULL,
        vector BLOB NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_chunks_uri ON chunks(uri)",
    "CREATE INDEX IF NOT EXISTS idx_tokens_term ON tokens(term)",
    "CREATE INDEX IF NOT EXISTS idx_tokens_chunk ON tokens(chunk_id)",
    "CREATE INDEX IF NOT EXISTS idx_embeddings_uri ON embeddings(uri)",
    "CREATE INDEX IF NOT EXISTS idx_embeddings_chunk_hash ON embeddings(chunk_hash)",
)

DATA_TABLES = ("documents", "chunks", "tokens", "embeddings")


class SchemaCompatibility(str, Enum):
    """Relationship of an on-disk schema to :data:`SCHEMA_VERSION`."""

    MISSING = "missing"
    COMPATIBLE = "compatible"
    OLDER = "older"
    NEWER = "newer"


def check_schema_compatibility(
    stored_version: int | None,
) -> tuple[SchemaCompatibility, str]:
    """Compare a stored schema version with the running code.

    Args:
        stored_version: Version read from the database, None if absent

    Returns:
        Tuple of (compatibility, human-readable message)
    """
    if stored_version is None:
        return (
            SchemaCompatibility.MISSING,
            f"No schema version found; creating schema {SCHEMA_VERSION}",
        )

    if stored_version == SCHEMA_VERSION:
        return (
            SchemaCompatibility.COMPATIBLE,
            f"Schema version {stored_version} is compatible",
        )

    if stored_version < SCHEMA_VERSION:
        changes = SCHEMA_CHANGELOG.get(SCHEMA_VERSION, "Unknown changes")
        return (
            SchemaCompatibility.OLDER,
            f"Schema version {stored_version} is older than {SCHEMA_VERSION} "
            f"({changes}); index will be rebuilt",
        )

    return (
        SchemaCompatibility.NEWER,
        f"Schema version {stored_version} is newer than supported version "
        f"{SCHEMA_VERSION}; opening read-only",
    )

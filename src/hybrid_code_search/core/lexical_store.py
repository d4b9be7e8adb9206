"""Incremental BM25 keyword index over code chunks.

Postings are kept in memory as ``term -> {chunk_id -> (tf, positions)}``
and mirrored to the workspace database so a restart can rehydrate the
index without re-tokenizing unchanged files.

Key properties:
- Re-indexing a document first removes its previous postings, so indexing
  the same chunks twice never inflates scores
- Identifier-like tokens (``get``, ``if``, ``self``) are kept; there is no
  stopword list
- Missing documents or terms are "no hits", never errors
- The in-memory index is authoritative; persistence failures are logged
"""

import math
import re
import sqlite3
from dataclasses import dataclass
from typing import Any

from loguru import logger

from ..config.defaults import BM25_B, BM25_K1, SNIPPET_LENGTH
from .chunking import compute_content_hash
from .database import ChunkRow, DocumentRow, TokenRow, WorkspaceDatabase
from .exceptions import DatabaseError
from .models import Chunk, LexicalHit, LexicalPosting, Range, utc_now

_TOKEN_SPLIT = re.compile(r"[^a-z0-9_]+")


def tokenize(text: str) -> list[str]:
    """Lowercase and split on anything that is not ``[a-z0-9_]``."""
    return [token for token in _TOKEN_SPLIT.split(text.lower()) if token]


@dataclass
class _ChunkEntry:
    uri: str
    content: str
    length: int
    language_id: str | None
    range: Range | None


class LexicalShardStore:
    """BM25-ranked keyword search for one workspace.

    Example:
        store = LexicalShardStore(database)
        store.index_document("file:///repo/nav.ts", "typescript", chunks)
        hits = store.search_lexical("navigation header", max_results=10)
    """

    def __init__(
        self,
        database: WorkspaceDatabase | None = None,
        k1: float = BM25_K1,
        b: float = BM25_B,
    ) -> None:
        """Initialize an empty store.

        Args:
            database: Optional backing store for persistence
            k1: BM25 term-frequency saturation
            b: BM25 length normalisation
        """
        self.database = database
        self.k1 = k1
        self.b = b
        self._postings: dict[str, dict[str, LexicalPosting]] = {}
        self._chunks: dict[str, _ChunkEntry] = {}
        self._doc_chunks: dict[str, list[str]] = {}
        self._doc_lengths: dict[str, int] = {}
        self._total_doc_length = 0

    @property
    def doc_count(self) -> int:
        return len(self._doc_chunks)

    @property
    def chunk_count(self) -> int:
        return len(self._chunks)

    @property
    def total_doc_length(self) -> int:
        return self._total_doc_length

    def has_document(self, uri: str) -> bool:
        return uri in self._doc_chunks

    # ── writes ──────────────────────────────────────────────────────────

    def index_document(
        self,
        uri: str,
        language_id: str | None,
        chunks: list[Chunk],
        doc_hash: str | None = None,
        mtime: float | None = None,
        size: int | None = None,
    ) -> int:
        """Replace all postings for ``uri`` with postings for ``chunks``.

        Args:
            uri: Document uri
            language_id: Language of the document
            chunks: Chunks produced for the document
            doc_hash: Content hash of the whole document, for change detection
            mtime: File modification time, if known
            size: File size in bytes, if known

        Returns:
            Number of chunks indexed
        """
        self._remove_from_memory(uri)

        token_rows: list[TokenRow] = []
        chunk_rows: list[ChunkRow] = []
        doc_length = 0
        chunk_ids: list[str] = []

        for ordinal, chunk in enumerate(chunks):
            terms = tokenize(chunk.content)
            doc_length += len(terms)
            chunk_ids.append(chunk.id)
            self._chunks[chunk.id] = _ChunkEntry(
                uri=uri,
                content=chunk.content,
                length=len(terms),
                language_id=chunk.language_id or language_id,
                range=chunk.range,
            )

            per_chunk: dict[str, LexicalPosting] = {}
            for position, term in enumerate(terms):
                posting = per_chunk.get(term)
                if posting is None:
                    posting = LexicalPosting(term_frequency=0)
                    per_chunk[term] = posting
                posting.term_frequency += 1
                posting.positions.append(position)

            for term, posting in per_chunk.items():
                self._postings.setdefault(term, {})[chunk.id] = posting
                token_rows.append(
                    TokenRow(term, chunk.id, posting.term_frequency, posting.positions)
                )

            chunk_rows.append(_chunk_row(chunk, uri, ordinal, language_id, len(terms)))

        self._doc_chunks[uri] = chunk_ids
        self._doc_lengths[uri] = doc_length
        self._total_doc_length += doc_length

        if self.database is not None:
            document = DocumentRow(
                uri=uri,
                language_id=language_id,
                doc_hash=doc_hash
                or compute_content_hash("\n".join(c.content for c in chunks)),
                mtime=mtime,
                size=size,
                doc_length=doc_length,
                indexed_at=utc_now().isoformat(),
            )
            self._persist(
                "index", uri, self.database.replace_document, document, chunk_rows, token_rows
            )

        logger.debug(f"Indexed {len(chunks)} chunks ({doc_length} tokens) for {uri}")
        return len(chunks)

    def remove_document(self, uri: str) -> bool:
        """Remove every posting for ``uri``.

        Returns:
            True if the document was present
        """
        removed = self._remove_from_memory(uri)
        if self.database is not None:
            self._persist("remove", uri, self.database.delete_document, uri)
        return removed

    def clear(self) -> None:
        """Drop the whole index, in memory and on disk."""
        self._postings.clear()
        self._chunks.clear()
        self._doc_chunks.clear()
        self._doc_lengths.clear()
        self._total_doc_length = 0
        if self.database is not None:
            self._persist("clear", "*", self.database.clear)

    def _remove_from_memory(self, uri: str) -> bool:
        chunk_ids = self._doc_chunks.pop(uri, None)
        if chunk_ids is None:
            return False

        self._total_doc_length -= self._doc_lengths.pop(uri, 0)
        doomed = set(chunk_ids)
        for chunk_id in chunk_ids:
            self._chunks.pop(chunk_id, None)

        empty_terms = []
        for term, postings in self._postings.items():
            if doomed.isdisjoint(postings):
                continue
            for chunk_id in doomed.intersection(postings):
                del postings[chunk_id]
            if not postings:
                empty_terms.append(term)
        for term in empty_terms:
            del self._postings[term]
        return True

    def _persist(self, action: str, uri: str, func, *args) -> None:
        try:
            func(*args)
        except (DatabaseError, sqlite3.Error) as e:
            logger.warning(f"Lexical store failed to persist {action} for {uri}: {e}")

    # ── reads ───────────────────────────────────────────────────────────

    def search_lexical(self, query: str, max_results: int) -> list[LexicalHit]:
        """Rank chunks against ``query`` with BM25.

        Args:
            query: Free-text query, tokenized like indexed content
            max_results: Maximum number of hits to return

        Returns:
            Hits sorted by descending score, ties by chunk id
        """
        terms = tokenize(query)
        if not terms or self.doc_count == 0 or max_results <= 0:
            return []

        n = self.doc_count
        avg_doc_len = self._total_doc_length / n if self._total_doc_length > 0 else 1.0
        scores: dict[str, float] = {}

        for term in terms:
            postings = self._postings.get(term)
            if not postings:
                continue
            df = len(postings)
            idf = math.log((n - df + 0.5) / (df + 0.5) + 1)
            for chunk_id, posting in postings.items():
                doc_len = self._chunks[chunk_id].length
                tf = posting.term_frequency
                norm = tf + self.k1 * (1 - self.b + self.b * (doc_len / avg_doc_len))
                scores[chunk_id] = scores.get(chunk_id, 0.0) + idf * (
                    tf * (self.k1 + 1) / norm
                )

        ranked = sorted(scores.items(), key=lambda item: (-item[1], item[0]))
        hits = []
        for chunk_id, score in ranked[:max_results]:
            entry = self._chunks[chunk_id]
            hits.append(
                LexicalHit(
                    uri=entry.uri,
                    score=score,
                    snippet=entry.content[:SNIPPET_LENGTH],
                    chunk_id=chunk_id,
                    range=entry.range,
                    language_id=entry.language_id,
                )
            )
        return hits

    def get_chunk(self, chunk_id: str) -> Chunk | None:
        entry = self._chunks.get(chunk_id)
        if entry is None:
            return None
        return Chunk(
            id=chunk_id,
            uri=entry.uri,
            content=entry.content,
            language_id=entry.language_id,
            range=entry.range,
        )

    # ── persistence ─────────────────────────────────────────────────────

    def load(self) -> int:
        """Rehydrate the in-memory index from the database.

        Returns:
            Number of documents loaded
        """
        if self.database is None:
            return 0

        try:
            documents = self.database.list_documents()
            chunk_rows = self.database.list_chunks()
            token_rows = list(self.database.iter_tokens())
        except (DatabaseError, sqlite3.Error) as e:
            logger.warning(f"Could not load lexical index from disk: {e}")
            return 0

        self._postings.clear()
        self._chunks.clear()
        self._doc_chunks.clear()
        self._doc_lengths.clear()
        self._total_doc_length = 0

        for doc in documents:
            self._doc_chunks[doc.uri] = []
            self._doc_lengths[doc.uri] = doc.doc_length
            self._total_doc_length += doc.doc_length

        for row in chunk_rows:
            if row.uri not in self._doc_chunks:
                continue
            self._doc_chunks[row.uri].append(row.chunk_id)
            self._chunks[row.chunk_id] = _ChunkEntry(
                uri=row.uri,
                content=row.content,
                length=row.token_count,
                language_id=row.language_id,
                range=_row_range(row),
            )

        for token in token_rows:
            if token.chunk_id not in self._chunks:
                continue
            self._postings.setdefault(token.term, {})[token.chunk_id] = LexicalPosting(
                term_frequency=token.tf, positions=list(token.positions)
            )

        logger.debug(
            f"Loaded lexical index: {self.doc_count} documents, "
            f"{self.chunk_count} chunks, {len(self._postings)} terms"
        )
        return self.doc_count

    def get_stats(self) -> dict[str, Any]:
        return {
            "documents": self.doc_count,
            "chunks": self.chunk_count,
            "terms": len(self._postings),
            "total_doc_length": self._total_doc_length,
        }


def _chunk_row(
    chunk: Chunk, uri: str, ordinal: int, language_id: str | None, token_count: int
) -> ChunkRow:
    r = chunk.range
    return ChunkRow(
        chunk_id=chunk.id,
        uri=uri,
        ordinal=ordinal,
        language_id=chunk.language_id or language_id,
        start_line=r.start.line if r else None,
        start_column=r.start.column if r else None,
        end_line=r.end.line if r else None,
        end_column=r.end.column if r else None,
        chunk_hash=compute_content_hash(chunk.content),
        token_count=token_count,
        content=chunk.content,
    )


def _row_range(row: ChunkRow) -> Range | None:
    if row.start_line is None or row.end_line is None:
        return None
    return Range.from_lines(
        row.start_line, row.start_column or 1, row.end_line, row.end_column or 1
    )

"""Vector store with brute-force cosine nearest-neighbour search.

Workspaces hold thousands of chunks, not millions, so an exact O(n) scan
with numpy is fast enough and avoids an approximate index. Norms are
computed once at insertion. Persisted vectors are scanned in pages so a
query never materialises the whole table.
"""

import heapq
from dataclasses import dataclass
from typing import Any

import numpy as np
from loguru import logger

from .database import EmbeddingRow, WorkspaceDatabase
from .exceptions import SearchError
from .models import EmbeddingRecord, VectorHit


@dataclass
class _Candidate:
    chunk_id: str
    uri: str
    language_id: str | None
    chunk_hash: str | None
    model: str | None
    norm: float
    vector: np.ndarray


def vector_norm(vector: np.ndarray) -> float:
    return float(np.linalg.norm(np.asarray(vector, dtype=np.float64)))


class EmbeddingStore:
    """Embedding records keyed by chunk id, indexed by uri and chunk hash.

    With a database, records live on disk and ``get_nearest`` pages
    through them. Without one, records are kept in memory.
    """

    def __init__(
        self, database: WorkspaceDatabase | None = None, page_size: int = 1000
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self.database = database
        self.page_size = page_size
        self._records: dict[str, _Candidate] = {}
        self._by_uri: dict[str, set[str]] = {}
        self._by_hash: dict[str, set[str]] = {}

    def store_embeddings(self, records: list[EmbeddingRecord]) -> int:
        """Insert or replace records.

        Returns:
            Number of records stored
        """
        if not records:
            return 0

        if self.database is not None:
            self.database.upsert_embeddings(
                [
                    EmbeddingRow(
                        chunk_id=r.chunk_id,
                        uri=r.uri,
                        language_id=r.language_id,
                        chunk_hash=r.chunk_hash,
                        model=r.model,
                        dim=r.dimension,
                        norm=vector_norm(r.embedding),
                        vector=r.embedding,
                    )
                    for r in records
                ]
            )
            return len(records)

        for r in records:
            self._remove_record(r.chunk_id)
            self._records[r.chunk_id] = _Candidate(
                chunk_id=r.chunk_id,
                uri=r.uri,
                language_id=r.language_id,
                chunk_hash=r.chunk_hash,
                model=r.model,
                norm=vector_norm(r.embedding),
                vector=r.embedding,
            )
            self._by_uri.setdefault(r.uri, set()).add(r.chunk_id)
            if r.chunk_hash:
                self._by_hash.setdefault(r.chunk_hash, set()).add(r.chunk_id)
        return len(records)

    def remove_embeddings_for_uri(self, uri: str) -> None:
        if self.database is not None:
            self.database.delete_embeddings_for_uri(uri)
            return
        for chunk_id in list(self._by_uri.get(uri, ())):
            self._remove_record(chunk_id)

    def _remove_record(self, chunk_id: str) -> None:
        existing = self._records.pop(chunk_id, None)
        if existing is None:
            return
        uri_ids = self._by_uri.get(existing.uri)
        if uri_ids is not None:
            uri_ids.discard(chunk_id)
            if not uri_ids:
                del self._by_uri[existing.uri]
        if existing.chunk_hash:
            hash_ids = self._by_hash.get(existing.chunk_hash)
            if hash_ids is not None:
                hash_ids.discard(chunk_id)
                if not hash_ids:
                    del self._by_hash[existing.chunk_hash]

    def clear(self) -> None:
        """Drop in-memory records; on-disk rows are cleared with the database."""
        self._records.clear()
        self._by_uri.clear()
        self._by_hash.clear()

    def get_by_hash(self, chunk_hash: str) -> list[EmbeddingRecord]:
        """Records whose content hash matches, for re-embedding reuse."""
        if self.database is not None:
            rows = self.database.embeddings_by_hash(chunk_hash)
            return [_row_to_record(row) for row in rows]
        return [
            _candidate_to_record(self._records[chunk_id])
            for chunk_id in sorted(self._by_hash.get(chunk_hash, ()))
        ]

    def count(self) -> int:
        if self.database is not None:
            return self.database.counts()["embeddings"]
        return len(self._records)

    def get_nearest(
        self, query_vector: np.ndarray, k: int, offset: int = 0
    ) -> list[VectorHit]:
        """Exact cosine nearest neighbours.

        Args:
            query_vector: Query embedding; only same-dimension records are scored
            k: Number of hits to return
            offset: Number of top hits to skip

        Returns:
            Hits sorted by descending similarity, ties by chunk id

        Raises:
            SearchError: If the query is not a single vector
        """
        if k <= 0:
            return []

        query = np.asarray(query_vector, dtype=np.float64)
        if query.ndim != 1:
            raise SearchError(
                f"Query vector must be one-dimensional, got shape {query.shape}"
            )
        query_norm = float(np.linalg.norm(query))
        keep = offset + k
        best: list[tuple[float, str, str, str | None]] = []

        for rows in self._iter_pages():
            page = [c for c in rows if c.vector.shape[0] == query.shape[0]]
            if len(page) < len(rows):
                logger.debug(
                    f"Skipped {len(rows) - len(page)} vectors with dimension "
                    f"!= {query.shape[0]}"
                )
            if not page:
                continue
            matrix = np.vstack([c.vector for c in page]).astype(np.float64)
            norms = np.array([c.norm for c in page], dtype=np.float64)
            denominators = norms * query_norm
            denominators[denominators == 0] = 1.0
            scores = np.clip(matrix @ query / denominators, -1.0, 1.0)

            merged = best + [
                (float(score), c.chunk_id, c.uri, c.language_id)
                for score, c in zip(scores, page, strict=True)
            ]
            best = heapq.nsmallest(keep, merged, key=lambda item: (-item[0], item[1]))

        return [
            VectorHit(chunk_id=chunk_id, uri=uri, score=score, language_id=language_id)
            for score, chunk_id, uri, language_id in best[offset:keep]
        ]

    def _iter_pages(self):
        if self.database is not None:
            for rows in self.database.iter_embedding_pages(self.page_size):
                yield [
                    _Candidate(
                        chunk_id=row.chunk_id,
                        uri=row.uri,
                        language_id=row.language_id,
                        chunk_hash=row.chunk_hash,
                        model=row.model,
                        norm=row.norm,
                        vector=row.vector,
                    )
                    for row in rows
                ]
            return

        records = [self._records[chunk_id] for chunk_id in sorted(self._records)]
        for start in range(0, len(records), self.page_size):
            yield records[start : start + self.page_size]

    def get_stats(self) -> dict[str, Any]:
        if self.database is not None:
            model, dim = self.database.embedding_model_info()
            return {"embeddings": self.count(), "model": model, "dimension": dim}
        first = next(iter(self._records.values()), None)
        return {
            "embeddings": len(self._records),
            "model": first.model if first else None,
            "dimension": int(first.vector.shape[0]) if first else None,
        }


def _row_to_record(row: EmbeddingRow) -> EmbeddingRecord:
    return EmbeddingRecord(
        chunk_id=row.chunk_id,
        uri=row.uri,
        embedding=row.vector,
        language_id=row.language_id,
        chunk_hash=row.chunk_hash,
        model=row.model,
    )


def _candidate_to_record(candidate: _Candidate) -> EmbeddingRecord:
    return EmbeddingRecord(
        chunk_id=candidate.chunk_id,
        uri=candidate.uri,
        embedding=candidate.vector,
        language_id=candidate.language_id,
        chunk_hash=candidate.chunk_hash,
        model=candidate.model,
    )

"""Hybrid semantic search façade.

Merges vector and BM25 hits into one ranked list:

- with a vector hit:  0.65 * semantic + 0.25 * lexical + 0.10 * recency
- lexical only:       0.75 * lexical + 0.25 * recency

Lexical scores are normalised by the best lexical score of the query,
cosine similarity is mapped from [-1, 1] to [0, 1], and recency decays as
``1 / (1 + age_in_days)`` since the workspace was last indexed. A chunk
found by both sub-indexes appears once with both provenance tags.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import numpy as np
from loguru import logger

from ..config.defaults import (
    LEXICAL_ONLY_RECENCY_WEIGHT,
    LEXICAL_ONLY_WEIGHT,
    LEXICAL_WEIGHT,
    RECENCY_WEIGHT,
    SEMANTIC_WEIGHT,
    SNIPPET_LENGTH,
)
from ..config.settings import IndexingSettings
from .exceptions import HybridSearchError
from .index_service import IndexService
from .models import (
    IndexState,
    LexicalHit,
    Provenance,
    Range,
    SearchResponse,
    SearchResult,
    VectorHit,
    utc_now,
)


@dataclass
class _Merged:
    chunk_id: str
    uri: str
    snippet: str = ""
    range: Range | None = None
    language_id: str | None = None
    lexical: float | None = None
    semantic: float | None = None
    provenance: list[Provenance] = field(default_factory=list)


def recency_score(last_indexed: datetime | None, now: datetime) -> float:
    if last_indexed is None:
        return 0.0
    age_days = max((now - last_indexed).total_seconds(), 0.0) / 86_400
    return 1 / (1 + age_days)


class SemanticSearchService:
    """Answers queries against whichever index backend is configured.

    Queries never raise: internal failures are logged and the response
    carries whatever could still be produced, possibly nothing.
    """

    def __init__(
        self,
        index: IndexService,
        settings: IndexingSettings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.index = index
        self.settings = settings
        self._clock = clock

    async def search(
        self, query: str, workspace: Path, max_results: int | None = None
    ) -> SearchResponse:
        """Run a hybrid query.

        Args:
            query: Natural-language or keyword query
            workspace: Workspace root to search
            max_results: Result cap, defaults to ``search_top_k``

        Returns:
            Response whose ``state`` is ``uninitialized`` with no results when
            the workspace has not been indexed or search is disabled
        """
        backend = getattr(self.index, "backend_name", None)
        if not (self.settings.indexing_enabled and self.settings.semantic_search_enabled):
            return SearchResponse(state=IndexState.UNINITIALIZED, backend=backend)

        try:
            status = await self.index.get_status(workspace)
        except HybridSearchError as e:
            logger.warning(f"Could not read index status for {workspace}: {e}")
            return SearchResponse(state=IndexState.ERROR, backend=backend)

        if not status.state.is_queryable or not query.strip():
            return SearchResponse(state=status.state, backend=backend)

        limit = max_results or self.settings.search_top_k
        vector_hits = await self._vector_hits(workspace, query)
        lexical_hits = await self._lexical_hits(workspace, query)

        merged = self._merge(lexical_hits, vector_hits)
        await self._fill_snippets(workspace, merged)

        recency = recency_score(status.last_indexed_time, self._clock())
        results = [self._score(entry, recency) for entry in merged.values()]
        results.sort(key=lambda r: (-r.score, r.chunk_id))
        return SearchResponse(state=status.state, results=results[:limit], backend=backend)

    async def _vector_hits(self, workspace: Path, query: str) -> list[VectorHit]:
        try:
            query_vector = await self.index.embed_query(workspace, query)
            if not np.any(query_vector):
                return []
            return await self.index.search_vectors(
                workspace, query_vector, self.settings.search_top_k
            )
        except HybridSearchError as e:
            logger.warning(f"Vector search unavailable, using keywords only: {e}")
            return []

    async def _lexical_hits(self, workspace: Path, query: str) -> list[LexicalHit]:
        try:
            return await self.index.search_lexical(
                workspace, query, self.settings.lexical_row_limit
            )
        except HybridSearchError as e:
            logger.warning(f"Keyword search failed: {e}")
            return []

    @staticmethod
    def _merge(
        lexical_hits: list[LexicalHit], vector_hits: list[VectorHit]
    ) -> dict[str, _Merged]:
        merged: dict[str, _Merged] = {}

        max_lexical = max((hit.score for hit in lexical_hits), default=0.0)
        for hit in lexical_hits:
            entry = merged.setdefault(hit.chunk_id, _Merged(hit.chunk_id, hit.uri))
            entry.snippet = hit.snippet
            entry.range = hit.range
            entry.language_id = hit.language_id
            entry.lexical = hit.score / max_lexical if max_lexical > 0 else 0.0
            if Provenance.LEXICAL not in entry.provenance:
                entry.provenance.append(Provenance.LEXICAL)

        for hit in vector_hits:
            entry = merged.setdefault(hit.chunk_id, _Merged(hit.chunk_id, hit.uri))
            entry.language_id = entry.language_id or hit.language_id
            entry.semantic = (hit.score + 1) / 2
            if Provenance.VECTOR not in entry.provenance:
                entry.provenance.append(Provenance.VECTOR)

        return merged

    async def _fill_snippets(self, workspace: Path, merged: dict[str, _Merged]) -> None:
        missing = [chunk_id for chunk_id, entry in merged.items() if not entry.snippet]
        if not missing:
            return
        try:
            chunks = await self.index.get_chunks(workspace, missing)
        except HybridSearchError as e:
            logger.debug(f"Could not load snippets: {e}")
            return
        for chunk_id, chunk in chunks.items():
            entry = merged[chunk_id]
            entry.snippet = chunk.content[:SNIPPET_LENGTH]
            entry.range = entry.range or chunk.range
            entry.language_id = entry.language_id or chunk.language_id

    @staticmethod
    def _score(entry: _Merged, recency: float) -> SearchResult:
        lexical = entry.lexical or 0.0
        if entry.semantic is not None:
            score = (
                SEMANTIC_WEIGHT * entry.semantic
                + LEXICAL_WEIGHT * lexical
                + RECENCY_WEIGHT * recency
            )
        else:
            score = LEXICAL_ONLY_WEIGHT * lexical + LEXICAL_ONLY_RECENCY_WEIGHT * recency
        return SearchResult(
            chunk_id=entry.chunk_id,
            uri=entry.uri,
            snippet=entry.snippet,
            score=score,
            provenance=tuple(entry.provenance),
            range=entry.range,
            language_id=entry.language_id,
            lexical_score=entry.lexical,
            semantic_score=entry.semantic,
        )

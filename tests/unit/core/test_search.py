"""Tests for the hybrid search façade."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import numpy as np
import pytest

from hybrid_code_search.core.exceptions import EmbeddingError, SearchError
from hybrid_code_search.core.file_discovery import path_to_uri
from hybrid_code_search.core.index_service import LocalIndexService
from hybrid_code_search.core.models import (
    Chunk,
    IndexState,
    IndexStatus,
    LexicalHit,
    Provenance,
    Range,
    VectorHit,
)
from hybrid_code_search.core.search import SemanticSearchService, recency_score

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def mock_index(state=IndexState.READY, lexical=(), vectors=(), chunks=None):
    index = AsyncMock()
    index.backend_name = "local"
    index.get_status.return_value = IndexStatus(
        workspace="/repo", state=state, last_indexed_time=NOW
    )
    index.embed_query.return_value = np.ones(4, dtype=np.float32)
    index.search_lexical.return_value = list(lexical)
    index.search_vectors.return_value = list(vectors)
    index.get_chunks.return_value = chunks or {}
    return index


def lexical_hit(chunk_id: str, score: float) -> LexicalHit:
    return LexicalHit(
        uri=f"file:///repo/{chunk_id}.py",
        score=score,
        snippet=f"snippet {chunk_id}",
        chunk_id=chunk_id,
        range=Range.from_lines(1, 1, 2, 1),
        language_id="python",
    )


def vector_hit(chunk_id: str, score: float) -> VectorHit:
    return VectorHit(chunk_id=chunk_id, uri=f"file:///repo/{chunk_id}.py", score=score)


@pytest.fixture
def make_service(settings):
    def factory(index, **overrides):
        return SemanticSearchService(
            index, settings.model_copy(update=overrides), clock=lambda: NOW
        )

    return factory


class TestRecency:
    def test_fresh_index_scores_one(self):
        assert recency_score(NOW, NOW) == 1.0

    def test_decays_with_age(self):
        assert recency_score(NOW - timedelta(days=1), NOW) == pytest.approx(0.5)

    def test_never_indexed(self):
        assert recency_score(None, NOW) == 0.0


class TestDisabledAndUnavailable:
    """Short-circuit paths never touch the index."""

    async def test_indexing_disabled(self, make_service, tmp_path):
        index = mock_index()
        service = make_service(index, indexing_enabled=False)

        response = await service.search("getUserById", tmp_path)

        assert response.state is IndexState.UNINITIALIZED
        assert response.results == []
        index.get_status.assert_not_awaited()
        index.embed_query.assert_not_awaited()

    async def test_semantic_search_disabled(self, make_service, tmp_path):
        index = mock_index()
        response = await make_service(index, semantic_search_enabled=False).search(
            "query", tmp_path
        )
        assert response.state is IndexState.UNINITIALIZED
        index.search_lexical.assert_not_awaited()

    @pytest.mark.parametrize("state", [IndexState.UNINITIALIZED, IndexState.IDLE])
    async def test_unqueryable_states(self, make_service, tmp_path, state):
        index = mock_index(state=state)
        response = await make_service(index).search("query", tmp_path)
        assert response.state is state
        assert response.results == []
        index.embed_query.assert_not_awaited()

    async def test_blank_query(self, make_service, tmp_path):
        index = mock_index()
        response = await make_service(index).search("   ", tmp_path)
        assert response.state is IndexState.READY
        assert response.results == []

    async def test_status_failure_is_error_state(self, make_service, tmp_path):
        index = mock_index()
        index.get_status.side_effect = SearchError("backend offline")
        response = await make_service(index).search("query", tmp_path)
        assert response.state is IndexState.ERROR
        assert response.backend == "local"


class TestMerging:
    """Union by chunk id with provenance and weighted scores."""

    async def test_hybrid_ranking(self, make_service, tmp_path):
        index = mock_index(
            lexical=[lexical_hit("a", 4.0), lexical_hit("b", 2.0)],
            vectors=[vector_hit("a", 0.6), vector_hit("c", 0.2)],
            chunks={
                "c": Chunk(
                    id="c",
                    uri="file:///repo/c.py",
                    content="def c(): pass",
                    language_id="python",
                    range=Range.from_lines(3, 1, 3, 14),
                )
            },
        )

        response = await make_service(index).search("lookup user", tmp_path)

        assert [r.chunk_id for r in response.results] == ["a", "b", "c"]
        a, b, c = response.results
        assert a.provenance == (Provenance.LEXICAL, Provenance.VECTOR)
        assert a.score == pytest.approx(0.65 * 0.8 + 0.25 * 1.0 + 0.10 * 1.0)
        assert b.provenance == (Provenance.LEXICAL,)
        assert b.score == pytest.approx(0.75 * 0.5 + 0.25 * 1.0)
        assert c.provenance == (Provenance.VECTOR,)
        assert c.score == pytest.approx(0.65 * 0.6 + 0.10 * 1.0)
        assert c.snippet == "def c(): pass"
        assert c.range == Range.from_lines(3, 1, 3, 14)
        index.get_chunks.assert_awaited_once_with(tmp_path, ["c"])

    async def test_max_results(self, make_service, tmp_path):
        index = mock_index(lexical=[lexical_hit(str(i), 10.0 - i) for i in range(6)])
        response = await make_service(index).search("q", tmp_path, max_results=2)
        assert [r.chunk_id for r in response.results] == ["0", "1"]

    async def test_embedding_failure_falls_back_to_keywords(self, make_service, tmp_path):
        index = mock_index(lexical=[lexical_hit("a", 1.0)])
        index.embed_query.side_effect = EmbeddingError("provider down")

        response = await make_service(index).search("q", tmp_path)

        assert [r.provenance for r in response.results] == [(Provenance.LEXICAL,)]
        index.search_vectors.assert_not_awaited()

    async def test_zero_query_vector_skips_vector_search(self, make_service, tmp_path):
        index = mock_index(lexical=[lexical_hit("a", 1.0)])
        index.embed_query.return_value = np.zeros(4, dtype=np.float32)

        await make_service(index).search("q", tmp_path)

        index.search_vectors.assert_not_awaited()

    async def test_degraded_results_report_state(self, make_service, tmp_path):
        index = mock_index(state=IndexState.DEGRADED, lexical=[lexical_hit("a", 1.0)])
        response = await make_service(index).search("q", tmp_path)
        assert response.state is IndexState.DEGRADED
        assert len(response.results) == 1


class TestEndToEnd:
    """Search over a real local index."""

    async def test_search_sample_workspace(self, settings, workspace):
        index = LocalIndexService(settings)
        await index.build_full_index(workspace)
        service = SemanticSearchService(index, settings)

        response = await service.search("navigation", workspace)

        assert response.state is IndexState.READY
        assert response.backend == "local"
        top = response.results[0]
        assert top.uri == path_to_uri(workspace / "src" / "nav.py")
        assert Provenance.LEXICAL in top.provenance
        assert "render_navigation" in top.snippet
        assert response.to_dict()["results"][0]["uri"] == top.uri
        await index.close()

    async def test_search_before_indexing(self, settings, workspace):
        index = LocalIndexService(settings)
        response = await SemanticSearchService(index, settings).search("x", workspace)
        assert response.state is IndexState.UNINITIALIZED
        await index.close()

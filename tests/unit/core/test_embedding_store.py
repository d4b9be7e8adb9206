"""Tests for cosine nearest-neighbour search."""

import numpy as np
import pytest

from hybrid_code_search.core.database import WorkspaceDatabase
from hybrid_code_search.core.embedding_store import EmbeddingStore
from hybrid_code_search.core.exceptions import SearchError
from hybrid_code_search.core.models import EmbeddingRecord


def record(chunk_id: str, vector, chunk_hash: str | None = None) -> EmbeddingRecord:
    return EmbeddingRecord(
        chunk_id=chunk_id,
        uri=f"file:///repo/{chunk_id.split('::')[0]}.py",
        embedding=np.asarray(vector, dtype=np.float32),
        language_id="python",
        chunk_hash=chunk_hash,
        model="hash-256",
    )


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    """Run each test against the in-memory and the database-backed store."""
    if request.param == "memory":
        yield EmbeddingStore()
        return
    db = WorkspaceDatabase(tmp_path / "index.db")
    db.open()
    yield EmbeddingStore(db, page_size=1)
    db.close()


class TestGetNearest:
    """Exact cosine ranking."""

    def test_identical_vectors(self, store):
        store.store_embeddings(
            [record("a::1-2", [0.2, 0.4, 0.6]), record("b::1-2", [0.2, 0.4, 0.6])]
        )

        top = store.get_nearest(np.array([0.2, 0.4, 0.6]), k=1)
        assert len(top) == 1
        assert top[0].score == pytest.approx(1.0)

        both = store.get_nearest(np.array([0.2, 0.4, 0.6]), k=2)
        assert [h.chunk_id for h in both] == ["a::1-2", "b::1-2"]
        assert both[0].score == pytest.approx(both[1].score)

    def test_orders_by_similarity(self, store):
        store.store_embeddings(
            [
                record("far::1", [0.0, 1.0]),
                record("near::1", [1.0, 0.1]),
                record("opposite::1", [-1.0, 0.0]),
            ]
        )

        hits = store.get_nearest(np.array([1.0, 0.0]), k=3)

        assert [h.chunk_id for h in hits] == ["near::1", "far::1", "opposite::1"]
        assert hits[-1].score == pytest.approx(-1.0)
        assert all(-1.0 <= h.score <= 1.0 for h in hits)

    def test_offset_and_bounds(self, store):
        store.store_embeddings([record(f"c{i}::1", [1.0, float(i)]) for i in range(4)])

        all_hits = store.get_nearest(np.array([1.0, 0.0]), k=4)
        page = store.get_nearest(np.array([1.0, 0.0]), k=2, offset=1)

        assert [h.chunk_id for h in page] == [h.chunk_id for h in all_hits[1:3]]
        assert store.get_nearest(np.array([1.0, 0.0]), k=0) == []
        assert len(store.get_nearest(np.array([1.0, 0.0]), k=10)) == 4

    def test_zero_vectors_score_zero(self, store):
        store.store_embeddings([record("zero::1", [0.0, 0.0])])
        hits = store.get_nearest(np.array([1.0, 0.0]), k=1)
        assert hits[0].score == 0.0

    def test_other_dimensions_are_skipped(self, store):
        store.store_embeddings(
            [record("two::1", [1.0, 0.0]), record("three::1", [1.0, 0.0, 0.0])]
        )
        hits = store.get_nearest(np.array([1.0, 0.0, 0.0]), k=5)
        assert [h.chunk_id for h in hits] == ["three::1"]

    def test_empty_store(self, store):
        assert store.get_nearest(np.array([1.0, 0.0]), k=3) == []

    def test_rejects_matrix_query(self, store):
        with pytest.raises(SearchError):
            store.get_nearest(np.ones((2, 2)), k=1)


class TestRecords:
    """Insertion, replacement and removal."""

    def test_replace_keeps_one_record(self, store):
        store.store_embeddings([record("a::1", [1.0, 0.0])])
        store.store_embeddings([record("a::1", [0.0, 1.0])])

        assert store.count() == 1
        hits = store.get_nearest(np.array([0.0, 1.0]), k=1)
        assert hits[0].score == pytest.approx(1.0)

    def test_remove_for_uri(self, store):
        store.store_embeddings([record("a::1", [1.0, 0.0]), record("b::1", [1.0, 0.0])])
        store.remove_embeddings_for_uri("file:///repo/a.py")
        assert [h.chunk_id for h in store.get_nearest(np.array([1.0, 0.0]), k=5)] == [
            "b::1"
        ]

    def test_get_by_hash(self, store):
        store.store_embeddings([record("a::1", [1.0, 2.0], chunk_hash="h")])

        matches = store.get_by_hash("h")

        assert [m.chunk_id for m in matches] == ["a::1"]
        np.testing.assert_allclose(matches[0].embedding, [1.0, 2.0])
        assert matches[0].model == "hash-256"
        assert store.get_by_hash("missing") == []

    def test_stats(self, store):
        store.store_embeddings([record("a::1", [1.0, 2.0, 3.0])])
        stats = store.get_stats()
        assert stats["embeddings"] == 1
        assert stats["dimension"] == 3
        assert stats["model"] == "hash-256"


def test_page_size_must_be_positive():
    with pytest.raises(ValueError):
        EmbeddingStore(page_size=0)

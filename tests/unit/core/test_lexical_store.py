"""Tests for the BM25 lexical shard store."""

import pytest

from hybrid_code_search.core.chunking import Chunker
from hybrid_code_search.core.database import WorkspaceDatabase
from hybrid_code_search.core.lexical_store import LexicalShardStore, tokenize
from hybrid_code_search.core.models import Chunk, Range


def make_chunk(uri: str, content: str, ordinal: int = 0) -> Chunk:
    lines = content.split("\n")
    return Chunk(
        id=f"{uri}::chunk::{ordinal}",
        uri=uri,
        content=content,
        language_id="plaintext",
        range=Range.from_lines(1, 1, len(lines), len(lines[-1]) + 1),
    )


@pytest.fixture
def store():
    return LexicalShardStore()


class TestTokenize:
    """Lowercase, split on non-identifier characters, keep stopwords."""

    def test_splits_and_lowercases(self):
        assert tokenize("getUser(id) -> self.user_id") == [
            "getuser",
            "id",
            "self",
            "user_id",
        ]

    def test_keeps_short_keywords(self):
        assert tokenize("if get") == ["if", "get"]

    def test_empty(self):
        assert tokenize("  ---  ") == []


class TestSearch:
    """End-to-end keyword queries."""

    def test_single_file_single_hit(self, store):
        content = "\n".join(
            ["import os", "", "def main():", "    pass"]
            + ["# filler"] * 5
            + ["# the navigation entry point"]
        )
        uri = "file:///repo/main.py"
        store.index_document(uri, "python", Chunker().chunk_by_lines(uri, "python", content))

        hits = store.search_lexical("navigation", max_results=10)

        assert len(hits) == 1
        assert hits[0].uri == uri
        assert hits[0].score > 0
        assert hits[0].snippet.startswith("import os")

    def test_more_occurrences_rank_first(self, store):
        heavy = "file:///repo/heavy.ts"
        light = "file:///repo/light.ts"
        store.index_document(
            heavy,
            "typescript",
            [make_chunk(heavy, "header navigation header navigation header navigation")],
        )
        store.index_document(
            light,
            "typescript",
            [make_chunk(light, "header navigation plus some unrelated footer text")],
        )

        hits = store.search_lexical("navigation header", max_results=10)

        assert [h.uri for h in hits] == [heavy, light]
        assert hits[0].score > hits[1].score

    def test_unknown_terms_are_no_hits(self, store):
        uri = "file:///repo/a.py"
        store.index_document(uri, "python", [make_chunk(uri, "alpha beta")])
        assert store.search_lexical("gamma", max_results=5) == []
        assert store.search_lexical("", max_results=5) == []

    def test_empty_store(self, store):
        assert store.search_lexical("anything", max_results=5) == []

    def test_max_results_truncates(self, store):
        for i in range(5):
            uri = f"file:///repo/f{i}.py"
            store.index_document(uri, "python", [make_chunk(uri, "shared token")])
        assert len(store.search_lexical("shared", max_results=3)) == 3

    def test_ties_break_by_chunk_id(self, store):
        for name in ("b", "a", "c"):
            uri = f"file:///repo/{name}.py"
            store.index_document(uri, "python", [make_chunk(uri, "same words here")])
        hits = store.search_lexical("same", max_results=10)
        assert [h.chunk_id for h in hits] == sorted(h.chunk_id for h in hits)


class TestIndexingProperties:
    """Idempotence, monotonicity and removal."""

    def test_reindex_does_not_inflate_scores(self, store):
        uri = "file:///repo/a.py"
        chunks = [make_chunk(uri, "retry backoff retry")]
        other = "file:///repo/b.py"
        store.index_document(other, "python", [make_chunk(other, "unrelated text")])
        store.index_document(uri, "python", chunks)
        before = store.search_lexical("retry backoff", max_results=10)

        store.index_document(uri, "python", chunks)
        after = store.search_lexical("retry backoff", max_results=10)

        assert [(h.chunk_id, h.score) for h in before] == [
            (h.chunk_id, h.score) for h in after
        ]
        assert store.doc_count == 2

    def test_extra_occurrence_never_lowers_score(self):
        previous = 0.0
        for occurrences in range(1, 6):
            store = LexicalShardStore()
            target = "file:///repo/target.py"
            other = "file:///repo/other.py"
            store.index_document(
                target,
                "python",
                [make_chunk(target, " ".join(["cache"] * occurrences + ["misc", "words"]))],
            )
            store.index_document(other, "python", [make_chunk(other, "cache layer misc")])
            score = next(
                h.score for h in store.search_lexical("cache", 10) if h.uri == target
            )
            assert score >= previous
            previous = score

    def test_remove_document(self, store):
        keep = "file:///repo/keep.py"
        drop = "file:///repo/drop.py"
        store.index_document(keep, "python", [make_chunk(keep, "parser tokens")])
        store.index_document(drop, "python", [make_chunk(drop, "parser grammar")])
        count = store.doc_count

        assert store.remove_document(drop) is True

        assert store.doc_count == count - 1
        assert all(h.uri != drop for h in store.search_lexical("parser grammar", 10))
        assert store.get_chunk(f"{drop}::chunk::0") is None

    def test_remove_missing_document_is_not_an_error(self, store):
        assert store.remove_document("file:///repo/missing.py") is False

    def test_clear(self, store):
        uri = "file:///repo/a.py"
        store.index_document(uri, "python", [make_chunk(uri, "alpha")])
        store.clear()
        assert store.doc_count == 0
        assert store.total_doc_length == 0
        assert store.search_lexical("alpha", 5) == []


class TestPersistence:
    """The database mirror rehydrates an identical index."""

    def test_load_from_database(self, tmp_path):
        db = WorkspaceDatabase(tmp_path / "index.db")
        db.open()
        store = LexicalShardStore(db)
        uri = "file:///repo/nav.ts"
        store.index_document(
            uri,
            "typescript",
            [make_chunk(uri, "navigation header", 0), make_chunk(uri, "footer", 1)],
        )
        expected = store.search_lexical("navigation", 5)
        db.close()

        db = WorkspaceDatabase(tmp_path / "index.db")
        db.open()
        reloaded = LexicalShardStore(db)

        assert reloaded.load() == 1
        assert reloaded.chunk_count == 2
        assert reloaded.total_doc_length == store.total_doc_length
        hits = reloaded.search_lexical("navigation", 5)
        assert [(h.chunk_id, h.score, h.range) for h in hits] == [
            (h.chunk_id, h.score, h.range) for h in expected
        ]
        db.close()

    def test_removal_is_persisted(self, tmp_path):
        db = WorkspaceDatabase(tmp_path / "index.db")
        db.open()
        store = LexicalShardStore(db)
        uri = "file:///repo/a.py"
        store.index_document(uri, "python", [make_chunk(uri, "alpha")])
        store.remove_document(uri)

        reloaded = LexicalShardStore(db)
        assert reloaded.load() == 0
        assert db.list_chunks() == []
        db.close()

    def test_stats(self, store):
        uri = "file:///repo/a.py"
        store.index_document(uri, "python", [make_chunk(uri, "alpha beta alpha")])
        assert store.get_stats() == {
            "documents": 1,
            "chunks": 1,
            "terms": 2,
            "total_doc_length": 3,
        }

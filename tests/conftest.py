"""Shared fixtures for hybrid-code-search tests."""

from pathlib import Path

import pytest

from hybrid_code_search.config.settings import (
    EmbeddingRuntime,
    IndexBackend,
    IndexingSettings,
)

NAV_SOURCE = '''def render_navigation(items):
    """Build the navigation bar."""
    return [item.title for item in items]


class Header:
    def __init__(self, title):
        self.title = title
'''

UTILS_SOURCE = """export function parseConfig(raw: string) {
  return JSON.parse(raw);
}

export const formatDate = (d: Date) => d.toISOString();
"""

NOTES_SOURCE = "retry budget notes\nbackoff doubles every attempt\n"


@pytest.fixture
def settings(tmp_path: Path) -> IndexingSettings:
    """Local backend, hash embeddings, everything under tmp_path."""
    return IndexingSettings(
        _env_file=None,
        backend=IndexBackend.LOCAL,
        embedding_runtime=EmbeddingRuntime.HASH,
        embedding_api_key=None,
        index_dir=tmp_path / "indexes",
        cache_dir=None,
        max_concurrent_jobs=2,
        index_batch_size=5,
    )


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Small multi-language workspace."""
    root = tmp_path / "workspace"
    (root / "src").mkdir(parents=True)
    (root / "src" / "nav.py").write_text(NAV_SOURCE)
    (root / "src" / "utils.ts").write_text(UTILS_SOURCE)
    (root / "docs").mkdir()
    (root / "docs" / "notes.txt").write_text(NOTES_SOURCE)
    (root / "node_modules" / "lib").mkdir(parents=True)
    (root / "node_modules" / "lib" / "index.js").write_text("function ignored() {}\n")
    return root

"""Tests for workspace file discovery."""

from pathlib import Path

import pytest

from hybrid_code_search.core.cancellation import CancellationToken
from hybrid_code_search.core.exceptions import (
    FILE_NOT_FOUND,
    PATH_OUTSIDE_WORKSPACE,
    ErrorInfo,
    OperationCancelledError,
)
from hybrid_code_search.core.file_discovery import (
    FileDiscovery,
    path_to_uri,
    uri_to_path,
)


@pytest.fixture
def discovery(workspace):
    return FileDiscovery(workspace)


class TestFindIndexableFiles:
    def test_walk_order_and_ignores(self, discovery, workspace):
        files = discovery.find_indexable_files()
        assert files == [
            workspace / "docs" / "notes.txt",
            workspace / "src" / "nav.py",
            workspace / "src" / "utils.ts",
        ]

    def test_extension_filter(self, workspace):
        files = FileDiscovery(workspace, file_extensions=[".py"]).find_indexable_files()
        assert files == [workspace / "src" / "nav.py"]

    def test_size_limit(self, workspace):
        (workspace / "src" / "big.py").write_text("x = 1\n" * 100)
        files = FileDiscovery(workspace, max_file_size=200).find_indexable_files()
        assert workspace / "src" / "big.py" not in files

    def test_cancellation(self, discovery):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(OperationCancelledError):
            discovery.find_indexable_files(token)

    async def test_async_variant(self, discovery):
        assert len(await discovery.find_indexable_files_async()) == 3


class TestCandidates:
    def test_deleted_path_is_candidate(self, discovery, workspace):
        assert discovery.is_candidate(workspace / "src" / "gone.py")
        assert not discovery.should_index_file(workspace / "src" / "gone.py")

    def test_ignored_and_outside_paths(self, discovery, workspace, tmp_path):
        assert not discovery.is_candidate(workspace / "node_modules" / "lib" / "index.js")
        assert not discovery.is_candidate(tmp_path / "other.py")
        assert not discovery.is_candidate(workspace / "logo.png")


class TestResolve:
    def test_relative_and_uri(self, discovery, workspace):
        nav = workspace / "src" / "nav.py"
        assert discovery.resolve("src/nav.py") == nav
        assert discovery.resolve(path_to_uri(nav)) == nav
        assert discovery.resolve(nav) == nav

    def test_escape_is_error_info(self, discovery):
        result = discovery.resolve("../outside.py")
        assert isinstance(result, ErrorInfo)
        assert result.code == PATH_OUTSIDE_WORKSPACE

    def test_missing_file_error(self, workspace):
        info = FileDiscovery.missing_file_error(workspace / "x.py")
        assert info.code == FILE_NOT_FOUND
        assert info.details == {"path": str(workspace / "x.py")}

    def test_relative_path_and_language(self, discovery, workspace):
        assert discovery.relative_path(workspace / "src" / "nav.py") == "src/nav.py"
        assert FileDiscovery.language_for(Path("a.tsx")) == "tsx"


def test_uri_roundtrip(tmp_path):
    path = tmp_path / "dir with space" / "a.py"
    assert uri_to_path(path_to_uri(path)) == path

"""Tests for the hybrid-search command line interface."""

import sys

import orjson
import pytest
from loguru import logger
from typer.testing import CliRunner

from hybrid_code_search import __version__
from hybrid_code_search.cli.main import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_env(monkeypatch, tmp_path):
    """Hash embeddings and a throwaway index directory for every command."""
    for key in (
        "HYBRID_SEARCH_EMBEDDING_API_KEY",
        "HYBRID_SEARCH_CLOUD_API_KEY",
        "HYBRID_SEARCH_BACKEND",
        "HYBRID_SEARCH_INDEXING_ENABLED",
        "HYBRID_SEARCH_SEMANTIC_SEARCH_ENABLED",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("HYBRID_SEARCH_INDEX_DIR", str(tmp_path / "indexes"))
    monkeypatch.setenv("HYBRID_SEARCH_EMBEDDING_RUNTIME", "hash")
    monkeypatch.chdir(tmp_path)
    yield
    # the CLI callback rebinds loguru to the runner's stderr
    logger.remove()
    logger.add(sys.stderr)


def invoke(*args: str):
    return runner.invoke(app, list(args))


class TestVersionAndHelp:
    def test_version(self):
        result = invoke("--version")
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_help_lists_commands(self):
        result = invoke("--help")
        assert result.exit_code == 0
        for command in ("index", "search", "status", "diagnostics", "delete", "watch"):
            assert command in result.stdout


class TestIndexAndSearch:
    """Full command flow over the sample workspace."""

    def test_index_then_search_json(self, workspace):
        indexed = invoke("index", str(workspace))
        assert indexed.exit_code == 0, indexed.output
        assert "Indexed 3 files" in indexed.stdout

        searched = invoke("search", "navigation", "--path", str(workspace), "--json")
        assert searched.exit_code == 0, searched.output
        payload = orjson.loads(searched.stdout)
        assert payload["state"] == "ready"
        assert payload["backend"] == "local"
        assert payload["results"][0]["uri"].endswith("src/nav.py")
        assert "lexical" in payload["results"][0]["provenance"]

    def test_search_renders_panels(self, workspace):
        invoke("index", str(workspace))
        result = invoke("search", "parseConfig", "-p", str(workspace), "-n", "2")
        assert result.exit_code == 0
        assert "src/utils.ts" in result.stdout

    def test_search_without_index(self, workspace):
        result = invoke("search", "anything", "--path", str(workspace))
        assert result.exit_code == 0
        assert "No index" in result.stdout

    def test_rebuild(self, workspace):
        invoke("index", str(workspace))
        result = invoke("index", str(workspace), "--rebuild")
        assert result.exit_code == 0
        assert "Indexed 3 files" in result.stdout

    def test_missing_workspace_fails(self, tmp_path):
        result = invoke("index", str(tmp_path / "missing"))
        assert result.exit_code == 1
        assert "error" in result.stdout

    def test_refresh(self, workspace):
        invoke("index", str(workspace))
        (workspace / "src" / "nav.py").write_text("def sidebar_menu():\n    pass\n")

        result = invoke("refresh", str(workspace), str(workspace / "src" / "nav.py"))

        assert result.exit_code == 0
        searched = invoke("search", "sidebar_menu", "-p", str(workspace), "--json")
        assert orjson.loads(searched.stdout)["results"]


class TestStatusAndDiagnostics:
    def test_status_json(self, workspace):
        invoke("index", str(workspace))
        result = invoke("status", str(workspace), "--json")
        assert result.exit_code == 0
        status = orjson.loads(result.stdout)
        assert status["state"] == "ready"
        assert status["indexed_files"] == 3

    def test_status_table(self, workspace):
        result = invoke("status", str(workspace))
        assert result.exit_code == 0
        assert "uninitialized" in result.stdout

    def test_diagnostics_json(self, workspace):
        invoke("index", str(workspace))
        result = invoke("diagnostics", str(workspace), "--json")
        diagnostics = orjson.loads(result.stdout)
        assert diagnostics["documents"] == 3
        assert diagnostics["chunks"] == 5
        assert diagnostics["backend"] == "local"


class TestDelete:
    def test_delete_with_yes(self, workspace, tmp_path):
        invoke("index", str(workspace))
        result = invoke("delete", str(workspace), "--yes")
        assert result.exit_code == 0
        assert "Deleted index" in result.stdout

        status = orjson.loads(invoke("status", str(workspace), "--json").stdout)
        assert status["state"] == "uninitialized"

    def test_delete_aborted(self, workspace):
        result = runner.invoke(app, ["delete", str(workspace)], input="n\n")
        assert result.exit_code == 0
        assert "Aborted" in result.stdout


class TestConfigErrors:
    def test_invalid_environment(self, monkeypatch, workspace):
        monkeypatch.setenv("HYBRID_SEARCH_MAX_CONCURRENT_JOBS", "0")
        result = invoke("status", str(workspace))
        assert result.exit_code == 1
        assert "Status failed" in result.stdout

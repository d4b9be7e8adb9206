"""Tests for namespace derivation."""

from pathlib import Path

from hybrid_code_search.core import namespace as ns


class TestUserId:
    def test_account_id_wins(self):
        assert ns.user_id("acct-42") == "acct-42"

    def test_machine_id_is_stable(self, monkeypatch):
        monkeypatch.setenv("HOME", "/home/dev")
        first = ns.user_id()
        assert first == ns.user_id()
        assert len(first) == ns.HASH_LENGTH

    def test_machine_id_depends_on_home(self, monkeypatch):
        monkeypatch.setenv("HOME", "/home/a")
        a = ns.user_id()
        monkeypatch.setenv("HOME", "/home/b")
        assert ns.user_id() != a


class TestWorkspaceHash:
    def test_equal_paths_hash_equal(self, tmp_path):
        assert ns.workspace_hash(tmp_path) == ns.workspace_hash(str(tmp_path))

    def test_moving_a_workspace_changes_hash(self, tmp_path):
        assert ns.workspace_hash(tmp_path / "a") != ns.workspace_hash(tmp_path / "b")

    def test_relative_paths_are_made_absolute(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert ns.workspace_hash("proj") == ns.workspace_hash(tmp_path / "proj")


class TestNamespace:
    def test_format(self, tmp_path):
        value = ns.namespace("user1", tmp_path)
        assert value == f"user1::{ns.workspace_hash(tmp_path)}"

    def test_vector_id(self, tmp_path):
        vid = ns.vector_id(tmp_path, Path("src/app.py"), 3)
        assert vid == f"{ns.workspace_hash(tmp_path)}::src::app.py::chunk-3"

    def test_vector_id_normalises_separators(self, tmp_path):
        assert ns.vector_id(tmp_path, "src\\app.py", 0) == ns.vector_id(
            tmp_path, "src/app.py", 0
        )

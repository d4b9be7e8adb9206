"""Stable partition keys for a shared multi-tenant vector backend.

All functions are pure: a namespace is recomputed from (user, workspace
path) whenever it is needed and never stored. Moving a workspace changes
its hash, so vectors written under the old path are orphaned rather than
migrated.
"""

import hashlib
import os
from pathlib import Path

HASH_LENGTH = 16
DEFAULT_USER_SEED = "default-user"


def _short_hash(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def user_id(account_id: str | None = None) -> str:
    """Identifier of the current user.

    An external account id (signed-in identity) takes precedence; otherwise
    a stable machine-local id is derived from the home directory.
    """
    if account_id:
        return account_id
    home = os.environ.get("HOME") or os.environ.get("USERPROFILE") or DEFAULT_USER_SEED
    return _short_hash(home)


def workspace_hash(path: str | Path) -> str:
    """Hash of the absolute workspace path."""
    return _short_hash(str(Path(path).expanduser().absolute()))


def namespace(user: str, path: str | Path) -> str:
    return f"{user}::{workspace_hash(path)}"


def vector_id(workspace_path: str | Path, file_path: str | Path, chunk_index: int) -> str:
    """Globally unique id for one chunk vector in the shared backend."""
    relative = str(file_path).replace("\\", "/").lstrip("/").replace("/", "::")
    return f"{workspace_hash(workspace_path)}::{relative}::chunk-{chunk_index}"

"""File discovery and filtering for workspace indexing."""

import asyncio
import fnmatch
import os
import re
from pathlib import Path
from urllib.parse import unquote, urlparse

from loguru import logger

from ..config.defaults import (
    DEFAULT_FILE_EXTENSIONS,
    DEFAULT_IGNORE_PATTERNS,
    MAX_FILE_SIZE,
    get_language_from_extension,
)
from .cancellation import CancellationToken
from .exceptions import FILE_NOT_FOUND, PATH_OUTSIDE_WORKSPACE, ErrorInfo


def path_to_uri(path: Path) -> str:
    return path.absolute().as_uri()


def uri_to_path(uri: str) -> Path:
    """Convert a ``file://`` uri (or a plain path) to a Path."""
    if uri.startswith("file://"):
        return Path(unquote(urlparse(uri).path))
    return Path(uri)


class FileDiscovery:
    """Finds the files of a workspace that should be indexed.

    Handles extension filtering, ignore patterns and size limits, and
    resolves caller-supplied paths against the workspace root.
    """

    def __init__(
        self,
        workspace_root: Path,
        file_extensions: list[str] | None = None,
        ignore_patterns: list[str] | None = None,
        max_file_size: int = MAX_FILE_SIZE,
    ) -> None:
        """Initialize file discovery.

        Args:
            workspace_root: Workspace root directory
            file_extensions: Extensions to index (e.g., ['.py', '.ts'])
            ignore_patterns: fnmatch patterns matched against path components
            max_file_size: Files larger than this many bytes are skipped
        """
        self.workspace_root = workspace_root.expanduser().absolute()
        self.file_extensions = {
            ext.lower() for ext in (file_extensions or DEFAULT_FILE_EXTENSIONS)
        }
        self.max_file_size = max_file_size

        # Pre-compile ignore patterns once instead of calling fnmatch per path part
        self._compiled_patterns = [
            re.compile(fnmatch.translate(pattern))
            for pattern in (ignore_patterns or DEFAULT_IGNORE_PATTERNS)
        ]

    def _is_ignored_part(self, part: str) -> bool:
        return any(pattern.match(part) for pattern in self._compiled_patterns)

    def should_ignore_path(self, path: Path) -> bool:
        try:
            relative = path.absolute().relative_to(self.workspace_root)
        except ValueError:
            return True
        return any(self._is_ignored_part(part) for part in relative.parts)

    def is_candidate(self, path: Path) -> bool:
        """Extension and ignore-pattern check only; works for deleted paths."""
        if path.suffix.lower() not in self.file_extensions:
            return False
        return not self.should_ignore_path(path)

    def should_index_file(self, path: Path) -> bool:
        if not self.is_candidate(path):
            return False
        try:
            if path.stat().st_size > self.max_file_size:
                logger.debug(f"Skipping large file {path}")
                return False
        except OSError:
            return False
        return True

    def find_indexable_files(
        self, cancel_token: CancellationToken | None = None
    ) -> list[Path]:
        """Walk the workspace and return indexable files in sorted order.

        Raises:
            OperationCancelledError: If cancelled via cancel_token
        """
        indexable: list[Path] = []
        for root, dirs, files in os.walk(self.workspace_root):
            if cancel_token:
                cancel_token.check()

            root_path = Path(root)
            # Prune ignored directories in place so os.walk never descends into them
            dirs[:] = sorted(d for d in dirs if not self._is_ignored_part(d))

            for filename in sorted(files):
                file_path = root_path / filename
                if self.should_index_file(file_path):
                    indexable.append(file_path)

        logger.debug(f"Found {len(indexable)} indexable files in {self.workspace_root}")
        return indexable

    async def find_indexable_files_async(
        self, cancel_token: CancellationToken | None = None
    ) -> list[Path]:
        """Run the filesystem scan in a worker thread."""
        return await asyncio.to_thread(self.find_indexable_files, cancel_token)

    def resolve(self, path_or_uri: str | Path) -> Path | ErrorInfo:
        """Resolve a caller path inside the workspace.

        Returns:
            Absolute path, or an ErrorInfo when the path escapes the workspace
        """
        raw = uri_to_path(path_or_uri) if isinstance(path_or_uri, str) else path_or_uri
        path = raw if raw.is_absolute() else self.workspace_root / raw
        path = Path(os.path.normpath(path))
        try:
            path.relative_to(self.workspace_root)
        except ValueError:
            return ErrorInfo(
                code=PATH_OUTSIDE_WORKSPACE,
                message=f"Path is outside the workspace: {path}",
                details={"path": str(path), "workspace": str(self.workspace_root)},
            )
        return path

    @staticmethod
    def missing_file_error(path: Path) -> ErrorInfo:
        return ErrorInfo(
            code=FILE_NOT_FOUND,
            message=f"File not found: {path}",
            details={"path": str(path)},
        )

    def relative_path(self, path: Path) -> str:
        return path.absolute().relative_to(self.workspace_root).as_posix()

    @staticmethod
    def language_for(path: Path) -> str | None:
        return get_language_from_extension(path.suffix)

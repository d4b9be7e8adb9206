"""Local index orchestrator.

Owns the per-workspace lifecycle state machine and drives indexing:
files → chunker → lexical store + embedding gateway → embedding store.

State transitions::

    uninitialized/idle ──build──▶ building ──▶ ready
                       ──refresh─▶ indexing ──▶ ready | stale
    any ──embedding failure / fallback / newer schema──▶ degraded
    any ──unrecoverable failure──▶ error

``paused`` is orthogonal to state: in-flight file jobs finish, new ones
wait until :meth:`LocalIndexService.resume`.
"""

import asyncio
import shutil
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Protocol

import numpy as np
from loguru import logger

from ..config.settings import IndexingSettings
from .cancellation import CancellationToken, wait_unless_cancelled
from .chunking import Chunker, compute_content_hash
from .database import DB_FILENAME, WorkspaceDatabase
from .embedding_store import EmbeddingStore
from .embeddings import EmbeddingCache, EmbeddingGateway, create_embedding_gateway
from .exceptions import (
    EMBEDDING_FAILED,
    FILE_UNREADABLE,
    DatabaseError,
    EmbeddingError,
    ErrorInfo,
    HybridSearchError,
    IndexingError,
    OperationCancelledError,
)
from .file_discovery import FileDiscovery, path_to_uri
from .lexical_store import LexicalShardStore
from .locks import AsyncReadWriteLock
from .models import (
    Chunk,
    EmbeddingRecord,
    IndexDiagnostics,
    IndexOperationResult,
    IndexState,
    IndexStatus,
    InputType,
    LexicalHit,
    VectorHit,
    utc_now,
)
from .namespace import workspace_hash

StatusListener = Callable[[IndexStatus], None]
GatewayFactory = Callable[[IndexingSettings, EmbeddingCache], EmbeddingGateway]

META_LAST_INDEXED = "last_indexed_time"
META_EMBEDDING_MODEL = "embedding_model"


class IndexService(Protocol):
    """Contract shared by the local, cloud and composite index services."""

    backend_name: str

    async def build_full_index(
        self, workspace: Path, cancellation: CancellationToken | None = None
    ) -> IndexOperationResult: ...

    async def refresh_paths(
        self,
        workspace: Path,
        uris: list[str | Path],
        cancellation: CancellationToken | None = None,
    ) -> IndexOperationResult: ...

    async def index_saved_files(
        self, workspace: Path, uris: list[str | Path]
    ) -> IndexOperationResult: ...

    async def pause(self, workspace: Path, reason: str | None = None) -> IndexStatus: ...

    async def resume(self, workspace: Path) -> IndexStatus: ...

    async def rebuild_workspace_index(
        self, workspace: Path, cancellation: CancellationToken | None = None
    ) -> IndexOperationResult: ...

    async def delete_index(self, workspace: Path) -> None: ...

    async def get_status(self, workspace: Path) -> IndexStatus: ...

    async def get_diagnostics(self, workspace: Path) -> IndexDiagnostics: ...

    async def search_lexical(
        self, workspace: Path, query: str, max_results: int
    ) -> list[LexicalHit]: ...

    async def search_vectors(
        self, workspace: Path, query_vector: np.ndarray, k: int
    ) -> list[VectorHit]: ...

    async def embed_query(self, workspace: Path, text: str) -> np.ndarray: ...

    async def get_chunks(
        self, workspace: Path, chunk_ids: list[str]
    ) -> dict[str, Chunk]: ...

    async def close(self) -> None: ...


class _Outcome(str, Enum):
    INDEXED = "indexed"
    SKIPPED = "skipped"
    REMOVED = "removed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class _FileResult:
    outcome: _Outcome
    chunks: int = 0
    error: ErrorInfo | None = None
    embedding_error: str | None = None


@dataclass
class _Workspace:
    """Everything the orchestrator owns for one workspace."""

    root: Path
    key: str
    database: WorkspaceDatabase
    lexical: LexicalShardStore
    vectors: EmbeddingStore
    gateway: EmbeddingGateway
    cache: EmbeddingCache
    discovery: FileDiscovery
    status: IndexStatus
    lock: AsyncReadWriteLock = field(default_factory=AsyncReadWriteLock)
    resume_event: asyncio.Event = field(default_factory=asyncio.Event)


class LocalIndexService:
    """In-process index backed by a SQLite database per workspace."""

    backend_name = "local"

    def __init__(
        self,
        settings: IndexingSettings,
        gateway_factory: GatewayFactory | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            settings: Indexing configuration
            gateway_factory: Builds the embedding gateway for a workspace;
                defaults to :func:`create_embedding_gateway`
        """
        self.settings = settings
        self.chunker = Chunker(settings.chunk_size_lines)
        self._gateway_factory = gateway_factory or (
            lambda s, cache: create_embedding_gateway(s, cache=cache)
        )
        self._workspaces: dict[str, _Workspace] = {}
        self._listeners: list[StatusListener] = []

    # ── workspace lifecycle ─────────────────────────────────────────────

    def on_status_changed(self, listener: StatusListener) -> None:
        """Register a callback receiving a snapshot after every status change."""
        self._listeners.append(listener)

    def _emit(self, ws: _Workspace) -> None:
        snapshot = replace(ws.status)
        for listener in self._listeners:
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Status listener failed: {e}")

    def _set_state(self, ws: _Workspace, state: IndexState) -> None:
        if ws.status.state is not state:
            logger.info(f"Index {ws.root}: {ws.status.state.value} -> {state.value}")
        ws.status.state = state
        self._emit(ws)

    def _workspace_dir(self, key: str) -> Path:
        return self.settings.index_dir / key

    def _get_workspace(self, workspace: Path) -> _Workspace:
        root = workspace.expanduser().absolute()
        key = workspace_hash(root)
        ws = self._workspaces.get(key)
        if ws is not None:
            return ws

        database = WorkspaceDatabase(self._workspace_dir(key) / DB_FILENAME)
        database.open()
        cache = EmbeddingCache(
            cache_dir=self.settings.cache_dir / key if self.settings.cache_dir else None,
            max_size=self.settings.cache_max_size,
        )
        ws = _Workspace(
            root=root,
            key=key,
            database=database,
            lexical=LexicalShardStore(database),
            vectors=EmbeddingStore(database, page_size=self.settings.vector_page_size),
            gateway=self._gateway_factory(self.settings, cache),
            cache=cache,
            discovery=FileDiscovery(
                root,
                file_extensions=self.settings.file_extensions,
                ignore_patterns=self.settings.ignore_patterns,
            ),
            status=IndexStatus(workspace=str(root)),
        )
        ws.resume_event.set()
        self._workspaces[key] = ws
        self._restore_status(ws)
        return ws

    def _restore_status(self, ws: _Workspace) -> None:
        """Pick up a previously persisted index."""
        loaded = ws.lexical.load()
        if loaded:
            self._refresh_counts(ws)
            ws.status.total_files = ws.status.indexed_files
            ws.status.state = IndexState.READY
            try:
                ws.status.embedding_model = ws.database.get_meta(META_EMBEDDING_MODEL)
                last = ws.database.get_meta(META_LAST_INDEXED)
            except (DatabaseError, sqlite3.Error) as e:
                logger.warning(f"Could not read index metadata for {ws.root}: {e}")
                last = None
            if last:
                ws.status.last_indexed_time = datetime.fromisoformat(last)
            logger.info(f"Loaded existing index for {ws.root} ({loaded} documents)")

        if ws.database.read_only:
            ws.status.state = IndexState.DEGRADED
            ws.status.degraded_reason = (
                f"Index schema {ws.database.schema_version} is newer than this "
                "version supports; index is read-only"
            )

    def _refresh_counts(self, ws: _Workspace) -> None:
        ws.status.indexed_files = ws.lexical.doc_count
        ws.status.total_chunks = ws.lexical.chunk_count
        try:
            ws.status.embedded_chunks = ws.vectors.count()
        except (DatabaseError, sqlite3.Error) as e:
            logger.warning(f"Could not count embeddings for {ws.root}: {e}")

    def _disabled_result(self, workspace: Path) -> IndexOperationResult:
        logger.debug(f"Indexing disabled; ignoring request for {workspace}")
        return IndexOperationResult(
            workspace=str(workspace), state=IndexState.UNINITIALIZED
        )

    def _read_only_result(self, ws: _Workspace) -> IndexOperationResult:
        logger.warning(f"Index for {ws.root} is read-only; skipping write")
        return IndexOperationResult(
            workspace=str(ws.root),
            state=ws.status.state,
            errors=[
                ErrorInfo(
                    code="read_only_index",
                    message=ws.status.degraded_reason or "Index is read-only",
                    details={"schema_version": ws.database.schema_version},
                )
            ],
        )

    # ── control plane ───────────────────────────────────────────────────

    async def build_full_index(
        self, workspace: Path, cancellation: CancellationToken | None = None
    ) -> IndexOperationResult:
        """Discard the workspace's index and index every eligible file.

        Returns:
            Operation result; ``cancelled`` is set when the token fired,
            in which case files completed so far stay indexed
        """
        if not self.settings.indexing_enabled:
            return self._disabled_result(workspace)

        ws = self._get_workspace(workspace)
        if ws.database.read_only:
            return self._read_only_result(ws)

        ws.status.error_message = None
        ws.status.degraded_reason = None
        ws.status.indexed_files = 0
        ws.status.total_chunks = 0
        ws.status.embedded_chunks = 0
        self._set_state(ws, IndexState.BUILDING)

        try:
            if not ws.root.is_dir():
                raise IndexingError(f"Workspace folder not found: {ws.root}")
            files = await ws.discovery.find_indexable_files_async(cancellation)
            async with ws.lock.write():
                ws.lexical.clear()
                ws.vectors.clear()
            ws.status.total_files = len(files)
            self._emit(ws)
            logger.info(f"Building index for {ws.root}: {len(files)} files")

            result = await self._process_files(
                ws, files, cancellation, skip_unchanged=False
            )
        except OperationCancelledError:
            result = IndexOperationResult(
                workspace=str(ws.root), state=ws.status.state, cancelled=True
            )
        except (HybridSearchError, OSError, sqlite3.Error) as e:
            return self._fail(ws, e)

        return self._finish(ws, result)

    async def refresh_paths(
        self,
        workspace: Path,
        uris: list[str | Path],
        cancellation: CancellationToken | None = None,
    ) -> IndexOperationResult:
        """Re-index only ``uris``; deleted files are removed from the index."""
        if not self.settings.indexing_enabled:
            return self._disabled_result(workspace)

        ws = self._get_workspace(workspace)
        if ws.database.read_only:
            return self._read_only_result(ws)

        errors: list[ErrorInfo] = []
        paths: list[Path] = []
        for uri in uris:
            resolved = ws.discovery.resolve(uri)
            if isinstance(resolved, ErrorInfo):
                errors.append(resolved)
            else:
                paths.append(resolved)

        if not paths:
            return IndexOperationResult(
                workspace=str(ws.root),
                state=ws.status.state,
                files_failed=len(errors),
                errors=errors,
            )

        self._set_state(ws, IndexState.INDEXING)
        try:
            result = await self._process_files(
                ws, paths, cancellation, skip_unchanged=True
            )
        except (HybridSearchError, OSError, sqlite3.Error) as e:
            return self._fail(ws, e)

        result.errors = errors + result.errors
        result.files_failed += len(errors)
        ws.status.total_files = max(ws.status.total_files, ws.lexical.doc_count)
        return self._finish(ws, result)

    async def index_saved_files(
        self, workspace: Path, uris: list[str | Path]
    ) -> IndexOperationResult:
        return await self.refresh_paths(workspace, uris)

    async def pause(self, workspace: Path, reason: str | None = None) -> IndexStatus:
        ws = self._get_workspace(workspace)
        ws.resume_event.clear()
        ws.status.paused = True
        ws.status.paused_reason = reason
        logger.info(f"Paused indexing for {ws.root}" + (f": {reason}" if reason else ""))
        self._emit(ws)
        return replace(ws.status)

    async def resume(self, workspace: Path) -> IndexStatus:
        ws = self._get_workspace(workspace)
        ws.status.paused = False
        ws.status.paused_reason = None
        ws.resume_event.set()
        logger.info(f"Resumed indexing for {ws.root}")
        self._emit(ws)
        return replace(ws.status)

    async def rebuild_workspace_index(
        self, workspace: Path, cancellation: CancellationToken | None = None
    ) -> IndexOperationResult:
        await self.delete_index(workspace)
        return await self.build_full_index(workspace, cancellation)

    async def delete_index(self, workspace: Path) -> None:
        """Remove all index data for the workspace and forget its status."""
        root = workspace.expanduser().absolute()
        key = workspace_hash(root)
        ws = self._workspaces.pop(key, None)
        if ws is not None:
            async with ws.lock.write():
                ws.vectors.clear()
                ws.database.close()
            await ws.gateway.close()

        index_path = self._workspace_dir(key)
        if index_path.exists():
            shutil.rmtree(index_path)
        if self.settings.cache_dir is not None:
            shutil.rmtree(self.settings.cache_dir / key, ignore_errors=True)
        logger.info(f"Deleted index for {root}")

    def _fail(self, ws: _Workspace, error: Exception) -> IndexOperationResult:
        logger.error(f"Indexing failed for {ws.root}: {error}")
        ws.status.error_message = str(error)
        self._refresh_counts(ws)
        self._set_state(ws, IndexState.ERROR)
        return IndexOperationResult(
            workspace=str(ws.root),
            state=IndexState.ERROR,
            errors=[ErrorInfo(code="indexing_failed", message=str(error))],
        )

    def _finish(
        self, ws: _Workspace, result: IndexOperationResult
    ) -> IndexOperationResult:
        self._refresh_counts(ws)
        embedding_errors = [e for e in result.errors if e.code == EMBEDDING_FAILED]
        fallback_reason = ws.gateway.strategy.fallback_reason

        if result.cancelled:
            ws.status.error_message = "Indexing cancelled; index is incomplete"
            state = IndexState.STALE
        elif embedding_errors:
            ws.status.error_message = embedding_errors[-1].message
            ws.status.degraded_reason = (
                f"Embeddings failed for {len(embedding_errors)} files"
            )
            state = IndexState.DEGRADED
        elif fallback_reason:
            ws.status.degraded_reason = fallback_reason
            state = IndexState.DEGRADED
        elif result.files_failed and not result.files_processed:
            ws.status.error_message = result.errors[0].message if result.errors else None
            state = IndexState.ERROR if ws.lexical.doc_count == 0 else IndexState.STALE
        elif result.files_failed:
            state = IndexState.STALE
        else:
            ws.status.error_message = None
            state = IndexState.READY

        if result.files_processed or result.chunks_indexed:
            now = utc_now()
            ws.status.last_indexed_time = now
            self._write_meta(ws, META_LAST_INDEXED, now.isoformat())
            if self.settings.semantic_search_enabled:
                ws.status.embedding_model = ws.gateway.model_id
                self._write_meta(ws, META_EMBEDDING_MODEL, ws.gateway.model_id)

        result.state = state
        self._set_state(ws, state)
        logger.info(
            f"Indexed {result.files_processed} files ({result.chunks_indexed} chunks) "
            f"for {ws.root}; state={state.value}"
            + (" [cancelled]" if result.cancelled else "")
        )
        return result

    def _write_meta(self, ws: _Workspace, key: str, value: str) -> None:
        try:
            ws.database.set_meta(key, value)
        except (DatabaseError, sqlite3.Error) as e:
            logger.warning(f"Failed to persist {key} for {ws.root}: {e}")

    # ── per-file work ───────────────────────────────────────────────────

    async def _process_files(
        self,
        ws: _Workspace,
        paths: list[Path],
        cancellation: CancellationToken | None,
        skip_unchanged: bool,
    ) -> IndexOperationResult:
        semaphore = asyncio.Semaphore(self.settings.max_concurrent_jobs)
        result = IndexOperationResult(workspace=str(ws.root), state=ws.status.state)

        async def run(path: Path) -> _FileResult:
            # Paused workspaces let running jobs finish but start nothing new
            if not await wait_unless_cancelled(ws.resume_event, cancellation):
                return _FileResult(_Outcome.CANCELLED)
            async with semaphore:
                if not await wait_unless_cancelled(ws.resume_event, cancellation):
                    return _FileResult(_Outcome.CANCELLED)
                file_result = await self._index_file(ws, path, skip_unchanged)
            if file_result.outcome is _Outcome.INDEXED:
                ws.status.indexed_files = ws.lexical.doc_count
                ws.status.total_chunks = ws.lexical.chunk_count
                self._emit(ws)
            return file_result

        batch_size = self.settings.index_batch_size
        for start in range(0, len(paths), batch_size):
            batch = paths[start : start + batch_size]
            for file_result in await asyncio.gather(*(run(p) for p in batch)):
                if file_result.outcome is _Outcome.INDEXED:
                    result.files_processed += 1
                    result.chunks_indexed += file_result.chunks
                elif file_result.outcome is _Outcome.FAILED:
                    result.files_failed += 1
                elif file_result.outcome is _Outcome.CANCELLED:
                    result.cancelled = True
                if file_result.error is not None:
                    result.errors.append(file_result.error)
                if file_result.embedding_error is not None:
                    result.errors.append(
                        ErrorInfo(
                            code=EMBEDDING_FAILED,
                            message=file_result.embedding_error,
                        )
                    )
            if result.cancelled:
                break
            logger.debug(
                f"Progress {ws.root}: {min(start + batch_size, len(paths))}/{len(paths)}"
            )
        return result

    async def _index_file(
        self, ws: _Workspace, path: Path, skip_unchanged: bool
    ) -> _FileResult:
        uri = path_to_uri(path)

        if not path.exists() or not ws.discovery.should_index_file(path):
            async with ws.lock.write():
                existed = ws.lexical.remove_document(uri)
                ws.vectors.remove_embeddings_for_uri(uri)
            if not path.exists():
                logger.debug(f"Removed {uri} from index (file missing)")
                return _FileResult(
                    _Outcome.REMOVED if existed else _Outcome.FAILED,
                    error=None if existed else ws.discovery.missing_file_error(path),
                )
            return _FileResult(_Outcome.SKIPPED)

        try:
            stat = path.stat()
            content = await asyncio.to_thread(
                path.read_text, encoding="utf-8", errors="replace"
            )
        except FileNotFoundError:
            async with ws.lock.write():
                ws.lexical.remove_document(uri)
                ws.vectors.remove_embeddings_for_uri(uri)
            return _FileResult(
                _Outcome.FAILED, error=ws.discovery.missing_file_error(path)
            )
        except OSError as e:
            logger.error(f"Failed to read {path}: {e}")
            return _FileResult(
                _Outcome.FAILED,
                error=ErrorInfo(FILE_UNREADABLE, f"Cannot read {path}: {e}", {"path": str(path)}),
            )

        doc_hash = compute_content_hash(content)
        if skip_unchanged and ws.lexical.has_document(uri):
            existing = ws.database.get_document(uri)
            if existing is not None and existing.doc_hash == doc_hash:
                logger.debug(f"Skipping unchanged {uri}")
                return _FileResult(_Outcome.SKIPPED)

        language_id = ws.discovery.language_for(path)
        chunks = self.chunker.chunk(uri, language_id, content)

        records: list[EmbeddingRecord] = []
        embedding_error: str | None = None
        if self.settings.semantic_search_enabled:
            try:
                records = await self._embed_chunks(ws, chunks)
            except EmbeddingError as e:
                logger.warning(f"Embedding failed for {uri}: {e}")
                embedding_error = f"{path.name}: {e}"

        try:
            # Readers never observe a half-replaced document
            async with ws.lock.write():
                ws.lexical.index_document(
                    uri,
                    language_id,
                    chunks,
                    doc_hash=doc_hash,
                    mtime=stat.st_mtime,
                    size=stat.st_size,
                )
                ws.vectors.remove_embeddings_for_uri(uri)
                ws.vectors.store_embeddings(records)
        except (DatabaseError, sqlite3.Error) as e:
            logger.error(f"Failed to store vectors for {uri}: {e}")
            return _FileResult(
                _Outcome.FAILED,
                error=ErrorInfo("storage_failed", str(e), {"path": str(path)}),
            )

        return _FileResult(
            _Outcome.INDEXED, chunks=len(chunks), embedding_error=embedding_error
        )

    async def _embed_chunks(
        self, ws: _Workspace, chunks: list[Chunk]
    ) -> list[EmbeddingRecord]:
        """Embed chunks, reusing stored vectors for unchanged content."""
        model_id = ws.gateway.model_id
        records: list[EmbeddingRecord] = []
        to_embed: list[tuple[Chunk, str]] = []

        for chunk in chunks:
            if not chunk.content.strip():
                continue
            chunk_hash = compute_content_hash(chunk.content)
            reusable = [r for r in ws.vectors.get_by_hash(chunk_hash) if r.model == model_id]
            if reusable:
                records.append(
                    EmbeddingRecord(
                        chunk_id=chunk.id,
                        uri=chunk.uri,
                        embedding=reusable[0].embedding,
                        language_id=chunk.language_id,
                        chunk_hash=chunk_hash,
                        model=model_id,
                    )
                )
            else:
                to_embed.append((chunk, chunk_hash))

        if to_embed:
            vectors, models = await ws.gateway.embed_with_models(
                [chunk.content for chunk, _ in to_embed], InputType.DOCUMENT
            )
            for (chunk, chunk_hash), vector, served_by in zip(
                to_embed, vectors, models, strict=True
            ):
                records.append(
                    EmbeddingRecord(
                        chunk_id=chunk.id,
                        uri=chunk.uri,
                        embedding=vector,
                        language_id=chunk.language_id,
                        chunk_hash=chunk_hash,
                        model=served_by or model_id,
                    )
                )
        return records

    # ── queries ─────────────────────────────────────────────────────────

    async def get_status(self, workspace: Path) -> IndexStatus:
        if not self.settings.indexing_enabled:
            return IndexStatus(workspace=str(workspace.expanduser().absolute()))
        ws = self._get_workspace(workspace)
        return replace(ws.status)

    async def get_diagnostics(self, workspace: Path) -> IndexDiagnostics:
        ws = self._get_workspace(workspace)
        async with ws.lock.read():
            stats = ws.lexical.get_stats()
            try:
                vector_stats = ws.vectors.get_stats()
            except (DatabaseError, sqlite3.Error) as e:
                logger.warning(f"Could not read vector stats for {ws.root}: {e}")
                vector_stats = {"embeddings": 0, "model": None, "dimension": None}
        return IndexDiagnostics(
            workspace=str(ws.root),
            state=ws.status.state,
            backend=self.backend_name,
            documents=stats["documents"],
            chunks=stats["chunks"],
            embeddings=vector_stats["embeddings"],
            embedding_model=vector_stats["model"] or ws.status.embedding_model,
            embedding_dimension=vector_stats["dimension"],
            schema_version=ws.database.schema_version,
            read_only=ws.database.read_only,
        )

    async def search_lexical(
        self, workspace: Path, query: str, max_results: int
    ) -> list[LexicalHit]:
        ws = self._get_workspace(workspace)
        async with ws.lock.read():
            return ws.lexical.search_lexical(query, max_results)

    async def search_vectors(
        self, workspace: Path, query_vector: np.ndarray, k: int
    ) -> list[VectorHit]:
        ws = self._get_workspace(workspace)
        async with ws.lock.read():
            try:
                return ws.vectors.get_nearest(query_vector, k)
            except (DatabaseError, sqlite3.Error) as e:
                logger.warning(f"Vector search failed for {ws.root}: {e}")
                return []

    async def embed_query(self, workspace: Path, text: str) -> np.ndarray:
        ws = self._get_workspace(workspace)
        vectors = await ws.gateway.embed([text], InputType.QUERY)
        return vectors[0]

    async def get_chunks(
        self, workspace: Path, chunk_ids: list[str]
    ) -> dict[str, Chunk]:
        ws = self._get_workspace(workspace)
        async with ws.lock.read():
            found = {}
            for chunk_id in chunk_ids:
                chunk = ws.lexical.get_chunk(chunk_id)
                if chunk is not None:
                    found[chunk_id] = chunk
            return found

    async def close(self) -> None:
        for ws in self._workspaces.values():
            await ws.gateway.close()
            ws.database.close()
        self._workspaces.clear()

"""Cloud-backed index service.

Chunks and embeds locally, then stores vectors in a shared remote index
partitioned by namespace. There is no lexical index in this backend;
keyword queries return no hits and search relies on vectors alone.
"""

import asyncio
from dataclasses import dataclass, field, replace
from pathlib import Path

import numpy as np
from loguru import logger

from ..config.defaults import CLOUD_CONTENT_PREVIEW_CHARS
from ..config.settings import IndexingSettings
from .cancellation import CancellationToken, wait_unless_cancelled
from .chunking import Chunker
from .embeddings import EmbeddingCache, EmbeddingGateway, create_embedding_gateway
from .exceptions import (
    EMBEDDING_FAILED,
    FILE_UNREADABLE,
    CloudBackendError,
    ConfigError,
    EmbeddingError,
    ErrorInfo,
    OperationCancelledError,
)
from .file_discovery import FileDiscovery, path_to_uri
from .index_service import GatewayFactory
from .models import (
    Chunk,
    IndexDiagnostics,
    IndexOperationResult,
    IndexState,
    IndexStatus,
    InputType,
    LexicalHit,
    Range,
    VectorHit,
    utc_now,
)
from .namespace import namespace, user_id, vector_id, workspace_hash
from .vector_store_client import CloudMatch, CloudVector, VectorStoreClient


@dataclass
class _CloudWorkspace:
    root: Path
    namespace: str
    gateway: EmbeddingGateway
    discovery: FileDiscovery
    status: IndexStatus
    resume_event: asyncio.Event = field(default_factory=asyncio.Event)
    recent_matches: dict[str, CloudMatch] = field(default_factory=dict)


class CloudIndexService:
    """Index service storing vectors in a Pinecone-compatible cloud index."""

    backend_name = "cloud"

    def __init__(
        self,
        settings: IndexingSettings,
        client: VectorStoreClient | None = None,
        gateway_factory: GatewayFactory | None = None,
    ) -> None:
        """Initialize the cloud service.

        Args:
            settings: Indexing configuration
            client: Vector index client; built from settings if omitted

        Raises:
            ConfigError: If no client is given and the cloud backend is not configured
        """
        if client is None:
            if not settings.has_cloud_backend:
                raise ConfigError(
                    "Cloud backend selected but cloud_api_key/cloud_index_host are not set"
                )
            client = VectorStoreClient(
                settings.cloud_api_key or "", settings.cloud_index_host or ""
            )
        self.settings = settings
        self.client = client
        self.chunker = Chunker(settings.chunk_size_lines)
        self.user = user_id(settings.account_id)
        self._gateway_factory = gateway_factory or (
            lambda s, cache: create_embedding_gateway(s, cache=cache)
        )
        self._workspaces: dict[str, _CloudWorkspace] = {}

    def _get_workspace(self, workspace: Path) -> _CloudWorkspace:
        root = workspace.expanduser().absolute()
        key = workspace_hash(root)
        ws = self._workspaces.get(key)
        if ws is None:
            cache = EmbeddingCache(max_size=self.settings.cache_max_size)
            ws = _CloudWorkspace(
                root=root,
                namespace=namespace(self.user, root),
                gateway=self._gateway_factory(self.settings, cache),
                discovery=FileDiscovery(
                    root,
                    file_extensions=self.settings.file_extensions,
                    ignore_patterns=self.settings.ignore_patterns,
                ),
                status=IndexStatus(workspace=str(root)),
            )
            ws.resume_event.set()
            self._workspaces[key] = ws
        return ws

    # ── control plane ───────────────────────────────────────────────────

    async def build_full_index(
        self, workspace: Path, cancellation: CancellationToken | None = None
    ) -> IndexOperationResult:
        if not self.settings.indexing_enabled:
            return IndexOperationResult(
                workspace=str(workspace), state=IndexState.UNINITIALIZED
            )

        ws = self._get_workspace(workspace)
        ws.status.state = IndexState.BUILDING
        ws.status.error_message = None
        ws.status.degraded_reason = None
        ws.status.indexed_files = 0
        ws.status.total_chunks = 0
        ws.status.embedded_chunks = 0

        try:
            files = await ws.discovery.find_indexable_files_async(cancellation)
            await self.client.delete_namespace(ws.namespace)
        except OperationCancelledError:
            return self._finish(
                ws,
                IndexOperationResult(str(ws.root), ws.status.state, cancelled=True),
            )
        except CloudBackendError as e:
            return self._fail(ws, e)

        ws.status.total_files = len(files)
        logger.info(f"Building cloud index for {ws.root} in namespace {ws.namespace}")
        result = await self._process_files(ws, files, cancellation)
        return self._finish(ws, result)

    async def refresh_paths(
        self,
        workspace: Path,
        uris: list[str | Path],
        cancellation: CancellationToken | None = None,
    ) -> IndexOperationResult:
        if not self.settings.indexing_enabled:
            return IndexOperationResult(
                workspace=str(workspace), state=IndexState.UNINITIALIZED
            )

        ws = self._get_workspace(workspace)
        errors: list[ErrorInfo] = []
        paths: list[Path] = []
        for uri in uris:
            resolved = ws.discovery.resolve(uri)
            if isinstance(resolved, ErrorInfo):
                errors.append(resolved)
            else:
                paths.append(resolved)

        ws.status.state = IndexState.INDEXING
        result = await self._process_files(ws, paths, cancellation)
        result.errors = errors + result.errors
        result.files_failed += len(errors)
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
        return replace(ws.status)

    async def resume(self, workspace: Path) -> IndexStatus:
        ws = self._get_workspace(workspace)
        ws.resume_event.set()
        ws.status.paused = False
        ws.status.paused_reason = None
        return replace(ws.status)

    async def rebuild_workspace_index(
        self, workspace: Path, cancellation: CancellationToken | None = None
    ) -> IndexOperationResult:
        await self.delete_index(workspace)
        return await self.build_full_index(workspace, cancellation)

    async def delete_index(self, workspace: Path) -> None:
        ws = self._get_workspace(workspace)
        await self.client.delete_namespace(ws.namespace)
        await ws.gateway.close()
        self._workspaces.pop(workspace_hash(ws.root), None)
        logger.info(f"Deleted cloud namespace {ws.namespace}")

    def _fail(self, ws: _CloudWorkspace, error: Exception) -> IndexOperationResult:
        logger.error(f"Cloud indexing failed for {ws.root}: {error}")
        ws.status.state = IndexState.ERROR
        ws.status.error_message = str(error)
        return IndexOperationResult(
            workspace=str(ws.root),
            state=IndexState.ERROR,
            errors=[ErrorInfo(code="cloud_backend_failed", message=str(error))],
        )

    def _finish(
        self, ws: _CloudWorkspace, result: IndexOperationResult
    ) -> IndexOperationResult:
        embedding_errors = [e for e in result.errors if e.code == EMBEDDING_FAILED]
        if result.cancelled:
            ws.status.error_message = "Indexing cancelled; index is incomplete"
            state = IndexState.STALE
        elif embedding_errors or ws.gateway.strategy.fallback_reason:
            ws.status.degraded_reason = (
                embedding_errors[-1].message
                if embedding_errors
                else ws.gateway.strategy.fallback_reason
            )
            state = IndexState.DEGRADED
        elif result.files_failed:
            state = IndexState.STALE if result.files_processed else IndexState.ERROR
            if result.errors:
                ws.status.error_message = result.errors[0].message
        else:
            state = IndexState.READY

        if result.files_processed:
            ws.status.last_indexed_time = utc_now()
            ws.status.embedding_model = ws.gateway.model_id
        ws.status.state = state
        result.state = state
        return result

    # ── per-file work ───────────────────────────────────────────────────

    async def _process_files(
        self,
        ws: _CloudWorkspace,
        paths: list[Path],
        cancellation: CancellationToken | None,
    ) -> IndexOperationResult:
        semaphore = asyncio.Semaphore(self.settings.max_concurrent_jobs)
        result = IndexOperationResult(workspace=str(ws.root), state=ws.status.state)

        async def run(path: Path) -> None:
            if not await wait_unless_cancelled(ws.resume_event, cancellation):
                result.cancelled = True
                return
            async with semaphore:
                error, chunk_count, embedded = await self._index_file(ws, path)
            if error is None:
                result.files_processed += 1
                result.chunks_indexed += chunk_count
                if chunk_count:
                    ws.status.indexed_files += 1
                ws.status.total_chunks += chunk_count
                ws.status.embedded_chunks += embedded
            else:
                result.errors.append(error)
                if error.code != EMBEDDING_FAILED:
                    result.files_failed += 1

        await asyncio.gather(*(run(path) for path in paths))
        return result

    async def _index_file(
        self, ws: _CloudWorkspace, path: Path
    ) -> tuple[ErrorInfo | None, int, int]:
        relative = ws.discovery.relative_path(path)
        try:
            await self.client.delete_by_filter(
                ws.namespace, {"filePath": {"$eq": relative}}
            )
            if not path.exists():
                logger.debug(
                    f"Removed {relative} from namespace {ws.namespace} (file missing)"
                )
                return None, 0, 0
            content = await asyncio.to_thread(
                path.read_text, encoding="utf-8", errors="replace"
            )
        except CloudBackendError as e:
            return ErrorInfo("cloud_backend_failed", str(e), {"path": relative}), 0, 0
        except OSError as e:
            return ErrorInfo(FILE_UNREADABLE, str(e), {"path": relative}), 0, 0

        uri = path_to_uri(path)
        chunks = [
            c for c in self.chunker.chunk(uri, ws.discovery.language_for(path), content)
            if c.content.strip()
        ]
        if not chunks:
            return None, 0, 0

        try:
            vectors = await ws.gateway.embed(
                [c.content for c in chunks], InputType.DOCUMENT
            )
        except EmbeddingError as e:
            return ErrorInfo(EMBEDDING_FAILED, f"{path.name}: {e}"), len(chunks), 0

        indexed_at = utc_now().isoformat()
        cloud_vectors = [
            CloudVector(
                id=vector_id(ws.root, relative, index),
                values=[float(x) for x in vector],
                metadata=self._metadata(ws, relative, uri, chunk, indexed_at),
            )
            for index, (chunk, vector) in enumerate(zip(chunks, vectors, strict=True))
        ]
        try:
            await self.client.upsert(ws.namespace, cloud_vectors)
        except CloudBackendError as e:
            return ErrorInfo("cloud_backend_failed", str(e), {"path": relative}), 0, 0
        return None, len(chunks), len(cloud_vectors)

    def _metadata(
        self, ws: _CloudWorkspace, relative: str, uri: str, chunk: Chunk, indexed_at: str
    ) -> dict:
        return {
            "userId": self.user,
            "workspaceId": workspace_hash(ws.root),
            "workspacePath": str(ws.root),
            "filePath": relative,
            "uri": uri,
            "chunkId": chunk.id,
            "startLine": chunk.range.start.line if chunk.range else 1,
            "endLine": chunk.range.end.line if chunk.range else 1,
            "languageId": chunk.language_id or "",
            "content": chunk.content[:CLOUD_CONTENT_PREVIEW_CHARS],
            "indexedAt": indexed_at,
        }

    # ── queries ─────────────────────────────────────────────────────────

    async def get_status(self, workspace: Path) -> IndexStatus:
        if not self.settings.indexing_enabled:
            return IndexStatus(workspace=str(workspace.expanduser().absolute()))
        ws = self._get_workspace(workspace)
        if ws.status.state is IndexState.UNINITIALIZED:
            await self._restore_status(ws)
        return replace(ws.status)

    async def _restore_status(self, ws: _CloudWorkspace) -> None:
        """Treat vectors left in the namespace by an earlier session as an index."""
        try:
            stats = await self.client.namespace_stats(ws.namespace)
        except CloudBackendError as e:
            logger.debug(f"Could not read cloud index stats for {ws.root}: {e}")
            return
        if stats.vector_count:
            ws.status.embedded_chunks = stats.vector_count
            ws.status.state = IndexState.READY
            logger.info(
                f"Found {stats.vector_count} vectors in namespace {ws.namespace}"
            )

    async def get_diagnostics(self, workspace: Path) -> IndexDiagnostics:
        ws = self._get_workspace(workspace)
        try:
            stats = await self.client.namespace_stats(ws.namespace)
            embeddings, dimension = stats.vector_count, stats.dimension
        except CloudBackendError as e:
            logger.warning(f"Could not read cloud index stats: {e}")
            embeddings, dimension = 0, None
        return IndexDiagnostics(
            workspace=str(ws.root),
            state=ws.status.state,
            backend=self.backend_name,
            documents=ws.status.indexed_files,
            chunks=ws.status.total_chunks,
            embeddings=embeddings,
            embedding_model=ws.status.embedding_model,
            embedding_dimension=dimension,
        )

    async def search_lexical(
        self, workspace: Path, query: str, max_results: int
    ) -> list[LexicalHit]:
        return []

    async def search_vectors(
        self, workspace: Path, query_vector: np.ndarray, k: int
    ) -> list[VectorHit]:
        ws = self._get_workspace(workspace)
        try:
            matches = await self.client.query(
                ws.namespace,
                [float(x) for x in query_vector],
                k,
                metadata_filter={"userId": {"$eq": self.user}},
            )
        except CloudBackendError as e:
            logger.warning(f"Cloud vector query failed: {e}")
            return []

        # Match metadata stands in for the chunk text the cloud has no table for
        ws.recent_matches = {}
        hits = []
        for match in matches:
            chunk_id = match.metadata.get("chunkId", match.id)
            ws.recent_matches[chunk_id] = match
            hits.append(
                VectorHit(
                    chunk_id=chunk_id,
                    uri=match.metadata.get("uri", ""),
                    score=match.score,
                    language_id=match.metadata.get("languageId") or None,
                )
            )
        return hits

    async def embed_query(self, workspace: Path, text: str) -> np.ndarray:
        ws = self._get_workspace(workspace)
        vectors = await ws.gateway.embed([text], InputType.QUERY)
        return vectors[0]

    async def get_chunks(
        self, workspace: Path, chunk_ids: list[str]
    ) -> dict[str, Chunk]:
        ws = self._get_workspace(workspace)
        found = {}
        for chunk_id in chunk_ids:
            match = ws.recent_matches.get(chunk_id)
            if match is None:
                continue
            meta = match.metadata
            found[chunk_id] = Chunk(
                id=chunk_id,
                uri=meta.get("uri", ""),
                content=meta.get("content", ""),
                language_id=meta.get("languageId") or None,
                range=Range.from_lines(
                    int(meta.get("startLine", 1)), 1, int(meta.get("endLine", 1)), 1
                ),
            )
        return found

    async def close(self) -> None:
        for ws in self._workspaces.values():
            await ws.gateway.close()
        self._workspaces.clear()
        await self.client.close()

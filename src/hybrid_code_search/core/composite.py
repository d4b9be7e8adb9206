"""Routes index requests to the local or cloud backend chosen in settings."""

from pathlib import Path

import numpy as np
from loguru import logger

from ..config.settings import IndexBackend, IndexingSettings
from .cancellation import CancellationToken
from .cloud_index import CloudIndexService
from .index_service import IndexService, LocalIndexService
from .models import (
    Chunk,
    IndexDiagnostics,
    IndexOperationResult,
    IndexStatus,
    LexicalHit,
    VectorHit,
)


class CompositeIndexService:
    """Delegates every call to one backend selected by :class:`IndexBackend`.

    Callers see a single ``IndexService`` and never need to know whether the
    local or the cloud implementation answered.
    """

    def __init__(
        self,
        settings: IndexingSettings,
        local: IndexService | None = None,
        cloud: IndexService | None = None,
    ) -> None:
        self.settings = settings
        self._local = local
        self._cloud = cloud

    @property
    def backend(self) -> IndexBackend:
        return self.settings.backend

    @property
    def backend_name(self) -> str:
        return self.backend.value

    @property
    def delegate(self) -> IndexService:
        """The backend currently selected, created on first use."""
        if self.backend is IndexBackend.CLOUD:
            if self._cloud is None:
                self._cloud = CloudIndexService(self.settings)
                logger.debug("Routing index requests to cloud backend")
            return self._cloud

        if self._local is None:
            self._local = LocalIndexService(self.settings)
            logger.debug("Routing index requests to local backend")
        return self._local

    async def build_full_index(
        self, workspace: Path, cancellation: CancellationToken | None = None
    ) -> IndexOperationResult:
        return await self.delegate.build_full_index(workspace, cancellation)

    async def refresh_paths(
        self,
        workspace: Path,
        uris: list[str | Path],
        cancellation: CancellationToken | None = None,
    ) -> IndexOperationResult:
        return await self.delegate.refresh_paths(workspace, uris, cancellation)

    async def index_saved_files(
        self, workspace: Path, uris: list[str | Path]
    ) -> IndexOperationResult:
        return await self.delegate.index_saved_files(workspace, uris)

    async def pause(self, workspace: Path, reason: str | None = None) -> IndexStatus:
        return await self.delegate.pause(workspace, reason)

    async def resume(self, workspace: Path) -> IndexStatus:
        return await self.delegate.resume(workspace)

    async def rebuild_workspace_index(
        self, workspace: Path, cancellation: CancellationToken | None = None
    ) -> IndexOperationResult:
        return await self.delegate.rebuild_workspace_index(workspace, cancellation)

    async def delete_index(self, workspace: Path) -> None:
        await self.delegate.delete_index(workspace)

    async def get_status(self, workspace: Path) -> IndexStatus:
        return await self.delegate.get_status(workspace)

    async def get_diagnostics(self, workspace: Path) -> IndexDiagnostics:
        return await self.delegate.get_diagnostics(workspace)

    async def search_lexical(
        self, workspace: Path, query: str, max_results: int
    ) -> list[LexicalHit]:
        return await self.delegate.search_lexical(workspace, query, max_results)

    async def search_vectors(
        self, workspace: Path, query_vector: np.ndarray, k: int
    ) -> list[VectorHit]:
        return await self.delegate.search_vectors(workspace, query_vector, k)

    async def embed_query(self, workspace: Path, text: str) -> np.ndarray:
        return await self.delegate.embed_query(workspace, text)

    async def get_chunks(
        self, workspace: Path, chunk_ids: list[str]
    ) -> dict[str, Chunk]:
        return await self.delegate.get_chunks(workspace, chunk_ids)

    async def close(self) -> None:
        for service in (self._local, self._cloud):
            if service is not None:
                await service.close()

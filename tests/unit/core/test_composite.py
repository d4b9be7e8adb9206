"""Tests for backend routing in CompositeIndexService."""

from pathlib import Path
from unittest.mock import AsyncMock

import numpy as np
import pytest

from hybrid_code_search.config.settings import IndexBackend
from hybrid_code_search.core.composite import CompositeIndexService
from hybrid_code_search.core.exceptions import ConfigError
from hybrid_code_search.core.index_service import LocalIndexService

WORKSPACE = Path("/repo")


@pytest.fixture
def delegates():
    return AsyncMock(name="local"), AsyncMock(name="cloud")


class TestRouting:
    """Every call goes to exactly one backend."""

    async def test_local_backend(self, settings, delegates):
        local, cloud = delegates
        composite = CompositeIndexService(settings, local=local, cloud=cloud)

        await composite.build_full_index(WORKSPACE)
        await composite.search_lexical(WORKSPACE, "query", 5)

        local.build_full_index.assert_awaited_once_with(WORKSPACE, None)
        local.search_lexical.assert_awaited_once_with(WORKSPACE, "query", 5)
        cloud.build_full_index.assert_not_awaited()
        assert composite.backend_name == "local"

    async def test_cloud_backend(self, settings, delegates):
        local, cloud = delegates
        composite = CompositeIndexService(
            settings.model_copy(update={"backend": IndexBackend.CLOUD}),
            local=local,
            cloud=cloud,
        )
        vector = np.ones(3)

        await composite.search_vectors(WORKSPACE, vector, 4)
        await composite.refresh_paths(WORKSPACE, ["a.py"])
        await composite.delete_index(WORKSPACE)

        cloud.search_vectors.assert_awaited_once_with(WORKSPACE, vector, 4)
        cloud.refresh_paths.assert_awaited_once_with(WORKSPACE, ["a.py"], None)
        cloud.delete_index.assert_awaited_once_with(WORKSPACE)
        local.search_vectors.assert_not_awaited()
        assert composite.backend_name == "cloud"

    @pytest.mark.parametrize(
        "method, args",
        [
            ("index_saved_files", (WORKSPACE, ["a.py"])),
            ("pause", (WORKSPACE, "busy")),
            ("resume", (WORKSPACE,)),
            ("rebuild_workspace_index", (WORKSPACE, None)),
            ("get_status", (WORKSPACE,)),
            ("get_diagnostics", (WORKSPACE,)),
            ("embed_query", (WORKSPACE, "text")),
            ("get_chunks", (WORKSPACE, ["id"])),
        ],
    )
    async def test_passthrough(self, settings, delegates, method, args):
        local, _ = delegates
        composite = CompositeIndexService(settings, local=local)

        await getattr(composite, method)(*args)

        getattr(local, method).assert_awaited_once_with(*args)

    async def test_close_closes_created_backends(self, settings, delegates):
        local, cloud = delegates
        await CompositeIndexService(settings, local=local, cloud=cloud).close()
        local.close.assert_awaited_once()
        cloud.close.assert_awaited_once()


class TestLazyCreation:
    """Backends are built from settings on first use."""

    def test_local_created_on_demand(self, settings):
        composite = CompositeIndexService(settings)
        assert isinstance(composite.delegate, LocalIndexService)
        assert composite.delegate is composite.delegate

    def test_unconfigured_cloud_raises(self, settings):
        composite = CompositeIndexService(
            settings.model_copy(update={"backend": IndexBackend.CLOUD})
        )
        with pytest.raises(ConfigError):
            _ = composite.delegate

"""REST client for a Pinecone-compatible cloud vector index.

Every call is scoped to a namespace (``{userId}::{workspaceHash}``) so
tenants sharing one index never see each other's vectors.
"""

from dataclasses import dataclass, field
from typing import Any

import httpx
from loguru import logger

from .exceptions import CloudBackendError

UPSERT_BATCH_SIZE = 100


@dataclass(frozen=True)
class CloudVector:
    id: str
    values: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CloudMatch:
    id: str
    score: float
    metadata: dict[str, Any]


@dataclass(frozen=True)
class NamespaceStats:
    vector_count: int
    dimension: int | None


class VectorStoreClient:
    """Thin async wrapper over the index data-plane endpoints."""

    TIMEOUT_SECONDS = 30.0

    def __init__(
        self,
        api_key: str,
        index_host: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = TIMEOUT_SECONDS,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: Value for the ``Api-Key`` header
            index_host: Index host, with or without scheme
            client: Injected HTTP client (tests use ``httpx.MockTransport``)
            timeout: Request timeout in seconds
        """
        host = index_host if index_host.startswith("http") else f"https://{index_host}"
        self.base_url = host.rstrip("/")
        self._headers = {"Api-Key": api_key, "Content-Type": "application/json"}
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(
                f"{self.base_url}{path}", json=payload, headers=self._headers
            )
        except httpx.TransportError as e:
            raise CloudBackendError(f"Vector index unreachable: {e}") from e

        if not response.is_success:
            raise CloudBackendError(
                f"Vector index request {path} failed (HTTP {response.status_code}): "
                f"{response.text[:500]}",
                context={"status_code": response.status_code, "path": path},
            )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise CloudBackendError(f"Malformed response from {path}: {e}") from e

    async def upsert(self, namespace: str, vectors: list[CloudVector]) -> int:
        for start in range(0, len(vectors), UPSERT_BATCH_SIZE):
            batch = vectors[start : start + UPSERT_BATCH_SIZE]
            await self._post(
                "/vectors/upsert",
                {
                    "namespace": namespace,
                    "vectors": [
                        {"id": v.id, "values": v.values, "metadata": v.metadata}
                        for v in batch
                    ],
                },
            )
        logger.debug(f"Upserted {len(vectors)} vectors into {namespace}")
        return len(vectors)

    async def query(
        self,
        namespace: str,
        vector: list[float],
        top_k: int,
        metadata_filter: dict[str, Any] | None = None,
    ) -> list[CloudMatch]:
        payload: dict[str, Any] = {
            "namespace": namespace,
            "vector": vector,
            "topK": top_k,
            "includeMetadata": True,
        }
        if metadata_filter:
            payload["filter"] = metadata_filter
        body = await self._post("/query", payload)
        return [
            CloudMatch(
                id=match["id"],
                score=float(match.get("score", 0.0)),
                metadata=match.get("metadata") or {},
            )
            for match in body.get("matches", [])
        ]

    async def delete(self, namespace: str, ids: list[str]) -> None:
        if ids:
            await self._post("/vectors/delete", {"namespace": namespace, "ids": ids})

    async def delete_by_filter(self, namespace: str, metadata_filter: dict[str, Any]) -> None:
        await self._post(
            "/vectors/delete", {"namespace": namespace, "filter": metadata_filter}
        )

    async def delete_namespace(self, namespace: str) -> None:
        await self._post("/vectors/delete", {"namespace": namespace, "deleteAll": True})

    async def namespace_stats(self, namespace: str) -> NamespaceStats:
        body = await self._post("/describe_index_stats", {})
        entry = (body.get("namespaces") or {}).get(namespace) or {}
        return NamespaceStats(
            vector_count=int(entry.get("vectorCount", 0)),
            dimension=body.get("dimension"),
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

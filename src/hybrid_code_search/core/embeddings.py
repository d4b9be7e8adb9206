"""Embedding generation: providers, batching, rate limiting and fallback.

The gateway turns chunk or query text into vectors through an ordered
list of providers:

1. ``RemoteEmbeddingProvider`` - batched HTTP API (Voyage-compatible)
2. ``LocalModelEmbeddingProvider`` - sentence-transformers on the ONNX backend
3. ``HashEmbeddingProvider`` - deterministic character-hash features

``FallbackEmbeddingStrategy`` walks that list in priority order. A
transient failure (rate limit exhausted, network down, runtime missing)
marks the provider unusable and moves to the next one; permanent failures
(bad credentials, malformed responses) surface to the caller.

Environment Variables:
    HYBRID_SEARCH_EMBEDDING_API_KEY: Enables the remote provider
    HYBRID_SEARCH_EMBEDDING_RUNTIME: hash | onnx | auto
"""

import asyncio
import hashlib
import math
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, Protocol

import aiofiles
import httpx
import numpy as np
import orjson
from loguru import logger

from ..config.defaults import (
    BACKOFF_BASE_SECONDS,
    BACKOFF_CAP_SECONDS,
    CHARS_PER_TOKEN,
    DEFAULT_EMBEDDING_API_URL,
    DEFAULT_EMBEDDING_DIMENSION,
    DEFAULT_EMBEDDING_MODEL,
    DEFAULT_LOCAL_MODEL,
    DEFAULT_REQUESTS_PER_MINUTE,
    HASH_EMBEDDING_DIMENSION,
    MAX_ATTEMPTS,
    MAX_BATCH_ITEMS,
    MAX_BATCH_TOKENS,
    TRUNCATION_SAFETY_TOKENS,
)
from ..config.settings import EmbeddingRuntime, IndexingSettings
from .cancellation import CancellationToken
from .exceptions import (
    EmbeddingError,
    EmbeddingProviderError,
    EmbeddingRateLimitError,
    InvalidCredentialsError,
    OperationCancelledError,
    ProviderUnavailableError,
    UnexpectedResponseShapeError,
)
from .models import InputType

SleepFunc = Callable[[float], Awaitable[None]]


# ── Token budgeting ─────────────────────────────────────────────────────


def estimate_tokens(text: str) -> int:
    """Rough token estimate used for batch budgeting."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def truncate_to_budget(text: str, max_batch_tokens: int) -> str:
    """Truncate a single text that would not fit in a batch on its own."""
    if estimate_tokens(text) <= max_batch_tokens:
        return text
    max_chars = max(max_batch_tokens - TRUNCATION_SAFETY_TOKENS, 1) * CHARS_PER_TOKEN
    return text[:max_chars]


def split_into_batches(
    texts: list[str],
    max_items: int = MAX_BATCH_ITEMS,
    max_tokens: int = MAX_BATCH_TOKENS,
) -> list[list[int]]:
    """Group text indices into batches bounded by item count and token budget.

    Args:
        texts: Texts already truncated to fit the budget individually
        max_items: Maximum texts per batch
        max_tokens: Maximum estimated tokens per batch

    Returns:
        Lists of indices into ``texts``, in input order
    """
    batches: list[list[int]] = []
    current: list[int] = []
    current_tokens = 0

    for index, text in enumerate(texts):
        tokens = estimate_tokens(text)
        if current and (
            len(current) >= max_items or current_tokens + tokens > max_tokens
        ):
            batches.append(current)
            current = []
            current_tokens = 0
        current.append(index)
        current_tokens += tokens

    if current:
        batches.append(current)
    return batches


def validate_embeddings(
    vectors: list[np.ndarray], expected_count: int, dimension: int, model_id: str
) -> None:
    """Reject responses whose count or dimension does not match the request.

    Raises:
        UnexpectedResponseShapeError: On any mismatch
    """
    if len(vectors) != expected_count:
        raise UnexpectedResponseShapeError(
            f"{model_id} returned {len(vectors)} embeddings for {expected_count} inputs",
            context={"expected": expected_count, "received": len(vectors)},
        )
    for position, vector in enumerate(vectors):
        if vector.ndim != 1 or vector.shape[0] != dimension:
            raise UnexpectedResponseShapeError(
                f"{model_id} returned a vector of shape {vector.shape} at position "
                f"{position}; expected ({dimension},)",
                context={"expected_dimension": dimension, "position": position},
            )


# ── Rate limiting ───────────────────────────────────────────────────────


class RateLimiter:
    """Fixed-window request limiter.

    When the window's request budget is spent, :meth:`acquire` sleeps
    until the window resets instead of spinning.
    """

    def __init__(
        self,
        requests_per_minute: int = DEFAULT_REQUESTS_PER_MINUTE,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self.requests_per_minute = requests_per_minute
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._window_start = clock()
        self._count = 0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            now = self._clock()
            if now - self._window_start >= self.window_seconds:
                self._window_start = now
                self._count = 0

            if self._count >= self.requests_per_minute:
                wait = self.window_seconds - (now - self._window_start)
                if wait > 0:
                    logger.info(
                        f"Embedding rate limit reached ({self.requests_per_minute}/min), "
                        f"waiting {wait:.1f}s"
                    )
                    await self._sleep(wait)
                self._window_start = self._clock()
                self._count = 0

            self._count += 1


# ── Providers ───────────────────────────────────────────────────────────


class EmbeddingProvider(Protocol):
    """One embedding backend."""

    @property
    def model_id(self) -> str: ...

    @property
    def dimension(self) -> int: ...

    async def embed_batch(
        self, texts: list[str], input_type: InputType
    ) -> list[np.ndarray]: ...

    async def close(self) -> None: ...


class HashEmbeddingProvider:
    """Deterministic bag-of-characters embedding.

    Retrieval quality is poor; it exists so indexing never blocks on a
    network or model download. The model id makes this visible in status.
    """

    def __init__(self, dimension: int = HASH_EMBEDDING_DIMENSION) -> None:
        self._dimension = dimension

    @property
    def model_id(self) -> str:
        return f"hash-local-{self._dimension}"

    @property
    def dimension(self) -> int:
        return self._dimension

    def embed_text(self, text: str) -> np.ndarray:
        vector = np.zeros(self._dimension, dtype=np.float64)
        for char in text:
            code = ord(char)
            vector[code % self._dimension] += 1 + (code % 13) / 13
        norm = np.linalg.norm(vector)
        if norm > 0:
            vector /= norm
        return vector.astype(np.float32)

    async def embed_batch(
        self, texts: list[str], input_type: InputType
    ) -> list[np.ndarray]:
        return [self.embed_text(text) for text in texts]

    async def close(self) -> None:
        pass


class LocalModelEmbeddingProvider:
    """sentence-transformers model running on the ONNX backend.

    The model is loaded lazily on first use in a worker thread. If the
    optional ``sentence-transformers`` extra is not installed the provider
    reports itself unavailable and the strategy moves on.
    """

    def __init__(self, model_name: str = DEFAULT_LOCAL_MODEL) -> None:
        self.model_name = model_name
        self._model = None
        self._dimension: int | None = None
        self._load_lock = asyncio.Lock()

    @property
    def model_id(self) -> str:
        return f"onnx:{self.model_name}"

    @property
    def dimension(self) -> int:
        if self._dimension is None:
            raise ProviderUnavailableError(
                f"Local model {self.model_name} has not been loaded yet"
            )
        return self._dimension

    def _load_model(self):
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as e:
            raise ProviderUnavailableError(
                "sentence-transformers is not installed; "
                "install the 'onnx' extra to use the local model runtime"
            ) from e

        try:
            model = SentenceTransformer(self.model_name, backend="onnx")
        except (OSError, ValueError, RuntimeError) as e:
            raise ProviderUnavailableError(
                f"Failed to load local model {self.model_name}: {e}"
            ) from e
        return model

    async def _ensure_loaded(self) -> None:
        async with self._load_lock:
            if self._model is None:
                logger.info(f"Loading local embedding model {self.model_name} (onnx)")
                self._model = await asyncio.to_thread(self._load_model)
                self._dimension = int(self._model.get_sentence_embedding_dimension())

    async def embed_batch(
        self, texts: list[str], input_type: InputType
    ) -> list[np.ndarray]:
        await self._ensure_loaded()
        embeddings = await asyncio.to_thread(
            self._model.encode,
            texts,
            convert_to_numpy=True,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        return [np.asarray(row, dtype=np.float32) for row in embeddings]

    async def close(self) -> None:
        self._model = None


class RemoteEmbeddingProvider:
    """Batched HTTP embedding API client with retry and rate limiting.

    Request body: ``{"model", "input": [...], "input_type"}``.
    Response body: ``{"data": [{"embedding": [...]}], "usage": {"total_tokens"}}``.
    """

    TIMEOUT_SECONDS = 60.0

    def __init__(
        self,
        api_key: str,
        api_url: str = DEFAULT_EMBEDDING_API_URL,
        model: str = DEFAULT_EMBEDDING_MODEL,
        dimension: int = DEFAULT_EMBEDDING_DIMENSION,
        rate_limiter: RateLimiter | None = None,
        max_attempts: int = MAX_ATTEMPTS,
        timeout: float = TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        """Initialize the remote provider.

        Args:
            api_key: Bearer token for the provider
            api_url: Embeddings endpoint
            model: Provider model name
            dimension: Declared embedding dimension of ``model``
            rate_limiter: Shared limiter; a 300 rpm limiter is created if omitted
            max_attempts: Requests made on repeated 429 or network errors before giving up
            timeout: Request timeout in seconds
            client: Injected HTTP client (tests use ``httpx.MockTransport``)
            sleep: Awaitable sleep used for backoff
        """
        if not api_key:
            raise ProviderUnavailableError("No embedding API key configured")
        self.api_key = api_key
        self.api_url = api_url
        self.model = model
        self._dimension = dimension
        self.rate_limiter = rate_limiter or RateLimiter()
        self.max_attempts = max(1, max_attempts)
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._sleep = sleep
        self.total_tokens = 0

    @property
    def model_id(self) -> str:
        return self.model

    @property
    def dimension(self) -> int:
        return self._dimension

    @staticmethod
    def backoff_delay(attempt: int) -> float:
        return min(BACKOFF_BASE_SECONDS * (2**attempt), BACKOFF_CAP_SECONDS)

    async def embed_batch(
        self, texts: list[str], input_type: InputType
    ) -> list[np.ndarray]:
        payload = {"model": self.model, "input": texts, "input_type": input_type.value}
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        attempt = 0
        while True:
            await self.rate_limiter.acquire()
            try:
                response = await self._client.post(
                    self.api_url, json=payload, headers=headers
                )
            except httpx.TransportError as e:
                if attempt + 1 >= self.max_attempts:
                    raise ProviderUnavailableError(
                        f"Embedding provider unreachable after {attempt + 1} attempts: {e}"
                    ) from e
                delay = self.backoff_delay(attempt)
                logger.warning(
                    f"Embedding request failed ({e}); retrying in {delay:.0f}s"
                )
                await self._sleep(delay)
                attempt += 1
                continue

            if response.status_code == 429:
                if attempt + 1 >= self.max_attempts:
                    raise EmbeddingRateLimitError(
                        f"Embedding provider rate limit exceeded after {attempt + 1} attempts",
                        status_code=429,
                        body=response.text,
                    )
                delay = self.backoff_delay(attempt)
                logger.warning(f"Embedding provider returned 429; retrying in {delay:.0f}s")
                await self._sleep(delay)
                attempt += 1
                continue

            if response.status_code == 401:
                raise InvalidCredentialsError(
                    "Embedding provider rejected the API key (HTTP 401)",
                    status_code=401,
                    body=response.text,
                )

            if not response.is_success:
                raise EmbeddingProviderError(
                    f"Embedding provider error (HTTP {response.status_code}): "
                    f"{response.text[:500]}",
                    status_code=response.status_code,
                    body=response.text,
                )

            return self._parse_response(response, len(texts))

    def _parse_response(
        self, response: httpx.Response, expected: int
    ) -> list[np.ndarray]:
        try:
            body = response.json()
            items = body["data"]
            if any("index" in item for item in items):
                items = sorted(items, key=lambda item: item.get("index", 0))
            vectors = [np.asarray(item["embedding"], dtype=np.float32) for item in items]
        except (ValueError, KeyError, TypeError) as e:
            raise UnexpectedResponseShapeError(
                f"Malformed embedding response: {e}"
            ) from e

        validate_embeddings(vectors, expected, self._dimension, self.model_id)
        usage = body.get("usage") or {}
        self.total_tokens += int(usage.get("total_tokens", 0) or 0)
        logger.debug(
            f"Embedded {expected} texts with {self.model} "
            f"({usage.get('total_tokens', '?')} tokens)"
        )
        return vectors

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


# ── Fallback strategy ───────────────────────────────────────────────────


class FallbackEmbeddingStrategy:
    """Ordered providers; the first usable one serves each batch.

    Example:
        strategy = FallbackEmbeddingStrategy([remote, HashEmbeddingProvider()])
        vectors = await strategy.embed_batch(["def main(): ..."], InputType.DOCUMENT)
        strategy.model_id  # "hash-local-256" once the remote provider failed
    """

    def __init__(self, providers: list[EmbeddingProvider]) -> None:
        if not providers:
            raise EmbeddingError("At least one embedding provider is required")
        self.providers = list(providers)
        self._active_index = 0
        self.fallback_reason: str | None = None

    @property
    def active_provider(self) -> EmbeddingProvider:
        return self.providers[self._active_index]

    @property
    def model_id(self) -> str:
        return self.active_provider.model_id

    @property
    def dimension(self) -> int:
        return self.active_provider.dimension

    @property
    def is_fallback(self) -> bool:
        return self._active_index > 0

    async def embed_batch(
        self, texts: list[str], input_type: InputType
    ) -> list[np.ndarray]:
        vectors, _ = await self.embed_batch_with_model(texts, input_type)
        return vectors

    async def embed_batch_with_model(
        self, texts: list[str], input_type: InputType
    ) -> tuple[list[np.ndarray], str]:
        """Embed one batch with the highest-priority usable provider.

        Returns:
            The vectors and the model id of the provider that produced them,
            which can differ from :attr:`model_id` once a concurrent batch
            has triggered a fallback

        Raises:
            EmbeddingError: Permanent provider errors, or every provider failed
        """
        while True:
            index = self._active_index
            provider = self.providers[index]
            try:
                vectors = await provider.embed_batch(texts, input_type)
                validate_embeddings(
                    vectors, len(texts), provider.dimension, provider.model_id
                )
                return vectors, provider.model_id
            except EmbeddingError as e:
                if not e.is_transient:
                    raise
                if self._active_index != index:
                    # a concurrent batch already moved past this provider
                    continue
                if index + 1 >= len(self.providers):
                    raise
                self._active_index = index + 1
                self.fallback_reason = f"{provider.model_id} unavailable: {e}"
                logger.warning(
                    f"Embedding provider {provider.model_id} failed ({e}); "
                    f"falling back to {self.active_provider.model_id}"
                )

    async def close(self) -> None:
        for provider in self.providers:
            await provider.close()


# ── Cache ───────────────────────────────────────────────────────────────


class EmbeddingCache:
    """LRU cache for embeddings with optional disk persistence.

    Owned by the orchestrator per workspace and injected into the gateway.
    """

    def __init__(self, cache_dir: Path | None = None, max_size: int = 1000) -> None:
        """Initialize embedding cache.

        Args:
            cache_dir: Directory to store cached embeddings; memory only if None
            max_size: Maximum number of embeddings to keep in memory
        """
        self.cache_dir = cache_dir
        if self.cache_dir is not None:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.max_size = max_size
        self._memory_cache: OrderedDict[str, np.ndarray] = OrderedDict()
        self._cache_hits = 0
        self._cache_misses = 0

    @staticmethod
    def cache_key(model_id: str, input_type: InputType, content: str) -> str:
        raw = f"{model_id}::{input_type.value}::{content}"
        return hashlib.sha256(raw.encode()).hexdigest()[:16]

    async def get_embedding(self, key: str) -> np.ndarray | None:
        """Get cached embedding by key."""
        if key in self._memory_cache:
            self._cache_hits += 1
            self._memory_cache.move_to_end(key)
            return self._memory_cache[key]

        if self.cache_dir is not None:
            cache_file = self.cache_dir / f"{key}.json"
            if cache_file.exists():
                try:
                    async with aiofiles.open(cache_file, "rb") as f:
                        embedding = np.asarray(
                            orjson.loads(await f.read()), dtype=np.float32
                        )
                    self._add_to_memory_cache(key, embedding)
                    self._cache_hits += 1
                    return embedding
                except (OSError, orjson.JSONDecodeError) as e:
                    logger.warning(f"Failed to load cached embedding: {e}")

        self._cache_misses += 1
        return None

    async def store_embedding(self, key: str, embedding: np.ndarray) -> None:
        """Store embedding in cache."""
        self._add_to_memory_cache(key, embedding)

        if self.cache_dir is not None:
            cache_file = self.cache_dir / f"{key}.json"
            try:
                async with aiofiles.open(cache_file, "wb") as f:
                    await f.write(
                        orjson.dumps(embedding, option=orjson.OPT_SERIALIZE_NUMPY)
                    )
            except OSError as e:
                logger.warning(f"Failed to cache embedding: {e}")

    def _add_to_memory_cache(self, key: str, embedding: np.ndarray) -> None:
        if self.max_size <= 0:
            return
        if key in self._memory_cache:
            self._memory_cache.move_to_end(key)
        elif len(self._memory_cache) >= self.max_size:
            self._memory_cache.popitem(last=False)
        self._memory_cache[key] = embedding

    def clear_memory_cache(self) -> None:
        self._memory_cache.clear()

    def close(self) -> None:
        """Release the memory tier; disk entries survive for the next session."""
        self.clear_memory_cache()

    def get_cache_stats(self) -> dict[str, Any]:
        total_requests = self._cache_hits + self._cache_misses
        hit_rate = self._cache_hits / total_requests if total_requests > 0 else 0.0
        disk_files = (
            len(list(self.cache_dir.glob("*.json")))
            if self.cache_dir is not None and self.cache_dir.exists()
            else 0
        )
        return {
            "memory_cache_size": len(self._memory_cache),
            "max_cache_size": self.max_size,
            "cache_hits": self._cache_hits,
            "cache_misses": self._cache_misses,
            "hit_rate": round(hit_rate, 3),
            "disk_cache_files": disk_files,
        }


# ── Gateway ─────────────────────────────────────────────────────────────


class EmbeddingGateway:
    """Token-aware batching front end over a :class:`FallbackEmbeddingStrategy`.

    Output is aligned 1:1 with the input: blank inputs are never sent to a
    provider and receive zero vectors in their positions.
    """

    def __init__(
        self,
        strategy: FallbackEmbeddingStrategy,
        cache: EmbeddingCache | None = None,
        max_batch_items: int = MAX_BATCH_ITEMS,
        max_batch_tokens: int = MAX_BATCH_TOKENS,
    ) -> None:
        self.strategy = strategy
        self.cache = cache
        self.max_batch_items = min(max_batch_items, MAX_BATCH_ITEMS)
        self.max_batch_tokens = max_batch_tokens

    @property
    def model_id(self) -> str:
        return self.strategy.model_id

    @property
    def is_fallback(self) -> bool:
        return self.strategy.is_fallback

    async def embed(
        self,
        texts: list[str],
        input_type: InputType = InputType.DOCUMENT,
        cancellation: CancellationToken | None = None,
    ) -> list[np.ndarray]:
        """Embed texts, preserving input order.

        Args:
            texts: Texts to embed
            input_type: Document or query role
            cancellation: Checked between batches

        Returns:
            One vector per input text

        Raises:
            OperationCancelledError: Cancelled between batches; ``partial``
                maps input positions to vectors already produced
            EmbeddingError: Provider failures that could not be recovered
        """
        vectors, _ = await self.embed_with_models(texts, input_type, cancellation)
        return vectors

    async def embed_with_models(
        self,
        texts: list[str],
        input_type: InputType = InputType.DOCUMENT,
        cancellation: CancellationToken | None = None,
    ) -> tuple[list[np.ndarray], list[str | None]]:
        """Like :meth:`embed`, also naming the model behind each vector.

        Blank inputs get ``None``. Batches served before and after a
        fallback carry different model ids.
        """
        results: dict[int, np.ndarray] = {}
        models: dict[int, str] = {}

        positions = [i for i, text in enumerate(texts) if text and text.strip()]
        filtered = len(texts) - len(positions)
        if filtered:
            logger.debug(f"Filtered {filtered} empty texts before embedding")

        prepared: list[str] = []
        for position in positions:
            text = texts[position]
            truncated = truncate_to_budget(text, self.max_batch_tokens)
            if len(truncated) < len(text):
                logger.warning(
                    f"Truncated text at position {position} from ~{estimate_tokens(text)} "
                    f"to ~{estimate_tokens(truncated)} tokens to fit the batch budget"
                )
            prepared.append(truncated)

        pending: list[int] = []
        if self.cache is not None:
            lookup_model = self.model_id
            for slot, text in enumerate(prepared):
                key = EmbeddingCache.cache_key(lookup_model, input_type, text)
                cached = await self.cache.get_embedding(key)
                if cached is not None:
                    results[positions[slot]] = cached
                    models[positions[slot]] = lookup_model
                else:
                    pending.append(slot)
        else:
            pending = list(range(len(prepared)))

        pending_texts = [prepared[slot] for slot in pending]
        batches = split_into_batches(
            pending_texts, self.max_batch_items, self.max_batch_tokens
        )
        if len(batches) > 1:
            logger.debug(f"Embedding {len(pending_texts)} texts in {len(batches)} batches")

        for batch in batches:
            if cancellation is not None and cancellation.is_cancelled:
                raise OperationCancelledError(
                    "Embedding cancelled", partial=dict(results)
                )
            batch_texts = [pending_texts[i] for i in batch]
            vectors, served_by = await self.strategy.embed_batch_with_model(
                batch_texts, input_type
            )
            for i, vector in zip(batch, vectors, strict=True):
                slot = pending[i]
                results[positions[slot]] = vector
                models[positions[slot]] = served_by
                if self.cache is not None:
                    key = EmbeddingCache.cache_key(
                        served_by, input_type, prepared[slot]
                    )
                    await self.cache.store_embedding(key, vector)

        dimension = self._output_dimension(results)
        zero = np.zeros(dimension, dtype=np.float32)
        return (
            [results.get(i, zero) for i in range(len(texts))],
            [models.get(i) for i in range(len(texts))],
        )

    def _output_dimension(self, results: dict[int, np.ndarray]) -> int:
        if results:
            return int(next(iter(results.values())).shape[0])
        try:
            return self.strategy.dimension
        except ProviderUnavailableError:
            return 0

    async def close(self) -> None:
        await self.strategy.close()
        if self.cache is not None:
            self.cache.close()


def create_embedding_strategy(
    settings: IndexingSettings,
    client: httpx.AsyncClient | None = None,
) -> FallbackEmbeddingStrategy:
    """Build the provider priority list from settings.

    Order: remote API (when a key is configured), then the local ONNX model
    (runtime ``onnx`` or ``auto``), then the hash runtime, which is always last.
    """
    providers: list[EmbeddingProvider] = []

    if settings.has_remote_provider:
        providers.append(
            RemoteEmbeddingProvider(
                api_key=settings.embedding_api_key or "",
                api_url=settings.embedding_api_url,
                model=settings.embedding_model,
                dimension=settings.embedding_dimension,
                rate_limiter=RateLimiter(settings.requests_per_minute),
                timeout=settings.request_timeout,
                client=client,
            )
        )

    if settings.embedding_runtime in (EmbeddingRuntime.ONNX, EmbeddingRuntime.AUTO):
        providers.append(LocalModelEmbeddingProvider(settings.local_model_name))

    providers.append(HashEmbeddingProvider())

    logger.debug(
        "Embedding provider order: " + " -> ".join(p.model_id for p in providers)
    )
    return FallbackEmbeddingStrategy(providers)


def create_embedding_gateway(
    settings: IndexingSettings,
    cache: EmbeddingCache | None = None,
    client: httpx.AsyncClient | None = None,
) -> EmbeddingGateway:
    return EmbeddingGateway(
        create_embedding_strategy(settings, client=client),
        cache=cache,
        max_batch_items=settings.embedding_batch_size,
        max_batch_tokens=settings.max_batch_tokens,
    )

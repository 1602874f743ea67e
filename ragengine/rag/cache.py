"""Content-addressed embedding cache."""

import asyncio
import threading
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, MutableMapping, Optional, Sequence, Tuple

import numpy as np

from ragengine.embeddings.base import EmbeddingProvider, as_vector
from ragengine.exceptions import DimensionMismatchError, PermanentProviderError
from ragengine.models import CacheKey, Chunk
from ragengine.utils.logger import get_logger

logger = get_logger("cache")


@dataclass
class CacheStats:
    """Counters for cache activity."""
    hits: int = 0
    misses: int = 0
    waits: int = 0
    provider_calls: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class _OwnerFailed(Exception):
    """Set on an in-flight future whose computing caller failed or was cancelled."""


class EmbeddingCache:
    """Maps (content hash, model id) to an embedding vector.

    A key is computed successfully at most once across concurrent callers:
    a caller that misses registers an in-flight future for the key, other
    callers await that future instead of calling the provider again. If the
    owning call fails or is cancelled, its waiters claim the key again and
    embed it in their own batch, so one caller's bad input never fails
    another caller. The lock only guards the key space and is never held
    while the provider runs.

    The backing store is any ``MutableMapping``; the default ``dict`` is
    unbounded.
    """

    def __init__(self, store: Optional[MutableMapping[CacheKey, np.ndarray]] = None):
        self._store: MutableMapping[CacheKey, np.ndarray] = store if store is not None else {}
        self._in_flight: Dict[CacheKey, asyncio.Future] = {}
        self._dimensions: Dict[str, int] = {}
        self._lock = threading.Lock()
        self.stats = CacheStats()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def __contains__(self, key: CacheKey) -> bool:
        with self._lock:
            return key in self._store

    def get(self, key: CacheKey) -> Optional[np.ndarray]:
        """Return the cached vector for ``key`` or None."""
        with self._lock:
            return self._store.get(key)

    def dimension(self, model_id: str) -> Optional[int]:
        """Dimension recorded for ``model_id``, if any vector was cached for it."""
        with self._lock:
            return self._dimensions.get(model_id)

    async def get_or_compute(
        self,
        chunks: Sequence[Chunk],
        model_id: str,
        provider: EmbeddingProvider
    ) -> Dict[Chunk, np.ndarray]:
        """
        Return a vector for every chunk, embedding only the cache misses.

        Args:
            chunks: Chunks to embed
            model_id: Embedding model identifier, part of the cache key
            provider: Provider called once with all texts that are neither
                cached nor being computed by another caller

        Returns:
            Mapping from each chunk to its vector

        Raises:
            EmbeddingProviderError: The provider call this request depends on failed
            DimensionMismatchError: The provider returned vectors of the wrong size
        """
        if not chunks:
            return {}

        keys = {chunk: CacheKey(chunk.content_hash, model_id) for chunk in chunks}
        texts: Dict[CacheKey, str] = {}
        for chunk, key in keys.items():
            texts.setdefault(key, chunk.text)

        resolved: Dict[CacheKey, np.ndarray] = {}
        pending = list(texts)

        while pending:
            owned, waiting = self._claim(pending, resolved)
            if owned:
                await self._compute(owned, texts, model_id, provider, resolved)
            pending = await self._await_in_flight(waiting, resolved)

        return {chunk: resolved[key] for chunk, key in keys.items()}

    def _claim(
        self,
        keys: Iterable[CacheKey],
        resolved: Dict[CacheKey, np.ndarray]
    ) -> Tuple[List[Tuple[CacheKey, asyncio.Future]], List[Tuple[CacheKey, asyncio.Future]]]:
        """Partition keys into hits, keys owned by this caller and keys to wait for."""
        loop = asyncio.get_running_loop()
        owned = []
        waiting = []

        with self._lock:
            for key in keys:
                vector = self._store.get(key)
                if vector is not None:
                    resolved[key] = vector
                    self.stats.hits += 1
                elif key in self._in_flight:
                    waiting.append((key, self._in_flight[key]))
                    self.stats.waits += 1
                else:
                    future = loop.create_future()
                    self._in_flight[key] = future
                    owned.append((key, future))
                    self.stats.misses += 1

        logger.debug(
            f"Embedding cache: {len(resolved)} resolved, {len(owned)} to compute, "
            f"{len(waiting)} in flight elsewhere"
        )
        return owned, waiting

    async def _compute(
        self,
        owned: List[Tuple[CacheKey, asyncio.Future]],
        texts: Dict[CacheKey, str],
        model_id: str,
        provider: EmbeddingProvider,
        resolved: Dict[CacheKey, np.ndarray]
    ):
        """Embed the owned keys in one provider call and publish the results."""
        try:
            with self._lock:
                self.stats.provider_calls += 1
            raw_vectors = await provider.embed([texts[key] for key, _ in owned])
            vectors = self._validate(model_id, len(owned), raw_vectors)
        except BaseException:
            self._release(owned)
            raise

        with self._lock:
            for (key, future), vector in zip(owned, vectors):
                self._store[key] = vector
                self._in_flight.pop(key, None)
                resolved[key] = vector
                if not future.done():
                    future.set_result(vector)

    async def _await_in_flight(
        self,
        waiting: List[Tuple[CacheKey, asyncio.Future]],
        resolved: Dict[CacheKey, np.ndarray]
    ) -> List[CacheKey]:
        """Wait for computations owned by other callers; return keys to retry."""
        retry = []

        for key, future in waiting:
            try:
                # Shielded so cancelling this caller leaves the shared future alone
                resolved[key] = await asyncio.shield(future)
            except _OwnerFailed:
                retry.append(key)

        return retry

    def _release(self, owned: List[Tuple[CacheKey, asyncio.Future]]):
        """Drop in-flight markers and tell any waiters to claim the keys again."""
        with self._lock:
            for key, future in owned:
                self._in_flight.pop(key, None)
                if not future.done():
                    future.set_exception(_OwnerFailed())
                    # Mark as retrieved; waiters (if any) still receive it
                    future.exception()

    def _validate(self, model_id: str, expected_count: int, raw_vectors) -> List[np.ndarray]:
        """Check count and dimension of provider output; return read-only copies."""
        if raw_vectors is None or len(raw_vectors) != expected_count:
            count = 0 if raw_vectors is None else len(raw_vectors)
            raise PermanentProviderError(
                f"Provider returned {count} vectors for {expected_count} inputs"
            )

        vectors = []
        for raw in raw_vectors:
            vector = as_vector(raw).copy()
            vector.setflags(write=False)
            vectors.append(vector)

        with self._lock:
            expected = self._dimensions.get(model_id, vectors[0].shape[0])
            for vector in vectors:
                if vector.shape[0] != expected:
                    raise DimensionMismatchError(expected, vector.shape[0], f"Embedding from {model_id}")
            self._dimensions[model_id] = expected

        return vectors

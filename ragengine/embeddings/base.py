"""Embedding provider interface."""

from abc import ABC, abstractmethod
from typing import List, Sequence

import numpy as np


class EmbeddingProvider(ABC):
    """Maps a batch of texts to fixed-dimension vectors.

    Implementations raise ``TransientProviderError`` for failures that may
    succeed on retry (network, timeouts, rate limits) and
    ``PermanentProviderError`` for everything else. The engine never retries
    a failed call itself.
    """

    #: Identifier of the embedding model; cache entries are keyed by it.
    model_id: str

    #: Largest number of texts sent to the backend in one request.
    max_batch_size: int = 64

    @abstractmethod
    async def embed(self, texts: Sequence[str]) -> List[np.ndarray]:
        """
        Embed a batch of texts.

        Args:
            texts: Texts to embed

        Returns:
            One vector per input text, in input order
        """
        pass

    async def embed_query(self, text: str) -> np.ndarray:
        """Embed a single query text."""
        vectors = await self.embed([text])
        return vectors[0]


def as_vector(values) -> np.ndarray:
    """Convert a sequence of floats to a 1-D float32 array."""
    vector = np.asarray(values, dtype=np.float32)
    if vector.ndim != 1:
        raise ValueError(f"Embedding must be one-dimensional, got shape {vector.shape}")
    return vector

"""Embedding provider backed by an Ollama server."""

from typing import List, Optional, Sequence

import httpx
import numpy as np
import ollama

from ragengine.embeddings.base import EmbeddingProvider, as_vector
from ragengine.exceptions import PermanentProviderError, TransientProviderError
from ragengine.utils.logger import get_logger

logger = get_logger("embeddings")

# Status codes worth retrying: request timeout, rate limit and server errors
_TRANSIENT_STATUS = {408, 429}


class OllamaEmbeddingProvider(EmbeddingProvider):
    """Generates embeddings with ``ollama.AsyncClient.embed``."""

    def __init__(
        self,
        model_id: str,
        host: str = "http://localhost:11434",
        max_batch_size: int = 64,
        timeout: Optional[float] = 60.0,
        client: Optional[ollama.AsyncClient] = None
    ):
        """
        Initialize the provider.

        Args:
            model_id: Ollama embedding model name (e.g. mxbai-embed-large)
            host: Ollama server URL
            max_batch_size: Texts per embed request
            timeout: Request timeout in seconds (None disables it)
            client: Pre-built client, mainly for tests
        """
        if not model_id or not model_id.strip():
            raise ValueError("model_id must not be empty")
        if max_batch_size <= 0:
            raise ValueError("max_batch_size must be positive")

        self.model_id = model_id.strip()
        self.max_batch_size = max_batch_size
        self.client = client or ollama.AsyncClient(host=host, timeout=timeout)

        logger.info(f"Initialized Ollama embedding provider with model {self.model_id} at {host}")

    async def embed(self, texts: Sequence[str]) -> List[np.ndarray]:
        """
        Embed texts in batches of ``max_batch_size``.

        Raises:
            TransientProviderError: Server unreachable, timed out or overloaded
            PermanentProviderError: Request rejected or malformed response
        """
        texts = list(texts)
        vectors: List[np.ndarray] = []

        for i in range(0, len(texts), self.max_batch_size):
            batch = texts[i:i + self.max_batch_size]
            logger.debug(f"Embedding batch of {len(batch)} texts with {self.model_id}")

            try:
                response = await self.client.embed(model=self.model_id, input=batch)
            except ollama.ResponseError as e:
                if e.status_code in _TRANSIENT_STATUS or e.status_code >= 500:
                    raise TransientProviderError(
                        f"Ollama returned {e.status_code}: {e.error}"
                    ) from e
                raise PermanentProviderError(
                    f"Ollama rejected embed request ({e.status_code}): {e.error}"
                ) from e
            except ollama.RequestError as e:
                raise PermanentProviderError(f"Invalid embed request: {e.error}") from e
            except (httpx.TransportError, ConnectionError) as e:
                raise TransientProviderError(f"Could not reach Ollama: {e}") from e

            embeddings = response["embeddings"]
            if len(embeddings) != len(batch):
                raise PermanentProviderError(
                    f"Ollama returned {len(embeddings)} embeddings for {len(batch)} inputs"
                )

            vectors.extend(as_vector(embedding) for embedding in embeddings)

        return vectors

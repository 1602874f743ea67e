"""RAG engine: owns the cache, the index and both pipelines."""

import asyncio
import threading
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from ragengine.embeddings.base import EmbeddingProvider
from ragengine.embeddings.ollama_provider import OllamaEmbeddingProvider
from ragengine.exceptions import PreconditionError
from ragengine.generation.base import Generator
from ragengine.generation.ollama_generator import OllamaGenerator
from ragengine.loaders.base import DocumentLoader
from ragengine.loaders.web_loader import WebLoader
from ragengine.models import LoaderSummary, QueryResult, RetrievalResult
from ragengine.rag.cache import EmbeddingCache
from ragengine.rag.chunker import Chunker
from ragengine.rag.ingestion import IngestionOrchestrator
from ragengine.rag.retriever import RAGRetriever
from ragengine.utils.config import EngineConfig, Settings
from ragengine.utils.logger import get_logger
from ragengine.vectorstore.hnsw_index import HNSWIndex

logger = get_logger("engine")


class EngineState(str, Enum):
    """Lifecycle of a RAG engine."""
    UNINITIALIZED = "uninitialized"  # Nothing ingested yet
    BUILDING = "building"            # An ingestion is running
    READY = "ready"                  # Queryable


class RAGEngine:
    """Ingests sources and answers queries over them.

    All state (embedding cache, vector index) belongs to the engine instance.
    Queries are accepted once an ingestion has indexed at least one source;
    later ingestions may run while queries are served.
    """

    def __init__(
        self,
        config: EngineConfig,
        provider: EmbeddingProvider,
        loader: DocumentLoader,
        generator: Optional[Generator] = None,
        cache: Optional[EmbeddingCache] = None,
        index: Optional[HNSWIndex] = None
    ):
        """
        Initialize the engine.

        Args:
            config: Validated engine options
            provider: Embedding provider; its model_id must match config.embedding_model
            loader: Fetch capability for sources
            generator: Answer generator (default returns the assembled context)
            cache: Embedding cache to use instead of a new one
            index: Vector index to use instead of a new one

        Raises:
            ValueError: Provider model or index dimension disagrees with the config
        """
        if not isinstance(config, EngineConfig):
            raise TypeError("config must be an EngineConfig")
        if provider.model_id != config.embedding_model:
            raise ValueError(
                f"Provider model '{provider.model_id}' does not match "
                f"configured embedding model '{config.embedding_model}'"
            )
        if (
            index is not None
            and config.embedding_dimension is not None
            and index.dimension is not None
            and index.dimension != config.embedding_dimension
        ):
            raise ValueError(
                f"Index dimension {index.dimension} does not match "
                f"configured dimension {config.embedding_dimension}"
            )

        self.config = config
        self.provider = provider
        self.loader = loader

        self.chunker = Chunker(
            chunk_size=config.chunk_size,
            chunk_overlap=config.chunk_overlap,
            strategy=config.chunking_strategy,
        )
        self.cache = cache if cache is not None else EmbeddingCache()
        self.index = index if index is not None else HNSWIndex(
            dimension=config.embedding_dimension,
            m=config.hnsw_m,
            ef_construction=config.ef_construction,
            ef_search=config.ef_search,
            seed=config.index_seed,
            duplicate_policy=config.duplicate_policy,
        )
        self.ingestor = IngestionOrchestrator(
            loader=loader,
            chunker=self.chunker,
            cache=self.cache,
            provider=provider,
            index=self.index,
            concurrency=config.ingest_concurrency,
        )
        self.retriever = RAGRetriever(
            provider=provider,
            index=self.index,
            generator=generator,
            top_k=config.top_k,
            similarity_threshold=config.similarity_threshold,
            diversify_sources=config.diversify_sources,
            diversity_fetch_factor=config.diversity_fetch_factor,
            max_context_chars=config.max_context_chars,
        )

        self._state_lock = threading.Lock()
        self._active_ingestions = 0
        self._ready = False

        logger.info(
            f"Built RAG engine with embedding model {config.embedding_model} "
            f"(chunk_size={config.chunk_size}, top_k={config.top_k})"
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "RAGEngine":
        """Wire an engine with the Ollama adapters and the web loader."""
        settings = settings or Settings()

        provider = OllamaEmbeddingProvider(
            model_id=settings.ollama_embedding_model,
            host=settings.ollama_base_url,
            max_batch_size=settings.embedding_batch_size,
            timeout=settings.ollama_timeout_seconds,
        )
        loader = WebLoader(
            user_agent=settings.loader_user_agent,
            timeout=settings.loader_timeout_seconds,
            max_retries=settings.loader_max_retries,
        )
        generator = OllamaGenerator(
            model=settings.ollama_model_name,
            host=settings.ollama_base_url,
            temperature=settings.response_temperature,
            max_tokens=settings.max_response_tokens,
        )

        return cls(settings.engine_config(), provider, loader, generator)

    @property
    def state(self) -> EngineState:
        with self._state_lock:
            if self._active_ingestions:
                return EngineState.BUILDING
            return EngineState.READY if self._ready else EngineState.UNINITIALIZED

    async def ingest(
        self,
        sources: Sequence[str],
        cancel_event: Optional[asyncio.Event] = None
    ) -> List[LoaderSummary]:
        """
        Ingest sources concurrently.

        Returns:
            One LoaderSummary per source, in input order

        Raises:
            IngestionFailedError: Every source failed
        """
        with self._state_lock:
            self._active_ingestions += 1

        try:
            summaries = await self.ingestor.ingest(sources, cancel_event)
            if any(summary.success for summary in summaries):
                with self._state_lock:
                    self._ready = True
            return summaries
        finally:
            with self._state_lock:
                self._active_ingestions -= 1

    async def retrieve(self, text: str) -> RetrievalResult:
        """Ranked passages for ``text`` without generation."""
        self._require_ready()
        return await self.retriever.retrieve(text)

    async def query(self, text: str) -> QueryResult:
        """
        Answer a query from the indexed sources.

        Raises:
            PreconditionError: No source has been ingested yet
        """
        self._require_ready()
        return await self.retriever.query(text)

    def stats(self) -> Dict[str, Any]:
        """Engine state, index shape and cache counters."""
        return {
            "state": self.state.value,
            "index": self.index.stats(),
            "cache_entries": len(self.cache),
            "cache": self.cache.stats.to_dict(),
        }

    def _require_ready(self):
        with self._state_lock:
            ready = self._ready
        if not ready:
            raise PreconditionError("No sources have been ingested yet; call ingest() first")

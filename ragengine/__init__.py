"""In-memory retrieval-augmented generation engine."""

from ragengine.engine import EngineState, RAGEngine
from ragengine.exceptions import (
    DimensionMismatchError,
    EmbeddingProviderError,
    GenerationError,
    IngestionCancelledError,
    IngestionFailedError,
    PermanentProviderError,
    PreconditionError,
    RAGEngineError,
    SourceFetchError,
    TransientProviderError,
)
from ragengine.loaders.base import DocumentLoader, InMemoryLoader
from ragengine.models import (
    CacheKey,
    Chunk,
    ContextBundle,
    Document,
    IndexEntry,
    LoaderSummary,
    QueryResult,
    RetrievalResult,
    SearchHit,
)
from ragengine.utils.config import ChunkingStrategy, DuplicatePolicy, EngineConfig, Settings
from ragengine.utils.logger import get_logger, setup_logger

__version__ = "0.1.0"

__all__ = [
    "RAGEngine",
    "EngineState",
    "EngineConfig",
    "Settings",
    "DocumentLoader",
    "InMemoryLoader",
    "setup_logger",
    "get_logger",
    "ChunkingStrategy",
    "DuplicatePolicy",
    "Document",
    "Chunk",
    "CacheKey",
    "IndexEntry",
    "SearchHit",
    "LoaderSummary",
    "RetrievalResult",
    "ContextBundle",
    "QueryResult",
    "RAGEngineError",
    "EmbeddingProviderError",
    "TransientProviderError",
    "PermanentProviderError",
    "DimensionMismatchError",
    "PreconditionError",
    "SourceFetchError",
    "IngestionCancelledError",
    "IngestionFailedError",
    "GenerationError",
]

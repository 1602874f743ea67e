"""Exceptions raised by the RAG engine."""

from typing import List, TYPE_CHECKING

if TYPE_CHECKING:
    from ragengine.models import LoaderSummary


class RAGEngineError(Exception):
    """Base class for engine errors."""
    pass


class EmbeddingProviderError(RAGEngineError):
    """Exception raised when the embedding provider fails."""
    pass


class TransientProviderError(EmbeddingProviderError):
    """Network, timeout or rate-limit failure; the call may succeed if retried."""
    pass


class PermanentProviderError(EmbeddingProviderError):
    """Bad input, unknown model or unsupported content; retrying will not help."""
    pass


class DimensionMismatchError(RAGEngineError, ValueError):
    """Vector dimension does not match the dimension configured for the model."""

    def __init__(self, expected: int, actual: int, context: str = "vector"):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{context} has dimension {actual}, expected {expected}"
        )


class PreconditionError(RAGEngineError):
    """Operation issued in a state that does not allow it."""
    pass


class SourceFetchError(RAGEngineError):
    """Exception raised when a document loader cannot fetch a source."""

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Failed to fetch {source}: {reason}")


class IngestionCancelledError(RAGEngineError):
    """Source ingestion was cancelled before it completed."""
    pass


class IngestionFailedError(RAGEngineError):
    """Every source of an ingestion run failed."""

    def __init__(self, summaries: List["LoaderSummary"]):
        self.summaries = summaries
        super().__init__(f"All {len(summaries)} sources failed to ingest")


class GenerationError(RAGEngineError):
    """Exception raised when the generation model fails."""
    pass

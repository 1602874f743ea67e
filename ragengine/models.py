"""Data structures shared by the ingestion and retrieval pipelines."""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional

import numpy as np


@dataclass(frozen=True)
class Document:
    """Fetched source content. Immutable once loaded."""
    source: str
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class Chunk:
    """A contiguous span of normalized document text."""
    chunk_id: str
    source: str
    text: str
    content_hash: str
    chunk_index: int = 0
    start_char: int = 0
    end_char: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert chunk to dictionary."""
        return asdict(self)


class CacheKey(NamedTuple):
    """Identity of a cached embedding."""
    content_hash: str
    model_id: str


@dataclass(frozen=True)
class IndexEntry:
    """A vector stored in the index together with its provenance."""
    vector: np.ndarray = field(compare=False, repr=False)
    chunk_id: str
    source: str
    text: str
    content_hash: str
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def dimension(self) -> int:
        return int(self.vector.shape[0])


class SearchHit(NamedTuple):
    """An index entry and its cosine similarity to the query."""
    entry: IndexEntry
    score: float


@dataclass(frozen=True)
class LoaderSummary:
    """Outcome of ingesting one source."""
    source: str
    chunk_count: int
    success: bool
    error: Optional[str] = None
    error_type: Optional[str] = None
    entries_added: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)


@dataclass
class RetrievalResult:
    """Ranked hits for a query plus the sources they came from."""
    query: str
    hits: List[SearchHit]
    sources: List[str]

    @property
    def found_documents(self) -> int:
        return len(self.hits)


@dataclass
class ContextBundle:
    """Assembled context handed to the generation step."""
    query: str
    context: str
    passages: List[str]
    sources: List[str]


@dataclass
class QueryResult:
    """Answer returned to the caller of ``query``."""
    result: str
    sources: List[str]
    context: Optional[ContextBundle] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"result": self.result, "sources": list(self.sources)}

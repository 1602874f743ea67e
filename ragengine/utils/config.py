"""Configuration management using pydantic and pydantic-settings.

``EngineConfig`` is the explicit, validated option set handed to the engine
once at construction. ``Settings`` only reads the environment (``RAG_`` prefix
or a ``.env`` file) at the process boundary and converts itself into an
``EngineConfig``.
"""

from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ChunkingStrategy(str, Enum):
    """Different strategies for chunking text."""
    FIXED = "fixed"  # Fixed character windows
    SENTENCE = "sentence"  # Sentence-aware chunking
    PARAGRAPH = "paragraph"  # Paragraph-aware chunking


class DuplicatePolicy(str, Enum):
    """What the vector index does with an entry whose content is already indexed."""
    ALLOW = "allow"      # Insert every entry
    SOURCE = "source"    # Skip if (source, content hash) is already indexed
    CONTENT = "content"  # Skip if the content hash is indexed from any source


class EngineConfig(BaseModel):
    """Engine options, validated eagerly."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    embedding_model: str = Field(
        description="Embedding model identifier; must match the provider's model_id"
    )
    embedding_dimension: Optional[int] = Field(
        default=None, gt=0,
        description="Vector dimension (None = take it from the first vector indexed)"
    )

    # Chunking
    chunk_size: int = Field(default=500, gt=0, description="Maximum characters per chunk")
    chunk_overlap: int = Field(default=50, ge=0, description="Characters re-used from the previous chunk")
    chunking_strategy: ChunkingStrategy = ChunkingStrategy.SENTENCE

    # Retrieval
    top_k: int = Field(default=5, gt=0, description="Number of passages retrieved per query")
    similarity_threshold: Optional[float] = Field(
        default=None, ge=-1.0, le=1.0,
        description="Drop hits with a cosine similarity below this value"
    )
    diversify_sources: bool = Field(
        default=False, description="Keep only the best passage per source"
    )
    diversity_fetch_factor: int = Field(
        default=3, ge=1,
        description="Over-fetch multiplier used when diversifying sources"
    )
    max_context_chars: Optional[int] = Field(
        default=None, gt=0, description="Truncate the assembled context to this many characters"
    )

    # HNSW index
    hnsw_m: int = Field(default=16, ge=2, description="Links per node on the upper layers")
    ef_construction: int = Field(default=200, gt=0, description="Beam width while inserting")
    ef_search: int = Field(default=64, gt=0, description="Beam width while searching")
    index_seed: int = Field(default=42, description="Seed for HNSW level sampling")
    duplicate_policy: DuplicatePolicy = DuplicatePolicy.SOURCE

    # Ingestion
    ingest_concurrency: int = Field(default=8, gt=0, description="Sources processed at once")

    @field_validator("embedding_model")
    @classmethod
    def _model_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("embedding_model must not be empty")
        return value

    @model_validator(mode="after")
    def _overlap_below_size(self) -> "EngineConfig":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be less than chunk_size")
        return self


class Settings(BaseSettings):
    """Environment settings read at the process boundary."""

    model_config = SettingsConfigDict(
        env_prefix="RAG_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Ollama Configuration
    ollama_base_url: str = "http://localhost:11434"
    ollama_model_name: str = "llama3.2:3b"
    ollama_embedding_model: str = "mxbai-embed-large"
    ollama_timeout_seconds: float = 60.0
    embedding_batch_size: int = 64

    # Response Configuration
    max_response_tokens: int = 500
    response_temperature: float = 0.3

    # RAG Configuration
    embedding_dimension: Optional[int] = None
    chunk_size: int = 500
    chunk_overlap: int = 50
    chunking_strategy: ChunkingStrategy = ChunkingStrategy.SENTENCE
    top_k: int = 5
    similarity_threshold: Optional[float] = None
    diversify_sources: bool = False
    diversity_fetch_factor: int = 3
    max_context_chars: Optional[int] = None
    hnsw_m: int = 16
    ef_construction: int = 200
    ef_search: int = 64
    index_seed: int = 42
    ingest_concurrency: int = 8
    duplicate_policy: DuplicatePolicy = DuplicatePolicy.SOURCE

    # Web loader
    loader_user_agent: str = "Mozilla/5.0 (compatible; RAGEngine/1.0)"
    loader_timeout_seconds: float = 10.0
    loader_max_retries: int = 3

    # Logging Configuration
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "text"
    log_file_path: Optional[str] = None
    log_max_size_mb: int = 100
    log_backup_count: int = 5

    def engine_config(self) -> EngineConfig:
        """Build the validated engine options from these settings."""
        return EngineConfig(
            embedding_model=self.ollama_embedding_model,
            embedding_dimension=self.embedding_dimension,
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
            chunking_strategy=self.chunking_strategy,
            top_k=self.top_k,
            similarity_threshold=self.similarity_threshold,
            diversify_sources=self.diversify_sources,
            diversity_fetch_factor=self.diversity_fetch_factor,
            max_context_chars=self.max_context_chars,
            hnsw_m=self.hnsw_m,
            ef_construction=self.ef_construction,
            ef_search=self.ef_search,
            index_seed=self.index_seed,
            ingest_concurrency=self.ingest_concurrency,
            duplicate_policy=self.duplicate_policy,
        )

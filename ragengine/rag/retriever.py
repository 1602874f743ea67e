"""RAG retrieval and context preparation."""

from typing import List, Optional

from ragengine.embeddings.base import EmbeddingProvider
from ragengine.generation.base import ContextOnlyGenerator, Generator
from ragengine.models import ContextBundle, QueryResult, RetrievalResult, SearchHit
from ragengine.utils.logger import get_logger
from ragengine.vectorstore.hnsw_index import HNSWIndex

logger = get_logger("retriever")


class RAGRetriever:
    """Handles document retrieval and context preparation for RAG."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        index: HNSWIndex,
        generator: Optional[Generator] = None,
        top_k: int = 5,
        similarity_threshold: Optional[float] = None,
        diversify_sources: bool = False,
        diversity_fetch_factor: int = 3,
        max_context_chars: Optional[int] = None
    ):
        """
        Initialize RAG retriever.

        Args:
            provider: Embeds the query text (no cache lookup)
            index: Vector index to search
            generator: Answer generator (default returns the context itself)
            top_k: Number of passages retrieved per query
            similarity_threshold: Minimum similarity score, None keeps all hits
            diversify_sources: Keep only the best passage per source
            diversity_fetch_factor: Over-fetch multiplier when diversifying
            max_context_chars: Upper bound on the assembled context length
        """
        if top_k <= 0:
            raise ValueError("top_k must be positive")

        self.provider = provider
        self.index = index
        self.generator = generator or ContextOnlyGenerator()
        self.top_k = top_k
        self.similarity_threshold = similarity_threshold
        self.diversify_sources = diversify_sources
        self.diversity_fetch_factor = max(1, diversity_fetch_factor)
        self.max_context_chars = max_context_chars

    async def retrieve(self, query: str, top_k: Optional[int] = None) -> RetrievalResult:
        """
        Retrieve the passages most relevant to a query.

        Args:
            query: User query
            top_k: Override the configured number of passages

        Returns:
            RetrievalResult with hits in descending similarity and their sources

        Raises:
            ValueError: Empty query
            EmbeddingProviderError: The query could not be embedded
        """
        query = (query or "").strip()
        if not query:
            raise ValueError("Query must not be empty")

        k = top_k or self.top_k
        logger.info(f"Retrieving documents for query: '{query[:50]}' (top_k={k})")

        query_vector = await self.provider.embed_query(query)

        fetch_k = k * self.diversity_fetch_factor if self.diversify_sources else k
        hits = self.index.search(query_vector, fetch_k)

        if self.similarity_threshold is not None:
            hits = [hit for hit in hits if hit.score >= self.similarity_threshold]

        if self.diversify_sources:
            hits = self._diversify(hits)

        hits = hits[:k]
        sources = list(dict.fromkeys(hit.entry.source for hit in hits))

        if not hits:
            logger.warning(f"No documents found for query: '{query[:50]}'")
        else:
            logger.info(f"Retrieved {len(hits)} passages from {len(sources)} sources")

        return RetrievalResult(query=query, hits=hits, sources=sources)

    def build_context(self, result: RetrievalResult) -> ContextBundle:
        """
        Build the context bundle from retrieved hits.

        Passages are numbered in descending similarity order and dropped from
        the end once ``max_context_chars`` would be exceeded.
        """
        passages: List[str] = []
        sources: List[str] = []
        length = 0

        for idx, hit in enumerate(result.hits, 1):
            passage = f"[Source {idx}] {hit.entry.source}\n{hit.entry.text}"
            separator = 2 if passages else 0

            if self.max_context_chars is not None and length + separator + len(passage) > self.max_context_chars:
                if not passages:
                    passages.append(passage[:self.max_context_chars])
                    sources.append(hit.entry.source)
                break

            passages.append(passage)
            length += separator + len(passage)
            if hit.entry.source not in sources:
                sources.append(hit.entry.source)

        return ContextBundle(
            query=result.query,
            context="\n\n".join(passages),
            passages=passages,
            sources=sources,
        )

    async def query(self, query: str) -> QueryResult:
        """
        Retrieve context for a query and generate an answer from it.

        Raises:
            EmbeddingProviderError: The query could not be embedded
            GenerationError: The generator failed
        """
        result = await self.retrieve(query)
        bundle = self.build_context(result)

        answer = await self.generator.generate(result.query, bundle)

        return QueryResult(result=answer, sources=bundle.sources, context=bundle)

    @staticmethod
    def _diversify(hits: List[SearchHit]) -> List[SearchHit]:
        """Keep the best-scoring hit of each source; input is already ranked."""
        seen = set()
        diverse = []
        for hit in hits:
            if hit.entry.source in seen:
                continue
            seen.add(hit.entry.source)
            diverse.append(hit)
        return diverse

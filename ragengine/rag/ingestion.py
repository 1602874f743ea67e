"""Concurrent ingestion pipeline: fetch -> chunk -> embed -> index."""

import asyncio
import time
from typing import List, Optional, Sequence

from ragengine.embeddings.base import EmbeddingProvider
from ragengine.exceptions import (
    DimensionMismatchError,
    IngestionCancelledError,
    IngestionFailedError,
)
from ragengine.loaders.base import DocumentLoader
from ragengine.models import Chunk, Document, IndexEntry, LoaderSummary
from ragengine.rag.cache import EmbeddingCache
from ragengine.rag.chunker import Chunker
from ragengine.utils.logger import get_logger
from ragengine.vectorstore.hnsw_index import HNSWIndex

logger = get_logger("ingestion")


class IngestionOrchestrator:
    """Ingests sources concurrently, one task per source.

    Each source is an independent unit of work: its failure is recorded in its
    LoaderSummary and never affects the others. A source's entries are
    inserted into the index in a single synchronous call, so a source is
    either fully indexed or not indexed at all.
    """

    def __init__(
        self,
        loader: DocumentLoader,
        chunker: Chunker,
        cache: EmbeddingCache,
        provider: EmbeddingProvider,
        index: HNSWIndex,
        concurrency: int = 8
    ):
        """
        Initialize the orchestrator.

        Args:
            loader: Fetch capability for source descriptors
            chunker: Splits documents into chunks
            cache: Embedding cache shared by all sources
            provider: Embedding provider used for cache misses
            index: Vector index receiving the entries
            concurrency: Maximum number of sources processed at once
        """
        if concurrency <= 0:
            raise ValueError("concurrency must be positive")

        self.loader = loader
        self.chunker = chunker
        self.cache = cache
        self.provider = provider
        self.index = index
        self.concurrency = concurrency

    async def ingest(
        self,
        sources: Sequence[str],
        cancel_event: Optional[asyncio.Event] = None
    ) -> List[LoaderSummary]:
        """
        Ingest every source and report one summary per source.

        Args:
            sources: Source descriptors; duplicates are allowed
            cancel_event: Setting this event cancels all unfinished sources,
                which are then reported as failed

        Returns:
            Summaries in input order

        Raises:
            IngestionFailedError: Every source failed (summaries attached)
            DimensionMismatchError: Vectors do not fit the index; remaining
                sources are cancelled
        """
        sources = list(sources)
        if not sources:
            return []

        cancel_event = cancel_event or asyncio.Event()
        semaphore = asyncio.Semaphore(self.concurrency)
        start_time = time.monotonic()

        logger.info(
            f"Starting ingestion of {len(sources)} sources "
            f"(concurrency={self.concurrency})"
        )

        tasks = [
            asyncio.create_task(self._ingest_source(source, semaphore, cancel_event))
            for source in sources
        ]
        watcher = asyncio.create_task(self._cancel_when_set(cancel_event, tasks))

        try:
            summaries = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        finally:
            watcher.cancel()
            await asyncio.gather(watcher, return_exceptions=True)

        succeeded = sum(1 for summary in summaries if summary.success)
        logger.info(
            f"Ingestion finished in {time.monotonic() - start_time:.2f}s: "
            f"{succeeded}/{len(summaries)} sources succeeded, "
            f"{len(self.index)} entries indexed"
        )

        if succeeded == 0:
            raise IngestionFailedError(list(summaries))

        return list(summaries)

    async def _cancel_when_set(self, cancel_event: asyncio.Event, tasks: List[asyncio.Task]):
        await cancel_event.wait()
        pending = [task for task in tasks if not task.done()]
        if pending:
            logger.warning(f"Ingestion cancelled, stopping {len(pending)} unfinished sources")
        for task in pending:
            task.cancel()

    async def _ingest_source(
        self,
        source: str,
        semaphore: asyncio.Semaphore,
        cancel_event: asyncio.Event
    ) -> LoaderSummary:
        """Process one source and summarize the outcome."""
        start_time = time.monotonic()
        chunks: List[Chunk] = []

        try:
            if cancel_event.is_set():
                raise IngestionCancelledError(f"Ingestion of {source} cancelled")

            async with semaphore:
                logger.debug(f"Loading {source}")
                document = await self.loader.load(source)
                chunks = self.chunker.chunk(document)
                entries_added = await self._index_chunks(document, chunks)

        except asyncio.CancelledError:
            if not cancel_event.is_set():
                raise
            return self._failure(
                source, len(chunks), IngestionCancelledError(f"Ingestion of {source} cancelled"), start_time
            )
        except DimensionMismatchError:
            raise
        except Exception as e:
            return self._failure(source, len(chunks), e, start_time)

        duration = time.monotonic() - start_time
        logger.info(
            f"Ingested {source}: {len(chunks)} chunks, {entries_added} new entries "
            f"({duration:.2f}s)"
        )

        return LoaderSummary(
            source=source,
            chunk_count=len(chunks),
            success=True,
            entries_added=entries_added,
            duration_seconds=duration,
        )

    async def _index_chunks(self, document: Document, chunks: List[Chunk]) -> int:
        """Embed chunks through the cache and insert them into the index."""
        if not chunks:
            return 0

        vectors = await self.cache.get_or_compute(chunks, self.provider.model_id, self.provider)

        entries = [
            IndexEntry(
                vector=vectors[chunk],
                chunk_id=chunk.chunk_id,
                source=chunk.source,
                text=chunk.text,
                content_hash=chunk.content_hash,
                metadata={
                    **document.metadata,
                    "chunk_index": chunk.chunk_index,
                    "start_char": chunk.start_char,
                    "end_char": chunk.end_char,
                },
            )
            for chunk in chunks
        ]

        # No await between here and the insert: the source lands all-or-nothing
        return self.index.insert_many(entries)

    @staticmethod
    def _failure(source: str, chunk_count: int, error: BaseException, start_time: float) -> LoaderSummary:
        logger.error(f"Failed to ingest {source}: {type(error).__name__}: {error}")
        return LoaderSummary(
            source=source,
            chunk_count=chunk_count,
            success=False,
            error=str(error),
            error_type=type(error).__name__,
            duration_seconds=time.monotonic() - start_time,
        )

"""Document chunking for the RAG pipeline."""

import re
from typing import List, Optional, Tuple

from ragengine.models import Chunk, Document
from ragengine.utils.config import ChunkingStrategy
from ragengine.utils.logger import get_logger
from ragengine.utils.text import content_hash, normalize_text

logger = get_logger("chunker")

Span = Tuple[int, int]

# Sentence endings followed by whitespace, or any line break
_SENTENCE_BREAK = re.compile(r'(?<=[.!?…])\s+|\n+')
_PARAGRAPH_BREAK = re.compile(r'\n\s*\n')


class Chunker:
    """Splits documents into bounded passages with stable identifiers.

    Every chunk's text is an exact slice of the normalized document text
    (``text[start_char:end_char]``), chunks come out in document order and
    together they cover every non-whitespace character of the document.
    """

    def __init__(
        self,
        chunk_size: int = 500,
        chunk_overlap: int = 0,
        strategy: ChunkingStrategy = ChunkingStrategy.SENTENCE
    ):
        """
        Initialize document chunker.

        Args:
            chunk_size: Maximum characters per chunk
            chunk_overlap: Characters of trailing sentences repeated at the
                start of the next chunk
            strategy: Chunking strategy to use
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if chunk_overlap < 0:
            raise ValueError("chunk_overlap must not be negative")
        if chunk_overlap >= chunk_size:
            raise ValueError("chunk_overlap must be less than chunk_size")

        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.strategy = ChunkingStrategy(strategy)

        logger.debug(
            f"Initialized Chunker with chunk_size={self.chunk_size}, "
            f"overlap={self.chunk_overlap}, strategy={self.strategy.value}"
        )

    def chunk(self, document: Document) -> List[Chunk]:
        """
        Split a document into chunks.

        Args:
            document: Document to chunk

        Returns:
            List of Chunk objects, empty for an empty document
        """
        return self.chunk_text(document.text, document.source)

    def chunk_text(self, text: str, source: str) -> List[Chunk]:
        """
        Split raw text belonging to ``source`` into chunks.

        Args:
            text: Text to chunk
            source: Source identifier used to build chunk ids

        Returns:
            List of Chunk objects
        """
        cleaned_text = normalize_text(text)

        if not cleaned_text:
            logger.debug(f"Empty text provided for chunking ({source})")
            return []

        if self.strategy == ChunkingStrategy.FIXED:
            spans = self._chunk_fixed(cleaned_text)
        elif self.strategy == ChunkingStrategy.PARAGRAPH:
            spans = self._pack(self._paragraph_units(cleaned_text))
        else:  # SENTENCE
            spans = self._pack(self._sentence_units(cleaned_text, 0, len(cleaned_text)))

        chunks = []
        for idx, (start, end) in enumerate(spans):
            chunk_text = cleaned_text[start:end]
            chunks.append(Chunk(
                chunk_id=f"{source}#{idx}",
                source=source,
                text=chunk_text,
                content_hash=content_hash(chunk_text),
                chunk_index=idx,
                start_char=start,
                end_char=end,
            ))

        logger.debug(
            f"Chunked {source} into {len(chunks)} chunks "
            f"(normalized length: {len(cleaned_text)} chars)"
        )

        return chunks

    def chunk_documents(self, documents: List[Document]) -> List[Chunk]:
        """
        Chunk multiple documents.

        Args:
            documents: Documents to chunk

        Returns:
            List of all chunks from all documents, in input order
        """
        all_chunks = []

        for document in documents:
            all_chunks.extend(self.chunk(document))

        logger.info(
            f"Chunked {len(documents)} documents into {len(all_chunks)} total chunks"
        )

        return all_chunks

    def _chunk_fixed(self, text: str) -> List[Span]:
        """Fixed-size windows stepping by ``chunk_size - chunk_overlap``."""
        spans = []
        step = self.chunk_size - self.chunk_overlap
        start = 0
        text_length = len(text)

        while start < text_length:
            end = min(start + self.chunk_size, text_length)
            span = _trim(text, start, end)
            if span:
                spans.append(span)
            if end == text_length:
                break
            start += step

        return spans

    def _sentence_units(self, text: str, start: int, end: int) -> List[Span]:
        """Sentence spans inside ``text[start:end]``, none longer than chunk_size."""
        units = []
        pos = start

        for match in _SENTENCE_BREAK.finditer(text, start, end):
            span = _trim(text, pos, match.start())
            if span:
                units.extend(self._split_oversize(text, *span))
            pos = match.end()

        span = _trim(text, pos, end)
        if span:
            units.extend(self._split_oversize(text, *span))

        return units

    def _paragraph_units(self, text: str) -> List[Span]:
        """Paragraph spans; oversize paragraphs fall back to sentences."""
        units = []
        pos = 0
        boundaries = [(m.start(), m.end()) for m in _PARAGRAPH_BREAK.finditer(text)]
        boundaries.append((len(text), len(text)))

        for break_start, break_end in boundaries:
            span = _trim(text, pos, break_start)
            if span:
                if span[1] - span[0] > self.chunk_size:
                    units.extend(self._sentence_units(text, *span))
                else:
                    units.append(span)
            pos = break_end

        return units

    def _split_oversize(self, text: str, start: int, end: int) -> List[Span]:
        """Split a span longer than chunk_size at word boundaries, else hard-cut."""
        pieces = []

        while end - start > self.chunk_size:
            limit = start + self.chunk_size
            cut = max(text.rfind(' ', start + 1, limit + 1), text.rfind('\n', start + 1, limit + 1))
            if cut <= start:
                cut = limit
            span = _trim(text, start, cut)
            if span:
                pieces.append(span)
            start = cut
            while start < end and text[start].isspace():
                start += 1

        span = _trim(text, start, end)
        if span:
            pieces.append(span)

        return pieces

    def _pack(self, units: List[Span]) -> List[Span]:
        """
        Greedily merge consecutive units into chunks of at most chunk_size.

        Args:
            units: Ordered, non-overlapping spans, each at most chunk_size long

        Returns:
            List of (start, end) chunk spans
        """
        spans = []
        first = 0

        while first < len(units):
            last = first
            chunk_start = units[first][0]
            while last + 1 < len(units) and units[last + 1][1] - chunk_start <= self.chunk_size:
                last += 1

            chunk_end = units[last][1]
            spans.append((chunk_start, chunk_end))

            next_first = last + 1
            if next_first >= len(units):
                break

            # Start the next chunk with trailing whole units for overlap
            if self.chunk_overlap > 0:
                back = next_first
                while (
                    back - 1 > first
                    and chunk_end - units[back - 1][0] <= self.chunk_overlap
                    and units[next_first][1] - units[back - 1][0] <= self.chunk_size
                ):
                    back -= 1
                next_first = back

            first = next_first

        return spans


def _trim(text: str, start: int, end: int) -> Optional[Span]:
    """Shrink a span to exclude leading and trailing whitespace."""
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    if start >= end:
        return None
    return start, end

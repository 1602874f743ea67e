"""Fakes shared by the engine tests (no network, no models)."""

import asyncio
import hashlib
import re
from typing import Dict, List, Optional, Sequence

import numpy as np

from ragengine.embeddings.base import EmbeddingProvider
from ragengine.exceptions import TransientProviderError
from ragengine.generation.base import Generator
from ragengine.loaders.base import InMemoryLoader
from ragengine.models import Chunk, ContextBundle, Document, IndexEntry
from ragengine.utils.text import content_hash

_TOKEN = re.compile(r"[a-z0-9]+")


def bag_of_words(text: str, dimension: int) -> np.ndarray:
    """Deterministic hashed bag-of-words vector with a small constant bias."""
    vector = np.zeros(dimension, dtype=np.float32)
    vector[0] = 0.1
    for token in _TOKEN.findall(text.lower()):
        digest = hashlib.md5(token.encode()).digest()
        bucket = 1 + int.from_bytes(digest[:4], "little") % (dimension - 1)
        vector[bucket] += 1.0
    return vector


class FakeEmbeddingProvider(EmbeddingProvider):
    """Records every call; optionally slow or failing."""

    def __init__(
        self,
        model_id: str = "fake-embed",
        dimension: int = 256,
        delay: float = 0.0,
        fail_on: Optional[str] = None,
        error: type = TransientProviderError
    ):
        self.model_id = model_id
        self.dimension = dimension
        self.delay = delay
        self.fail_on = fail_on
        self.error = error
        self.calls: List[List[str]] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    @property
    def embedded_texts(self) -> List[str]:
        return [text for call in self.calls for text in call]

    async def embed(self, texts: Sequence[str]) -> List[np.ndarray]:
        self.calls.append(list(texts))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_on is not None and any(self.fail_on in text for text in texts):
            raise self.error(f"cannot embed text containing {self.fail_on!r}")
        return [bag_of_words(text, self.dimension) for text in texts]


class GatedLoader(InMemoryLoader):
    """In-memory loader that blocks selected sources until released."""

    def __init__(self, documents: Dict[str, str], blocked: Sequence[str] = ()):
        super().__init__(documents)
        self.blocked = set(blocked)
        self.release = asyncio.Event()
        self.active = 0
        self.max_active = 0

    async def load(self, source: str) -> Document:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(0.01)
            if source in self.blocked:
                await self.release.wait()
            return await super().load(source)
        finally:
            self.active -= 1


class RecordingGenerator(Generator):
    """Returns a canned answer and keeps the contexts it was given."""

    def __init__(self):
        self.contexts: List[ContextBundle] = []

    async def generate(self, query: str, context: ContextBundle) -> str:
        self.contexts.append(context)
        return f"answer to '{query}' from {len(context.passages)} passages"


def make_chunk(text: str, source: str = "doc", index: int = 0) -> Chunk:
    return Chunk(
        chunk_id=f"{source}#{index}",
        source=source,
        text=text,
        content_hash=content_hash(text),
        chunk_index=index,
        start_char=0,
        end_char=len(text),
    )


def make_entry(vector, chunk_id: str, source: str = "src", text: str = "", digest: Optional[str] = None) -> IndexEntry:
    return IndexEntry(
        vector=np.asarray(vector, dtype=np.float32),
        chunk_id=chunk_id,
        source=source,
        text=text or chunk_id,
        content_hash=digest or chunk_id,
    )


CATS_AND_DATABASES = {
    "https://example.com/a": (
        "Cats are small furry animals. Cats purr when they are happy "
        "and many cats chase mice."
    ),
    "https://example.com/b": (
        "Relational databases store records in tables. SQL databases "
        "use indexes and transactions."
    ),
}

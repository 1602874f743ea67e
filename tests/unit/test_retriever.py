"""Tests for retrieval and context assembly."""

import asyncio
from typing import Dict, List, Sequence

import numpy as np
import pytest

from ragengine.embeddings.base import EmbeddingProvider
from ragengine.exceptions import TransientProviderError
from ragengine.rag.retriever import RAGRetriever
from ragengine.vectorstore.hnsw_index import HNSWIndex
from tests.fakes import RecordingGenerator, make_entry


class LookupProvider(EmbeddingProvider):
    """Serves fixed query vectors."""

    model_id = "lookup"

    def __init__(self, vectors: Dict[str, List[float]]):
        self.vectors = vectors

    async def embed(self, texts: Sequence[str]) -> List[np.ndarray]:
        if any(text not in self.vectors for text in texts):
            raise TransientProviderError("embedding backend unavailable")
        return [np.asarray(self.vectors[text], dtype=np.float32) for text in texts]


def build_index():
    index = HNSWIndex()
    index.insert_many([
        make_entry([1.0, 0.0, 0.0], "a#0", source="a", text="Cats purr."),
        make_entry([0.9, 0.1, 0.0], "a#1", source="a", text="Cats chase mice."),
        make_entry([0.5, 0.5, 0.0], "b#0", source="b", text="Dogs bark."),
        make_entry([0.0, 0.0, 1.0], "c#0", source="c", text="Databases use indexes."),
    ])
    return index


class TestRAGRetriever:
    """Test cases for RAGRetriever."""

    def setup_method(self):
        """Set up test fixtures."""
        self.provider = LookupProvider({"cats": [1.0, 0.0, 0.0]})
        self.index = build_index()

    def make_retriever(self, **kwargs):
        return RAGRetriever(provider=self.provider, index=self.index, **kwargs)

    def test_initialization(self):
        retriever = self.make_retriever(top_k=3)
        assert retriever.top_k == 3
        assert retriever.similarity_threshold is None

        with pytest.raises(ValueError):
            self.make_retriever(top_k=0)

    def test_retrieve_ranks_by_similarity(self):
        result = asyncio.run(self.make_retriever(top_k=2).retrieve("cats"))

        assert [hit.entry.chunk_id for hit in result.hits] == ["a#0", "a#1"]
        assert result.sources == ["a"]
        assert result.found_documents == 2
        assert result.hits[0].score >= result.hits[1].score

    def test_top_k_override(self):
        result = asyncio.run(self.make_retriever(top_k=2).retrieve("cats", top_k=4))
        assert [hit.entry.chunk_id for hit in result.hits] == ["a#0", "a#1", "b#0", "c#0"]
        assert result.sources == ["a", "b", "c"]

    def test_diversify_sources(self):
        retriever = self.make_retriever(top_k=2, diversify_sources=True)

        result = asyncio.run(retriever.retrieve("cats"))

        assert [hit.entry.chunk_id for hit in result.hits] == ["a#0", "b#0"]
        assert result.sources == ["a", "b"]

    def test_similarity_threshold(self):
        retriever = self.make_retriever(top_k=5, similarity_threshold=0.8)

        result = asyncio.run(retriever.retrieve("cats"))

        assert [hit.entry.chunk_id for hit in result.hits] == ["a#0", "a#1"]
        assert all(hit.score >= 0.8 for hit in result.hits)

    def test_empty_query_rejected(self):
        retriever = self.make_retriever()

        with pytest.raises(ValueError):
            asyncio.run(retriever.retrieve(""))
        with pytest.raises(ValueError):
            asyncio.run(retriever.retrieve("   "))

    def test_provider_failure_propagates(self):
        retriever = self.make_retriever()

        with pytest.raises(TransientProviderError):
            asyncio.run(retriever.retrieve("unknown query"))

    def test_empty_index(self):
        retriever = RAGRetriever(provider=self.provider, index=HNSWIndex())

        result = asyncio.run(retriever.retrieve("cats"))

        assert result.hits == []
        assert result.sources == []

    def test_build_context_numbers_passages(self):
        retriever = self.make_retriever(top_k=2)
        result = asyncio.run(retriever.retrieve("cats"))

        bundle = retriever.build_context(result)

        assert bundle.passages == ["[Source 1] a\nCats purr.", "[Source 2] a\nCats chase mice."]
        assert bundle.context == "[Source 1] a\nCats purr.\n\n[Source 2] a\nCats chase mice."
        assert bundle.sources == ["a"]
        assert bundle.query == "cats"

    def test_build_context_truncates(self):
        first = "[Source 1] a\nCats purr."
        retriever = self.make_retriever(top_k=3, max_context_chars=len(first) + 5)
        result = asyncio.run(retriever.retrieve("cats"))

        bundle = retriever.build_context(result)

        assert bundle.passages == [first]
        assert bundle.context == first

    def test_build_context_truncates_single_long_passage(self):
        retriever = self.make_retriever(top_k=1, max_context_chars=10)
        result = asyncio.run(retriever.retrieve("cats"))

        bundle = retriever.build_context(result)

        assert len(bundle.context) == 10
        assert bundle.sources == ["a"]

    def test_query_passes_context_to_generator(self):
        generator = RecordingGenerator()
        retriever = self.make_retriever(top_k=2, generator=generator)

        answer = asyncio.run(retriever.query("cats"))

        assert answer.result == "answer to 'cats' from 2 passages"
        assert answer.sources == ["a"]
        assert generator.contexts[0].context.startswith("[Source 1] a\n")
        assert answer.to_dict() == {"result": answer.result, "sources": ["a"]}

    def test_query_without_generator_returns_context(self):
        retriever = self.make_retriever(top_k=1)

        answer = asyncio.run(retriever.query("cats"))

        assert answer.result == "[Source 1] a\nCats purr."
        assert answer.context.passages == [answer.result]

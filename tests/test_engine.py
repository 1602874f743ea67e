"""End-to-end tests for RAGEngine with in-memory fakes."""

import asyncio

import pytest

from ragengine import (
    EngineConfig,
    EngineState,
    IngestionFailedError,
    InMemoryLoader,
    PreconditionError,
    RAGEngine,
    TransientProviderError,
)
from ragengine.embeddings.ollama_provider import OllamaEmbeddingProvider
from ragengine.generation.ollama_generator import OllamaGenerator
from ragengine.loaders.web_loader import WebLoader
from ragengine.utils.config import Settings
from ragengine.vectorstore.hnsw_index import HNSWIndex
from tests.fakes import CATS_AND_DATABASES, FakeEmbeddingProvider, GatedLoader


def make_engine(provider, documents=CATS_AND_DATABASES, generator=None, **options):
    config = EngineConfig(embedding_model=provider.model_id, chunk_size=200, chunk_overlap=20, **options)
    return RAGEngine(config, provider, InMemoryLoader(documents), generator=generator)


class TestRAGEngine:
    """Test cases for RAGEngine."""

    def test_answers_from_the_relevant_source(self, provider, generator):
        engine = make_engine(provider, generator=generator, top_k=1)

        summaries = asyncio.run(engine.ingest(list(CATS_AND_DATABASES)))
        answer = asyncio.run(engine.query("Why do cats purr?"))

        assert all(summary.success for summary in summaries)
        assert answer.sources == ["https://example.com/a"]
        assert answer.result == "answer to 'Why do cats purr?' from 1 passages"
        assert "Cats purr" in generator.contexts[0].context

    def test_retrieve_ranks_relevant_source_first(self, provider):
        engine = make_engine(provider, top_k=2)
        asyncio.run(engine.ingest(list(CATS_AND_DATABASES)))

        result = asyncio.run(engine.retrieve("Which databases use SQL indexes?"))

        assert result.sources[0] == "https://example.com/b"
        assert result.hits[0].score > result.hits[-1].score

    def test_query_before_ingest(self, provider):
        engine = make_engine(provider)

        assert engine.state == EngineState.UNINITIALIZED
        with pytest.raises(PreconditionError):
            asyncio.run(engine.query("anything"))
        with pytest.raises(PreconditionError):
            asyncio.run(engine.retrieve("anything"))

    def test_failed_ingest_keeps_engine_uninitialized(self, provider):
        engine = make_engine(provider)

        with pytest.raises(IngestionFailedError):
            asyncio.run(engine.ingest(["https://example.com/missing"]))

        assert engine.state == EngineState.UNINITIALIZED
        with pytest.raises(PreconditionError):
            asyncio.run(engine.query("anything"))

    def test_state_is_building_while_ingesting(self, provider):
        loader = GatedLoader(CATS_AND_DATABASES, blocked=["https://example.com/b"])
        config = EngineConfig(embedding_model=provider.model_id)
        engine = RAGEngine(config, provider, loader)
        states = []

        async def scenario():
            task = asyncio.create_task(engine.ingest(list(CATS_AND_DATABASES)))
            await asyncio.sleep(0.05)
            states.append(engine.state)
            loader.release.set()
            await task
            states.append(engine.state)

        asyncio.run(scenario())

        assert states == [EngineState.BUILDING, EngineState.READY]

    def test_query_during_reingest(self, provider):
        """Queries keep working while a later ingestion is running."""
        loader = GatedLoader(CATS_AND_DATABASES, blocked=["https://example.com/b"])
        config = EngineConfig(embedding_model=provider.model_id, top_k=1)
        engine = RAGEngine(config, provider, loader)
        loader.release.set()
        asyncio.run(engine.ingest(["https://example.com/a"]))

        async def scenario():
            loader.release.clear()
            task = asyncio.create_task(engine.ingest(["https://example.com/b"]))
            await asyncio.sleep(0.05)
            answer = await engine.query("Why do cats purr?")
            loader.release.set()
            await task
            return answer

        answer = asyncio.run(scenario())

        assert answer.sources == ["https://example.com/a"]
        assert engine.state == EngineState.READY

    def test_fifteen_sources_three_failing(self, provider):
        documents = {
            f"https://example.com/{i}": f"Page {i} describes subject {i} with several sentences. It is short."
            for i in range(15)
        }
        broken = ["https://example.com/2", "https://example.com/9", "https://example.com/14"]
        available = {url: text for url, text in documents.items() if url not in broken}
        engine = make_engine(provider, documents=available, ingest_concurrency=5)

        summaries = asyncio.run(engine.ingest(list(documents)))

        assert len(summaries) == 15
        assert [summary.source for summary in summaries] == list(documents)
        assert sum(summary.success for summary in summaries) == 12
        assert [summary.source for summary in summaries if not summary.success] == broken
        assert engine.index.sources() == set(available)
        assert engine.state == EngineState.READY

    def test_query_result_to_dict(self, provider):
        engine = make_engine(provider, top_k=2)
        asyncio.run(engine.ingest(list(CATS_AND_DATABASES)))

        payload = asyncio.run(engine.query("cats")).to_dict()

        assert set(payload) == {"result", "sources"}
        assert isinstance(payload["result"], str)
        assert payload["sources"][0] == "https://example.com/a"

    def test_query_provider_failure_propagates(self, provider):
        engine = make_engine(provider)
        asyncio.run(engine.ingest(list(CATS_AND_DATABASES)))

        provider.fail_on = "explode"
        with pytest.raises(TransientProviderError):
            asyncio.run(engine.query("please explode"))

    def test_reingest_uses_cache(self, provider):
        engine = make_engine(provider)
        asyncio.run(engine.ingest(list(CATS_AND_DATABASES)))
        calls = provider.call_count
        size = len(engine.index)

        asyncio.run(engine.ingest(list(CATS_AND_DATABASES)))

        assert provider.call_count == calls
        assert len(engine.index) == size

    def test_stats(self, provider):
        engine = make_engine(provider)
        asyncio.run(engine.ingest(list(CATS_AND_DATABASES)))

        stats = engine.stats()

        assert stats["state"] == "ready"
        assert stats["index"]["entries"] == len(engine.index)
        assert stats["index"]["dimension"] == provider.dimension
        assert stats["cache_entries"] == len(engine.cache)
        assert stats["cache"]["provider_calls"] >= 1

    def test_provider_model_must_match_config(self):
        config = EngineConfig(embedding_model="model-a")

        with pytest.raises(ValueError):
            RAGEngine(config, FakeEmbeddingProvider(model_id="model-b"), InMemoryLoader({}))

    def test_config_type_checked(self, provider):
        with pytest.raises(TypeError):
            RAGEngine({"embedding_model": provider.model_id}, provider, InMemoryLoader({}))

    def test_index_dimension_must_match_config(self, provider):
        config = EngineConfig(embedding_model=provider.model_id, embedding_dimension=256)

        with pytest.raises(ValueError):
            RAGEngine(config, provider, InMemoryLoader({}), index=HNSWIndex(dimension=128))

    def test_from_settings(self, monkeypatch):
        monkeypatch.setenv("RAG_OLLAMA_EMBEDDING_MODEL", "nomic-embed-text")
        monkeypatch.setenv("RAG_TOP_K", "3")

        engine = RAGEngine.from_settings(Settings(_env_file=None))

        assert isinstance(engine.provider, OllamaEmbeddingProvider)
        assert engine.provider.model_id == "nomic-embed-text"
        assert isinstance(engine.loader, WebLoader)
        assert isinstance(engine.retriever.generator, OllamaGenerator)
        assert engine.retriever.top_k == 3
        assert engine.state == EngineState.UNINITIALIZED

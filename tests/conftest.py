"""Pytest fixtures for the engine tests."""

import pytest

from tests.fakes import FakeEmbeddingProvider, RecordingGenerator


@pytest.fixture
def provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def generator():
    return RecordingGenerator()

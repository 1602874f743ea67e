"""Embedding providers.

This module provides:
- The provider interface used by the cache and the retriever
- An Ollama-backed implementation
"""

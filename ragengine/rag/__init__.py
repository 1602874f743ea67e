"""Retrieval-Augmented Generation (RAG) pipeline.

This module handles:
- Document chunking
- Content-addressed embedding cache
- Concurrent ingestion into the vector index
- Retrieval and context assembly for generation
"""

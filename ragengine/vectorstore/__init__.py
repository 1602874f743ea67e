"""Vector index for RAG.

This module provides:
- In-memory HNSW approximate nearest-neighbour index
- Cosine similarity search with source metadata
"""

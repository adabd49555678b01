"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- PDF page extraction and chunking
- Embedding generation
- JSON-backed vector storage with cosine search
- Context selection and answer assembly
"""

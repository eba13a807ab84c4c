"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Course markdown parsing into nanos, units and assets
- Unit text chunking with overlap
- Embedding generation
- FAISS vector indexing
- Course ingestion and grouped semantic retrieval
"""

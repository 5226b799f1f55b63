"""Embedding provider implementations.

Embeddings convert chunk text into numeric vectors stored alongside each
chunk for semantic retrieval.  One implementation of IEmbeddingProvider:
    OpenAIEmbeddingProvider -- text-embedding-3-small (1536 dims), or any
    OpenAI-compatible endpoint via ``OPENAI_BASE_URL``.

Embeddings are best effort: a failed call leaves the chunk's embedding
null instead of aborting ingestion.
"""

from src.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = ["OpenAIEmbeddingProvider"]

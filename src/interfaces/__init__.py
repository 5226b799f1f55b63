"""Public interface definitions for all external service providers.

Every external API or store used by the ingestion service is accessed
exclusively through the abstract base classes defined in this package.
Concrete adapters implement these interfaces and are injected at runtime
(adapter pattern), so tests can substitute fakes without network access.

CONCRETE PROVIDER MAP:
    Interface              →  Concrete implementations
    ─────────────────────────────────────────────────────────────────────
    IExtractionProvider    →  AnthropicExtractionProvider (src/providers/extraction)
    IEmbeddingProvider     →  OpenAIEmbeddingProvider     (src/providers/embedding)
    IMetadataStore         →  SQLiteMetadataStore         (src/providers/store)
    IRateLimitStore        →  SQLiteRateLimitStore        (src/providers/store),
                              InMemoryRateLimitStore      (src/resilience)
"""

from src.interfaces.embedding_provider import IEmbeddingProvider
from src.interfaces.extraction_provider import IExtractionProvider
from src.interfaces.metadata_store import IMetadataStore
from src.interfaces.rate_limit_store import IRateLimitStore

__all__ = [
    "IEmbeddingProvider",
    "IExtractionProvider",
    "IMetadataStore",
    "IRateLimitStore",
]

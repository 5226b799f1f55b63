"""Abstract base class for the relational metadata store.

The store persists the knowledge base: one :class:`LegalSource` per
regulatory document, its :class:`TextChunk` rows and the
:class:`EvidenceRow` records linking classification codes to the pages
that mention them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.models.legal import EvidenceRow, LegalSource, TextChunk


# Concrete implementations:
#   SQLiteMetadataStore -- aiosqlite, tables legal_sources / legal_chunks / hs_evidence
# Located in: src/providers/store/
class IMetadataStore(ABC):
    """Contract for source, chunk and evidence persistence.

    Chunk writes are transactional per call: either every chunk of the
    batch is stored or none is.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables and indexes if they do not exist."""

    @abstractmethod
    async def upsert_source(self, source: LegalSource) -> int:
        """Insert or update a source keyed on (country_code, source_type, source_ref).

        Returns
        -------
        int
            The id of the inserted or updated row.
        """

    @abstractmethod
    async def get_source(self, source_id: int) -> LegalSource | None:
        """Return the source with *source_id*, or ``None``."""

    @abstractmethod
    async def append_source_text(self, source_id: int, text: str, separator: str) -> None:
        """Append *text* to the source's full text, joined with *separator*."""

    @abstractmethod
    async def replace_chunks(self, source_id: int, chunks: list[TextChunk]) -> int:
        """Delete every chunk of the source, then insert *chunks*.

        Returns the number of chunks inserted.
        """

    @abstractmethod
    async def append_chunks(self, source_id: int, chunks: list[TextChunk]) -> int:
        """Insert *chunks* without touching existing ones.

        Returns the number of chunks inserted.
        """

    @abstractmethod
    async def get_max_chunk_index(self, source_id: int) -> int | None:
        """Return the highest chunk_index stored for the source, or ``None``."""

    @abstractmethod
    async def count_chunks(self, source_id: int) -> int:
        """Return the number of chunks stored for the source."""

    @abstractmethod
    async def list_chunks(self, source_id: int) -> list[TextChunk]:
        """Return the source's chunks ordered by chunk_index."""

    @abstractmethod
    async def update_total_chunks(self, source_id: int, total: int) -> None:
        """Record *total* as the source's chunk count."""

    @abstractmethod
    async def insert_evidence(self, rows: list[EvidenceRow]) -> int:
        """Insert evidence rows; returns the number written.

        A row whose (source, code) pair already exists is merged into it,
        keeping whichever context is longer.  The code is the national
        line when present, otherwise the HS-6 subheading.
        """

    @abstractmethod
    async def delete_evidence(self, source_id: int) -> int:
        """Delete every evidence row of the source; returns the number deleted."""

    @abstractmethod
    async def list_evidence(self, source_id: int) -> list[EvidenceRow]:
        """Return the source's evidence rows in insertion order."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this store."""

"""Abstract base class for document-text extraction services.

An extraction provider turns a PDF payload (a whole document or a split
page range) into page-indexed text with tables and image descriptions.
These services are slow, fallible and bounded in payload size and time
per call, which is why the ingestion pipeline sends documents in page
batches.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.models.legal import ExtractedPage


# Concrete implementations:
#   AnthropicExtractionProvider -- Claude Messages API with PDF document input
# Located in: src/providers/extraction/
class IExtractionProvider(ABC):
    """Contract for PDF-to-text extraction services."""

    @abstractmethod
    async def extract(self, document: bytes, start_page: int = 1) -> list[ExtractedPage]:
        """Extract every page of *document*.

        Parameters
        ----------
        document:
            Raw PDF bytes (possibly a sub-document holding a page range).
        start_page:
            Absolute page number of the first page in *document*; returned
            pages are numbered ``start_page``, ``start_page + 1``, ...

        Returns
        -------
        list[ExtractedPage]
            Pages in order.  Never empty on success: a response that cannot
            be parsed page by page is returned as one page at *start_page*.

        Raises
        ------
        src.utils.errors.ExtractionError
            If the service rejects the request or keeps failing after retries.
        src.utils.errors.ProviderUnavailableError
            If the provider is not configured.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this provider."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if credentials are configured."""

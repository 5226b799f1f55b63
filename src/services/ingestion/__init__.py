"""Regulatory document ingestion pipeline.

Orchestrates the full pipeline: **resolve -> extract -> chunk -> detect -> store**.

Pipeline stages overview:

1. **Split** (pdf_splitter.py / PdfSplitter) -- Counts pages with PyMuPDF
   and cuts oversized PDFs into sub-documents of at most
   ``pages_per_batch`` pages.

2. **Extract** (via IExtractionProvider) -- Claude returns per-page text,
   Markdown tables and image / form descriptions for each sub-document.

3. **Chunk** (chunker.py / TextChunker) -- Splits page text into ~1000-char
   overlapping windows on paragraph and article boundaries, tracking the
   TITRE / CHAPITRE / SECTION hierarchy (chunk_metadata.py).

4. **Describe** (document_metadata.py) -- Recovers the reference, title,
   date and issuer from the document's first pages.

5. **Store** (via IMetadataStore) -- Upserts the source, replaces or
   appends chunks (with best-effort embeddings) and records code evidence.

The IngestionService class orchestrates all stages for one invocation, in
full mode or in batch mode (one page range appended to an existing source).
"""

from src.services.ingestion.chunker import TextChunker
from src.services.ingestion.document_metadata import extract_document_metadata
from src.services.ingestion.ingestion_service import (
    BATCH_SEPARATOR,
    PAGE_SEPARATOR,
    IngestionService,
)
from src.services.ingestion.pdf_splitter import PdfInfo, PdfSplitter, page_ranges

__all__ = [
    "BATCH_SEPARATOR",
    "IngestionService",
    "PAGE_SEPARATOR",
    "PdfInfo",
    "PdfSplitter",
    "TextChunker",
    "extract_document_metadata",
    "page_ranges",
]

"""Regulatory-document data models for the legal knowledge base.

Defines Pydantic v2 models for the documents flowing through the ingestion
pipeline: pages returned by the extraction service, the chunks cut from
them, the classification codes detected in their text, and the persisted
source / evidence records.  All models are frozen; pipeline stages build
new instances with ``model_copy(update=...)`` instead of mutating.

Pipeline overview:
    1. EXTRACTION: the external extraction service returns one
       :class:`ExtractedPage` per PDF page (text, markdown tables, image
       descriptions).
    2. CHUNKING: :class:`~src.services.ingestion.chunker.TextChunker` cuts
       pages into :class:`TextChunk` windows with overlap.
    3. DETECTION: :class:`~src.services.codes.detector.CodeDetector` finds
       :class:`DetectedCode` candidates; only strictly-valid ones become
       :class:`EvidenceRow` records.
    4. STORAGE: a :class:`LegalSource` row (upserted on country + type +
       reference) owns the chunks and evidence.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Extraction output
# ---------------------------------------------------------------------------
class ExtractedTable(BaseModel):
    """A table found on a page, converted to Markdown by the extraction service."""

    model_config = ConfigDict(frozen=True)

    table_index: int = Field(default=0, ge=0)
    markdown: str = ""
    description: str = ""
    has_rates: bool = False
    has_hs_codes: bool = False


class ExtractedImage(BaseModel):
    """An image, stamp or form described by the extraction service."""

    model_config = ConfigDict(frozen=True)

    image_index: int = Field(default=0, ge=0)
    description: str = ""
    image_type: str = Field(default="other", description='"form", "diagram", "stamp", "logo" or "other".')
    extracted_text: str | None = None


class ExtractedPage(BaseModel):
    """Text and structured content of one PDF page.

    ``page_number`` is absolute (1-based within the whole document), even
    when the page was extracted from a split sub-document.
    """

    model_config = ConfigDict(frozen=True)

    page_number: int = Field(ge=1, description="Absolute 1-based page number.")
    text: str = ""
    tables: list[ExtractedTable] = Field(default_factory=list)
    images: list[ExtractedImage] = Field(default_factory=list)
    has_form: bool = False


# ---------------------------------------------------------------------------
# TextChunk -- the retrieval unit of the knowledge base.
# ---------------------------------------------------------------------------
class TextChunk(BaseModel):
    """A contiguous slice of a source's text sized for retrieval.

    For text chunks ``text`` is exactly ``page_text[char_start:char_end]``
    of the page it came from.  Table and image chunks are synthesized from
    structured extraction output and span ``0..len(text)``.

    ``chunk_index`` is unique and contiguous per source; in append mode it
    continues after the current maximum instead of restarting at zero.
    """

    model_config = ConfigDict(frozen=True)

    chunk_index: int = Field(ge=0, description="Monotonic index within the source.")
    text: str = Field(description="The chunk's textual content.")
    page_number: int | None = Field(default=None, description="Originating page, if known.")
    char_start: int = Field(default=0, ge=0)
    char_end: int = Field(default=0, ge=0)
    source_id: int | None = Field(default=None, description="Owning LegalSource id, set at persistence.")
    embedding: list[float] | None = Field(default=None, description="Embedding vector or None when unavailable.")
    # --- Enrichment metadata used for filtered retrieval ---
    article_number: str | None = None
    section_title: str | None = None
    parent_section: str | None = None
    chunk_type: str = Field(
        default="general",
        description=(
            'One of "definition", "header", "article", "note", "exclusion", '
            '"procedure", "sanction", "tariff", "general", "table", "form", "image".'
        ),
    )
    hierarchy_path: str | None = Field(
        default=None, description='e.g. "TITRE II > CHAPITRE IV > Art. 12".'
    )
    keywords: list[str] = Field(default_factory=list)
    mentioned_hs_codes: list[str] = Field(default_factory=list)

    @property
    def contextual_text(self) -> str:
        """Text prefixed with its hierarchy path, used as embedding input."""
        if self.hierarchy_path:
            return f"[{self.hierarchy_path}]\n{self.text}"
        return self.text


# ---------------------------------------------------------------------------
# Classification codes
# ---------------------------------------------------------------------------
class DetectedCode(BaseModel):
    """A candidate classification code found in page text.

    ``hs_code_6`` and ``national_code`` are only ever produced by the strict
    normalizers: fewer than 6 digits gives ``hs_code_6=None`` and anything
    other than exactly 10 digits gives ``national_code=None``.  Nothing is
    padded to reach a width.
    """

    model_config = ConfigDict(frozen=True)

    raw: str = Field(description="Matched text as it appeared in the document.")
    hs_code_6: str | None = None
    national_code: str | None = None
    page_number: int | None = None
    context: str = Field(default="", description="Surrounding text, whitespace collapsed.")

    @property
    def dedupe_key(self) -> str | None:
        return self.national_code or self.hs_code_6


class EvidenceRow(BaseModel):
    """A persisted (code, source, page, context) tuple justifying a code."""

    model_config = ConfigDict(frozen=True)

    country_code: str
    national_code: str | None = None
    hs_code_6: str
    source_id: int
    page_number: int | None = None
    evidence_text: str = ""
    confidence: str = Field(description='"auto_detected_10" or "auto_detected_6".')


# ---------------------------------------------------------------------------
# LegalSource -- one regulatory document.
# ---------------------------------------------------------------------------
class LegalSource(BaseModel):
    """A regulatory document identified by (country_code, source_type, source_ref)."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    country_code: str = "MA"
    source_type: str = Field(description='"circular", "note", "decision", "law" or "decree".')
    source_ref: str
    title: str | None = None
    issuer: str | None = None
    source_date: str | None = Field(default=None, description="ISO date (YYYY-MM-DD).")
    source_url: str | None = None
    full_text: str = ""
    excerpt: str = ""
    total_chunks: int = Field(default=0, ge=0)


class DocumentMetadata(BaseModel):
    """Reference, title, date and issuer recovered from a document's first pages."""

    model_config = ConfigDict(frozen=True)

    ref: str | None = None
    title: str | None = None
    date: str | None = None
    issuer: str | None = None


# ---------------------------------------------------------------------------
# Ingestion request / result
# ---------------------------------------------------------------------------
class IngestionRequest(BaseModel):
    """Everything the pipeline needs for one ingestion invocation."""

    model_config = ConfigDict(frozen=True)

    source_type: str = ""
    source_ref: str = ""
    pdf_base64: str | None = None
    pdf_url: str | None = None
    raw_text: str | None = None
    title: str | None = None
    issuer: str | None = None
    source_date: str | None = None
    source_url: str | None = None
    country_code: str = "MA"
    generate_embeddings: bool = True
    detect_hs_codes: bool = True
    batch_mode: bool = False
    start_page: int | None = None
    end_page: int | None = None
    source_id: int | None = None

    @property
    def is_batch(self) -> bool:
        return bool(self.batch_mode and self.start_page and self.end_page)


class IngestionResult(BaseModel):
    """Statistics about a completed ingestion invocation."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    source_id: int | None = None
    pages_processed: int = Field(default=0, ge=0)
    chunks_created: int = Field(default=0, ge=0)
    detected_codes_count: int = Field(default=0, ge=0)
    evidence_created: int = Field(default=0, ge=0)
    total_pages: int | None = None
    batch_start: int | None = None
    batch_end: int | None = None
    already_complete: bool = False
    duration_ms: float = Field(default=0.0, ge=0.0)
    error: str | None = None

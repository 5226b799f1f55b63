"""Pydantic request/response schemas for the ingestion API.

Defines the public contract for every REST endpoint: document ingestion,
source lookup and health.

# ─── HOW SCHEMAS WORK ─────────────────────────────────────────────────
#
# FastAPI uses these models to validate incoming JSON (422 on type
# errors), to serialize outgoing objects (response_model=...) and to
# generate the OpenAPI docs at /docs.
#
# Convention: request schemas end with "Request", response schemas end
# with "Response".  Business validation (required source fields, page
# ranges) happens in the ingestion service so the API and the CLI share
# the same messages; those failures come back as 400 ErrorResponse.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from src.models.legal import IngestionRequest, IngestionResult, LegalSource


class IngestRequest(BaseModel):
    """Body of ``POST /api/v1/ingest``.

    Exactly one of ``pdf_base64``, ``pdf_url`` or ``raw_text`` carries the
    document.  Batch mode processes ``start_page``..``end_page`` only and,
    when ``source_id`` is given, appends to that existing source.
    """

    source_type: str = Field(default="", description='"circular", "note", "decision", "law" or "decree".')
    source_ref: str = Field(default="", description='Document reference, e.g. "4601/311".')
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

    def to_domain(self) -> IngestionRequest:
        return IngestionRequest(**self.model_dump())


class IngestResponse(BaseModel):
    """Counts for one ingestion invocation."""

    success: bool = True
    source_id: int | None = None
    pages_processed: int = 0
    chunks_created: int = 0
    detected_codes_count: int = 0
    evidence_created: int = 0
    total_pages: int | None = None
    batch_start: int | None = None
    batch_end: int | None = None
    already_complete: bool = False
    error: str | None = None

    @classmethod
    def from_result(cls, result: IngestionResult) -> IngestResponse:
        return cls(**result.model_dump(exclude={"duration_ms"}))


class SourceResponse(BaseModel):
    """Summary of a stored regulatory source (full text omitted)."""

    id: int
    country_code: str
    source_type: str
    source_ref: str
    title: str | None = None
    issuer: str | None = None
    source_date: str | None = None
    source_url: str | None = None
    excerpt: str = ""
    total_chunks: int = 0

    @classmethod
    def from_source(cls, source: LegalSource) -> SourceResponse:
        return cls(**source.model_dump(exclude={"full_text"}))


class HealthResponse(BaseModel):
    """Application health check response."""

    status: str
    version: str
    providers: dict[str, Any]
    circuits: dict[str, dict[str, Any]] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Standard error response body."""

    success: bool = False
    error: str

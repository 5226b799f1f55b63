"""Paragraph-aware chunking of extracted pages with overlapping windows.

Splits each :class:`~src.models.legal.ExtractedPage` into
:class:`~src.models.legal.TextChunk` objects sized for embedding models.

The chunking strategy has three goals:

1. **Paragraph-preserving** -- boundaries fall on blank-line paragraph
   breaks (or sentence breaks inside an oversized paragraph), and a new
   chunk is forced at every ``Article N`` heading once the buffer is large
   enough, so a chunk rarely straddles two articles.

2. **Overlapping windows** -- after a flush the next window starts
   ``overlap`` characters before the end of the previous one, so a
   provision cut at a boundary is still retrievable from one chunk.

3. **Exact offsets** -- a text chunk is always the slice
   ``page.text[char_start:char_end]``.  Nothing is rewritten or dropped:
   an undersized buffer is carried forward into the next window and the
   trailing remainder of each page is always emitted.

Tables and described images/forms returned by the extraction service
become their own chunks ahead of the page text.
"""

from __future__ import annotations

import re

import structlog

from src.models.legal import ExtractedImage, ExtractedPage, ExtractedTable, TextChunk
from src.services.codes.detector import extract_mentioned_codes
from src.services.ingestion.chunk_metadata import (
    ARTICLE_BOUNDARY,
    HierarchyTracker,
    detect_chunk_type,
    extract_article_number,
    extract_keywords,
    extract_section_title,
)

logger = structlog.get_logger(logger_name=__name__)

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_SENTENCE_END = re.compile(r"[.!?؟](?:\s|$)")

_MIN_TABLE_MARKDOWN = 50
_MIN_IMAGE_DESCRIPTION = 20
_RATE_KEYWORDS = ["taux", "droit", "pourcentage"]
_FORM_KEYWORDS = ["formulaire", "modèle", "template"]

Span = tuple[int, int]


class TextChunker:
    """Splits extracted pages into overlapping, metadata-rich chunks.

    Parameters
    ----------
    chunk_size:
        Target maximum characters per chunk (default 1000).
    overlap:
        Characters shared between consecutive chunks of a page (default 150).
    min_chunk_size:
        A buffer smaller than this is never flushed on its own; only the
        last chunk of a page may be shorter (default 400).
    """

    def __init__(
        self,
        chunk_size: int = 1000,
        overlap: int = 150,
        min_chunk_size: int = 400,
    ) -> None:
        if overlap >= chunk_size:
            raise ValueError("overlap must be smaller than chunk_size")
        self._chunk_size = chunk_size
        self._overlap = overlap
        self._min_chunk_size = min_chunk_size

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(self, pages: list[ExtractedPage], start_index: int = 0) -> list[TextChunk]:
        """Chunk *pages* in order, numbering chunks from *start_index*.

        Parameters
        ----------
        pages:
            Pages in document order.  The heading hierarchy carries over
            from one page to the next.
        start_index:
            First ``chunk_index`` to assign; append mode passes the
            current maximum index + 1.

        Returns
        -------
        list[TextChunk]
            Chunks with contiguous indices.  Empty pages yield nothing.
        """
        hierarchy = HierarchyTracker()
        chunks: list[TextChunk] = []

        for page in pages:
            for table in page.tables:
                chunk = self._table_chunk(table, page.page_number, hierarchy)
                if chunk is not None:
                    chunks.append(chunk)
            for image in page.images:
                chunk = self._image_chunk(image, page.page_number, hierarchy)
                if chunk is not None:
                    chunks.append(chunk)
            self._chunk_page_text(page.text, page.page_number, hierarchy, chunks)

        numbered = [
            chunk.model_copy(update={"chunk_index": start_index + offset})
            for offset, chunk in enumerate(chunks)
        ]

        logger.debug(
            "chunking_complete",
            num_chunks=len(numbered),
            tables=sum(1 for c in numbered if c.chunk_type == "table"),
            forms=sum(1 for c in numbered if c.chunk_type == "form"),
            images=sum(1 for c in numbered if c.chunk_type == "image"),
            start_index=start_index,
        )
        return numbered

    # ------------------------------------------------------------------
    # Page text
    # ------------------------------------------------------------------

    def _chunk_page_text(
        self,
        text: str,
        page_number: int,
        hierarchy: HierarchyTracker,
        out: list[TextChunk],
    ) -> None:
        """Accumulate paragraphs of *text* into windows, appending chunks to *out*."""
        buf_start: int | None = None
        buf_end = 0

        for para_start, para_end in self._paragraph_spans(text):
            paragraph = text[para_start:para_end]
            if buf_start is not None:
                buf_len = buf_end - buf_start
                is_article = ARTICLE_BOUNDARY.match(paragraph) is not None
                should_split = buf_len + (para_end - para_start) > self._chunk_size or (
                    is_article and buf_len >= self._min_chunk_size
                )
                if should_split and buf_len >= self._min_chunk_size:
                    out.append(self._text_chunk(text, buf_start, buf_end, page_number, hierarchy))
                    buf_start = self._overlap_start(text, buf_start, buf_end)
            else:
                buf_start = para_start

            hierarchy.update(paragraph)
            buf_end = para_end

        if buf_start is not None:
            out.append(self._text_chunk(text, buf_start, buf_end, page_number, hierarchy))

    def _overlap_start(self, text: str, buf_start: int, buf_end: int) -> int:
        start = max(buf_start, buf_end - self._overlap)
        while start < buf_end and text[start].isspace():
            start += 1
        return start

    def _paragraph_spans(self, text: str) -> list[Span]:
        """Return stripped paragraph spans; oversized paragraphs are split further."""
        spans: list[Span] = []
        cursor = 0
        for match in [*_PARAGRAPH_BREAK.finditer(text), None]:
            seg_end = match.start() if match is not None else len(text)
            span = _strip_span(text, cursor, seg_end)
            if span is not None:
                spans.extend(self._split_oversized(text, *span))
            if match is not None:
                cursor = match.end()
        return spans

    def _split_oversized(self, text: str, start: int, end: int) -> list[Span]:
        """Split a span longer than ``chunk_size`` at sentence ends, then hard-wrap."""
        if end - start <= self._chunk_size:
            return [(start, end)]

        pieces: list[Span] = []
        piece_start = start
        for match in _SENTENCE_END.finditer(text, start, end):
            cut = match.end()
            if cut - piece_start >= self._min_chunk_size:
                pieces.append((piece_start, cut))
                piece_start = cut
        if piece_start < end:
            pieces.append((piece_start, end))

        result: list[Span] = []
        for piece_start, piece_end in pieces:
            span = _strip_span(text, piece_start, piece_end)
            if span is None:
                continue
            lo, hi = span
            while hi - lo > self._chunk_size:
                result.append((lo, lo + self._chunk_size))
                lo += self._chunk_size
            result.append((lo, hi))
        return result

    def _text_chunk(
        self,
        text: str,
        start: int,
        end: int,
        page_number: int,
        hierarchy: HierarchyTracker,
    ) -> TextChunk:
        chunk_text = text[start:end]
        article_number = extract_article_number(chunk_text)
        return TextChunk(
            chunk_index=0,
            text=chunk_text,
            page_number=page_number,
            char_start=start,
            char_end=end,
            article_number=article_number,
            section_title=extract_section_title(chunk_text) or hierarchy.current_section,
            parent_section=hierarchy.parent_section,
            chunk_type=detect_chunk_type(chunk_text),
            hierarchy_path=hierarchy.path(article_number),
            keywords=extract_keywords(chunk_text),
            mentioned_hs_codes=extract_mentioned_codes(chunk_text),
        )

    # ------------------------------------------------------------------
    # Structured content
    # ------------------------------------------------------------------

    def _table_chunk(
        self,
        table: ExtractedTable,
        page_number: int,
        hierarchy: HierarchyTracker,
    ) -> TextChunk | None:
        if len(table.markdown) < _MIN_TABLE_MARKDOWN:
            return None
        body = f"[TABLEAU: {table.description}]\n\n{table.markdown}"
        return TextChunk(
            chunk_index=0,
            text=body,
            page_number=page_number,
            char_start=0,
            char_end=len(body),
            section_title=table.description or hierarchy.current_section,
            parent_section=hierarchy.parent_section,
            chunk_type="table",
            hierarchy_path=hierarchy.path(),
            keywords=list(_RATE_KEYWORDS) if table.has_rates else extract_keywords(table.markdown),
            mentioned_hs_codes=extract_mentioned_codes(table.markdown) if table.has_hs_codes else [],
        )

    def _image_chunk(
        self,
        image: ExtractedImage,
        page_number: int,
        hierarchy: HierarchyTracker,
    ) -> TextChunk | None:
        if len(image.description) < _MIN_IMAGE_DESCRIPTION:
            return None
        body = f"[{image.image_type.upper()}: {image.description}]"
        if image.extracted_text:
            body += f"\n\nContenu:\n{image.extracted_text}"
        if len(body) < self._min_chunk_size:
            return None
        is_form = image.image_type == "form"
        return TextChunk(
            chunk_index=0,
            text=body,
            page_number=page_number,
            char_start=0,
            char_end=len(body),
            section_title=image.description[:100],
            parent_section=hierarchy.parent_section,
            chunk_type="form" if is_form else "image",
            hierarchy_path=hierarchy.path(),
            keywords=list(_FORM_KEYWORDS) if is_form else [],
            mentioned_hs_codes=extract_mentioned_codes(image.extracted_text or ""),
        )


def _strip_span(text: str, start: int, end: int) -> Span | None:
    """Shrink ``text[start:end]`` to exclude surrounding whitespace."""
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    return (start, end) if start < end else None

"""Regex scanner that finds classification-code candidates in page text.

Patterns are applied per page, broadest first, so that a full tariff line
such as ``8903.11.00.00`` is recorded before its fragments.  Every
candidate is passed through
:func:`~src.services.codes.normalizer.parse_detected_code`; a national
code is only ever reported when the document itself printed all 10
digits.
"""

from __future__ import annotations

import re

import structlog

from src.models.legal import DetectedCode, EvidenceRow, ExtractedPage
from src.services.codes.normalizer import digits_only, parse_detected_code

logger = structlog.get_logger(logger_name=__name__)

_CONTEXT_RADIUS = 50
_MAX_MENTIONED_CODES = 20

# Order matters: earlier patterns claim a code before its fragments are seen.
_DETECTION_PATTERNS: tuple[re.Pattern[str], ...] = (
    # 8903110000
    re.compile(r"\b(\d{10})\b", re.ASCII),
    # 8903.11.00.00 / 8903.11
    re.compile(r"\b(\d{4}\.\d{2}(?:\.\d{2}){0,2})\b", re.ASCII),
    # 89.03.11.00.00 / 89 03 11 00 00
    re.compile(r"\b(\d{2}[.\s]\d{2}[.\s]\d{2}[.\s]?\d{2}[.\s]?\d{2})\b", re.ASCII),
    # 89.03.11
    re.compile(r"\b(\d{2}[.\s]\d{2}[.\s]\d{2})\b", re.ASCII),
    # 8903 followed by a dash, colon, dot or a word
    re.compile(r"\b(\d{4})\b(?=\s*[-–:.]|\s+[A-Za-zÀ-ÿ])", re.ASCII),
)

_YEAR = re.compile(r"^(19|20)\d{2}$")
_WHITESPACE = re.compile(r"\s+")

_MENTION_10 = re.compile(r"\b(\d{10})\b", re.ASCII)
_MENTION_FORMATTED = re.compile(
    r"\b(\d{2}[.\s]?\d{2}[.\s]\d{2}(?:[.\s]\d{2}){0,2})\b", re.ASCII
)


class CodeDetector:
    """Finds candidate HS / national codes with their surrounding context."""

    def __init__(self, context_radius: int = _CONTEXT_RADIUS) -> None:
        self._context_radius = context_radius

    def detect(self, pages: list[ExtractedPage]) -> list[DetectedCode]:
        """Scan *pages* and return one candidate per distinct digit string.

        A match overlapping a code already claimed on the same page is a
        fragment of that code and is never reported.

        Skips anything shorter than 4 digits, 4-digit years (19xx/20xx) and
        values below 100.
        """
        detected: list[DetectedCode] = []
        seen: set[str] = set()

        for page in pages:
            text = page.text
            # Spans already claimed on this page; fragments inside them are skipped.
            claimed: list[tuple[int, int]] = []
            for pattern in _DETECTION_PATTERNS:
                for match in pattern.finditer(text):
                    start, end = match.span(1)
                    if any(start < c_end and c_start < end for c_start, c_end in claimed):
                        continue
                    raw = match.group(1)
                    digits = digits_only(raw)
                    if len(digits) < 4:
                        continue
                    if digits in seen:
                        claimed.append((start, end))
                        continue
                    if _YEAR.match(digits) or int(digits) < 100:
                        continue

                    parsed = parse_detected_code(digits)
                    detected.append(
                        DetectedCode(
                            raw=raw,
                            hs_code_6=parsed.hs_code_6,
                            national_code=parsed.national_code,
                            page_number=page.page_number,
                            context=self._context(text, start, end),
                        )
                    )
                    seen.add(digits)
                    claimed.append((start, end))

        logger.debug("codes_detected", count=len(detected), pages=len(pages))
        return detected

    def _context(self, text: str, start: int, end: int) -> str:
        lo = max(0, start - self._context_radius)
        hi = min(len(text), end + self._context_radius)
        return _WHITESPACE.sub(" ", text[lo:hi]).strip()


def build_evidence_rows(
    codes: list[DetectedCode],
    country_code: str,
    source_id: int,
) -> list[EvidenceRow]:
    """Turn detected codes into deduplicated evidence rows.

    Codes without a valid 6-digit prefix are skipped.  Duplicates (same
    national code, or same HS-6 when there is no national code) keep the
    occurrence with the longest context.
    """
    unique: dict[str, DetectedCode] = {}
    for code in codes:
        key = code.dedupe_key
        if code.hs_code_6 is None or key is None:
            continue
        current = unique.get(key)
        if current is None or len(code.context) > len(current.context):
            unique[key] = code

    return [
        EvidenceRow(
            country_code=country_code,
            national_code=code.national_code,
            hs_code_6=code.hs_code_6,
            source_id=source_id,
            page_number=code.page_number,
            evidence_text=code.context,
            confidence="auto_detected_10" if code.national_code else "auto_detected_6",
        )
        for code in unique.values()
        if code.hs_code_6 is not None
    ]


def extract_mentioned_codes(text: str) -> list[str]:
    """Return up to 20 distinct codes (6 to 10 digits) mentioned in *text*."""
    codes: dict[str, None] = {}
    for match in _MENTION_10.finditer(text):
        codes.setdefault(match.group(1), None)
    for match in _MENTION_FORMATTED.finditer(text):
        digits = digits_only(match.group(1))
        if len(digits) >= 6:
            codes.setdefault(digits, None)
    return list(codes)[:_MAX_MENTIONED_CODES]

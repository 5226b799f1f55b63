"""Recover reference, title, date and issuer from a regulatory document.

Moroccan administrative texts announce themselves on their first page:
``CIRCULAIRE N° 4591/312``, an ``OBJET :`` line, a ``Rabat, le 15 janvier
2024`` date and the issuing administration's letterhead (French or
Arabic).  Only the first few thousand characters are inspected.

Unlike :mod:`~src.services.ingestion.chunk_metadata` this module works on
the assembled full text, once per ingestion, to fill in fields the caller
left empty.
"""

from __future__ import annotations

import re
from datetime import date

import structlog

from src.models.legal import DocumentMetadata

logger = structlog.get_logger(logger_name=__name__)

_SCAN_CHARS = 4000
_MIN_YEAR = 2000
_MAX_YEAR = 2030

# ---------------------------------------------------------------------------
# References
# ---------------------------------------------------------------------------

# Tried first for circulars: the number printed right after the heading.
_PRIORITY_CIRCULAR_PATTERNS = (
    re.compile(r"CIRCULAIRE\s*N[°o]?\s*(\d{3,5}\s*[/\-]\s*\d{1,4})", re.IGNORECASE),
    re.compile(r"CIRCULAIRE\s*N[°o]?\s*(\d{4,5})\b", re.IGNORECASE),
    re.compile(r"دورية\s*(?:رقم|عدد)?\s*[:.]?\s*(\d{3,5}\s*[/\-]\s*\d{1,4})"),
    re.compile(r"دورية\s*(?:رقم|عدد)?\s*[:.]?\s*(\d{4,5})\b"),
    re.compile(r"منشور\s*(?:رقم|عدد)?\s*[:.]?\s*(\d{3,5}\s*[/\-]\s*\d{1,4})"),
    re.compile(r"منشور\s*(?:رقم|عدد)?\s*[:.]?\s*(\d{4,5})\b"),
)

_TYPE_PATTERNS: dict[str, tuple[re.Pattern[str], ...]] = {
    "circular": (
        re.compile(r"[Cc]irculaire\s*[Nn°.:\s]+(\d{3,5}\s*[/\-]\s*\d{1,4})"),
        re.compile(r"[Cc]irculaire\s*[Nn°.:\s]+(\d{4,5})\b"),
        re.compile(r"(?:منشور|تعميم)\s*(?:رقم|عدد)?\s*[:.]?\s*(\d{3,5}\s*[/\-]?\s*\d{0,4})"),
    ),
    "note": (
        re.compile(r"[Nn]ote\s*[Nn°.:\s]+(\d{2,5}[\s/-]?\d{0,4})"),
        re.compile(r"(?:مذكرة|ملاحظة)\s*(?:رقم|عدد)?\s*[:.]?\s*(\d{2,5}[\s/-]?\d{0,4})"),
    ),
    "decision": (
        re.compile(r"[Dd]écision\s*[Nn°.:\s]+(\d{2,5}[\s/-]?\d{0,4})"),
        re.compile(r"(?:قرار|مقرر)\s*(?:رقم|عدد)?\s*[:.]?\s*(\d{2,5}[\s/-]?\d{0,4})"),
    ),
    "decree": (
        re.compile(r"[Dd]écret\s*[Nn°.:\s]+(\d[\d.-]+\d)"),
        re.compile(r"(?:مرسوم|ظهير)\s*(?:رقم|عدد)?\s*[:.]?\s*(\d[\d.-]*)"),
    ),
    "law": (
        re.compile(r"[Ll]oi\s*[Nn°.:\s]+(\d[\d.-]+)"),
        re.compile(r"(?:قانون)\s*(?:رقم|عدد)?\s*[:.]?\s*(\d[\d.-]*)"),
    ),
    "arrete": (
        re.compile(r"[Aa]rrêté\s*[Nn°.:\s]+(\d[\d.-]+\d)"),
        re.compile(r"(?:قرار وزاري)\s*(?:رقم|عدد)?\s*[:.]?\s*(\d[\d.-]*)"),
    ),
}

_SEPARATOR_SPACES = re.compile(r"\s*([/\-])\s*")
_WHITESPACE = re.compile(r"\s+")


def extract_reference(text: str, source_type: str) -> str | None:
    """Return the document number printed near the top of *text*.

    Circulars are matched against the heading patterns first.  Otherwise
    the patterns for *source_type* are tried, then every other type's.
    """
    head = text[:_SCAN_CHARS]

    if source_type == "circular":
        for pattern in _PRIORITY_CIRCULAR_PATTERNS:
            match = pattern.search(head)
            if match:
                return _SEPARATOR_SPACES.sub(r"\1", match.group(1)).strip()

    ordered = list(_TYPE_PATTERNS.get(source_type, ()))
    for kind, patterns in _TYPE_PATTERNS.items():
        if kind != source_type:
            ordered.extend(patterns)

    for pattern in ordered:
        match = pattern.search(head)
        if match:
            ref = _WHITESPACE.sub("", match.group(1)).strip()
            if ref:
                return ref
    return None


# ---------------------------------------------------------------------------
# Title
# ---------------------------------------------------------------------------

# OCR output often spaces or dots the letters of "OBJET".
_TITLE_PATTERNS = (
    re.compile(r"O\.?B\.?J\.?E\.?T\s*[:.\s]\s*(.{10,200}?)(?:\n|$)", re.IGNORECASE),
    re.compile(r"Réf[ée]rence\s*:\s*(.{10,200}?)(?:\n|$)", re.IGNORECASE),
    re.compile(r"Concernant\s*:\s*(.{10,200}?)(?:\n|$)", re.IGNORECASE),
    re.compile(r"(?:موضوع|الموضوع)\s*[:.\s]\s*(.{10,200}?)(?:\n|$)"),
    re.compile(r"(?:عنوان|العنوان)\s*[:.\s]\s*(.{10,200}?)(?:\n|$)"),
)

_TRAILING_PUNCTUATION = re.compile(r"[.,:;]+$")


def extract_title(text: str) -> str | None:
    head = text[:_SCAN_CHARS]
    for pattern in _TITLE_PATTERNS:
        match = pattern.search(head)
        if match:
            title = _WHITESPACE.sub(" ", match.group(1))
            return _TRAILING_PUNCTUATION.sub("", title).strip() or None
    return None


# ---------------------------------------------------------------------------
# Date
# ---------------------------------------------------------------------------

FRENCH_MONTHS = {
    "janvier": 1,
    "février": 2,
    "mars": 3,
    "avril": 4,
    "mai": 5,
    "juin": 6,
    "juillet": 7,
    "août": 8,
    "septembre": 9,
    "octobre": 10,
    "novembre": 11,
    "décembre": 12,
}

# Moroccan Arabic month names.
ARABIC_MONTHS = {
    "يناير": 1,
    "فبراير": 2,
    "مارس": 3,
    "أبريل": 4,
    "ماي": 5,
    "يونيو": 6,
    "يوليوز": 7,
    "غشت": 8,
    "شتنبر": 9,
    "أكتوبر": 10,
    "نونبر": 11,
    "دجنبر": 12,
}

_FRENCH_DATE = re.compile(
    r"(?:le|en date du|du)\s+(\d{1,2})\s*(" + "|".join(FRENCH_MONTHS) + r")\s*(\d{4})",
    re.IGNORECASE,
)
_NUMERIC_DATE = re.compile(r"(\d{1,2})[/\-](\d{1,2})[/\-](\d{4})")
_ARABIC_DATE = re.compile(r"في\s+(\d{1,2})\s+(" + "|".join(ARABIC_MONTHS) + r")\s*(\d{4})")
_ISO_DATE = re.compile(r"(\d{4})[/\-](\d{1,2})[/\-](\d{1,2})")


def _candidate_dates(head: str) -> list[tuple[int, int, int]]:
    """Return (year, month, day) candidates in pattern priority order."""
    candidates: list[tuple[int, int, int]] = []
    match = _FRENCH_DATE.search(head)
    if match:
        day, month, year = match.groups()
        candidates.append((int(year), FRENCH_MONTHS[month.lower()], int(day)))
    match = _NUMERIC_DATE.search(head)
    if match:
        day, month, year = match.groups()
        candidates.append((int(year), int(month), int(day)))
    match = _ARABIC_DATE.search(head)
    if match:
        day, month, year = match.groups()
        candidates.append((int(year), ARABIC_MONTHS[month], int(day)))
    match = _ISO_DATE.search(head)
    if match:
        year, month, day = match.groups()
        candidates.append((int(year), int(month), int(day)))
    return candidates


def extract_date(text: str) -> str | None:
    """Return the first plausible signature date as ``YYYY-MM-DD``.

    Dates outside 2000..2030 or that do not exist on the calendar are
    skipped.
    """
    for year, month, day in _candidate_dates(text[:_SCAN_CHARS]):
        if not _MIN_YEAR <= year <= _MAX_YEAR:
            continue
        try:
            return date(year, month, day).isoformat()
        except ValueError:
            continue
    return None


# ---------------------------------------------------------------------------
# Issuer
# ---------------------------------------------------------------------------

_ISSUER_PATTERNS = (
    re.compile(
        r"(?:ADMINISTRATION|Direction)\s+(?:des\s+)?DOUANES(?:\s+(?:et\s+)?IMPÔTS\s+INDIRECTS)?",
        re.IGNORECASE,
    ),
    re.compile(
        r"(?:LE\s+)?DIRECTEUR\s+GÉNÉRAL\s+(?:de\s+l['’])?ADMINISTRATION\s+(?:des\s+)?DOUANES",
        re.IGNORECASE,
    ),
    re.compile(r"MINISTÈRE\s+(?:de\s+l['’])?(?:ÉCONOMIE|FINANCES)", re.IGNORECASE),
    re.compile(r"OFFICE\s+(?:des\s+)?CHANGES", re.IGNORECASE),
    re.compile(
        r"AGENCE\s+NATIONALE\s+(?:de\s+)?RÉGLEMENTATION\s+(?:des\s+)?TÉLÉCOMMUNICATIONS",
        re.IGNORECASE,
    ),
    re.compile(r"إدارة\s*الجمارك\s*و?الضرائب\s*غير\s*المباشرة"),
    re.compile(r"المديرية?\s*العامة?\s*للجمارك"),
    re.compile(r"مكتب\s*الصرف"),
    re.compile(r"وزارة\s*(?:الاقتصاد|المالية)"),
)

ADII = "Administration des Douanes et Impôts Indirects (ADII)"
OFFICE_DES_CHANGES = "Office des Changes"
MINISTRY_OF_FINANCE = "Ministère de l'Économie et des Finances"
ANRT = "Agence Nationale de Réglementation des Télécommunications (ANRT)"


def _canonical_issuer(raw: str) -> str:
    lowered = raw.lower()
    if "douanes" in lowered or "جمارك" in raw:
        return ADII
    if "changes" in lowered or "صرف" in raw:
        return OFFICE_DES_CHANGES
    if "ministère" in lowered or "وزارة" in raw:
        return MINISTRY_OF_FINANCE
    if "télécommunications" in lowered:
        return ANRT
    return raw


def extract_issuer(text: str) -> str | None:
    """Return the canonical name of the issuing administration, if recognized."""
    head = text[:_SCAN_CHARS]
    for pattern in _ISSUER_PATTERNS:
        match = pattern.search(head)
        if match:
            return _canonical_issuer(match.group(0).strip())
    return None


def extract_document_metadata(text: str, source_type: str) -> DocumentMetadata:
    """Run every extractor over the start of *text*."""
    metadata = DocumentMetadata(
        ref=extract_reference(text, source_type),
        title=extract_title(text),
        date=extract_date(text),
        issuer=extract_issuer(text),
    )
    logger.debug(
        "document_metadata_extracted",
        ref=metadata.ref,
        title=(metadata.title or "")[:50],
        date=metadata.date,
        issuer=metadata.issuer,
    )
    return metadata

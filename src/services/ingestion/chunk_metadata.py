"""Structural metadata for regulatory-text chunks (French + Arabic).

Moroccan customs texts are organized as PARTIE > TITRE > CHAPITRE >
SECTION > SOUS-SECTION > Article (Arabic: الجزء > الباب > الفصل > القسم >
المادة).  :class:`HierarchyTracker` follows headings as paragraphs stream
past so every chunk can carry a path like
``"TITRE II > CHAPITRE IV > Art. 12"``.  The remaining helpers classify a
chunk and pull out the keywords used for filtered retrieval.
"""

from __future__ import annotations

import re

_AR_ORDINALS = "الأول|الثاني|الثالث|الرابع|الخامس|السادس|السابع|الثامن|التاسع|العاشر"
_ROMAN_OR_DIGITS = r"[IVXLCDM\d]+"

# (level, patterns) from broadest to most specific.
_HIERARCHY_LEVELS: tuple[tuple[int, tuple[re.Pattern[str], ...]], ...] = (
    (
        0,
        (
            re.compile(rf"^(?:PARTIE|LIVRE)\s+({_ROMAN_OR_DIGITS})", re.IGNORECASE),
            re.compile(rf"^(?:الجزء)\s+({_ROMAN_OR_DIGITS}|{_AR_ORDINALS})"),
        ),
    ),
    (
        1,
        (
            re.compile(rf"^TITRE\s+({_ROMAN_OR_DIGITS})", re.IGNORECASE),
            re.compile(rf"^(?:الباب|العنوان)\s+({_ROMAN_OR_DIGITS}|{_AR_ORDINALS})"),
        ),
    ),
    (
        2,
        (
            re.compile(rf"^CHAPITRE\s+({_ROMAN_OR_DIGITS})", re.IGNORECASE),
            re.compile(rf"^(?:الفصل)\s+({_ROMAN_OR_DIGITS}|{_AR_ORDINALS})"),
        ),
    ),
    (
        3,
        (
            re.compile(rf"^SECTION\s+({_ROMAN_OR_DIGITS})", re.IGNORECASE),
            re.compile(rf"^(?:القسم)\s+({_ROMAN_OR_DIGITS}|{_AR_ORDINALS})"),
        ),
    ),
    (4, (re.compile(rf"^SOUS-SECTION\s+({_ROMAN_OR_DIGITS})", re.IGNORECASE),)),
)

_HEADING_LABEL_MAX = 80

ARTICLE_BOUNDARY = re.compile(r"^(?:Article|Art\.?)\s*\d+|^(?:المادة|الفصل|البند)\s*\d+", re.IGNORECASE)


class HierarchyTracker:
    """Stack of the headings enclosing the current paragraph.

    A heading detected at level N replaces every entry at level N or
    deeper, so a new CHAPITRE closes the previous chapter's sections.
    """

    def __init__(self) -> None:
        self._stack: list[tuple[int, str]] = []

    def update(self, paragraph: str) -> bool:
        """Record *paragraph* if it opens a heading; return whether it did."""
        trimmed = paragraph.strip()
        for level, patterns in _HIERARCHY_LEVELS:
            if any(pattern.match(trimmed) for pattern in patterns):
                label = trimmed.split("\n", 1)[0][:_HEADING_LABEL_MAX]
                self._stack = [entry for entry in self._stack if entry[0] < level]
                self._stack.append((level, label))
                return True
        return False

    def path(self, article_number: str | None = None) -> str | None:
        parts = [label for _, label in self._stack]
        if article_number:
            parts.append(f"Art. {article_number}")
        return " > ".join(parts) if parts else None

    @property
    def current_section(self) -> str | None:
        return self._stack[-1][1] if self._stack else None

    @property
    def parent_section(self) -> str | None:
        return self._stack[-2][1] if len(self._stack) >= 2 else None


# ---------------------------------------------------------------------------
# Article number / section title
# ---------------------------------------------------------------------------

_LATIN_SUFFIXES = "bis|ter|quater|quinquies|sexies|septies|octies|novies|decies"

_ARTICLE_PATTERNS = (
    re.compile(
        rf"\bArt(?:icle)?\.?\s*(\d+(?:\s*(?:{_LATIN_SUFFIXES}))?(?:\s*[-–]\s*\d+)?)",
        re.IGNORECASE,
    ),
    re.compile(r"§\s*(\d+(?:\.\d+)*)"),
    re.compile(r"(?:المادة|الفصل|البند)\s*[:.]?\s*(\d+(?:\s*[-–]\s*\d+)?)"),
    re.compile(r"(?:المادة|الفصل)\s+(الأول[ى]?|الثاني[ة]?|الثالث[ة]?|الرابع[ة]?|الخامس[ة]?)"),
)

_SECTION_PATTERNS = (
    re.compile(
        rf"^((?:CHAPITRE|TITRE|SECTION|SOUS-SECTION|PARTIE)\s+{_ROMAN_OR_DIGITS}(?:\s*[-–:]\s*.{{5,80}})?)",
        re.IGNORECASE | re.MULTILINE,
    ),
    re.compile(
        rf"^((?:الباب|الفصل|القسم|الجزء|العنوان)\s+(?:{_ROMAN_OR_DIGITS}|{_AR_ORDINALS})(?:\s*[-–:]\s*.{{5,80}})?)",
        re.MULTILINE,
    ),
)


def extract_article_number(text: str) -> str | None:
    """Return the first article reference, e.g. ``"45 bis"`` or ``"12"``."""
    for pattern in _ARTICLE_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1).strip()
    return None


def extract_section_title(text: str) -> str | None:
    """Return the first heading line found in *text* (≤ 200 chars)."""
    for pattern in _SECTION_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1).strip()[:200]
    return None


# ---------------------------------------------------------------------------
# Chunk type
# ---------------------------------------------------------------------------

# First match wins.
_CHUNK_TYPE_RULES: tuple[tuple[str, tuple[re.Pattern[str], ...]], ...] = (
    (
        "definition",
        (
            re.compile(r"\b(définition|définit|entend par|au sens du présent)", re.IGNORECASE),
            re.compile(r"تعريف|يقصد ب|يراد ب|المقصود ب"),
        ),
    ),
    ("header", (re.compile(r"^(CHAPITRE|TITRE|SECTION)", re.IGNORECASE), re.compile(r"^(?:الباب|الفصل|القسم|الجزء)"))),
    (
        "article",
        (re.compile(r"\bart(?:icle)?\.?\s*\d+", re.IGNORECASE), re.compile(r"(?:المادة|الفصل|البند)\s*\d+")),
    ),
    ("note", (re.compile(r"\b(note|nota|n\.b\.)", re.IGNORECASE), re.compile(r"ملاحظة|ملحوظة|تنبيه"))),
    (
        "exclusion",
        (
            re.compile(r"\b(exception|exclut|ne comprend pas|à l'exclusion)", re.IGNORECASE),
            re.compile(r"استثناء|لا يشمل|باستثناء|يستثنى"),
        ),
    ),
    (
        "procedure",
        (
            re.compile(r"\b(procédure|formalité|déclaration|document)", re.IGNORECASE),
            re.compile(r"إجراء|إجراءات|تصريح|وثيقة|مستند"),
        ),
    ),
    (
        "sanction",
        (
            re.compile(r"\b(pénalité|sanction|amende|infraction)", re.IGNORECASE),
            re.compile(r"عقوبة|غرامة|جزاء|مخالفة"),
        ),
    ),
    ("tariff", (re.compile(r"\b(taux|droit|taxe)|%", re.IGNORECASE), re.compile(r"رسم|ضريبة|تعريفة|نسبة"))),
)


def detect_chunk_type(text: str) -> str:
    stripped = text.strip()
    for chunk_type, patterns in _CHUNK_TYPE_RULES:
        if any(pattern.search(stripped) for pattern in patterns):
            return chunk_type
    return "general"


# ---------------------------------------------------------------------------
# Keywords
# ---------------------------------------------------------------------------

_MAX_KEYWORDS = 15

_FRENCH_KEYWORDS = (
    re.compile(
        r"\b(importation|exportation|transit|admission temporaire|dédouanement|régime douanier)\b",
        re.IGNORECASE,
    ),
    re.compile(r"\b(certificat d'origine|EUR\.?\s*1|déclaration en douane|DUM)\b", re.IGNORECASE),
    re.compile(r"\b(franchise|exonération|suspension|drawback)\b", re.IGNORECASE),
    re.compile(r"\b(contrôle|visite|vérification|inspection)\b", re.IGNORECASE),
    re.compile(r"\b(valeur en douane|valeur transactionnelle|CIF|FOB)\b", re.IGNORECASE),
    re.compile(r"\b(origine préférentielle|origine non préférentielle|cumul)\b", re.IGNORECASE),
    re.compile(r"\b(contingent|quota|licence d'importation)\b", re.IGNORECASE),
)

_ARABIC_KEYWORDS = (
    re.compile(r"(استيراد|تصدير|عبور|إدخال مؤقت|تخليص جمركي|نظام جمركي)"),
    re.compile(r"(شهادة المنشأ|التصريح الجمركي|وثيقة الاستيراد)"),
    re.compile(r"(إعفاء|تعليق|امتياز جمركي)"),
    re.compile(r"(مراقبة|تفتيش|فحص|معاينة)"),
    re.compile(r"(القيمة الجمركية|قيمة المعاملة)"),
    re.compile(r"(المنشأ التفضيلي|المنشأ غير التفضيلي|التراكم)"),
    re.compile(r"(حصة|رخصة استيراد|ترخيص)"),
)


def extract_keywords(text: str) -> list[str]:
    """Return up to 15 distinct customs keywords, French ones lower-cased."""
    keywords: dict[str, None] = {}
    for pattern in _FRENCH_KEYWORDS:
        for match in pattern.finditer(text):
            keywords.setdefault(match.group(1).lower().strip(), None)
    for pattern in _ARABIC_KEYWORDS:
        for match in pattern.finditer(text):
            keywords.setdefault(match.group(1).strip(), None)
    return list(keywords)[:_MAX_KEYWORDS]

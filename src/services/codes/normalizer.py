"""Strict validators for hierarchical customs classification codes.

A Harmonized System code is hierarchical: 2 digits for the chapter, 4 for
the heading, 6 for the international subheading, and a national extension
up to 10 digits (the Moroccan tariff line).

Every function here follows one rule: **never fabricate a code**.  A value
is returned only when the raw input already has exactly the required
number of digits (and, where applicable, a chapter in 01..99).  Short
inputs are never zero-padded and long inputs are never truncated to fit;
absence of enough digits is represented as ``None``.
"""

import re

from pydantic import BaseModel, ConfigDict

_NON_DIGIT = re.compile(r"[^0-9]")
_SEPARATORS = re.compile(r"[.\s\-\u2013\u2014]")


class ParsedCode(BaseModel):
    """Components recovered from a raw detected code."""

    model_config = ConfigDict(frozen=True)

    raw: str
    hs_code_6: str | None = None
    national_code: str | None = None
    level: str
    is_complete: bool = False


def digits_only(raw: str | None) -> str:
    """Return only the ASCII digits of *raw* ("" for None)."""
    if not raw:
        return ""
    return _NON_DIGIT.sub("", raw)


def clean_code(raw: str | None) -> str:
    """Strip dots, whitespace and dashes used as code separators."""
    if not raw:
        return ""
    return _SEPARATORS.sub("", raw).strip()


def _has_valid_chapter(digits: str) -> bool:
    return 1 <= int(digits[:2]) <= 99


def _exact(raw: str | None, width: int, check_chapter: bool = True) -> str | None:
    digits = digits_only(raw)
    if len(digits) != width:
        return None
    if check_chapter and not _has_valid_chapter(digits):
        return None
    return digits


def normalize_10_strict(raw: str | None) -> str | None:
    """Return the 10-digit national code, or None unless *raw* has exactly 10 digits.

    Examples:
        ``"8903.11.00.00"`` -> ``"8903110000"``; ``"890311"`` -> ``None``.
    """
    return _exact(raw, 10)


def normalize_6_strict(raw: str | None) -> str | None:
    """Return the HS-6 subheading, or None unless *raw* has exactly 6 digits."""
    return _exact(clean_code(raw), 6)


def normalize_4_strict(raw: str | None) -> str | None:
    """Return the 4-digit heading, or None unless *raw* has exactly 4 digits."""
    return _exact(raw, 4)


def normalize_2_strict(raw: str | None) -> str | None:
    """Return a 2-digit chapter, or None unless *raw* has exactly 2 digits."""
    return _exact(raw, 2)


def extract_hs6(raw: str | None) -> str | None:
    """Return the first 6 digits of a code that has at least 6 digits.

    Shorter codes give None; no padding is ever applied.
    """
    digits = digits_only(raw)
    if len(digits) < 6 or not _has_valid_chapter(digits):
        return None
    return digits[:6]


def is_valid_national_code(raw: str | None) -> bool:
    return normalize_10_strict(raw) is not None


def is_valid_hs6(raw: str | None) -> bool:
    return normalize_6_strict(raw) is not None


def get_hs_level(raw: str | None) -> str:
    """Name the level of the hierarchy a code's digit count corresponds to."""
    length = len(digits_only(raw))
    if length <= 2:
        return "chapter"
    if length <= 4:
        return "heading"
    if length <= 6:
        return "subheading"
    if length <= 8:
        return "tariff_item"
    return "national_line"


def format_hs_code(raw: str | None) -> str:
    """Format a code with dots: ``XXXX.XX.XX.XX`` for 10 digits, ``XXXX.XX`` for 6.

    Other widths are grouped the same way as far as their digits go.
    """
    digits = digits_only(raw)
    if len(digits) <= 2:
        return digits
    if len(digits) <= 4:
        return f"{digits[:2]}.{digits[2:]}"
    if len(digits) <= 6:
        return f"{digits[:4]}.{digits[4:]}"
    if len(digits) <= 8:
        return f"{digits[:4]}.{digits[4:6]}.{digits[6:]}"
    return f"{digits[:4]}.{digits[4:6]}.{digits[6:8]}.{digits[8:]}"


def parse_detected_code(raw: str) -> ParsedCode:
    """Split a detected code into its strictly-valid components."""
    national = normalize_10_strict(raw)
    return ParsedCode(
        raw=raw,
        hs_code_6=extract_hs6(raw),
        national_code=national,
        level=get_hs_level(raw),
        is_complete=national is not None,
    )

"""Classification-code validation and detection.

    - normalizer.py -- strict, non-padding validators (2/4/6/10 digits)
    - detector.py   -- regex scanner producing DetectedCode candidates
"""

from src.services.codes.detector import CodeDetector, build_evidence_rows, extract_mentioned_codes
from src.services.codes.normalizer import (
    ParsedCode,
    digits_only,
    extract_hs6,
    format_hs_code,
    get_hs_level,
    is_valid_hs6,
    is_valid_national_code,
    normalize_2_strict,
    normalize_4_strict,
    normalize_6_strict,
    normalize_10_strict,
    parse_detected_code,
)

__all__ = [
    "CodeDetector",
    "ParsedCode",
    "build_evidence_rows",
    "digits_only",
    "extract_hs6",
    "extract_mentioned_codes",
    "format_hs_code",
    "get_hs_level",
    "is_valid_hs6",
    "is_valid_national_code",
    "normalize_10_strict",
    "normalize_2_strict",
    "normalize_4_strict",
    "normalize_6_strict",
    "parse_detected_code",
]

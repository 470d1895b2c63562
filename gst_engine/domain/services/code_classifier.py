# gst_engine/domain/services/code_classifier.py
"""
HSN / SAC code classification.

HSN codes classify goods, SAC codes classify services. Validators look at
the code as entered (only surrounding whitespace is ignored); normalization
is used purely for comparing codes against rule patterns.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Iterable

_DIGITS = re.compile(r"^\d+$")
_SEPARATORS = re.compile(r"[\s\-.]")

HSN_LENGTHS = (4, 6, 8)
SAC_LENGTHS = (4, 6)
# Services chapters start at 99
SAC_PREFIX_FLOOR = 99


class CodeType(str, Enum):
    HSN = "HSN"
    SAC = "SAC"
    INVALID = "INVALID"


def validate_hsn_code(code: str | None) -> bool:
    """True for a purely numeric 4, 6 or 8 digit code."""
    if not code:
        return False
    code = code.strip()
    return bool(_DIGITS.match(code)) and len(code) in HSN_LENGTHS


def validate_sac_code(code: str | None) -> bool:
    """True for a purely numeric 4 or 6 digit code."""
    if not code:
        return False
    code = code.strip()
    return bool(_DIGITS.match(code)) and len(code) in SAC_LENGTHS


def normalize_code(code: str | None) -> str:
    if not code:
        return ""
    return _SEPARATORS.sub("", code.strip()).upper()


def get_code_type(code: str | None) -> CodeType:
    """
    Classify a code as HSN or SAC.

    4 and 6 digit codes are ambiguous by length alone, so the two-digit
    chapter prefix decides. 8 digit codes only exist for goods. 5 and 7
    digit codes are tolerated as (truncated) HSN.
    """
    if not code:
        return CodeType.INVALID
    code = code.strip()
    if not _DIGITS.match(code):
        return CodeType.INVALID

    length = len(code)
    if length < 4 or length > 8:
        return CodeType.INVALID

    if length in (4, 6):
        return CodeType.SAC if int(code[:2]) >= SAC_PREFIX_FLOOR else CodeType.HSN
    return CodeType.HSN


def match_code_pattern(code: str | None, patterns: Iterable[str]) -> str | None:
    """
    Match a code against rule patterns.

    An exact (normalized) match wins. Failing that, the first pattern that
    is a prefix of the code, or that the code is a prefix of, matches and
    the shorter of the two strings is returned.
    """
    normalized = normalize_code(code)
    if not normalized:
        return None

    candidates = [normalize_code(p) for p in patterns]
    for pattern in candidates:
        if pattern and pattern == normalized:
            return pattern

    for pattern in candidates:
        if not pattern:
            continue
        if normalized.startswith(pattern) or pattern.startswith(normalized):
            return normalized if len(normalized) <= len(pattern) else pattern

    return None


def is_partial_match(full_code: str | None, partial_code: str | None) -> bool:
    full = normalize_code(full_code)
    partial = normalize_code(partial_code)
    if not full or not partial:
        return False
    return full.startswith(partial)

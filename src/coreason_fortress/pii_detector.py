# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fortress

"""
PII detection and redaction.

Wraps a fixed set of Presidio `PatternRecognizer`s (phone, SSN, credit card,
email, government-ID-like) and exposes plain functions over them. No spaCy
model is loaded: only regex recognizers are used, so detection is cheap enough
to run synchronously on every audit write.

The module holds no per-call state and is safe to call concurrently.
"""

import re
from typing import List, Optional, Tuple

from presidio_analyzer import Pattern, PatternRecognizer

from coreason_fortress.models import PIIMatch, PIIType
from coreason_fortress.utils.logger import logger

# Case-sensitive so gov IDs require capitals. Presidio compiles with the
# `regex` package, where MULTILINE has the same value as in `re`.
_REGEX_FLAGS = re.MULTILINE

# (type, presidio entity, regex)
_PII_PATTERNS: List[Tuple[PIIType, str, str]] = [
    # US phone numbers: +1XXXXXXXXXX, (XXX) XXX-XXXX, XXX-XXX-XXXX
    (PIIType.PHONE, "PHONE_NUMBER", r"\+1\d{10}|\(\d{3}\)\s?\d{3}[-.]?\d{4}|\b\d{3}[-.]?\d{3}[-.]?\d{4}\b"),
    # SSN: XXX-XX-XXXX
    (PIIType.SSN, "US_SSN", r"\b\d{3}-\d{2}-\d{4}\b"),
    # 16 digits with optional separators
    (PIIType.CREDIT_CARD, "CREDIT_CARD", r"\b(?:\d{4}[-\s]?){3}\d{4}\b"),
    (PIIType.EMAIL, "EMAIL_ADDRESS", r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
    # Passport-like identifiers
    (PIIType.GOV_ID, "GOV_ID", r"\b[A-Z]{1,2}\d{6,9}\b"),
]

_RECOGNIZER_CACHE: Optional[List[Tuple[PIIType, PatternRecognizer]]] = None


def _get_recognizers() -> List[Tuple[PIIType, PatternRecognizer]]:
    """
    Builds the recognizers once and caches them at module level.

    Each recognizer owns exactly one pattern, so every pattern is run
    independently against the full text with a fresh `finditer` cursor.
    """
    global _RECOGNIZER_CACHE
    if _RECOGNIZER_CACHE is None:
        recognizers = []
        for pii_type, entity, regex in _PII_PATTERNS:
            pattern = Pattern(name=f"{pii_type.value}_pattern", regex=regex, score=0.85)
            recognizer = PatternRecognizer(
                supported_entity=entity,
                patterns=[pattern],
                global_regex_flags=_REGEX_FLAGS,
            )
            recognizers.append((pii_type, recognizer))
        _RECOGNIZER_CACHE = recognizers
        logger.debug(f"Loaded {len(recognizers)} PII recognizers.")
    return _RECOGNIZER_CACHE


def detect_pii(text: str) -> List[PIIMatch]:
    """
    Scans text for PII.

    Args:
        text: The text to scan.

    Returns:
        Every match from every pattern, sorted by `start` ascending. Matches
        from different patterns may overlap; `redact_pii` resolves that.
    """
    if not text:
        return []

    matches: List[PIIMatch] = []
    for pii_type, recognizer in _get_recognizers():
        results = recognizer.analyze(text=text, entities=recognizer.supported_entities)
        for result in results:
            matches.append(
                PIIMatch(type=pii_type, value=text[result.start : result.end], start=result.start, end=result.end)
            )

    # Stable sort keeps pattern order for equal starts.
    matches.sort(key=lambda m: m.start)
    return matches


def redact_pii(text: str) -> str:
    """
    Replaces every PII match with `[REDACTED:<type>]`.

    Matches are consumed in start order; a match that begins before the end of
    the previously substituted one is skipped rather than substituted twice.
    """
    matches = detect_pii(text)
    if not matches:
        return text

    parts: List[str] = []
    last_end = 0
    for match in matches:
        if match.start < last_end:
            continue
        parts.append(text[last_end : match.start])
        parts.append(f"[REDACTED:{match.type.value}]")
        last_end = match.end

    parts.append(text[last_end:])
    return "".join(parts)


def contains_pii(text: str) -> bool:
    return len(detect_pii(text)) > 0

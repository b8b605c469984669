"""Parsing helpers for CEFR level ranges and learner age groups."""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import List, Tuple

CEFR_LEVELS: Tuple[str, ...] = ("A1", "A2", "B1", "B2", "C1", "C2")
RANGE_DELIMITERS = r"\s*(?:-|–|/|,|to)\s*"
MAX_AGE = 120

AGE_LABELS = {
    "kids": (6, 11),
    "children": (6, 11),
    "young learners": (6, 11),
    "teens": (12, 17),
    "teenagers": (12, 17),
    "adults": (18, MAX_AGE),
    "all": (0, MAX_AGE),
    "all ages": (0, MAX_AGE),
}


def split_tokens(value: str | Sequence[str] | None, *, delimiters: str = RANGE_DELIMITERS) -> List[str]:
    """Split a range-like field into trimmed tokens.

    Works for strings (splitting on the provided delimiters) or sequences
    (recursively splits each entry). Returns an empty list when the input is falsy.
    """

    if not value:
        return []
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        tokens: List[str] = []
        for item in value:
            tokens.extend(split_tokens(item, delimiters=delimiters))
        return tokens
    raw_tokens = re.split(delimiters, str(value).strip())
    return [token.strip() for token in raw_tokens if token.strip()]


def level_index(level: str) -> int:
    normalized = level.strip().upper().rstrip("+")
    try:
        return CEFR_LEVELS.index(normalized)
    except ValueError as exc:
        raise ValueError(f"Unknown CEFR level {level!r}; expected one of {', '.join(CEFR_LEVELS)}") from exc


def parse_level_range(value: str) -> Tuple[int, int]:
    """Return the inclusive (low, high) CEFR indices covered by ``value``.

    ``"B1"`` covers one level, ``"B2-C1"`` and ``"A2/B1"`` cover the span
    between their lowest and highest members.
    """
    tokens = split_tokens(value)
    if not tokens:
        raise ValueError("CEFR level is empty")
    indices = [level_index(token) for token in tokens]
    return min(indices), max(indices)


def levels_in_range(value: str) -> List[str]:
    low, high = parse_level_range(value)
    return list(CEFR_LEVELS[low : high + 1])


def level_contains(outer: str, inner: str) -> bool:
    outer_low, outer_high = parse_level_range(outer)
    inner_low, inner_high = parse_level_range(inner)
    return outer_low <= inner_low and inner_high <= outer_high


def level_overlaps(first: str, second: str) -> bool:
    first_low, first_high = parse_level_range(first)
    second_low, second_high = parse_level_range(second)
    return first_low <= second_high and second_low <= first_high


def parse_age_group(value: str) -> Tuple[int, int]:
    """Return an inclusive (min, max) age span for a label or numeric range."""
    text = (value or "").strip().lower()
    if not text:
        raise ValueError("Age group is empty")
    if text in AGE_LABELS:
        return AGE_LABELS[text]
    if text.endswith("+") and text[:-1].strip().isdigit():
        return int(text[:-1]), MAX_AGE
    tokens = split_tokens(text)
    if tokens and all(token.isdigit() for token in tokens):
        ages = [int(token) for token in tokens]
        return min(ages), max(ages)
    raise ValueError(f"Unrecognized age group {value!r}")


def age_group_contains(outer: str, inner: str) -> bool:
    outer_min, outer_max = parse_age_group(outer)
    inner_min, inner_max = parse_age_group(inner)
    return outer_min <= inner_min and inner_max <= outer_max


__all__ = [
    "AGE_LABELS",
    "CEFR_LEVELS",
    "age_group_contains",
    "level_contains",
    "level_index",
    "level_overlaps",
    "levels_in_range",
    "parse_age_group",
    "parse_level_range",
    "split_tokens",
]

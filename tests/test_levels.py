from __future__ import annotations

import pytest

from kctgov.utils.levels import (
    age_group_contains,
    level_contains,
    level_overlaps,
    levels_in_range,
    parse_age_group,
    parse_level_range,
    split_tokens,
)


def test_split_tokens_handles_strings_and_sequences() -> None:
    assert split_tokens("B2 - C1") == ["B2", "C1"]
    assert split_tokens(["A1/A2", "B1"]) == ["A1", "A2", "B1"]
    assert split_tokens(None) == []


@pytest.mark.parametrize(
    ("value", "expected"),
    [("B1", ["B1"]), ("B2-C1", ["B2", "C1"]), ("a2 to b2", ["A2", "B1", "B2"]), ("C1+", ["C1"])],
)
def test_levels_in_range(value: str, expected: list[str]) -> None:
    assert levels_in_range(value) == expected


def test_unknown_level_rejected() -> None:
    with pytest.raises(ValueError):
        parse_level_range("D1")
    with pytest.raises(ValueError):
        parse_level_range("")


def test_level_relations() -> None:
    assert level_overlaps("B2-C1", "B1-B2")
    assert not level_overlaps("B2-C1", "B1")
    assert level_contains("B1-C1", "B2")
    assert not level_contains("B2-C1", "B1-B2")


def test_age_groups() -> None:
    assert parse_age_group("Teens") == (12, 17)
    assert parse_age_group("16+")[0] == 16
    assert parse_age_group("12-15") == (12, 15)
    assert age_group_contains("all", "kids")
    assert age_group_contains("adults", "18-30")
    assert not age_group_contains("adults", "teens")
    with pytest.raises(ValueError):
        parse_age_group("grown-ups")

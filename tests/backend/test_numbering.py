from __future__ import annotations

from datetime import date

import pytest

from backend.fieldops.models import DocumentKind
from backend.fieldops.services.numbering import (
    bump_number,
    format_number,
    next_number,
    parse_number,
)

TODAY = date(2024, 3, 15)


def test_first_quote_of_the_day() -> None:
    assert next_number(DocumentKind.quote, [], TODAY) == "Q-20240315-0001"


def test_increments_most_recent_same_day_number() -> None:
    recent = ["Q-20240315-0007", "Q-20240315-0006", "Q-20240314-0003"]
    assert next_number(DocumentKind.quote, recent, TODAY) == "Q-20240315-0008"


def test_counter_resets_on_a_new_day() -> None:
    assert next_number(DocumentKind.quote, ["Q-20240314-0003"], TODAY) == "Q-20240315-0001"


@pytest.mark.parametrize(
    ("kind", "expected"),
    [
        (DocumentKind.quote, "Q-20240315-0001"),
        (DocumentKind.work_order, "WO-20240315-0001"),
        (DocumentKind.invoice, "INV-20240315-0001"),
    ],
)
def test_prefix_per_kind(kind: DocumentKind, expected: str) -> None:
    assert next_number(kind, [], TODAY) == expected


def test_other_kinds_numbers_are_ignored() -> None:
    assert next_number(DocumentKind.invoice, ["WO-20240315-0004"], TODAY) == "INV-20240315-0001"


def test_first_same_day_match_wins_even_if_not_highest() -> None:
    recent = ["WO-20240315-0002", "WO-20240315-0009"]
    assert next_number(DocumentKind.work_order, recent, TODAY) == "WO-20240315-0003"


def test_unparsable_same_day_number_is_skipped() -> None:
    recent = ["Q-20240315-00x1", "Q-20240315-0004"]
    assert next_number(DocumentKind.quote, recent, TODAY) == "Q-20240315-0005"


def test_counter_past_9999_widens() -> None:
    assert next_number(DocumentKind.invoice, ["INV-20240315-9999"], TODAY) == "INV-20240315-10000"
    assert parse_number(DocumentKind.invoice, "INV-20240315-10000") == ("20240315", 10000)


def test_parse_number_rejects_foreign_formats() -> None:
    assert parse_number(DocumentKind.quote, "Q-2024-03-15-0001") is None
    assert parse_number(DocumentKind.quote, "INV-20240315-0001") is None
    assert parse_number(DocumentKind.quote, "Q-20240315-001") is None


def test_format_and_bump() -> None:
    assert format_number(DocumentKind.work_order, TODAY, 42) == "WO-20240315-0042"
    assert bump_number(DocumentKind.work_order, "WO-20240315-0042") == "WO-20240315-0043"
    with pytest.raises(ValueError):
        bump_number(DocumentKind.work_order, "garbage")


def test_pure_for_identical_inputs() -> None:
    recent = ["Q-20240315-0002"]
    assert next_number(DocumentKind.quote, recent, TODAY) == next_number(
        DocumentKind.quote, recent, TODAY
    )

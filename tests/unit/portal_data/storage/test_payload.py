"""Unit tests for export payload validation and row grouping."""

from __future__ import annotations

import pytest

from src.portal_data.exceptions import ValidationError
from src.portal_data.storage import group_by_columns, validate_payload


@pytest.mark.parametrize(
    ("data", "field"),
    [
        ([], "data"),
        ({"": []}, "data"),
        ({"departments": None}, "departments"),
        ({"departments": [{"name": "A"}, 3]}, "departments[1]"),
    ],
)
def test_validate_payload_rejects(data, field):
    with pytest.raises(ValidationError) as exc_info:
        validate_payload(data)
    assert exc_info.value.field == field


def test_validate_payload_accepts_empty_tables():
    payload = {"departments": [], "positions": [{"name": "Clerk"}]}
    assert validate_payload(payload) is payload


def test_group_by_columns_keeps_first_seen_order():
    rows = [
        {"id": 1, "name": "A"},
        {"id": 2, "name": "B", "floor": 3},
        {"id": 3, "name": "C"},
    ]

    groups = group_by_columns(rows)

    assert [columns for columns, _ in groups] == [("id", "name"), ("id", "name", "floor")]
    assert [row["id"] for row in groups[0][1]] == [1, 3]

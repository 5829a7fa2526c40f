"""
Export Payload Helpers

Shape checks and row grouping shared by provider ``import_all`` implementations.
"""

from __future__ import annotations

from typing import Any

from src.portal_data.contracts import ExportPayload, Record
from src.portal_data.exceptions import ValidationError


def validate_payload(data: Any) -> ExportPayload:
    """
    Check that ``data`` maps kind names to lists of objects.

    Runs before any write so a malformed payload is rejected untouched.
    """
    if not isinstance(data, dict):
        raise ValidationError("data", "must map entity kinds to record lists")
    for kind, rows in data.items():
        if not isinstance(kind, str) or not kind:
            raise ValidationError("data", f"invalid entity kind {kind!r}")
        if not isinstance(rows, list):
            raise ValidationError(kind, "must be a list of records")
        for index, row in enumerate(rows):
            if not isinstance(row, dict):
                raise ValidationError(f"{kind}[{index}]", "record must be an object")
    return data


def group_by_columns(rows: list[Record]) -> list[tuple[tuple[str, ...], list[Record]]]:
    """
    Group rows sharing the same key set, keeping first-seen order.

    Rows of one table normally share their keys. When they do not, each group
    is inserted with its own column list so absent columns fall back to their
    database defaults instead of being forced to NULL.
    """
    groups: dict[tuple[str, ...], list[Record]] = {}
    for row in rows:
        groups.setdefault(tuple(row), []).append(row)
    return list(groups.items())

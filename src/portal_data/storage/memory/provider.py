"""
In-Memory Provider

Dict-based store: one ordered collection per entity kind keyed by an
auto-incrementing counter. Default, zero-configuration backend for development
and demos. Nothing survives a process restart.
"""

from __future__ import annotations

import copy
import logging
from typing import Any

from src.portal_data.contracts import (
    DEFAULT_SCHEMAS,
    ID_FIELD,
    EntityKind,
    EntitySchemaRegistry,
    ExportPayload,
    ImportAtomicity,
    ImportReport,
    ProviderKind,
    Record,
)
from src.portal_data.exceptions import NotFoundError, ValidationError
from src.portal_data.storage.payload import validate_payload

logger = logging.getLogger(__name__)


class _Collection:
    """Ordered records of one kind plus its id counter."""

    def __init__(self) -> None:
        self.rows: dict[int, Record] = {}
        self.next_id = 1

    def allocate_id(self) -> int:
        record_id = self.next_id
        self.next_id += 1
        return record_id

    def reserve(self, record_id: Any) -> None:
        if isinstance(record_id, int) and record_id >= self.next_id:
            self.next_id = record_id + 1


class MemoryProvider:
    """
    In-memory implementation of DataProvider.

    Imports are validated in full before any collection is touched, so a
    failed import leaves the store unchanged.
    """

    def __init__(self, schemas: EntitySchemaRegistry | None = None) -> None:
        self._schemas = schemas or DEFAULT_SCHEMAS
        self._collections: dict[str, _Collection] = {}

    @property
    def kind(self) -> ProviderKind:
        return ProviderKind.MEMORY

    @property
    def atomicity(self) -> ImportAtomicity:
        return ImportAtomicity.TRANSACTIONAL

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        logger.debug("Memory provider ready")

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._collections.clear()

    # -------------------------------------------------------------------------
    # Entity operations
    # -------------------------------------------------------------------------

    def _collection(self, kind: EntityKind) -> _Collection:
        if kind not in self._collections:
            self._collections[kind] = _Collection()
        return self._collections[kind]

    def _rows(self, kind: EntityKind) -> dict[int, Record]:
        collection = self._collections.get(kind)
        return collection.rows if collection else {}

    def _row(self, kind: EntityKind, record_id: Any) -> Record:
        try:
            key = int(record_id)
        except (TypeError, ValueError):
            raise NotFoundError(kind, record_id) from None
        row = self._rows(kind).get(key)
        if row is None:
            raise NotFoundError(kind, record_id)
        return row

    async def list(self, kind: EntityKind) -> list[Record]:
        return [copy.deepcopy(row) for row in self._rows(kind).values()]

    async def get_by_id(self, kind: EntityKind, record_id: Any) -> Record:
        return copy.deepcopy(self._row(kind, record_id))

    async def create(self, kind: EntityKind, fields: Record) -> Record:
        missing = self._schemas.get(kind).missing_field(fields)
        if missing:
            raise ValidationError(f"{kind}.{missing}", "required field is missing")

        collection = self._collection(kind)
        record_id = collection.allocate_id()
        row = {k: copy.deepcopy(v) for k, v in fields.items() if k != ID_FIELD}
        row[ID_FIELD] = record_id
        collection.rows[record_id] = row
        return copy.deepcopy(row)

    async def update(self, kind: EntityKind, record_id: Any, fields: Record) -> Record:
        row = self._row(kind, record_id)
        for key, value in fields.items():
            if key != ID_FIELD:
                row[key] = copy.deepcopy(value)
        return copy.deepcopy(row)

    async def delete(self, kind: EntityKind, record_id: Any) -> None:
        row = self._row(kind, record_id)
        del self._rows(kind)[row[ID_FIELD]]

    async def find_by(self, kind: EntityKind, field: str, value: Any) -> Record | None:
        for row in self._rows(kind).values():
            if row.get(field) == value:
                return copy.deepcopy(row)
        return None

    # -------------------------------------------------------------------------
    # Whole-store transfer
    # -------------------------------------------------------------------------

    async def list_kinds(self) -> list[EntityKind]:
        return list(self._collections)

    async def export_all(self, kinds: list[EntityKind] | None = None) -> ExportPayload:
        selected = kinds if kinds else await self.list_kinds()
        return {kind: await self.list(kind) for kind in dict.fromkeys(selected)}

    async def import_all(self, data: ExportPayload) -> ImportReport:
        validate_payload(data)
        staged: dict[str, _Collection] = {}
        for kind, rows in data.items():
            collection = _Collection()
            for index, row in enumerate(rows):
                missing = self._schemas.get(kind).missing_field(row)
                if missing:
                    raise ValidationError(f"{kind}[{index}].{missing}", "required field is missing")
                record = copy.deepcopy(row)
                record_id = record.get(ID_FIELD)
                if not isinstance(record_id, int) or record_id in collection.rows:
                    record_id = None
                if record_id is None:
                    record_id = max(collection.next_id, max(collection.rows, default=0) + 1)
                record[ID_FIELD] = record_id
                collection.rows[record_id] = record
                collection.reserve(record_id)
            staged[kind] = collection

        # Validation passed for every kind; swap the collections in.
        self._collections.update(staged)
        rows_written = sum(len(c.rows) for c in staged.values())
        logger.info(f"Memory import replaced {len(staged)} kinds ({rows_written} rows)")
        return ImportReport(
            tables=tuple(staged),
            rows=rows_written,
            atomicity=self.atomicity,
        )

"""
Remote Table-Store Provider

Implements DataProvider against a hosted table-store over its REST API.
There is no multi-table transaction on this surface, so ``import_all``
replaces tables one at a time and reports exactly how far it got.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

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
    RemoteTableProviderConfig,
)
from src.portal_data.exceptions import (
    ConnectivityError,
    NotFoundError,
    PartialImportError,
    PortalDataError,
    ValidationError,
)
from src.portal_data.storage.payload import group_by_columns, validate_payload
from src.portal_data.storage.remote.client import RemoteTableClient, eq_filter
from src.portal_data.telemetry import get_tracer

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

# Matches every row that has an identity; the REST API refuses unfiltered deletes.
_ALL_ROWS = {ID_FIELD: "not.is.null"}


class RemoteTableProvider:
    """
    Remote table-store implementation of DataProvider.

    Per-table atomicity only: a failed ``import_all`` raises
    PartialImportError naming the tables already replaced and the one
    that failed.
    """

    def __init__(
        self,
        config: RemoteTableProviderConfig,
        schemas: EntitySchemaRegistry | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._schemas = schemas or DEFAULT_SCHEMAS
        self._transport = transport
        self._client: RemoteTableClient | None = None

    @property
    def kind(self) -> ProviderKind:
        return ProviderKind.REMOTE_TABLE

    @property
    def atomicity(self) -> ImportAtomicity:
        return ImportAtomicity.PER_TABLE

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        if self._client is not None:
            return

        logger.info(f"Connecting to remote table-store: {self._config.url}")
        self._client = RemoteTableClient(
            base_url=self._config.url,
            api_key=self._config.api_key,
            schema_name=self._config.schema_name,
            timeout_seconds=self._config.timeout_seconds,
            transport=self._transport,
        )
        try:
            await self._client.describe()
        except PortalDataError as e:
            await self.close()
            logger.warning(f"Remote table-store probe failed: {e.message}")
            if isinstance(e, ConnectivityError):
                raise
            raise ConnectivityError(self.kind.value, e.message) from e

        logger.info("Remote table-store reachable")

    async def ping(self) -> bool:
        if self._client is None:
            return False
        try:
            await self._client.describe()
        except PortalDataError as e:
            logger.warning(f"Remote table-store ping failed: {e.message}")
            return False
        return True

    async def close(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.close()

    def _require_client(self) -> RemoteTableClient:
        if self._client is None:
            raise ConnectivityError(self.kind.value, "provider is not connected")
        return self._client

    # -------------------------------------------------------------------------
    # Entity operations
    # -------------------------------------------------------------------------

    async def list(self, kind: EntityKind) -> list[Record]:
        with tracer.start_as_current_span("remote.entity.list") as span:
            span.set_attribute("db.entity_kind", kind)
            rows = await self._require_client().select(kind)
            span.set_attribute("db.result_count", len(rows))
            return rows

    async def get_by_id(self, kind: EntityKind, record_id: Any) -> Record:
        rows = await self._require_client().select(kind, {ID_FIELD: eq_filter(record_id)})
        if not rows:
            raise NotFoundError(kind, record_id)
        return rows[0]

    async def create(self, kind: EntityKind, fields: Record) -> Record:
        missing = self._schemas.get(kind).missing_field(fields)
        if missing:
            raise ValidationError(f"{kind}.{missing}", "required field is missing")

        with tracer.start_as_current_span("remote.entity.create") as span:
            span.set_attribute("db.entity_kind", kind)
            values = {k: v for k, v in fields.items() if k != ID_FIELD}
            created = await self._require_client().insert(kind, values)
            return created[0] if created else values

    async def update(self, kind: EntityKind, record_id: Any, fields: Record) -> Record:
        values = {k: v for k, v in fields.items() if k != ID_FIELD}
        if not values:
            return await self.get_by_id(kind, record_id)
        updated = await self._require_client().update(
            kind, {ID_FIELD: eq_filter(record_id)}, values
        )
        if not updated:
            raise NotFoundError(kind, record_id)
        return updated[0]

    async def delete(self, kind: EntityKind, record_id: Any) -> None:
        deleted = await self._require_client().delete(
            kind, {ID_FIELD: eq_filter(record_id)}, representation=True
        )
        if not deleted:
            raise NotFoundError(kind, record_id)

    async def find_by(self, kind: EntityKind, field: str, value: Any) -> Record | None:
        rows = await self._require_client().select(kind, {field: eq_filter(value), "limit": "1"})
        return rows[0] if rows else None

    # -------------------------------------------------------------------------
    # Whole-store transfer
    # -------------------------------------------------------------------------

    async def list_kinds(self) -> list[EntityKind]:
        return await self._require_client().list_tables()

    async def export_all(self, kinds: list[EntityKind] | None = None) -> ExportPayload:
        with tracer.start_as_current_span("remote.export_all") as span:
            selected = kinds if kinds else await self.list_kinds()
            span.set_attribute("db.table_count", len(selected))
            return {kind: await self.list(kind) for kind in dict.fromkeys(selected)}

    async def import_all(self, data: ExportPayload) -> ImportReport:
        """
        Replace tables one by one: delete every row, then bulk-insert.

        Empty row lists only clear the table. On failure the tables listed
        in ``PartialImportError.completed`` hold the imported data, the
        ``failed`` table is in an undefined state and the rest are untouched.

        The clearing delete filters on ``id``, so tables the API describes
        without an ``id`` column are rejected before anything is written.
        """
        validate_payload(data)
        client = self._require_client()
        columns = await client.table_columns()
        unknown = [kind for kind in data if kind not in columns]
        if unknown:
            raise NotFoundError("entity kind", ", ".join(unknown))
        without_id = [
            kind for kind in data if columns[kind] is not None and ID_FIELD not in columns[kind]
        ]
        if without_id:
            raise ValidationError(
                ", ".join(without_id), f"table has no '{ID_FIELD}' column to replace rows by"
            )

        completed: list[str] = []
        rows_written = 0
        with tracer.start_as_current_span("remote.import_all") as span:
            span.set_attribute("db.table_count", len(data))
            for kind, rows in data.items():
                try:
                    await client.delete(kind, _ALL_ROWS)
                    for _, group in group_by_columns(rows):
                        await client.insert(kind, group)
                except PortalDataError as e:
                    span.set_attribute("db.error", e.message)
                    logger.error(
                        f"Remote import stopped at '{kind}' after {len(completed)} tables: "
                        f"{e.message}"
                    )
                    raise PartialImportError(completed, kind, e.message) from e
                completed.append(kind)
                rows_written += len(rows)

            span.set_attribute("db.rows_written", rows_written)

        logger.info(f"Remote import replaced {len(completed)} tables ({rows_written} rows)")
        return ImportReport(tables=tuple(completed), rows=rows_written, atomicity=self.atomicity)

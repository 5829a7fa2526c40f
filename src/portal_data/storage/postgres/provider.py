"""
PostgreSQL Provider

Implements DataProvider over an asyncpg pool. Tables are discovered from
``information_schema`` so any table in the configured schema can be exported
and re-imported; entity kinds map one-to-one onto table names.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import asyncpg

from src.portal_data.contracts import (
    DEFAULT_SCHEMAS,
    ID_FIELD,
    EntityKind,
    EntitySchemaRegistry,
    ExportPayload,
    ImportAtomicity,
    ImportReport,
    PostgresProviderConfig,
    ProviderKind,
    Record,
)
from src.portal_data.exceptions import (
    ConnectivityError,
    NotFoundError,
    StorageQueryError,
    TransactionAbortedError,
    ValidationError,
)
from src.portal_data.logging import redact_connection_string
from src.portal_data.storage.payload import group_by_columns, validate_payload
from src.portal_data.storage.postgres.client import (
    INTEGER_TYPES,
    coerce_value,
    create_pool,
    quote_ident,
)
from src.portal_data.telemetry import get_tracer

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

_LIST_TABLES_SQL = """
    SELECT table_name
    FROM information_schema.tables
    WHERE table_schema = $1 AND table_type = 'BASE TABLE'
    ORDER BY table_name
"""

_COLUMN_TYPES_SQL = """
    SELECT column_name, data_type
    FROM information_schema.columns
    WHERE table_schema = $1 AND table_name = $2
"""


class PostgresProvider:
    """
    PostgreSQL implementation of DataProvider.

    ``import_all`` runs in a single transaction: either every listed table is
    replaced or the database is left exactly as it was.
    """

    def __init__(
        self,
        config: PostgresProviderConfig,
        schemas: EntitySchemaRegistry | None = None,
    ) -> None:
        self._config = config
        self._schemas = schemas or DEFAULT_SCHEMAS
        self._pool: asyncpg.Pool | None = None
        self._column_cache: dict[str, dict[str, str]] = {}

    @property
    def kind(self) -> ProviderKind:
        return ProviderKind.POSTGRES

    @property
    def atomicity(self) -> ImportAtomicity:
        return ImportAtomicity.TRANSACTIONAL

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Create the pool and verify it with ``SELECT NOW()``."""
        if self._pool is not None:
            return

        target = redact_connection_string(self._config.dsn)
        logger.info(f"Connecting to PostgreSQL: {target}")
        try:
            self._pool = await create_pool(
                self._config.dsn,
                min_size=self._config.pool_min,
                max_size=self._config.pool_max,
                command_timeout=self._config.command_timeout,
            )
            await self._probe()
        except Exception as e:
            await self.close()
            reason = str(e).replace(self._config.dsn, target)
            logger.warning(f"PostgreSQL connection to {target} failed: {reason}")
            raise ConnectivityError(self.kind.value, reason) from e

        logger.info("PostgreSQL connection pool validated successfully")

    async def _probe(self) -> None:
        async with self._require_pool().acquire() as conn:
            await conn.fetchval("SELECT NOW()")

    async def ping(self) -> bool:
        if self._pool is None:
            return False
        try:
            await self._probe()
        except (OSError, asyncio.TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            logger.warning(f"PostgreSQL ping failed: {e}")
            return False
        return True

    async def close(self) -> None:
        pool, self._pool = self._pool, None
        self._column_cache.clear()
        if pool is not None:
            await pool.close()
            logger.info("PostgreSQL connection pool closed")

    def _require_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise ConnectivityError(self.kind.value, "provider is not connected")
        return self._pool

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _table(self, kind: EntityKind) -> str:
        return f"{quote_ident(self._config.schema_name)}.{quote_ident(kind)}"

    @contextmanager
    def _errors(self, operation: str, kind: EntityKind | None = None) -> Iterator[None]:
        """Translate driver exceptions into the portal's error taxonomy."""
        try:
            yield
        except asyncpg.exceptions.UndefinedTableError as e:
            raise NotFoundError("entity kind", kind or operation) from e
        except asyncpg.PostgresError as e:
            raise StorageQueryError(operation, str(e)) from e
        except (
            OSError,
            asyncio.TimeoutError,
            asyncpg.exceptions.ConnectionDoesNotExistError,
        ) as e:
            raise ConnectivityError(self.kind.value, str(e)) from e
        except asyncpg.InterfaceError as e:
            raise StorageQueryError(operation, str(e)) from e

    async def _column_types(self, conn: Any, kind: EntityKind) -> dict[str, str]:
        if kind not in self._column_cache:
            rows = await conn.fetch(_COLUMN_TYPES_SQL, self._config.schema_name, kind)
            self._column_cache[kind] = {r["column_name"]: r["data_type"] for r in rows}
        return self._column_cache[kind]

    def _coerce(self, types: dict[str, str], field: str, value: Any) -> Any:
        try:
            return coerce_value(value, types.get(field))
        except ValueError as e:
            raise ValidationError(field, str(e)) from e

    def _coerce_id(self, types: dict[str, str], kind: EntityKind, record_id: Any) -> Any:
        try:
            return coerce_value(record_id, types.get(ID_FIELD))
        except ValueError:
            raise NotFoundError(kind, record_id) from None

    # -------------------------------------------------------------------------
    # Entity operations
    # -------------------------------------------------------------------------

    async def list(self, kind: EntityKind) -> list[Record]:
        with tracer.start_as_current_span("db.entity.list") as span:
            span.set_attribute("db.entity_kind", kind)
            with self._errors("list", kind):
                async with self._require_pool().acquire() as conn:
                    types = await self._column_types(conn, kind)
                    order = f" ORDER BY {quote_ident(ID_FIELD)}" if ID_FIELD in types else ""
                    rows = await conn.fetch(f"SELECT * FROM {self._table(kind)}{order}")
            span.set_attribute("db.result_count", len(rows))
            return [dict(row) for row in rows]

    async def get_by_id(self, kind: EntityKind, record_id: Any) -> Record:
        with tracer.start_as_current_span("db.entity.get") as span:
            span.set_attribute("db.entity_kind", kind)
            with self._errors("get_by_id", kind):
                async with self._require_pool().acquire() as conn:
                    types = await self._column_types(conn, kind)
                    row = await conn.fetchrow(
                        f"SELECT * FROM {self._table(kind)} WHERE {quote_ident(ID_FIELD)} = $1",
                        self._coerce_id(types, kind, record_id),
                    )
            span.set_attribute("db.found", row is not None)
            if row is None:
                raise NotFoundError(kind, record_id)
            return dict(row)

    async def create(self, kind: EntityKind, fields: Record) -> Record:
        missing = self._schemas.get(kind).missing_field(fields)
        if missing:
            raise ValidationError(f"{kind}.{missing}", "required field is missing")

        with tracer.start_as_current_span("db.entity.create") as span:
            span.set_attribute("db.entity_kind", kind)
            with self._errors("create", kind):
                async with self._require_pool().acquire() as conn:
                    types = await self._column_types(conn, kind)
                    values = {k: v for k, v in fields.items() if k != ID_FIELD}
                    if values:
                        columns = ", ".join(quote_ident(c) for c in values)
                        params = ", ".join(f"${i}" for i in range(1, len(values) + 1))
                        sql = (
                            f"INSERT INTO {self._table(kind)} ({columns}) "
                            f"VALUES ({params}) RETURNING *"
                        )
                    else:
                        sql = f"INSERT INTO {self._table(kind)} DEFAULT VALUES RETURNING *"
                    row = await conn.fetchrow(
                        sql, *[self._coerce(types, c, v) for c, v in values.items()]
                    )
            return dict(row)

    async def update(self, kind: EntityKind, record_id: Any, fields: Record) -> Record:
        values = {k: v for k, v in fields.items() if k != ID_FIELD}
        if not values:
            return await self.get_by_id(kind, record_id)

        with tracer.start_as_current_span("db.entity.update") as span:
            span.set_attribute("db.entity_kind", kind)
            with self._errors("update", kind):
                async with self._require_pool().acquire() as conn:
                    types = await self._column_types(conn, kind)
                    assignments = ", ".join(
                        f"{quote_ident(c)} = ${i}" for i, c in enumerate(values, start=2)
                    )
                    row = await conn.fetchrow(
                        f"UPDATE {self._table(kind)} SET {assignments} "
                        f"WHERE {quote_ident(ID_FIELD)} = $1 RETURNING *",
                        self._coerce_id(types, kind, record_id),
                        *[self._coerce(types, c, v) for c, v in values.items()],
                    )
            span.set_attribute("db.found", row is not None)
            if row is None:
                raise NotFoundError(kind, record_id)
            return dict(row)

    async def delete(self, kind: EntityKind, record_id: Any) -> None:
        with tracer.start_as_current_span("db.entity.delete") as span:
            span.set_attribute("db.entity_kind", kind)
            with self._errors("delete", kind):
                async with self._require_pool().acquire() as conn:
                    types = await self._column_types(conn, kind)
                    status = await conn.execute(
                        f"DELETE FROM {self._table(kind)} WHERE {quote_ident(ID_FIELD)} = $1",
                        self._coerce_id(types, kind, record_id),
                    )
            # asyncpg returns the command tag, e.g. "DELETE 1"
            if status.split()[-1] == "0":
                raise NotFoundError(kind, record_id)

    async def find_by(self, kind: EntityKind, field: str, value: Any) -> Record | None:
        with tracer.start_as_current_span("db.entity.find_by") as span:
            span.set_attribute("db.entity_kind", kind)
            span.set_attribute("db.field", field)
            with self._errors("find_by", kind):
                async with self._require_pool().acquire() as conn:
                    types = await self._column_types(conn, kind)
                    row = await conn.fetchrow(
                        f"SELECT * FROM {self._table(kind)} WHERE {quote_ident(field)} = $1 "
                        f"LIMIT 1",
                        self._coerce(types, field, value),
                    )
            span.set_attribute("db.found", row is not None)
            return dict(row) if row else None

    # -------------------------------------------------------------------------
    # Whole-store transfer
    # -------------------------------------------------------------------------

    async def list_kinds(self) -> list[EntityKind]:
        with self._errors("list_kinds"):
            rows = await self._require_pool().fetch(_LIST_TABLES_SQL, self._config.schema_name)
        return [row["table_name"] for row in rows]

    async def export_all(self, kinds: list[EntityKind] | None = None) -> ExportPayload:
        with tracer.start_as_current_span("db.export_all") as span:
            selected = kinds if kinds else await self.list_kinds()
            span.set_attribute("db.table_count", len(selected))
            return {kind: await self.list(kind) for kind in dict.fromkeys(selected)}

    async def import_all(self, data: ExportPayload) -> ImportReport:
        """
        Replace every table named in ``data`` inside one transaction.

        Unknown tables are rejected before anything is written. Any later
        failure rolls back the whole import and raises TransactionAbortedError.
        """
        validate_payload(data)
        existing = set(await self.list_kinds())
        unknown = [kind for kind in data if kind not in existing]
        if unknown:
            raise NotFoundError("entity kind", ", ".join(unknown))

        with tracer.start_as_current_span("db.import_all") as span:
            span.set_attribute("db.table_count", len(data))
            current: str | None = None
            rows_written = 0
            try:
                async with self._require_pool().acquire() as conn:
                    async with conn.transaction():
                        for kind, rows in data.items():
                            current = kind
                            rows_written += await self._replace_table(conn, kind, rows)
            except Exception as e:
                span.set_attribute("db.error", str(e))
                logger.error(f"PostgreSQL import rolled back at table '{current}': {e}")
                raise TransactionAbortedError(current, str(e)) from e

            span.set_attribute("db.rows_written", rows_written)

        logger.info(f"PostgreSQL import replaced {len(data)} tables ({rows_written} rows)")
        return ImportReport(tables=tuple(data), rows=rows_written, atomicity=self.atomicity)

    async def _replace_table(self, conn: Any, kind: EntityKind, rows: list[Record]) -> int:
        table = self._table(kind)
        types = await self._column_types(conn, kind)
        await conn.execute(f"DELETE FROM {table}")

        for columns, group in group_by_columns(rows):
            if not columns:
                for _ in group:
                    await conn.execute(f"INSERT INTO {table} DEFAULT VALUES")
                continue
            column_list = ", ".join(quote_ident(c) for c in columns)
            params = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
            await conn.executemany(
                f"INSERT INTO {table} ({column_list}) VALUES ({params})",
                [[coerce_value(row[c], types.get(c)) for c in columns] for row in group],
            )

        if rows and types.get(ID_FIELD) in INTEGER_TYPES:
            await self._advance_sequence(conn, kind)
        return len(rows)

    async def _advance_sequence(self, conn: Any, kind: EntityKind) -> None:
        """Move the id sequence past explicitly inserted ids, if the table has one."""
        qualified = f"{quote_ident(self._config.schema_name)}.{quote_ident(kind)}"
        sequence = await conn.fetchval("SELECT pg_get_serial_sequence($1, 'id')", qualified)
        if sequence is None:
            return
        await conn.execute(
            f"SELECT setval($1::regclass, "
            f"COALESCE((SELECT MAX({quote_ident(ID_FIELD)}) FROM {self._table(kind)}), 0) + 1, "
            f"false)",
            sequence,
        )

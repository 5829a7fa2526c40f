"""
PostgreSQL Connection Pool Management

Provides async connection pooling using asyncpg.

Pools are owned by the provider instance that creates them; there is no
module-level pool, so a provider switch can close one pool without touching
another.
"""

from __future__ import annotations

import json
import re
from datetime import UTC, date, datetime, time
from decimal import Decimal
from typing import Any
from uuid import UUID

import asyncpg

from src.portal_data.exceptions import ValidationError

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

INTEGER_TYPES = frozenset({"smallint", "integer", "bigint"})


async def _init_connection(conn: asyncpg.Connection) -> None:
    """Decode json/jsonb columns to Python objects (and encode them back)."""
    for type_name in ("json", "jsonb"):
        await conn.set_type_codec(
            type_name,
            encoder=lambda value: json.dumps(value, default=str),
            decoder=json.loads,
            schema="pg_catalog",
        )


async def create_pool(
    dsn: str,
    min_size: int = 1,
    max_size: int = 10,
    command_timeout: float = 60.0,
) -> asyncpg.Pool:
    """
    Create a connection pool.

    Args:
        dsn: PostgreSQL connection URL
        min_size: Minimum pool connections
        max_size: Maximum pool connections
        command_timeout: Per-query timeout in seconds

    Returns:
        asyncpg connection pool
    """
    return await asyncpg.create_pool(
        dsn,
        min_size=min_size,
        max_size=max(min_size, max_size),
        command_timeout=command_timeout,
        init=_init_connection,
    )


def quote_ident(name: str) -> str:
    """Validate and double-quote an SQL identifier."""
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise ValidationError(str(name), "not a valid SQL identifier")
    return f'"{name}"'


def coerce_value(value: Any, data_type: str | None) -> Any:
    """
    Convert a JSON-origin value to what asyncpg expects for a column type.

    Exports keep native Python values, but payloads that went through JSON
    (HTTP bodies, snapshot files) carry dates and decimals as strings.
    Unknown types pass through unchanged.
    """
    if not isinstance(value, str) or data_type is None:
        return value

    if data_type == "timestamp with time zone":
        return datetime.fromisoformat(value)
    if data_type == "timestamp without time zone":
        parsed = datetime.fromisoformat(value)
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(UTC).replace(tzinfo=None)
        return parsed
    if data_type == "date":
        return date.fromisoformat(value)
    if data_type.startswith("time"):
        return time.fromisoformat(value)
    if data_type in INTEGER_TYPES:
        return int(value)
    if data_type == "numeric":
        return Decimal(value)
    if data_type == "uuid":
        return UUID(value)
    return value

"""
Shared fixtures for integration tests.

Integration tests run against a real PostgreSQL named by DATABASE_URL and
are skipped when it is unset or unreachable.
"""

import os
from collections.abc import AsyncGenerator

import asyncpg
import pytest

SCHEMA = "portal_data_it"

_DDL = f"""
    DROP SCHEMA IF EXISTS {SCHEMA} CASCADE;
    CREATE SCHEMA {SCHEMA};
    CREATE TABLE {SCHEMA}.departments (
        id SERIAL PRIMARY KEY,
        name TEXT NOT NULL UNIQUE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    );
    CREATE TABLE {SCHEMA}.positions (
        id SERIAL PRIMARY KEY,
        name TEXT NOT NULL,
        department_id INTEGER REFERENCES {SCHEMA}.departments (id) ON DELETE CASCADE
    );
    CREATE TABLE {SCHEMA}.system_settings (
        id SERIAL PRIMARY KEY,
        key TEXT NOT NULL UNIQUE,
        value JSONB
    );
    CREATE TABLE {SCHEMA}.tags (
        id TEXT PRIMARY KEY,
        label TEXT NOT NULL
    );
"""


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    for item in items:
        if "integration" in item.path.parts:
            item.add_marker(pytest.mark.integration)


@pytest.fixture
def database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if not url:
        pytest.skip("DATABASE_URL not set")
    return url


@pytest.fixture
async def portal_schema(database_url: str) -> AsyncGenerator[str, None]:
    """Create a throwaway schema with the portal tables; drop it afterwards."""
    try:
        conn = await asyncpg.connect(database_url)
    except (OSError, asyncpg.PostgresError) as e:
        pytest.skip(f"PostgreSQL unreachable: {e}")
    try:
        await conn.execute(_DDL)
        yield SCHEMA
    finally:
        await conn.execute(f"DROP SCHEMA IF EXISTS {SCHEMA} CASCADE")
        await conn.close()

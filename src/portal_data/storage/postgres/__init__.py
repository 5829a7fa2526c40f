"""
PostgreSQL Storage Backend

Relational provider over an asyncpg connection pool.
"""

from src.portal_data.storage.postgres.client import coerce_value, create_pool, quote_ident
from src.portal_data.storage.postgres.provider import PostgresProvider

__all__ = [
    "PostgresProvider",
    "coerce_value",
    "create_pool",
    "quote_ident",
]

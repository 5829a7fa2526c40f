"""
Storage Layer for Portal Data

Provides protocol-based provider abstraction supporting:
- In-memory (default, tests)
- PostgreSQL (asyncpg connection pool)
- Remote table-store (REST over httpx)

Usage:
    from src.portal_data.storage import ProviderRegistry

    registry = ProviderRegistry(config)
    await registry.initialize()
    departments = await registry.current.list("departments")
"""

from src.portal_data.storage.memory import MemoryProvider
from src.portal_data.storage.payload import group_by_columns, validate_payload
from src.portal_data.storage.protocols import DataProvider, EntityStore
from src.portal_data.storage.registry import ProviderFactory, ProviderRegistry, build_provider
from src.portal_data.storage.settings_store import ProviderSettingsStore

__all__ = [
    # Protocols
    "DataProvider",
    "EntityStore",
    # Providers
    "MemoryProvider",
    # Registry
    "ProviderFactory",
    "ProviderRegistry",
    "ProviderSettingsStore",
    "build_provider",
    # Helpers
    "group_by_columns",
    "validate_payload",
]

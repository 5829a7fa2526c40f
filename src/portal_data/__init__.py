"""
Portal Data

Storage-agnostic data administration for the portal: one active data
provider (memory, PostgreSQL or a remote table-store) that can be switched at
runtime, whole-database export/import, and named template snapshots that
re-import by natural key.

Usage:
    from src.portal_data import ProviderRegistry, TemplateManager, TransferEngine

    registry = ProviderRegistry(config)
    await registry.initialize()
    engine = TransferEngine(registry)
    payload = await engine.export(["departments"])
"""

from src.portal_data.audit import AuditSink, InMemoryAuditSink, LoggingAuditSink
from src.portal_data.config import DataAdminConfig
from src.portal_data.storage import ProviderRegistry
from src.portal_data.templates import TemplateManager
from src.portal_data.transfer import TransferEngine

__all__ = [
    "AuditSink",
    "DataAdminConfig",
    "InMemoryAuditSink",
    "LoggingAuditSink",
    "ProviderRegistry",
    "TemplateManager",
    "TransferEngine",
]

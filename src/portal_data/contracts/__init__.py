"""
Portal Data Contracts

Split into focused modules:

- core: Entity kinds, records, entity schemas and import reports
- providers: Provider kinds and typed connection descriptors
- templates: Snapshot metadata, files and import reports
- audit: Audit entries
"""

from src.portal_data.contracts.audit import AuditAction, AuditEntry
from src.portal_data.contracts.core import (
    DEFAULT_SCHEMAS,
    ID_FIELD,
    EntityKind,
    EntitySchema,
    EntitySchemaRegistry,
    ExportPayload,
    ImportAtomicity,
    ImportReport,
    KnownEntityKind,
    Record,
)
from src.portal_data.contracts.providers import (
    MemoryProviderConfig,
    PostgresProviderConfig,
    ProviderDescriptor,
    ProviderKind,
    RemoteTableProviderConfig,
    parse_descriptor,
    redact_descriptor,
)
from src.portal_data.contracts.templates import (
    ALL_CATEGORIES,
    KindImportCounts,
    Template,
    TemplateBackup,
    TemplateImportReport,
    TemplateMetadata,
    TemplateSummary,
)

__all__ = [
    # Core
    "DEFAULT_SCHEMAS",
    "ID_FIELD",
    "EntityKind",
    "EntitySchema",
    "EntitySchemaRegistry",
    "ExportPayload",
    "ImportAtomicity",
    "ImportReport",
    "KnownEntityKind",
    "Record",
    # Providers
    "MemoryProviderConfig",
    "PostgresProviderConfig",
    "ProviderDescriptor",
    "ProviderKind",
    "RemoteTableProviderConfig",
    "parse_descriptor",
    "redact_descriptor",
    # Templates
    "ALL_CATEGORIES",
    "KindImportCounts",
    "Template",
    "TemplateBackup",
    "TemplateImportReport",
    "TemplateMetadata",
    "TemplateSummary",
    # Audit
    "AuditAction",
    "AuditEntry",
]

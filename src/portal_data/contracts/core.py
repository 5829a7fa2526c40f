"""
Core Data Models

Entity kinds, records, per-kind schemas and import reports shared by every provider.

Records are schema-flexible ``dict[str, Any]`` mappings. The set of entity kinds
is open-ended: deployments add tables, so any string is a valid kind. The
``EntitySchema`` registry only describes the kinds this package knows about
(their required fields and the natural key used to match records across
snapshots).
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

Record = dict[str, Any]
EntityKind = str
ExportPayload = dict[EntityKind, list[Record]]

ID_FIELD = "id"


def _now_utc() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


# =============================================================================
# Enumerations
# =============================================================================


class KnownEntityKind(str, Enum):
    """Entity kinds shipped with the portal schema."""

    USERS = "users"
    TASKS = "tasks"
    DOCUMENTS = "documents"
    CITIZEN_REQUESTS = "citizen_requests"
    DEPARTMENTS = "departments"
    POSITIONS = "positions"
    AGENTS = "agents"
    TASK_RULES = "task_rules"
    INTEGRATIONS = "integrations"
    SYSTEM_SETTINGS = "system_settings"
    ACTIVITIES = "activities"


class ImportAtomicity(str, Enum):
    """What a provider guarantees when ``import_all`` fails part way."""

    TRANSACTIONAL = "transactional"  # all tables or none
    PER_TABLE = "per_table"  # tables before the failure stay replaced


# =============================================================================
# Entity Schemas
# =============================================================================


class EntitySchema(BaseModel):
    """
    Shape information for one entity kind.

    Attributes:
        kind: Entity kind (table / collection name)
        required: Fields that must be present and non-empty on create
        natural_key: Field used to match records across snapshots, if any
    """

    model_config = ConfigDict(frozen=True)

    kind: EntityKind
    required: tuple[str, ...] = ()
    natural_key: str | None = None

    def missing_field(self, fields: Record) -> str | None:
        """Return the first required field absent from ``fields``, if any."""
        for name in self.required:
            value = fields.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                return name
        return None


class EntitySchemaRegistry:
    """
    Lookup of known entity schemas.

    Unknown kinds resolve to an empty schema (no required fields, no natural key)
    so callers never need to special-case deployment-specific tables.
    """

    def __init__(self, schemas: list[EntitySchema] | None = None) -> None:
        self._schemas: dict[str, EntitySchema] = {}
        for schema in schemas or []:
            self.register(schema)

    def register(self, schema: EntitySchema) -> None:
        self._schemas[schema.kind] = schema

    def get(self, kind: EntityKind) -> EntitySchema:
        return self._schemas.get(kind) or EntitySchema(kind=kind)

    def natural_key(self, kind: EntityKind) -> str | None:
        return self.get(kind).natural_key

    def __contains__(self, kind: object) -> bool:
        return kind in self._schemas


def _named(kind: KnownEntityKind, key: str) -> EntitySchema:
    return EntitySchema(kind=kind.value, required=(key,), natural_key=key)


DEFAULT_SCHEMAS = EntitySchemaRegistry(
    [
        _named(KnownEntityKind.USERS, "username"),
        _named(KnownEntityKind.TASKS, "title"),
        _named(KnownEntityKind.DOCUMENTS, "title"),
        _named(KnownEntityKind.CITIZEN_REQUESTS, "subject"),
        _named(KnownEntityKind.DEPARTMENTS, "name"),
        _named(KnownEntityKind.POSITIONS, "name"),
        _named(KnownEntityKind.AGENTS, "name"),
        _named(KnownEntityKind.TASK_RULES, "name"),
        _named(KnownEntityKind.INTEGRATIONS, "name"),
        _named(KnownEntityKind.SYSTEM_SETTINGS, "key"),
        EntitySchema(kind=KnownEntityKind.ACTIVITIES.value, required=("action",)),
    ]
)


# =============================================================================
# Import Reports
# =============================================================================


class ImportReport(BaseModel):
    """Result of a successful whole-database import."""

    model_config = ConfigDict(frozen=True)

    tables: tuple[str, ...] = Field(..., description="Tables replaced, in order")
    rows: int = Field(..., ge=0, description="Total rows written")
    atomicity: ImportAtomicity
    finished_at: datetime = Field(default_factory=_now_utc)

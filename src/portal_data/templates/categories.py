"""
Template Categories

A category is a named group of entity kinds exported and reconciled
together, e.g. "org_structure" is departments, positions and task rules.
Kinds are listed in dependency order so referenced records are imported
before the records pointing at them.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from src.portal_data.contracts import ALL_CATEGORIES, EntityKind, KnownEntityKind
from src.portal_data.exceptions import ValidationError

MASK = "***"


@dataclass(frozen=True)
class FieldReference:
    """``kind.field`` holds the id of a ``target`` record."""

    kind: EntityKind
    field: str
    target: EntityKind


@dataclass(frozen=True)
class TemplateCategory:
    """One exportable content group."""

    name: str
    kinds: tuple[EntityKind, ...]
    references: tuple[FieldReference, ...] = ()
    masked_fields: dict[EntityKind, tuple[str, ...]] = field(default_factory=dict)
    description: str = ""
    # Full backups also write one file per record of this kind
    per_record_kind: EntityKind | None = None

    def references_for(self, kind: EntityKind) -> list[FieldReference]:
        return [ref for ref in self.references if ref.kind == kind]

    def masked_for(self, kind: EntityKind) -> tuple[str, ...]:
        return self.masked_fields.get(kind, ())


class CategoryRegistry:
    """Known categories, in registration order."""

    def __init__(self, categories: list[TemplateCategory] | None = None) -> None:
        self._categories: dict[str, TemplateCategory] = {}
        for category in categories or []:
            self.register(category)

    def register(self, category: TemplateCategory) -> None:
        if category.name == ALL_CATEGORIES:
            raise ValueError(f"'{ALL_CATEGORIES}' is reserved for the wildcard")
        self._categories[category.name] = category

    def get(self, name: str) -> TemplateCategory:
        try:
            return self._categories[name]
        except KeyError:
            known = ", ".join(self._categories)
            raise ValidationError(
                "categories", f"unknown category '{name}' (known: {known})"
            ) from None

    def category_for(self, kind: EntityKind) -> TemplateCategory | None:
        """First registered category that exports ``kind``."""
        for category in self._categories.values():
            if kind in category.kinds:
                return category
        return None

    @property
    def names(self) -> list[str]:
        return list(self._categories)

    def resolve(self, names: list[str] | tuple[str, ...]) -> list[TemplateCategory]:
        """Expand the wildcard and look up every named category."""
        if ALL_CATEGORIES in names:
            return list(self._categories.values())
        return [self.get(name) for name in names]

    def __contains__(self, name: object) -> bool:
        return name in self._categories


ORG_STRUCTURE = TemplateCategory(
    name="org_structure",
    kinds=(
        KnownEntityKind.DEPARTMENTS.value,
        KnownEntityKind.POSITIONS.value,
        KnownEntityKind.TASK_RULES.value,
    ),
    references=(
        FieldReference("positions", "department_id", "departments"),
        FieldReference("task_rules", "department_id", "departments"),
        FieldReference("task_rules", "position_id", "positions"),
    ),
    description="Departments, positions and task routing rules",
)

AGENTS = TemplateCategory(
    name="agents",
    kinds=(KnownEntityKind.INTEGRATIONS.value, KnownEntityKind.AGENTS.value),
    references=(FieldReference("agents", "integration_id", "integrations"),),
    masked_fields={"integrations": ("api_key", "apiKey")},
    description="AI agents and the integrations they call",
    per_record_kind=KnownEntityKind.AGENTS.value,
)

SYSTEM_SETTINGS = TemplateCategory(
    name="system_settings",
    kinds=(KnownEntityKind.SYSTEM_SETTINGS.value,),
    description="Key/value system settings",
)

USERS = TemplateCategory(
    name="users",
    kinds=(KnownEntityKind.USERS.value,),
    references=(
        FieldReference("users", "department_id", "departments"),
        FieldReference("users", "position_id", "positions"),
    ),
    masked_fields={"users": ("password",)},
    description="User accounts (passwords are never exported)",
)

DEFAULT_CATEGORIES = CategoryRegistry([ORG_STRUCTURE, AGENTS, SYSTEM_SETTINGS, USERS])

"""
Template (Snapshot) Models

A template is one immutable JSON document:

    {
        "metadata": {"name": ..., "description": ..., "version": ...,
                     "author": ..., "created_at": ..., "categories": [...]},
        "data": {"<category>": {"<entity kind>": [<record>, ...]}}
    }
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.portal_data.contracts.core import ExportPayload, _now_utc

ALL_CATEGORIES = "all"

NAME_MIN_LENGTH = 3
NAME_MAX_LENGTH = 120
DESCRIPTION_MAX_LENGTH = 1000

# 1, 1.0, 1.0.0, 1.0.0-rc.1, 1.0.0+build.5
_VERSION_PATTERN = re.compile(r"^\d+(\.\d+){0,2}([-+][0-9A-Za-z.\-]+)?$")


class TemplateMetadata(BaseModel):
    """Descriptive header of a template file."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=NAME_MIN_LENGTH, max_length=NAME_MAX_LENGTH)
    description: str = Field(default="", max_length=DESCRIPTION_MAX_LENGTH)
    version: str = Field(..., min_length=1)
    author: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=_now_utc)
    categories: tuple[str, ...] = Field(..., min_length=1)

    @field_validator("name", "author", "description", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("version")
    @classmethod
    def _check_version(cls, value: str) -> str:
        if not _VERSION_PATTERN.match(value.strip()):
            raise ValueError("must be a semantic version such as 1.0.0")
        return value.strip()

    @field_validator("categories")
    @classmethod
    def _check_categories(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if len(set(value)) != len(value):
            raise ValueError("categories must not repeat")
        if ALL_CATEGORIES in value and len(value) > 1:
            raise ValueError(f"'{ALL_CATEGORIES}' cannot be combined with other categories")
        return value

    @property
    def is_wildcard(self) -> bool:
        return self.categories == (ALL_CATEGORIES,)


class Template(BaseModel):
    """A full snapshot: metadata plus exported payload per category."""

    model_config = ConfigDict(frozen=True)

    metadata: TemplateMetadata
    data: dict[str, ExportPayload] = Field(default_factory=dict)


class TemplateSummary(BaseModel):
    """Listing entry for a stored template."""

    model_config = ConfigDict(frozen=True)

    filename: str
    name: str
    description: str
    version: str
    author: str
    created_at: datetime
    categories: tuple[str, ...]
    record_count: int = Field(..., ge=0)


class KindImportCounts(BaseModel):
    """Per-kind reconciliation outcome."""

    created: int = 0
    updated: int = 0


class TemplateImportReport(BaseModel):
    """Result of a successful template import."""

    filename: str
    categories: dict[str, dict[str, KindImportCounts]] = Field(default_factory=dict)

    @property
    def created(self) -> int:
        return sum(c.created for kinds in self.categories.values() for c in kinds.values())

    @property
    def updated(self) -> int:
        return sum(c.updated for kinds in self.categories.values() for c in kinds.values())


class TemplateBackup(BaseModel):
    """Result of a full template backup."""

    model_config = ConfigDict(frozen=True)

    directory: str = Field(..., description="Absolute path of the new backup directory")
    files: tuple[str, ...]
    record_count: int = Field(..., ge=0, description="Records in the per-category files")
    created_at: datetime = Field(default_factory=_now_utc)

"""
Audit Entry Model

Every mutating operation emits one entry to the audit sink supplied by the host application.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.portal_data.contracts.core import _now_utc


class AuditAction(str, Enum):
    """Audit action names."""

    PROVIDER_SWITCH = "provider_switch"
    PROVIDER_TEST = "provider_test"
    DATABASE_EXPORT = "database_export"
    DATABASE_IMPORT = "database_import"
    TEMPLATE_CREATE = "template_create"
    TEMPLATE_IMPORT = "template_import"
    TEMPLATE_DELETE = "template_delete"
    TEMPLATE_LIST = "template_list"
    TEMPLATE_READ = "template_read"
    TEMPLATE_BACKUP = "template_backup"
    ERROR = "error"


class AuditEntry(BaseModel):
    """One structured audit record."""

    model_config = ConfigDict(frozen=True)

    action: AuditAction
    actor: str | None = Field(default=None, description="User id of the caller")
    details: str = Field(..., description="Human-readable summary")
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=_now_utc)

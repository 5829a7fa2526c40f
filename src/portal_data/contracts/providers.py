"""
Provider Descriptors

Typed connection parameters for each backing store, as a discriminated union on ``kind``.

The descriptor held by the registry carries real secrets. Only the redacted form
produced by ``redact_descriptor`` is ever written to settings storage.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from src.portal_data.logging.sanitizer import redact_secrets


class ProviderKind(str, Enum):
    """Supported backing stores."""

    MEMORY = "memory"
    POSTGRES = "postgres"
    REMOTE_TABLE = "remote_table"


class MemoryProviderConfig(BaseModel):
    """In-process store. Nothing to configure."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["memory"] = "memory"


class PostgresProviderConfig(BaseModel):
    """Connection-pooled PostgreSQL store."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["postgres"] = "postgres"
    dsn: str = Field(..., min_length=1, description="PostgreSQL connection URL")
    schema_name: str = Field(default="public", description="Schema holding the tables")
    pool_min: int = Field(default=1, ge=1, description="Minimum pool connections")
    pool_max: int = Field(default=10, ge=1, description="Maximum pool connections")
    command_timeout: float = Field(default=60.0, gt=0, description="Per-query timeout")


class RemoteTableProviderConfig(BaseModel):
    """Hosted table-store reached over authenticated HTTP (PostgREST API)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["remote_table"] = "remote_table"
    url: str = Field(..., min_length=1, description="Project base URL")
    api_key: str = Field(..., min_length=1, description="Service API key")
    schema_name: str = Field(default="public", description="Exposed schema")
    timeout_seconds: float = Field(default=10.0, gt=0, description="HTTP timeout")


ProviderDescriptor = Annotated[
    MemoryProviderConfig | PostgresProviderConfig | RemoteTableProviderConfig,
    Field(discriminator="kind"),
]

_descriptor_adapter: TypeAdapter[ProviderDescriptor] = TypeAdapter(ProviderDescriptor)


def parse_descriptor(data: dict[str, Any]) -> ProviderDescriptor:
    """Build a descriptor from a plain mapping (raises pydantic.ValidationError)."""
    return _descriptor_adapter.validate_python(data)


def redact_descriptor(descriptor: ProviderDescriptor) -> dict[str, Any]:
    """Return the at-rest form of a descriptor with every secret redacted."""
    return redact_secrets(descriptor.model_dump(mode="json"))

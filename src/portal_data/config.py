"""
Portal Data Configuration

Configuration settings using pydantic-settings for environment variable support.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pydantic
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.portal_data.contracts import ProviderDescriptor, ProviderKind, parse_descriptor
from src.portal_data.exceptions import ConfigurationError


class DataAdminConfig(BaseSettings):
    """
    Configuration for the data administration subsystem.

    Reads from environment variables with PORTAL_ prefix. Provider secrets
    (``postgres_dsn``, ``remote_api_key``) live here and nowhere else at rest:
    the persisted provider selection only keeps redacted copies.
    """

    model_config = SettingsConfigDict(
        env_prefix="PORTAL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server Identity
    server_name: str = Field(
        default="portal-data-admin",
        description="Server name for identification",
    )
    server_version: str = Field(
        default="0.1.0",
        description="Server version",
    )

    # Transport Configuration
    host: str = Field(
        default="0.0.0.0",
        description="Host to bind for HTTP transport",
    )
    port: int = Field(
        default=8090,
        description="Port for HTTP transport",
    )
    log_level: str = Field(
        default="INFO",
        description="Root log level",
    )

    # File Locations
    data_dir: Path = Field(
        default=Path("data"),
        description="Base directory for templates, exports and settings",
    )
    templates_dir: Path | None = Field(
        default=None,
        description="Template directory (default: <data_dir>/templates)",
    )
    exports_dir: Path | None = Field(
        default=None,
        description="Export directory (default: <data_dir>/exports)",
    )
    settings_file: Path | None = Field(
        default=None,
        description="Persisted provider selection (default: <data_dir>/provider.json)",
    )

    # Provider Selection
    provider: ProviderKind = Field(
        default=ProviderKind.MEMORY,
        description="Provider used when nothing has been persisted yet",
    )

    # PostgreSQL
    postgres_dsn: str | None = Field(
        default=None,
        description="PostgreSQL connection URL",
    )
    postgres_schema: str = Field(
        default="public",
        description="Schema holding the portal tables",
    )
    postgres_pool_min: int = Field(
        default=1,
        description="Minimum connections in pool",
    )
    postgres_pool_max: int = Field(
        default=10,
        description="Maximum connections in pool",
    )
    postgres_command_timeout: float = Field(
        default=60.0,
        description="Per-query timeout in seconds",
    )

    # Remote Table-Store
    remote_url: str | None = Field(
        default=None,
        description="Remote table-store project URL",
    )
    remote_api_key: str | None = Field(
        default=None,
        description="Remote table-store service key",
    )
    remote_schema: str = Field(
        default="public",
        description="Exposed schema on the remote table-store",
    )
    remote_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for remote table-store calls",
    )

    @property
    def templates_path(self) -> Path:
        return self.templates_dir or self.data_dir / "templates"

    @property
    def exports_path(self) -> Path:
        return self.exports_dir or self.data_dir / "exports"

    @property
    def settings_path(self) -> Path:
        return self.settings_file or self.data_dir / "provider.json"

    def descriptor_for(
        self,
        kind: ProviderKind | str,
        overrides: dict[str, Any] | None = None,
    ) -> ProviderDescriptor:
        """
        Build a provider descriptor from configuration plus caller overrides.

        Overrides win over configured values; ``None`` overrides are ignored.

        Raises:
            ConfigurationError: Unknown kind or incomplete/invalid settings
        """
        try:
            kind = ProviderKind(kind)
        except ValueError:
            raise ConfigurationError("provider", f"unknown provider kind '{kind}'") from None

        if kind is ProviderKind.POSTGRES:
            base: dict[str, Any] = {
                "dsn": self.postgres_dsn,
                "schema_name": self.postgres_schema,
                "pool_min": self.postgres_pool_min,
                "pool_max": self.postgres_pool_max,
                "command_timeout": self.postgres_command_timeout,
            }
        elif kind is ProviderKind.REMOTE_TABLE:
            base = {
                "url": self.remote_url,
                "api_key": self.remote_api_key,
                "schema_name": self.remote_schema,
                "timeout_seconds": self.remote_timeout_seconds,
            }
        else:
            base = {}

        data = {k: v for k, v in base.items() if v is not None}
        data.update({k: v for k, v in (overrides or {}).items() if v is not None})
        data["kind"] = kind.value

        try:
            return parse_descriptor(data)
        except pydantic.ValidationError as e:
            error = e.errors()[0]
            field = ".".join(str(part) for part in error["loc"][1:]) or kind.value
            raise ConfigurationError(field, error["msg"]) from None

"""
FastAPI HTTP Transport for the Data Administration Service

Provides REST endpoints for provider switching, export/import and templates:
- /health - Liveness probe
- /ready - Readiness probe (pings the active provider)
- /provider, /switch-provider, /test-connection - Provider selection
- /export, /import - Whole-database transfer
- /templates... - Template snapshots
- /export/{category} - Snapshot one category as a template

Every response carries ``success`` and ``status`` (succeeded, aborted or
partially_applied) so a caller can never mistake a partial import for a full one.

NOTE: Do NOT add `from __future__ import annotations` to this file.
PEP 563 breaks FastAPI's runtime introspection for parameter sources.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Header, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from src.portal_data.audit import AuditSink, LoggingAuditSink
from src.portal_data.config import DataAdminConfig
from src.portal_data.contracts import AuditAction
from src.portal_data.exceptions import (
    OUTCOME_SUCCEEDED,
    ConfigurationError,
    ConnectivityError,
    NotFoundError,
    PartialImportError,
    PortalDataError,
    SwitchInProgressError,
    TemplateImportError,
    ValidationError,
)
from src.portal_data.storage import ProviderRegistry
from src.portal_data.templates import TemplateManager
from src.portal_data.transfer import TransferEngine

logger = logging.getLogger(__name__)


# Request models
class ProviderRequest(BaseModel):
    """Request body for /switch-provider and /test-connection."""

    provider: str = Field(..., min_length=1, description="memory, postgres or remote_table")
    config: dict[str, Any] | None = Field(
        default=None, description="Overrides merged over configured settings"
    )


class ExportRequest(BaseModel):
    """Request body for /export."""

    tables: list[str] | None = Field(default=None, description="Kinds to export (default: all)")
    save: bool = Field(default=True, description="Also write the export to the exports directory")


class ImportRequest(BaseModel):
    """Request body for /import."""

    data: dict[str, list[dict[str, Any]]]


class CreateTemplateRequest(BaseModel):
    """Request body for POST /templates."""

    model_config = ConfigDict(populate_by_name=True)

    template_type: str | None = Field(default=None, alias="templateType")
    categories: list[str] | None = None
    name: str
    description: str = ""
    version: str = "1.0.0"
    author: str | None = None


class ReferenceOptions(BaseModel):
    """Request body for single-record exports and backups."""

    model_config = ConfigDict(populate_by_name=True)

    include_references: bool = Field(
        default=True,
        alias="includeReferences",
        description="Also export the records each exported record points at",
    )


def status_code_for(error: PortalDataError) -> int:
    """Map a portal error to an HTTP status code."""
    if isinstance(error, (ValidationError, ConfigurationError)):
        return 400
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, SwitchInProgressError):
        return 409
    if isinstance(error, ConnectivityError):
        return 503
    return 500


def error_body(error: PortalDataError) -> dict[str, Any]:
    body: dict[str, Any] = {
        "success": False,
        "status": error.outcome,
        "error": {"code": error.code, "message": error.message},
    }
    if isinstance(error, PartialImportError):
        body["completed"] = error.completed
        body["failed"] = error.failed
    if isinstance(error, TemplateImportError):
        body["written"] = error.written
    return body


def succeeded(**fields: Any) -> dict[str, Any]:
    return {"success": True, "status": OUTCOME_SUCCEEDED, **jsonable_encoder(fields)}


def create_app(
    config: DataAdminConfig | None = None,
    registry: ProviderRegistry | None = None,
    audit: AuditSink | None = None,
) -> FastAPI:
    """
    Create a FastAPI application for the data administration service.

    Args:
        config: Service configuration
        registry: Provider registry (built from config if omitted)
        audit: Audit sink shared by every component

    Returns:
        FastAPI application instance
    """
    config = config or (registry.config if registry else DataAdminConfig())
    audit = audit or LoggingAuditSink()
    registry = registry or ProviderRegistry(config, audit=audit)
    engine = TransferEngine(registry, audit=audit, exports_dir=config.exports_path)
    templates = TemplateManager(registry, audit=audit, templates_dir=config.templates_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        logger.info(f"Starting data administration service: {config.server_name}")
        await registry.initialize()
        logger.info(f"Active data provider: {registry.kind.value}")
        yield

        logger.info("Shutting down data administration service")
        await registry.close()

    app = FastAPI(
        title="Portal Data Administration",
        description="Data provider switching, export/import and template snapshots",
        version=config.server_version,
        lifespan=lifespan,
    )
    app.state.registry = registry
    app.state.engine = engine
    app.state.templates = templates

    @app.exception_handler(PortalDataError)
    async def portal_error_handler(request: Request, exc: PortalDataError) -> JSONResponse:
        status_code = status_code_for(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status_code, content=error_body(exc))

    @app.get("/health")
    async def liveness_check() -> JSONResponse:
        """Liveness probe - just checks if process is alive."""
        return JSONResponse(content={"status": "alive"}, status_code=200)

    @app.get("/ready")
    async def readiness_check() -> JSONResponse:
        """Readiness probe - pings the active provider."""
        reachable = await registry.current.ping()
        return JSONResponse(
            content={
                "status": "ready" if reachable else "not_ready",
                "checks": {"provider": {"kind": registry.kind.value, "connected": reachable}},
            },
            status_code=200 if reachable else 503,
        )

    @app.get("/")
    async def root() -> dict[str, Any]:
        """Root endpoint with service info."""
        return {
            "name": config.server_name,
            "version": config.server_version,
            "provider": registry.kind.value,
        }

    # -------------------------------------------------------------------------
    # Provider selection
    # -------------------------------------------------------------------------

    @app.get("/provider")
    async def get_provider() -> dict[str, Any]:
        """Current provider kind and its redacted configuration."""
        return succeeded(**registry.describe(), switching=registry.is_switching)

    @app.post("/switch-provider")
    async def switch_provider(
        body: ProviderRequest,
        x_user_id: str | None = Header(default=None),
    ) -> dict[str, Any]:
        descriptor = await registry.resolve_descriptor(body.provider, body.config, x_user_id)
        await registry.switch(descriptor, actor=x_user_id)
        return succeeded(**registry.describe())

    @app.post("/test-connection")
    async def test_connection(
        body: ProviderRequest,
        x_user_id: str | None = Header(default=None),
    ) -> dict[str, Any]:
        descriptor = await registry.resolve_descriptor(
            body.provider, body.config, x_user_id, operation=AuditAction.PROVIDER_TEST
        )
        await registry.test_connection(descriptor, actor=x_user_id)
        return succeeded(provider=descriptor.kind)

    # -------------------------------------------------------------------------
    # Export / import
    # -------------------------------------------------------------------------

    @app.post("/export")
    async def export_data(
        body: ExportRequest | None = None,
        x_user_id: str | None = Header(default=None),
    ) -> dict[str, Any]:
        body = body or ExportRequest()
        payload = await engine.export(body.tables, actor=x_user_id)
        filename = engine.save_export(payload) if body.save else None
        return succeeded(data=payload, tables=list(payload), filename=filename)

    @app.post("/import")
    async def import_data(
        body: ImportRequest,
        x_user_id: str | None = Header(default=None),
    ) -> dict[str, Any]:
        report = await engine.import_data(body.data, actor=x_user_id)
        return succeeded(
            tables=list(report.tables),
            rows=report.rows,
            atomicity=report.atomicity.value,
        )

    # -------------------------------------------------------------------------
    # Templates
    # -------------------------------------------------------------------------

    @app.get("/templates")
    async def list_templates(x_user_id: str | None = Header(default=None)) -> dict[str, Any]:
        summaries = await templates.list_templates(actor=x_user_id)
        return succeeded(templates=[s.model_dump(mode="json") for s in summaries])

    @app.get("/templates/{filename}")
    async def get_template(
        filename: str,
        x_user_id: str | None = Header(default=None),
    ) -> dict[str, Any]:
        template = await templates.get_template(filename, actor=x_user_id)
        return succeeded(template=template.model_dump(mode="json"))

    @app.post("/templates", status_code=201)
    async def create_template(
        body: CreateTemplateRequest,
        x_user_id: str | None = Header(default=None),
    ) -> dict[str, Any]:
        categories = body.categories or ([body.template_type] if body.template_type else [])
        if not categories:
            raise ValidationError("templateType", "a template type or categories list is required")
        summary = await templates.create_template(
            categories,
            {
                "name": body.name,
                "description": body.description,
                "version": body.version,
                "author": body.author or x_user_id or "system",
            },
            actor=x_user_id,
        )
        return succeeded(template=summary.model_dump(mode="json"), filename=summary.filename)

    @app.post("/templates/backup", status_code=201)
    async def backup_templates(
        body: ReferenceOptions | None = None,
        x_user_id: str | None = Header(default=None),
    ) -> dict[str, Any]:
        body = body or ReferenceOptions()
        backup = await templates.backup_all(body.include_references, actor=x_user_id)
        return succeeded(**backup.model_dump(mode="json"))

    @app.post("/templates/record/{kind}/{record_id}", status_code=201)
    async def export_record(
        kind: str,
        record_id: str,
        body: ReferenceOptions | None = None,
        x_user_id: str | None = Header(default=None),
    ) -> dict[str, Any]:
        body = body or ReferenceOptions()
        summary = await templates.export_record(
            kind, record_id, body.include_references, actor=x_user_id
        )
        return succeeded(template=summary.model_dump(mode="json"), filename=summary.filename)

    @app.post("/templates/{filename}/import")
    async def import_template(
        filename: str,
        x_user_id: str | None = Header(default=None),
    ) -> dict[str, Any]:
        report = await templates.import_template(filename, actor=x_user_id)
        return succeeded(
            filename=report.filename,
            created=report.created,
            updated=report.updated,
            categories=report.model_dump(mode="json")["categories"],
        )

    @app.delete("/templates/{filename}")
    async def delete_template(
        filename: str,
        x_user_id: str | None = Header(default=None),
    ) -> dict[str, Any]:
        await templates.delete_template(filename, actor=x_user_id)
        return succeeded(filename=filename)

    @app.post("/export/{category}")
    async def export_category(
        category: str,
        x_user_id: str | None = Header(default=None),
    ) -> dict[str, Any]:
        summary = await templates.export_category(category, actor=x_user_id)
        return succeeded(template=summary.model_dump(mode="json"), filename=summary.filename)

    return app


async def run_http_server(config: DataAdminConfig | None = None) -> None:
    """
    Run the HTTP server.

    Args:
        config: Service configuration
    """
    import uvicorn

    _config = config or DataAdminConfig()
    app = create_app(_config)

    logger.info(f"Starting HTTP server on {_config.host}:{_config.port}")

    server_config = uvicorn.Config(
        app,
        host=_config.host,
        port=_config.port,
        log_level=_config.log_level.lower(),
    )
    server = uvicorn.Server(server_config)
    await server.serve()

"""
Export/Import Engine

Thin fan-out over the active provider. It adds no transactionality of its
own: an import carries exactly the atomicity the active provider offers.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path

from pydantic_core import to_jsonable_python

from src.portal_data.audit import AuditSink, LoggingAuditSink, record_audit
from src.portal_data.contracts import AuditAction, EntityKind, ExportPayload, ImportReport
from src.portal_data.exceptions import PortalDataError
from src.portal_data.storage.payload import validate_payload
from src.portal_data.storage.registry import ProviderRegistry

logger = logging.getLogger(__name__)

EXPORT_FILE_PREFIX = "db_export_"


class TransferEngine:
    """
    Whole-store export and import against whichever provider is active.

    Args:
        registry: Source of the active provider
        audit: Sink receiving one entry per call
        exports_dir: Where ``save_export`` writes export files
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        audit: AuditSink | None = None,
        exports_dir: Path | str | None = None,
    ) -> None:
        self._registry = registry
        self._audit = audit or LoggingAuditSink()
        self._exports_dir = Path(exports_dir) if exports_dir else registry.config.exports_path

    async def export(
        self,
        kinds: list[EntityKind] | None = None,
        actor: str | None = None,
    ) -> ExportPayload:
        """
        Export kinds from the active provider.

        Empty or None exports everything the provider knows about; otherwise
        each listed kind is read once, in first-seen order.
        """
        provider = self._registry.current
        try:
            if kinds:
                payload = {kind: await provider.list(kind) for kind in dict.fromkeys(kinds)}
            else:
                payload = await provider.export_all()
        except PortalDataError as e:
            await self._audit_error(actor, "export", e, {"tables": kinds or []})
            raise

        rows = sum(len(records) for records in payload.values())
        logger.info(f"Exported {len(payload)} tables ({rows} rows) from {provider.kind.value}")
        await record_audit(
            self._audit,
            AuditAction.DATABASE_EXPORT,
            actor,
            f"Exported {len(payload)} tables from {provider.kind.value}",
            {"tables": list(payload), "rows": rows, "provider": provider.kind.value},
        )
        return payload

    async def import_data(
        self,
        data: ExportPayload,
        actor: str | None = None,
    ) -> ImportReport:
        """
        Replace every kind in ``data`` via the active provider's ``import_all``.

        Raises whatever the provider raises: TransactionAbortedError (store
        unchanged) or PartialImportError (some tables replaced).
        """
        provider = self._registry.current
        try:
            validate_payload(data)
            report = await provider.import_all(data)
        except PortalDataError as e:
            metadata = {"tables": list(data) if isinstance(data, dict) else []}
            await self._audit_error(actor, "import", e, metadata)
            raise

        await record_audit(
            self._audit,
            AuditAction.DATABASE_IMPORT,
            actor,
            f"Imported {len(report.tables)} tables into {provider.kind.value}",
            {
                "tables": list(report.tables),
                "rows": report.rows,
                "atomicity": report.atomicity.value,
                "provider": provider.kind.value,
            },
        )
        return report

    def save_export(self, data: ExportPayload) -> str:
        """Write an export to ``db_export_<timestamp>.json``; return the filename."""
        self._exports_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(UTC).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        filename = f"{EXPORT_FILE_PREFIX}{stamp}.json"
        path = self._exports_dir / filename
        with open(path, "x", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=to_jsonable_python)
        logger.info(f"Saved export to {path}")
        return filename

    async def _audit_error(
        self,
        actor: str | None,
        operation: str,
        error: PortalDataError,
        metadata: dict,
    ) -> None:
        await record_audit(
            self._audit,
            AuditAction.ERROR,
            actor,
            f"Database {operation} failed: {error.message}",
            {"operation": operation, "error": str(error), "outcome": error.outcome, **metadata},
        )

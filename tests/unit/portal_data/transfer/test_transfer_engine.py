"""
Unit tests for TransferEngine.

Runs against the in-memory provider; provider-specific atomicity is covered
by each provider's own tests.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from src.portal_data.audit import InMemoryAuditSink
from src.portal_data.config import DataAdminConfig
from src.portal_data.contracts import AuditAction, ImportAtomicity, ProviderDescriptor
from src.portal_data.exceptions import PartialImportError, ValidationError
from src.portal_data.storage import MemoryProvider, ProviderRegistry
from src.portal_data.transfer import EXPORT_FILE_PREFIX, TransferEngine


class HalfwayProvider(MemoryProvider):
    """Fails every import after the first table, like a per-table store."""

    @property
    def atomicity(self) -> ImportAtomicity:
        return ImportAtomicity.PER_TABLE

    async def import_all(self, data):
        first = next(iter(data))
        raise PartialImportError([first], "positions", "HTTP 400: not-null violation")


@pytest.fixture
def audit() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def registry(tmp_path: Path) -> ProviderRegistry:
    return ProviderRegistry(DataAdminConfig(data_dir=tmp_path), audit=InMemoryAuditSink())


@pytest.fixture
def engine(registry: ProviderRegistry, audit: InMemoryAuditSink) -> TransferEngine:
    return TransferEngine(registry, audit=audit)


async def seed(provider) -> None:
    await provider.create("departments", {"name": "Finance"})
    await provider.create("departments", {"name": "Legal"})
    await provider.create("positions", {"name": "Clerk", "department_id": 1})


class TestExport:
    @pytest.mark.asyncio
    async def test_export_everything(
        self, engine: TransferEngine, registry: ProviderRegistry, audit: InMemoryAuditSink
    ) -> None:
        await seed(registry.current)

        payload = await engine.export(actor="admin")

        assert list(payload) == ["departments", "positions"]
        assert len(payload["departments"]) == 2
        entry = audit.entries[-1]
        assert entry.action is AuditAction.DATABASE_EXPORT
        assert entry.actor == "admin"
        assert entry.metadata["rows"] == 3

    @pytest.mark.asyncio
    async def test_export_selected_tables_once_each(
        self, engine: TransferEngine, registry: ProviderRegistry
    ) -> None:
        await seed(registry.current)

        payload = await engine.export(["positions", "departments", "positions"])

        assert list(payload) == ["positions", "departments"]
        assert payload["positions"][0]["name"] == "Clerk"

    @pytest.mark.asyncio
    async def test_empty_table_list_means_all(
        self, engine: TransferEngine, registry: ProviderRegistry
    ) -> None:
        await seed(registry.current)
        assert list(await engine.export([])) == ["departments", "positions"]


class TestImport:
    @pytest.mark.asyncio
    async def test_export_then_import_restores_rows(
        self, engine: TransferEngine, registry: ProviderRegistry, audit: InMemoryAuditSink
    ) -> None:
        await seed(registry.current)
        snapshot = await engine.export()
        await registry.current.delete("departments", 2)
        await registry.current.create("departments", {"name": "Temporary"})

        report = await engine.import_data(snapshot, actor="admin")

        assert report.rows == 3
        assert await registry.current.export_all() == snapshot
        assert audit.actions[-1] is AuditAction.DATABASE_IMPORT
        assert audit.entries[-1].metadata["atomicity"] == "transactional"

    @pytest.mark.asyncio
    async def test_malformed_payload_is_rejected_and_audited(
        self, engine: TransferEngine, audit: InMemoryAuditSink
    ) -> None:
        with pytest.raises(ValidationError):
            await engine.import_data({"departments": {"id": 1}})

        assert audit.actions == [AuditAction.ERROR]
        assert audit.entries[0].metadata["outcome"] == "aborted"

    @pytest.mark.asyncio
    async def test_partial_import_surfaces_completed_tables(
        self, tmp_path: Path, audit: InMemoryAuditSink
    ) -> None:
        def factory(descriptor: ProviderDescriptor) -> HalfwayProvider:
            return HalfwayProvider()

        registry = ProviderRegistry(
            DataAdminConfig(data_dir=tmp_path), audit=InMemoryAuditSink(), factory=factory
        )
        engine = TransferEngine(registry, audit=audit)

        with pytest.raises(PartialImportError) as exc_info:
            await engine.import_data({"departments": [], "positions": [{"name": "x"}]})

        assert exc_info.value.completed == ["departments"]
        assert audit.entries[-1].metadata["outcome"] == "partially_applied"


class TestSaveExport:
    def test_writes_timestamped_file(self, engine: TransferEngine, tmp_path: Path) -> None:
        stamp = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

        filename = engine.save_export({"activities": [{"id": 1, "at": stamp}]})

        assert filename.startswith(EXPORT_FILE_PREFIX) and filename.endswith(".json")
        written = json.loads((tmp_path / "exports" / filename).read_text())
        assert written == {"activities": [{"id": 1, "at": "2026-03-01T12:00:00Z"}]}

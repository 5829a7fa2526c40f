"""
Unit tests for TemplateManager.

Covers snapshot creation, natural-key reconciliation on import, secret
masking and the file-handling rules for the templates directory.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from src.portal_data.audit import InMemoryAuditSink
from src.portal_data.config import DataAdminConfig
from src.portal_data.contracts import AuditAction, ProviderDescriptor
from src.portal_data.exceptions import (
    NotFoundError,
    StorageQueryError,
    TemplateImportError,
    ValidationError,
)
from src.portal_data.storage import MemoryProvider, ProviderRegistry
from src.portal_data.templates import BACKUP_DIRNAME, MASK, TemplateManager, slugify

METADATA = {
    "name": "Backup A",
    "description": "Org structure before the reorg",
    "version": "1.0.0",
    "author": "admin",
}


class NoAgentsProvider(MemoryProvider):
    """Fails to read agents."""

    async def list(self, kind):
        if kind == "agents":
            raise StorageQueryError("list", "permission denied for table agents")
        return await super().list(kind)


class NoPositionsProvider(MemoryProvider):
    """Rejects writes to positions."""

    async def create(self, kind, fields):
        if kind == "positions":
            raise StorageQueryError("create", "permission denied for table positions")
        return await super().create(kind, fields)


def make_registry(tmp_path: Path, provider_cls: type[MemoryProvider] = MemoryProvider):
    def factory(descriptor: ProviderDescriptor) -> MemoryProvider:
        return provider_cls()

    return ProviderRegistry(
        DataAdminConfig(data_dir=tmp_path), audit=InMemoryAuditSink(), factory=factory
    )


@pytest.fixture
def audit() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def registry(tmp_path: Path) -> ProviderRegistry:
    return make_registry(tmp_path)


@pytest.fixture
def manager(registry: ProviderRegistry, audit: InMemoryAuditSink) -> TemplateManager:
    return TemplateManager(registry, audit=audit)


async def seed_org(provider) -> None:
    await provider.create("departments", {"name": "Finance"})
    await provider.create("departments", {"name": "Legal"})
    await provider.create("positions", {"name": "Counsel", "department_id": 2})
    await provider.create(
        "task_rules", {"name": "Contracts to legal", "department_id": 2, "position_id": 1}
    )


async def seed_agent(provider) -> None:
    await provider.create("integrations", {"name": "OpenAI", "api_key": "sk-live-123"})
    await provider.create("agents", {"name": "Support Bot", "integration_id": 1})


def test_slugify() -> None:
    assert slugify("Backup A") == "backup_a"
    assert slugify("  Q3 / final!! ") == "q3_final"
    assert slugify("***") == "template"


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_writes_snapshot(
        self,
        manager: TemplateManager,
        registry: ProviderRegistry,
        audit: InMemoryAuditSink,
    ) -> None:
        await seed_org(registry.current)

        summary = await manager.create_template(["org_structure"], METADATA, actor="admin")

        assert summary.filename.startswith("backup_a_")
        assert summary.record_count == 4
        assert summary.categories == ("org_structure",)
        document = json.loads((manager.templates_dir / summary.filename).read_text())
        assert list(document["data"]["org_structure"]) == ["departments", "positions", "task_rules"]
        assert document["metadata"]["author"] == "admin"
        assert audit.actions == [AuditAction.TEMPLATE_CREATE]

    @pytest.mark.asyncio
    async def test_wildcard_snapshots_every_category(self, manager: TemplateManager) -> None:
        summary = await manager.create_template(["all"], METADATA)
        template = await manager.get_template(summary.filename)

        assert list(template.data) == ["org_structure", "agents", "system_settings", "users"]
        assert template.metadata.is_wildcard

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("overrides", "field"),
        [
            ({"name": "ab"}, "name"),
            ({"version": "one"}, "version"),
            ({"author": ""}, "author"),
        ],
    )
    async def test_invalid_metadata(
        self, manager: TemplateManager, overrides: dict, field: str
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await manager.create_template(["org_structure"], {**METADATA, **overrides})
        assert exc_info.value.field == field

    @pytest.mark.asyncio
    async def test_unknown_category(self, manager: TemplateManager) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await manager.create_template(["payroll"], METADATA)
        assert exc_info.value.field == "categories"

    @pytest.mark.asyncio
    async def test_same_name_and_time_never_overwrites(self, manager: TemplateManager) -> None:
        created_at = datetime(2026, 1, 1, tzinfo=UTC)
        metadata = {**METADATA, "created_at": created_at}

        first = await manager.create_template(["system_settings"], metadata)
        second = await manager.create_template(["system_settings"], metadata)

        assert first.filename == "backup_a_20260101T000000000000Z.json"
        assert second.filename == "backup_a_20260101T000000000000Z_2.json"

    @pytest.mark.asyncio
    async def test_export_category_generates_metadata(self, manager: TemplateManager) -> None:
        summary = await manager.export_category("system_settings", actor="u7")

        assert summary.author == "u7"
        assert summary.categories == ("system_settings",)
        assert summary.name.startswith("system_settings export ")


class TestMasking:
    @pytest.mark.asyncio
    async def test_secrets_are_masked_in_file(
        self, manager: TemplateManager, registry: ProviderRegistry
    ) -> None:
        await registry.current.create("integrations", {"name": "CRM", "api_key": "sk-live-123"})
        await registry.current.create("users", {"username": "ana", "password": "hash$1"})

        summary = await manager.create_template(["agents", "users"], METADATA)

        raw = (manager.templates_dir / summary.filename).read_text()
        assert "sk-live-123" not in raw
        assert "hash$1" not in raw
        assert json.loads(raw)["data"]["agents"]["integrations"][0]["api_key"] == MASK

    @pytest.mark.asyncio
    async def test_masked_value_never_overwrites_local_secret(
        self, manager: TemplateManager, registry: ProviderRegistry
    ) -> None:
        provider = registry.current
        await provider.create("integrations", {"name": "CRM", "api_key": "sk-live-123"})
        summary = await manager.create_template(["agents"], METADATA)

        await manager.import_template(summary.filename)

        assert (await provider.find_by("integrations", "name", "CRM"))["api_key"] == "sk-live-123"

    @pytest.mark.asyncio
    async def test_masked_value_becomes_empty_on_create(
        self, manager: TemplateManager, registry: ProviderRegistry
    ) -> None:
        await registry.current.create("integrations", {"name": "CRM", "api_key": "sk-live-123"})
        summary = await manager.create_template(["agents"], METADATA)
        await registry.current.delete("integrations", 1)

        await manager.import_template(summary.filename)

        assert (await registry.current.find_by("integrations", "name", "CRM"))["api_key"] == ""


class TestImport:
    """Natural-key reconciliation."""

    @pytest.mark.asyncio
    async def test_deleted_department_is_restored(
        self,
        manager: TemplateManager,
        registry: ProviderRegistry,
        audit: InMemoryAuditSink,
    ) -> None:
        provider = registry.current
        await seed_org(provider)
        summary = await manager.create_template(["org_structure"], METADATA)
        await provider.delete("departments", 2)
        await provider.update("departments", 1, {"name": "Finance", "floor": 4})

        report = await manager.import_template(summary.filename, actor="admin")

        names = sorted(row["name"] for row in await provider.list("departments"))
        assert names == ["Finance", "Legal"]
        assert report.categories["org_structure"]["departments"].created == 1
        assert report.categories["org_structure"]["departments"].updated == 1
        assert report.created == 1
        assert report.updated == 3
        # Existing fields absent from the snapshot are left alone
        assert (await provider.find_by("departments", "name", "Finance"))["floor"] == 4
        assert audit.actions[-1] is AuditAction.TEMPLATE_IMPORT

    @pytest.mark.asyncio
    async def test_reimport_is_idempotent(
        self, manager: TemplateManager, registry: ProviderRegistry
    ) -> None:
        await seed_org(registry.current)
        summary = await manager.create_template(["org_structure"], METADATA)
        before = await registry.current.export_all()

        first = await manager.import_template(summary.filename)
        second = await manager.import_template(summary.filename)

        assert first.created == second.created == 0
        assert second.updated == 4
        assert await registry.current.export_all() == before

    @pytest.mark.asyncio
    async def test_references_are_remapped_to_local_ids(self, tmp_path: Path) -> None:
        source = make_registry(tmp_path)
        await seed_org(source.current)
        templates_dir = tmp_path / "shared"
        summary = await TemplateManager(source, templates_dir=templates_dir).create_template(
            ["org_structure"], METADATA
        )

        target = make_registry(tmp_path / "other")
        for name in ("Ops", "HR", "Archive"):
            await target.current.create("departments", {"name": name})
        await target.current.create("positions", {"name": "Intern"})

        await TemplateManager(target, templates_dir=templates_dir).import_template(
            summary.filename
        )

        legal = await target.current.find_by("departments", "name", "Legal")
        counsel = await target.current.find_by("positions", "name", "Counsel")
        rule = await target.current.find_by("task_rules", "name", "Contracts to legal")
        assert legal["id"] == 5
        assert counsel["department_id"] == legal["id"]
        assert rule["department_id"] == legal["id"]
        assert rule["position_id"] == counsel["id"] == 2

    @pytest.mark.asyncio
    async def test_wildcard_template_applies_categories_present(
        self, manager: TemplateManager, registry: ProviderRegistry
    ) -> None:
        await registry.current.create("system_settings", {"key": "theme", "value": "dark"})
        summary = await manager.create_template(["all"], METADATA)
        await registry.current.update("system_settings", 1, {"value": "light"})

        report = await manager.import_template(summary.filename)

        assert list(report.categories) == ["org_structure", "agents", "system_settings", "users"]
        assert (await registry.current.get_by_id("system_settings", 1))["value"] == "dark"

    @pytest.mark.asyncio
    async def test_missing_natural_key_rejects_file_before_writing(
        self, manager: TemplateManager, registry: ProviderRegistry
    ) -> None:
        manager.templates_dir.mkdir(parents=True)
        document = {
            "metadata": {**METADATA, "categories": ["org_structure"]},
            "data": {
                "org_structure": {
                    "departments": [{"id": 1, "name": "Finance"}],
                    "positions": [{"id": 1, "title": "no name"}],
                }
            },
        }
        (manager.templates_dir / "broken.json").write_text(json.dumps(document))

        with pytest.raises(ValidationError) as exc_info:
            await manager.import_template("broken")

        assert exc_info.value.field == "org_structure.positions[0].name"
        assert await registry.current.list("departments") == []

    @pytest.mark.asyncio
    async def test_failure_part_way_reports_progress(
        self, tmp_path: Path, audit: InMemoryAuditSink
    ) -> None:
        source = make_registry(tmp_path)
        await seed_org(source.current)
        summary = await TemplateManager(source).create_template(["org_structure"], METADATA)

        target = make_registry(tmp_path, NoPositionsProvider)
        manager = TemplateManager(target, audit=audit)

        with pytest.raises(TemplateImportError) as exc_info:
            await manager.import_template(summary.filename)

        error = exc_info.value
        assert error.completed == ["departments"]
        assert error.failed == "positions"
        assert error.written == 2
        assert error.outcome == "partially_applied"
        assert audit.actions == [AuditAction.ERROR]
        assert len(await target.current.list("departments")) == 2


class TestFiles:
    @pytest.mark.asyncio
    async def test_list_newest_first_and_skip_unreadable(self, manager: TemplateManager) -> None:
        older = await manager.create_template(
            ["system_settings"], {**METADATA, "created_at": datetime(2025, 1, 1, tzinfo=UTC)}
        )
        newer = await manager.create_template(
            ["system_settings"], {**METADATA, "created_at": datetime(2026, 1, 1, tzinfo=UTC)}
        )
        (manager.templates_dir / "garbage.json").write_text("{oops")

        summaries = await manager.list_templates()

        assert [s.filename for s in summaries] == [newer.filename, older.filename]

    @pytest.mark.asyncio
    async def test_list_without_directory(self, manager: TemplateManager) -> None:
        assert await manager.list_templates() == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("filename", ["../provider.json", "a/b.json", ".hidden", ""])
    async def test_path_traversal_rejected(self, manager: TemplateManager, filename: str) -> None:
        with pytest.raises(ValidationError):
            await manager.get_template(filename)

    @pytest.mark.asyncio
    async def test_get_and_delete_missing(self, manager: TemplateManager) -> None:
        with pytest.raises(NotFoundError):
            await manager.get_template("nope.json")
        with pytest.raises(NotFoundError):
            await manager.delete_template("nope")
        with pytest.raises(NotFoundError):
            await manager.import_template("nope")

    @pytest.mark.asyncio
    async def test_delete(self, manager: TemplateManager, audit: InMemoryAuditSink) -> None:
        summary = await manager.create_template(["system_settings"], METADATA)

        await manager.delete_template(summary.filename, actor="admin")

        assert await manager.list_templates() == []
        assert AuditAction.TEMPLATE_DELETE in audit.actions


class TestErrorAudit:
    """Rejected mutations still leave an error entry."""

    @pytest.mark.asyncio
    async def test_rejected_operations_are_audited(
        self, manager: TemplateManager, audit: InMemoryAuditSink
    ) -> None:
        with pytest.raises(NotFoundError):
            await manager.import_template("missing.json", actor="admin")
        with pytest.raises(NotFoundError):
            await manager.delete_template("missing.json", actor="admin")
        with pytest.raises(ValidationError):
            await manager.create_template(
                ["org_structure"], {**METADATA, "name": "ab"}, actor="admin"
            )
        with pytest.raises(ValidationError):
            await manager.export_category("payroll", actor="admin")

        assert audit.actions == [AuditAction.ERROR] * 4
        assert [e.metadata["operation"] for e in audit.entries] == [
            "template_import",
            "template_delete",
            "template_create",
            "template_create",
        ]
        assert all(e.actor == "admin" for e in audit.entries)

    @pytest.mark.asyncio
    async def test_invalid_file_is_audited(
        self, manager: TemplateManager, audit: InMemoryAuditSink
    ) -> None:
        manager.templates_dir.mkdir(parents=True)
        (manager.templates_dir / "broken.json").write_text("{oops")

        with pytest.raises(ValidationError):
            await manager.import_template("broken.json")

        assert audit.actions == [AuditAction.ERROR]
        assert audit.entries[0].metadata["filename"] == "broken.json"


class TestExportRecord:
    """Single-record templates."""

    @pytest.mark.asyncio
    async def test_agent_with_its_integration(
        self, manager: TemplateManager, registry: ProviderRegistry, audit: InMemoryAuditSink
    ) -> None:
        await seed_agent(registry.current)

        summary = await manager.export_record("agents", "1", actor="admin")

        assert summary.filename.startswith("agents_support_bot_")
        assert summary.categories == ("agents",)
        assert summary.record_count == 2
        assert summary.author == "admin"
        assert audit.entries[0].action is AuditAction.TEMPLATE_CREATE
        assert audit.entries[0].metadata["kind"] == "agents"

        template = await manager.get_template(summary.filename)
        payload = template.data["agents"]
        assert payload["agents"] == [{"id": 1, "name": "Support Bot", "integration_id": 1}]
        assert payload["integrations"] == [{"id": 1, "name": "OpenAI", "api_key": MASK}]

    @pytest.mark.asyncio
    async def test_without_references(
        self, manager: TemplateManager, registry: ProviderRegistry
    ) -> None:
        await seed_agent(registry.current)

        summary = await manager.export_record("agents", 1, include_references=False)

        template = await manager.get_template(summary.filename)
        assert template.data == {
            "agents": {"agents": [{"id": 1, "name": "Support Bot", "integration_id": 1}]}
        }

    @pytest.mark.asyncio
    async def test_reference_in_other_category_is_filed_there(
        self, manager: TemplateManager, registry: ProviderRegistry
    ) -> None:
        await seed_org(registry.current)
        await registry.current.create(
            "users", {"username": "ana", "password": "hash$1", "department_id": 2}
        )

        summary = await manager.export_record("users", 1)

        template = await manager.get_template(summary.filename)
        assert template.metadata.categories == ("org_structure", "users")
        assert template.data["org_structure"] == {"departments": [{"id": 2, "name": "Legal"}]}
        assert template.data["users"]["users"][0]["password"] == MASK

    @pytest.mark.asyncio
    async def test_import_into_another_provider_remaps_reference(self, tmp_path: Path) -> None:
        source = make_registry(tmp_path)
        await seed_agent(source.current)
        summary = await TemplateManager(source).export_record("agents", 1)

        target = make_registry(tmp_path)
        await target.current.create("integrations", {"name": "Local LLM"})
        report = await TemplateManager(target).import_template(summary.filename)

        assert report.created == 2
        integration = await target.current.find_by("integrations", "name", "OpenAI")
        assert integration["id"] == 2
        assert integration["api_key"] == ""
        agent = await target.current.find_by("agents", "name", "Support Bot")
        assert agent["integration_id"] == 2

    @pytest.mark.asyncio
    async def test_missing_record_and_unknown_kind(
        self, manager: TemplateManager, audit: InMemoryAuditSink
    ) -> None:
        with pytest.raises(NotFoundError):
            await manager.export_record("agents", 99)
        with pytest.raises(ValidationError):
            await manager.export_record("activities", 1)

        assert audit.actions == [AuditAction.ERROR, AuditAction.ERROR]
        assert not manager.templates_dir.exists()


class TestBackup:
    """Full backups into timestamped directories."""

    @pytest.mark.asyncio
    async def test_backup_writes_category_and_agent_files(
        self, manager: TemplateManager, registry: ProviderRegistry, audit: InMemoryAuditSink
    ) -> None:
        await seed_org(registry.current)
        await seed_agent(registry.current)

        backup = await manager.backup_all(actor="admin")

        directory = Path(backup.directory)
        assert directory.parent == (manager.templates_dir / BACKUP_DIRNAME).resolve()
        assert set(backup.files) == {
            "org_structure.json",
            "agents.json",
            "system_settings.json",
            "users.json",
            "agents_support_bot.json",
        }
        assert sorted(p.name for p in directory.iterdir()) == sorted(backup.files)
        assert backup.record_count == 6
        assert audit.actions == [AuditAction.TEMPLATE_BACKUP]

        agent_file = json.loads((directory / "agents_support_bot.json").read_text())
        assert agent_file["metadata"]["author"] == "admin"
        assert agent_file["data"]["agents"]["integrations"][0]["api_key"] == MASK
        assert "sk-live-123" not in (directory / "agents.json").read_text()

    @pytest.mark.asyncio
    async def test_backups_are_not_listed_as_templates(
        self, manager: TemplateManager, registry: ProviderRegistry
    ) -> None:
        await seed_agent(registry.current)
        await manager.backup_all()

        assert await manager.list_templates() == []

    @pytest.mark.asyncio
    async def test_failed_backup_removes_directory(
        self, tmp_path: Path, audit: InMemoryAuditSink
    ) -> None:
        registry = make_registry(tmp_path, NoAgentsProvider)
        manager = TemplateManager(registry, audit=audit)

        with pytest.raises(StorageQueryError):
            await manager.backup_all()

        assert list((manager.templates_dir / BACKUP_DIRNAME).iterdir()) == []
        assert audit.actions == [AuditAction.ERROR]
        assert audit.entries[0].metadata["operation"] == "template_backup"

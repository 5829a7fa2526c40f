"""
Template (Snapshot) Manager

Creates, lists, reads, deletes and imports template files, exports single
records and writes full backups. A template import is a reconciliation, not a
replace: each record is matched against the active provider by its natural
key (a department's name, a setting's key) and is updated in place or created.
Numeric ids in the file are never trusted as identities, which is what lets a
template move between providers and be re-imported any number of times.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pydantic
from pydantic_core import to_jsonable_python

from src.portal_data.audit import AuditSink, LoggingAuditSink, record_audit
from src.portal_data.contracts import (
    ALL_CATEGORIES,
    DEFAULT_SCHEMAS,
    ID_FIELD,
    AuditAction,
    EntityKind,
    EntitySchemaRegistry,
    ExportPayload,
    KindImportCounts,
    Record,
    Template,
    TemplateBackup,
    TemplateImportReport,
    TemplateMetadata,
    TemplateSummary,
)
from src.portal_data.contracts.templates import NAME_MAX_LENGTH
from src.portal_data.exceptions import (
    NotFoundError,
    PortalDataError,
    TemplateImportError,
    ValidationError,
)
from src.portal_data.storage.registry import ProviderRegistry
from src.portal_data.templates.categories import (
    DEFAULT_CATEGORIES,
    MASK,
    CategoryRegistry,
    TemplateCategory,
)

logger = logging.getLogger(__name__)

TEMPLATE_SUFFIX = ".json"
BACKUP_DIRNAME = "backup"

_STAMP_FORMAT = "%Y%m%dT%H%M%S%fZ"

_SLUG_INVALID = re.compile(r"[^\w]+", re.UNICODE)


def slugify(name: str) -> str:
    """Lowercase, collapse anything but letters and digits to ``_``."""
    slug = _SLUG_INVALID.sub("_", name.strip().lower()).strip("_")
    return slug or "template"


def _pydantic_to_validation_error(error: pydantic.ValidationError) -> ValidationError:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first["loc"]) or "metadata"
    return ValidationError(field, first["msg"])


class TemplateManager:
    """
    Snapshot files under one directory.

    Args:
        registry: Source of the active provider
        audit: Sink receiving one entry per operation
        templates_dir: Directory holding template files
        categories: Category definitions (default: org_structure, agents,
            system_settings, users)
        schemas: Entity schemas supplying natural keys
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        audit: AuditSink | None = None,
        templates_dir: Path | str | None = None,
        categories: CategoryRegistry | None = None,
        schemas: EntitySchemaRegistry | None = None,
    ) -> None:
        self._registry = registry
        self._audit = audit or LoggingAuditSink()
        self._dir = Path(templates_dir) if templates_dir else registry.config.templates_path
        self._categories = categories or DEFAULT_CATEGORIES
        self._schemas = schemas or DEFAULT_SCHEMAS

    @property
    def templates_dir(self) -> Path:
        return self._dir

    @property
    def categories(self) -> CategoryRegistry:
        return self._categories

    # -------------------------------------------------------------------------
    # Files
    # -------------------------------------------------------------------------

    def _path(self, filename: str) -> Path:
        """Resolve a caller-supplied filename inside the templates directory."""
        if not filename or not isinstance(filename, str):
            raise ValidationError("filename", "must not be empty")
        if not filename.endswith(TEMPLATE_SUFFIX):
            filename += TEMPLATE_SUFFIX
        if (
            "/" in filename
            or "\\" in filename
            or filename.startswith(".")
            or Path(filename).name != filename
        ):
            raise ValidationError("filename", f"invalid template filename '{filename}'")
        return self._dir / filename

    def _load(self, filename: str) -> tuple[Path, Template]:
        path = self._path(filename)
        if not path.is_file():
            raise NotFoundError("template", path.name)
        try:
            with open(path, encoding="utf-8") as f:
                raw = json.load(f)
        except json.JSONDecodeError as e:
            raise ValidationError(path.name, f"not valid JSON: {e}") from e
        try:
            return path, Template.model_validate(raw)
        except pydantic.ValidationError as e:
            raise _pydantic_to_validation_error(e) from e

    def _write(
        self,
        template: Template,
        directory: Path | None = None,
        stem: str | None = None,
    ) -> Path:
        """
        Write a new file, never replacing an existing one.

        The document is written to a temp file and hard-linked into place;
        ``os.link`` fails instead of overwriting, so a colliding name gets a
        numeric suffix. The default name is the slugged template name plus
        its creation timestamp.
        """
        directory = directory or self._dir
        directory.mkdir(parents=True, exist_ok=True)
        if stem is None:
            stamp = template.metadata.created_at.astimezone(UTC).strftime(_STAMP_FORMAT)
            stem = f"{slugify(template.metadata.name)}_{stamp}"

        fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=".tmp_", suffix=TEMPLATE_SUFFIX)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(
                    template.model_dump(mode="json"),
                    f,
                    indent=2,
                    ensure_ascii=False,
                    default=to_jsonable_python,
                )
            counter = 1
            while True:
                suffix = f"_{counter}" if counter > 1 else ""
                path = directory / f"{stem}{suffix}{TEMPLATE_SUFFIX}"
                try:
                    os.link(tmp_name, path)
                    return path
                except FileExistsError:
                    counter += 1
        finally:
            Path(tmp_name).unlink(missing_ok=True)

    @staticmethod
    def _summary(filename: str, template: Template) -> TemplateSummary:
        meta = template.metadata
        record_count = sum(
            len(rows) for payload in template.data.values() for rows in payload.values()
        )
        return TemplateSummary(
            filename=filename,
            name=meta.name,
            description=meta.description,
            version=meta.version,
            author=meta.author,
            created_at=meta.created_at,
            categories=meta.categories,
            record_count=record_count,
        )

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    @staticmethod
    def _mask(category: TemplateCategory, kind: EntityKind, rows: list[Record]) -> list[Record]:
        masked = category.masked_for(kind)
        if not masked:
            return rows
        return [
            {k: (MASK if k in masked and v not in (None, "") else v) for k, v in row.items()}
            for row in rows
        ]

    async def _export_category(self, category: TemplateCategory) -> ExportPayload:
        provider = self._registry.current
        payload: ExportPayload = {}
        for kind in category.kinds:
            payload[kind] = self._mask(category, kind, await provider.list(kind))
        return payload

    @staticmethod
    def _validate_metadata(metadata: dict[str, Any], categories: list[str]) -> TemplateMetadata:
        try:
            return TemplateMetadata(**{**metadata, "categories": tuple(categories)})
        except pydantic.ValidationError as e:
            raise _pydantic_to_validation_error(e) from e
        except TypeError as e:
            raise ValidationError("metadata", str(e)) from e

    async def create_template(
        self,
        categories: list[str],
        metadata: dict[str, Any],
        actor: str | None = None,
    ) -> TemplateSummary:
        """
        Snapshot the named categories of the active provider into a new file.

        Args:
            categories: Category names, or ``["all"]``
            metadata: ``name``, ``description``, ``version``, ``author``
            actor: User id recorded in the audit entry

        Raises:
            ValidationError: Metadata or category names are invalid
        """
        try:
            meta = self._validate_metadata(metadata, categories)
            resolved = self._categories.resolve(meta.categories)
        except PortalDataError as e:
            name = metadata.get("name") if isinstance(metadata, dict) else None
            await self._audit_error(actor, "template_create", e, {"name": name})
            raise

        try:
            data = {category.name: await self._export_category(category) for category in resolved}
        except PortalDataError as e:
            await self._audit_error(actor, "template_create", e, {"name": meta.name})
            raise

        template = Template(metadata=meta, data=data)
        path = self._write(template)
        summary = self._summary(path.name, template)

        logger.info(f"Created template {path.name} ({summary.record_count} records)")
        await record_audit(
            self._audit,
            AuditAction.TEMPLATE_CREATE,
            actor,
            f"Created template '{meta.name}'",
            {
                "filename": path.name,
                "categories": list(meta.categories),
                "records": summary.record_count,
            },
        )
        return summary

    async def export_category(self, category: str, actor: str | None = None) -> TemplateSummary:
        """Snapshot one category with generated metadata."""
        try:
            self._categories.get(category)
        except PortalDataError as e:
            await self._audit_error(actor, "template_create", e, {"category": category})
            raise
        stamp = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S")
        metadata = {
            "name": f"{category} export {stamp}",
            "description": f"Export of {category}",
            "version": "1.0.0",
            "author": actor or "system",
        }
        return await self.create_template([category], metadata, actor)

    # -------------------------------------------------------------------------
    # Single records and full backups
    # -------------------------------------------------------------------------

    async def _record_data(
        self,
        kind: EntityKind,
        record_id: Any,
        include_references: bool,
    ) -> tuple[Record, dict[str, ExportPayload]]:
        """
        One record plus, optionally, the records it references directly.

        Referenced records are filed under the category that exports their
        kind, so the result imports through the normal reconciliation path.
        """
        category = self._categories.category_for(kind)
        if category is None:
            raise ValidationError("kind", f"'{kind}' is not exported by any template category")

        provider = self._registry.current
        record = await provider.get_by_id(kind, record_id)
        data: dict[str, ExportPayload] = {}

        if include_references:
            for ref in category.references_for(kind):
                target_id = record.get(ref.field)
                if target_id is None:
                    continue
                owner = (
                    category
                    if ref.target in category.kinds
                    else self._categories.category_for(ref.target)
                )
                if owner is None:
                    continue
                try:
                    target = await provider.get_by_id(ref.target, target_id)
                except NotFoundError:
                    logger.warning(
                        f"{kind} #{record_id}: {ref.field} points at missing "
                        f"{ref.target} #{target_id}"
                    )
                    continue
                rows = data.setdefault(owner.name, {}).setdefault(ref.target, [])
                rows.extend(self._mask(owner, ref.target, [target]))

        data.setdefault(category.name, {}).setdefault(kind, []).extend(
            self._mask(category, kind, [record])
        )
        # Category order is import order: referenced categories come first
        return record, {name: data[name] for name in self._categories.names if name in data}

    def _record_template(
        self,
        kind: EntityKind,
        record: Record,
        data: dict[str, ExportPayload],
        author: str | None,
    ) -> Template:
        key = self._schemas.natural_key(kind)
        label = record.get(key) if key else None
        name = f"{kind} {label if label not in (None, '') else record[ID_FIELD]}"
        metadata = TemplateMetadata(
            name=name[:NAME_MAX_LENGTH],
            description=f"Export of {kind} #{record[ID_FIELD]}",
            version="1.0.0",
            author=author or "system",
            categories=tuple(data),
        )
        return Template(metadata=metadata, data=data)

    async def export_record(
        self,
        kind: EntityKind,
        record_id: Any,
        include_references: bool = True,
        actor: str | None = None,
    ) -> TemplateSummary:
        """
        Snapshot a single record (e.g. one agent) into a new template.

        Args:
            kind: Entity kind of the record
            record_id: Id of the record in the active provider
            include_references: Also export the records it points at
                (an agent's integration, a user's department)
            actor: User id recorded in the audit entry

        Raises:
            NotFoundError: No such record
            ValidationError: ``kind`` belongs to no template category
        """
        try:
            record, data = await self._record_data(kind, record_id, include_references)
        except PortalDataError as e:
            await self._audit_error(
                actor, "template_create", e, {"kind": kind, "record_id": record_id}
            )
            raise

        template = self._record_template(kind, record, data, actor)
        path = self._write(template)
        summary = self._summary(path.name, template)

        logger.info(f"Exported {kind} #{record_id} to template {path.name}")
        await record_audit(
            self._audit,
            AuditAction.TEMPLATE_CREATE,
            actor,
            f"Created template of {kind} #{record_id}",
            {
                "filename": path.name,
                "kind": kind,
                "record_id": record_id,
                "include_references": include_references,
                "records": summary.record_count,
            },
        )
        return summary

    def _new_backup_dir(self) -> Path:
        root = self._dir / BACKUP_DIRNAME
        stamp = datetime.now(UTC).strftime(_STAMP_FORMAT)
        counter = 1
        while True:
            directory = root / (f"{stamp}_{counter}" if counter > 1 else stamp)
            try:
                directory.mkdir(parents=True)
                return directory
            except FileExistsError:
                counter += 1

    async def backup_all(
        self,
        include_references: bool = True,
        actor: str | None = None,
    ) -> TemplateBackup:
        """
        Write every category into a new timestamped backup directory.

        Each category gets one ``<category>.json`` holding all of its records.
        Categories with a per-record kind (agents) additionally get one file
        per record, so a single agent can be restored on its own. Backups
        live under ``backup/`` and are not listed as templates.

        A failed backup removes its directory.
        """
        directory = self._new_backup_dir()
        author = actor or "system"
        files: list[str] = []
        record_count = 0

        try:
            for category in self._categories.resolve([ALL_CATEGORIES]):
                meta = TemplateMetadata(
                    name=f"{category.name} backup",
                    description=category.description,
                    version="1.0.0",
                    author=author,
                    categories=(category.name,),
                )
                payload = await self._export_category(category)
                template = Template(metadata=meta, data={category.name: payload})
                files.append(self._write(template, directory, stem=category.name).name)
                record_count += sum(len(rows) for rows in payload.values())

                kind = category.per_record_kind
                if kind is None:
                    continue
                for row in payload.get(kind, []):
                    record, data = await self._record_data(kind, row[ID_FIELD], include_references)
                    template = self._record_template(kind, record, data, author)
                    stem = slugify(template.metadata.name)
                    files.append(self._write(template, directory, stem=stem).name)
        except PortalDataError as e:
            shutil.rmtree(directory, ignore_errors=True)
            await self._audit_error(actor, "template_backup", e, {"directory": directory.name})
            raise

        backup = TemplateBackup(
            directory=str(directory.resolve()),
            files=tuple(files),
            record_count=record_count,
        )
        logger.info(f"Template backup written to {directory} ({len(files)} files)")
        await record_audit(
            self._audit,
            AuditAction.TEMPLATE_BACKUP,
            actor,
            f"Backed up all templates to {directory.name}",
            {"directory": directory.name, "files": len(files), "records": record_count},
        )
        return backup

    # -------------------------------------------------------------------------
    # Import
    # -------------------------------------------------------------------------

    def _categories_to_apply(self, template: Template) -> list[TemplateCategory]:
        if template.metadata.is_wildcard:
            names = [name for name in template.data if name in self._categories]
            return [self._categories.get(name) for name in names]
        return [self._categories.get(name) for name in template.metadata.categories]

    def _check_natural_keys(self, template: Template, categories: list[TemplateCategory]) -> None:
        """Reject the whole file before any write if a record lacks its key."""
        for category in categories:
            payload = template.data.get(category.name, {})
            for kind in category.kinds:
                key = self._schemas.natural_key(kind)
                rows = payload.get(kind, [])
                if rows and key is None:
                    raise ValidationError(kind, "entity kind has no natural key")
                for index, row in enumerate(rows):
                    if row.get(key) in (None, ""):
                        raise ValidationError(
                            f"{category.name}.{kind}[{index}].{key}", "natural key is missing"
                        )

    async def _reconcile(
        self,
        kind: EntityKind,
        row: Record,
        category: TemplateCategory,
        id_map: dict[EntityKind, dict[Any, Any]],
    ) -> bool:
        """Upsert one record by natural key. Returns True when it was created."""
        provider = self._registry.current
        key = self._schemas.natural_key(kind)
        existing = await provider.find_by(kind, key, row[key])

        fields = {k: v for k, v in row.items() if k != ID_FIELD}
        for ref in category.references_for(kind):
            value = fields.get(ref.field)
            if value is not None and value in id_map.get(ref.target, {}):
                fields[ref.field] = id_map[ref.target][value]
        for name in category.masked_for(kind):
            if fields.get(name) == MASK:
                if existing is None:
                    fields[name] = ""
                else:
                    del fields[name]

        if existing is not None:
            local = await provider.update(kind, existing[ID_FIELD], fields)
        else:
            local = await provider.create(kind, fields)

        snapshot_id = row.get(ID_FIELD)
        if snapshot_id is not None:
            id_map.setdefault(kind, {})[snapshot_id] = local[ID_FIELD]
        return existing is None

    async def import_template(
        self,
        filename: str,
        actor: str | None = None,
    ) -> TemplateImportReport:
        """
        Reconcile a template into the active provider.

        Raises:
            NotFoundError: No such file
            ValidationError: Malformed file or a record without its natural key
            TemplateImportError: Failed after some kinds were written
        """
        try:
            path, template = self._load(filename)
            categories = self._categories_to_apply(template)
            self._check_natural_keys(template, categories)
        except PortalDataError as e:
            await self._audit_error(actor, "template_import", e, {"filename": filename})
            raise

        report = TemplateImportReport(filename=path.name)
        id_map: dict[EntityKind, dict[Any, Any]] = {}
        completed: list[str] = []
        written = 0

        for category in categories:
            payload = template.data.get(category.name, {})
            counts: dict[str, KindImportCounts] = {}
            for kind in category.kinds:
                kind_counts = KindImportCounts()
                try:
                    for row in payload.get(kind, []):
                        if await self._reconcile(kind, row, category, id_map):
                            kind_counts.created += 1
                        else:
                            kind_counts.updated += 1
                        written += 1
                except PortalDataError as e:
                    error = TemplateImportError(path.name, completed, kind, e.message, written)
                    logger.error(f"Template import of {path.name} stopped at '{kind}': {e}")
                    await self._audit_error(
                        actor,
                        "template_import",
                        error,
                        {"filename": path.name, "completed": completed, "failed": kind},
                    )
                    raise error from e
                counts[kind] = kind_counts
                completed.append(kind)
            report.categories[category.name] = counts

        logger.info(
            f"Imported template {path.name}: {report.created} created, {report.updated} updated"
        )
        await record_audit(
            self._audit,
            AuditAction.TEMPLATE_IMPORT,
            actor,
            f"Imported template '{template.metadata.name}'",
            {
                "filename": path.name,
                "categories": list(report.categories),
                "created": report.created,
                "updated": report.updated,
            },
        )
        return report

    # -------------------------------------------------------------------------
    # List / read / delete
    # -------------------------------------------------------------------------

    async def list_templates(self, actor: str | None = None) -> list[TemplateSummary]:
        """Summaries of every readable template, newest first."""
        summaries: list[TemplateSummary] = []
        if self._dir.is_dir():
            for path in sorted(self._dir.glob(f"*{TEMPLATE_SUFFIX}")):
                if path.name.startswith("."):
                    continue
                try:
                    _, template = self._load(path.name)
                except (OSError, PortalDataError) as e:
                    logger.warning(f"Skipping unreadable template {path.name}: {e}")
                    continue
                summaries.append(self._summary(path.name, template))
        summaries.sort(key=lambda s: s.created_at, reverse=True)

        await record_audit(
            self._audit,
            AuditAction.TEMPLATE_LIST,
            actor,
            f"Listed {len(summaries)} templates",
        )
        return summaries

    async def get_template(self, filename: str, actor: str | None = None) -> Template:
        path, template = self._load(filename)
        await record_audit(
            self._audit,
            AuditAction.TEMPLATE_READ,
            actor,
            f"Read template '{template.metadata.name}'",
            {"filename": path.name},
        )
        return template

    async def delete_template(self, filename: str, actor: str | None = None) -> None:
        try:
            path = self._path(filename)
            try:
                path.unlink()
            except FileNotFoundError:
                raise NotFoundError("template", path.name) from None
        except PortalDataError as e:
            await self._audit_error(actor, "template_delete", e, {"filename": filename})
            raise

        logger.info(f"Deleted template {path.name}")
        await record_audit(
            self._audit,
            AuditAction.TEMPLATE_DELETE,
            actor,
            f"Deleted template {path.name}",
            {"filename": path.name},
        )

    async def _audit_error(
        self,
        actor: str | None,
        operation: str,
        error: PortalDataError,
        metadata: dict[str, Any],
    ) -> None:
        await record_audit(
            self._audit,
            AuditAction.ERROR,
            actor,
            f"{operation} failed: {error.message}",
            {"operation": operation, "error": str(error), "outcome": error.outcome, **metadata},
        )


"""
Portal Data CLI

Command-line access to the data administration layer. Each command resumes
the persisted provider selection, runs, and releases its connections.

Usage:
    portal-data serve --port 8090
    portal-data provider show
    portal-data provider test postgres --dsn postgresql://app@db/portal
    portal-data export --table departments --table positions --output org.json
    portal-data import backup.json
    portal-data templates list
    portal-data templates create org_structure --name "Backup A" --author admin
    portal-data templates import backup_a_20260101T000000000000Z.json
    portal-data templates export-record agents 3
    portal-data templates backup
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Annotated, Any, TypeVar

import typer
from pydantic_core import to_jsonable_python
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from src import __version__
from src.portal_data.config import DataAdminConfig
from src.portal_data.contracts import AuditAction
from src.portal_data.exceptions import PartialImportError, PortalDataError
from src.portal_data.logging import configure_sanitized_logging
from src.portal_data.storage import ProviderRegistry
from src.portal_data.templates import TemplateManager
from src.portal_data.transfer import TransferEngine

logger = logging.getLogger(__name__)

console = Console()

T = TypeVar("T")

app = typer.Typer(
    name="portal-data",
    help="Portal data administration - providers, export/import and templates",
    no_args_is_help=True,
)

provider_app = typer.Typer(name="provider", help="Data provider commands", no_args_is_help=True)
templates_app = typer.Typer(
    name="templates", help="Template snapshot commands", no_args_is_help=True
)

app.add_typer(provider_app, name="provider")
app.add_typer(templates_app, name="templates")

ActorOption = Annotated[
    str | None,
    typer.Option("--actor", "-u", help="User id recorded in audit entries"),
]


def _run(operation: Callable[[ProviderRegistry], Awaitable[T]]) -> T:
    """Resume the persisted provider, run ``operation`` and close connections."""
    config = DataAdminConfig()
    configure_sanitized_logging(level=config.log_level)

    async def _main() -> T:
        registry = ProviderRegistry(config)
        await registry.initialize()
        try:
            return await operation(registry)
        finally:
            await registry.close()

    try:
        return asyncio.run(_main())
    except PartialImportError as e:
        console.print(f"[yellow]Partially applied:[/yellow] {escape(e.message)}")
        console.print(f"Completed: {', '.join(e.completed) or 'none'}; failed: {e.failed}")
        raise typer.Exit(2) from e
    except PortalDataError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e


def _write_json(data: Any, output: Path | None) -> None:
    text = json.dumps(data, indent=2, ensure_ascii=False, default=to_jsonable_python)
    if output is None:
        console.print_json(text)
    else:
        output.write_text(text, encoding="utf-8")
        console.print(f"[green]Wrote[/green] {output}")


# =============================================================================
# Top-level commands
# =============================================================================


@app.command()
def version() -> None:
    """Show version information."""
    typer.echo(f"portal-data version {__version__}")


@app.command()
def serve(
    host: Annotated[str | None, typer.Option("--host", help="Host to bind")] = None,
    port: Annotated[int | None, typer.Option("--port", "-p", help="Port to bind")] = None,
) -> None:
    """Run the HTTP administration API."""
    from src.services.data_admin.transports.http import run_http_server

    overrides: dict[str, Any] = {}
    if host:
        overrides["host"] = host
    if port:
        overrides["port"] = port
    config = DataAdminConfig(**overrides)
    configure_sanitized_logging(level=config.log_level)

    try:
        asyncio.run(run_http_server(config))
    except KeyboardInterrupt:
        logger.info("Shutting down...")


@app.command("export")
def export_command(
    tables: Annotated[
        list[str] | None,
        typer.Option("--table", "-t", help="Table to export (can be repeated; default: all)"),
    ] = None,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write to this file instead of stdout"),
    ] = None,
    actor: ActorOption = None,
) -> None:
    """Export tables from the active provider."""

    async def _export(registry: ProviderRegistry) -> dict:
        return await TransferEngine(registry).export(tables, actor=actor)

    _write_json(_run(_export), output)


@app.command("import")
def import_command(
    source: Annotated[Path, typer.Argument(help="Export file to import", exists=True)],
    actor: ActorOption = None,
) -> None:
    """Replace tables in the active provider with the content of an export file."""
    data = json.loads(source.read_text(encoding="utf-8"))

    async def _import(registry: ProviderRegistry):
        return await TransferEngine(registry).import_data(data, actor=actor)

    report = _run(_import)
    console.print(
        f"[green]Imported[/green] {len(report.tables)} tables, {report.rows} rows "
        f"({report.atomicity.value})"
    )


# =============================================================================
# Provider commands
# =============================================================================


@provider_app.command("show")
def provider_show() -> None:
    """Show the active provider and its redacted configuration."""

    async def _describe(registry: ProviderRegistry) -> dict:
        return registry.describe()

    info = _run(_describe)
    table = Table(title=f"Active provider: {info['provider']}")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in info["config"].items():
        table.add_row(key, str(value))
    console.print(table)


@provider_app.command("test")
def provider_test(
    kind: Annotated[str, typer.Argument(help="memory, postgres or remote_table")],
    dsn: Annotated[str | None, typer.Option("--dsn", help="PostgreSQL connection URL")] = None,
    url: Annotated[str | None, typer.Option("--url", help="Remote table-store URL")] = None,
    api_key: Annotated[
        str | None, typer.Option("--api-key", help="Remote table-store service key")
    ] = None,
    actor: ActorOption = None,
) -> None:
    """Probe a provider without switching to it."""
    overrides = {"dsn": dsn} if kind == "postgres" else {"url": url, "api_key": api_key}
    if kind == "memory":
        overrides = {}

    async def _test(registry: ProviderRegistry) -> None:
        descriptor = await registry.resolve_descriptor(
            kind, overrides, actor, operation=AuditAction.PROVIDER_TEST
        )
        await registry.test_connection(descriptor, actor=actor)

    _run(_test)
    console.print(f"[green]Connection to {kind} succeeded[/green]")


# =============================================================================
# Template commands
# =============================================================================


@templates_app.command("list")
def templates_list() -> None:
    """List stored templates, newest first."""

    async def _list(registry: ProviderRegistry):
        return await TemplateManager(registry).list_templates()

    summaries = _run(_list)
    if not summaries:
        console.print("[dim]No templates found.[/dim]")
        return

    table = Table(title="Templates")
    table.add_column("Filename", style="cyan")
    table.add_column("Name")
    table.add_column("Version")
    table.add_column("Author")
    table.add_column("Categories")
    table.add_column("Records", justify="right")
    table.add_column("Created")
    for s in summaries:
        table.add_row(
            s.filename,
            s.name,
            s.version,
            s.author,
            ", ".join(s.categories),
            str(s.record_count),
            s.created_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@templates_app.command("show")
def templates_show(
    filename: Annotated[str, typer.Argument(help="Template filename")],
    output: Annotated[Path | None, typer.Option("--output", "-o", help="Write to file")] = None,
) -> None:
    """Print a template document."""

    async def _get(registry: ProviderRegistry):
        return await TemplateManager(registry).get_template(filename)

    _write_json(_run(_get).model_dump(mode="json"), output)


@templates_app.command("create")
def templates_create(
    categories: Annotated[
        list[str], typer.Argument(help="Categories to snapshot, or 'all'")
    ],
    name: Annotated[str, typer.Option("--name", "-n", help="Template name")],
    author: Annotated[str, typer.Option("--author", "-a", help="Template author")],
    description: Annotated[str, typer.Option("--description", "-d")] = "",
    template_version: Annotated[str, typer.Option("--version", "-V")] = "1.0.0",
    actor: ActorOption = None,
) -> None:
    """Snapshot categories of the active provider into a new template."""
    metadata = {
        "name": name,
        "description": description,
        "version": template_version,
        "author": author,
    }

    async def _create(registry: ProviderRegistry):
        return await TemplateManager(registry).create_template(
            categories, metadata, actor=actor or author
        )

    summary = _run(_create)
    console.print(
        f"[green]Created[/green] {summary.filename} ({summary.record_count} records)"
    )


@templates_app.command("import")
def templates_import(
    filename: Annotated[str, typer.Argument(help="Template filename")],
    actor: ActorOption = None,
) -> None:
    """Reconcile a template into the active provider by natural key."""

    async def _import(registry: ProviderRegistry):
        return await TemplateManager(registry).import_template(filename, actor=actor)

    report = _run(_import)
    table = Table(title=f"Imported {report.filename}")
    table.add_column("Category", style="cyan")
    table.add_column("Kind")
    table.add_column("Created", justify="right")
    table.add_column("Updated", justify="right")
    for category, kinds in report.categories.items():
        for kind, counts in kinds.items():
            table.add_row(category, kind, str(counts.created), str(counts.updated))
    console.print(table)


ReferencesOption = Annotated[
    bool,
    typer.Option(
        "--references/--no-references",
        help="Also export the records each exported record points at",
    ),
]


@templates_app.command("export-record")
def templates_export_record(
    kind: Annotated[str, typer.Argument(help="Entity kind, e.g. agents")],
    record_id: Annotated[str, typer.Argument(help="Record id in the active provider")],
    references: ReferencesOption = True,
    actor: ActorOption = None,
) -> None:
    """Snapshot a single record (and what it references) into a new template."""

    async def _export(registry: ProviderRegistry):
        return await TemplateManager(registry).export_record(
            kind, record_id, include_references=references, actor=actor
        )

    summary = _run(_export)
    console.print(
        f"[green]Created[/green] {summary.filename} ({summary.record_count} records)"
    )


@templates_app.command("backup")
def templates_backup(
    references: ReferencesOption = True,
    actor: ActorOption = None,
) -> None:
    """Write every category (and one file per agent) into a new backup directory."""

    async def _backup(registry: ProviderRegistry):
        return await TemplateManager(registry).backup_all(
            include_references=references, actor=actor
        )

    backup = _run(_backup)
    console.print(
        f"[green]Backed up[/green] {backup.record_count} records "
        f"in {len(backup.files)} files to {backup.directory}"
    )


@templates_app.command("delete")
def templates_delete(
    filename: Annotated[str, typer.Argument(help="Template filename")],
    actor: ActorOption = None,
) -> None:
    """Delete a stored template."""

    async def _delete(registry: ProviderRegistry) -> None:
        await TemplateManager(registry).delete_template(filename, actor=actor)

    _run(_delete)
    console.print(f"[green]Deleted[/green] {filename}")


if __name__ == "__main__":
    app()

#!/usr/bin/env python3
"""
Command-line interface for the recycle bin.

Lets operators inspect, restore and purge cascade deletions, and delete
entities through the configured cascade registry.
"""

import importlib
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
import pandas as pd  # type: ignore[import-untyped]
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.tree import Tree
from sqlalchemy import create_engine, event
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from . import __version__
from .audit_trail import create_audit_logger, set_audit_context
from .cascade import (
    CascadeRegistry,
    RecycleBinError,
    RecycleBinService,
    create_recycle_bin_tables,
)
from .config import get_config

console = Console()

EXPORT_PAGE_SIZE = 500


def _create_engine(database_url: str) -> Engine:
    """Create an engine; SQLite connections get foreign key enforcement."""
    engine = create_engine(database_url)

    if engine.dialect.name == "sqlite":

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection: Any, _: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def load_registry(path: Optional[str]) -> CascadeRegistry:
    """
    Load a cascade registry from a ``module:attribute`` path.

    The attribute may be a registry or a callable returning one. Without a
    path an empty registry is used.
    """
    if not path:
        return CascadeRegistry()

    module_name, _, attribute = path.partition(":")
    if not attribute:
        raise click.BadParameter(
            f"Expected module:attribute, got '{path}'", param_hint="--registry"
        )

    registry = getattr(importlib.import_module(module_name), attribute)
    if callable(registry) and not isinstance(registry, CascadeRegistry):
        registry = registry()
    if not isinstance(registry, CascadeRegistry):
        raise click.BadParameter(
            f"{path} is not a CascadeRegistry", param_hint="--registry"
        )
    return registry


def _get_service(ctx: click.Context) -> RecycleBinService:
    """Build the service for this invocation from the group options."""
    obj: Dict[str, Any] = ctx.obj
    if "service" in obj:
        return obj["service"]

    config = get_config()
    engine = _create_engine(obj["database_url"] or config.database_url)
    create_recycle_bin_tables(engine)

    session = Session(engine)
    ctx.call_on_close(session.close)

    service = RecycleBinService(
        session,
        load_registry(obj["registry"]),
        audit_logger=create_audit_logger(config, engine),
        config=config,
    )
    obj["service"] = service
    return service


def _coerce_id(model: Any, raw: str) -> Any:
    """Convert a command line ID to the type of the model's primary key."""
    column = sa_inspect(model).primary_key[0]
    try:
        return column.type.python_type(raw)
    except (NotImplementedError, TypeError, ValueError):
        return raw


def _format_timestamp(value: Any) -> str:
    if hasattr(value, "strftime"):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    return str(value or "")


@click.group(invoke_without_command=True)
@click.version_option(version=__version__)
@click.option(
    "--database-url",
    envvar="RECYCLE_BIN_DATABASE_URL",
    help="SQLAlchemy URL of the protected database",
)
@click.option(
    "--registry",
    "registry_path",
    envvar="RECYCLE_BIN_REGISTRY",
    help="Cascade registry to load, as module:attribute",
)
@click.pass_context
def cli(
    ctx: click.Context, database_url: Optional[str], registry_path: Optional[str]
) -> None:
    """Recycle Bin - reversible cascading deletes."""
    ctx.ensure_object(dict)
    ctx.obj.setdefault("database_url", database_url)
    ctx.obj.setdefault("registry", registry_path)

    logging.basicConfig(level=get_config().log_level)

    if ctx.invoked_subcommand is None:
        console.print(
            Panel.fit(
                f"[bold blue]Recycle Bin[/bold blue] v{__version__}\n"
                "[dim]Reversible cascading deletes[/dim]\n\n"
                "Use [bold]recycle-bin --help[/bold] to see available commands.",
                border_style="blue",
            )
        )


@cli.group()
def config() -> None:
    """Inspect recycle bin configuration."""
    pass


@config.command("show")
@click.option("--format", type=click.Choice(["table", "json", "yaml"]), default="table")
def config_show(format: str) -> None:
    """Display current configuration."""
    try:
        config_dict = get_config().to_dict()

        if format == "json":
            console.print_json(data=config_dict)
        elif format == "yaml":
            import yaml  # type: ignore[import-untyped]

            console.print(yaml.dump(config_dict, default_flow_style=False))
        else:
            table = Table(title="Recycle Bin Configuration", show_header=True)
            table.add_column("Setting", style="cyan")
            table.add_column("Value", style="green")

            categories = {
                "General": ["application_name", "environment", "database_url", "log_level"],
                "Deletion": ["retention_days", "deletion_key_length", "system_actor"],
                "Audit Trail": [
                    "audit_enabled",
                    "audit_storage_backend",
                    "audit_file_path",
                ],
            }

            for category, settings in categories.items():
                table.add_row(f"[bold]{category}[/bold]", "")
                for setting in settings:
                    value = config_dict.get(setting)
                    if value is None:
                        value = "[dim]Not configured[/dim]"
                    elif isinstance(value, bool):
                        value = "✓" if value else "✗"
                    table.add_row(f"  {setting}", str(value))

            console.print(table)

    except Exception as e:
        console.print(f"[red]Error loading configuration: {e}[/red]")
        sys.exit(1)


@cli.command("list")
@click.option("--entity-type", help="Only deletions of this root entity type")
@click.option("--limit", type=int, default=100, help="Maximum results to return")
@click.option("--offset", type=int, default=0, help="Results to skip")
@click.option("--format", type=click.Choice(["table", "json"]), default="table")
@click.pass_context
def list_deletions(
    ctx: click.Context, entity_type: Optional[str], limit: int, offset: int, format: str
) -> None:
    """List restorable deletions, newest first."""
    try:
        summaries = _get_service(ctx).list_manifests(
            entity_type=entity_type, limit=limit, offset=offset
        )

        if not summaries:
            console.print("[yellow]The recycle bin is empty[/yellow]")
            return

        if format == "json":
            console.print_json(data=[s.model_dump(mode="json") for s in summaries])
            return

        table = Table(title=f"Deletions (showing {len(summaries)})")
        table.add_column("Deletion Key", style="cyan", no_wrap=True)
        table.add_column("Entity", style="green")
        table.add_column("Name")
        table.add_column("Children", justify="right", style="yellow")
        table.add_column("Deleted By", style="blue")
        table.add_column("Deleted At", style="magenta")

        for summary in summaries:
            table.add_row(
                summary.deletion_key,
                f"{summary.root_entity_type}:{summary.root_id}",
                summary.root_display_name,
                str(summary.child_count),
                summary.deleted_by_name or summary.deleted_by or "",
                _format_timestamp(summary.created_at),
            )

        console.print(table)

    except Exception as e:
        console.print(f"[red]Error listing deletions: {e}[/red]")
        sys.exit(1)


@cli.command("stats")
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Display recycle bin statistics."""
    try:
        summary = _get_service(ctx).get_stats()

        console.print(
            Panel.fit(
                f"[bold]Recycle Bin Statistics[/bold]\n\n"
                f"Deletions: [cyan]{summary.total_manifests:,}[/cyan]\n"
                f"Snapshots: [cyan]{summary.total_snapshots:,}[/cyan]\n"
                f"Oldest: [green]{_format_timestamp(summary.oldest_deletion)}[/green]\n"
                f"Newest: [green]{_format_timestamp(summary.newest_deletion)}[/green]\n"
                f"Past {summary.retention_days}-day retention: "
                f"[red]{summary.expired_manifests}[/red]",
                border_style="blue",
            )
        )

        if summary.by_entity_type:
            table = Table(title="Deletions by Entity Type")
            table.add_column("Entity Type", style="cyan")
            table.add_column("Count", style="green")
            for entity_type, count in sorted(
                summary.by_entity_type.items(), key=lambda x: x[1], reverse=True
            ):
                table.add_row(entity_type, str(count))
            console.print(table)

    except Exception as e:
        console.print(f"[red]Error calculating statistics: {e}[/red]")
        sys.exit(1)


@cli.command("show")
@click.argument("deletion_key")
@click.pass_context
def show(ctx: click.Context, deletion_key: str) -> None:
    """Show one deletion and the tables it touched."""
    try:
        manifest = _get_service(ctx).get_manifest(deletion_key)

        tree = Tree(
            f"[bold]{manifest.root_entity_type}:{manifest.root_id}[/bold] "
            f"{manifest.root_display_name}"
        )
        tree.add(f"Deletion key: [cyan]{manifest.deletion_key}[/cyan]")
        tree.add(f"Deleted at: [magenta]{_format_timestamp(manifest.created_at)}[/magenta]")
        tree.add(f"Deleted by: [blue]{manifest.deleted_by_name or manifest.deleted_by}[/blue]")
        if manifest.reason:
            tree.add(f"Reason: {manifest.reason}")
        tree.add(f"Snapshots: [yellow]{manifest.snapshot_count}[/yellow]")

        tables_branch = tree.add("Tables (deletion order)")
        for table_name in manifest.table_order:
            tables_branch.add(f"[green]{table_name}[/green]")

        console.print(tree)

    except RecycleBinError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)


@cli.command("delete")
@click.argument("entity_type")
@click.argument("ids", nargs=-1, required=True)
@click.option("--reason", help="Reason recorded with each deletion")
@click.option("--user", help="Acting user ID for the audit trail")
@click.pass_context
def delete_entities(
    ctx: click.Context,
    entity_type: str,
    ids: List[str],
    reason: Optional[str],
    user: Optional[str],
) -> None:
    """Delete entities of ENTITY_TYPE with their dependents."""
    try:
        service = _get_service(ctx)
        if user:
            set_audit_context({"id": user})

        model = service.registry.resolve_model(entity_type)
        result = service.bulk_delete(
            model, [_coerce_id(model, raw) for raw in ids], reason=reason
        )

        for deleted in result.deleted:
            console.print(
                f"[green]✓[/green] Deleted {entity_type}:{deleted.id} "
                f"({deleted.snapshot_count} record(s)) key [cyan]{deleted.deletion_key}[/cyan]"
            )
        for failed in result.failed:
            console.print(f"[red]✗[/red] {entity_type}:{failed.id} not deleted")
            for reason_text in failed.reasons:
                console.print(f"  [red]• {reason_text}[/red]")

        if result.failed:
            sys.exit(1)

    except RecycleBinError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)


@cli.command("restore")
@click.argument("deletion_keys", nargs=-1, required=True)
@click.option("--user", help="Acting user ID for the audit trail")
@click.pass_context
def restore(ctx: click.Context, deletion_keys: List[str], user: Optional[str]) -> None:
    """Restore one or more deletions by key."""
    service = _get_service(ctx)
    if user:
        set_audit_context({"id": user})

    result = service.bulk_restore(list(deletion_keys))

    for restored in result.restored:
        console.print(
            f"[green]✓[/green] Restored {restored.entity_type}:{restored.restored_id}"
        )
    for failed in result.failed:
        console.print(f"[red]✗[/red] {failed.deletion_key}: {failed.error}")

    if result.failed:
        sys.exit(1)


@cli.command("purge")
@click.argument("deletion_key")
@click.confirmation_option(prompt="Purged deletions can never be restored. Continue?")
@click.pass_context
def purge(ctx: click.Context, deletion_key: str) -> None:
    """Permanently discard one deletion."""
    try:
        _get_service(ctx).purge_permanent(deletion_key)
        console.print(f"[green]✓[/green] Purged {deletion_key}")
    except RecycleBinError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)


@cli.command("purge-expired")
@click.option(
    "--days", type=int, help="Maximum age in days (defaults to retention_days)"
)
@click.confirmation_option(prompt="Purged deletions can never be restored. Continue?")
@click.pass_context
def purge_expired(ctx: click.Context, days: Optional[int]) -> None:
    """Permanently discard every deletion past the retention window."""
    try:
        count = _get_service(ctx).purge_expired(days)
        console.print(f"[green]✓[/green] Purged {count} expired deletion(s)")
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)


@cli.command("export")
@click.option("--output", type=click.Path(), required=True, help="Output file path")
@click.option("--format", type=click.Choice(["json", "csv", "excel"]), default="csv")
@click.option("--entity-type", help="Only deletions of this root entity type")
@click.pass_context
def export(
    ctx: click.Context, output: str, format: str, entity_type: Optional[str]
) -> None:
    """Export the recycle bin contents for reporting."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task("Exporting deletions...", total=None)

        try:
            service = _get_service(ctx)
            summaries: List[Any] = []
            while True:
                page = service.list_manifests(
                    entity_type=entity_type, limit=EXPORT_PAGE_SIZE, offset=len(summaries)
                )
                summaries.extend(page)
                if len(page) < EXPORT_PAGE_SIZE:
                    break

            progress.update(
                task, description=f"Found {len(summaries)} deletions, exporting..."
            )

            df = pd.DataFrame([s.model_dump() for s in summaries])
            if not df.empty:
                df["table_order"] = df["table_order"].apply(", ".join)

            output_path = Path(output)
            if format == "json":
                df.to_json(output_path, orient="records", date_format="iso", indent=2)
            elif format == "excel":
                df.to_excel(output_path, index=False, engine="openpyxl")
            else:  # csv
                df.to_csv(output_path, index=False)

            progress.stop()
            console.print(
                f"[green]✓ Exported {len(summaries)} deletions to {output_path}[/green]"
            )

        except Exception as e:
            progress.stop()
            console.print(f"[red]Error exporting deletions: {e}[/red]")
            sys.exit(1)


if __name__ == "__main__":
    cli()

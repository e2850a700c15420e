"""Typer CLI for the Kudu sink."""

from __future__ import annotations

import json
from pathlib import Path

import structlog
import typer
from rich.console import Console
from rich.table import Table

from kudu_sink.config.loader import load_settings
from kudu_sink.config.models import SinkSettings
from kudu_sink.dispatcher import SyncService
from kudu_sink.events import MutationEvent
from kudu_sink.observability.logs import configure_logging
from kudu_sink.template import KuduTemplate

logger = structlog.get_logger()
console = Console()
app = typer.Typer(name="kudu-sink", help="Kudu CDC sink CLI")


def _load(config_path: str, mappings_dir: str | None = None) -> SinkSettings:
    path = Path(config_path)
    if not path.exists():
        console.print(f"[red]Config file not found: {path}[/red]")
        raise typer.Exit(1)
    settings = load_settings(path, mappings_dir=mappings_dir)
    configure_logging(settings.logging)
    return settings


@app.command()
def validate(
    config_path: str = typer.Argument(..., help="Path to sink YAML"),
    mappings_dir: str | None = typer.Option(
        None, "--mappings-dir", help="Directory of per-table mapping YAML files"
    ),
) -> None:
    """Validate a sink configuration file."""
    try:
        settings = _load(config_path, mappings_dir)
    except typer.Exit:
        raise
    except Exception as exc:
        console.print(f"[red]Validation error:[/red] {exc}")
        raise typer.Exit(1) from exc

    masters = ",".join(settings.kudu.masters)
    console.print(f"[green]Valid[/green] — masters={masters}")
    console.print(
        f"  retry: budget={settings.retry.budget} "
        f"reconnect_every={settings.retry.reconnect_every}"
    )
    if not settings.mappings:
        console.print("  mappings: (none)")
        return

    table = Table(title="Mappings")
    table.add_column("Source", style="cyan")
    table.add_column("Target")
    table.add_column("Primary key")
    table.add_column("Masked")
    table.add_column("Batch", justify="right")
    for m in settings.mappings:
        table.add_row(
            f"{m.database}.{m.table}",
            m.target_table,
            ", ".join(m.primary_key_columns().values()) or "-",
            ", ".join(sorted(m.encryption_columns)) or "-",
            str(m.commit_batch),
        )
    console.print(table)


@app.command()
def count(
    config_path: str = typer.Argument(..., help="Path to sink YAML"),
    table_name: str = typer.Argument(..., help="Kudu table name"),
) -> None:
    """Count rows in a Kudu table (full scan)."""
    settings = _load(config_path)
    template = KuduTemplate.from_settings(settings)
    try:
        console.print(f"{table_name}: {template.count_rows(table_name)} rows")
    finally:
        template.close()


@app.command()
def replay(
    config_path: str = typer.Argument(..., help="Path to sink YAML"),
    events_path: str = typer.Argument(..., help="JSON-lines file of mutation events"),
    mappings_dir: str | None = typer.Option(
        None, "--mappings-dir", help="Directory of per-table mapping YAML files"
    ),
) -> None:
    """Apply decoded mutation events from a file, one JSON object per line."""
    settings = _load(config_path, mappings_dir)
    path = Path(events_path)
    if not path.exists():
        console.print(f"[red]Events file not found: {path}[/red]")
        raise typer.Exit(1)

    template = KuduTemplate.from_settings(settings)
    service = SyncService(template)
    applied = skipped = 0
    try:
        with path.open() as f:
            for lineno, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    event = MutationEvent.from_dict(json.loads(line))
                except ValueError as exc:
                    logger.error("replay.bad_event", line=lineno, error=str(exc))
                    skipped += 1
                    continue
                mapping = settings.mapping_for(event.database, event.table)
                if mapping is None:
                    skipped += 1
                    continue
                service.sync(mapping, event)
                applied += 1
    finally:
        template.close()
    console.print(f"[green]Replayed[/green] {applied} event(s), skipped {skipped}")


@app.command()
def truncate(
    config_path: str = typer.Argument(..., help="Path to sink YAML"),
    table_name: str = typer.Argument(..., help="Kudu table name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    buckets: int | None = typer.Option(
        None,
        "--buckets",
        help="Hash bucket count for the new table (default: inferred from tablets)",
    ),
) -> None:
    """Empty a Kudu table by recreating it."""
    settings = _load(config_path)
    if not yes:
        confirm = typer.confirm(f"Truncate '{table_name}'?")
        if not confirm:
            console.print("[yellow]Cancelled[/yellow]")
            raise typer.Exit(0)

    template = KuduTemplate.from_settings(settings)
    try:
        template.truncate(table_name, num_buckets=buckets)
    except Exception as exc:
        console.print(f"[red]Truncate failed:[/red] {exc}")
        raise typer.Exit(1) from exc
    finally:
        template.close()
    console.print(f"[green]Truncated[/green] {table_name}")

"""CLI entry point for the gloss export job.

Commands:
- glossexport                 run the export once (same as `run`)
- glossexport run             run the export once
- glossexport init [--demo]   create the schema, optionally with demo data
- glossexport status          show completion and pending changes (local only)
- glossexport languages       list language folders in the content store
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from glossexport import __version__
from glossexport.config import ConfigError, Settings
from glossexport.db.connection import init_db, managed_connection
from glossexport.db.demo import load_demo_data
from glossexport.db.schema import get_schema_version
from glossexport.export.changes import ChangeTracker
from glossexport.export.completion import CompletionDetector
from glossexport.pipeline.orchestrator import (
    ExportOrchestrator,
    OutcomeStatus,
    RunAbortedError,
    RunSummary,
)
from glossexport.pipeline.stages import log_export
from glossexport.sync.auth import AuthError, SecurityError, resolve_token, setup_logging
from glossexport.sync.client import SyncClient
from glossexport.sync.models import SyncError

console = Console()

STATUS_STYLES = {
    OutcomeStatus.SUCCESS: "green",
    OutcomeStatus.SKIPPED: "dim",
    OutcomeStatus.CONFLICT_EXHAUSTED: "yellow",
    OutcomeStatus.INTEGRITY_ERROR: "red",
    OutcomeStatus.FAILED: "red",
}


def _load_settings(config: str | None, db: str | None) -> Settings:
    try:
        settings = Settings.load(config)
    except ConfigError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        sys.exit(2)
    if db:
        settings.db_path = Path(db)
    return settings


@click.group(invoke_without_command=True)
@click.version_option(version=__version__)
@click.option("--config", "-c", type=click.Path(dir_okay=False), help="YAML config file")
@click.option("--log-level", default="info", help="Log level")
@click.pass_context
def cli(ctx: click.Context, config: str | None, log_level: str):
    """Export completed gloss books to the content store."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    setup_logging(log_level)
    if ctx.invoked_subcommand is None:
        ctx.invoke(run)


@cli.command()
@click.option("--db", type=click.Path(dir_okay=False), help="Override database path")
@click.option("--workers", type=int, default=None, help="Parallel language syncs")
@click.option("--timeout", type=float, default=None, help="Run timeout in seconds")
@click.option("--json", "as_json", is_flag=True, help="Print the run summary as JSON")
@click.pass_context
def run(
    ctx: click.Context,
    db: str | None = None,
    workers: int | None = None,
    timeout: float | None = None,
    as_json: bool = False,
):
    """Run the export pipeline once."""
    settings = _load_settings(ctx.obj.get("config"), db)
    if workers is not None:
        settings.max_workers = workers
    if timeout is not None:
        settings.run_timeout = timeout

    try:
        settings.validate()
        if not settings.repo:
            raise ConfigError("repo is not configured (GLOSSEXPORT_REPO)")
        token = resolve_token(settings.token, settings.token_path)
    except (ConfigError, AuthError, SecurityError) as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(2)

    try:
        with managed_connection(settings.db_path) as conn:
            if get_schema_version(conn) is None:
                console.print(
                    f"[red]Database at {settings.db_path} is not initialized. "
                    "Run 'glossexport init' first.[/red]"
                )
                sys.exit(2)
            with SyncClient.from_settings(settings, token) as client:
                orchestrator = ExportOrchestrator(
                    conn,
                    client,
                    max_workers=settings.max_workers,
                    run_timeout=settings.run_timeout,
                    settle_events=settings.settle_events,
                )
                summary = orchestrator.run()
    except RunAbortedError as e:
        log_export(f"export aborted: {e}")
        console.print(f"[red]Export aborted: {e}[/red]")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(summary.to_dict(), indent=2))
    else:
        _print_summary(summary)

    if not summary.ok:
        sys.exit(1)


def _print_summary(summary: RunSummary) -> None:
    table = Table(title="Export Summary")
    table.add_column("Language", style="cyan")
    table.add_column("Status")
    table.add_column("Books")
    table.add_column("Written")
    table.add_column("Events")
    table.add_column("Detail", style="dim")

    for outcome in summary.outcomes:
        style = STATUS_STYLES[outcome.status]
        table.add_row(
            outcome.language_code,
            f"[{style}]{outcome.status.value}[/{style}]",
            ", ".join(outcome.books) or "-",
            "yes" if outcome.written else "no",
            str(outcome.settled_events),
            outcome.settle_error or outcome.message,
        )
    console.print(table)


@cli.command()
@click.option("--db", type=click.Path(dir_okay=False), help="Override database path")
@click.option("--demo", is_flag=True, help="Load the demo corpus")
@click.pass_context
def init(ctx: click.Context, db: str | None, demo: bool):
    """Initialize the database schema."""
    settings = _load_settings(ctx.obj.get("config"), db)
    db_path = settings.db_path
    db_path.parent.mkdir(parents=True, exist_ok=True)

    with managed_connection(db_path) as conn:
        init_db(conn)
        if demo:
            load_demo_data(conn)

    suffix = " with demo data" if demo else ""
    console.print(f"[green]✓ Database initialized at {db_path}{suffix}[/green]")


@cli.command()
@click.option("--db", type=click.Path(dir_okay=False), help="Override database path")
@click.pass_context
def status(ctx: click.Context, db: str | None):
    """Show per-book completion and pending changes without remote I/O."""
    settings = _load_settings(ctx.obj.get("config"), db)
    if not settings.db_path.exists():
        console.print(f"[yellow]No database at {settings.db_path}[/yellow]")
        console.print("[dim]Have you run 'glossexport init'?[/dim]")
        sys.exit(1)

    with managed_connection(settings.db_path) as conn:
        codes = {r["id"]: r["code"] for r in conn.execute("SELECT id, code FROM languages")}
        books = {r["id"]: r["name"] for r in conn.execute("SELECT id, name FROM books")}
        progress = CompletionDetector(conn).progress()
        pending = ChangeTracker(conn).pending_events()

    table = Table(title="Gloss Completion")
    table.add_column("Language", style="cyan")
    table.add_column("Book")
    table.add_column("Approved", justify="right")
    table.add_column("Complete")
    table.add_column("Pending Events", justify="right")

    for row in progress:
        complete = row["approved_count"] == row["word_count"]
        events = pending.get((row["language_id"], row["book_id"]), [])
        table.add_row(
            codes.get(row["language_id"], str(row["language_id"])),
            books.get(row["book_id"], str(row["book_id"])),
            f"{row['approved_count']}/{row['word_count']}",
            "[green]yes[/green]" if complete else "no",
            str(len(events)),
        )
    console.print(table)


@cli.command()
@click.pass_context
def languages(ctx: click.Context):
    """List language folders present in the content store."""
    settings = _load_settings(ctx.obj.get("config"), None)
    try:
        if not settings.repo:
            raise ConfigError("repo is not configured (GLOSSEXPORT_REPO)")
        token = resolve_token(settings.token, settings.token_path)
        with SyncClient.from_settings(settings, token) as client:
            folders = client.list_language_folders()
    except (ConfigError, AuthError, SecurityError, SyncError) as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    if not folders:
        console.print("[yellow]No language folders found[/yellow]")
        return
    for name in folders:
        console.print(name)


if __name__ == "__main__":
    cli()

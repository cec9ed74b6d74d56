"""CLI interface for sitepress."""

import logging
import signal
import threading
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from sitepress.analytics.models import EngagementEvent
from sitepress.analytics.store import JsonAnalyticsStore
from sitepress.config import (
    ConfigError,
    SitepressConfig,
    load_config,
    merge_cli_overrides,
    require_valid,
)
from sitepress.content.store import StoreError, create_store
from sitepress.ingest.engine import ReconciliationEngine
from sitepress.ingest.report import IngestionReport
from sitepress.pipeline.publish import PipelineRunResult, create_pipeline
from sitepress.pipeline.stages import StageResult, StageStatus
from sitepress.scheduler import CronError, StageScheduler, schedule_entries

app = typer.Typer(
    name="sitepress",
    help="Ingest markdown content and publish static site artifacts.",
)

console = Console()

_STATUS_STYLE = {
    StageStatus.SUCCEEDED: "green",
    StageStatus.FAILED: "red",
    StageStatus.SKIPPED: "yellow",
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        from sitepress import __version__

        console.print(f"sitepress {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
        force=True,
    )


@app.callback()
def main(
    ctx: typer.Context,
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to a sitepress TOML config file."),
    ] = None,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Output directory for generated artifacts."),
    ] = None,
    state_dir: Annotated[
        Path | None,
        typer.Option("--state-dir", help="Directory for the content store and stage ledger."),
    ] = None,
    base_url: Annotated[
        str | None,
        typer.Option("--base-url", help="Public base URL of the site."),
    ] = None,
    backend: Annotated[
        str | None,
        typer.Option("--backend", help="Content store backend (json or sqlite)."),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Enable debug logging."),
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
) -> None:
    """Sitepress - keep a content store and its published artifacts in sync."""
    _configure_logging(verbose)
    ctx.obj = {
        "config_path": config_path,
        "overrides": {
            "output_directory": str(output) if output else None,
            "state_directory": str(state_dir) if state_dir else None,
            "base_url": base_url,
            "store_backend": backend,
        },
    }


def _load(ctx: typer.Context, *, validate: bool = True) -> SitepressConfig:
    obj = ctx.obj or {}
    try:
        config = load_config(obj.get("config_path"))
        config = merge_cli_overrides(config, **obj.get("overrides", {}))
        if validate:
            require_valid(config)
    except ConfigError as exc:
        console.print("[red]Error:[/red] invalid configuration")
        for problem in exc.errors:
            console.print(f"  - {problem}")
        raise typer.Exit(1) from None
    except ValueError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1) from None
    return config


def _print_reports(reports: list[IngestionReport]) -> None:
    table = Table(title="Ingestion")
    table.add_column("Source")
    table.add_column("Found", justify="right")
    table.add_column("Created", justify="right")
    table.add_column("Updated", justify="right")
    table.add_column("Unchanged", justify="right")
    table.add_column("Deleted", justify="right")
    table.add_column("Errors", justify="right")
    for report in reports:
        source = report.source_id + (" (dry run)" if report.dry_run else "")
        table.add_row(
            source,
            str(report.files_found),
            str(report.created_count),
            str(report.updated_count),
            str(report.unchanged_count),
            str(report.deleted_count),
            str(report.error_count),
        )
    console.print(table)

    for report in reports:
        if report.source_error:
            console.print(f"[red]{report.source_id}:[/red] {report.source_error}")
        for error in report.errors:
            where = error.path or error.slug or report.source_id
            console.print(f"[yellow]{where}:[/yellow] {error.message}")
        if report.orphan_cleanup_skipped:
            console.print(
                f"[yellow]{report.source_id}:[/yellow] orphan cleanup skipped "
                f"({report.orphan_cleanup_skipped})"
            )


def _print_stage_results(results: list[StageResult]) -> None:
    table = Table(title="Stages")
    table.add_column("Stage")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Details")
    for result in results:
        style = _STATUS_STYLE[result.status]
        details = result.error or ", ".join(f"{k}={v}" for k, v in result.stats.items())
        table.add_row(
            result.stage,
            f"[{style}]{result.status}[/{style}]",
            f"{result.duration_ms}ms",
            details,
        )
    console.print(table)


def _reconcile(ctx: typer.Context, source: list[str] | None, *, dry_run: bool) -> None:
    config = _load(ctx)
    try:
        store = create_store(config.store.backend, config.state_dir)
    except StoreError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1) from None
    engine = ReconciliationEngine.from_config(config, store)

    source_ids = source or engine.source_ids
    if not source_ids:
        console.print("[yellow]No content sources configured.[/yellow]")
        raise typer.Exit(0)

    reports = [engine.reconcile(source_id, dry_run=dry_run) for source_id in source_ids]
    _print_reports(reports)
    if any(not r.succeeded for r in reports):
        raise typer.Exit(1)


@app.command()
def ingest(
    ctx: typer.Context,
    source: Annotated[
        list[str] | None,
        typer.Option("--source", "-s", help="Only reconcile these source ids."),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Classify changes without writing."),
    ] = False,
    keep_orphans: Annotated[
        bool,
        typer.Option("--keep-orphans", help="Do not delete records whose file is gone."),
    ] = False,
) -> None:
    """Reconcile content sources into the content store."""
    if keep_orphans:
        obj = ctx.obj or {}
        obj.setdefault("overrides", {})["delete_orphans"] = False
        ctx.obj = obj
    _reconcile(ctx, source, dry_run=dry_run)


@app.command()
def plan(
    ctx: typer.Context,
    source: Annotated[
        list[str] | None,
        typer.Option("--source", "-s", help="Only plan these source ids."),
    ] = None,
) -> None:
    """Show what ingestion would create, update, and delete."""
    _reconcile(ctx, source, dry_run=True)


@app.command(name="run")
def run_cmd(
    ctx: typer.Context,
    stage: Annotated[str, typer.Argument(help="Stage name, e.g. sitemap or publish.")],
    timeout: Annotated[
        float | None,
        typer.Option("--timeout", help="Fail the stage if it runs longer than this (seconds)."),
    ] = None,
) -> None:
    """Run a single pipeline stage now."""
    config = _load(ctx)
    pipeline = create_pipeline(config)
    try:
        result = pipeline.run_stage(stage, timeout=timeout)
    except KeyError:
        names = ", ".join(s.name for s in pipeline.stages)
        console.print(f"[red]Error:[/red] Unknown stage: {stage} (available: {names})")
        raise typer.Exit(1) from None
    _print_stage_results([result])
    if result.status == StageStatus.FAILED:
        raise typer.Exit(1)


@app.command()
def publish(
    ctx: typer.Context,
    timeout: Annotated[
        float | None,
        typer.Option("--timeout", help="Per-stage timeout in seconds."),
    ] = None,
) -> None:
    """Run every pipeline stage in order."""
    config = _load(ctx)
    pipeline = create_pipeline(config)
    run: PipelineRunResult = pipeline.run_all(timeout=timeout)
    _print_stage_results(run.results)
    console.print(
        f"[green]{run.succeeded} succeeded[/green], [red]{run.failed} failed[/red], "
        f"[yellow]{run.skipped} skipped[/yellow] in {run.duration_ms}ms"
    )
    if not run.ok:
        raise typer.Exit(1)


@app.command()
def stages(ctx: typer.Context) -> None:
    """List pipeline stages with their schedule and last result."""
    config = _load(ctx, validate=False)
    pipeline = create_pipeline(config)
    try:
        entries = {e.stage: e for e in schedule_entries(pipeline.stages, config)}
    except CronError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1) from None

    table = Table(title="Pipeline stages")
    table.add_column("Stage")
    table.add_column("Cadence")
    table.add_column("Startup")
    table.add_column("Depends on")
    table.add_column("Last status")
    for stage in pipeline.stages:
        entry = entries[stage.name]
        last = pipeline.ledger.last_status(stage.name)
        cadence = stage.cadence if entry.enabled else f"{stage.cadence} (disabled)"
        table.add_row(
            stage.name,
            cadence,
            "yes" if entry.run_on_startup else "no",
            ", ".join(stage.depends_on) or "-",
            str(last) if last else "never",
        )
    console.print(table)


@app.command()
def schedule(
    ctx: typer.Context,
    startup: Annotated[
        bool,
        typer.Option("--startup/--no-startup", help="Run startup stages before scheduling."),
    ] = True,
    timeout: Annotated[
        float | None,
        typer.Option("--timeout", help="Per-stage timeout in seconds."),
    ] = None,
) -> None:
    """Run stages on their cadences until interrupted."""
    config = _load(ctx)
    pipeline = create_pipeline(config)
    try:
        scheduler = StageScheduler(
            pipeline, schedule_entries(pipeline.stages, config), timeout=timeout
        )
    except CronError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1) from None

    stop = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stop.set())
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    console.print(f"[green]Scheduling {len(scheduler.entries)} stage(s); Ctrl-C to stop[/green]")
    scheduler.run_forever(stop, run_startup=startup)
    scheduler.join(timeout=timeout)


@app.command(name="record-view")
def record_view(
    ctx: typer.Context,
    page_url: Annotated[str, typer.Argument(help="Path or URL of the viewed page.")],
    session: Annotated[str, typer.Option("--session", help="Visitor session id.")],
    time_ms: Annotated[
        int,
        typer.Option("--time-ms", min=0, help="Time spent on the page in milliseconds."),
    ] = 0,
) -> None:
    """Record one engagement event for analytics aggregation."""
    config = _load(ctx, validate=False)
    store = JsonAnalyticsStore(config.state_dir)
    try:
        event = store.record_event(
            EngagementEvent(page_url=page_url, session_id=session, time_on_page_ms=time_ms)
        )
    except StoreError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1) from None
    console.print(f"Recorded {event.id} for {event.page_url}")

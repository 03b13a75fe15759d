"""CLI entry point for fcsync."""

import logging
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from fcsync import __version__
from fcsync.config import Settings, load_settings
from fcsync.engine.models import LaneOutcome, RunOutcome
from fcsync.engine.pool import WorkerPool
from fcsync.engine.reconcile import sample_histograms
from fcsync.errors import ConfigError, DecodeError, RunDirectoryError
from fcsync.logs import setup_logging
from fcsync.rundir import read_run_directory

logger = logging.getLogger(__name__)

console = Console()
app = typer.Typer(
    name="fcsync",
    help="fcsync - Flow Cell Sync\n\nIngest sequencer run directories into a flow cell tracking service.",
    add_completion=False,
    no_args_is_help=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)

ConfigOption = Annotated[
    Optional[Path], typer.Option("--config", "-c", help="TOML configuration file")
]
VerboseOption = Annotated[bool, typer.Option("--verbose", "-v", help="Increase log output")]
QuietOption = Annotated[bool, typer.Option("--quiet", "-q", help="Only log warnings and errors")]


def _settings(config: Optional[Path], overrides: dict[str, Any]) -> Settings:
    try:
        settings = load_settings(config, overrides)
    except ConfigError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(2)
    setup_logging(verbose=settings.verbose, quiet=settings.quiet)
    return settings


def _lane_summary(lanes: list[LaneOutcome]) -> str:
    if not lanes:
        return "-"
    failed = [str(lane.lane) for lane in lanes if not lane.succeeded]
    if failed:
        return f"[red]{len(lanes) - len(failed)}/{len(lanes)}[/red] (failed: {', '.join(failed)})"
    return f"[green]{len(lanes)}/{len(lanes)}[/green]"


def _summary_table(outcomes: list[RunOutcome]) -> Table:
    table = Table(title="Ingest summary")
    table.add_column("Run directory")
    table.add_column("Flow cell")
    table.add_column("Metadata")
    table.add_column("Histograms")
    table.add_column("Lanes")
    table.add_column("Posted", justify="right")
    table.add_column("Result")
    for outcome in outcomes:
        table.add_row(
            Path(outcome.path).name,
            outcome.flowcell or "-",
            outcome.metadata.action.value if outcome.metadata else "-",
            outcome.adapters.action.value if outcome.adapters else "-",
            _lane_summary(outcome.lanes),
            str(outcome.histograms_submitted),
            "[green]ok[/green]" if outcome.succeeded else f"[red]{outcome.error or 'lane failure'}[/red]",
        )
    return table


@app.command()
def ingest(
    paths: Annotated[list[Path], typer.Argument(help="Run directories to ingest")],
    project_uuid: Annotated[
        Optional[str], typer.Option("--project-uuid", help="UUID of the project to import into")
    ] = None,
    register: Annotated[
        Optional[bool], typer.Option("--register/--no-register", help="Register unknown flow cells")
    ] = None,
    update: Annotated[
        Optional[bool], typer.Option("--update/--no-update", help="Update known flow cells")
    ] = None,
    update_if_final: Annotated[
        Optional[bool],
        typer.Option("--update-if-final", help="Update flow cells whose status is final"),
    ] = None,
    analyze_adapters: Annotated[
        Optional[bool],
        typer.Option("--analyze-adapters/--no-analyze-adapters", help="Compute index histograms"),
    ] = None,
    force_analyze_adapters: Annotated[
        Optional[bool],
        typer.Option("--force-analyze-adapters", help="Recompute histograms already stored"),
    ] = None,
    post_adapters: Annotated[
        Optional[bool],
        typer.Option("--post-adapters/--no-post-adapters", help="Submit computed histograms"),
    ] = None,
    sample_reads_per_tile: Annotated[
        Optional[int], typer.Option("--sample-reads-per-tile", help="Reads to sample per lane")
    ] = None,
    min_index_fraction: Annotated[
        Optional[float],
        typer.Option("--min-index-fraction", help="Minimal share of an index to keep it"),
    ] = None,
    operator: Annotated[
        Optional[str], typer.Option("--operator", help="Operator of newly registered flow cells")
    ] = None,
    threads: Annotated[Optional[int], typer.Option("--threads", "-t", help="Worker threads")] = None,
    web_url: Annotated[Optional[str], typer.Option("--web-url", help="URL of the service")] = None,
    log_token: Annotated[
        Optional[bool], typer.Option("--log-token", help="Write the API token to the log")
    ] = None,
    config: ConfigOption = None,
    verbose: VerboseOption = False,
    quiet: QuietOption = False,
):
    """Register run directories with the flow cell service.

    Unknown flow cells are registered, known ones updated, and index
    histograms are sampled and submitted where the service lacks them.
    """
    from fcsync.api import HttpFlowcellService
    from fcsync.engine.reconcile import ReconciliationEngine

    settings = _settings(
        config,
        {
            "threads": threads,
            "log_token": log_token,
            "verbose": verbose or None,
            "quiet": quiet or None,
            "web": {"url": web_url},
            "ingest": {
                "project_uuid": project_uuid,
                "register": register,
                "update": update,
                "update_if_final": update_if_final,
                "analyze_adapters": analyze_adapters,
                "force_analyze_adapters": force_analyze_adapters,
                "post_adapters": post_adapters,
                "operator": operator,
                "sample_reads_per_tile": sample_reads_per_tile,
                "min_index_fraction": min_index_fraction,
            },
        },
    )
    if not settings.ingest.project_uuid:
        console.print("[red]Error: no project UUID given (--project-uuid)[/red]")
        raise typer.Exit(2)
    if not settings.web.url:
        console.print("[red]Error: no service URL configured (--web-url or web.url)[/red]")
        raise typer.Exit(2)
    logger.info("Using %s with token %s", settings.web.url, settings.masked_token())

    with HttpFlowcellService(settings.web.url, settings.web.token) as service:
        engine = ReconciliationEngine(service, settings)
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            disable=settings.quiet,
        ) as progress:
            task = progress.add_task("Ingesting...", total=len(paths))

            def _advance(outcome: RunOutcome) -> None:
                progress.update(task, advance=1, description=f"Ingested {Path(outcome.path).name}")

            outcomes = engine.ingest(paths, on_run=_advance)

    console.print()
    console.print(_summary_table(outcomes))
    if not all(outcome.succeeded for outcome in outcomes):
        raise typer.Exit(1)


@app.command()
def inspect(
    path: Annotated[Path, typer.Argument(help="Run directory to inspect")],
    histograms: Annotated[
        bool, typer.Option("--histograms", help="Also sample index histograms")
    ] = False,
    threads: Annotated[Optional[int], typer.Option("--threads", "-t", help="Worker threads")] = None,
    sample_reads_per_tile: Annotated[
        Optional[int], typer.Option("--sample-reads-per-tile", help="Reads to sample per lane")
    ] = None,
    config: ConfigOption = None,
    verbose: VerboseOption = False,
    quiet: QuietOption = False,
):
    """Show what fcsync reads from a run directory, without contacting the service."""
    settings = _settings(
        config,
        {
            "threads": threads,
            "verbose": verbose or None,
            "quiet": quiet or None,
            "ingest": {"sample_reads_per_tile": sample_reads_per_tile},
        },
    )
    try:
        descriptor = read_run_directory(path)
    except (RunDirectoryError, DecodeError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    table = Table(show_header=False, box=None)
    table.add_row("Run", descriptor.run_id)
    table.add_row("Layout", descriptor.layout.value)
    table.add_row("Instrument", descriptor.instrument)
    table.add_row("Run number", str(descriptor.run_number))
    table.add_row("Flow cell", f"{descriptor.flowcell} (slot {descriptor.flowcell_slot})")
    table.add_row("Date", descriptor.date)
    table.add_row("RTA version", descriptor.rta_version or "-")
    table.add_row("Lanes", str(descriptor.lane_count))
    for name, reads in descriptor.describe_reads().items():
        table.add_row(f"{name.capitalize()} reads", reads or "-")
    table.add_row("Cycles available", str(descriptor.cycles_available))
    table.add_row("Complete", "yes" if descriptor.is_complete else "no")
    console.print(Panel(table, title=Path(descriptor.path).name, border_style="blue"))

    if not histograms:
        return
    try:
        lanes = sample_histograms(
            descriptor, settings.ingest.histogram_settings(), WorkerPool(settings.threads)
        )
    except DecodeError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    failed = False
    for lane in lanes:
        if not lane.succeeded:
            failed = True
            console.print(f"[red]Lane {lane.lane} failed: {lane.error}[/red]")
            continue
        for histogram in lane.histograms:
            title = f"Lane {lane.lane}, index {histogram.index_no}"
            if histogram.truncated:
                title += f" (truncated to {histogram.cycles_decoded} cycles)"
            hist_table = Table(title=title)
            hist_table.add_column("Index")
            hist_table.add_column("Reads", justify="right")
            hist_table.add_column("Fraction", justify="right")
            for sequence, count in histogram.top(10):
                hist_table.add_row(sequence, str(count), f"{count / histogram.sample_size:.2%}")
            console.print(hist_table)
            console.print(
                f"[dim]{histogram.sample_size} reads sampled from tile {histogram.tile or '-'}[/dim]"
            )
    if failed:
        raise typer.Exit(1)


@app.command()
def version():
    """Show version information."""
    console.print(f"fcsync v{__version__}")
    console.print("Flow Cell Sync")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()

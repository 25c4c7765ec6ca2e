"""CLI entry point for the Interactivity Analyzer."""

import asyncio
import json
import logging
import typer
from pathlib import Path
from rich.console import Console
from rich.logging import RichHandler
from interactivity_agent.artifacts import ArtifactCache, Trace, default_artifacts
from interactivity_agent.errors import (
    InteractivityError,
    InvalidCaptureError,
    ShortTraceError,
    TraceBusyError
)
from interactivity_agent.report import generate_report_json, serialize_report
from interactivity_agent.tasks import LONG_TASK_THRESHOLD_MS

app = typer.Typer(
    help="Interactivity Analyzer - First Interactive and report scoring for page-load traces",
    no_args_is_help=True
)
console = Console()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True
    )


def _check_file(path: Path, label: str) -> None:
    if not path.exists():
        console.print(f"[red]Error:[/red] {label} not found: {path}")
        raise typer.Exit(code=1)
    if not path.is_file():
        console.print(f"[red]Error:[/red] Path is not a file: {path}")
        raise typer.Exit(code=1)


def _load_json(path: Path) -> dict:
    with open(path, "r") as f:
        return json.load(f)


def _capture_message(error: InteractivityError) -> str:
    if isinstance(error, ShortTraceError):
        return (
            "Trace ends less than 5s after first meaningful paint; "
            "record a longer trace so a quiet window can be observed."
        )
    if isinstance(error, TraceBusyError):
        return (
            "Main thread was never quiet long enough before the trace ended; "
            "record a longer trace or reduce main-thread work after load."
        )
    return str(error)


async def _first_interactive(trace_path: Path, long_task_ms: float) -> dict:
    trace = Trace(path=str(trace_path))
    cache = ArtifactCache(default_artifacts(long_task_ms))
    try:
        timestamps = await cache.request_trace_of_tab(trace)
        result = await cache.request_first_interactive(trace)
    finally:
        trace.close()
    return {**result.to_dict(), "timings": timestamps.to_dict()}


def _run_first_interactive(trace: Path, long_task_ms: float) -> dict:
    try:
        return asyncio.run(_first_interactive(trace, long_task_ms))
    except InvalidCaptureError as e:
        console.print(f"[yellow]Invalid capture:[/yellow] {_capture_message(e)}")
        raise typer.Exit(code=2)
    except Exception as e:
        console.print(f"[red]Error during analysis:[/red] {e}")
        raise typer.Exit(code=1)


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """Interactivity Analyzer - First Interactive and report scoring for page-load traces."""
    if ctx.invoked_subcommand is None:
        # Show help if no subcommand is provided
        pass


@app.command("first-interactive")
def first_interactive(
    trace: Path = typer.Option(..., "--trace", help="Path to Chrome/Perfetto trace file"),
    out: Path = typer.Option("first_interactive.json", "--out", help="Output JSON file path"),
    long_task_ms: float = typer.Option(
        LONG_TASK_THRESHOLD_MS,
        "--long-task-ms",
        envvar="INTERACTIVITY_LONG_TASK_MS",
        help="Threshold for long tasks in milliseconds"
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Log artifact computation details"),
):
    """Compute First Interactive for a trace and write it as JSON."""
    _setup_logging(verbose)
    _check_file(trace, "Trace file")

    console.print(f"[blue]Analyzing trace:[/blue] {trace}")
    console.print(f"[blue]Long task threshold:[/blue] {long_task_ms}ms")

    result = _run_first_interactive(trace, long_task_ms)
    with open(out, "w") as f:
        json.dump(result, f, indent=2)

    console.print(f"[green]✓[/green] First Interactive: {result['timeInMs']:.1f}ms")
    console.print(f"[green]✓[/green] Written to: {out}")


@app.command()
def score(
    config: Path = typer.Option(..., "--config", help="Path to scoring config JSON"),
    results: Path = typer.Option(..., "--results", help="Path to audit results JSON"),
    out: Path = typer.Option("report.json", "--out", help="Output JSON file path"),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging"),
):
    """Score audit results against a category config and write the report JSON."""
    _setup_logging(verbose)
    _check_file(config, "Config file")
    _check_file(results, "Results file")

    report = generate_report_json(_load_json(config), _load_json(results))
    with open(out, "w") as f:
        f.write(serialize_report(report))

    console.print(f"[green]✓[/green] Report score: {report['score']:.1f}")
    console.print(f"[green]✓[/green] Report written to: {out}")


@app.command()
def analyze(
    trace: Path = typer.Option(..., "--trace", help="Path to Chrome/Perfetto trace file"),
    config: Path = typer.Option(..., "--config", help="Path to scoring config JSON"),
    results: Path = typer.Option(..., "--results", help="Path to audit results JSON"),
    out: Path = typer.Option("report.json", "--out", help="Output JSON file path"),
    long_task_ms: float = typer.Option(
        LONG_TASK_THRESHOLD_MS,
        "--long-task-ms",
        envvar="INTERACTIVITY_LONG_TASK_MS",
        help="Threshold for long tasks in milliseconds"
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Log artifact computation details"),
):
    """Compute First Interactive and the report score in one output file."""
    _setup_logging(verbose)
    for path, label in [(trace, "Trace file"), (config, "Config file"), (results, "Results file")]:
        _check_file(path, label)

    try:
        first_interactive_data = asyncio.run(_first_interactive(trace, long_task_ms))
    except InvalidCaptureError as e:
        console.print(f"[yellow]First Interactive unavailable:[/yellow] {_capture_message(e)}")
        first_interactive_data = {"error": _capture_message(e)}
    except Exception as e:
        console.print(f"[red]Error during analysis:[/red] {e}")
        raise typer.Exit(code=1)

    report = generate_report_json(_load_json(config), _load_json(results))
    with open(out, "w") as f:
        f.write(serialize_report({"firstInteractive": first_interactive_data, "report": report}))

    console.print(f"[green]✓[/green] Report score: {report['score']:.1f}")
    console.print(f"[green]✓[/green] Analysis complete: {out}")


if __name__ == "__main__":
    app()

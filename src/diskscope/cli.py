"""CLI interface for diskscope."""

import time
from pathlib import Path
from typing import Optional

import typer
from rich.markup import escape

from diskscope import __version__
from diskscope.config import Settings
from diskscope.context import open_context
from diskscope.display import (
    console,
    format_size,
    show_metrics,
    show_progress_summary,
    show_scanning_progress,
    show_tree_report,
)
from diskscope.errors import RootUnavailable
from diskscope.metrics import MetricsSampler
from diskscope.session import ScanSession

# Create Typer app
app = typer.Typer(
    name="diskscope",
    help="Live disk usage explorer and system monitor",
    add_completion=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"diskscope version {__version__}")
        raise typer.Exit()


def _settings(
    dry_run: Optional[bool] = None,
    debug: Optional[bool] = None,
    workers: Optional[int] = None,
) -> Settings:
    try:
        return Settings.from_env(dry_run=dry_run or None, debug=debug or None, concurrency=workers)
    except ValueError as e:
        console.print(f"[red]Invalid configuration: {escape(str(e))}[/red]")
        raise typer.Exit(2)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """diskscope - see where your disk space went, live."""
    # If no command specified, launch the dashboard on the current directory
    if ctx.invoked_subcommand is None:
        ctx.invoke(ui, path=Path("."), dry_run=False, debug=False, workers=None)


@app.command()
def ui(
    path: Path = typer.Argument(Path("."), help="Directory to explore"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Never delete; show actions as if taken"),
    debug: bool = typer.Option(False, "--debug", help="Verbose diagnostics"),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="Scan worker count"),
) -> None:
    """Launch the interactive dashboard."""
    from diskscope.tui import run_dashboard

    settings = _settings(dry_run, debug, workers)
    with open_context(settings) as run_ctx:
        run_dashboard(str(path.expanduser()), ctx=run_ctx)


@app.command()
def scan(
    path: Path = typer.Argument(Path("."), help="Directory to scan"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of entries to show"),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Stop after this many seconds and show partial results"
    ),
    debug: bool = typer.Option(False, "--debug", help="Verbose diagnostics"),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="Scan worker count"),
) -> None:
    """Scan a directory and print its largest entries."""
    settings = _settings(debug=debug, workers=workers)

    with open_context(settings, console=console) as run_ctx:
        session = ScanSession(str(path.expanduser()), run_ctx)
        try:
            session.start()
        except RootUnavailable as e:
            console.print(f"[red]{escape(str(e))}[/red]")
            raise typer.Exit(1)

        deadline = None if timeout is None else time.monotonic() + timeout
        with show_scanning_progress() as progress:
            task = progress.add_task(f"Scanning {session.root_path}...", total=None)
            while not session.wait(timeout=0.2):
                p = session.progress
                progress.update(
                    task,
                    description=f"Scanning {session.root_path}... "
                    f"{format_size(p.bytes_scanned)} in {p.files_visited:,} files",
                )
                if deadline is not None and time.monotonic() >= deadline:
                    session.cancel()
                    session.wait()
                    break

        console.print()
        show_tree_report(session.root, limit=limit)
        show_progress_summary(session.progress, session.elapsed)
        if session.root.partial:
            console.print("[yellow]Some sizes are lower bounds (errors or cancellation).[/yellow]")


@app.command()
def metrics(
    count: int = typer.Option(5, "--count", "-c", help="Number of samples"),
    interval: float = typer.Option(1.0, "--interval", "-i", help="Seconds between samples"),
) -> None:
    """Sample CPU, memory and disk I/O a few times."""
    sampler = MetricsSampler(interval=interval, history=max(count, 1))
    for i in range(count):
        sampler.tick()
        if i < count - 1:
            time.sleep(interval)
    show_metrics(sampler.samples())


if __name__ == "__main__":
    app()

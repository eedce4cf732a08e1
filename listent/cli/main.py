"""listent CLI — `listent monitor` in the foreground, `listent daemon ...` in the background."""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape

from listent.cli import daemon
from listent.config import settings
from listent.exceptions import ListentError
from listent.log import STREAM_BACKEND, configure_logging
from listent.monitor.entitlements import make_extractor
from listent.monitor.models import PollingConfiguration
from listent.monitor.scheduler import PollingScheduler, SchedulerStats
from listent.monitor.sinks import ProcessSink, SinkKind, make_sink

# Detections go to stdout; everything else to stderr
console = Console(stderr=True)

_app = typer.Typer(
    name="listent",
    help="listent -- report new processes by the entitlements they carry.",
    no_args_is_help=True,
)

_app.add_typer(daemon.app, name="daemon", help="Background monitoring (run, status, stop)")


def fail(error: ListentError) -> None:
    console.print(f"[red]Error:[/red] {escape(str(error))}")
    raise typer.Exit(code=error.exit_code)


async def run_interactive(config: PollingConfiguration, sink: ProcessSink) -> SchedulerStats:
    """Poll in the foreground until Ctrl+C."""
    scheduler = PollingScheduler(config, sink, extractor=make_extractor(settings.extract_timeout))
    loop = asyncio.get_running_loop()
    stop_signals = (signal.SIGINT, signal.SIGTERM)
    for signum in stop_signals:
        loop.add_signal_handler(signum, scheduler.cancel)
    try:
        return await scheduler.run()
    finally:
        for signum in stop_signals:
            loop.remove_signal_handler(signum)


@_app.command("monitor")
def monitor(
    interval: float = typer.Option(
        settings.polling_interval, "--interval", "-i", help="Polling interval in seconds (0.1-300)"
    ),
    path: Optional[List[Path]] = typer.Option(
        None, "--path", "-p", help="Only report executables under this directory (repeatable)"
    ),
    entitlement: Optional[List[str]] = typer.Option(
        None, "--entitlement", "-e", help="Entitlement key or glob pattern (repeatable)"
    ),
    json_output: bool = typer.Option(False, "--json", help="One JSON object per detection"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only print detections"),
):
    """Watch for new processes and print the ones that match."""
    try:
        config = PollingConfiguration.build(
            interval=interval,
            path_filters=path or [],
            entitlement_filters=entitlement or [],
            output_json=json_output,
            quiet_mode=quiet,
        )
    except ListentError as e:
        fail(e)

    configure_logging(STREAM_BACKEND, "ERROR" if quiet else "WARNING")

    if not quiet:
        console.print(f"Starting process monitoring (interval: {config.interval:.1f}s)...")
        if config.path_filters:
            paths = ", ".join(str(p) for p in config.path_filters)
            console.print(f"Monitoring {escape(paths)} for processes")
        if config.entitlement_filters:
            filters = ", ".join(config.entitlement_filters)
            console.print(f"Monitoring for processes with entitlement: {escape(filters)}")
        console.print("Press Ctrl+C to stop monitoring.\n")

    sink = make_sink(SinkKind.JSON if json_output else SinkKind.HUMAN)
    stats = asyncio.run(run_interactive(config, sink))

    if not quiet:
        console.print(
            f"Monitoring stopped. {stats.cycles} cycles, "
            f"{stats.detected} new processes, {stats.emitted} reported."
        )
        failures = stats.extraction_failures + stats.enumeration_failures + stats.sink_failures
        if failures:
            console.print(
                f"[yellow]{stats.enumeration_failures} scan errors, "
                f"{stats.extraction_failures} unreadable processes, "
                f"{stats.sink_failures} output errors[/yellow]"
            )


@_app.command("version")
def version():
    """Show the listent version."""
    from listent import __version__
    typer.echo(f"listent {__version__}")


def main() -> None:
    _app()

"""Daemon commands — listent daemon run, status, stop."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import structlog
import typer
from rich.console import Console
from rich.markup import escape

from listent.config import settings
from listent.daemon.config import DaemonConfiguration
from listent.daemon.process import find_daemon_pids, stop_daemon
from listent.daemon.supervisor import DaemonLauncher, worker_command
from listent.daemon.worker import DaemonWorker, is_worker_process
from listent.exceptions import ListentError
from listent.log import STREAM_BACKEND, configure_logging
from listent.monitor.entitlements import make_extractor

app = typer.Typer(help="Background process monitoring")
console = Console()


def _fail(error: ListentError) -> None:
    Console(stderr=True).print(f"[red]Error:[/red] {escape(str(error))}")
    raise typer.Exit(code=error.exit_code)


def _resolve_config_path(config: Path | None) -> Path | None:
    if config is not None:
        return config
    if settings.daemon_config_path.exists():
        return settings.daemon_config_path
    return None


def _run_worker(config: DaemonConfiguration) -> None:
    # stdout is the parent's pipe: nothing but READY may be written to it
    configure_logging(settings.log_backend or None, settings.log_level)
    worker = DaemonWorker(config, extractor=make_extractor(settings.extract_timeout))
    try:
        asyncio.run(worker.run())
    except ListentError as e:
        structlog.get_logger("listent.daemon").error("daemon_failed", error=str(e))
        raise typer.Exit(code=e.exit_code)


def _launch(config: DaemonConfiguration, config_path: Path | None) -> None:
    configure_logging(STREAM_BACKEND, "ERROR")
    console.print("listent daemon starting...")
    launcher = DaemonLauncher(worker_command(config_path), ready_timeout=settings.ready_timeout)
    try:
        result = asyncio.run(launcher.launch())
    except ListentError as e:
        console.print("[red]Failed to start listent daemon[/red]")
        _fail(e)

    console.print(f"[green]listent daemon started successfully[/green] (PID {result.pid})")
    console.print(f"  Polling interval: {config.daemon.polling_interval}s")
    console.print("  Check status: listent daemon status")
    console.print("  Stop daemon: listent daemon stop")


@app.command("run")
def run(
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Daemon configuration file (TOML)"
    ),
):
    """Start the daemon in the background."""
    config_path = _resolve_config_path(config)
    try:
        daemon_config = DaemonConfiguration.load_or_default(config_path)
    except ListentError as e:
        _fail(e)

    if is_worker_process():
        _run_worker(daemon_config)
    else:
        _launch(daemon_config, config_path)


@app.command("status")
def status():
    """Show whether a daemon is running."""
    pids = find_daemon_pids()
    if not pids:
        console.print("[dim]listent daemon is not running.[/dim]")
        raise typer.Exit(code=1)
    console.print(f"[green]listent daemon is running[/green] (PID {', '.join(map(str, pids))})")


@app.command("stop")
def stop(
    timeout: float = typer.Option(5.0, "--timeout", help="Seconds to wait for shutdown"),
):
    """Stop every running daemon."""
    stopped, alive = stop_daemon(timeout=timeout)
    if not stopped and not alive:
        console.print("[dim]listent daemon is not running.[/dim]")
        return
    for pid in stopped:
        console.print(f"[green]Stopped daemon (PID {pid})[/green]")
    if alive:
        console.print(f"[red]Daemon did not stop: PID {', '.join(map(str, alive))}[/red]")
        raise typer.Exit(code=1)

"""Daemon launcher — the parent side of the startup handshake.

The parent spawns a worker with its stdout on a pipe and waits for a
single line. The worker prints READY once it is initialised; anything
else tells the parent what went wrong:

    EOF before any line   -> the worker crashed during startup (killed
                             if it is somehow still running)
    "READY"               -> running
    any other line        -> protocol violation
    nothing, no EOF       -> hung; killed after the timeout

Watching the PID alone cannot tell "still starting" from "hung", and
cannot prove the worker ever got healthy.
"""

from __future__ import annotations

import asyncio
import os
import signal
import subprocess
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable

import structlog

from listent.constants import (
    DAEMON_CHILD_ENV,
    DAEMON_RUN_SUBCOMMAND,
    DAEMON_SUBCOMMAND,
    READY_SENTINEL,
    READY_TIMEOUT_SECONDS,
)
from listent.daemon.process import find_daemon_pids
from listent.exceptions import (
    AlreadyRunningError,
    CrashedBeforeReadyError,
    ProtocolViolationError,
    SpawnError,
    StartupTimeoutError,
    SupervisionError,
)

# Longest ready line we read; anything longer is a violation anyway
_MAX_READY_LINE = 4096


class DaemonState(str, Enum):
    SPAWNING = "spawning"
    WAITING_READY = "waiting_ready"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


@dataclass
class LaunchResult:
    pid: int
    command: list[str] = field(default_factory=list)


def worker_command(config_path: Path | None = None) -> list[str]:
    """Command line that re-executes this program as the daemon worker."""
    command = [sys.executable, "-m", "listent", DAEMON_SUBCOMMAND, DAEMON_RUN_SUBCOMMAND]
    if config_path is not None:
        command += ["--config", str(config_path)]
    return command


class DaemonLauncher:
    """Spawns a daemon worker and waits for its readiness line."""

    def __init__(
        self,
        command: list[str],
        *,
        ready_timeout: float = READY_TIMEOUT_SECONDS,
        env: dict[str, str] | None = None,
        instance_finder: Callable[[], list[int]] = find_daemon_pids,
        exit_grace: float = 1.0,
        logger: Any = None,
    ) -> None:
        self._command = list(command)
        self._ready_timeout = ready_timeout
        self._env = env
        self._find_instances = instance_finder
        self._exit_grace = exit_grace
        self._logger = logger or structlog.get_logger("listent.launcher")
        self._state = DaemonState.SPAWNING
        self._proc: subprocess.Popen | None = None

    @property
    def state(self) -> DaemonState:
        return self._state

    @property
    def process(self) -> subprocess.Popen | None:
        """The spawned worker, once launch() has started it."""
        return self._proc

    async def launch(self) -> LaunchResult:
        """Start the worker. Raises a SupervisionError if it never gets healthy."""
        self._state = DaemonState.SPAWNING
        running = await asyncio.to_thread(self._find_instances)
        if running:
            self._state = DaemonState.STOPPED
            raise AlreadyRunningError(running)

        env = {**os.environ, **(self._env or {}), DAEMON_CHILD_ENV: "1"}
        # Popen rather than asyncio's subprocess transport: closing that
        # transport kills the child, and this child has to outlive us.
        # stderr is dropped so the worker never writes to our terminal.
        try:
            proc = subprocess.Popen(
                self._command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                env=env,
                start_new_session=True,
            )
        except OSError as e:
            self._state = DaemonState.STOPPED
            self._logger.error("daemon_spawn_failed", command=self._command, error=str(e))
            raise SpawnError(self._command, e) from e
        self._proc = proc
        self._logger.info("daemon_spawned", pid=proc.pid, command=self._command)

        self._state = DaemonState.WAITING_READY
        try:
            await self._wait_ready(proc)
        except SupervisionError as e:
            self._state = DaemonState.STOPPED
            self._logger.error("daemon_launch_failed", pid=proc.pid, error=str(e))
            raise
        finally:
            proc.stdout.close()

        self._state = DaemonState.RUNNING
        self._logger.info("daemon_ready", pid=proc.pid)
        return LaunchResult(pid=proc.pid, command=list(self._command))

    async def _wait_ready(self, proc: subprocess.Popen) -> None:
        try:
            line = await asyncio.wait_for(
                asyncio.to_thread(proc.stdout.readline, _MAX_READY_LINE),
                timeout=self._ready_timeout,
            )
        except asyncio.TimeoutError:
            # Killing the child also unblocks the reader thread with EOF
            await self._kill(proc)
            raise StartupTimeoutError(self._ready_timeout) from None

        if not line:
            returncode = await self._exit_status(proc)
            if returncode is None:
                # stdout closed but still running: not a worker we can supervise
                await self._kill(proc)
            raise CrashedBeforeReadyError(returncode)

        text = line.decode("utf-8", errors="replace").strip()
        if text != READY_SENTINEL:
            await self._kill(proc)
            raise ProtocolViolationError(text)

    async def _exit_status(self, proc: subprocess.Popen) -> int | None:
        try:
            return await asyncio.to_thread(proc.wait, self._exit_grace)
        except subprocess.TimeoutExpired:
            return None

    async def _kill(self, proc: subprocess.Popen) -> None:
        # The worker leads its own session; take down anything it forked
        # that could still hold the pipe open.
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        await asyncio.to_thread(proc.wait)

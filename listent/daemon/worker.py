"""Daemon worker — the child side of the startup handshake.

The worker validates its configuration, prints READY for the parent,
then races the polling scheduler against a shutdown signal. Whichever
finishes first decides the recorded shutdown reason.
"""

from __future__ import annotations

import asyncio
import os
import signal
import sys
from enum import Enum
from typing import Any, TextIO

import structlog

from listent.constants import DAEMON_CHILD_ENV, LAUNCHD_ENV, READY_SENTINEL
from listent.daemon.config import DaemonConfiguration
from listent.daemon.supervisor import DaemonState
from listent.exceptions import SchedulerStateError, ShutdownSignalError
from listent.monitor.entitlements import EntitlementExtractor
from listent.monitor.scheduler import PollingScheduler, ProcessEnumerator
from listent.monitor.sinks import LogSink, ProcessSink

DEFAULT_SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class ShutdownReason(str, Enum):
    SIGNAL = "signal"
    SCHEDULER_EXITED = "scheduler_exited"
    SCHEDULER_FAILED = "scheduler_failed"


def is_worker_process() -> bool:
    """True when we were spawned as the worker, by the launcher or by launchd."""
    # Interactive macOS shells often carry XPC_SERVICE_NAME=0
    return bool(os.environ.get(DAEMON_CHILD_ENV)) or os.environ.get(LAUNCHD_ENV, "0") != "0"


def _detach_stdout() -> None:
    # The parent closes its end of the pipe once it has read READY
    devnull = os.open(os.devnull, os.O_WRONLY)
    try:
        os.dup2(devnull, sys.stdout.fileno())
    finally:
        os.close(devnull)


class DaemonWorker:
    """Runs the polling scheduler until a shutdown signal arrives."""

    def __init__(
        self,
        config: DaemonConfiguration,
        *,
        sink: ProcessSink | None = None,
        enumerator: ProcessEnumerator | None = None,
        extractor: EntitlementExtractor | None = None,
        ready_stream: TextIO | None = None,
        detach_stdout: bool = True,
        shutdown_signals: tuple[signal.Signals, ...] = DEFAULT_SHUTDOWN_SIGNALS,
        logger: Any = None,
    ) -> None:
        self._config = config
        self._sink = sink or LogSink()
        self._enumerator = enumerator
        self._extractor = extractor
        self._ready_stream = ready_stream
        self._detach_stdout = detach_stdout
        self._signals = shutdown_signals
        self._logger = logger or structlog.get_logger("listent.daemon")
        self._state = DaemonState.SPAWNING
        self._scheduler: PollingScheduler | None = None
        self._shutdown = asyncio.Event()
        self._received_signal: signal.Signals | None = None
        self._installed: list[signal.Signals] = []

    @property
    def state(self) -> DaemonState:
        return self._state

    @property
    def configuration(self) -> DaemonConfiguration:
        return self._config

    @property
    def scheduler(self) -> PollingScheduler | None:
        return self._scheduler

    @property
    def received_signal(self) -> signal.Signals | None:
        return self._received_signal

    def request_shutdown(self, signum: signal.Signals | None = None) -> None:
        self._received_signal = signum
        self._shutdown.set()

    async def replace_configuration(self, config: DaemonConfiguration) -> None:
        """Validate and swap in a new configuration for the running scheduler."""
        polling = config.polling_configuration()
        if self._scheduler is None:
            raise SchedulerStateError("Daemon worker is not running")
        await self._scheduler.replace_configuration(polling)
        self._config = config

    async def run(self) -> ShutdownReason:
        """Initialise, signal readiness, monitor until told to stop."""
        polling = self._config.polling_configuration()
        self._scheduler = PollingScheduler(
            polling,
            self._sink,
            enumerator=self._enumerator,
            extractor=self._extractor,
            logger=self._logger,
        )
        self._logger.info(
            "daemon_startup",
            pid=os.getpid(),
            interval=polling.interval,
            path_filters=[str(p) for p in polling.path_filters],
            entitlement_filters=list(polling.entitlement_filters),
        )

        self._state = DaemonState.WAITING_READY
        self._signal_ready()
        self._install_signal_handlers()
        self._state = DaemonState.RUNNING

        scheduler_task = asyncio.create_task(self._scheduler.run(), name="listent-scheduler")
        shutdown_task = asyncio.create_task(self._shutdown.wait(), name="listent-shutdown")
        try:
            done, _ = await asyncio.wait(
                {scheduler_task, shutdown_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if shutdown_task in done:
                reason = ShutdownReason.SIGNAL
                self._state = DaemonState.SHUTTING_DOWN
                self._scheduler.cancel()
                # Bounded by one sleep chunk plus the cycle in flight
                try:
                    await scheduler_task
                except Exception as e:
                    self._logger.error("monitoring_loop_failed", error=str(e))
            else:
                shutdown_task.cancel()
                error = scheduler_task.exception()
                if error is not None:
                    reason = ShutdownReason.SCHEDULER_FAILED
                    self._logger.error("monitoring_loop_failed", error=str(error))
                else:
                    reason = ShutdownReason.SCHEDULER_EXITED
        finally:
            for task in (scheduler_task, shutdown_task):
                if not task.done():
                    task.cancel()
            self._remove_signal_handlers()
            self._state = DaemonState.STOPPED

        self._logger.info(
            "daemon_shutdown",
            reason=reason.value,
            signal=self._received_signal.name if self._received_signal else None,
            **self._scheduler.stats.as_dict(),
        )
        return reason

    def _signal_ready(self) -> None:
        stream = self._ready_stream or sys.stdout
        try:
            stream.write(READY_SENTINEL + "\n")
            stream.flush()
        except OSError as e:
            # Under launchd nobody is reading
            self._logger.debug("ready_not_delivered", error=str(e))
        if self._detach_stdout and stream is sys.stdout:
            _detach_stdout()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in self._signals:
            try:
                loop.add_signal_handler(signum, self.request_shutdown, signum)
            except (NotImplementedError, RuntimeError, ValueError) as e:
                self._remove_signal_handlers()
                self._state = DaemonState.STOPPED
                raise ShutdownSignalError(
                    f"Failed to install handler for {signum.name}: {e}"
                ) from e
            self._installed.append(signum)

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in self._installed:
            loop.remove_signal_handler(signum)
        self._installed.clear()

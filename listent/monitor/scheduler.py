"""Polling scheduler — the monitor loop shared by interactive and daemon modes.

Each cycle enumerates processes, extracts entitlements for the ones not
seen before, diffs against the previous snapshot and emits whatever
survives the filters. Between cycles the scheduler sleeps in short
chunks so that a cancellation request is noticed within one chunk,
however long the interval is.
"""

from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable

import structlog

from listent.constants import SLEEP_CHUNK_SECONDS
from listent.exceptions import EnumerationError, SchedulerStateError
from listent.monitor import patterns
from listent.monitor.entitlements import EntitlementExtractor, extract_entitlements
from listent.monitor.enumerator import PsutilEnumerator
from listent.monitor.models import (
    MonitoredProcess,
    PollingConfiguration,
    ProcessRecord,
    ProcessSnapshot,
)
from listent.monitor.sinks import ProcessSink
from listent.monitor.tracker import ProcessTracker

ProcessEnumerator = Callable[[], Iterable[ProcessRecord]]


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class CancellationToken:
    """A stop flag safe to set from signal handlers and other threads."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class SchedulerStats:
    cycles: int = 0
    detected: int = 0  # new processes before filtering
    emitted: int = 0
    extraction_failures: int = 0
    enumeration_failures: int = 0
    sink_failures: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class PollingScheduler:
    """Fixed-interval monitor loop with cooperative cancellation.

    The lock guards the active configuration and the tracker. It is held
    only to read or swap them, never across enumeration, extraction or
    sink calls.
    """

    def __init__(
        self,
        config: PollingConfiguration,
        sink: ProcessSink,
        *,
        enumerator: ProcessEnumerator | None = None,
        extractor: EntitlementExtractor | None = None,
        token: CancellationToken | None = None,
        logger: Any = None,
        sleep_chunk: float = SLEEP_CHUNK_SECONDS,
    ) -> None:
        self._config = config
        self._sink = sink
        self._enumerate = enumerator or PsutilEnumerator()
        self._extract = extractor or extract_entitlements
        self._token = token or CancellationToken()
        self._logger = logger or structlog.get_logger("listent.scheduler")
        self._sleep_chunk = sleep_chunk
        self._tracker = ProcessTracker()
        self._lock = asyncio.Lock()
        self._state = SchedulerState.IDLE
        self.stats = SchedulerStats()

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def token(self) -> CancellationToken:
        return self._token

    @property
    def configuration(self) -> PollingConfiguration:
        return self._config

    def cancel(self) -> None:
        """Ask the loop to stop at its next suspension point."""
        self._token.cancel()

    async def replace_configuration(self, config: PollingConfiguration) -> None:
        """Swap the active configuration; takes effect from the next cycle."""
        patterns.validate(config.entitlement_filters)
        async with self._lock:
            old, self._config = self._config, config
        self._logger.info(
            "configuration_replaced",
            old_interval=old.interval,
            new_interval=config.interval,
        )

    async def run(self) -> SchedulerStats:
        """Poll until cancelled. A scheduler runs once."""
        if self._state is not SchedulerState.IDLE:
            raise SchedulerStateError(
                f"Cannot start scheduler from state {self._state.value}"
            )
        self._state = SchedulerState.RUNNING
        try:
            self._logger.info(
                "monitoring_started",
                interval=self._config.interval,
                path_filters=[str(p) for p in self._config.path_filters],
                entitlement_filters=list(self._config.entitlement_filters),
            )
            while not self._token.cancelled:
                cycle_start = time.monotonic()
                await self.run_cycle()
                elapsed = time.monotonic() - cycle_start
                async with self._lock:
                    interval = self._config.interval
                if elapsed < interval:
                    await self._sleep(interval - elapsed)
        finally:
            self._state = SchedulerState.STOPPED
            self._logger.info("monitoring_stopped", **self.stats.as_dict())
        return self.stats

    async def run_cycle(self) -> list[MonitoredProcess]:
        """One enumerate/extract/diff/filter/emit pass. Returns what was emitted."""
        async with self._lock:
            config = self._config
            previous = self._tracker.previous_snapshot

        self.stats.cycles += 1
        try:
            snapshot, failures = await asyncio.to_thread(self._build_snapshot, previous)
        except EnumerationError as e:
            # Keep the stored snapshot: diffing against an empty one next
            # cycle would report every process as new.
            self.stats.enumeration_failures += 1
            self._logger.warning("enumeration_failed", error=str(e))
            return []
        self.stats.extraction_failures += failures

        async with self._lock:
            new = self._tracker.detect_new(snapshot)
        self.stats.detected += len(new)

        matched = ProcessTracker.apply_filters(new, config)
        emitted = [p for p in matched if self._emit(p)]
        if new:
            self._logger.debug(
                "cycle_completed",
                processes=len(snapshot),
                new=len(new),
                emitted=len(emitted),
                scan_duration=round(snapshot.scan_duration, 4),
            )
        return emitted

    def _build_snapshot(
        self, previous: ProcessSnapshot | None
    ) -> tuple[ProcessSnapshot, int]:
        """Enumerate and extract. Runs in a worker thread."""
        started = time.monotonic()
        timestamp = datetime.now(timezone.utc)
        try:
            records = list(self._enumerate())
        except EnumerationError:
            raise
        except Exception as e:
            raise EnumerationError(str(e)) from e

        processes: list[MonitoredProcess] = []
        failures = 0
        for record in records:
            known = previous.get(record.key) if previous is not None else None
            if known is not None:
                processes.append(known)
                continue

            if previous is None:
                # Baseline cycle: nothing here is ever reported
                entitlements: dict[str, Any] = {}
            else:
                try:
                    entitlements = dict(self._extract(record.executable_path))
                except Exception as e:
                    failures += 1
                    self._logger.debug(
                        "extraction_failed",
                        pid=record.pid,
                        path=str(record.executable_path),
                        error=str(e),
                    )
                    continue

            processes.append(MonitoredProcess(
                pid=record.pid,
                start_time=record.start_time,
                name=record.name,
                executable_path=record.executable_path,
                entitlements=entitlements,
                discovery_timestamp=timestamp,
            ))

        return (
            ProcessSnapshot.of(processes, timestamp, time.monotonic() - started),
            failures,
        )

    def _emit(self, process: MonitoredProcess) -> bool:
        try:
            self._sink.emit(process)
        except Exception as e:
            self.stats.sink_failures += 1
            self._logger.error("sink_failed", pid=process.pid, error=str(e))
            return False
        self.stats.emitted += 1
        return True

    async def _sleep(self, duration: float) -> None:
        deadline = time.monotonic() + duration
        while not self._token.cancelled:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            await asyncio.sleep(min(self._sleep_chunk, remaining))

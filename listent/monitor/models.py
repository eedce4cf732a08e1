"""Monitor data models — processes, snapshots, polling configuration."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, NamedTuple, TypeAlias

from pydantic import BaseModel, ConfigDict, Field

from listent.constants import (
    EVENT_PROCESS_DETECTED,
    POLLING_INTERVAL_MAX,
    POLLING_INTERVAL_MIN,
)
from listent.exceptions import InvalidIntervalError
from listent.monitor import patterns

# (pid, start_time): a PID alone is recycled by the OS
ProcessKey: TypeAlias = tuple[int, float]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProcessRecord(NamedTuple):
    """One row of the process table, as the enumerator reports it."""

    pid: int
    start_time: float
    name: str
    executable_path: Path
    command_line: tuple[str, ...] = ()

    @property
    def key(self) -> ProcessKey:
        return (self.pid, self.start_time)


class MonitoredProcess(BaseModel):
    """A process instance and the entitlements of its executable."""

    model_config = ConfigDict(frozen=True)

    pid: int
    start_time: float
    name: str
    executable_path: Path
    entitlements: dict[str, Any] = Field(default_factory=dict)
    discovery_timestamp: datetime = Field(default_factory=_utcnow)

    @property
    def key(self) -> ProcessKey:
        return (self.pid, self.start_time)

    @property
    def entitlement_keys(self) -> list[str]:
        return sorted(self.entitlements)


class ProcessSnapshot(BaseModel):
    """Every observed process instance at one polling moment."""

    model_config = ConfigDict(frozen=True)

    processes: dict[ProcessKey, MonitoredProcess] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=_utcnow)
    scan_duration: float = 0.0  # seconds

    @classmethod
    def of(
        cls,
        processes: Iterable[MonitoredProcess],
        timestamp: datetime | None = None,
        scan_duration: float = 0.0,
    ) -> ProcessSnapshot:
        return cls(
            processes={p.key: p for p in processes},
            timestamp=timestamp or _utcnow(),
            scan_duration=scan_duration,
        )

    def __contains__(self, key: object) -> bool:
        return key in self.processes

    def __len__(self) -> int:
        return len(self.processes)

    def get(self, key: ProcessKey) -> MonitoredProcess | None:
        return self.processes.get(key)

    def new_processes(self, previous: ProcessSnapshot) -> list[MonitoredProcess]:
        """Processes in this snapshot whose key is absent from `previous`."""
        return [
            process
            for key, process in self.processes.items()
            if key not in previous.processes
        ]


def validate_interval(interval: float) -> float:
    """Check the polling interval bounds. Raises InvalidIntervalError."""
    if not POLLING_INTERVAL_MIN <= interval <= POLLING_INTERVAL_MAX:
        raise InvalidIntervalError(interval, POLLING_INTERVAL_MIN, POLLING_INTERVAL_MAX)
    return float(interval)


class PollingConfiguration(BaseModel):
    """What to poll for and how often. Fixed for a run once built."""

    model_config = ConfigDict(frozen=True)

    interval: float = Field(ge=POLLING_INTERVAL_MIN, le=POLLING_INTERVAL_MAX)
    path_filters: tuple[Path, ...] = ()
    entitlement_filters: tuple[str, ...] = ()
    output_json: bool = False
    quiet_mode: bool = False

    @classmethod
    def build(
        cls,
        interval: float,
        path_filters: Iterable[Path | str] = (),
        entitlement_filters: Iterable[str] = (),
        output_json: bool = False,
        quiet_mode: bool = False,
    ) -> PollingConfiguration:
        """Validate the interval and the filters up front, then construct.

        Raises InvalidIntervalError or InvalidFilterPatternError before any
        scanning can start.
        """
        interval = validate_interval(interval)
        entitlement_filters = tuple(entitlement_filters)
        patterns.validate(entitlement_filters)
        return cls(
            interval=interval,
            path_filters=tuple(Path(p) for p in path_filters),
            entitlement_filters=entitlement_filters,
            output_json=output_json,
            quiet_mode=quiet_mode,
        )


class ProcessDetectionEvent(BaseModel):
    """Canonical output record for one detected process."""

    timestamp: str
    event_type: str = EVENT_PROCESS_DETECTED
    pid: int
    name: str
    path: str
    entitlement_count: int
    entitlements: list[str]

    @classmethod
    def from_process(cls, process: MonitoredProcess) -> ProcessDetectionEvent:
        keys = process.entitlement_keys
        return cls(
            timestamp=process.discovery_timestamp.isoformat(),
            pid=process.pid,
            name=process.name,
            path=str(process.executable_path),
            entitlement_count=len(keys),
            entitlements=keys,
        )

"""Process tracker — turns successive snapshots into "new process" lists."""

from __future__ import annotations

from pathlib import PurePath
from typing import Iterable

from listent.monitor import patterns
from listent.monitor.models import MonitoredProcess, PollingConfiguration, ProcessSnapshot


def _is_under(path: PurePath, prefix: PurePath) -> bool:
    # Component-wise: /usr/bin covers /usr/bin/ls but not /usr/binx/ls
    return path == prefix or prefix in path.parents


class ProcessTracker:
    """Holds the last snapshot and diffs each new one against it.

    Only one snapshot is retained. The first snapshot is a baseline:
    everything already running at startup is recorded but not reported.
    """

    def __init__(self) -> None:
        self._previous: ProcessSnapshot | None = None

    @property
    def previous_snapshot(self) -> ProcessSnapshot | None:
        return self._previous

    def detect_new(self, current: ProcessSnapshot) -> list[MonitoredProcess]:
        if self._previous is None:
            new: list[MonitoredProcess] = []
        else:
            new = current.new_processes(self._previous)
        self._previous = current
        return new

    def reset(self) -> None:
        """Forget the baseline; the next snapshot is suppressed again."""
        self._previous = None

    @staticmethod
    def apply_path_filters(
        processes: Iterable[MonitoredProcess],
        path_filters: Iterable[PurePath | str],
    ) -> list[MonitoredProcess]:
        prefixes = [PurePath(p) for p in path_filters]
        if not prefixes:
            return list(processes)
        return [
            p for p in processes
            if any(_is_under(PurePath(p.executable_path), prefix) for prefix in prefixes)
        ]

    @staticmethod
    def apply_entitlement_filters(
        processes: Iterable[MonitoredProcess],
        entitlement_filters: Iterable[str],
    ) -> list[MonitoredProcess]:
        filters = list(entitlement_filters)
        return [p for p in processes if patterns.matches_any(p.entitlements, filters)]

    @classmethod
    def apply_filters(
        cls,
        processes: Iterable[MonitoredProcess],
        config: PollingConfiguration,
    ) -> list[MonitoredProcess]:
        """Drop processes without entitlements, then path, then entitlement filters."""
        with_entitlements = [p for p in processes if p.entitlements]
        in_paths = cls.apply_path_filters(with_entitlements, config.path_filters)
        return cls.apply_entitlement_filters(in_paths, config.entitlement_filters)

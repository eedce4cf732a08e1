"""Process enumeration via psutil."""

from __future__ import annotations

from pathlib import Path

import psutil

from listent.exceptions import EnumerationError
from listent.monitor.models import ProcessRecord


class PsutilEnumerator:
    """Reads the process table.

    Processes without a known executable (kernel threads, or ones we may
    not inspect) are skipped. A process that exits mid-scan simply drops
    out of the result.
    """

    _ATTRS = ["pid", "name", "exe", "create_time", "cmdline"]

    def __call__(self) -> list[ProcessRecord]:
        records: list[ProcessRecord] = []
        try:
            for proc in psutil.process_iter(self._ATTRS, ad_value=None):
                info = proc.info
                exe = info.get("exe")
                start_time = info.get("create_time")
                if not exe or start_time is None:
                    continue
                path = Path(exe)
                records.append(ProcessRecord(
                    pid=info["pid"],
                    start_time=start_time,
                    name=info.get("name") or path.name,
                    executable_path=path,
                    command_line=tuple(info.get("cmdline") or ()),
                ))
        except (psutil.Error, OSError) as e:
            raise EnumerationError(f"Failed to read process table: {e}") from e
        return records

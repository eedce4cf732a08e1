"""Finding and stopping running daemon workers in the process table."""

from __future__ import annotations

import logging
from typing import Iterable

import psutil

from listent.constants import DAEMON_RUN_SUBCOMMAND, DAEMON_SUBCOMMAND, PROGRAM_NAME

_logger = logging.getLogger(__name__)

_WRAPPER_NAMES = {"sudo"}


def is_daemon_command(cmdline: Iterable[str]) -> bool:
    """True for a `listent daemon run` command line."""
    args = list(cmdline)
    return (
        any(PROGRAM_NAME in arg for arg in args)
        and DAEMON_SUBCOMMAND in args
        and DAEMON_RUN_SUBCOMMAND in args
    )


def _own_lineage() -> set[int]:
    me = psutil.Process()
    try:
        return {me.pid, *(p.pid for p in me.parents())}
    except psutil.Error:
        return {me.pid}


def find_daemon_pids(exclude: Iterable[int] = ()) -> list[int]:
    """PIDs of running daemon workers.

    Skips this process, its ancestors (whoever launched us may share the
    command line) and wrapper processes such as sudo.
    """
    skip = _own_lineage() | set(exclude)
    pids = []
    for proc in psutil.process_iter(["pid", "name", "cmdline"], ad_value=None):
        info = proc.info
        if info["pid"] in skip or info.get("name") in _WRAPPER_NAMES:
            continue
        if is_daemon_command(info.get("cmdline") or ()):
            pids.append(info["pid"])
    return sorted(pids)


def is_daemon_running() -> bool:
    return bool(find_daemon_pids())


def stop_daemon(timeout: float = 5.0) -> tuple[list[int], list[int]]:
    """SIGTERM every daemon worker and wait for them.

    Returns (stopped, still_running) PID lists.
    """
    procs = []
    for pid in find_daemon_pids():
        try:
            proc = psutil.Process(pid)
        except psutil.NoSuchProcess:
            continue
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            continue
        except psutil.AccessDenied as e:
            _logger.warning("Cannot signal daemon %d: %s", pid, e)
        procs.append(proc)

    gone, alive = psutil.wait_procs(procs, timeout=timeout)
    return sorted(p.pid for p in gone), sorted(p.pid for p in alive)

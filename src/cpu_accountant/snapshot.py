"""Process snapshot reading.

A snapshot reader answers two questions about the live process table:
which pids are visible right now, and for a given pid, who owns it and how
much CPU time it has consumed so far. Everything the sampling engine knows
about the operating system comes through this contract, so a reader can be
swapped per platform.

Two readers exist:
- ProcfsReader (procfs.py): parses /proc directly, Linux only
- PsutilReader: backed by psutil, any POSIX platform psutil supports

Ownership is a POSIX real uid, so neither reader runs on Windows.
"""

import os
import pwd
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import psutil
import structlog

from cpu_accountant.config import SamplerConfig

log = structlog.get_logger()


class EnumerationError(OSError):
    """The live process listing could not be produced."""


@dataclass(frozen=True)
class ProcessSnapshot:
    """One successful read of a process's accounting counters.

    CPU times are cumulative since process start, in clock ticks.
    start_time identifies the process instance behind a pid; it is None when
    the platform cannot report it.
    """

    pid: int
    uid: int
    user_time: int
    system_time: int
    start_time: int | float | None = None


class SnapshotReader(Protocol):
    """Read-only view of the live process table."""

    def list_pids(self) -> list[int]:
        """Return all currently visible pids.

        Raises:
            EnumerationError: If the listing itself cannot be opened.
        """
        ...

    def read(self, pid: int) -> ProcessSnapshot | None:
        """Return a snapshot for pid, or None if it is no longer observable."""
        ...


class PsutilReader:
    """Snapshot reader backed by psutil.

    psutil reports CPU times in float seconds; they are converted to clock
    ticks so both readers feed the engine the same unit.
    """

    def __init__(self, ticks_per_second: int):
        self.ticks_per_second = ticks_per_second

    def list_pids(self) -> list[int]:
        try:
            return psutil.pids()
        except OSError as e:
            raise EnumerationError(f"Cannot list processes: {e}") from e

    def read(self, pid: int) -> ProcessSnapshot | None:
        try:
            proc = psutil.Process(pid)
            with proc.oneshot():
                uid = proc.uids().real
                times = proc.cpu_times()
                start_time = proc.create_time()
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return None
        return ProcessSnapshot(
            pid=pid,
            uid=uid,
            user_time=round(times.user * self.ticks_per_second),
            system_time=round(times.system * self.ticks_per_second),
            start_time=start_time,
        )


def make_reader(config: SamplerConfig, ticks_per_second: int) -> SnapshotReader:
    """Build the snapshot reader selected by config.

    "auto" picks procfs when the configured proc root exists, psutil otherwise.

    Raises:
        ValueError: If the reader name is unknown, or psutil is selected on a
            platform without POSIX uids.
    """
    from cpu_accountant.procfs import ProcfsReader

    name = config.reader
    if name == "auto":
        name = "procfs" if Path(config.proc_root).is_dir() else "psutil"

    if name == "procfs":
        reader: SnapshotReader = ProcfsReader(config.proc_root)
    elif name == "psutil":
        # Process.uids() only exists on POSIX builds of psutil
        if not psutil.POSIX:
            raise ValueError("psutil reader requires a POSIX platform (process uids)")
        reader = PsutilReader(ticks_per_second)
    else:
        raise ValueError(f"Unknown reader: {config.reader!r}")

    log.info("reader_selected", reader=name, configured=config.reader)
    return reader


def get_clock_ticks(fallback: int = 100) -> int:
    """Return the platform's clock ticks per second (SC_CLK_TCK).

    Falls back to `fallback` when the platform cannot report a positive rate.
    """
    try:
        ticks = os.sysconf("SC_CLK_TCK")
    except (ValueError, OSError, AttributeError):
        return fallback
    return ticks if ticks > 0 else fallback


def resolve_user_name(uid: int) -> str:
    """Map a uid to its user name, or the decimal uid if there is none."""
    try:
        return pwd.getpwuid(uid).pw_name
    except (KeyError, OverflowError):
        return str(uid)

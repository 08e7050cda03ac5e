"""Linux /proc snapshot reader.

Reads straight from the proc filesystem - no psutil overhead per pid.

For each pid two files are consulted:
- <pid>/status: the "Uid:" line (real, effective, saved, filesystem)
- <pid>/stat: utime (field 14), stime (field 15), starttime (field 22)

All read functions handle process disappearance and malformed content by
returning None; the caller skips the pid for the tick.
"""

from pathlib import Path

from cpu_accountant.snapshot import EnumerationError, ProcessSnapshot

# 1-based field numbers in /proc/<pid>/stat (see proc(5))
STAT_UTIME = 14
STAT_STIME = 15
STAT_STARTTIME = 22

# Fields after the command name start at field 3 (state)
_FIRST_FIELD_AFTER_COMM = 3


def list_all_pids(proc_root: Path) -> list[int]:
    """List all numeric entries of the proc root.

    Raises:
        EnumerationError: If the directory cannot be listed.
    """
    try:
        names = [entry.name for entry in proc_root.iterdir()]
    except OSError as e:
        raise EnumerationError(f"Cannot list {proc_root}: {e}") from e
    return [int(name) for name in names if name.isdigit()]


def read_uid(proc_root: Path, pid: int) -> int | None:
    """Return the real uid of pid, or None if unavailable."""
    try:
        with open(proc_root / str(pid) / "status") as f:
            for line in f:
                if line.startswith("Uid:"):
                    return int(line.split()[1])
    except (OSError, ValueError, IndexError):
        return None
    return None


def parse_stat(content: str) -> tuple[int, int, int] | None:
    """Extract (utime, stime, starttime) from the text of a stat file.

    The command name is wrapped in parentheses and may itself contain spaces
    or ')', so fields are counted from the last ')'.
    """
    close = content.rfind(")")
    if close < 0:
        return None
    fields = content[close + 1 :].split()

    def field(number: int) -> int:
        return int(fields[number - _FIRST_FIELD_AFTER_COMM])

    try:
        return field(STAT_UTIME), field(STAT_STIME), field(STAT_STARTTIME)
    except (IndexError, ValueError):
        return None


def read_cpu_times(proc_root: Path, pid: int) -> tuple[int, int, int] | None:
    """Return (utime, stime, starttime) in clock ticks, or None if unavailable."""
    try:
        content = (proc_root / str(pid) / "stat").read_text()
    except (OSError, UnicodeDecodeError):
        return None
    return parse_stat(content)


class ProcfsReader:
    """Snapshot reader over a mounted proc filesystem."""

    def __init__(self, proc_root: str | Path = "/proc"):
        self.proc_root = Path(proc_root)

    def list_pids(self) -> list[int]:
        return list_all_pids(self.proc_root)

    def read(self, pid: int) -> ProcessSnapshot | None:
        uid = read_uid(self.proc_root, pid)
        if uid is None:
            return None
        times = read_cpu_times(self.proc_root, pid)
        if times is None:
            return None
        utime, stime, starttime = times
        return ProcessSnapshot(
            pid=pid,
            uid=uid,
            user_time=utime,
            system_time=stime,
            start_time=starttime,
        )

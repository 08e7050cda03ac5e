"""Shared test fixtures for cpu-accountant."""

from pathlib import Path

import pytest

from cpu_accountant.config import Config, SamplerConfig
from cpu_accountant.snapshot import EnumerationError, ProcessSnapshot

# A frame is one scan of the process table: pid -> (uid, utime, stime[, start]).
# A value of None means the pid is listed but cannot be read.
Frame = dict[int, tuple | None]


class FakeReader:
    """Snapshot reader that replays scripted process tables.

    Each list_pids() call advances to the next frame; read() answers from the
    current one. An EnumerationError in place of a frame makes list_pids()
    raise. The last frame repeats once the script runs out.
    """

    def __init__(self, frames: list[Frame | EnumerationError]):
        self.frames = frames
        self.index = -1
        self.reads: list[int] = []

    @property
    def current(self) -> Frame | EnumerationError:
        return self.frames[min(self.index, len(self.frames) - 1)]

    def list_pids(self) -> list[int]:
        self.index += 1
        frame = self.current
        if isinstance(frame, EnumerationError):
            raise frame
        return list(frame)

    def read(self, pid: int) -> ProcessSnapshot | None:
        self.reads.append(pid)
        frame = self.current
        assert not isinstance(frame, EnumerationError)
        entry = frame.get(pid)
        if entry is None:
            return None
        uid, utime, stime, *rest = entry
        return ProcessSnapshot(
            pid=pid,
            uid=uid,
            user_time=utime,
            system_time=stime,
            start_time=rest[0] if rest else None,
        )


def fake_names(uid: int) -> str:
    """Deterministic uid -> name mapping for tests."""
    return {0: "root", 1000: "alice", 1001: "bob", 1002: "carol"}.get(uid, str(uid))


@pytest.fixture
def sampler_config() -> SamplerConfig:
    """Sampler config with no waiting between ticks."""
    return SamplerConfig(sample_interval=0.0)


@pytest.fixture
def fast_config() -> Config:
    """Full config with no waiting between ticks."""
    config = Config()
    config.sampler.sample_interval = 0.0
    return config


@pytest.fixture
def home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the home directory (config and log paths) at a temp dir."""
    monkeypatch.setenv("HOME", str(tmp_path))
    return tmp_path


def write_proc_entry(
    proc_root: Path,
    pid: int,
    uid: int = 1000,
    utime: int = 0,
    stime: int = 0,
    starttime: int = 12345,
    comm: str = "bash",
) -> None:
    """Create <proc_root>/<pid>/{status,stat} in the kernel's text format."""
    pid_dir = proc_root / str(pid)
    pid_dir.mkdir(parents=True, exist_ok=True)
    (pid_dir / "status").write_text(
        f"Name:\t{comm}\n"
        "State:\tS (sleeping)\n"
        f"Pid:\t{pid}\n"
        "PPid:\t1\n"
        f"Uid:\t{uid}\t{uid}\t{uid}\t{uid}\n"
        f"Gid:\t{uid}\t{uid}\t{uid}\t{uid}\n"
    )
    # Fields 3..22: state ppid pgrp session tty_nr tpgid flags minflt cminflt
    # majflt cmajflt utime stime cutime cstime priority nice num_threads
    # itrealvalue starttime, then a few trailing fields
    rest = (
        f"S 1 {pid} {pid} 0 -1 4194560 100 0 0 0 {utime} {stime} 0 0 20 0 1 0 "
        f"{starttime} 1000000 200 18446744073709551615"
    )
    (pid_dir / "stat").write_text(f"{pid} ({comm}) {rest}\n")

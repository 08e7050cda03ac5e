"""Tests for the /proc snapshot reader."""

import os
import sys
from pathlib import Path

import pytest
from conftest import write_proc_entry

from cpu_accountant.procfs import (
    ProcfsReader,
    list_all_pids,
    parse_stat,
    read_cpu_times,
    read_uid,
)
from cpu_accountant.snapshot import EnumerationError, ProcessSnapshot


@pytest.fixture
def proc_root(tmp_path: Path) -> Path:
    root = tmp_path / "proc"
    root.mkdir()
    return root


class TestListAllPids:
    def test_only_numeric_entries(self, proc_root: Path):
        write_proc_entry(proc_root, 1)
        write_proc_entry(proc_root, 4242)
        (proc_root / "self").mkdir()
        (proc_root / "cpuinfo").write_text("")
        (proc_root / "12abc").mkdir()

        assert sorted(list_all_pids(proc_root)) == [1, 4242]

    def test_missing_root_raises(self, tmp_path: Path):
        with pytest.raises(EnumerationError):
            list_all_pids(tmp_path / "nope")

    def test_enumeration_error_is_oserror(self, tmp_path: Path):
        with pytest.raises(OSError):
            list_all_pids(tmp_path / "nope")


class TestParseStat:
    def test_extracts_times(self):
        content = (
            "1234 (bash) S 1 1234 1234 0 -1 4194560 100 0 0 0 "
            "250 75 0 0 20 0 1 0 98765 1000000 200\n"
        )
        assert parse_stat(content) == (250, 75, 98765)

    def test_command_with_spaces_and_parens(self):
        content = (
            "77 (Web Content (x)) R 1 77 77 0 -1 0 0 0 0 0 "
            "11 22 0 0 20 0 1 0 333 0 0\n"
        )
        assert parse_stat(content) == (11, 22, 333)

    def test_truncated_content(self):
        assert parse_stat("77 (cat) R 1 77 77 0") is None

    def test_non_numeric_field(self):
        content = "77 (cat) R 1 77 77 0 -1 0 0 0 0 0 x 22 0 0 20 0 1 0 333\n"
        assert parse_stat(content) is None

    def test_no_command_name(self):
        assert parse_stat("garbage") is None


class TestReadUid:
    def test_reads_real_uid(self, proc_root: Path):
        write_proc_entry(proc_root, 10, uid=1001)
        assert read_uid(proc_root, 10) == 1001

    def test_real_uid_not_effective(self, proc_root: Path):
        write_proc_entry(proc_root, 10)
        (proc_root / "10" / "status").write_text("Name:\tsu\nUid:\t1000\t0\t0\t0\n")
        assert read_uid(proc_root, 10) == 1000

    def test_missing_process(self, proc_root: Path):
        assert read_uid(proc_root, 99) is None

    def test_missing_uid_line(self, proc_root: Path):
        write_proc_entry(proc_root, 10)
        (proc_root / "10" / "status").write_text("Name:\tbash\n")
        assert read_uid(proc_root, 10) is None

    def test_malformed_uid_line(self, proc_root: Path):
        write_proc_entry(proc_root, 10)
        (proc_root / "10" / "status").write_text("Uid:\n")
        assert read_uid(proc_root, 10) is None


class TestReadCpuTimes:
    def test_reads_fields(self, proc_root: Path):
        write_proc_entry(proc_root, 10, utime=40, stime=2, starttime=555)
        assert read_cpu_times(proc_root, 10) == (40, 2, 555)

    def test_missing_process(self, proc_root: Path):
        assert read_cpu_times(proc_root, 99) is None


class TestProcfsReader:
    def test_read_combines_both_files(self, proc_root: Path):
        write_proc_entry(proc_root, 10, uid=1000, utime=40, stime=2, starttime=555)
        reader = ProcfsReader(proc_root)

        assert reader.read(10) == ProcessSnapshot(
            pid=10, uid=1000, user_time=40, system_time=2, start_time=555
        )

    def test_list_pids(self, proc_root: Path):
        write_proc_entry(proc_root, 10)
        write_proc_entry(proc_root, 11)
        assert sorted(ProcfsReader(proc_root).list_pids()) == [10, 11]

    def test_exited_process_returns_none(self, proc_root: Path):
        assert ProcfsReader(proc_root).read(10) is None

    def test_partial_data_returns_none(self, proc_root: Path):
        """uid readable but stat gone: no snapshot at all."""
        write_proc_entry(proc_root, 10)
        (proc_root / "10" / "stat").unlink()
        assert ProcfsReader(proc_root).read(10) is None

    def test_malformed_stat_returns_none(self, proc_root: Path):
        write_proc_entry(proc_root, 10)
        (proc_root / "10" / "stat").write_text("10 (bash) S 1\n")
        assert ProcfsReader(proc_root).read(10) is None

    def test_accepts_string_root(self, proc_root: Path):
        assert ProcfsReader(str(proc_root)).proc_root == proc_root


@pytest.mark.skipif(not sys.platform.startswith("linux"), reason="needs /proc")
def test_reads_own_process_from_real_proc():
    reader = ProcfsReader()
    snap = reader.read(os.getpid())

    assert snap is not None
    assert snap.uid == os.getuid()
    assert snap.user_time >= 0
    assert os.getpid() in reader.list_pids()

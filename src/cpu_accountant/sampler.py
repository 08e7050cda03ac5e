"""Per-user CPU time accounting over a churning process table.

The engine keeps the last cumulative counters seen for every tracked pid and
folds each tick's increase into a running total for the owning user. The
first sighting of a pid only establishes its baseline: CPU time a process
consumed before it was first observed is never counted.
"""

from dataclasses import dataclass
from typing import Callable

import structlog

from cpu_accountant import logging as console
from cpu_accountant.config import SamplerConfig
from cpu_accountant.snapshot import (
    EnumerationError,
    ProcessSnapshot,
    SnapshotReader,
    resolve_user_name,
)

log = structlog.get_logger()


@dataclass
class ProcessRecord:
    """Last observed counters for one pid."""

    pid: int
    uid: int
    last_user_time: int
    last_system_time: int
    start_time: int | float | None = None


@dataclass
class UserAggregate:
    """Running CPU total for one user. total_cpu_time never decreases."""

    uid: int
    display_name: str
    total_cpu_time: int = 0  # Clock ticks


@dataclass
class TickStats:
    """What a single scan observed."""

    visible: int = 0  # Pids listed
    unreadable: int = 0  # Listed but could not be read
    new: int = 0  # Baselined this tick
    sampled: int = 0  # Contributed a delta (possibly zero)
    ticks: int = 0  # Clock ticks attributed this tick
    evicted: int = 0  # Records dropped because the pid vanished
    enumeration_failed: bool = False


class SamplingEngine:
    """Tracks per-process counters and per-user totals.

    State is owned by the instance: `processes` maps pid to its record and
    `users` maps uid to its aggregate in discovery order. Both tables are
    mutated only by prime() and tick().
    """

    def __init__(
        self,
        reader: SnapshotReader,
        config: SamplerConfig,
        resolve_name: Callable[[int], str] = resolve_user_name,
    ):
        self.reader = reader
        self.config = config
        self._resolve_name = resolve_name
        self.processes: dict[int, ProcessRecord] = {}
        self.users: dict[int, UserAggregate] = {}
        self.tick_count = 0
        self._process_limit_warned = False
        self._user_limit_warned = False

    def prime(self) -> TickStats:
        """Baseline every process already running.

        Existing records are re-baselined; nothing is attributed.
        """
        stats = self._scan(seed_only=True)
        log.info(
            "engine_primed",
            processes=len(self.processes),
            users=len(self.users),
            unreadable=stats.unreadable,
        )
        return stats

    def tick(self) -> TickStats:
        """Scan the process table once and fold CPU deltas into user totals."""
        self.tick_count += 1
        stats = self._scan(seed_only=False)
        log.debug(
            "engine_tick",
            tick=self.tick_count,
            visible=stats.visible,
            unreadable=stats.unreadable,
            new=stats.new,
            ticks=stats.ticks,
            evicted=stats.evicted,
        )
        return stats

    def user_totals(self) -> list[UserAggregate]:
        """Return user aggregates in discovery order."""
        return list(self.users.values())

    # ─────────────────────────────────────────────────────────────────────────

    def _scan(self, seed_only: bool) -> TickStats:
        stats = TickStats()
        try:
            pids = self.reader.list_pids()
        except EnumerationError as e:
            stats.enumeration_failed = True
            log.error("enumeration_failed", error=str(e), tick=self.tick_count)
            console.enumeration_failed(str(e))
            return stats

        stats.visible = len(pids)
        for pid in pids:
            snap = self.reader.read(pid)
            if snap is None:
                # Exited between listing and read, or unreadable
                stats.unreadable += 1
                continue

            record = self.processes.get(pid)
            if record is None or seed_only or self._is_reused(record, snap):
                if self._seed(record, snap):
                    stats.new += 1
                continue

            stats.ticks += self._accumulate(record, snap)
            stats.sampled += 1

        if self.config.prune_vanished:
            stats.evicted = self._evict_missing(set(pids))
        return stats

    def _is_reused(self, record: ProcessRecord, snap: ProcessSnapshot) -> bool:
        """Whether pid now belongs to a different process than the record."""
        if not self.config.detect_pid_reuse:
            return False
        if record.start_time is None or snap.start_time is None:
            return False
        if record.start_time == snap.start_time:
            return False
        log.info(
            "pid_reused",
            pid=snap.pid,
            old_uid=record.uid,
            new_uid=snap.uid,
            old_start=record.start_time,
            new_start=snap.start_time,
        )
        return True

    def _seed(self, record: ProcessRecord | None, snap: ProcessSnapshot) -> bool:
        """Set a pid's baseline. Returns False if the process table is full."""
        if record is None:
            if len(self.processes) >= self.config.max_processes:
                self._warn_process_limit()
                return False
            record = ProcessRecord(
                pid=snap.pid,
                uid=snap.uid,
                last_user_time=snap.user_time,
                last_system_time=snap.system_time,
                start_time=snap.start_time,
            )
            self.processes[snap.pid] = record
        else:
            record.uid = snap.uid
            record.last_user_time = snap.user_time
            record.last_system_time = snap.system_time
            record.start_time = snap.start_time

        self._find_or_create_user(snap.uid)
        return True

    def _accumulate(self, record: ProcessRecord, snap: ProcessSnapshot) -> int:
        """Fold one sample into the owner's total. Returns ticks attributed."""
        # Counters that went backwards contribute nothing for this tick
        delta_user = max(0, snap.user_time - record.last_user_time)
        delta_system = max(0, snap.system_time - record.last_system_time)
        delta = delta_user + delta_system

        # Stored counters follow the latest read even when clamped
        record.last_user_time = snap.user_time
        record.last_system_time = snap.system_time
        record.uid = snap.uid

        user = self._find_or_create_user(snap.uid)
        if user is None:
            return 0
        user.total_cpu_time += delta
        return delta

    def _find_or_create_user(self, uid: int) -> UserAggregate | None:
        user = self.users.get(uid)
        if user is not None:
            return user
        if len(self.users) >= self.config.max_users:
            self._warn_user_limit()
            return None
        user = UserAggregate(uid=uid, display_name=self._resolve_name(uid))
        self.users[uid] = user
        log.info("user_discovered", uid=uid, name=user.display_name)
        return user

    def _evict_missing(self, listed: set[int]) -> int:
        """Drop records for pids that were not listed this scan."""
        stale = [pid for pid in self.processes if pid not in listed]
        for pid in stale:
            del self.processes[pid]
        return len(stale)

    def _warn_process_limit(self) -> None:
        if self._process_limit_warned:
            return
        self._process_limit_warned = True
        log.warning("process_capacity_reached", limit=self.config.max_processes)
        console.capacity_reached("processes", self.config.max_processes)

    def _warn_user_limit(self) -> None:
        if self._user_limit_warned:
            return
        self._user_limit_warned = True
        log.warning("user_capacity_reached", limit=self.config.max_users)
        console.capacity_reached("users", self.config.max_users)

"""Fixed-duration monitoring loop for cpu-accountant."""

import asyncio
import signal
from dataclasses import dataclass
from datetime import datetime

import structlog

from cpu_accountant import logging as console
from cpu_accountant.config import Config
from cpu_accountant.sampler import SamplingEngine, TickStats
from cpu_accountant.snapshot import SnapshotReader, get_clock_ticks, make_reader

log = structlog.get_logger()


@dataclass
class MonitorState:
    """Runtime state of the monitor."""

    running: bool = False
    tick_count: int = 0
    failed_ticks: int = 0
    last_tick_time: datetime | None = None

    def update_tick(self, stats: TickStats) -> None:
        """Update state after a tick."""
        self.tick_count += 1
        if stats.enumeration_failed:
            self.failed_ticks += 1
        self.last_tick_time = datetime.now()


class Monitor:
    """Drives the sampling engine once per interval for a fixed number of ticks."""

    def __init__(self, config: Config, reader: SnapshotReader | None = None):
        self.config = config
        self.state = MonitorState()

        # Clock rate is read once; the report converts with the same value
        self.ticks_per_second = get_clock_ticks(config.sampler.clock_ticks_fallback)
        self.reader = reader or make_reader(config.sampler, self.ticks_per_second)
        self.engine = SamplingEngine(self.reader, config.sampler)

        self._shutdown_event = asyncio.Event()

    def request_stop(self) -> None:
        """Stop before the next tick. The report covers ticks already taken."""
        self._shutdown_event.set()

    def _handle_signal(self, sig: signal.Signals) -> None:
        """Handle SIGINT/SIGTERM by ending the window early."""
        console.signal_received(sig.name)
        log.info("signal_received", signal=sig.name)
        self.request_stop()

    def _install_signal_handlers(self) -> list[signal.Signals]:
        loop = asyncio.get_running_loop()
        installed = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._handle_signal, sig)
            except (NotImplementedError, RuntimeError, ValueError):
                # Not on the main thread, or no signal support on this platform
                continue
            installed.append(sig)
        return installed

    async def run(self, duration: int) -> SamplingEngine:
        """Sample `duration` times, one interval apart, and return the engine.

        The engine is primed before the first wait so that processes already
        running only contribute CPU time spent inside the window.
        """
        loop = asyncio.get_running_loop()
        installed = self._install_signal_handlers()
        self.state.running = True
        try:
            primed = self.engine.prime()
            log.info(
                "monitor_starting",
                duration=duration,
                interval=self.config.sampler.sample_interval,
                ticks_per_second=self.ticks_per_second,
                reader=type(self.reader).__name__,
            )
            console.monitor_started(duration, primed.visible, type(self.reader).__name__)
            await self._main_loop(duration)
        finally:
            self.state.running = False
            for sig in installed:
                loop.remove_signal_handler(sig)

        if self.state.tick_count < duration:
            console.monitor_interrupted(self.state.tick_count, duration)
        console.monitor_finished(self.state.tick_count, len(self.engine.users))
        log.info(
            "monitor_finished",
            ticks=self.state.tick_count,
            failed_ticks=self.state.failed_ticks,
            users=len(self.engine.users),
            processes=len(self.engine.processes),
        )
        return self.engine

    async def _main_loop(self, duration: int) -> None:
        """Wait one interval, then tick; repeat `duration` times.

        The wait is on the shutdown event, so a stop request ends it at once.
        A stop never interrupts a tick in progress.
        """
        interval = self.config.sampler.sample_interval
        heartbeat_every = self.config.sampler.heartbeat_ticks

        for _ in range(duration):
            if interval > 0:
                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=interval)
                    break  # Stop requested during the wait
                except asyncio.TimeoutError:
                    pass  # Normal timeout, take the next sample
            elif self._shutdown_event.is_set():
                break

            stats = self.engine.tick()
            self.state.update_tick(stats)

            if self.state.tick_count % heartbeat_every == 0:
                log.info(
                    "monitor_heartbeat",
                    ticks=self.state.tick_count,
                    tracked=len(self.engine.processes),
                    users=len(self.engine.users),
                    unreadable=stats.unreadable,
                )
                console.heartbeat(
                    self.state.tick_count,
                    len(self.engine.processes),
                    len(self.engine.users),
                    stats.unreadable,
                )

            # Yield so signal callbacks can run between ticks
            await asyncio.sleep(0)


async def run_monitor(
    duration: int,
    config: Config | None = None,
    reader: SnapshotReader | None = None,
) -> Monitor:
    """Run a monitoring window and return the finished monitor.

    Args:
        duration: Number of ticks (seconds at the default interval)
        config: Optional config, loads from file if not provided
        reader: Optional snapshot reader, chosen from config if not provided
    """
    if config is None:
        config = Config.load()

    monitor = Monitor(config, reader)
    try:
        await monitor.run(duration)
    except Exception as e:
        log.exception("monitor_crashed", error=str(e))
        raise
    return monitor

"""Centralized console logging with Rich formatting.

This module provides:
1. Icon vocabulary (Icon class namespace)
2. Level-based styling
3. Core log functions (log, info, warn, error)
4. Domain-specific helpers (monitor_started, capacity_reached, heartbeat, etc.)
5. Structlog configuration (configure)

Console output goes to stderr so the report on stdout stays clean. JSON file
output via structlog remains separate (machine-parseable, no colors).
"""

from __future__ import annotations

import logging
import logging.handlers
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from rich.console import Console

if TYPE_CHECKING:
    from cpu_accountant.config import Config

# Rich console for colorful human-readable output
_console = Console(stderr=True, highlight=False)


# ─────────────────────────────────────────────────────────────────────────────
# Icons
# ─────────────────────────────────────────────────────────────────────────────


class Icon:
    """Icon vocabulary for console output.

    Use via autocomplete: Icon.<TAB> to see all available icons.
    """

    OK = "[bold green]✓[/]"
    FAIL = "[bold red]✗[/]"
    HEARTBEAT = "[magenta]♡[/]"
    FULL = "[yellow]■[/]"
    SIGNAL = "⚡"


# ─────────────────────────────────────────────────────────────────────────────
# Level Styles
# ─────────────────────────────────────────────────────────────────────────────

_LEVEL_STYLES = {
    "info": "[bright_blue]\\[info][/]",
    "warn": "[yellow]\\[warn][/]",
    "error": "[bold red]\\[err][/] ",
}


# ─────────────────────────────────────────────────────────────────────────────
# Core Functions
# ─────────────────────────────────────────────────────────────────────────────


def log(level: str, msg: str, icon: str = "") -> None:
    """Print a log message with timestamp and level.

    Args:
        level: Log level (info, warn, error)
        msg: Message to print (can include Rich markup)
        icon: Optional icon to show after level (e.g., Icon.OK)
    """
    ts = datetime.now().strftime("%H:%M:%S")
    lvl = _LEVEL_STYLES.get(level, f"[{level}]")
    icon_part = f" {icon}" if icon else ""
    _console.print(f"[dim]{ts}[/] {lvl}{icon_part} {msg}")


def info(msg: str, icon: str = "") -> None:
    """Log an info message."""
    log("info", msg, icon)


def warn(msg: str, icon: str = "") -> None:
    """Log a warning message."""
    log("warn", msg, icon)


def error(msg: str, icon: str = "") -> None:
    """Log an error message."""
    log("error", msg, icon)


# ─────────────────────────────────────────────────────────────────────────────
# Domain Helpers
# ─────────────────────────────────────────────────────────────────────────────


def monitor_started(duration: int, process_count: int, reader: str) -> None:
    """Log monitoring window opened."""
    info(
        f"Monitoring for [cyan]{duration}s[/] "
        f"[dim]({process_count} processes baselined via {reader})[/]",
        Icon.OK,
    )


def monitor_finished(ticks: int, user_count: int) -> None:
    """Log monitoring window closed."""
    suffix = "s" if user_count != 1 else ""
    info(f"Finished after [cyan]{ticks}[/] ticks [dim]({user_count} user{suffix} seen)[/]", Icon.OK)


def monitor_interrupted(ticks: int, duration: int) -> None:
    """Log monitoring window cut short."""
    warn(f"Stopped early after {ticks}/{duration} ticks — reporting partial totals")


def signal_received(name: str) -> None:
    """Log signal received."""
    info(f"Received [bold]{name}[/]", Icon.SIGNAL)


def enumeration_failed(error_msg: str) -> None:
    """Log process listing failure (tick abandoned)."""
    error(f"Process scan failed: {error_msg}", Icon.FAIL)


def capacity_reached(table: str, limit: int) -> None:
    """Log a tracking ceiling being hit for the first time."""
    warn(f"Tracking limit reached: {limit} {table} — new {table} are ignored", Icon.FULL)


def heartbeat(ticks: int, tracked: int, users: int, unreadable: int) -> None:
    """Log periodic heartbeat stats."""
    info(
        f"[cyan]{ticks}[/] ticks, [cyan]{tracked}[/] processes, "
        f"[cyan]{users}[/] users [dim]({unreadable} unreadable last tick)[/]",
        Icon.HEARTBEAT,
    )


def config_created(path: str) -> None:
    """Log config file created."""
    info(f"Created config at [cyan]{path}[/]")


# ─────────────────────────────────────────────────────────────────────────────
# Structlog Configuration
# ─────────────────────────────────────────────────────────────────────────────


def _add_source(source: str) -> structlog.types.Processor:
    """Create a processor that adds a source field to log events."""

    def processor(
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict["source"] = source
        return event_dict

    return processor


def configure(config: Config) -> None:
    """Configure structlog to write JSON Lines to the rotating log file.

    Uses local time to match tick timestamps.

    Args:
        config: Application config with paths
    """
    # Ensure state directory exists for log file
    config.state_dir.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        config.log_path,
        maxBytes=config.system.log_max_bytes,
        backupCount=config.system.log_backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.INFO)

    stdlib_root = logging.getLogger()
    stdlib_root.setLevel(logging.INFO)

    # Clear any existing handlers
    stdlib_root.handlers.clear()

    file_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
                structlog.processors.add_log_level,
                _add_source("monitor"),
                structlog.processors.format_exc_info,
            ],
        )
    )
    stdlib_root.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
            structlog.processors.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Console output is handled by Rich (see log functions above)
    # structlog only writes to JSON file for machine parsing

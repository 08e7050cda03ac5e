"""Configuration system for cpu-accountant."""

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit

VALID_READERS = {"auto", "procfs", "psutil"}


@dataclass
class SamplerConfig:
    """Sampling engine configuration."""

    sample_interval: float = 1.0  # Seconds between ticks
    reader: str = "auto"  # auto, procfs or psutil
    proc_root: str = "/proc"  # Mount point of the live process table
    # Tracking ceilings (new entities past a ceiling are dropped with a warning)
    max_processes: int = 65536
    max_users: int = 1024
    detect_pid_reuse: bool = True  # Re-seed a pid whose start time changed
    prune_vanished: bool = True  # Forget pids that are no longer listed
    clock_ticks_fallback: int = 100  # Used when SC_CLK_TCK is unavailable
    heartbeat_ticks: int = 60  # Log heartbeat every N ticks


@dataclass
class SystemConfig:
    """Process-level settings."""

    # Log file rotation
    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


@dataclass
class Config:
    """Main configuration container."""

    sampler: SamplerConfig = field(default_factory=SamplerConfig)
    system: SystemConfig = field(default_factory=SystemConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "cpu-accountant"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs."""
        return Path.home() / ".local" / "state" / "cpu-accountant"

    @property
    def log_path(self) -> Path:
        """Monitor log path.

        Logs are expendable persistent state, so they go in XDG_STATE_HOME.
        """
        return self.state_dir / "monitor.log"

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ["sampler", "system"]:
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions, so Config() and
        Config.load() on a missing file are identical.

        Raises:
            ValueError: If the file cannot be parsed or holds invalid values.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        sys_data = data.get("system", {})
        sys_defaults = defaults.system

        return cls(
            sampler=_load_sampler_config(data.get("sampler", {})),
            system=SystemConfig(
                log_max_bytes=_typed(sys_data, "log_max_bytes", sys_defaults.log_max_bytes, int),
                log_backup_count=_typed(
                    sys_data, "log_backup_count", sys_defaults.log_backup_count, int
                ),
            ),
        )


def _typed(data: dict, key: str, default, kind: type | tuple[type, ...]):
    """Fetch key from TOML data, rejecting values of the wrong type."""
    value = data.get(key, default)
    # bool is an int subclass; only accept it where bool is asked for
    if isinstance(value, bool) and kind is not bool:
        raise ValueError(f"{key} must not be a boolean, got {value!r}")
    if not isinstance(value, kind):
        raise ValueError(f"{key} has the wrong type: {value!r}")
    return value


def _load_sampler_config(data: dict) -> SamplerConfig:
    """Load sampler config from TOML data, using dataclass defaults for missing fields."""
    d = SamplerConfig()

    reader = _typed(data, "reader", d.reader, str)
    if reader not in VALID_READERS:
        raise ValueError(f"Invalid reader: {reader!r}. Must be one of {sorted(VALID_READERS)}")

    sample_interval = _typed(data, "sample_interval", d.sample_interval, (int, float))
    if sample_interval < 0:
        raise ValueError(f"sample_interval must be >= 0, got {sample_interval}")

    max_processes = _typed(data, "max_processes", d.max_processes, int)
    max_users = _typed(data, "max_users", d.max_users, int)
    if max_processes < 1:
        raise ValueError(f"max_processes must be >= 1, got {max_processes}")
    if max_users < 1:
        raise ValueError(f"max_users must be >= 1, got {max_users}")

    clock_ticks_fallback = _typed(data, "clock_ticks_fallback", d.clock_ticks_fallback, int)
    if clock_ticks_fallback < 1:
        raise ValueError(f"clock_ticks_fallback must be >= 1, got {clock_ticks_fallback}")

    heartbeat_ticks = _typed(data, "heartbeat_ticks", d.heartbeat_ticks, int)
    if heartbeat_ticks < 1:
        raise ValueError(f"heartbeat_ticks must be >= 1, got {heartbeat_ticks}")

    return SamplerConfig(
        sample_interval=sample_interval,
        reader=str(reader),
        proc_root=str(_typed(data, "proc_root", d.proc_root, str)),
        max_processes=max_processes,
        max_users=max_users,
        detect_pid_reuse=_typed(data, "detect_pid_reuse", d.detect_pid_reuse, bool),
        prune_vanished=_typed(data, "prune_vanished", d.prune_vanished, bool),
        clock_ticks_fallback=clock_ticks_fallback,
        heartbeat_ticks=heartbeat_ticks,
    )

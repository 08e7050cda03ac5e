"""CLI entry point for cpu-accountant."""

from pathlib import Path

import click

USAGE = "Usage: cpu-accountant <duration_seconds>"


def _parse_duration(args: tuple[str, ...]) -> int:
    """Validate the positional arguments, exiting with status 1 on bad input."""
    if len(args) != 1:
        click.echo(USAGE, err=True)
        raise SystemExit(1)

    try:
        duration = int(args[0])
    except ValueError:
        duration = 0
    if duration <= 0:
        click.echo("Error: duration must be a positive integer", err=True)
        click.echo(USAGE, err=True)
        raise SystemExit(1)
    return duration


# Unknown options pass through as arguments so "-5" reaches _parse_duration
@click.command(context_settings={"ignore_unknown_options": True})
@click.version_option()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: ~/.config/cpu-accountant/config.toml)",
)
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
def main(config_path: Path | None, args: tuple[str, ...]) -> None:
    """Monitor CPU time per user for DURATION seconds, then print a ranking."""
    import asyncio

    import structlog

    from cpu_accountant import logging as console
    from cpu_accountant.config import Config
    from cpu_accountant.monitor import run_monitor
    from cpu_accountant.report import build_report, render_report

    duration = _parse_duration(args)

    try:
        config = Config.load(config_path)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    # First run with the default location writes a config to edit later
    created = config_path is None and not config.config_path.exists()
    if created:
        config.save()

    console.configure(config)

    if created:
        log = structlog.get_logger()
        log.info("config_created", path=str(config.config_path))
        console.config_created(str(config.config_path))

    try:
        monitor = asyncio.run(run_monitor(duration, config))
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    rows = build_report(monitor.engine.user_totals(), monitor.ticks_per_second)
    click.echo(render_report(rows))


if __name__ == "__main__":
    main()

"""Ranked per-user CPU time report."""

from collections.abc import Iterable
from dataclasses import dataclass

from cpu_accountant.sampler import UserAggregate

HEADER = f"{'Rank':<4} {'User':<14} CPU Time (milliseconds)"
RULE = "-" * 40
NO_USAGE = "(No CPU usage recorded)"


@dataclass(frozen=True)
class ReportRow:
    """One ranked line of the report."""

    rank: int
    user: str
    milliseconds: int


def ticks_to_ms(ticks: int, ticks_per_second: int) -> int:
    """Convert clock ticks to whole milliseconds (truncating)."""
    return (ticks * 1000) // ticks_per_second


def build_report(users: Iterable[UserAggregate], ticks_per_second: int) -> list[ReportRow]:
    """Rank users by total CPU time, highest first.

    Users with no recorded time are left out. Equal totals keep the order in
    which the users were discovered (sorted() is stable).
    """
    active = [u for u in users if u.total_cpu_time > 0]
    ranked = sorted(active, key=lambda u: u.total_cpu_time, reverse=True)
    return [
        ReportRow(
            rank=i,
            user=u.display_name,
            milliseconds=ticks_to_ms(u.total_cpu_time, ticks_per_second),
        )
        for i, u in enumerate(ranked, start=1)
    ]


def render_report(rows: list[ReportRow]) -> str:
    """Render rows as a fixed-width table, or a notice if there are none."""
    if not rows:
        return NO_USAGE
    lines = [HEADER, RULE]
    for row in rows:
        lines.append(f"{row.rank:<4} {row.user:<14} {row.milliseconds}")
    return "\n".join(lines)

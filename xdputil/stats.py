"""Per-action packet counters and their textual reports."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import List, Optional

from .util import XDP_ACTION_MAX, XdpAction, action2str

__all__ = [
    "NANOSEC_PER_SEC",
    "DataRec",
    "Record",
    "StatsRecord",
    "calc_period",
    "format_stats_one",
    "format_stats",
]

NANOSEC_PER_SEC = 1_000_000_000
_U64_MASK = (1 << 64) - 1


@dataclass
class DataRec:
    """Packet and byte counters for one action."""

    rx_packets: int = 0
    rx_bytes: int = 0


@dataclass
class Record:
    """Counters for one action together with the monotonic time (ns) read."""

    timestamp: int = 0
    enabled: bool = False
    total: DataRec = field(default_factory=DataRec)


@dataclass
class StatsRecord:
    """One Record per XDP action, indexed by action value."""

    stats: List[Record] = field(
        default_factory=lambda: [Record() for _ in range(XDP_ACTION_MAX)]
    )

    def enable(self, action: int) -> None:
        """Mark *action* as collected and reported."""
        self.stats[XdpAction(action)].enabled = True


def calc_period(rec: Record, prev: Record) -> float:
    """Seconds elapsed between two readings, 0.0 when none elapsed."""
    period = (rec.timestamp - prev.timestamp) & _U64_MASK
    if period > 0:
        return period / NANOSEC_PER_SEC
    return 0.0


def format_stats_one(stats_rec: StatsRecord) -> str:
    """Totals for each enabled action, one line per action."""
    lines = []
    for action, rec in enumerate(stats_rec.stats):
        if not rec.enabled:
            continue
        name = action2str(action)
        lines.append(
            f"  {name:<35} {rec.total.rx_packets:>11,} pkts "
            f"{rec.total.rx_bytes // 1024:>11,} KiB\n"
        )
    return "".join(lines)


def format_stats(
    stats_rec: StatsRecord,
    stats_prev: StatsRecord,
    now: Optional[float] = None,
) -> str:
    """Totals and rates since *stats_prev* for each enabled action.

    *now* is the wall-clock time (seconds) shown in the header. Output stops
    at the first enabled action whose period is zero.
    """
    if now is None:
        now = time.time()
    sec = int(now)
    usec = min(int(round((now - sec) * 1_000_000)), 999_999)

    out: List[str] = []
    first = True
    for action, (rec, prev) in enumerate(zip(stats_rec.stats, stats_prev.stats)):
        if not rec.enabled:
            continue

        packets = (rec.total.rx_packets - prev.total.rx_packets) & _U64_MASK
        nbytes = (rec.total.rx_bytes - prev.total.rx_bytes) & _U64_MASK

        period = calc_period(rec, prev)
        if period == 0:
            return "".join(out)

        if first:
            out.append(f"Period of {period:f}s ending at {sec}.{usec:06d}\n")
            first = False

        pps = packets / period
        bps = (nbytes * 8) / period / 1_000_000

        out.append(
            f"{action2str(action):<12} {rec.total.rx_packets:>11,} pkts "
            f"({pps:>10,.0f} pps) {rec.total.rx_bytes // 1024:>11,} KiB "
            f"({bps:>6,.0f} Mbits/s)\n"
        )
    out.append("\n")
    return "".join(out)
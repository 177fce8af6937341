"""
Interval helpers shared by the matchers.

Loads are sampled at whole-minute ticks counted from the phase start.
Load is piecewise constant and only rises where an allocation starts, so
the peak over the ticks is reached either at the phase start or at the
first tick at or after some allocation start. Checking those ticks alone
gives the same answer as walking every minute.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Tuple

MINUTE = timedelta(minutes=1)

Load = Tuple[datetime, datetime, Decimal]


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open overlap: touching intervals do not overlap."""
    return a_start < b_end and b_start < a_end


def first_tick_at_or_after(origin: datetime, instant: datetime) -> datetime:
    offset = instant - origin
    ticks = -((-offset) // MINUTE)
    return origin + ticks * MINUTE


def peak_load(loads: Iterable[Load], start: datetime, end: datetime) -> Decimal:
    """Highest summed fraction at any minute tick of [start, end)."""
    loads = [(s, e, f) for s, e, f in loads if overlaps(s, e, start, end)]
    probes = {start}
    for s, _, _ in loads:
        if s > start:
            tick = first_tick_at_or_after(start, s)
            if tick < end:
                probes.add(tick)

    peak = Decimal("0")
    for t in probes:
        at_t = sum((f for s, e, f in loads if s <= t < e), Decimal("0"))
        peak = max(peak, at_t)
    return peak

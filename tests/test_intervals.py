"""Tests for the interval sweep used by the capacity checks."""

from datetime import timedelta
from decimal import Decimal

from allocator.intervals import first_tick_at_or_after, overlaps, peak_load
from conftest import at

HALF = Decimal("0.50")
QUARTER = Decimal("0.25")


def brute_force_peak(loads, start, end):
    """Reference: walk every minute."""
    peak = Decimal("0")
    t = start
    while t < end:
        peak = max(peak, sum((f for s, e, f in loads if s <= t < e), Decimal("0")))
        t += timedelta(minutes=1)
    return peak


class TestOverlaps:

    def test_touching_intervals(self) -> None:
        """Should treat intervals that only touch as disjoint."""
        assert not overlaps(at(10), at(10, 30), at(10, 30), at(11))

    def test_partial(self) -> None:
        """Should detect a partial overlap."""
        assert overlaps(at(10), at(10, 30), at(10, 15), at(10, 45))


class TestFirstTick:

    def test_on_tick(self) -> None:
        """Should return the instant itself when it falls on a tick."""
        assert first_tick_at_or_after(at(10), at(10, 7)) == at(10, 7)

    def test_between_ticks(self) -> None:
        """Should round up to the next whole minute from the origin."""
        assert first_tick_at_or_after(at(10), at(10, 7) + timedelta(seconds=1)) == at(10, 8)


class TestPeakLoad:

    def test_empty(self) -> None:
        """Should be zero without loads."""
        assert peak_load([], at(10), at(11)) == Decimal("0")

    def test_partial_overlap_counted(self) -> None:
        """Should see both loads where 10:00-10:30 and 10:15-10:45 overlap."""
        loads = [(at(10), at(10, 30), HALF), (at(10, 15), at(10, 45), HALF)]
        assert peak_load(loads, at(10, 20), at(10, 40)) == Decimal("1.00")

    def test_sequential_loads_do_not_stack(self) -> None:
        """Should not add back-to-back loads."""
        loads = [(at(10), at(10, 30), HALF), (at(10, 30), at(11), HALF)]
        assert peak_load(loads, at(10), at(11)) == HALF

    def test_exact_decimal_sum(self) -> None:
        """Should sum four quarters to exactly one."""
        loads = [(at(10), at(11), QUARTER)] * 4
        assert peak_load(loads, at(10), at(11)) == Decimal("1")

    def test_sub_minute_load_between_ticks(self) -> None:
        """Should ignore a load that covers no minute tick of the interval."""
        loads = [(at(10) + timedelta(seconds=10), at(10) + timedelta(seconds=50), HALF)]
        assert peak_load(loads, at(10), at(10, 30)) == Decimal("0")

    def test_matches_minute_walk(self) -> None:
        """Should agree with a minute-by-minute walk on staggered loads."""
        loads = [
            (at(9, 50), at(10, 10), QUARTER),
            (at(10, 5) + timedelta(seconds=30), at(10, 20), HALF),
            (at(10, 19), at(10, 40), QUARTER),
            (at(10, 35), at(11, 5), HALF),
        ]
        for start, end in [(at(10), at(10, 30)), (at(10, 6), at(10, 36)), (at(10, 21), at(11))]:
            assert peak_load(loads, start, end) == brute_force_peak(loads, start, end)

"""
Availability search.

1. SlotScanner: probes one local day at a fixed step and keeps the start
   times the Phase Sequencer accepts. The day is read into a single
   snapshot, so every probe is judged exactly like a real booking.
2. SmartAvailabilityAggregator: scans forward from the requested day until
   a day is dense enough, merges consecutive starts into offer windows and
   phrases the result for a human (or an assistant) to read.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Callable, List, Optional

from pydantic import BaseModel, Field

from .catalog import CatalogResolver
from .config import settings as default_settings
from .engine import PhaseSequencer
from .errors import SearchError
from .state import load_snapshot
from .transactions import utc_now

logger = logging.getLogger(__name__)

NOON_HOUR = 12
EVENING_HOUR = 18


# --- Result Models ---

class OfferWindow(BaseModel):
    """A continuous stretch of time in which the treatment can be booked."""
    starts_at: datetime
    ends_at: datetime


class DayParts(BaseModel):
    morning: List[datetime] = Field(default_factory=list, description="Starts before 12:00 local")
    afternoon: List[datetime] = Field(default_factory=list, description="Starts before 18:00 local")
    evening: List[datetime] = Field(default_factory=list)


class SmartAvailability(BaseModel):
    requested_day: date
    searched_day: date = Field(description="Day the slots belong to; differs from requested_day after lookahead")
    windows: List[OfferWindow] = Field(default_factory=list)
    raw_slots: List[datetime] = Field(default_factory=list)
    day_parts: DayParts = Field(default_factory=DayParts)
    hint: str


class SlotScanner:

    def __init__(self, store, settings=None, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.settings = settings or default_settings
        self.clock = clock or utc_now
        self.catalog = CatalogResolver(store)

    def candidates(self, day: date) -> List[datetime]:
        """Candidate start instants of a local day, stepped on the wall clock and returned in UTC."""
        tz = self.settings.tz
        step = timedelta(minutes=self.settings.SLOT_STEP_MINUTES)
        cursor = datetime.combine(day, self.settings.SCAN_OPEN_TIME)
        close = datetime.combine(day, self.settings.SCAN_CLOSE_TIME)

        result = []
        while cursor < close:
            result.append(cursor.replace(tzinfo=tz).astimezone(timezone.utc))
            cursor += step
        return result

    def scan(self, treatment_id: str, day: date) -> List[datetime]:
        resolved = self.catalog.resolve(treatment_id, require_active=False)
        if not resolved.treatment.is_active:
            return []

        tz = self.settings.tz
        duration = timedelta(minutes=resolved.total_minutes)
        window_start = datetime.combine(day, self.settings.SCAN_OPEN_TIME, tzinfo=tz).astimezone(timezone.utc)
        latest_end = datetime.combine(day, self.settings.LATEST_END_TIME, tzinfo=tz).astimezone(timezone.utc)
        if window_start >= latest_end:
            return []

        snapshot = load_snapshot(self.store, window_start, latest_end)
        sequencer = PhaseSequencer(snapshot, tz)
        now = self.clock()

        slots = []
        for start in self.candidates(day):
            if start < now or start + duration > latest_end:
                continue
            try:
                sequencer.run(resolved.phases, start)
            except SearchError:
                continue
            slots.append(start)

        logger.debug(f"{treatment_id} on {day.isoformat()}: {len(slots)} feasible starts")
        return slots


class SmartAvailabilityAggregator:

    def __init__(self, scanner: SlotScanner, settings=None):
        self.scanner = scanner
        self.settings = settings or scanner.settings

    def search(self, treatment_id: str, requested_day: date) -> SmartAvailability:
        min_slots = self.settings.MIN_SLOTS_PER_DAY

        # Proactive lookahead; fall back to the densest day seen
        searched_day, slots = None, []
        for offset in range(self.settings.MAX_LOOKAHEAD_DAYS):
            day = requested_day + timedelta(days=offset)
            found = self.scanner.scan(treatment_id, day)
            if searched_day is None or len(found) > len(slots):
                searched_day, slots = day, found
            if len(found) >= min_slots:
                searched_day, slots = day, found
                break

        resolved = self.scanner.catalog.resolve(treatment_id, require_active=False)
        windows = self.merge_windows(
            slots,
            timedelta(minutes=self.settings.SLOT_STEP_MINUTES),
            timedelta(minutes=resolved.total_minutes),
        )

        if searched_day != requested_day:
            logger.info(f"{treatment_id}: {requested_day.isoformat()} too sparse, offering {searched_day.isoformat()}")

        return SmartAvailability(
            requested_day=requested_day,
            searched_day=searched_day,
            windows=windows,
            raw_slots=slots,
            day_parts=self.day_parts(slots),
            hint=self.hint(requested_day, searched_day, windows),
        )

    @staticmethod
    def merge_windows(slots: List[datetime], step: timedelta, duration: timedelta) -> List[OfferWindow]:
        """Starts exactly one step apart extend the running window to the last start + duration."""
        windows: List[OfferWindow] = []
        previous = None
        for slot in slots:
            if windows and previous is not None and slot - previous == step:
                windows[-1].ends_at = slot + duration
            else:
                windows.append(OfferWindow(starts_at=slot, ends_at=slot + duration))
            previous = slot
        return windows

    def day_parts(self, slots: List[datetime]) -> DayParts:
        parts = DayParts()
        for slot in slots:
            hour = slot.astimezone(self.settings.tz).hour
            if hour < NOON_HOUR:
                parts.morning.append(slot)
            elif hour < EVENING_HOUR:
                parts.afternoon.append(slot)
            else:
                parts.evening.append(slot)
        return parts

    def hint(self, requested_day: date, searched_day: date, windows: List[OfferWindow]) -> str:
        if not windows:
            following = self.settings.MAX_LOOKAHEAD_DAYS - 1
            if not following:
                return f"I found no availability on {requested_day.isoformat()}."
            days = "day" if following == 1 else "days"
            return f"I found no availability on {requested_day.isoformat()} or in the {following} {days} after it."

        if searched_day != requested_day:
            lead = (f"There are no openings on {requested_day.isoformat()}. "
                    f"However, I searched {searched_day.isoformat()} and ")
        else:
            lead = f"On {searched_day.isoformat()} "

        phrases = [f"from {self._clock_time(w.starts_at)} to {self._clock_time(w.ends_at)}" for w in windows]
        if len(phrases) == 1:
            body = f"there is continuous availability {phrases[0]}"
        else:
            body = f"there is availability {', '.join(phrases[:-1])} and {phrases[-1]}"
        return f"{lead}{body}."

    def _clock_time(self, instant: datetime) -> str:
        return instant.astimezone(self.settings.tz).strftime("%H:%M")

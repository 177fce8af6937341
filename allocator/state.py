"""
Clinic State Snapshot.

This module acts as the 'Memory' of one allocation attempt.
Everything the matchers consult is read from the store once, then indexed:
1. Catalog (installations, staff, weekly schedules).
2. Exceptions overlapping the attempt's window.
3. Committed loads of non-cancelled bookings overlapping the window.

Real bookings and availability probes run against the same snapshot type,
so a slot offered by the scanner is judged by the exact same checks as the
booking that later claims it.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Dict, Optional, Tuple
from collections import defaultdict
from dataclasses import dataclass, field

from clinic import Installation, InstallationCategory, StaffMember, WeeklyScheduleEntry, ScheduleException
from .intervals import overlaps


@dataclass(frozen=True)
class CommittedLoad:
    """One stored allocation of a non-cancelled booking, with its derived staff fraction."""
    booking_id: str
    staff_id: str
    installation_id: Optional[str]
    starts_at: datetime
    ends_at: datetime
    fraction: Decimal


@dataclass
class ClinicSnapshot:
    """
    Read-once view of the clinic for the window [window_start, window_end).
    """
    window_start: datetime
    window_end: datetime
    installations: List[Installation] = field(default_factory=list)
    staff: List[StaffMember] = field(default_factory=list)
    schedules: List[WeeklyScheduleEntry] = field(default_factory=list)
    exceptions: List[ScheduleException] = field(default_factory=list)
    loads: List[CommittedLoad] = field(default_factory=list)

    def __post_init__(self):
        # Resource Indices
        self.installations_by_category: Dict[InstallationCategory, List[Installation]] = defaultdict(list)
        for inst in self.installations:
            if inst.is_active:
                self.installations_by_category[inst.category].append(inst)

        self.schedule_index: Dict[Tuple[str, int], WeeklyScheduleEntry] = {
            (entry.staff_id, entry.day_of_week): entry for entry in self.schedules
        }

        self.clinic_exceptions: List[ScheduleException] = []
        self.staff_exceptions: Dict[str, List[ScheduleException]] = defaultdict(list)
        self.installation_exceptions: Dict[str, List[ScheduleException]] = defaultdict(list)
        for exc in self.exceptions:
            if exc.is_clinic_wide:
                self.clinic_exceptions.append(exc)
            if exc.staff_id:
                self.staff_exceptions[exc.staff_id].append(exc)
            if exc.installation_id:
                self.installation_exceptions[exc.installation_id].append(exc)

        self.staff_loads: Dict[str, List[CommittedLoad]] = defaultdict(list)
        self.installation_loads: Dict[str, List[CommittedLoad]] = defaultdict(list)
        for load in self.loads:
            self.staff_loads[load.staff_id].append(load)
            if load.installation_id:
                self.installation_loads[load.installation_id].append(load)

    # --- Query Methods (Used by constraints.py) ---

    def installations_of(self, category: InstallationCategory) -> List[Installation]:
        """Active installations of a category, in store order."""
        return self.installations_by_category.get(category, [])

    def schedule_for(self, staff_id: str, day_of_week: int) -> Optional[WeeklyScheduleEntry]:
        return self.schedule_index.get((staff_id, day_of_week))

    def installation_is_booked(self, installation_id: str, start: datetime, end: datetime) -> bool:
        return any(
            overlaps(load.starts_at, load.ends_at, start, end)
            for load in self.installation_loads.get(installation_id, [])
        )

    def loads_of_staff(self, staff_id: str, start: datetime, end: datetime) -> List[CommittedLoad]:
        return [
            load for load in self.staff_loads.get(staff_id, [])
            if overlaps(load.starts_at, load.ends_at, start, end)
        ]


def load_snapshot(store, start: datetime, end: datetime) -> ClinicSnapshot:
    """Read everything one allocation attempt needs for [start, end) in one pass."""
    return ClinicSnapshot(
        window_start=start,
        window_end=end,
        installations=store.list_installations(),
        staff=store.list_staff(),
        schedules=store.list_schedule_entries(),
        exceptions=store.list_exceptions(start, end),
        loads=store.list_committed_loads(start, end),
    )

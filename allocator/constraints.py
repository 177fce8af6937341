"""
Hard Constraint Validation Logic.

This module answers the binary question: "Can phase X happen at interval Y?"
It enforces closures, installation exclusivity and the per-minute staff
capacity ceiling of 1.0.
"""

from datetime import datetime, tzinfo
from decimal import Decimal
from typing import List, Optional, Dict, Set, Tuple
from dataclasses import dataclass

from clinic import Installation, InstallationCategory, StaffMember, PhaseAllocation, ScheduleException
from .intervals import peak_load
from .state import ClinicSnapshot

CAPACITY_CEILING = Decimal("1")

# Staff rejection reasons
OFF_SHIFT = "off_shift"
ON_EXCEPTION = "exception"
AT_CAPACITY = "at_capacity"


@dataclass
class ConstraintViolation:
    """Detailed reason for rejection."""
    constraint_type: str  # e.g. "Clinic", "Resource", "Staff"
    reason: str
    phase_ordinal: int
    starts_at: datetime
    ends_at: datetime


class ExceptionFilter:
    """Is the clinic / an installation / a staff member blocked during [start, end)?"""

    def __init__(self, snapshot: ClinicSnapshot):
        self.snapshot = snapshot

    def clinic_block(self, start: datetime, end: datetime) -> Optional[ScheduleException]:
        for exc in self.snapshot.clinic_exceptions:
            if exc.overlaps(start, end):
                return exc
        return None

    def staff_blocked(self, staff_id: str, start: datetime, end: datetime) -> bool:
        return any(exc.overlaps(start, end) for exc in self.snapshot.staff_exceptions.get(staff_id, []))

    def installation_blocked(self, installation_id: str, start: datetime, end: datetime) -> bool:
        return any(
            exc.overlaps(start, end)
            for exc in self.snapshot.installation_exceptions.get(installation_id, [])
        )


class ResourceMatcher:
    """Finds free installations of a category for an exact interval."""

    def __init__(self, snapshot: ClinicSnapshot, exception_filter: ExceptionFilter):
        self.snapshot = snapshot
        self.exceptions = exception_filter

    def has_category(self, category: InstallationCategory) -> bool:
        return bool(self.snapshot.installations_of(category))

    def free_installations(
        self,
        category: InstallationCategory,
        start: datetime,
        end: datetime,
        claimed: Set[str]
    ) -> List[Installation]:
        """
        Every active instance of the category that is not booked by another
        booking, not under an exception and not claimed earlier in this booking.
        """
        free = []
        for inst in self.snapshot.installations_of(category):
            if inst.id in claimed:
                continue
            if self.snapshot.installation_is_booked(inst.id, start, end):
                continue
            if self.exceptions.installation_blocked(inst.id, start, end):
                continue
            free.append(inst)
        return free


class CapacityMatcher:
    """
    Finds staff members who can absorb a fractional load for an interval.
    Schedule coverage is judged in the clinic's local zone.
    """

    def __init__(self, snapshot: ClinicSnapshot, exception_filter: ExceptionFilter, clinic_tz: tzinfo):
        self.snapshot = snapshot
        self.exceptions = exception_filter
        self.clinic_tz = clinic_tz

    def rejection(
        self,
        staff: StaffMember,
        fraction: Decimal,
        start: datetime,
        end: datetime,
        prior: List[PhaseAllocation]
    ) -> Optional[str]:
        """None if the staff member fits, else the first failed check."""
        # 1. Weekly template (local wall clock)
        local_start = start.astimezone(self.clinic_tz)
        local_end = end.astimezone(self.clinic_tz)
        entry = self.snapshot.schedule_for(staff.id, local_start.weekday())
        if entry is None or not entry.covers(local_start, local_end):
            return OFF_SHIFT

        # 2. Absences
        if self.exceptions.staff_blocked(staff.id, start, end):
            return ON_EXCEPTION

        # 3. Capacity: other bookings plus earlier phases of this booking
        loads = [(c.starts_at, c.ends_at, c.fraction) for c in self.snapshot.loads_of_staff(staff.id, start, end)]
        loads.extend(
            (a.starts_at, a.ends_at, a.staff_fraction) for a in prior if a.staff_id == staff.id
        )
        if peak_load(loads, start, end) + fraction > CAPACITY_CEILING:
            return AT_CAPACITY

        return None

    def eligible_staff(
        self,
        fraction: Decimal,
        start: datetime,
        end: datetime,
        prior: List[PhaseAllocation]
    ) -> Tuple[List[StaffMember], Dict[str, str]]:
        """Staff surviving all checks, in store order, plus the reason each other one failed."""
        eligible = []
        rejected: Dict[str, str] = {}
        for staff in self.snapshot.staff:
            reason = self.rejection(staff, fraction, start, end, prior)
            if reason is None:
                eligible.append(staff)
            else:
                rejected[staff.id] = reason
        return eligible, rejected

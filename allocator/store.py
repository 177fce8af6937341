"""
Calendar store contract.

The engine reaches persisted state only through these independent
operations; there is no transaction spanning several of them. Atomicity of
multi-step writes is the transaction manager's job (compensating actions).
"""

import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional

from clinic import (
    Booking, BookingStatus, Installation, Phase, PhaseAllocation,
    ScheduleException, StaffMember, Treatment, WeeklyScheduleEntry
)
from .errors import StoreError
from .state import CommittedLoad


def generate_id(prefix: str) -> str:
    """Generate a prefixed UUID."""
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


class CalendarStore(ABC):

    # =========================================================================
    # Seeding
    # =========================================================================

    @abstractmethod
    def add_treatment(self, treatment: Treatment, phases: Optional[List[Phase]] = None) -> Treatment: ...

    @abstractmethod
    def add_installation(self, installation: Installation) -> Installation: ...

    @abstractmethod
    def add_staff(self, staff: StaffMember, schedule: Optional[List[WeeklyScheduleEntry]] = None) -> StaffMember: ...

    @abstractmethod
    def add_schedule_entry(self, entry: WeeklyScheduleEntry) -> WeeklyScheduleEntry:
        """Replaces any entry for the same (staff, day)."""

    @abstractmethod
    def add_exception(self, exception: ScheduleException) -> ScheduleException: ...

    def seed(self, treatments=(), phases=(), installations=(), staff=(), schedules=(), exceptions=()) -> None:
        """Bulk load a catalog, e.g. one produced by the data generator."""
        by_treatment: Dict[str, List[Phase]] = {}
        for phase in phases:
            by_treatment.setdefault(phase.treatment_id, []).append(phase)
        for treatment in treatments:
            self.add_treatment(treatment, by_treatment.get(treatment.id))
        for inst in installations:
            self.add_installation(inst)
        for member in staff:
            self.add_staff(member)
        for entry in schedules:
            self.add_schedule_entry(entry)
        for exc in exceptions:
            self.add_exception(exc)

    # =========================================================================
    # Catalog reads
    # =========================================================================

    @abstractmethod
    def get_treatment(self, treatment_id: str) -> Optional[Treatment]: ...

    @abstractmethod
    def list_phases(self, treatment_id: str) -> List[Phase]:
        """Phases of a treatment ordered by ordinal."""

    @abstractmethod
    def list_installations(self) -> List[Installation]:
        """Installations in creation order, inactive ones included."""

    @abstractmethod
    def list_staff(self) -> List[StaffMember]:
        """Staff members in creation order."""

    @abstractmethod
    def list_schedule_entries(self) -> List[WeeklyScheduleEntry]: ...

    @abstractmethod
    def list_exceptions(self, start: datetime, end: datetime) -> List[ScheduleException]:
        """Exceptions overlapping [start, end)."""

    @abstractmethod
    def list_committed_loads(self, start: datetime, end: datetime) -> List[CommittedLoad]:
        """Allocations of non-cancelled bookings overlapping [start, end)."""

    # =========================================================================
    # Bookings
    # =========================================================================

    @abstractmethod
    def get_booking(self, booking_id: str) -> Optional[Booking]: ...

    @abstractmethod
    def list_bookings(self, staff_id: Optional[str] = None, start: Optional[datetime] = None,
                      end: Optional[datetime] = None) -> List[Booking]:
        """Bookings ordered by start, each with its allocations."""

    @abstractmethod
    def insert_booking(self, booking: Booking) -> Booking: ...

    @abstractmethod
    def update_booking(self, booking_id: str, **fields) -> Booking: ...

    @abstractmethod
    def delete_booking(self, booking_id: str) -> None: ...

    # =========================================================================
    # Allocations
    # =========================================================================

    @abstractmethod
    def list_allocations(self, booking_id: str) -> List[PhaseAllocation]:
        """Allocations of one booking ordered by start."""

    @abstractmethod
    def insert_allocations(self, booking_id: str, allocations: List[PhaseAllocation]) -> List[PhaseAllocation]: ...

    @abstractmethod
    def delete_allocations(self, booking_id: str) -> None: ...


class InMemoryStore(CalendarStore):
    """
    Dictionary-backed store.
    Values are copied on the way in and out, so callers never share rows.
    """

    BOOKING_FIELDS = {"patient_id", "treatment_id", "starts_at", "ends_at", "status", "notes"}

    def __init__(self):
        self.treatments: Dict[str, Treatment] = {}
        self.phases: Dict[str, List[Phase]] = {}
        self.installations: Dict[str, Installation] = {}
        self.staff: Dict[str, StaffMember] = {}
        self.schedules: List[WeeklyScheduleEntry] = []
        self.exceptions: Dict[str, ScheduleException] = {}
        self.bookings: Dict[str, Booking] = {}
        self.allocations: Dict[str, PhaseAllocation] = {}

    # --- Seeding ---

    def add_treatment(self, treatment: Treatment, phases: Optional[List[Phase]] = None) -> Treatment:
        self.treatments[treatment.id] = treatment.model_copy(deep=True)
        if phases:
            self.phases[treatment.id] = sorted((p.model_copy() for p in phases), key=lambda p: p.ordinal)
        return treatment

    def add_installation(self, installation: Installation) -> Installation:
        self.installations[installation.id] = installation.model_copy()
        return installation

    def add_staff(self, staff: StaffMember, schedule: Optional[List[WeeklyScheduleEntry]] = None) -> StaffMember:
        self.staff[staff.id] = staff.model_copy()
        for entry in schedule or []:
            self.add_schedule_entry(entry)
        return staff

    def add_schedule_entry(self, entry: WeeklyScheduleEntry) -> WeeklyScheduleEntry:
        # At most one entry per (staff, day)
        self.schedules = [
            e for e in self.schedules
            if (e.staff_id, e.day_of_week) != (entry.staff_id, entry.day_of_week)
        ]
        self.schedules.append(entry.model_copy())
        return entry

    def add_exception(self, exception: ScheduleException) -> ScheduleException:
        self.exceptions[exception.id] = exception.model_copy()
        return exception

    # --- Catalog reads ---

    def get_treatment(self, treatment_id):
        treatment = self.treatments.get(treatment_id)
        return treatment.model_copy() if treatment else None

    def list_phases(self, treatment_id):
        return [p.model_copy() for p in self.phases.get(treatment_id, [])]

    def list_installations(self):
        return [i.model_copy() for i in self.installations.values()]

    def list_staff(self):
        return [s.model_copy() for s in self.staff.values()]

    def list_schedule_entries(self):
        return [e.model_copy() for e in self.schedules]

    def list_exceptions(self, start, end):
        return [e.model_copy() for e in self.exceptions.values() if e.overlaps(start, end)]

    def list_committed_loads(self, start, end):
        loads = []
        for alloc in self.allocations.values():
            booking = self.bookings.get(alloc.booking_id)
            if booking is None or booking.status == BookingStatus.CANCELLED:
                continue
            if not alloc.overlaps(start, end):
                continue
            loads.append(CommittedLoad(
                booking_id=alloc.booking_id,
                staff_id=alloc.staff_id,
                installation_id=alloc.installation_id,
                starts_at=alloc.starts_at,
                ends_at=alloc.ends_at,
                fraction=alloc.staff_fraction,
            ))
        return loads

    # --- Bookings ---

    def get_booking(self, booking_id):
        booking = self.bookings.get(booking_id)
        return booking.model_copy(deep=True) if booking else None

    def list_bookings(self, staff_id=None, start=None, end=None):
        result = []
        for booking in sorted(self.bookings.values(), key=lambda b: b.starts_at):
            if start is not None and booking.starts_at < start:
                continue
            if end is not None and booking.starts_at > end:
                continue
            allocations = self.list_allocations(booking.id)
            if staff_id is not None and not any(a.staff_id == staff_id for a in allocations):
                continue
            result.append(booking.model_copy(update={"allocations": allocations}, deep=True))
        return result

    def insert_booking(self, booking):
        now = datetime.now(timezone.utc)
        row = booking.model_copy(
            update={"id": booking.id or generate_id("bk"), "allocations": [], "created_at": now, "updated_at": now},
            deep=True
        )
        self.bookings[row.id] = row
        return row.model_copy(deep=True)

    def update_booking(self, booking_id, **fields):
        if booking_id not in self.bookings:
            raise StoreError(f"Booking {booking_id} does not exist", {"booking_id": booking_id})
        unknown = set(fields) - self.BOOKING_FIELDS
        if unknown:
            raise StoreError(f"Unknown booking fields: {sorted(unknown)}")
        fields["updated_at"] = datetime.now(timezone.utc)
        self.bookings[booking_id] = self.bookings[booking_id].model_copy(update=fields, deep=True)
        return self.get_booking(booking_id)

    def delete_booking(self, booking_id):
        self.bookings.pop(booking_id, None)
        self.delete_allocations(booking_id)

    # --- Allocations ---

    def list_allocations(self, booking_id):
        rows = [a for a in self.allocations.values() if a.booking_id == booking_id]
        return [a.model_copy() for a in sorted(rows, key=lambda a: a.starts_at)]

    def insert_allocations(self, booking_id, allocations):
        rows = [
            a.model_copy(update={"id": generate_id("al"), "booking_id": booking_id})
            for a in allocations
        ]
        for row in rows:
            self.allocations[row.id] = row
        return [r.model_copy() for r in rows]

    def delete_allocations(self, booking_id):
        for alloc_id in [k for k, a in self.allocations.items() if a.booking_id == booking_id]:
            del self.allocations[alloc_id]

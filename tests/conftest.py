"""Shared test fixtures for the allocator tests."""

from datetime import date, datetime, time, timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from allocator import BookingEngine, InMemoryStore, Settings
from allocator.errors import StoreError
from clinic import (
    Booking, Installation, InstallationCategory, Phase, PhaseAllocation, StaffMember, Treatment,
    WeeklyScheduleEntry
)

TZ = ZoneInfo("America/Santiago")
SUNDAY = date(2026, 3, 1)
MONDAY = date(2026, 3, 2)

CHAMBER = InstallationCategory.CHAMBER
BOX = InstallationCategory.BOX


def at(hour: int, minute: int = 0, day: date = MONDAY) -> datetime:
    """Aware clinic-local instant."""
    return datetime.combine(day, time(hour, minute), tzinfo=TZ)


class FixedClock:
    """Callable clock the tests can move forward."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FailingStore(InMemoryStore):
    """In-memory store whose operations can be made to fail a number of times."""

    def __init__(self):
        super().__init__()
        self.fail_on = {}

    def _maybe_fail(self, name: str):
        remaining = self.fail_on.get(name, 0)
        if remaining:
            self.fail_on[name] = remaining - 1
            raise StoreError(f"{name} failed")

    def insert_booking(self, booking):
        self._maybe_fail("insert_booking")
        return super().insert_booking(booking)

    def update_booking(self, booking_id, **fields):
        self._maybe_fail("update_booking")
        return super().update_booking(booking_id, **fields)

    def delete_booking(self, booking_id):
        self._maybe_fail("delete_booking")
        return super().delete_booking(booking_id)

    def insert_allocations(self, booking_id, allocations):
        self._maybe_fail("insert_allocations")
        return super().insert_allocations(booking_id, allocations)

    def delete_allocations(self, booking_id):
        self._maybe_fail("delete_allocations")
        return super().delete_allocations(booking_id)


def seed_clinic(store):
    """
    Two professionals working Mon-Fri 09:00-17:00, two chambers, one box,
    and a small treatment catalog.
    """
    for staff_id, name in (("staff-a", "Ana Pérez"), ("staff-b", "Bruno Díaz")):
        store.add_staff(
            StaffMember(id=staff_id, full_name=name),
            [
                WeeklyScheduleEntry(staff_id=staff_id, day_of_week=d, start_time=time(9), end_time=time(17))
                for d in range(5)
            ],
        )

    store.add_installation(Installation(id="chamber-1", name="Chamber 1", category=CHAMBER))
    store.add_installation(Installation(id="chamber-2", name="Chamber 2", category=CHAMBER))
    store.add_installation(Installation(id="box-1", name="Box 1", category=BOX))

    simple = [
        Treatment(id="hyperbaric", name="Hyperbaric", duration_minutes=60,
                  staff_fraction=Decimal("0.50"), installation_category=CHAMBER),
        Treatment(id="consult", name="Consult", duration_minutes=30, staff_fraction=Decimal("1.00")),
        Treatment(id="half", name="Half Load", duration_minutes=60, staff_fraction=Decimal("0.50")),
        Treatment(id="quarter", name="Quarter Load", duration_minutes=60, staff_fraction=Decimal("0.25")),
        Treatment(id="unattended", name="Unattended", duration_minutes=120,
                  staff_fraction=Decimal("0.00"), installation_category=CHAMBER),
        Treatment(id="retired", name="Retired", duration_minutes=30, is_active=False),
    ]
    for treatment in simple:
        store.add_treatment(treatment)

    store.add_treatment(
        Treatment(id="recovery", name="Recovery", is_composite=True, duration_minutes=60),
        [
            Phase(id="recovery-1", treatment_id="recovery", ordinal=1, duration_minutes=30,
                  staff_fraction=Decimal("1.00"), installation_category=BOX),
            Phase(id="recovery-2", treatment_id="recovery", ordinal=2, duration_minutes=30,
                  staff_fraction=Decimal("0.50"), installation_category=CHAMBER),
        ],
    )
    store.add_treatment(
        Treatment(id="wound-care", name="Wound Care", is_composite=True, duration_minutes=75),
        [
            Phase(id="wound-care-1", treatment_id="wound-care", ordinal=1, duration_minutes=15,
                  staff_fraction=Decimal("1.00"), installation_category=BOX),
            Phase(id="wound-care-2", treatment_id="wound-care", ordinal=2, duration_minutes=60,
                  staff_fraction=Decimal("0.00"), installation_category=CHAMBER),
        ],
    )
    store.add_treatment(
        Treatment(id="double-chamber", name="Double Chamber", is_composite=True, duration_minutes=60),
        [
            Phase(id="double-chamber-1", treatment_id="double-chamber", ordinal=1, duration_minutes=30,
                  staff_fraction=Decimal("0.50"), installation_category=CHAMBER),
            Phase(id="double-chamber-2", treatment_id="double-chamber", ordinal=2, duration_minutes=30,
                  staff_fraction=Decimal("0.50"), installation_category=CHAMBER),
        ],
    )
    store.add_treatment(Treatment(id="empty-composite", name="Empty", is_composite=True))
    return store


def commit(store, staff_id, start, end, installation_id=None, fraction="1.00", treatment_id="consult"):
    """Write a booking with one allocation straight into the store, bypassing the engine."""
    booking = store.insert_booking(Booking(
        patient_id="pat-seed", treatment_id=treatment_id, starts_at=start, ends_at=end
    ))
    store.insert_allocations(booking.id, [PhaseAllocation(
        staff_id=staff_id, installation_id=installation_id, staff_fraction=Decimal(fraction),
        starts_at=start, ends_at=end,
    )])
    return booking


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from the developer's .env."""
    return Settings(_env_file=None, CLINIC_TIMEZONE="America/Santiago", LOG_LEVEL="DEBUG")


@pytest.fixture
def clock() -> FixedClock:
    """Sunday 2026-03-01 12:00 clinic time; the test day is the following Monday."""
    return FixedClock(at(12, 0, SUNDAY))


@pytest.fixture
def store() -> InMemoryStore:
    return seed_clinic(InMemoryStore())


@pytest.fixture
def failing_store() -> FailingStore:
    return seed_clinic(FailingStore())


@pytest.fixture
def engine(store, test_settings, clock) -> BookingEngine:
    return BookingEngine(store, test_settings, clock)


@pytest.fixture
def failing_engine(failing_store, test_settings, clock) -> BookingEngine:
    return BookingEngine(failing_store, test_settings, clock)

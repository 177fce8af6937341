"""
SQLAlchemy implementation of the calendar store.

Each public method is one independent unit of work (its own session and
commit), matching the store contract. Database errors surface as StoreError.
"""

import logging
from contextlib import contextmanager
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import create_engine, delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from clinic import (
    Booking, BookingStatus, Installation, InstallationCategory, Phase, PhaseAllocation,
    ScheduleException, StaffMember, Treatment, WeeklyScheduleEntry
)
from .config import settings as default_settings
from .errors import StoreError
from .state import CommittedLoad
from .store import CalendarStore, generate_id
from .tables import (
    Base, AllocationRow, BookingRow, ExceptionRow, InstallationRow, PhaseRow, ScheduleEntryRow,
    StaffRow, TreatmentRow, utc_now
)

logger = logging.getLogger(__name__)

FULL_LOAD = Decimal("1.00")


def _fraction(phase_fraction, treatment_fraction) -> Decimal:
    """Phase fraction, else the treatment's own, else full load."""
    for value in (phase_fraction, treatment_fraction):
        if value is not None:
            return Decimal(str(value))
    return FULL_LOAD


def _category(value: Optional[str]) -> Optional[InstallationCategory]:
    return InstallationCategory(value) if value else None


# --- Row -> model mapping ---

def _to_treatment(row: TreatmentRow) -> Treatment:
    return Treatment(
        id=row.id,
        name=row.name,
        description=row.description,
        is_active=row.is_active,
        is_composite=row.is_composite,
        duration_minutes=row.duration_minutes,
        staff_fraction=Decimal(str(row.staff_fraction)),
        installation_category=_category(row.installation_category),
    )


def _to_phase(row: PhaseRow) -> Phase:
    return Phase(
        id=row.id,
        treatment_id=row.treatment_id,
        ordinal=row.ordinal,
        label=row.label,
        duration_minutes=row.duration_minutes,
        staff_fraction=Decimal(str(row.staff_fraction)),
        installation_category=_category(row.installation_category),
    )


def _to_booking(row: BookingRow) -> Booking:
    return Booking(
        id=row.id,
        patient_id=row.patient_id,
        treatment_id=row.treatment_id,
        starts_at=row.starts_at,
        ends_at=row.ends_at,
        status=BookingStatus(row.status),
        notes=row.notes,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_allocation(row: AllocationRow, fraction: Decimal) -> PhaseAllocation:
    return PhaseAllocation(
        id=row.id,
        booking_id=row.booking_id,
        phase_id=row.phase_id,
        staff_id=row.staff_id,
        installation_id=row.installation_id,
        staff_fraction=fraction,
        starts_at=row.starts_at,
        ends_at=row.ends_at,
    )


class SqlCalendarStore(CalendarStore):

    BOOKING_FIELDS = {"patient_id", "treatment_id", "starts_at", "ends_at", "status", "notes"}

    def __init__(self, url_or_engine=None):
        if url_or_engine is None:
            url_or_engine = default_settings.DATABASE_URL
        if isinstance(url_or_engine, Engine):
            self.engine = url_or_engine
        else:
            self.engine = create_engine(url_or_engine, pool_pre_ping=True)
        self.Session = sessionmaker(self.engine, expire_on_commit=False)

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)

    @contextmanager
    def _session(self):
        session = self.Session()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Store operation failed: {e}")
            raise StoreError(f"Database operation failed: {e.__class__.__name__}", {"error": str(e)}) from e
        finally:
            session.close()

    # --- Seeding ---

    def add_treatment(self, treatment, phases=None):
        with self._session() as s:
            s.merge(TreatmentRow(
                id=treatment.id,
                name=treatment.name,
                description=treatment.description,
                is_active=treatment.is_active,
                is_composite=treatment.is_composite,
                duration_minutes=treatment.duration_minutes,
                staff_fraction=treatment.staff_fraction,
                installation_category=treatment.installation_category.value if treatment.installation_category else None,
            ))
            for phase in phases or []:
                s.merge(PhaseRow(
                    id=phase.id or generate_id("ph"),
                    treatment_id=treatment.id,
                    ordinal=phase.ordinal,
                    label=phase.label,
                    duration_minutes=phase.duration_minutes,
                    staff_fraction=phase.staff_fraction,
                    installation_category=phase.installation_category.value if phase.installation_category else None,
                ))
        return treatment

    def add_installation(self, installation):
        with self._session() as s:
            s.merge(InstallationRow(
                id=installation.id,
                name=installation.name,
                category=installation.category.value,
                is_active=installation.is_active,
            ))
        return installation

    def add_staff(self, staff, schedule=None):
        with self._session() as s:
            s.merge(StaffRow(id=staff.id, full_name=staff.full_name))
        for entry in schedule or []:
            self.add_schedule_entry(entry)
        return staff

    def add_schedule_entry(self, entry):
        with self._session() as s:
            s.execute(delete(ScheduleEntryRow).where(
                ScheduleEntryRow.staff_id == entry.staff_id,
                ScheduleEntryRow.day_of_week == entry.day_of_week,
            ))
            s.add(ScheduleEntryRow(
                staff_id=entry.staff_id,
                day_of_week=entry.day_of_week,
                start_time=entry.start_time,
                end_time=entry.end_time,
            ))
        return entry

    def add_exception(self, exception):
        with self._session() as s:
            s.merge(ExceptionRow(
                id=exception.id,
                staff_id=exception.staff_id,
                installation_id=exception.installation_id,
                starts_at=exception.starts_at,
                ends_at=exception.ends_at,
                reason=exception.reason,
            ))
        return exception

    # --- Catalog reads ---

    def get_treatment(self, treatment_id):
        with self._session() as s:
            row = s.get(TreatmentRow, treatment_id)
            return _to_treatment(row) if row else None

    def list_phases(self, treatment_id):
        with self._session() as s:
            rows = s.scalars(
                select(PhaseRow).where(PhaseRow.treatment_id == treatment_id).order_by(PhaseRow.ordinal)
            ).all()
            return [_to_phase(r) for r in rows]

    def list_installations(self):
        with self._session() as s:
            q = select(InstallationRow).order_by(InstallationRow.created_at, InstallationRow.id)
            return [
                Installation(id=r.id, name=r.name, category=InstallationCategory(r.category), is_active=r.is_active)
                for r in s.scalars(q).all()
            ]

    def list_staff(self):
        with self._session() as s:
            rows = s.scalars(select(StaffRow).order_by(StaffRow.created_at, StaffRow.id)).all()
            return [StaffMember(id=r.id, full_name=r.full_name) for r in rows]

    def list_schedule_entries(self):
        with self._session() as s:
            rows = s.scalars(select(ScheduleEntryRow).order_by(ScheduleEntryRow.id)).all()
            return [
                WeeklyScheduleEntry(
                    staff_id=r.staff_id, day_of_week=r.day_of_week, start_time=r.start_time, end_time=r.end_time
                )
                for r in rows
            ]

    def list_exceptions(self, start, end):
        with self._session() as s:
            rows = s.scalars(
                select(ExceptionRow).where(ExceptionRow.starts_at < end, ExceptionRow.ends_at > start)
            ).all()
            return [
                ScheduleException(
                    id=r.id, staff_id=r.staff_id, installation_id=r.installation_id,
                    starts_at=r.starts_at, ends_at=r.ends_at, reason=r.reason
                )
                for r in rows
            ]

    def list_committed_loads(self, start, end):
        with self._session() as s:
            q = (
                select(AllocationRow, PhaseRow.staff_fraction, TreatmentRow.staff_fraction)
                .join(BookingRow, AllocationRow.booking_id == BookingRow.id)
                .join(TreatmentRow, BookingRow.treatment_id == TreatmentRow.id)
                .outerjoin(PhaseRow, AllocationRow.phase_id == PhaseRow.id)
                .where(
                    BookingRow.status != BookingStatus.CANCELLED.value,
                    AllocationRow.starts_at < end,
                    AllocationRow.ends_at > start,
                )
            )
            return [
                CommittedLoad(
                    booking_id=row.booking_id,
                    staff_id=row.staff_id,
                    installation_id=row.installation_id,
                    starts_at=row.starts_at,
                    ends_at=row.ends_at,
                    fraction=_fraction(phase_fraction, treatment_fraction),
                )
                for row, phase_fraction, treatment_fraction in s.execute(q).all()
            ]

    # --- Bookings ---

    def get_booking(self, booking_id):
        with self._session() as s:
            row = s.get(BookingRow, booking_id)
            return _to_booking(row) if row else None

    def list_bookings(self, staff_id=None, start=None, end=None):
        with self._session() as s:
            q = select(BookingRow).order_by(BookingRow.starts_at, BookingRow.id)
            if start is not None:
                q = q.where(BookingRow.starts_at >= start)
            if end is not None:
                q = q.where(BookingRow.starts_at <= end)
            if staff_id is not None:
                q = q.where(BookingRow.id.in_(
                    select(AllocationRow.booking_id).where(AllocationRow.staff_id == staff_id)
                ))
            bookings = [_to_booking(r) for r in s.scalars(q).all()]
        return [b.model_copy(update={"allocations": self.list_allocations(b.id)}) for b in bookings]

    def insert_booking(self, booking):
        with self._session() as s:
            row = BookingRow(
                id=booking.id or generate_id("bk"),
                patient_id=booking.patient_id,
                treatment_id=booking.treatment_id,
                starts_at=booking.starts_at,
                ends_at=booking.ends_at,
                status=BookingStatus(booking.status).value,
                notes=booking.notes,
            )
            s.add(row)
            s.flush()
            s.refresh(row)
            return _to_booking(row)

    def update_booking(self, booking_id, **fields):
        unknown = set(fields) - self.BOOKING_FIELDS
        if unknown:
            raise StoreError(f"Unknown booking fields: {sorted(unknown)}")
        with self._session() as s:
            row = s.get(BookingRow, booking_id)
            if row is None:
                raise StoreError(f"Booking {booking_id} does not exist", {"booking_id": booking_id})
            for key, value in fields.items():
                if key == "status":
                    value = BookingStatus(value).value
                setattr(row, key, value)
            row.updated_at = utc_now()
            s.flush()
            s.refresh(row)
            return _to_booking(row)

    def delete_booking(self, booking_id):
        with self._session() as s:
            s.execute(delete(AllocationRow).where(AllocationRow.booking_id == booking_id))
            s.execute(delete(BookingRow).where(BookingRow.id == booking_id))

    # --- Allocations ---

    def list_allocations(self, booking_id):
        with self._session() as s:
            q = (
                select(AllocationRow, PhaseRow.staff_fraction, TreatmentRow.staff_fraction)
                .join(BookingRow, AllocationRow.booking_id == BookingRow.id)
                .join(TreatmentRow, BookingRow.treatment_id == TreatmentRow.id)
                .outerjoin(PhaseRow, AllocationRow.phase_id == PhaseRow.id)
                .where(AllocationRow.booking_id == booking_id)
                .order_by(AllocationRow.starts_at)
            )
            return [_to_allocation(row, _fraction(pf, tf)) for row, pf, tf in s.execute(q).all()]

    def insert_allocations(self, booking_id, allocations):
        with self._session() as s:
            for alloc in allocations:
                s.add(AllocationRow(
                    id=generate_id("al"),
                    booking_id=booking_id,
                    phase_id=alloc.phase_id,
                    staff_id=alloc.staff_id,
                    installation_id=alloc.installation_id,
                    starts_at=alloc.starts_at,
                    ends_at=alloc.ends_at,
                ))
        return self.list_allocations(booking_id)

    def delete_allocations(self, booking_id):
        with self._session() as s:
            s.execute(delete(AllocationRow).where(AllocationRow.booking_id == booking_id))

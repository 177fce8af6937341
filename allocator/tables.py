"""
Relational schema of the calendar store.

Instants are stored as UTC; weekly schedule entries as local time of day
plus day of week (0 = Monday).
"""

from datetime import datetime, time, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text, Time, TypeDecorator, UniqueConstraint
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Aware datetimes in, aware UTC datetimes out, whatever the backend keeps."""
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("Naive datetimes cannot be stored")
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


Fraction = Numeric(3, 2, asdecimal=True)


class Base(DeclarativeBase):
    pass


class CreatedMixin:
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)


# --- Catalog ---

class TreatmentRow(Base, CreatedMixin):
    __tablename__ = "treatments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_composite: Mapped[bool] = mapped_column(Boolean, default=False)
    duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    staff_fraction: Mapped[Decimal] = mapped_column(Fraction, default=Decimal("1.00"))
    installation_category: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)


class PhaseRow(Base, CreatedMixin):
    __tablename__ = "treatment_phases"
    __table_args__ = (UniqueConstraint("treatment_id", "ordinal"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    treatment_id: Mapped[str] = mapped_column(ForeignKey("treatments.id", ondelete="CASCADE"))
    ordinal: Mapped[int] = mapped_column(Integer)
    label: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    duration_minutes: Mapped[int] = mapped_column(Integer)
    staff_fraction: Mapped[Decimal] = mapped_column(Fraction)
    installation_category: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)


class InstallationRow(Base, CreatedMixin):
    __tablename__ = "installations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    category: Mapped[str] = mapped_column(String(32), index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class StaffRow(Base, CreatedMixin):
    __tablename__ = "staff_members"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    full_name: Mapped[str] = mapped_column(String(200))


class ScheduleEntryRow(Base):
    __tablename__ = "weekly_schedules"
    __table_args__ = (UniqueConstraint("staff_id", "day_of_week"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    staff_id: Mapped[str] = mapped_column(ForeignKey("staff_members.id", ondelete="CASCADE"))
    day_of_week: Mapped[int] = mapped_column(Integer)
    start_time: Mapped[time] = mapped_column(Time)
    end_time: Mapped[time] = mapped_column(Time)


class ExceptionRow(Base, CreatedMixin):
    __tablename__ = "schedule_exceptions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    staff_id: Mapped[Optional[str]] = mapped_column(ForeignKey("staff_members.id"), nullable=True)
    installation_id: Mapped[Optional[str]] = mapped_column(ForeignKey("installations.id"), nullable=True)
    starts_at: Mapped[datetime] = mapped_column(UTCDateTime, index=True)
    ends_at: Mapped[datetime] = mapped_column(UTCDateTime)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


# --- Calendar ---

class BookingRow(Base, CreatedMixin):
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    patient_id: Mapped[str] = mapped_column(String(64), index=True)
    treatment_id: Mapped[str] = mapped_column(ForeignKey("treatments.id"))
    starts_at: Mapped[datetime] = mapped_column(UTCDateTime, index=True)
    ends_at: Mapped[datetime] = mapped_column(UTCDateTime)
    status: Mapped[str] = mapped_column(String(16), default="scheduled")
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, onupdate=utc_now)


class AllocationRow(Base, CreatedMixin):
    __tablename__ = "phase_allocations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    booking_id: Mapped[str] = mapped_column(ForeignKey("bookings.id", ondelete="CASCADE"), index=True)
    phase_id: Mapped[Optional[str]] = mapped_column(ForeignKey("treatment_phases.id"), nullable=True)
    staff_id: Mapped[str] = mapped_column(ForeignKey("staff_members.id"), index=True)
    installation_id: Mapped[Optional[str]] = mapped_column(ForeignKey("installations.id"), nullable=True)
    starts_at: Mapped[datetime] = mapped_column(UTCDateTime, index=True)
    ends_at: Mapped[datetime] = mapped_column(UTCDateTime)

"""Tests for the transactional envelope: create, reschedule, status and cancel."""

import logging
from datetime import date, datetime, timedelta, timezone

import pytest

from allocator.errors import (
    AllocationPersistFailed, AlreadyCancelled, BookingCancelled, BookingCompleted, BookingNotFound,
    InvalidStatusTransition, InvalidTimeRange, RescheduleFailed, RollbackFailed, StaffBusy,
    TreatmentNotFound
)
from clinic import BookingStatus
from conftest import SUNDAY, at

FALL_BACK_EVE = date(2026, 4, 4)


def stored_state(store, booking_id):
    """Booking fields and allocation contents, ignoring row ids."""
    booking = store.get_booking(booking_id)
    allocations = [a.fingerprint() for a in store.list_allocations(booking_id)]
    return (booking.treatment_id, booking.starts_at, booking.ends_at, booking.status, booking.notes), allocations


class TestCreate:

    def test_creates_scheduled_booking(self, engine, store) -> None:
        """Should persist the booking and its allocations with status scheduled."""
        booking = engine.create_booking("p1", "recovery", at(10), notes="first visit")

        assert booking.status == BookingStatus.SCHEDULED
        assert booking.ends_at == at(11)
        assert booking.notes == "first visit"
        stored = store.list_allocations(booking.id)
        assert len(stored) == 2
        assert all(a.booking_id == booking.id for a in stored)

    def test_past_start(self, engine) -> None:
        """Should refuse a start before now."""
        with pytest.raises(InvalidTimeRange) as exc:
            engine.create_booking("p1", "consult", at(10, day=SUNDAY))
        assert exc.value.status_code == 400

    def test_duration_across_fall_back(self, engine, store) -> None:
        """Should keep two elapsed hours when clocks go back at midnight on 2026-04-04."""
        # 22:30 local is still summer time (UTC-3); the booking ends after the switch to UTC-4
        start = at(22, 30, day=FALL_BACK_EVE)
        local = engine.create_booking("p1", "unattended", start)
        from_utc = engine.create_booking("p2", "unattended", start.astimezone(timezone.utc))

        assert local.ends_at - local.starts_at == timedelta(hours=2)
        assert local.ends_at == from_utc.ends_at == datetime(2026, 4, 5, 3, 30, tzinfo=timezone.utc)
        assert local.allocations[0].ends_at == local.ends_at
        stored = store.get_booking(local.id)
        assert stored.ends_at - stored.starts_at == timedelta(hours=2)

    def test_naive_start(self, engine) -> None:
        """Should refuse a start without timezone."""
        with pytest.raises(InvalidTimeRange):
            engine.create_booking("p1", "consult", datetime(2026, 3, 2, 10))

    def test_search_failure_leaves_no_rows(self, engine, store) -> None:
        """Should not write anything when the search fails."""
        with pytest.raises(StaffBusy):
            engine.create_booking("p1", "consult", at(18))
        assert store.bookings == {}

    def test_booking_insert_failure(self, failing_engine, failing_store) -> None:
        """Should report AllocationPersistFailed when the booking row cannot be written."""
        failing_store.fail_on["insert_booking"] = 1
        with pytest.raises(AllocationPersistFailed):
            failing_engine.create_booking("p1", "consult", at(10))
        assert failing_store.bookings == {}

    def test_allocation_insert_failure_compensates(self, failing_engine, failing_store) -> None:
        """Should delete the booking row when its allocations cannot be written."""
        failing_store.fail_on["insert_allocations"] = 1
        with pytest.raises(AllocationPersistFailed) as exc:
            failing_engine.create_booking("p1", "consult", at(10))
        assert exc.value.status_code == 500
        assert failing_store.bookings == {}
        assert failing_store.allocations == {}

    def test_failed_compensation_is_critical(self, failing_engine, failing_store, caplog) -> None:
        """Should raise RollbackFailed and log CRITICAL when the compensating delete fails."""
        failing_store.fail_on["insert_allocations"] = 1
        failing_store.fail_on["delete_booking"] = 1
        with caplog.at_level(logging.CRITICAL):
            with pytest.raises(RollbackFailed):
                failing_engine.create_booking("p1", "consult", at(10))
        assert any(r.levelno == logging.CRITICAL for r in caplog.records)


class TestReschedule:

    def test_moves_booking(self, engine, store) -> None:
        """Should replace allocations and keep status scheduled."""
        booking = engine.create_booking("p1", "consult", at(10))
        moved = engine.reschedule_booking(booking.id, starts_at=at(11), notes="moved")

        assert (moved.starts_at, moved.ends_at) == (at(11), at(11, 30))
        assert moved.status == BookingStatus.SCHEDULED
        assert moved.notes == "moved"
        assert [(a.starts_at, a.ends_at) for a in store.list_allocations(booking.id)] == [(at(11), at(11, 30))]

    def test_own_slot_is_not_a_conflict(self, engine) -> None:
        """Should not count the booking being moved against itself."""
        booking = engine.create_booking("p1", "consult", at(10))
        engine.create_booking("p2", "consult", at(10))

        moved = engine.reschedule_booking(booking.id, starts_at=at(10, 15))
        assert moved.allocations[0].staff_id == "staff-a"

    def test_change_treatment(self, engine) -> None:
        """Should re-run the search for the new treatment at the same time."""
        booking = engine.create_booking("p1", "consult", at(10))
        changed = engine.reschedule_booking(booking.id, treatment_id="recovery")

        assert changed.treatment_id == "recovery"
        assert changed.ends_at == at(11)
        assert len(changed.allocations) == 2

    def test_search_failure_rolls_back(self, engine, store) -> None:
        """Should leave the booking exactly as it was when no slot is found."""
        booking = engine.create_booking("p1", "consult", at(10))
        engine.create_booking("p2", "consult", at(14))
        engine.create_booking("p3", "consult", at(14))
        before = stored_state(store, booking.id)

        with pytest.raises(RescheduleFailed) as exc:
            engine.reschedule_booking(booking.id, starts_at=at(14))

        assert isinstance(exc.value.__cause__, StaffBusy)
        assert exc.value.details["cause"]["code"] == "STAFF_BUSY"
        assert "left unchanged" in exc.value.message
        assert stored_state(store, booking.id) == before

    def test_persistence_failure_restores_allocations(self, failing_engine, failing_store) -> None:
        """Should re-insert the old allocations when the new ones cannot be written."""
        booking = failing_engine.create_booking("p1", "recovery", at(10))
        before = stored_state(failing_store, booking.id)

        failing_store.fail_on["insert_allocations"] = 1
        with pytest.raises(RescheduleFailed):
            failing_engine.reschedule_booking(booking.id, starts_at=at(12))

        assert stored_state(failing_store, booking.id) == before

    def test_failed_rollback_is_critical(self, failing_engine, failing_store, caplog) -> None:
        """Should raise RollbackFailed when the restore itself cannot be written."""
        booking = failing_engine.create_booking("p1", "consult", at(10))

        failing_store.fail_on["insert_allocations"] = 2
        with caplog.at_level(logging.CRITICAL):
            with pytest.raises(RollbackFailed) as exc:
                failing_engine.reschedule_booking(booking.id, starts_at=at(12))
        assert exc.value.details["booking_id"] == booking.id
        assert any(r.levelno == logging.CRITICAL for r in caplog.records)

    def test_past_start(self, engine) -> None:
        """Should refuse to move a booking into the past."""
        booking = engine.create_booking("p1", "consult", at(10))
        with pytest.raises(InvalidTimeRange):
            engine.reschedule_booking(booking.id, starts_at=at(10, day=SUNDAY))

    def test_unknown_treatment_does_not_mutate(self, engine, store) -> None:
        """Should surface catalog errors before touching the booking."""
        booking = engine.create_booking("p1", "consult", at(10))
        before = stored_state(store, booking.id)
        with pytest.raises(TreatmentNotFound):
            engine.reschedule_booking(booking.id, treatment_id="missing")
        assert stored_state(store, booking.id) == before

    def test_unknown_booking(self, engine) -> None:
        """Should raise BookingNotFound."""
        with pytest.raises(BookingNotFound):
            engine.reschedule_booking("bk_missing", starts_at=at(10))

    def test_cancelled(self, engine) -> None:
        """Should refuse to reschedule a cancelled booking."""
        booking = engine.create_booking("p1", "consult", at(10))
        engine.cancel_booking(booking.id)
        with pytest.raises(BookingCancelled):
            engine.reschedule_booking(booking.id, starts_at=at(11))

    def test_completed(self, engine, clock) -> None:
        """Should refuse to reschedule a completed booking."""
        booking = engine.create_booking("p1", "consult", at(10))
        clock.now = at(11)
        engine.update_booking_status(booking.id, BookingStatus.COMPLETED)
        with pytest.raises(BookingCompleted):
            engine.reschedule_booking(booking.id, starts_at=at(15))

    def test_no_show(self, engine, clock) -> None:
        """Should refuse to reschedule a no-show."""
        booking = engine.create_booking("p1", "consult", at(10))
        clock.now = at(11)
        engine.update_booking_status(booking.id, BookingStatus.NO_SHOW)
        with pytest.raises(InvalidStatusTransition):
            engine.reschedule_booking(booking.id, starts_at=at(15))


class TestStatus:

    def test_complete_before_start(self, engine) -> None:
        """Should refuse completed/no_show before the booking starts."""
        booking = engine.create_booking("p1", "consult", at(10))
        for status in (BookingStatus.COMPLETED, BookingStatus.NO_SHOW):
            with pytest.raises(InvalidStatusTransition) as exc:
                engine.update_booking_status(booking.id, status)
            assert exc.value.status_code == 422

    def test_complete_after_start(self, engine, store, clock) -> None:
        """Should mark completed once started, without touching allocations."""
        booking = engine.create_booking("p1", "consult", at(10))
        allocations = store.list_allocations(booking.id)
        clock.now = at(10, 5)

        updated = engine.update_booking_status(booking.id, BookingStatus.COMPLETED)
        assert updated.status == BookingStatus.COMPLETED
        assert store.list_allocations(booking.id) == allocations

    def test_out_of_cancelled(self, engine) -> None:
        """Should refuse any transition out of cancelled."""
        booking = engine.create_booking("p1", "consult", at(10))
        engine.cancel_booking(booking.id)
        with pytest.raises(BookingCancelled):
            engine.update_booking_status(booking.id, BookingStatus.SCHEDULED)

    def test_future_cancelled_to_completed(self, engine) -> None:
        """Should report the cancellation, not the start time, for a future cancelled booking."""
        booking = engine.create_booking("p1", "consult", at(10))
        engine.cancel_booking(booking.id)
        with pytest.raises(BookingCancelled) as exc:
            engine.update_booking_status(booking.id, BookingStatus.COMPLETED)
        assert type(exc.value) is BookingCancelled

    def test_completed_to_scheduled(self, engine, clock) -> None:
        """Should refuse to reopen a completed booking."""
        booking = engine.create_booking("p1", "consult", at(10))
        clock.now = at(11)
        engine.update_booking_status(booking.id, BookingStatus.COMPLETED)
        with pytest.raises(InvalidStatusTransition):
            engine.update_booking_status(booking.id, BookingStatus.SCHEDULED)

    def test_notes_only(self, engine) -> None:
        """Should update notes alone."""
        booking = engine.create_booking("p1", "consult", at(10))
        updated = engine.update_booking_status(booking.id, None, notes="bring results")
        assert updated.notes == "bring results"
        assert updated.status == BookingStatus.SCHEDULED


class TestCancel:

    def test_cancel(self, engine, store) -> None:
        """Should flip the status and keep the allocation rows."""
        booking = engine.create_booking("p1", "consult", at(10))
        engine.cancel_booking(booking.id)
        assert store.get_booking(booking.id).status == BookingStatus.CANCELLED
        assert len(store.list_allocations(booking.id)) == 1

    def test_cancel_twice(self, engine, store) -> None:
        """Should raise AlreadyCancelled and leave the row untouched."""
        booking = engine.create_booking("p1", "consult", at(10))
        engine.cancel_booking(booking.id)
        before = store.get_booking(booking.id)

        with pytest.raises(AlreadyCancelled) as exc:
            engine.cancel_booking(booking.id)
        assert isinstance(exc.value, BookingCancelled)
        assert exc.value.code == "ALREADY_CANCELLED"
        assert store.get_booking(booking.id) == before

    def test_unknown(self, engine) -> None:
        """Should raise BookingNotFound."""
        with pytest.raises(BookingNotFound):
            engine.cancel_booking("bk_missing")


class TestUpdateAndList:

    def test_update_delegates_to_reschedule(self, engine) -> None:
        """Should reschedule when a new time is given."""
        booking = engine.create_booking("p1", "consult", at(10))
        updated = engine.update_booking(booking.id, starts_at=at(12))
        assert updated.starts_at == at(12)

    def test_update_delegates_to_status(self, engine) -> None:
        """Should apply a plain status change otherwise."""
        booking = engine.create_booking("p1", "consult", at(10))
        updated = engine.update_booking(booking.id, status=BookingStatus.CANCELLED)
        assert updated.status == BookingStatus.CANCELLED

    def test_list_by_staff(self, engine) -> None:
        """Should filter by assigned professional and order by start."""
        late = engine.create_booking("p1", "consult", at(12))
        early = engine.create_booking("p2", "consult", at(10))
        other = engine.create_booking("p3", "consult", at(10))

        assert engine.list_bookings()[-1].id == late.id
        ids = [b.id for b in engine.list_bookings(staff_id="staff-a")]
        assert ids == [early.id, late.id]
        assert other.id not in ids
        assert all(b.allocations for b in engine.list_bookings())

    def test_list_by_range(self, engine) -> None:
        """Should filter on the start instant."""
        engine.create_booking("p1", "consult", at(10))
        afternoon = engine.create_booking("p2", "consult", at(15))
        assert [b.id for b in engine.list_bookings(start=at(12))] == [afternoon.id]

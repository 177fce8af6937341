"""
Allocation Transaction Manager.

Wraps every write in an all-or-nothing envelope. The store only offers
independent operations, so atomicity comes from compensating writes:
1. Create: booking row, then allocation rows; a failed second step deletes the first.
2. Reschedule: snapshot, provisional cancel, search, swap allocations, update;
   any failure restores the snapshot.
3. Status updates and cancellation never touch allocations.

All writes of one manager are serialized by a single writer lock, so the
check (search) and the write happen without another writer in between.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from clinic import Booking, BookingStatus, PhaseAllocation
from .catalog import CatalogResolver, ResolvedTreatment
from .config import settings as default_settings
from .engine import PhaseSequencer, SequenceResult
from .errors import (
    SearchError, StoreError, InvalidTimeRange, BookingNotFound, BookingCancelled, AlreadyCancelled,
    BookingCompleted, InvalidStatusTransition, AllocationPersistFailed, RescheduleFailed, RollbackFailed
)
from .state import load_snapshot

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AllocationTransactionManager:

    def __init__(self, store, settings=None, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.settings = settings or default_settings
        self.clock = clock or utc_now
        self.catalog = CatalogResolver(store)
        self._writer = threading.RLock()

    # =========================================================================
    # Search
    # =========================================================================

    def allocate(self, resolved: ResolvedTreatment, starts_at: datetime) -> SequenceResult:
        """Run the sequencer for one treatment against a fresh snapshot of its window."""
        starts_at = starts_at.astimezone(timezone.utc)
        ends_at = starts_at + timedelta(minutes=resolved.total_minutes)
        snapshot = load_snapshot(self.store, starts_at, ends_at)
        return PhaseSequencer(snapshot, self.settings.tz).run(resolved.phases, starts_at)

    # =========================================================================
    # Create
    # =========================================================================

    def create(self, patient_id: str, treatment_id: str, starts_at: datetime,
               notes: Optional[str] = None) -> Booking:
        self._require_future(starts_at)
        starts_at = starts_at.astimezone(timezone.utc)
        resolved = self.catalog.resolve(treatment_id)

        with self._writer:
            try:
                result = self.allocate(resolved, starts_at)
            except SearchError as e:
                logger.info(f"Booking rejected for {treatment_id} at {starts_at.isoformat()}: {e.code} {e.details}")
                raise

            try:
                booking = self.store.insert_booking(Booking(
                    patient_id=patient_id,
                    treatment_id=treatment_id,
                    starts_at=starts_at,
                    ends_at=result.ends_at,
                    status=BookingStatus.SCHEDULED,
                    notes=notes,
                ))
            except StoreError as e:
                logger.error(f"Could not insert booking for patient {patient_id}: {e.message}")
                raise AllocationPersistFailed("Could not save the booking", {"cause": e.to_dict()}) from e

            try:
                allocations = self.store.insert_allocations(booking.id, result.allocations)
            except StoreError as e:
                logger.error(f"Could not insert allocations of booking {booking.id}: {e.message}")
                self._compensate_create(booking.id)
                raise AllocationPersistFailed(
                    "Could not save the phase allocations; the booking was discarded",
                    {"cause": e.to_dict()}
                ) from e

        logger.info(f"Booking {booking.id} created: {treatment_id} {starts_at.isoformat()} -> {result.ends_at.isoformat()}")
        return booking.model_copy(update={"allocations": allocations})

    def _compensate_create(self, booking_id: str) -> None:
        try:
            self.store.delete_booking(booking_id)
        except StoreError as e:
            logger.critical(f"Compensating delete of booking {booking_id} failed, stored state is inconsistent: {e.message}")
            raise RollbackFailed(
                "Could not discard a partially saved booking",
                {"booking_id": booking_id, "cause": e.to_dict()}
            ) from e

    # =========================================================================
    # Reschedule
    # =========================================================================

    def reschedule(self, booking_id: str, starts_at: Optional[datetime] = None,
                   treatment_id: Optional[str] = None, notes: Optional[str] = None) -> Booking:
        """
        Move a booking in time and/or change its treatment.
        On any failure the booking and its allocations are left exactly as they were.
        """
        with self._writer:
            original = self._get(booking_id)
            if original.status == BookingStatus.CANCELLED:
                raise BookingCancelled("A cancelled booking cannot be rescheduled", {"booking_id": booking_id})
            if original.status == BookingStatus.COMPLETED:
                raise BookingCompleted("A completed booking cannot be rescheduled", {"booking_id": booking_id})
            if original.status != BookingStatus.SCHEDULED:
                raise InvalidStatusTransition(
                    f"A booking in status '{original.status.value}' cannot be rescheduled",
                    {"booking_id": booking_id, "status": original.status.value}
                )

            new_start = starts_at or original.starts_at
            new_treatment = treatment_id or original.treatment_id
            self._require_future(new_start)
            new_start = new_start.astimezone(timezone.utc)
            resolved = self.catalog.resolve(new_treatment)

            old_allocations = self.store.list_allocations(booking_id)

            try:
                # Hide the booking from its own search; the treatment is set first so
                # stores that derive allocation fractions read the new one
                self.store.update_booking(booking_id, status=BookingStatus.CANCELLED, treatment_id=new_treatment)

                result = self.allocate(resolved, new_start)

                self.store.delete_allocations(booking_id)
                allocations = self.store.insert_allocations(booking_id, result.allocations)

                fields = {
                    "treatment_id": new_treatment,
                    "starts_at": new_start,
                    "ends_at": result.ends_at,
                    "status": BookingStatus.SCHEDULED,
                }
                if notes is not None:
                    fields["notes"] = notes
                updated = self.store.update_booking(booking_id, **fields)

            except (SearchError, StoreError) as e:
                self._restore(original, old_allocations)
                logger.info(f"Reschedule of booking {booking_id} rolled back: {e.code} {e.details}")
                raise RescheduleFailed(
                    f"Could not reschedule: {e.message}. The original booking was left unchanged.",
                    {"booking_id": booking_id, "cause": e.to_dict()}
                ) from e
            except Exception:
                self._restore(original, old_allocations)
                raise

        logger.info(f"Booking {booking_id} rescheduled to {new_start.isoformat()} ({new_treatment})")
        return updated.model_copy(update={"allocations": allocations})

    def _restore(self, original: Booking, old_allocations: List[PhaseAllocation]) -> None:
        """Put the booking row and its allocation rows back to their pre-attempt values."""
        booking_id = original.id
        try:
            self.store.update_booking(
                booking_id,
                treatment_id=original.treatment_id,
                starts_at=original.starts_at,
                ends_at=original.ends_at,
                status=original.status,
                notes=original.notes,
            )
            current = self.store.list_allocations(booking_id)
            if [a.fingerprint() for a in current] != [a.fingerprint() for a in old_allocations]:
                self.store.delete_allocations(booking_id)
                if old_allocations:
                    self.store.insert_allocations(
                        booking_id, [a.model_copy(update={"id": None}) for a in old_allocations]
                    )
        except StoreError as e:
            logger.critical(f"Rollback of booking {booking_id} failed, stored state is inconsistent: {e.message}")
            raise RollbackFailed(
                "Could not restore the booking after a failed reschedule",
                {"booking_id": booking_id, "cause": e.to_dict()}
            ) from e

    # =========================================================================
    # Status
    # =========================================================================

    def update_status(self, booking_id: str, status: Optional[BookingStatus] = None,
                      notes: Optional[str] = None) -> Booking:
        """Change status and/or notes without touching allocations."""
        with self._writer:
            existing = self._get(booking_id)
            fields = {}

            if status is not None:
                status = BookingStatus(status)
                self._check_transition(existing, status)
                fields["status"] = status
            if notes is not None:
                fields["notes"] = notes

            if not fields:
                return existing
            updated = self.store.update_booking(booking_id, **fields)

        logger.info(f"Booking {booking_id} updated: {fields}")
        return updated.model_copy(update={"allocations": self.store.list_allocations(booking_id)})

    def _check_transition(self, existing: Booking, status: BookingStatus) -> None:
        details = {"booking_id": existing.id, "from": existing.status.value, "to": status.value}

        if existing.status == BookingStatus.CANCELLED:
            if status == BookingStatus.CANCELLED:
                raise AlreadyCancelled("The booking is already cancelled", details)
            raise BookingCancelled("A cancelled booking cannot change status; create a new booking", details)
        if status in (BookingStatus.COMPLETED, BookingStatus.NO_SHOW) and self.clock() < existing.starts_at:
            raise InvalidStatusTransition(
                f"Cannot mark a booking as '{status.value}' before it has started", details
            )
        if existing.status == BookingStatus.COMPLETED and status == BookingStatus.SCHEDULED:
            raise InvalidStatusTransition("A completed booking cannot go back to scheduled", details)

    def cancel(self, booking_id: str) -> None:
        with self._writer:
            existing = self._get(booking_id)
            if existing.status == BookingStatus.CANCELLED:
                raise AlreadyCancelled("The booking is already cancelled", {"booking_id": booking_id})
            self.store.update_booking(booking_id, status=BookingStatus.CANCELLED)
        logger.info(f"Booking {booking_id} cancelled")

    def update(self, booking_id: str, starts_at: Optional[datetime] = None, treatment_id: Optional[str] = None,
               status: Optional[BookingStatus] = None, notes: Optional[str] = None) -> Booking:
        """Reschedule when time or treatment changes, otherwise a plain status/notes update."""
        if starts_at is not None or treatment_id is not None:
            return self.reschedule(booking_id, starts_at=starts_at, treatment_id=treatment_id, notes=notes)
        return self.update_status(booking_id, status=status, notes=notes)

    # --- Helpers ---

    def _get(self, booking_id: str) -> Booking:
        booking = self.store.get_booking(booking_id)
        if booking is None:
            raise BookingNotFound(f"Booking {booking_id} not found", {"booking_id": booking_id})
        return booking

    def _require_future(self, starts_at: datetime) -> None:
        if starts_at.tzinfo is None:
            raise InvalidTimeRange("Start time must carry a timezone", {"starts_at": starts_at.isoformat()})
        if starts_at < self.clock():
            raise InvalidTimeRange("Cannot book a start time in the past", {"starts_at": starts_at.isoformat()})

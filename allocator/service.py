"""
Engine-facing interface consumed by the routing layer.
"""

import logging
from datetime import date, datetime
from typing import Callable, List, Optional

from clinic import Booking, BookingStatus
from .availability import SlotScanner, SmartAvailability, SmartAvailabilityAggregator
from .config import settings as default_settings
from .transactions import AllocationTransactionManager

logger = logging.getLogger(__name__)


class BookingEngine:
    """
    One engine per store. All writes go through a single transaction manager,
    which is the serialization point for check-then-write.
    """

    def __init__(self, store, settings=None, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.settings = settings or default_settings
        self.transactions = AllocationTransactionManager(store, self.settings, clock)
        self.scanner = SlotScanner(store, self.settings, self.transactions.clock)
        self.aggregator = SmartAvailabilityAggregator(self.scanner, self.settings)

    # --- Bookings ---

    def create_booking(self, patient_id: str, treatment_id: str, starts_at: datetime,
                       notes: Optional[str] = None) -> Booking:
        return self.transactions.create(patient_id, treatment_id, starts_at, notes)

    def reschedule_booking(self, booking_id: str, starts_at: Optional[datetime] = None,
                           treatment_id: Optional[str] = None, notes: Optional[str] = None) -> Booking:
        return self.transactions.reschedule(booking_id, starts_at, treatment_id, notes)

    def update_booking_status(self, booking_id: str, status: BookingStatus,
                              notes: Optional[str] = None) -> Booking:
        return self.transactions.update_status(booking_id, status, notes)

    def update_booking(self, booking_id: str, **changes) -> Booking:
        return self.transactions.update(booking_id, **changes)

    def cancel_booking(self, booking_id: str) -> None:
        self.transactions.cancel(booking_id)

    def list_bookings(self, staff_id: Optional[str] = None, start: Optional[datetime] = None,
                      end: Optional[datetime] = None) -> List[Booking]:
        return self.store.list_bookings(staff_id=staff_id, start=start, end=end)

    # --- Availability ---

    def get_feasible_slots(self, treatment_id: str, day: date) -> List[datetime]:
        return self.scanner.scan(treatment_id, day)

    def get_smart_availability(self, treatment_id: str, requested_day: date) -> SmartAvailability:
        return self.aggregator.search(treatment_id, requested_day)

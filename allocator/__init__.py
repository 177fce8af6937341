"""
Allocator package.

Exposes the engine facade, the stores it runs against and the error
taxonomy surfaced at the API boundary.
"""

from .service import BookingEngine
from .store import CalendarStore, InMemoryStore
from .sql_store import SqlCalendarStore
from .availability import SmartAvailability, OfferWindow, DayParts
from .config import Settings, settings
from .log_config import setup_logging
from .errors import AllocationError, SearchError

__all__ = [
    "BookingEngine",
    "CalendarStore",
    "InMemoryStore",
    "SqlCalendarStore",
    "SmartAvailability",
    "OfferWindow",
    "DayParts",
    "Settings",
    "settings",
    "setup_logging",
    "AllocationError",
    "SearchError",
]

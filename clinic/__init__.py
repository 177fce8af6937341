"""
Data models package for the Multi-Phase Allocator.

This package exports the three core pillars of the data architecture:
1. Demand (Treatment, Phase)
2. Supply (Installation, StaffMember, WeeklyScheduleEntry, ScheduleException)
3. Output (Booking, PhaseAllocation, BookingStatus)
"""

from .resource import (
    Installation,
    InstallationCategory,
    StaffMember,
    WeeklyScheduleEntry,
    ScheduleException
)

from .treatment import (
    Treatment,
    Phase
)

from .booking import (
    Booking,
    BookingStatus,
    PhaseAllocation
)

__all__ = [
    # --- Demand Models ---
    "Treatment",
    "Phase",

    # --- Resource & Constraint Models ---
    "Installation",
    "InstallationCategory",
    "StaffMember",
    "WeeklyScheduleEntry",
    "ScheduleException",

    # --- Output Models ---
    "Booking",
    "BookingStatus",
    "PhaseAllocation",
]

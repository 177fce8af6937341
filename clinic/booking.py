"""
Booking data models for the Multi-Phase Allocator.

This module defines the 'Output' of the engine:
Bookings and the concrete (staff, installation, interval) allocations
committed for each of their phases.
"""

from decimal import Decimal
from typing import List, Optional
from enum import Enum
from pydantic import AwareDatetime, BaseModel, Field, ConfigDict, model_validator
from datetime import datetime


class BookingStatus(str, Enum):
    """Lifecycle state of a booking."""
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


class PhaseAllocation(BaseModel):
    """
    A committed block of time for one phase of one booking.
    """

    id: Optional[str] = Field(default=None, description="Row identifier, assigned by the store")
    booking_id: Optional[str] = Field(default=None, description="Owning booking")
    phase_id: Optional[str] = Field(default=None, description="None for the virtual phase of a simple treatment")

    # --- Resource Allocation ---
    staff_id: str = Field(description="Assigned professional")
    installation_id: Optional[str] = Field(default=None, description="Assigned installation")
    staff_fraction: Decimal = Field(default=Decimal("1.00"), ge=0, le=1, description="Load placed on the professional")

    # --- Interval ---
    starts_at: AwareDatetime
    ends_at: AwareDatetime

    @model_validator(mode='after')
    def validate_range(self):
        if self.ends_at <= self.starts_at:
            raise ValueError("Allocation end must be after its start")
        return self

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.starts_at < end and start < self.ends_at

    def fingerprint(self) -> tuple:
        """Identity of the allocation ignoring its row id."""
        return (self.booking_id, self.phase_id, self.staff_id, self.installation_id,
                self.starts_at, self.ends_at)


class Booking(BaseModel):
    """
    A patient's reservation of a treatment.
    ends_at is always derived from the phase allocations.
    """

    id: Optional[str] = Field(default=None, description="Row identifier, assigned by the store")
    patient_id: str = Field(description="Patient reference")
    treatment_id: str = Field(description="Booked treatment")
    starts_at: AwareDatetime
    ends_at: AwareDatetime
    status: BookingStatus = Field(default=BookingStatus.SCHEDULED, description="Current state")
    notes: Optional[str] = Field(default=None, description="Free-text notes")

    created_at: Optional[AwareDatetime] = None
    updated_at: Optional[AwareDatetime] = None

    allocations: List[PhaseAllocation] = Field(
        default_factory=list,
        description="Phase allocations, populated on engine results"
    )

    @model_validator(mode='after')
    def validate_range(self):
        if self.ends_at <= self.starts_at:
            raise ValueError("Booking end must be after its start")
        return self

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "id": "bk_3f2a9c1d",
            "patient_id": "pat_001",
            "treatment_id": "recovery",
            "starts_at": "2026-03-02T10:00:00-03:00",
            "ends_at": "2026-03-02T11:00:00-03:00",
            "status": "scheduled",
            "notes": "First session"
        }
    })

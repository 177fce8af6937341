"""
Resource and Constraint data models for the Multi-Phase Allocator.

This module defines the 'Supply' side of the engine:
1. Installations (Physical resources, interchangeable within a category)
2. Staff Members (Human resources with a weekly template)
3. Schedule Exceptions (One-off closures and absences)
"""

from enum import Enum
from typing import Optional
from pydantic import AwareDatetime, BaseModel, Field, model_validator, ConfigDict
from datetime import datetime, time


class InstallationCategory(str, Enum):
    """Categories of physical resources."""
    CHAMBER = "chamber"   # e.g. Hyperbaric chamber
    BOX = "box"           # e.g. Treatment box / room


class Installation(BaseModel):
    """
    Physical resource instance.
    Any active instance of the required category satisfies a phase.
    """
    id: str = Field(description="Unique identifier")
    name: str = Field(min_length=1, description="e.g. 'Chamber 1', 'Box Main'")
    category: InstallationCategory = Field(description="Interchangeability class")
    is_active: bool = Field(default=True, description="Inactive instances are never allocated")

    model_config = ConfigDict(json_schema_extra={
        "example": {"id": "chamber-1", "name": "Chamber 1", "category": "chamber", "is_active": True}
    })


class StaffMember(BaseModel):
    """Professional whose time is shared out in fractions."""
    id: str = Field(description="Unique identifier")
    full_name: str = Field(min_length=1, description="Name of the professional")


class WeeklyScheduleEntry(BaseModel):
    """A staff member's single contiguous working interval on one weekday."""
    staff_id: str = Field(description="Owner of the shift")
    day_of_week: int = Field(ge=0, le=6, description="0=Monday, 6=Sunday")
    start_time: time = Field(description="Shift start (clinic local time)")
    end_time: time = Field(description="Shift end (clinic local time)")

    @model_validator(mode='after')
    def validate_times(self):
        if self.start_time >= self.end_time:
            raise ValueError("End time must be strictly after start time")
        return self

    def covers(self, local_start: datetime, local_end: datetime) -> bool:
        """True if [local_start, local_end) sits entirely inside the shift on the same day."""
        if local_start.date() != local_end.date():
            return False
        return self.start_time <= local_start.time() and local_end.time() <= self.end_time


class ScheduleException(BaseModel):
    """
    One-off blocked interval.
    Scope: whole clinic (no references), one staff member, or one installation.
    """
    id: str = Field(description="Unique identifier")
    staff_id: Optional[str] = Field(default=None, description="Blocked professional, if any")
    installation_id: Optional[str] = Field(default=None, description="Blocked installation, if any")
    starts_at: AwareDatetime
    ends_at: AwareDatetime
    reason: Optional[str] = Field(default=None, description="Holiday, maintenance, sick leave...")

    @model_validator(mode='after')
    def validate_range(self):
        if self.ends_at <= self.starts_at:
            raise ValueError("Exception end must be after its start")
        return self

    @property
    def is_clinic_wide(self) -> bool:
        return self.staff_id is None and self.installation_id is None

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.starts_at < end and start < self.ends_at

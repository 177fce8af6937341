"""
Treatment and Phase data models for the Multi-Phase Allocator.
"""

from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, model_validator, ConfigDict

from .resource import InstallationCategory

VIRTUAL_PHASE_ORDINAL = 1


class Phase(BaseModel):
    """
    One sequential, independently-resourced segment of a treatment.
    """

    # --- Core Identity ---
    id: Optional[str] = Field(default=None, description="None for the synthesized phase of a simple treatment")
    treatment_id: str = Field(description="Owning treatment")
    ordinal: int = Field(ge=1, description="Position within the treatment, contiguous from 1")
    label: Optional[str] = Field(default=None, description="Human-readable step name")

    # --- Resource Requirements ---
    duration_minutes: int = Field(gt=0, le=1440, description="Length of the phase")
    staff_fraction: Decimal = Field(
        ge=0, le=1, max_digits=3, decimal_places=2,
        description="Share of one professional's time (1.00 = full attention)"
    )
    installation_category: Optional[InstallationCategory] = Field(
        default=None,
        description="Category of installation occupied during the phase"
    )

    @property
    def is_virtual(self) -> bool:
        return self.id is None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "id": "recovery-2",
            "treatment_id": "recovery",
            "ordinal": 2,
            "duration_minutes": 30,
            "staff_fraction": "0.50",
            "installation_category": "chamber"
        }
    })


class Treatment(BaseModel):
    """
    A bookable offering.
    Simple treatments describe their single phase inline; composite
    treatments are broken down into persisted phases.
    """

    id: str = Field(description="Unique identifier")
    name: str = Field(min_length=1, description="Human-readable name")
    description: Optional[str] = Field(default=None)
    is_active: bool = Field(default=True, description="Inactive treatments cannot be booked")
    is_composite: bool = Field(default=False, description="True if the treatment has several phases")

    # --- Inline phase (simple treatments) ---
    duration_minutes: Optional[int] = Field(default=None, gt=0, le=1440, description="Advertised total duration")
    staff_fraction: Decimal = Field(default=Decimal("1.00"), ge=0, le=1, max_digits=3, decimal_places=2)
    installation_category: Optional[InstallationCategory] = Field(default=None)

    @model_validator(mode='after')
    def validate_inline_phase(self):
        if not self.is_composite and self.duration_minutes is None:
            raise ValueError("Simple treatments require duration_minutes")
        return self

    def virtual_phase(self) -> Phase:
        """Single phase synthesized from the treatment's own fields."""
        return Phase(
            id=None,
            treatment_id=self.id,
            ordinal=VIRTUAL_PHASE_ORDINAL,
            label=self.name,
            duration_minutes=self.duration_minutes,
            staff_fraction=self.staff_fraction,
            installation_category=self.installation_category,
        )

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "id": "hyperbaric",
            "name": "Hyperbaric Session",
            "is_composite": False,
            "duration_minutes": 60,
            "staff_fraction": "0.50",
            "installation_category": "chamber"
        }
    })

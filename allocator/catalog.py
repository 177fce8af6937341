"""
Catalog Resolver.

Turns a treatment identifier into an ordered, validated phase list so the
rest of the engine treats every treatment uniformly as "one or more phases".
"""

import logging
from dataclasses import dataclass
from typing import List

from clinic import Treatment, Phase
from .errors import TreatmentNotFound, TreatmentInactive, NoPhasesConfigured, InvalidPhaseSequence

logger = logging.getLogger(__name__)


@dataclass
class ResolvedTreatment:
    treatment: Treatment
    phases: List[Phase]

    @property
    def total_minutes(self) -> int:
        return sum(p.duration_minutes for p in self.phases)


class CatalogResolver:

    def __init__(self, store):
        self.store = store

    def resolve(self, treatment_id: str, require_active: bool = True) -> ResolvedTreatment:
        treatment = self.store.get_treatment(treatment_id)
        if treatment is None:
            raise TreatmentNotFound(f"Treatment {treatment_id} not found", {"treatment_id": treatment_id})
        if require_active and not treatment.is_active:
            raise TreatmentInactive(
                f"Treatment {treatment.name} is not currently available",
                {"treatment_id": treatment_id}
            )

        phases = self.store.list_phases(treatment_id)

        if treatment.is_composite:
            if not phases:
                raise NoPhasesConfigured(
                    f"Composite treatment {treatment.name} has no phases configured",
                    {"treatment_id": treatment_id}
                )
        elif not phases:
            # Simple treatment without a persisted phase row
            phases = [treatment.virtual_phase()]

        self._validate_ordinals(treatment, phases)

        resolved = ResolvedTreatment(treatment=treatment, phases=phases)
        if treatment.duration_minutes is not None and treatment.duration_minutes != resolved.total_minutes:
            logger.warning(
                f"Treatment {treatment.id} advertises {treatment.duration_minutes} min "
                f"but its phases sum to {resolved.total_minutes} min"
            )
        return resolved

    @staticmethod
    def _validate_ordinals(treatment: Treatment, phases: List[Phase]) -> None:
        ordinals = [p.ordinal for p in phases]
        if ordinals != list(range(1, len(phases) + 1)):
            raise InvalidPhaseSequence(
                f"Phases of treatment {treatment.name} must be numbered 1..{len(phases)}, got {ordinals}",
                {"treatment_id": treatment.id, "ordinals": ordinals}
            )

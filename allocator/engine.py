"""
The Multi-Phase Sequencing Engine.

This module implements the core "Solver" logic.
Phases are inherently sequential (one patient moving through time), so the
search is a forward scan with a running cursor:
1. Clinic closures are checked first (no choice can get around them).
2. Each phase gets a candidate list: free installations x eligible staff.
3. Candidates are tried depth-first in store order; when a later phase
   finds nothing, the search backs up and tries the next candidate of an
   earlier phase. The first complete assignment in that order wins.
4. Phases never overlap each other, so an earlier choice reaches a later
   phase only through the installations it claimed and, for zero-fraction
   phases, the professional it handed over. Sub-searches that failed are
   remembered under exactly that state and never repeated.
"""

import logging
from datetime import datetime, timedelta, timezone, tzinfo
from itertools import product
from typing import FrozenSet, List, Optional, Set, Tuple
from dataclasses import dataclass

from clinic import Phase, PhaseAllocation
from .constraints import ConstraintViolation, ExceptionFilter, ResourceMatcher, CapacityMatcher
from .errors import SearchError, ClinicBlocked, NoResourcesOfCategory, ResourceBusy, NoStaffConfigured, StaffBusy
from .state import ClinicSnapshot

logger = logging.getLogger(__name__)

# Failures that no choice made for an earlier phase can avoid
PATH_INDEPENDENT = (ClinicBlocked, NoResourcesOfCategory, NoStaffConfigured)


@dataclass
class SequenceResult:
    allocations: List[PhaseAllocation]
    ends_at: datetime


class PhaseSequencer:
    """
    Places every phase of one booking against a clinic snapshot.
    Stateless between runs; a sequencer may be reused for many probes.
    """

    def __init__(self, snapshot: ClinicSnapshot, clinic_tz: tzinfo):
        self.snapshot = snapshot
        self.exceptions = ExceptionFilter(snapshot)
        self.resources = ResourceMatcher(snapshot, self.exceptions)
        self.capacity = CapacityMatcher(snapshot, self.exceptions, clinic_tz)

    def run(self, phases: List[Phase], start: datetime) -> SequenceResult:
        """
        Execute the sequencing pipeline.
        Raises the first failure of the deepest phase reached if no assignment exists.
        """
        self._failure: Optional[SearchError] = None
        self._failure_depth = -1
        self._dead_ends: Set[Tuple[int, FrozenSet[str], Optional[str]]] = set()

        # Elapsed-time arithmetic; wall-clock addition drifts across DST changes
        start = start.astimezone(timezone.utc)

        allocations = self._place(phases, 0, start, [])
        if allocations is None:
            raise self._failure

        return SequenceResult(allocations=allocations, ends_at=allocations[-1].ends_at)

    def _place(self, phases: List[Phase], index: int, cursor: datetime,
               placed: List[PhaseAllocation]) -> Optional[List[PhaseAllocation]]:
        if index == len(phases):
            return placed

        key = self._state_key(phases, index, placed)
        if key in self._dead_ends:
            return None

        phase = phases[index]
        end = cursor + timedelta(minutes=phase.duration_minutes)

        try:
            options = self._options(phase, cursor, end, placed)
        except PATH_INDEPENDENT:
            # Every path reaching this phase fails the same way, and none gets deeper
            raise
        except SearchError as e:
            self._record_failure(index, e)
            self._dead_ends.add(key)
            return None

        for installation_id, staff_id in options:
            allocation = PhaseAllocation(
                phase_id=phase.id,
                staff_id=staff_id,
                installation_id=installation_id,
                staff_fraction=phase.staff_fraction,
                starts_at=cursor,
                ends_at=end,
            )
            result = self._place(phases, index + 1, end, placed + [allocation])
            if result is not None:
                return result

        logger.debug(f"Backtracking out of phase {phase.ordinal} at {cursor.isoformat()}")
        self._dead_ends.add(key)
        return None

    @staticmethod
    def _state_key(phases: List[Phase], index: int,
                   placed: List[PhaseAllocation]) -> Tuple[int, FrozenSet[str], Optional[str]]:
        """
        Everything earlier phases pass on to phases[index:].
        Staff loads are not part of it: earlier phases end at or before the
        cursor, so they never overlap a later phase.
        """
        remaining = {p.installation_category for p in phases[index:] if p.installation_category is not None}
        claimed = frozenset(
            a.installation_id for p, a in zip(phases, placed)
            if a.installation_id and p.installation_category in remaining
        )
        handover = placed[-1].staff_id if placed and phases[index].staff_fraction == 0 else None
        return index, claimed, handover

    def _options(self, phase: Phase, start: datetime, end: datetime, placed: List[PhaseAllocation]):
        """Candidate (installation_id, staff_id) pairs for one phase, best first."""
        # 1. Global clinic blocks
        block = self.exceptions.clinic_block(start, end)
        if block is not None:
            raise ClinicBlocked(
                f"The clinic is closed during phase {phase.ordinal}",
                self._violation("Clinic", block.reason or "clinic closed", phase, start, end),
                {"exception_id": block.id}
            )

        # 2. Physical resource
        installation_ids: List[Optional[str]] = [None]
        if phase.installation_category is not None:
            category = phase.installation_category.value
            if not self.resources.has_category(phase.installation_category):
                raise NoResourcesOfCategory(
                    f"There are no active installations of type '{category}'",
                    self._violation("Resource", "category not configured", phase, start, end),
                    {"category": category}
                )
            claimed: Set[str] = {a.installation_id for a in placed if a.installation_id}
            free = self.resources.free_installations(phase.installation_category, start, end, claimed)
            if not free:
                raise ResourceBusy(
                    f"All installations of type '{category}' are occupied during phase "
                    f"{phase.ordinal}. Try another time.",
                    self._violation("Resource", "all instances occupied", phase, start, end),
                    {"category": category}
                )
            installation_ids = [inst.id for inst in free]

        # 3. Professional
        if not self.snapshot.staff:
            raise NoStaffConfigured(
                "There are no professionals configured",
                self._violation("Staff", "no staff configured", phase, start, end)
            )

        if phase.staff_fraction > 0:
            eligible, rejected = self.capacity.eligible_staff(phase.staff_fraction, start, end, placed)
            if not eligible:
                raise StaffBusy(
                    f"No professional is available during phase {phase.ordinal}: "
                    f"all are at full capacity or off shift",
                    self._violation("Staff", "no staff member can absorb the load", phase, start, end),
                    {"fraction": str(phase.staff_fraction), "staff_rejections": rejected}
                )
            staff_ids = [s.id for s in eligible]
        else:
            # Zero-fraction phase: supervision continues with whoever ran the previous phase
            staff_ids = [placed[-1].staff_id if placed else self.snapshot.staff[0].id]

        return list(product(installation_ids, staff_ids))

    def _record_failure(self, depth: int, error: SearchError) -> None:
        if depth > self._failure_depth:
            self._failure = error
            self._failure_depth = depth

    @staticmethod
    def _violation(kind: str, reason: str, phase: Phase, start: datetime, end: datetime) -> ConstraintViolation:
        return ConstraintViolation(
            constraint_type=kind,
            reason=reason,
            phase_ordinal=phase.ordinal,
            starts_at=start,
            ends_at=end,
        )

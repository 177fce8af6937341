"""
Error taxonomy of the allocation engine.

Every error carries a stable machine-readable code and an HTTP-style
status, surfaced verbatim at the API boundary via to_dict().
"""

from typing import Any, Dict, Optional


class AllocationError(Exception):
    """Base class for every engine error."""
    code = "ALLOCATION_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "statusCode": self.status_code,
            "details": self.details,
        }


# --- Catalog ---

class TreatmentNotFound(AllocationError):
    code = "TREATMENT_NOT_FOUND"
    status_code = 404


class TreatmentInactive(AllocationError):
    code = "TREATMENT_INACTIVE"
    status_code = 409


class NoPhasesConfigured(AllocationError):
    code = "NO_PHASES"
    status_code = 500


class InvalidPhaseSequence(AllocationError):
    code = "INVALID_PHASE_SEQUENCE"
    status_code = 500


# --- Search (recoverable: the caller may try another time or treatment) ---

class SearchError(AllocationError):
    """A phase could not be placed. `violation` says which phase and which constraint."""

    def __init__(self, message: str, violation=None, details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        if violation is not None:
            details.setdefault("phase", violation.phase_ordinal)
            details.setdefault("constraint", violation.constraint_type)
            details.setdefault("starts_at", violation.starts_at.isoformat())
            details.setdefault("ends_at", violation.ends_at.isoformat())
        super().__init__(message, details)
        self.violation = violation


class ClinicBlocked(SearchError):
    code = "CLINIC_BLOCKED"
    status_code = 409


class NoResourcesOfCategory(SearchError):
    code = "NO_RESOURCES"
    status_code = 500


class ResourceBusy(SearchError):
    code = "RESOURCE_BUSY"
    status_code = 409


class NoStaffConfigured(SearchError):
    code = "NO_STAFF"
    status_code = 500


class StaffBusy(SearchError):
    code = "STAFF_BUSY"
    status_code = 409


# --- Booking lifecycle ---

class InvalidTimeRange(AllocationError):
    code = "INVALID_TIME_RANGE"
    status_code = 400


class BookingNotFound(AllocationError):
    code = "BOOKING_NOT_FOUND"
    status_code = 404


class BookingCancelled(AllocationError):
    code = "BOOKING_CANCELLED"
    status_code = 409


class AlreadyCancelled(BookingCancelled):
    code = "ALREADY_CANCELLED"


class BookingCompleted(AllocationError):
    code = "BOOKING_COMPLETED"
    status_code = 409


class InvalidStatusTransition(AllocationError):
    code = "INVALID_STATUS_TRANSITION"
    status_code = 422


# --- Persistence ---

class StoreError(AllocationError):
    """A single store operation failed."""
    code = "STORE_ERROR"
    status_code = 500


class AllocationPersistFailed(AllocationError):
    code = "ALLOCATION_PERSIST_FAILED"
    status_code = 500


class RescheduleFailed(AllocationError):
    code = "RESCHEDULE_FAILED"
    status_code = 409


class RollbackFailed(AllocationError):
    """Compensating writes failed: stored state may be inconsistent."""
    code = "ROLLBACK_FAILED"
    status_code = 500

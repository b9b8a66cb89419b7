"""
Service Errors

Exception taxonomy raised by the workflow and credit services.
Routers translate these into HTTP responses; services never retry.
"""
from typing import Dict, Optional


class ServiceError(Exception):
    """Base class for all service-level failures."""
    code = "service_error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class Unauthorized(ServiceError):
    """Role or ownership check failed."""
    code = "unauthorized"


class NotAssigned(Unauthorized):
    """Caller is not the officer assigned to the project."""
    code = "not_assigned"


class NotOwner(Unauthorized):
    """Caller does not own the resource."""
    code = "not_owner"


class InvalidState(ServiceError):
    """Operation is not legal in the project's current state."""
    code = "invalid_state"


class AlreadyStarted(InvalidState):
    code = "already_started"


class NotInProgress(InvalidState):
    code = "not_in_progress"


class IncompleteData(ServiceError):
    """Missing or out-of-range input. Carries per-field messages."""
    code = "incomplete_data"

    def __init__(self, message: str, field_errors: Optional[Dict[str, str]] = None, code: Optional[str] = None):
        super().__init__(message, code)
        self.field_errors = field_errors or {}


class InvalidShares(IncompleteData):
    """Share percentages are negative or exceed 100 in total."""
    code = "invalid_shares"


class NotFound(ServiceError):
    code = "not_found"


class Conflict(ServiceError):
    """Lost a concurrency race; the caller should re-fetch before retrying."""
    code = "conflict"


class AlreadyAssigned(Conflict):
    code = "already_assigned"


class DuplicateReport(Conflict):
    """A decision-bearing report already exists for the project."""
    code = "duplicate_report"


# The state machine's name for the same condition
ReportAlreadyExists = DuplicateReport


class DistributionExists(Conflict):
    code = "distribution_exists"


class DependencyFailure(ServiceError):
    """Persistence, storage or settlement collaborator failed. Nothing was applied."""
    code = "dependency_failure"

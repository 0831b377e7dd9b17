"""
Reconciliation domain errors.

The API layer maps them to HTTP status codes:
- RunNotFoundError -> 404
- RunPermissionError -> 403
- RunStateError -> 409
- RunValidationError -> 422
"""

from typing import Any, Dict, Optional


class ReconciliationError(Exception):
    """Base class for reconciliation errors"""
    pass


class RunNotFoundError(ReconciliationError):
    """Run, line or category does not exist"""
    pass


class RunPermissionError(ReconciliationError):
    """Caller may not access or perform this operation on the run"""
    pass


class RunStateError(ReconciliationError):
    """Operation not allowed in the run's current status"""
    pass


class RunValidationError(ReconciliationError):
    """Request is well-formed but violates a reconciliation rule"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

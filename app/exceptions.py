# app/exceptions.py
from typing import Any, Dict, Optional


def create_error_response(
    message: str,
    details: Optional[str] = None,
    example: Optional[str] = None
) -> Dict[str, Any]:
    """Create a detailed error response"""
    response = {
        "message": message,
        "details": details if details else message
    }
    if example:
        response["example"] = example
    return response


class FleetError(Exception):
    """Base class for every error the scheduling core surfaces to callers."""

    status_code = 400

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        example: Optional[str] = None,
        conflict: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(details or message)
        self.message = message
        self.details = details
        self.example = example
        self.conflict = conflict

    def to_response(self) -> Dict[str, Any]:
        response = create_error_response(self.message, self.details, self.example)
        if self.conflict is not None:
            response["conflict"] = self.conflict
        return response


class ValidationError(FleetError):
    status_code = 400


class NotFoundError(FleetError):
    status_code = 404


class ConflictError(FleetError):
    """A business rule rejected the operation; ``conflict`` holds the offending record."""

    status_code = 409


class AssignmentError(FleetError):
    """The driver/vehicle binding could not be applied.

    Raised after the primary entity may already be persisted, so callers
    must roll their own write back before surfacing it.
    """

    status_code = 400

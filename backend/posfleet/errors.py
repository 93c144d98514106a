# Overview: Domain error taxonomy shared by services and routes.

"""
Every business-rule failure raised by the service layer derives from
WorkflowError. Routes translate them into JSON responses using the
status_code/code carried by the exception; anything else is an unexpected
failure and becomes a generic 500.
"""


class WorkflowError(Exception):
    status_code = 400
    code = "WORKFLOW_ERROR"

    def __init__(self, message: str, *, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(WorkflowError):
    """Malformed or missing input."""
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(WorkflowError):
    status_code = 404
    code = "NOT_FOUND"


class ForbiddenError(WorkflowError):
    """Actor's branch does not match the resource the operation requires."""
    status_code = 403
    code = "FORBIDDEN"


class ConflictError(WorkflowError):
    """State conflict: lost race, already responded, duplicate receipt/serial."""
    status_code = 409
    code = "CONFLICT"


class TransitionError(ConflictError):
    """Raised when a machine status edge is not part of the legal graph."""
    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, message: str | None = None):
        super().__init__(
            message or f"Invalid transition {from_status} -> {to_status}",
            details={"from": from_status, "to": to_status},
        )
        self.from_status = from_status
        self.to_status = to_status


class PreconditionFailed(WorkflowError):
    status_code = 400
    code = "PRECONDITION_FAILED"

"""Activation service errors.

Every error carries a machine-readable ``reason`` and maps to one HTTP status.
DependencyFailure is never surfaced to callers; it is caught and logged where
the side effect runs.
"""


class ActivationError(Exception):
    """Base exception for activation service errors."""

    status_code = 500
    reason = "internal_error"

    def __init__(self, message: str | None = None, *, reason: str | None = None):
        self.message = message or self.__class__.__doc__ or "Activation error"
        if reason:
            self.reason = reason
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.message, "reason": self.reason}


class ValidationError(ActivationError):
    """Missing or malformed request data."""

    status_code = 400
    reason = "validation_error"


class MissingFieldError(ValidationError):
    """A required field is missing."""

    reason = "missing_field"

    def __init__(self, field: str, message: str | None = None):
        self.field = field
        super().__init__(message or f"Missing required field: {field}")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["field"] = self.field
        return data


class NotFoundError(ActivationError):
    """Resource not found."""

    status_code = 404
    reason = "not_found"


class UnauthorizedError(ActivationError):
    """Missing or invalid caller identity."""

    status_code = 401
    reason = "unauthorized"


class ForbiddenError(ActivationError):
    """Caller is authenticated but not allowed to do this."""

    status_code = 403
    reason = "forbidden"


class ConflictError(ActivationError):
    """Operation rejected by current state."""

    status_code = 409
    reason = "conflict"


class AlreadyCompletedError(ConflictError):
    """Meeting already closed."""

    reason = "already_completed"


class TerminalStateError(ConflictError):
    """Pipeline is in a terminal state."""

    reason = "terminal_state"


class SlotUnavailableError(ConflictError):
    """Requested time slot is no longer available."""

    reason = "slot_unavailable"


class NotConfiguredError(ActivationError):
    """Endpoint disabled until its secret is configured."""

    status_code = 501
    reason = "not_configured"


class DependencyFailure(ActivationError):
    """Downstream side effect failed."""

    status_code = 502
    reason = "dependency_failure"

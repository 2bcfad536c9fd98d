"""Error taxonomy for the alert processing engine.

Each error carries the HTTP status and machine-readable code the API
layer reports. Validation and not-found errors are raised before any
mutation; conflicts are raised when a state-machine guard fails.
"""

from __future__ import annotations


class AlertEngineError(Exception):
    """Base exception for alert engine errors."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str = "") -> None:
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)


class ValidationError(AlertEngineError):
    """A required field is missing or invalid."""

    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(AlertEngineError):
    """The referenced alert does not exist."""

    status_code = 404
    code = "NOT_FOUND"


class ConflictError(AlertEngineError):
    """The requested transition is not allowed from the alert's current state.

    Attributes:
        current_state: State the alert was in when the guard failed.
    """

    status_code = 409
    code = "CONFLICT"

    def __init__(self, message: str = "", current_state: str | None = None) -> None:
        self.current_state = current_state
        super().__init__(message)


class InternalError(AlertEngineError):
    """Unexpected store or transport failure."""

    status_code = 500
    code = "INTERNAL_ERROR"

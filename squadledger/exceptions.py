"""Error taxonomy for the ledger engine."""

from fastapi import HTTPException, status


class LedgerError(Exception):
    """Base exception for engine errors."""

    def __init__(self, message: str, error_type: str = "ledger_error"):
        self.message = message
        self.error_type = error_type
        super().__init__(message)


class AccessDeniedError(LedgerError):
    """Raised when the role or approval gate rejects a caller."""

    def __init__(self, message: str):
        super().__init__(message, "access_denied")


class NotFoundError(LedgerError):
    """Raised when a project, task, pledge or profile does not exist."""

    def __init__(self, entity: str, identifier: object):
        super().__init__(f"{entity} '{identifier}' not found", "not_found")
        self.entity = entity
        self.identifier = identifier


class InvalidStateError(LedgerError):
    """Raised when an operation is attempted from a state that forbids it."""

    def __init__(self, message: str):
        super().__init__(message, "invalid_state")


class TransitionError(InvalidStateError):
    """Raised when a state machine rejects a transition."""

    def __init__(self, entity: str, current_status: str, target_status: str):
        super().__init__(
            f"Invalid {entity} transition: '{current_status}' -> '{target_status}'"
        )
        self.entity = entity
        self.current_status = current_status
        self.target_status = target_status


class BudgetExceededError(LedgerError):
    """Raised when a pledge or task allocation would overflow capacity."""

    def __init__(self, scope: str, requested: float, available: float):
        super().__init__(
            f"{scope} budget exceeded: requested {requested:g} HH, "
            f"{max(available, 0.0):g} HH available",
            "budget_exceeded",
        )
        self.scope = scope
        self.requested = requested
        self.available = available


class ConflictError(LedgerError):
    """Raised when a concurrent mutation lost a race or a record already exists."""

    def __init__(self, message: str):
        super().__init__(message, "conflict")


class InputValidationError(LedgerError):
    """Raised for malformed input: bad amounts, self-rating, closed windows."""

    def __init__(self, message: str):
        super().__init__(message, "validation_error")


def raise_http_exception(error: LedgerError) -> None:
    """Convert LedgerError to HTTPException."""
    status_map = {
        "access_denied": status.HTTP_403_FORBIDDEN,
        "not_found": status.HTTP_404_NOT_FOUND,
        "invalid_state": status.HTTP_409_CONFLICT,
        "budget_exceeded": status.HTTP_409_CONFLICT,
        "conflict": status.HTTP_409_CONFLICT,
        "validation_error": status.HTTP_422_UNPROCESSABLE_ENTITY,
        "ledger_error": status.HTTP_500_INTERNAL_SERVER_ERROR,
    }
    code = status_map.get(error.error_type, status.HTTP_500_INTERNAL_SERVER_ERROR)

    raise HTTPException(
        status_code=code,
        detail={
            "type": error.error_type,
            "title": error.error_type.replace("_", " ").title(),
            "status": code,
            "detail": error.message,
        },
    )

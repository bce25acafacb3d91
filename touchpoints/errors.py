"""Typed failures raised by the pattern engine and its storage boundary."""

from datetime import date
from typing import Optional
from uuid import UUID


class PatternEngineError(Exception):
    """Base class for every failure the engine reports to its callers."""


class NoHistoryError(PatternEngineError):
    """The circle has no scheduled or completed visits inside the analysis window.

    Callers should treat this as "no patterns yet", not as an application error.
    """

    def __init__(self, circle_id: UUID, window_days: int):
        self.circle_id = circle_id
        self.window_days = window_days
        super().__init__(
            f"No visit history for circle {circle_id} in the last {window_days} days"
        )


class StorageError(PatternEngineError):
    """A read or write against the visit, pattern or suggestion store failed.

    Attributes:
        operation: Name of the store operation that failed
        cause: The underlying driver exception
    """

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Storage operation '{operation}' failed{detail}")


class ConflictError(PatternEngineError):
    """Creating the visit would double-book a slot that is already taken."""

    def __init__(self, circle_id: UUID, visit_date: date, message: Optional[str] = None):
        self.circle_id = circle_id
        self.visit_date = visit_date
        super().__init__(
            message or f"That slot on {visit_date.isoformat()} was just taken"
        )


class SuggestionValidationError(PatternEngineError):
    """A suggestion handed back for accept/reject is malformed."""


class StalePatternError(SuggestionValidationError):
    """The suggestion's source pattern no longer exists in its circle.

    Raised when a re-analysis has replaced the pattern since the suggestion was
    generated, or when the pattern id never belonged to the circle.
    """

    def __init__(self, pattern_id: Optional[UUID]):
        self.pattern_id = pattern_id
        super().__init__(
            "This suggestion is out of date. Refresh suggestions and try again."
        )


class SuggestionAlreadyResolvedError(SuggestionValidationError):
    """The suggestion was already accepted; it cannot be accepted or rejected again."""

    def __init__(self, suggestion_id: UUID):
        self.suggestion_id = suggestion_id
        super().__init__(f"Suggestion {suggestion_id} was already accepted")

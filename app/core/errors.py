"""Error codes and failure values for check-in operations."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict


class ErrorCode(str, Enum):
    """Closed set of failure codes returned to callers."""

    NOT_FOUND = "NOT_FOUND"
    ALREADY_CHECKED_IN = "ALREADY_CHECKED_IN"
    PLUS_ONES_EXCEEDED = "PLUS_ONES_EXCEEDED"
    NOT_CHECKED_IN = "NOT_CHECKED_IN"
    INVALID_CHECK_IN = "INVALID_CHECK_IN"
    TIME_WINDOW_EXPIRED = "TIME_WINDOW_EXPIRED"
    INVALID_GUEST_ID = "INVALID_GUEST_ID"
    PROCESSING_ERROR = "PROCESSING_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    STORE_ERROR = "STORE_ERROR"
    USERNAME_TAKEN = "USERNAME_TAKEN"
    INVALID_OPERATION = "INVALID_OPERATION"


@dataclass(frozen=True)
class CheckInFailure:
    """A business-rule failure. Returned, never raised."""

    code: ErrorCode
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class CheckInError(Exception):
    """Base for exceptions raised by the check-in engine."""

    code = ErrorCode.PROCESSING_ERROR


class ValidationError(CheckInError):
    """Input does not have the shape the engine accepts."""

    code = ErrorCode.VALIDATION_ERROR

    def __init__(self, message: str, details: Dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class StoreError(CheckInError):
    """The persistent store failed; the transaction was rolled back."""

    code = ErrorCode.STORE_ERROR


class UsherAdminError(CheckInError):
    """An usher account change was refused."""

    def __init__(self, code: ErrorCode, message: str, details: Dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

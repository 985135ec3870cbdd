from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    NOT_AUTHENTICATED = "NotAuthenticated"
    ALREADY_SOLVED = "AlreadySolved"
    INVALID_STATE = "InvalidState"
    STORE_UNAVAILABLE = "StoreUnavailable"
    NOT_FOUND = "NotFound"


# HTTP status used by the API layer for each error kind
HTTP_STATUS = {
    ErrorKind.NOT_AUTHENTICATED: 401,
    ErrorKind.ALREADY_SOLVED: 409,
    ErrorKind.INVALID_STATE: 409,
    ErrorKind.STORE_UNAVAILABLE: 503,
    ErrorKind.NOT_FOUND: 404,
}


@dataclass(frozen=True)
class Outcome:
    """Result of an engine operation: a value on success, an error kind otherwise."""

    success: bool
    value: Any = None
    error: Optional[ErrorKind] = None
    message: str = ""

    @classmethod
    def ok(cls, value: Any = None) -> "Outcome":
        return cls(success=True, value=value)

    @classmethod
    def fail(cls, error: ErrorKind, message: str = "") -> "Outcome":
        return cls(success=False, error=error, message=message or error.value)


class ApiError(Exception):
    """Raised at the HTTP boundary; rendered as a structured error response."""

    def __init__(self, error: ErrorKind, message: str = ""):
        super().__init__(message or error.value)
        self.error = error
        self.message = message or error.value

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.error]

    @classmethod
    def from_outcome(cls, outcome: Outcome) -> "ApiError":
        return cls(outcome.error or ErrorKind.INVALID_STATE, outcome.message)

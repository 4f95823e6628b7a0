"""
errors.py — Error taxonomy and the Result type returned by the services layer.

Repositories and the session raise NoDatabaseConnection; the services catch
it (and validation errors) and hand a Result to the HTTP layer instead.
"""

from dataclasses import dataclass
from typing import Any, Optional


class NoDatabaseConnection(Exception):
    """Raised when a database-backed operation runs without a connection."""

    def __init__(self, message=None):
        super().__init__(
            message
            or "Database connection is not configured. Please set the connection string in Settings."
        )


class ValidationError(ValueError):
    """Malformed or out-of-range user input, tied to one form field."""

    def __init__(self, field, message):
        super().__init__(message)
        self.field = field
        self.message = message


class StoreIOError(Exception):
    """Low-level read/write failure against the document store."""


# Result kinds
OK = "ok"
NO_CONNECTION = "no_connection"
VALIDATION = "validation"
DUPLICATE = "duplicate"
NOT_FOUND = "not_found"
IO_ERROR = "io_error"


@dataclass(frozen=True)
class Result:
    kind: str
    value: Any = None
    message: str = ""
    field: Optional[str] = None

    @property
    def ok(self):
        return self.kind == OK

    @classmethod
    def success(cls, value=None, message=""):
        return cls(OK, value=value, message=message)

    @classmethod
    def no_connection(cls):
        return cls(NO_CONNECTION, message=str(NoDatabaseConnection()))

    @classmethod
    def invalid(cls, field, message):
        return cls(VALIDATION, message=message, field=field)

    @classmethod
    def duplicate(cls, message):
        return cls(DUPLICATE, message=message)

    @classmethod
    def not_found(cls, message):
        return cls(NOT_FOUND, message=message)

    @classmethod
    def io_error(cls, message):
        return cls(IO_ERROR, message=message)

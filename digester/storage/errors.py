"""Storage error kinds."""

from enum import Enum


class InsertErrorKind(str, Enum):
    """Why an insert did not happen."""

    # Uniqueness constraint hit: the row already exists
    DUPLICATE = "duplicate"
    UNKNOWN = "unknown"


class InsertError(Exception):
    """Raised by repository inserts.

    A ``DUPLICATE`` kind is the idempotency mechanism of the poller and the
    scheduler and must be treated as "already present", not as a failure.
    """

    def __init__(self, kind: InsertErrorKind, message: str = "") -> None:
        super().__init__(message or kind.value)
        self.kind = kind

    @property
    def is_duplicate(self) -> bool:
        return self.kind == InsertErrorKind.DUPLICATE

"""
Error kinds raised by channel adapters.

Business errors (``ValidationError``, ``SearchError`` with kind
``INVALID_INPUT`` or ``CHANNEL_NOT_FOUND``) are reported to the caller.
Everything else is technical: logged by the pipeline and retried on
the next run.
"""

from enum import Enum


class ChannelError(Exception):
    """Base exception for channel adapter errors."""


class ValidationError(ChannelError):
    """User input cannot be turned into a canonical channel identifier."""


class SearchErrorKind(str, Enum):
    INVALID_INPUT = "invalid_input"
    CHANNEL_NOT_FOUND = "channel_not_found"
    TECHNICAL_ERROR = "technical_error"
    TIMEOUT = "timeout"


class SearchError(ChannelError):
    """A search against the live provider failed."""

    def __init__(self, kind: SearchErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind

    @property
    def is_business_error(self) -> bool:
        return self.kind in (
            SearchErrorKind.INVALID_INPUT,
            SearchErrorKind.CHANNEL_NOT_FOUND,
        )

    def __repr__(self) -> str:
        return f"SearchError({self.kind.value}, {str(self)!r})"


class FetchError(ChannelError):
    """Fetching or parsing a channel's updates failed."""

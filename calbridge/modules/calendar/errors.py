"""Error taxonomy for calendar source coordination.

Adapters translate backend-native failures into these types at their
boundary, so retry and fallback decisions read a typed ``kind`` field and
never inspect message text.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Iterable, Optional


class ErrorKind(StrEnum):
    """Classification of a backend failure."""

    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    NETWORK = "network"
    AUTH = "auth"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


TRANSIENT_KINDS = frozenset({ErrorKind.RATE_LIMIT, ErrorKind.SERVER, ErrorKind.NETWORK})


class CalendarError(Exception):
    """Base class for every error raised across the coordinator boundary."""


class ConfigurationError(CalendarError):
    """The engine is set up in a way no retry can fix (e.g. no sources enabled)."""


class UnsupportedOperation(CalendarError):
    """A source cannot perform an operation at all."""

    def __init__(self, source: str, operation: str) -> None:
        self.source = source
        self.operation = operation
        super().__init__(f"{source} calendar does not support {operation}")


class RecurrenceError(CalendarError):
    """Invalid recurrence rules or a series operation on a non-recurring event."""


class BackendError(CalendarError):
    """A call to one backend failed."""

    def __init__(
        self,
        source: str,
        message: str,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        status: Optional[int] = None,
    ) -> None:
        self.source = source
        self.kind = kind
        self.status = status
        self.message = message
        super().__init__(f"[{source}] {message}")

    @property
    def transient(self) -> bool:
        return self.kind in TRANSIENT_KINDS

    @staticmethod
    def kind_for_status(status: int) -> ErrorKind:
        if status == 429:
            return ErrorKind.RATE_LIMIT
        if status >= 500:
            return ErrorKind.SERVER
        if status in (401, 403):
            return ErrorKind.AUTH
        if status in (404, 410):
            return ErrorKind.NOT_FOUND
        if 400 <= status < 500:
            return ErrorKind.VALIDATION
        return ErrorKind.UNKNOWN

    @classmethod
    def from_status(cls, source: str, status: int, message: str) -> BackendError:
        """Build the right subclass for an HTTP status code."""
        kind = cls.kind_for_status(status)
        if kind == ErrorKind.NOT_FOUND:
            return EventNotFoundError(source, message, status=status)
        if kind in TRANSIENT_KINDS:
            return TransientBackendError(source, message, kind=kind, status=status)
        return TerminalBackendError(source, message, kind=kind, status=status)

    @classmethod
    def wrap(cls, source: str, exc: BaseException) -> CalendarError:
        """Convert a foreign exception into the taxonomy."""
        if isinstance(exc, CalendarError):
            return exc
        if isinstance(exc, (TimeoutError, ConnectionError)):
            return TransientBackendError(
                source, f"{type(exc).__name__}: {exc}", kind=ErrorKind.NETWORK,
            )
        return TerminalBackendError(source, f"{type(exc).__name__}: {exc}")


class TransientBackendError(BackendError):
    """Rate limit, 5xx or network failure. Retried with backoff."""

    def __init__(
        self,
        source: str,
        message: str,
        kind: ErrorKind = ErrorKind.SERVER,
        status: Optional[int] = None,
    ) -> None:
        super().__init__(source, message, kind=kind, status=status)


class TerminalBackendError(BackendError):
    """Auth or validation failure. Never retried."""


class EventNotFoundError(TerminalBackendError):
    """The backend has no such event (404/410)."""

    def __init__(self, source: str, message: str, status: Optional[int] = 404) -> None:
        super().__init__(source, message, kind=ErrorKind.NOT_FOUND, status=status)


class AggregateFailure(CalendarError):
    """Every attempted source failed."""

    def __init__(self, operation: str, failures: Iterable[tuple[str, BaseException]]) -> None:
        self.operation = operation
        self.failures = list(failures)
        details = "; ".join(f"{source}: {exc}" for source, exc in self.failures)
        super().__init__(f"Failed to {operation} in all calendar sources. Errors: {details or 'none attempted'}")

    @property
    def sources(self) -> list[str]:
        return [source for source, _ in self.failures]


class FieldRestrictionViolation(CalendarError):
    """A patch touches fields the target's event type does not allow."""

    def __init__(self, event_type: str, disallowed: list[str], allowed: list[str]) -> None:
        self.event_type = event_type
        self.disallowed = list(disallowed)
        self.allowed = list(allowed)
        super().__init__(
            f"Cannot update {', '.join(self.disallowed)} for {event_type} events. "
            f"Allowed fields for {event_type} events: {', '.join(self.allowed)}."
        )

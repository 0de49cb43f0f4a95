"""Domain error codes for the event lifecycle system."""

from __future__ import annotations

from enum import Enum


class ErrorCode(Enum):
    """Domain error codes."""

    STORE_FAILURE = "STORE_FAILURE"
    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"
    OPERATION_FAILED = "OPERATION_FAILED"


class DomainError(Exception):
    """Base domain error with code and user-safe message."""

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class StoreError(DomainError):
    """Raised by an event store when a read or write fails."""

    def __init__(self, message: str = "Store failure") -> None:
        super().__init__(code=ErrorCode.STORE_FAILURE, message=message)


class EventNotFoundError(StoreError):
    """Raised when an event id does not exist in the store."""

    def __init__(self, event_id: str) -> None:
        super().__init__(message="Event not found")
        self.code = ErrorCode.EVENT_NOT_FOUND
        self.event_id = event_id


class EventOperationError(DomainError):
    """Raised to callers of create/update/delete when the write failed.

    ``message`` is safe to show to the user; the underlying store error is
    chained as ``__cause__``.
    """

    def __init__(self, message: str, event_id: str | None = None) -> None:
        super().__init__(code=ErrorCode.OPERATION_FAILED, message=message)
        self.event_id = event_id

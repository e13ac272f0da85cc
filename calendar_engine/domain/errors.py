"""Domain error codes and exceptions for the scheduling engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCode(Enum):
    """Domain error codes."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    EVENT_CONFLICT = "EVENT_CONFLICT"
    DUPLICATE_ATTENDEE = "DUPLICATE_ATTENDEE"
    DUPLICATE_NAME = "DUPLICATE_NAME"
    STILL_REFERENCED = "STILL_REFERENCED"
    REFERENCE_CONFLICT = "REFERENCE_CONFLICT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass(eq=False)
class DomainError(Exception):
    """Base domain error with code and user-safe message."""

    code: ErrorCode
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class ValidationError(DomainError):
    """Malformed or missing input. Raised before any database access."""

    def __init__(self, message: str, *, field_name: str | None = None) -> None:
        details = {"field": field_name} if field_name else {}
        super().__init__(code=ErrorCode.VALIDATION_ERROR, message=message, details=details)
        self.field_name = field_name


class NotFoundError(DomainError):
    """A referenced event, resource, location, team or user is absent."""

    def __init__(self, entity: str, identifiers: Any = None) -> None:
        details: dict[str, Any] = {}
        if isinstance(identifiers, (list, tuple, set)):
            details["ids"] = [str(i) for i in identifiers]
        elif identifiers is not None:
            details["id"] = str(identifiers)
        super().__init__(
            code=ErrorCode.NOT_FOUND,
            message=f"{entity} not found",
            details=details,
        )
        self.entity = entity


class ConflictError(DomainError):
    """The operation would break a uniqueness or booking invariant."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.STILL_REFERENCED,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(code=code, message=message, details=details or {})


class EventConflictError(ConflictError):
    """The requested window overlaps live bookings. Carries the conflict list."""

    def __init__(self, conflicts: list) -> None:
        super().__init__(
            message="Event conflicts with existing bookings",
            code=ErrorCode.EVENT_CONFLICT,
        )
        self.conflicts = conflicts


class InternalError(DomainError):
    """Unexpected store failure. The message never carries the cause."""

    def __init__(self) -> None:
        super().__init__(code=ErrorCode.INTERNAL_ERROR, message="Internal server error")

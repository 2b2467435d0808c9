# inkbook/errors.py
"""
Domain errors for the booking core.

Routers never build HTTP errors for core failures themselves; they let these
propagate and the app-level handler calls ``to_http_exception``.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class InkbookError(Exception):
    """Base class for every error that leaves the core."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code: str = "ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"message": self.message, "code": self.code}
        body.update(self.details)
        return body

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.to_dict())


class ValidationFailure(InkbookError):
    """Malformed input, caught before touching storage."""

    status_code = 422
    default_code = "VALIDATION_FAILED"


class NotFound(InkbookError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "NOT_FOUND"


class Forbidden(InkbookError):
    status_code = status.HTTP_403_FORBIDDEN
    default_code = "FORBIDDEN"


class IllegalTransition(InkbookError):
    """Requested status change is not in the transition table."""

    status_code = status.HTTP_409_CONFLICT
    default_code = "ILLEGAL_TRANSITION"

    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            f"Cannot move booking from {current} to {target}",
            details={"from": current, "to": target},
        )
        self.current = current
        self.target = target


class InvalidStatus(InkbookError):
    """The operation is not allowed while the booking is in its current status."""

    status_code = status.HTTP_409_CONFLICT
    default_code = "INVALID_STATUS"

    def __init__(self, message: str, current: str) -> None:
        super().__init__(message, details={"status": current})
        self.current = current


class Conflict(InkbookError):
    status_code = status.HTTP_409_CONFLICT
    default_code = "CONFLICT"


class SlotTaken(Conflict):
    default_code = "SLOT_TAKEN"

    def __init__(self, alternative: Optional[Dict[str, str]] = None) -> None:
        super().__init__(
            "This time slot is no longer available",
            details={"alternative": alternative},
        )
        self.alternative = alternative


class AlreadyClaimed(Conflict):
    default_code = "ALREADY_CLAIMED"

    def __init__(self) -> None:
        super().__init__("This design has already been claimed")


class AlreadyScheduled(Conflict):
    default_code = "ALREADY_SCHEDULED"

    def __init__(self) -> None:
        super().__init__("This booking already has an appointment")


class StorageUnavailable(InkbookError):
    """Storage failed for a reason unrelated to contention. Safe to retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_code = "STORAGE_UNAVAILABLE"

    def __init__(self, message: str = "Storage is unavailable, please try again") -> None:
        super().__init__(message)

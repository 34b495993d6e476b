"""Exceptions shared by the API client, the booking flow and the service."""

from __future__ import annotations

from typing import Any, Optional


class PortalError(Exception):
    """Base class for every error raised by this package."""


class ApiError(PortalError):
    """The backend answered with a non-2xx status or an error envelope."""

    def __init__(self, status_code: int, message: str, payload: Optional[Any] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.payload = payload

    def __str__(self) -> str:
        return f"{self.status_code}: {self.message}"


class ApiUnavailable(ApiError):
    """The backend could not be reached (connection error, timeout)."""

    def __init__(self, message: str) -> None:
        super().__init__(503, message)


class PayloadError(ApiError):
    """A backend response could not be parsed into the expected shape."""

    def __init__(self, message: str, payload: Optional[Any] = None) -> None:
        super().__init__(502, message, payload)


class AuthenticationRequired(PortalError):
    """No valid tenant session is available for an operation that needs one."""


class AuthenticationFailed(PortalError):
    """Login was rejected or the backend returned unusable credentials."""


class AvailabilityCheckFailed(PortalError):
    """The blocked-date lookup for a room failed."""


class BookingStateError(PortalError):
    """A booking form operation was called from a state that does not allow it."""

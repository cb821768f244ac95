"""
Error taxonomy shared by the API layer and the client services.

Every failure that crosses a service boundary is one of these. The API maps
them to HTTP status codes (see ``status_code``); the client services let them
propagate to the caller and publish a notification so the UI can show a toast.
"""

from __future__ import annotations


class PlatformError(Exception):
    """Base class for all domain errors."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PlatformError):
    """Bad input. ``field`` names the offending form field when known."""

    status_code = 400

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class PermissionDenied(PlatformError):
    status_code = 403


class NotFound(PlatformError):
    status_code = 404


class TransitionNotAllowed(PlatformError):
    status_code = 409

    def __init__(self, from_state: str, to_state: str, role_id: str | None = None):
        super().__init__(f"Cannot transition from {from_state} to {to_state}")
        self.from_state = from_state
        self.to_state = to_state
        self.role_id = role_id


class NetworkError(PlatformError):
    """Fetch failure or timeout after transport-level retries."""

    status_code = 502

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status

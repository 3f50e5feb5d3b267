"""Error taxonomy shared by the client core and the reference service."""

from __future__ import annotations

from typing import Optional

from pydantic import ValidationError as PydanticValidationError


class HabitSyncError(Exception):
    """Base class for every error HabitSync raises on purpose.

    ``status`` is the HTTP-style status class the error maps to; the Flask app
    uses it for responses and the HTTP client uses it to pick a subclass.
    """

    status: Optional[int] = 500

    def __init__(self, message: str = "", *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status


class ValidationError(HabitSyncError):
    """A request was rejected for missing or malformed fields. Not retried."""

    status = 400


class AuthenticationError(HabitSyncError):
    """No valid user session accompanied the request."""

    status = 401


class NotFoundError(HabitSyncError):
    """The entity does not exist or is not owned by the caller."""

    status = 404


class ServerError(HabitSyncError):
    """The service failed unexpectedly (5xx or an unmapped status)."""

    status = 500


class TransportError(HabitSyncError):
    """The request never produced a usable response (connection, timeout, body)."""

    status = None


_STATUS_MAP: dict[int, type[HabitSyncError]] = {
    400: ValidationError,
    401: AuthenticationError,
    403: AuthenticationError,
    404: NotFoundError,
    422: ValidationError,
}


def error_for_status(status: int, message: str | None = None) -> HabitSyncError:
    """Build the error matching a non-2xx status code."""

    error_cls = _STATUS_MAP.get(status, ServerError)
    return error_cls(message or f"Request failed with HTTP {status}", status=status)


def from_pydantic(exc: PydanticValidationError) -> ValidationError:
    """Collapse a pydantic error into a single readable ``ValidationError``."""

    messages: list[str] = []
    for error in exc.errors(include_url=False):
        msg = str(error.get("msg", "Invalid value")).removeprefix("Value error, ")
        loc = ".".join(str(part) for part in error.get("loc", ()))
        messages.append(f"{loc}: {msg}" if loc else msg)
    return ValidationError("; ".join(messages) or "Invalid payload")


__all__ = [
    "AuthenticationError",
    "HabitSyncError",
    "NotFoundError",
    "ServerError",
    "TransportError",
    "ValidationError",
    "error_for_status",
    "from_pydantic",
]

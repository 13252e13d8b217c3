"""Error taxonomy and user-facing error objects."""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from enum import Enum

import httpx
from pydantic import BaseModel, ConfigDict, Field


class ErrorType(str, Enum):
    NETWORK = "NETWORK_ERROR"
    AUTH = "AUTH_ERROR"
    VALIDATION = "VALIDATION_ERROR"
    API = "API_ERROR"
    UNKNOWN = "UNKNOWN_ERROR"


ERROR_MESSAGES: dict[ErrorType, dict[str, str]] = {
    ErrorType.NETWORK: {
        "title": "Network Error",
        "message": "Unable to connect to Clockify. Please check your internet connection and try again.",
        "action": "retry",
    },
    ErrorType.AUTH: {
        "title": "Authentication Error",
        "message": "Your session has expired or the authentication token is invalid. Please reload the addon.",
        "action": "reload",
    },
    ErrorType.VALIDATION: {
        "title": "Validation Error",
        "message": "Invalid data was received from Clockify. Please check your inputs and try again.",
        "action": "none",
    },
    ErrorType.API: {
        "title": "API Error",
        "message": "Clockify API returned an error. The service may be temporarily unavailable.",
        "action": "retry",
    },
    ErrorType.UNKNOWN: {
        "title": "Unexpected Error",
        "message": "An unexpected error occurred. Please try again or contact support if the issue persists.",
        "action": "none",
    },
}


class FetchCancelled(Exception):
    """Raised inside the fetch client when a cancellation token has been triggered."""


class FriendlyError(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: ErrorType
    title: str
    message: str
    action: str
    original_error: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def error_status(error: BaseException) -> int | None:
    """Return the HTTP status code attached to an error, if any."""

    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    for attr in ("status", "status_code"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def classify_error(error: BaseException | None) -> ErrorType:
    if error is None:
        return ErrorType.UNKNOWN

    explicit = getattr(error, "error_type", None)
    if isinstance(explicit, ErrorType):
        return explicit

    if isinstance(error, (httpx.TransportError, asyncio.CancelledError, FetchCancelled)):
        return ErrorType.NETWORK

    status = error_status(error)
    if status is not None:
        if status in (401, 403):
            return ErrorType.AUTH
        if 400 <= status < 500:
            return ErrorType.VALIDATION
        if status >= 500:
            return ErrorType.API

    if isinstance(error, (ConnectionError, TimeoutError)):
        return ErrorType.NETWORK
    return ErrorType.UNKNOWN


def create_user_friendly_error(
    error: BaseException | str | None,
    error_type: ErrorType | None = None,
    *,
    message: str | None = None,
) -> FriendlyError:
    """Build the structured error surfaced to callers of the public API."""

    if isinstance(error, str):
        error = RuntimeError(error)
    resolved = error_type or classify_error(error)
    template = ERROR_MESSAGES.get(resolved, ERROR_MESSAGES[ErrorType.UNKNOWN])
    return FriendlyError(
        type=resolved,
        title=template["title"],
        message=message or template["message"],
        action=template["action"],
        original_error=str(error) if error is not None else None,
    )


__all__ = [
    "ERROR_MESSAGES",
    "ErrorType",
    "FetchCancelled",
    "FriendlyError",
    "classify_error",
    "create_user_friendly_error",
    "error_status",
]

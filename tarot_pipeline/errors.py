"""
Error taxonomy for the reader.

Backend failures (generation, compliance, card draw) are never fatal: callers
degrade to a fallback and log the category from classify_backend_error().
Contract violations are raised as PhaseTransitionError and must not be
absorbed, since they point at a caller bug.
"""
import asyncio
import json
from typing import Optional

import aiohttp
from pydantic import ValidationError


class PhaseTransitionError(RuntimeError):
    """An operation was invoked in a phase that does not allow it."""

    def __init__(self, operation: str, phase, expected):
        self.operation = operation
        self.phase = phase
        self.expected = expected
        super().__init__(
            f"{operation}() is only valid in phase {expected.value}, current phase is {phase.value}"
        )


class MissingCredentialsError(RuntimeError):
    """A backend was called without its API key configured."""


class BackendErrorCategory:
    """Stable categories for backend failures."""

    AUTH_FAILED = "backend.auth_failed"
    RATE_LIMITED = "backend.rate_limited"
    UNAVAILABLE = "backend.unavailable"
    BAD_REQUEST = "backend.bad_request"
    TIMEOUT = "backend.timeout"
    NETWORK_ERROR = "backend.network_error"
    BAD_RESPONSE = "backend.bad_response"
    MISSING_CREDENTIALS = "backend.missing_credentials"
    UNKNOWN_ERROR = "backend.unknown_error"


def classify_backend_error(error: BaseException) -> str:
    """Map an exception raised while talking to a backend onto a category."""
    if isinstance(error, MissingCredentialsError):
        return BackendErrorCategory.MISSING_CREDENTIALS

    if isinstance(error, aiohttp.ClientResponseError):
        if error.status in (401, 403):
            return BackendErrorCategory.AUTH_FAILED
        if error.status == 429:
            return BackendErrorCategory.RATE_LIMITED
        if error.status >= 500:
            return BackendErrorCategory.UNAVAILABLE
        return BackendErrorCategory.BAD_REQUEST

    if isinstance(error, (asyncio.TimeoutError, aiohttp.ServerTimeoutError)):
        return BackendErrorCategory.TIMEOUT

    if isinstance(error, aiohttp.ClientConnectionError):
        return BackendErrorCategory.NETWORK_ERROR

    if isinstance(error, (json.JSONDecodeError, ValidationError, KeyError, IndexError, TypeError, UnicodeDecodeError)):
        return BackendErrorCategory.BAD_RESPONSE

    return BackendErrorCategory.UNKNOWN_ERROR


def redact_detail(error: BaseException, secret: Optional[str] = None) -> str:
    """
    Error text that is safe to log.

    Removes the configured secret verbatim and blanks messages that look like
    they carry credentials.
    """
    detail = str(error) or type(error).__name__
    if secret:
        detail = detail.replace(secret, "[redacted]")
    lowered = detail.lower()
    if "api_key" in lowered or "authorization" in lowered or "bearer " in lowered:
        return "[redacted: potential secret]"
    return detail

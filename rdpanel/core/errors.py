"""Error taxonomy for the hosting API client.

Every failure that leaves the client is an ``ApiError`` tagged with exactly
one ``ErrorKind``. Use the `is_retryable` property to decide whether a
failure may be attempted again.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any

import httpx

NETWORK_ERROR_MESSAGE = (
    "Unable to connect to the server. Please check your internet connection."
)
UNAUTHORIZED_MESSAGE = (
    "Invalid API key or unauthorized access. Please check your credentials."
)
RATE_LIMITED_MESSAGE = "Too many requests. Please try again later."
API_ERROR_MESSAGE = "An error occurred while processing your request."
UNKNOWN_ERROR_MESSAGE = "An unexpected error occurred"


class ErrorKind(str, Enum):
    """Closed set of failure kinds surfaced to callers."""

    VALIDATION_ERROR = "VALIDATION_ERROR"  # Rejected locally, before any request
    NETWORK_ERROR = "NETWORK_ERROR"  # No response received
    UNAUTHORIZED = "UNAUTHORIZED"  # HTTP 401
    RATE_LIMITED = "RATE_LIMITED"  # Client throttle or HTTP 429
    API_ERROR = "API_ERROR"  # Any other non-2xx, or a malformed payload
    UNKNOWN_ERROR = "UNKNOWN_ERROR"  # Unexpected local exception


class RateLimitOrigin(str, Enum):
    """Which layer refused the request."""

    CLIENT = "client"
    SERVER = "server"


class ApiError(Exception):
    """A classified failure.

    Attributes:
        kind: Failure kind tag
        message: Human-readable description, safe to display
        code: Machine-readable code (provider-supplied when available)
        status: HTTP status, or 0 when no response was received
        origin: For RATE_LIMITED, whether the client or the server refused
        retry_after: Seconds until the client-side throttle admits again
        details: Extra structured information (e.g. validation errors)
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        code: str | None = None,
        status: int = 500,
        origin: RateLimitOrigin | None = None,
        retry_after: float | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.kind = kind
        self.message = message
        self.code = code or kind.value
        self.status = status
        self.origin = origin
        self.retry_after = retry_after
        self.details = details or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        """Whether the retry wrapper may attempt the request again.

        Only failures with no response at all, or an upstream 5xx, qualify.
        """
        if self.kind == ErrorKind.NETWORK_ERROR:
            return True
        return self.kind == ErrorKind.API_ERROR and self.status >= 500

    @property
    def is_client_throttle(self) -> bool:
        return (
            self.kind == ErrorKind.RATE_LIMITED
            and self.origin == RateLimitOrigin.CLIENT
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for structured logging and API responses."""
        d: dict[str, Any] = {
            "kind": self.kind.value,
            "message": self.message,
            "code": self.code,
            "status": self.status,
        }
        if self.origin is not None:
            d["origin"] = self.origin.value
        if self.retry_after is not None:
            d["retry_after"] = round(self.retry_after, 3)
        if self.details:
            d["details"] = self.details
        return d

    def __repr__(self) -> str:
        return (
            f"ApiError(kind={self.kind.value}, code={self.code!r}, "
            f"status={self.status}, message={self.message!r})"
        )


def validation_error(
    message: str,
    *,
    code: str = ErrorKind.VALIDATION_ERROR.value,
    status: int = 400,
    **details: Any,
) -> ApiError:
    """Build a local validation failure. These never reach the network."""
    return ApiError(
        ErrorKind.VALIDATION_ERROR,
        message,
        code=code,
        status=status,
        details=details or None,
    )


def client_rate_limited(wait_seconds: float) -> ApiError:
    """Failure raised by the local throttle before any request is sent."""
    return ApiError(
        ErrorKind.RATE_LIMITED,
        f"Rate limit exceeded. Try again in {math.ceil(wait_seconds)} seconds",
        status=429,
        origin=RateLimitOrigin.CLIENT,
        retry_after=wait_seconds,
    )


def classify_exception(error: BaseException) -> ApiError:
    """Classify a transport outcome into exactly one ApiError.

    Precedence:
        1. Already classified -> unchanged
        2. No response (connection failure, timeout) -> NETWORK_ERROR, status 0
        3. HTTP 401 -> UNAUTHORIZED
        4. HTTP 429 -> RATE_LIMITED (server origin)
        5. Other HTTP status -> API_ERROR with payload message/code
        6. Anything else -> UNKNOWN_ERROR, status 500

    Args:
        error: The exception to classify

    Returns:
        The classified error
    """
    if isinstance(error, ApiError):
        return error

    if isinstance(error, httpx.TransportError):
        return ApiError(
            ErrorKind.NETWORK_ERROR,
            NETWORK_ERROR_MESSAGE,
            status=0,
            details={"cause": type(error).__name__},
        )

    if isinstance(error, httpx.HTTPStatusError):
        response = error.response
        status = response.status_code
        payload = _payload_of(response)

        if status == 401:
            return ApiError(ErrorKind.UNAUTHORIZED, UNAUTHORIZED_MESSAGE, status=status)

        if status == 429:
            return ApiError(
                ErrorKind.RATE_LIMITED,
                _string_field(payload, "message") or RATE_LIMITED_MESSAGE,
                status=status,
                origin=RateLimitOrigin.SERVER,
            )

        return ApiError(
            ErrorKind.API_ERROR,
            _string_field(payload, "message") or API_ERROR_MESSAGE,
            code=_string_field(payload, "code") or ErrorKind.API_ERROR.value,
            status=status,
        )

    message = str(error) or UNKNOWN_ERROR_MESSAGE
    return ApiError(ErrorKind.UNKNOWN_ERROR, message, status=500)


def _payload_of(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _string_field(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None or value == "":
        return None
    return str(value)


class AccountError(ApiError):
    """Account management rejected a request.

    Codes: INVALID_API_KEY, DUPLICATE_API_KEY, ACCOUNT_NOT_FOUND, KEY_REJECTED.
    """

    def __init__(self, message: str, *, code: str, status: int = 400) -> None:
        super().__init__(ErrorKind.VALIDATION_ERROR, message, code=code, status=status)


class GroupValidationError(ApiError):
    """Server group operation rejected.

    Codes: DUPLICATE_NAME, SERVER_ALREADY_GROUPED, INVALID_GROUP.
    """

    def __init__(self, message: str, *, code: str, status: int = 400) -> None:
        super().__init__(ErrorKind.VALIDATION_ERROR, message, code=code, status=status)

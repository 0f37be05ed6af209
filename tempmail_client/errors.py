"""Error taxonomy for the mail client.

Backend and network failures are classified once, when the response is
seen, into an :class:`ApiError` subclass carrying the numeric status, a
human-readable message and a ``retryable`` flag.  Nothing downstream
inspects message text to recover the status.
"""

from __future__ import annotations

from typing import Any

import httpx

ADDRESS_IN_USE_MESSAGE = "This email address is already in use, please try another username"

STATUS_MESSAGES: dict[int, str] = {
    400: "Invalid request parameters or missing required information",
    401: "Authentication failed, please check your login status",
    403: "Access to this resource is forbidden",
    404: "The requested resource does not exist",
    405: "Request method not allowed",
    418: "The server is temporarily unavailable",
    422: "Invalid request data, check the username length or domain format",
    429: "Too many requests, please try again later",
}

_ADDRESS_IN_USE_MARKERS = ("already used", "already exists", "Email address already exists")


class TempMailError(Exception):
    """Base class for every error raised by this package."""


class CredentialsMissingError(TempMailError):
    """No token or password is available for the requested operation.

    Raised before any network call; session state is left untouched.
    """


class AccountNotFoundError(TempMailError):
    """No account with the given id is known to the session."""


class ApiError(TempMailError):
    """A classified failure of a REST call."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        status: int,
        payload: Any = None,
        retryable: bool | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.payload = payload
        if retryable is not None:
            self.retryable = retryable

    def __repr__(self) -> str:
        return f"{type(self).__name__}(status={self.status}, message={self.message!r})"


class TransientNetworkError(ApiError):
    """5xx responses and transport failures; retried with backoff."""

    retryable = True

    @classmethod
    def from_exception(cls, exc: httpx.TransportError) -> TransientNetworkError:
        return cls(f"Network error: {exc.__class__.__name__}: {exc}", status=0)


class UnavailableError(TransientNetworkError):
    """418: the backend is in maintenance."""


class AuthExpiredError(ApiError):
    """401: the bearer token is no longer accepted."""

    def __init__(
        self,
        message: str = STATUS_MESSAGES[401],
        *,
        status: int = 401,
        payload: Any = None,
        retryable: bool | None = None,
    ) -> None:
        super().__init__(message, status=status, payload=payload, retryable=retryable)


class InvalidCredentialsError(AuthExpiredError):
    """401 from the token endpoint: wrong address or password."""


class TokenInvalidError(AuthExpiredError):
    """401 from a profile fetch used to validate a specific token."""


class InvalidRequestError(ApiError):
    """400 or 422: the request itself was rejected."""

    @property
    def violations(self) -> list[dict[str, Any]]:
        if isinstance(self.payload, dict) and isinstance(self.payload.get("violations"), list):
            return self.payload["violations"]
        return []

    @property
    def address_in_use(self) -> bool:
        return self.message == ADDRESS_IN_USE_MESSAGE


class ForbiddenError(ApiError):
    """403."""


class NotFoundError(ApiError):
    """404."""


class MethodNotAllowedError(ApiError):
    """405."""


class RateLimitedError(ApiError):
    """429."""


_STATUS_CLASSES: dict[int, type[ApiError]] = {
    400: InvalidRequestError,
    401: AuthExpiredError,
    403: ForbiddenError,
    404: NotFoundError,
    405: MethodNotAllowedError,
    418: UnavailableError,
    422: InvalidRequestError,
    429: RateLimitedError,
}


def _unprocessable_message(payload: Any) -> str:
    if not isinstance(payload, dict):
        return STATUS_MESSAGES[422]

    violations = payload.get("violations")
    if isinstance(violations, list) and violations:
        first = violations[0] if isinstance(violations[0], dict) else {}
        text = str(first.get("message") or "")
        if first.get("propertyPath") == "address" and "already used" in text:
            return ADDRESS_IN_USE_MESSAGE
        return text or STATUS_MESSAGES[422]

    # Providers disagree on where the detail lives
    text = str(payload.get("detail") or payload.get("message") or "")
    if any(marker in text for marker in _ADDRESS_IN_USE_MARKERS):
        return ADDRESS_IN_USE_MESSAGE
    return text or STATUS_MESSAGES[422]


def error_message(status: int, payload: Any = None) -> str:
    """Resolve the user-facing message for *status* and the decoded error body."""
    if status == 422:
        return _unprocessable_message(payload)
    if status in STATUS_MESSAGES:
        return STATUS_MESSAGES[status]
    if isinstance(payload, dict):
        for key in ("message", "details", "error"):
            if payload.get(key):
                return str(payload[key])
    return f"Request failed ({status})"


def classify_error(status: int, payload: Any = None) -> ApiError:
    """Build the :class:`ApiError` matching an unsuccessful response status."""
    message = error_message(status, payload)
    if status >= 500:
        return TransientNetworkError(message, status=status, payload=payload)
    error_cls = _STATUS_CLASSES.get(status, ApiError)
    return error_cls(message, status=status, payload=payload)

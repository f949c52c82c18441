from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum

import httpx

from session_guard.config.settings import MUTATING_METHODS


class ErrorCategory(str, Enum):
    NETWORK = "network"
    CSRF = "csrf"
    AUTHENTICATION = "authentication"
    PERMISSION = "permission"
    CONFLICT = "conflict"
    VALIDATION = "validation"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    UNKNOWN = "unknown"


@dataclass(slots=True)
class SessionAPIError(Exception):
    message: str
    category: ErrorCategory = ErrorCategory.UNKNOWN
    status_code: int | None = None
    code: str | None = None
    retry_after: str | None = None
    inner_error: Exception | None = None
    request_method: str | None = None
    request_url: str | None = None

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.message

    @property
    def recovery_suggestion(self) -> str | None:
        if self.category is ErrorCategory.AUTHENTICATION:
            return "Your session has expired. Sign in again."
        if self.category is ErrorCategory.CSRF:
            return "The request was rejected by the anti-forgery check. Reload and retry."
        if self.category is ErrorCategory.PERMISSION:
            return "Your account is not allowed to perform this action."
        if self.category is ErrorCategory.RATE_LIMIT:
            if self.retry_after:
                return f"Too many requests. Retry after {self.retry_after} seconds."
            return "Too many requests. Retry shortly."
        if self.category is ErrorCategory.NETWORK:
            return "Check your internet connection and try again."
        if self.category is ErrorCategory.CONFLICT:
            return "The operation conflicts with existing data. Refresh and verify the latest state."
        if self.category is ErrorCategory.VALIDATION:
            return "The request payload is invalid. Review fields and try again."
        return None

    @property
    def is_retriable(self) -> bool:
        if self.category in {ErrorCategory.RATE_LIMIT, ErrorCategory.NETWORK}:
            return True
        if self.status_code and 500 <= self.status_code <= 599:
            return True
        return False


class NetworkError(SessionAPIError):
    def __init__(
        self,
        message: str = "Network error",
        inner_error: Exception | None = None,
    ) -> None:
        super().__init__(
            message=message,
            category=ErrorCategory.NETWORK,
            inner_error=inner_error,
        )


class AuthenticationError(SessionAPIError):
    def __init__(
        self, message: str = "Authentication required", status_code: int | None = 401
    ) -> None:
        super().__init__(
            message=message,
            category=ErrorCategory.AUTHENTICATION,
            status_code=status_code,
        )


class CsrfRejectedError(SessionAPIError):
    def __init__(self, message: str = "CSRF token missing or invalid") -> None:
        super().__init__(message=message, category=ErrorCategory.CSRF, status_code=403)


class PermissionDeniedError(SessionAPIError):
    def __init__(self, message: str = "Insufficient permissions") -> None:
        super().__init__(
            message=message, category=ErrorCategory.PERMISSION, status_code=403
        )


class RefreshError(AuthenticationError):
    """The credential refresh call failed; the session cannot be recovered."""

    def __init__(
        self,
        message: str = "Session refresh failed",
        status_code: int | None = None,
        inner_error: Exception | None = None,
    ) -> None:
        super().__init__(message=message, status_code=status_code)
        self.inner_error = inner_error


def _extract_message(response: httpx.Response) -> tuple[str | None, str | None]:
    try:
        body = json.loads(response.content or b"null")
    except ValueError:
        return None, None
    if not isinstance(body, dict):
        return None, None
    error_info = body.get("error")
    if isinstance(error_info, dict):
        message = error_info.get("message")
        code = error_info.get("code")
        return (
            message if isinstance(message, str) else None,
            code if isinstance(code, str) else None,
        )
    message = body.get("message")
    code = body.get("code") or body.get("status")
    return (
        message if isinstance(message, str) else None,
        code if isinstance(code, str) else None,
    )


def map_response_to_error(response: httpx.Response) -> SessionAPIError:
    """Translate a failed response into the matching error type."""

    status = response.status_code
    method = response.request.method.upper()
    retry_after = response.headers.get("Retry-After")
    message, code = _extract_message(response)
    message = message or response.text or f"Request failed with status {status}"

    error: SessionAPIError
    if status == 401:
        error = AuthenticationError(message=message)
    elif status == 403 and method in MUTATING_METHODS:
        error = CsrfRejectedError(message=message)
    elif status == 403:
        error = PermissionDeniedError(message=message)
    else:
        category = ErrorCategory.UNKNOWN
        if status == 429:
            category = ErrorCategory.RATE_LIMIT
        elif 500 <= status <= 599:
            category = ErrorCategory.SERVER
        elif status == 409:
            category = ErrorCategory.CONFLICT
        elif status in {400, 404, 422}:
            category = ErrorCategory.VALIDATION
        error = SessionAPIError(
            message=message,
            category=category,
            status_code=status,
            retry_after=retry_after,
        )
    error.code = code
    error.request_method = method
    error.request_url = str(response.request.url)
    return error


__all__ = [
    "AuthenticationError",
    "CsrfRejectedError",
    "ErrorCategory",
    "NetworkError",
    "PermissionDeniedError",
    "RefreshError",
    "SessionAPIError",
    "map_response_to_error",
]

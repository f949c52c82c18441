from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable

import httpx

from session_guard.api.decorator import RequestDecorator
from session_guard.api.errors import (
    CsrfRejectedError,
    NetworkError,
    SessionAPIError,
    map_response_to_error,
)
from session_guard.api.refresh import RefreshCoordinator
from session_guard.api.requests import RequestRetryMarker, clone_request, is_mutating
from session_guard.auth.csrf import CsrfTokenAccessor
from session_guard.utils import get_logger, redact_headers, sanitize_log_message


logger = get_logger(__name__)

Transport = Callable[[httpx.Request], Awaitable[httpx.Response]]


class RecoveryAction(str, Enum):
    NONE = "none"
    ROTATE_CSRF = "rotate_csrf"
    REFRESH = "refresh"


@dataclass(slots=True)
class RequestTelemetryEvent:
    method: str
    url: str
    status_code: int | None
    duration_ms: float
    recovery: tuple[RecoveryAction, ...]
    success: bool
    error_category: str | None = None


@dataclass(slots=True)
class _Attempt:
    started: float = field(default_factory=time.perf_counter)
    recovery: list[RecoveryAction] = field(default_factory=list)


def classify(
    request: httpx.Request,
    response: httpx.Response,
    marker: RequestRetryMarker,
) -> RecoveryAction:
    """Choose the recovery strategy for a failed response."""

    status = response.status_code
    if status == 403 and not marker.csrf_retried and is_mutating(request):
        return RecoveryAction.ROTATE_CSRF
    if status == 401 and not marker.auth_retried:
        return RecoveryAction.REFRESH
    return RecoveryAction.NONE


class RecoveryPipeline:
    """Send requests and recover from CSRF and authentication failures.

    Each logical request may rotate the CSRF token once and refresh its
    credential once; whatever fails after that is raised to the caller as-is.
    Transport failures are never retried.
    """

    def __init__(
        self,
        transport: Transport,
        decorator: RequestDecorator,
        csrf_accessor: CsrfTokenAccessor,
        *,
        telemetry_callback: Callable[[RequestTelemetryEvent], None] | None = None,
    ) -> None:
        self._transport = transport
        self._decorator = decorator
        self._csrf_accessor = csrf_accessor
        self._telemetry_callback = telemetry_callback
        self._coordinator: RefreshCoordinator | None = None

    def bind_coordinator(self, coordinator: RefreshCoordinator) -> None:
        self._coordinator = coordinator

    @property
    def coordinator(self) -> RefreshCoordinator:
        if self._coordinator is None:
            raise RuntimeError("RecoveryPipeline has no refresh coordinator bound")
        return self._coordinator

    async def execute(
        self,
        request: httpx.Request,
        marker: RequestRetryMarker | None = None,
    ) -> httpx.Response:
        marker = marker or RequestRetryMarker()
        attempt = _Attempt()
        self._decorator.decorate(request)
        try:
            response = await self._transport(request)
        except httpx.TransportError as exc:
            network_error = NetworkError(
                message=f"Network error during {request.method} {request.url}: {exc}",
                inner_error=exc,
            )
            self._publish(request, attempt, status_code=None, error=network_error)
            raise network_error from exc

        if response.status_code < 400:
            self._publish(request, attempt, status_code=response.status_code)
            return response

        await response.aread()
        action = classify(request, response, marker)
        error = map_response_to_error(response)
        if action is RecoveryAction.NONE:
            self._publish(request, attempt, status_code=response.status_code, error=error)
            raise error

        attempt.recovery.append(action)
        self._publish(request, attempt, status_code=response.status_code, error=error)
        if action is RecoveryAction.REFRESH:
            return await self._recover_authentication(request, marker)
        if isinstance(error, CsrfRejectedError):
            return await self._recover_csrf(request, marker, error)
        raise error

    # ------------------------------------------------------------- Strategies

    async def _recover_authentication(
        self,
        request: httpx.Request,
        marker: RequestRetryMarker,
    ) -> httpx.Response:
        marker.auth_retried = True
        logger.info(
            "Authentication rejected, routing through refresh",
            method=request.method,
            url=str(request.url),
            headers=redact_headers(request.headers),
        )
        return await self.coordinator.coordinate_refresh(request, marker)

    async def _recover_csrf(
        self,
        request: httpx.Request,
        marker: RequestRetryMarker,
        original_error: CsrfRejectedError,
    ) -> httpx.Response:
        marker.csrf_retried = True
        logger.info(
            "CSRF token rejected, rotating",
            method=request.method,
            url=str(request.url),
            headers=redact_headers(request.headers),
        )
        # The rotation shares the original request's auth budget: a 401 here
        # is refreshed only if the original has not been refreshed yet.
        rotation_marker = RequestRetryMarker(
            csrf_retried=True, auth_retried=marker.auth_retried
        )
        try:
            await self.execute(self._csrf_accessor.rotation_request(), rotation_marker)
        except SessionAPIError as exc:
            logger.warning(
                "CSRF rotation failed, surfacing original rejection",
                method=request.method,
                url=str(request.url),
                rotation_error=sanitize_log_message(str(exc)),
            )
            raise original_error from exc
        finally:
            if rotation_marker.auth_retried:
                marker.auth_retried = True

        return await self.execute(clone_request(request), marker)

    # ------------------------------------------------------------- Telemetry

    def _publish(
        self,
        request: httpx.Request,
        attempt: _Attempt,
        *,
        status_code: int | None,
        error: SessionAPIError | None = None,
    ) -> None:
        event = RequestTelemetryEvent(
            method=request.method,
            url=str(request.url),
            status_code=status_code,
            duration_ms=(time.perf_counter() - attempt.started) * 1000,
            recovery=tuple(attempt.recovery),
            success=error is None,
            error_category=error.category.value if error is not None else None,
        )
        callback = self._telemetry_callback or _default_telemetry_callback
        try:
            callback(event)
        except Exception:  # pragma: no cover - telemetry shouldn't break requests
            logger.warning("Telemetry callback raised an exception", exc_info=True)


def _default_telemetry_callback(event: RequestTelemetryEvent) -> None:
    logger.debug(
        "API request",
        method=event.method,
        url=event.url,
        status_code=event.status_code,
        duration_ms=round(event.duration_ms, 2),
        recovery=[action.value for action in event.recovery],
        success=event.success,
        category=event.error_category,
    )


__all__ = [
    "RecoveryAction",
    "RecoveryPipeline",
    "RequestTelemetryEvent",
    "Transport",
    "classify",
]

"""Authenticated request pipeline."""

from .client import SessionClient
from .decorator import RequestDecorator
from .errors import (
    AuthenticationError,
    CsrfRejectedError,
    ErrorCategory,
    NetworkError,
    PermissionDeniedError,
    RefreshError,
    SessionAPIError,
)
from .recovery import RecoveryAction, RecoveryPipeline, RequestTelemetryEvent
from .refresh import PendingRequest, RefreshCoordinator, RefreshState
from .requests import RequestRetryMarker

__all__ = [
    "AuthenticationError",
    "CsrfRejectedError",
    "ErrorCategory",
    "NetworkError",
    "PendingRequest",
    "PermissionDeniedError",
    "RecoveryAction",
    "RecoveryPipeline",
    "RefreshCoordinator",
    "RefreshError",
    "RefreshState",
    "RequestDecorator",
    "RequestRetryMarker",
    "RequestTelemetryEvent",
    "SessionAPIError",
    "SessionClient",
]

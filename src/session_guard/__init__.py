"""Session-aware HTTP client with single-flight refresh and CSRF recovery."""

from .api import (
    AuthenticationError,
    CsrfRejectedError,
    NetworkError,
    RefreshError,
    SessionAPIError,
    SessionClient,
)
from .auth import AccessToken, MemoryCredentialStore
from .bootstrap import build_session
from .config import Settings, SettingsManager
from .session import LoginResult, SessionManager

__all__ = [
    "AccessToken",
    "AuthenticationError",
    "CsrfRejectedError",
    "LoginResult",
    "MemoryCredentialStore",
    "NetworkError",
    "RefreshError",
    "SessionAPIError",
    "SessionClient",
    "SessionManager",
    "Settings",
    "SettingsManager",
    "build_session",
]

from __future__ import annotations

from typing import Protocol, runtime_checkable

import keyring
from keyring.backend import KeyringBackend
from keyring.errors import PasswordDeleteError

from session_guard.auth.types import AccessToken
from session_guard.config.settings import APP_NAME, Settings
from session_guard.utils import get_logger


logger = get_logger(__name__)

DEFAULT_TOKEN_KEY = "access_token"


@runtime_checkable
class CredentialStore(Protocol):
    """Holds the current access token for the lifetime of the client."""

    def get(self) -> AccessToken | None: ...

    def set(self, token: AccessToken) -> None: ...

    def clear(self) -> None: ...


class MemoryCredentialStore:
    """Process-local token holder; starts empty."""

    def __init__(self, token: AccessToken | None = None) -> None:
        self._token = token

    def get(self) -> AccessToken | None:
        return self._token

    def set(self, token: AccessToken) -> None:
        self._token = token

    def clear(self) -> None:
        self._token = None


class KeyringCredentialStore:
    """Keeps the access token in the OS keyring so it survives restarts."""

    def __init__(
        self,
        service_name: str = APP_NAME,
        key: str = DEFAULT_TOKEN_KEY,
        *,
        backend: KeyringBackend | None = None,
    ) -> None:
        self._service_name = service_name
        self._key = key
        self._backend = backend or keyring.get_keyring()
        self._cached: AccessToken | None = None
        logger.debug(
            "Keyring credential store initialised",
            backend=f"{self._backend.__class__.__module__}.{self._backend.__class__.__name__}",
            service=service_name,
        )

    def get(self) -> AccessToken | None:
        if self._cached is None:
            raw = self._backend.get_password(self._service_name, self._key)
            if raw:
                self._cached = AccessToken.from_raw(raw)
        return self._cached

    def set(self, token: AccessToken) -> None:
        self._backend.set_password(self._service_name, self._key, token.token)
        self._cached = token

    def clear(self) -> None:
        self._cached = None
        try:
            self._backend.delete_password(self._service_name, self._key)
        except PasswordDeleteError:
            logger.debug("No stored access token to delete", service=self._service_name)


def build_credential_store(settings: Settings) -> CredentialStore:
    if settings.credential_backend == "keyring":
        return KeyringCredentialStore()
    return MemoryCredentialStore()


__all__ = [
    "CredentialStore",
    "KeyringCredentialStore",
    "MemoryCredentialStore",
    "build_credential_store",
]

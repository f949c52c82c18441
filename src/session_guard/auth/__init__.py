"""Credential and anti-forgery token access."""

from .credential_store import (
    CredentialStore,
    KeyringCredentialStore,
    MemoryCredentialStore,
    build_credential_store,
)
from .csrf import CookieCsrfAccessor, CsrfTokenAccessor
from .types import AccessToken, AuthenticatedUser

__all__ = [
    "AccessToken",
    "AuthenticatedUser",
    "CookieCsrfAccessor",
    "CredentialStore",
    "CsrfTokenAccessor",
    "KeyringCredentialStore",
    "MemoryCredentialStore",
    "build_credential_store",
]

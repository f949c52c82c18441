from __future__ import annotations

import httpx

from session_guard.api.requests import is_mutating
from session_guard.auth.credential_store import CredentialStore
from session_guard.auth.csrf import CsrfTokenAccessor


class RequestDecorator:
    """Attach the bearer credential and, on mutating verbs, the CSRF token."""

    def __init__(
        self,
        credential_store: CredentialStore,
        csrf_accessor: CsrfTokenAccessor,
        *,
        csrf_header_name: str = "x-csrf-token",
    ) -> None:
        self._credential_store = credential_store
        self._csrf_accessor = csrf_accessor
        self._csrf_header_name = csrf_header_name

    def decorate(self, request: httpx.Request) -> httpx.Request:
        token = self._credential_store.get()
        if token is not None and token.token:
            request.headers["Authorization"] = token.bearer
        else:
            request.headers.pop("Authorization", None)

        if is_mutating(request):
            csrf = self._csrf_accessor.read_csrf()
            if csrf:
                request.headers[self._csrf_header_name] = csrf
        return request


__all__ = ["RequestDecorator"]

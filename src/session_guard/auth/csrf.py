from __future__ import annotations

from typing import Protocol, runtime_checkable
from urllib.parse import unquote

import httpx

from session_guard.config.settings import Settings


@runtime_checkable
class CsrfTokenAccessor(Protocol):
    """Read access to the server-issued anti-forgery token.

    The client never mints a value itself; it can only ask the server to
    rotate the token by sending :meth:`rotation_request`.
    """

    def read_csrf(self) -> str | None: ...

    def rotation_request(self) -> httpx.Request: ...


class CookieCsrfAccessor:
    """Reads the CSRF token from a cookie set by the server (double-submit)."""

    def __init__(self, cookies: httpx.Cookies, settings: Settings) -> None:
        self._cookies = cookies
        self._cookie_name = settings.csrf_cookie_name
        self._rotation_url = settings.url_for(settings.csrf_path)

    @property
    def cookie_name(self) -> str:
        return self._cookie_name

    def read_csrf(self) -> str | None:
        # The jar may hold the same name for several domains/paths; the most
        # recently set one wins.
        value: str | None = None
        for cookie in self._cookies.jar:
            if cookie.name == self._cookie_name and cookie.value:
                value = cookie.value
        if value is None:
            return None
        return unquote(value) or None

    def rotation_request(self) -> httpx.Request:
        return httpx.Request("GET", self._rotation_url)


__all__ = ["CookieCsrfAccessor", "CsrfTokenAccessor"]

from __future__ import annotations

from types import TracebackType
from typing import Any, Callable

import httpx

from session_guard.api.decorator import RequestDecorator
from session_guard.api.recovery import RecoveryPipeline, RequestTelemetryEvent
from session_guard.api.refresh import LogoutHook, RefreshCall, RefreshCoordinator
from session_guard.auth.credential_store import CredentialStore
from session_guard.auth.csrf import CookieCsrfAccessor, CsrfTokenAccessor
from session_guard.config.settings import Settings
from session_guard.utils import get_logger


logger = get_logger(__name__)


class SessionClient:
    """Authenticated HTTP client for the session-protected REST API.

    Every request built here goes through the :class:`RecoveryPipeline`:
    decorated with the bearer and CSRF tokens, sent, and recovered from one
    CSRF rejection and one expired credential at most.
    """

    def __init__(
        self,
        settings: Settings,
        credential_store: CredentialStore,
        refresh_call: RefreshCall,
        *,
        on_force_logout: LogoutHook | None = None,
        csrf_accessor: CsrfTokenAccessor | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        telemetry_callback: Callable[[RequestTelemetryEvent], None] | None = None,
    ) -> None:
        self._settings = settings
        self._credential_store = credential_store
        self._timeout = httpx.Timeout(settings.request_timeout)
        self._http_client = httpx.AsyncClient(
            base_url=settings.base_url,
            headers={"User-Agent": settings.user_agent},
            timeout=self._timeout,
            transport=transport,
        )
        self._csrf_accessor = csrf_accessor or CookieCsrfAccessor(
            self._http_client.cookies, settings
        )
        self._decorator = RequestDecorator(
            credential_store,
            self._csrf_accessor,
            csrf_header_name=settings.csrf_header_name,
        )
        self._pipeline = RecoveryPipeline(
            self._send,
            self._decorator,
            self._csrf_accessor,
            telemetry_callback=telemetry_callback,
        )
        self._coordinator = RefreshCoordinator(
            refresh_call,
            credential_store,
            self._pipeline.execute,
            on_force_logout=on_force_logout,
        )
        self._pipeline.bind_coordinator(self._coordinator)

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def http(self) -> httpx.AsyncClient:
        """Raw client for calls that must bypass recovery (login, refresh)."""
        return self._http_client

    @property
    def credential_store(self) -> CredentialStore:
        return self._credential_store

    @property
    def csrf_accessor(self) -> CsrfTokenAccessor:
        return self._csrf_accessor

    @property
    def decorator(self) -> RequestDecorator:
        return self._decorator

    @property
    def pipeline(self) -> RecoveryPipeline:
        return self._pipeline

    @property
    def coordinator(self) -> RefreshCoordinator:
        return self._coordinator

    def build_request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
        data: Any | None = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Request:
        return self._http_client.build_request(
            method.upper(),
            self._settings.url_for(path),
            params=params,
            json=json_body,
            data=data,
            content=content,
            headers=headers,
        )

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
        data: Any | None = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        request = self.build_request(
            method,
            path,
            params=params,
            json_body=json_body,
            data=data,
            content=content,
            headers=headers,
        )
        return await self._pipeline.execute(request)

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        response = await self.request(
            method,
            path,
            params=params,
            json_body=json_body,
            headers=headers,
        )
        if not response.content:
            return None
        return response.json()

    async def get(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", path, **kwargs)

    async def put(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PUT", path, **kwargs)

    async def patch(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PATCH", path, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("DELETE", path, **kwargs)

    async def aclose(self) -> None:
        await self._coordinator.aclose()
        await self._http_client.aclose()

    async def __aenter__(self) -> "SessionClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    # ------------------------------------------------------------- Internals

    async def _send(self, request: httpx.Request) -> httpx.Response:
        # Replays must carry the cookies as they are now (rotated CSRF cookie,
        # renewed session cookies), not as they were when first built.
        request.headers.pop("Cookie", None)
        self._http_client.cookies.set_cookie_header(request)
        request.headers.setdefault("User-Agent", self._settings.user_agent)
        request.extensions.setdefault("timeout", self._timeout.as_dict())
        return await self._http_client.send(request)


__all__ = ["SessionClient"]

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from types import TracebackType
from typing import Any, Callable

import httpx

from session_guard.api.client import SessionClient
from session_guard.api.errors import (
    AuthenticationError,
    NetworkError,
    RefreshError,
    SessionAPIError,
    map_response_to_error,
)
from session_guard.api.recovery import RequestTelemetryEvent
from session_guard.auth.credential_store import CredentialStore, build_credential_store
from session_guard.auth.types import AccessToken, AuthenticatedUser
from session_guard.config.settings import Settings
from session_guard.utils import get_logger, sanitize_log_message


logger = get_logger(__name__)

LogoutCallback = Callable[[], None]


@dataclass(slots=True)
class LoginResult:
    user: AuthenticatedUser | None
    password_change_required: bool = False
    first_login_token: str | None = None


def compute_refresh_delay(
    token: AccessToken,
    settings: Settings,
    *,
    now: float | None = None,
) -> float | None:
    """Seconds until a proactive refresh is due, or ``None`` if expiry is unknown."""

    if token.expires_on is None:
        return None
    current = time.time() if now is None else now
    refresh_at = max(
        current + settings.auto_refresh_min_delay,
        token.expires_on - settings.auto_refresh_lead,
    )
    return refresh_at - current


def _json_payload(response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _user_from_payload(payload: dict[str, Any]) -> AuthenticatedUser | None:
    data = payload.get("data")
    user = data.get("user") if isinstance(data, dict) else None
    if isinstance(user, dict):
        return AuthenticatedUser.from_payload(user)
    return None


class SessionManager:
    """Owns the authenticated session: sign-in, refresh, sign-out.

    The refresh call issued here is the one the refresh coordinator runs in
    single flight; it is never routed through the recovery pipeline itself.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        credential_store: CredentialStore | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        telemetry_callback: Callable[[RequestTelemetryEvent], None] | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self._credential_store = credential_store or build_credential_store(
            self._settings
        )
        self._client = SessionClient(
            self._settings,
            self._credential_store,
            self.refresh_access_token,
            on_force_logout=self._handle_forced_logout,
            transport=transport,
            telemetry_callback=telemetry_callback,
        )
        self._user: AuthenticatedUser | None = None
        self._logout_callbacks: list[LogoutCallback] = []
        self._auto_refresh_task: asyncio.Task[None] | None = None

    @property
    def client(self) -> SessionClient:
        return self._client

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def is_authenticated(self) -> bool:
        token = self._credential_store.get()
        return bool(token and token.token)

    def current_user(self) -> AuthenticatedUser | None:
        return self._user

    def on_logout(self, callback: LogoutCallback) -> Callable[[], None]:
        """Register a callback fired when the session is forcibly ended."""

        self._logout_callbacks.append(callback)

        def unsubscribe() -> None:
            try:
                self._logout_callbacks.remove(callback)
            except ValueError:
                pass

        return unsubscribe

    async def login(self, username: str, password: str) -> LoginResult:
        """Exchange credentials for an access token.

        Args:
            username: Account name.
            password: Account password.

        Raises:
            NetworkError: If the server could not be reached.
            SessionAPIError: If the server rejected the credentials.
        """
        url = self._settings.url_for(self._settings.login_path)
        try:
            response = await self._client.http.post(
                url, json={"username": username, "password": password}
            )
        except httpx.TransportError as exc:
            raise NetworkError(
                message=f"Network error during sign-in: {exc}", inner_error=exc
            ) from exc

        payload = _json_payload(response)
        if payload.get("status") == "password_change_required":
            logger.info("Sign-in requires a password change", username=username)
            first_token = payload.get("firstLoginToken")
            return LoginResult(
                user=_user_from_payload(payload),
                password_change_required=True,
                first_login_token=first_token if isinstance(first_token, str) else None,
            )
        return self._establish_session(response, payload, username=username)

    async def complete_first_login(
        self, first_login_token: str, new_password: str
    ) -> LoginResult:
        """Set the initial password and open the session it grants.

        ``first_login_token`` is the value returned by :meth:`login` when the
        account must change its password; it authorises only this call.

        Raises:
            AuthenticationError: If the token is missing or the server
                returned no access token.
            NetworkError: If the server could not be reached.
            SessionAPIError: If the server rejected the new password.
        """
        if not first_login_token:
            raise AuthenticationError("Missing first login token", status_code=None)

        url = self._settings.url_for(self._settings.first_password_path)
        try:
            response = await self._client.http.post(
                url,
                json={"newPassword": new_password},
                headers={"Authorization": f"Bearer {first_login_token}"},
            )
        except httpx.TransportError as exc:
            raise NetworkError(
                message=f"Network error while setting password: {exc}", inner_error=exc
            ) from exc

        return self._establish_session(response, _json_payload(response))

    async def refresh_access_token(self) -> AccessToken:
        """Renew the access token using the ambient refresh cookie.

        Raises:
            RefreshError: On any failure, including timeouts.
        """
        url = self._settings.url_for(self._settings.refresh_path)
        try:
            response = await self._client.http.post(
                url, timeout=self._settings.refresh_timeout
            )
        except httpx.TimeoutException as exc:
            raise RefreshError("Session refresh timed out", inner_error=exc) from exc
        except httpx.TransportError as exc:
            raise RefreshError(
                f"Network error during session refresh: {exc}", inner_error=exc
            ) from exc

        if response.is_error:
            raise RefreshError(
                f"Session refresh rejected with status {response.status_code}",
                status_code=response.status_code,
            )

        payload = _json_payload(response)
        raw_token = payload.get("token")
        if not isinstance(raw_token, str) or not raw_token:
            raise RefreshError(
                "Refresh response missing access token",
                status_code=response.status_code,
            )

        token = AccessToken.from_raw(raw_token)
        user = _user_from_payload(payload)
        if user is not None:
            self._user = user
        self._schedule_auto_refresh(token)
        return token

    def force_logout(self) -> None:
        """Drop the local session and notify logout listeners."""

        self._credential_store.clear()
        self._handle_forced_logout()

    async def logout(self) -> None:
        """End the session on the server (best effort) and locally."""

        try:
            await self._client.post(self._settings.logout_path)
        except SessionAPIError as exc:
            logger.warning(
                "Server-side logout failed", error=sanitize_log_message(str(exc))
            )
        finally:
            self._clear_session()
        logger.info("Signed out")

    # ------------------------------------------------------------- Requests

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        return await self._client.request(method, path, **kwargs)

    async def request_json(self, method: str, path: str, **kwargs: Any) -> Any:
        return await self._client.request_json(method, path, **kwargs)

    async def get(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self._client.get(path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self._client.post(path, **kwargs)

    async def put(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self._client.put(path, **kwargs)

    async def patch(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self._client.patch(path, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self._client.delete(path, **kwargs)

    async def aclose(self) -> None:
        self._cancel_auto_refresh()
        await self._client.aclose()

    async def __aenter__(self) -> "SessionManager":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    # ------------------------------------------------------------- Internals

    def _establish_session(
        self,
        response: httpx.Response,
        payload: dict[str, Any],
        *,
        username: str | None = None,
    ) -> LoginResult:
        if response.is_error:
            raise map_response_to_error(response)

        raw_token = payload.get("token")
        if not isinstance(raw_token, str) or not raw_token:
            raise AuthenticationError(
                "Sign-in response missing access token", status_code=response.status_code
            )

        token = AccessToken.from_raw(raw_token)
        self._credential_store.set(token)
        self._user = _user_from_payload(payload)
        self._schedule_auto_refresh(token)
        logger.info(
            "Signed in",
            username=self._user.username if self._user else username,
            role=self._user.role if self._user else None,
        )
        return LoginResult(user=self._user)

    def _clear_session(self) -> None:
        self._credential_store.clear()
        self._cancel_auto_refresh()
        self._user = None

    def _handle_forced_logout(self) -> None:
        self._cancel_auto_refresh()
        self._user = None
        logger.warning("Session ended, forcing logout")
        for callback in list(self._logout_callbacks):
            try:
                callback()
            except Exception:  # noqa: BLE001 - listeners must not break logout
                logger.exception("Logout callback raised an exception")

    def _schedule_auto_refresh(self, token: AccessToken) -> None:
        delay = compute_refresh_delay(token, self._settings)
        if delay is None:
            return
        self._cancel_auto_refresh()
        self._auto_refresh_task = asyncio.create_task(self._auto_refresh_after(delay))
        logger.debug("Scheduled proactive refresh", delay_seconds=round(delay, 1))

    def _cancel_auto_refresh(self) -> None:
        task = self._auto_refresh_task
        self._auto_refresh_task = None
        if task is not None and not task.done():
            task.cancel()

    async def _auto_refresh_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self._client.coordinator.refresh_now()
        except RefreshError as exc:
            logger.warning(
                "Proactive refresh failed", error=sanitize_log_message(str(exc))
            )


__all__ = ["LoginResult", "SessionManager", "compute_refresh_delay"]

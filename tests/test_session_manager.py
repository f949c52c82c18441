from __future__ import annotations

import asyncio
import json
import time
from collections.abc import AsyncIterator

import httpx
import pytest
import pytest_asyncio
import respx

from session_guard.api.errors import (
    AuthenticationError,
    NetworkError,
    RefreshError,
    SessionAPIError,
)
from session_guard.auth import AccessToken, MemoryCredentialStore
from session_guard.session import SessionManager, compute_refresh_delay
from tests.factories import make_jwt, make_settings, url


LOGIN = url("/api/v1/users/login")
FIRST_PASSWORD = url("/api/v1/users/first-password")
REFRESH = url("/api/v1/users/refresh")
LOGOUT = url("/api/v1/users/logout")

USER = {
    "_id": "u-42",
    "username": "ada",
    "role": "staff",
    "department": "mathematics",
    "permissions": ["grades:write"],
}


@pytest_asyncio.fixture
async def manager(respx_mock: respx.Router) -> AsyncIterator[SessionManager]:
    session = SessionManager(make_settings(), MemoryCredentialStore())
    try:
        yield session
    finally:
        await session.aclose()


async def _wait_for(route: respx.Route) -> None:
    for _ in range(200):
        if route.called:
            return
        await asyncio.sleep(0.01)
    raise AssertionError("route was never called")


# ----------------------------------------------------------------- login


@pytest.mark.asyncio
async def test_login_stores_token_and_user(
    manager: SessionManager, respx_mock: respx.Router
) -> None:
    token = make_jwt(exp=int(time.time()) + 3600, sub="u-42")
    route = respx_mock.post(LOGIN).mock(
        return_value=httpx.Response(
            200, json={"status": "success", "token": token, "data": {"user": USER}}
        )
    )

    result = await manager.login("ada", "s3cret")

    assert json.loads(route.calls.last.request.content) == {
        "username": "ada",
        "password": "s3cret",
    }
    assert not result.password_change_required
    assert result.user is not None
    assert result.user.username == "ada"
    assert result.user.permissions == ("grades:write",)
    assert manager.current_user() == result.user
    assert manager.is_authenticated
    assert manager.client.credential_store.get() == AccessToken.from_raw(token)


@pytest.mark.asyncio
async def test_login_requiring_password_change_stores_nothing(
    manager: SessionManager, respx_mock: respx.Router
) -> None:
    respx_mock.post(LOGIN).mock(
        return_value=httpx.Response(
            200,
            json={
                "status": "password_change_required",
                "firstLoginToken": "first-login",
                "data": {"user": USER},
            },
        )
    )

    result = await manager.login("ada", "temporary")

    assert result.password_change_required
    assert result.first_login_token == "first-login"
    assert not manager.is_authenticated


@pytest.mark.asyncio
async def test_login_rejected(manager: SessionManager, respx_mock: respx.Router) -> None:
    respx_mock.post(LOGIN).mock(
        return_value=httpx.Response(401, json={"message": "Invalid credentials"})
    )

    with pytest.raises(AuthenticationError, match="Invalid credentials"):
        await manager.login("ada", "wrong")

    assert not manager.is_authenticated


@pytest.mark.asyncio
async def test_login_without_token_is_rejected(
    manager: SessionManager, respx_mock: respx.Router
) -> None:
    respx_mock.post(LOGIN).mock(return_value=httpx.Response(200, json={"status": "success"}))

    with pytest.raises(AuthenticationError, match="missing access token"):
        await manager.login("ada", "s3cret")


@pytest.mark.asyncio
async def test_login_network_failure(manager: SessionManager, respx_mock: respx.Router) -> None:
    respx_mock.post(LOGIN).mock(side_effect=httpx.ConnectError("connection refused"))

    with pytest.raises(NetworkError):
        await manager.login("ada", "s3cret")


@pytest.mark.asyncio
async def test_first_login_sets_password_and_opens_session(
    manager: SessionManager, respx_mock: respx.Router
) -> None:
    token = make_jwt(exp=int(time.time()) + 3600)
    route = respx_mock.post(FIRST_PASSWORD).mock(
        return_value=httpx.Response(
            200, json={"status": "success", "token": token, "data": {"user": USER}}
        )
    )

    result = await manager.complete_first_login("first-login", "n3w-Passw0rd")

    request = route.calls.last.request
    assert request.headers["Authorization"] == "Bearer first-login"
    assert json.loads(request.content) == {"newPassword": "n3w-Passw0rd"}
    assert not result.password_change_required
    assert result.user is not None
    assert result.user.username == "ada"
    assert manager.current_user() == result.user
    assert manager.client.credential_store.get() == AccessToken.from_raw(token)


@pytest.mark.asyncio
async def test_first_login_rejected_password(
    manager: SessionManager, respx_mock: respx.Router
) -> None:
    respx_mock.post(FIRST_PASSWORD).mock(
        return_value=httpx.Response(400, json={"message": "Password too weak"})
    )

    with pytest.raises(SessionAPIError, match="Password too weak"):
        await manager.complete_first_login("first-login", "weak")

    assert not manager.is_authenticated


@pytest.mark.asyncio
async def test_first_login_requires_token(manager: SessionManager) -> None:
    with pytest.raises(AuthenticationError, match="Missing first login token"):
        await manager.complete_first_login("", "n3w-Passw0rd")


# ----------------------------------------------------------------- refresh


@pytest.mark.asyncio
async def test_refresh_returns_token_and_updates_user(
    manager: SessionManager, respx_mock: respx.Router
) -> None:
    respx_mock.post(REFRESH).mock(
        return_value=httpx.Response(200, json={"token": "renewed", "data": {"user": USER}})
    )

    token = await manager.refresh_access_token()

    assert token == AccessToken("renewed")
    assert manager.current_user() is not None
    assert manager.current_user().role == "staff"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("mock", "message"),
    [
        ({"side_effect": httpx.ConnectTimeout("slow")}, "timed out"),
        ({"side_effect": httpx.ConnectError("refused")}, "Network error"),
        ({"return_value": httpx.Response(401)}, "status 401"),
        ({"return_value": httpx.Response(200, json={"status": "success"})}, "missing"),
    ],
)
async def test_refresh_failures_raise_refresh_error(
    manager: SessionManager,
    respx_mock: respx.Router,
    mock: dict[str, object],
    message: str,
) -> None:
    respx_mock.post(REFRESH).mock(**mock)

    with pytest.raises(RefreshError, match=message):
        await manager.refresh_access_token()


# ----------------------------------------------------------------- logout


@pytest.mark.asyncio
async def test_force_logout_notifies_listeners(manager: SessionManager) -> None:
    manager.client.credential_store.set(AccessToken("abc"))
    calls: list[str] = []

    def broken() -> None:
        raise RuntimeError("listener failed")

    manager.on_logout(broken)
    unsubscribe = manager.on_logout(lambda: calls.append("second"))

    manager.force_logout()
    unsubscribe()
    manager.force_logout()

    assert calls == ["second"]
    assert not manager.is_authenticated
    assert manager.current_user() is None


@pytest.mark.asyncio
async def test_logout_clears_session_without_forced_logout(
    manager: SessionManager, respx_mock: respx.Router
) -> None:
    manager.client.credential_store.set(AccessToken("abc"))
    manager.client.http.cookies.set("csrfToken", "csrf-1", domain="api.school.test")
    forced: list[str] = []
    manager.on_logout(lambda: forced.append("forced"))
    route = respx_mock.post(LOGOUT).mock(return_value=httpx.Response(200))

    await manager.logout()

    request = route.calls.last.request
    assert request.headers["Authorization"] == "Bearer abc"
    assert request.headers["x-csrf-token"] == "csrf-1"
    assert not manager.is_authenticated
    assert forced == []


@pytest.mark.asyncio
async def test_logout_clears_session_when_server_fails(
    manager: SessionManager, respx_mock: respx.Router
) -> None:
    manager.client.credential_store.set(AccessToken("abc"))
    respx_mock.post(LOGOUT).mock(return_value=httpx.Response(500))

    await manager.logout()

    assert not manager.is_authenticated


# ----------------------------------------------------------------- requests


@pytest.mark.asyncio
async def test_requests_are_authenticated(
    manager: SessionManager, respx_mock: respx.Router
) -> None:
    manager.client.credential_store.set(AccessToken("abc"))
    route = respx_mock.get(url("/api/v1/students")).mock(
        return_value=httpx.Response(200, json={"data": [{"name": "Ada"}]})
    )

    payload = await manager.request_json("GET", "/api/v1/students", params={"page": 1})

    assert payload == {"data": [{"name": "Ada"}]}
    request = route.calls.last.request
    assert request.headers["Authorization"] == "Bearer abc"
    assert request.url.params["page"] == "1"
    assert "x-csrf-token" not in request.headers


# ----------------------------------------------------------------- auto-refresh


def test_refresh_delay_leads_expiry() -> None:
    settings = make_settings()
    now = 1_000_000.0

    assert compute_refresh_delay(AccessToken("t", 1_000_600), settings, now=now) == 540.0
    assert compute_refresh_delay(AccessToken("t", 1_000_030), settings, now=now) == 5.0
    assert compute_refresh_delay(AccessToken("t", 999_000), settings, now=now) == 5.0
    assert compute_refresh_delay(AccessToken("t"), settings, now=now) is None


@pytest.mark.asyncio
async def test_login_schedules_proactive_refresh(respx_mock: respx.Router) -> None:
    session = SessionManager(
        make_settings(auto_refresh_min_delay=0.0), MemoryCredentialStore()
    )
    token = make_jwt(exp=int(time.time()) + 60)
    respx_mock.post(LOGIN).mock(return_value=httpx.Response(200, json={"token": token}))
    refresh = respx_mock.post(REFRESH).mock(
        return_value=httpx.Response(200, json={"token": "renewed"})
    )
    try:
        await session.login("ada", "s3cret")
        await _wait_for(refresh)
        for _ in range(50):
            if session.client.credential_store.get() == AccessToken("renewed"):
                break
            await asyncio.sleep(0.01)
    finally:
        await session.aclose()

    assert refresh.call_count == 1
    assert session.client.credential_store.get() == AccessToken("renewed")


@pytest.mark.asyncio
async def test_failed_proactive_refresh_forces_logout(respx_mock: respx.Router) -> None:
    session = SessionManager(
        make_settings(auto_refresh_min_delay=0.0), MemoryCredentialStore()
    )
    forced: list[str] = []
    session.on_logout(lambda: forced.append("forced"))
    token = make_jwt(exp=int(time.time()) + 60)
    respx_mock.post(LOGIN).mock(return_value=httpx.Response(200, json={"token": token}))
    refresh = respx_mock.post(REFRESH).mock(return_value=httpx.Response(401))
    try:
        await session.login("ada", "s3cret")
        await _wait_for(refresh)
        for _ in range(50):
            if forced:
                break
            await asyncio.sleep(0.01)
    finally:
        await session.aclose()

    assert forced == ["forced"]
    assert not session.is_authenticated

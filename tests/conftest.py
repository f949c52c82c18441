from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio

from session_guard.auth import AccessToken, MemoryCredentialStore
from session_guard.config.settings import Settings
from session_guard.session import SessionManager
from session_guard.utils import LoggingOptions, configure_logging
from tests.factories import make_settings
from tests.stubs import ScriptedTransport


configure_logging(LoggingOptions(level="DEBUG", log_to_file=False))


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def credential_store() -> MemoryCredentialStore:
    """Store seeded with a token the fake server considers expired."""

    return MemoryCredentialStore(AccessToken("stale"))


@pytest.fixture
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest_asyncio.fixture
async def session(
    settings: Settings,
    credential_store: MemoryCredentialStore,
    transport: ScriptedTransport,
) -> AsyncIterator[SessionManager]:
    manager = SessionManager(settings, credential_store, transport=transport)
    manager.client.http.cookies.set("csrfToken", "csrf-initial", domain="api.school.test")
    try:
        yield manager
    finally:
        await manager.aclose()

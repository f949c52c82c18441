from __future__ import annotations

from pathlib import Path

import httpx

from session_guard.config import SettingsManager
from session_guard.session import SessionManager
from session_guard.utils import get_logger, log_file_path


logger = get_logger(__name__)


def build_session(
    env_file: Path | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> SessionManager:
    """Load persisted/environment settings and wire a session manager."""

    settings = SettingsManager(env_file).load()
    log_path = log_file_path()
    logger.info(
        "Initialising session",
        base_url=settings.base_url,
        credential_backend=settings.credential_backend,
        log_file=str(log_path) if log_path else None,
    )
    return SessionManager(settings, transport=transport)


__all__ = ["build_session"]

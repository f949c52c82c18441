from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from platformdirs import user_cache_dir, user_config_dir

APP_NAME = "SessionGuard"
ENV_PREFIX = "SESSION_GUARD_"
ENV_FILE_NAME = "settings.env"

MUTATING_METHODS: frozenset[str] = frozenset({"POST", "PUT", "PATCH", "DELETE"})

CredentialBackend = Literal["memory", "keyring"]


def _config_dir() -> Path:
    path = Path(user_config_dir(APP_NAME, roaming=True))
    path.mkdir(parents=True, exist_ok=True)
    return path


def _cache_dir() -> Path:
    path = Path(user_cache_dir(APP_NAME))
    path.mkdir(parents=True, exist_ok=True)
    return path


def config_dir() -> Path:
    return _config_dir()


def cache_dir() -> Path:
    return _cache_dir()


def log_dir() -> Path:
    path = cache_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


def _env_file_path(explicit: Path | None) -> Path:
    if explicit is not None:
        return explicit
    return _config_dir() / ENV_FILE_NAME


@dataclass(slots=True)
class Settings:
    """Connection and session parameters for the authenticated API client.

    Paths are relative to ``base_url``. Timeouts are in seconds and bound every
    remote call the client makes, including the refresh call.
    """

    base_url: str = "http://localhost:8000"
    request_timeout: float = 15.0
    refresh_timeout: float = 10.0
    login_path: str = "/api/v1/users/login"
    first_password_path: str = "/api/v1/users/first-password"
    refresh_path: str = "/api/v1/users/refresh"
    csrf_path: str = "/api/v1/users/csrf"
    logout_path: str = "/api/v1/users/logout"
    csrf_cookie_name: str = "csrfToken"
    csrf_header_name: str = "x-csrf-token"
    auto_refresh_lead: float = 60.0
    auto_refresh_min_delay: float = 5.0
    credential_backend: CredentialBackend = "memory"
    user_agent: str = "SessionGuard-Python"

    def url_for(self, path: str) -> str:
        """Join a configured path onto the base URL."""
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return self.base_url.rstrip("/") + "/" + path.lstrip("/")


_FLOAT_FIELDS = {
    "request_timeout",
    "refresh_timeout",
    "auto_refresh_lead",
    "auto_refresh_min_delay",
}


class SettingsManager:
    """Load and persist client settings with environment overrides."""

    def __init__(self, env_file: Path | None = None) -> None:
        self._env_file = _env_file_path(env_file)

    @property
    def env_file(self) -> Path:
        return self._env_file

    def load(self) -> Settings:
        """Load settings from environment, falling back to persisted file."""
        load_dotenv(self._env_file, override=False)

        settings = Settings()
        for item in fields(Settings):
            raw = self._get_env(item.name.upper())
            if raw is None:
                continue
            if item.name in _FLOAT_FIELDS:
                try:
                    value: object = float(raw)
                except ValueError as exc:
                    raise ValueError(
                        f"{ENV_PREFIX}{item.name.upper()} must be a number, got {raw!r}"
                    ) from exc
            elif item.name == "credential_backend":
                value = raw.strip().lower()
                if value not in {"memory", "keyring"}:
                    raise ValueError(f"Unsupported credential backend: {raw!r}")
            else:
                value = raw.strip()
            setattr(settings, item.name, value)
        return settings

    def save(self, settings: Settings) -> None:
        """Persist every field to the managed env file."""
        self._env_file.parent.mkdir(parents=True, exist_ok=True)
        content = [
            f"{ENV_PREFIX}{item.name.upper()}={getattr(settings, item.name)}"
            for item in fields(Settings)
        ]
        self._env_file.write_text("\n".join(content) + "\n", encoding="utf-8")

    def _get_env(self, name: str) -> str | None:
        return os.getenv(f"{ENV_PREFIX}{name}") or None


__all__ = [
    "APP_NAME",
    "MUTATING_METHODS",
    "CredentialBackend",
    "Settings",
    "SettingsManager",
    "cache_dir",
    "config_dir",
    "log_dir",
]

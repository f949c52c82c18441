from __future__ import annotations

import base64
import json
import time

from session_guard.auth.types import AccessToken
from session_guard.config.settings import Settings

BASE_URL = "http://api.school.test"


def make_jwt(*, exp: int | None = None, **claims: object) -> str:
    """Build an unsigned JWT; only the payload matters to the client."""

    header = base64.urlsafe_b64encode(
        json.dumps({"alg": "none"}).encode("utf-8")
    ).rstrip(b"=")
    body: dict[str, object] = dict(claims)
    if exp is not None:
        body["exp"] = exp
    payload = base64.urlsafe_b64encode(json.dumps(body).encode("utf-8")).rstrip(b"=")
    return f"{header.decode('utf-8')}.{payload.decode('utf-8')}.signature"


def make_access_token(token: str = "token", expires_in: int | None = None) -> AccessToken:
    expires_on = int(time.time()) + expires_in if expires_in is not None else None
    return AccessToken(token=token, expires_on=expires_on)


def make_settings(**overrides: object) -> Settings:
    """Build Settings pointing at the fake API host."""

    settings = Settings(base_url=BASE_URL)
    for key, value in overrides.items():
        setattr(settings, key, value)
    return settings


def url(path: str) -> str:
    return f"{BASE_URL}{path}"

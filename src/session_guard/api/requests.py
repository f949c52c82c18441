from __future__ import annotations

from dataclasses import dataclass

import httpx

from session_guard.config.settings import MUTATING_METHODS


@dataclass(slots=True)
class RequestRetryMarker:
    """Recovery attempts already spent by one logical request."""

    csrf_retried: bool = False
    auth_retried: bool = False


def is_mutating(request: httpx.Request) -> bool:
    return request.method.upper() in MUTATING_METHODS


def sent_bearer(request: httpx.Request) -> str | None:
    """Return the bearer token a request carried, if any."""

    header = request.headers.get("Authorization")
    if not header or not header.startswith("Bearer "):
        return None
    return header[len("Bearer ") :] or None


def clone_request(request: httpx.Request) -> httpx.Request:
    """Copy a request for replay; the body must already be buffered."""

    return httpx.Request(
        request.method,
        request.url,
        headers=request.headers.copy(),
        content=request.read(),
        extensions=dict(request.extensions),
    )


__all__ = ["RequestRetryMarker", "clone_request", "is_mutating", "sent_bearer"]

"""Authentication type definitions."""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from typing import Any, Mapping, NamedTuple


def _decode_jwt_claims(token: str) -> dict[str, Any] | None:
    parts = token.split(".")
    if len(parts) != 3:
        return None
    padding = "=" * (-len(parts[1]) % 4)
    try:
        payload = base64.urlsafe_b64decode(parts[1] + padding)
        claims = json.loads(payload)
    except (ValueError, UnicodeDecodeError):
        return None
    return claims if isinstance(claims, dict) else None


class AccessToken(NamedTuple):
    """Represents a bearer access token.

    The client treats the token as opaque; ``expires_on`` is only populated
    when the value happens to be a JWT carrying an ``exp`` claim.
    """

    token: str
    """The token string."""

    expires_on: int | None = None
    """The token's expiration time in Unix time, when known."""

    @classmethod
    def from_raw(cls, token: str) -> "AccessToken":
        claims = _decode_jwt_claims(token)
        expiry = claims.get("exp") if claims else None
        if isinstance(expiry, (int, float)) and not isinstance(expiry, bool):
            return cls(token, int(expiry))
        return cls(token, None)

    @property
    def bearer(self) -> str:
        return f"Bearer {self.token}"


@dataclass(slots=True)
class AuthenticatedUser:
    user_id: str | None
    username: str | None
    role: str | None
    department: str | None
    permissions: tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "AuthenticatedUser":
        permissions = payload.get("permissions") or ()
        return cls(
            user_id=payload.get("_id") or payload.get("id"),
            username=payload.get("username") or payload.get("email"),
            role=payload.get("role"),
            department=payload.get("department"),
            permissions=tuple(str(item) for item in permissions),
        )


__all__ = ["AccessToken", "AuthenticatedUser"]

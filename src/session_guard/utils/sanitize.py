from __future__ import annotations

from typing import Final, Mapping

_CONTROL_CHARS: Final[frozenset[str]] = frozenset(
    chr(code) for code in range(0x00, 0x20) if chr(code) not in {"\t", "\n"}
)

_SENSITIVE_HEADERS: Final[frozenset[str]] = frozenset(
    {"authorization", "cookie", "set-cookie", "x-csrf-token"}
)

REDACTED: Final[str] = "<redacted>"


def sanitize_log_message(value: str) -> str:
    """Normalise log messages by stripping control characters and CR sequences."""

    normalised = value.replace("\r\n", "\n").replace("\r", "\n")
    return "".join(ch for ch in normalised if ch not in _CONTROL_CHARS)


def redact_headers(
    headers: Mapping[str, str] | None,
    *,
    extra: frozenset[str] | None = None,
) -> dict[str, str]:
    """Return a copy of ``headers`` safe to log; credential values are masked."""

    if not headers:
        return {}
    sensitive = _SENSITIVE_HEADERS | (extra or frozenset())
    return {
        key: REDACTED if key.lower() in sensitive else str(value)
        for key, value in headers.items()
    }


__all__ = ["REDACTED", "redact_headers", "sanitize_log_message"]

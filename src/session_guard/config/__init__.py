"""Configuration helpers for the session-guard client."""

from .settings import MUTATING_METHODS, Settings, SettingsManager

__all__ = [
    "MUTATING_METHODS",
    "Settings",
    "SettingsManager",
]

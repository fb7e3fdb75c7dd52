"""Configuration module for peekstash."""

from .settings import (
    ApiSettings,
    DatabaseSettings,
    ObservabilitySettings,
    Settings,
    StashSettings,
    SyncConfig,
    get_settings,
)

__all__ = [
    "ApiSettings",
    "DatabaseSettings",
    "ObservabilitySettings",
    "Settings",
    "StashSettings",
    "SyncConfig",
    "get_settings",
]

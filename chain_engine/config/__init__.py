"""Configuration management."""

from chain_engine.config.settings import (
    Environment,
    EventSettings,
    ExecutorSettings,
    LegacyStoreSettings,
    Settings,
    StorageSettings,
    get_settings,
)

__all__ = [
    "Environment",
    "EventSettings",
    "ExecutorSettings",
    "LegacyStoreSettings",
    "Settings",
    "StorageSettings",
    "get_settings",
]

"""Configuration package."""

from ledgervault.config.settings import (
    AppSettings,
    BackupSettings,
    RetentionSettings,
    Settings,
    StorageSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "BackupSettings",
    "RetentionSettings",
    "Settings",
    "StorageSettings",
    "get_settings",
    "validate_all_settings",
]

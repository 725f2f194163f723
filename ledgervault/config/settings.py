"""
Configuration Management for LedgerVault

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Every on-disk location the core touches (record store, preferences,
receipts, staging, backups) is derived from a single data directory,
so tests and the host app can relocate the whole state by setting one value.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageSettings(BaseSettings):
    """Locations and query limits for the three live stores."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGERVAULT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    data_dir: Path = Field(
        default=Path("./ledgervault-data"),
        description="Root directory holding all application state"
    )
    database_name: str = Field(
        default="ledgervault.db",
        description="File name of the SQLite record store"
    )
    preferences_dir_name: str = Field(
        default="preferences",
        description="Directory holding the preference store files"
    )
    receipts_dir_name: str = Field(
        default="receipts",
        description="Root directory of the attachment file store"
    )
    staging_dir_name: str = Field(
        default="cache",
        description="Private scratch directory for snapshots and restore staging"
    )
    backups_dir_name: str = Field(
        default="backups",
        description="Default destination for new backup archives"
    )

    # Query behaviour
    page_size: int = Field(
        default=50,
        ge=1,
        le=500,
        description="Rows per page for paginated transaction listings"
    )
    duplicate_window_days: int = Field(
        default=7,
        ge=0,
        le=90,
        description="Days either side of a date searched for potential duplicates"
    )
    search_history_limit: int = Field(
        default=20,
        ge=1,
        description="Recent searches kept per profile"
    )

    @property
    def database_path(self) -> Path:
        return self.data_dir / self.database_name

    @property
    def preferences_path(self) -> Path:
        return self.data_dir / self.preferences_dir_name

    @property
    def receipts_path(self) -> Path:
        return self.data_dir / self.receipts_dir_name

    @property
    def staging_path(self) -> Path:
        return self.data_dir / self.staging_dir_name

    @property
    def backups_path(self) -> Path:
        return self.data_dir / self.backups_dir_name

    @property
    def database_companion_paths(self) -> list[Path]:
        """Write-ahead log and shared-memory files that sit next to the database."""
        return [
            self.data_dir / f"{self.database_name}-wal",
            self.data_dir / f"{self.database_name}-shm",
        ]


class RetentionSettings(BaseSettings):
    """Data retention window configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGERVAULT_RETENTION_",
        extra="ignore"
    )

    default_years: int = Field(
        default=6,
        description="Retention window used when a profile has not chosen one"
    )
    min_years: int = Field(
        default=6,
        ge=1,
        description="Shortest retention window a user may choose"
    )
    max_years: int = Field(
        default=10,
        description="Longest retention window a user may choose"
    )
    warning_interval_days: int = Field(
        default=30,
        ge=1,
        description="Minimum days between two retention warnings"
    )

    @model_validator(mode='after')
    def validate_bounds(self) -> 'RetentionSettings':
        """Default must sit inside the allowed range."""
        if self.min_years > self.max_years:
            raise ValueError("min_years cannot exceed max_years")
        if not self.min_years <= self.default_years <= self.max_years:
            raise ValueError(
                f"default_years must be between {self.min_years} and {self.max_years}"
            )
        return self

    def clamp(self, years: int) -> int:
        """Force a stored retention value back into the allowed range."""
        return max(self.min_years, min(self.max_years, years))


class BackupSettings(BaseSettings):
    """Backup and restore limits."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGERVAULT_BACKUP_",
        extra="ignore"
    )

    safety_margin_mb: int = Field(
        default=10,
        ge=0,
        description="Free space kept in reserve on top of the snapshot size"
    )
    min_archive_bytes: int = Field(
        default=256,
        ge=0,
        description="Smallest file accepted as a backup archive"
    )
    max_archive_gb: int = Field(
        default=5,
        ge=1,
        description="Largest file accepted as a backup archive"
    )

    @property
    def safety_margin_bytes(self) -> int:
        return self.safety_margin_mb * 1024 * 1024

    @property
    def max_archive_bytes(self) -> int:
        return self.max_archive_gb * 1024 * 1024 * 1024


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def retention(self) -> RetentionSettings:
        return RetentionSettings()

    @property
    def backup(self) -> BackupSettings:
        return BackupSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("storage", "retention", "backup", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except ValueError as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results

"""
Preference Store

DESIGN DECISION: Preferences are a flat JSON document of key/value pairs
in their own directory, separate from the record store. Backups copy the
directory verbatim, so the on-disk layout is part of the archive format.

Scoping is done by key prefix:
- global keys are stored as-is ("theme", "current_profile_id")
- profile keys are stored as "profile_{profile_id}_{name}"

Writes go to a temp file that is renamed over the original, so a crash
mid-write leaves the previous document intact.
"""

import asyncio
import json
import os
import threading
from datetime import date
from pathlib import Path
from typing import Any, Optional

import structlog

from ledgervault.config import RetentionSettings, StorageSettings, get_settings
from ledgervault.models.ledger import DEFAULT_PROFILE_ID, ProfileContext
from ledgervault.services.storage.interface import StoreClosedError


logger = structlog.get_logger(__name__)


class PreferenceKeys:
    """Known keys. Profile keys are passed through profile_key()."""

    # Global
    ONBOARDING_COMPLETE = "onboarding_complete"
    CURRENT_PROFILE_ID = "current_profile_id"
    THEME = "theme"
    OCR_ENABLED = "ocr_enabled"
    NOTIFICATIONS_ENABLED = "notifications_enabled"
    LAST_RETENTION_WARNING_DATE = "last_retention_warning_date"

    # Per profile
    DATA_RETENTION_YEARS = "data_retention_years"
    TAX_PERIOD_START = "tax_period_start"
    TAX_PERIOD_END = "tax_period_end"
    BASE_CURRENCY = "base_currency"
    SELECTED_COUNTRY = "selected_country"


def profile_key(profile_id: str, name: str) -> str:
    return f"profile_{profile_id}_{name}"


class PreferenceStore:
    """
    Durable key/value settings, global or per profile.

    All file access happens on a worker thread.
    """

    FILE_NAME = "settings.json"

    def __init__(
        self,
        settings: Optional[StorageSettings] = None,
        retention: Optional[RetentionSettings] = None,
    ):
        self._settings = settings or get_settings().storage
        self._retention = retention or get_settings().retention
        self._directory = self._settings.preferences_path
        self._lock = threading.Lock()
        self._values: Optional[dict[str, Any]] = None
        self._closed = False

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def file_path(self) -> Path:
        return self._directory / self.FILE_NAME

    @property
    def closed(self) -> bool:
        return self._closed

    # -------------------------------------------------------------------------
    # File access (worker thread, under lock)
    # -------------------------------------------------------------------------

    def _load(self) -> dict[str, Any]:
        if self._closed:
            raise StoreClosedError("Preference store is closed; restart the application")
        if self._values is None:
            if self.file_path.exists():
                self._values = json.loads(self.file_path.read_text(encoding="utf-8"))
            else:
                self._values = {}
        return self._values

    def _flush(self) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        temp_path = self.file_path.with_suffix(".tmp")
        temp_path.write_text(
            json.dumps(self._values, indent=2, sort_keys=True),
            encoding="utf-8",
        )
        os.replace(temp_path, self.file_path)

    def _read(self, key: str, default: Any) -> Any:
        with self._lock:
            return self._load().get(key, default)

    def _update(self, changes: dict[str, Any], removals: list[str]) -> None:
        with self._lock:
            values = self._load()
            values.update(changes)
            for key in removals:
                values.pop(key, None)
            self._flush()

    # -------------------------------------------------------------------------
    # Generic access
    # -------------------------------------------------------------------------

    async def get(self, key: str, default: Any = None) -> Any:
        return await asyncio.to_thread(self._read, key, default)

    async def set(self, key: str, value: Any) -> None:
        await asyncio.to_thread(self._update, {key: value}, [])

    async def remove(self, key: str) -> None:
        await asyncio.to_thread(self._update, {}, [key])

    async def get_all(self) -> dict[str, Any]:
        def snapshot() -> dict[str, Any]:
            with self._lock:
                return dict(self._load())

        return await asyncio.to_thread(snapshot)

    async def get_for_profile(self, ctx: ProfileContext, name: str, default: Any = None) -> Any:
        return await self.get(profile_key(ctx.profile_id, name), default)

    async def set_for_profile(self, ctx: ProfileContext, name: str, value: Any) -> None:
        await self.set(profile_key(ctx.profile_id, name), value)

    async def remove_profile_keys(self, profile_id: str) -> int:
        """Drop every key scoped to the profile. Returns how many were removed."""
        prefix = profile_key(profile_id, "")
        values = await self.get_all()
        doomed = [key for key in values if key.startswith(prefix)]
        if doomed:
            await asyncio.to_thread(self._update, {}, doomed)
        return len(doomed)

    async def clear(self) -> None:
        """Forget every preference (full application reset)."""

        def wipe() -> None:
            with self._lock:
                self._load()
                self._values = {}
                self._flush()

        await asyncio.to_thread(wipe)

    async def close(self) -> None:
        """Release the store. Later calls raise StoreClosedError."""
        with self._lock:
            self._values = None
            self._closed = True
        logger.info("preference_store_closed", path=str(self._directory))

    # -------------------------------------------------------------------------
    # Typed accessors
    # -------------------------------------------------------------------------

    async def is_onboarding_complete(self) -> bool:
        return bool(await self.get(PreferenceKeys.ONBOARDING_COMPLETE, False))

    async def set_onboarding_complete(self, complete: bool = True) -> None:
        await self.set(PreferenceKeys.ONBOARDING_COMPLETE, complete)

    async def get_current_profile_id(self) -> str:
        return await self.get(PreferenceKeys.CURRENT_PROFILE_ID, DEFAULT_PROFILE_ID)

    async def set_current_profile_id(self, profile_id: str) -> None:
        await self.set(PreferenceKeys.CURRENT_PROFILE_ID, profile_id)

    async def current_context(self) -> ProfileContext:
        """The ProfileContext the host should pass to store and lifecycle calls."""
        return ProfileContext(profile_id=await self.get_current_profile_id())

    async def get_retention_years(self, ctx: ProfileContext) -> int:
        stored = await self.get_for_profile(
            ctx,
            PreferenceKeys.DATA_RETENTION_YEARS,
            self._retention.default_years,
        )
        return self._retention.clamp(int(stored))

    async def set_retention_years(self, ctx: ProfileContext, years: int) -> None:
        if not self._retention.min_years <= years <= self._retention.max_years:
            raise ValueError(
                f"Retention must be between {self._retention.min_years} "
                f"and {self._retention.max_years} years"
            )
        await self.set_for_profile(ctx, PreferenceKeys.DATA_RETENTION_YEARS, years)

    async def get_last_retention_warning(self) -> Optional[date]:
        stored = await self.get(PreferenceKeys.LAST_RETENTION_WARNING_DATE)
        return date.fromisoformat(stored) if stored else None

    async def set_last_retention_warning(self, on: date) -> None:
        await self.set(PreferenceKeys.LAST_RETENTION_WARNING_DATE, on.isoformat())

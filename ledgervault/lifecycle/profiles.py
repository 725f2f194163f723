"""
Profile Manager

Profiles are hard-deleted: removing one deletes every transaction,
category and recent search scoped to it, its receipt folder and its
profile-prefixed preferences. The last profile can never be removed.
"""

from typing import Optional

from ledgervault.audit import AuditLogger
from ledgervault.models.audit import AuditEventBuilder
from ledgervault.models.ledger import DEFAULT_PROFILE_ID, Profile, ProfileContext, utc_now
from ledgervault.services.backup.guard import OperationGuard
from ledgervault.services.preferences import PreferenceStore
from ledgervault.services.receipts import ReceiptFileStore
from ledgervault.services.storage.interface import (
    ConstraintError,
    NotFoundError,
    ProfileStorageInterface,
)
from ledgervault.services.storage.sqlite_store import SQLiteLedgerStore
from ledgervault.validation import LedgerValidator


DEFAULT_PROFILES = [
    {"id": DEFAULT_PROFILE_ID, "name": "Business", "icon": "business", "color": "#1976D2"},
    {"name": "Personal", "icon": "person", "color": "#388E3C"},
]


class ProfileManager:
    """Create, rename, switch and delete profiles."""

    def __init__(
        self,
        store: ProfileStorageInterface,
        preferences: PreferenceStore,
        receipts: ReceiptFileStore,
        guard: OperationGuard,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._preferences = preferences
        self._receipts = receipts
        self._guard = guard
        self._audit_logger = audit_logger

    async def _require(self, profile_id: str) -> Profile:
        profile = await self._store.get_profile(profile_id)
        if profile is None:
            raise NotFoundError(f"Profile {profile_id} not found")
        return profile

    async def _ensure_unique_name(self, name: str, exclude_id: Optional[str] = None) -> None:
        for profile in await self._store.list_profiles():
            if profile.id != exclude_id and profile.name.lower() == name.lower():
                raise ConstraintError(f"A profile named '{name}' already exists")

    async def create_default_profiles(self) -> list[Profile]:
        """Seed Business and Personal on first run. No-op once any profile exists."""
        existing = await self._store.list_profiles()
        if existing:
            return existing

        created = []
        for seed in DEFAULT_PROFILES:
            profile = Profile(**seed)
            await self._store.insert_profile(profile)
            created.append(profile)
        await self._preferences.set_current_profile_id(DEFAULT_PROFILE_ID)
        return created

    async def create(
        self,
        name: str,
        icon: str = "business",
        color: str = "#1976D2",
    ) -> Profile:
        """
        Raises:
            ValidationError: If the name is empty, too long or has odd characters
            ConstraintError: If another profile already uses the name
        """
        name = LedgerValidator.validate_profile_name(name)
        await self._ensure_unique_name(name)
        profile = Profile(name=name, icon=icon, color=color)
        await self._store.insert_profile(profile)

        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.profile_created(profile.id, name))
        return profile

    async def update(
        self,
        profile_id: str,
        name: Optional[str] = None,
        icon: Optional[str] = None,
        color: Optional[str] = None,
    ) -> Profile:
        current = await self._require(profile_id)
        changes: dict = {}
        if name is not None:
            name = LedgerValidator.validate_profile_name(name)
            if name != current.name:
                await self._ensure_unique_name(name, exclude_id=profile_id)
                changes["name"] = name
        if icon is not None and icon != current.icon:
            changes["icon"] = icon
        if color is not None and color != current.color:
            changes["color"] = color
        if not changes:
            return current

        changes["updated_at"] = utc_now()
        updated = current.model_copy(update=changes)
        await self._store.save_profile(updated)
        return updated

    async def get(self, profile_id: str) -> Profile:
        return await self._require(profile_id)

    async def list_profiles(self) -> list[Profile]:
        return await self._store.list_profiles()

    async def switch_to(self, profile_id: str) -> ProfileContext:
        """Remember the profile as current and return its context."""
        profile = await self._require(profile_id)
        await self._preferences.set_current_profile_id(profile.id)
        return profile.context

    async def delete(self, profile_id: str) -> dict[str, int]:
        """
        Delete a profile and everything scoped to it.

        Returns:
            Counts of removed rows, receipt files and preference keys

        Raises:
            NotFoundError: If the profile does not exist
            ConstraintError: If it is the only profile left
        """
        profile = await self._require(profile_id)
        profiles = await self._store.list_profiles()
        if len(profiles) <= 1:
            raise ConstraintError("Cannot delete the last profile")

        removed = await self._store.delete_profile_cascade(profile_id)
        removed["receipt_files"] = await self._receipts.delete_profile(profile_id)
        removed["preferences"] = await self._preferences.remove_profile_keys(profile_id)

        if await self._preferences.get_current_profile_id() == profile_id:
            fallback = next(p for p in profiles if p.id != profile_id)
            await self._preferences.set_current_profile_id(fallback.id)

        if self._audit_logger:
            await self._audit_logger.log(
                AuditEventBuilder.profile_deleted(profile_id, profile.name, removed)
            )
        return removed

    async def reset_all_data(self, store: SQLiteLedgerStore) -> None:
        """
        Wipe every record, receipt and preference. The only path, besides
        the retention sweep, that physically removes transactions. Waits
        for any backup, restore or sweep in progress.
        """
        async with self._guard.hold("reset"):
            await store.reset_all()
            await self._receipts.delete_all()
            await self._preferences.clear()

        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.data_reset())

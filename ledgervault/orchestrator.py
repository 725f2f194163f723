"""
Main Orchestrator for LedgerVault

This module wires the stores, the lifecycle managers and the backup
engines together, and defines the startup flow:

1. Open the record store and bring its schema up to date
2. Open the preference and receipt stores
3. Seed the default profiles (and their categories) on first run

DESIGN DECISION: A failed migration stops startup. The application must
never run against a half-migrated store, so MigrationError is turned into
a StartupError carrying a message the host can show to the user as-is.
A store file SQLite cannot read at all is reported the same way.
"""

import sqlite3
from pathlib import Path
from typing import Optional

import structlog

from ledgervault.audit import AuditLogger
from ledgervault.config import Settings, get_settings
from ledgervault.lifecycle import (
    CategoryManager,
    LedgerReader,
    ProfileManager,
    RetentionSweeper,
    SearchHistoryManager,
    TransactionManager,
)
from ledgervault.models.audit import AuditEventBuilder
from ledgervault.models.backup import BackupResult, RestoreResult
from ledgervault.services.backup import (
    BackupEngine,
    OperationGuard,
    RestoreEngine,
    StorageSpaceChecker,
)
from ledgervault.services.preferences import PreferenceStore
from ledgervault.services.receipts import ReceiptFileStore
from ledgervault.services.storage import MigrationError, SQLiteLedgerStore


logger = structlog.get_logger(__name__)


class StartupError(Exception):
    """The application cannot start. `user_message` is safe to display."""

    def __init__(self, user_message: str, detail: str):
        self.user_message = user_message
        self.detail = detail
        super().__init__(f"{user_message} ({detail})")


class LedgerComponents:
    """
    Everything the host application talks to, sharing one store,
    one guard and one audit logger.
    """

    def __init__(
        self,
        settings: Settings,
        store: SQLiteLedgerStore,
        preferences: PreferenceStore,
        receipts: ReceiptFileStore,
        audit_logger: AuditLogger,
        space_checker: Optional[StorageSpaceChecker] = None,
    ):
        self.settings = settings
        self.store = store
        self.preferences = preferences
        self.receipts = receipts
        self.audit_logger = audit_logger
        self.guard = OperationGuard()

        storage_settings = settings.storage
        self.transactions = TransactionManager(store, storage_settings, audit_logger)
        self.categories = CategoryManager(store, store, self.transactions, audit_logger)
        self.profiles = ProfileManager(store, preferences, receipts, self.guard, audit_logger)
        self.search_history = SearchHistoryManager(store, storage_settings)
        self.reader = LedgerReader(store)
        self.retention = RetentionSweeper(
            store, preferences, receipts, self.guard, settings.retention, audit_logger
        )
        self.backup_engine = BackupEngine(
            store, preferences, receipts, self.guard, settings, space_checker, audit_logger
        )
        self.restore_engine = RestoreEngine(
            store, preferences, receipts, self.guard, settings, space_checker, audit_logger
        )

    async def create_backup(self, destination: Optional[Path] = None, on_progress=None) -> BackupResult:
        return await self.backup_engine.create_backup(destination, on_progress)

    async def restore_backup(self, archive: Path, on_progress=None) -> RestoreResult:
        """After this returns the components are unusable; restart the host."""
        return await self.restore_engine.restore_backup(archive, on_progress)

    async def reset_all_data(self) -> None:
        await self.profiles.reset_all_data(self.store)

    async def close(self) -> None:
        if not self.store.closed:
            await self.store.close()
        if not self.preferences.closed:
            await self.preferences.close()


async def create_app_components(
    settings: Optional[Settings] = None,
    audit_logger: Optional[AuditLogger] = None,
    space_checker: Optional[StorageSpaceChecker] = None,
    seed_defaults: bool = True,
) -> LedgerComponents:
    """
    Factory function to open every store and build the managers.

    Args:
        settings: Defaults to the cached environment settings
        seed_defaults: Create the default profiles and categories on first run

    Raises:
        StartupError: If the record store cannot be read or opened at the current schema
    """
    settings = settings or get_settings()
    audit_logger = audit_logger or AuditLogger()

    store = SQLiteLedgerStore(settings.storage)
    try:
        applied = await store.initialise()
    except MigrationError as e:
        await audit_logger.log(AuditEventBuilder.migration_failed(e.from_version, str(e)))
        await store.close()
        raise StartupError(
            "Your data could not be upgraded to this version of the app. "
            "Nothing was changed; restore a backup or reinstall the previous version.",
            str(e),
        ) from e
    except sqlite3.DatabaseError as e:
        await audit_logger.log(AuditEventBuilder.migration_failed(0, str(e)))
        await store.close()
        raise StartupError(
            "Your data file could not be read. "
            "Nothing was changed; restore a backup to continue.",
            str(e),
        ) from e

    for from_version, to_version in applied:
        await audit_logger.log(AuditEventBuilder.migration_applied(from_version, to_version))

    components = LedgerComponents(
        settings=settings,
        store=store,
        preferences=PreferenceStore(settings.storage, settings.retention),
        receipts=ReceiptFileStore(settings.storage),
        audit_logger=audit_logger,
        space_checker=space_checker,
    )

    if seed_defaults:
        for profile in await components.profiles.create_default_profiles():
            if not await store.list_categories(profile.context, None, True):
                await components.categories.seed_defaults(profile.context)

    logger.info(
        "ledgervault_started",
        data_dir=str(settings.storage.data_dir),
        migrations_applied=len(applied),
    )
    return components

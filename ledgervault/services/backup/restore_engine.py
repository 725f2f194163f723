"""
Restore Engine

DESIGN DECISION: Everything that can fail for an ordinary reason (bad
file, wrong version, not enough space) happens in STAGING and VALIDATING,
before live data is touched. Failures there raise ArchiveValidationError
or StorageSpaceError and are safe to retry.

Once WIPING starts, the live record store and preference store are
closed and their files deleted. A failure from that point raises
CatastrophicRestoreError: the data directory may be inconsistent and the
user must retry the restore or reinstall.

STATE MACHINE:
    IDLE → STAGING → VALIDATING → WIPING → MATERIALIZING → COMPLETE
    (any stage) → FAILED

After a successful restore the running process must not use the old
store objects again; the result always reports restart_required.
"""

import asyncio
import shutil
import sqlite3
from pathlib import Path
from typing import Callable, Optional
from uuid import UUID

import structlog

from ledgervault.audit import AuditLogger, create_correlation_id
from ledgervault.config import Settings, get_settings
from ledgervault.models.audit import AuditEventBuilder
from ledgervault.models.backup import ArchiveManifest, RestoreResult, RestoreStage
from ledgervault.services.backup.archive import (
    DATABASE_SECTION,
    PREFERENCES_SECTION,
    RECEIPTS_SECTION,
    extract_archive,
    uncompressed_size,
    validate_archive,
)
from ledgervault.services.backup.errors import (
    ArchiveValidationError,
    BackupError,
    CatastrophicRestoreError,
)
from ledgervault.services.backup.guard import OperationGuard
from ledgervault.services.backup.space import StorageSpaceChecker, path_size
from ledgervault.services.preferences import PreferenceStore
from ledgervault.services.receipts import ReceiptFileStore
from ledgervault.services.storage.interface import StorageError
from ledgervault.services.storage.migrations import get_user_version
from ledgervault.services.storage.schema import SCHEMA_VERSION
from ledgervault.services.storage.sqlite_store import SQLiteLedgerStore, integrity_check


logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[int, RestoreStage], None]

STAGED_ARCHIVE_NAME = "restore_temp.zip"
STAGED_DATA_DIR_NAME = "restore_temp_data"

# Stages that touch live data
DESTRUCTIVE_STAGES = (RestoreStage.WIPING, RestoreStage.MATERIALIZING)


def check_staged_database(path: Path) -> None:
    """
    Raises:
        ArchiveValidationError: If the staged database is damaged or newer than this build
    """
    problems = integrity_check(path)
    if problems:
        raise ArchiveValidationError(
            f"Backup database failed integrity check: {problems[0]}"
        )
    conn = sqlite3.connect(str(path))
    try:
        version = get_user_version(conn)
    finally:
        conn.close()
    if version > SCHEMA_VERSION:
        raise ArchiveValidationError(
            f"Backup database uses schema {version}; this build supports up to {SCHEMA_VERSION}"
        )


def _replace_tree(source: Path, target: Path) -> None:
    if target.exists():
        shutil.rmtree(target)
    if source.is_dir():
        shutil.copytree(source, target)
    else:
        target.mkdir(parents=True, exist_ok=True)


class RestoreEngine:
    """Replace all live data with the contents of a backup archive."""

    def __init__(
        self,
        store: SQLiteLedgerStore,
        preferences: PreferenceStore,
        receipts: ReceiptFileStore,
        guard: OperationGuard,
        settings: Optional[Settings] = None,
        space_checker: Optional[StorageSpaceChecker] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        settings = settings or get_settings()
        self._storage_settings = settings.storage
        self._backup_settings = settings.backup
        self._store = store
        self._preferences = preferences
        self._receipts = receipts
        self._guard = guard
        self._space = space_checker or StorageSpaceChecker(self._backup_settings)
        self._audit_logger = audit_logger

        self._stage = RestoreStage.IDLE
        self._progress = 0
        self._on_progress: Optional[ProgressCallback] = None

    @property
    def stage(self) -> RestoreStage:
        return self._stage

    @property
    def progress(self) -> int:
        return self._progress

    @property
    def staged_archive_path(self) -> Path:
        return self._storage_settings.staging_path / STAGED_ARCHIVE_NAME

    @property
    def staged_data_path(self) -> Path:
        return self._storage_settings.staging_path / STAGED_DATA_DIR_NAME

    def _enter(self, stage: RestoreStage, percent: int) -> None:
        self._stage = stage
        logger.info("restore_stage", stage=stage.value)
        self._report(percent)

    def _report(self, percent: int) -> None:
        percent = max(self._progress, min(100, percent))
        if percent == self._progress:
            return
        self._progress = percent
        if self._on_progress:
            self._on_progress(percent, self._stage)

    async def restore_backup(
        self,
        archive: Path,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RestoreResult:
        """
        Restore every store from an archive.

        Raises:
            StorageSpaceError, ArchiveValidationError: Live data untouched; safe to retry
            CatastrophicRestoreError: Live data was wiped; retry the restore or reinstall
        """
        correlation_id = create_correlation_id()

        async with self._guard.hold("restore"):
            self._stage = RestoreStage.IDLE
            self._progress = 0
            self._on_progress = on_progress
            if self._audit_logger:
                await self._audit_logger.log(
                    AuditEventBuilder.restore_started(str(archive), correlation_id)
                )

            try:
                manifest = await self._run(archive)
            except BackupError as e:
                await self._fail(e, correlation_id)
                raise
            except (OSError, sqlite3.Error, StorageError) as e:
                if self._stage in DESTRUCTIVE_STAGES:
                    error: BackupError = CatastrophicRestoreError(
                        f"Restore failed after existing data was removed: {e}. "
                        "Retry the restore or reinstall the app.",
                        stage=self._stage,
                    )
                else:
                    error = ArchiveValidationError(f"Restore failed: {e}", stage=self._stage)
                await self._fail(error, correlation_id)
                raise error from e
            finally:
                self._on_progress = None
                await asyncio.to_thread(self._cleanup_staging)

        if self._audit_logger:
            await self._audit_logger.log(
                AuditEventBuilder.restore_completed(str(archive), correlation_id)
            )
        return RestoreResult(
            archive_path=archive,
            manifest=manifest,
            restart_required=True,
            correlation_id=correlation_id,
        )

    async def _fail(self, error: BackupError, correlation_id: UUID) -> None:
        self._stage = RestoreStage.FAILED
        logger.error(
            "restore_failed",
            stage=error.stage,
            safe_to_retry=error.safe_to_retry,
            error=str(error),
        )
        if self._audit_logger:
            await self._audit_logger.log_restore_failed(
                stage=error.stage,
                safe_to_retry=error.safe_to_retry,
                error_message=str(error),
                correlation_id=correlation_id,
            )

    def _cleanup_staging(self) -> None:
        self.staged_archive_path.unlink(missing_ok=True)
        if self.staged_data_path.exists():
            shutil.rmtree(self.staged_data_path)

    async def _run(self, archive: Path) -> Optional[ArchiveManifest]:
        staged_zip = self.staged_archive_path
        staged_data = self.staged_data_path
        database_name = self._storage_settings.database_name

        # Stage: private copy so the source can disappear mid-restore
        self._enter(RestoreStage.STAGING, 0)
        if not await asyncio.to_thread(archive.is_file):
            raise ArchiveValidationError(f"Backup file not found: {archive}", stage=RestoreStage.STAGING)
        archive_size = await asyncio.to_thread(path_size, archive)
        await asyncio.to_thread(
            self._space.ensure_available, staged_zip.parent, archive_size, RestoreStage.STAGING
        )
        await asyncio.to_thread(self._cleanup_staging)
        await asyncio.to_thread(staged_zip.parent.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread(shutil.copyfile, archive, staged_zip)
        self._report(10)

        # Validate, then extract and check the database itself
        self._enter(RestoreStage.VALIDATING, 10)
        manifest = await asyncio.to_thread(
            validate_archive,
            staged_zip,
            self._backup_settings,
            database_name,
            SCHEMA_VERSION,
        )
        extracted_size = await asyncio.to_thread(uncompressed_size, staged_zip)
        await asyncio.to_thread(
            self._space.ensure_available, staged_data.parent, extracted_size, RestoreStage.VALIDATING
        )
        await asyncio.to_thread(extract_archive, staged_zip, staged_data)
        await asyncio.to_thread(
            check_staged_database, staged_data / DATABASE_SECTION / database_name
        )
        self._report(40)

        # Point of no return
        self._enter(RestoreStage.WIPING, 40)
        await self._store.close()
        await self._preferences.close()
        await asyncio.to_thread(self._wipe_live_data)
        self._report(50)

        self._enter(RestoreStage.MATERIALIZING, 50)
        await asyncio.to_thread(self._materialize_database, staged_data / DATABASE_SECTION)
        self._report(60)
        await asyncio.to_thread(
            _replace_tree, staged_data / PREFERENCES_SECTION, self._preferences.directory
        )
        self._report(70)
        await asyncio.to_thread(
            _replace_tree, staged_data / RECEIPTS_SECTION, self._receipts.root
        )
        self._report(95)

        self._stage = RestoreStage.COMPLETE
        self._report(100)
        logger.info(
            "restore_complete",
            archive=str(archive),
            schema_version=manifest.schema_version if manifest else None,
        )
        return manifest

    def _wipe_live_data(self) -> None:
        for path in self._store.database_files():
            path.unlink(missing_ok=True)
        for directory in (self._preferences.directory, self._receipts.root):
            if directory.exists():
                shutil.rmtree(directory)

    def _materialize_database(self, staged_database_dir: Path) -> None:
        target_dir = self._store.path.parent
        target_dir.mkdir(parents=True, exist_ok=True)
        # Main file plus any -wal/-shm an older archive carried
        for source in sorted(staged_database_dir.iterdir()):
            if source.is_file() and source.name.startswith(self._store.path.name):
                shutil.copy2(source, target_dir / source.name)

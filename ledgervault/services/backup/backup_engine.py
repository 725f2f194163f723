"""
Backup Engine

DESIGN DECISION: A backup is only reported complete after the finished
archive passes the same validation a restore would run. An archive that
fails validation is deleted, never handed back.

STATE MACHINE:
    IDLE → CHECKPOINTING → PACKAGING_RECORDS → PACKAGING_PREFERENCES
         → PACKAGING_ATTACHMENTS → VALIDATING → COMPLETE
    (any stage) → FAILED

PROGRESS (monotonic, 0 to 100):
    records        0 → 20
    preferences   20 → 30
    attachments   30 → 99   (proportioned by file count)
    validated          100

The record store is checkpointed and copied through the SQLite online
backup API while the store lock is held, so the archive never contains a
half-written record. Lifecycle writes queue behind that copy; the rest of
the packaging runs without blocking them.
"""

import asyncio
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional
from uuid import UUID

import structlog

from ledgervault import __version__
from ledgervault.audit import AuditLogger, create_correlation_id
from ledgervault.config import Settings, get_settings
from ledgervault.models.audit import AuditEventBuilder
from ledgervault.models.backup import ArchiveManifest, BackupResult, BackupStage
from ledgervault.services.backup.archive import (
    DATABASE_SECTION,
    PREFERENCES_SECTION,
    RECEIPTS_SECTION,
    REQUIRED_SECTIONS,
    ArchiveWriter,
    validate_archive,
)
from ledgervault.services.backup.errors import ArchiveValidationError, BackupError
from ledgervault.services.backup.guard import OperationGuard
from ledgervault.services.backup.space import StorageSpaceChecker, path_size, total_size
from ledgervault.services.preferences import PreferenceStore
from ledgervault.services.receipts import ReceiptFileStore
from ledgervault.services.storage.interface import StorageError
from ledgervault.services.storage.schema import SCHEMA_VERSION
from ledgervault.services.storage.sqlite_store import SQLiteLedgerStore


logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[int, BackupStage], None]

RECORDS_DONE = 20
PREFERENCES_DONE = 30
ATTACHMENTS_DONE = 99
ARCHIVE_PREFIX = "ledgervault_backup_"


def backup_file_name(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"{ARCHIVE_PREFIX}{now:%Y%m%d_%H%M%S}.zip"


def _unused_path(path: Path) -> Path:
    """Two backups within the same second must not share a file."""
    candidate = path
    counter = 1
    while candidate.exists():
        candidate = path.with_name(f"{path.stem}_{counter}{path.suffix}")
        counter += 1
    return candidate


class BackupEngine:
    """Package the record store, preferences and receipts into one archive."""

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

        self._stage = BackupStage.IDLE
        self._progress = 0
        self._on_progress: Optional[ProgressCallback] = None

    @property
    def stage(self) -> BackupStage:
        return self._stage

    @property
    def progress(self) -> int:
        return self._progress

    def _enter(self, stage: BackupStage) -> None:
        self._stage = stage
        logger.info("backup_stage", stage=stage.value, progress=self._progress)

    def _report(self, percent: int) -> None:
        percent = max(self._progress, min(100, percent))
        if percent == self._progress:
            return
        self._progress = percent
        if self._on_progress:
            self._on_progress(percent, self._stage)

    async def create_backup(
        self,
        destination: Optional[Path] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BackupResult:
        """
        Write a validated backup archive.

        Args:
            destination: Directory for the archive (defaults to the backups directory)
            on_progress: Called with (percent, stage) whenever progress increases

        Raises:
            StorageSpaceError: Not enough free space; nothing was written
            BackupError: Any other failure, with the stage it happened in
        """
        correlation_id = create_correlation_id()
        directory = destination or self._storage_settings.backups_path

        async with self._guard.hold("backup"):
            archive_path = _unused_path(directory / backup_file_name())
            self._stage = BackupStage.IDLE
            self._progress = 0
            self._on_progress = on_progress
            if self._audit_logger:
                await self._audit_logger.log(AuditEventBuilder.backup_started(correlation_id))

            try:
                result = await self._run(archive_path, correlation_id)
            except BackupError as e:
                await self._fail(archive_path, e, correlation_id)
                raise
            except (OSError, sqlite3.Error, StorageError) as e:
                error = BackupError(f"Backup failed: {e}", stage=self._stage, safe_to_retry=True)
                await self._fail(archive_path, error, correlation_id)
                raise error from e
            finally:
                self._on_progress = None

        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.backup_completed(
                archive_path=str(result.archive_path),
                size_bytes=result.size_bytes,
                counts={
                    "transactions": result.manifest.transaction_count,
                    "receipts": result.manifest.receipt_count,
                },
                correlation_id=correlation_id,
            ))
        return result

    async def _fail(self, archive_path: Path, error: BackupError, correlation_id: UUID) -> None:
        self._stage = BackupStage.FAILED
        await asyncio.to_thread(archive_path.unlink, missing_ok=True)
        logger.error("backup_failed", stage=error.stage, error=str(error))
        if self._audit_logger:
            await self._audit_logger.log_backup_failed(
                stage=error.stage,
                safe_to_retry=error.safe_to_retry,
                error_message=str(error),
                correlation_id=correlation_id,
            )

    async def _run(self, archive_path: Path, correlation_id: UUID) -> BackupResult:
        payload = await asyncio.to_thread(
            total_size,
            [
                *self._store.database_files(),
                self._preferences.directory,
                self._receipts.root,
            ],
        )
        await asyncio.to_thread(
            self._space.ensure_available, archive_path.parent, payload, BackupStage.IDLE
        )

        # Checkpoint and snapshot
        self._enter(BackupStage.CHECKPOINTING)
        database_name = self._storage_settings.database_name
        snapshot = self._storage_settings.staging_path / "backup_snapshot" / database_name
        await self._store.snapshot_to(snapshot)
        counts = await self._store.table_counts()
        receipt_files = await self._receipts.list_files()

        writer = await asyncio.to_thread(ArchiveWriter, archive_path)
        try:
            for section in REQUIRED_SECTIONS:
                await asyncio.to_thread(writer.add_section, section)

            self._enter(BackupStage.PACKAGING_RECORDS)
            await asyncio.to_thread(writer.add_file, DATABASE_SECTION, database_name, snapshot)
            self._report(RECORDS_DONE)

            self._enter(BackupStage.PACKAGING_PREFERENCES)
            await asyncio.to_thread(writer.add_tree, PREFERENCES_SECTION, self._preferences.directory)
            self._report(PREFERENCES_DONE)

            self._enter(BackupStage.PACKAGING_ATTACHMENTS)
            span = ATTACHMENTS_DONE - PREFERENCES_DONE
            for index, relative in enumerate(receipt_files, start=1):
                await asyncio.to_thread(
                    writer.add_file, RECEIPTS_SECTION, relative, self._receipts.resolve(relative)
                )
                self._report(PREFERENCES_DONE + index * span // len(receipt_files))
            self._report(ATTACHMENTS_DONE)

            manifest = ArchiveManifest(
                app_version=__version__,
                schema_version=SCHEMA_VERSION,
                database_file=f"{DATABASE_SECTION}/{database_name}",
                profile_count=counts.get("profiles", 0),
                transaction_count=counts.get("transactions", 0),
                category_count=counts.get("categories", 0),
                receipt_count=len(receipt_files),
            )
            await asyncio.to_thread(writer.write_manifest, manifest)
        finally:
            await asyncio.to_thread(writer.close)
            await asyncio.to_thread(snapshot.unlink, missing_ok=True)

        self._enter(BackupStage.VALIDATING)
        try:
            await asyncio.to_thread(
                validate_archive,
                archive_path,
                self._backup_settings,
                database_name,
                SCHEMA_VERSION,
            )
        except ArchiveValidationError as e:
            raise BackupError(
                f"Backup failed validation: {e}",
                stage=BackupStage.VALIDATING,
                safe_to_retry=True,
            ) from e

        size = await asyncio.to_thread(path_size, archive_path)
        self._report(100)
        self._enter(BackupStage.COMPLETE)
        logger.info("backup_complete", path=str(archive_path), size_bytes=size)

        return BackupResult(
            archive_path=archive_path,
            size_bytes=size,
            manifest=manifest,
            correlation_id=correlation_id,
        )

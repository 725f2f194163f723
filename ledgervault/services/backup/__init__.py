"""Backup, restore and the guard that keeps them apart."""

from ledgervault.services.backup.archive import (
    MANIFEST_NAME,
    REQUIRED_SECTIONS,
    ArchiveWriter,
    extract_archive,
    read_manifest,
    validate_archive,
)
from ledgervault.services.backup.backup_engine import BackupEngine, backup_file_name
from ledgervault.services.backup.errors import (
    ArchiveValidationError,
    BackupError,
    CatastrophicRestoreError,
    StorageSpaceError,
)
from ledgervault.services.backup.guard import OperationGuard
from ledgervault.services.backup.restore_engine import RestoreEngine
from ledgervault.services.backup.space import StorageSpaceChecker

__all__ = [
    "MANIFEST_NAME",
    "REQUIRED_SECTIONS",
    "ArchiveValidationError",
    "ArchiveWriter",
    "BackupEngine",
    "BackupError",
    "CatastrophicRestoreError",
    "OperationGuard",
    "RestoreEngine",
    "StorageSpaceChecker",
    "StorageSpaceError",
    "backup_file_name",
    "extract_archive",
    "read_manifest",
    "validate_archive",
]

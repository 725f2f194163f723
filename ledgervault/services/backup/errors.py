"""Backup and restore exceptions."""

from enum import Enum
from typing import Union

from ledgervault.models.backup import BackupStage, RestoreStage


class BackupError(Exception):
    """
    Base exception for backup and restore failures.

    Carries the stage that failed and whether the user can simply try
    again (live data untouched) or must treat the data as suspect.
    """

    def __init__(
        self,
        message: str,
        stage: Union[BackupStage, RestoreStage, str] = BackupStage.FAILED,
        safe_to_retry: bool = True,
    ):
        self.stage = stage.value if isinstance(stage, Enum) else stage
        self.safe_to_retry = safe_to_retry
        super().__init__(message)


class StorageSpaceError(BackupError):
    """Not enough free space to write the archive or stage a restore."""

    def __init__(self, required_bytes: int, available_bytes: int, stage: Union[BackupStage, RestoreStage, str]):
        self.required_bytes = required_bytes
        self.available_bytes = available_bytes
        super().__init__(
            f"Not enough free space: {required_bytes} bytes needed, {available_bytes} available",
            stage=stage,
            safe_to_retry=True,
        )


class ArchiveValidationError(BackupError):
    """The archive is unreadable, incomplete or from a newer build."""

    def __init__(self, message: str, stage: Union[BackupStage, RestoreStage, str] = RestoreStage.VALIDATING):
        super().__init__(message, stage=stage, safe_to_retry=True)


class CatastrophicRestoreError(BackupError):
    """
    Restore failed after live data was wiped. The data directory may be
    inconsistent; retry the restore or reinstall.
    """

    def __init__(self, message: str, stage: Union[RestoreStage, str]):
        super().__init__(message, stage=stage, safe_to_retry=False)

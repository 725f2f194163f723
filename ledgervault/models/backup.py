"""
Backup and Restore Models

The archive manifest, the stage enums that drive the backup and restore
state machines, and the results handed back to the caller.
"""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from ledgervault.models.ledger import utc_now


ARCHIVE_FORMAT_VERSION = 1


class BackupStage(str, Enum):
    """Backup state machine. Stages run strictly in this order."""
    IDLE = "idle"
    CHECKPOINTING = "checkpointing"
    PACKAGING_RECORDS = "packaging_records"
    PACKAGING_PREFERENCES = "packaging_preferences"
    PACKAGING_ATTACHMENTS = "packaging_attachments"
    VALIDATING = "validating"
    COMPLETE = "complete"
    FAILED = "failed"


class RestoreStage(str, Enum):
    """
    Restore state machine.

    STAGING and VALIDATING never touch live data.
    WIPING and MATERIALIZING do, and a failure there is not safely retryable.
    """
    IDLE = "idle"
    STAGING = "staging"
    VALIDATING = "validating"
    WIPING = "wiping"
    MATERIALIZING = "materializing"
    COMPLETE = "complete"
    FAILED = "failed"


class ArchiveManifest(BaseModel):
    """Written as manifest.json at the archive root."""

    format_version: int = ARCHIVE_FORMAT_VERSION
    app_version: str
    schema_version: int = Field(..., ge=1)
    created_at: datetime = Field(default_factory=utc_now)
    database_file: str
    profile_count: int = 0
    transaction_count: int = 0
    category_count: int = 0
    receipt_count: int = 0


class BackupResult(BaseModel):
    """A finished, validated backup archive."""

    archive_path: Path
    size_bytes: int
    manifest: ArchiveManifest
    correlation_id: UUID


class RestoreResult(BaseModel):
    """
    Outcome of a successful restore.

    restart_required is always True: the record store connection was torn
    down and must not be reopened by the running process.
    """

    archive_path: Path
    manifest: Optional[ArchiveManifest] = Field(
        default=None,
        description="Manifest read from the archive; absent in archives without one"
    )
    restart_required: bool = True
    correlation_id: UUID

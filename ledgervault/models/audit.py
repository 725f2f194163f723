"""
Audit Models for LedgerVault

Every significant action on the ledger is logged for audit purposes.
This provides:
1. Traceability of every create/update/delete on financial records
2. Debugging information when a backup or restore goes wrong
3. A record of which stage failed, so "safe to retry" can be told
   apart from "data now at risk"

DESIGN DECISION: Audit events are append-only log records. They complement
the per-transaction edit history stored in the record store; they do not
replace it.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Transaction lifecycle
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    TRANSACTION_RESTORED = "transaction_restored"
    DRAFT_PROMOTED = "draft_promoted"
    DUPLICATE_DETECTED = "duplicate_detected"

    # Categories and profiles
    CATEGORY_CREATED = "category_created"
    CATEGORY_DELETED = "category_deleted"
    CATEGORY_MOVED = "category_moved"
    PROFILE_CREATED = "profile_created"
    PROFILE_DELETED = "profile_deleted"
    DATA_RESET = "data_reset"

    # Retention
    RETENTION_SWEEP_COMPLETED = "retention_sweep_completed"
    RETENTION_SWEEP_SKIPPED = "retention_sweep_skipped"

    # Backup / restore
    BACKUP_STARTED = "backup_started"
    BACKUP_COMPLETED = "backup_completed"
    BACKUP_FAILED = "backup_failed"
    RESTORE_STARTED = "restore_started"
    RESTORE_COMPLETED = "restore_completed"
    RESTORE_FAILED = "restore_failed"

    # Schema
    MIGRATION_APPLIED = "migration_applied"
    MIGRATION_FAILED = "migration_failed"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'category', 'archive')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )
    profile_id: Optional[str] = Field(
        default=None,
        description="Profile the entity belongs to, if any"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., every event of one restore)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "profile_id": self.profile_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_created(txn_id, profile_id, "42.50")
        event = AuditEventBuilder.backup_failed("packaging_attachments", True, msg, cid)
    """

    @staticmethod
    def transaction_created(
        transaction_id: str,
        profile_id: str,
        amount: str,
        is_draft: bool,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            entity_type="transaction",
            entity_id=transaction_id,
            profile_id=profile_id,
            description=f"Transaction created for {amount}" + (" (draft)" if is_draft else ""),
            details={"amount": amount, "is_draft": is_draft},
        )

    @staticmethod
    def transaction_updated(
        transaction_id: str,
        profile_id: str,
        fields: list[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_UPDATED,
            entity_type="transaction",
            entity_id=transaction_id,
            profile_id=profile_id,
            description=f"Transaction updated: {', '.join(fields)}",
            details={"fields": fields},
        )

    @staticmethod
    def transaction_deleted(transaction_id: str, profile_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            entity_type="transaction",
            entity_id=transaction_id,
            profile_id=profile_id,
            description="Transaction moved to trash",
        )

    @staticmethod
    def transaction_restored(transaction_id: str, profile_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_RESTORED,
            entity_type="transaction",
            entity_id=transaction_id,
            profile_id=profile_id,
            description="Transaction restored from trash",
        )

    @staticmethod
    def draft_promoted(
        transaction_id: str,
        profile_id: str,
        attachment_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DRAFT_PROMOTED,
            entity_type="transaction",
            entity_id=transaction_id,
            profile_id=profile_id,
            description=f"Draft promoted with {attachment_count} receipt(s)",
            details={"attachment_count": attachment_count},
        )

    @staticmethod
    def duplicate_detected(
        candidate_id: str,
        profile_id: str,
        amount: str,
        category: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DUPLICATE_DETECTED,
            severity=AuditSeverity.WARNING,
            entity_type="transaction",
            entity_id=candidate_id,
            profile_id=profile_id,
            description=f"Possible duplicate of {amount} in {category}",
            details={"amount": amount, "category": category},
        )

    @staticmethod
    def category_created(category_id: str, profile_id: str, name: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_CREATED,
            entity_type="category",
            entity_id=category_id,
            profile_id=profile_id,
            description=f"Category created: {name}",
        )

    @staticmethod
    def category_deleted(category_id: str, profile_id: str, name: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_DELETED,
            entity_type="category",
            entity_id=category_id,
            profile_id=profile_id,
            description=f"Category deleted: {name}",
        )

    @staticmethod
    def category_moved(
        profile_id: str,
        from_name: str,
        to_name: str,
        moved: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_MOVED,
            entity_type="category",
            profile_id=profile_id,
            description=f"Moved {moved} transaction(s) from '{from_name}' to '{to_name}'",
            details={"from": from_name, "to": to_name, "moved": moved},
        )

    @staticmethod
    def profile_created(profile_id: str, name: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROFILE_CREATED,
            entity_type="profile",
            entity_id=profile_id,
            profile_id=profile_id,
            description=f"Profile created: {name}",
        )

    @staticmethod
    def profile_deleted(profile_id: str, name: str, removed: dict[str, int]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROFILE_DELETED,
            severity=AuditSeverity.WARNING,
            entity_type="profile",
            entity_id=profile_id,
            profile_id=profile_id,
            description=f"Profile deleted with all its data: {name}",
            details=removed,
        )

    @staticmethod
    def data_reset() -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DATA_RESET,
            severity=AuditSeverity.WARNING,
            description="All application data was reset",
        )

    @staticmethod
    def retention_sweep_completed(
        purged: int,
        expired_active: int,
        profiles: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RETENTION_SWEEP_COMPLETED,
            description=f"Retention sweep purged {purged} transaction(s)",
            details={
                "purged": purged,
                "expired_active": expired_active,
                "profiles": profiles,
            },
        )

    @staticmethod
    def retention_sweep_skipped(held_by: Optional[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RETENTION_SWEEP_SKIPPED,
            description=f"Retention sweep skipped while {held_by or 'another operation'} is running",
            details={"held_by": held_by},
        )

    @staticmethod
    def backup_started(correlation_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKUP_STARTED,
            entity_type="archive",
            correlation_id=correlation_id,
            description="Backup started",
        )

    @staticmethod
    def backup_completed(
        archive_path: str,
        size_bytes: int,
        counts: dict[str, int],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKUP_COMPLETED,
            entity_type="archive",
            entity_id=archive_path,
            correlation_id=correlation_id,
            description=f"Backup written ({size_bytes} bytes)",
            details={"size_bytes": size_bytes, **counts},
        )

    @staticmethod
    def backup_failed(
        stage: str,
        safe_to_retry: bool,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKUP_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="archive",
            correlation_id=correlation_id,
            description=f"Backup failed during {stage}",
            details={"stage": stage, "safe_to_retry": safe_to_retry},
            error_message=error_message,
        )

    @staticmethod
    def restore_started(archive_path: str, correlation_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RESTORE_STARTED,
            entity_type="archive",
            entity_id=archive_path,
            correlation_id=correlation_id,
            description="Restore started",
        )

    @staticmethod
    def restore_completed(archive_path: str, correlation_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RESTORE_COMPLETED,
            entity_type="archive",
            entity_id=archive_path,
            correlation_id=correlation_id,
            description="Restore completed; restart required",
        )

    @staticmethod
    def restore_failed(
        stage: str,
        safe_to_retry: bool,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RESTORE_FAILED,
            severity=AuditSeverity.ERROR if safe_to_retry else AuditSeverity.CRITICAL,
            entity_type="archive",
            correlation_id=correlation_id,
            description=f"Restore failed during {stage}",
            details={"stage": stage, "safe_to_retry": safe_to_retry},
            error_message=error_message,
        )

    @staticmethod
    def migration_applied(from_version: int, to_version: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MIGRATION_APPLIED,
            entity_type="schema",
            description=f"Schema migrated from {from_version} to {to_version}",
            details={"from_version": from_version, "to_version": to_version},
        )

    @staticmethod
    def migration_failed(version: int, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MIGRATION_FAILED,
            severity=AuditSeverity.CRITICAL,
            entity_type="schema",
            description=f"Schema migration failed at version {version}",
            details={"version": version},
            error_message=error_message,
        )

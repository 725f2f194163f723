"""
Data Models Package

This package contains all Pydantic models used in LedgerVault.
All data flowing through the record store, the audit log and the
backup engine must conform to these schemas.
"""

from ledgervault.models.ledger import (
    DEFAULT_PROFILE_ID,
    Category,
    CategoryTotal,
    EditHistoryEntry,
    Profile,
    ProfileContext,
    ReceiptScanResult,
    RetentionReport,
    SearchHistoryEntry,
    Transaction,
    TransactionFilter,
    TransactionPage,
    TransactionType,
    ValidationIssue,
    new_id,
    utc_now,
)
from ledgervault.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from ledgervault.models.backup import (
    ARCHIVE_FORMAT_VERSION,
    ArchiveManifest,
    BackupResult,
    BackupStage,
    RestoreResult,
    RestoreStage,
)

__all__ = [
    # Ledger models
    "DEFAULT_PROFILE_ID",
    "Category",
    "CategoryTotal",
    "EditHistoryEntry",
    "Profile",
    "ProfileContext",
    "ReceiptScanResult",
    "RetentionReport",
    "SearchHistoryEntry",
    "Transaction",
    "TransactionFilter",
    "TransactionPage",
    "TransactionType",
    "ValidationIssue",
    "new_id",
    "utc_now",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    # Backup models
    "ARCHIVE_FORMAT_VERSION",
    "ArchiveManifest",
    "BackupResult",
    "BackupStage",
    "RestoreResult",
    "RestoreStage",
]

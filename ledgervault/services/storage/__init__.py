"""Record storage package."""

from ledgervault.services.storage.interface import (
    CategoryStorageInterface,
    ConstraintError,
    NotFoundError,
    ProfileStorageInterface,
    SearchHistoryStorageInterface,
    StorageError,
    StoreClosedError,
    TransactionStorageInterface,
)
from ledgervault.services.storage.migrations import MigrationError, migrate
from ledgervault.services.storage.notifier import ChangeNotifier, Subscription
from ledgervault.services.storage.schema import SCHEMA_VERSION, SQLITE_HEADER
from ledgervault.services.storage.sqlite_store import (
    CheckpointBusyError,
    SQLiteLedgerStore,
    format_amount,
    integrity_check,
)

__all__ = [
    "CategoryStorageInterface",
    "ChangeNotifier",
    "CheckpointBusyError",
    "ConstraintError",
    "MigrationError",
    "NotFoundError",
    "ProfileStorageInterface",
    "SCHEMA_VERSION",
    "SQLITE_HEADER",
    "SQLiteLedgerStore",
    "SearchHistoryStorageInterface",
    "StorageError",
    "StoreClosedError",
    "Subscription",
    "TransactionStorageInterface",
    "format_amount",
    "integrity_check",
    "migrate",
]

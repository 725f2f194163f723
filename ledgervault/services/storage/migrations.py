"""
Schema Migration Chain

DESIGN DECISION: The record store evolves in place, on devices that cannot
be rolled back, without a separate migration tool. Each step is a plain
function over an open connection that:
1. Runs inside its own BEGIN IMMEDIATE / COMMIT
2. Bumps PRAGMA user_version inside that same transaction
3. Leaves the store fully indexed when it commits

So a process killed between two steps always reopens at a valid version.

Column-shape changes use the rebuild pattern: create <table>_new, copy
with transform, drop the original, rename, then (re)create indices.
Indices are created after the rename; creating them on <table>_new would
clash with the names still held by the original table.

A failing step rolls back and raises MigrationError. The application must
not start against a store it could not fully migrate.

Historical steps below are frozen. Never edit one that has shipped; add a
new step and bump SCHEMA_VERSION in schema.py instead.
"""

import sqlite3
from datetime import datetime, timezone
from typing import Callable, NamedTuple

import structlog

from ledgervault.models.ledger import DEFAULT_PROFILE_ID
from ledgervault.services.storage.interface import StorageError
from ledgervault.services.storage.schema import (
    LATEST_SCHEMA,
    MIN_SUPPORTED_VERSION,
    SCHEMA_VERSION,
)


logger = structlog.get_logger(__name__)


class MigrationError(StorageError):
    """A schema step failed; the store stays at from_version."""

    def __init__(self, from_version: int, to_version: int, message: str):
        self.from_version = from_version
        self.to_version = to_version
        super().__init__(
            f"Schema migration {from_version} -> {to_version} failed: {message}"
        )


class Migration(NamedTuple):
    start: int
    end: int
    description: str
    apply: Callable[[sqlite3.Connection], None]


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def _rebuild_table(
    conn: sqlite3.Connection,
    table: str,
    create_new: str,
    columns: list[str],
    select_exprs: list[str],
    indices: list[str] = (),
) -> None:
    """Create-copy-drop-rename, then recreate indices on the renamed table."""
    conn.execute(create_new)
    conn.execute(
        f"INSERT INTO {table}_new ({', '.join(columns)}) "
        f"SELECT {', '.join(select_exprs)} FROM {table}"
    )
    conn.execute(f"DROP TABLE {table}")
    conn.execute(f"ALTER TABLE {table}_new RENAME TO {table}")
    for statement in indices:
        conn.execute(statement)


# Transaction indices as they existed between versions 5 and 12.
_LEGACY_TRANSACTION_INDICES = [
    "CREATE INDEX IF NOT EXISTS index_transactions_date ON transactions (date)",
    "CREATE INDEX IF NOT EXISTS index_transactions_type_category ON transactions (type, category)",
    "CREATE INDEX IF NOT EXISTS index_transactions_is_deleted_deleted_at ON transactions (is_deleted, deleted_at)",
    "CREATE INDEX IF NOT EXISTS index_transactions_is_draft ON transactions (is_draft)",
]

_LIFECYCLE_COLUMNS = [
    "receipt_paths", "is_draft", "is_deleted", "deleted_at",
    "created_at", "updated_at", "edit_history",
]


# -----------------------------------------------------------------------------
# Steps
# -----------------------------------------------------------------------------

def _migrate_3_4(conn: sqlite3.Connection) -> None:
    """Multi-currency: amount becomes amount_original plus a GBP amount."""
    columns = [
        "id", "date", "type", "category", "description", "notes",
        "amount_original", "currency", "amount_gbp", "exchange_rate",
        "exchange_rate_date", "is_manual_rate", "recurrence_id",
        *_LIFECYCLE_COLUMNS,
    ]
    select_exprs = [
        "id", "date", "type", "category", "description", "notes",
        "amount", "'GBP'", "amount", "'1'",
        "NULL", "0", "recurrence_id",
        *_LIFECYCLE_COLUMNS,
    ]
    _rebuild_table(
        conn,
        "transactions",
        """
        CREATE TABLE transactions_new (
            id TEXT NOT NULL PRIMARY KEY,
            date TEXT NOT NULL,
            type TEXT NOT NULL,
            category TEXT NOT NULL,
            description TEXT,
            notes TEXT,
            amount_original TEXT NOT NULL,
            currency TEXT NOT NULL DEFAULT 'GBP',
            amount_gbp TEXT NOT NULL,
            exchange_rate TEXT NOT NULL DEFAULT '1',
            exchange_rate_date TEXT,
            is_manual_rate INTEGER NOT NULL DEFAULT 0,
            recurrence_id TEXT,
            receipt_paths TEXT,
            is_draft INTEGER NOT NULL DEFAULT 0,
            is_deleted INTEGER NOT NULL DEFAULT 0,
            deleted_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            edit_history TEXT
        )
        """,
        columns,
        select_exprs,
    )


def _migrate_4_5(conn: sqlite3.Connection) -> None:
    for statement in _LEGACY_TRANSACTION_INDICES:
        conn.execute(statement)


def _migrate_5_6(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS search_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT NOT NULL,
            query TEXT NOT NULL,
            timestamp TEXT NOT NULL
        )
        """
    )
    conn.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS index_search_history_query ON search_history (query)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS index_search_history_timestamp ON search_history (timestamp)"
    )


def _migrate_6_7(conn: sqlite3.Connection) -> None:
    conn.execute("DROP TABLE IF EXISTS sync_queue")


def _migrate_7_8(conn: sqlite3.Connection) -> None:
    """Recurring transactions were removed."""
    conn.execute("DROP TABLE IF EXISTS recurrences")
    columns = [
        "id", "date", "type", "category", "description", "notes",
        "amount_original", "currency", "amount_gbp", "exchange_rate",
        "exchange_rate_date", "is_manual_rate",
        *_LIFECYCLE_COLUMNS,
    ]
    _rebuild_table(
        conn,
        "transactions",
        """
        CREATE TABLE transactions_new (
            id TEXT NOT NULL PRIMARY KEY,
            date TEXT NOT NULL,
            type TEXT NOT NULL,
            category TEXT NOT NULL,
            description TEXT,
            notes TEXT,
            amount_original TEXT NOT NULL,
            currency TEXT NOT NULL DEFAULT 'GBP',
            amount_gbp TEXT NOT NULL,
            exchange_rate TEXT NOT NULL DEFAULT '1',
            exchange_rate_date TEXT,
            is_manual_rate INTEGER NOT NULL DEFAULT 0,
            receipt_paths TEXT,
            is_draft INTEGER NOT NULL DEFAULT 0,
            is_deleted INTEGER NOT NULL DEFAULT 0,
            deleted_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            edit_history TEXT
        )
        """,
        columns,
        columns,
        _LEGACY_TRANSACTION_INDICES,
    )


def _migrate_8_9(conn: sqlite3.Connection) -> None:
    """Tax form references stop being UK specific."""
    columns = [
        "id", "name", "type", "icon", "color",
        "tax_form_reference", "tax_form_description", "country_code",
        "is_custom", "is_archived", "display_order", "created_at", "updated_at",
    ]
    select_exprs = [
        "id", "name", "type", "icon", "color",
        "hmrc_box", "hmrc_description", "'GB'",
        "is_custom", "is_archived", "display_order", "created_at", "updated_at",
    ]
    _rebuild_table(
        conn,
        "categories",
        """
        CREATE TABLE categories_new (
            id TEXT NOT NULL PRIMARY KEY,
            name TEXT NOT NULL,
            type TEXT NOT NULL,
            icon TEXT,
            color TEXT,
            tax_form_reference TEXT,
            tax_form_description TEXT,
            country_code TEXT,
            is_custom INTEGER NOT NULL DEFAULT 0,
            is_archived INTEGER NOT NULL DEFAULT 0,
            display_order INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """,
        columns,
        select_exprs,
    )


def _migrate_9_10(conn: sqlite3.Connection) -> None:
    """Base currency becomes configurable: amount_gbp -> amount_in_base_currency."""
    columns = [
        "id", "date", "type", "category", "description", "notes",
        "amount_original", "currency", "amount_in_base_currency", "exchange_rate",
        "exchange_rate_date", "is_manual_rate",
        *_LIFECYCLE_COLUMNS,
    ]
    select_exprs = [
        "id", "date", "type", "category", "description", "notes",
        "amount_original", "currency", "amount_gbp", "exchange_rate",
        "exchange_rate_date", "is_manual_rate",
        *_LIFECYCLE_COLUMNS,
    ]
    _rebuild_table(
        conn,
        "transactions",
        """
        CREATE TABLE transactions_new (
            id TEXT NOT NULL PRIMARY KEY,
            date TEXT NOT NULL,
            type TEXT NOT NULL,
            category TEXT NOT NULL,
            description TEXT,
            notes TEXT,
            amount_original TEXT NOT NULL,
            currency TEXT NOT NULL DEFAULT 'GBP',
            amount_in_base_currency TEXT NOT NULL,
            exchange_rate TEXT NOT NULL DEFAULT '1',
            exchange_rate_date TEXT,
            is_manual_rate INTEGER NOT NULL DEFAULT 0,
            receipt_paths TEXT,
            is_draft INTEGER NOT NULL DEFAULT 0,
            is_deleted INTEGER NOT NULL DEFAULT 0,
            deleted_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            edit_history TEXT
        )
        """,
        columns,
        select_exprs,
        _LEGACY_TRANSACTION_INDICES,
    )


def _migrate_10_11(conn: sqlite3.Connection) -> None:
    """Exchange rates are stored against a base currency instead of GBP."""
    _rebuild_table(
        conn,
        "currency_rates",
        """
        CREATE TABLE currency_rates_new (
            id INTEGER PRIMARY KEY AUTOINCREMENT NOT NULL,
            currency TEXT NOT NULL,
            base_currency TEXT NOT NULL DEFAULT 'GBP',
            rate TEXT NOT NULL,
            date TEXT NOT NULL,
            source TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """,
        ["id", "currency", "base_currency", "rate", "date", "source", "updated_at"],
        ["id", "currency", "'GBP'", "rate_to_gbp", "date", "source", "updated_at"],
        [
            "CREATE UNIQUE INDEX IF NOT EXISTS index_currency_rates_base_currency_currency_date "
            "ON currency_rates (base_currency, currency, date)",
        ],
    )


def _migrate_11_12(conn: sqlite3.Connection) -> None:
    """Multi-currency was dropped: one amount column in the base currency."""
    conn.execute("DROP TABLE IF EXISTS currency_rates")
    columns = [
        "id", "date", "type", "category", "description", "notes", "amount",
        *_LIFECYCLE_COLUMNS,
    ]
    select_exprs = [
        "id", "date", "type", "category", "description", "notes",
        "amount_in_base_currency",
        *_LIFECYCLE_COLUMNS,
    ]
    _rebuild_table(
        conn,
        "transactions",
        """
        CREATE TABLE transactions_new (
            id TEXT NOT NULL PRIMARY KEY,
            date TEXT NOT NULL,
            type TEXT NOT NULL,
            category TEXT NOT NULL,
            description TEXT,
            notes TEXT,
            amount TEXT NOT NULL,
            receipt_paths TEXT,
            is_draft INTEGER NOT NULL DEFAULT 0,
            is_deleted INTEGER NOT NULL DEFAULT 0,
            deleted_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            edit_history TEXT
        )
        """,
        columns,
        select_exprs,
        _LEGACY_TRANSACTION_INDICES,
    )


def _migrate_12_13(conn: sqlite3.Connection) -> None:
    """
    Profiles. Every existing row moves into the default Business profile.
    """
    now = datetime.now(timezone.utc).isoformat(timespec="microseconds")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS profiles (
            id TEXT NOT NULL PRIMARY KEY,
            name TEXT NOT NULL,
            icon TEXT NOT NULL,
            color TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        "INSERT OR IGNORE INTO profiles (id, name, icon, color, created_at, updated_at) "
        "VALUES (?, 'Business', 'business', '#1976D2', ?, ?)",
        (DEFAULT_PROFILE_ID, now, now),
    )
    default_profile = f"'{DEFAULT_PROFILE_ID}'"

    transaction_columns = [
        "id", "date", "type", "category", "description", "notes", "amount",
        *_LIFECYCLE_COLUMNS,
    ]
    _rebuild_table(
        conn,
        "transactions",
        """
        CREATE TABLE transactions_new (
            id TEXT NOT NULL PRIMARY KEY,
            profile_id TEXT NOT NULL,
            date TEXT NOT NULL,
            type TEXT NOT NULL,
            category TEXT NOT NULL,
            description TEXT,
            notes TEXT,
            amount TEXT NOT NULL,
            receipt_paths TEXT,
            is_draft INTEGER NOT NULL DEFAULT 0,
            is_deleted INTEGER NOT NULL DEFAULT 0,
            deleted_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            edit_history TEXT
        )
        """,
        ["profile_id", *transaction_columns],
        [default_profile, *transaction_columns],
        [
            "CREATE INDEX IF NOT EXISTS index_transactions_profile_id ON transactions (profile_id)",
            *_LEGACY_TRANSACTION_INDICES,
        ],
    )

    category_columns = [
        "id", "name", "type", "icon", "color",
        "tax_form_reference", "tax_form_description", "country_code",
        "is_custom", "is_archived", "display_order", "created_at", "updated_at",
    ]
    _rebuild_table(
        conn,
        "categories",
        """
        CREATE TABLE categories_new (
            id TEXT NOT NULL PRIMARY KEY,
            profile_id TEXT NOT NULL,
            name TEXT NOT NULL,
            type TEXT NOT NULL,
            icon TEXT,
            color TEXT,
            tax_form_reference TEXT,
            tax_form_description TEXT,
            country_code TEXT,
            is_custom INTEGER NOT NULL DEFAULT 0,
            is_archived INTEGER NOT NULL DEFAULT 0,
            display_order INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """,
        ["profile_id", *category_columns],
        [default_profile, *category_columns],
    )

    _rebuild_table(
        conn,
        "search_history",
        """
        CREATE TABLE search_history_new (
            id INTEGER PRIMARY KEY AUTOINCREMENT NOT NULL,
            profile_id TEXT NOT NULL,
            query TEXT NOT NULL,
            timestamp TEXT NOT NULL
        )
        """,
        ["id", "profile_id", "query", "timestamp"],
        ["id", default_profile, "query", "timestamp"],
        [
            "CREATE INDEX IF NOT EXISTS index_search_history_profile_id ON search_history (profile_id)",
            "CREATE UNIQUE INDEX IF NOT EXISTS index_search_history_profile_id_query "
            "ON search_history (profile_id, query)",
            "CREATE INDEX IF NOT EXISTS index_search_history_timestamp ON search_history (timestamp)",
        ],
    )


def _migrate_13_14(conn: sqlite3.Connection) -> None:
    conn.execute(
        "ALTER TABLE transactions ADD COLUMN is_demo_data INTEGER NOT NULL DEFAULT 0"
    )


def _migrate_14_15(conn: sqlite3.Connection) -> None:
    """
    Collapse duplicated categories, then enforce uniqueness.

    Survivor per (profile_id, name, type): earliest created_at, then lowest id.
    """
    conn.execute(
        """
        DELETE FROM categories
        WHERE id NOT IN (
            SELECT id FROM (
                SELECT id, ROW_NUMBER() OVER (
                    PARTITION BY profile_id, name, type
                    ORDER BY created_at ASC, id ASC
                ) AS survivor_rank
                FROM categories
            )
            WHERE survivor_rank = 1
        )
        """
    )
    conn.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS index_categories_profile_id_name_type "
        "ON categories (profile_id, name, type)"
    )


def _migrate_15_16(conn: sqlite3.Connection) -> None:
    """Covers the per-category count used before a category delete."""
    conn.execute(
        "CREATE INDEX IF NOT EXISTS index_transactions_profile_id_is_deleted_category "
        "ON transactions (profile_id, is_deleted, category)"
    )


MIGRATIONS: list[Migration] = [
    Migration(3, 4, "multi-currency transaction amounts", _migrate_3_4),
    Migration(4, 5, "transaction indices", _migrate_4_5),
    Migration(5, 6, "search history", _migrate_5_6),
    Migration(6, 7, "drop sync queue", _migrate_6_7),
    Migration(7, 8, "drop recurrences", _migrate_7_8),
    Migration(8, 9, "generic tax form references", _migrate_8_9),
    Migration(9, 10, "base currency amounts", _migrate_9_10),
    Migration(10, 11, "base currency exchange rates", _migrate_10_11),
    Migration(11, 12, "single amount column", _migrate_11_12),
    Migration(12, 13, "profiles", _migrate_12_13),
    Migration(13, 14, "demo data flag", _migrate_13_14),
    Migration(14, 15, "unique categories", _migrate_14_15),
    Migration(15, 16, "category lookup index", _migrate_15_16),
]


# -----------------------------------------------------------------------------
# Runner
# -----------------------------------------------------------------------------

def get_user_version(conn: sqlite3.Connection) -> int:
    return conn.execute("PRAGMA user_version").fetchone()[0]


def _user_tables(conn: sqlite3.Connection) -> list[str]:
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%'"
    ).fetchall()
    return [row[0] for row in rows]


def _run_in_transaction(
    conn: sqlite3.Connection,
    statements: Callable[[sqlite3.Connection], None],
    target_version: int,
) -> None:
    """
    Run one step atomically. The connection must be in autocommit mode
    (isolation_level=None) so BEGIN/COMMIT here are the only transaction
    boundaries.
    """
    conn.execute("BEGIN IMMEDIATE")
    try:
        statements(conn)
        conn.execute(f"PRAGMA user_version = {int(target_version)}")
        conn.execute("COMMIT")
    except BaseException:
        conn.execute("ROLLBACK")
        raise


def create_latest_schema(conn: sqlite3.Connection) -> None:
    """Create an empty store directly at SCHEMA_VERSION."""

    def create(c: sqlite3.Connection) -> None:
        for statement in LATEST_SCHEMA:
            c.execute(statement)

    _run_in_transaction(conn, create, SCHEMA_VERSION)


def migrate(
    conn: sqlite3.Connection,
    target_version: int = SCHEMA_VERSION,
) -> list[tuple[int, int]]:
    """
    Bring the store to target_version.

    Returns:
        The (from, to) pairs applied, empty if nothing ran

    Raises:
        MigrationError: If the store cannot be brought to target_version
    """
    version = get_user_version(conn)

    if version == 0:
        if _user_tables(conn):
            raise MigrationError(0, target_version, "store has tables but no schema version")
        create_latest_schema(conn)
        logger.info("schema_created", version=SCHEMA_VERSION)
        return []

    if version > target_version:
        raise MigrationError(
            version, target_version,
            "store was written by a newer version of the application"
        )
    if version < MIN_SUPPORTED_VERSION:
        raise MigrationError(
            version, target_version,
            f"stores older than version {MIN_SUPPORTED_VERSION} cannot be upgraded"
        )

    steps = {migration.start: migration for migration in MIGRATIONS}
    applied = []

    while version < target_version:
        step = steps.get(version)
        if step is None:
            raise MigrationError(version, target_version, "no migration path")
        try:
            _run_in_transaction(conn, step.apply, step.end)
        except sqlite3.Error as e:
            logger.error(
                "migration_failed",
                from_version=step.start,
                to_version=step.end,
                error=str(e),
            )
            raise MigrationError(step.start, step.end, str(e)) from e

        logger.info(
            "migration_applied",
            from_version=step.start,
            to_version=step.end,
            description=step.description,
        )
        applied.append((step.start, step.end))
        version = step.end

    return applied

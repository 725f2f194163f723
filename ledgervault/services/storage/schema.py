"""
Record Store Schema

The DDL a fresh store is created with. It must stay equivalent to what the
migration chain produces from any older version: same tables, same column
order and types, same named indices. tests/test_migrations.py compares the
two through PRAGMA introspection.

All statements are plain lists so they can run inside an explicit
transaction (sqlite3's executescript would commit first).
"""

SCHEMA_VERSION = 16

# Oldest store version the migration chain can upgrade.
MIN_SUPPORTED_VERSION = 3

SQLITE_HEADER = b"SQLite format 3\x00"


# -----------------------------------------------------------------------------
# Latest schema
# -----------------------------------------------------------------------------

TRANSACTIONS_TABLE = """
CREATE TABLE IF NOT EXISTS transactions (
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
    edit_history TEXT,
    is_demo_data INTEGER NOT NULL DEFAULT 0
)
"""

TRANSACTIONS_INDICES = [
    "CREATE INDEX IF NOT EXISTS index_transactions_profile_id ON transactions (profile_id)",
    "CREATE INDEX IF NOT EXISTS index_transactions_date ON transactions (date)",
    "CREATE INDEX IF NOT EXISTS index_transactions_type_category ON transactions (type, category)",
    "CREATE INDEX IF NOT EXISTS index_transactions_is_deleted_deleted_at ON transactions (is_deleted, deleted_at)",
    "CREATE INDEX IF NOT EXISTS index_transactions_is_draft ON transactions (is_draft)",
]

TRANSACTIONS_CATEGORY_INDEX = (
    "CREATE INDEX IF NOT EXISTS index_transactions_profile_id_is_deleted_category "
    "ON transactions (profile_id, is_deleted, category)"
)

CATEGORIES_TABLE = """
CREATE TABLE IF NOT EXISTS categories (
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
"""

CATEGORIES_UNIQUE_INDEX = (
    "CREATE UNIQUE INDEX IF NOT EXISTS index_categories_profile_id_name_type "
    "ON categories (profile_id, name, type)"
)

PROFILES_TABLE = """
CREATE TABLE IF NOT EXISTS profiles (
    id TEXT NOT NULL PRIMARY KEY,
    name TEXT NOT NULL,
    icon TEXT NOT NULL,
    color TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""

SEARCH_HISTORY_TABLE = """
CREATE TABLE IF NOT EXISTS search_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT NOT NULL,
    profile_id TEXT NOT NULL,
    query TEXT NOT NULL,
    timestamp TEXT NOT NULL
)
"""

SEARCH_HISTORY_INDICES = [
    "CREATE INDEX IF NOT EXISTS index_search_history_profile_id ON search_history (profile_id)",
    "CREATE UNIQUE INDEX IF NOT EXISTS index_search_history_profile_id_query "
    "ON search_history (profile_id, query)",
    "CREATE INDEX IF NOT EXISTS index_search_history_timestamp ON search_history (timestamp)",
]

LATEST_SCHEMA: list[str] = [
    TRANSACTIONS_TABLE,
    *TRANSACTIONS_INDICES,
    TRANSACTIONS_CATEGORY_INDEX,
    CATEGORIES_TABLE,
    CATEGORIES_UNIQUE_INDEX,
    PROFILES_TABLE,
    SEARCH_HISTORY_TABLE,
    *SEARCH_HISTORY_INDICES,
]

LEDGER_TABLES = ("transactions", "categories", "profiles", "search_history")


# -----------------------------------------------------------------------------
# Version 3 baseline
# -----------------------------------------------------------------------------
# The oldest layout still found on devices. Kept so the chain can be
# exercised end to end.

BASELINE_V3_SCHEMA: list[str] = [
    """
    CREATE TABLE IF NOT EXISTS transactions (
        id TEXT NOT NULL PRIMARY KEY,
        date TEXT NOT NULL,
        type TEXT NOT NULL,
        category TEXT NOT NULL,
        description TEXT,
        notes TEXT,
        amount TEXT NOT NULL,
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
    """
    CREATE TABLE IF NOT EXISTS categories (
        id TEXT NOT NULL PRIMARY KEY,
        name TEXT NOT NULL,
        type TEXT NOT NULL,
        icon TEXT,
        color TEXT,
        hmrc_box TEXT,
        hmrc_description TEXT,
        is_custom INTEGER NOT NULL DEFAULT 0,
        is_archived INTEGER NOT NULL DEFAULT 0,
        display_order INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS recurrences (
        id TEXT NOT NULL PRIMARY KEY,
        frequency TEXT NOT NULL,
        next_date TEXT NOT NULL,
        template TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS currency_rates (
        id INTEGER PRIMARY KEY AUTOINCREMENT NOT NULL,
        currency TEXT NOT NULL,
        rate_to_gbp TEXT NOT NULL,
        date TEXT NOT NULL,
        source TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS index_currency_rates_currency_date "
    "ON currency_rates (currency, date)",
    """
    CREATE TABLE IF NOT EXISTS sync_queue (
        id INTEGER PRIMARY KEY AUTOINCREMENT NOT NULL,
        entity_id TEXT NOT NULL,
        operation TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
]

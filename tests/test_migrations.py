"""
Tests for the schema migration chain

A store created at the oldest supported version and migrated forward must
end up with exactly the schema a fresh store is created with, and keep
its rows.
"""

import asyncio
import sqlite3

import pytest

from ledgervault.models.ledger import DEFAULT_PROFILE_ID, ProfileContext
from ledgervault.orchestrator import StartupError, create_app_components
from ledgervault.services.storage import (
    SCHEMA_VERSION,
    MigrationError,
    SQLiteLedgerStore,
    migrate,
)
from ledgervault.services.storage.schema import BASELINE_V3_SCHEMA


V3_TIMESTAMP = "2020-01-01T00:00:00.000000+00:00"


def build_v3_store(path, transactions=(), categories=()):
    """A store as the oldest supported app version left it."""
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    for statement in BASELINE_V3_SCHEMA:
        conn.execute(statement)
    for row in transactions:
        conn.execute(
            "INSERT INTO transactions (id, date, type, category, description, notes, amount, "
            "recurrence_id, receipt_paths, is_draft, is_deleted, deleted_at, created_at, "
            "updated_at, edit_history) "
            "VALUES (?, ?, ?, ?, ?, NULL, ?, NULL, ?, ?, 0, NULL, ?, ?, NULL)",
            row,
        )
    for row in categories:
        conn.execute(
            "INSERT INTO categories (id, name, type, icon, color, hmrc_box, hmrc_description, "
            "is_custom, is_archived, display_order, created_at, updated_at) "
            "VALUES (?, ?, ?, NULL, NULL, ?, NULL, 0, 0, 0, ?, ?)",
            row,
        )
    conn.execute("PRAGMA user_version = 3")
    conn.commit()
    conn.close()


def open_autocommit(path) -> sqlite3.Connection:
    return sqlite3.connect(str(path), isolation_level=None)


def describe_schema(conn: sqlite3.Connection) -> dict:
    """Columns and named indices of every user table."""
    tables = [
        row[0] for row in conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' "
            "AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
    ]
    schema = {}
    for table in tables:
        columns = [tuple(row) for row in conn.execute(f"PRAGMA table_info({table})")]
        indices = {}
        for index in conn.execute(f"PRAGMA index_list({table})"):
            name, unique = index[1], index[2]
            if name.startswith("sqlite_"):
                continue
            indexed = [row[2] for row in conn.execute(f"PRAGMA index_info({name})")]
            indices[name] = (unique, indexed)
        schema[table] = {"columns": columns, "indices": indices}
    return schema


class TestFreshStore:
    """Tests for a store created from nothing."""

    def test_fresh_store_is_at_latest_version(self, tmp_path):
        """Test that an empty file is created at the current version with no steps."""
        conn = open_autocommit(tmp_path / "fresh.db")
        assert migrate(conn) == []
        assert conn.execute("PRAGMA user_version").fetchone()[0] == SCHEMA_VERSION
        conn.close()

    def test_fresh_store_has_no_profiles(self, store):
        """Test that profiles are seeded by the app, not by the schema."""
        assert asyncio.run(store.list_profiles()) == []

    def test_tables_without_version_rejected(self, tmp_path):
        """Test that an unversioned store with tables is not touched."""
        conn = open_autocommit(tmp_path / "odd.db")
        conn.execute("CREATE TABLE notes (id INTEGER)")
        with pytest.raises(MigrationError):
            migrate(conn)
        conn.close()


class TestMigrationChain:
    """Tests for upgrading old stores."""

    def test_v3_migrates_to_fresh_schema(self, tmp_path):
        """Test that the chain ends at exactly the fresh schema."""
        old_path = tmp_path / "old.db"
        build_v3_store(old_path)
        migrated = open_autocommit(old_path)
        applied = migrate(migrated)
        assert applied[0] == (3, 4)
        assert applied[-1] == (SCHEMA_VERSION - 1, SCHEMA_VERSION)
        assert len(applied) == SCHEMA_VERSION - 3

        fresh = open_autocommit(tmp_path / "fresh.db")
        migrate(fresh)

        assert describe_schema(migrated) == describe_schema(fresh)
        assert migrated.execute("PRAGMA user_version").fetchone()[0] == SCHEMA_VERSION
        assert migrated.execute("PRAGMA integrity_check").fetchone()[0] == "ok"
        migrated.close()
        fresh.close()

    def test_rows_survive_and_join_default_profile(self, settings):
        """Test that old transactions land in the Business profile unchanged."""
        build_v3_store(
            settings.storage.database_path,
            transactions=[
                ("t1", "2019-12-31", "INCOME", "Sales", "Invoice 7", "42.50",
                 None, 0, V3_TIMESTAMP, V3_TIMESTAMP),
                ("t2", "2019-12-30", "EXPENSE", "Travel", "Train", "12.00",
                 None, 1, V3_TIMESTAMP, V3_TIMESTAMP),
            ],
        )
        store = SQLiteLedgerStore(settings.storage)
        applied = asyncio.run(store.initialise())
        assert len(applied) == SCHEMA_VERSION - 3

        ctx = ProfileContext(profile_id=DEFAULT_PROFILE_ID)
        income = asyncio.run(store.get_transaction(ctx, "t1"))
        assert str(income.amount) == "42.50"
        assert income.description == "Invoice 7"
        assert income.is_demo_data is False
        assert income.attachments == []
        draft = asyncio.run(store.get_transaction(ctx, "t2"))
        assert draft.is_draft is True

        profiles = asyncio.run(store.list_profiles())
        assert [(p.id, p.name) for p in profiles] == [(DEFAULT_PROFILE_ID, "Business")]
        asyncio.run(store.close())

    def test_duplicate_categories_collapsed(self, tmp_path):
        """Test that the earliest duplicate survives, ties broken by lowest id."""
        path = tmp_path / "dupes.db"
        build_v3_store(path, categories=[
            ("c-b", "Travel", "EXPENSE", "Box 20", "2020-01-02T00:00:00", "2020-01-02T00:00:00"),
            ("c-a", "Travel", "EXPENSE", "Box 20", "2020-01-02T00:00:00", "2020-01-02T00:00:00"),
            ("c-0", "Travel", "EXPENSE", "Box 20", "2020-01-03T00:00:00", "2020-01-03T00:00:00"),
            ("c-i", "Travel", "INCOME", None, "2020-01-05T00:00:00", "2020-01-05T00:00:00"),
        ])
        conn = open_autocommit(path)
        migrate(conn)
        rows = conn.execute(
            "SELECT id, type, profile_id, tax_form_reference, country_code FROM categories ORDER BY id"
        ).fetchall()
        assert rows == [
            ("c-a", "EXPENSE", DEFAULT_PROFILE_ID, "Box 20", "GB"),
            ("c-i", "INCOME", DEFAULT_PROFILE_ID, None, "GB"),
        ]
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO categories (id, profile_id, name, type, created_at, updated_at) "
                "VALUES ('c-z', ?, 'Travel', 'EXPENSE', 'x', 'x')",
                (DEFAULT_PROFILE_ID,),
            )
        conn.close()

    def test_partial_target_version(self, tmp_path):
        """Test stopping the chain at an intermediate version."""
        path = tmp_path / "partial.db"
        build_v3_store(path)
        conn = open_autocommit(path)
        assert migrate(conn, target_version=6) == [(3, 4), (4, 5), (5, 6)]
        assert conn.execute("PRAGMA user_version").fetchone()[0] == 6
        conn.close()

    def test_failed_step_rolls_back(self, tmp_path):
        """Test that a failing step leaves the store at its previous version."""
        path = tmp_path / "broken.db"
        build_v3_store(path, transactions=[
            ("t1", "2019-12-31", "INCOME", "Sales", None, "1.00", None, 0, V3_TIMESTAMP, V3_TIMESTAMP),
        ])
        conn = open_autocommit(path)
        # A leftover table from an interrupted rebuild blocks the first step
        conn.execute("CREATE TABLE transactions_new (id TEXT)")

        with pytest.raises(MigrationError) as exc_info:
            migrate(conn)
        assert exc_info.value.from_version == 3
        assert exc_info.value.to_version == 4
        assert conn.execute("PRAGMA user_version").fetchone()[0] == 3
        assert conn.execute("SELECT amount FROM transactions").fetchone()[0] == "1.00"
        conn.close()

    def test_newer_store_rejected(self, tmp_path):
        """Test that a store from a newer app version is refused."""
        path = tmp_path / "future.db"
        conn = open_autocommit(path)
        conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION + 1}")
        with pytest.raises(MigrationError, match="newer version"):
            migrate(conn)
        conn.close()

    def test_too_old_store_rejected(self, tmp_path):
        """Test that versions before the baseline cannot be upgraded."""
        conn = open_autocommit(tmp_path / "ancient.db")
        conn.execute("CREATE TABLE transactions (id TEXT)")
        conn.execute("PRAGMA user_version = 2")
        with pytest.raises(MigrationError):
            migrate(conn)
        conn.close()


class TestStartup:
    """Tests for how a migration failure surfaces at startup."""

    def test_startup_error_carries_user_message(self, settings):
        """Test that the app refuses to start on an unmigratable store."""
        path = settings.storage.database_path
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = open_autocommit(path)
        conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION + 5}")
        conn.close()

        with pytest.raises(StartupError) as exc_info:
            asyncio.run(create_app_components(settings))
        assert "restore a backup" in exc_info.value.user_message
        assert isinstance(exc_info.value.__cause__, MigrationError)

    def test_unreadable_store_is_a_startup_error(self, settings):
        """Test that a corrupt store file stops startup without touching it."""
        path = settings.storage.database_path
        path.parent.mkdir(parents=True, exist_ok=True)
        garbage = b"this is not an sqlite file\n" * 64
        path.write_bytes(garbage)

        with pytest.raises(StartupError) as exc_info:
            asyncio.run(create_app_components(settings))
        assert "restore a backup" in exc_info.value.user_message
        assert isinstance(exc_info.value.__cause__, sqlite3.DatabaseError)
        assert path.read_bytes() == garbage

    def test_startup_seeds_defaults(self, settings):
        """Test first-run seeding of profiles and categories."""

        async def scenario():
            components = await create_app_components(settings)
            try:
                profiles = await components.profiles.list_profiles()
                counts = [
                    len(await components.categories.list_categories(p.context))
                    for p in profiles
                ]
                return [p.name for p in profiles], counts
            finally:
                await components.close()

        names, counts = asyncio.run(scenario())
        assert names == ["Business", "Personal"]
        assert all(count > 0 for count in counts)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

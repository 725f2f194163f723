"""
SQLite Record Store

DESIGN DECISION: SQLite is the structured record store because:
1. It is a single file plus write-ahead companions, which is exactly what
   the backup archive needs to capture
2. Unique indices give us constraint enforcement at the storage layer
3. WAL mode lets readers continue while a checkpoint runs

TRADEOFFS:
- One connection, shared across worker threads behind an RLock. Every
  statement runs via asyncio.to_thread so the event loop never blocks on disk.
- Amounts are stored as 2-decimal TEXT, never REAL, so equality in SQL is exact.
- Dates are ISO TEXT; timestamps are UTC ISO TEXT with microseconds, which
  sort lexicographically.
"""

import asyncio
import json
import sqlite3
import threading
from datetime import date, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ledgervault.config import StorageSettings, get_settings
from ledgervault.models.ledger import (
    Category,
    CategoryTotal,
    Profile,
    ProfileContext,
    SearchHistoryEntry,
    Transaction,
    TransactionFilter,
    TransactionPage,
    TransactionType,
)
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
from ledgervault.services.storage.migrations import get_user_version, migrate
from ledgervault.services.storage.notifier import ChangeCallback, ChangeNotifier, Subscription
from ledgervault.services.storage.schema import LEDGER_TABLES


logger = structlog.get_logger(__name__)

TWO_PLACES = Decimal("0.01")

TRANSACTION_COLUMNS = [
    "id",
    "profile_id",
    "date",
    "type",
    "category",
    "description",
    "notes",
    "amount",
    "receipt_paths",
    "is_draft",
    "is_deleted",
    "deleted_at",
    "created_at",
    "updated_at",
    "edit_history",
    "is_demo_data",
]

CATEGORY_COLUMNS = [
    "id",
    "profile_id",
    "name",
    "type",
    "icon",
    "color",
    "tax_form_reference",
    "tax_form_description",
    "country_code",
    "is_custom",
    "is_archived",
    "display_order",
    "created_at",
    "updated_at",
]

PROFILE_COLUMNS = ["id", "name", "icon", "color", "created_at", "updated_at"]

ACTIVE_ORDER = "ORDER BY date DESC, created_at DESC"


class CheckpointBusyError(StorageError):
    """A reader kept the WAL checkpoint from completing."""
    pass


def format_amount(amount: Decimal) -> str:
    """Canonical TEXT form of an amount: always two decimal places."""
    return str(Decimal(amount).quantize(TWO_PLACES))


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat(timespec="microseconds")


def _placeholders(columns: list[str]) -> str:
    return ", ".join(f":{column}" for column in columns)


def _assignments(columns: list[str]) -> str:
    return ", ".join(f"{column} = :{column}" for column in columns if column != "id")


@retry(
    retry=retry_if_exception_type(CheckpointBusyError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=5),
    reraise=True,
)
def checkpoint_connection(conn: sqlite3.Connection) -> tuple[int, int]:
    """
    Flush the write-ahead log into the main database file and truncate it.

    Returns:
        (wal_frames, frames_checkpointed)

    Raises:
        CheckpointBusyError: If the checkpoint still reports busy after retries
    """
    busy, log_frames, checkpointed = conn.execute(
        "PRAGMA wal_checkpoint(TRUNCATE)"
    ).fetchone()
    if busy:
        raise CheckpointBusyError("WAL checkpoint could not complete; database busy")
    return log_frames, checkpointed


def integrity_check(database_path: Path) -> list[str]:
    """
    Run PRAGMA integrity_check against a database file.

    Returns:
        Problems reported by SQLite; empty when the file is healthy
    """
    conn = sqlite3.connect(str(database_path))
    try:
        rows = conn.execute("PRAGMA integrity_check").fetchall()
    finally:
        conn.close()
    messages = [row[0] for row in rows]
    return [] if messages == ["ok"] else messages


class SQLiteLedgerStore(
    TransactionStorageInterface,
    CategoryStorageInterface,
    ProfileStorageInterface,
    SearchHistoryStorageInterface,
):
    """
    SQLite implementation of every record storage interface.

    Call initialise() once before use; it creates or migrates the schema.
    After close() every call raises StoreClosedError.
    """

    def __init__(
        self,
        settings: Optional[StorageSettings] = None,
        notifier: Optional[ChangeNotifier] = None,
    ):
        self._settings = settings or get_settings().storage
        self._path = self._settings.database_path
        self._lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None
        self._closed = False
        self.notifier = notifier or ChangeNotifier()

    # -------------------------------------------------------------------------
    # Connection management
    # -------------------------------------------------------------------------

    @property
    def path(self) -> Path:
        return self._path

    @property
    def closed(self) -> bool:
        return self._closed

    def database_files(self) -> list[Path]:
        """Live database file followed by its WAL/SHM companions."""
        return [self._path, *self._settings.database_companion_paths]

    def _open(self) -> sqlite3.Connection:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            str(self._path),
            check_same_thread=False,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA foreign_keys=ON")
            conn.execute("PRAGMA busy_timeout=5000")
        except sqlite3.Error:
            conn.close()
            raise
        return conn

    def _connection(self) -> sqlite3.Connection:
        if self._closed:
            raise StoreClosedError("Record store is closed; restart the application")
        if self._conn is None:
            self._conn = self._open()
        return self._conn

    def _locked(self, fn: Callable[..., Any], *args: Any) -> Any:
        with self._lock:
            return fn(self._connection(), *args)

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.to_thread(self._locked, fn, *args)

    async def _write(
        self,
        tables: Iterable[str],
        fn: Callable[..., Any],
        *args: Any,
    ) -> Any:
        """Run fn inside one IMMEDIATE transaction, then notify subscribers."""

        def in_transaction(conn: sqlite3.Connection, *inner: Any) -> Any:
            conn.execute("BEGIN IMMEDIATE")
            try:
                result = fn(conn, *inner)
                conn.execute("COMMIT")
                return result
            except sqlite3.IntegrityError as e:
                conn.execute("ROLLBACK")
                raise ConstraintError(str(e)) from e
            except BaseException:
                conn.execute("ROLLBACK")
                raise

        result = await self._run(in_transaction, *args)
        self.notifier.notify(tables)
        return result

    async def initialise(self) -> list[tuple[int, int]]:
        """
        Create or migrate the schema.

        Returns:
            Migration steps applied

        Raises:
            MigrationError: Fatal; the application must not start
        """
        return await self._run(migrate)

    async def schema_version(self) -> int:
        return await self._run(get_user_version)

    async def checkpoint(self) -> tuple[int, int]:
        return await self._run(checkpoint_connection)

    async def snapshot_to(self, destination: Path) -> Path:
        """
        Write a self-contained copy of the database to destination.

        The WAL is checkpointed first, then the online backup API copies a
        consistent image while holding the store lock, so no lifecycle
        write can land half-way through the copy.
        """

        def snapshot(conn: sqlite3.Connection) -> Path:
            checkpoint_connection(conn)
            destination.parent.mkdir(parents=True, exist_ok=True)
            if destination.exists():
                destination.unlink()
            target = sqlite3.connect(str(destination))
            try:
                conn.backup(target)
                target.execute("PRAGMA journal_mode=DELETE")
            finally:
                target.close()
            return destination

        return await self._run(snapshot)

    async def close(self) -> None:
        """Tear the connection down. The store cannot be reopened afterwards."""

        def close_connection() -> None:
            with self._lock:
                if self._conn is not None:
                    self._conn.close()
                    self._conn = None
                self._closed = True

        await asyncio.to_thread(close_connection)
        logger.info("record_store_closed", path=str(self._path))

    def subscribe(self, tables: Iterable[str], callback: ChangeCallback) -> Subscription:
        """Be told after every committed write to any of the tables."""
        return self.notifier.subscribe(tables, callback)

    async def table_counts(self) -> dict[str, int]:
        """Row counts of every ledger table. Used for backup manifests."""

        def count(conn: sqlite3.Connection) -> dict[str, int]:
            return {
                table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                for table in LEDGER_TABLES
            }

        return await self._run(count)

    async def reset_all(self) -> None:
        """Delete every row of every ledger table."""

        def wipe(conn: sqlite3.Connection) -> None:
            for table in LEDGER_TABLES:
                conn.execute(f"DELETE FROM {table}")

        await self._write(LEDGER_TABLES, wipe)

    # -------------------------------------------------------------------------
    # Row mapping
    # -------------------------------------------------------------------------

    def _transaction_to_row(self, transaction: Transaction) -> dict:
        return {
            "id": transaction.id,
            "profile_id": transaction.profile_id,
            "date": transaction.date.isoformat(),
            "type": transaction.type.value,
            "category": transaction.category,
            "description": transaction.description,
            "notes": transaction.notes,
            "amount": format_amount(transaction.amount),
            "receipt_paths": json.dumps(transaction.attachments),
            "is_draft": int(transaction.is_draft),
            "is_deleted": int(transaction.is_deleted),
            "deleted_at": format_timestamp(transaction.deleted_at),
            "created_at": format_timestamp(transaction.created_at),
            "updated_at": format_timestamp(transaction.updated_at),
            "edit_history": json.dumps(
                [entry.model_dump(mode="json") for entry in transaction.edit_history]
            ),
            "is_demo_data": int(transaction.is_demo_data),
        }

    def _row_to_transaction(self, row: sqlite3.Row) -> Transaction:
        return Transaction(
            id=row["id"],
            profile_id=row["profile_id"],
            date=row["date"],
            type=row["type"],
            category=row["category"],
            description=row["description"],
            notes=row["notes"],
            amount=Decimal(row["amount"]),
            attachments=json.loads(row["receipt_paths"] or "[]"),
            is_draft=bool(row["is_draft"]),
            is_demo_data=bool(row["is_demo_data"]),
            is_deleted=bool(row["is_deleted"]),
            deleted_at=row["deleted_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            edit_history=json.loads(row["edit_history"] or "[]"),
        )

    def _category_to_row(self, category: Category) -> dict:
        return {
            "id": category.id,
            "profile_id": category.profile_id,
            "name": category.name,
            "type": category.type.value,
            "icon": category.icon,
            "color": category.color,
            "tax_form_reference": category.tax_form_reference,
            "tax_form_description": category.tax_form_description,
            "country_code": category.country_code,
            "is_custom": int(category.is_custom),
            "is_archived": int(category.is_archived),
            "display_order": category.display_order,
            "created_at": format_timestamp(category.created_at),
            "updated_at": format_timestamp(category.updated_at),
        }

    def _row_to_category(self, row: sqlite3.Row) -> Category:
        data = {column: row[column] for column in CATEGORY_COLUMNS}
        data["is_custom"] = bool(data["is_custom"])
        data["is_archived"] = bool(data["is_archived"])
        return Category(**data)

    def _profile_to_row(self, profile: Profile) -> dict:
        return {
            "id": profile.id,
            "name": profile.name,
            "icon": profile.icon,
            "color": profile.color,
            "created_at": format_timestamp(profile.created_at),
            "updated_at": format_timestamp(profile.updated_at),
        }

    def _select_transactions(self, where: str, params: dict, suffix: str = "") -> Callable:
        sql = f"SELECT * FROM transactions WHERE {where} {suffix}"

        def query(conn: sqlite3.Connection) -> list[Transaction]:
            return [self._row_to_transaction(row) for row in conn.execute(sql, params)]

        return query

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def insert_transaction(self, transaction: Transaction) -> None:
        row = self._transaction_to_row(transaction)
        sql = (
            f"INSERT INTO transactions ({', '.join(TRANSACTION_COLUMNS)}) "
            f"VALUES ({_placeholders(TRANSACTION_COLUMNS)})"
        )
        await self._write(["transactions"], lambda conn: conn.execute(sql, row))

    async def save_transaction(self, transaction: Transaction) -> None:
        await self.save_transactions([transaction])

    async def save_transactions(self, transactions: list[Transaction]) -> None:
        """Overwrite several rows in one transaction; all or nothing."""
        if not transactions:
            return
        rows = [self._transaction_to_row(t) for t in transactions]
        sql = (
            f"UPDATE transactions SET {_assignments(TRANSACTION_COLUMNS)} "
            "WHERE id = :id AND profile_id = :profile_id"
        )

        def update(conn: sqlite3.Connection) -> None:
            for row in rows:
                if conn.execute(sql, row).rowcount == 0:
                    raise NotFoundError(f"Transaction {row['id']} not found")

        await self._write(["transactions"], update)

    async def get_transaction(
        self,
        ctx: ProfileContext,
        transaction_id: str,
    ) -> Optional[Transaction]:
        query = self._select_transactions(
            "id = :id AND profile_id = :profile_id",
            {"id": transaction_id, "profile_id": ctx.profile_id},
        )
        rows = await self._run(query)
        return rows[0] if rows else None

    async def list_active(self, ctx: ProfileContext) -> list[Transaction]:
        return await self._run(self._select_transactions(
            "profile_id = :profile_id AND is_deleted = 0",
            {"profile_id": ctx.profile_id},
            ACTIVE_ORDER,
        ))

    async def list_deleted(self, ctx: ProfileContext) -> list[Transaction]:
        return await self._run(self._select_transactions(
            "profile_id = :profile_id AND is_deleted = 1",
            {"profile_id": ctx.profile_id},
            "ORDER BY deleted_at DESC",
        ))

    async def list_drafts(self, ctx: ProfileContext) -> list[Transaction]:
        return await self._run(self._select_transactions(
            "profile_id = :profile_id AND is_deleted = 0 AND is_draft = 1",
            {"profile_id": ctx.profile_id},
            ACTIVE_ORDER,
        ))

    async def list_finalized(self, ctx: ProfileContext) -> list[Transaction]:
        """Active, non-draft transactions: what reports are built from."""
        return await self._run(self._select_transactions(
            "profile_id = :profile_id AND is_deleted = 0 AND is_draft = 0",
            {"profile_id": ctx.profile_id},
            ACTIVE_ORDER,
        ))

    async def list_by_date_range(
        self,
        ctx: ProfileContext,
        start: date,
        end: date,
    ) -> list[Transaction]:
        return await self._run(self._select_transactions(
            "profile_id = :profile_id AND is_deleted = 0 AND date BETWEEN :start AND :end",
            {"profile_id": ctx.profile_id, "start": start.isoformat(), "end": end.isoformat()},
            ACTIVE_ORDER,
        ))

    async def list_by_type(self, ctx: ProfileContext, type: TransactionType) -> list[Transaction]:
        return await self._run(self._select_transactions(
            "profile_id = :profile_id AND is_deleted = 0 AND type = :type",
            {"profile_id": ctx.profile_id, "type": type.value},
            ACTIVE_ORDER,
        ))

    async def list_by_category(
        self,
        ctx: ProfileContext,
        category: str,
        include_deleted: bool = False,
    ) -> list[Transaction]:
        where = "profile_id = :profile_id AND category = :category"
        if not include_deleted:
            where += " AND is_deleted = 0"
        return await self._run(self._select_transactions(
            where,
            {"profile_id": ctx.profile_id, "category": category},
            ACTIVE_ORDER,
        ))

    async def get_page(
        self,
        ctx: ProfileContext,
        page: int,
        filters: Optional[TransactionFilter] = None,
    ) -> TransactionPage:
        if page < 0:
            raise ValueError("page must be >= 0")
        filters = filters or TransactionFilter()
        page_size = self._settings.page_size

        clauses = ["profile_id = :profile_id", "is_deleted = 0"]
        params: dict[str, Any] = {
            "profile_id": ctx.profile_id,
            "limit": page_size + 1,
            "offset": page * page_size,
        }
        if filters.type is not None:
            clauses.append("type = :type")
            params["type"] = filters.type.value
        if filters.category:
            clauses.append("category = :category")
            params["category"] = filters.category
        if filters.drafts_only:
            clauses.append("is_draft = 1")
        if filters.start_date is not None:
            clauses.append("date >= :start")
            params["start"] = filters.start_date.isoformat()
        if filters.end_date is not None:
            clauses.append("date <= :end")
            params["end"] = filters.end_date.isoformat()
        if filters.search_query:
            escaped = (
                filters.search_query
                .replace("\\", "\\\\")
                .replace("%", "\\%")
                .replace("_", "\\_")
            )
            clauses.append(
                "(description LIKE :search ESCAPE '\\' "
                "OR notes LIKE :search ESCAPE '\\' "
                "OR amount LIKE :search ESCAPE '\\')"
            )
            params["search"] = f"%{escaped}%"

        query = self._select_transactions(
            " AND ".join(clauses),
            params,
            f"{ACTIVE_ORDER} LIMIT :limit OFFSET :offset",
        )
        rows = await self._run(query)
        return TransactionPage(
            items=rows[:page_size],
            page=page,
            page_size=page_size,
            has_next=len(rows) > page_size,
        )

    async def count_transactions(
        self,
        ctx: ProfileContext,
        deleted: bool = False,
        draft: Optional[bool] = None,
    ) -> int:
        sql = "SELECT COUNT(*) FROM transactions WHERE profile_id = ? AND is_deleted = ?"
        params: list[Any] = [ctx.profile_id, int(deleted)]
        if draft is not None:
            sql += " AND is_draft = ?"
            params.append(int(draft))
        return await self._run(lambda conn: conn.execute(sql, params).fetchone()[0])

    async def count_by_category(
        self,
        ctx: ProfileContext,
        category: str,
        type: Optional[TransactionType] = None,
    ) -> int:
        sql = "SELECT COUNT(*) FROM transactions WHERE profile_id = ? AND category = ?"
        params: list[Any] = [ctx.profile_id, category]
        if type is not None:
            sql += " AND type = ?"
            params.append(type.value)
        return await self._run(lambda conn: conn.execute(sql, params).fetchone()[0])

    async def totals_by_category(
        self,
        ctx: ProfileContext,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[CategoryTotal]:
        sql = (
            "SELECT category, type, amount FROM transactions "
            "WHERE profile_id = ? AND is_deleted = 0 AND is_draft = 0"
        )
        params: list[Any] = [ctx.profile_id]
        if start is not None:
            sql += " AND date >= ?"
            params.append(start.isoformat())
        if end is not None:
            sql += " AND date <= ?"
            params.append(end.isoformat())

        rows = await self._run(lambda conn: conn.execute(sql, params).fetchall())

        # Summed in Python: SQLite would coerce TEXT amounts to REAL
        totals: dict[tuple[str, str], CategoryTotal] = {}
        for row in rows:
            key = (row["category"], row["type"])
            if key not in totals:
                totals[key] = CategoryTotal(
                    category=row["category"],
                    type=row["type"],
                    total=Decimal("0.00"),
                    count=0,
                )
            totals[key].total += Decimal(row["amount"])
            totals[key].count += 1
        return sorted(totals.values(), key=lambda t: (t.type.value, -t.total, t.category))

    async def find_duplicate(
        self,
        ctx: ProfileContext,
        on_date: date,
        amount: Decimal,
        category: str,
        window_days: int,
        exclude_id: Optional[str] = None,
    ) -> Optional[Transaction]:
        params = {
            "profile_id": ctx.profile_id,
            "start": (on_date - timedelta(days=window_days)).isoformat(),
            "end": (on_date + timedelta(days=window_days)).isoformat(),
            "on_date": on_date.isoformat(),
            "amount": format_amount(amount),
            "category": category,
            "exclude_id": exclude_id or "",
        }
        query = self._select_transactions(
            "profile_id = :profile_id AND is_deleted = 0 "
            "AND date BETWEEN :start AND :end "
            "AND amount = :amount AND category = :category AND id != :exclude_id",
            params,
            "ORDER BY ABS(julianday(date) - julianday(:on_date)), created_at ASC LIMIT 1",
        )
        rows = await self._run(query)
        return rows[0] if rows else None

    async def list_deleted_before(
        self,
        ctx: ProfileContext,
        cutoff: datetime,
    ) -> list[Transaction]:
        return await self._run(self._select_transactions(
            "profile_id = :profile_id AND is_deleted = 1 AND deleted_at < :cutoff",
            {"profile_id": ctx.profile_id, "cutoff": format_timestamp(cutoff)},
            "ORDER BY deleted_at ASC",
        ))

    async def count_active_before(self, ctx: ProfileContext, cutoff: date) -> int:
        sql = (
            "SELECT COUNT(*) FROM transactions "
            "WHERE profile_id = ? AND is_deleted = 0 AND date < ?"
        )
        params = [ctx.profile_id, cutoff.isoformat()]
        return await self._run(lambda conn: conn.execute(sql, params).fetchone()[0])

    async def hard_delete_transactions(
        self,
        ctx: ProfileContext,
        transaction_ids: list[str],
    ) -> int:
        if not transaction_ids:
            return 0

        def delete(conn: sqlite3.Connection) -> int:
            removed = 0
            for transaction_id in transaction_ids:
                removed += conn.execute(
                    "DELETE FROM transactions WHERE id = ? AND profile_id = ?",
                    (transaction_id, ctx.profile_id),
                ).rowcount
            return removed

        return await self._write(["transactions"], delete)

    # -------------------------------------------------------------------------
    # Categories
    # -------------------------------------------------------------------------

    async def insert_category(self, category: Category) -> None:
        row = self._category_to_row(category)
        sql = (
            f"INSERT INTO categories ({', '.join(CATEGORY_COLUMNS)}) "
            f"VALUES ({_placeholders(CATEGORY_COLUMNS)})"
        )
        await self._write(["categories"], lambda conn: conn.execute(sql, row))

    async def save_category(self, category: Category) -> None:
        row = self._category_to_row(category)
        sql = (
            f"UPDATE categories SET {_assignments(CATEGORY_COLUMNS)} "
            "WHERE id = :id AND profile_id = :profile_id"
        )

        def update(conn: sqlite3.Connection) -> None:
            if conn.execute(sql, row).rowcount == 0:
                raise NotFoundError(f"Category {category.id} not found")

        await self._write(["categories"], update)

    async def get_category(
        self,
        ctx: ProfileContext,
        category_id: str,
    ) -> Optional[Category]:
        row = await self._run(lambda conn: conn.execute(
            "SELECT * FROM categories WHERE id = ? AND profile_id = ?",
            (category_id, ctx.profile_id),
        ).fetchone())
        return self._row_to_category(row) if row else None

    async def find_category(
        self,
        ctx: ProfileContext,
        name: str,
        type: Optional[TransactionType] = None,
    ) -> Optional[Category]:
        sql = "SELECT * FROM categories WHERE profile_id = ? AND LOWER(name) = LOWER(?)"
        params: list[Any] = [ctx.profile_id, name.strip()]
        if type is not None:
            sql += " AND type = ?"
            params.append(type.value)
        sql += " ORDER BY created_at ASC, id ASC LIMIT 1"
        row = await self._run(lambda conn: conn.execute(sql, params).fetchone())
        return self._row_to_category(row) if row else None

    async def list_categories(
        self,
        ctx: ProfileContext,
        type: Optional[TransactionType] = None,
        include_archived: bool = False,
    ) -> list[Category]:
        sql = "SELECT * FROM categories WHERE profile_id = ?"
        params: list[Any] = [ctx.profile_id]
        if type is not None:
            sql += " AND type = ?"
            params.append(type.value)
        if not include_archived:
            sql += " AND is_archived = 0"
        sql += " ORDER BY display_order ASC, name COLLATE NOCASE ASC"
        rows = await self._run(lambda conn: conn.execute(sql, params).fetchall())
        return [self._row_to_category(row) for row in rows]

    async def delete_category(self, ctx: ProfileContext, category_id: str) -> bool:
        removed = await self._write(["categories"], lambda conn: conn.execute(
            "DELETE FROM categories WHERE id = ? AND profile_id = ?",
            (category_id, ctx.profile_id),
        ).rowcount)
        return removed > 0

    # -------------------------------------------------------------------------
    # Profiles
    # -------------------------------------------------------------------------

    async def insert_profile(self, profile: Profile) -> None:
        row = self._profile_to_row(profile)
        sql = (
            f"INSERT INTO profiles ({', '.join(PROFILE_COLUMNS)}) "
            f"VALUES ({_placeholders(PROFILE_COLUMNS)})"
        )
        await self._write(["profiles"], lambda conn: conn.execute(sql, row))

    async def save_profile(self, profile: Profile) -> None:
        row = self._profile_to_row(profile)
        sql = f"UPDATE profiles SET {_assignments(PROFILE_COLUMNS)} WHERE id = :id"

        def update(conn: sqlite3.Connection) -> None:
            if conn.execute(sql, row).rowcount == 0:
                raise NotFoundError(f"Profile {profile.id} not found")

        await self._write(["profiles"], update)

    async def get_profile(self, profile_id: str) -> Optional[Profile]:
        row = await self._run(lambda conn: conn.execute(
            "SELECT * FROM profiles WHERE id = ?", (profile_id,)
        ).fetchone())
        return Profile(**dict(row)) if row else None

    async def list_profiles(self) -> list[Profile]:
        rows = await self._run(lambda conn: conn.execute(
            "SELECT * FROM profiles ORDER BY created_at ASC, name ASC"
        ).fetchall())
        return [Profile(**dict(row)) for row in rows]

    async def delete_profile_cascade(self, profile_id: str) -> dict[str, int]:
        def delete(conn: sqlite3.Connection) -> dict[str, int]:
            removed = {}
            for table in ("transactions", "categories", "search_history"):
                removed[table] = conn.execute(
                    f"DELETE FROM {table} WHERE profile_id = ?", (profile_id,)
                ).rowcount
            removed["profiles"] = conn.execute(
                "DELETE FROM profiles WHERE id = ?", (profile_id,)
            ).rowcount
            return removed

        return await self._write(LEDGER_TABLES, delete)

    # -------------------------------------------------------------------------
    # Search history
    # -------------------------------------------------------------------------

    async def upsert_search(
        self,
        ctx: ProfileContext,
        query: str,
        timestamp: datetime,
        keep: int,
    ) -> None:
        params = {
            "profile_id": ctx.profile_id,
            "query": query,
            "timestamp": format_timestamp(timestamp),
            "keep": keep,
        }

        def upsert(conn: sqlite3.Connection) -> None:
            conn.execute(
                "INSERT INTO search_history (profile_id, query, timestamp) "
                "VALUES (:profile_id, :query, :timestamp) "
                "ON CONFLICT (profile_id, query) DO UPDATE SET timestamp = excluded.timestamp",
                params,
            )
            conn.execute(
                "DELETE FROM search_history WHERE profile_id = :profile_id AND id NOT IN ("
                "SELECT id FROM search_history WHERE profile_id = :profile_id "
                "ORDER BY timestamp DESC, id DESC LIMIT :keep)",
                params,
            )

        await self._write(["search_history"], upsert)

    async def list_searches(
        self,
        ctx: ProfileContext,
        limit: int,
    ) -> list[SearchHistoryEntry]:
        rows = await self._run(lambda conn: conn.execute(
            "SELECT * FROM search_history WHERE profile_id = ? "
            "ORDER BY timestamp DESC, id DESC LIMIT ?",
            (ctx.profile_id, limit),
        ).fetchall())
        return [SearchHistoryEntry(**dict(row)) for row in rows]

    async def delete_search(self, ctx: ProfileContext, search_id: int) -> bool:
        removed = await self._write(["search_history"], lambda conn: conn.execute(
            "DELETE FROM search_history WHERE id = ? AND profile_id = ?",
            (search_id, ctx.profile_id),
        ).rowcount)
        return removed > 0

    async def clear_searches(self, ctx: ProfileContext) -> int:
        return await self._write(["search_history"], lambda conn: conn.execute(
            "DELETE FROM search_history WHERE profile_id = ?", (ctx.profile_id,)
        ).rowcount)

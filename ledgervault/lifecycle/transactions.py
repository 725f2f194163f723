"""
Transaction Lifecycle Manager

The business-rule layer over the record store and the only code that
writes transactions.

LIFECYCLE:
    create ──> (draft if EXPENSE without receipts) ──promote_draft──> final
       │                                                                │
       └──────────── update (one history entry per changed field) ─────┘
                                  │
                      soft_delete <──> restore
                                  │
                      retention sweep / reset (hard delete)

CRITICAL RULES:
1. is_draft is always derived: EXPENSE and no attachments
2. Every mutation after creation appends to edit_history; nothing rewrites it
3. Soft delete and restore only touch is_deleted/deleted_at, so the pair
   round-trips to an identical record
4. Category renames and merges go through move_category, never ad hoc
5. Writes to one transaction id are serialized
"""

import asyncio
import json
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, AsyncIterator, Optional

from ledgervault.audit import AuditLogger
from ledgervault.config import StorageSettings, get_settings
from ledgervault.models.audit import AuditEventBuilder
from ledgervault.models.ledger import (
    CategoryTotal,
    EditHistoryEntry,
    ProfileContext,
    ReceiptScanResult,
    Transaction,
    TransactionFilter,
    TransactionPage,
    TransactionType,
    utc_now,
)
from ledgervault.services.storage.interface import (
    NotFoundError,
    TransactionStorageInterface,
)
from ledgervault.services.storage.sqlite_store import format_amount
from ledgervault.validation import LedgerValidator


UPDATABLE_FIELDS = (
    "date",
    "type",
    "category",
    "description",
    "notes",
    "amount",
    "attachments",
)

REQUIRED_FIELDS = ("date", "type", "category", "amount")


def _coerce_type(value: Any) -> TransactionType:
    try:
        return TransactionType(value)
    except ValueError:
        LedgerValidator.reject("type", "invalid_value", f"Unknown transaction type: {value}")


def _history_value(value: Any) -> Optional[str]:
    """String form of a field value as recorded in edit_history."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return format_amount(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return json.dumps(list(value))
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class TransactionManager:
    """
    Create, update, delete, restore and promote transactions.

    Every method takes the ProfileContext it operates in; an id from
    another profile behaves exactly like a missing id.
    """

    def __init__(
        self,
        store: TransactionStorageInterface,
        settings: Optional[StorageSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._settings = settings or get_settings().storage
        self._audit_logger = audit_logger
        self._record_locks: dict[str, asyncio.Lock] = {}
        self._record_lock_users: dict[str, int] = {}

    @asynccontextmanager
    async def _record_lock(self, transaction_id: str) -> AsyncIterator[None]:
        """Serialize writes to one id. The lock is dropped once nobody holds or waits for it."""
        lock = self._record_locks.setdefault(transaction_id, asyncio.Lock())
        self._record_lock_users[transaction_id] = self._record_lock_users.get(transaction_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._record_lock_users[transaction_id] -= 1
            if not self._record_lock_users[transaction_id]:
                del self._record_lock_users[transaction_id]
                del self._record_locks[transaction_id]

    async def _require(self, ctx: ProfileContext, transaction_id: str) -> Transaction:
        transaction = await self._store.get_transaction(ctx, transaction_id)
        if transaction is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return transaction

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def create(
        self,
        ctx: ProfileContext,
        on_date: date,
        type: TransactionType,
        category: str,
        amount: Decimal,
        attachments: Optional[list[str]] = None,
        description: Optional[str] = None,
        notes: Optional[str] = None,
        is_demo_data: bool = False,
    ) -> Transaction:
        """
        Create a transaction. is_draft is derived, never passed in.

        Raises:
            ValidationError: If amount <= 0, category is blank, or any other
                field breaks an input rule
        """
        attachments = list(attachments or [])
        LedgerValidator.validate_transaction(
            amount=amount,
            on_date=on_date,
            category=category,
            description=description,
            notes=notes,
            attachments=attachments,
        )
        type = _coerce_type(type)
        now = utc_now()
        transaction = Transaction(
            profile_id=ctx.profile_id,
            date=on_date,
            type=type,
            category=category,
            description=description,
            notes=notes,
            amount=Decimal(str(amount)),
            attachments=attachments,
            is_draft=Transaction.derive_is_draft(type, attachments),
            is_demo_data=is_demo_data,
            created_at=now,
            updated_at=now,
        )
        await self._store.insert_transaction(transaction)

        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.transaction_created(
                transaction_id=transaction.id,
                profile_id=ctx.profile_id,
                amount=format_amount(transaction.amount),
                is_draft=transaction.is_draft,
            ))
        return transaction

    async def create_from_scan(
        self,
        ctx: ProfileContext,
        scan: ReceiptScanResult,
        category: str,
        attachment: Optional[str] = None,
        type: TransactionType = TransactionType.EXPENSE,
    ) -> Transaction:
        """
        Persist what the OCR collaborator read from a receipt.

        The scan's date falls back to today; its merchant becomes the
        description.

        Raises:
            ValidationError: If the scan failed or found no amount
        """
        if scan.error:
            LedgerValidator.reject("scan", "scan_failed", f"Receipt could not be read: {scan.error}")
        if scan.amount is None:
            LedgerValidator.reject("amount", "missing", "No amount was found on the receipt")
        return await self.create(
            ctx,
            on_date=scan.date or date.today(),
            type=type,
            category=category,
            amount=scan.amount,
            attachments=[attachment] if attachment else [],
            description=scan.merchant,
        )

    async def update(self, ctx: ProfileContext, transaction_id: str, **changes: Any) -> Transaction:
        """
        Apply field changes, one edit-history entry per changed field.

        Accepted fields: date, type, category, description, notes, amount,
        attachments. Unchanged values are ignored; if nothing changed the
        record is returned untouched.

        Raises:
            NotFoundError: If the id does not resolve in this profile
            ValidationError: For unknown fields, bad values, or a deleted record
        """
        unknown = sorted(set(changes) - set(UPDATABLE_FIELDS))
        if unknown:
            LedgerValidator.reject(unknown[0], "unknown_field", f"Field '{unknown[0]}' cannot be edited")

        async with self._record_lock(transaction_id):
            current = await self._require(ctx, transaction_id)
            if current.is_deleted:
                LedgerValidator.reject("id", "deleted", "Restore the transaction before editing it")

            proposed = current.model_dump()
            for field, value in changes.items():
                if value is None and field in REQUIRED_FIELDS:
                    LedgerValidator.reject(field, "missing", f"{field.capitalize()} is required")
                if field == "amount":
                    LedgerValidator.raise_if_any(LedgerValidator.check_amount(value))
                    value = Decimal(str(value))
                elif field == "type":
                    value = _coerce_type(value)
                elif field == "date" and (not isinstance(value, date) or isinstance(value, datetime)):
                    LedgerValidator.reject("date", "invalid_format", "Date must be a calendar date")
                elif field == "attachments":
                    value = list(value or [])
                proposed[field] = value

            LedgerValidator.validate_transaction(
                amount=proposed["amount"],
                on_date=proposed["date"],
                category=proposed["category"],
                description=proposed["description"],
                notes=proposed["notes"],
                attachments=proposed["attachments"],
            )
            proposed["is_draft"] = Transaction.derive_is_draft(
                proposed["type"], proposed["attachments"]
            )

            now = utc_now()
            history = list(current.edit_history)
            changed_fields = []
            for field in (*UPDATABLE_FIELDS, "is_draft"):
                old_value = getattr(current, field)
                if proposed[field] != old_value:
                    changed_fields.append(field)
                    history.append(EditHistoryEntry(
                        field=field,
                        old_value=_history_value(old_value),
                        new_value=_history_value(proposed[field]),
                        timestamp=now,
                    ))

            if not changed_fields:
                return current

            proposed["edit_history"] = history
            proposed["updated_at"] = now
            updated = Transaction.model_validate(proposed)
            await self._store.save_transaction(updated)

        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.transaction_updated(
                transaction_id=transaction_id,
                profile_id=ctx.profile_id,
                fields=changed_fields,
            ))
        return updated

    async def soft_delete(self, ctx: ProfileContext, transaction_id: str) -> Transaction:
        """Move to trash. Already-deleted records are returned unchanged."""
        async with self._record_lock(transaction_id):
            current = await self._require(ctx, transaction_id)
            if current.is_deleted:
                return current
            deleted = current.model_copy(update={"is_deleted": True, "deleted_at": utc_now()})
            await self._store.save_transaction(deleted)

        if self._audit_logger:
            await self._audit_logger.log(
                AuditEventBuilder.transaction_deleted(transaction_id, ctx.profile_id)
            )
        return deleted

    async def restore(self, ctx: ProfileContext, transaction_id: str) -> Transaction:
        """Bring back from trash. Active records are returned unchanged."""
        async with self._record_lock(transaction_id):
            current = await self._require(ctx, transaction_id)
            if not current.is_deleted:
                return current
            restored = current.model_copy(update={"is_deleted": False, "deleted_at": None})
            await self._store.save_transaction(restored)

        if self._audit_logger:
            await self._audit_logger.log(
                AuditEventBuilder.transaction_restored(transaction_id, ctx.profile_id)
            )
        return restored

    async def promote_draft(
        self,
        ctx: ProfileContext,
        transaction_id: str,
        attachments: list[str],
    ) -> Transaction:
        """
        Attach receipts to a transaction and clear its draft flag.

        New paths are appended after existing ones; duplicates are skipped.

        Raises:
            ValidationError: If the transaction would still have no attachments
        """
        LedgerValidator.raise_if_any(LedgerValidator.check_attachments(attachments))

        async with self._record_lock(transaction_id):
            current = await self._require(ctx, transaction_id)
            if current.is_deleted:
                LedgerValidator.reject("id", "deleted", "Restore the transaction before editing it")

            merged = list(current.attachments)
            merged.extend(path for path in attachments if path not in merged)
            if not merged:
                LedgerValidator.reject(
                    "attachments", "missing", "A receipt is required to finalize this expense"
                )
            if merged == current.attachments:
                return current

            now = utc_now()
            history = list(current.edit_history)
            history.append(EditHistoryEntry(
                field="attachments",
                old_value=_history_value(current.attachments),
                new_value=_history_value(merged),
                timestamp=now,
            ))
            if current.is_draft:
                history.append(EditHistoryEntry(
                    field="is_draft",
                    old_value=_history_value(True),
                    new_value=_history_value(False),
                    timestamp=now,
                ))
            promoted = current.model_copy(update={
                "attachments": merged,
                "is_draft": False,
                "edit_history": history,
                "updated_at": now,
            })
            await self._store.save_transaction(promoted)

        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.draft_promoted(
                transaction_id=transaction_id,
                profile_id=ctx.profile_id,
                attachment_count=len(merged),
            ))
        return promoted

    async def move_category(
        self,
        ctx: ProfileContext,
        from_name: str,
        to_name: str,
        type: Optional[TransactionType] = None,
    ) -> int:
        """
        Rewrite the category name on every matching transaction.

        Covers drafts and soft-deleted rows too, so a later restore never
        brings back a name that no longer exists. Each rewritten row gets
        one edit-history entry. All rows are written in one store
        transaction.

        Returns:
            Number of transactions moved
        """
        LedgerValidator.raise_if_any(LedgerValidator.check_category_reference(to_name))
        if from_name == to_name:
            return 0

        candidates = await self._store.list_by_category(ctx, from_name, include_deleted=True)
        if type is not None:
            candidates = [t for t in candidates if t.type == type]
        if not candidates:
            return 0

        async with AsyncExitStack() as stack:
            # Sorted so two overlapping moves take the locks in the same order
            for transaction_id in sorted(t.id for t in candidates):
                await stack.enter_async_context(self._record_lock(transaction_id))

            now = utc_now()
            moved = []
            for candidate in candidates:
                current = await self._store.get_transaction(ctx, candidate.id)
                if current is None or current.category != from_name:
                    continue
                history = [*current.edit_history, EditHistoryEntry(
                    field="category",
                    old_value=from_name,
                    new_value=to_name,
                    timestamp=now,
                )]
                moved.append(current.model_copy(update={
                    "category": to_name,
                    "edit_history": history,
                    "updated_at": now,
                }))
            await self._store.save_transactions(moved)

        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.category_moved(
                profile_id=ctx.profile_id,
                from_name=from_name,
                to_name=to_name,
                moved=len(moved),
            ))
        return len(moved)

    # -------------------------------------------------------------------------
    # Duplicate detection
    # -------------------------------------------------------------------------

    async def find_potential_duplicate(
        self,
        ctx: ProfileContext,
        on_date: date,
        amount: Decimal,
        category: str,
        exclude_id: Optional[str] = None,
    ) -> Optional[Transaction]:
        """
        An active transaction with the same amount and category within
        ±duplicate_window_days, if any. Used to warn, never to block.
        """
        candidate = await self._store.find_duplicate(
            ctx,
            on_date=on_date,
            amount=Decimal(str(amount)),
            category=category,
            window_days=self._settings.duplicate_window_days,
            exclude_id=exclude_id,
        )
        if candidate and self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.duplicate_detected(
                candidate_id=candidate.id,
                profile_id=ctx.profile_id,
                amount=format_amount(candidate.amount),
                category=category,
            ))
        return candidate

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_by_id(self, ctx: ProfileContext, transaction_id: str) -> Transaction:
        return await self._require(ctx, transaction_id)

    async def get_all_active(self, ctx: ProfileContext) -> list[Transaction]:
        return await self._store.list_active(ctx)

    async def get_all_deleted(self, ctx: ProfileContext) -> list[Transaction]:
        return await self._store.list_deleted(ctx)

    async def get_all_drafts(self, ctx: ProfileContext) -> list[Transaction]:
        return await self._store.list_drafts(ctx)

    async def get_active_page(
        self,
        ctx: ProfileContext,
        page: int = 0,
        filters: Optional[TransactionFilter] = None,
    ) -> TransactionPage:
        return await self._store.get_page(ctx, page, filters)

    async def get_by_date_range(
        self,
        ctx: ProfileContext,
        start: date,
        end: date,
    ) -> list[Transaction]:
        if start > end:
            LedgerValidator.reject("start", "out_of_range", "Start date cannot be after end date")
        return await self._store.list_by_date_range(ctx, start, end)

    async def get_by_type(self, ctx: ProfileContext, type: TransactionType) -> list[Transaction]:
        return await self._store.list_by_type(ctx, _coerce_type(type))

    async def get_transaction_count(self, ctx: ProfileContext) -> int:
        """All non-deleted transactions, drafts included."""
        return await self._store.count_transactions(ctx, deleted=False)

    async def get_draft_count(self, ctx: ProfileContext) -> int:
        return await self._store.count_transactions(ctx, deleted=False, draft=True)

    async def get_deleted_count(self, ctx: ProfileContext) -> int:
        return await self._store.count_transactions(ctx, deleted=True)

    async def get_totals_by_category(
        self,
        ctx: ProfileContext,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[CategoryTotal]:
        return await self._store.totals_by_category(ctx, start, end)

    async def referenced_attachments(self, ctx: ProfileContext) -> set[str]:
        """Every receipt path referenced by a transaction, trash included."""
        active = await self._store.list_active(ctx)
        deleted = await self._store.list_deleted(ctx)
        return {path for t in (*active, *deleted) for path in t.attachments}

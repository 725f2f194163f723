"""
Tests for the transaction lifecycle

Drafts, promotion, soft delete and restore, edit history, duplicate
detection and category moves, all against a real SQLite store.
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from ledgervault.lifecycle import TransactionManager
from ledgervault.models.ledger import (
    ReceiptScanResult,
    TransactionFilter,
    TransactionType,
)
from ledgervault.services.storage import NotFoundError, SQLiteLedgerStore
from ledgervault.validation import ValidationError


RECEIPT = "business-profile-default-uuid/2024-05/receipt_1.jpg"


def create_expense(transactions, ctx, amount="42.50", category="Groceries", on_date=date(2024, 5, 10), **kwargs):
    return asyncio.run(transactions.create(
        ctx,
        on_date=on_date,
        type=TransactionType.EXPENSE,
        category=category,
        amount=Decimal(amount),
        **kwargs,
    ))


class TestCreate:
    """Tests for creating transactions."""

    def test_expense_without_receipt_is_draft(self, transactions, ctx):
        """Test that an expense with no attachments is stored as a draft."""
        transaction = create_expense(transactions, ctx)
        assert transaction.is_draft is True
        assert asyncio.run(transactions.get_draft_count(ctx)) == 1

    def test_expense_with_receipt_is_final(self, transactions, ctx):
        """Test that an expense created with a receipt is not a draft."""
        transaction = create_expense(transactions, ctx, attachments=[RECEIPT])
        assert transaction.is_draft is False
        assert asyncio.run(transactions.get_draft_count(ctx)) == 0

    def test_income_is_never_draft(self, transactions, ctx):
        """Test that income without a receipt is final."""
        transaction = asyncio.run(transactions.create(
            ctx,
            on_date=date(2024, 5, 10),
            type=TransactionType.INCOME,
            category="Sales",
            amount=Decimal("1200.00"),
        ))
        assert transaction.is_draft is False

    def test_zero_amount_rejected(self, transactions, ctx):
        """Test that amounts must be positive."""
        with pytest.raises(ValidationError) as exc_info:
            create_expense(transactions, ctx, amount="0.00")
        assert exc_info.value.fields == ["amount"]
        assert asyncio.run(transactions.get_transaction_count(ctx)) == 0

    def test_blank_category_rejected(self, transactions, ctx):
        """Test that a category is required."""
        with pytest.raises(ValidationError) as exc_info:
            create_expense(transactions, ctx, category="   ")
        assert exc_info.value.fields == ["category"]

    def test_unknown_type_rejected(self, transactions, ctx):
        """Test that the type must be INCOME or EXPENSE."""
        with pytest.raises(ValidationError):
            asyncio.run(transactions.create(
                ctx,
                on_date=date(2024, 5, 10),
                type="TRANSFER",
                category="Sales",
                amount=Decimal("1.00"),
            ))

    def test_amount_stored_exactly(self, transactions, ctx):
        """Test that amounts survive the store without float drift."""
        created = create_expense(transactions, ctx, amount="0.10")
        stored = asyncio.run(transactions.get_by_id(ctx, created.id))
        assert stored.amount == Decimal("0.10")
        assert stored == created

    def test_create_from_scan(self, transactions, ctx):
        """Test that scan results become a transaction with the merchant as description."""
        scan = ReceiptScanResult(
            amount=Decimal("18.99"),
            date=date(2024, 4, 2),
            merchant="Corner Shop",
            confidence=0.92,
        )
        transaction = asyncio.run(transactions.create_from_scan(ctx, scan, "Office Costs", RECEIPT))
        assert transaction.description == "Corner Shop"
        assert transaction.date == date(2024, 4, 2)
        assert transaction.is_draft is False

    def test_failed_scan_rejected(self, transactions, ctx):
        """Test that a scan error is surfaced instead of saving a blank record."""
        scan = ReceiptScanResult(confidence=0.0, error="image too dark")
        with pytest.raises(ValidationError, match="image too dark"):
            asyncio.run(transactions.create_from_scan(ctx, scan, "Office Costs"))


class TestLifecycle:
    """Tests for promote, soft delete and restore."""

    def test_groceries_round_trip(self, transactions, ctx):
        """Test draft, promote, delete and restore of a single expense."""
        draft = create_expense(transactions, ctx)
        assert draft.is_draft is True

        promoted = asyncio.run(transactions.promote_draft(ctx, draft.id, [RECEIPT]))
        assert promoted.is_draft is False
        assert promoted.attachments == [RECEIPT]
        assert [entry.field for entry in promoted.edit_history] == ["attachments", "is_draft"]

        before_delete = asyncio.run(transactions.get_by_id(ctx, draft.id))

        deleted = asyncio.run(transactions.soft_delete(ctx, draft.id))
        assert deleted.is_deleted is True
        assert deleted.deleted_at is not None
        assert asyncio.run(transactions.get_all_active(ctx)) == []
        assert [t.id for t in asyncio.run(transactions.get_all_deleted(ctx))] == [draft.id]

        asyncio.run(transactions.restore(ctx, draft.id))
        after_restore = asyncio.run(transactions.get_by_id(ctx, draft.id))
        assert after_restore == before_delete

    def test_promote_without_receipts_rejected(self, transactions, ctx):
        """Test that a draft cannot be finalized with an empty attachment list."""
        draft = create_expense(transactions, ctx)
        with pytest.raises(ValidationError):
            asyncio.run(transactions.promote_draft(ctx, draft.id, []))
        assert asyncio.run(transactions.get_by_id(ctx, draft.id)).is_draft is True

    def test_promote_skips_duplicate_paths(self, transactions, ctx):
        """Test that re-attaching the same receipt changes nothing."""
        draft = create_expense(transactions, ctx)
        promoted = asyncio.run(transactions.promote_draft(ctx, draft.id, [RECEIPT]))
        again = asyncio.run(transactions.promote_draft(ctx, draft.id, [RECEIPT]))
        assert again == promoted

    def test_removing_last_receipt_makes_draft_again(self, transactions, ctx):
        """Test that is_draft is re-derived on update."""
        transaction = create_expense(transactions, ctx, attachments=[RECEIPT])
        updated = asyncio.run(transactions.update(ctx, transaction.id, attachments=[]))
        assert updated.is_draft is True
        assert updated.edit_history[-1].field == "is_draft"

    def test_changing_type_to_income_clears_draft(self, transactions, ctx):
        """Test that an income is never left flagged as a draft."""
        draft = create_expense(transactions, ctx)
        updated = asyncio.run(transactions.update(ctx, draft.id, type=TransactionType.INCOME))
        assert updated.is_draft is False

    def test_soft_delete_is_idempotent(self, transactions, ctx):
        """Test that deleting twice keeps the first deletion time."""
        transaction = create_expense(transactions, ctx)
        first = asyncio.run(transactions.soft_delete(ctx, transaction.id))
        second = asyncio.run(transactions.soft_delete(ctx, transaction.id))
        assert second.deleted_at == first.deleted_at

    def test_deleted_transaction_cannot_be_edited(self, transactions, ctx):
        """Test that trashed records must be restored before editing."""
        transaction = create_expense(transactions, ctx)
        asyncio.run(transactions.soft_delete(ctx, transaction.id))
        with pytest.raises(ValidationError):
            asyncio.run(transactions.update(ctx, transaction.id, notes="too late"))

    def test_counts(self, transactions, ctx):
        """Test the active, draft and deleted counters."""
        create_expense(transactions, ctx)
        create_expense(transactions, ctx, amount="10.00", attachments=[RECEIPT])
        trashed = create_expense(transactions, ctx, amount="5.00", attachments=[RECEIPT])
        asyncio.run(transactions.soft_delete(ctx, trashed.id))

        assert asyncio.run(transactions.get_transaction_count(ctx)) == 2
        assert asyncio.run(transactions.get_draft_count(ctx)) == 1
        assert len(asyncio.run(transactions.get_all_drafts(ctx))) == 1
        assert asyncio.run(transactions.get_deleted_count(ctx)) == 1


class TestEditHistory:
    """Tests for the append-only edit history."""

    def test_one_entry_per_changed_field(self, transactions, ctx):
        """Test that each changed field is recorded with old and new values."""
        transaction = create_expense(transactions, ctx, attachments=[RECEIPT])
        updated = asyncio.run(transactions.update(
            ctx,
            transaction.id,
            amount=Decimal("45.00"),
            description="Weekly shop",
        ))
        entries = {entry.field: entry for entry in updated.edit_history}
        assert set(entries) == {"amount", "description"}
        assert entries["amount"].old_value == "42.50"
        assert entries["amount"].new_value == "45.00"
        assert entries["description"].old_value is None

    def test_unchanged_values_ignored(self, transactions, ctx):
        """Test that writing the same value adds no history."""
        transaction = create_expense(transactions, ctx, attachments=[RECEIPT])
        updated = asyncio.run(transactions.update(ctx, transaction.id, amount=Decimal("42.50")))
        assert updated.edit_history == []
        assert updated.updated_at == transaction.updated_at

    def test_history_is_append_only(self, transactions, ctx):
        """Test that later edits never rewrite earlier entries."""
        transaction = create_expense(transactions, ctx, attachments=[RECEIPT])
        first = asyncio.run(transactions.update(ctx, transaction.id, notes="one"))
        second = asyncio.run(transactions.update(ctx, transaction.id, notes="two"))
        assert second.edit_history[:1] == first.edit_history
        assert [entry.new_value for entry in second.edit_history] == ["one", "two"]

    def test_unknown_field_rejected(self, transactions, ctx):
        """Test that flags cannot be edited directly."""
        transaction = create_expense(transactions, ctx)
        with pytest.raises(ValidationError):
            asyncio.run(transactions.update(ctx, transaction.id, is_draft=False))

    def test_invalid_update_leaves_record_untouched(self, transactions, ctx):
        """Test that a rejected update writes nothing."""
        transaction = create_expense(transactions, ctx)
        with pytest.raises(ValidationError):
            asyncio.run(transactions.update(ctx, transaction.id, amount=Decimal("-1")))
        assert asyncio.run(transactions.get_by_id(ctx, transaction.id)) == transaction

    def test_malformed_amount_rejected(self, transactions, ctx):
        """Test that a non-numeric amount is a validation failure."""
        transaction = create_expense(transactions, ctx)
        with pytest.raises(ValidationError) as exc_info:
            asyncio.run(transactions.update(ctx, transaction.id, amount="abc"))
        assert exc_info.value.fields == ["amount"]
        assert asyncio.run(transactions.get_by_id(ctx, transaction.id)) == transaction

    @pytest.mark.parametrize("field", ["type", "date", "category", "amount"])
    def test_required_field_cannot_be_cleared(self, transactions, ctx, field):
        """Test that required fields reject None."""
        transaction = create_expense(transactions, ctx)
        with pytest.raises(ValidationError) as exc_info:
            asyncio.run(transactions.update(ctx, transaction.id, **{field: None}))
        assert exc_info.value.fields == [field]

    def test_non_date_rejected(self, transactions, ctx):
        """Test that only calendar dates are accepted for the date field."""
        transaction = create_expense(transactions, ctx)
        with pytest.raises(ValidationError):
            asyncio.run(transactions.update(ctx, transaction.id, date="2024-05-01"))


class TestRecordLocks:
    """Tests for per-transaction write serialization."""

    def test_locks_released_after_writes(self, transactions, ctx):
        """Test that idle transactions keep no lock around."""
        for _ in range(20):
            transaction = create_expense(transactions, ctx)
            asyncio.run(transactions.soft_delete(ctx, transaction.id))
            asyncio.run(transactions.restore(ctx, transaction.id))
        assert transactions._record_locks == {}

    def test_locks_released_after_failure(self, transactions, ctx):
        """Test that a rejected write still drops its lock."""
        transaction = create_expense(transactions, ctx)
        with pytest.raises(ValidationError):
            asyncio.run(transactions.update(ctx, transaction.id, amount="abc"))
        assert transactions._record_locks == {}

    def test_concurrent_updates_are_serialized(self, transactions, ctx):
        """Test that two edits to one record both land in the history."""
        transaction = create_expense(transactions, ctx)

        async def scenario():
            await asyncio.gather(
                transactions.update(ctx, transaction.id, notes="first"),
                transactions.update(ctx, transaction.id, description="second"),
            )
            return await transactions.get_by_id(ctx, transaction.id)

        final = asyncio.run(scenario())
        assert final.notes == "first"
        assert final.description == "second"
        assert {entry.field for entry in final.edit_history} == {"notes", "description"}
        assert transactions._record_locks == {}


class TestProfileIsolation:
    """Tests that one profile never sees another's records."""

    def test_other_profile_id_behaves_as_missing(self, transactions, ctx, other_ctx):
        """Test that ids do not resolve across profiles."""
        transaction = create_expense(transactions, ctx)
        with pytest.raises(NotFoundError):
            asyncio.run(transactions.get_by_id(other_ctx, transaction.id))
        with pytest.raises(NotFoundError):
            asyncio.run(transactions.soft_delete(other_ctx, transaction.id))
        assert asyncio.run(transactions.get_all_active(other_ctx)) == []

    def test_counts_are_per_profile(self, transactions, ctx, other_ctx):
        """Test that counters only see their own profile."""
        create_expense(transactions, ctx)
        create_expense(transactions, other_ctx)
        create_expense(transactions, other_ctx, amount="3.00")
        assert asyncio.run(transactions.get_transaction_count(ctx)) == 1
        assert asyncio.run(transactions.get_transaction_count(other_ctx)) == 2


class TestDuplicateDetection:
    """Tests for the potential-duplicate warning."""

    def test_match_within_window(self, transactions, ctx):
        """Test that the same amount and category five days apart is flagged."""
        existing = create_expense(transactions, ctx, on_date=date(2024, 5, 5))
        match = asyncio.run(transactions.find_potential_duplicate(
            ctx, date(2024, 5, 10), Decimal("42.50"), "Groceries"
        ))
        assert match is not None
        assert match.id == existing.id

    def test_no_match_outside_window(self, transactions, ctx):
        """Test that fifteen days apart is not a duplicate."""
        create_expense(transactions, ctx, on_date=date(2024, 5, 5))
        match = asyncio.run(transactions.find_potential_duplicate(
            ctx, date(2024, 5, 20), Decimal("42.50"), "Groceries"
        ))
        assert match is None

    def test_different_amount_or_category_not_matched(self, transactions, ctx):
        """Test that both amount and category must match."""
        create_expense(transactions, ctx, on_date=date(2024, 5, 5))
        assert asyncio.run(transactions.find_potential_duplicate(
            ctx, date(2024, 5, 5), Decimal("42.51"), "Groceries"
        )) is None
        assert asyncio.run(transactions.find_potential_duplicate(
            ctx, date(2024, 5, 5), Decimal("42.50"), "Travel"
        )) is None

    def test_excluded_and_deleted_ignored(self, transactions, ctx):
        """Test that the record being edited and trashed records are skipped."""
        kept = create_expense(transactions, ctx, on_date=date(2024, 5, 5))
        trashed = create_expense(transactions, ctx, on_date=date(2024, 5, 6))
        asyncio.run(transactions.soft_delete(ctx, trashed.id))
        match = asyncio.run(transactions.find_potential_duplicate(
            ctx, date(2024, 5, 5), Decimal("42.50"), "Groceries", exclude_id=kept.id
        ))
        assert match is None

    def test_duplicates_are_not_blocked(self, transactions, ctx):
        """Test that a flagged duplicate can still be saved."""
        create_expense(transactions, ctx, on_date=date(2024, 5, 5))
        create_expense(transactions, ctx, on_date=date(2024, 5, 5))
        assert asyncio.run(transactions.get_transaction_count(ctx)) == 2


class TestMoveCategory:
    """Tests for moving transactions between categories."""

    def test_moves_active_drafts_and_trash(self, transactions, ctx):
        """Test that every matching record is moved, including trashed ones."""
        active = create_expense(transactions, ctx, category="Food", attachments=[RECEIPT])
        draft = create_expense(transactions, ctx, category="Food", amount="3.00")
        trashed = create_expense(transactions, ctx, category="Food", amount="4.00")
        asyncio.run(transactions.soft_delete(ctx, trashed.id))
        untouched = create_expense(transactions, ctx, category="Travel", amount="9.00")

        moved = asyncio.run(transactions.move_category(ctx, "Food", "Groceries"))
        assert moved == 3

        for transaction_id in (active.id, draft.id, trashed.id):
            record = asyncio.run(transactions.get_by_id(ctx, transaction_id))
            assert record.category == "Groceries"
            assert record.edit_history[-1].old_value == "Food"
        assert asyncio.run(transactions.get_by_id(ctx, untouched.id)).category == "Travel"

    def test_move_respects_type(self, transactions, ctx):
        """Test that a typed move leaves the other type alone."""
        create_expense(transactions, ctx, category="Misc")
        income = asyncio.run(transactions.create(
            ctx,
            on_date=date(2024, 5, 10),
            type=TransactionType.INCOME,
            category="Misc",
            amount=Decimal("10.00"),
        ))
        moved = asyncio.run(transactions.move_category(ctx, "Misc", "Other", TransactionType.EXPENSE))
        assert moved == 1
        assert asyncio.run(transactions.get_by_id(ctx, income.id)).category == "Misc"

    def test_move_to_same_name_is_noop(self, transactions, ctx):
        """Test that moving onto itself changes nothing."""
        create_expense(transactions, ctx)
        assert asyncio.run(transactions.move_category(ctx, "Groceries", "Groceries")) == 0


class TestReads:
    """Tests for paged, ranged and aggregated reads."""

    def test_page_filters_and_search(self, transactions, ctx):
        """Test filters and text search on the paged listing."""
        create_expense(transactions, ctx, description="Milk 100% organic", attachments=[RECEIPT])
        create_expense(transactions, ctx, amount="7.25", description="Bread")
        page = asyncio.run(transactions.get_active_page(
            ctx, 0, TransactionFilter(search_query="100%")
        ))
        assert [t.description for t in page.items] == ["Milk 100% organic"]

        drafts = asyncio.run(transactions.get_active_page(ctx, 0, TransactionFilter(drafts_only=True)))
        assert [t.description for t in drafts.items] == ["Bread"]

    def test_page_has_next(self, store, ctx, monkeypatch, settings):
        """Test paging boundaries."""
        monkeypatch.setenv("LEDGERVAULT_PAGE_SIZE", "2")
        # Second connection to the same file, opened with the smaller page size
        small_store = SQLiteLedgerStore(settings.storage)
        manager = TransactionManager(small_store, settings.storage)
        for day in (1, 2, 3):
            create_expense(manager, ctx, on_date=date(2024, 5, day), amount=f"{day}.00")

        first = asyncio.run(manager.get_active_page(ctx, 0))
        second = asyncio.run(manager.get_active_page(ctx, 1))
        assert first.has_next is True
        assert [t.date.day for t in first.items] == [3, 2]
        assert second.has_next is False
        assert [t.date.day for t in second.items] == [1]
        asyncio.run(small_store.close())

    def test_date_range(self, transactions, ctx):
        """Test inclusive date ranges and inverted range rejection."""
        create_expense(transactions, ctx, on_date=date(2024, 1, 31))
        create_expense(transactions, ctx, on_date=date(2024, 2, 1))
        create_expense(transactions, ctx, on_date=date(2024, 2, 29))
        in_range = asyncio.run(transactions.get_by_date_range(ctx, date(2024, 2, 1), date(2024, 2, 29)))
        assert len(in_range) == 2
        with pytest.raises(ValidationError):
            asyncio.run(transactions.get_by_date_range(ctx, date(2024, 3, 1), date(2024, 2, 1)))

    def test_by_type(self, transactions, ctx):
        """Test listing one direction of money, without trash."""
        kept = create_expense(transactions, ctx)
        trashed = create_expense(transactions, ctx, amount="3.00")
        asyncio.run(transactions.soft_delete(ctx, trashed.id))
        asyncio.run(transactions.create(
            ctx,
            on_date=date(2024, 5, 10),
            type=TransactionType.INCOME,
            category="Sales",
            amount=Decimal("10.00"),
        ))
        expenses = asyncio.run(transactions.get_by_type(ctx, TransactionType.EXPENSE))
        assert [t.id for t in expenses] == [kept.id]
        assert len(asyncio.run(transactions.get_by_type(ctx, "INCOME"))) == 1

    def test_totals_exclude_drafts_and_trash(self, transactions, ctx):
        """Test that totals only count finalized, active records."""
        create_expense(transactions, ctx, amount="0.10", attachments=[RECEIPT])
        create_expense(transactions, ctx, amount="0.20", attachments=[RECEIPT])
        create_expense(transactions, ctx, amount="99.00")
        trashed = create_expense(transactions, ctx, amount="50.00", attachments=[RECEIPT])
        asyncio.run(transactions.soft_delete(ctx, trashed.id))

        totals = asyncio.run(transactions.get_totals_by_category(ctx))
        assert len(totals) == 1
        assert totals[0].total == Decimal("0.30")
        assert totals[0].count == 2

    def test_referenced_attachments_include_trash(self, transactions, ctx):
        """Test that trashed receipts still count as referenced."""
        trashed = create_expense(transactions, ctx, attachments=[RECEIPT])
        asyncio.run(transactions.soft_delete(ctx, trashed.id))
        assert asyncio.run(transactions.referenced_attachments(ctx)) == {RECEIPT}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

"""
Tests for profiles, recent searches and the read model
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from ledgervault.config import StorageSettings
from ledgervault.lifecycle import (
    LedgerReader,
    ProfileManager,
    SearchHistoryManager,
)
from ledgervault.models.ledger import DEFAULT_PROFILE_ID, TransactionType
from ledgervault.services.backup import OperationGuard
from ledgervault.services.storage import ConstraintError, NotFoundError
from ledgervault.validation import ValidationError


@pytest.fixture
def guard() -> OperationGuard:
    return OperationGuard()


@pytest.fixture
def profiles(store, preferences, receipts, guard) -> ProfileManager:
    return ProfileManager(store, preferences, receipts, guard)


@pytest.fixture
def search_history(store, settings) -> SearchHistoryManager:
    return SearchHistoryManager(store, settings.storage)


class TestProfiles:
    """Tests for ProfileManager."""

    def test_default_profiles_seeded_once(self, profiles, preferences):
        """Test first-run seeding of Business and Personal."""
        created = asyncio.run(profiles.create_default_profiles())
        assert [p.name for p in created] == ["Business", "Personal"]
        assert created[0].id == DEFAULT_PROFILE_ID
        assert asyncio.run(preferences.get_current_profile_id()) == DEFAULT_PROFILE_ID

        again = asyncio.run(profiles.create_default_profiles())
        assert len(again) == 2

    def test_duplicate_name_rejected(self, profiles):
        """Test that profile names are unique regardless of case."""
        asyncio.run(profiles.create("Side Hustle"))
        with pytest.raises(ConstraintError):
            asyncio.run(profiles.create("side hustle"))

    def test_invalid_name_rejected(self, profiles):
        """Test the profile name character rules."""
        with pytest.raises(ValidationError):
            asyncio.run(profiles.create("Side/Hustle"))

    def test_rename(self, profiles):
        """Test renaming keeps the id."""
        profile = asyncio.run(profiles.create("Side Hustle"))
        renamed = asyncio.run(profiles.update(profile.id, name="Freelance", color="#000000"))
        assert renamed.id == profile.id
        assert asyncio.run(profiles.get(profile.id)).name == "Freelance"

    def test_switch_to(self, profiles, preferences):
        """Test switching remembers the current profile."""
        profile = asyncio.run(profiles.create("Side Hustle"))
        ctx = asyncio.run(profiles.switch_to(profile.id))
        assert ctx.profile_id == profile.id
        assert asyncio.run(preferences.current_context()) == ctx
        with pytest.raises(NotFoundError):
            asyncio.run(profiles.switch_to("missing"))

    def test_delete_cascades(self, profiles, transactions, categories, preferences, receipts, ctx, other_ctx):
        """Test that deleting a profile removes everything scoped to it."""
        transaction = asyncio.run(transactions.create(
            other_ctx,
            on_date=date(2024, 3, 1),
            type=TransactionType.EXPENSE,
            category="Fuel",
            amount=Decimal("30.00"),
        ))
        asyncio.run(categories.create(other_ctx, "Fuel", TransactionType.EXPENSE))
        asyncio.run(receipts.save_receipt(other_ctx, transaction.id, transaction.date, b"jpeg"))
        asyncio.run(preferences.set_retention_years(other_ctx, 8))
        asyncio.run(preferences.set_current_profile_id(other_ctx.profile_id))

        kept = asyncio.run(transactions.create(
            ctx,
            on_date=date(2024, 3, 1),
            type=TransactionType.INCOME,
            category="Sales",
            amount=Decimal("5.00"),
        ))

        removed = asyncio.run(profiles.delete(other_ctx.profile_id))
        assert removed["transactions"] == 1
        assert removed["categories"] == 1
        assert removed["profiles"] == 1
        assert removed["receipt_files"] == 1
        assert removed["preferences"] == 1

        assert asyncio.run(receipts.list_files(other_ctx.profile_id)) == []
        assert asyncio.run(preferences.get_current_profile_id()) == ctx.profile_id
        assert asyncio.run(transactions.get_by_id(ctx, kept.id)) == kept

    def test_last_profile_cannot_be_deleted(self, profiles, ctx):
        """Test that one profile always remains."""
        with pytest.raises(ConstraintError):
            asyncio.run(profiles.delete(ctx.profile_id))

    def test_reset_all_data(self, profiles, store, transactions, preferences, receipts, ctx):
        """Test that a reset wipes records, receipts and preferences."""
        transaction = asyncio.run(transactions.create(
            ctx,
            on_date=date(2024, 3, 1),
            type=TransactionType.INCOME,
            category="Sales",
            amount=Decimal("5.00"),
        ))
        asyncio.run(receipts.save_receipt(ctx, transaction.id, transaction.date, b"jpeg"))
        asyncio.run(preferences.set_onboarding_complete())

        asyncio.run(profiles.reset_all_data(store))

        assert set(asyncio.run(store.table_counts()).values()) == {0}
        assert asyncio.run(receipts.list_files()) == []
        assert asyncio.run(preferences.get_all()) == {}

    def test_reset_waits_for_backup(self, profiles, guard, store, transactions, ctx):
        """Test that a reset does not start while a backup holds the guard."""
        asyncio.run(transactions.create(
            ctx,
            on_date=date(2024, 3, 1),
            type=TransactionType.INCOME,
            category="Sales",
            amount=Decimal("5.00"),
        ))

        async def scenario():
            async with guard.hold("backup"):
                reset = asyncio.create_task(profiles.reset_all_data(store))
                for _ in range(5):
                    await asyncio.sleep(0)
                assert not reset.done()
                during = await store.table_counts()
            await reset
            return during

        during = asyncio.run(scenario())
        assert during["transactions"] == 1
        assert set(asyncio.run(store.table_counts()).values()) == {0}
        assert guard.is_held is False


class TestSearchHistory:
    """Tests for recent searches."""

    def test_blank_query_not_stored(self, search_history, ctx):
        """Test that whitespace-only searches are ignored."""
        assert asyncio.run(search_history.add(ctx, "   ")) is False
        assert asyncio.run(search_history.recent(ctx)) == []

    def test_repeat_moves_to_top(self, search_history, ctx):
        """Test that repeating a query does not add a second row."""
        for query in ("fuel", "rent", "fuel"):
            asyncio.run(search_history.add(ctx, query))
        assert [e.query for e in asyncio.run(search_history.recent(ctx))] == ["fuel", "rent"]

    def test_capped_per_profile(self, store, ctx, other_ctx, monkeypatch):
        """Test that only the newest queries are kept, per profile."""
        monkeypatch.setenv("LEDGERVAULT_SEARCH_HISTORY_LIMIT", "3")
        capped = SearchHistoryManager(store, StorageSettings())
        for query in ("a", "b", "c", "d"):
            asyncio.run(capped.add(ctx, query))
        asyncio.run(capped.add(other_ctx, "z"))

        assert [e.query for e in asyncio.run(capped.recent(ctx))] == ["d", "c", "b"]
        assert [e.query for e in asyncio.run(capped.recent(other_ctx))] == ["z"]
        assert len(asyncio.run(capped.recent(ctx, limit=50))) == 3

    def test_delete_and_clear(self, search_history, ctx, other_ctx):
        """Test removing one entry and clearing a profile."""
        asyncio.run(search_history.add(ctx, "fuel"))
        asyncio.run(search_history.add(ctx, "rent"))
        asyncio.run(search_history.add(other_ctx, "fuel"))
        entry = asyncio.run(search_history.recent(ctx))[0]

        assert asyncio.run(search_history.delete(other_ctx, entry.id)) is False
        assert asyncio.run(search_history.delete(ctx, entry.id)) is True
        assert asyncio.run(search_history.clear(ctx)) == 1
        assert len(asyncio.run(search_history.recent(other_ctx))) == 1


class TestLedgerReader:
    """Tests for the read model and change notifications."""

    def test_subscribers_told_after_commit(self, store, transactions, ctx):
        """Test that a write notifies subscribers of the touched table only."""
        reader = LedgerReader(store)
        seen = []
        reader.subscribe(["transactions"], seen.append)
        categories_seen = []
        reader.subscribe(["categories"], categories_seen.append)

        asyncio.run(transactions.create(
            ctx,
            on_date=date(2024, 3, 1),
            type=TransactionType.INCOME,
            category="Sales",
            amount=Decimal("5.00"),
        ))
        assert seen == [frozenset({"transactions"})]
        assert categories_seen == []

    def test_coroutine_subscriber_is_scheduled(self, store, transactions, ctx):
        """Test that async callbacks run on the event loop after the write."""
        seen = []

        async def on_change(tables):
            seen.append(tables)

        async def scenario():
            store.subscribe(["transactions"], on_change)
            await transactions.create(
                ctx,
                on_date=date(2024, 3, 1),
                type=TransactionType.INCOME,
                category="Sales",
                amount=Decimal("5.00"),
            )
            await store.notifier.drain()

        asyncio.run(scenario())
        assert seen == [frozenset({"transactions"})]

    def test_cancelled_subscription_is_silent(self, store, transactions, ctx):
        """Test that cancel() stops notifications."""
        seen = []
        subscription = LedgerReader(store).subscribe(["transactions"], seen.append)
        subscription.cancel()
        assert store.notifier.subscriber_count == 0
        asyncio.run(transactions.create(
            ctx,
            on_date=date(2024, 3, 1),
            type=TransactionType.INCOME,
            category="Sales",
            amount=Decimal("5.00"),
        ))
        assert seen == []

    def test_failing_subscriber_does_not_fail_write(self, store, transactions, ctx):
        """Test that a broken view cannot roll back a committed write."""

        def broken(tables):
            raise RuntimeError("view crashed")

        store.subscribe(["transactions"], broken)
        asyncio.run(transactions.create(
            ctx,
            on_date=date(2024, 3, 1),
            type=TransactionType.INCOME,
            category="Sales",
            amount=Decimal("5.00"),
        ))
        assert asyncio.run(transactions.get_transaction_count(ctx)) == 1

    def test_finalized_excludes_drafts(self, store, transactions, ctx):
        """Test the finalized and drafts views."""
        reader = LedgerReader(store)
        asyncio.run(transactions.create(
            ctx,
            on_date=date(2024, 3, 1),
            type=TransactionType.EXPENSE,
            category="Fuel",
            amount=Decimal("30.00"),
        ))
        assert asyncio.run(reader.finalized(ctx)) == []
        assert len(asyncio.run(reader.drafts(ctx))) == 1
        with pytest.raises(ValidationError):
            asyncio.run(reader.between(ctx, date(2024, 4, 1), date(2024, 3, 1)))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

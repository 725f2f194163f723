"""
Ledger Reader

DESIGN DECISION: Reports and exports read the ledger through this facade
and nothing else. It exposes only queries, so a report can never modify
a record, and it only returns what is actually stored.

Drafts are excluded from report figures (totals, finalized lists); they
are listed separately so the user can complete them.
"""

from datetime import date
from typing import Iterable, Optional

from ledgervault.models.ledger import (
    Category,
    CategoryTotal,
    Profile,
    ProfileContext,
    Transaction,
    TransactionFilter,
    TransactionPage,
    TransactionType,
)
from ledgervault.services.storage.notifier import ChangeCallback, Subscription
from ledgervault.services.storage.sqlite_store import SQLiteLedgerStore
from ledgervault.validation import LedgerValidator


class LedgerReader:
    """Read-only view of the record store for report and export collaborators."""

    def __init__(self, store: SQLiteLedgerStore):
        self._store = store

    async def profiles(self) -> list[Profile]:
        return await self._store.list_profiles()

    async def categories(
        self,
        ctx: ProfileContext,
        type: Optional[TransactionType] = None,
    ) -> list[Category]:
        return await self._store.list_categories(ctx, type, include_archived=True)

    async def finalized(self, ctx: ProfileContext) -> list[Transaction]:
        """Active, non-draft transactions, newest first."""
        return await self._store.list_finalized(ctx)

    async def drafts(self, ctx: ProfileContext) -> list[Transaction]:
        return await self._store.list_drafts(ctx)

    async def between(self, ctx: ProfileContext, start: date, end: date) -> list[Transaction]:
        """Finalized transactions dated within [start, end]."""
        if start > end:
            LedgerValidator.reject("start", "out_of_range", "Start date cannot be after end date")
        rows = await self._store.list_by_date_range(ctx, start, end)
        return [t for t in rows if not t.is_draft]

    async def page(
        self,
        ctx: ProfileContext,
        page: int = 0,
        filters: Optional[TransactionFilter] = None,
    ) -> TransactionPage:
        return await self._store.get_page(ctx, page, filters)

    async def totals(
        self,
        ctx: ProfileContext,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[CategoryTotal]:
        return await self._store.totals_by_category(ctx, start, end)

    def subscribe(self, tables: Iterable[str], callback: ChangeCallback) -> Subscription:
        """Re-run a report when any of the given tables change."""
        return self._store.subscribe(tables, callback)

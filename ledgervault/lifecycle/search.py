"""Recent searches, kept per profile and capped."""

from typing import Optional

from ledgervault.config import StorageSettings, get_settings
from ledgervault.models.ledger import ProfileContext, SearchHistoryEntry, utc_now
from ledgervault.services.storage.interface import SearchHistoryStorageInterface
from ledgervault.validation import LedgerValidator


class SearchHistoryManager:
    """
    Repeating a query moves it to the top instead of adding a second row.
    Only the newest `search_history_limit` queries survive.
    """

    def __init__(
        self,
        store: SearchHistoryStorageInterface,
        settings: Optional[StorageSettings] = None,
    ):
        self._store = store
        self._settings = settings or get_settings().storage

    async def add(self, ctx: ProfileContext, query: str) -> bool:
        """
        Record a search.

        Returns:
            False when the query was blank and nothing was stored
        """
        query = LedgerValidator.validate_search_query(query or "")
        if not query:
            return False
        await self._store.upsert_search(
            ctx, query, utc_now(), keep=self._settings.search_history_limit
        )
        return True

    async def recent(self, ctx: ProfileContext, limit: Optional[int] = None) -> list[SearchHistoryEntry]:
        cap = self._settings.search_history_limit
        limit = cap if limit is None else max(0, min(limit, cap))
        return await self._store.list_searches(ctx, limit)

    async def delete(self, ctx: ProfileContext, search_id: int) -> bool:
        return await self._store.delete_search(ctx, search_id)

    async def clear(self, ctx: ProfileContext) -> int:
        return await self._store.clear_searches(ctx)

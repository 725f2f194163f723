"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for record storage.
This allows us to:
1. Keep the lifecycle managers free of SQL
2. Hand the report/export collaborator a read surface with no writes
3. Swap the SQLite backend without touching business rules

Every profile-scoped method takes a ProfileContext. There is deliberately
no method that queries across profiles.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

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


class TransactionStorageInterface(ABC):
    """
    Abstract interface for transaction storage operations.

    The lifecycle manager is the only caller allowed to use the
    write methods; readers get the query methods.
    """

    @abstractmethod
    async def insert_transaction(self, transaction: Transaction) -> None:
        """
        Insert a new transaction.

        Raises:
            ConstraintError: If the id already exists
        """
        pass

    @abstractmethod
    async def save_transaction(self, transaction: Transaction) -> None:
        """
        Overwrite an existing transaction row.

        Raises:
            NotFoundError: If no row matches the id within the transaction's profile
        """
        pass

    @abstractmethod
    async def save_transactions(self, transactions: list[Transaction]) -> None:
        """Overwrite several rows atomically (bulk category moves)."""
        pass

    @abstractmethod
    async def get_transaction(
        self,
        ctx: ProfileContext,
        transaction_id: str,
    ) -> Optional[Transaction]:
        """
        Retrieve a transaction by id, deleted or not.

        Returns:
            The transaction if it exists in this profile, None otherwise
        """
        pass

    @abstractmethod
    async def list_active(self, ctx: ProfileContext) -> list[Transaction]:
        """Non-deleted transactions, newest date first."""
        pass

    @abstractmethod
    async def list_deleted(self, ctx: ProfileContext) -> list[Transaction]:
        """Soft-deleted transactions, most recently deleted first."""
        pass

    @abstractmethod
    async def list_drafts(self, ctx: ProfileContext) -> list[Transaction]:
        pass

    @abstractmethod
    async def list_by_date_range(
        self,
        ctx: ProfileContext,
        start: date,
        end: date,
    ) -> list[Transaction]:
        """Non-deleted transactions dated within [start, end]."""
        pass

    @abstractmethod
    async def list_by_type(self, ctx: ProfileContext, type: TransactionType) -> list[Transaction]:
        pass

    @abstractmethod
    async def list_by_category(
        self,
        ctx: ProfileContext,
        category: str,
        include_deleted: bool = False,
    ) -> list[Transaction]:
        pass

    @abstractmethod
    async def get_page(
        self,
        ctx: ProfileContext,
        page: int,
        filters: Optional[TransactionFilter] = None,
    ) -> TransactionPage:
        """
        One page of non-deleted transactions.

        Args:
            ctx: Profile to read from
            page: Zero-based page number
            filters: Optional type/category/draft/date/text filters

        Returns:
            The page, with has_next set when more rows follow
        """
        pass

    @abstractmethod
    async def count_transactions(
        self,
        ctx: ProfileContext,
        deleted: bool = False,
        draft: Optional[bool] = None,
    ) -> int:
        """
        Count transactions by deletion and draft state.

        draft=None counts drafts and finalized rows together.
        """
        pass

    @abstractmethod
    async def count_by_category(
        self,
        ctx: ProfileContext,
        category: str,
        type: Optional[TransactionType] = None,
    ) -> int:
        """Count every transaction naming the category, including drafts and deleted rows."""
        pass

    @abstractmethod
    async def totals_by_category(
        self,
        ctx: ProfileContext,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[CategoryTotal]:
        """Sum of finalized, non-deleted amounts per category."""
        pass

    @abstractmethod
    async def find_duplicate(
        self,
        ctx: ProfileContext,
        on_date: date,
        amount: Decimal,
        category: str,
        window_days: int,
        exclude_id: Optional[str] = None,
    ) -> Optional[Transaction]:
        """
        Find a non-deleted transaction with the same amount and category
        dated within window_days of on_date.
        """
        pass

    @abstractmethod
    async def list_deleted_before(
        self,
        ctx: ProfileContext,
        cutoff: datetime,
    ) -> list[Transaction]:
        """Transactions soft-deleted before the cutoff."""
        pass

    @abstractmethod
    async def count_active_before(self, ctx: ProfileContext, cutoff: date) -> int:
        """Non-deleted transactions dated before the cutoff."""
        pass

    @abstractmethod
    async def hard_delete_transactions(
        self,
        ctx: ProfileContext,
        transaction_ids: list[str],
    ) -> int:
        """
        Physically remove transactions.

        Only the retention sweep and resets call this.

        Returns:
            Number of rows removed
        """
        pass


class CategoryStorageInterface(ABC):
    """Abstract interface for category storage."""

    @abstractmethod
    async def insert_category(self, category: Category) -> None:
        """
        Insert a new category.

        Raises:
            ConstraintError: If (profile_id, name, type) already exists
        """
        pass

    @abstractmethod
    async def save_category(self, category: Category) -> None:
        """
        Overwrite an existing category row.

        Raises:
            NotFoundError: If the category does not exist in its profile
            ConstraintError: If a rename collides with another category
        """
        pass

    @abstractmethod
    async def get_category(
        self,
        ctx: ProfileContext,
        category_id: str,
    ) -> Optional[Category]:
        pass

    @abstractmethod
    async def find_category(
        self,
        ctx: ProfileContext,
        name: str,
        type: Optional[TransactionType] = None,
    ) -> Optional[Category]:
        """Case-insensitive lookup by name."""
        pass

    @abstractmethod
    async def list_categories(
        self,
        ctx: ProfileContext,
        type: Optional[TransactionType] = None,
        include_archived: bool = False,
    ) -> list[Category]:
        """Categories ordered by display order, then name."""
        pass

    @abstractmethod
    async def delete_category(self, ctx: ProfileContext, category_id: str) -> bool:
        pass


class ProfileStorageInterface(ABC):
    """Abstract interface for profile storage."""

    @abstractmethod
    async def insert_profile(self, profile: Profile) -> None:
        pass

    @abstractmethod
    async def save_profile(self, profile: Profile) -> None:
        pass

    @abstractmethod
    async def get_profile(self, profile_id: str) -> Optional[Profile]:
        pass

    @abstractmethod
    async def list_profiles(self) -> list[Profile]:
        pass

    @abstractmethod
    async def delete_profile_cascade(self, profile_id: str) -> dict[str, int]:
        """
        Delete a profile and every record scoped to it, in one transaction.

        Returns:
            Rows removed per table
        """
        pass


class SearchHistoryStorageInterface(ABC):
    """Abstract interface for recent-search storage."""

    @abstractmethod
    async def upsert_search(
        self,
        ctx: ProfileContext,
        query: str,
        timestamp: datetime,
        keep: int,
    ) -> None:
        """
        Insert the query or refresh its timestamp, then trim the profile's
        history to the `keep` most recent entries.
        """
        pass

    @abstractmethod
    async def list_searches(
        self,
        ctx: ProfileContext,
        limit: int,
    ) -> list[SearchHistoryEntry]:
        pass

    @abstractmethod
    async def delete_search(self, ctx: ProfileContext, search_id: int) -> bool:
        pass

    @abstractmethod
    async def clear_searches(self, ctx: ProfileContext) -> int:
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Requested item does not exist, or exists outside the caller's profile."""
    pass


class ConstraintError(StorageError):
    """A uniqueness or integrity rule rejected the write."""
    pass


class StoreClosedError(StorageError):
    """The store connection was torn down (after a restore the process must restart)."""
    pass

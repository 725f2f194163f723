"""
Lifecycle package.

The business-rule layer. These managers are the only writers of
transactions, categories, profiles and search history.
"""

from ledgervault.lifecycle.categories import DEFAULT_CATEGORIES, CategoryManager
from ledgervault.lifecycle.profiles import DEFAULT_PROFILES, ProfileManager
from ledgervault.lifecycle.reader import LedgerReader
from ledgervault.lifecycle.retention import RetentionSweeper, years_before
from ledgervault.lifecycle.search import SearchHistoryManager
from ledgervault.lifecycle.transactions import TransactionManager

__all__ = [
    "DEFAULT_CATEGORIES",
    "DEFAULT_PROFILES",
    "CategoryManager",
    "LedgerReader",
    "ProfileManager",
    "RetentionSweeper",
    "SearchHistoryManager",
    "TransactionManager",
    "years_before",
]

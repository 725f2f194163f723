"""
Shared fixtures for LedgerVault tests.

Every test gets its own data directory through LEDGERVAULT_DATA_DIR, so
the real stores (SQLite, preference JSON, receipt folders) run against
tmp_path. No mocks for storage: the point of these tests is what lands
on disk.
"""

import asyncio

import pytest

from ledgervault.config import Settings
from ledgervault.lifecycle import CategoryManager, TransactionManager
from ledgervault.models.ledger import DEFAULT_PROFILE_ID, Profile, ProfileContext
from ledgervault.services.preferences import PreferenceStore
from ledgervault.services.receipts import ReceiptFileStore
from ledgervault.services.storage import SQLiteLedgerStore


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    path = tmp_path / "data"
    monkeypatch.setenv("LEDGERVAULT_DATA_DIR", str(path))
    return path


@pytest.fixture
def settings(data_dir) -> Settings:
    return Settings()


@pytest.fixture
def store(settings):
    store = SQLiteLedgerStore(settings.storage)
    asyncio.run(store.initialise())
    yield store
    if not store.closed:
        asyncio.run(store.close())


@pytest.fixture
def ctx(store) -> ProfileContext:
    """The default Business profile, inserted into the store."""
    profile = Profile(id=DEFAULT_PROFILE_ID, name="Business")
    asyncio.run(store.insert_profile(profile))
    return profile.context


@pytest.fixture
def other_ctx(store) -> ProfileContext:
    profile = Profile(name="Personal", icon="person", color="#388E3C")
    asyncio.run(store.insert_profile(profile))
    return profile.context


@pytest.fixture
def transactions(store, settings) -> TransactionManager:
    return TransactionManager(store, settings.storage)


@pytest.fixture
def categories(store, transactions) -> CategoryManager:
    return CategoryManager(store, store, transactions)


@pytest.fixture
def preferences(settings) -> PreferenceStore:
    return PreferenceStore(settings.storage, settings.retention)


@pytest.fixture
def receipts(settings) -> ReceiptFileStore:
    return ReceiptFileStore(settings.storage)

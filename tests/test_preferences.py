"""
Tests for the preference store
"""

import asyncio
import json
from datetime import date

import pytest

from ledgervault.models.ledger import DEFAULT_PROFILE_ID, ProfileContext
from ledgervault.services.preferences import PreferenceStore
from ledgervault.services.preferences.store import PreferenceKeys, profile_key
from ledgervault.services.storage import StoreClosedError


class TestPreferenceStore:
    """Tests for PreferenceStore."""

    def test_defaults(self, preferences):
        """Test values before anything was written."""
        assert asyncio.run(preferences.is_onboarding_complete()) is False
        assert asyncio.run(preferences.get_current_profile_id()) == DEFAULT_PROFILE_ID
        assert asyncio.run(preferences.get_last_retention_warning()) is None
        assert asyncio.run(preferences.get("theme", "system")) == "system"

    def test_values_survive_reopen(self, preferences, settings):
        """Test that writes are durable across store instances."""
        asyncio.run(preferences.set(PreferenceKeys.THEME, "dark"))
        asyncio.run(preferences.set_onboarding_complete())

        reopened = PreferenceStore(settings.storage, settings.retention)
        assert asyncio.run(reopened.get(PreferenceKeys.THEME)) == "dark"
        assert asyncio.run(reopened.is_onboarding_complete()) is True

    def test_file_is_plain_json(self, preferences):
        """Test the on-disk layout copied into backups."""
        asyncio.run(preferences.set("ocr_enabled", True))
        assert not preferences.file_path.with_suffix(".tmp").exists()
        assert json.loads(preferences.file_path.read_text()) == {"ocr_enabled": True}

    def test_profile_scoped_keys(self, preferences):
        """Test that profile keys are prefixed and isolated."""
        business = ProfileContext(profile_id="p1")
        personal = ProfileContext(profile_id="p2")
        asyncio.run(preferences.set_for_profile(business, "base_currency", "GBP"))
        asyncio.run(preferences.set_for_profile(personal, "base_currency", "EUR"))

        values = asyncio.run(preferences.get_all())
        assert values[profile_key("p1", "base_currency")] == "GBP"
        assert asyncio.run(preferences.get_for_profile(personal, "base_currency")) == "EUR"

        assert asyncio.run(preferences.remove_profile_keys("p1")) == 1
        assert asyncio.run(preferences.get_for_profile(business, "base_currency")) is None
        assert asyncio.run(preferences.get_for_profile(personal, "base_currency")) == "EUR"

    def test_retention_years_bounds(self, preferences):
        """Test that retention must stay between 6 and 10 years."""
        ctx = ProfileContext(profile_id="p1")
        assert asyncio.run(preferences.get_retention_years(ctx)) == 6
        asyncio.run(preferences.set_retention_years(ctx, 10))
        assert asyncio.run(preferences.get_retention_years(ctx)) == 10
        with pytest.raises(ValueError):
            asyncio.run(preferences.set_retention_years(ctx, 5))
        with pytest.raises(ValueError):
            asyncio.run(preferences.set_retention_years(ctx, 11))

    def test_out_of_range_stored_value_is_clamped(self, preferences):
        """Test that a hand-edited value is read back inside the range."""
        ctx = ProfileContext(profile_id="p1")
        asyncio.run(preferences.set_for_profile(ctx, PreferenceKeys.DATA_RETENTION_YEARS, 40))
        assert asyncio.run(preferences.get_retention_years(ctx)) == 10

    def test_last_retention_warning(self, preferences):
        """Test the warning date round trip."""
        asyncio.run(preferences.set_last_retention_warning(date(2024, 5, 1)))
        assert asyncio.run(preferences.get_last_retention_warning()) == date(2024, 5, 1)

    def test_closed_store_refuses_calls(self, preferences):
        """Test that a closed store cannot be used again."""
        asyncio.run(preferences.close())
        with pytest.raises(StoreClosedError):
            asyncio.run(preferences.get("theme"))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

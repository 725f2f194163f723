"""Preference store package."""

from ledgervault.services.preferences.store import (
    PreferenceKeys,
    PreferenceStore,
    profile_key,
)

__all__ = [
    "PreferenceKeys",
    "PreferenceStore",
    "profile_key",
]

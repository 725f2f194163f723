"""Services package: record store, preferences, receipts, backup and restore."""

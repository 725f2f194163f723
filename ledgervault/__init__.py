"""
LedgerVault - Persistence Core

The local storage layer of a personal bookkeeping app: the transaction
record store and its schema migrations, preferences, receipt files, the
transaction lifecycle rules, and whole-data backup and restore.

DESIGN PRINCIPLES:
1. Nothing is silently corrected; bad input is rejected
2. Transactions are soft-deleted; only retention and reset remove them
3. Every change after creation is recorded in edit history
4. A backup is only complete once it validates
5. Fail early, fail visibly
"""

__version__ = "1.0.0"
__author__ = "LedgerVault Team"

"""Input validation package."""

from ledgervault.validation.validator import LedgerValidator, ValidationError

__all__ = [
    "LedgerValidator",
    "ValidationError",
]

"""
Input Validation

DESIGN DECISION: Every lifecycle operation validates its input here,
before anything touches the record store. Checks collect ValidationIssue
objects so one call reports every problem at once; the caller then raises
a single ValidationError carrying all of them.

IMPORTANT: Validation NEVER silently fixes issues.
Text is trimmed by the models, but out-of-range values are rejected,
not clamped.
"""

import re
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Iterable, NoReturn, Optional

from ledgervault.models.ledger import ValidationIssue


MAX_AMOUNT = Decimal("999999999.99")
MAX_DESCRIPTION_LENGTH = 500
MAX_NOTES_LENGTH = 2000
MAX_CATEGORY_NAME_LENGTH = 100
MAX_PROFILE_NAME_LENGTH = 50
MAX_SEARCH_QUERY_LENGTH = 200
MAX_PATH_LENGTH = 500
MAX_FILE_ID_LENGTH = 100
MAX_YEARS_IN_PAST = 100

PROFILE_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9 \-_()&']+$")
# Control characters other than tab, newline and carriage return
CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


class ValidationError(Exception):
    """Bad input to a lifecycle operation. Carries every issue found."""

    def __init__(self, issues: list[ValidationIssue]):
        self.issues = issues
        super().__init__("; ".join(issue.message for issue in issues))

    @property
    def fields(self) -> list[str]:
        return [issue.field for issue in self.issues]


def _issue(field: str, issue_type: str, message: str) -> ValidationIssue:
    return ValidationIssue(field=field, issue_type=issue_type, message=message)


class LedgerValidator:
    """
    Field-level rules for transactions, categories, profiles and searches.

    All check_* methods return a list of issues (empty when valid).
    """

    @staticmethod
    def reject(field: str, issue_type: str, message: str) -> NoReturn:
        raise ValidationError([_issue(field, issue_type, message)])

    @staticmethod
    def raise_if_any(issues: list[ValidationIssue]) -> None:
        if issues:
            raise ValidationError(issues)

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @staticmethod
    def check_amount(amount: object) -> list[ValidationIssue]:
        try:
            value = Decimal(str(amount))
        except (InvalidOperation, ValueError):
            return [_issue("amount", "invalid_format", "Amount is not a number")]

        if not value.is_finite():
            return [_issue("amount", "invalid_format", "Amount is not a number")]
        if value <= 0:
            return [_issue("amount", "out_of_range", "Amount must be greater than zero")]
        if value > MAX_AMOUNT:
            return [_issue("amount", "out_of_range", f"Amount cannot exceed {MAX_AMOUNT:,}")]
        if -value.as_tuple().exponent > 2:
            return [_issue("amount", "invalid_format", "Amount cannot have more than 2 decimal places")]
        return []

    @staticmethod
    def check_date(on_date: Optional[date], today: Optional[date] = None) -> list[ValidationIssue]:
        if on_date is None:
            return [_issue("date", "missing", "Date is required")]
        today = today or date.today()
        if on_date > today:
            return [_issue("date", "out_of_range", "Date cannot be in the future")]
        if on_date < today - timedelta(days=365 * MAX_YEARS_IN_PAST):
            return [_issue("date", "out_of_range", f"Date cannot be more than {MAX_YEARS_IN_PAST} years ago")]
        return []

    @staticmethod
    def check_text(field: str, value: Optional[str], max_length: int) -> list[ValidationIssue]:
        if value is None:
            return []
        issues = []
        if len(value) > max_length:
            issues.append(_issue(field, "too_long", f"{field.capitalize()} cannot exceed {max_length} characters"))
        if CONTROL_CHARS.search(value):
            issues.append(_issue(field, "invalid_characters", f"{field.capitalize()} contains invalid characters"))
        return issues

    @staticmethod
    def check_category_reference(category: Optional[str]) -> list[ValidationIssue]:
        if category is None or not category.strip():
            return [_issue("category", "missing", "Category is required")]
        return LedgerValidator.check_text("category", category, MAX_CATEGORY_NAME_LENGTH)

    @staticmethod
    def check_attachments(paths: Iterable[str]) -> list[ValidationIssue]:
        issues = []
        for path in paths:
            issues.extend(LedgerValidator.check_path(path))
        return issues

    @classmethod
    def validate_transaction(
        cls,
        amount: object,
        on_date: Optional[date],
        category: Optional[str],
        description: Optional[str] = None,
        notes: Optional[str] = None,
        attachments: Iterable[str] = (),
    ) -> None:
        """
        Validate every user-supplied transaction field.

        Raises:
            ValidationError: With one issue per failing field
        """
        issues = []
        issues.extend(cls.check_amount(amount))
        issues.extend(cls.check_date(on_date))
        issues.extend(cls.check_category_reference(category))
        issues.extend(cls.check_text("description", description, MAX_DESCRIPTION_LENGTH))
        issues.extend(cls.check_text("notes", notes, MAX_NOTES_LENGTH))
        issues.extend(cls.check_attachments(attachments))
        cls.raise_if_any(issues)

    # -------------------------------------------------------------------------
    # Categories, profiles, search
    # -------------------------------------------------------------------------

    @staticmethod
    def validate_category_name(name: Optional[str]) -> str:
        """Returns the trimmed name or raises ValidationError."""
        if name is None or not name.strip():
            LedgerValidator.reject("name", "missing", "Category name cannot be empty")
        trimmed = name.strip()
        LedgerValidator.raise_if_any(
            LedgerValidator.check_text("name", trimmed, MAX_CATEGORY_NAME_LENGTH)
        )
        return trimmed

    @staticmethod
    def validate_profile_name(name: Optional[str]) -> str:
        """Returns the trimmed name or raises ValidationError."""
        if name is None or not name.strip():
            LedgerValidator.reject("name", "missing", "Profile name cannot be empty")
        trimmed = name.strip()
        if len(trimmed) > MAX_PROFILE_NAME_LENGTH:
            LedgerValidator.reject(
                "name", "too_long", f"Profile name cannot exceed {MAX_PROFILE_NAME_LENGTH} characters"
            )
        if not PROFILE_NAME_PATTERN.match(trimmed):
            LedgerValidator.reject(
                "name", "invalid_characters",
                "Profile name can only contain letters, numbers, spaces and - _ ( ) & '"
            )
        return trimmed

    @staticmethod
    def validate_search_query(query: str) -> str:
        trimmed = query.strip()
        if len(trimmed) > MAX_SEARCH_QUERY_LENGTH:
            LedgerValidator.reject(
                "query", "too_long", f"Search cannot exceed {MAX_SEARCH_QUERY_LENGTH} characters"
            )
        return trimmed

    # -------------------------------------------------------------------------
    # Paths
    # -------------------------------------------------------------------------

    @staticmethod
    def check_path(path: str) -> list[ValidationIssue]:
        if not path or not path.strip():
            return [_issue("attachment", "missing", "Attachment path cannot be empty")]
        if len(path) > MAX_PATH_LENGTH:
            return [_issue("attachment", "too_long", f"Attachment path cannot exceed {MAX_PATH_LENGTH} characters")]
        if "\x00" in path or ".." in path.replace("\\", "/").split("/"):
            return [_issue("attachment", "invalid_path", "Attachment path is not allowed")]
        if path.startswith(("/", "\\")):
            return [_issue("attachment", "invalid_path", "Attachment path must be relative")]
        return []

    @staticmethod
    def require_safe_path(path: str) -> None:
        LedgerValidator.raise_if_any(LedgerValidator.check_path(path))

    @staticmethod
    def require_safe_file_id(value: str) -> None:
        """Ids that become part of a file or folder name."""
        if not value or not value.strip():
            LedgerValidator.reject("id", "missing", "Identifier cannot be empty")
        if len(value) > MAX_FILE_ID_LENGTH:
            LedgerValidator.reject("id", "too_long", "Identifier is too long")
        if "/" in value or "\\" in value or ".." in value or "\x00" in value:
            LedgerValidator.reject("id", "invalid_characters", "Identifier contains path characters")

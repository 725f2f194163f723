"""
Core Ledger Models for LedgerVault

These models define the strict schemas for everything the record store holds.
They are designed to:
1. Enforce the ledger invariants at runtime (draft status, soft delete)
2. Keep money exact (Decimal, never float)
3. Be serializable for storage, logging and backup manifests

DESIGN DECISION: Transactions reference their category by NAME, not by id.
Renames and merges go through TransactionManager.move_category so the
denormalized name is never rewritten ad hoc.
"""

import datetime as dt
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


DEFAULT_PROFILE_ID = "business-profile-default-uuid"


def utc_now() -> datetime:
    """Timezone-aware now, used for every stored timestamp."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionType(str, Enum):
    """
    Direction of money movement.

    The amount is always non-negative; the type carries the sign.
    """
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


# =============================================================================
# PROFILE MODELS
# =============================================================================

class ProfileContext(BaseModel):
    """
    The tenant every store and lifecycle call runs against.

    Passed explicitly instead of read from a global "current profile".
    """

    model_config = ConfigDict(frozen=True)

    profile_id: str = Field(..., min_length=1)


class Profile(BaseModel):
    """An isolated namespace of financial data (e.g. Business, Personal)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1, max_length=50)
    icon: str = Field(default="business")
    color: str = Field(default="#1976D2")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def context(self) -> ProfileContext:
        return ProfileContext(profile_id=self.id)


# =============================================================================
# CATEGORY MODELS
# =============================================================================

class Category(BaseModel):
    """
    A named INCOME or EXPENSE bucket within a profile.

    (profile_id, name, type) is unique; the record store enforces it
    with a unique index.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    profile_id: str
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    icon: Optional[str] = None
    color: Optional[str] = None
    tax_form_reference: Optional[str] = Field(
        default=None,
        description="Tax return box or line this category reports into"
    )
    tax_form_description: Optional[str] = None
    country_code: Optional[str] = Field(default=None, max_length=2)
    is_custom: bool = False
    is_archived: bool = False
    display_order: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# TRANSACTION MODELS
# =============================================================================

class EditHistoryEntry(BaseModel):
    """One changed field. Appended on every mutation, never rewritten."""

    field: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)


class Transaction(BaseModel):
    """
    The central ledger entity.

    INVARIANTS (checked on every construction, including rows read back):
    - An EXPENSE with no attachments is always a draft
    - is_deleted and deleted_at are set together
    - amount is never negative
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    profile_id: str
    date: date
    type: TransactionType
    category: str = Field(..., min_length=1)
    description: Optional[str] = None
    notes: Optional[str] = None
    amount: Decimal = Field(..., ge=0, decimal_places=2)
    attachments: list[str] = Field(
        default_factory=list,
        description="Receipt paths relative to the attachment root"
    )
    is_draft: bool = False
    is_demo_data: bool = False
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    edit_history: list[EditHistoryEntry] = Field(default_factory=list)

    @model_validator(mode='after')
    def validate_lifecycle_flags(self) -> 'Transaction':
        """Reject states the lifecycle manager can never produce."""
        if self.type == TransactionType.EXPENSE and not self.attachments and not self.is_draft:
            raise ValueError("An expense without attachments must be a draft")
        if self.is_deleted != (self.deleted_at is not None):
            raise ValueError("is_deleted and deleted_at must be set together")
        return self

    @staticmethod
    def derive_is_draft(type: TransactionType, attachments: list[str]) -> bool:
        """An expense is a draft until it has at least one receipt."""
        return type == TransactionType.EXPENSE and not attachments


class TransactionFilter(BaseModel):
    """Optional filters for paged transaction listings."""

    model_config = ConfigDict(str_strip_whitespace=True)

    type: Optional[TransactionType] = None
    category: Optional[str] = None
    drafts_only: bool = False
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    search_query: Optional[str] = Field(default=None, max_length=200)

    @model_validator(mode='after')
    def validate_date_range(self) -> 'TransactionFilter':
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date cannot be after end_date")
        return self


class TransactionPage(BaseModel):
    """One page of a paginated listing."""

    items: list[Transaction]
    page: int = Field(..., ge=0)
    page_size: int
    has_next: bool


class CategoryTotal(BaseModel):
    """Sum of finalized, non-deleted amounts for one category."""

    category: str
    type: TransactionType
    total: Decimal
    count: int


# =============================================================================
# SEARCH HISTORY
# =============================================================================

class SearchHistoryEntry(BaseModel):
    """A recently used search query within a profile."""

    id: Optional[int] = None
    profile_id: str
    query: str = Field(..., min_length=1, max_length=200)
    timestamp: datetime = Field(default_factory=utc_now)


class RetentionReport(BaseModel):
    """Outcome of one retention sweep across all profiles."""

    skipped: bool = False
    held_by: Optional[str] = Field(
        default=None,
        description="Operation holding the guard when the sweep was skipped"
    )
    profiles_swept: int = 0
    purged_transactions: int = 0
    purged_receipts: int = 0
    expired_active: int = Field(
        default=0,
        description="Active transactions dated before their profile's retention cutoff"
    )
    warning_due: bool = Field(
        default=False,
        description="True when the host should show the retention warning now"
    )


# =============================================================================
# COLLABORATOR MODELS
# =============================================================================

class ReceiptScanResult(BaseModel):
    """
    What the OCR collaborator hands back for a receipt image.

    The core performs no image analysis; it only persists these values.
    """

    amount: Optional[Decimal] = Field(default=None, ge=0)
    date: Optional[dt.date] = None
    merchant: Optional[str] = None
    confidence: float = Field(..., ge=0.0, le=1.0)
    error: Optional[str] = None


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'out_of_range', 'invalid_format')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )

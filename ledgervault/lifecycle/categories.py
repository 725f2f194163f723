"""
Category Manager

Categories are looked up by name from transactions (denormalized), so
every rename or merge is routed through TransactionManager.move_category.
Deleting a category is only allowed when nothing references it by name,
including drafts and trashed transactions.
"""

from typing import Optional

from ledgervault.audit import AuditLogger
from ledgervault.lifecycle.transactions import TransactionManager
from ledgervault.models.audit import AuditEventBuilder
from ledgervault.models.ledger import Category, ProfileContext, TransactionType, utc_now
from ledgervault.services.storage.interface import (
    CategoryStorageInterface,
    ConstraintError,
    NotFoundError,
    TransactionStorageInterface,
)
from ledgervault.validation import LedgerValidator


CUSTOM_DISPLAY_ORDER = 999

# (name, type, tax form reference, tax form description)
DEFAULT_CATEGORIES: list[tuple[str, TransactionType, Optional[str], Optional[str]]] = [
    ("Sales", TransactionType.INCOME, "Box 15", "Turnover"),
    ("Other Income", TransactionType.INCOME, "Box 16", "Any other business income"),
    ("Office Costs", TransactionType.EXPENSE, "Box 23", "Phone, stationery and other office costs"),
    ("Travel", TransactionType.EXPENSE, "Box 20", "Car, van and travel expenses"),
    ("Premises", TransactionType.EXPENSE, "Box 21", "Rent, rates, power and insurance costs"),
    ("Advertising", TransactionType.EXPENSE, "Box 24", "Advertising and business entertainment costs"),
    ("Professional Fees", TransactionType.EXPENSE, "Box 27", "Accountancy, legal and other professional fees"),
    ("Other Expenses", TransactionType.EXPENSE, "Box 30", "Other allowable business expenses"),
]


class CategoryManager:
    """Create, rename, archive, merge and delete categories within a profile."""

    def __init__(
        self,
        store: CategoryStorageInterface,
        transaction_store: TransactionStorageInterface,
        transactions: TransactionManager,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._transaction_store = transaction_store
        self._transactions = transactions
        self._audit_logger = audit_logger

    async def _require(self, ctx: ProfileContext, category_id: str) -> Category:
        category = await self._store.get_category(ctx, category_id)
        if category is None:
            raise NotFoundError(f"Category {category_id} not found")
        return category

    async def create(
        self,
        ctx: ProfileContext,
        name: str,
        type: TransactionType,
        icon: Optional[str] = None,
        color: Optional[str] = None,
        display_order: int = CUSTOM_DISPLAY_ORDER,
        tax_form_reference: Optional[str] = None,
        tax_form_description: Optional[str] = None,
        country_code: Optional[str] = None,
        is_custom: bool = True,
    ) -> Category:
        """
        Add a category.

        Raises:
            ValidationError: If the name is blank or too long
            ConstraintError: If the profile already has this name for this type
                (compared case-insensitively here; exactly by the unique index)
        """
        name = LedgerValidator.validate_category_name(name)
        type = TransactionType(type)
        if await self._store.find_category(ctx, name, type):
            raise ConstraintError(f"A {type.value.lower()} category named '{name}' already exists")

        now = utc_now()
        category = Category(
            profile_id=ctx.profile_id,
            name=name,
            type=type,
            icon=icon,
            color=color,
            tax_form_reference=tax_form_reference,
            tax_form_description=tax_form_description,
            country_code=country_code,
            is_custom=is_custom,
            display_order=display_order,
            created_at=now,
            updated_at=now,
        )
        await self._store.insert_category(category)

        if self._audit_logger:
            await self._audit_logger.log(
                AuditEventBuilder.category_created(category.id, ctx.profile_id, name)
            )
        return category

    async def update(
        self,
        ctx: ProfileContext,
        category_id: str,
        name: Optional[str] = None,
        type: Optional[TransactionType] = None,
        icon: Optional[str] = None,
        color: Optional[str] = None,
        display_order: Optional[int] = None,
    ) -> Category:
        """
        Edit a category. A rename is carried to every transaction using
        the old name. Changing the type is only allowed while unused.

        Raises:
            NotFoundError, ValidationError, ConstraintError
        """
        current = await self._require(ctx, category_id)
        changes: dict = {}

        if name is not None:
            name = LedgerValidator.validate_category_name(name)
            if name != current.name:
                clash = await self._store.find_category(ctx, name, type or current.type)
                if clash and clash.id != current.id:
                    raise ConstraintError(f"A category named '{name}' already exists")
                changes["name"] = name

        if type is not None and TransactionType(type) != current.type:
            in_use = await self._transaction_store.count_by_category(ctx, current.name, current.type)
            if in_use:
                raise ConstraintError(
                    f"'{current.name}' is used by {in_use} transaction(s); its type cannot change"
                )
            changes["type"] = TransactionType(type)

        for field, value in (("icon", icon), ("color", color), ("display_order", display_order)):
            if value is not None and value != getattr(current, field):
                changes[field] = value

        if not changes:
            return current

        changes["updated_at"] = utc_now()
        updated = current.model_copy(update=changes)
        await self._store.save_category(updated)

        if "name" in changes:
            await self._transactions.move_category(
                ctx, current.name, updated.name, type=updated.type
            )
        return updated

    async def set_archived(self, ctx: ProfileContext, category_id: str, archived: bool = True) -> Category:
        """Hide a category from active lists (or bring it back). Data is untouched."""
        current = await self._require(ctx, category_id)
        if current.is_archived == archived:
            return current
        updated = current.model_copy(update={"is_archived": archived, "updated_at": utc_now()})
        await self._store.save_category(updated)
        return updated

    async def merge(self, ctx: ProfileContext, from_id: str, to_id: str) -> int:
        """
        Move every transaction from one category to another, then delete the source.

        Returns:
            Number of transactions moved

        Raises:
            ValidationError: If the categories differ in type or the target is archived
        """
        source = await self._require(ctx, from_id)
        target = await self._require(ctx, to_id)
        if source.id == target.id:
            LedgerValidator.reject("to_id", "invalid_value", "Cannot merge a category into itself")
        if source.type != target.type:
            LedgerValidator.reject("to_id", "type_mismatch", "Categories must be of the same type")
        if target.is_archived:
            LedgerValidator.reject("to_id", "archived", "Cannot move transactions into an archived category")

        moved = await self._transactions.move_category(ctx, source.name, target.name, type=source.type)
        await self._store.delete_category(ctx, source.id)

        if self._audit_logger:
            await self._audit_logger.log(
                AuditEventBuilder.category_deleted(source.id, ctx.profile_id, source.name)
            )
        return moved

    async def delete(self, ctx: ProfileContext, category_id: str) -> None:
        """
        Permanently remove an unused category.

        Raises:
            NotFoundError: If the category does not exist
            ConstraintError: If any transaction (active, draft or trashed)
                references it, or it is the last category of its type
        """
        category = await self._require(ctx, category_id)

        in_use = await self._transaction_store.count_by_category(ctx, category.name, category.type)
        if in_use:
            raise ConstraintError(
                f"'{category.name}' is used by {in_use} transaction(s); move them first"
            )
        same_type = await self._store.list_categories(ctx, category.type, include_archived=True)
        if len(same_type) <= 1:
            raise ConstraintError(
                f"Cannot delete the last {category.type.value.lower()} category"
            )

        await self._store.delete_category(ctx, category.id)
        if self._audit_logger:
            await self._audit_logger.log(
                AuditEventBuilder.category_deleted(category.id, ctx.profile_id, category.name)
            )

    async def list_categories(
        self,
        ctx: ProfileContext,
        type: Optional[TransactionType] = None,
        include_archived: bool = False,
    ) -> list[Category]:
        return await self._store.list_categories(ctx, type, include_archived)

    async def seed_defaults(self, ctx: ProfileContext, country_code: str = "GB") -> int:
        """Create the default categories the profile does not have yet."""
        created = 0
        for order, (name, type, reference, description) in enumerate(DEFAULT_CATEGORIES):
            if await self._store.find_category(ctx, name, type):
                continue
            await self.create(
                ctx,
                name=name,
                type=type,
                display_order=order,
                tax_form_reference=reference,
                tax_form_description=description,
                country_code=country_code,
                is_custom=False,
            )
            created += 1
        return created

    async def remove_unused_seeded(self, ctx: ProfileContext) -> int:
        """
        Delete seeded (non-custom) categories no transaction uses,
        always keeping at least one category of each type.
        """
        removed = 0
        for type in TransactionType:
            categories = await self._store.list_categories(ctx, type, include_archived=True)
            remaining = len(categories)
            for category in categories:
                if category.is_custom or remaining <= 1:
                    continue
                if await self._transaction_store.count_by_category(ctx, category.name, type):
                    continue
                await self._store.delete_category(ctx, category.id)
                remaining -= 1
                removed += 1
        return removed

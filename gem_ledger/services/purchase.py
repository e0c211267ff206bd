"""
Purchase Service - Spend gems on profile customizations.

The charge, the active selection and the ownership record are written in
one database transaction.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gem_ledger.db.models import GemActiveSelection, GemOwnedItem, GemTransaction, utc_now
from gem_ledger.exceptions import InsufficientBalanceError, InvalidCustomValueError
from gem_ledger.models.api import CustomizationCategory, TransactionMetadata, TransactionType
from gem_ledger.models.domain import ActiveSelectionData, OwnedItemData, PurchaseResult
from gem_ledger.observability import get_logger, metrics, trace_operation
from gem_ledger.services.catalog import CustomColorItem, get_catalog_item
from gem_ledger.services.ledger import LedgerService

logger = get_logger(__name__)


class PurchaseService:
    """
    Customization purchases.

    Every purchase charges the catalog price, including re-selecting an item
    the user already owns.
    """

    def __init__(self, ledger: LedgerService) -> None:
        self.ledger = ledger
        self.session: AsyncSession = ledger.session

    async def purchase(
        self,
        user_id: str,
        category: CustomizationCategory,
        item_id: str,
        custom_value: str | None = None,
    ) -> PurchaseResult:
        """
        Buy and activate a catalog item.

        Raises:
            UnknownItemError: Item not in the catalog
            InvalidCustomValueError: Custom color without a #RRGGBB value
            InsufficientBalanceError: Balance below the item price
        """
        item = get_catalog_item(category, item_id)

        if isinstance(item, CustomColorItem):
            if not item.is_valid_value(custom_value):
                metrics.purchases_total.labels(category=category.value, outcome="invalid").inc()
                raise InvalidCustomValueError(custom_value)
            stored_value = custom_value.upper() if custom_value else None
        else:
            stored_value = None

        async def activate_item(transaction: GemTransaction) -> None:
            await self._upsert_selection(user_id, category, item_id, stored_value, transaction)
            await self._record_ownership(user_id, category, item_id)

        with trace_operation(
            "customization_purchase", user_id=user_id, category=category.value, item_id=item_id
        ):
            try:
                transaction = await self.ledger.apply_delta(
                    user_id,
                    -item.price,
                    TransactionType.PURCHASE,
                    f"Purchase of {category.value} {item_id}",
                    TransactionMetadata(
                        item_category=category, item_id=item_id, custom_value=stored_value
                    ),
                    before_commit=activate_item,
                )
            except InsufficientBalanceError:
                metrics.purchases_total.labels(
                    category=category.value, outcome="insufficient_balance"
                ).inc()
                raise

        metrics.purchases_total.labels(category=category.value, outcome="completed").inc()
        logger.info(
            "customization_purchased",
            user_id=user_id,
            category=category.value,
            item_id=item_id,
            price=item.price,
            transaction_id=str(transaction.transaction_id),
        )

        return PurchaseResult(
            transaction=transaction,
            active_selections=await self.get_active_selections(user_id),
        )

    async def get_active_selections(self, user_id: str) -> list[ActiveSelectionData]:
        """Active item per category, at most one each."""
        stmt = (
            select(GemActiveSelection)
            .where(GemActiveSelection.user_id == user_id)
            .order_by(GemActiveSelection.category)
        )
        result = await self.session.execute(stmt)
        return [
            ActiveSelectionData(
                category=CustomizationCategory(selection.category),
                item_id=selection.item_id,
                custom_value=selection.custom_value,
                transaction_id=selection.transaction_id,
                activated_at=selection.activated_at,
            )
            for selection in result.scalars().all()
        ]

    async def list_owned_items(self, user_id: str) -> list[OwnedItemData]:
        """Items bought at least once, most recent purchase first."""
        stmt = (
            select(GemOwnedItem)
            .where(GemOwnedItem.user_id == user_id)
            .order_by(GemOwnedItem.last_purchased_at.desc())
        )
        result = await self.session.execute(stmt)
        return [
            OwnedItemData(
                category=CustomizationCategory(owned.category),
                item_id=owned.item_id,
                purchase_count=owned.purchase_count,
                first_purchased_at=owned.first_purchased_at,
                last_purchased_at=owned.last_purchased_at,
            )
            for owned in result.scalars().all()
        ]

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _upsert_selection(
        self,
        user_id: str,
        category: CustomizationCategory,
        item_id: str,
        custom_value: str | None,
        transaction: GemTransaction,
    ) -> None:
        """Replace the active selection of the category."""
        stmt = select(GemActiveSelection).where(
            GemActiveSelection.user_id == user_id,
            GemActiveSelection.category == category.value,
        )
        result = await self.session.execute(stmt)
        selection = result.scalar_one_or_none()

        if selection is None:
            self.session.add(
                GemActiveSelection(
                    user_id=user_id,
                    category=category.value,
                    item_id=item_id,
                    custom_value=custom_value,
                    transaction_id=transaction.id,
                )
            )
        else:
            selection.item_id = item_id
            selection.custom_value = custom_value
            selection.transaction_id = transaction.id
            selection.activated_at = utc_now()

        await self.session.flush()

    async def _record_ownership(
        self, user_id: str, category: CustomizationCategory, item_id: str
    ) -> None:
        stmt = select(GemOwnedItem).where(
            GemOwnedItem.user_id == user_id,
            GemOwnedItem.category == category.value,
            GemOwnedItem.item_id == item_id,
        )
        result = await self.session.execute(stmt)
        owned = result.scalar_one_or_none()

        if owned is None:
            self.session.add(
                GemOwnedItem(user_id=user_id, category=category.value, item_id=item_id)
            )
        else:
            owned.purchase_count = owned.purchase_count + 1
            owned.last_purchased_at = utc_now()

        await self.session.flush()

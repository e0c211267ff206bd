"""
Response builders - Domain objects to API models.

NO DICTIONARIES - Every builder returns a Pydantic model.
"""

from gem_ledger.models.api import (
    ActiveSelectionItem,
    ActiveSelections,
    ActivateOfferResponse,
    CatalogItemResponse,
    JustificationItem,
    JustificationStatus,
    OfferKeyItem,
    OwnedItem,
    PartnerOfferPublic,
    PartnerPublic,
    TransactionItem,
)
from gem_ledger.models.domain import (
    ActiveSelectionData,
    JustificationData,
    OfferKey,
    OwnedItemData,
    RedemptionResult,
    TransactionData,
)
from gem_ledger.services.catalog import CatalogItem, CustomColorItem
from gem_ledger.services.partner_catalog import Partner

JUSTIFICATION_DOWNLOAD_PATH = "/v1/gems/justifications/{reference}"


def transaction_item(transaction: TransactionData) -> TransactionItem:
    return TransactionItem(
        transaction_id=transaction.transaction_id,
        transaction_type=transaction.transaction_type,
        gems_delta=transaction.gems_delta,
        status=transaction.status,
        description=transaction.description,
        metadata=transaction.metadata,
        balance_after=transaction.balance_after,
        justification_ref=transaction.justification_ref,
        created_at=transaction.created_at.isoformat(),
        completed_at=transaction.completed_at.isoformat() if transaction.completed_at else None,
    )


def active_selections(selections: list[ActiveSelectionData]) -> ActiveSelections:
    """Fold per-category selections into the fixed-shape response."""
    by_category = {
        selection.category.value: ActiveSelectionItem(
            item_id=selection.item_id,
            custom_value=selection.custom_value,
            activated_at=selection.activated_at.isoformat(),
        )
        for selection in selections
    }
    return ActiveSelections.model_validate(by_category)


def owned_item(item: OwnedItemData) -> OwnedItem:
    return OwnedItem(
        category=item.category,
        item_id=item.item_id,
        purchase_count=item.purchase_count,
        first_purchased_at=item.first_purchased_at.isoformat(),
        last_purchased_at=item.last_purchased_at.isoformat(),
    )


def catalog_item(item: CatalogItem) -> CatalogItemResponse:
    return CatalogItemResponse(
        category=item.category,
        item_id=item.item_id,
        price=item.price,
        rarity=item.rarity,
        is_custom=isinstance(item, CustomColorItem),
    )


def justification_item(justification: JustificationData) -> JustificationItem:
    """Reference to an artifact; issued artifacts get a download URL."""
    issued = justification.status == JustificationStatus.ISSUED
    return JustificationItem(
        reference=justification.reference,
        status=justification.status,
        justification_type=justification.justification_type,
        content_type=justification.content_type if issued else None,
        download_url=(
            JUSTIFICATION_DOWNLOAD_PATH.format(reference=justification.reference)
            if issued
            else None
        ),
        error=justification.error,
    )


def activate_offer_response(result: RedemptionResult) -> ActivateOfferResponse:
    return ActivateOfferResponse(
        promo_code=result.promo_code,
        promo_description=result.promo_description,
        partner_name=result.partner_name,
        offer_description=result.offer_description,
        gems_cost=result.gems_cost,
        already_activated=result.replayed,
        justification_required=result.justification_required,
        justification=(
            justification_item(result.justification) if result.justification else None
        ),
        additional_benefits=list(result.additional_benefits),
        transaction=transaction_item(result.transaction),
    )


def offer_key_items(keys: list[OfferKey]) -> list[OfferKeyItem]:
    return [OfferKeyItem(partner_id=key.partner_id, offer_type=key.offer_type) for key in keys]


def partner_public(partner: Partner) -> PartnerPublic:
    """Partner listing; promo codes stay hidden until activation."""
    return PartnerPublic(
        partner_id=partner.partner_id,
        name=partner.name,
        category=partner.category,
        city=partner.city,
        offers=[
            PartnerOfferPublic(
                offer_type=offer.offer_type,
                gems_cost=offer.gems_cost,
                description=offer.description,
                promo_description=offer.promo_description,
                value_kind=offer.value_kind,
                value=offer.value,
                justification_required=offer.justification_required,
                justification_type=offer.justification_type,
                additional_benefits=list(offer.additional_benefits),
            )
            for offer in partner.offers
        ],
    )

"""
API Routes - FastAPI endpoints for gem operations.

NO DICTIONARIES - All requests/responses use Pydantic models.

Every /v1/gems endpoint acts on the user named by the session token.
Domain errors propagate to the GemLedgerError handler in main.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Query, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from gem_ledger.api import responses
from gem_ledger.api.dependencies import (
    SessionUser,
    get_conversion_service,
    get_current_user,
    get_purchase_service,
    get_read_ledger_service,
    get_reconciliation_service,
    get_redemption_service,
)
from gem_ledger.config import settings
from gem_ledger.db.session import get_read_db
from gem_ledger.models.api import (
    ActivatedOffersResponse,
    ActivateOfferRequest,
    ActivateOfferResponse,
    BalanceResponse,
    CatalogResponse,
    ConvertRequest,
    ConvertResponse,
    HealthResponse,
    HistoryResponse,
    OwnedItemsResponse,
    PartnersResponse,
    PurchaseRequest,
    PurchaseResponse,
    ReconcileRequest,
    ReconcileResponse,
    RegenerateJustificationRequest,
    RegenerateJustificationResponse,
)
from gem_ledger.models.domain import OfferKey
from gem_ledger.observability import get_logger
from gem_ledger.services.catalog import list_catalog_items
from gem_ledger.services.conversion import ConversionService
from gem_ledger.services.ledger import LedgerService
from gem_ledger.services.partner_catalog import PartnerCatalog, get_partner_catalog
from gem_ledger.services.purchase import PurchaseService
from gem_ledger.services.reconciliation import ReconciliationService
from gem_ledger.services.redemption import RedemptionService

logger = get_logger(__name__)

router = APIRouter()


# =============================================================================
# Ledger
# =============================================================================


@router.get("/v1/gems/balance", response_model=BalanceResponse)
async def get_balance(
    user: SessionUser = Depends(get_current_user),
    purchases: PurchaseService = Depends(get_purchase_service),
) -> BalanceResponse:
    """
    Current gem balance and active customizations.

    Creates the account at zero on first access.
    """
    account = await purchases.ledger.get_or_create_account(user.user_id)
    selections = await purchases.get_active_selections(user.user_id)
    return BalanceResponse(
        user_id=account.user_id,
        balance=account.balance,
        total_earned=account.total_earned,
        total_spent=account.total_spent,
        active_selections=responses.active_selections(selections),
    )


@router.post("/v1/gems/convert", response_model=ConvertResponse)
async def convert_points(
    request: ConvertRequest,
    user: SessionUser = Depends(get_current_user),
    service: ConversionService = Depends(get_conversion_service),
) -> ConvertResponse:
    """
    Convert external points into gems at the configured rate.

    Points are used in whole blocks; any remainder stays on the points ledger.
    """
    result = await service.convert(user.user_id, request.points)
    return ConvertResponse(
        gems_earned=result.gems_earned,
        points_used=result.points_used,
        balance_after=result.transaction.balance_after or 0,
        transaction=responses.transaction_item(result.transaction),
    )


@router.get("/v1/gems/history", response_model=HistoryResponse)
async def get_history(
    limit: int = Query(20, ge=1, le=settings.history_max_limit),
    cursor: str | None = Query(None, max_length=200),
    user: SessionUser = Depends(get_current_user),
    ledger: LedgerService = Depends(get_read_ledger_service),
) -> HistoryResponse:
    """Transaction history, newest first, with cursor pagination."""
    page = await ledger.list_transactions(user.user_id, limit=limit, cursor=cursor)
    return HistoryResponse(
        transactions=[responses.transaction_item(t) for t in page.transactions],
        next_cursor=page.next_cursor,
        has_more=page.has_more,
    )


# =============================================================================
# Customization
# =============================================================================


@router.get("/v1/gems/catalog", response_model=CatalogResponse)
async def get_catalog() -> CatalogResponse:
    """Purchasable customization items with their gem prices."""
    return CatalogResponse(items=[responses.catalog_item(item) for item in list_catalog_items()])


@router.post("/v1/gems/purchase", response_model=PurchaseResponse)
async def purchase_item(
    request: PurchaseRequest,
    user: SessionUser = Depends(get_current_user),
    service: PurchaseService = Depends(get_purchase_service),
) -> PurchaseResponse:
    """
    Buy a customization item and make it the active one in its category.

    Buying an item already owned charges again and re-activates it.
    """
    result = await service.purchase(
        user.user_id, request.category, request.item_id, request.custom_value
    )
    return PurchaseResponse(
        transaction=responses.transaction_item(result.transaction),
        balance_after=result.transaction.balance_after or 0,
        active_selections=responses.active_selections(result.active_selections),
    )


@router.get("/v1/gems/owned", response_model=OwnedItemsResponse)
async def get_owned_items(
    user: SessionUser = Depends(get_current_user),
    service: PurchaseService = Depends(get_purchase_service),
) -> OwnedItemsResponse:
    """Items purchased at least once."""
    items = await service.list_owned_items(user.user_id)
    return OwnedItemsResponse(items=[responses.owned_item(item) for item in items])


# =============================================================================
# Partner Offers
# =============================================================================


@router.get("/v1/gems/partners", response_model=PartnersResponse)
async def get_partners(
    user: SessionUser = Depends(get_current_user),
    partner_catalog: PartnerCatalog = Depends(get_partner_catalog),
) -> PartnersResponse:
    """Partners currently offering deals (promo codes hidden)."""
    return PartnersResponse(
        partners=[
            responses.partner_public(partner)
            for partner in partner_catalog.list_active_partners()
        ]
    )


@router.post("/v1/gems/offers/activate", response_model=ActivateOfferResponse)
async def activate_offer(
    request: ActivateOfferRequest,
    user: SessionUser = Depends(get_current_user),
    service: RedemptionService = Depends(get_redemption_service),
) -> ActivateOfferResponse:
    """
    Activate a partner offer.

    Idempotent per (user, partner, offer type): repeating the call returns the
    original promo code and transaction with already_activated=true and no charge.
    A justification that could not be issued is reported as pending; the charge
    is kept and the justification can be regenerated later.
    """
    result = await service.activate_offer(user.user_id, request.partner_id, request.offer_type)
    return responses.activate_offer_response(result)


@router.post("/v1/gems/offers/justification", response_model=RegenerateJustificationResponse)
async def regenerate_justification(
    request: RegenerateJustificationRequest,
    user: SessionUser = Depends(get_current_user),
    service: RedemptionService = Depends(get_redemption_service),
) -> RegenerateJustificationResponse:
    """Re-issue the justification of an activated offer without charging."""
    justification = await service.regenerate_justification(
        user.user_id, request.partner_id, request.offer_type
    )
    return RegenerateJustificationResponse(
        justification=responses.justification_item(justification)
    )


@router.get(
    "/v1/gems/justifications/{reference}",
    response_class=Response,
    responses={200: {"content": {"image/png": {}, "application/pdf": {}}}},
)
async def download_justification(
    reference: str,
    user: SessionUser = Depends(get_current_user),
    service: RedemptionService = Depends(get_redemption_service),
) -> Response:
    """Download an issued justification artifact owned by the caller."""
    justification = await service.get_justification_content(user.user_id, reference)
    content_type = justification.content_type or "application/octet-stream"
    extension = "pdf" if content_type == "application/pdf" else "png"
    return Response(
        content=justification.content or b"",
        media_type=content_type,
        headers={
            "Content-Disposition": f'attachment; filename="{reference}.{extension}"',
            "Cache-Control": "private, no-store",
        },
    )


@router.get("/v1/gems/offers/activated", response_model=ActivatedOffersResponse)
async def get_activated_offers(
    user: SessionUser = Depends(get_current_user),
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> ActivatedOffersResponse:
    """Server truth: offers with a completed activation."""
    keys = await service.server_offers(user.user_id)
    return ActivatedOffersResponse(offers=responses.offer_key_items(keys))


@router.post("/v1/gems/offers/reconcile", response_model=ReconcileResponse)
async def reconcile_offers(
    request: ReconcileRequest,
    user: SessionUser = Depends(get_current_user),
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> ReconcileResponse:
    """
    Merge the client's cached activated offers with server truth.

    The result is the union of both sets. It only drives client display;
    activation is still decided by the ledger.
    """
    local = [OfferKey(partner_id=o.partner_id, offer_type=o.offer_type) for o in request.offers]
    result = await service.reconcile(user.user_id, local)
    return ReconcileResponse(
        offers=responses.offer_key_items(result.offers),
        server_offers=responses.offer_key_items(result.server_offers),
    )


# =============================================================================
# Health
# =============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> Response:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error("health_check_database_failed", error=str(exc))
        unhealthy = HealthResponse(
            status="unhealthy",
            database="disconnected",
            timestamp=datetime.now(UTC).isoformat(),
            version=settings.api_version,
        )
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=unhealthy.model_dump(),
        )

    healthy = HealthResponse(
        status="healthy",
        database="connected",
        timestamp=datetime.now(UTC).isoformat(),
        version=settings.api_version,
    )
    return JSONResponse(content=healthy.model_dump())


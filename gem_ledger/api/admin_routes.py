"""
Admin API routes for operating the gem ledger.

Protected by the X-API-Key header (ADMIN_API_KEY). Grants and deductions go
through the same ledger path as user operations, so the balance invariant
and the history hold for them too.
"""

from fastapi import APIRouter, Depends

from gem_ledger.api import responses
from gem_ledger.api.dependencies import (
    get_ledger_service,
    get_partner_stats_service,
    require_admin_key,
)
from gem_ledger.models.api import (
    AdminAdjustRequest,
    AdminAdjustResponse,
    ConsistencyResponse,
    PartnerStatsItem,
    PartnerStatsResponse,
    TransactionMetadata,
    TransactionType,
)
from gem_ledger.observability import get_logger
from gem_ledger.services.ledger import LedgerService
from gem_ledger.services.partner_stats import PartnerStatsService

logger = get_logger(__name__)
router = APIRouter(
    prefix="/v1/admin/gems",
    tags=["admin"],
    dependencies=[Depends(require_admin_key)],
)


@router.post("/grant", response_model=AdminAdjustResponse)
async def grant_gems(
    request: AdminAdjustRequest,
    ledger: LedgerService = Depends(get_ledger_service),
) -> AdminAdjustResponse:
    """Credit gems to a user (support gestures, event rewards)."""
    transaction = await ledger.apply_delta(
        request.user_id,
        request.gems,
        TransactionType.ADMIN_GRANT,
        f"Admin grant: {request.note}",
        TransactionMetadata(admin_note=request.note),
    )
    logger.info(
        "admin_gems_granted",
        user_id=request.user_id,
        gems=request.gems,
        transaction_id=str(transaction.transaction_id),
    )
    return AdminAdjustResponse(
        transaction=responses.transaction_item(transaction),
        balance_after=transaction.balance_after or 0,
    )


@router.post("/deduct", response_model=AdminAdjustResponse)
async def deduct_gems(
    request: AdminAdjustRequest,
    ledger: LedgerService = Depends(get_ledger_service),
) -> AdminAdjustResponse:
    """Debit gems from a user. Refused when the balance would go negative."""
    transaction = await ledger.apply_delta(
        request.user_id,
        -request.gems,
        TransactionType.ADMIN_DEDUCT,
        f"Admin deduction: {request.note}",
        TransactionMetadata(admin_note=request.note),
    )
    logger.info(
        "admin_gems_deducted",
        user_id=request.user_id,
        gems=request.gems,
        transaction_id=str(transaction.transaction_id),
    )
    return AdminAdjustResponse(
        transaction=responses.transaction_item(transaction),
        balance_after=transaction.balance_after or 0,
    )


@router.get("/accounts/{user_id}/consistency", response_model=ConsistencyResponse)
async def check_account_consistency(
    user_id: str,
    ledger: LedgerService = Depends(get_ledger_service),
) -> ConsistencyResponse:
    """
    Compare stored totals with the sum of completed transaction deltas.

    Uses the primary database: an unknown user gets a zero account.
    """
    result = await ledger.verify_account_consistency(user_id)
    return ConsistencyResponse(
        user_id=result.user_id,
        consistent=result.consistent,
        balance=result.balance,
        total_earned=result.total_earned,
        total_spent=result.total_spent,
        completed_delta_sum=result.completed_delta_sum,
    )


@router.get("/partners/stats", response_model=PartnerStatsResponse)
async def get_partner_stats(
    stats: PartnerStatsService = Depends(get_partner_stats_service),
) -> PartnerStatsResponse:
    """Uses and savings per partner, derived from completed activations."""
    partners = await stats.get_partner_stats()
    return PartnerStatsResponse(
        partners=[
            PartnerStatsItem(
                partner_id=p.partner_id,
                name=p.name,
                total_uses=p.total_uses,
                total_savings=p.total_savings,
                gems_spent=p.gems_spent,
            )
            for p in partners
        ],
        total_uses=sum(p.total_uses for p in partners),
        total_savings=sum(p.total_savings for p in partners),
    )

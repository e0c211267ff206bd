"""
Reconciliation - Merge client-cached activated offers with server truth.

The merge is a set union: monotonic (nothing is ever dropped) and
idempotent (merging twice changes nothing). The client cache only drives
UI state; activation itself is always decided by the ledger.
"""

from collections.abc import Iterable
from dataclasses import dataclass

from gem_ledger.models.domain import OfferKey
from gem_ledger.observability import get_logger
from gem_ledger.services.ledger import LedgerService

logger = get_logger(__name__)


@dataclass(frozen=True)
class ReconciliationResult:
    """Merged view returned to the client."""

    offers: list[OfferKey]
    server_offers: list[OfferKey]


def reconcile_offer_keys(local: Iterable[OfferKey], server: Iterable[OfferKey]) -> list[OfferKey]:
    """Union of local and server keys, sorted for stable output."""
    return sorted(set(local) | set(server))


class ReconciliationService:
    """Server side of the reconciliation protocol."""

    def __init__(self, ledger: LedgerService) -> None:
        self.ledger = ledger

    async def server_offers(self, user_id: str) -> list[OfferKey]:
        return await self.ledger.list_activated_offers(user_id)

    async def reconcile(self, user_id: str, local: Iterable[OfferKey]) -> ReconciliationResult:
        local_keys = set(local)
        server = await self.server_offers(user_id)
        merged = reconcile_offer_keys(local_keys, server)

        unknown_to_server = local_keys.difference(server)
        if unknown_to_server:
            # Stale or foreign client entries; activation stays server-decided
            logger.info(
                "reconcile_local_only_offers",
                user_id=user_id,
                count=len(unknown_to_server),
                offers=[key.as_cache_key() for key in sorted(unknown_to_server)],
            )

        return ReconciliationResult(offers=merged, server_offers=server)

"""
Partner Stats - Usage and savings per partner for the admin dashboard.

Counts come from completed partner_offer transactions; the catalog is never
written to. Savings only add up fixed-amount offers.
"""

from gem_ledger.models.api import OfferValueKind
from gem_ledger.models.domain import PartnerStats
from gem_ledger.services.ledger import LedgerService
from gem_ledger.services.partner_catalog import PartnerCatalog


class PartnerStatsService:
    """Aggregates activation counts against the partner catalog."""

    def __init__(self, ledger: LedgerService, partner_catalog: PartnerCatalog) -> None:
        self.ledger = ledger
        self.partner_catalog = partner_catalog

    async def get_partner_stats(self) -> list[PartnerStats]:
        """Per-partner stats, most used first. Partners without activations are omitted."""
        totals: dict[str, PartnerStats] = {}

        for count in await self.ledger.count_offer_activations():
            found = self.partner_catalog.find_offer(count.partner_id, count.offer_type)
            name = found[0].name if found else count.partner_id
            savings = 0.0
            if found and found[1].value_kind == OfferValueKind.FIXED:
                savings = found[1].value * count.uses

            current = totals.get(count.partner_id)
            totals[count.partner_id] = PartnerStats(
                partner_id=count.partner_id,
                name=name,
                total_uses=count.uses + (current.total_uses if current else 0),
                total_savings=savings + (current.total_savings if current else 0.0),
                gems_spent=count.gems_spent + (current.gems_spent if current else 0),
            )

        return sorted(totals.values(), key=lambda s: (-s.total_uses, s.partner_id))

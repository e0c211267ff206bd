"""
Tests for the partner offer catalog.
"""

import json
from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from gem_ledger.exceptions import UnknownOfferError
from gem_ledger.models.api import OfferType, OfferValueKind
from gem_ledger.services.partner_catalog import (
    DEFAULT_PARTNERS,
    Partner,
    PartnerCatalog,
    PartnerOffer,
    load_partner_catalog,
)


def _offer(**overrides) -> PartnerOffer:
    fields = {
        "offer_type": OfferType.FREE,
        "value_kind": OfferValueKind.PERCENTAGE,
        "value": 10,
        "description": "10% off",
        "promo_code": "TEN",
        "promo_description": "Show at the counter",
    }
    fields.update(overrides)
    return PartnerOffer(**fields)


def _partner(**overrides) -> Partner:
    fields = {
        "partner_id": "shop",
        "name": "Shop",
        "category": "autre",
        "city": "Nantes",
        "offers": (_offer(),),
    }
    fields.update(overrides)
    return Partner(**fields)


class TestPartnerOffer:
    """Offer validation."""

    def test_free_offer_cannot_cost_gems(self):
        with pytest.raises(ValidationError):
            _offer(gems_cost=5)

    def test_premium_offer_must_cost_gems(self):
        with pytest.raises(ValidationError):
            _offer(offer_type=OfferType.PREMIUM, gems_cost=0)

    @pytest.mark.parametrize(
        ("kind", "value", "label"),
        [
            (OfferValueKind.PERCENTAGE, 20, "20%"),
            (OfferValueKind.FIXED, 5, "5€"),
            (OfferValueKind.FIXED, 7.5, "7.5€"),
            (OfferValueKind.WELCOME, 0, "10% off"),
        ],
    )
    def test_value_label(self, kind, value, label):
        assert _offer(value_kind=kind, value=value).value_label() == label


class TestPartner:
    """Partner validation and availability."""

    def test_duplicate_offer_types_rejected(self):
        with pytest.raises(ValidationError):
            _partner(offers=(_offer(), _offer(promo_code="OTHER")))

    def test_unknown_category_rejected(self):
        with pytest.raises(ValidationError):
            _partner(category="casino")

    def test_inactive_partner_unavailable(self):
        assert _partner(is_active=False).is_available() is False

    def test_validity_window(self):
        now = datetime.now(UTC)
        future = _partner(start_date=now + timedelta(days=1))
        expired = _partner(end_date=now - timedelta(days=1))
        current = _partner(start_date=now - timedelta(days=1), end_date=now + timedelta(days=1))

        assert future.is_available() is False
        assert expired.is_available() is False
        assert current.is_available() is True


class TestPartnerCatalog:
    """Lookup."""

    def test_default_catalog(self):
        catalog = load_partner_catalog()

        partner, offer = catalog.get_offer("cafe-des-arts", OfferType.PREMIUM)
        assert partner.name == "Café des Arts"
        assert offer.gems_cost == 50
        assert len(catalog.list_active_partners()) == len(DEFAULT_PARTNERS)

    def test_inactive_partner_not_activatable_but_findable(self):
        catalog = PartnerCatalog([_partner(is_active=False)])

        with pytest.raises(UnknownOfferError):
            catalog.get_offer("shop", OfferType.FREE)
        assert catalog.find_offer("shop", OfferType.FREE) is not None
        assert catalog.list_active_partners() == []

    def test_duplicate_partner_ids_rejected(self):
        with pytest.raises(ValueError):
            PartnerCatalog([_partner(), _partner()])

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "partners.json"
        path.write_text(
            json.dumps(
                {
                    "partners": [
                        {
                            "partner_id": "bowling-strike",
                            "name": "Strike",
                            "category": "loisirs",
                            "city": "Lille",
                            "offers": [
                                {
                                    "offer_type": "premium",
                                    "gems_cost": 20,
                                    "value_kind": "fixed",
                                    "value": 3,
                                    "description": "3€ la partie",
                                    "promo_code": "STRIKE3",
                                    "promo_description": "À la caisse",
                                    "justification_type": "pdf",
                                }
                            ],
                        }
                    ]
                }
            ),
            encoding="utf-8",
        )

        catalog = load_partner_catalog(str(path))

        _, offer = catalog.get_offer("bowling-strike", OfferType.PREMIUM)
        assert offer.promo_code == "STRIKE3"
        with pytest.raises(UnknownOfferError):
            catalog.get_offer("cafe-des-arts", OfferType.FREE)

    def test_invalid_file(self, tmp_path):
        path = tmp_path / "partners.json"
        path.write_text('{"partners": [{"partner_id": "x"}]}', encoding="utf-8")

        with pytest.raises(ValueError):
            load_partner_catalog(str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(ValueError):
            load_partner_catalog(str(tmp_path / "absent.json"))

    def test_not_json(self, tmp_path):
        path = tmp_path / "partners.json"
        path.write_text("{partners: [", encoding="utf-8")

        with pytest.raises(ValueError, match="Invalid partner catalog"):
            load_partner_catalog(str(path))

"""
Partner offer catalog.

Built-in partners can be replaced by a JSON file (PARTNER_CATALOG_PATH).
Immutable after load; shared by every request.
"""

from datetime import UTC, datetime
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from gem_ledger.config import settings
from gem_ledger.exceptions import UnknownOfferError
from gem_ledger.models.api import JustificationType, OfferType, OfferValueKind
from gem_ledger.observability import get_logger

logger = get_logger(__name__)


class PartnerOffer(BaseModel):
    """One offer tier of a partner."""

    model_config = ConfigDict(frozen=True)

    offer_type: OfferType
    gems_cost: int = Field(0, ge=0)
    value_kind: OfferValueKind
    value: float = Field(..., ge=0)
    description: str = Field(..., min_length=1, max_length=500)
    conditions: str | None = None
    promo_code: str = Field(..., min_length=1, max_length=100)
    promo_description: str = Field(..., min_length=1, max_length=500)
    justification_required: bool = True
    justification_type: JustificationType = JustificationType.IMAGE
    additional_benefits: tuple[str, ...] = ()

    @model_validator(mode="after")
    def validate_cost(self) -> "PartnerOffer":
        """Free offers cost nothing; premium offers cost at least one gem."""
        if self.offer_type == OfferType.FREE and self.gems_cost != 0:
            raise ValueError(f"Free offers cannot cost gems: {self.gems_cost}")
        if self.offer_type == OfferType.PREMIUM and self.gems_cost < 1:
            raise ValueError(f"Premium offers must cost at least 1 gem: {self.gems_cost}")
        return self

    def value_label(self) -> str:
        """Human-readable value: ``20%``, ``5€`` or the description for welcome offers."""
        if self.value_kind == OfferValueKind.PERCENTAGE:
            return f"{self.value:g}%"
        if self.value_kind == OfferValueKind.FIXED:
            return f"{self.value:g}€"
        return self.description


class Partner(BaseModel):
    """Partner business offering free and premium deals."""

    model_config = ConfigDict(frozen=True)

    partner_id: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=100)
    category: str = Field(
        ..., pattern=r"^(restauration|sport|culture|tech|bien-etre|loisirs|autre)$"
    )
    city: str
    is_active: bool = True
    start_date: datetime | None = None
    end_date: datetime | None = None
    offers: tuple[PartnerOffer, ...]

    @model_validator(mode="after")
    def validate_offers(self) -> "Partner":
        """At most one offer per tier."""
        offer_types = [offer.offer_type for offer in self.offers]
        if len(offer_types) != len(set(offer_types)):
            raise ValueError(f"Partner {self.partner_id} has duplicate offer types")
        return self

    def is_available(self, now: datetime | None = None) -> bool:
        """Active flag set and inside the optional validity window."""
        now = now or datetime.now(UTC)
        if not self.is_active:
            return False
        if self.start_date is not None and now < _aware(self.start_date):
            return False
        if self.end_date is not None and now > _aware(self.end_date):
            return False
        return True

    def get_offer(self, offer_type: OfferType) -> PartnerOffer | None:
        for offer in self.offers:
            if offer.offer_type == offer_type:
                return offer
        return None


class PartnerCatalogFile(BaseModel):
    """Schema of the JSON file overriding the built-in partners."""

    partners: list[Partner]


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class PartnerCatalog:
    """Lookup over a fixed set of partners."""

    def __init__(self, partners: list[Partner]) -> None:
        self._partners = {partner.partner_id: partner for partner in partners}
        if len(self._partners) != len(partners):
            raise ValueError("Duplicate partner_id in partner catalog")

    def get_offer(self, partner_id: str, offer_type: OfferType) -> tuple[Partner, PartnerOffer]:
        """
        Get an offer that can currently be activated.

        Raises:
            UnknownOfferError: Partner missing, inactive, or without that offer tier
        """
        partner = self._partners.get(partner_id)
        if partner is None or not partner.is_available():
            raise UnknownOfferError(partner_id, offer_type.value)
        offer = partner.get_offer(offer_type)
        if offer is None:
            raise UnknownOfferError(partner_id, offer_type.value)
        return partner, offer

    def find_offer(
        self, partner_id: str, offer_type: OfferType
    ) -> tuple[Partner, PartnerOffer] | None:
        """Get an offer regardless of partner availability (for already activated offers)."""
        partner = self._partners.get(partner_id)
        if partner is None:
            return None
        offer = partner.get_offer(offer_type)
        if offer is None:
            return None
        return partner, offer

    def list_active_partners(self) -> list[Partner]:
        return [partner for partner in self._partners.values() if partner.is_available()]


DEFAULT_PARTNERS: tuple[Partner, ...] = (
    Partner(
        partner_id="cafe-des-arts",
        name="Café des Arts",
        category="restauration",
        city="Lyon",
        offers=(
            PartnerOffer(
                offer_type=OfferType.FREE,
                value_kind=OfferValueKind.PERCENTAGE,
                value=10,
                description="10% sur toutes les boissons",
                promo_code="ARTS10",
                promo_description="Présentez ce code en caisse",
                justification_required=True,
                justification_type=JustificationType.IMAGE,
            ),
            PartnerOffer(
                offer_type=OfferType.PREMIUM,
                gems_cost=50,
                value_kind=OfferValueKind.PERCENTAGE,
                value=25,
                description="25% sur l'addition",
                promo_code="ARTS25VIP",
                promo_description="Valable une fois, sur place",
                justification_type=JustificationType.QR,
                additional_benefits=("Dessert offert", "Accès prioritaire"),
            ),
        ),
    ),
    Partner(
        partner_id="salle-climb-up",
        name="Climb Up",
        category="sport",
        city="Paris",
        offers=(
            PartnerOffer(
                offer_type=OfferType.FREE,
                value_kind=OfferValueKind.WELCOME,
                value=0,
                description="Séance découverte offerte",
                promo_code="CLIMBWELCOME",
                promo_description="Réservez en ligne avec ce code",
                justification_required=False,
            ),
            PartnerOffer(
                offer_type=OfferType.PREMIUM,
                gems_cost=30,
                value_kind=OfferValueKind.FIXED,
                value=15,
                description="15€ de réduction sur l'abonnement mensuel",
                promo_code="CLIMB15",
                promo_description="Code à saisir lors de l'inscription",
                justification_type=JustificationType.PDF,
            ),
        ),
    ),
    Partner(
        partner_id="librairie-page-blanche",
        name="Librairie Page Blanche",
        category="culture",
        city="Bordeaux",
        offers=(
            PartnerOffer(
                offer_type=OfferType.FREE,
                value_kind=OfferValueKind.PERCENTAGE,
                value=5,
                description="5% sur les livres scolaires",
                promo_code="PAGE5",
                promo_description="Sur présentation du justificatif",
            ),
        ),
    ),
)


def load_partner_catalog(path: str | None = None) -> PartnerCatalog:
    """
    Load the partner catalog from a JSON file, or the built-in partners.

    Raises:
        ValueError: File unreadable or not matching the catalog schema
    """
    if not path:
        return PartnerCatalog(list(DEFAULT_PARTNERS))

    try:
        catalog_file = PartnerCatalogFile.model_validate_json(Path(path).read_bytes())
    except (OSError, ValidationError) as e:
        logger.error("partner_catalog_load_failed", path=path, error=str(e))
        raise ValueError(f"Invalid partner catalog at {path}: {e}") from e

    logger.info("partner_catalog_loaded", path=path, partners=len(catalog_file.partners))
    return PartnerCatalog(catalog_file.partners)


@lru_cache(maxsize=1)
def get_partner_catalog() -> PartnerCatalog:
    """Process-wide partner catalog."""
    return load_partner_catalog(settings.partner_catalog_path)

"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

import re
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field

HEX_COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")


class TransactionType(str, Enum):
    """Gem transaction type enumeration."""

    CONVERSION = "conversion"
    PURCHASE = "purchase"
    REFUND = "refund"
    BONUS = "bonus"
    PARTNER_OFFER = "partner_offer"
    REWARD = "reward"
    ADMIN_GRANT = "admin_grant"
    ADMIN_DEDUCT = "admin_deduct"


class TransactionStatus(str, Enum):
    """Transaction lifecycle: created pending, then exactly one terminal state."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Terminal transactions are immutable."""
        return self is not TransactionStatus.PENDING

    def can_transition_to(self, target: "TransactionStatus") -> bool:
        """Only pending transactions may move, and only to a terminal state."""
        return self is TransactionStatus.PENDING and target.is_terminal


class CustomizationCategory(str, Enum):
    """Purchasable customization categories."""

    USERNAME_COLOR = "usernameColor"
    PROFILE_IMAGE = "profileImage"
    PROFILE_BORDER = "profileBorder"


class Rarity(str, Enum):
    """Informational rarity tier of a catalog item."""

    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


class OfferType(str, Enum):
    """Partner offer tier."""

    FREE = "free"
    PREMIUM = "premium"


class JustificationType(str, Enum):
    """Format of the proof-of-redemption artifact."""

    IMAGE = "image"
    QR = "qr"
    PDF = "pdf"


class JustificationStatus(str, Enum):
    """Issuance state of a proof-of-redemption artifact."""

    ISSUED = "issued"
    PENDING = "pending"


class OfferValueKind(str, Enum):
    """How a partner expresses the value of an offer."""

    PERCENTAGE = "percentage"
    FIXED = "fixed"
    WELCOME = "welcome"


# ============================================================================
# Transaction Models
# ============================================================================


class TransactionMetadata(BaseModel):
    """Type-specific transaction payload - explicit fields, no dict."""

    partner_id: str | None = None
    offer_type: OfferType | None = None
    promo_code: str | None = None
    item_category: CustomizationCategory | None = None
    item_id: str | None = None
    custom_value: str | None = None
    points_used: int | None = None
    conversion_rate: int | None = None
    admin_note: str | None = None
    failure_reason: str | None = None


class TransactionItem(BaseModel):
    """Single transaction in API responses."""

    transaction_id: UUID
    transaction_type: TransactionType
    gems_delta: int
    status: TransactionStatus
    description: str
    metadata: TransactionMetadata
    balance_after: int | None = None
    justification_ref: str | None = None
    created_at: str  # ISO 8601 timestamp
    completed_at: str | None = None


class HistoryResponse(BaseModel):
    """GET /v1/gems/history response (newest first)."""

    transactions: list[TransactionItem]
    next_cursor: str | None = None
    has_more: bool = False


# ============================================================================
# Balance Models
# ============================================================================


class ActiveSelectionItem(BaseModel):
    """Currently active item in one customization category."""

    item_id: str
    custom_value: str | None = None
    activated_at: str  # ISO 8601 timestamp


class ActiveSelections(BaseModel):
    """Active selection per category (at most one each)."""

    usernameColor: ActiveSelectionItem | None = None
    profileImage: ActiveSelectionItem | None = None
    profileBorder: ActiveSelectionItem | None = None


class BalanceResponse(BaseModel):
    """GET /v1/gems/balance response."""

    user_id: str
    balance: int
    total_earned: int
    total_spent: int
    active_selections: ActiveSelections


# ============================================================================
# Conversion Models
# ============================================================================


class ConvertRequest(BaseModel):
    """POST /v1/gems/convert request body."""

    points: int = Field(..., description="External points to convert (floored to blocks of 100)")


class ConvertResponse(BaseModel):
    """POST /v1/gems/convert response."""

    gems_earned: int
    points_used: int
    balance_after: int
    transaction: TransactionItem


# ============================================================================
# Purchase Models
# ============================================================================


class PurchaseRequest(BaseModel):
    """POST /v1/gems/purchase request body."""

    category: CustomizationCategory
    item_id: str = Field(..., min_length=1, max_length=100)
    custom_value: str | None = Field(
        None, max_length=32, description="Hex color for usernameColor/custom, e.g. #FF6B6B"
    )


class PurchaseResponse(BaseModel):
    """POST /v1/gems/purchase response."""

    transaction: TransactionItem
    balance_after: int
    active_selections: ActiveSelections


class OwnedItem(BaseModel):
    """Item the user has purchased at least once."""

    category: CustomizationCategory
    item_id: str
    purchase_count: int
    first_purchased_at: str
    last_purchased_at: str


class OwnedItemsResponse(BaseModel):
    """GET /v1/gems/owned response."""

    items: list[OwnedItem]


class CatalogItemResponse(BaseModel):
    """Single purchasable catalog entry."""

    category: CustomizationCategory
    item_id: str
    price: int
    rarity: Rarity
    is_custom: bool = False


class CatalogResponse(BaseModel):
    """GET /v1/gems/catalog response."""

    items: list[CatalogItemResponse]


# ============================================================================
# Partner Offer Models
# ============================================================================


class OfferKeyItem(BaseModel):
    """Composite key of an activated offer."""

    partner_id: str = Field(..., min_length=1, max_length=100)
    offer_type: OfferType


class ActivateOfferRequest(OfferKeyItem):
    """POST /v1/gems/offers/activate request body."""


class RegenerateJustificationRequest(OfferKeyItem):
    """POST /v1/gems/offers/justification request body."""


class JustificationItem(BaseModel):
    """Proof-of-redemption artifact reference."""

    reference: str
    status: JustificationStatus
    justification_type: JustificationType
    content_type: str | None = None
    download_url: str | None = None
    error: str | None = None


class ActivateOfferResponse(BaseModel):
    """POST /v1/gems/offers/activate response."""

    promo_code: str
    promo_description: str
    partner_name: str
    offer_description: str
    gems_cost: int
    already_activated: bool
    justification_required: bool
    justification: JustificationItem | None = None
    additional_benefits: list[str] = Field(default_factory=list)
    transaction: TransactionItem


class RegenerateJustificationResponse(BaseModel):
    """POST /v1/gems/offers/justification response."""

    justification: JustificationItem


class ActivatedOffersResponse(BaseModel):
    """GET /v1/gems/offers/activated response (server truth)."""

    offers: list[OfferKeyItem]


class ReconcileRequest(BaseModel):
    """POST /v1/gems/offers/reconcile request body (client cache contents)."""

    offers: list[OfferKeyItem] = Field(default_factory=list, max_length=1000)


class ReconcileResponse(BaseModel):
    """POST /v1/gems/offers/reconcile response."""

    offers: list[OfferKeyItem]
    server_offers: list[OfferKeyItem]


class PartnerOfferPublic(BaseModel):
    """Partner offer as shown before activation (promo code hidden)."""

    offer_type: OfferType
    gems_cost: int
    description: str
    promo_description: str
    value_kind: OfferValueKind
    value: float
    justification_required: bool
    justification_type: JustificationType
    additional_benefits: list[str] = Field(default_factory=list)


class PartnerPublic(BaseModel):
    """Partner listing entry."""

    partner_id: str
    name: str
    category: str
    city: str
    offers: list[PartnerOfferPublic]


class PartnersResponse(BaseModel):
    """GET /v1/gems/partners response."""

    partners: list[PartnerPublic]


# ============================================================================
# Admin Models
# ============================================================================


class AdminAdjustRequest(BaseModel):
    """POST /v1/admin/gems/grant and /deduct request body."""

    user_id: str = Field(..., min_length=1, max_length=255)
    gems: int = Field(..., gt=0)
    note: str = Field(..., min_length=1, max_length=500)


class AdminAdjustResponse(BaseModel):
    """Admin grant/deduct response."""

    transaction: TransactionItem
    balance_after: int


class ConsistencyResponse(BaseModel):
    """Ledger audit for one account."""

    user_id: str
    consistent: bool
    balance: int
    total_earned: int
    total_spent: int
    completed_delta_sum: int


class PartnerStatsItem(BaseModel):
    """Usage of one partner."""

    partner_id: str
    name: str
    total_uses: int
    total_savings: float
    gems_spent: int


class PartnerStatsResponse(BaseModel):
    """GET /v1/admin/gems/partners/stats response."""

    partners: list[PartnerStatsItem]
    total_uses: int
    total_savings: float


# ============================================================================
# Health / Error Models
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    database: str
    timestamp: str
    version: str


class ErrorResponse(BaseModel):
    """Error body with a stable error kind."""

    error: str
    detail: str

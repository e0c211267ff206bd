"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from gem_ledger.models.api import (
    CustomizationCategory,
    JustificationStatus,
    JustificationType,
    OfferType,
    TransactionMetadata,
    TransactionStatus,
    TransactionType,
)


@dataclass(frozen=True, order=True)
class OfferKey:
    """Composite identity of a partner offer activation."""

    partner_id: str
    offer_type: OfferType

    def __post_init__(self) -> None:
        """Validate offer key fields."""
        if not self.partner_id:
            raise ValueError("partner_id cannot be empty")

    def as_cache_key(self) -> str:
        """Flat key used by client caches: ``<partner_id>-<offer_type>``."""
        return f"{self.partner_id}-{self.offer_type.value}"

    @classmethod
    def from_cache_key(cls, key: str) -> "OfferKey":
        """Parse a flat cache key. Partner ids may themselves contain dashes."""
        partner_id, sep, offer_type = key.rpartition("-")
        if not sep:
            raise ValueError(f"Malformed offer key: {key}")
        return cls(partner_id=partner_id, offer_type=OfferType(offer_type))


@dataclass(frozen=True)
class AccountData:
    """Immutable gem account snapshot."""

    user_id: str
    balance: int
    total_earned: int
    total_spent: int
    created_at: datetime
    updated_at: datetime

    def __post_init__(self) -> None:
        """Validate balance invariants."""
        if self.balance < 0:
            raise ValueError(f"Balance cannot be negative: {self.balance}")
        if self.balance != self.total_earned - self.total_spent:
            raise ValueError(
                f"Balance {self.balance} != earned {self.total_earned} - spent {self.total_spent}"
            )


@dataclass(frozen=True)
class TransactionData:
    """Immutable transaction data after persistence."""

    transaction_id: UUID
    user_id: str
    transaction_type: TransactionType
    gems_delta: int
    status: TransactionStatus
    description: str
    metadata: TransactionMetadata
    balance_after: int | None
    created_at: datetime
    completed_at: datetime | None
    justification_ref: str | None = None


@dataclass(frozen=True)
class HistoryPage:
    """One page of transaction history, newest first."""

    transactions: list[TransactionData]
    next_cursor: str | None

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None


@dataclass(frozen=True)
class ActiveSelectionData:
    """Active item in one customization category."""

    category: CustomizationCategory
    item_id: str
    custom_value: str | None
    transaction_id: UUID
    activated_at: datetime


@dataclass(frozen=True)
class OwnedItemData:
    """Item purchased at least once."""

    category: CustomizationCategory
    item_id: str
    purchase_count: int
    first_purchased_at: datetime
    last_purchased_at: datetime


@dataclass(frozen=True)
class JustificationData:
    """Proof-of-redemption artifact state."""

    reference: str
    transaction_id: UUID
    status: JustificationStatus
    justification_type: JustificationType
    content_type: str | None
    content: bytes | None
    error: str | None
    created_at: datetime
    issued_at: datetime | None

    def __post_init__(self) -> None:
        """Issued artifacts always carry content."""
        if self.status == JustificationStatus.ISSUED and not self.content:
            raise ValueError(f"Issued justification {self.reference} has no content")


@dataclass(frozen=True)
class RenderedArtifact:
    """Bytes produced by the proof issuer."""

    content: bytes
    content_type: str


@dataclass(frozen=True)
class AccountConsistency:
    """Result of auditing an account against its completed transactions."""

    user_id: str
    balance: int
    total_earned: int
    total_spent: int
    completed_delta_sum: int

    @property
    def consistent(self) -> bool:
        return (
            self.balance >= 0
            and self.balance == self.total_earned - self.total_spent
            and self.completed_delta_sum == self.total_earned - self.total_spent
        )


@dataclass(frozen=True)
class OfferActivationCount:
    """Completed activations of one partner offer."""

    partner_id: str
    offer_type: OfferType
    uses: int
    gems_spent: int


@dataclass(frozen=True)
class PartnerStats:
    """Usage of one partner, derived from the transaction log."""

    partner_id: str
    name: str
    total_uses: int
    total_savings: float
    gems_spent: int


# ============================================================================
# Service Results
# ============================================================================


@dataclass(frozen=True)
class ConversionResult:
    """Outcome of a point to gem conversion."""

    gems_earned: int
    points_used: int
    transaction: TransactionData


@dataclass(frozen=True)
class PurchaseResult:
    """Outcome of a customization purchase."""

    transaction: TransactionData
    active_selections: list[ActiveSelectionData]


@dataclass(frozen=True)
class RedemptionResult:
    """Outcome of a partner offer activation (fresh or replayed)."""

    transaction: TransactionData
    promo_code: str
    promo_description: str
    partner_name: str
    offer_description: str
    gems_cost: int
    justification_required: bool
    justification: JustificationData | None
    replayed: bool
    additional_benefits: list[str] = field(default_factory=list)

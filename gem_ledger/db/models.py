"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.

Column types are dialect-neutral (Uuid, LargeBinary) so the same metadata
runs on PostgreSQL in production and SQLite in tests.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from gem_ledger.exceptions import InvalidTransactionStateError
from gem_ledger.models.api import TransactionStatus


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class GemAccount(Base):
    """
    ORM model for gem_accounts table.

    One row per user. Never deleted.
    """

    __tablename__ = "gem_accounts"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_earned: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_spent: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_gem_balance_non_negative"),
        CheckConstraint("total_earned >= 0", name="ck_gem_total_earned_non_negative"),
        CheckConstraint("total_spent >= 0", name="ck_gem_total_spent_non_negative"),
        CheckConstraint(
            "balance = total_earned - total_spent", name="ck_gem_balance_matches_totals"
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<GemAccount(user_id={self.user_id}, balance={self.balance}, "
            f"earned={self.total_earned}, spent={self.total_spent})>"
        )


class GemTransaction(Base):
    """
    ORM model for gem_transactions table.

    Append-only log. Rows are inserted pending and move to exactly one
    terminal status through transition_to().
    """

    __tablename__ = "gem_transactions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)

    transaction_type: Mapped[str] = mapped_column(String(30), nullable=False)
    gems_delta: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TransactionStatus.PENDING.value
    )
    description: Mapped[str] = mapped_column(String(500), nullable=False)

    # Audit snapshot of the balance once this transaction was applied
    balance_after: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    # Metadata fields (no JSON - explicit columns)
    metadata_partner_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    metadata_offer_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    metadata_promo_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    metadata_item_category: Mapped[str | None] = mapped_column(String(30), nullable=True)
    metadata_item_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    metadata_custom_value: Mapped[str | None] = mapped_column(String(20), nullable=True)
    metadata_points_used: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    metadata_conversion_rate: Mapped[int | None] = mapped_column(Integer, nullable=True)
    metadata_admin_note: Mapped[str | None] = mapped_column(String(500), nullable=True)
    metadata_failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'completed', 'failed', 'cancelled')",
            name="ck_gem_transaction_status",
        ),
        Index("idx_gem_transactions_user_created", "user_id", "created_at", "id"),
        Index("idx_gem_transactions_user_type", "user_id", "transaction_type"),
        # Backstop for exactly-once partner offer redemption
        Index(
            "uq_gem_partner_offer_completed",
            "user_id",
            "metadata_partner_id",
            "metadata_offer_type",
            unique=True,
            postgresql_where=text("transaction_type = 'partner_offer' AND status = 'completed'"),
            sqlite_where=text("transaction_type = 'partner_offer' AND status = 'completed'"),
        ),
    )

    def transition_to(self, target: TransactionStatus) -> None:
        """Move a pending transaction to a terminal status."""
        current = TransactionStatus(self.status)
        if not current.can_transition_to(target):
            raise InvalidTransactionStateError(self.id, current.value, target.value)
        self.status = target.value
        self.completed_at = utc_now()

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<GemTransaction(id={self.id}, user_id={self.user_id}, "
            f"type={self.transaction_type}, delta={self.gems_delta}, status={self.status})>"
        )


class GemActiveSelection(Base):
    """
    ORM model for gem_active_selections table.

    At most one active item per (user, category).
    """

    __tablename__ = "gem_active_selections"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(30), nullable=False)
    item_id: Mapped[str] = mapped_column(String(100), nullable=False)
    custom_value: Mapped[str | None] = mapped_column(String(20), nullable=True)
    transaction_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("gem_transactions.id"), nullable=False
    )
    activated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("user_id", "category", name="uq_gem_active_selection_category"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<GemActiveSelection(user_id={self.user_id}, category={self.category}, "
            f"item_id={self.item_id})>"
        )


class GemOwnedItem(Base):
    """
    ORM model for gem_owned_items table.

    Ownership survives deactivation; purchase_count grows with every purchase.
    """

    __tablename__ = "gem_owned_items"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(30), nullable=False)
    item_id: Mapped[str] = mapped_column(String(100), nullable=False)
    purchase_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    first_purchased_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    last_purchased_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("purchase_count > 0", name="ck_gem_owned_purchase_count_positive"),
        UniqueConstraint("user_id", "category", "item_id", name="uq_gem_owned_item"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<GemOwnedItem(user_id={self.user_id}, category={self.category}, "
            f"item_id={self.item_id}, count={self.purchase_count})>"
        )


class GemJustification(Base):
    """
    ORM model for gem_justifications table.

    Proof-of-redemption artifact for a completed partner offer transaction.
    """

    __tablename__ = "gem_justifications"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    transaction_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("gem_transactions.id"), nullable=False, unique=True
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    reference: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False)
    justification_type: Mapped[str] = mapped_column(String(20), nullable=False)
    content_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    content: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    issued_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("status IN ('issued', 'pending')", name="ck_gem_justification_status"),
        CheckConstraint(
            "justification_type IN ('image', 'qr', 'pdf')", name="ck_gem_justification_type"
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<GemJustification(reference={self.reference}, "
            f"transaction_id={self.transaction_id}, status={self.status})>"
        )

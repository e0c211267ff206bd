"""
Ledger Service - Gem accounts and the append-only transaction log.

NO DICTIONARIES - All operations use strongly typed domain models.

Every balance change goes through apply_delta(), which locks the account
row, appends a transaction, updates the totals and verifies the write
before committing.
"""

import base64
import binascii
from collections.abc import Awaitable, Callable
from datetime import datetime
from uuid import UUID

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from gem_ledger.db.models import GemAccount, GemJustification, GemTransaction
from gem_ledger.exceptions import (
    DataIntegrityError,
    InsufficientBalanceError,
    InvalidCursorError,
    WriteVerificationError,
)
from gem_ledger.models.api import (
    CustomizationCategory,
    OfferType,
    TransactionMetadata,
    TransactionStatus,
    TransactionType,
)
from gem_ledger.models.domain import (
    AccountConsistency,
    AccountData,
    HistoryPage,
    OfferActivationCount,
    OfferKey,
    TransactionData,
)
from gem_ledger.observability import get_logger, metrics, trace_operation

logger = get_logger(__name__)

# Runs inside the unit of work after the balance update, before commit.
BeforeCommitHook = Callable[[GemTransaction], Awaitable[None]]


def encode_cursor(created_at: datetime, transaction_id: UUID) -> str:
    """Opaque history cursor pointing at the last transaction of a page."""
    raw = f"{created_at.isoformat()}|{transaction_id}"
    return base64.urlsafe_b64encode(raw.encode()).decode()


def decode_cursor(cursor: str) -> tuple[datetime, UUID]:
    """Decode a history cursor, rejecting anything malformed."""
    try:
        raw = base64.urlsafe_b64decode(cursor.encode()).decode()
        created_part, _, id_part = raw.partition("|")
        return datetime.fromisoformat(created_part), UUID(id_part)
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise InvalidCursorError(cursor) from e


class LedgerService:
    """
    Gem ledger with write verification.

    All write operations follow the pattern:
    1. Lock the account row
    2. Execute write
    3. Flush to database
    4. Read back and verify
    5. Validate invariants
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize ledger service with database session."""
        self.session = session

    # ========================================================================
    # Accounts
    # ========================================================================

    async def get_or_create_account(self, user_id: str) -> AccountData:
        """
        Get existing account or create an empty one.

        Concurrent creation is resolved by the unique user_id constraint.
        """
        account = await self._find_account(user_id)
        if account is not None:
            return self._account_to_domain(account)

        new_account = GemAccount(user_id=user_id, balance=0, total_earned=0, total_spent=0)
        self.session.add(new_account)

        try:
            await self.session.flush()
        except IntegrityError:
            # Race condition - account created by another request
            await self.session.rollback()
            account = await self._find_account(user_id)
            if account is None:
                raise WriteVerificationError("Account creation failed due to race condition")
            return self._account_to_domain(account)

        verified_account = await self.session.get(GemAccount, new_account.id)
        if verified_account is None:
            raise WriteVerificationError(f"Account {new_account.id} not found after insert")

        await self.session.commit()
        metrics.accounts_created_total.inc()
        logger.info("gem_account_created", user_id=user_id)

        return self._account_to_domain(verified_account)

    async def lock_account(self, user_id: str) -> GemAccount:
        """
        Lock the account row for update (SELECT FOR UPDATE), creating it lazily.

        The lock is held until the caller commits or rolls back.
        """
        account = await self._select_account_for_update(user_id)
        if account is None:
            await self.get_or_create_account(user_id)
            account = await self._select_account_for_update(user_id)
            if account is None:
                raise WriteVerificationError(f"Account for {user_id} not found after create")
        return account

    # ========================================================================
    # Balance Changes
    # ========================================================================

    async def apply_delta(
        self,
        user_id: str,
        delta: int,
        transaction_type: TransactionType,
        description: str,
        metadata: TransactionMetadata | None = None,
        before_commit: BeforeCommitHook | None = None,
    ) -> TransactionData:
        """
        Apply a signed gem delta as one atomic unit of work.

        Raises:
            InsufficientBalanceError: Debit larger than the balance (nothing written)
            WriteVerificationError: Row missing after flush
            DataIntegrityError: Account invariants violated after update
        """
        metadata = metadata or TransactionMetadata()

        with trace_operation(
            "ledger_apply_delta",
            user_id=user_id,
            gems_delta=delta,
            transaction_type=transaction_type.value,
        ):
            account = await self.lock_account(user_id)

            if delta < 0 and account.balance + delta < 0:
                balance = account.balance
                # Release the row lock
                await self.session.rollback()
                metrics.record_ledger_delta(transaction_type.value, "rejected", delta)
                logger.info(
                    "ledger_delta_rejected",
                    user_id=user_id,
                    transaction_type=transaction_type.value,
                    gems_delta=delta,
                    balance=balance,
                )
                raise InsufficientBalanceError(balance, -delta)

            try:
                result = await self._apply_locked(
                    account, delta, transaction_type, description, metadata, before_commit
                )
            except Exception as e:
                await self.session.rollback()
                metrics.record_ledger_delta(transaction_type.value, "failed", delta)
                logger.error(
                    "ledger_delta_failed",
                    user_id=user_id,
                    transaction_type=transaction_type.value,
                    gems_delta=delta,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await self._record_failed_transaction(
                    user_id, delta, transaction_type, description, metadata, str(e)
                )
                raise

        metrics.record_ledger_delta(transaction_type.value, "completed", delta)
        logger.info(
            "ledger_delta_applied",
            user_id=user_id,
            transaction_id=str(result.transaction_id),
            transaction_type=transaction_type.value,
            gems_delta=delta,
            balance_after=result.balance_after,
        )
        return result

    async def _apply_locked(
        self,
        account: GemAccount,
        delta: int,
        transaction_type: TransactionType,
        description: str,
        metadata: TransactionMetadata,
        before_commit: BeforeCommitHook | None,
    ) -> TransactionData:
        """Write the transaction and balance update for an already locked account."""
        balance_after = account.balance + delta
        earned_after = account.total_earned + max(delta, 0)
        spent_after = account.total_spent + max(-delta, 0)

        transaction = self._new_transaction(
            account.user_id, delta, transaction_type, description, metadata
        )
        self.session.add(transaction)
        await self.session.flush()

        # Verify transaction was written
        verified_transaction = await self.session.get(GemTransaction, transaction.id)
        if verified_transaction is None:
            raise WriteVerificationError(f"Transaction {transaction.id} not found after insert")

        # Update account balance and totals
        account.balance = balance_after
        account.total_earned = earned_after
        account.total_spent = spent_after
        await self.session.flush()

        # Verify account was updated
        verified_account = await self.session.get(GemAccount, account.id)
        if verified_account is None:
            raise WriteVerificationError(f"Account {account.id} disappeared after update")

        if verified_account.balance != balance_after:
            raise DataIntegrityError(
                f"Balance mismatch: expected {balance_after}, got {verified_account.balance}"
            )

        if verified_account.balance < 0:
            raise DataIntegrityError(f"Negative balance after update: {verified_account.balance}")

        if verified_account.balance != verified_account.total_earned - verified_account.total_spent:
            raise DataIntegrityError(
                f"Balance {verified_account.balance} != earned {verified_account.total_earned}"
                f" - spent {verified_account.total_spent}"
            )

        if before_commit is not None:
            await before_commit(verified_transaction)

        verified_transaction.transition_to(TransactionStatus.COMPLETED)
        verified_transaction.balance_after = balance_after
        await self.session.flush()

        await self.session.commit()

        return self.transaction_to_domain(verified_transaction)

    async def _record_failed_transaction(
        self,
        user_id: str,
        delta: int,
        transaction_type: TransactionType,
        description: str,
        metadata: TransactionMetadata,
        reason: str,
    ) -> None:
        """Append a failed transaction for audit after the unit of work rolled back."""
        failed = self._new_transaction(
            user_id,
            delta,
            transaction_type,
            description,
            metadata.model_copy(update={"failure_reason": reason[:2000]}),
        )
        failed.transition_to(TransactionStatus.FAILED)
        self.session.add(failed)

        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            # The original error is re-raised by the caller
            await self.session.rollback()
            logger.error(
                "failed_transaction_record_failed",
                user_id=user_id,
                transaction_type=transaction_type.value,
                error=str(e),
            )

    # ========================================================================
    # Queries
    # ========================================================================

    async def list_transactions(
        self, user_id: str, limit: int = 20, cursor: str | None = None
    ) -> HistoryPage:
        """
        Page through a user's transactions, newest first.

        Raises:
            InvalidCursorError: Cursor could not be decoded
        """
        stmt = (
            select(GemTransaction, GemJustification.reference)
            .outerjoin(GemJustification, GemJustification.transaction_id == GemTransaction.id)
            .where(GemTransaction.user_id == user_id)
        )

        if cursor:
            cursor_created_at, cursor_id = decode_cursor(cursor)
            stmt = stmt.where(
                or_(
                    GemTransaction.created_at < cursor_created_at,
                    and_(
                        GemTransaction.created_at == cursor_created_at,
                        GemTransaction.id < cursor_id,
                    ),
                )
            )

        stmt = stmt.order_by(GemTransaction.created_at.desc(), GemTransaction.id.desc()).limit(
            limit + 1
        )
        result = await self.session.execute(stmt)
        rows = result.all()

        page_rows = rows[:limit]
        transactions = [
            self.transaction_to_domain(transaction, justification_ref=reference)
            for transaction, reference in page_rows
        ]

        next_cursor = None
        if len(rows) > limit and page_rows:
            last = page_rows[-1][0]
            next_cursor = encode_cursor(last.created_at, last.id)

        return HistoryPage(transactions=transactions, next_cursor=next_cursor)

    async def find_completed_offer(
        self, user_id: str, partner_id: str, offer_type: OfferType
    ) -> GemTransaction | None:
        """Find the completed activation of a partner offer, if any."""
        stmt = select(GemTransaction).where(
            GemTransaction.user_id == user_id,
            GemTransaction.transaction_type == TransactionType.PARTNER_OFFER.value,
            GemTransaction.status == TransactionStatus.COMPLETED.value,
            GemTransaction.metadata_partner_id == partner_id,
            GemTransaction.metadata_offer_type == offer_type.value,
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def list_activated_offers(self, user_id: str) -> list[OfferKey]:
        """Authoritative set of offers the user has activated."""
        stmt = (
            select(GemTransaction.metadata_partner_id, GemTransaction.metadata_offer_type)
            .where(
                GemTransaction.user_id == user_id,
                GemTransaction.transaction_type == TransactionType.PARTNER_OFFER.value,
                GemTransaction.status == TransactionStatus.COMPLETED.value,
                GemTransaction.metadata_partner_id.isnot(None),
                GemTransaction.metadata_offer_type.isnot(None),
            )
            .distinct()
        )
        result = await self.session.execute(stmt)
        return sorted(
            OfferKey(partner_id=partner_id, offer_type=OfferType(offer_type))
            for partner_id, offer_type in result.all()
        )

    async def count_offer_activations(self) -> list[OfferActivationCount]:
        """Completed activations and gems spent, per partner offer, across all users."""
        stmt = (
            select(
                GemTransaction.metadata_partner_id,
                GemTransaction.metadata_offer_type,
                func.count(GemTransaction.id),
                func.coalesce(func.sum(-GemTransaction.gems_delta), 0),
            )
            .where(
                GemTransaction.transaction_type == TransactionType.PARTNER_OFFER.value,
                GemTransaction.status == TransactionStatus.COMPLETED.value,
                GemTransaction.metadata_partner_id.isnot(None),
                GemTransaction.metadata_offer_type.isnot(None),
            )
            .group_by(GemTransaction.metadata_partner_id, GemTransaction.metadata_offer_type)
        )
        result = await self.session.execute(stmt)
        return [
            OfferActivationCount(
                partner_id=partner_id,
                offer_type=OfferType(offer_type),
                uses=int(uses),
                gems_spent=int(gems_spent),
            )
            for partner_id, offer_type, uses, gems_spent in result.all()
        ]

    async def verify_account_consistency(self, user_id: str) -> AccountConsistency:
        """Compare account totals against the sum of completed transaction deltas."""
        account = await self.get_or_create_account(user_id)

        stmt = select(func.coalesce(func.sum(GemTransaction.gems_delta), 0)).where(
            GemTransaction.user_id == user_id,
            GemTransaction.status == TransactionStatus.COMPLETED.value,
        )
        result = await self.session.execute(stmt)
        completed_delta_sum = int(result.scalar_one())

        consistency = AccountConsistency(
            user_id=user_id,
            balance=account.balance,
            total_earned=account.total_earned,
            total_spent=account.total_spent,
            completed_delta_sum=completed_delta_sum,
        )
        if not consistency.consistent:
            metrics.record_error("AccountInconsistent", "verify_account_consistency")
            logger.error(
                "account_inconsistent",
                user_id=user_id,
                balance=account.balance,
                total_earned=account.total_earned,
                total_spent=account.total_spent,
                completed_delta_sum=completed_delta_sum,
            )
        return consistency

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _find_account(self, user_id: str) -> GemAccount | None:
        stmt = select(GemAccount).where(GemAccount.user_id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _select_account_for_update(self, user_id: str) -> GemAccount | None:
        stmt = (
            select(GemAccount)
            .where(GemAccount.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    def _new_transaction(
        user_id: str,
        delta: int,
        transaction_type: TransactionType,
        description: str,
        metadata: TransactionMetadata,
    ) -> GemTransaction:
        return GemTransaction(
            user_id=user_id,
            transaction_type=transaction_type.value,
            gems_delta=delta,
            status=TransactionStatus.PENDING.value,
            description=description,
            metadata_partner_id=metadata.partner_id,
            metadata_offer_type=metadata.offer_type.value if metadata.offer_type else None,
            metadata_promo_code=metadata.promo_code,
            metadata_item_category=(
                metadata.item_category.value if metadata.item_category else None
            ),
            metadata_item_id=metadata.item_id,
            metadata_custom_value=metadata.custom_value,
            metadata_points_used=metadata.points_used,
            metadata_conversion_rate=metadata.conversion_rate,
            metadata_admin_note=metadata.admin_note,
            metadata_failure_reason=metadata.failure_reason,
        )

    @staticmethod
    def _account_to_domain(account: GemAccount) -> AccountData:
        """Convert ORM account to domain model."""
        return AccountData(
            user_id=account.user_id,
            balance=account.balance,
            total_earned=account.total_earned,
            total_spent=account.total_spent,
            created_at=account.created_at,
            updated_at=account.updated_at,
        )

    @staticmethod
    def transaction_to_domain(
        transaction: GemTransaction, justification_ref: str | None = None
    ) -> TransactionData:
        """Convert ORM transaction to domain model."""
        return TransactionData(
            transaction_id=transaction.id,
            user_id=transaction.user_id,
            transaction_type=TransactionType(transaction.transaction_type),
            gems_delta=transaction.gems_delta,
            status=TransactionStatus(transaction.status),
            description=transaction.description,
            metadata=TransactionMetadata(
                partner_id=transaction.metadata_partner_id,
                offer_type=transaction.metadata_offer_type,
                promo_code=transaction.metadata_promo_code,
                item_category=(
                    CustomizationCategory(transaction.metadata_item_category)
                    if transaction.metadata_item_category
                    else None
                ),
                item_id=transaction.metadata_item_id,
                custom_value=transaction.metadata_custom_value,
                points_used=transaction.metadata_points_used,
                conversion_rate=transaction.metadata_conversion_rate,
                admin_note=transaction.metadata_admin_note,
                failure_reason=transaction.metadata_failure_reason,
            ),
            balance_after=transaction.balance_after,
            created_at=transaction.created_at,
            completed_at=transaction.completed_at,
            justification_ref=justification_ref,
        )

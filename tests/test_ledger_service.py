"""
Tests for LedgerService.

Runs against a real SQLite database so that locking, flush/verify and the
append-only transaction log are exercised end to end.
"""

from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from gem_ledger.db.models import GemAccount, GemTransaction
from gem_ledger.exceptions import InsufficientBalanceError, InvalidCursorError
from gem_ledger.models.api import (
    OfferType,
    TransactionMetadata,
    TransactionStatus,
    TransactionType,
)
from gem_ledger.models.domain import OfferKey
from gem_ledger.services.ledger import LedgerService, decode_cursor, encode_cursor


async def _count_transactions(ledger: LedgerService, user_id: str) -> int:
    result = await ledger.session.execute(
        select(func.count()).select_from(GemTransaction).where(GemTransaction.user_id == user_id)
    )
    return int(result.scalar_one())


class TestAccounts:
    """Account creation and lookup."""

    async def test_new_user_starts_at_zero(self, ledger: LedgerService):
        """First access creates an empty account."""
        account = await ledger.get_or_create_account("user-new")

        assert account.user_id == "user-new"
        assert account.balance == 0
        assert account.total_earned == 0
        assert account.total_spent == 0

    async def test_get_or_create_is_stable(self, ledger: LedgerService):
        """A second call returns the same account instead of creating another."""
        await ledger.get_or_create_account("user-a")
        await ledger.get_or_create_account("user-a")

        result = await ledger.session.execute(
            select(func.count()).select_from(GemAccount).where(GemAccount.user_id == "user-a")
        )
        assert result.scalar_one() == 1


class TestApplyDelta:
    """Balance changes through the single write path."""

    async def test_credit_updates_balance_and_earned(self, ledger: LedgerService):
        """A positive delta raises balance and total_earned."""
        transaction = await ledger.apply_delta(
            "user-1", 12, TransactionType.BONUS, "Welcome bonus"
        )

        assert transaction.status == TransactionStatus.COMPLETED
        assert transaction.gems_delta == 12
        assert transaction.balance_after == 12
        assert transaction.completed_at is not None

        account = await ledger.get_or_create_account("user-1")
        assert account.balance == 12
        assert account.total_earned == 12
        assert account.total_spent == 0

    async def test_debit_updates_balance_and_spent(self, ledger: LedgerService):
        """A negative delta lowers balance and raises total_spent."""
        await ledger.apply_delta("user-1", 20, TransactionType.BONUS, "Bonus")
        transaction = await ledger.apply_delta(
            "user-1", -15, TransactionType.PURCHASE, "Purchase"
        )

        assert transaction.balance_after == 5
        account = await ledger.get_or_create_account("user-1")
        assert account.balance == 5
        assert account.total_earned == 20
        assert account.total_spent == 15

    async def test_overdraft_rejected_without_side_effect(self, ledger: LedgerService):
        """A debit above the balance raises and writes nothing."""
        await ledger.apply_delta("user-1", 10, TransactionType.BONUS, "Bonus")
        before = await _count_transactions(ledger, "user-1")

        with pytest.raises(InsufficientBalanceError) as exc_info:
            await ledger.apply_delta("user-1", -50, TransactionType.PURCHASE, "Too expensive")

        assert exc_info.value.balance == 10
        assert exc_info.value.required == 50
        assert await _count_transactions(ledger, "user-1") == before

        account = await ledger.get_or_create_account("user-1")
        assert account.balance == 10

    async def test_debit_to_exactly_zero_allowed(self, ledger: LedgerService):
        """Spending the whole balance is allowed."""
        await ledger.apply_delta("user-1", 10, TransactionType.BONUS, "Bonus")
        transaction = await ledger.apply_delta("user-1", -10, TransactionType.PURCHASE, "All in")

        assert transaction.balance_after == 0

    async def test_metadata_is_persisted(self, ledger: LedgerService):
        """Typed metadata round-trips through the metadata columns."""
        transaction = await ledger.apply_delta(
            "user-1",
            3,
            TransactionType.CONVERSION,
            "Conversion",
            TransactionMetadata(points_used=300, conversion_rate=100),
        )

        assert transaction.metadata.points_used == 300
        assert transaction.metadata.conversion_rate == 100

    async def test_failed_hook_rolls_back_and_records_failure(self, ledger: LedgerService):
        """An error inside the unit of work leaves the balance untouched."""
        await ledger.apply_delta("user-1", 10, TransactionType.BONUS, "Bonus")
        hook = AsyncMock(side_effect=RuntimeError("selection write failed"))

        with pytest.raises(RuntimeError):
            await ledger.apply_delta(
                "user-1", -5, TransactionType.PURCHASE, "Purchase", before_commit=hook
            )

        account = await ledger.get_or_create_account("user-1")
        assert account.balance == 10

        page = await ledger.list_transactions("user-1")
        failed = [t for t in page.transactions if t.status == TransactionStatus.FAILED]
        assert len(failed) == 1
        assert failed[0].gems_delta == -5
        assert "selection write failed" in (failed[0].metadata.failure_reason or "")

    async def test_hook_receives_pending_transaction(self, ledger: LedgerService):
        """The hook runs before the transaction is completed."""
        seen: list[str] = []

        async def hook(transaction: GemTransaction) -> None:
            seen.append(transaction.status)

        await ledger.apply_delta("user-1", 4, TransactionType.BONUS, "Bonus", before_commit=hook)

        assert seen == [TransactionStatus.PENDING.value]


class TestHistory:
    """Paginated transaction history."""

    async def test_pages_cover_all_transactions_once(self, ledger: LedgerService):
        """Walking the cursor yields every transaction exactly once."""
        for _ in range(5):
            await ledger.apply_delta("user-1", 1, TransactionType.BONUS, "Bonus")

        seen = []
        cursor = None
        while True:
            page = await ledger.list_transactions("user-1", limit=2, cursor=cursor)
            seen.extend(t.transaction_id for t in page.transactions)
            if not page.has_more:
                break
            cursor = page.next_cursor

        assert len(seen) == 5
        assert len(set(seen)) == 5

    async def test_history_is_per_user(self, ledger: LedgerService):
        """Another user's transactions never appear."""
        await ledger.apply_delta("user-1", 1, TransactionType.BONUS, "Bonus")
        await ledger.apply_delta("user-2", 1, TransactionType.BONUS, "Bonus")

        page = await ledger.list_transactions("user-1")
        assert {t.user_id for t in page.transactions} == {"user-1"}

    async def test_empty_history(self, ledger: LedgerService):
        page = await ledger.list_transactions("nobody")
        assert page.transactions == []
        assert page.next_cursor is None
        assert page.has_more is False

    async def test_invalid_cursor_rejected(self, ledger: LedgerService):
        with pytest.raises(InvalidCursorError):
            await ledger.list_transactions("user-1", cursor="not-a-cursor!!")


class TestCursor:
    """Cursor encoding."""

    def test_cursor_round_trip(self):
        from datetime import UTC, datetime

        created_at = datetime(2026, 10, 19, 12, 30, tzinfo=UTC)
        transaction_id = uuid4()

        assert decode_cursor(encode_cursor(created_at, transaction_id)) == (
            created_at,
            transaction_id,
        )

    def test_cursor_without_separator_rejected(self):
        import base64

        cursor = base64.urlsafe_b64encode(b"garbage").decode()
        with pytest.raises(InvalidCursorError):
            decode_cursor(cursor)


class TestActivatedOffers:
    """Server truth about activated offers."""

    async def test_only_completed_partner_offers_listed(self, ledger: LedgerService):
        await ledger.apply_delta(
            "user-1",
            0,
            TransactionType.PARTNER_OFFER,
            "Free offer",
            TransactionMetadata(partner_id="cafe-des-arts", offer_type=OfferType.FREE),
        )
        await ledger.apply_delta("user-1", 5, TransactionType.BONUS, "Bonus")

        offers = await ledger.list_activated_offers("user-1")
        assert offers == [OfferKey(partner_id="cafe-des-arts", offer_type=OfferType.FREE)]

    async def test_find_completed_offer(self, ledger: LedgerService):
        assert await ledger.find_completed_offer("user-1", "cafe-des-arts", OfferType.FREE) is None

        await ledger.apply_delta(
            "user-1",
            0,
            TransactionType.PARTNER_OFFER,
            "Free offer",
            TransactionMetadata(partner_id="cafe-des-arts", offer_type=OfferType.FREE),
        )

        found = await ledger.find_completed_offer("user-1", "cafe-des-arts", OfferType.FREE)
        assert found is not None
        assert found.status == TransactionStatus.COMPLETED.value


class TestConsistency:
    """Account audit against the transaction log."""

    async def test_consistent_after_mixed_operations(self, ledger: LedgerService):
        await ledger.apply_delta("user-1", 30, TransactionType.BONUS, "Bonus")
        await ledger.apply_delta("user-1", -12, TransactionType.PURCHASE, "Purchase")
        with pytest.raises(InsufficientBalanceError):
            await ledger.apply_delta("user-1", -100, TransactionType.PURCHASE, "Too much")

        result = await ledger.verify_account_consistency("user-1")

        assert result.consistent is True
        assert result.balance == 18
        assert result.completed_delta_sum == 18

    async def test_detects_tampered_totals(self, ledger: LedgerService):
        await ledger.apply_delta("user-1", 30, TransactionType.BONUS, "Bonus")
        account = await ledger.lock_account("user-1")
        account.balance = 25
        account.total_spent = 5
        await ledger.session.commit()

        result = await ledger.verify_account_consistency("user-1")
        assert result.consistent is False

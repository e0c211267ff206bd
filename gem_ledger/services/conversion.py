"""
Conversion Service - Exchange external points for gems.

Points are debited from the points ledger first; if the gem ledger write
then fails, the debit is compensated with a credit under a derived
idempotency key.
"""

from uuid import uuid4

from gem_ledger.config import settings
from gem_ledger.exceptions import (
    InsufficientPointsError,
    InvalidAmountError,
    PointsLedgerError,
)
from gem_ledger.models.api import TransactionMetadata, TransactionType
from gem_ledger.models.domain import ConversionResult
from gem_ledger.observability import get_logger, metrics, trace_operation
from gem_ledger.services.ledger import LedgerService
from gem_ledger.services.points_ledger import PointsLedger

logger = get_logger(__name__)


class ConversionService:
    """Converts points to gems at a fixed rate, flooring to whole gems."""

    def __init__(
        self,
        ledger: LedgerService,
        points_ledger: PointsLedger,
        points_per_gem: int | None = None,
        max_points_per_conversion: int | None = None,
    ) -> None:
        self.ledger = ledger
        self.points_ledger = points_ledger
        self.points_per_gem = points_per_gem or settings.points_per_gem
        self.max_points_per_conversion = (
            max_points_per_conversion or settings.max_points_per_conversion
        )

    def gems_for_points(self, points: int) -> int:
        """Whole gems obtainable for a number of points (remainder is kept as points)."""
        return points // self.points_per_gem

    async def convert(self, user_id: str, points: int) -> ConversionResult:
        """
        Convert points to gems.

        Raises:
            InvalidAmountError: Fewer than one gem's worth, or above the per-conversion cap
            InsufficientPointsError: Points balance does not cover the request
            PointsLedgerError: Points service unavailable
        """
        if points < self.points_per_gem or points > self.max_points_per_conversion:
            metrics.conversions_total.labels(outcome="invalid").inc()
            raise InvalidAmountError(points, self.points_per_gem, self.max_points_per_conversion)

        with trace_operation("gem_conversion", user_id=user_id, points=points):
            available = await self.points_ledger.get_balance(user_id)
            if points > available:
                metrics.conversions_total.labels(outcome="insufficient_points").inc()
                raise InsufficientPointsError(available, points)

            gems_earned = self.gems_for_points(points)
            points_used = gems_earned * self.points_per_gem
            idempotency_key = f"gem-conversion-{uuid4()}"
            reason = f"Conversion of {points_used} points into {gems_earned} gems"

            await self.points_ledger.debit(user_id, points_used, idempotency_key, reason)

            try:
                transaction = await self.ledger.apply_delta(
                    user_id,
                    gems_earned,
                    TransactionType.CONVERSION,
                    reason,
                    TransactionMetadata(
                        points_used=points_used, conversion_rate=self.points_per_gem
                    ),
                )
            except Exception:
                metrics.conversions_total.labels(outcome="failed").inc()
                await self._compensate(user_id, points_used, idempotency_key)
                raise

        metrics.conversions_total.labels(outcome="completed").inc()
        logger.info(
            "gems_converted",
            user_id=user_id,
            points_requested=points,
            points_used=points_used,
            gems_earned=gems_earned,
            transaction_id=str(transaction.transaction_id),
        )
        return ConversionResult(
            gems_earned=gems_earned, points_used=points_used, transaction=transaction
        )

    async def _compensate(self, user_id: str, points: int, idempotency_key: str) -> None:
        """Give back debited points after a failed gem ledger write."""
        try:
            await self.points_ledger.credit(
                user_id,
                points,
                f"{idempotency_key}-compensation",
                "Refund of points for a failed gem conversion",
            )
        except PointsLedgerError as e:
            # Original ledger error propagates; this needs manual follow-up
            metrics.record_error("PointsCompensationFailed", "convert")
            logger.error(
                "points_compensation_failed",
                user_id=user_id,
                points=points,
                idempotency_key=idempotency_key,
                error=str(e),
            )
            return
        logger.warning(
            "points_compensated", user_id=user_id, points=points, idempotency_key=idempotency_key
        )

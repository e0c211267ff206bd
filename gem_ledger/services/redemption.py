"""
Redemption Service - Exactly-once partner offer activation.

An offer is activated at most once per user. Repeated calls replay the
original activation without charging again. Justification issuance runs
after the charge is committed, so an issuer failure degrades the response
instead of undoing the activation.
"""

import asyncio
import secrets
import time
from dataclasses import replace
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gem_ledger.config import settings
from gem_ledger.db.models import GemJustification, GemTransaction, utc_now
from gem_ledger.exceptions import (
    InsufficientBalanceError,
    JustificationNotFoundError,
    JustificationUnavailableError,
    NotActivatedError,
    UnknownOfferError,
    WriteVerificationError,
)
from gem_ledger.models.api import (
    JustificationStatus,
    JustificationType,
    OfferType,
    TransactionMetadata,
    TransactionType,
)
from gem_ledger.models.domain import JustificationData, RedemptionResult, TransactionData
from gem_ledger.observability import get_logger, metrics, trace_operation
from gem_ledger.services.ledger import LedgerService
from gem_ledger.services.partner_catalog import Partner, PartnerCatalog, PartnerOffer
from gem_ledger.services.proof_issuer import ProofIssuer, ProofRequest

logger = get_logger(__name__)


def new_justification_reference() -> str:
    """Opaque, unguessable artifact reference."""
    return f"jst_{secrets.token_hex(12)}"


class RedemptionService:
    """Partner offer activation, replay and justification issuance."""

    def __init__(
        self,
        ledger: LedgerService,
        partner_catalog: PartnerCatalog,
        issuer: ProofIssuer,
        issuer_timeout_seconds: float | None = None,
    ) -> None:
        self.ledger = ledger
        self.session: AsyncSession = ledger.session
        self.partner_catalog = partner_catalog
        self.issuer = issuer
        self.issuer_timeout_seconds = (
            issuer_timeout_seconds or settings.proof_issuer_timeout_seconds
        )

    async def activate_offer(
        self, user_id: str, partner_id: str, offer_type: OfferType
    ) -> RedemptionResult:
        """
        Activate a partner offer, or replay an earlier activation.

        A completed activation is replayed even after the partner became
        inactive or left its validity window.

        Raises:
            UnknownOfferError: Partner missing or inactive, or no such offer tier
            InsufficientBalanceError: Balance below the offer cost (nothing written)
        """
        existing = await self.ledger.find_completed_offer(user_id, partner_id, offer_type)
        if existing is not None:
            return await self._replay_activated(existing, partner_id, offer_type)

        try:
            partner, offer = self.partner_catalog.get_offer(partner_id, offer_type)
        except UnknownOfferError:
            metrics.offer_activations_total.labels(
                offer_type=offer_type.value, outcome="unknown"
            ).inc()
            raise

        with trace_operation(
            "offer_activation",
            user_id=user_id,
            partner_id=partner_id,
            offer_type=offer_type.value,
            gems_cost=offer.gems_cost,
        ):
            # Serialize activations of this account, then check for a prior one
            await self.ledger.lock_account(user_id)
            existing = await self.ledger.find_completed_offer(user_id, partner_id, offer_type)
            if existing is not None:
                await self.session.commit()
                return await self._replay(existing, partner, offer)

            try:
                transaction = await self.ledger.apply_delta(
                    user_id,
                    -offer.gems_cost,
                    TransactionType.PARTNER_OFFER,
                    f"Activation of {offer_type.value} offer from {partner.name}",
                    TransactionMetadata(
                        partner_id=partner_id,
                        offer_type=offer_type,
                        promo_code=offer.promo_code,
                    ),
                )
            except InsufficientBalanceError:
                metrics.offer_activations_total.labels(
                    offer_type=offer_type.value, outcome="insufficient_balance"
                ).inc()
                raise
            except IntegrityError:
                # Lost a race against a concurrent activation of the same offer
                existing = await self.ledger.find_completed_offer(
                    user_id, partner_id, offer_type
                )
                if existing is None:
                    raise
                logger.warning(
                    "offer_activation_race_resolved",
                    user_id=user_id,
                    partner_id=partner_id,
                    offer_type=offer_type.value,
                )
                return await self._replay(existing, partner, offer)

        metrics.offer_activations_total.labels(
            offer_type=offer_type.value, outcome="completed"
        ).inc()
        logger.info(
            "offer_activated",
            user_id=user_id,
            partner_id=partner_id,
            offer_type=offer_type.value,
            gems_cost=offer.gems_cost,
            promo_code=offer.promo_code,
            transaction_id=str(transaction.transaction_id),
        )

        justification = None
        if offer.justification_required:
            justification = await self._issue(transaction, partner, offer)

        return self._result(transaction, partner, offer, justification, replayed=False)

    async def regenerate_justification(
        self, user_id: str, partner_id: str, offer_type: OfferType
    ) -> JustificationData:
        """
        Re-issue the justification of an activated offer. Never touches the ledger.

        Raises:
            NotActivatedError: The user never activated this offer
            JustificationUnavailableError: Offer has no justification, or issuance failed again
        """
        existing = await self.ledger.find_completed_offer(user_id, partner_id, offer_type)
        if existing is None:
            raise NotActivatedError(partner_id, offer_type.value)

        found = self.partner_catalog.find_offer(partner_id, offer_type)
        if found is None:
            raise JustificationUnavailableError(
                partner_id, offer_type.value, "offer no longer exists"
            )
        partner, offer = found
        if not offer.justification_required:
            raise JustificationUnavailableError(
                partner_id, offer_type.value, "offer does not issue justifications"
            )

        justification = await self._issue(
            self.ledger.transaction_to_domain(existing), partner, offer
        )
        if justification.status != JustificationStatus.ISSUED:
            raise JustificationUnavailableError(
                partner_id, offer_type.value, justification.error or "issuer failed"
            )

        logger.info(
            "justification_regenerated",
            user_id=user_id,
            partner_id=partner_id,
            offer_type=offer_type.value,
            reference=justification.reference,
        )
        return justification

    async def get_justification_content(self, user_id: str, reference: str) -> JustificationData:
        """
        Fetch an issued artifact owned by the user.

        Raises:
            JustificationNotFoundError: Unknown reference or owned by someone else
            JustificationUnavailableError: Artifact still pending
        """
        stmt = (
            select(GemJustification, GemTransaction)
            .join(GemTransaction, GemTransaction.id == GemJustification.transaction_id)
            .where(GemJustification.reference == reference, GemJustification.user_id == user_id)
        )
        result = await self.session.execute(stmt)
        row = result.first()
        if row is None:
            raise JustificationNotFoundError(reference)

        justification, transaction = row
        if justification.status != JustificationStatus.ISSUED.value:
            raise JustificationUnavailableError(
                transaction.metadata_partner_id or "",
                transaction.metadata_offer_type or "",
                justification.error or "justification pending",
            )
        return self._justification_to_domain(justification)

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _replay_activated(
        self, existing: GemTransaction, partner_id: str, offer_type: OfferType
    ) -> RedemptionResult:
        """Replay against the catalog entry, available or not."""
        found = self.partner_catalog.find_offer(partner_id, offer_type)
        if found is None:
            # Partner removed from the catalog altogether; nothing left to describe
            metrics.offer_activations_total.labels(
                offer_type=offer_type.value, outcome="unknown"
            ).inc()
            raise UnknownOfferError(partner_id, offer_type.value)
        partner, offer = found
        return await self._replay(existing, partner, offer)

    async def _replay(
        self, existing: GemTransaction, partner: Partner, offer: PartnerOffer
    ) -> RedemptionResult:
        """Return the stored outcome of an earlier activation without charging."""
        stored = await self._find_justification(existing.id)
        justification = self._justification_to_domain(stored) if stored else None

        metrics.offer_activations_total.labels(
            offer_type=offer.offer_type.value, outcome="replayed"
        ).inc()
        logger.info(
            "offer_activation_replayed",
            user_id=existing.user_id,
            partner_id=existing.metadata_partner_id,
            offer_type=existing.metadata_offer_type,
            transaction_id=str(existing.id),
        )

        transaction = self.ledger.transaction_to_domain(
            existing, justification_ref=justification.reference if justification else None
        )
        return self._result(transaction, partner, offer, justification, replayed=True)

    async def _issue(
        self, transaction: TransactionData, partner: Partner, offer: PartnerOffer
    ) -> JustificationData:
        """Render and store a justification; failures are stored as pending."""
        stored = await self._find_justification(transaction.transaction_id)
        reference = stored.reference if stored else new_justification_reference()

        request = ProofRequest(
            reference=reference,
            justification_type=offer.justification_type,
            partner_name=partner.name,
            offer_type=offer.offer_type,
            offer_description=offer.description,
            value_label=offer.value_label(),
            promo_code=transaction.metadata.promo_code or offer.promo_code,
            user_label=transaction.user_id,
            gems_cost=-transaction.gems_delta,
            activated_at=transaction.completed_at or transaction.created_at,
        )

        start = time.monotonic()
        try:
            artifact = await asyncio.wait_for(
                asyncio.to_thread(self.issuer.render, request),
                timeout=self.issuer_timeout_seconds,
            )
        except Exception as e:
            duration = time.monotonic() - start
            error = "issuer timed out" if isinstance(e, asyncio.TimeoutError) else str(e)
            metrics.record_justification(offer.justification_type.value, "pending", duration)
            logger.error(
                "justification_issue_failed",
                user_id=transaction.user_id,
                transaction_id=str(transaction.transaction_id),
                reference=reference,
                error=error,
                error_type=type(e).__name__,
            )
            return await self._store_justification(
                transaction,
                reference,
                offer.justification_type,
                JustificationStatus.PENDING,
                content=None,
                content_type=None,
                error=error[:2000],
            )

        duration = time.monotonic() - start
        metrics.record_justification(offer.justification_type.value, "issued", duration)
        logger.info(
            "justification_issued",
            user_id=transaction.user_id,
            transaction_id=str(transaction.transaction_id),
            reference=reference,
            justification_type=offer.justification_type.value,
            size_bytes=len(artifact.content),
        )
        return await self._store_justification(
            transaction,
            reference,
            offer.justification_type,
            JustificationStatus.ISSUED,
            content=artifact.content,
            content_type=artifact.content_type,
            error=None,
        )

    async def _store_justification(
        self,
        transaction: TransactionData,
        reference: str,
        justification_type: JustificationType,
        status: JustificationStatus,
        content: bytes | None,
        content_type: str | None,
        error: str | None,
    ) -> JustificationData:
        """Insert or update the justification row of a transaction."""
        justification = await self._find_justification(transaction.transaction_id)

        if justification is None:
            justification = GemJustification(
                transaction_id=transaction.transaction_id,
                user_id=transaction.user_id,
                reference=reference,
                status=status.value,
                justification_type=justification_type.value,
            )
            self.session.add(justification)
        elif status == JustificationStatus.PENDING and (
            justification.status == JustificationStatus.ISSUED.value
        ):
            # A failed regeneration keeps the previously issued artifact
            return replace(
                self._justification_to_domain(justification),
                status=JustificationStatus.PENDING,
                content=None,
                content_type=None,
                error=error,
            )

        justification.status = status.value
        justification.justification_type = justification_type.value
        justification.content = content
        justification.content_type = content_type
        justification.error = error
        justification.issued_at = utc_now() if status == JustificationStatus.ISSUED else None
        await self.session.flush()

        verified = await self.session.get(GemJustification, justification.id)
        if verified is None:
            raise WriteVerificationError(f"Justification {reference} not found after write")

        await self.session.commit()
        return self._justification_to_domain(verified)

    async def _find_justification(self, transaction_id: UUID) -> GemJustification | None:
        stmt = select(GemJustification).where(GemJustification.transaction_id == transaction_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    def _justification_to_domain(justification: GemJustification) -> JustificationData:
        return JustificationData(
            reference=justification.reference,
            transaction_id=justification.transaction_id,
            status=JustificationStatus(justification.status),
            justification_type=JustificationType(justification.justification_type),
            content_type=justification.content_type,
            content=justification.content,
            error=justification.error,
            created_at=justification.created_at,
            issued_at=justification.issued_at,
        )

    @staticmethod
    def _result(
        transaction: TransactionData,
        partner: Partner,
        offer: PartnerOffer,
        justification: JustificationData | None,
        replayed: bool,
    ) -> RedemptionResult:
        return RedemptionResult(
            transaction=transaction,
            promo_code=transaction.metadata.promo_code or offer.promo_code,
            promo_description=offer.promo_description,
            partner_name=partner.name,
            offer_description=offer.description,
            gems_cost=-transaction.gems_delta,
            justification_required=offer.justification_required,
            justification=justification,
            replayed=replayed,
            additional_benefits=list(offer.additional_benefits),
        )

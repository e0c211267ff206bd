"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.

Every exception carries a stable ``kind`` string that the HTTP layer returns
in the ``error`` field of the response body.
"""

from uuid import UUID


class GemLedgerError(Exception):
    """Base exception for all gem ledger errors."""

    kind = "InternalError"


# ============================================================================
# Validation Errors - raised before the ledger is touched
# ============================================================================


class InvalidAmountError(GemLedgerError):
    """Raised when a conversion amount is outside the allowed range."""

    kind = "InvalidAmount"

    def __init__(self, points: int, minimum: int, maximum: int) -> None:
        self.points = points
        self.minimum = minimum
        self.maximum = maximum
        super().__init__(
            f"Invalid amount: {points} points (minimum {minimum}, maximum {maximum})"
        )


class InvalidCustomValueError(GemLedgerError):
    """Raised when a custom color purchase lacks a valid #RRGGBB value."""

    kind = "InvalidCustomValue"

    def __init__(self, value: str | None) -> None:
        self.value = value
        super().__init__(f"Invalid custom color value: {value!r} (expected #RRGGBB)")


class InvalidCursorError(GemLedgerError):
    """Raised when a history pagination cursor cannot be decoded."""

    kind = "InvalidCursor"

    def __init__(self, cursor: str) -> None:
        self.cursor = cursor
        super().__init__(f"Invalid history cursor: {cursor[:40]}")


# ============================================================================
# Business Rule Errors - raised with no side effect
# ============================================================================


class InsufficientBalanceError(GemLedgerError):
    """Raised when a debit would drive the gem balance below zero."""

    kind = "InsufficientBalance"

    def __init__(self, balance: int, required: int) -> None:
        self.balance = balance
        self.required = required
        super().__init__(f"Insufficient gems. Balance: {balance}, Required: {required}")


class InsufficientPointsError(GemLedgerError):
    """Raised when the external points balance cannot cover a conversion."""

    kind = "InsufficientPoints"

    def __init__(self, available: int, requested: int) -> None:
        self.available = available
        self.requested = requested
        super().__init__(f"Insufficient points. Available: {available}, Requested: {requested}")


class UnknownItemError(GemLedgerError):
    """Raised when a customization item is not in the catalog."""

    kind = "UnknownItem"

    def __init__(self, category: str, item_id: str) -> None:
        self.category = category
        self.item_id = item_id
        super().__init__(f"Unknown catalog item: {category}/{item_id}")


class UnknownOfferError(GemLedgerError):
    """Raised when a partner offer does not exist or the partner is inactive."""

    kind = "UnknownOffer"

    def __init__(self, partner_id: str, offer_type: str) -> None:
        self.partner_id = partner_id
        self.offer_type = offer_type
        super().__init__(f"Unknown or inactive partner offer: {partner_id}/{offer_type}")


class NotActivatedError(GemLedgerError):
    """Raised when a justification is requested for an offer the user never activated."""

    kind = "NotActivated"

    def __init__(self, partner_id: str, offer_type: str) -> None:
        self.partner_id = partner_id
        self.offer_type = offer_type
        super().__init__(f"Offer not activated: {partner_id}/{offer_type}")


class JustificationNotFoundError(GemLedgerError):
    """Raised when a justification reference does not belong to the caller."""

    kind = "NotActivated"

    def __init__(self, reference: str) -> None:
        self.reference = reference
        super().__init__(f"Justification not found: {reference}")


# ============================================================================
# Integration Errors - never roll back a committed charge
# ============================================================================


class JustificationUnavailableError(GemLedgerError):
    """Raised when a justification cannot be produced for an activated offer."""

    kind = "JustificationUnavailable"

    def __init__(self, partner_id: str, offer_type: str, reason: str) -> None:
        self.partner_id = partner_id
        self.offer_type = offer_type
        self.reason = reason
        super().__init__(f"Justification unavailable for {partner_id}/{offer_type}: {reason}")


class ProofIssuerError(GemLedgerError):
    """Raised when the proof issuer fails to render an artifact."""

    kind = "JustificationUnavailable"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Proof issuer error: {message}")


class PointsLedgerError(GemLedgerError):
    """Raised when the external points ledger is unreachable or rejects a call."""

    kind = "PointsLedgerUnavailable"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(f"Points ledger error: {message}")


# ============================================================================
# Consistency Errors - surfaced as 500
# ============================================================================


class WriteVerificationError(GemLedgerError):
    """Raised when database write verification fails."""

    kind = "WriteVerificationFailed"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Write verification failed: {message}")


class DataIntegrityError(GemLedgerError):
    """Raised when data integrity constraint violated."""

    kind = "DataIntegrityError"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Data integrity error: {message}")


class InvalidTransactionStateError(GemLedgerError):
    """Raised when a terminal transaction would be modified."""

    kind = "InvalidTransactionState"

    def __init__(self, transaction_id: UUID, current: str, target: str) -> None:
        self.transaction_id = transaction_id
        self.current = current
        self.target = target
        super().__init__(
            f"Transaction {transaction_id} cannot move from {current} to {target}"
        )


# ============================================================================
# Authentication Errors
# ============================================================================


class AuthenticationError(GemLedgerError):
    """Raised when a session token or admin key is missing or invalid."""

    kind = "Unauthenticated"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")


class AuthorizationError(GemLedgerError):
    """Raised when a caller is authenticated but not allowed."""

    kind = "Forbidden"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Forbidden: {message}")

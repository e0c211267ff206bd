"""
FastAPI Dependencies - Authentication and service wiring.

NO DICTIONARIES - All dependencies return typed objects.
"""

import secrets
from dataclasses import dataclass

import jwt
from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from gem_ledger.config import settings
from gem_ledger.db.session import get_read_db, get_write_db
from gem_ledger.exceptions import AuthenticationError, AuthorizationError
from gem_ledger.observability import bind_user, get_logger
from gem_ledger.services.conversion import ConversionService
from gem_ledger.services.ledger import LedgerService
from gem_ledger.services.partner_catalog import PartnerCatalog, get_partner_catalog
from gem_ledger.services.partner_stats import PartnerStatsService
from gem_ledger.services.points_ledger import PointsLedger, get_points_ledger
from gem_ledger.services.proof_issuer import PillowProofIssuer, ProofIssuer
from gem_ledger.services.purchase import PurchaseService
from gem_ledger.services.reconciliation import ReconciliationService
from gem_ledger.services.redemption import RedemptionService

logger = get_logger(__name__)

# ============================================================================
# User Session Authentication
# ============================================================================


@dataclass(frozen=True)
class SessionUser:
    """Authenticated user from the platform session token."""

    user_id: str
    name: str | None = None


# Bearer token scheme for session JWTs
bearer_scheme = HTTPBearer(auto_error=False)


def decode_session_token(token: str) -> SessionUser:
    """
    Verify a session JWT and extract the user.

    Raises:
        AuthenticationError: Expired, malformed or unsigned token, or no subject
    """
    try:
        payload = jwt.decode(
            token,
            settings.session_jwt_secret,
            algorithms=[settings.session_jwt_algorithm],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError as e:
        logger.warning("session_token_expired")
        raise AuthenticationError("Session token expired") from e
    except jwt.InvalidTokenError as e:
        logger.warning("session_token_invalid", error=str(e))
        raise AuthenticationError("Invalid session token") from e

    user_id = str(payload["sub"]).strip()
    if not user_id:
        raise AuthenticationError("Session token has an empty subject")

    name = payload.get("name")
    return SessionUser(user_id=user_id, name=str(name) if name else None)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> SessionUser:
    """
    FastAPI dependency resolving the caller from ``Authorization: Bearer <jwt>``.

    The user id always comes from the token, never from the request body.
    """
    if credentials is None:
        raise AuthenticationError("Authorization header required")

    user = decode_session_token(credentials.credentials)
    bind_user(user.user_id)
    return user


# ============================================================================
# Admin API Key
# ============================================================================


async def require_admin_key(x_api_key: str | None = Header(None, alias="X-API-Key")) -> None:
    """FastAPI dependency guarding admin routes with the configured API key."""
    if not x_api_key:
        raise AuthenticationError("X-API-Key header required")

    if not settings.admin_api_key or not secrets.compare_digest(
        x_api_key.encode(), settings.admin_api_key.encode()
    ):
        logger.warning("admin_key_rejected", x_api_key=x_api_key)
        raise AuthorizationError("Invalid admin API key")


# ============================================================================
# Services
# ============================================================================


def get_proof_issuer() -> ProofIssuer:
    return PillowProofIssuer()


def get_ledger_service(db: AsyncSession = Depends(get_write_db)) -> LedgerService:
    return LedgerService(db)


def get_read_ledger_service(db: AsyncSession = Depends(get_read_db)) -> LedgerService:
    return LedgerService(db)


def get_conversion_service(
    ledger: LedgerService = Depends(get_ledger_service),
    points_ledger: PointsLedger = Depends(get_points_ledger),
) -> ConversionService:
    return ConversionService(ledger, points_ledger)


def get_purchase_service(ledger: LedgerService = Depends(get_ledger_service)) -> PurchaseService:
    return PurchaseService(ledger)


def get_redemption_service(
    ledger: LedgerService = Depends(get_ledger_service),
    partner_catalog: PartnerCatalog = Depends(get_partner_catalog),
    issuer: ProofIssuer = Depends(get_proof_issuer),
) -> RedemptionService:
    return RedemptionService(ledger, partner_catalog, issuer)


def get_partner_stats_service(
    ledger: LedgerService = Depends(get_read_ledger_service),
    partner_catalog: PartnerCatalog = Depends(get_partner_catalog),
) -> PartnerStatsService:
    return PartnerStatsService(ledger, partner_catalog)


def get_reconciliation_service(
    ledger: LedgerService = Depends(get_read_ledger_service),
) -> ReconciliationService:
    return ReconciliationService(ledger)

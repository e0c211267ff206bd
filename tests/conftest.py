"""
Pytest Configuration and Centralized Fixtures.

Provides reusable fixtures for testing:
- Mock database sessions for unit tests
- A real SQLite database (aiosqlite) for ledger flows
- In-memory points ledger and proof issuers
- API test client with dependency overrides and session tokens
"""

import os
import time
from collections.abc import AsyncGenerator, Callable
from unittest.mock import AsyncMock, MagicMock

import jwt
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Set required environment variables BEFORE importing gem_ledger modules
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SESSION_JWT_SECRET", "test-session-secret-key-min-32-characters")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-api-key")
os.environ.setdefault("LOG_FORMAT", "console")

from gem_ledger.config import settings
from gem_ledger.db.models import Base
from gem_ledger.exceptions import InsufficientPointsError, PointsLedgerError, ProofIssuerError
from gem_ledger.models.domain import RenderedArtifact
from gem_ledger.services.ledger import LedgerService
from gem_ledger.services.partner_catalog import PartnerCatalog, load_partner_catalog
from gem_ledger.services.proof_issuer import CONTENT_TYPES, ProofRequest

# ============================================================================
# Database Session Fixtures
# ============================================================================


@pytest.fixture
def db_session() -> AsyncMock:
    """Create a mock database session with sensible defaults."""
    session = AsyncMock(spec=AsyncSession)

    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    session.get = AsyncMock(return_value=None)

    # Default execute returns empty result
    mock_result = MagicMock()
    mock_result.scalar_one_or_none = MagicMock(return_value=None)
    mock_result.scalars = MagicMock(
        return_value=MagicMock(all=MagicMock(return_value=[]), first=MagicMock(return_value=None))
    )
    mock_result.all = MagicMock(return_value=[])
    session.execute = AsyncMock(return_value=mock_result)

    return session


@pytest.fixture
async def session_maker(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """SQLite database with the full schema, one file per test."""
    db_path = tmp_path / "gem_ledger.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield maker

    await engine.dispose()


@pytest.fixture
async def session(
    session_maker: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as db:
        yield db


@pytest.fixture
def ledger(session: AsyncSession) -> LedgerService:
    return LedgerService(session)


@pytest.fixture
def funded_user(ledger: LedgerService) -> Callable:
    """Give a user an initial gem balance through an admin grant."""
    from gem_ledger.models.api import TransactionMetadata, TransactionType

    async def _fund(user_id: str, gems: int) -> None:
        await ledger.apply_delta(
            user_id,
            gems,
            TransactionType.ADMIN_GRANT,
            "Test funding",
            TransactionMetadata(admin_note="test"),
        )

    return _fund


# ============================================================================
# Collaborator Fakes
# ============================================================================


class FakePointsLedger:
    """In-memory points ledger honoring idempotency keys."""

    def __init__(self, balances: dict[str, int] | None = None) -> None:
        self.balances: dict[str, int] = dict(balances or {})
        self.applied_keys: set[str] = set()
        self.debits: list[tuple[str, int, str]] = []
        self.credits: list[tuple[str, int, str]] = []
        self.fail_credit = False

    async def get_balance(self, user_id: str) -> int:
        return self.balances.get(user_id, 0)

    async def debit(self, user_id: str, points: int, idempotency_key: str, reason: str) -> int:
        if idempotency_key not in self.applied_keys:
            if self.balances.get(user_id, 0) < points:
                raise InsufficientPointsError(self.balances.get(user_id, 0), points)
            self.applied_keys.add(idempotency_key)
            self.balances[user_id] = self.balances.get(user_id, 0) - points
            self.debits.append((user_id, points, idempotency_key))
        return self.balances[user_id]

    async def credit(self, user_id: str, points: int, idempotency_key: str, reason: str) -> int:
        if self.fail_credit:
            raise PointsLedgerError("credit unavailable")
        if idempotency_key not in self.applied_keys:
            self.applied_keys.add(idempotency_key)
            self.balances[user_id] = self.balances.get(user_id, 0) + points
            self.credits.append((user_id, points, idempotency_key))
        return self.balances[user_id]


class StaticProofIssuer:
    """Returns fixed bytes and records every request."""

    def __init__(self) -> None:
        self.requests: list[ProofRequest] = []

    def render(self, request: ProofRequest) -> RenderedArtifact:
        self.requests.append(request)
        return RenderedArtifact(
            content=f"proof:{request.reference}".encode(),
            content_type=CONTENT_TYPES[request.justification_type],
        )


class FailingProofIssuer:
    """Always fails, like an unreachable rendering backend."""

    def __init__(self) -> None:
        self.calls = 0

    def render(self, request: ProofRequest) -> RenderedArtifact:
        self.calls += 1
        raise ProofIssuerError("renderer offline")


class SlowProofIssuer:
    """Blocks longer than any test timeout."""

    def render(self, request: ProofRequest) -> RenderedArtifact:
        time.sleep(0.5)
        return RenderedArtifact(content=b"late", content_type="image/png")


@pytest.fixture
def points_ledger() -> FakePointsLedger:
    return FakePointsLedger({"user-1": 1000, "user-2": 250})


@pytest.fixture
def proof_issuer() -> StaticProofIssuer:
    return StaticProofIssuer()


@pytest.fixture
def failing_issuer() -> FailingProofIssuer:
    return FailingProofIssuer()


@pytest.fixture
def slow_issuer() -> SlowProofIssuer:
    return SlowProofIssuer()


@pytest.fixture
def partner_catalog() -> PartnerCatalog:
    return load_partner_catalog()


# ============================================================================
# API Client Fixtures
# ============================================================================


@pytest.fixture
def session_token() -> Callable[..., str]:
    """Sign a session JWT the way the platform session service does."""

    def _token(user_id: str, expires_in: int = 3600, secret: str | None = None) -> str:
        now = int(time.time())
        payload = {"sub": user_id, "iat": now, "exp": now + expires_in}
        return jwt.encode(
            payload,
            secret or settings.session_jwt_secret,
            algorithm=settings.session_jwt_algorithm,
        )

    return _token


@pytest.fixture
def auth_headers(session_token: Callable[..., str]) -> Callable[[str], dict[str, str]]:
    def _headers(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {session_token(user_id)}"}

    return _headers


@pytest.fixture
async def api_client(
    session_maker: async_sessionmaker[AsyncSession],
    points_ledger: FakePointsLedger,
    proof_issuer: StaticProofIssuer,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app wired to the SQLite database and fakes."""
    from gem_ledger.api.dependencies import get_proof_issuer
    from gem_ledger.db.session import get_read_db, get_write_db
    from gem_ledger.main import app
    from gem_ledger.services.points_ledger import get_points_ledger

    async def override_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_maker() as db:
            yield db

    app.dependency_overrides[get_write_db] = override_db
    app.dependency_overrides[get_read_db] = override_db
    app.dependency_overrides[get_points_ledger] = lambda: points_ledger
    app.dependency_overrides[get_proof_issuer] = lambda: proof_issuer

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()

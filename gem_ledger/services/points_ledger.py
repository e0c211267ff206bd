"""
Points Ledger - Client for the platform's external points balance.

NO DICTIONARIES - Request and response bodies are typed models.
"""

from typing import Protocol

import httpx
from pydantic import BaseModel, Field, ValidationError

from gem_ledger.config import settings
from gem_ledger.exceptions import InsufficientPointsError, PointsLedgerError
from gem_ledger.observability import get_logger

logger = get_logger(__name__)


class PointsBalance(BaseModel):
    """Points balance as reported by the points service."""

    user_id: str
    points: int = Field(..., ge=0)


class PointsMovement(BaseModel):
    """Debit or credit request body."""

    points: int = Field(..., gt=0)
    idempotency_key: str
    reason: str


class PointsLedger(Protocol):
    """
    External points balance collaborator.

    Debits and credits are idempotent on idempotency_key.
    """

    async def get_balance(self, user_id: str) -> int:
        """
        Current points of a user.

        Raises:
            PointsLedgerError: Service unreachable or returned an error
        """
        ...

    async def debit(self, user_id: str, points: int, idempotency_key: str, reason: str) -> int:
        """
        Remove points and return the remaining balance.

        Raises:
            InsufficientPointsError: Balance changed and no longer covers the debit
            PointsLedgerError: Service unreachable or returned an error
        """
        ...

    async def credit(self, user_id: str, points: int, idempotency_key: str, reason: str) -> int:
        """
        Add points back and return the new balance.

        Raises:
            PointsLedgerError: Service unreachable or returned an error
        """
        ...


class HttpPointsLedger:
    """Points ledger reached over HTTP with a bearer service token."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout_seconds: float = 5.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout_seconds = timeout_seconds
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout_seconds, headers=headers
            )
        return self._http_client

    async def get_balance(self, user_id: str) -> int:
        response = await self._request("GET", f"/v1/points/{user_id}")
        return self._parse_balance(response).points

    async def debit(self, user_id: str, points: int, idempotency_key: str, reason: str) -> int:
        body = PointsMovement(points=points, idempotency_key=idempotency_key, reason=reason)
        response = await self._request(
            "POST", f"/v1/points/{user_id}/debit", json=body.model_dump()
        )
        if response.status_code == httpx.codes.CONFLICT:
            # The service rejects debits that exceed the current balance
            available = await self.get_balance(user_id)
            raise InsufficientPointsError(available, points)
        return self._parse_balance(response).points

    async def credit(self, user_id: str, points: int, idempotency_key: str, reason: str) -> int:
        body = PointsMovement(points=points, idempotency_key=idempotency_key, reason=reason)
        response = await self._request(
            "POST", f"/v1/points/{user_id}/credit", json=body.model_dump()
        )
        return self._parse_balance(response).points

    async def _request(self, method: str, path: str, **kwargs: object) -> httpx.Response:
        try:
            response = await self.http_client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error("points_ledger_unreachable", method=method, path=path, error=str(e))
            raise PointsLedgerError(f"{method} {path} failed: {e}") from e

        if response.status_code >= 400 and response.status_code != httpx.codes.CONFLICT:
            logger.error(
                "points_ledger_error_response",
                method=method,
                path=path,
                status=response.status_code,
                text=response.text[:500],
            )
            raise PointsLedgerError(
                f"{method} {path} returned {response.status_code}", response.status_code
            )
        return response

    @staticmethod
    def _parse_balance(response: httpx.Response) -> PointsBalance:
        try:
            return PointsBalance.model_validate_json(response.content)
        except ValidationError as e:
            raise PointsLedgerError(f"Malformed points response: {e}") from e

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()


_points_ledger: HttpPointsLedger | None = None


def get_points_ledger() -> PointsLedger:
    """Process-wide points ledger client (FastAPI dependency)."""
    global _points_ledger
    if _points_ledger is None:
        _points_ledger = HttpPointsLedger(
            base_url=settings.points_ledger_url,
            token=settings.points_ledger_token,
            timeout_seconds=settings.points_ledger_timeout_seconds,
        )
    return _points_ledger


async def close_points_ledger() -> None:
    """Close the shared client (graceful shutdown)."""
    global _points_ledger
    if _points_ledger is not None:
        await _points_ledger.close()
        _points_ledger = None

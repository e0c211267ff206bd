"""
Gems API client with a local activated-offer cache.

The cache mirrors the browser storage of the web client: keys are written
right after a successful activation and merged with server truth on load.
It is never consulted before calling activate_offer.
"""

import json
from pathlib import Path
from typing import TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from gem_ledger.exceptions import GemLedgerError
from gem_ledger.models.api import (
    ActivatedOffersResponse,
    ActivateOfferRequest,
    ActivateOfferResponse,
    BalanceResponse,
    CatalogResponse,
    ConvertRequest,
    ConvertResponse,
    CustomizationCategory,
    HistoryResponse,
    OfferKeyItem,
    OfferType,
    OwnedItemsResponse,
    PartnersResponse,
    PurchaseRequest,
    PurchaseResponse,
    ReconcileRequest,
    ReconcileResponse,
    RegenerateJustificationRequest,
    RegenerateJustificationResponse,
)
from gem_ledger.models.domain import OfferKey
from gem_ledger.observability import get_logger
from gem_ledger.services.reconciliation import reconcile_offer_keys

logger = get_logger(__name__)

ResponseT = TypeVar("ResponseT", bound=BaseModel)


class GemsApiError(GemLedgerError):
    """Error response returned by the gems API."""

    def __init__(self, status_code: int, kind: str, detail: str) -> None:
        self.status_code = status_code
        self.kind = kind
        self.detail = detail
        super().__init__(f"{status_code} {kind}: {detail}")


class ActivatedOfferCache:
    """JSON file holding ``<partner_id>-<offer_type>`` keys."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> set[OfferKey]:
        """Read cached keys; a missing or corrupt file reads as empty."""
        if not self.path.exists():
            return set()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("offer_cache_unreadable", path=str(self.path), error=str(e))
            return set()

        keys: set[OfferKey] = set()
        for entry in raw if isinstance(raw, list) else []:
            try:
                keys.add(OfferKey.from_cache_key(str(entry)))
            except ValueError:
                logger.warning("offer_cache_entry_skipped", path=str(self.path), entry=entry)
        return keys

    def save(self, keys: set[OfferKey]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = [key.as_cache_key() for key in sorted(keys)]
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        tmp_path.replace(self.path)

    def add(self, key: OfferKey) -> None:
        keys = self.load()
        if key not in keys:
            keys.add(key)
            self.save(keys)

    def contains(self, key: OfferKey) -> bool:
        return key in self.load()


class GemsClient:
    """Async client for the gems HTTP API."""

    def __init__(
        self,
        base_url: str,
        session_token: str,
        cache: ActivatedOfferCache | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session_token = session_token
        self.cache = cache
        self.timeout_seconds = timeout_seconds
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout_seconds
            )
        return self._http_client

    # ========================================================================
    # Ledger Operations
    # ========================================================================

    async def get_balance(self) -> BalanceResponse:
        return await self._call("GET", "/v1/gems/balance", BalanceResponse)

    async def convert(self, points: int) -> ConvertResponse:
        return await self._call(
            "POST", "/v1/gems/convert", ConvertResponse, body=ConvertRequest(points=points)
        )

    async def purchase(
        self, category: CustomizationCategory, item_id: str, custom_value: str | None = None
    ) -> PurchaseResponse:
        body = PurchaseRequest(category=category, item_id=item_id, custom_value=custom_value)
        return await self._call("POST", "/v1/gems/purchase", PurchaseResponse, body=body)

    async def history(self, limit: int = 20, cursor: str | None = None) -> HistoryResponse:
        params: dict[str, str | int] = {"limit": limit}
        if cursor:
            params["cursor"] = cursor
        return await self._call("GET", "/v1/gems/history", HistoryResponse, params=params)

    async def get_catalog(self) -> CatalogResponse:
        return await self._call("GET", "/v1/gems/catalog", CatalogResponse)

    async def get_partners(self) -> PartnersResponse:
        return await self._call("GET", "/v1/gems/partners", PartnersResponse)

    async def get_owned_items(self) -> OwnedItemsResponse:
        return await self._call("GET", "/v1/gems/owned", OwnedItemsResponse)

    # ========================================================================
    # Partner Offers
    # ========================================================================

    async def activate_offer(self, partner_id: str, offer_type: OfferType) -> ActivateOfferResponse:
        """Activate (or replay) an offer and remember it locally on success."""
        body = ActivateOfferRequest(partner_id=partner_id, offer_type=offer_type)
        response = await self._call(
            "POST", "/v1/gems/offers/activate", ActivateOfferResponse, body=body
        )
        if self.cache is not None:
            self.cache.add(OfferKey(partner_id=partner_id, offer_type=offer_type))
        return response

    async def regenerate_justification(
        self, partner_id: str, offer_type: OfferType
    ) -> RegenerateJustificationResponse:
        body = RegenerateJustificationRequest(partner_id=partner_id, offer_type=offer_type)
        return await self._call(
            "POST", "/v1/gems/offers/justification", RegenerateJustificationResponse, body=body
        )

    async def download_justification(self, reference: str) -> tuple[bytes, str]:
        """Raw artifact bytes and content type."""
        response = await self._send("GET", f"/v1/gems/justifications/{reference}")
        return response.content, response.headers.get("content-type", "application/octet-stream")

    async def get_activated_offers(self) -> list[OfferKey]:
        response = await self._call("GET", "/v1/gems/offers/activated", ActivatedOffersResponse)
        return [OfferKey(partner_id=o.partner_id, offer_type=o.offer_type) for o in response.offers]

    async def sync_activated_offers(self) -> set[OfferKey]:
        """
        Load-time reconciliation: union of cached keys and server truth, persisted.

        When the server cannot be reached the cached keys are returned unchanged.
        """
        local = self.cache.load() if self.cache is not None else set()
        try:
            server = await self.get_activated_offers()
        except (httpx.HTTPError, GemsApiError) as e:
            logger.warning("offer_sync_server_unavailable", error=str(e))
            return local

        merged = set(reconcile_offer_keys(local, server))
        if self.cache is not None and merged != local:
            self.cache.save(merged)
        return merged

    async def reconcile(self, local: set[OfferKey]) -> ReconcileResponse:
        """Server-side union of the given keys with server truth."""
        body = ReconcileRequest(
            offers=[
                OfferKeyItem(partner_id=key.partner_id, offer_type=key.offer_type)
                for key in sorted(local)
            ]
        )
        return await self._call("POST", "/v1/gems/offers/reconcile", ReconcileResponse, body=body)

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _call(
        self,
        method: str,
        path: str,
        response_model: type[ResponseT],
        body: BaseModel | None = None,
        params: dict[str, str | int] | None = None,
    ) -> ResponseT:
        response = await self._send(method, path, body=body, params=params)
        try:
            return response_model.model_validate_json(response.content)
        except ValidationError as e:
            raise GemsApiError(response.status_code, "MalformedResponse", str(e)) from e

    async def _send(
        self,
        method: str,
        path: str,
        body: BaseModel | None = None,
        params: dict[str, str | int] | None = None,
    ) -> httpx.Response:
        response = await self.http_client.request(
            method,
            path,
            json=body.model_dump(mode="json") if body is not None else None,
            params=params,
            headers={"Authorization": f"Bearer {self.session_token}"},
        )
        if response.status_code >= 400:
            kind, detail = "HttpError", response.text[:500]
            if response.headers.get("content-type", "").startswith("application/json"):
                payload = response.json()
                if isinstance(payload, dict):
                    kind = payload.get("error", kind)
                    detail = payload.get("detail", detail)
            logger.warning(
                "gems_api_error", method=method, path=path, status=response.status_code, kind=kind
            )
            raise GemsApiError(response.status_code, str(kind), str(detail))
        return response

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()

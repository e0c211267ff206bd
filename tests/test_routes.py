"""
Tests for the HTTP API.

Drives the FastAPI app through ASGITransport against a SQLite database,
with the points ledger and proof issuer replaced by in-memory fakes.
"""

import pytest
from httpx import AsyncClient

from gem_ledger.config import settings

ADMIN = {"X-API-Key": settings.admin_api_key}


async def _grant(api_client: AsyncClient, user_id: str, gems: int) -> None:
    response = await api_client.post(
        "/v1/admin/gems/grant",
        json={"user_id": user_id, "gems": gems, "note": "test grant"},
        headers=ADMIN,
    )
    assert response.status_code == 200


class TestAuthentication:
    """Session token handling."""

    async def test_missing_token(self, api_client: AsyncClient):
        response = await api_client.get("/v1/gems/balance")

        assert response.status_code == 401
        assert response.json()["error"] == "Unauthenticated"

    async def test_bad_signature(self, api_client: AsyncClient, session_token):
        token = session_token("user-1", secret="another-secret-entirely-but-long-enough")
        response = await api_client.get(
            "/v1/gems/balance", headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 401

    async def test_expired_token(self, api_client: AsyncClient, session_token):
        token = session_token("user-1", expires_in=-60)
        response = await api_client.get(
            "/v1/gems/balance", headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 401
        assert "expired" in response.json()["detail"].lower()


class TestBalance:
    """GET /v1/gems/balance."""

    async def test_new_user(self, api_client: AsyncClient, auth_headers):
        response = await api_client.get("/v1/gems/balance", headers=auth_headers("user-1"))

        assert response.status_code == 200
        body = response.json()
        assert body["user_id"] == "user-1"
        assert body["balance"] == 0
        assert body["active_selections"] == {
            "usernameColor": None,
            "profileImage": None,
            "profileBorder": None,
        }


class TestConvert:
    """POST /v1/gems/convert."""

    async def test_convert(self, api_client: AsyncClient, auth_headers, points_ledger):
        response = await api_client.post(
            "/v1/gems/convert", json={"points": 250}, headers=auth_headers("user-1")
        )

        assert response.status_code == 200
        body = response.json()
        assert body["gems_earned"] == 2
        assert body["points_used"] == 200
        assert body["balance_after"] == 2
        assert body["transaction"]["transaction_type"] == "conversion"
        assert points_ledger.balances["user-1"] == 800

    async def test_invalid_amount(self, api_client: AsyncClient, auth_headers):
        response = await api_client.post(
            "/v1/gems/convert", json={"points": 99}, headers=auth_headers("user-1")
        )

        assert response.status_code == 400
        assert response.json()["error"] == "InvalidAmount"

    async def test_insufficient_points(self, api_client: AsyncClient, auth_headers):
        response = await api_client.post(
            "/v1/gems/convert", json={"points": 5000}, headers=auth_headers("user-2")
        )

        assert response.status_code == 400
        assert response.json()["error"] == "InsufficientPoints"


class TestPurchase:
    """POST /v1/gems/purchase."""

    async def test_purchase_flow(self, api_client: AsyncClient, auth_headers):
        await _grant(api_client, "user-1", 30)
        headers = auth_headers("user-1")

        await api_client.post(
            "/v1/gems/purchase",
            json={"category": "usernameColor", "item_id": "rainbow"},
            headers=headers,
        )
        response = await api_client.post(
            "/v1/gems/purchase",
            json={"category": "usernameColor", "item_id": "neon"},
            headers=headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["balance_after"] == 5
        assert body["active_selections"]["usernameColor"]["item_id"] == "neon"

        owned = await api_client.get("/v1/gems/owned", headers=headers)
        assert {item["item_id"] for item in owned.json()["items"]} == {"rainbow", "neon"}

    async def test_insufficient_balance_is_402(self, api_client: AsyncClient, auth_headers):
        response = await api_client.post(
            "/v1/gems/purchase",
            json={"category": "usernameColor", "item_id": "neon"},
            headers=auth_headers("user-1"),
        )

        assert response.status_code == 402
        assert response.json()["error"] == "InsufficientBalance"

    async def test_unknown_item_is_404(self, api_client: AsyncClient, auth_headers):
        response = await api_client.post(
            "/v1/gems/purchase",
            json={"category": "profileBorder", "item_id": "plaid"},
            headers=auth_headers("user-1"),
        )

        assert response.status_code == 404
        assert response.json()["error"] == "UnknownItem"

    async def test_invalid_custom_value_is_400(self, api_client: AsyncClient, auth_headers):
        await _grant(api_client, "user-1", 10)
        response = await api_client.post(
            "/v1/gems/purchase",
            json={"category": "usernameColor", "item_id": "custom", "custom_value": "blue"},
            headers=auth_headers("user-1"),
        )

        assert response.status_code == 400
        assert response.json()["error"] == "InvalidCustomValue"

    async def test_unknown_category_is_422(self, api_client: AsyncClient, auth_headers):
        response = await api_client.post(
            "/v1/gems/purchase",
            json={"category": "banner", "item_id": "gold"},
            headers=auth_headers("user-1"),
        )

        assert response.status_code == 422


class TestCatalogAndPartners:
    """Read-only listings."""

    async def test_catalog(self, api_client: AsyncClient):
        response = await api_client.get("/v1/gems/catalog")

        assert response.status_code == 200
        items = response.json()["items"]
        custom = [i for i in items if i["is_custom"]]
        assert len(custom) == 1
        assert custom[0]["item_id"] == "custom"

    async def test_partners_hide_promo_codes(self, api_client: AsyncClient, auth_headers):
        response = await api_client.get("/v1/gems/partners", headers=auth_headers("user-1"))

        assert response.status_code == 200
        assert "ARTS10" not in response.text
        ids = {p["partner_id"] for p in response.json()["partners"]}
        assert "cafe-des-arts" in ids


class TestOffers:
    """Partner offer endpoints."""

    async def test_activate_then_replay(self, api_client: AsyncClient, auth_headers):
        await _grant(api_client, "user-1", 60)
        headers = auth_headers("user-1")
        body = {"partner_id": "cafe-des-arts", "offer_type": "premium"}

        first = await api_client.post("/v1/gems/offers/activate", json=body, headers=headers)
        second = await api_client.post("/v1/gems/offers/activate", json=body, headers=headers)

        assert first.status_code == 200
        assert second.status_code == 200
        assert first.json()["already_activated"] is False
        assert second.json()["already_activated"] is True
        assert second.json()["promo_code"] == first.json()["promo_code"] == "ARTS25VIP"
        assert (
            second.json()["transaction"]["transaction_id"]
            == first.json()["transaction"]["transaction_id"]
        )

        balance = await api_client.get("/v1/gems/balance", headers=headers)
        assert balance.json()["balance"] == 10

    async def test_insufficient_balance(self, api_client: AsyncClient, auth_headers):
        await _grant(api_client, "user-1", 10)

        response = await api_client.post(
            "/v1/gems/offers/activate",
            json={"partner_id": "cafe-des-arts", "offer_type": "premium"},
            headers=auth_headers("user-1"),
        )

        assert response.status_code == 402
        activated = await api_client.get(
            "/v1/gems/offers/activated", headers=auth_headers("user-1")
        )
        assert activated.json()["offers"] == []

    async def test_unknown_offer(self, api_client: AsyncClient, auth_headers):
        response = await api_client.post(
            "/v1/gems/offers/activate",
            json={"partner_id": "nowhere", "offer_type": "free"},
            headers=auth_headers("user-1"),
        )

        assert response.status_code == 404
        assert response.json()["error"] == "UnknownOffer"

    async def test_download_justification(self, api_client: AsyncClient, auth_headers):
        headers = auth_headers("user-1")
        activated = await api_client.post(
            "/v1/gems/offers/activate",
            json={"partner_id": "cafe-des-arts", "offer_type": "free"},
            headers=headers,
        )
        justification = activated.json()["justification"]
        assert justification["status"] == "issued"

        response = await api_client.get(justification["download_url"], headers=headers)

        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"
        assert response.content == f"proof:{justification['reference']}".encode()

        other = await api_client.get(justification["download_url"], headers=auth_headers("user-2"))
        assert other.status_code == 404

    async def test_regenerate_not_activated(self, api_client: AsyncClient, auth_headers):
        response = await api_client.post(
            "/v1/gems/offers/justification",
            json={"partner_id": "cafe-des-arts", "offer_type": "free"},
            headers=auth_headers("user-1"),
        )

        assert response.status_code == 404
        assert response.json()["error"] == "NotActivated"

    async def test_reconcile(self, api_client: AsyncClient, auth_headers):
        headers = auth_headers("user-1")
        await api_client.post(
            "/v1/gems/offers/activate",
            json={"partner_id": "cafe-des-arts", "offer_type": "free"},
            headers=headers,
        )

        response = await api_client.post(
            "/v1/gems/offers/reconcile",
            json={"offers": [{"partner_id": "salle-climb-up", "offer_type": "premium"}]},
            headers=headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert len(body["offers"]) == 2
        assert body["server_offers"] == [{"partner_id": "cafe-des-arts", "offer_type": "free"}]


class TestHistory:
    """GET /v1/gems/history."""

    async def test_history_pagination(self, api_client: AsyncClient, auth_headers):
        for _ in range(3):
            await _grant(api_client, "user-1", 1)
        headers = auth_headers("user-1")

        page1 = await api_client.get("/v1/gems/history?limit=2", headers=headers)
        assert page1.status_code == 200
        assert len(page1.json()["transactions"]) == 2
        assert page1.json()["has_more"] is True

        cursor = page1.json()["next_cursor"]
        page2 = await api_client.get(
            "/v1/gems/history", params={"limit": 2, "cursor": cursor}, headers=headers
        )
        assert len(page2.json()["transactions"]) == 1
        assert page2.json()["has_more"] is False

    async def test_invalid_cursor(self, api_client: AsyncClient, auth_headers):
        response = await api_client.get(
            "/v1/gems/history", params={"cursor": "%%%"}, headers=auth_headers("user-1")
        )

        assert response.status_code == 400
        assert response.json()["error"] == "InvalidCursor"

    @pytest.mark.parametrize("limit", [0, 101])
    async def test_limit_bounds(self, api_client: AsyncClient, auth_headers, limit):
        response = await api_client.get(
            "/v1/gems/history", params={"limit": limit}, headers=auth_headers("user-1")
        )

        assert response.status_code == 422


class TestAdmin:
    """Admin endpoints."""

    async def test_requires_api_key(self, api_client: AsyncClient):
        response = await api_client.post(
            "/v1/admin/gems/grant", json={"user_id": "user-1", "gems": 5, "note": "x"}
        )

        assert response.status_code == 401

    async def test_rejects_wrong_api_key(self, api_client: AsyncClient):
        response = await api_client.post(
            "/v1/admin/gems/grant",
            json={"user_id": "user-1", "gems": 5, "note": "x"},
            headers={"X-API-Key": "wrong"},
        )

        assert response.status_code == 403
        assert response.json()["error"] == "Forbidden"

    async def test_deduct_and_consistency(self, api_client: AsyncClient):
        await _grant(api_client, "user-1", 20)

        deduct = await api_client.post(
            "/v1/admin/gems/deduct",
            json={"user_id": "user-1", "gems": 5, "note": "chargeback"},
            headers=ADMIN,
        )
        assert deduct.status_code == 200
        assert deduct.json()["balance_after"] == 15
        assert deduct.json()["transaction"]["metadata"]["admin_note"] == "chargeback"

        audit = await api_client.get(
            "/v1/admin/gems/accounts/user-1/consistency", headers=ADMIN
        )
        assert audit.json()["consistent"] is True
        assert audit.json()["completed_delta_sum"] == 15

    async def test_deduct_below_zero(self, api_client: AsyncClient):
        response = await api_client.post(
            "/v1/admin/gems/deduct",
            json={"user_id": "user-1", "gems": 5, "note": "x"},
            headers=ADMIN,
        )

        assert response.status_code == 402

    async def test_partner_stats(self, api_client: AsyncClient, auth_headers):
        await api_client.post(
            "/v1/gems/offers/activate",
            json={"partner_id": "salle-climb-up", "offer_type": "free"},
            headers=auth_headers("user-1"),
        )

        response = await api_client.get("/v1/admin/gems/partners/stats", headers=ADMIN)

        assert response.status_code == 200
        body = response.json()
        assert body["total_uses"] == 1
        assert body["partners"][0]["partner_id"] == "salle-climb-up"
        assert body["partners"][0]["name"] == "Climb Up"

    async def test_partner_stats_requires_api_key(self, api_client: AsyncClient):
        response = await api_client.get("/v1/admin/gems/partners/stats")

        assert response.status_code == 401


class TestOperational:
    """Health and metrics."""

    async def test_health(self, api_client: AsyncClient):
        response = await api_client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["version"] == settings.api_version

    async def test_metrics(self, api_client: AsyncClient):
        response = await api_client.get("/metrics")

        assert response.status_code == 200
        assert "gem_ledger_http_requests_total" in response.text

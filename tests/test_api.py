"""
Tests for the HTTP surface: response envelopes and status codes.
"""

import httpx
import pytest

from main_api import app


@pytest.fixture
async def client(database):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


VOUCHER = {
    "code": "welcome",
    "name": "Welcome",
    "discount_type": "percentage",
    "discount_value": 10,
    "max_discount_value": 50000,
    "status": "active",
}


class TestVoucherApi:

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    @pytest.mark.asyncio
    async def test_create_and_apply(self, client):
        created = await client.post("/vouchers", json=VOUCHER, headers={"X-User-Id": "admin-1"})
        assert created.status_code == 201
        data = created.json()["data"]
        assert data["code"] == "WELCOME"
        assert data["created_by"] == "admin-1"

        applied = await client.post("/vouchers/apply", json={"code": "Welcome", "subtotal": 1_000_000})
        assert applied.status_code == 200
        body = applied.json()
        assert body["status"] == "ok"
        assert body["data"]["discount_amount"] == 50000
        assert body["data"]["runtime_status"] == "active"

    @pytest.mark.asyncio
    async def test_duplicate_code_conflict(self, client):
        await client.post("/vouchers", json=VOUCHER)
        response = await client.post("/vouchers", json={**VOUCHER, "code": "WELCOME"})

        assert response.status_code == 409
        assert response.json()["kind"] == "conflict"

    @pytest.mark.asyncio
    async def test_invalid_payload(self, client):
        response = await client.post("/vouchers", json={**VOUCHER, "code": "x"})

        assert response.status_code == 422
        body = response.json()
        assert body["status"] == "error"
        assert body["kind"] == "validation"

    @pytest.mark.asyncio
    async def test_apply_unknown_code(self, client):
        response = await client.post("/vouchers/apply", json={"code": "GHOST", "subtotal": 10})

        assert response.status_code == 404
        assert response.json()["kind"] == "not_found"

    @pytest.mark.asyncio
    async def test_apply_below_minimum(self, client):
        await client.post("/vouchers", json={**VOUCHER, "min_order_value": 200000})
        response = await client.post("/vouchers/apply", json={"code": "WELCOME", "subtotal": 150000})

        assert response.status_code == 400
        body = response.json()
        assert body["kind"] == "ineligible"
        assert body["reason"] == "min_order_value"
        assert body["details"]["missing"] == 50000

    @pytest.mark.asyncio
    async def test_apply_without_subtotal(self, client):
        response = await client.post("/vouchers/apply", json={"code": "WELCOME"})

        assert response.status_code == 400
        assert response.json()["reason"] == "invalid_subtotal"

    @pytest.mark.asyncio
    async def test_redeem_with_idempotency_header(self, client):
        created = await client.post("/vouchers", json={**VOUCHER, "usage_limit": 1})
        voucher_id = created.json()["data"]["id"]

        first = await client.post(
            f"/vouchers/{voucher_id}/redeem",
            json={"user_id": "alice"},
            headers={"Idempotency-Key": "order-42"},
        )
        retry = await client.post(
            f"/vouchers/{voucher_id}/redeem",
            json={"user_id": "alice"},
            headers={"Idempotency-Key": "order-42"},
        )
        other = await client.post(f"/vouchers/{voucher_id}/redeem")

        assert first.status_code == 200
        assert first.json()["data"] == {
            "voucher_id": voucher_id,
            "usage_count": 1,
            "expired": True,
            "replayed": False,
        }
        assert retry.json()["data"]["replayed"] is True
        assert other.status_code == 400
        assert other.json()["reason"] == "usage_exhausted"

        fetched = await client.get(f"/vouchers/{voucher_id}")
        assert fetched.json()["data"]["status"] == "expired"
        assert fetched.json()["data"]["manual_status"] == "expired"

    @pytest.mark.asyncio
    async def test_list_update_delete(self, client):
        created = await client.post("/vouchers", json=VOUCHER)
        voucher_id = created.json()["data"]["id"]

        listed = await client.get("/vouchers", params={"status": "active", "search": "welc"})
        assert listed.status_code == 200
        assert [v["code"] for v in listed.json()["data"]["items"]] == ["WELCOME"]
        assert listed.json()["data"]["pagination"]["total_pages"] == 1

        updated = await client.put("/vouchers/welcome", json={"is_active": False})
        assert updated.status_code == 200
        assert updated.json()["data"]["status"] == "disabled"

        deleted = await client.delete(f"/vouchers/{voucher_id}")
        assert deleted.status_code == 200

        missing = await client.get(f"/vouchers/{voucher_id}")
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_list_rejects_unknown_status(self, client):
        response = await client.get("/vouchers", params={"status": "bogus"})

        assert response.status_code == 422
        assert response.json()["kind"] == "validation"

    @pytest.mark.asyncio
    async def test_apply_rejects_overflowing_subtotal(self, client):
        await client.post("/vouchers", json=VOUCHER)
        response = await client.post(
            "/vouchers/apply",
            content=b'{"code": "WELCOME", "subtotal": 1e400}',
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 422
        assert response.json()["kind"] == "validation"

    @pytest.mark.asyncio
    async def test_update_limit_below_usage(self, client):
        created = await client.post("/vouchers", json={**VOUCHER, "usage_limit": 5})
        voucher_id = created.json()["data"]["id"]
        await client.post(f"/vouchers/{voucher_id}/redeem")
        await client.post(f"/vouchers/{voucher_id}/redeem")

        response = await client.put(f"/vouchers/{voucher_id}", json={"usage_limit": 1})

        assert response.status_code == 400
        body = response.json()
        assert body["kind"] == "validation"
        assert body["reason"] == "usage_limit_below_count"

    @pytest.mark.asyncio
    async def test_usages_and_redemption_lookup(self, client):
        created = await client.post("/vouchers", json={**VOUCHER, "per_user_limit": 2})
        voucher_id = created.json()["data"]["id"]
        await client.post(
            f"/vouchers/{voucher_id}/redeem",
            json={"user_id": "alice"},
            headers={"Idempotency-Key": "order-77"},
        )

        usages = await client.get(f"/vouchers/{voucher_id}/usages")
        assert usages.status_code == 200
        assert [(u["user_id"], u["count"]) for u in usages.json()["data"]] == [("alice", 1)]

        redemption = await client.get("/redemptions/order-77")
        assert redemption.status_code == 200
        assert redemption.json()["data"]["voucher_id"] == voucher_id

        missing = await client.get("/redemptions/order-78")
        assert missing.status_code == 404

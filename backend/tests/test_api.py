"""
API Tests — Smoke tests for all routes.
"""

import uuid

import pytest
from httpx import AsyncClient

from conftest import TENANT_ID
from core import config as config_module
from db.models import Tenant


@pytest.mark.asyncio
class TestHealthCheck:
    async def test_health_check(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"


@pytest.mark.asyncio
class TestQuotaAPI:
    async def test_quota_unknown_tenant(self, client: AsyncClient):
        response = await client.get("/api/v1/quota/")
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    async def test_quota_fresh_tenant(self, client: AsyncClient, seeded_db):
        response = await client.get("/api/v1/quota/")
        assert response.status_code == 200
        data = response.json()
        assert data["canProcess"] is True
        assert data["canAddSku"] is True
        assert data["monthlyLimit"] == 1000
        assert data["skuCount"] == 3
        assert data["skuPercentage"] == 60.0
        assert data["status"] == "ok"

    async def test_increment_single_period(self, client: AsyncClient, seeded_db):
        response = await client.post("/api/v1/quota/usage", json={"period_type": "daily", "count": 2})
        assert response.status_code == 200
        assert response.json() == [{"period_type": "daily", "images_processed": 2}]

    async def test_increment_all_periods_idempotent(self, client: AsyncClient, seeded_db):
        body = {"period_type": "all", "count": 1, "idempotency_key": "evt-1"}
        await client.post("/api/v1/quota/usage", json=body)
        response = await client.post("/api/v1/quota/usage", json=body)

        assert response.status_code == 200
        assert {row["period_type"]: row["images_processed"] for row in response.json()} == {
            "daily": 1,
            "weekly": 1,
            "monthly": 1,
            "yearly": 1,
        }

    async def test_increment_unknown_period(self, client: AsyncClient, seeded_db):
        response = await client.post("/api/v1/quota/usage", json={"period_type": "hourly"})
        assert response.status_code == 400

    async def test_keyed_increment_touches_only_named_period(self, client: AsyncClient, seeded_db):
        body = {"period_type": "monthly", "count": 1, "idempotency_key": "evt-monthly"}
        await client.post("/api/v1/quota/usage", json=body)
        response = await client.post("/api/v1/quota/usage", json=body)

        assert response.status_code == 200
        assert response.json() == [{"period_type": "monthly", "images_processed": 1}]
        quota = (await client.get("/api/v1/quota/")).json()
        assert (quota["monthlyUsage"], quota["weeklyUsage"], quota["yearlyUsage"]) == (1, 0, 0)

    async def test_keyed_increment_unknown_period(self, client: AsyncClient, seeded_db):
        response = await client.post(
            "/api/v1/quota/usage", json={"period_type": "hourly", "idempotency_key": "evt-hourly"}
        )
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"
        assert (await client.get("/api/v1/quota/")).json()["monthlyUsage"] == 0

    async def test_negative_count_rejected(self, client: AsyncClient, seeded_db):
        response = await client.post("/api/v1/quota/usage", json={"period_type": "daily", "count": -1})
        assert response.status_code == 422

    async def test_usage_history(self, client: AsyncClient, seeded_db):
        await client.post("/api/v1/quota/usage", json={"period_type": "monthly", "count": 3})
        response = await client.get("/api/v1/quota/usage/monthly")
        assert response.status_code == 200
        [row] = response.json()
        assert row["images_processed"] == 3
        assert row["period_type"] == "monthly"


@pytest.mark.asyncio
class TestSkusAPI:
    async def test_list_skus_empty(self, client: AsyncClient):
        response = await client.get("/api/v1/skus/")
        assert response.status_code == 200
        assert response.json() == []

    async def test_create_sku(self, client: AsyncClient, seeded_db):
        response = await client.post("/api/v1/skus/", json={"name": "Pretzels 200g"})
        assert response.status_code == 201
        data = response.json()
        assert data["name"] == "Pretzels 200g"
        assert data["training_status"] == "pending"

    async def test_sku_quota_exceeded(self, client: AsyncClient, seeded_db):
        for name in ("Fourth", "Fifth"):
            assert (await client.post("/api/v1/skus/", json={"name": name})).status_code == 201

        response = await client.post("/api/v1/skus/", json={"name": "Sixth"})
        assert response.status_code == 429
        body = response.json()
        assert body["error"] == "QUOTA_EXCEEDED"
        assert body["message"] == "SKU limit reached (5/5)."

    async def test_training_status_transition(self, client: AsyncClient, seeded_db):
        sku_id = seeded_db["skus"]["chips"].sku_id
        response = await client.patch(f"/api/v1/skus/{sku_id}/training-status", json={"training_status": "training"})
        assert response.status_code == 200
        assert response.json()["training_status"] == "training"

    async def test_invalid_training_transition(self, client: AsyncClient, seeded_db):
        sku_id = seeded_db["skus"]["chips"].sku_id
        response = await client.patch(f"/api/v1/skus/{sku_id}/training-status", json={"training_status": "completed"})
        assert response.status_code == 400

    async def test_delete_sku(self, client: AsyncClient, seeded_db):
        sku_id = seeded_db["skus"]["chips"].sku_id
        assert (await client.delete(f"/api/v1/skus/{sku_id}")).status_code == 204
        assert (await client.delete(f"/api/v1/skus/{sku_id}")).status_code == 404

    async def test_categories(self, client: AsyncClient, seeded_db):
        response = await client.post("/api/v1/skus/categories", json={"name": "Dairy"})
        assert response.status_code == 201

        response = await client.get("/api/v1/skus/categories")
        assert [c["name"] for c in response.json()] == ["Beverages", "Dairy", "Snacks"]

    async def test_duplicate_category(self, client: AsyncClient, seeded_db):
        response = await client.post("/api/v1/skus/categories", json={"name": "Snacks"})
        assert response.status_code == 400


@pytest.mark.asyncio
class TestTenantsAPI:
    async def test_get_my_tenant(self, client: AsyncClient, seeded_db):
        response = await client.get("/api/v1/tenants/me")
        assert response.status_code == 200
        assert response.json()["name"] == "Test Grocers"

    async def test_new_tenant_uses_configured_threshold(self, client: AsyncClient, test_db, monkeypatch):
        monkeypatch.setenv("DEFAULT_CONFIDENCE_THRESHOLD", "0.8")
        config_module.get_settings.cache_clear()
        try:
            test_db.add(Tenant(tenant_id=uuid.UUID(TENANT_ID), name="Fresh Foods"))
            await test_db.commit()
        finally:
            monkeypatch.undo()
            config_module.get_settings.cache_clear()

        response = await client.get("/api/v1/tenants/me")
        assert response.status_code == 200
        assert response.json()["confidence_threshold"] == 0.8

    async def test_update_confidence_threshold(self, client: AsyncClient, seeded_db):
        response = await client.patch("/api/v1/tenants/me/settings", json={"confidence_threshold": 0.8})
        assert response.status_code == 200
        assert response.json()["confidence_threshold"] == 0.8

    async def test_confidence_threshold_out_of_range(self, client: AsyncClient, seeded_db):
        response = await client.patch("/api/v1/tenants/me/settings", json={"confidence_threshold": 0.3})
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    async def test_admin_update_requires_admin(self, client: AsyncClient, seeded_db):
        tenant_id = seeded_db["tenant_id"]
        response = await client.patch(f"/api/v1/tenants/{tenant_id}", json={"max_skus": 100})
        assert response.status_code == 403

    async def test_admin_update_limits(self, client: AsyncClient, seeded_db, mock_user):
        mock_user["role"] = "admin"
        tenant_id = seeded_db["tenant_id"]

        response = await client.patch(f"/api/v1/tenants/{tenant_id}", json={"max_skus": 100, "is_active": False})
        assert response.status_code == 200
        assert response.json()["max_skus"] == 100

        quota = (await client.get("/api/v1/quota/")).json()
        assert quota["status"] == "inactive"
        assert quota["skuLimit"] == 100

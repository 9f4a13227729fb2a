"""
Tests for the SKU catalog — SKU quota and the training status machine.
"""

import pytest
from sqlalchemy import select

from conftest import USER_ID
from catalog.skus import can_transition, create_category, list_skus, register_sku, transition_training_status
from core.errors import QuotaExceededError, ValidationError
from db.models import Notification, UsageCounter
from notifications.dispatcher import NotificationDispatcher


class TestTrainingTransitions:
    @pytest.mark.parametrize(
        "current,target",
        [
            ("pending", "training"),
            ("training", "completed"),
            ("training", "failed"),
            ("failed", "training"),
            ("completed", "training"),
        ],
    )
    def test_allowed(self, current, target):
        assert can_transition(current, target) is True

    @pytest.mark.parametrize(
        "current,target",
        [
            ("pending", "completed"),
            ("completed", "pending"),
            ("failed", "completed"),
            ("training", "pending"),
            ("unknown", "training"),
        ],
    )
    def test_rejected(self, current, target):
        assert can_transition(current, target) is False


@pytest.mark.asyncio
class TestRegisterSku:
    async def test_register_within_limit(self, test_db, seeded_db):
        category = seeded_db["categories"]["Snacks"]
        sku = await register_sku(test_db, seeded_db["tenant_id"], " Pretzels 200g ", category_id=category.category_id)

        assert sku.name == "Pretzels 200g"
        assert sku.training_status == "pending"
        assert len(await list_skus(test_db, seeded_db["tenant_id"])) == 4

    async def test_sku_limit_enforced(self, test_db, seeded_db):
        tenant_id = seeded_db["tenant_id"]
        await register_sku(test_db, tenant_id, "Fourth")
        await register_sku(test_db, tenant_id, "Fifth")

        with pytest.raises(QuotaExceededError):
            await register_sku(test_db, tenant_id, "Sixth")

    async def test_inactive_tenant_cannot_add(self, test_db, seeded_db):
        seeded_db["tenant"].is_active = False
        await test_db.commit()

        with pytest.raises(QuotaExceededError):
            await register_sku(test_db, seeded_db["tenant_id"], "Anything")

    async def test_blank_name(self, test_db, seeded_db):
        with pytest.raises(ValidationError):
            await register_sku(test_db, seeded_db["tenant_id"], "   ")

    async def test_filter_by_training_status(self, test_db, seeded_db):
        pending = await list_skus(test_db, seeded_db["tenant_id"], training_status="pending")
        assert [s.name for s in pending] == ["Salted Chips 150g"]


@pytest.mark.asyncio
class TestTrainingLifecycle:
    async def test_invalid_transition(self, test_db, seeded_db):
        with pytest.raises(ValidationError):
            await transition_training_status(test_db, seeded_db["skus"]["chips"], "completed")

    async def test_same_status_is_noop(self, test_db, seeded_db):
        sku = await transition_training_status(test_db, seeded_db["skus"]["chips"], "pending")
        assert sku.training_status == "pending"

    async def test_completion_counts_job_and_notifies(self, test_db, seeded_db):
        chips = seeded_db["skus"]["chips"]
        dispatcher = NotificationDispatcher(test_db)

        await transition_training_status(test_db, chips, "training")
        await transition_training_status(test_db, chips, "completed", dispatcher=dispatcher, user_id=USER_ID)

        assert chips.training_status == "completed"
        counters = (
            await test_db.execute(select(UsageCounter).where(UsageCounter.period_type == "monthly"))
        ).scalars().all()
        assert [c.training_jobs for c in counters] == [1]
        assert counters[0].images_processed == 0

        notes = (await test_db.execute(select(Notification))).scalars().all()
        assert [n.type for n in notes] == ["training_complete"]
        assert notes[0].notification_metadata["sku_id"] == str(chips.sku_id)


@pytest.mark.asyncio
class TestCategories:
    async def test_duplicate_category_rejected(self, test_db, seeded_db):
        with pytest.raises(ValidationError):
            await create_category(test_db, seeded_db["tenant_id"], "Beverages")

    async def test_create_category(self, test_db, seeded_db):
        category = await create_category(test_db, seeded_db["tenant_id"], "Dairy", "Milk and yogurt")
        assert category.category_id is not None

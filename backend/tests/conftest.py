"""
Test Configuration — Fixtures for async DB, test client, fake collaborators and seed data.

Uses per-test transactions with SAVEPOINT/rollback so each test gets a
clean database state even though application code commits.
"""

import uuid

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from api.deps import get_current_user, get_db, get_detection_provider, get_push_channel, get_tenant_db
from api.main import app
from db.session import Base
from detection.aggregator import BoundingBox, RawDetection
from detection.provider import DetectionProvider
from notifications.channel import InMemoryPushChannel

# In-memory SQLite for tests (no RLS, no set_config).
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TENANT_ID = "00000000-0000-0000-0000-000000000001"
USER_ID = "auth0|test-user-id"


class FakeProvider(DetectionProvider):
    """Detection provider returning canned detections and recording calls."""

    name = "fake"

    def __init__(self, detections=None, error: Exception | None = None):
        self.detections = list(detections or [])
        self.error = error
        self.calls: list[str] = []

    async def detect(self, image_reference: str) -> list[RawDetection]:
        self.calls.append(image_reference)
        if self.error is not None:
            raise self.error
        return list(self.detections)


def make_detection(label: str, confidence: float = 0.97, width: float = 10.0, height: float = 10.0, x: float = 0.0):
    return RawDetection(label=label, confidence=confidence, bounding_box=BoundingBox(x=x, y=0.0, width=width, height=height))


@pytest.fixture
async def test_engine():
    """Create a test database engine and build all tables."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    """Create a test session wrapped in a transaction that rolls back after each test."""
    async with test_engine.connect() as conn:
        trans = await conn.begin()
        session = AsyncSession(bind=conn, expire_on_commit=False)

        # Use SAVEPOINT so nested commits inside app code don't end our transaction
        @event.listens_for(session.sync_session, "after_transaction_end")
        def restart_savepoint(db_session, transaction):
            if transaction.nested and not transaction._parent.nested:
                session.sync_session.begin_nested()

        await conn.begin_nested()  # SAVEPOINT

        yield session

        await session.close()
        await trans.rollback()


@pytest.fixture
def mock_user():
    """Mock authenticated user."""
    return {
        "sub": USER_ID,
        "email": "test@shelflens.io",
        "tenant_id": TENANT_ID,
    }


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def push_channel():
    return InMemoryPushChannel()


@pytest.fixture
async def client(test_db, mock_user, fake_provider, push_channel):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        yield test_db

    def override_get_current_user():
        return mock_user

    async def override_get_tenant_db():
        """Skip set_config (SQLite doesn't support it), return session directly."""
        return test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    app.dependency_overrides[get_tenant_db] = override_get_tenant_db
    app.dependency_overrides[get_detection_provider] = lambda: fake_provider
    app.dependency_overrides[get_push_channel] = lambda: push_channel

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
async def seeded_db(test_db):
    """Seed the test DB with a tenant, a store and a small catalog."""
    from db.models import Category, Sku, Store, Tenant

    tenant_id = uuid.UUID(TENANT_ID)

    tenant = Tenant(
        tenant_id=tenant_id,
        name="Test Grocers",
        max_skus=5,
        max_images_per_month=1000,
        max_images_per_week=250,
        max_images_per_year=12000,
        confidence_threshold=0.95,
    )
    test_db.add(tenant)
    await test_db.flush()

    store = Store(tenant_id=tenant_id, name="Downtown Store", city="Leeds", country="UK")
    beverages = Category(tenant_id=tenant_id, name="Beverages")
    snacks = Category(tenant_id=tenant_id, name="Snacks")
    test_db.add_all([store, beverages, snacks])
    await test_db.flush()

    cola = Sku(tenant_id=tenant_id, category_id=beverages.category_id, name="Cola 330ml", training_status="completed")
    juice = Sku(tenant_id=tenant_id, category_id=beverages.category_id, name="Orange Juice 1L", training_status="completed")
    chips = Sku(tenant_id=tenant_id, category_id=snacks.category_id, name="Salted Chips 150g", training_status="pending")
    test_db.add_all([cola, juice, chips])
    await test_db.flush()

    await test_db.commit()

    return {
        "tenant_id": tenant_id,
        "tenant": tenant,
        "store": store,
        "categories": {"Beverages": beverages, "Snacks": snacks},
        "skus": {"cola": cola, "juice": juice, "chips": chips},
    }

"""
Seed Dev Tenant — creates a tenant, a store and a small SKU catalog for local development.

Run: python scripts/seed_dev_tenant.py
"""

import asyncio
import uuid

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from core.config import get_settings
from db.models import Category, Sku, Store, Tenant
from db.session import Base

settings = get_settings()

DEV_TENANT_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")

CATALOG = {
    "Beverages": ["Cola 330ml", "Orange Juice 1L", "Sparkling Water 500ml"],
    "Snacks": ["Salted Chips 150g", "Chocolate Bar 100g"],
}


async def seed_data():
    """Create demo data for development."""
    engine = create_async_engine(settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with SessionLocal() as db:
        tenant = Tenant(
            tenant_id=DEV_TENANT_ID,
            name="Northside Markets",
            max_skus=50,
            max_images_per_month=1000,
            max_images_per_week=250,
            max_images_per_year=12000,
        )
        db.add(tenant)
        db.add(Store(tenant_id=DEV_TENANT_ID, name="Northside Central", city="Leeds", country="UK"))
        await db.flush()

        sku_count = 0
        for category_name, sku_names in CATALOG.items():
            category = Category(tenant_id=DEV_TENANT_ID, name=category_name)
            db.add(category)
            await db.flush()
            for name in sku_names:
                db.add(
                    Sku(
                        tenant_id=DEV_TENANT_ID,
                        category_id=category.category_id,
                        name=name,
                        training_status="completed",
                    )
                )
                sku_count += 1

        await db.commit()
        print(f"Seeded tenant {DEV_TENANT_ID} with {sku_count} SKUs")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed_data())

"""
Quota read path — load tenant limits, SKU count and ledger snapshot fresh,
then hand them to the pure evaluator.
"""

import uuid
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.errors import StoreError, ValidationError
from db.models import Sku, Tenant
from usage.ledger import UsageLedger
from usage.quota import QuotaInfo, TenantLimits, evaluate


async def get_tenant(db: AsyncSession, tenant_id) -> Tenant:
    try:
        tenant_uuid = tenant_id if isinstance(tenant_id, uuid.UUID) else uuid.UUID(str(tenant_id))
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid tenant id: {tenant_id!r}", user_message="A valid tenant id is required.") from exc

    try:
        tenant = await db.get(Tenant, tenant_uuid, populate_existing=True)
    except SQLAlchemyError as exc:
        raise StoreError(f"Tenant lookup failed: {exc}") from exc
    if tenant is None:
        raise ValidationError(f"Unknown tenant: {tenant_uuid}", user_message="Tenant not found.")
    return tenant


async def count_skus(db: AsyncSession, tenant_id: uuid.UUID) -> int:
    """SKUs count toward the quota regardless of training status."""
    result = await db.execute(select(func.count()).select_from(Sku).where(Sku.tenant_id == tenant_id))
    return int(result.scalar() or 0)


async def check_tenant_quota(db: AsyncSession, tenant_id, now: datetime | None = None) -> QuotaInfo:
    """Evaluate the tenant's current quota. Limits are never cached between calls."""
    settings = get_settings()
    tenant = await get_tenant(db, tenant_id)
    try:
        sku_count = await count_skus(db, tenant.tenant_id)
    except SQLAlchemyError as exc:
        raise StoreError(f"SKU count failed: {exc}") from exc
    snapshot = await UsageLedger(db).snapshot(tenant.tenant_id, now=now)
    return evaluate(
        TenantLimits.from_tenant(tenant),
        snapshot,
        sku_count,
        near_limit_ratio=settings.quota_near_limit_ratio,
    )

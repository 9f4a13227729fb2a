"""
Quota Router — quota read RPC, usage increment RPC and usage history.
"""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_tenant_db, get_tenant_id
from core.errors import ValidationError
from db.models import PERIOD_TYPES
from usage.ledger import UsageLedger
from usage.service import check_tenant_quota

router = APIRouter(prefix="/api/v1/quota", tags=["quota"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class QuotaResponse(BaseModel):
    canProcess: bool
    canAddSku: bool
    monthlyUsage: int
    monthlyLimit: int
    weeklyUsage: int
    weeklyLimit: int
    yearlyUsage: int
    yearlyLimit: int
    skuCount: int
    skuLimit: int
    status: str
    monthlyPercentage: float
    skuPercentage: float


class UsageIncrement(BaseModel):
    period_type: str
    count: int = Field(1, ge=0)
    idempotency_key: str | None = None


class UsageIncrementResponse(BaseModel):
    period_type: str
    images_processed: int


class UsageRecord(BaseModel):
    period_type: str
    period_start: date
    images_processed: int
    training_jobs: int

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/", response_model=QuotaResponse)
async def get_quota(
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    """check_tenant_quota for the caller's tenant."""
    quota = await check_tenant_quota(db, tenant_id)
    return QuotaResponse(
        **quota.to_rpc(),
        monthlyPercentage=round(quota.monthly_percentage, 2),
        skuPercentage=round(quota.sku_percentage, 2),
    )


@router.post("/usage", response_model=list[UsageIncrementResponse])
async def increment_usage_metric(
    body: UsageIncrement,
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    """
    Increment usage. ``period_type`` is one period or ``all``; with an
    idempotency key the increment applies to the named periods at most once.
    """
    if body.period_type == "all":
        period_types = PERIOD_TYPES
    elif body.period_type in PERIOD_TYPES:
        period_types = (body.period_type,)
    else:
        raise ValidationError(
            f"Unknown period type: {body.period_type!r}",
            user_message=f"Period type must be one of: all, {', '.join(PERIOD_TYPES)}.",
        )

    ledger = UsageLedger(db)
    if body.idempotency_key or body.period_type == "all":
        await ledger.record_images(
            tenant_id, body.count, idempotency_key=body.idempotency_key, period_types=period_types
        )
        snapshot = await ledger.snapshot(tenant_id)
        return [
            UsageIncrementResponse(period_type=pt, images_processed=getattr(snapshot, pt))
            for pt in period_types
        ]

    value = await ledger.increment(tenant_id, body.period_type, body.count)
    return [UsageIncrementResponse(period_type=body.period_type, images_processed=value)]


@router.get("/usage/{period_type}", response_model=list[UsageRecord])
async def get_usage_history(
    period_type: str,
    limit: int = Query(12, ge=1, le=100),
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    """Current and past counters for one period type, newest first."""
    return await UsageLedger(db).history(tenant_id, period_type, limit=limit)

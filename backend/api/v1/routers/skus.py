"""
SKUs Router — catalog entries, categories and training status.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user, get_push_channel, get_tenant_db, get_tenant_id
from catalog.skus import create_category, list_skus, register_sku, transition_training_status
from db.models import Category, Sku
from notifications.channel import PushChannel
from notifications.dispatcher import NotificationDispatcher

router = APIRouter(prefix="/api/v1/skus", tags=["skus"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class SkuCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    category_id: UUID | None = None
    barcode: str | None = None
    description: str | None = None


class SkuResponse(BaseModel):
    sku_id: UUID
    tenant_id: UUID
    category_id: UUID | None
    name: str
    barcode: str | None
    description: str | None
    is_active: bool
    training_status: str
    created_at: datetime

    model_config = {"from_attributes": True}


class TrainingStatusUpdate(BaseModel):
    training_status: str


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = None


class CategoryResponse(BaseModel):
    category_id: UUID
    name: str
    description: str | None

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/categories", response_model=list[CategoryResponse])
async def list_categories(
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    result = await db.execute(select(Category).where(Category.tenant_id == tenant_id).order_by(Category.name))
    return result.scalars().all()


@router.post("/categories", response_model=CategoryResponse, status_code=201)
async def add_category(
    body: CategoryCreate,
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    return await create_category(db, tenant_id, body.name, body.description)


@router.get("/", response_model=list[SkuResponse])
async def get_skus(
    training_status: str | None = None,
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    """List the tenant's SKU catalog."""
    return await list_skus(db, tenant_id, training_status)


@router.post("/", response_model=SkuResponse, status_code=201)
async def create_sku(
    body: SkuCreate,
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    """Register a SKU. Rejected with QUOTA_EXCEEDED once the SKU limit is reached."""
    return await register_sku(
        db,
        tenant_id,
        body.name,
        category_id=body.category_id,
        barcode=body.barcode,
        description=body.description,
    )


async def _get_tenant_sku(db: AsyncSession, tenant_id: UUID, sku_id: UUID) -> Sku:
    result = await db.execute(select(Sku).where(Sku.sku_id == sku_id, Sku.tenant_id == tenant_id))
    sku = result.scalar_one_or_none()
    if not sku:
        raise HTTPException(status_code=404, detail="SKU not found")
    return sku


@router.patch("/{sku_id}/training-status", response_model=SkuResponse)
async def update_training_status(
    sku_id: UUID,
    body: TrainingStatusUpdate,
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
    user: dict = Depends(get_current_user),
    channel: PushChannel = Depends(get_push_channel),
):
    sku = await _get_tenant_sku(db, tenant_id, sku_id)
    return await transition_training_status(
        db,
        sku,
        body.training_status,
        dispatcher=NotificationDispatcher(db, channel),
        user_id=user.get("sub"),
    )


@router.delete("/{sku_id}", status_code=204)
async def delete_sku(
    sku_id: UUID,
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    sku = await _get_tenant_sku(db, tenant_id, sku_id)
    await db.delete(sku)
    await db.commit()

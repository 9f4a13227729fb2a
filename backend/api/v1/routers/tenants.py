"""
Tenants Router — tenant profile, detection settings and admin limit updates.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user, get_tenant_db, get_tenant_id
from db.models import Tenant
from detection.confidence import ConfidenceSetting
from usage.service import get_tenant

router = APIRouter(prefix="/api/v1/tenants", tags=["tenants"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class TenantResponse(BaseModel):
    tenant_id: UUID
    name: str
    is_active: bool
    max_skus: int
    max_images_per_month: int
    max_images_per_week: int
    max_images_per_year: int
    confidence_threshold: float
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TenantSettingsUpdate(BaseModel):
    confidence_threshold: float


class TenantAdminUpdate(BaseModel):
    name: str | None = None
    is_active: bool | None = None
    max_skus: int | None = Field(None, ge=0)
    max_images_per_month: int | None = Field(None, ge=0)
    max_images_per_week: int | None = Field(None, ge=0)
    max_images_per_year: int | None = Field(None, ge=0)


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if user.get("role") != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/me", response_model=TenantResponse)
async def get_my_tenant(
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    return await get_tenant(db, tenant_id)


@router.patch("/me/settings", response_model=TenantResponse)
async def update_my_settings(
    body: TenantSettingsUpdate,
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    """Change the tenant's default detection confidence threshold (0.5–1.0)."""
    tenant = await get_tenant(db, tenant_id)
    setting = ConfidenceSetting(tenant.confidence_threshold)
    unsubscribe = setting.subscribe(lambda value: setattr(tenant, "confidence_threshold", value))
    try:
        setting.set(body.confidence_threshold)
    finally:
        unsubscribe()
    await db.commit()
    return tenant


@router.patch("/{tenant_id}", response_model=TenantResponse)
async def admin_update_tenant(
    tenant_id: UUID,
    body: TenantAdminUpdate,
    db: AsyncSession = Depends(get_tenant_db),
    admin: dict = Depends(require_admin),
):
    """Admin-only: change limits or (de)activate a tenant."""
    tenant = await db.get(Tenant, tenant_id)
    if not tenant:
        raise HTTPException(status_code=404, detail="Tenant not found")

    for field, value in body.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(tenant, field, value)

    await db.commit()
    await db.refresh(tenant)
    return tenant

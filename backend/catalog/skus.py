"""
SKU Catalog — registration under the SKU quota and the training lifecycle.

Training status machine (nothing ever returns to ``pending``):

    pending ──▶ training ──▶ completed
                  ▲   │          │
                  │   ▼          │
                  └─ failed      │
                  └──────────────┘  (retrain)

Every SKU counts toward the tenant's SKU quota whatever its status.
"""

import uuid

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import QuotaExceededError, StoreError, ValidationError
from db.models import Category, Sku
from notifications.dispatcher import NotificationDispatcher
from usage.ledger import UsageLedger
from usage.service import check_tenant_quota

logger = structlog.get_logger()

TRAINING_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"training"}),
    "training": frozenset({"completed", "failed"}),
    "failed": frozenset({"training"}),
    "completed": frozenset({"training"}),
}


def can_transition(current: str, target: str) -> bool:
    return target in TRAINING_TRANSITIONS.get(current, frozenset())


async def register_sku(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    name: str,
    category_id: uuid.UUID | None = None,
    barcode: str | None = None,
    description: str | None = None,
) -> Sku:
    """Create a SKU if the tenant still has SKU headroom."""
    if not name or not name.strip():
        raise ValidationError("SKU name missing", user_message="A SKU name is required.")

    quota = await check_tenant_quota(db, tenant_id)
    if not quota.can_add_sku:
        raise QuotaExceededError(
            f"Tenant {tenant_id} cannot add SKUs ({quota.sku_count}/{quota.sku_limit}, status={quota.status})",
            user_message=f"SKU limit reached ({quota.sku_count}/{quota.sku_limit}).",
            details={"quota": quota.to_rpc()},
        )

    if category_id is not None:
        category = await db.get(Category, category_id)
        if category is None or category.tenant_id != tenant_id:
            raise ValidationError(f"Unknown category {category_id}", user_message="Category not found.")

    sku = Sku(
        tenant_id=tenant_id,
        name=name.strip(),
        category_id=category_id,
        barcode=barcode,
        description=description,
        training_status="pending",
    )
    try:
        db.add(sku)
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise StoreError(f"SKU insert failed: {exc}") from exc

    logger.info("sku.registered", tenant_id=str(tenant_id), sku_id=str(sku.sku_id))
    return sku


async def transition_training_status(
    db: AsyncSession,
    sku: Sku,
    target: str,
    dispatcher: NotificationDispatcher | None = None,
    user_id: str | None = None,
) -> Sku:
    """Move a SKU through the training lifecycle."""
    current = sku.training_status
    if current == target:
        return sku
    if not can_transition(current, target):
        raise ValidationError(
            f"Invalid training transition {current} -> {target}",
            user_message=f"Cannot move a SKU from '{current}' to '{target}'.",
            details={"current": current, "target": target},
        )

    sku.training_status = target
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise StoreError(f"Training status update failed: {exc}") from exc

    logger.info("sku.training_status", sku_id=str(sku.sku_id), previous=current, status=target)

    if target == "completed":
        await UsageLedger(db).increment_training_jobs(sku.tenant_id)
        if dispatcher is not None and user_id:
            await dispatcher.emit(
                user_id,
                sku.tenant_id,
                "training_complete",
                "Training complete",
                f"{sku.name} is ready for shelf detection.",
                {"sku_id": str(sku.sku_id)},
            )
    return sku


async def create_category(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    name: str,
    description: str | None = None,
) -> Category:
    if not name or not name.strip():
        raise ValidationError("Category name missing", user_message="A category name is required.")
    category = Category(tenant_id=tenant_id, name=name.strip(), description=description)
    try:
        db.add(category)
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ValidationError(
            f"Duplicate category {name!r}",
            user_message=f"A category named '{name.strip()}' already exists.",
        ) from exc
    except SQLAlchemyError as exc:
        await db.rollback()
        raise StoreError(f"Category insert failed: {exc}") from exc
    return category


async def list_skus(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    training_status: str | None = None,
) -> list[Sku]:
    query = select(Sku).where(Sku.tenant_id == tenant_id)
    if training_status:
        query = query.where(Sku.training_status == training_status)
    result = await db.execute(query.order_by(Sku.name))
    return list(result.scalars().all())

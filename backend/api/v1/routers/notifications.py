"""
Notifications Router — per-user notification feed.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user, get_tenant_db
from notifications.dispatcher import NotificationDispatcher, unread_count

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class NotificationResponse(BaseModel):
    notification_id: UUID
    user_id: str
    tenant_id: UUID | None
    type: str
    title: str
    message: str
    is_read: bool
    notification_metadata: dict | None
    created_at: datetime

    model_config = {"from_attributes": True}


class NotificationFeed(BaseModel):
    notifications: list[NotificationResponse]
    unread_count: int


class MarkAllReadResponse(BaseModel):
    updated: int


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/", response_model=NotificationFeed)
async def list_notifications(
    limit: int = Query(50, ge=1, le=100),
    unread_only: bool = False,
    db: AsyncSession = Depends(get_tenant_db),
    user: dict = Depends(get_current_user),
):
    """Newest-first feed; unread_count is counted over the returned rows."""
    notifications = await NotificationDispatcher(db).list(user["sub"], limit=limit, unread_only=unread_only)
    return NotificationFeed(notifications=notifications, unread_count=unread_count(notifications))


@router.patch("/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: UUID,
    db: AsyncSession = Depends(get_tenant_db),
    user: dict = Depends(get_current_user),
):
    notification = await NotificationDispatcher(db).mark_read(notification_id, user_id=user["sub"])
    if notification is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    return notification


@router.post("/read-all", response_model=MarkAllReadResponse)
async def mark_all_notifications_read(
    db: AsyncSession = Depends(get_tenant_db),
    user: dict = Depends(get_current_user),
):
    updated = await NotificationDispatcher(db).mark_all_read(user["sub"])
    return MarkAllReadResponse(updated=updated)


@router.delete("/{notification_id}", status_code=204)
async def delete_notification(
    notification_id: UUID,
    db: AsyncSession = Depends(get_tenant_db),
    user: dict = Depends(get_current_user),
):
    deleted = await NotificationDispatcher(db).delete(notification_id, user_id=user["sub"])
    if not deleted:
        raise HTTPException(status_code=404, detail="Notification not found")

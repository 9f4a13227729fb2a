"""
Notification Dispatcher — durable notification feed + live push fan-out.

Notification Types:
  - processing_complete: a detection request finished
  - training_complete:   a SKU finished model training
  - quota_warning:       tenant is near or over its image quota
  - system_alert:        operational messages

Every emit writes exactly one row and commits it before the live push, so
``list`` reflects full history whether or not the push reached anyone.
Read-state transitions are idempotent; the unread count is always derived
from the listed rows rather than kept as a separate counter.
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import StoreError, ValidationError
from db.models import NOTIFICATION_TYPES, Notification, naive_utcnow
from notifications.channel import PushChannel

logger = structlog.get_logger()

DEFAULT_FEED_LIMIT = 50


def serialize_notification(notification: Notification) -> dict[str, Any]:
    return {
        "notification_id": str(notification.notification_id),
        "user_id": notification.user_id,
        "tenant_id": str(notification.tenant_id) if notification.tenant_id else None,
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "is_read": notification.is_read,
        "metadata": notification.notification_metadata or {},
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }


def unread_count(notifications: list[Notification]) -> int:
    return sum(1 for n in notifications if not n.is_read)


class NotificationDispatcher:
    def __init__(self, db: AsyncSession, channel: PushChannel | None = None):
        self.db = db
        self.channel = channel

    async def emit(
        self,
        user_id: str,
        tenant_id: uuid.UUID | str | None,
        type: str,
        title: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> Notification:
        """Persist one notification, then push it to live listeners."""
        if type not in NOTIFICATION_TYPES:
            raise ValidationError(f"Unknown notification type: {type!r}", user_message="Unknown notification type.")
        if not user_id:
            raise ValidationError("Notification without target user", user_message="A target user is required.")

        notification = Notification(
            user_id=str(user_id),
            tenant_id=uuid.UUID(str(tenant_id)) if tenant_id else None,
            type=type,
            title=title,
            message=message,
            notification_metadata=dict(metadata or {}),
            created_at=naive_utcnow(),
        )
        try:
            self.db.add(notification)
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise StoreError(f"Notification insert failed: {exc}") from exc

        await self._push(notification)
        return notification

    async def emit_once(
        self,
        user_id: str,
        tenant_id: uuid.UUID | str | None,
        type: str,
        title: str,
        message: str,
        dedupe_key: str,
        metadata: dict[str, Any] | None = None,
    ) -> Notification | None:
        """
        Emit unless the user already has an unread notification of the same
        type carrying ``dedupe_key``. Returns None when deduplicated.
        """
        existing = await self.db.execute(
            select(Notification).where(
                Notification.user_id == str(user_id),
                Notification.type == type,
                Notification.is_read.is_(False),
            )
        )
        for notification in existing.scalars().all():
            if (notification.notification_metadata or {}).get("dedupe_key") == dedupe_key:
                logger.debug("notification.deduplicated", user_id=user_id, type=type, dedupe_key=dedupe_key)
                return None

        payload = dict(metadata or {})
        payload["dedupe_key"] = dedupe_key
        return await self.emit(user_id, tenant_id, type, title, message, payload)

    async def _push(self, notification: Notification) -> None:
        if self.channel is None:
            return
        try:
            reached = await self.channel.publish(notification.user_id, serialize_notification(notification))
            logger.debug("notification.pushed", notification_id=str(notification.notification_id), listeners=reached)
        except Exception as exc:
            # Row is durable; the feed still shows it
            logger.warning(
                "notification.push_failed",
                notification_id=str(notification.notification_id),
                error=str(exc),
            )

    async def list(
        self,
        user_id: str,
        limit: int | None = DEFAULT_FEED_LIMIT,
        unread_only: bool = False,
    ) -> list[Notification]:
        """User's notifications, newest first."""
        query = select(Notification).where(Notification.user_id == str(user_id))
        if unread_only:
            query = query.where(Notification.is_read.is_(False))
        query = query.order_by(Notification.created_at.desc())
        if limit is not None:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get(self, notification_id, user_id: str | None = None) -> Notification | None:
        query = select(Notification).where(Notification.notification_id == notification_id)
        if user_id is not None:
            query = query.where(Notification.user_id == str(user_id))
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def mark_read(self, notification_id, user_id: str | None = None) -> Notification | None:
        """Mark one notification read. Already-read notifications are left as they are."""
        notification = await self.get(notification_id, user_id)
        if notification is None:
            return None
        if not notification.is_read:
            notification.is_read = True
            await self.db.commit()
        return notification

    async def mark_all_read(self, user_id: str) -> int:
        """Mark every unread notification read. Returns rows changed (0 on repeat)."""
        unread = await self.list(user_id, limit=None, unread_only=True)
        for notification in unread:
            notification.is_read = True
        if unread:
            await self.db.commit()
        return len(unread)

    async def delete(self, notification_id, user_id: str | None = None) -> bool:
        notification = await self.get(notification_id, user_id)
        if notification is None:
            return False
        await self.db.delete(notification)
        await self.db.commit()
        return True

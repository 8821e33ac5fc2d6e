"""
Courtside — Match notifications.

Rows are written in the caller's transaction so a notification exists exactly
when the event that produced it commits.  Real-time fan-out is a separate,
best-effort step: ``dispatch`` publishes to ``{prefix}:{user_id}`` on Redis
and only logs when that fails.
"""

from __future__ import annotations

import json
import uuid
from typing import Any, Iterable

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.cache import get_redis
from app.config import get_settings
from app.database import utcnow
from app.exceptions import NotFound
from app.models.notification import MatchNotification

logger = structlog.get_logger("courtside.notification_service")

# Session.info key holding notifications created but not yet published.
_PENDING_KEY = "pending_notifications"


class NotificationService:
    """Create, list and mark-read in-app notifications."""

    # ── Public API ────────────────────────────────────────────────────────

    async def create_notification(
        self,
        db_session: AsyncSession,
        user_id: uuid.UUID,
        notification_type: str,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> MatchNotification:
        """Stage a notification row in the current transaction."""
        notification = MatchNotification(
            user_id=user_id,
            notification_type=notification_type,
            title=title,
            message=message,
            data=data,
            is_read=False,
        )
        db_session.add(notification)
        await db_session.flush()
        db_session.info.setdefault(_PENDING_KEY, []).append(notification)
        return notification

    async def list_notifications(
        self,
        user_id: uuid.UUID,
        db_session: AsyncSession,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[MatchNotification], int]:
        """Return ``(notifications, unread_count)``, newest first."""
        stmt = select(MatchNotification).where(MatchNotification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(MatchNotification.is_read.is_(False))
        stmt = (
            stmt.order_by(MatchNotification.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await db_session.execute(stmt)
        notifications = list(result.scalars().all())

        unread_stmt = select(func.count()).select_from(MatchNotification).where(
            MatchNotification.user_id == user_id,
            MatchNotification.is_read.is_(False),
        )
        unread_count = (await db_session.execute(unread_stmt)).scalar_one()
        return notifications, unread_count

    async def mark_as_read(
        self,
        user_id: uuid.UUID,
        notification_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> MatchNotification:
        """Mark one of the user's notifications as read (idempotent)."""
        stmt = select(MatchNotification).where(
            MatchNotification.id == notification_id,
            MatchNotification.user_id == user_id,
        )
        notification = (await db_session.execute(stmt)).scalar_one_or_none()
        if notification is None:
            raise NotFound(f"Notification {notification_id} not found")

        if not notification.is_read:
            notification.is_read = True
            notification.read_at = utcnow()
            await db_session.flush()
        return notification

    async def mark_all_as_read(
        self,
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> int:
        stmt = (
            update(MatchNotification)
            .where(
                MatchNotification.user_id == user_id,
                MatchNotification.is_read.is_(False),
            )
            .values(is_read=True, read_at=utcnow())
        )
        result = await db_session.execute(stmt)
        return result.rowcount or 0

    async def dispatch(self, notifications: Iterable[MatchNotification]) -> None:
        """Publish committed notifications to Redis; never raises."""
        redis = get_redis()
        if redis is None:
            return

        prefix = get_settings().NOTIFICATION_CHANNEL_PREFIX
        for notification in notifications:
            payload = json.dumps(
                {
                    "id": str(notification.id),
                    "type": notification.notification_type,
                    "title": notification.title,
                    "message": notification.message,
                    "data": notification.data,
                }
            )
            try:
                await redis.publish(f"{prefix}:{notification.user_id}", payload)
            except Exception as exc:
                logger.warning(
                    "notification_dispatch_failed",
                    notification_id=str(notification.id),
                    user_id=str(notification.user_id),
                    error=str(exc),
                )

    async def dispatch_pending(self, db_session: AsyncSession) -> None:
        """Publish everything created through this session; call after commit."""
        pending = db_session.info.pop(_PENDING_KEY, [])
        if pending:
            await self.dispatch(pending)

"""
Courtside — Privacy gate and per-user visibility settings.

Every read path that exposes one player's data to another goes through
``privacy_gate`` before touching the data, so a denial says only that the
resource is private and never whether anything exists behind it.
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import utcnow
from app.exceptions import NotFound, PrivacyDenied, ValidationError
from app.models.privacy import PRIVACY_FLAGS, UserPrivacySettings
from app.models.user import User

logger = structlog.get_logger("courtside.privacy")


def privacy_gate(allowed: bool, is_owner: bool, resource: str) -> None:
    """Raise ``PrivacyDenied(resource)`` unless the owner is asking or the
    owner's flag allows it."""
    if is_owner or allowed:
        return
    logger.info("privacy_denied", resource=resource)
    raise PrivacyDenied(resource)


class PrivacyService:
    """Read and update ``UserPrivacySettings`` (defaults created lazily)."""

    async def get_settings(
        self,
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> UserPrivacySettings:
        stmt = select(UserPrivacySettings).where(UserPrivacySettings.user_id == user_id)
        settings = (await db_session.execute(stmt)).scalar_one_or_none()
        if settings is not None:
            return settings

        if (await db_session.execute(select(User.id).where(User.id == user_id))).first() is None:
            raise NotFound(f"User {user_id} not found")

        settings = UserPrivacySettings(
            user_id=user_id,
            show_reputation_score=True,
            show_match_history=True,
            show_win_loss_record=True,
            show_skill_progression=True,
            show_behavior_reviews=False,
            show_detailed_stats=True,
            allow_statistics_sharing=False,
        )
        try:
            async with db_session.begin_nested():
                db_session.add(settings)
            return settings
        except IntegrityError:
            return (await db_session.execute(stmt)).scalar_one()

    async def update_settings(
        self,
        user_id: uuid.UUID,
        changes: dict[str, Any],
        db_session: AsyncSession,
    ) -> UserPrivacySettings:
        """Apply a partial update; ``None`` values are left untouched."""
        unknown = set(changes) - set(PRIVACY_FLAGS)
        if unknown:
            raise ValidationError(f"Unknown privacy settings: {', '.join(sorted(unknown))}")

        settings = await self.get_settings(user_id, db_session)
        applied = {}
        for flag, value in changes.items():
            if value is None:
                continue
            setattr(settings, flag, bool(value))
            applied[flag] = bool(value)
        settings.updated_at = utcnow()
        await db_session.flush()

        logger.info("privacy_settings_updated", user_id=str(user_id), **applied)
        return settings

"""
Courtside — Per-user visibility settings.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Uuid, false, true
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, utcnow

# Flags a user may toggle through the privacy endpoint.
PRIVACY_FLAGS = (
    "show_reputation_score",
    "show_match_history",
    "show_win_loss_record",
    "show_skill_progression",
    "show_behavior_reviews",
    "show_detailed_stats",
    "allow_statistics_sharing",
)


class UserPrivacySettings(Base):
    __tablename__ = "user_privacy_settings"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    show_reputation_score: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=true(), nullable=False
    )
    show_match_history: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=true(), nullable=False
    )
    show_win_loss_record: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=true(), nullable=False
    )
    show_skill_progression: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=true(), nullable=False
    )
    show_behavior_reviews: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false(), nullable=False
    )
    show_detailed_stats: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=true(), nullable=False
    )
    allow_statistics_sharing: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    def as_dict(self) -> dict[str, bool]:
        return {flag: getattr(self, flag) for flag in PRIVACY_FLAGS}

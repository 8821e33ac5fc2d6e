"""
Courtside — Reputation models.

``ReputationScore`` holds the rolling aggregate; the ``*Record`` tables keep
the raw observations each update was derived from.  ``SkillLevelRecord`` is
append-only.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, JSONType, utcnow

SKILL_CHANGE_REASONS = ("manual", "auto_adjustment", "match_result")


class ReputationScore(Base):
    __tablename__ = "reputation_scores"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    attendance_rate: Mapped[float] = mapped_column(
        Float, default=100.0, nullable=False, comment="0-100"
    )
    punctuality_score: Mapped[float] = mapped_column(
        Float, default=100.0, nullable=False, comment="0-100"
    )
    skill_accuracy: Mapped[float] = mapped_column(
        Float, default=100.0, nullable=False, comment="0-100"
    )
    behavior_rating: Mapped[float] = mapped_column(
        Float, default=5.0, nullable=False, comment="1-5"
    )
    total_matches: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed_matches: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cancelled_matches: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    overall_score: Mapped[float] = mapped_column(
        Float, default=100.0, nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=utcnow, nullable=True
    )

    def __repr__(self) -> str:
        return f"<ReputationScore user={self.user_id} overall={self.overall_score:.1f}>"


class PunctualityRecord(Base):
    __tablename__ = "punctuality_records"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    match_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("matches.id", ondelete="SET NULL"), nullable=True
    )
    is_on_time: Mapped[bool] = mapped_column(nullable=False)
    delay_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


class SkillAccuracyRecord(Base):
    __tablename__ = "skill_accuracy_records"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    match_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("matches.id", ondelete="SET NULL"), nullable=True
    )
    reported_level: Mapped[float] = mapped_column(Float, nullable=False)
    observed_level: Mapped[float] = mapped_column(Float, nullable=False)
    accuracy: Mapped[float] = mapped_column(Float, nullable=False, comment="0-100")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


class BehaviorReview(Base):
    __tablename__ = "behavior_reviews"
    __table_args__ = (
        UniqueConstraint(
            "reviewer_id", "user_id", "match_id", name="uq_behavior_review_per_match"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    reviewer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    match_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("matches.id", ondelete="SET NULL"), nullable=True
    )
    rating: Mapped[int] = mapped_column(Integer, nullable=False, comment="1-5")
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


class SkillLevelRecord(Base):
    __tablename__ = "skill_level_records"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    old_level: Mapped[float | None] = mapped_column(Float, nullable=True)
    new_level: Mapped[float] = mapped_column(Float, nullable=False)
    reason: Mapped[str] = mapped_column(
        String, nullable=False, comment="manual / auto_adjustment / match_result"
    )
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    match_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("matches.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<SkillLevelRecord user={self.user_id} "
            f"{self.old_level} -> {self.new_level} ({self.reason})>"
        )

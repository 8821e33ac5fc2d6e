"""
Courtside — User and PlayerProfile models.

``PlayerProfile`` is owned by the profile subsystem; the matching engine only
reads it (the reputation service is the one exception, nudging ``ntrp_level``
through an audited ``SkillLevelRecord``).
"""

import uuid
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Uuid,
    func,
    false,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, JSONType, utcnow


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    email: Mapped[str] = mapped_column(
        String, unique=True, index=True, nullable=False
    )
    display_name: Mapped[str] = mapped_column(String, nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=true(), nullable=False
    )
    last_login_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<User {self.email!r} id={self.id}>"


class PlayerProfile(Base):
    __tablename__ = "player_profiles"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    ntrp_level: Mapped[float | None] = mapped_column(
        Float, nullable=True, comment="1.0 - 7.0"
    )
    playing_style: Mapped[str | None] = mapped_column(
        String, nullable=True, comment="aggressive / defensive / all-court"
    )
    playing_frequency: Mapped[str | None] = mapped_column(
        String, nullable=True, comment="casual / regular / competitive"
    )
    play_types: Mapped[list | None] = mapped_column(
        JSONType, nullable=True, comment="e.g. singles, doubles, rally"
    )
    preferred_times: Mapped[list | None] = mapped_column(
        JSONType, nullable=True, comment="e.g. morning, weekend_evening"
    )
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    location_privacy: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false(), nullable=False
    )
    gender: Mapped[str | None] = mapped_column(String, nullable=True)
    birth_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    max_travel_distance_km: Mapped[int | None] = mapped_column(Integer, nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=utcnow, nullable=True
    )

    def __repr__(self) -> str:
        return f"<PlayerProfile user={self.user_id} ntrp={self.ntrp_level}>"

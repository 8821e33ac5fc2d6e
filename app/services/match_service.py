"""
Courtside — Match creation and lookup.

Matches come from two places: an organizer inviting players explicitly, and
the card engine when two players like each other.  Both go through
``create_match_with_chat`` so every match gets its participants and exactly
one chat room in the same transaction.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import NotFound, NotParticipant, ValidationError
from app.models.match import (
    MATCH_TYPES,
    ChatParticipant,
    ChatRoom,
    Match,
    MatchParticipant,
)
from app.models.user import User
from app.services.notification_service import NotificationService

logger = structlog.get_logger("courtside.match_service")


class MatchService:
    """Create matches with their chat rooms and read them back."""

    def __init__(self, notification_service: NotificationService | None = None) -> None:
        self.notification_service = notification_service or NotificationService()

    # ── Public API ────────────────────────────────────────────────────────

    async def create_match(
        self,
        organizer_id: uuid.UUID,
        participant_ids: Sequence[uuid.UUID],
        db_session: AsyncSession,
        match_type: str = "casual",
        court_id: uuid.UUID | None = None,
        scheduled_at: datetime | None = None,
        notes: str | None = None,
    ) -> dict[str, Any]:
        """Create a match on behalf of an organizer.

        The organizer joins as an accepted ``organizer``; invitees join as
        ``pending`` players and each receives a ``match_request``
        notification.

        Parameters
        ----------
        organizer_id:
            UUID of the player creating the match.
        participant_ids:
            Invited players (the organizer is ignored if listed).
        db_session:
            Active SQLAlchemy async session.
        match_type:
            ``casual``, ``practice`` or ``tournament``.

        Returns
        -------
        dict
            The match as returned by ``get_match``.
        """
        if match_type not in MATCH_TYPES:
            raise ValidationError(f"match_type must be one of {', '.join(MATCH_TYPES)}")

        invitees = [uid for uid in dict.fromkeys(participant_ids) if uid != organizer_id]
        if not invitees:
            raise ValidationError("A match needs at least one invited player")

        everyone = [organizer_id, *invitees]
        stmt = select(User.id).where(User.id.in_(everyone), User.is_active.is_(True))
        found = set((await db_session.execute(stmt)).scalars().all())
        missing = [str(uid) for uid in everyone if uid not in found]
        if missing:
            raise NotFound(f"Users not found: {', '.join(missing)}")

        match, chat_room = await self.create_match_with_chat(
            db_session,
            [(organizer_id, "organizer", "accepted")]
            + [(uid, "player", "pending") for uid in invitees],
            match_type=match_type,
            court_id=court_id,
            scheduled_at=scheduled_at,
            notes=notes,
        )

        for uid in invitees:
            await self.notification_service.create_notification(
                db_session,
                user_id=uid,
                notification_type="match_request",
                title="New match invitation",
                message="You have been invited to a match.",
                data={
                    "match_id": str(match.id),
                    "chat_room_id": str(chat_room.id),
                    "organizer_id": str(organizer_id),
                },
            )

        logger.info(
            "match_created",
            match_id=str(match.id),
            organizer_id=str(organizer_id),
            participants=len(everyone),
            match_type=match_type,
        )
        return await self.get_match(match.id, db_session)

    async def get_match(
        self,
        match_id: uuid.UUID,
        db_session: AsyncSession,
        requester_id: uuid.UUID | None = None,
    ) -> dict[str, Any]:
        """Return a match with participants and chat room.

        When ``requester_id`` is given, only participants may read it.
        """
        match = await db_session.get(Match, match_id)
        if match is None:
            raise NotFound(f"Match {match_id} not found")

        participants = await self.get_participants(match_id, db_session)
        if requester_id is not None and requester_id not in {p.user_id for p in participants}:
            raise NotParticipant(f"User {requester_id} is not a participant of match {match_id}")

        chat_stmt = select(ChatRoom.id).where(ChatRoom.match_id == match_id)
        chat_room_id = (await db_session.execute(chat_stmt)).scalar_one_or_none()

        return {
            "id": match.id,
            "match_type": match.match_type,
            "status": match.status,
            "court_id": match.court_id,
            "scheduled_at": match.scheduled_at,
            "completed_at": match.completed_at,
            "duration_minutes": match.duration_minutes,
            "participants": [
                {"user_id": p.user_id, "role": p.role, "status": p.status}
                for p in participants
            ],
            "chat_room_id": chat_room_id,
            "created_at": match.created_at,
        }

    async def get_participants(
        self,
        match_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> list[MatchParticipant]:
        stmt = (
            select(MatchParticipant)
            .where(MatchParticipant.match_id == match_id)
            .order_by(MatchParticipant.joined_at, MatchParticipant.user_id)
        )
        return list((await db_session.execute(stmt)).scalars().all())

    # ── Shared construction ───────────────────────────────────────────────

    async def create_match_with_chat(
        self,
        db_session: AsyncSession,
        participants: Sequence[tuple[uuid.UUID, str, str]],
        match_type: str = "casual",
        court_id: uuid.UUID | None = None,
        scheduled_at: datetime | None = None,
        notes: str | None = None,
    ) -> tuple[Match, ChatRoom]:
        """Insert the match, its ``(user_id, role, status)`` participants and
        its chat room.  Runs inside the caller's transaction."""
        match = Match(
            match_type=match_type,
            status="pending",
            court_id=court_id,
            scheduled_at=scheduled_at,
            notes=notes,
        )
        db_session.add(match)
        await db_session.flush()

        for user_id, role, status in participants:
            db_session.add(
                MatchParticipant(match_id=match.id, user_id=user_id, role=role, status=status)
            )

        chat_room = ChatRoom(match_id=match.id, room_type="match")
        db_session.add(chat_room)
        await db_session.flush()

        for user_id, _role, _status in participants:
            db_session.add(ChatParticipant(chat_room_id=chat_room.id, user_id=user_id))
        await db_session.flush()

        return match, chat_room

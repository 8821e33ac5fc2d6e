"""
Courtside — Card Interaction & Mutual-Match Engine

Swipe-style discovery.  Per unordered pair of players the state moves

    no interaction ──like──▶ one-sided like ──reciprocal like──▶ matched

and ``matched`` is terminal.  Dislike / skip leave the pair unmatched; whether
the card is shown again is decided by the discovery feed, not here.

Race safety
-----------
Two players liking each other at the same instant must produce one match.
Every action first locks the pair's ``CardPair`` row (key = the two user IDs
sorted, so both directions contend on the same row).  Whoever holds the lock
sees the other side's like and creates the match; the other caller waits,
then either finds the match already stamped on the pair row (and returns its
ID) or, if it ran first, records its like and returns "awaiting response".
"""

from __future__ import annotations

import uuid

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import NotFound, ValidationError
from app.models.match import CARD_ACTIONS, CardInteraction, CardPair, ChatRoom
from app.models.user import User
from app.schemas.matching import CardMatchResult
from app.services.match_service import MatchService
from app.services.notification_service import NotificationService

logger = structlog.get_logger("courtside.card_service")

MSG_SKIPPED = "skipped"
MSG_AWAITING = "interest recorded, awaiting response"
MSG_MATCHED = "matched"
MSG_ALREADY_MATCHED = "already matched"


def pair_key(user_a: uuid.UUID, user_b: uuid.UUID) -> tuple[str, uuid.UUID, uuid.UUID]:
    """Return ``(key, low, high)`` for an unordered pair of users."""
    low, high = sorted((user_a, user_b), key=str)
    return f"{low}:{high}", low, high


class CardService:
    """Record card actions and turn reciprocal likes into matches."""

    def __init__(
        self,
        match_service: MatchService | None = None,
        notification_service: NotificationService | None = None,
    ) -> None:
        self.notification_service = notification_service or NotificationService()
        self.match_service = match_service or MatchService(self.notification_service)

    # ── Public API ────────────────────────────────────────────────────────

    async def process_card_action(
        self,
        actor_id: uuid.UUID,
        target_id: uuid.UUID,
        action: str,
        db_session: AsyncSession,
    ) -> CardMatchResult:
        """Record ``actor → target`` and detect a mutual like.

        Parameters
        ----------
        actor_id:
            Player performing the swipe.
        target_id:
            Player on the card.
        action:
            ``like``, ``dislike`` or ``skip``.
        db_session:
            Active SQLAlchemy async session.  The caller commits; the match,
            chat room, interactions and notifications land in one commit.

        Returns
        -------
        CardMatchResult
            ``is_match`` with the match and chat room IDs once matched.
        """
        if actor_id == target_id:
            raise ValidationError("Cannot perform a card action on yourself")
        if action not in CARD_ACTIONS:
            raise ValidationError(
                f"action must be one of {', '.join(CARD_ACTIONS)}, got {action!r}"
            )

        log = logger.bind(actor_id=str(actor_id), target_id=str(target_id), action=action)

        target = (
            await db_session.execute(
                select(User.id).where(User.id == target_id, User.is_active.is_(True))
            )
        ).first()
        if target is None:
            raise NotFound(f"User {target_id} not found")

        pair = await self._lock_pair(actor_id, target_id, db_session)

        if pair.match_id is not None:
            log.info("card_action_already_matched", match_id=str(pair.match_id))
            return CardMatchResult(
                is_match=True,
                match_id=pair.match_id,
                chat_room_id=await self._chat_room_id(pair.match_id, db_session),
                message=MSG_ALREADY_MATCHED,
            )

        await self._upsert_interaction(actor_id, target_id, action, db_session)

        if action != "like":
            log.info("card_action_recorded", outcome=MSG_SKIPPED)
            return CardMatchResult(is_match=False, message=MSG_SKIPPED)

        reverse = await self._get_interaction(target_id, actor_id, db_session)
        if reverse is None or reverse.action != "like":
            log.info("card_action_recorded", outcome="awaiting_response")
            return CardMatchResult(is_match=False, message=MSG_AWAITING)

        return await self._create_mutual_match(pair, actor_id, target_id, reverse, db_session)

    async def get_card_history(
        self,
        user_id: uuid.UUID,
        db_session: AsyncSession,
        action: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[CardInteraction], int]:
        """Return ``(interactions, total)`` made by ``user_id``, newest first."""
        if action is not None and action not in CARD_ACTIONS:
            raise ValidationError(f"action must be one of {', '.join(CARD_ACTIONS)}")

        conditions = [CardInteraction.actor_id == user_id]
        if action is not None:
            conditions.append(CardInteraction.action == action)

        total = (
            await db_session.execute(
                select(func.count()).select_from(CardInteraction).where(*conditions)
            )
        ).scalar_one()

        stmt = (
            select(CardInteraction)
            .where(*conditions)
            .order_by(CardInteraction.created_at.desc(), CardInteraction.id)
            .limit(limit)
            .offset(offset)
        )
        items = list((await db_session.execute(stmt)).scalars().all())
        return items, total

    # ── Internals ─────────────────────────────────────────────────────────

    async def _lock_pair(
        self,
        actor_id: uuid.UUID,
        target_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> CardPair:
        key, low, high = pair_key(actor_id, target_id)
        stmt = select(CardPair).where(CardPair.pair_key == key).with_for_update()

        pair = (await db_session.execute(stmt)).scalar_one_or_none()
        if pair is not None:
            return pair

        try:
            async with db_session.begin_nested():
                db_session.add(CardPair(pair_key=key, user_low_id=low, user_high_id=high))
        except IntegrityError:
            logger.debug("card_pair_created_concurrently", pair_key=key)

        return (await db_session.execute(stmt)).scalar_one()

    async def _get_interaction(
        self,
        actor_id: uuid.UUID,
        target_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> CardInteraction | None:
        stmt = select(CardInteraction).where(
            CardInteraction.actor_id == actor_id,
            CardInteraction.target_id == target_id,
        )
        return (await db_session.execute(stmt)).scalar_one_or_none()

    async def _upsert_interaction(
        self,
        actor_id: uuid.UUID,
        target_id: uuid.UUID,
        action: str,
        db_session: AsyncSession,
    ) -> CardInteraction:
        interaction = await self._get_interaction(actor_id, target_id, db_session)
        if interaction is None:
            interaction = CardInteraction(
                actor_id=actor_id,
                target_id=target_id,
                action=action,
                is_match=False,
            )
            db_session.add(interaction)
        else:
            interaction.action = action
        await db_session.flush()
        return interaction

    async def _create_mutual_match(
        self,
        pair: CardPair,
        actor_id: uuid.UUID,
        target_id: uuid.UUID,
        reverse: CardInteraction,
        db_session: AsyncSession,
    ) -> CardMatchResult:
        match, chat_room = await self.match_service.create_match_with_chat(
            db_session,
            [(actor_id, "player", "accepted"), (target_id, "player", "accepted")],
            match_type="casual",
        )

        forward = await self._get_interaction(actor_id, target_id, db_session)
        for interaction in (forward, reverse):
            interaction.is_match = True
            interaction.match_id = match.id
        pair.match_id = match.id
        await db_session.flush()

        for user_id, partner_id in ((actor_id, target_id), (target_id, actor_id)):
            await self.notification_service.create_notification(
                db_session,
                user_id=user_id,
                notification_type="match_success",
                title="It's a match!",
                message="You both want to play. Say hello in the match chat.",
                data={
                    "match_id": str(match.id),
                    "chat_room_id": str(chat_room.id),
                    "partner_id": str(partner_id),
                },
            )

        logger.info(
            "mutual_match_created",
            actor_id=str(actor_id),
            target_id=str(target_id),
            match_id=str(match.id),
            chat_room_id=str(chat_room.id),
        )
        return CardMatchResult(
            is_match=True,
            match_id=match.id,
            chat_room_id=chat_room.id,
            message=MSG_MATCHED,
        )

    async def _chat_room_id(
        self,
        match_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> uuid.UUID | None:
        stmt = select(ChatRoom.id).where(ChatRoom.match_id == match_id)
        return (await db_session.execute(stmt)).scalar_one_or_none()

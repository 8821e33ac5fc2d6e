"""Tests for CardService — card actions and mutual-match creation."""
import asyncio
import uuid

import pytest
from sqlalchemy import func, select

from app.exceptions import NotFound, ValidationError
from app.models.match import (
    CardInteraction,
    ChatParticipant,
    ChatRoom,
    Match,
    MatchParticipant,
)
from app.models.notification import MatchNotification
from app.services.card_service import (
    MSG_ALREADY_MATCHED,
    MSG_AWAITING,
    MSG_MATCHED,
    MSG_SKIPPED,
    CardService,
    pair_key,
)


@pytest.fixture
def card_service():
    return CardService()


async def _count(db_session, model, *conditions):
    stmt = select(func.count()).select_from(model)
    if conditions:
        stmt = stmt.where(*conditions)
    return (await db_session.execute(stmt)).scalar_one()


def test_pair_key_is_order_independent():
    a, b = uuid.uuid4(), uuid.uuid4()
    assert pair_key(a, b) == pair_key(b, a)
    key, low, high = pair_key(a, b)
    assert str(low) < str(high)
    assert key == f"{low}:{high}"


class TestValidation:
    @pytest.mark.asyncio
    async def test_self_action(self, db_session, make_player, card_service):
        me = await make_player()
        with pytest.raises(ValidationError):
            await card_service.process_card_action(me.id, me.id, "like", db_session)

    @pytest.mark.asyncio
    async def test_unknown_action(self, db_session, make_player, card_service):
        me = await make_player()
        other = await make_player()
        with pytest.raises(ValidationError):
            await card_service.process_card_action(me.id, other.id, "superlike", db_session)

    @pytest.mark.asyncio
    async def test_unknown_target(self, db_session, make_player, card_service):
        me = await make_player()
        with pytest.raises(NotFound):
            await card_service.process_card_action(me.id, uuid.uuid4(), "like", db_session)

    @pytest.mark.asyncio
    async def test_inactive_target(self, db_session, make_player, card_service):
        me = await make_player()
        gone = await make_player(is_active=False)
        with pytest.raises(NotFound):
            await card_service.process_card_action(me.id, gone.id, "like", db_session)


class TestCardFlow:
    @pytest.mark.asyncio
    async def test_one_sided_like_awaits(self, db_session, make_player, card_service):
        a = await make_player()
        b = await make_player()

        result = await card_service.process_card_action(a.id, b.id, "like", db_session)

        assert result.is_match is False
        assert result.match_id is None
        assert result.message == MSG_AWAITING
        assert await _count(db_session, Match) == 0

    @pytest.mark.asyncio
    async def test_skip_and_dislike(self, db_session, make_player, card_service):
        a = await make_player()
        b = await make_player()
        c = await make_player()

        skipped = await card_service.process_card_action(a.id, b.id, "skip", db_session)
        disliked = await card_service.process_card_action(a.id, c.id, "dislike", db_session)

        assert skipped.message == MSG_SKIPPED
        assert disliked.message == MSG_SKIPPED
        assert not skipped.is_match and not disliked.is_match

    @pytest.mark.asyncio
    async def test_mutual_like_creates_match(self, db_session, make_player, card_service):
        a = await make_player()
        b = await make_player()

        await card_service.process_card_action(a.id, b.id, "like", db_session)
        result = await card_service.process_card_action(b.id, a.id, "like", db_session)

        assert result.is_match is True
        assert result.message == MSG_MATCHED
        assert result.match_id is not None
        assert result.chat_room_id is not None

        match = await db_session.get(Match, result.match_id)
        assert match.status == "pending"
        assert match.match_type == "casual"

        participants = (
            await db_session.execute(
                select(MatchParticipant).where(MatchParticipant.match_id == match.id)
            )
        ).scalars().all()
        assert {p.user_id for p in participants} == {a.id, b.id}
        assert all(p.status == "accepted" for p in participants)

        room = await db_session.get(ChatRoom, result.chat_room_id)
        assert room.match_id == match.id
        assert await _count(
            db_session, ChatParticipant, ChatParticipant.chat_room_id == room.id
        ) == 2

        interactions = (await db_session.execute(select(CardInteraction))).scalars().all()
        assert len(interactions) == 2
        assert all(i.is_match and i.match_id == match.id for i in interactions)

        notifications = (
            await db_session.execute(
                select(MatchNotification).where(
                    MatchNotification.notification_type == "match_success"
                )
            )
        ).scalars().all()
        assert {n.user_id for n in notifications} == {a.id, b.id}
        assert all(n.data["match_id"] == str(match.id) for n in notifications)

    @pytest.mark.asyncio
    async def test_matched_pair_is_terminal(self, db_session, make_player, card_service):
        a = await make_player()
        b = await make_player()
        await card_service.process_card_action(a.id, b.id, "like", db_session)
        matched = await card_service.process_card_action(b.id, a.id, "like", db_session)

        for actor, target, action in [(a, b, "like"), (b, a, "dislike"), (a, b, "skip")]:
            again = await card_service.process_card_action(actor.id, target.id, action, db_session)
            assert again.is_match is True
            assert again.match_id == matched.match_id
            assert again.chat_room_id == matched.chat_room_id
            assert again.message == MSG_ALREADY_MATCHED

        assert await _count(db_session, Match) == 1

    @pytest.mark.asyncio
    async def test_changing_dislike_to_like(self, db_session, make_player, card_service):
        a = await make_player()
        b = await make_player()

        await card_service.process_card_action(a.id, b.id, "dislike", db_session)
        pending = await card_service.process_card_action(b.id, a.id, "like", db_session)
        assert pending.message == MSG_AWAITING

        result = await card_service.process_card_action(a.id, b.id, "like", db_session)
        assert result.is_match is True
        assert await _count(
            db_session, CardInteraction, CardInteraction.actor_id == a.id
        ) == 1

    @pytest.mark.asyncio
    async def test_history(self, db_session, make_player, card_service):
        me = await make_player()
        others = [await make_player() for _ in range(3)]
        await card_service.process_card_action(me.id, others[0].id, "like", db_session)
        await card_service.process_card_action(me.id, others[1].id, "skip", db_session)
        await card_service.process_card_action(me.id, others[2].id, "like", db_session)

        items, total = await card_service.get_card_history(me.id, db_session)
        assert total == 3
        assert len(items) == 3

        likes, like_total = await card_service.get_card_history(me.id, db_session, action="like")
        assert like_total == 2
        assert {i.target_id for i in likes} == {others[0].id, others[2].id}

        page, _ = await card_service.get_card_history(me.id, db_session, limit=1, offset=1)
        assert len(page) == 1

        with pytest.raises(ValidationError):
            await card_service.get_card_history(me.id, db_session, action="superlike")


class TestConcurrentLikes:
    @pytest.mark.asyncio
    async def test_simultaneous_likes_create_one_match(
        self, db_session, session_factory, make_player
    ):
        a = await make_player()
        b = await make_player()
        await db_session.commit()

        async def like(actor_id, target_id):
            async with session_factory() as session:
                result = await CardService().process_card_action(
                    actor_id, target_id, "like", session
                )
                await session.commit()
                return result

        first, second = await asyncio.gather(like(a.id, b.id), like(b.id, a.id))

        assert await _count(db_session, Match) == 1
        # Release the read transaction so the next writer is not blocked.
        await db_session.rollback()
        matched = [r for r in (first, second) if r.is_match]
        assert len(matched) >= 1
        match_id = matched[0].match_id
        assert all(r.match_id == match_id for r in matched)

        # Whoever only saw "awaiting" gets the same match on the next like.
        for actor, target in ((a, b), (b, a)):
            again = await like(actor.id, target.id)
            assert again.is_match is True
            assert again.match_id == match_id

        assert await _count(db_session, Match) == 1

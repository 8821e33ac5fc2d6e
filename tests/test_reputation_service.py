"""Tests for ReputationService — rolling sub-scores, reviews and skill levels."""
import asyncio
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from app.database import utcnow
from app.exceptions import DuplicateReview, NotFound, NotParticipant, ValidationError
from app.models.reputation import BehaviorReview, SkillLevelRecord
from app.models.user import PlayerProfile
from app.services.match_service import MatchService
from app.services.reputation_service import (
    ReputationService,
    behavior_to_percent,
    compute_overall_score,
    ema,
    level_accuracy,
)


@pytest.fixture
def reputation_service():
    return ReputationService()


class TestPureHelpers:
    def test_ema(self):
        assert ema(100.0, 0.0, 0.1) == pytest.approx(90.0)
        assert ema(50.0, 50.0, 0.1) == pytest.approx(50.0)

    def test_ema_stays_within_observation_bounds(self):
        value = 100.0
        for observation in [0.0, 100.0] * 50 + [0.0] * 200:
            value = ema(value, observation, 0.1)
            assert 0.0 <= value <= 100.0

    def test_behavior_to_percent(self):
        assert behavior_to_percent(1) == 0.0
        assert behavior_to_percent(3) == 50.0
        assert behavior_to_percent(5) == 100.0

    def test_level_accuracy(self):
        assert level_accuracy(4.0, 4.0, 3.0) == 100.0
        assert level_accuracy(4.0, 5.5, 3.0) == pytest.approx(50.0)
        assert level_accuracy(2.0, 6.0, 3.0) == 0.0

    def test_overall_of_fresh_player(self):
        assert compute_overall_score(100.0, 100.0, 100.0, 5.0) == pytest.approx(100.0)

    def test_overall_weighting(self):
        # 0.3*50 + 0.2*100 + 0.2*100 + 0.3*0 = 55
        assert compute_overall_score(50.0, 100.0, 100.0, 1.0) == pytest.approx(55.0)


class TestReputationScore:
    @pytest.mark.asyncio
    async def test_fresh_player_defaults(self, db_session, make_player, reputation_service):
        user = await make_player()
        score = await reputation_service.get_reputation_score(user.id, db_session)

        assert score.attendance_rate == 100.0
        assert score.punctuality_score == 100.0
        assert score.skill_accuracy == 100.0
        assert score.behavior_rating == 5.0
        assert score.overall_score == pytest.approx(100.0)
        assert score.total_matches == 0

    @pytest.mark.asyncio
    async def test_unknown_user(self, db_session, reputation_service):
        with pytest.raises(NotFound):
            await reputation_service.get_reputation_score(uuid.uuid4(), db_session)

    @pytest.mark.asyncio
    async def test_attendance_counts(self, db_session, make_player, reputation_service):
        user = await make_player()
        await reputation_service.update_attendance_rate(user.id, "completed", db_session)
        await reputation_service.update_attendance_rate(user.id, "cancelled", db_session)
        await reputation_service.update_attendance_rate(user.id, "completed", db_session)
        score = await reputation_service.update_attendance_rate(user.id, "no_show", db_session)

        assert score.total_matches == 4
        assert score.completed_matches == 2
        assert score.cancelled_matches == 1
        assert score.attendance_rate == pytest.approx(50.0)

    @pytest.mark.asyncio
    async def test_invalid_attendance_status(self, db_session, make_player, reputation_service):
        user = await make_player()
        with pytest.raises(ValidationError):
            await reputation_service.update_attendance_rate(user.id, "maybe", db_session)

    @pytest.mark.asyncio
    async def test_punctuality_is_smoothed(self, db_session, make_player, reputation_service):
        user = await make_player()
        score = await reputation_service.update_punctuality_score(user.id, False, 12, db_session)
        assert score.punctuality_score == pytest.approx(90.0)

        score = await reputation_service.update_punctuality_score(user.id, True, 0, db_session)
        assert score.punctuality_score == pytest.approx(91.0)

    @pytest.mark.asyncio
    async def test_negative_delay_rejected(self, db_session, make_player, reputation_service):
        user = await make_player()
        with pytest.raises(ValidationError):
            await reputation_service.update_punctuality_score(user.id, False, -5, db_session)

    @pytest.mark.asyncio
    async def test_skill_accuracy(self, db_session, make_player, reputation_service):
        user = await make_player()
        score = await reputation_service.update_skill_accuracy(user.id, 4.0, 5.5, db_session)
        # 100 * 0.9 + 50 * 0.1
        assert score.skill_accuracy == pytest.approx(95.0)

    @pytest.mark.asyncio
    async def test_skill_accuracy_level_bounds(self, db_session, make_player, reputation_service):
        user = await make_player()
        with pytest.raises(ValidationError):
            await reputation_service.update_skill_accuracy(user.id, 4.0, 7.5, db_session)

    @pytest.mark.asyncio
    async def test_sub_scores_stay_bounded(self, db_session, make_player, reputation_service):
        user = await make_player()
        reviewer = await make_player()
        for _ in range(30):
            await reputation_service.update_punctuality_score(user.id, False, 30, db_session)
            await reputation_service.update_skill_accuracy(user.id, 1.0, 7.0, db_session)
            await reputation_service.update_behavior_rating(user.id, 1, db_session)
        score = await reputation_service.update_behavior_rating(
            user.id, 1, db_session, reviewer_id=reviewer.id
        )

        assert 0.0 <= score.punctuality_score <= 100.0
        assert 0.0 <= score.skill_accuracy <= 100.0
        assert 1.0 <= score.behavior_rating <= 5.0
        assert 0.0 <= score.overall_score <= 100.0

    @pytest.mark.asyncio
    async def test_update_reputation_combined(self, db_session, make_player, reputation_service):
        user = await make_player()
        reviewer = await make_player()
        score = await reputation_service.update_reputation(
            user.id, True, False, db_session, behavior_rating=3, reviewer_id=reviewer.id
        )
        assert score.total_matches == 1
        assert score.completed_matches == 1
        assert score.punctuality_score == pytest.approx(90.0)
        assert score.behavior_rating == pytest.approx(4.8)


class TestBehaviorReviews:
    @pytest.mark.asyncio
    async def test_rating_out_of_range(self, db_session, make_player, reputation_service):
        user = await make_player()
        for rating in (0, 6):
            with pytest.raises(ValidationError):
                await reputation_service.update_behavior_rating(user.id, rating, db_session)

    @pytest.mark.asyncio
    async def test_self_review_rejected(self, db_session, make_player, reputation_service):
        user = await make_player()
        with pytest.raises(ValidationError):
            await reputation_service.update_behavior_rating(
                user.id, 5, db_session, reviewer_id=user.id
            )

    @pytest.mark.asyncio
    async def test_duplicate_review_per_match(self, db_session, make_player, reputation_service):
        user = await make_player()
        reviewer = await make_player()
        match, _room = await MatchService().create_match_with_chat(
            db_session,
            [(user.id, "player", "accepted"), (reviewer.id, "player", "accepted")],
        )

        await reputation_service.update_behavior_rating(
            user.id, 4, db_session, reviewer_id=reviewer.id, match_id=match.id
        )
        with pytest.raises(DuplicateReview):
            await reputation_service.update_behavior_rating(
                user.id, 2, db_session, reviewer_id=reviewer.id, match_id=match.id
            )

        count = (
            await db_session.execute(
                select(func.count()).select_from(BehaviorReview).where(
                    BehaviorReview.user_id == user.id
                )
            )
        ).scalar_one()
        assert count == 1

    @pytest.mark.asyncio
    async def test_duplicate_review_without_match(self, db_session, make_player, reputation_service):
        user = await make_player()
        reviewer = await make_player()
        await reputation_service.update_behavior_rating(
            user.id, 4, db_session, reviewer_id=reviewer.id
        )
        with pytest.raises(DuplicateReview):
            await reputation_service.update_behavior_rating(
                user.id, 4, db_session, reviewer_id=reviewer.id
            )


class TestMatchScopedRecording:
    @pytest.mark.asyncio
    async def test_punctuality_from_arrival(self, db_session, make_player, reputation_service):
        user = await make_player()
        other = await make_player()
        match, _room = await MatchService().create_match_with_chat(
            db_session,
            [(user.id, "player", "accepted"), (other.id, "player", "accepted")],
            scheduled_at=utcnow(),
        )
        score = await reputation_service.record_match_punctuality(
            user.id, match.id, match.scheduled_at + timedelta(minutes=7), db_session
        )
        assert score.punctuality_score == pytest.approx(90.0)

    @pytest.mark.asyncio
    async def test_attendance_requires_participant(
        self, db_session, make_player, reputation_service
    ):
        a = await make_player()
        b = await make_player()
        outsider = await make_player()
        match, _room = await MatchService().create_match_with_chat(
            db_session, [(a.id, "player", "accepted"), (b.id, "player", "accepted")]
        )
        with pytest.raises(NotParticipant):
            await reputation_service.record_match_attendance(
                outsider.id, match.id, "completed", db_session
            )


class TestSkillLevel:
    async def _observe(self, service, db_session, user_id, levels):
        for level in levels:
            await service.update_skill_accuracy(user_id, 4.0, level, db_session)

    @pytest.mark.asyncio
    async def test_no_op_below_minimum_records(self, db_session, make_player, reputation_service):
        user = await make_player(ntrp_level=4.0)
        await self._observe(reputation_service, db_session, user.id, [5.5, 5.5])

        assert await reputation_service.auto_adjust_skill_level(user.id, db_session) is None
        profile = (
            await db_session.execute(select(PlayerProfile).where(PlayerProfile.user_id == user.id))
        ).scalar_one()
        assert profile.ntrp_level == 4.0
        assert await reputation_service.get_skill_level_history(user.id, db_session) == []

    @pytest.mark.asyncio
    async def test_adjusts_toward_observed(self, db_session, make_player, reputation_service):
        user = await make_player(ntrp_level=4.0)
        await self._observe(reputation_service, db_session, user.id, [5.0, 5.0, 5.0])

        record = await reputation_service.auto_adjust_skill_level(user.id, db_session)

        assert record is not None
        assert record.reason == "auto_adjustment"
        assert record.old_level == 4.0
        # 4.0 + (5.0 - 4.0) * 0.3
        assert record.new_level == pytest.approx(4.3)

    @pytest.mark.asyncio
    async def test_within_threshold_is_no_op(self, db_session, make_player, reputation_service):
        user = await make_player(ntrp_level=4.0)
        await self._observe(reputation_service, db_session, user.id, [4.5, 4.5, 4.5])
        assert await reputation_service.auto_adjust_skill_level(user.id, db_session) is None

    @pytest.mark.asyncio
    async def test_manual_adjustment_is_audited(self, db_session, make_player, reputation_service):
        user = await make_player(ntrp_level=3.5)
        record = await reputation_service.manually_adjust_skill_level(
            user.id, 4.0, db_session, note="coach assessment"
        )
        assert record.reason == "manual"
        assert (record.old_level, record.new_level) == (3.5, 4.0)

        history = await reputation_service.get_skill_level_history(user.id, db_session)
        assert [r.id for r in history] == [record.id]

    @pytest.mark.asyncio
    async def test_manual_adjustment_bounds(self, db_session, make_player, reputation_service):
        user = await make_player()
        with pytest.raises(ValidationError):
            await reputation_service.manually_adjust_skill_level(user.id, 7.5, db_session)

    @pytest.mark.asyncio
    async def test_batch(self, db_session, make_player, reputation_service):
        moving = await make_player(ntrp_level=3.0)
        steady = await make_player(ntrp_level=4.0)
        await self._observe(reputation_service, db_session, moving.id, [4.5, 4.5, 4.5])
        await self._observe(reputation_service, db_session, steady.id, [4.0])

        summary = await reputation_service.run_auto_adjust_batch(db_session)

        assert summary == {"checked": 2, "adjusted": 1, "failed": 0}
        records = (await db_session.execute(select(SkillLevelRecord))).scalars().all()
        assert [r.user_id for r in records] == [moving.id]


class TestAggregates:
    @pytest.mark.asyncio
    async def test_leaderboard_requires_five_matches(
        self, db_session, make_player, reputation_service
    ):
        veteran = await make_player("veteran")
        rookie = await make_player("rookie")
        for _ in range(5):
            await reputation_service.update_attendance_rate(veteran.id, "completed", db_session)
        await reputation_service.update_attendance_rate(rookie.id, "completed", db_session)

        board = await reputation_service.get_leaderboard(db_session)
        assert [row["user_id"] for row in board] == [veteran.id]
        assert board[0]["rank"] == 1

    @pytest.mark.asyncio
    async def test_stats(self, db_session, make_player, reputation_service):
        a = await make_player()
        b = await make_player()
        await reputation_service.get_reputation_score(a.id, db_session)
        await reputation_service.update_attendance_rate(b.id, "cancelled", db_session)

        stats = await reputation_service.get_reputation_stats(db_session)
        assert stats["total_users"] == 2
        assert stats["high_reputation_users"] == 1
        assert stats["active_users"] == 1


class TestConcurrentUpdates:
    @pytest.mark.asyncio
    async def test_parallel_updates_are_serialized(
        self, db_session, session_factory, make_player
    ):
        user = await make_player()
        await db_session.commit()
        parallel = 4

        async def in_own_session(update):
            async with session_factory() as session:
                await update(ReputationService(), session)
                await session.commit()

        await asyncio.gather(*(
            in_own_session(lambda s, db: s.update_attendance_rate(user.id, "completed", db))
            for _ in range(parallel)
        ))
        await asyncio.gather(*(
            in_own_session(lambda s, db: s.update_punctuality_score(user.id, False, 5, db))
            for _ in range(parallel)
        ))

        async with session_factory() as session:
            score = await ReputationService().get_reputation_score(user.id, session)
        assert score.total_matches == parallel
        assert score.completed_matches == parallel
        assert score.attendance_rate == pytest.approx(100.0)
        assert score.punctuality_score == pytest.approx(100.0 * 0.9 ** parallel)

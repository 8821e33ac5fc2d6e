"""Tests for StatisticsService — result recording, confirmation and privacy."""
import uuid
from datetime import date, timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from app.database import utcnow
from app.exceptions import (
    Conflict,
    NotFound,
    NotParticipant,
    PrivacyDenied,
    ValidationError,
)
from app.models.match import Match, MatchResult
from app.models.notification import MatchNotification
from app.services.match_service import MatchService
from app.services.reputation_service import ReputationService
from app.services.statistics_service import StatisticsService, _month_keys


@pytest.fixture
def statistics_service():
    return StatisticsService()


@pytest.fixture
def singles_match(db_session, make_player):
    """Factory: two accepted players and a pending match between them."""

    async def _singles_match(a=None, b=None, started_minutes_ago=None):
        a = a or await make_player()
        b = b or await make_player()
        match, _room = await MatchService().create_match_with_chat(
            db_session,
            [(a.id, "player", "accepted"), (b.id, "player", "accepted")],
        )
        if started_minutes_ago is not None:
            match.started_at = utcnow() - timedelta(minutes=started_minutes_ago)
            await db_session.flush()
        return match, a, b

    return _singles_match


async def _result_count(db_session, match_id):
    stmt = select(func.count()).select_from(MatchResult).where(MatchResult.match_id == match_id)
    return (await db_session.execute(stmt)).scalar_one()


def test_month_keys():
    keys = _month_keys(date(2026, 2, 15), 4)
    assert keys == ["2025-11", "2025-12", "2026-01", "2026-02"]


class TestRecordResult:
    @pytest.mark.asyncio
    async def test_records_and_completes_match(
        self, db_session, singles_match, statistics_service
    ):
        match, a, b = await singles_match(started_minutes_ago=90)

        result = await statistics_service.record_match_result(
            match.id, a.id, b.id, " 6-4 6-3 ", a.id, db_session
        )

        assert result.score == "6-4 6-3"
        assert result.is_confirmed is False
        assert result.confirmed_by == []

        refreshed = await db_session.get(Match, match.id)
        assert refreshed.status == "completed"
        assert refreshed.completed_at is not None
        assert refreshed.duration_minutes in (89, 90, 91)

        for player in (a, b):
            score = await ReputationService().get_reputation_score(player.id, db_session)
            assert score.total_matches == 1
            assert score.completed_matches == 1

        notified = (
            await db_session.execute(
                select(MatchNotification.user_id).where(
                    MatchNotification.notification_type == "result_recorded"
                )
            )
        ).scalars().all()
        assert notified == [b.id]

    @pytest.mark.asyncio
    async def test_outsider_leaves_no_result(
        self, db_session, make_player, singles_match, statistics_service
    ):
        match, a, b = await singles_match()
        outsider = await make_player()

        with pytest.raises(NotParticipant):
            await statistics_service.record_match_result(
                match.id, a.id, b.id, "6-0 6-0", outsider.id, db_session
            )

        assert await _result_count(db_session, match.id) == 0
        assert (await db_session.get(Match, match.id)).status == "pending"

    @pytest.mark.asyncio
    async def test_winner_must_have_played(
        self, db_session, make_player, singles_match, statistics_service
    ):
        match, a, _b = await singles_match()
        outsider = await make_player()
        with pytest.raises(NotParticipant):
            await statistics_service.record_match_result(
                match.id, outsider.id, a.id, "6-0 6-0", a.id, db_session
            )
        assert await _result_count(db_session, match.id) == 0

    @pytest.mark.asyncio
    async def test_winner_equals_loser(self, db_session, singles_match, statistics_service):
        match, a, _b = await singles_match()
        with pytest.raises(ValidationError):
            await statistics_service.record_match_result(
                match.id, a.id, a.id, "6-0 6-0", a.id, db_session
            )

    @pytest.mark.asyncio
    async def test_unknown_match(self, db_session, make_player, statistics_service):
        a = await make_player()
        with pytest.raises(NotFound):
            await statistics_service.record_match_result(
                uuid.uuid4(), a.id, a.id, "6-0", a.id, db_session
            )

    @pytest.mark.asyncio
    async def test_second_result_conflicts(self, db_session, singles_match, statistics_service):
        match, a, b = await singles_match()
        await statistics_service.record_match_result(match.id, a.id, b.id, "6-4", a.id, db_session)
        with pytest.raises(Conflict):
            await statistics_service.record_match_result(
                match.id, b.id, a.id, "4-6", b.id, db_session
            )
        assert await _result_count(db_session, match.id) == 1

    @pytest.mark.asyncio
    async def test_reputation_failure_keeps_result(
        self, db_session, singles_match, statistics_service
    ):
        match, a, b = await singles_match()
        statistics_service.reputation_service.update_attendance_rate = AsyncMock(
            side_effect=RuntimeError("reputation store unavailable")
        )

        result = await statistics_service.record_match_result(
            match.id, a.id, b.id, "7-5 7-6", b.id, db_session
        )

        assert result.id is not None
        assert await _result_count(db_session, match.id) == 1
        assert (await db_session.get(Match, match.id)).status == "completed"


class TestConfirmResult:
    @pytest.mark.asyncio
    async def test_confirmation_threshold(self, db_session, singles_match, statistics_service):
        match, a, b = await singles_match()
        result = await statistics_service.record_match_result(
            match.id, a.id, b.id, "6-4", a.id, db_session
        )

        pending = await statistics_service.get_results_for_confirmation(b.id, db_session)
        assert [r.id for r in pending] == [result.id]

        once = await statistics_service.confirm_match_result(result.id, a.id, db_session)
        assert once.is_confirmed is False
        again = await statistics_service.confirm_match_result(result.id, a.id, db_session)
        assert again.confirmed_by == [str(a.id)]

        done = await statistics_service.confirm_match_result(result.id, b.id, db_session)
        assert done.is_confirmed is True
        assert set(done.confirmed_by) == {str(a.id), str(b.id)}
        assert await statistics_service.get_results_for_confirmation(b.id, db_session) == []

    @pytest.mark.asyncio
    async def test_outsider_cannot_confirm(
        self, db_session, make_player, singles_match, statistics_service
    ):
        match, a, b = await singles_match()
        outsider = await make_player()
        result = await statistics_service.record_match_result(
            match.id, a.id, b.id, "6-4", a.id, db_session
        )
        with pytest.raises(NotParticipant):
            await statistics_service.confirm_match_result(result.id, outsider.id, db_session)

    @pytest.mark.asyncio
    async def test_unknown_result(self, db_session, make_player, statistics_service):
        a = await make_player()
        with pytest.raises(NotFound):
            await statistics_service.confirm_match_result(uuid.uuid4(), a.id, db_session)


class TestPrivacy:
    @pytest.mark.asyncio
    async def test_hidden_history_denied_to_others(
        self, db_session, make_player, singles_match, statistics_service
    ):
        match, owner, opponent = await singles_match()
        viewer = await make_player()
        await statistics_service.update_user_privacy_settings(
            owner.id, {"show_match_history": False}, db_session
        )

        with pytest.raises(PrivacyDenied) as excinfo:
            await statistics_service.get_user_match_history(owner.id, viewer.id, db_session)
        assert excinfo.value.resource == "match_history"

        history = await statistics_service.get_user_match_history(owner.id, owner.id, db_session)
        assert [h["match_id"] for h in history] == [match.id]
        assert history[0]["opponent_ids"] == [opponent.id]

    @pytest.mark.asyncio
    async def test_history_outcome_hidden_without_win_loss(
        self, db_session, make_player, singles_match, statistics_service
    ):
        match, owner, opponent = await singles_match()
        viewer = await make_player()
        await statistics_service.record_match_result(
            match.id, owner.id, opponent.id, "6-1 6-1", owner.id, db_session
        )
        await statistics_service.update_user_privacy_settings(
            owner.id, {"show_win_loss_record": False}, db_session
        )

        theirs = await statistics_service.get_user_match_history(owner.id, viewer.id, db_session)
        mine = await statistics_service.get_user_match_history(owner.id, owner.id, db_session)
        assert theirs[0]["result"] is None
        assert mine[0]["result"] == "win"

    @pytest.mark.asyncio
    async def test_reputation_gate(self, db_session, make_player, statistics_service):
        owner = await make_player()
        viewer = await make_player()
        await statistics_service.update_user_privacy_settings(
            owner.id, {"show_reputation_score": False}, db_session
        )

        with pytest.raises(PrivacyDenied):
            await statistics_service.get_reputation_with_privacy(owner.id, viewer.id, db_session)
        score = await statistics_service.get_reputation_with_privacy(owner.id, owner.id, db_session)
        assert score.overall_score == pytest.approx(100.0)

    @pytest.mark.asyncio
    async def test_behavior_reviews_private_by_default(
        self, db_session, make_player, statistics_service
    ):
        owner = await make_player()
        viewer = await make_player()
        await statistics_service.reputation_service.update_behavior_rating(
            owner.id, 4, db_session, reviewer_id=viewer.id
        )

        with pytest.raises(PrivacyDenied):
            await statistics_service.get_behavior_reviews(owner.id, viewer.id, db_session)
        reviews = await statistics_service.get_behavior_reviews(owner.id, owner.id, db_session)
        assert [r.rating for r in reviews] == [4]

    @pytest.mark.asyncio
    async def test_skill_progression_gate(self, db_session, make_player, statistics_service):
        owner = await make_player()
        viewer = await make_player()
        await statistics_service.update_user_privacy_settings(
            owner.id, {"show_skill_progression": False}, db_session
        )
        with pytest.raises(PrivacyDenied):
            await statistics_service.get_skill_level_progression(owner.id, viewer.id, db_session)
        assert await statistics_service.get_skill_level_progression(
            owner.id, owner.id, db_session
        ) == []

    @pytest.mark.asyncio
    async def test_unknown_privacy_flag(self, db_session, make_player, statistics_service):
        owner = await make_player()
        with pytest.raises(ValidationError):
            await statistics_service.update_user_privacy_settings(
                owner.id, {"show_everything": True}, db_session
            )

    @pytest.mark.asyncio
    async def test_partial_update_keeps_other_flags(
        self, db_session, make_player, statistics_service
    ):
        owner = await make_player()
        settings = await statistics_service.update_user_privacy_settings(
            owner.id, {"show_detailed_stats": False, "show_match_history": None}, db_session
        )
        assert settings.show_detailed_stats is False
        assert settings.show_match_history is True
        assert settings.show_behavior_reviews is False


class TestMatchStatistics:
    async def _play(self, statistics_service, db_session, singles_match, owner, opponent, won):
        match, _, _ = await singles_match(owner, opponent, started_minutes_ago=60)
        winner, loser = (owner, opponent) if won else (opponent, owner)
        await statistics_service.record_match_result(
            match.id, winner.id, loser.id, "6-4 6-4", owner.id, db_session
        )

    @pytest.mark.asyncio
    async def test_owner_sees_everything(
        self, db_session, make_player, singles_match, statistics_service
    ):
        owner = await make_player("owner")
        rival = await make_player("rival")
        await self._play(statistics_service, db_session, singles_match, owner, rival, True)
        await self._play(statistics_service, db_session, singles_match, owner, rival, True)
        await self._play(statistics_service, db_session, singles_match, owner, rival, False)

        stats = await statistics_service.get_user_match_statistics(owner.id, owner.id, db_session)

        assert stats["total_matches"] == 3
        assert stats["completed_matches"] == 3
        assert (stats["wins"], stats["losses"]) == (2, 1)
        assert stats["win_rate"] == pytest.approx(66.67)
        assert stats["attendance_rate"] == 100.0
        assert stats["most_played_with"] == [
            {"user_id": rival.id, "display_name": "rival", "match_count": 3}
        ]
        assert len(stats["recent_matches"]) == 3
        assert len(stats["monthly_stats"]) == 12
        this_month = stats["monthly_stats"][-1]
        assert this_month["month"] == utcnow().strftime("%Y-%m")
        assert (this_month["wins"], this_month["losses"]) == (2, 1)

    @pytest.mark.asyncio
    async def test_projection_for_other_players(
        self, db_session, make_player, singles_match, statistics_service
    ):
        owner = await make_player()
        rival = await make_player()
        viewer = await make_player()
        await self._play(statistics_service, db_session, singles_match, owner, rival, True)

        # Defaults: statistics sharing is off, so partners stay hidden.
        stats = await statistics_service.get_user_match_statistics(owner.id, viewer.id, db_session)
        assert stats["total_matches"] == 1
        assert stats["wins"] == 1
        assert "most_played_with" not in stats
        assert stats["monthly_stats"] is not None

        await statistics_service.update_user_privacy_settings(
            owner.id,
            {"show_win_loss_record": False, "show_detailed_stats": False},
            db_session,
        )
        stats = await statistics_service.get_user_match_statistics(owner.id, viewer.id, db_session)
        assert "wins" not in stats and "win_rate" not in stats
        assert "monthly_stats" not in stats
        assert stats["recent_matches"][0]["result"] is None

        await statistics_service.update_user_privacy_settings(
            owner.id,
            {"show_detailed_stats": True, "allow_statistics_sharing": True},
            db_session,
        )
        stats = await statistics_service.get_user_match_statistics(owner.id, viewer.id, db_session)
        assert [p["user_id"] for p in stats["most_played_with"]] == [rival.id]

    @pytest.mark.asyncio
    async def test_unknown_user(self, db_session, make_player, statistics_service):
        viewer = await make_player()
        with pytest.raises(NotFound):
            await statistics_service.get_user_match_statistics(uuid.uuid4(), viewer.id, db_session)

"""
Courtside — Match Statistics & Privacy Projection

Read paths (match history, reputation, skill progression, behaviour reviews,
aggregate statistics) compare the target player with the requesting player.
Owners always see everything; anyone else passes through ``privacy_gate`` on
the owner's ``UserPrivacySettings`` flag before any data is read.

Aggregate statistics are projected field by field instead of gated as a
whole:

  show_match_history      total / completed matches, attendance, recent matches
  show_win_loss_record    wins, losses, win rate
  show_skill_progression  skill level history
  show_detailed_stats     cancellations, average duration, monthly breakdown,
                          most-played-with (which also needs
                          allow_statistics_sharing, since it names other players)

Result recording also lives here: a result is written once per match by a
participant and becomes trusted after ``REQUIRED_CONFIRMATIONS`` distinct
participants confirm it.  Reputation updates triggered by a result are
best-effort and never roll the result back.
"""

from __future__ import annotations

import uuid
from collections import Counter
from datetime import date
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import ensure_utc, utcnow
from app.exceptions import Conflict, NotFound, NotParticipant, ValidationError
from app.models.match import Match, MatchParticipant, MatchResult
from app.models.privacy import UserPrivacySettings
from app.models.reputation import BehaviorReview, ReputationScore, SkillLevelRecord
from app.models.user import User
from app.services.notification_service import NotificationService
from app.services.privacy import PrivacyService, privacy_gate
from app.services.reputation_service import ReputationService

logger = structlog.get_logger("courtside.statistics_service")

RECENT_MATCH_LIMIT = 10
MOST_PLAYED_WITH_LIMIT = 5
MONTHS_OF_HISTORY = 12


def _month_keys(today: date, months: int) -> list[str]:
    """``YYYY-MM`` keys for the last ``months`` months, oldest first."""
    keys = []
    year, month = today.year, today.month
    for _ in range(months):
        keys.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(keys))


class StatisticsService:
    """Privacy-aware statistics plus match result recording."""

    def __init__(
        self,
        reputation_service: ReputationService | None = None,
        privacy_service: PrivacyService | None = None,
        notification_service: NotificationService | None = None,
    ) -> None:
        self.reputation_service = reputation_service or ReputationService()
        self.privacy_service = privacy_service or PrivacyService()
        self.notification_service = notification_service or NotificationService()
        self.required_confirmations: int = get_settings().REQUIRED_CONFIRMATIONS

    # ── Privacy settings ──────────────────────────────────────────────────

    async def get_user_privacy_settings(
        self,
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> UserPrivacySettings:
        return await self.privacy_service.get_settings(user_id, db_session)

    async def update_user_privacy_settings(
        self,
        user_id: uuid.UUID,
        changes: dict[str, Any],
        db_session: AsyncSession,
    ) -> UserPrivacySettings:
        return await self.privacy_service.update_settings(user_id, changes, db_session)

    # ── Gated read paths ──────────────────────────────────────────────────

    async def get_user_match_history(
        self,
        user_id: uuid.UUID,
        requesting_user_id: uuid.UUID,
        db_session: AsyncSession,
        limit: int = 20,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Matches the player took part in, newest first.

        Per-match win/loss is blanked for non-owners unless the owner shows
        their win/loss record.
        """
        is_owner = user_id == requesting_user_id
        privacy = await self.privacy_service.get_settings(user_id, db_session)
        privacy_gate(privacy.show_match_history, is_owner, "match_history")

        show_outcome = is_owner or privacy.show_win_loss_record
        return await self._match_history(user_id, db_session, limit, offset, show_outcome)

    async def get_reputation_with_privacy(
        self,
        user_id: uuid.UUID,
        requesting_user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> ReputationScore:
        privacy = await self.privacy_service.get_settings(user_id, db_session)
        privacy_gate(
            privacy.show_reputation_score, user_id == requesting_user_id, "reputation_score"
        )
        return await self.reputation_service.get_reputation_score(user_id, db_session)

    async def get_skill_level_progression(
        self,
        user_id: uuid.UUID,
        requesting_user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> list[SkillLevelRecord]:
        privacy = await self.privacy_service.get_settings(user_id, db_session)
        privacy_gate(
            privacy.show_skill_progression, user_id == requesting_user_id, "skill_progression"
        )
        return await self.reputation_service.get_skill_level_history(user_id, db_session)

    async def get_behavior_reviews(
        self,
        user_id: uuid.UUID,
        requesting_user_id: uuid.UUID,
        db_session: AsyncSession,
        limit: int = 50,
    ) -> list[BehaviorReview]:
        privacy = await self.privacy_service.get_settings(user_id, db_session)
        privacy_gate(
            privacy.show_behavior_reviews, user_id == requesting_user_id, "behavior_reviews"
        )
        stmt = (
            select(BehaviorReview)
            .where(BehaviorReview.user_id == user_id)
            .order_by(BehaviorReview.created_at.desc())
            .limit(limit)
        )
        return list((await db_session.execute(stmt)).scalars().all())

    async def get_reputation_history_with_privacy(
        self,
        user_id: uuid.UUID,
        requesting_user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> dict[str, Any]:
        """Raw reputation observations; reviews need their own flag."""
        is_owner = user_id == requesting_user_id
        privacy = await self.privacy_service.get_settings(user_id, db_session)
        privacy_gate(privacy.show_reputation_score, is_owner, "reputation_score")

        history = await self.reputation_service.get_reputation_history(user_id, db_session)
        if not (is_owner or privacy.show_behavior_reviews):
            history["behavior_reviews"] = None
        return history

    # ── Aggregate statistics ──────────────────────────────────────────────

    async def get_user_match_statistics(
        self,
        user_id: uuid.UUID,
        requesting_user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> dict[str, Any]:
        """Compute statistics for ``user_id`` and project them for the
        requester.

        Returns
        -------
        dict
            Keys of ``MatchStatistics``; sections the requester may not see
            are ``None``.
        """
        if await db_session.get(User, user_id) is None:
            raise NotFound(f"User {user_id} not found")

        is_owner = user_id == requesting_user_id
        privacy = await self.privacy_service.get_settings(user_id, db_session)

        stats = await self._compute_statistics(user_id, db_session)
        if is_owner:
            return stats

        return self.filter_statistics_by_privacy(stats, privacy)

    @staticmethod
    def filter_statistics_by_privacy(
        stats: dict[str, Any],
        privacy: UserPrivacySettings,
    ) -> dict[str, Any]:
        filtered: dict[str, Any] = {"user_id": stats["user_id"]}

        if privacy.show_match_history:
            for key in ("total_matches", "completed_matches", "attendance_rate", "recent_matches"):
                filtered[key] = stats[key]
            if not privacy.show_win_loss_record:
                filtered["recent_matches"] = [
                    {**m, "result": None} for m in stats["recent_matches"]
                ]

        if privacy.show_win_loss_record:
            for key in ("wins", "losses", "win_rate"):
                filtered[key] = stats[key]

        if privacy.show_skill_progression:
            filtered["skill_progression"] = stats["skill_progression"]

        if privacy.show_detailed_stats:
            for key in ("cancelled_matches", "average_duration_minutes", "monthly_stats"):
                filtered[key] = stats[key]
            if privacy.allow_statistics_sharing:
                filtered["most_played_with"] = stats["most_played_with"]

        return filtered

    async def _compute_statistics(
        self,
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> dict[str, Any]:
        match_stmt = (
            select(Match)
            .join(MatchParticipant, MatchParticipant.match_id == Match.id)
            .where(MatchParticipant.user_id == user_id)
            .order_by(Match.created_at.desc(), Match.id)
        )
        matches = list((await db_session.execute(match_stmt)).scalars().all())
        match_ids = [m.id for m in matches]

        results: dict[uuid.UUID, MatchResult] = {}
        co_players: Counter[uuid.UUID] = Counter()
        if match_ids:
            result_stmt = select(MatchResult).where(MatchResult.match_id.in_(match_ids))
            results = {r.match_id: r for r in (await db_session.execute(result_stmt)).scalars()}

            completed_ids = [m.id for m in matches if m.status == "completed"]
            if completed_ids:
                partner_stmt = select(MatchParticipant.user_id).where(
                    MatchParticipant.match_id.in_(completed_ids),
                    MatchParticipant.user_id != user_id,
                )
                co_players.update((await db_session.execute(partner_stmt)).scalars().all())

        total = len(matches)
        completed = sum(1 for m in matches if m.status == "completed")
        cancelled = sum(1 for m in matches if m.status == "cancelled")
        wins = sum(1 for r in results.values() if r.winner_id == user_id)
        losses = sum(1 for r in results.values() if r.loser_id == user_id)
        decided = wins + losses
        durations = [
            m.duration_minutes
            for m in matches
            if m.status == "completed" and m.duration_minutes is not None
        ]

        most_played_with = []
        if co_players:
            top = co_players.most_common(MOST_PLAYED_WITH_LIMIT)
            name_stmt = select(User.id, User.display_name).where(
                User.id.in_([uid for uid, _ in top])
            )
            names = dict((await db_session.execute(name_stmt)).all())
            most_played_with = [
                {"user_id": uid, "display_name": names.get(uid, ""), "match_count": count}
                for uid, count in top
            ]

        recent = await self._match_history(
            user_id, db_session, RECENT_MATCH_LIMIT, 0, True, matches=matches, results=results
        )
        progression = await self.reputation_service.get_skill_level_history(user_id, db_session)

        return {
            "user_id": user_id,
            "total_matches": total,
            "completed_matches": completed,
            "cancelled_matches": cancelled,
            "wins": wins,
            "losses": losses,
            "win_rate": round(wins / decided * 100.0, 2) if decided else 0.0,
            "attendance_rate": round(completed / total * 100.0, 2) if total else 0.0,
            "average_duration_minutes": (
                round(sum(durations) / len(durations), 1) if durations else None
            ),
            "most_played_with": most_played_with,
            "recent_matches": recent,
            "monthly_stats": await self._monthly_stats(user_id, matches, results, db_session),
            "skill_progression": [
                {
                    "old_level": r.old_level,
                    "new_level": r.new_level,
                    "reason": r.reason,
                    "created_at": r.created_at,
                }
                for r in progression
            ],
        }

    async def _monthly_stats(
        self,
        user_id: uuid.UUID,
        matches: list[Match],
        results: dict[uuid.UUID, MatchResult],
        db_session: AsyncSession,
    ) -> list[dict[str, Any]]:
        keys = _month_keys(utcnow().date(), MONTHS_OF_HISTORY)
        buckets = {
            key: {"month": key, "total_matches": 0, "completed_matches": 0, "wins": 0, "losses": 0}
            for key in keys
        }

        for match in matches:
            key = ensure_utc(match.created_at).strftime("%Y-%m")
            if key not in buckets:
                continue
            bucket = buckets[key]
            bucket["total_matches"] += 1
            if match.status == "completed":
                bucket["completed_matches"] += 1
            result = results.get(match.id)
            if result is not None:
                if result.winner_id == user_id:
                    bucket["wins"] += 1
                elif result.loser_id == user_id:
                    bucket["losses"] += 1

        review_stmt = select(BehaviorReview.rating, BehaviorReview.created_at).where(
            BehaviorReview.user_id == user_id
        )
        ratings: dict[str, list[int]] = {}
        for rating, created_at in (await db_session.execute(review_stmt)).all():
            ratings.setdefault(ensure_utc(created_at).strftime("%Y-%m"), []).append(rating)

        monthly = []
        for key in keys:
            bucket = buckets[key]
            decided = bucket["wins"] + bucket["losses"]
            month_ratings = ratings.get(key)
            monthly.append(
                {
                    **bucket,
                    "win_rate": round(bucket["wins"] / decided * 100.0, 2) if decided else 0.0,
                    "average_rating": (
                        round(sum(month_ratings) / len(month_ratings), 2) if month_ratings else None
                    ),
                }
            )
        return monthly

    async def _match_history(
        self,
        user_id: uuid.UUID,
        db_session: AsyncSession,
        limit: int,
        offset: int,
        show_outcome: bool,
        matches: list[Match] | None = None,
        results: dict[uuid.UUID, MatchResult] | None = None,
    ) -> list[dict[str, Any]]:
        if matches is None:
            stmt = (
                select(Match)
                .join(MatchParticipant, MatchParticipant.match_id == Match.id)
                .where(MatchParticipant.user_id == user_id)
                .order_by(Match.created_at.desc(), Match.id)
                .limit(limit)
                .offset(offset)
            )
            page = list((await db_session.execute(stmt)).scalars().all())
        else:
            page = matches[offset:offset + limit]

        if not page:
            return []

        page_ids = [m.id for m in page]
        if results is None:
            result_stmt = select(MatchResult).where(MatchResult.match_id.in_(page_ids))
            results = {r.match_id: r for r in (await db_session.execute(result_stmt)).scalars()}

        opponent_stmt = select(MatchParticipant.match_id, MatchParticipant.user_id).where(
            MatchParticipant.match_id.in_(page_ids),
            MatchParticipant.user_id != user_id,
        )
        opponents: dict[uuid.UUID, list[uuid.UUID]] = {}
        for match_id, other_id in (await db_session.execute(opponent_stmt)).all():
            opponents.setdefault(match_id, []).append(other_id)

        history = []
        for match in page:
            result = results.get(match.id)
            outcome = None
            if show_outcome and result is not None:
                if result.winner_id == user_id:
                    outcome = "win"
                elif result.loser_id == user_id:
                    outcome = "loss"
            history.append(
                {
                    "match_id": match.id,
                    "match_type": match.match_type,
                    "status": match.status,
                    "opponent_ids": sorted(opponents.get(match.id, []), key=str),
                    "result": outcome,
                    "score": result.score if result is not None else None,
                    "scheduled_at": match.scheduled_at,
                    "completed_at": match.completed_at,
                    "created_at": match.created_at,
                }
            )
        return history

    # ── Results ───────────────────────────────────────────────────────────

    async def record_match_result(
        self,
        match_id: uuid.UUID,
        winner_id: uuid.UUID,
        loser_id: uuid.UUID,
        score: str,
        recorded_by: uuid.UUID,
        db_session: AsyncSession,
    ) -> MatchResult:
        """Record the outcome of a match and mark it completed.

        Every check runs before any write, so a rejected call leaves no
        partial state.  Attendance for each participant is then updated
        best-effort inside its own savepoint.

        Raises
        ------
        NotFound
            Unknown match.
        NotParticipant
            ``recorded_by``, ``winner_id`` or ``loser_id`` did not play.
        ValidationError
            Winner and loser are the same player, or the score is empty.
        Conflict
            The match already has a result.
        """
        log = logger.bind(match_id=str(match_id), recorded_by=str(recorded_by))

        match = (
            await db_session.execute(
                select(Match).where(Match.id == match_id).with_for_update()
            )
        ).scalar_one_or_none()
        if match is None:
            raise NotFound(f"Match {match_id} not found")

        participant_ids = set(
            (
                await db_session.execute(
                    select(MatchParticipant.user_id).where(MatchParticipant.match_id == match_id)
                )
            ).scalars().all()
        )
        for role, uid in (("recorder", recorded_by), ("winner", winner_id), ("loser", loser_id)):
            if uid not in participant_ids:
                log.warning("record_result_rejected", reason=f"{role}_not_participant")
                raise NotParticipant(f"The {role} is not a participant of match {match_id}")

        if winner_id == loser_id:
            raise ValidationError("Winner and loser must be different players")
        if not score or not score.strip():
            raise ValidationError("Score must not be empty")
        if match.status == "cancelled":
            raise ValidationError("Cannot record a result for a cancelled match")

        existing = (
            await db_session.execute(select(MatchResult.id).where(MatchResult.match_id == match_id))
        ).first()
        if existing is not None:
            raise Conflict(f"Match {match_id} already has a result")

        result = MatchResult(
            match_id=match_id,
            winner_id=winner_id,
            loser_id=loser_id,
            score=score.strip(),
            recorded_by=recorded_by,
            is_confirmed=False,
            confirmed_by=[],
        )
        db_session.add(result)

        now = utcnow()
        match.status = "completed"
        match.completed_at = now
        if match.started_at is not None and match.duration_minutes is None:
            match.duration_minutes = int(
                (now - ensure_utc(match.started_at)).total_seconds() // 60
            )
        await db_session.flush()
        log.info("match_result_recorded", result_id=str(result.id))

        for uid in sorted(participant_ids, key=str):
            try:
                async with db_session.begin_nested():
                    await self.reputation_service.update_attendance_rate(
                        uid, "completed", db_session
                    )
            except Exception as exc:
                log.warning(
                    "reputation_update_failed",
                    user_id=str(uid),
                    error=str(exc),
                )

        for uid in sorted(participant_ids - {recorded_by}, key=str):
            await self.notification_service.create_notification(
                db_session,
                user_id=uid,
                notification_type="result_recorded",
                title="Match result recorded",
                message=f"A result ({result.score}) was recorded. Please confirm it.",
                data={"match_id": str(match_id), "result_id": str(result.id)},
            )

        return result

    async def confirm_match_result(
        self,
        result_id: uuid.UUID,
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> MatchResult:
        """Add ``user_id`` to the confirmations; repeating it is a no-op."""
        result = (
            await db_session.execute(
                select(MatchResult).where(MatchResult.id == result_id).with_for_update()
            )
        ).scalar_one_or_none()
        if result is None:
            raise NotFound(f"Match result {result_id} not found")

        is_participant = (
            await db_session.execute(
                select(MatchParticipant.user_id).where(
                    MatchParticipant.match_id == result.match_id,
                    MatchParticipant.user_id == user_id,
                )
            )
        ).first()
        if is_participant is None:
            raise NotParticipant(f"User {user_id} is not a participant of this match")

        confirmed_by = list(result.confirmed_by or [])
        if str(user_id) in confirmed_by:
            return result

        # Reassign so the JSON column is flagged dirty.
        result.confirmed_by = [*confirmed_by, str(user_id)]
        if len(result.confirmed_by) >= self.required_confirmations:
            result.is_confirmed = True
        await db_session.flush()

        logger.info(
            "match_result_confirmed",
            result_id=str(result_id),
            user_id=str(user_id),
            confirmations=len(result.confirmed_by),
            is_confirmed=result.is_confirmed,
        )
        return result

    async def get_results_for_confirmation(
        self,
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> list[MatchResult]:
        """Unconfirmed results on the user's matches they have not confirmed."""
        stmt = (
            select(MatchResult)
            .join(MatchParticipant, MatchParticipant.match_id == MatchResult.match_id)
            .where(
                MatchParticipant.user_id == user_id,
                MatchResult.is_confirmed.is_(False),
            )
            .order_by(MatchResult.created_at.desc())
        )
        results = (await db_session.execute(stmt)).scalars().all()
        return [r for r in results if str(user_id) not in (r.confirmed_by or [])]

"""
Courtside — Reputation Service

Owns ``ReputationScore``: one rolling aggregate per player, never recomputed
from raw history on read.  Four sub-scores feed the overall figure:

  overall = attendance × 0.3 + punctuality × 0.2
          + skill_accuracy × 0.2 + behavior% × 0.3          (clamped 0-100)

where ``behavior% = (behavior_rating - 1) / 4 × 100``.

Punctuality, skill accuracy and behavior are exponential moving averages with
smoothing constant ``REPUTATION_EMA_ALPHA`` (0.1):

  new = old × (1 - α) + observation × α

Every mutation re-reads the player's row ``FOR UPDATE`` so two concurrent
updates for one player serialise instead of losing a write.  A fresh player
gets 100 / 100 / 100 / 5 → overall 100, created lazily on first access.

Skill level housekeeping also lives here: ``auto_adjust_skill_level`` nudges
a player's NTRP level toward what opponents observe, and every change is
appended to ``SkillLevelRecord``.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import ReputationWeights, get_settings
from app.database import ensure_utc, utcnow
from app.exceptions import DuplicateReview, NotFound, NotParticipant, ValidationError
from app.models.match import Match, MatchParticipant
from app.models.reputation import (
    BehaviorReview,
    PunctualityRecord,
    ReputationScore,
    SkillAccuracyRecord,
    SkillLevelRecord,
)
from app.models.user import PlayerProfile, User

logger = structlog.get_logger("courtside.reputation_service")

# ──────────────────────────────────────────────────────────────────────────────
# Constants
# ──────────────────────────────────────────────────────────────────────────────

MIN_NTRP = 1.0
MAX_NTRP = 7.0
MIN_BEHAVIOR = 1
MAX_BEHAVIOR = 5

ATTENDANCE_STATUSES = ("completed", "cancelled", "no_show")

LEADERBOARD_MIN_MATCHES = 5
HIGH_REPUTATION_THRESHOLD = 80.0
ACTIVE_WINDOW_DAYS = 30


# ──────────────────────────────────────────────────────────────────────────────
# Pure helpers
# ──────────────────────────────────────────────────────────────────────────────

def ema(old: float, observation: float, alpha: float) -> float:
    return old * (1.0 - alpha) + observation * alpha


def behavior_to_percent(rating: float) -> float:
    """Map a 1-5 behaviour rating onto 0-100."""
    return (rating - MIN_BEHAVIOR) / (MAX_BEHAVIOR - MIN_BEHAVIOR) * 100.0


def level_accuracy(reported: float, observed: float, max_spread: float) -> float:
    """100 when reported == observed, 0 once they are ``max_spread`` apart."""
    return 100.0 - min(abs(reported - observed) / max_spread, 1.0) * 100.0


def compute_overall_score(
    attendance_rate: float,
    punctuality_score: float,
    skill_accuracy: float,
    behavior_rating: float,
    weights: ReputationWeights | None = None,
) -> float:
    weights = weights or ReputationWeights()
    overall = (
        attendance_rate * weights.attendance
        + punctuality_score * weights.punctuality
        + skill_accuracy * weights.skill_accuracy
        + behavior_to_percent(behavior_rating) * weights.behavior
    )
    return max(0.0, min(100.0, overall))


def reputation_to_dict(score: ReputationScore) -> dict[str, Any]:
    return {
        "user_id": score.user_id,
        "attendance_rate": round(score.attendance_rate, 2),
        "punctuality_score": round(score.punctuality_score, 2),
        "skill_accuracy": round(score.skill_accuracy, 2),
        "behavior_rating": round(score.behavior_rating, 2),
        "behavior_score": round(behavior_to_percent(score.behavior_rating), 2),
        "total_matches": score.total_matches,
        "completed_matches": score.completed_matches,
        "cancelled_matches": score.cancelled_matches,
        "overall_score": round(score.overall_score, 2),
        "updated_at": score.updated_at,
    }


class ReputationService:
    """Rolling reputation aggregate and skill-level adjustments."""

    def __init__(self, weights: ReputationWeights | None = None) -> None:
        settings = get_settings()
        self.weights = weights or ReputationWeights()
        self.alpha: float = settings.REPUTATION_EMA_ALPHA
        self.max_skill_spread: float = settings.MAX_SKILL_SPREAD
        self.auto_adjust_window: int = settings.AUTO_ADJUST_WINDOW
        self.auto_adjust_min_records: int = settings.AUTO_ADJUST_MIN_RECORDS
        self.auto_adjust_threshold: float = settings.AUTO_ADJUST_THRESHOLD
        self.auto_adjust_damping: float = settings.AUTO_ADJUST_DAMPING

    # ── Reads ─────────────────────────────────────────────────────────────

    async def get_reputation_score(
        self,
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> ReputationScore:
        """Return the stored row, creating the default one on first access."""
        return await self._get_or_create(user_id, db_session, lock=False)

    async def get_reputation_history(
        self,
        user_id: uuid.UUID,
        db_session: AsyncSession,
        limit: int = 20,
    ) -> dict[str, Any]:
        """Latest raw observations behind each sub-score."""
        score = await self.get_reputation_score(user_id, db_session)

        async def _latest(model):
            stmt = (
                select(model)
                .where(model.user_id == user_id)
                .order_by(model.created_at.desc())
                .limit(limit)
            )
            return list((await db_session.execute(stmt)).scalars().all())

        punctuality = await _latest(PunctualityRecord)
        skill = await _latest(SkillAccuracyRecord)
        reviews = await _latest(BehaviorReview)

        return {
            "reputation": reputation_to_dict(score),
            "punctuality_records": [
                {
                    "match_id": r.match_id,
                    "is_on_time": r.is_on_time,
                    "delay_minutes": r.delay_minutes,
                    "created_at": r.created_at,
                }
                for r in punctuality
            ],
            "skill_accuracy_records": [
                {
                    "match_id": r.match_id,
                    "reported_level": r.reported_level,
                    "observed_level": r.observed_level,
                    "accuracy": round(r.accuracy, 2),
                    "created_at": r.created_at,
                }
                for r in skill
            ],
            "behavior_reviews": [
                {
                    "match_id": r.match_id,
                    "rating": r.rating,
                    "tags": r.tags or [],
                    "created_at": r.created_at,
                }
                for r in reviews
            ],
        }

    async def get_leaderboard(
        self,
        db_session: AsyncSession,
        limit: int = 20,
        min_matches: int = LEADERBOARD_MIN_MATCHES,
    ) -> list[dict[str, Any]]:
        stmt = (
            select(ReputationScore, User.display_name)
            .join(User, User.id == ReputationScore.user_id)
            .where(
                ReputationScore.total_matches >= min_matches,
                User.is_active.is_(True),
            )
            .order_by(ReputationScore.overall_score.desc(), ReputationScore.user_id)
            .limit(limit)
        )
        rows = (await db_session.execute(stmt)).all()
        return [
            {
                "rank": position,
                "user_id": score.user_id,
                "display_name": display_name,
                "overall_score": round(score.overall_score, 2),
                "total_matches": score.total_matches,
            }
            for position, (score, display_name) in enumerate(rows, start=1)
        ]

    async def get_reputation_stats(self, db_session: AsyncSession) -> dict[str, Any]:
        """Platform-wide aggregates for the admin dashboard."""
        active_since = utcnow() - timedelta(days=ACTIVE_WINDOW_DAYS)
        stmt = select(
            func.count(ReputationScore.id),
            func.avg(ReputationScore.overall_score),
            func.count(ReputationScore.id).filter(
                ReputationScore.overall_score >= HIGH_REPUTATION_THRESHOLD
            ),
            func.count(ReputationScore.id).filter(
                ReputationScore.updated_at >= active_since
            ),
        )
        total, average, high, active = (await db_session.execute(stmt)).one()
        return {
            "total_users": total,
            "average_score": round(float(average), 2) if average is not None else 0.0,
            "high_reputation_users": high,
            "active_users": active,
        }

    # ── Sub-score updates ─────────────────────────────────────────────────

    async def update_attendance_rate(
        self,
        user_id: uuid.UUID,
        status: str,
        db_session: AsyncSession,
    ) -> ReputationScore:
        """Count one match outcome and recompute the attendance rate.

        ``no_show`` only increments the total, so it lowers attendance
        without counting as a regular cancellation.
        """
        if status not in ATTENDANCE_STATUSES:
            raise ValidationError(
                f"status must be one of {', '.join(ATTENDANCE_STATUSES)}, got {status!r}"
            )

        score = await self._get_or_create(user_id, db_session, lock=True)
        score.total_matches += 1
        if status == "completed":
            score.completed_matches += 1
        elif status == "cancelled":
            score.cancelled_matches += 1
        score.attendance_rate = score.completed_matches / score.total_matches * 100.0

        await self._finalise(score, db_session)
        logger.info(
            "attendance_updated",
            user_id=str(user_id),
            status=status,
            attendance_rate=round(score.attendance_rate, 2),
        )
        return score

    async def update_punctuality_score(
        self,
        user_id: uuid.UUID,
        is_on_time: bool,
        delay_minutes: int,
        db_session: AsyncSession,
        match_id: uuid.UUID | None = None,
    ) -> ReputationScore:
        if delay_minutes < 0:
            raise ValidationError("delay_minutes must not be negative")

        score = await self._get_or_create(user_id, db_session, lock=True)
        db_session.add(
            PunctualityRecord(
                user_id=user_id,
                match_id=match_id,
                is_on_time=is_on_time,
                delay_minutes=delay_minutes,
            )
        )
        observation = 100.0 if is_on_time else 0.0
        score.punctuality_score = ema(score.punctuality_score, observation, self.alpha)

        await self._finalise(score, db_session)
        logger.info(
            "punctuality_updated",
            user_id=str(user_id),
            is_on_time=is_on_time,
            delay_minutes=delay_minutes,
            punctuality_score=round(score.punctuality_score, 2),
        )
        return score

    async def update_skill_accuracy(
        self,
        user_id: uuid.UUID,
        reported_level: float,
        observed_level: float,
        db_session: AsyncSession,
        match_id: uuid.UUID | None = None,
    ) -> ReputationScore:
        """Store one reported-vs-observed observation and smooth it in."""
        for label, level in (("reported_level", reported_level), ("observed_level", observed_level)):
            if not MIN_NTRP <= level <= MAX_NTRP:
                raise ValidationError(
                    f"{label} must be between {MIN_NTRP} and {MAX_NTRP}, got {level}"
                )

        accuracy = level_accuracy(reported_level, observed_level, self.max_skill_spread)

        score = await self._get_or_create(user_id, db_session, lock=True)
        db_session.add(
            SkillAccuracyRecord(
                user_id=user_id,
                match_id=match_id,
                reported_level=reported_level,
                observed_level=observed_level,
                accuracy=accuracy,
            )
        )
        score.skill_accuracy = ema(score.skill_accuracy, accuracy, self.alpha)

        await self._finalise(score, db_session)
        logger.info(
            "skill_accuracy_updated",
            user_id=str(user_id),
            reported=reported_level,
            observed=observed_level,
            accuracy=round(accuracy, 2),
            skill_accuracy=round(score.skill_accuracy, 2),
        )
        return score

    async def update_behavior_rating(
        self,
        user_id: uuid.UUID,
        rating: int,
        db_session: AsyncSession,
        reviewer_id: uuid.UUID | None = None,
        match_id: uuid.UUID | None = None,
        comment: str | None = None,
        tags: list[str] | None = None,
    ) -> ReputationScore:
        """Blend a 1-5 behaviour rating into the stored average.

        With a ``reviewer_id`` the review is stored and limited to one per
        (reviewer, reviewee, match); a repeat raises ``DuplicateReview``.
        Blending on the 1-5 scale is equivalent to blending the 0-100
        rescale because the mapping is linear.
        """
        if not MIN_BEHAVIOR <= rating <= MAX_BEHAVIOR:
            raise ValidationError(
                f"rating must be between {MIN_BEHAVIOR} and {MAX_BEHAVIOR}, got {rating}"
            )
        if reviewer_id is not None and reviewer_id == user_id:
            raise ValidationError("Players cannot review themselves")

        score = await self._get_or_create(user_id, db_session, lock=True)

        if reviewer_id is not None:
            stmt = select(BehaviorReview.id).where(
                BehaviorReview.reviewer_id == reviewer_id,
                BehaviorReview.user_id == user_id,
                BehaviorReview.match_id.is_(None)
                if match_id is None
                else BehaviorReview.match_id == match_id,
            )
            if (await db_session.execute(stmt)).first() is not None:
                raise DuplicateReview("This player was already reviewed for this match")

            try:
                async with db_session.begin_nested():
                    db_session.add(
                        BehaviorReview(
                            user_id=user_id,
                            reviewer_id=reviewer_id,
                            match_id=match_id,
                            rating=rating,
                            comment=comment,
                            tags=tags or [],
                        )
                    )
            except IntegrityError as exc:
                raise DuplicateReview(
                    "This player was already reviewed for this match"
                ) from exc

        score.behavior_rating = ema(score.behavior_rating, float(rating), self.alpha)

        await self._finalise(score, db_session)
        logger.info(
            "behavior_rating_updated",
            user_id=str(user_id),
            reviewer_id=str(reviewer_id) if reviewer_id else None,
            rating=rating,
            behavior_rating=round(score.behavior_rating, 3),
        )
        return score

    async def update_reputation(
        self,
        user_id: uuid.UUID,
        match_completed: bool,
        was_on_time: bool,
        db_session: AsyncSession,
        behavior_rating: int | None = None,
        reviewer_id: uuid.UUID | None = None,
        match_id: uuid.UUID | None = None,
    ) -> ReputationScore:
        """Apply one match's worth of signals in a single call."""
        if behavior_rating is not None and not MIN_BEHAVIOR <= behavior_rating <= MAX_BEHAVIOR:
            raise ValidationError(
                f"rating must be between {MIN_BEHAVIOR} and {MAX_BEHAVIOR}, got {behavior_rating}"
            )

        await self.update_attendance_rate(
            user_id, "completed" if match_completed else "cancelled", db_session
        )
        score = await self.update_punctuality_score(
            user_id, was_on_time, 0, db_session, match_id=match_id
        )
        if behavior_rating is not None:
            score = await self.update_behavior_rating(
                user_id,
                behavior_rating,
                db_session,
                reviewer_id=reviewer_id,
                match_id=match_id,
            )
        return score

    # ── Match-scoped recording ────────────────────────────────────────────

    async def record_match_attendance(
        self,
        user_id: uuid.UUID,
        match_id: uuid.UUID,
        status: str,
        db_session: AsyncSession,
    ) -> ReputationScore:
        await self._require_participant(match_id, user_id, db_session)
        return await self.update_attendance_rate(user_id, status, db_session)

    async def record_match_punctuality(
        self,
        user_id: uuid.UUID,
        match_id: uuid.UUID,
        arrival_time: datetime,
        db_session: AsyncSession,
    ) -> ReputationScore:
        """Derive on-time / delay from the match's scheduled start."""
        match = await self._require_participant(match_id, user_id, db_session)
        if match.scheduled_at is None:
            raise ValidationError("Match has no scheduled time")

        scheduled = ensure_utc(match.scheduled_at)
        arrival_time = ensure_utc(arrival_time)

        is_on_time = arrival_time <= scheduled
        delay_minutes = 0 if is_on_time else int((arrival_time - scheduled).total_seconds() // 60)
        return await self.update_punctuality_score(
            user_id, is_on_time, delay_minutes, db_session, match_id=match_id
        )

    async def require_co_participants(
        self,
        match_id: uuid.UUID,
        reporter_id: uuid.UUID,
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> Match:
        """Only someone who played the match may report on a player in it."""
        match = await self._require_participant(match_id, reporter_id, db_session)
        if user_id != reporter_id:
            await self._require_participant(match_id, user_id, db_session)
        return match

    # ── Skill level ───────────────────────────────────────────────────────

    async def auto_adjust_skill_level(
        self,
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> SkillLevelRecord | None:
        """Nudge the NTRP level toward what opponents observe.

        Looks at the latest ``AUTO_ADJUST_WINDOW`` accuracy records.  With
        fewer than ``AUTO_ADJUST_MIN_RECORDS`` nothing happens.  Otherwise,
        when ``|mean(observed) - current| > AUTO_ADJUST_THRESHOLD`` the level
        moves ``AUTO_ADJUST_DAMPING`` of the way toward the mean, clamped to
        [1.0, 7.0].

        Returns
        -------
        SkillLevelRecord | None
            The appended audit record, or ``None`` for a no-op.
        """
        stmt = (
            select(SkillAccuracyRecord.observed_level)
            .where(SkillAccuracyRecord.user_id == user_id)
            .order_by(SkillAccuracyRecord.created_at.desc(), SkillAccuracyRecord.id)
            .limit(self.auto_adjust_window)
        )
        observed = list((await db_session.execute(stmt)).scalars().all())
        if len(observed) < self.auto_adjust_min_records:
            logger.debug(
                "auto_adjust_skipped",
                user_id=str(user_id),
                reason="insufficient_records",
                records=len(observed),
            )
            return None

        profile = await self._locked_profile(user_id, db_session)
        if profile.ntrp_level is None:
            return None

        suggested = sum(observed) / len(observed)
        current = profile.ntrp_level
        diff = suggested - current
        if abs(diff) <= self.auto_adjust_threshold:
            return None

        new_level = max(MIN_NTRP, min(MAX_NTRP, current + diff * self.auto_adjust_damping))
        new_level = round(new_level, 2)
        record = await self._apply_level_change(
            profile,
            new_level,
            "auto_adjustment",
            db_session,
            note=f"suggested {suggested:.2f} from {len(observed)} observations",
        )
        logger.info(
            "skill_level_auto_adjusted",
            user_id=str(user_id),
            old_level=current,
            new_level=new_level,
            suggested=round(suggested, 2),
        )
        return record

    async def manually_adjust_skill_level(
        self,
        user_id: uuid.UUID,
        new_level: float,
        db_session: AsyncSession,
        note: str | None = None,
    ) -> SkillLevelRecord:
        if not MIN_NTRP <= new_level <= MAX_NTRP:
            raise ValidationError(
                f"NTRP level must be between {MIN_NTRP} and {MAX_NTRP}, got {new_level}"
            )
        profile = await self._locked_profile(user_id, db_session)
        old_level = profile.ntrp_level
        record = await self._apply_level_change(
            profile, new_level, "manual", db_session, note=note
        )
        logger.info(
            "skill_level_manually_adjusted",
            user_id=str(user_id),
            old_level=old_level,
            new_level=new_level,
        )
        return record

    async def get_skill_level_history(
        self,
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> list[SkillLevelRecord]:
        stmt = (
            select(SkillLevelRecord)
            .where(SkillLevelRecord.user_id == user_id)
            .order_by(SkillLevelRecord.created_at, SkillLevelRecord.id)
        )
        return list((await db_session.execute(stmt)).scalars().all())

    # ── Batch jobs ────────────────────────────────────────────────────────

    async def run_auto_adjust_batch(self, db_session: AsyncSession) -> dict[str, int]:
        """Re-run ``auto_adjust_skill_level`` for every profiled player.

        Each player runs in its own savepoint; one failure is logged and the
        batch moves on.  Safe to repeat: an adjusted level converges and stops
        moving once it is within the threshold.
        """
        stmt = (
            select(PlayerProfile.user_id)
            .where(PlayerProfile.ntrp_level.is_not(None))
            .order_by(PlayerProfile.user_id)
        )
        user_ids = list((await db_session.execute(stmt)).scalars().all())

        adjusted = 0
        failed = 0
        for user_id in user_ids:
            try:
                async with db_session.begin_nested():
                    if await self.auto_adjust_skill_level(user_id, db_session) is not None:
                        adjusted += 1
            except Exception:
                failed += 1
                logger.exception("auto_adjust_failed", user_id=str(user_id))

        summary = {"checked": len(user_ids), "adjusted": adjusted, "failed": failed}
        logger.info("auto_adjust_batch_complete", **summary)
        return summary

    async def recalculate_all_scores(self, db_session: AsyncSession) -> int:
        """Recompute ``overall_score`` for every row from its sub-scores."""
        result = await db_session.execute(select(ReputationScore).with_for_update())
        scores = result.scalars().all()
        for score in scores:
            score.overall_score = self._overall(score)
        await db_session.flush()
        logger.info("reputation_scores_recalculated", count=len(scores))
        return len(scores)

    # ── Internals ─────────────────────────────────────────────────────────

    def _overall(self, score: ReputationScore) -> float:
        return compute_overall_score(
            score.attendance_rate,
            score.punctuality_score,
            score.skill_accuracy,
            score.behavior_rating,
            self.weights,
        )

    async def _finalise(self, score: ReputationScore, db_session: AsyncSession) -> None:
        score.punctuality_score = max(0.0, min(100.0, score.punctuality_score))
        score.skill_accuracy = max(0.0, min(100.0, score.skill_accuracy))
        score.behavior_rating = max(float(MIN_BEHAVIOR), min(float(MAX_BEHAVIOR), score.behavior_rating))
        score.overall_score = self._overall(score)
        score.updated_at = utcnow()
        await db_session.flush()

    async def _get_or_create(
        self,
        user_id: uuid.UUID,
        db_session: AsyncSession,
        lock: bool,
    ) -> ReputationScore:
        stmt = select(ReputationScore).where(ReputationScore.user_id == user_id)
        if lock:
            stmt = stmt.with_for_update()
        score = (await db_session.execute(stmt)).scalar_one_or_none()
        if score is not None:
            return score

        user_exists = (
            await db_session.execute(select(User.id).where(User.id == user_id))
        ).first()
        if user_exists is None:
            raise NotFound(f"User {user_id} not found")

        fresh = ReputationScore(
            user_id=user_id,
            attendance_rate=100.0,
            punctuality_score=100.0,
            skill_accuracy=100.0,
            behavior_rating=float(MAX_BEHAVIOR),
            total_matches=0,
            completed_matches=0,
            cancelled_matches=0,
        )
        fresh.overall_score = self._overall(fresh)
        try:
            async with db_session.begin_nested():
                db_session.add(fresh)
            logger.info("reputation_row_created", user_id=str(user_id))
            return fresh
        except IntegrityError:
            # Another transaction created it first.
            stmt = select(ReputationScore).where(ReputationScore.user_id == user_id)
            if lock:
                stmt = stmt.with_for_update()
            return (await db_session.execute(stmt)).scalar_one()

    async def _locked_profile(
        self,
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> PlayerProfile:
        stmt = (
            select(PlayerProfile)
            .where(PlayerProfile.user_id == user_id)
            .with_for_update()
        )
        profile = (await db_session.execute(stmt)).scalar_one_or_none()
        if profile is None:
            raise NotFound(f"Player profile for user {user_id} not found")
        return profile

    async def _apply_level_change(
        self,
        profile: PlayerProfile,
        new_level: float,
        reason: str,
        db_session: AsyncSession,
        note: str | None = None,
        match_id: uuid.UUID | None = None,
    ) -> SkillLevelRecord:
        record = SkillLevelRecord(
            user_id=profile.user_id,
            old_level=profile.ntrp_level,
            new_level=new_level,
            reason=reason,
            note=note,
            match_id=match_id,
        )
        profile.ntrp_level = new_level
        db_session.add(record)
        await db_session.flush()
        return record

    async def _require_participant(
        self,
        match_id: uuid.UUID,
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> Match:
        match = await db_session.get(Match, match_id)
        if match is None:
            raise NotFound(f"Match {match_id} not found")
        stmt = select(MatchParticipant.user_id).where(
            MatchParticipant.match_id == match_id,
            MatchParticipant.user_id == user_id,
        )
        if (await db_session.execute(stmt)).first() is None:
            raise NotParticipant(f"User {user_id} is not a participant of match {match_id}")
        return match

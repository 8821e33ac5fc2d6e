"""
Courtside — Multi-Criteria Matching Engine

Pipeline for a single request:
  1. Hard filters — self / inactive, NTRP range, max distance, gender,
     minimum reputation.  Each eliminates before any scoring happens.
  2. Scoring — weighted sum of per-factor sub-scores, each in [0, 1]:
       skill       1 - min(|Δntrp| / MAX_SKILL_SPREAD, 1)
       distance    1 - min(km / max_considered_km, 1)
       preference  fraction of requested tags the candidate carries
       age         1 inside range, linear decay to 0 at AGE_TOLERANCE_YEARS
       reputation  overall_score / 100
  3. Ranking — score desc, reputation desc, last login desc, user id asc.

Default weights: skill=0.30, distance=0.25, preference=0.15, age=0.10,
reputation=0.20.  When the requester asked for no preference tags the
preference factor is dropped and the remaining weights are renormalised.

Missing data never disqualifies at scoring time: an unknown level, hidden
location or unknown age contributes a neutral 0.5.

Random discovery reuses the same filters and scores, then samples without
replacement with probability proportional to ``max(score, SAMPLING_EPSILON)``.
"""

from __future__ import annotations

import math
import random
import uuid
from datetime import date, datetime, timezone
from typing import Iterable, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import MatchingWeights, get_settings
from app.exceptions import NotFound
from app.models.reputation import ReputationScore
from app.models.user import PlayerProfile, User
from app.schemas.matching import (
    CandidateProfile,
    MatchingCriteria,
    MatchingFactors,
    MatchingResult,
)

logger = structlog.get_logger("courtside.matching_service")

# ──────────────────────────────────────────────────────────────────────────────
# Constants
# ──────────────────────────────────────────────────────────────────────────────

EARTH_RADIUS_KM = 6371.0
NEUTRAL_SCORE = 0.5

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


# ──────────────────────────────────────────────────────────────────────────────
# Pure helpers
# ──────────────────────────────────────────────────────────────────────────────

def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two coordinates, in kilometres."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(min(1.0, a)))


def age_from_birth_date(birth_date: date | None, today: date | None = None) -> int | None:
    if birth_date is None:
        return None
    today = today or date.today()
    age = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        age -= 1
    return age


def _as_utc(value: datetime | None) -> datetime:
    if value is None:
        return _EPOCH
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _pair_distance(
    requester: CandidateProfile, candidate: CandidateProfile
) -> float | None:
    if not (requester.has_visible_location and candidate.has_visible_location):
        return None
    return haversine_km(
        requester.latitude,
        requester.longitude,
        candidate.latitude,
        candidate.longitude,
    )


def _window_matches(window_tag: str, preferred_times: Iterable[str]) -> bool:
    """``weekend_morning`` is satisfied by ``weekend_morning`` or a bare
    ``morning``; a bare ``morning`` by any ``*_morning`` entry."""
    time_of_day = window_tag.rsplit("_", 1)[-1]
    for slot in preferred_times:
        if slot == window_tag or slot == time_of_day:
            return True
        if window_tag == time_of_day and slot.endswith(f"_{time_of_day}"):
            return True
    return False


class MatchingService:
    """Filter, score, rank and sample tennis partner candidates.

    The scoring half is pure (operates on ``CandidateProfile`` snapshots) so
    it can be unit-tested without a database; ``find_matches`` and
    ``find_random_matches`` add the candidate-pool loading around it.
    """

    def __init__(self, weights: MatchingWeights | None = None) -> None:
        settings = get_settings()
        self.weights: MatchingWeights = weights or settings.matching_weights
        self.max_skill_spread: float = settings.MAX_SKILL_SPREAD
        self.default_max_distance_km: float = settings.DEFAULT_MAX_DISTANCE_KM
        self.age_tolerance_years: float = settings.AGE_TOLERANCE_YEARS
        self.sampling_epsilon: float = settings.SAMPLING_EPSILON
        self.random_seed: int | None = settings.MATCHING_RANDOM_SEED
        self.candidate_pool_limit: int = settings.CANDIDATE_POOL_LIMIT

        logger.info(
            "matching_service_initialised",
            weights=self.weights.as_dict(),
            max_skill_spread=self.max_skill_spread,
            default_max_distance_km=self.default_max_distance_km,
        )

    # ── Public API ────────────────────────────────────────────────────────

    async def find_matches(
        self,
        requester_id: uuid.UUID,
        criteria: MatchingCriteria,
        db_session: AsyncSession,
        limit: int | None = None,
        weights: MatchingWeights | None = None,
    ) -> list[MatchingResult]:
        """Return the top ``limit`` ranked candidates for ``requester_id``.

        Parameters
        ----------
        requester_id:
            UUID of the requesting player.
        criteria:
            Pre-validated matching criteria.
        db_session:
            Active SQLAlchemy async session.
        limit:
            Maximum number of results; defaults to ``criteria.limit``.
        weights:
            Optional override of the configured weight vector.

        Returns
        -------
        list[MatchingResult]
            Ranked results; empty when nothing survives filtering.
        """
        log = logger.bind(requester_id=str(requester_id))
        log.info("find_matches_start")

        requester, pool = await self._load_pool(requester_id, db_session)
        eligible = self.filter_candidates(requester, pool, criteria)
        results = [
            self.calculate_matching_score(requester, candidate, criteria, weights)
            for candidate in eligible
        ]
        ranked = self.rank_candidates(results)[: limit or criteria.limit]

        log.info(
            "find_matches_complete",
            pool_size=len(pool),
            eligible=len(eligible),
            returned=len(ranked),
        )
        return ranked

    async def find_random_matches(
        self,
        requester_id: uuid.UUID,
        criteria: MatchingCriteria,
        count: int,
        db_session: AsyncSession,
        weights: MatchingWeights | None = None,
        rng: random.Random | None = None,
    ) -> list[MatchingResult]:
        """Sample ``count`` candidates for card discovery."""
        log = logger.bind(requester_id=str(requester_id), count=count)
        log.info("find_random_matches_start")

        requester, pool = await self._load_pool(requester_id, db_session)
        results = self.generate_random_matches(
            requester, pool, criteria, count, weights=weights, rng=rng
        )

        log.info("find_random_matches_complete", returned=len(results))
        return results

    # ── Filtering ─────────────────────────────────────────────────────────

    def filter_candidates(
        self,
        requester: CandidateProfile,
        candidates: Sequence[CandidateProfile],
        criteria: MatchingCriteria,
    ) -> list[CandidateProfile]:
        """Apply the hard filters in order; input order is preserved."""
        gender = (criteria.gender or "").lower()
        check_gender = gender not in ("", "any")

        kept: list[CandidateProfile] = []
        for candidate in candidates:
            if candidate.user_id == requester.user_id or not candidate.is_active:
                continue

            if criteria.ntrp_range is not None:
                if candidate.ntrp_level is None:
                    continue
                if not criteria.ntrp_range.contains(candidate.ntrp_level):
                    continue

            if criteria.max_distance_km is not None:
                distance = _pair_distance(requester, candidate)
                if distance is None:
                    if criteria.require_location:
                        continue
                elif distance > criteria.max_distance_km:
                    continue

            if check_gender and (candidate.gender or "").lower() != gender:
                continue

            if (
                criteria.min_reputation is not None
                and candidate.overall_reputation < criteria.min_reputation
            ):
                continue

            kept.append(candidate)

        logger.debug(
            "candidates_filtered",
            requester_id=str(requester.user_id),
            before=len(candidates),
            after=len(kept),
        )
        return kept

    # ── Scoring ───────────────────────────────────────────────────────────

    def calculate_matching_score(
        self,
        requester: CandidateProfile,
        candidate: CandidateProfile,
        criteria: MatchingCriteria,
        weights: MatchingWeights | None = None,
    ) -> MatchingResult:
        """Score one candidate against the requester.

        Factors that were not evaluated (only the preference factor can be
        skipped) are left out of the weighted sum and the remaining weights
        are renormalised so the result stays in [0, 1].
        """
        weights = weights or self.weights

        distance_km = _pair_distance(requester, candidate)
        factor_scores: dict[str, float | None] = {
            "skill": self._skill_score(requester, candidate),
            "distance": self._distance_score(distance_km, criteria),
            "preference": self._preference_score(candidate, criteria),
            "age": self._age_score(requester, candidate, criteria),
            "reputation": max(0.0, min(1.0, candidate.overall_reputation / 100.0)),
        }

        raw_weights = weights.as_dict()
        evaluated = {k: raw_weights[k] for k, v in factor_scores.items() if v is not None}
        total_weight = sum(evaluated.values())
        weights_used = {
            k: (w / total_weight if total_weight > 0 else 0.0)
            for k, w in evaluated.items()
        }

        score = sum(weights_used[k] * factor_scores[k] for k in weights_used)
        score = max(0.0, min(1.0, score))

        return MatchingResult(
            user_id=candidate.user_id,
            score=score,
            display_score=round(score * 100.0, 2),
            factors=MatchingFactors(
                skill=factor_scores["skill"],
                distance=factor_scores["distance"],
                preference=factor_scores["preference"],
                age=factor_scores["age"],
                reputation=factor_scores["reputation"],
                distance_km=round(distance_km, 3) if distance_km is not None else None,
                weights_used={k: round(v, 4) for k, v in weights_used.items()},
            ),
            candidate=candidate,
        )

    def _skill_score(
        self, requester: CandidateProfile, candidate: CandidateProfile
    ) -> float:
        if requester.ntrp_level is None or candidate.ntrp_level is None:
            return NEUTRAL_SCORE
        diff = abs(requester.ntrp_level - candidate.ntrp_level)
        return 1.0 - min(diff / self.max_skill_spread, 1.0)

    def _distance_score(
        self, distance_km: float | None, criteria: MatchingCriteria
    ) -> float:
        if distance_km is None:
            return NEUTRAL_SCORE
        max_considered = criteria.max_distance_km or self.default_max_distance_km
        return 1.0 - min(distance_km / max_considered, 1.0)

    def _preference_score(
        self, candidate: CandidateProfile, criteria: MatchingCriteria
    ) -> float | None:
        """Fraction of requested tags present on the candidate, or ``None``
        when the requester expressed no preference at all."""
        checks: list[bool] = []

        candidate_types = {t.lower() for t in candidate.play_types}
        for play_type in dict.fromkeys(t.lower() for t in criteria.play_types):
            checks.append(play_type in candidate_types)

        if criteria.playing_frequency is not None:
            checks.append(criteria.playing_frequency == candidate.playing_frequency)

        candidate_times = [t.lower() for t in candidate.preferred_times]
        for tag in dict.fromkeys(w.tag for w in criteria.availability):
            checks.append(_window_matches(tag, candidate_times))

        if not checks:
            return None
        return sum(checks) / len(checks)

    def _age_score(
        self,
        requester: CandidateProfile,
        candidate: CandidateProfile,
        criteria: MatchingCriteria,
    ) -> float:
        if candidate.age is None:
            return NEUTRAL_SCORE

        if criteria.age_range is not None:
            low, high = criteria.age_range.min_age, criteria.age_range.max_age
        elif requester.age is not None:
            low = requester.age - self.age_tolerance_years
            high = requester.age + self.age_tolerance_years
        else:
            return NEUTRAL_SCORE

        if low <= candidate.age <= high:
            return 1.0
        if self.age_tolerance_years <= 0:
            return 0.0

        gap = low - candidate.age if candidate.age < low else candidate.age - high
        return max(0.0, 1.0 - gap / self.age_tolerance_years)

    # ── Ranking & sampling ────────────────────────────────────────────────

    @staticmethod
    def rank_candidates(results: Iterable[MatchingResult]) -> list[MatchingResult]:
        """Deterministic total order over results.

        Score desc, then candidate reputation desc, then most recent login
        desc (never logged in sorts last), then user id asc.
        """
        return sorted(
            results,
            key=lambda r: (
                -r.score,
                -r.candidate.overall_reputation,
                -_as_utc(r.candidate.last_login_at).timestamp(),
                str(r.user_id),
            ),
        )

    def generate_random_matches(
        self,
        requester: CandidateProfile,
        candidates: Sequence[CandidateProfile],
        criteria: MatchingCriteria,
        count: int,
        weights: MatchingWeights | None = None,
        rng: random.Random | None = None,
    ) -> list[MatchingResult]:
        """Weighted sampling without replacement over eligible candidates.

        Parameters
        ----------
        count:
            Desired number of cards; capped at the number of eligible
            candidates.
        rng:
            Randomness source.  Defaults to a ``random.Random`` seeded with
            ``MATCHING_RANDOM_SEED`` (unseeded when that is unset).

        Returns
        -------
        list[MatchingResult]
            The sampled results, ranked.
        """
        if count <= 0:
            return []

        rng = rng or random.Random(self.random_seed)
        eligible = self.filter_candidates(requester, candidates, criteria)
        pool = [
            self.calculate_matching_score(requester, candidate, criteria, weights)
            for candidate in eligible
        ]
        # Fixed starting order so a seeded rng is reproducible.
        pool.sort(key=lambda r: str(r.user_id))

        picked: list[MatchingResult] = []
        while pool and len(picked) < count:
            sample_weights = [max(r.score, self.sampling_epsilon) for r in pool]
            threshold = rng.random() * sum(sample_weights)
            cumulative = 0.0
            index = len(pool) - 1
            for i, w in enumerate(sample_weights):
                cumulative += w
                if threshold < cumulative:
                    index = i
                    break
            picked.append(pool.pop(index))

        logger.debug(
            "random_matches_sampled",
            requester_id=str(requester.user_id),
            eligible=len(eligible),
            picked=len(picked),
        )
        return self.rank_candidates(picked)

    # ── Candidate pool ────────────────────────────────────────────────────

    async def _load_pool(
        self,
        requester_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> tuple[CandidateProfile, list[CandidateProfile]]:
        stmt = (
            select(User, PlayerProfile, ReputationScore.overall_score)
            .join(PlayerProfile, PlayerProfile.user_id == User.id)
            .outerjoin(ReputationScore, ReputationScore.user_id == User.id)
            .where(User.id == requester_id)
        )
        row = (await db_session.execute(stmt)).one_or_none()
        if row is None:
            raise NotFound(f"Player profile for user {requester_id} not found")
        requester = build_candidate_profile(*row)

        pool_stmt = (
            select(User, PlayerProfile, ReputationScore.overall_score)
            .join(PlayerProfile, PlayerProfile.user_id == User.id)
            .outerjoin(ReputationScore, ReputationScore.user_id == User.id)
            .where(User.is_active.is_(True), User.id != requester_id)
            .order_by(User.last_login_at.desc().nulls_last(), User.id)
            .limit(self.candidate_pool_limit)
        )
        rows = (await db_session.execute(pool_stmt)).all()
        pool = [build_candidate_profile(*r) for r in rows]
        return requester, pool


def build_candidate_profile(
    user: User,
    profile: PlayerProfile,
    overall_score: float | None,
) -> CandidateProfile:
    """Snapshot ORM rows into the scoring model.  A player without a
    reputation row scores as a fresh account (100)."""
    return CandidateProfile(
        user_id=user.id,
        display_name=user.display_name,
        ntrp_level=profile.ntrp_level,
        playing_style=profile.playing_style,
        playing_frequency=profile.playing_frequency,
        play_types=list(profile.play_types or []),
        preferred_times=list(profile.preferred_times or []),
        latitude=profile.latitude,
        longitude=profile.longitude,
        location_privacy=profile.location_privacy,
        gender=profile.gender,
        age=age_from_birth_date(profile.birth_date),
        overall_reputation=overall_score if overall_score is not None else 100.0,
        last_login_at=user.last_login_at,
        is_active=user.is_active,
    )

"""
Courtside — Reputation API

Reading a player's reputation goes through the owner's privacy settings;
the update endpoints feed individual observations into the rolling scores
and only accept reports from players who shared the match with the target.
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user_id
from app.database import get_db
from app.schemas.reputation import (
    AttendanceUpdate,
    BehaviorReviewCreate,
    LeaderboardEntry,
    MatchArrivalRequest,
    MatchAttendanceRequest,
    PunctualityUpdate,
    ReputationResponse,
    SkillAccuracyUpdate,
    UpdateReputationRequest,
)
from app.services.reputation_service import ReputationService, reputation_to_dict
from app.services.statistics_service import StatisticsService

logger = structlog.get_logger("courtside.api.reputation")

router = APIRouter()

_reputation_service = ReputationService()
_statistics_service = StatisticsService(reputation_service=_reputation_service)


@router.get(
    "/leaderboard",
    response_model=list[LeaderboardEntry],
    summary="Top players by overall reputation",
)
async def leaderboard(
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
) -> list[LeaderboardEntry]:
    rows = await _reputation_service.get_leaderboard(db, limit=limit)
    return [LeaderboardEntry(**row) for row in rows]


@router.get("/stats", summary="Platform-wide reputation aggregates")
async def reputation_stats(db: AsyncSession = Depends(get_db)) -> dict[str, Any]:
    return await _reputation_service.get_reputation_stats(db)


@router.post(
    "/attendance",
    response_model=ReputationResponse,
    summary="Record a match outcome for attendance",
)
async def update_attendance(
    body: AttendanceUpdate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> ReputationResponse:
    await _reputation_service.require_co_participants(body.match_id, user_id, body.user_id, db)
    score = await _reputation_service.update_attendance_rate(body.user_id, body.status, db)
    await db.commit()
    return ReputationResponse(**reputation_to_dict(score))


@router.post(
    "/punctuality",
    response_model=ReputationResponse,
    summary="Record whether a player arrived on time",
)
async def update_punctuality(
    body: PunctualityUpdate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> ReputationResponse:
    await _reputation_service.require_co_participants(body.match_id, user_id, body.user_id, db)
    score = await _reputation_service.update_punctuality_score(
        body.user_id, body.is_on_time, body.delay_minutes, db, match_id=body.match_id
    )
    await db.commit()
    return ReputationResponse(**reputation_to_dict(score))


@router.post(
    "/skill-accuracy",
    response_model=ReputationResponse,
    summary="Compare a player's reported level with the observed level",
)
async def update_skill_accuracy(
    body: SkillAccuracyUpdate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> ReputationResponse:
    await _reputation_service.require_co_participants(body.match_id, user_id, body.user_id, db)
    score = await _reputation_service.update_skill_accuracy(
        body.user_id, body.reported_level, body.observed_level, db, match_id=body.match_id
    )
    await db.commit()
    return ReputationResponse(**reputation_to_dict(score))


@router.post(
    "/matches/{match_id}/attendance",
    response_model=ReputationResponse,
    summary="Record your own attendance for a match you took part in",
)
async def record_match_attendance(
    match_id: uuid.UUID,
    body: MatchAttendanceRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> ReputationResponse:
    score = await _reputation_service.record_match_attendance(
        user_id, match_id, body.status, db
    )
    await db.commit()
    return ReputationResponse(**reputation_to_dict(score))


@router.post(
    "/matches/{match_id}/arrival",
    response_model=ReputationResponse,
    summary="Record your arrival time against the match's scheduled start",
)
async def record_match_arrival(
    match_id: uuid.UUID,
    body: MatchArrivalRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> ReputationResponse:
    score = await _reputation_service.record_match_punctuality(
        user_id, match_id, body.arrival_time, db
    )
    await db.commit()
    return ReputationResponse(**reputation_to_dict(score))


@router.post(
    "/behavior-review",
    response_model=ReputationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Rate another player's behaviour (1-5)",
)
async def create_behavior_review(
    body: BehaviorReviewCreate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> ReputationResponse:
    score = await _reputation_service.update_behavior_rating(
        body.user_id,
        body.rating,
        db,
        reviewer_id=user_id,
        match_id=body.match_id,
        comment=body.comment,
        tags=body.tags,
    )
    await db.commit()
    return ReputationResponse(**reputation_to_dict(score))


@router.get(
    "/{user_id}",
    response_model=ReputationResponse,
    summary="A player's reputation, subject to their privacy settings",
)
async def get_reputation(
    user_id: uuid.UUID,
    requester_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> ReputationResponse:
    score = await _statistics_service.get_reputation_with_privacy(user_id, requester_id, db)
    await db.commit()
    return ReputationResponse(**reputation_to_dict(score))


@router.put(
    "/{user_id}",
    response_model=ReputationResponse,
    summary="Apply a combined post-match reputation update",
)
async def update_reputation(
    user_id: uuid.UUID,
    body: UpdateReputationRequest,
    requester_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> ReputationResponse:
    await _reputation_service.require_co_participants(body.match_id, requester_id, user_id, db)
    score = await _reputation_service.update_reputation(
        user_id,
        body.match_completed,
        body.was_on_time,
        db,
        behavior_rating=body.behavior_rating,
        reviewer_id=requester_id,
        match_id=body.match_id,
    )
    await db.commit()
    return ReputationResponse(**reputation_to_dict(score))


@router.get("/{user_id}/history", summary="Raw observations behind each sub-score")
async def reputation_history(
    user_id: uuid.UUID,
    requester_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    history = await _statistics_service.get_reputation_history_with_privacy(
        user_id, requester_id, db
    )
    await db.commit()
    return history

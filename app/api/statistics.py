"""
Courtside — Statistics API

Privacy-aware statistics and history reads, match result recording and
confirmation, privacy settings and manual skill-level changes.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user_id
from app.database import get_db
from app.schemas.match import MatchResultResponse, RecordResultRequest
from app.schemas.reputation import (
    BehaviorReviewResponse,
    SkillLevelAdjustRequest,
    SkillLevelRecordResponse,
)
from app.schemas.statistics import (
    MatchHistoryItem,
    MatchStatistics,
    PrivacySettingsResponse,
    PrivacySettingsUpdate,
)
from app.services.notification_service import NotificationService
from app.services.reputation_service import ReputationService
from app.services.statistics_service import StatisticsService

logger = structlog.get_logger("courtside.api.statistics")

router = APIRouter()

_notification_service = NotificationService()
_reputation_service = ReputationService()
_statistics_service = StatisticsService(
    reputation_service=_reputation_service,
    notification_service=_notification_service,
)


# ── Privacy settings ──────────────────────────────────────────────────────────

@router.get("/privacy", response_model=PrivacySettingsResponse)
async def get_privacy_settings(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> PrivacySettingsResponse:
    settings = await _statistics_service.get_user_privacy_settings(user_id, db)
    await db.commit()
    return PrivacySettingsResponse.model_validate(settings)


@router.put("/privacy", response_model=PrivacySettingsResponse)
async def update_privacy_settings(
    body: PrivacySettingsUpdate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> PrivacySettingsResponse:
    settings = await _statistics_service.update_user_privacy_settings(
        user_id, body.model_dump(exclude_none=True), db
    )
    await db.commit()
    return PrivacySettingsResponse.model_validate(settings)


# ── Results ───────────────────────────────────────────────────────────────────

@router.post(
    "/matches/{match_id}/result",
    response_model=MatchResultResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record the result of a match you played in",
)
async def record_result(
    match_id: uuid.UUID,
    body: RecordResultRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> MatchResultResponse:
    result = await _statistics_service.record_match_result(
        match_id, body.winner_id, body.loser_id, body.score, user_id, db
    )
    await db.commit()
    await _notification_service.dispatch_pending(db)
    return MatchResultResponse.model_validate(result)


@router.post(
    "/results/{result_id}/confirm",
    response_model=MatchResultResponse,
    summary="Confirm a recorded result",
)
async def confirm_result(
    result_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> MatchResultResponse:
    result = await _statistics_service.confirm_match_result(result_id, user_id, db)
    await db.commit()
    return MatchResultResponse.model_validate(result)


@router.get(
    "/results/pending",
    response_model=list[MatchResultResponse],
    summary="Results awaiting your confirmation",
)
async def pending_results(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> list[MatchResultResponse]:
    results = await _statistics_service.get_results_for_confirmation(user_id, db)
    return [MatchResultResponse.model_validate(r) for r in results]


# ── Per-player reads ──────────────────────────────────────────────────────────

@router.get("/{user_id}", response_model=MatchStatistics)
async def get_statistics(
    user_id: uuid.UUID,
    requester_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> MatchStatistics:
    stats = await _statistics_service.get_user_match_statistics(user_id, requester_id, db)
    await db.commit()
    return MatchStatistics(**stats)


@router.get("/{user_id}/history", response_model=list[MatchHistoryItem])
async def get_match_history(
    user_id: uuid.UUID,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    requester_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> list[MatchHistoryItem]:
    history = await _statistics_service.get_user_match_history(
        user_id, requester_id, db, limit=limit, offset=offset
    )
    await db.commit()
    return [MatchHistoryItem(**item) for item in history]


@router.get("/{user_id}/skill-progression", response_model=list[SkillLevelRecordResponse])
async def get_skill_progression(
    user_id: uuid.UUID,
    requester_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> list[SkillLevelRecordResponse]:
    records = await _statistics_service.get_skill_level_progression(user_id, requester_id, db)
    await db.commit()
    return [SkillLevelRecordResponse.model_validate(r) for r in records]


@router.get("/{user_id}/behavior-reviews", response_model=list[BehaviorReviewResponse])
async def get_behavior_reviews(
    user_id: uuid.UUID,
    limit: int = Query(50, ge=1, le=200),
    requester_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> list[BehaviorReviewResponse]:
    reviews = await _statistics_service.get_behavior_reviews(
        user_id, requester_id, db, limit=limit
    )
    await db.commit()
    return [BehaviorReviewResponse.model_validate(r) for r in reviews]


@router.put(
    "/{user_id}/skill-level",
    response_model=SkillLevelRecordResponse,
    summary="Manually set a player's NTRP level",
)
async def adjust_skill_level(
    user_id: uuid.UUID,
    body: SkillLevelAdjustRequest,
    _requester_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> SkillLevelRecordResponse:
    record = await _reputation_service.manually_adjust_skill_level(
        user_id, body.new_level, db, note=body.note
    )
    await db.commit()
    return SkillLevelRecordResponse.model_validate(record)

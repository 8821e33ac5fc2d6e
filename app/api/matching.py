"""
Courtside — Matching API

Candidate discovery (ranked and sampled), swipe-style card actions and
match creation / lookup.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, status
from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user_id
from app.database import get_db
from app.exceptions import ValidationError
from app.schemas.match import CreateMatchRequest, MatchResponse
from app.schemas.matching import (
    CardActionRequest,
    CardHistoryResponse,
    CardInteractionResponse,
    CardMatchResult,
    FindMatchesRequest,
    MatchingCriteria,
    MatchingResult,
)
from app.services.card_service import CardService
from app.services.match_service import MatchService
from app.services.matching_service import MatchingService
from app.services.notification_service import NotificationService

logger = structlog.get_logger("courtside.api.matching")

router = APIRouter()

# ── Service singletons ────────────────────────────────────────────────────────

_matching_service: MatchingService | None = None
_notification_service = NotificationService()
_match_service = MatchService(_notification_service)
_card_service = CardService(_match_service, _notification_service)


def _get_matching_service() -> MatchingService:
    global _matching_service
    if _matching_service is None:
        _matching_service = MatchingService()
    return _matching_service


# ──────────────────────────────────────────────────────────────────────────────
# Discovery
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/find",
    response_model=list[MatchingResult],
    summary="Ranked candidates for the current player",
)
async def find_matches(
    body: FindMatchesRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> list[MatchingResult]:
    return await _get_matching_service().find_matches(
        user_id, body.criteria, db, limit=body.limit
    )


def random_match_criteria(
    max_distance_km: Optional[float] = Query(None, gt=0),
    min_ntrp: Optional[float] = Query(None, ge=1.0, le=7.0),
    max_ntrp: Optional[float] = Query(None, ge=1.0, le=7.0),
    playing_frequency: Optional[str] = Query(None),
    gender: Optional[str] = Query(None),
    min_reputation: Optional[float] = Query(None, ge=0, le=100),
    play_types: list[str] = Query([]),
    require_location: bool = Query(False),
) -> MatchingCriteria:
    """Build ``MatchingCriteria`` from query parameters; an open NTRP bound
    defaults to the end of the scale."""
    ntrp_range = None
    if min_ntrp is not None or max_ntrp is not None:
        ntrp_range = {
            "min_level": 1.0 if min_ntrp is None else min_ntrp,
            "max_level": 7.0 if max_ntrp is None else max_ntrp,
        }
    try:
        return MatchingCriteria(
            ntrp_range=ntrp_range,
            max_distance_km=max_distance_km,
            playing_frequency=playing_frequency,
            gender=gender,
            min_reputation=min_reputation,
            play_types=play_types,
            require_location=require_location,
        )
    except SchemaValidationError as exc:
        raise ValidationError(f"Invalid matching criteria: {exc.errors()[0]['msg']}") from exc


@router.get(
    "/random",
    response_model=list[MatchingResult],
    summary="Weighted random sample of candidates for card discovery",
)
async def random_matches(
    count: int = Query(10, ge=1, le=50),
    criteria: MatchingCriteria = Depends(random_match_criteria),
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> list[MatchingResult]:
    return await _get_matching_service().find_random_matches(user_id, criteria, count, db)


# ──────────────────────────────────────────────────────────────────────────────
# Cards
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/card-action",
    response_model=CardMatchResult,
    summary="Like, dislike or skip a player card",
)
async def card_action(
    body: CardActionRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> CardMatchResult:
    result = await _card_service.process_card_action(user_id, body.target_id, body.action, db)
    await db.commit()
    await _notification_service.dispatch_pending(db)
    return result


@router.get(
    "/card-history",
    response_model=CardHistoryResponse,
    summary="Card actions made by the current player",
)
async def card_history(
    action: Optional[str] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> CardHistoryResponse:
    items, total = await _card_service.get_card_history(
        user_id, db, action=action, limit=limit, offset=offset
    )
    return CardHistoryResponse(
        items=[CardInteractionResponse.model_validate(i) for i in items],
        total=total,
        limit=limit,
        offset=offset,
    )


# ──────────────────────────────────────────────────────────────────────────────
# Matches
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/matches",
    response_model=MatchResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a match and invite players",
)
async def create_match(
    body: CreateMatchRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> MatchResponse:
    match = await _match_service.create_match(
        user_id,
        body.participant_ids,
        db,
        match_type=body.match_type,
        court_id=body.court_id,
        scheduled_at=body.scheduled_at,
        notes=body.notes,
    )
    await db.commit()
    await _notification_service.dispatch_pending(db)
    return MatchResponse(**match)


@router.get(
    "/matches/{match_id}",
    response_model=MatchResponse,
    summary="Get a match the current player takes part in",
)
async def get_match(
    match_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> MatchResponse:
    match = await _match_service.get_match(match_id, db, requester_id=user_id)
    return MatchResponse(**match)

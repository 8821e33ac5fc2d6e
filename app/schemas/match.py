from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime
from typing import Literal, Optional


class CreateMatchRequest(BaseModel):
    participant_ids: list[UUID] = Field(min_length=1, max_length=3)
    match_type: Literal["casual", "practice", "tournament"] = "casual"
    court_id: Optional[UUID] = None
    scheduled_at: Optional[datetime] = None
    notes: Optional[str] = None


class MatchParticipantResponse(BaseModel):
    user_id: UUID
    role: str
    status: str

    model_config = {"from_attributes": True}


class MatchResponse(BaseModel):
    id: UUID
    match_type: str
    status: str
    court_id: Optional[UUID] = None
    scheduled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    participants: list[MatchParticipantResponse] = []
    chat_room_id: Optional[UUID] = None
    created_at: datetime


class RecordResultRequest(BaseModel):
    winner_id: UUID
    loser_id: UUID
    score: str = Field(min_length=1, max_length=64)


class MatchResultResponse(BaseModel):
    id: UUID
    match_id: UUID
    winner_id: UUID
    loser_id: UUID
    score: str
    recorded_by: UUID
    is_confirmed: bool
    confirmed_by: list[str] = []
    created_at: datetime

    model_config = {"from_attributes": True}

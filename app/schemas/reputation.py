from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime
from typing import Literal, Optional


class ReputationResponse(BaseModel):
    user_id: UUID
    attendance_rate: float
    punctuality_score: float
    skill_accuracy: float
    behavior_rating: float
    behavior_score: float
    total_matches: int
    completed_matches: int
    cancelled_matches: int
    overall_score: float
    updated_at: Optional[datetime] = None


class UpdateReputationRequest(BaseModel):
    match_completed: bool
    was_on_time: bool
    behavior_rating: Optional[int] = None
    match_id: UUID


class AttendanceUpdate(BaseModel):
    user_id: UUID
    match_id: UUID
    status: Literal["completed", "cancelled", "no_show"]


class PunctualityUpdate(BaseModel):
    user_id: UUID
    match_id: UUID
    is_on_time: bool
    delay_minutes: int = Field(0, ge=0)


class SkillAccuracyUpdate(BaseModel):
    user_id: UUID
    match_id: UUID
    reported_level: float
    observed_level: float


class BehaviorReviewCreate(BaseModel):
    user_id: UUID
    rating: int
    match_id: Optional[UUID] = None
    comment: Optional[str] = None
    tags: list[str] = []


class SkillLevelAdjustRequest(BaseModel):
    new_level: float
    note: Optional[str] = None


class SkillLevelRecordResponse(BaseModel):
    id: UUID
    old_level: Optional[float] = None
    new_level: float
    reason: str
    note: Optional[str] = None
    match_id: Optional[UUID] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class BehaviorReviewResponse(BaseModel):
    id: UUID
    reviewer_id: UUID
    match_id: Optional[UUID] = None
    rating: int
    comment: Optional[str] = None
    tags: Optional[list[str]] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: UUID
    display_name: str
    overall_score: float
    total_matches: int


class MatchAttendanceRequest(BaseModel):
    status: Literal["completed", "cancelled", "no_show"]


class MatchArrivalRequest(BaseModel):
    arrival_time: datetime

from pydantic import BaseModel
from uuid import UUID
from datetime import datetime
from typing import Optional


class PrivacySettingsResponse(BaseModel):
    show_reputation_score: bool
    show_match_history: bool
    show_win_loss_record: bool
    show_skill_progression: bool
    show_behavior_reviews: bool
    show_detailed_stats: bool
    allow_statistics_sharing: bool

    model_config = {"from_attributes": True}


class PrivacySettingsUpdate(BaseModel):
    show_reputation_score: Optional[bool] = None
    show_match_history: Optional[bool] = None
    show_win_loss_record: Optional[bool] = None
    show_skill_progression: Optional[bool] = None
    show_behavior_reviews: Optional[bool] = None
    show_detailed_stats: Optional[bool] = None
    allow_statistics_sharing: Optional[bool] = None


class MatchHistoryItem(BaseModel):
    match_id: UUID
    match_type: str
    status: str
    opponent_ids: list[UUID] = []
    result: Optional[str] = None
    score: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime


class PartnerCount(BaseModel):
    user_id: UUID
    display_name: str
    match_count: int


class MonthlyStat(BaseModel):
    month: str
    total_matches: int
    completed_matches: int
    wins: int
    losses: int
    win_rate: float
    average_rating: Optional[float] = None


class MatchStatistics(BaseModel):
    """Statistics projection; hidden sections are ``None`` for non-owners."""

    user_id: UUID
    total_matches: Optional[int] = None
    completed_matches: Optional[int] = None
    cancelled_matches: Optional[int] = None
    wins: Optional[int] = None
    losses: Optional[int] = None
    win_rate: Optional[float] = None
    attendance_rate: Optional[float] = None
    average_duration_minutes: Optional[float] = None
    most_played_with: Optional[list[PartnerCount]] = None
    recent_matches: Optional[list[MatchHistoryItem]] = None
    monthly_stats: Optional[list[MonthlyStat]] = None
    skill_progression: Optional[list[dict]] = None

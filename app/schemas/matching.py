from pydantic import BaseModel, Field, field_serializer, model_validator
from uuid import UUID
from datetime import datetime
from typing import Literal, Optional


class NTRPRange(BaseModel):
    min_level: float = Field(ge=1.0, le=7.0)
    max_level: float = Field(ge=1.0, le=7.0)

    @model_validator(mode="after")
    def _check_bounds(self):
        if self.min_level > self.max_level:
            raise ValueError("min_level must not exceed max_level")
        return self

    def contains(self, level: float) -> bool:
        return self.min_level <= level <= self.max_level


class AgeRange(BaseModel):
    min_age: int = Field(ge=0, le=120)
    max_age: int = Field(ge=0, le=120)

    @model_validator(mode="after")
    def _check_bounds(self):
        if self.min_age > self.max_age:
            raise ValueError("min_age must not exceed max_age")
        return self


class AvailabilityWindow(BaseModel):
    day_type: Literal["weekday", "weekend", "any"] = "any"
    time_of_day: Literal["morning", "afternoon", "evening"]

    @property
    def tag(self) -> str:
        if self.day_type == "any":
            return self.time_of_day
        return f"{self.day_type}_{self.time_of_day}"


class MatchingCriteria(BaseModel):
    """Per-request matching filters; ranges are validated at construction."""

    model_config = {"frozen": True}

    ntrp_range: Optional[NTRPRange] = None
    max_distance_km: Optional[float] = Field(None, gt=0)
    playing_frequency: Optional[Literal["casual", "regular", "competitive"]] = None
    age_range: Optional[AgeRange] = None
    gender: Optional[str] = None
    min_reputation: Optional[float] = Field(None, ge=0, le=100)
    play_types: list[str] = []
    availability: list[AvailabilityWindow] = []
    require_location: bool = False
    limit: int = Field(20, ge=1, le=100)


class CandidateProfile(BaseModel):
    """Read-only snapshot of a player as seen by the scoring functions."""

    user_id: UUID
    display_name: str = ""
    ntrp_level: Optional[float] = None
    playing_style: Optional[str] = None
    playing_frequency: Optional[str] = None
    play_types: list[str] = []
    preferred_times: list[str] = []
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location_privacy: bool = False
    gender: Optional[str] = None
    age: Optional[int] = None
    overall_reputation: float = 100.0
    last_login_at: Optional[datetime] = None
    is_active: bool = True

    @field_serializer("latitude", "longitude")
    def _mask_private_location(self, value: Optional[float]) -> Optional[float]:
        return None if self.location_privacy else value

    @property
    def has_visible_location(self) -> bool:
        return (
            not self.location_privacy
            and self.latitude is not None
            and self.longitude is not None
        )


class MatchingFactors(BaseModel):
    skill: float
    distance: float
    preference: Optional[float] = None
    age: float
    reputation: float
    distance_km: Optional[float] = None
    weights_used: dict[str, float]


class MatchingResult(BaseModel):
    user_id: UUID
    score: float = Field(ge=0.0, le=1.0)
    display_score: float
    factors: MatchingFactors
    candidate: CandidateProfile


class FindMatchesRequest(BaseModel):
    criteria: MatchingCriteria = MatchingCriteria()
    limit: Optional[int] = Field(None, ge=1, le=100)


class CardActionRequest(BaseModel):
    target_id: UUID
    action: str


class CardMatchResult(BaseModel):
    is_match: bool
    match_id: Optional[UUID] = None
    chat_room_id: Optional[UUID] = None
    message: str


class CardInteractionResponse(BaseModel):
    id: UUID
    actor_id: UUID
    target_id: UUID
    action: str
    is_match: bool
    match_id: Optional[UUID] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class CardHistoryResponse(BaseModel):
    items: list[CardInteractionResponse]
    total: int
    limit: int
    offset: int

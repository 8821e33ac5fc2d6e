"""
Courtside — Application Configuration

Loads all configuration from environment variables (and an optional .env file)
using Pydantic Settings.  A cached ``get_settings()`` helper is provided so that
FastAPI dependency-injection (and any other call-site) always receives the same
validated instance without re-parsing the environment on every request.

The scoring weight vectors are exposed as frozen value objects
(``MatchingWeights`` / ``ReputationWeights``) that callers pass explicitly into
the scoring functions; tests construct their own instead of patching globals.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MatchingWeights(BaseModel):
    """Immutable per-factor weights for candidate scoring."""

    model_config = ConfigDict(frozen=True)

    skill: float = 0.30
    distance: float = 0.25
    preference: float = 0.15
    age: float = 0.10
    reputation: float = 0.20

    def as_dict(self) -> dict[str, float]:
        return {
            "skill": self.skill,
            "distance": self.distance,
            "preference": self.preference,
            "age": self.age,
            "reputation": self.reputation,
        }


class ReputationWeights(BaseModel):
    """Immutable blend of the four reputation sub-scores (0-100 each)."""

    model_config = ConfigDict(frozen=True)

    attendance: float = 0.3
    punctuality: float = 0.2
    skill_accuracy: float = 0.2
    behavior: float = 0.3


class Settings(BaseSettings):
    """Central configuration for the Courtside engine."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Database – Cloud SQL via Unix socket or plain asyncpg URL
    # ------------------------------------------------------------------ #
    DATABASE_URL: str
    DB_USER: str = "courtside_user"
    DB_PASSWORD: str = ""
    DB_NAME: str = "courtside"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 5
    DB_POOL_RECYCLE_SECONDS: int = 1800

    # ------------------------------------------------------------------ #
    # Redis – notification fan-out
    # ------------------------------------------------------------------ #
    REDIS_URL: str
    NOTIFICATION_CHANNEL_PREFIX: str = "notifications"

    # ------------------------------------------------------------------ #
    # Matching weights (must sum to 1.0)
    # ------------------------------------------------------------------ #
    SKILL_WEIGHT: float = 0.30
    DISTANCE_WEIGHT: float = 0.25
    PREFERENCE_WEIGHT: float = 0.15
    AGE_WEIGHT: float = 0.10
    REPUTATION_WEIGHT: float = 0.20

    # ------------------------------------------------------------------ #
    # Matching tunables
    # ------------------------------------------------------------------ #
    MAX_SKILL_SPREAD: float = 3.0         # NTRP points at which skill score hits 0
    DEFAULT_MAX_DISTANCE_KM: float = 20.0
    AGE_TOLERANCE_YEARS: float = 5.0
    SAMPLING_EPSILON: float = 0.01        # floor weight for random discovery
    MATCHING_RANDOM_SEED: int | None = None
    CANDIDATE_POOL_LIMIT: int = 500
    DEFAULT_RESULT_LIMIT: int = 20

    # ------------------------------------------------------------------ #
    # Reputation model
    # ------------------------------------------------------------------ #
    REPUTATION_EMA_ALPHA: float = 0.1
    AUTO_ADJUST_WINDOW: int = 10
    AUTO_ADJUST_MIN_RECORDS: int = 3
    AUTO_ADJUST_THRESHOLD: float = 0.5
    AUTO_ADJUST_DAMPING: float = 0.3
    REQUIRED_CONFIRMATIONS: int = 2

    # ------------------------------------------------------------------ #
    # Runtime environment
    # ------------------------------------------------------------------ #
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    REQUEST_TIMEOUT_SECONDS: float = 30.0

    # ------------------------------------------------------------------ #
    # Google Cloud Platform
    # ------------------------------------------------------------------ #
    CLOUD_SQL_INSTANCE_CONNECTION: str = ""
    CLOUD_SQL_USE_UNIX_SOCKET: bool = True

    # ------------------------------------------------------------------ #
    # CORS
    # ------------------------------------------------------------------ #
    ALLOWED_ORIGINS: str = "*"

    # ------------------------------------------------------------------ #
    # Derived helpers
    # ------------------------------------------------------------------ #
    @property
    def allowed_origins_list(self) -> list[str]:
        """Return ALLOWED_ORIGINS as a list split on commas."""
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def matching_weights(self) -> MatchingWeights:
        return MatchingWeights(
            skill=self.SKILL_WEIGHT,
            distance=self.DISTANCE_WEIGHT,
            preference=self.PREFERENCE_WEIGHT,
            age=self.AGE_WEIGHT,
            reputation=self.REPUTATION_WEIGHT,
        )

    @field_validator(
        "SKILL_WEIGHT",
        "DISTANCE_WEIGHT",
        "PREFERENCE_WEIGHT",
        "AGE_WEIGHT",
        "REPUTATION_WEIGHT",
        "REPUTATION_EMA_ALPHA",
    )
    @classmethod
    def _weight_must_be_between_0_and_1(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"Weight must be between 0 and 1, got {v}")
        return v


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached, validated ``Settings`` instance.

    Using ``@lru_cache`` guarantees the .env file is read and validated
    exactly once per process lifetime.  Import this function anywhere you
    need access to configuration::

        from app.config import get_settings
        settings = get_settings()
    """
    return Settings()  # type: ignore[call-arg]

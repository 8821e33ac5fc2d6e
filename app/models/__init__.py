"""
Courtside — ORM model registry.

Importing every model here ensures that Alembic (and any other tool that
inspects ``Base.metadata``) discovers all tables automatically.
"""

from app.models.user import User, PlayerProfile
from app.models.match import (
    CardInteraction,
    CardPair,
    ChatParticipant,
    ChatRoom,
    Match,
    MatchParticipant,
    MatchResult,
)
from app.models.reputation import (
    BehaviorReview,
    PunctualityRecord,
    ReputationScore,
    SkillAccuracyRecord,
    SkillLevelRecord,
)
from app.models.privacy import UserPrivacySettings
from app.models.notification import MatchNotification

__all__ = [
    "User",
    "PlayerProfile",
    "Match",
    "MatchParticipant",
    "MatchResult",
    "ChatRoom",
    "ChatParticipant",
    "CardInteraction",
    "CardPair",
    "ReputationScore",
    "PunctualityRecord",
    "SkillAccuracyRecord",
    "BehaviorReview",
    "SkillLevelRecord",
    "UserPrivacySettings",
    "MatchNotification",
]

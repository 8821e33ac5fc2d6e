"""
Courtside — Main API Router

Aggregates all sub-routers under a single prefix so that ``app.main``
can mount the entire API surface with one ``include_router`` call.
"""

from fastapi import APIRouter

from app.api import matching, notifications, reputation, statistics

router = APIRouter()

router.include_router(matching.router, prefix="/matching", tags=["Matching"])
router.include_router(reputation.router, prefix="/reputation", tags=["Reputation"])
router.include_router(statistics.router, prefix="/statistics", tags=["Statistics"])
router.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])

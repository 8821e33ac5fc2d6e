"""
Courtside — Domain exceptions.

Services raise these; ``app.main`` maps each one onto an HTTP status so the
routers never have to translate them by hand.  All of them subclass
``ValueError`` so callers that only care about "bad input" can catch that.
"""

from __future__ import annotations


class CourtsideError(ValueError):
    """Base class for every error the engine raises on purpose."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(CourtsideError):
    """Raised for out-of-range input (ratings, levels, self-actions)."""

    status_code = 422


class DuplicateReview(ValidationError):
    """Raised when a reviewer already reviewed this player for this match."""

    status_code = 409


class PrivacyDenied(CourtsideError):
    """Raised when a non-owner requests a resource the owner keeps private."""

    status_code = 403

    def __init__(self, resource: str) -> None:
        super().__init__(f"{resource} is private")
        self.resource = resource


class NotParticipant(CourtsideError):
    """Raised when a user acts on a match they are not part of."""

    status_code = 403


class NotFound(CourtsideError):
    """Raised when a user, match, result or notification does not exist."""

    status_code = 404


class Conflict(CourtsideError):
    """Raised when the requested state change already happened."""

    status_code = 409

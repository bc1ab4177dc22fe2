"""
Matching Engine Errors
Domain error taxonomy shared by the interactive and sweep paths.
"""
import math
from typing import Optional


class MatchingError(Exception):
    """Base class for matching engine errors."""


class ItemNotFound(MatchingError):
    """The source item does not exist or is not owned by the caller."""

    def __init__(self, kind: str, item_id: object):
        self.kind = kind
        self.item_id = item_id
        super().__init__(f"{kind} not found: {item_id}")


class StorageUnavailable(MatchingError):
    """A storage read or write failed. Never replaced by an empty result."""


class RankingFailed(MatchingError):
    """The reasoning model call timed out, errored, or returned an unusable payload."""


class RateLimitExceeded(MatchingError):
    """The actor has used up the calls allowed in the current window."""

    def __init__(self, retry_after_seconds: int, attempts: int, limit: int):
        self.retry_after_seconds = retry_after_seconds
        self.attempts = attempts
        self.limit = limit
        super().__init__(self.cooldown_message)

    @property
    def retry_after_minutes(self) -> int:
        return max(1, math.ceil(self.retry_after_seconds / 60))

    @property
    def cooldown_message(self) -> str:
        return (
            f"You can only trigger auto-matching {self.limit} times per window. "
            f"Please try again in {self.retry_after_minutes} minutes."
        )


class Unauthorized(MatchingError):
    """The caller has no valid identity, or is not a party to the resource."""

    def __init__(self, message: str = "Not authorized"):
        super().__init__(message)


class InvalidMatchAction(MatchingError):
    """The requested match action is not allowed (e.g. contacting one's own item)."""


class MatchingConfigurationError(MatchingError):
    """The engine is misconfigured, e.g. missing reasoning endpoint credentials."""

    def __init__(self, message: str, setting: Optional[str] = None):
        self.setting = setting
        super().__init__(message)

"""
Custom Exception Classes for the PartsConnect API.

Provides standardized HTTP exceptions with consistent error messages
across all API endpoints, and the mapping from matching engine errors.
"""
from typing import Optional

from fastapi import HTTPException, status

from agents.matching.exceptions import (
    InvalidMatchAction,
    ItemNotFound,
    MatchingConfigurationError,
    MatchingError,
    RankingFailed,
    RateLimitExceeded,
    StorageUnavailable,
    Unauthorized,
)


class NotFoundError(HTTPException):
    """Exception raised when a requested resource is not found."""

    def __init__(self, resource: str, id: str = None):
        detail = f"{resource} not found" + (f": {id}" if id else "")
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class AuthenticationError(HTTPException):
    """Exception raised when the bearer token is missing or invalid."""

    def __init__(self, message: str = "Could not validate credentials"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=message,
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthorizationError(HTTPException):
    """Exception raised when a user is not authorized to access a resource."""

    def __init__(self, message: str = "Not authorized to access this resource"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=message)


class ValidationError(HTTPException):
    """Exception raised when request validation fails."""

    def __init__(self, message: str):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=message)


class RateLimitError(HTTPException):
    """Exception raised when rate limit is exceeded."""

    def __init__(
        self,
        message: str = "Rate limit exceeded. Please try again later.",
        retry_after: Optional[int] = None,
    ):
        self.retry_after = retry_after
        headers = {"Retry-After": str(retry_after)} if retry_after else None
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={"retry_after": retry_after, "message": message},
            headers=headers,
        )


class ServiceUnavailableError(HTTPException):
    """Exception raised when a backing store cannot be reached."""

    def __init__(self, message: str = "Service temporarily unavailable"):
        super().__init__(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=message)


class ServerConfigurationError(HTTPException):
    """Exception raised when the server is missing required configuration."""

    def __init__(self, message: str = "Server is not configured for this operation"):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=message)


def http_error_for(error: MatchingError) -> HTTPException:
    """
    Translate a matching engine error to its HTTP exception.

    Args:
        error: Domain error raised by the engine.

    Returns:
        HTTPException to raise from the endpoint.
    """
    if isinstance(error, ItemNotFound):
        return NotFoundError(error.kind.capitalize(), str(error.item_id))
    if isinstance(error, Unauthorized):
        return AuthorizationError(str(error))
    if isinstance(error, InvalidMatchAction):
        return ValidationError(str(error))
    if isinstance(error, RateLimitExceeded):
        return RateLimitError(error.cooldown_message, retry_after=error.retry_after_seconds)
    if isinstance(error, StorageUnavailable):
        return ServiceUnavailableError()
    if isinstance(error, RankingFailed):
        return ServiceUnavailableError("Match ranking is temporarily unavailable")
    if isinstance(error, MatchingConfigurationError):
        return ServerConfigurationError()
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error")

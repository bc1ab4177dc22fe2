"""
FastAPI Dependencies
Shared dependencies for authentication, database access and engine wiring.
"""
from datetime import datetime, timedelta, timezone
from typing import Annotated, AsyncGenerator, Optional
from uuid import UUID

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agents.delivery.dispatcher import NotificationDispatcher
from agents.matching.factory import create_auto_match_sweep, create_matching_service
from agents.matching.ledger import MatchLedger
from agents.matching.matcher import MatchingService
from agents.matching.repository import CandidateRepository
from agents.matching.sweep import AutoMatchSweep
from backend.core.config import settings
from backend.core.exceptions import AuthenticationError
from backend.database import get_db
from backend.models import Profile

# =============================================================================
# JWT Token Management
# =============================================================================

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 30

security = HTTPBearer(auto_error=False)


def create_access_token(profile_id: UUID, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token for a profile."""
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {"sub": str(profile_id), "exp": expire, "type": "access"}
    return jwt.encode(to_encode, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> UUID:
    """
    Decode a JWT and return the profile id in its subject.

    Raises:
        JWTError: Bad signature, expired, or malformed subject.
    """
    payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    subject = payload.get("sub")
    if subject is None:
        raise JWTError("Token missing subject")
    try:
        return UUID(subject)
    except ValueError as e:
        raise JWTError("Token subject is not a profile id") from e


# =============================================================================
# Database Dependency
# =============================================================================

AsyncSessionDep = Annotated[AsyncSession, Depends(get_db)]


# =============================================================================
# Authentication Dependencies
# =============================================================================

async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: AsyncSessionDep,
) -> Profile:
    """
    Get the current authenticated profile from the bearer token.

    Raises HTTPException 401 if not authenticated.
    """
    if credentials is None:
        raise AuthenticationError()

    try:
        profile_id = decode_token(credentials.credentials)
    except JWTError:
        raise AuthenticationError()

    result = await db.execute(select(Profile).where(Profile.id == profile_id))
    profile = result.scalar_one_or_none()

    if profile is None:
        raise AuthenticationError()

    return profile


CurrentUser = Annotated[Profile, Depends(get_current_user)]


# =============================================================================
# Engine Dependencies
# =============================================================================

def get_matching_service(db: AsyncSessionDep) -> MatchingService:
    return create_matching_service(db)


async def get_notification_dispatcher() -> AsyncGenerator[NotificationDispatcher, None]:
    """Per-request dispatcher; hand-offs are drained before the request ends."""
    dispatcher = NotificationDispatcher()
    try:
        yield dispatcher
    finally:
        await dispatcher.drain()


DispatcherDep = Annotated[NotificationDispatcher, Depends(get_notification_dispatcher)]


def get_auto_match_sweep(db: AsyncSessionDep, dispatcher: DispatcherDep) -> AutoMatchSweep:
    return create_auto_match_sweep(db, dispatcher)


def get_match_ledger(db: AsyncSessionDep) -> MatchLedger:
    return MatchLedger(db)


def get_candidate_repository(db: AsyncSessionDep) -> CandidateRepository:
    return CandidateRepository(db, max_candidates=settings.max_candidates_per_prompt)


MatchingServiceDep = Annotated[MatchingService, Depends(get_matching_service)]
AutoMatchSweepDep = Annotated[AutoMatchSweep, Depends(get_auto_match_sweep)]
MatchLedgerDep = Annotated[MatchLedger, Depends(get_match_ledger)]
CandidateRepositoryDep = Annotated[CandidateRepository, Depends(get_candidate_repository)]

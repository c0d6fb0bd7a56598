"""
Request-boundary dependencies for FastAPI.

Decodes the authenticated actor and builds the per-request service
instances. Services receive their collaborators explicitly; nothing in
the core reaches for module-level state.
"""

import hmac
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from floatledger.app.core.clock import Clock, utcnow
from floatledger.app.core.config import settings
from floatledger.app.core.exceptions import ConfigurationError
from floatledger.app.core.tokens import read_access_token
from floatledger.app.core.locking import AccountLockManager
from floatledger.app.core.redis_client import get_redis
from floatledger.app.db.session import get_db
from floatledger.app.models.user import User
from floatledger.app.schemas.permissions import Actor
from floatledger.app.services.notification_service import NotificationDispatcher

# HTTP Bearer security scheme
security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> Actor:
    """
    FastAPI dependency for JWT authentication.

    Checks:
    1. Validates JWT token signature and expiry
    2. Verifies the user still exists and is ACTIVE (real-time check)

    Returns:
        Actor with the role stored in the database

    Raises:
        HTTPException: 401 if authentication fails, 403 if the user is not active
    """
    if credentials is None:
        raise _unauthorized("Not authenticated")

    claims = read_access_token(credentials.credentials)
    if claims is None:
        raise _unauthorized("Could not validate credentials")

    user = await db.get(User, claims.user_id)
    if not user:
        raise _unauthorized("User not found")

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )

    return Actor(id=user.id, role=user.role)


async def get_clock() -> Clock:
    return utcnow


def get_notification_dispatcher(request: Request) -> NotificationDispatcher:
    """Dispatcher created by the application lifespan."""
    return request.app.state.notifications


async def get_lock_manager(redis_client=Depends(get_redis)) -> AccountLockManager:
    return AccountLockManager(redis_client)


async def verify_cron_secret(authorization: Optional[str] = Header(None)) -> str:
    """
    Guard for the scheduler trigger: ``Authorization: Bearer <cron_secret>``.

    Raises:
        ConfigurationError: If no secret is configured
        HTTPException: 401 on a missing or wrong secret
    """
    if not settings.cron_secret:
        raise ConfigurationError("Scheduler secret is not configured")

    expected = f"Bearer {settings.cron_secret}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        raise _unauthorized("Invalid scheduler credentials")
    return "scheduler"

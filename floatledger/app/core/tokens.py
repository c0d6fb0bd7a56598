"""
Bearer tokens for the login / request boundary.

A token names one user by phone (``sub``) and id, and carries the role it
was issued under. The role is informative only: every request re-reads
the user, so a suspended or re-roled account loses access at once.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from pydantic import BaseModel, ValidationError

from floatledger.app.core.config import settings
from floatledger.app.models.enums import UserRole
from floatledger.app.models.user import User

logger = logging.getLogger(__name__)


class TokenClaims(BaseModel):
    sub: str
    user_id: int
    role: UserRole
    exp: datetime


def issue_access_token(user: User, ttl: Optional[timedelta] = None) -> str:
    """Sign a token for ``user`` valid for ``ttl`` (default from settings)."""
    expires_at = datetime.now(timezone.utc) + (ttl or timedelta(minutes=settings.access_token_expire_minutes))
    claims = {
        "sub": user.phone,
        "user_id": user.id,
        "role": user.role.value,
        "exp": expires_at,
    }
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def read_access_token(token: str) -> Optional[TokenClaims]:
    """Verified claims, or None for a bad signature, an expired token or missing claims."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        return TokenClaims.model_validate(payload)
    except (JWTError, ValidationError) as exc:
        logger.info("Rejected access token", extra={"error": type(exc).__name__})
        return None

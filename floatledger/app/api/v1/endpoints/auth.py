"""
Authentication API endpoints.

Exchanges a phone number and access code for a JWT.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from floatledger.app.db.session import get_db
from floatledger.app.models.user import User
from floatledger.app.schemas.user import UserLogin, TokenResponse
from floatledger.app.core.security import verify_password
from floatledger.app.core.tokens import issue_access_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/login", response_model=TokenResponse)
async def login(
    credentials: UserLogin,
    db: AsyncSession = Depends(get_db)
):
    """
    Login user and return JWT token.

    Failed attempts are logged without the submitted access code.
    """
    result = await db.execute(select(User).where(User.phone == credentials.phone))
    user = result.scalar_one_or_none()

    if not user or not verify_password(credentials.access_code, user.access_code_hash):
        logger.warning("Login failed", extra={"phone": credentials.phone, "user_id": user.id if user else None})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        logger.warning("Login refused for inactive user", extra={"user_id": user.id})
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Inactive user account"
        )

    access_token = issue_access_token(user)
    logger.info("Login succeeded", extra={"user_id": user.id})

    return TokenResponse(
        access_token=access_token,
        user_id=user.id,
        display_name=user.display_name,
        role=user.role,
    )

"""
User Pydantic schemas.

Defines request and response schemas for the user lifecycle endpoints.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional
from floatledger.app.models.enums import UserRole, UserStatus


class UserCreate(BaseModel):
    """
    Schema for direct admin creation of a user.

    Used by POST /users endpoint.
    """
    display_name: str = Field(..., min_length=2, max_length=150, description="Name shown on dashboards")
    phone: str = Field(..., min_length=6, max_length=32, description="Unique phone number")
    access_code: str = Field(..., min_length=4, max_length=64, description="Login access code")
    role: UserRole = Field(default=UserRole.SUPERVISOR, description="User role")
    status: UserStatus = Field(default=UserStatus.ACTIVE, description="Initial status")


class UserResponse(BaseModel):
    """Schema for user information response."""
    id: int
    display_name: str
    phone: str
    role: UserRole
    status: UserStatus
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UserLogin(BaseModel):
    phone: str
    access_code: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: int
    display_name: str
    role: UserRole

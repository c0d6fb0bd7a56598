"""
Security guards for role-based access control.

Provides dependencies for protecting endpoints. Ownership and correction
window rules are business rules and live in the ledger domain.
"""

from typing import List
from fastapi import Depends, HTTPException, status
from floatledger.app.models.enums import UserRole
from floatledger.app.core.dependencies import get_current_actor
from floatledger.app.schemas.permissions import Actor


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.get("/dashboard/global")
        async def global_dashboard(actor: Actor = Depends(require_role([UserRole.ADMIN]))):
            ...

    Args:
        allowed_roles: List of UserRole enums that are allowed to access the endpoint

    Returns:
        FastAPI dependency function that validates the actor role

    Raises:
        HTTPException 403 if actor role is not in allowed_roles
    """
    async def role_checker(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
            )
        return actor

    return role_checker


def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    """
    Dependency for admin-only endpoints.

    Args:
        actor: Authenticated actor

    Returns:
        The actor if admin, raises 403 otherwise
    """
    if actor.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return actor

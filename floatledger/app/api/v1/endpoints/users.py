"""
User administration endpoints.
"""

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from floatledger.app.db.session import get_db
from floatledger.app.core.guards import require_admin
from floatledger.app.domain.ledger.users import UserService
from floatledger.app.schemas.permissions import Actor
from floatledger.app.schemas.user import UserCreate, UserResponse

router = APIRouter(prefix="/users", tags=["Admin - Users"])


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    user_data: UserCreate,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Create an admin, supervisor or partner."""
    return await UserService(db).create_user(actor, user_data)


@router.delete("/{user_id}")
async def delete_user(
    user_id: int = Path(...),
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Delete a non-admin user whose accounts are all at zero."""
    await UserService(db).delete_user(actor, user_id)
    return {"status": "success", "user_id": user_id}

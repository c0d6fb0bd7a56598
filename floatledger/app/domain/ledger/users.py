"""
User lifecycle rules.

A user can be destroyed only when it is not an ADMIN, is not the caller,
and every account it owns is at zero. Ledger entries that reference it are
kept; their participant columns are cleared by the database.
"""

import logging

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from floatledger.app.core.exceptions import ConflictError, PermissionDeniedError, ResourceNotFoundError, ValidationError
from floatledger.app.core.security import get_password_hash
from floatledger.app.db.session import atomic
from floatledger.app.models.account import Account
from floatledger.app.models.enums import UserRole
from floatledger.app.models.notification import Notification
from floatledger.app.models.user import User
from floatledger.app.schemas.permissions import Actor
from floatledger.app.schemas.user import UserCreate

logger = logging.getLogger(__name__)


class UserService:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_user(self, actor: Actor, data: UserCreate) -> User:
        """
        Direct admin creation.

        Raises:
            PermissionDeniedError: If the caller is not an admin
            ConflictError: If the phone number is already registered
        """
        if actor.role != UserRole.ADMIN:
            raise PermissionDeniedError("Only administrators can create users")

        existing = await self.db.execute(select(User.id).where(User.phone == data.phone))
        if existing.scalar_one_or_none() is not None:
            raise ConflictError("Phone number already registered", details={"phone": data.phone})

        user = User(
            display_name=data.display_name.strip(),
            phone=data.phone,
            access_code_hash=get_password_hash(data.access_code),
            role=data.role,
            status=data.status,
        )
        try:
            async with atomic(self.db):
                self.db.add(user)
                await self.db.flush()
        except IntegrityError:
            raise ConflictError("Phone number already registered", details={"phone": data.phone})

        logger.info("User created", extra={"user_id": user.id, "role": user.role.value, "actor_id": actor.id})
        return user

    async def delete_user(self, actor: Actor, user_id: int) -> None:
        """
        Destroy a user and its accounts.

        Raises:
            PermissionDeniedError: Caller is not an admin, targets itself or an admin
            ResourceNotFoundError: Unknown user
            ValidationError: The user still holds a non-zero balance
        """
        if actor.role != UserRole.ADMIN:
            raise PermissionDeniedError("Only administrators can delete users")
        if actor.id == user_id:
            raise PermissionDeniedError("You cannot delete your own account")

        user = await self.db.get(User, user_id)
        if user is None:
            raise ResourceNotFoundError("User", user_id)
        if user.role == UserRole.ADMIN:
            raise PermissionDeniedError("Administrator accounts cannot be deleted")

        funded = await self.db.execute(
            select(Account.channel, Account.start_of_day, Account.end_of_day).where(
                Account.user_id == user_id,
                or_(Account.start_of_day != 0, Account.end_of_day != 0),
            )
        )
        non_zero = funded.all()
        if non_zero:
            raise ValidationError(
                "User still holds a balance, zero every line before deleting",
                details={
                    "accounts": [
                        {"channel": row.channel.value, "start_of_day": row.start_of_day, "end_of_day": row.end_of_day}
                        for row in non_zero
                    ]
                }
            )

        async with atomic(self.db):
            await self.db.execute(delete(Notification).where(Notification.user_id == user_id))
            await self.db.execute(delete(Account).where(Account.user_id == user_id))
            await self.db.delete(user)

        logger.info("User deleted", extra={"user_id": user_id, "actor_id": actor.id})

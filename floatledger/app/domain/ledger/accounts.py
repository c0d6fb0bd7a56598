"""
Account Store.

Per-(user, channel) balance records. The store never commits: every
mutation is issued inside the caller's atomic unit together with the
ledger entry that explains it.
"""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from floatledger.app.core.exceptions import AccountNotFoundError, ConflictError, ResourceNotFoundError, ValidationError
from floatledger.app.models.account import Account
from floatledger.app.models.enums import ChannelType

logger = logging.getLogger(__name__)


class AccountStore:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find(self, user_id: int, channel: ChannelType) -> Optional[Account]:
        result = await self.db.execute(
            select(Account).where(Account.user_id == user_id, Account.channel == channel)
        )
        return result.scalar_one_or_none()

    async def get(self, user_id: int, channel: ChannelType) -> Account:
        """
        Fetch an existing account.

        Raises:
            AccountNotFoundError: If the (user, channel) pair has no account
        """
        account = await self.find(user_id, channel)
        if account is None:
            raise AccountNotFoundError(user_id, channel.value)
        return account

    async def get_by_id(self, account_id: int) -> Account:
        account = await self.db.get(Account, account_id)
        if account is None:
            raise ResourceNotFoundError("Account", account_id)
        return account

    async def list_for_user(self, user_id: int) -> List[Account]:
        result = await self.db.execute(
            select(Account).where(Account.user_id == user_id).order_by(Account.channel)
        )
        return list(result.scalars().all())

    async def get_or_create(self, user_id: int, channel: ChannelType) -> Account:
        """
        Idempotent upsert of a zero-initialized account.

        Raises:
            ConflictError: If a concurrent request created the same account first
        """
        account = await self.find(user_id, channel)
        if account is not None:
            return account

        account = Account(
            user_id=user_id,
            channel=channel,
            start_of_day=0,
            end_of_day=0,
            previous_start_of_day=0,
        )
        self.db.add(account)
        try:
            await self.db.flush()  # Raises IntegrityError if (user, channel) already exists
        except IntegrityError:
            logger.warning("Concurrent account creation", extra={"user_id": user_id, "channel": channel.value})
            raise ConflictError(
                "Account was created concurrently, retry the operation",
                details={"user_id": user_id, "channel": channel.value}
            )
        logger.info("Account created", extra={"user_id": user_id, "channel": channel.value})
        return account

    async def set_start_of_day(self, account_id: int, amount: int) -> Account:
        _require_non_negative(amount)
        account = await self.get_by_id(account_id)
        account.start_of_day = amount
        await self.db.flush()
        return account

    async def set_end_of_day(self, account_id: int, amount: int) -> Account:
        _require_non_negative(amount)
        account = await self.get_by_id(account_id)
        account.end_of_day = amount
        await self.db.flush()
        return account

    async def increment_start_of_day(self, account_id: int, delta: int) -> Account:
        account = await self.get_by_id(account_id)
        if account.start_of_day + delta < 0:
            raise ValidationError(
                "Start-of-day balance cannot become negative",
                details={"account_id": account_id, "current": account.start_of_day, "delta": delta}
            )
        account.start_of_day = account.start_of_day + delta
        await self.db.flush()
        return account

    async def adjust_end_of_day(self, account_id: int, delta: int) -> Account:
        """Apply a signed delta to end-of-day; refuses to go below zero."""
        account = await self.get_by_id(account_id)
        if account.end_of_day + delta < 0:
            raise ValidationError(
                "Insufficient balance on this channel",
                details={"account_id": account_id, "available": account.end_of_day, "requested": -delta}
            )
        account.end_of_day = account.end_of_day + delta
        await self.db.flush()
        return account


def _require_non_negative(amount: int) -> None:
    if amount < 0:
        raise ValidationError("Balance cannot be negative", details={"amount": amount})

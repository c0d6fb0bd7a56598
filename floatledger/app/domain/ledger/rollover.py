"""
Daily Rollover Engine.

Carries every account's end-of-day balance into the next cycle's
start-of-day balance, at most once per local calendar date.

Flow (one atomic unit):
1. Read the watermark row (locked FOR UPDATE where the database supports it)
2. Same date as today -> no-op
3. previous_start_of_day := start_of_day, start_of_day := end_of_day
4. Write today's date into the watermark, last

A failure anywhere rolls the whole batch back and leaves the watermark
untouched, so the scheduler can simply retry.
"""

import logging
from datetime import date, tzinfo
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from floatledger.app.core.clock import Clock, local_date, local_timezone, next_local_midnight, utcnow
from floatledger.app.core.config import settings
from floatledger.app.db.session import atomic
from floatledger.app.models.account import Account
from floatledger.app.models.enums import UserRole, UserStatus
from floatledger.app.models.notification import NotificationCategory
from floatledger.app.models.rollover_watermark import RolloverWatermark
from floatledger.app.models.user import User
from floatledger.app.schemas.notification import NotificationRequest
from floatledger.app.schemas.rollover import RolloverResult, RolloverStatus
from floatledger.app.services.notification_service import NotificationDispatcher

logger = logging.getLogger(__name__)

WATERMARK_KEY = "daily_rollover"


async def last_rollover_date(db: AsyncSession) -> Optional[date]:
    watermark = await db.get(RolloverWatermark, WATERMARK_KEY)
    return watermark.run_date if watermark else None


class RolloverEngine:

    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[NotificationDispatcher] = None,
        clock: Clock = utcnow,
        tz: Optional[tzinfo] = None,
    ):
        self.db = db
        self.notifier = notifier
        self.clock = clock
        self.tz = tz or local_timezone()

    async def run(self, trigger: str = "scheduler") -> RolloverResult:
        """
        Execute the rollover for today's local date if it has not run yet.

        Safe to call any number of times per day.
        """
        now = self.clock()
        today = local_date(now, self.tz)

        async with atomic(self.db):
            watermark = await self._lock_watermark()
            if watermark is not None and watermark.run_date == today:
                logger.info("Rollover already executed today", extra={"run_date": today.isoformat(), "trigger": trigger})
                return RolloverResult(executed=False, run_date=today, reason="already_executed_today")

            rolled = await self._carry_forward()
            await self._advance_watermark(watermark, today, trigger)

        logger.info(
            "Rollover executed",
            extra={"run_date": today.isoformat(), "accounts_rolled": rolled, "trigger": trigger}
        )
        await self._notify(today)
        return RolloverResult(executed=True, run_date=today, accounts_rolled=rolled)

    async def status(self) -> RolloverStatus:
        now = self.clock()
        today = local_date(now, self.tz)
        last_run = await last_rollover_date(self.db)
        return RolloverStatus(
            last_run_date=last_run,
            executed_today=last_run == today,
            today=today,
            next_run_at=next_local_midnight(now, self.tz),
            timezone=settings.timezone,
        )

    async def _lock_watermark(self) -> Optional[RolloverWatermark]:
        result = await self.db.execute(
            select(RolloverWatermark)
            .where(RolloverWatermark.key == WATERMARK_KEY)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def _carry_forward(self) -> int:
        result = await self.db.execute(select(Account).order_by(Account.id).with_for_update())
        accounts: List[Account] = list(result.scalars().all())
        for account in accounts:
            account.previous_start_of_day = account.start_of_day
            account.start_of_day = account.end_of_day
        await self.db.flush()
        return len(accounts)

    async def _advance_watermark(self, watermark: Optional[RolloverWatermark], today: date, trigger: str) -> None:
        if watermark is None:
            watermark = RolloverWatermark(key=WATERMARK_KEY)
            self.db.add(watermark)
        watermark.run_date = today
        watermark.trigger = trigger
        watermark.updated_at = self.clock()
        await self.db.flush()

    async def _notify(self, today: date) -> None:
        if self.notifier is None:
            return
        result = await self.db.execute(
            select(User.id).where(
                User.role.in_([UserRole.SUPERVISOR, UserRole.ADMIN]),
                User.status == UserStatus.ACTIVE,
            )
        )
        for user_id in result.scalars().all():
            self.notifier.dispatch(NotificationRequest(
                user_id=user_id,
                title="New operating day",
                message=f"Closing balances were carried forward as opening balances for {today.isoformat()}.",
                category=NotificationCategory.ROLLOVER,
            ))

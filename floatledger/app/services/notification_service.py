"""
Notification Service.

Best-effort, non-blocking delivery of notification requests. A failed
delivery is logged and dropped; it never fails the ledger operation that
produced it.
"""

import asyncio
import logging
from typing import List, Protocol, Set

from sqlalchemy import select, update, desc
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from floatledger.app.models.notification import Notification
from floatledger.app.schemas.notification import NotificationRequest

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def send(self, request: NotificationRequest) -> None:
        ...


class DatabaseNotifier:
    """Stores notifications as in-app rows, each through its own session."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def send(self, request: NotificationRequest) -> None:
        async with self.session_factory() as session:
            session.add(Notification(
                user_id=request.user_id,
                category=request.category,
                title=request.title,
                message=request.message,
            ))
            await session.commit()


class NotificationDispatcher:
    """
    Schedules deliveries as background tasks.

    ``drain()`` waits for everything scheduled so far (shutdown, tests).
    """

    def __init__(self, notifier: Notifier):
        self.notifier = notifier
        self._pending: Set[asyncio.Task] = set()

    def dispatch(self, request: NotificationRequest) -> None:
        task = asyncio.get_running_loop().create_task(self._deliver(request))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, request: NotificationRequest) -> None:
        try:
            await self.notifier.send(request)
        except Exception:
            logger.exception(
                "Notification delivery failed",
                extra={"user_id": request.user_id, "category": request.category.value}
            )

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending))


class NotificationService:

    @staticmethod
    async def list_for_user(
        db: AsyncSession,
        user_id: int,
        unread_only: bool = False,
        limit: int = 50
    ) -> List[Notification]:
        """List a user's notifications, newest first."""
        query = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            query = query.where(Notification.is_read.is_(False))
        query = query.order_by(desc(Notification.created_at), desc(Notification.id)).limit(limit)
        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def mark_read(db: AsyncSession, notification_id: int, user_id: int) -> bool:
        """Mark a notification as read."""
        stmt = update(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user_id
        ).values(is_read=True)
        result = await db.execute(stmt)
        return result.rowcount > 0

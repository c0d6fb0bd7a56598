"""
Per-line mutual exclusion.

Reset and delete run a read-check-write sequence (permission window, old
value, new value). Holding a Redis lock named after the (supervisor, line
key) pair around that sequence serializes concurrent corrections on the
same line.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from redis.exceptions import LockError

from floatledger.app.core.config import settings
from floatledger.app.core.exceptions import ConflictError

logger = logging.getLogger(__name__)


class AccountLockManager:

    def __init__(self, redis_client, timeout: Optional[int] = None, wait: Optional[float] = None):
        self.redis = redis_client
        self.timeout = timeout if timeout is not None else settings.account_lock_timeout_seconds
        self.wait = wait if wait is not None else settings.account_lock_wait_seconds

    @staticmethod
    def lock_name(user_id: int, key: str) -> str:
        return f"lock:account-line:{user_id}:{key}"

    @asynccontextmanager
    async def hold(self, user_id: int, key: str):
        """
        Hold the lock for one (user, line key) pair.

        Raises:
            ConflictError: If another correction holds the lock past the wait time
        """
        name = self.lock_name(user_id, key)
        lock = self.redis.lock(name, timeout=self.timeout, blocking_timeout=self.wait)
        acquired = await lock.acquire()
        if not acquired:
            logger.warning("Line lock busy", extra={"lock": name})
            raise ConflictError(
                "Another correction on this line is in progress, retry shortly",
                details={"user_id": user_id, "key": key}
            )
        try:
            yield lock
        finally:
            try:
                await lock.release()
            except LockError:
                # Lock expired before release; the work itself already finished.
                logger.warning("Line lock expired before release", extra={"lock": name})

"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from floatledger.app.api.v1.endpoints import (
    auth, users, ledger, dashboard, account_lines, rollover, notifications
)

router = APIRouter()

router.include_router(auth.router)
router.include_router(users.router)

# Ledger and balances
router.include_router(ledger.router)
router.include_router(dashboard.router)
router.include_router(account_lines.router)

# Scheduler
router.include_router(rollover.router)

router.include_router(notifications.router)

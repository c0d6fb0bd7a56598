"""
Daily rollover endpoints.

``/run`` is called by an external scheduler shortly after local midnight
and authenticates with the shared cron secret, not a user token.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from floatledger.app.db.session import get_db
from floatledger.app.core.clock import Clock
from floatledger.app.core.dependencies import get_clock, get_notification_dispatcher, verify_cron_secret
from floatledger.app.core.guards import require_admin
from floatledger.app.domain.ledger.rollover import RolloverEngine
from floatledger.app.schemas.permissions import Actor
from floatledger.app.schemas.rollover import RolloverResult, RolloverStatus
from floatledger.app.services.notification_service import NotificationDispatcher

router = APIRouter(prefix="/rollover", tags=["Rollover"])


@router.post("/run", response_model=RolloverResult)
async def run_rollover(
    trigger: str = Depends(verify_cron_secret),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
    clock: Clock = Depends(get_clock),
):
    """Idempotent: a second call on the same local date is a no-op."""
    return await RolloverEngine(db, notifier=notifier, clock=clock).run(trigger=trigger)


@router.get("/status", response_model=RolloverStatus)
async def rollover_status(
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    return await RolloverEngine(db, clock=clock).status()

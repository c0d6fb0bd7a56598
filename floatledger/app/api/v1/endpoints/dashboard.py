"""
Dashboard API Endpoints.

Read-only balance views for admins (all supervisors), supervisors
(their own card) and partners (their own movements).
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from floatledger.app.db.session import get_db
from floatledger.app.core.clock import Clock
from floatledger.app.core.dependencies import get_clock
from floatledger.app.core.exceptions import PermissionDeniedError
from floatledger.app.core.guards import require_admin, require_role
from floatledger.app.domain.ledger.dashboard import DashboardAggregator
from floatledger.app.domain.ledger.periods import Period
from floatledger.app.models.enums import UserRole
from floatledger.app.schemas.dashboard import GlobalDashboard, PartnerDashboard, SupervisorDashboard
from floatledger.app.schemas.permissions import Actor

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


@router.get("/global", response_model=GlobalDashboard)
async def global_dashboard(
    period: Period = Query(Period.TODAY),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """All active supervisors, global totals and the float pool."""
    aggregator = DashboardAggregator(db, clock=clock)
    date_range = aggregator.resolve_range(actor, period, start, end)
    return await aggregator.build_global_dashboard(date_range)


@router.get("/supervisors/{supervisor_id}", response_model=SupervisorDashboard)
async def supervisor_dashboard(
    supervisor_id: int = Path(...),
    period: Period = Query(Period.TODAY),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    actor: Actor = Depends(require_role([UserRole.ADMIN, UserRole.SUPERVISOR])),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """One supervisor's card, the float pool and recent entries."""
    if actor.role == UserRole.SUPERVISOR and actor.id != supervisor_id:
        raise PermissionDeniedError("Supervisors can only view their own dashboard")

    aggregator = DashboardAggregator(db, clock=clock)
    date_range = aggregator.resolve_range(actor, period, start, end)
    return await aggregator.build_supervisor_dashboard(supervisor_id, date_range)


@router.get("/partner", response_model=PartnerDashboard)
async def partner_dashboard(
    period: Period = Query(Period.TODAY),
    actor: Actor = Depends(require_role([UserRole.PARTNER])),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """The calling partner's deposits and withdrawals per supervisor."""
    aggregator = DashboardAggregator(db, clock=clock)
    date_range = aggregator.resolve_range(actor, period)
    return await aggregator.build_partner_dashboard(actor.id, date_range)

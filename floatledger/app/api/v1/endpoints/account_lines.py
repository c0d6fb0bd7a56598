"""
Balance line correction endpoints.

Dry-run check, reset and delete of one supervisor line, plus the
read-only reconciliation report.
"""

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from floatledger.app.db.session import get_db
from floatledger.app.core.clock import Clock
from floatledger.app.core.dependencies import get_clock, get_current_actor, get_lock_manager, get_notification_dispatcher
from floatledger.app.core.exceptions import PermissionDeniedError
from floatledger.app.core.guards import require_role
from floatledger.app.core.locking import AccountLockManager
from floatledger.app.domain.ledger.line_operations import LineOperations
from floatledger.app.domain.ledger.reconciliation import ReconciliationService
from floatledger.app.models.enums import LineKind, UserRole
from floatledger.app.schemas.lines import LineDeleteRequest, LineOperationResult, LineResetRequest, ReconciliationReport
from floatledger.app.schemas.permissions import Actor, CorrectionDecision
from floatledger.app.services.notification_service import NotificationDispatcher

router = APIRouter(prefix="/accounts", tags=["Account Lines"])


async def get_line_operations(
    db: AsyncSession = Depends(get_db),
    locks: AccountLockManager = Depends(get_lock_manager),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
    clock: Clock = Depends(get_clock),
) -> LineOperations:
    return LineOperations(db, locks, notifier=notifier, clock=clock)


@router.get("/{supervisor_id}/lines/{line_kind}/check", response_model=CorrectionDecision)
async def check_line(
    supervisor_id: int = Path(...),
    line_kind: LineKind = Path(...),
    key: str = Query(..., min_length=1),
    actor: Actor = Depends(get_current_actor),
    operations: LineOperations = Depends(get_line_operations),
):
    """Whether the caller may correct this line right now, and why."""
    return await operations.check(actor, supervisor_id, key, line_kind)


@router.post("/{supervisor_id}/lines/{line_kind}/reset", response_model=LineOperationResult)
async def reset_line(
    request: LineResetRequest,
    supervisor_id: int = Path(...),
    line_kind: LineKind = Path(...),
    actor: Actor = Depends(get_current_actor),
    operations: LineOperations = Depends(get_line_operations),
):
    return await operations.reset_line(actor, supervisor_id, request.key, line_kind, request.new_value)


@router.post("/{supervisor_id}/lines/{line_kind}/delete", response_model=LineOperationResult)
async def delete_line(
    request: LineDeleteRequest,
    supervisor_id: int = Path(...),
    line_kind: LineKind = Path(...),
    actor: Actor = Depends(get_current_actor),
    operations: LineOperations = Depends(get_line_operations),
):
    """Zero a channel line, or archive the partner transactions behind a partner line."""
    return await operations.delete_line(actor, supervisor_id, request.key, line_kind)


@router.get("/{supervisor_id}/reconciliation", response_model=ReconciliationReport)
async def reconciliation(
    supervisor_id: int = Path(...),
    actor: Actor = Depends(require_role([UserRole.ADMIN, UserRole.SUPERVISOR])),
    db: AsyncSession = Depends(get_db)
):
    """Replay the ledger against each account's end-of-day balance."""
    if actor.role == UserRole.SUPERVISOR and actor.id != supervisor_id:
        raise PermissionDeniedError("Supervisors can only reconcile their own accounts")
    return await ReconciliationService(db).supervisor_report(supervisor_id)

"""
Ledger API Endpoints.

Posting, filtered listings with statistics, entry detail with the caller's
rights on it, and the audit trail.
"""

import math
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from floatledger.app.db.session import get_db
from floatledger.app.core.clock import Clock
from floatledger.app.core.dependencies import get_clock, get_current_actor, get_notification_dispatcher
from floatledger.app.core.exceptions import PermissionDeniedError
from floatledger.app.core.guards import require_admin
from floatledger.app.domain.ledger.ledger import Ledger
from floatledger.app.domain.ledger.permissions import entry_permissions
from floatledger.app.domain.ledger.transactions import TransactionService
from floatledger.app.models.enums import ChannelType, UserRole
from floatledger.app.schemas.ledger import EntryPage, EntryView, LedgerFilters, LedgerStats, PostEntryRequest
from floatledger.app.schemas.permissions import Actor, EntryDetail
from floatledger.app.services.notification_service import NotificationDispatcher

router = APIRouter(prefix="/ledger", tags=["Ledger"])


def ledger_filters(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    sender_id: Optional[int] = Query(None),
    receiver_id: Optional[int] = Query(None),
    partner_id: Optional[int] = Query(None),
    supervisor_name: Optional[str] = Query(None),
    partner_name: Optional[str] = Query(None),
    user_name: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    entry_type: Optional[str] = Query(None, description="Category or exact entry type"),
    channel: Optional[ChannelType] = Query(None),
    include_archived: bool = Query(False),
) -> LedgerFilters:
    return LedgerFilters(
        start=start,
        end=end,
        sender_id=sender_id,
        receiver_id=receiver_id,
        partner_id=partner_id,
        supervisor_name=supervisor_name,
        partner_name=partner_name,
        user_name=user_name,
        search=search,
        entry_type=entry_type,
        channel=channel,
        include_archived=include_archived,
    )


def _scoped(actor: Actor, filters: LedgerFilters) -> LedgerFilters:
    """Narrow a listing to what the caller may see."""
    if actor.role == UserRole.SUPERVISOR:
        return filters.model_copy(update={"participant_id": actor.id})
    if actor.role == UserRole.PARTNER:
        return filters.model_copy(update={"partner_id": actor.id})
    return filters


@router.post("/entries", response_model=EntryView, status_code=status.HTTP_201_CREATED)
async def post_entry(
    request: PostEntryRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
    clock: Clock = Depends(get_clock),
):
    """Record a deposit, withdrawal, start/end of day, transfer or pool allocation."""
    service = TransactionService(db, notifier=notifier, clock=clock)
    entry = await service.post(
        actor,
        supervisor_id=request.supervisor_id,
        entry_type=request.entry_type,
        amount=request.amount,
        channel=request.channel,
        partner_id=request.partner_id,
        description=request.description,
    )
    views = await service.ledger.describe([entry])
    return views[0]


@router.get("/entries", response_model=EntryPage)
async def list_entries(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    filters: LedgerFilters = Depends(ledger_filters),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    """List entries, newest first."""
    ledger = Ledger(db)
    query = ledger.query(_scoped(actor, filters))
    total = await query.count()
    entries = await query.page(page, limit)
    return EntryPage(
        items=await ledger.describe(entries),
        page=page,
        limit=limit,
        total=total,
        pages=math.ceil(total / limit) if total else 0,
    )


@router.get("/stats", response_model=LedgerStats)
async def entry_stats(
    filters: LedgerFilters = Depends(ledger_filters),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    """Counts and totals by type and category for the same filters as the listing."""
    return await Ledger(db).query(_scoped(actor, filters)).stats()


@router.get("/entries/{entry_id}", response_model=EntryDetail)
async def get_entry(
    entry_id: int = Path(...),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """An entry with the caller's view / modify / delete rights on it."""
    ledger = Ledger(db, clock=clock)
    entry = await ledger.get(entry_id)
    permissions = entry_permissions(actor, entry, clock())
    if not permissions.can_view:
        raise PermissionDeniedError("You cannot view this entry", details={"entry_id": entry_id})

    views = await ledger.describe([entry])
    return EntryDetail(entry=views[0], permissions=permissions)


@router.get("/audit", response_model=EntryPage)
async def audit_history(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    receiver_id: Optional[int] = Query(None, description="Supervisor whose lines were corrected"),
    include_archived: bool = Query(True),
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Manual corrections and deletions, newest first."""
    ledger = Ledger(db)
    query = ledger.query(LedgerFilters(
        entry_type="audit",
        receiver_id=receiver_id,
        include_archived=include_archived,
    ))
    total = await query.count()
    entries = await query.page(page, limit)
    return EntryPage(
        items=await ledger.describe(entries),
        page=page,
        limit=limit,
        total=total,
        pages=math.ceil(total / limit) if total else 0,
    )

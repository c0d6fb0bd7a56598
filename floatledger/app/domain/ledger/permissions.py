"""
Permission / Window Engine.

Two independent rule sets:

1. Line corrections (reset / delete of a balance line), evaluated in order,
   first failure wins:
     1. ADMIN is always allowed.
     2. Any role other than SUPERVISOR is denied.
     3. A supervisor may only touch their own lines.
     4. FLOAT_POOL lines are reserved to admins.
     5. Recency window over the latest relevant entry: younger than the
        minimum age or older than the maximum age is denied.
     6. Ownership: organic (the supervisor recorded entries on the line) or
        default (the line was never organically populated).

2. Per-entry modify/delete rights, a role x age table.
"""

import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from floatledger.app.core.clock import Clock, utcnow
from floatledger.app.core.config import settings
from floatledger.app.domain.ledger.accounts import AccountStore
from floatledger.app.domain.ledger.partners import (
    LINE_DIRECTION_TYPES,
    PARTNER_DIRECTION_TYPES,
    LineTarget,
    PartnerResolver,
)
from floatledger.app.models.enums import AUDIT_ENTRY_TYPES, ChannelType, LedgerEntryType, LineKind, UserRole
from floatledger.app.models.ledger_entry import LedgerEntry
from floatledger.app.schemas.permissions import Actor, CorrectionDecision, EntryPermissions, Ownership

logger = logging.getLogger(__name__)

RuleHandler = Callable[[Actor, int, LineTarget, LineKind], Awaitable[CorrectionDecision]]


def _denied(reason: str, **extra) -> CorrectionDecision:
    return CorrectionDecision(allowed=False, reason=reason, ownership=Ownership.NONE, **extra)


class CorrectionPolicy:
    """Decides whether an actor may reset or delete a balance line."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock = utcnow,
        min_age_seconds: Optional[int] = None,
        max_age_seconds: Optional[int] = None,
        partner_resolver: Optional[PartnerResolver] = None,
    ):
        self.db = db
        self.clock = clock
        self.min_age_seconds = min_age_seconds if min_age_seconds is not None else settings.correction_min_age_seconds
        self.max_age_seconds = max_age_seconds if max_age_seconds is not None else settings.correction_max_age_seconds
        self.accounts = AccountStore(db)
        self.partners = partner_resolver or PartnerResolver(db, clock=clock)
        self._rules: Dict[UserRole, RuleHandler] = {
            UserRole.ADMIN: self._check_admin,
            UserRole.SUPERVISOR: self._check_supervisor,
            UserRole.PARTNER: self._check_other_role,
        }

    async def check(
        self,
        actor: Actor,
        supervisor_id: int,
        target: LineTarget,
        line_kind: LineKind,
    ) -> CorrectionDecision:
        decision = await self._rules[actor.role](actor, supervisor_id, target, line_kind)
        logger.info(
            "Correction check",
            extra={
                "actor_id": actor.id,
                "actor_role": actor.role.value,
                "supervisor_id": supervisor_id,
                "key": target.key,
                "line_kind": line_kind.value,
                "allowed": decision.allowed,
                "reason": decision.reason,
            }
        )
        return decision

    async def _check_admin(self, actor, supervisor_id, target, line_kind) -> CorrectionDecision:
        return CorrectionDecision(allowed=True, ownership=Ownership.ADMIN)

    async def _check_other_role(self, actor, supervisor_id, target, line_kind) -> CorrectionDecision:
        return _denied("Only administrators and supervisors can correct balance lines")

    async def _check_supervisor(self, actor, supervisor_id, target, line_kind) -> CorrectionDecision:
        if actor.id != supervisor_id:
            return _denied("Supervisors can only correct their own lines")
        if target.channel == ChannelType.FLOAT_POOL:
            return _denied("The float pool line can only be corrected by an administrator")

        if target.is_partner:
            return await self._check_partner_line(actor, supervisor_id, target, line_kind)
        return await self._check_channel_line(actor, supervisor_id, target, line_kind)

    async def _check_channel_line(self, actor, supervisor_id, target, line_kind) -> CorrectionDecision:
        account = await self.accounts.find(supervisor_id, target.channel)
        if account is None:
            return CorrectionDecision(allowed=True, ownership=Ownership.DEFAULT)

        latest = await self._latest(
            LedgerEntry.account_id == account.id,
            LedgerEntry.entry_type.in_(LINE_DIRECTION_TYPES[line_kind]),
        )
        window = self._window(latest)
        if window is not None:
            return window

        own = await self._exists(
            LedgerEntry.account_id == account.id,
            LedgerEntry.sender_id == actor.id,
            LedgerEntry.entry_type.not_in(AUDIT_ENTRY_TYPES),
        )
        if own:
            return self._allowed(Ownership.ORGANIC, latest)

        organic = await self._exists(
            LedgerEntry.account_id == account.id,
            LedgerEntry.entry_type.not_in(AUDIT_ENTRY_TYPES),
        )
        if not organic:
            # Never organically populated: no entries at all, or only audit entries.
            return self._allowed(Ownership.DEFAULT, latest)

        return _denied(
            "You have not recorded any transaction on this line",
            last_entry_id=latest.id if latest else None,
        )

    async def _check_partner_line(self, actor, supervisor_id, target, line_kind) -> CorrectionDecision:
        direction = PARTNER_DIRECTION_TYPES[line_kind]
        partner = await self.partners.resolve(target, supervisor_id, direction)

        latest = await self._latest(
            LedgerEntry.partner_id == partner.id,
            LedgerEntry.receiver_id == supervisor_id,
            LedgerEntry.entry_type.in_(direction),
        )
        window = self._window(latest)
        if window is not None:
            return window

        own = await self._exists(
            LedgerEntry.partner_id == partner.id,
            LedgerEntry.sender_id == actor.id,
            LedgerEntry.entry_type.in_(direction),
        )
        if not own:
            return _denied(
                "You have not recorded any transaction for this partner",
                last_entry_id=latest.id if latest else None,
            )
        return self._allowed(Ownership.ORGANIC, latest)

    def _window(self, latest: Optional[LedgerEntry]) -> Optional[CorrectionDecision]:
        """Recency rule; None means the window does not block."""
        if latest is None:
            return None
        age = (self.clock() - latest.created_at).total_seconds()
        if age < self.min_age_seconds:
            return _denied(
                f"Last transaction is too recent ({int(age)}s), wait at least "
                f"{self.min_age_seconds}s before correcting to avoid accidental edits",
                last_entry_id=latest.id,
                last_entry_age_seconds=age,
            )
        if age > self.max_age_seconds:
            return _denied(
                f"Last transaction is outside the correction window of {self.max_age_seconds // 60} minutes",
                last_entry_id=latest.id,
                last_entry_age_seconds=age,
            )
        return None

    def _allowed(self, ownership: Ownership, latest: Optional[LedgerEntry]) -> CorrectionDecision:
        return CorrectionDecision(
            allowed=True,
            ownership=ownership,
            last_entry_id=latest.id if latest else None,
            last_entry_age_seconds=(self.clock() - latest.created_at).total_seconds() if latest else None,
        )

    async def _latest(self, *conditions) -> Optional[LedgerEntry]:
        result = await self.db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.archived.is_(False), *conditions)
            .order_by(desc(LedgerEntry.created_at), desc(LedgerEntry.id))
            .limit(1)
        )
        return result.scalars().first()

    async def _exists(self, *conditions) -> bool:
        result = await self.db.execute(
            select(func.count(LedgerEntry.id)).where(LedgerEntry.archived.is_(False), *conditions)
        )
        return (result.scalar() or 0) > 0


# --- Per-entry modify / delete table ---

MODIFIABLE_TYPES = frozenset({
    LedgerEntryType.DEPOSIT,
    LedgerEntryType.WITHDRAWAL,
    LedgerEntryType.START_OF_DAY,
    LedgerEntryType.END_OF_DAY,
})
SUPERVISOR_DELETABLE_TYPES = frozenset({LedgerEntryType.DEPOSIT, LedgerEntryType.WITHDRAWAL})


def entry_age_days(entry: LedgerEntry, now: datetime) -> int:
    """Whole elapsed days since the entry was created."""
    return int((now - entry.created_at).total_seconds() // 86400)


def _admin_entry_rights(actor: Actor, entry: LedgerEntry, age: int) -> EntryPermissions:
    max_age = settings.admin_entry_max_age_days
    allowed = entry.entry_type in MODIFIABLE_TYPES and age <= max_age
    return EntryPermissions(
        can_view=True,
        can_modify=allowed,
        can_delete=allowed,
        age_days=age,
        max_age_days=max_age,
        reason=f"Administrators may amend balance entries up to {max_age} days old",
    )


def _supervisor_entry_rights(actor: Actor, entry: LedgerEntry, age: int) -> EntryPermissions:
    max_age = settings.supervisor_entry_max_age_days
    received = entry.receiver_id == actor.id
    within = age <= max_age
    can_view = received or entry.sender_id == actor.id or entry.partner_id is not None
    return EntryPermissions(
        can_view=can_view,
        can_modify=received and entry.entry_type in MODIFIABLE_TYPES and within,
        can_delete=received and entry.entry_type in SUPERVISOR_DELETABLE_TYPES and within,
        age_days=age,
        max_age_days=max_age,
        reason=f"Supervisors may amend entries they received up to {max_age} day(s) old" if can_view else "Access denied",
    )


def _partner_entry_rights(actor: Actor, entry: LedgerEntry, age: int) -> EntryPermissions:
    can_view = entry.partner_id == actor.id or entry.sender_id == actor.id
    return EntryPermissions(
        can_view=can_view,
        can_modify=False,
        can_delete=False,
        age_days=age,
        max_age_days=0,
        reason="Partners cannot amend transactions" if can_view else "Access denied",
    )


ENTRY_RIGHTS: Dict[UserRole, Callable[[Actor, LedgerEntry, int], EntryPermissions]] = {
    UserRole.ADMIN: _admin_entry_rights,
    UserRole.SUPERVISOR: _supervisor_entry_rights,
    UserRole.PARTNER: _partner_entry_rights,
}


def entry_permissions(actor: Actor, entry: LedgerEntry, now: datetime) -> EntryPermissions:
    """View, modify and delete rights of ``actor`` on a single entry."""
    return ENTRY_RIGHTS[actor.role](actor, entry, entry_age_days(entry, now))

"""
Deletion / Reset operations on balance lines.

Every change is paired, in the same atomic unit, with an audit entry
carrying a typed before/after snapshot. The whole read-check-write
sequence runs under the per-line lock.
"""

import logging
from datetime import timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from floatledger.app.core.clock import Clock, utcnow
from floatledger.app.core.config import settings
from floatledger.app.core.exceptions import PermissionDeniedError, ResourceNotFoundError, ValidationError
from floatledger.app.core.locking import AccountLockManager
from floatledger.app.db.session import atomic
from floatledger.app.domain.ledger.accounts import AccountStore
from floatledger.app.domain.ledger.ledger import Ledger
from floatledger.app.domain.ledger.money import format_amount, money, to_minor_units
from floatledger.app.domain.ledger.partners import PARTNER_DIRECTION_TYPES, LineTarget, PartnerResolver, parse_line_key
from floatledger.app.domain.ledger.permissions import CorrectionPolicy
from floatledger.app.models.account import Account
from floatledger.app.models.enums import LedgerEntryType, LineKind, UserRole
from floatledger.app.models.ledger_entry import LedgerEntry
from floatledger.app.models.notification import NotificationCategory
from floatledger.app.models.user import User
from floatledger.app.schemas.ledger import LineDeletionSnapshot, LineResetSnapshot, PartnerArchivalSnapshot
from floatledger.app.schemas.lines import LineOperationResult
from floatledger.app.schemas.notification import NotificationRequest
from floatledger.app.schemas.permissions import Actor, CorrectionDecision
from floatledger.app.services.notification_service import NotificationDispatcher

logger = logging.getLogger(__name__)

LINE_LABELS = {
    LineKind.START_OF_DAY: "start of day",
    LineKind.END_OF_DAY: "end of day",
}


def lock_key(target: LineTarget) -> str:
    """Lock name component: the channel, or the resolved partner id."""
    if target.partner_id is not None:
        return f"partner#{target.partner_id}"
    return target.key


def _read_line(account: Account, line_kind: LineKind) -> int:
    return account.start_of_day if line_kind == LineKind.START_OF_DAY else account.end_of_day


class LineOperations:

    def __init__(
        self,
        db: AsyncSession,
        locks: AccountLockManager,
        notifier: Optional[NotificationDispatcher] = None,
        clock: Clock = utcnow,
        policy: Optional[CorrectionPolicy] = None,
    ):
        self.db = db
        self.locks = locks
        self.notifier = notifier
        self.clock = clock
        self.accounts = AccountStore(db)
        self.ledger = Ledger(db, clock=clock)
        self.partners = PartnerResolver(db, clock=clock)
        self.policy = policy or CorrectionPolicy(db, clock=clock, partner_resolver=self.partners)

    async def check(self, actor: Actor, supervisor_id: int, key: str, line_kind: LineKind) -> CorrectionDecision:
        """Dry-run of the correction rules, no lock and no mutation."""
        await self._get_supervisor(supervisor_id)
        return await self.policy.check(actor, supervisor_id, parse_line_key(key), line_kind)

    async def reset_line(
        self,
        actor: Actor,
        supervisor_id: int,
        key: str,
        line_kind: LineKind,
        new_value: Decimal,
    ) -> LineOperationResult:
        """
        Overwrite one balance field of a supervisor's channel account.

        Args:
            actor: Authenticated caller
            supervisor_id: Owner of the line
            key: Channel name
            line_kind: start_of_day or end_of_day
            new_value: New balance in display units

        Returns:
            Old and new values and the AUDIT_CORRECTION entry id

        Raises:
            ValidationError: Negative value or a partner key
            PermissionDeniedError: Correction rules denied the request
            ConflictError: Another correction on the line is in progress
        """
        new_minor = to_minor_units(new_value)
        if new_minor < 0:
            raise ValidationError("New value cannot be negative", details={"new_value": str(new_value)})
        target = parse_line_key(key)
        if target.is_partner:
            raise ValidationError(
                "Partner lines have no stored balance to reset, delete the line instead",
                details={"key": target.key}
            )
        await self._get_supervisor(supervisor_id)

        async with self.locks.hold(supervisor_id, lock_key(target)):
            decision = await self._authorize(actor, supervisor_id, target, line_kind)

            async with atomic(self.db):
                account = await self.accounts.get_or_create(supervisor_id, target.channel)
                old_minor = _read_line(account, line_kind)
                if line_kind == LineKind.START_OF_DAY:
                    await self.accounts.set_start_of_day(account.id, new_minor)
                else:
                    await self.accounts.set_end_of_day(account.id, new_minor)

                audit = await self.ledger.append_audit(
                    LedgerEntryType.AUDIT_CORRECTION,
                    amount=new_minor,
                    actor_id=actor.id,
                    actor_role=actor.role,
                    supervisor_id=supervisor_id,
                    account_id=account.id,
                    description=(
                        f"Reset of {target.key} {LINE_LABELS[line_kind]}: "
                        f"{format_amount(old_minor)} -> {format_amount(new_minor)}"
                    ),
                    metadata=LineResetSnapshot(
                        old_value=old_minor,
                        new_value=new_minor,
                        actor_id=actor.id,
                        actor_role=actor.role,
                        timestamp=self.clock(),
                        reason="line_reset",
                        supervisor_id=supervisor_id,
                        key=target.key,
                        line_kind=line_kind,
                    ),
                )

        logger.info(
            "Line reset",
            extra={
                "supervisor_id": supervisor_id,
                "key": target.key,
                "line_kind": line_kind.value,
                "old_value": old_minor,
                "new_value": new_minor,
                "actor_id": actor.id,
            }
        )
        self._notify(
            supervisor_id,
            "Balance corrected",
            f"Your {target.key} {LINE_LABELS[line_kind]} balance was set to {format_amount(new_minor)} "
            f"(was {format_amount(old_minor)}).",
        )
        return LineOperationResult(
            supervisor_id=supervisor_id,
            key=target.key,
            line_kind=line_kind,
            old_value=money(old_minor),
            new_value=money(new_minor),
            audit_entry_id=audit.id,
            ownership=decision.ownership,
        )

    async def delete_line(
        self,
        actor: Actor,
        supervisor_id: int,
        key: str,
        line_kind: LineKind,
    ) -> LineOperationResult:
        """
        Delete a line.

        Channel lines are zeroed. Partner lines archive every matching entry
        the supervisor received inside the lookback window and record their
        sum in one AUDIT_DELETION entry.
        """
        target = parse_line_key(key)
        await self._get_supervisor(supervisor_id)
        partner = None
        if target.is_partner:
            # Pin the id so every spelling of the key shares one lock and one partner.
            partner = await self.partners.resolve(target, supervisor_id, PARTNER_DIRECTION_TYPES[line_kind])
            target = target.model_copy(update={"partner_id": partner.id})

        async with self.locks.hold(supervisor_id, lock_key(target)):
            decision = await self._authorize(actor, supervisor_id, target, line_kind)
            if partner is not None:
                result = await self._delete_partner_line(actor, supervisor_id, target, partner, line_kind, decision)
            else:
                result = await self._delete_channel_line(actor, supervisor_id, target, line_kind, decision)

        self._notify(
            supervisor_id,
            "Balance line deleted",
            f"Your {result.key} {LINE_LABELS[line_kind]} line ({result.old_value.formatted}) was deleted.",
        )
        return result

    async def _delete_channel_line(self, actor, supervisor_id, target: LineTarget, line_kind, decision) -> LineOperationResult:
        async with atomic(self.db):
            account = await self.accounts.get(supervisor_id, target.channel)
            old_minor = _read_line(account, line_kind)
            if old_minor == 0:
                raise ValidationError(
                    "This line is already at zero",
                    details={"key": target.key, "line_kind": line_kind.value}
                )
            if line_kind == LineKind.START_OF_DAY:
                await self.accounts.set_start_of_day(account.id, 0)
            else:
                await self.accounts.set_end_of_day(account.id, 0)

            audit = await self.ledger.append_audit(
                LedgerEntryType.AUDIT_DELETION,
                amount=old_minor,
                actor_id=actor.id,
                actor_role=actor.role,
                supervisor_id=supervisor_id,
                account_id=account.id,
                description=f"Deletion of {target.key} {LINE_LABELS[line_kind]} ({format_amount(old_minor)})",
                metadata=LineDeletionSnapshot(
                    old_value=old_minor,
                    new_value=0,
                    actor_id=actor.id,
                    actor_role=actor.role,
                    timestamp=self.clock(),
                    reason="line_deletion",
                    supervisor_id=supervisor_id,
                    key=target.key,
                    line_kind=line_kind,
                ),
            )

        logger.info(
            "Channel line deleted",
            extra={"supervisor_id": supervisor_id, "key": target.key, "line_kind": line_kind.value, "old_value": old_minor}
        )
        return LineOperationResult(
            supervisor_id=supervisor_id,
            key=target.key,
            line_kind=line_kind,
            old_value=money(old_minor),
            new_value=money(0),
            audit_entry_id=audit.id,
            ownership=decision.ownership,
        )

    async def _delete_partner_line(
        self, actor, supervisor_id, target: LineTarget, partner: User, line_kind, decision
    ) -> LineOperationResult:
        direction = PARTNER_DIRECTION_TYPES[line_kind]
        since = self.clock() - timedelta(hours=settings.partner_lookback_hours)

        async with atomic(self.db):
            result = await self.db.execute(
                select(LedgerEntry)
                .where(
                    LedgerEntry.partner_id == partner.id,
                    LedgerEntry.receiver_id == supervisor_id,
                    LedgerEntry.entry_type.in_(direction),
                    LedgerEntry.archived.is_(False),
                    LedgerEntry.created_at >= since,
                )
                .order_by(LedgerEntry.created_at, LedgerEntry.id)
            )
            entries: List[LedgerEntry] = list(result.scalars().all())
            if not entries:
                raise ResourceNotFoundError("Partner transactions", target.key)

            total = 0
            for entry in entries:
                await self.ledger.archive(entry.id, actor.id, reason=f"Deletion of partner line {target.key}")
                total += entry.amount
            entry_ids = [entry.id for entry in entries]

            audit = await self.ledger.append_audit(
                LedgerEntryType.AUDIT_DELETION,
                amount=total,
                actor_id=actor.id,
                actor_role=actor.role,
                supervisor_id=supervisor_id,
                partner_id=partner.id,
                description=(
                    f"Deletion of partner line {partner.display_name} {LINE_LABELS[line_kind]}: "
                    f"{len(entries)} transaction(s), {format_amount(total)}"
                ),
                metadata=PartnerArchivalSnapshot(
                    old_value=total,
                    new_value=0,
                    actor_id=actor.id,
                    actor_role=actor.role,
                    timestamp=self.clock(),
                    reason="partner_line_deletion",
                    supervisor_id=supervisor_id,
                    partner_id=partner.id,
                    partner_name=partner.display_name,
                    line_kind=line_kind,
                    entry_ids=entry_ids,
                ),
            )

        logger.info(
            "Partner line deleted",
            extra={
                "supervisor_id": supervisor_id,
                "partner_id": partner.id,
                "archived_entries": len(entry_ids),
                "total": total,
            }
        )
        return LineOperationResult(
            supervisor_id=supervisor_id,
            key=target.key,
            line_kind=line_kind,
            old_value=money(total),
            new_value=money(0),
            audit_entry_id=audit.id,
            archived_entry_ids=entry_ids,
            ownership=decision.ownership,
        )

    async def _authorize(self, actor: Actor, supervisor_id: int, target: LineTarget, line_kind: LineKind) -> CorrectionDecision:
        decision = await self.policy.check(actor, supervisor_id, target, line_kind)
        if not decision.allowed:
            raise PermissionDeniedError(
                decision.reason,
                details={
                    "key": target.key,
                    "line_kind": line_kind.value,
                    "last_entry_id": decision.last_entry_id,
                    "last_entry_age_seconds": decision.last_entry_age_seconds,
                }
            )
        return decision

    async def _get_supervisor(self, supervisor_id: int) -> User:
        supervisor = await self.db.get(User, supervisor_id)
        if supervisor is None or supervisor.role != UserRole.SUPERVISOR:
            raise ResourceNotFoundError("Supervisor", supervisor_id)
        return supervisor

    def _notify(self, supervisor_id: int, title: str, message: str) -> None:
        if self.notifier is None:
            return
        self.notifier.dispatch(NotificationRequest(
            user_id=supervisor_id,
            title=title,
            message=message,
            category=NotificationCategory.CORRECTION,
        ))

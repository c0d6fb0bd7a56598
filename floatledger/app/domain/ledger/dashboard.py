"""
Dashboard Aggregator.

Rebuilds each supervisor's opening/closing position and the global totals
from the account store and the ledger. READ-ONLY.

Card layout:
- channel keys (CASH, MOBILE_MONEY_A, ...) carry the account's
  start_of_day / end_of_day
- ``partner:<name>`` keys carry the partner DEPOSIT sum (start map) and
  WITHDRAWAL sum (end map) of entries the supervisor received in range,
  only when non-zero
- net = end_total - start_total
"""

import logging
from collections import Counter, defaultdict
from datetime import datetime, tzinfo
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from floatledger.app.core.clock import Clock, local_date, local_timezone, utcnow
from floatledger.app.core.config import settings
from floatledger.app.core.exceptions import PermissionDeniedError, ResourceNotFoundError
from floatledger.app.domain.ledger.accounts import AccountStore
from floatledger.app.domain.ledger.ledger import Ledger
from floatledger.app.domain.ledger.money import money
from floatledger.app.domain.ledger.partners import partner_key
from floatledger.app.domain.ledger.periods import DateRange, Period, resolve_period
from floatledger.app.domain.ledger.rollover import last_rollover_date
from floatledger.app.models.account import Account
from floatledger.app.models.enums import ChannelType, LedgerEntryType, UserRole, UserStatus
from floatledger.app.models.ledger_entry import LedgerEntry
from floatledger.app.models.user import User
from floatledger.app.schemas.dashboard import (
    FloatPoolSummary,
    GlobalDashboard,
    PartnerDashboard,
    PartnerSupervisorLine,
    SupervisorCard,
    SupervisorDashboard,
)
from floatledger.app.schemas.ledger import LedgerFilters
from floatledger.app.schemas.permissions import Actor

logger = logging.getLogger(__name__)


class DashboardAggregator:

    def __init__(self, db: AsyncSession, clock: Clock = utcnow, tz: Optional[tzinfo] = None):
        self.db = db
        self.clock = clock
        self.tz = tz or local_timezone()
        self.accounts = AccountStore(db)
        self.ledger = Ledger(db, clock=clock)

    def resolve_range(
        self,
        actor: Actor,
        period: Period,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> DateRange:
        """Resolve a period for ``actor``; custom ranges are reserved to admins."""
        if period == Period.CUSTOM and actor.role != UserRole.ADMIN:
            raise PermissionDeniedError("Custom date ranges are reserved to administrators")
        return resolve_period(period, self.clock(), self.tz, start=start, end=end)

    async def build_supervisor_card(self, supervisor_id: int, date_range: DateRange) -> SupervisorCard:
        supervisor = await self._get_supervisor(supervisor_id)
        use_previous = await self._yesterday_after_rollover(date_range)
        return await self._card(supervisor, date_range, use_previous)

    async def build_supervisor_dashboard(self, supervisor_id: int, date_range: DateRange) -> SupervisorDashboard:
        supervisor = await self._get_supervisor(supervisor_id)
        use_previous = await self._yesterday_after_rollover(date_range)
        card = await self._card(supervisor, date_range, use_previous)

        recent = await self.ledger.query(LedgerFilters(
            participant_id=supervisor_id,
            start=date_range.start,
            end=date_range.end,
        )).page(1, settings.dashboard_recent_limit)

        return SupervisorDashboard(
            date_range=date_range.view(),
            card=card,
            float_pool=await self._float_pool(use_previous),
            recent_entries=await self.ledger.describe(recent),
        )

    async def build_global_dashboard(self, date_range: DateRange) -> GlobalDashboard:
        """One card per ACTIVE supervisor plus global and float-pool totals."""
        result = await self.db.execute(
            select(User)
            .where(User.role == UserRole.SUPERVISOR, User.status == UserStatus.ACTIVE)
            .order_by(User.display_name, User.id)
        )
        supervisors = list(result.scalars().all())
        use_previous = await self._yesterday_after_rollover(date_range)

        cards = []
        start_total = end_total = 0
        for supervisor in supervisors:
            card = await self._card(supervisor, date_range, use_previous)
            cards.append(card)
            start_total += card.start_total.minor
            end_total += card.end_total.minor

        logger.info(
            "Global dashboard built",
            extra={"period": date_range.period.value, "supervisors": len(cards)}
        )
        return GlobalDashboard(
            date_range=date_range.view(),
            supervisors=cards,
            start_total=money(start_total),
            end_total=money(end_total),
            net=money(end_total - start_total, with_sign=True),
            float_pool=await self._float_pool(use_previous),
            rollover_executed_today=await self._rollover_ran_today(),
        )

    async def build_partner_dashboard(self, partner_id: int, date_range: DateRange) -> PartnerDashboard:
        """
        A partner's own view: what they deposited and withdrew in range.

        Only non-archived DEPOSIT / WITHDRAWAL entries count. Figures are
        broken down per supervisor who received the movement; net is
        deposits minus withdrawals.
        """
        partner = await self.db.get(User, partner_id)
        if partner is None or partner.role != UserRole.PARTNER:
            raise ResourceNotFoundError("Partner", partner_id)

        query = self.ledger.query(LedgerFilters(
            partner_id=partner_id,
            start=date_range.start,
            end=date_range.end,
            entry_types=[LedgerEntryType.DEPOSIT, LedgerEntryType.WITHDRAWAL],
        ))
        rows = (await self.db.execute(
            select(
                LedgerEntry.receiver_id,
                User.display_name,
                LedgerEntry.entry_type,
                func.coalesce(func.sum(LedgerEntry.amount), 0),
                func.count(LedgerEntry.id),
            )
            .join(User, User.id == LedgerEntry.receiver_id)
            .where(*query.conditions())
            .group_by(LedgerEntry.receiver_id, User.display_name, LedgerEntry.entry_type)
        )).all()

        sums: Dict[int, List[int]] = defaultdict(lambda: [0, 0])
        names: Dict[int, str] = {}
        entry_count = 0
        for supervisor_id, name, entry_type, amount, count in rows:
            slot = 0 if entry_type == LedgerEntryType.DEPOSIT else 1
            sums[supervisor_id][slot] += int(amount or 0)
            names[supervisor_id] = name
            entry_count += count

        lines = [
            PartnerSupervisorLine(
                supervisor_id=supervisor_id,
                supervisor_name=names[supervisor_id],
                deposits=money(deposits),
                withdrawals=money(withdrawals),
                net=money(deposits - withdrawals, with_sign=True),
            )
            for supervisor_id, (deposits, withdrawals) in sorted(sums.items(), key=lambda item: names[item[0]])
        ]
        total_deposits = sum(deposits for deposits, _ in sums.values())
        total_withdrawals = sum(withdrawals for _, withdrawals in sums.values())

        recent = await query.page(1, settings.dashboard_recent_limit)
        return PartnerDashboard(
            date_range=date_range.view(),
            partner_id=partner.id,
            partner_name=partner.display_name,
            supervisors=lines,
            total_deposits=money(total_deposits),
            total_withdrawals=money(total_withdrawals),
            net=money(total_deposits - total_withdrawals, with_sign=True),
            entry_count=entry_count,
            recent_entries=await self.ledger.describe(recent),
        )

    async def _card(self, supervisor: User, date_range: DateRange, use_previous: bool) -> SupervisorCard:
        start_by_key: Dict[str, int] = {}
        end_by_key: Dict[str, int] = {}

        for account in await self.accounts.list_for_user(supervisor.id):
            start, end = _account_values(account, use_previous)
            start_by_key[account.channel.value] = start
            end_by_key[account.channel.value] = end

        for key, (deposits, withdrawals) in (await self._partner_lines(supervisor.id, date_range)).items():
            if deposits > 0:
                start_by_key[key] = deposits
            if withdrawals > 0:
                end_by_key[key] = withdrawals

        start_total = sum(start_by_key.values())
        end_total = sum(end_by_key.values())

        return SupervisorCard(
            supervisor_id=supervisor.id,
            supervisor_name=supervisor.display_name,
            status=supervisor.status,
            start_of_day_by_key={k: money(v) for k, v in start_by_key.items()},
            end_of_day_by_key={k: money(v) for k, v in end_by_key.items()},
            start_total=money(start_total),
            end_total=money(end_total),
            net=money(end_total - start_total, with_sign=True),
        )

    async def _partner_lines(self, supervisor_id: int, date_range: DateRange) -> Dict[str, Tuple[int, int]]:
        """
        Partner DEPOSIT / WITHDRAWAL sums keyed by partner line key.

        Grouping is by partner id; when two partners on the same card share a
        display name, all of them get a ``#<id>`` suffix.
        """
        query = self.ledger.query(LedgerFilters(
            receiver_id=supervisor_id,
            start=date_range.start,
            end=date_range.end,
            entry_types=[LedgerEntryType.DEPOSIT, LedgerEntryType.WITHDRAWAL],
            partner_only=True,
        ))
        rows = (await self.db.execute(
            select(LedgerEntry.partner_id, LedgerEntry.entry_type, func.sum(LedgerEntry.amount))
            .where(*query.conditions())
            .group_by(LedgerEntry.partner_id, LedgerEntry.entry_type)
        )).all()
        if not rows:
            return {}

        sums: Dict[int, List[int]] = defaultdict(lambda: [0, 0])
        for partner_id, entry_type, amount in rows:
            slot = 0 if entry_type == LedgerEntryType.DEPOSIT else 1
            sums[partner_id][slot] += int(amount or 0)

        names = dict((await self.db.execute(
            select(User.id, User.display_name).where(User.id.in_(list(sums)))
        )).all())

        shared = Counter(name.lower() for name in names.values())
        lines: Dict[str, Tuple[int, int]] = {}
        for partner_id in sorted(sums):
            name = names.get(partner_id, f"#{partner_id}")
            key = partner_key(name, partner_id) if shared[name.lower()] > 1 else partner_key(name)
            lines[key] = (sums[partner_id][0], sums[partner_id][1])
        return lines

    async def _float_pool(self, use_previous: bool) -> FloatPoolSummary:
        opening_column = Account.previous_start_of_day if use_previous else Account.start_of_day
        current_column = Account.start_of_day if use_previous else Account.end_of_day
        row = (await self.db.execute(
            select(
                func.coalesce(func.sum(opening_column), 0),
                func.coalesce(func.sum(current_column), 0),
            )
            .join(User, User.id == Account.user_id)
            .where(
                Account.channel == ChannelType.FLOAT_POOL,
                User.role == UserRole.SUPERVISOR,
                User.status == UserStatus.ACTIVE,
            )
        )).one()
        return FloatPoolSummary(opening=money(int(row[0])), current=money(int(row[1])))

    async def _rollover_ran_today(self) -> bool:
        return await last_rollover_date(self.db) == local_date(self.clock(), self.tz)

    async def _yesterday_after_rollover(self, date_range: DateRange) -> bool:
        """Yesterday's figures live in (previous_start_of_day, start_of_day) once today's rollover ran."""
        if date_range.period != Period.YESTERDAY:
            return False
        return await self._rollover_ran_today()

    async def _get_supervisor(self, supervisor_id: int) -> User:
        supervisor = await self.db.get(User, supervisor_id)
        if supervisor is None or supervisor.role != UserRole.SUPERVISOR:
            raise ResourceNotFoundError("Supervisor", supervisor_id)
        return supervisor


def _account_values(account: Account, use_previous: bool) -> Tuple[int, int]:
    if use_previous:
        return account.previous_start_of_day, account.start_of_day
    return account.start_of_day, account.end_of_day

"""
Reconciliation report.

Replays the ledger to check that each account's end-of-day balance is
explained by its entries. Read-only: drift is reported, never repaired.

end_of_day moves only through recorded events:
    END_OF_DAY entry                 sets it (anchor)
    end-of-day reset / deletion      sets it through the audit snapshot (anchor)
    DEPOSIT, TRANSFER_IN             add
    WITHDRAWAL, TRANSFER_OUT         subtract
Rollover never touches end_of_day, so the replay needs no cycle boundary.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from floatledger.app.core.exceptions import ResourceNotFoundError
from floatledger.app.domain.ledger.accounts import AccountStore
from floatledger.app.domain.ledger.ledger import Ledger
from floatledger.app.domain.ledger.money import money
from floatledger.app.models.account import Account
from floatledger.app.models.enums import AUDIT_ENTRY_TYPES, LedgerEntryType, LineKind, UserRole
from floatledger.app.models.ledger_entry import LedgerEntry
from floatledger.app.models.user import User
from floatledger.app.schemas.ledger import LedgerFilters, parse_entry_metadata
from floatledger.app.schemas.lines import ReconciliationLine, ReconciliationReport

CREDIT_TYPES = frozenset({LedgerEntryType.DEPOSIT, LedgerEntryType.TRANSFER_IN})
DEBIT_TYPES = frozenset({LedgerEntryType.WITHDRAWAL, LedgerEntryType.TRANSFER_OUT})


def _anchor_value(entry: LedgerEntry) -> Optional[int]:
    """Absolute end-of-day value set by ``entry``, or None if it only moves it."""
    if entry.entry_type == LedgerEntryType.END_OF_DAY:
        return entry.amount
    if entry.entry_type in AUDIT_ENTRY_TYPES:
        snapshot = parse_entry_metadata(entry.metadata_payload)
        if snapshot is not None and getattr(snapshot, "line_kind", None) == LineKind.END_OF_DAY:
            return snapshot.new_value
    return None


class ReconciliationService:

    def __init__(self, db: AsyncSession):
        self.db = db
        self.accounts = AccountStore(db)
        self.ledger = Ledger(db)

    async def supervisor_report(self, supervisor_id: int) -> ReconciliationReport:
        supervisor = await self.db.get(User, supervisor_id)
        if supervisor is None or supervisor.role != UserRole.SUPERVISOR:
            raise ResourceNotFoundError("Supervisor", supervisor_id)

        lines = [await self.replay(account) for account in await self.accounts.list_for_user(supervisor_id)]
        return ReconciliationReport(
            supervisor_id=supervisor_id,
            lines=lines,
            balanced=all(line.balanced for line in lines),
        )

    async def replay(self, account: Account) -> ReconciliationLine:
        # Newest first: walk back to the latest anchor, collecting later deltas.
        delta = 0
        replayed = 0
        anchor_id = None
        expected = 0
        async for entry in self.ledger.query(LedgerFilters(account_id=account.id)):
            anchor = _anchor_value(entry)
            if anchor is not None:
                expected = anchor
                anchor_id = entry.id
                replayed += 1
                break
            if entry.entry_type in CREDIT_TYPES:
                delta += entry.amount
                replayed += 1
            elif entry.entry_type in DEBIT_TYPES:
                delta -= entry.amount
                replayed += 1

        expected += delta
        drift = account.end_of_day - expected
        return ReconciliationLine(
            account_id=account.id,
            channel=account.channel,
            expected_end_of_day=money(expected),
            actual_end_of_day=money(account.end_of_day),
            drift=money(drift, with_sign=True),
            balanced=drift == 0,
            anchor_entry_id=anchor_id,
            entries_replayed=replayed,
        )

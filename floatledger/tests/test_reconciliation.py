"""
Ledger replay against stored end-of-day balances.
"""

from decimal import Decimal

import pytest

from floatledger.app.core.exceptions import ResourceNotFoundError
from floatledger.app.domain.ledger.accounts import AccountStore
from floatledger.app.domain.ledger.line_operations import LineOperations
from floatledger.app.domain.ledger.reconciliation import ReconciliationService
from floatledger.app.domain.ledger.transactions import TransactionService
from floatledger.app.models.enums import ChannelType, LedgerEntryType, LineKind, UserRole


@pytest.fixture
def transactions(db_session, clock):
    return TransactionService(db_session, clock=clock)


async def test_posted_movements_reconcile(db_session, transactions, clock, admin, supervisor, as_actor):
    root = as_actor(admin)
    await transactions.post(root, supervisor.id, LedgerEntryType.DEPOSIT, Decimal("100"), channel=ChannelType.CASH)
    clock.advance(seconds=1)
    await transactions.post(root, supervisor.id, LedgerEntryType.END_OF_DAY, Decimal("400"), channel=ChannelType.CASH)
    clock.advance(seconds=1)
    await transactions.post(root, supervisor.id, LedgerEntryType.WITHDRAWAL, Decimal("50"), channel=ChannelType.CASH)
    clock.advance(seconds=1)
    await transactions.post(root, supervisor.id, LedgerEntryType.TRANSFER_IN, Decimal("25"), channel=ChannelType.CASH)

    report = await ReconciliationService(db_session).supervisor_report(supervisor.id)

    assert report.balanced is True
    [line] = report.lines
    assert line.channel == ChannelType.CASH
    assert line.expected_end_of_day.minor == 37500
    assert line.actual_end_of_day.minor == 37500
    assert line.entries_replayed == 3


async def test_end_of_day_reset_is_an_anchor(db_session, transactions, clock, lock_manager, admin, supervisor,
                                             as_actor):
    root = as_actor(admin)
    await transactions.post(root, supervisor.id, LedgerEntryType.DEPOSIT, Decimal("100"), channel=ChannelType.CASH)
    clock.advance(seconds=1)
    result = await LineOperations(db_session, lock_manager, clock=clock).reset_line(
        root, supervisor.id, "CASH", LineKind.END_OF_DAY, Decimal("60")
    )
    clock.advance(seconds=1)
    await transactions.post(root, supervisor.id, LedgerEntryType.DEPOSIT, Decimal("5"), channel=ChannelType.CASH)

    report = await ReconciliationService(db_session).supervisor_report(supervisor.id)

    assert report.balanced is True
    assert report.lines[0].anchor_entry_id == result.audit_entry_id
    assert report.lines[0].expected_end_of_day.minor == 6500


async def test_drift_is_reported_not_repaired(db_session, transactions, admin, supervisor, as_actor):
    await transactions.post(as_actor(admin), supervisor.id, LedgerEntryType.DEPOSIT, Decimal("100"),
                            channel=ChannelType.CASH)
    account = await AccountStore(db_session).get(supervisor.id, ChannelType.CASH)
    account.end_of_day = 12345
    await db_session.commit()

    report = await ReconciliationService(db_session).supervisor_report(supervisor.id)

    assert report.balanced is False
    assert report.lines[0].drift.minor == 12345 - 10000
    assert report.lines[0].drift.formatted.startswith("+")
    assert account.end_of_day == 12345


async def test_report_for_non_supervisor(db_session, make_user):
    partner = await make_user(UserRole.PARTNER, "Moussa")

    with pytest.raises(ResourceNotFoundError):
        await ReconciliationService(db_session).supervisor_report(partner.id)

"""
Daily rollover: carry-forward, idempotency and all-or-nothing batches.
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from floatledger.app.core.clock import local_timezone
from floatledger.app.domain.ledger.rollover import WATERMARK_KEY, RolloverEngine, last_rollover_date
from floatledger.app.domain.ledger.transactions import TransactionService
from floatledger.app.models.account import Account
from floatledger.app.models.enums import ChannelType, LedgerEntryType, UserRole
from floatledger.app.models.notification import NotificationCategory
from floatledger.app.models.rollover_watermark import RolloverWatermark

UTC = local_timezone("UTC")


@pytest.fixture
async def funded_account(db_session, clock, admin, supervisor, as_actor):
    service = TransactionService(db_session, clock=clock)
    await service.post(as_actor(admin), supervisor.id, LedgerEntryType.START_OF_DAY, Decimal("500"),
                       channel=ChannelType.CASH)
    entry = await service.post(as_actor(admin), supervisor.id, LedgerEntryType.END_OF_DAY, Decimal("320"),
                               channel=ChannelType.CASH)
    return await db_session.get(Account, entry.account_id)


async def test_rollover_carries_end_into_start(db_session, clock, funded_account):
    result = await RolloverEngine(db_session, clock=clock, tz=UTC).run()

    assert result.executed is True
    assert result.run_date == date(2026, 3, 10)
    assert result.accounts_rolled == 1
    assert funded_account.previous_start_of_day == 50000
    assert funded_account.start_of_day == 32000
    assert funded_account.end_of_day == 32000
    assert await last_rollover_date(db_session) == date(2026, 3, 10)


async def test_second_run_same_day_is_a_noop(db_session, clock, funded_account, admin, supervisor, as_actor):
    engine = RolloverEngine(db_session, clock=clock, tz=UTC)
    await engine.run()

    # Activity after the first run must not be rolled a second time.
    await TransactionService(db_session, clock=clock).post(
        as_actor(admin), supervisor.id, LedgerEntryType.DEPOSIT, Decimal("100"), channel=ChannelType.CASH
    )
    clock.advance(hours=3)
    watermark = await db_session.get(RolloverWatermark, WATERMARK_KEY)
    stamped_at = watermark.updated_at

    result = await engine.run(trigger="manual")

    assert result.executed is False
    assert result.reason == "already_executed_today"
    assert funded_account.start_of_day == 32000
    assert funded_account.end_of_day == 42000
    assert watermark.updated_at == stamped_at
    assert watermark.trigger == "scheduler"


async def test_next_day_runs_again(db_session, clock, funded_account):
    engine = RolloverEngine(db_session, clock=clock, tz=UTC)
    await engine.run()
    clock.advance(days=1)

    result = await engine.run()

    assert result.executed is True
    assert result.run_date == date(2026, 3, 11)
    assert funded_account.previous_start_of_day == 32000


async def test_failure_rolls_back_the_whole_batch(db_session, clock, funded_account, mocker):
    account_id = funded_account.id
    engine = RolloverEngine(db_session, clock=clock, tz=UTC)
    mocker.patch.object(engine, "_advance_watermark", side_effect=RuntimeError("disk full"))

    with pytest.raises(RuntimeError):
        await engine.run()

    account = await db_session.get(Account, account_id)
    await db_session.refresh(account)
    assert account.start_of_day == 50000
    assert account.previous_start_of_day == 0
    assert await last_rollover_date(db_session) is None


async def test_notifies_active_supervisors_and_admins(db_session, clock, funded_account, make_user,
                                                     dispatcher, notifier, admin, supervisor):
    await make_user(UserRole.PARTNER, "Moussa")

    await RolloverEngine(db_session, notifier=dispatcher, clock=clock, tz=UTC).run()
    await dispatcher.drain()

    recipients = sorted(request.user_id for request in notifier.sent)
    assert recipients == sorted([admin.id, supervisor.id])
    assert all(request.category == NotificationCategory.ROLLOVER for request in notifier.sent)


async def test_notification_failure_does_not_undo_rollover(db_session, clock, funded_account, dispatcher,
                                                           notifier):
    notifier.fail = True

    result = await RolloverEngine(db_session, notifier=dispatcher, clock=clock, tz=UTC).run()
    await dispatcher.drain()

    assert result.executed is True
    assert await last_rollover_date(db_session) == date(2026, 3, 10)


async def test_status(db_session, clock, funded_account):
    engine = RolloverEngine(db_session, clock=clock, tz=UTC)

    before = await engine.status()
    await engine.run()
    after = await engine.status()

    assert before.executed_today is False
    assert before.last_run_date is None
    assert after.executed_today is True
    assert after.next_run_at == datetime(2026, 3, 11)

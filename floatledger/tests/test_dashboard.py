"""
Dashboard aggregation and period resolution.
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from floatledger.app.core.clock import local_timezone
from floatledger.app.core.exceptions import PermissionDeniedError, ResourceNotFoundError, ValidationError
from floatledger.app.domain.ledger.dashboard import DashboardAggregator
from floatledger.app.domain.ledger.ledger import Ledger
from floatledger.app.domain.ledger.periods import Period, resolve_period
from floatledger.app.domain.ledger.rollover import RolloverEngine
from floatledger.app.domain.ledger.transactions import TransactionService
from floatledger.app.models.enums import ChannelType, LedgerEntryType, UserRole, UserStatus
from floatledger.app.schemas.permissions import Actor

UTC = local_timezone("UTC")


@pytest.fixture
def transactions(db_session, clock):
    return TransactionService(db_session, clock=clock)


@pytest.fixture
def aggregator(db_session, clock):
    return DashboardAggregator(db_session, clock=clock, tz=UTC)


def _today(clock):
    return resolve_period(Period.TODAY, clock(), UTC)


async def test_deposit_does_not_open_the_day(transactions, aggregator, clock, admin, supervisor, as_actor):
    await transactions.post(as_actor(admin), supervisor.id, LedgerEntryType.DEPOSIT, Decimal("1000"),
                            channel=ChannelType.CASH)

    card = await aggregator.build_supervisor_card(supervisor.id, _today(clock))
    assert card.start_total.minor == 0

    await transactions.post(as_actor(admin), supervisor.id, LedgerEntryType.START_OF_DAY, Decimal("1000"),
                            channel=ChannelType.CASH)

    card = await aggregator.build_supervisor_card(supervisor.id, _today(clock))
    assert card.start_total.amount == Decimal("1000.00")


async def test_net_is_signed(transactions, aggregator, clock, admin, supervisor, as_actor):
    await transactions.post(as_actor(admin), supervisor.id, LedgerEntryType.START_OF_DAY, Decimal("50000"),
                            channel=ChannelType.CASH)
    await transactions.post(as_actor(admin), supervisor.id, LedgerEntryType.END_OF_DAY, Decimal("20000"),
                            channel=ChannelType.CASH)

    card = await aggregator.build_supervisor_card(supervisor.id, _today(clock))

    assert card.start_of_day_by_key["CASH"].minor == 5000000
    assert card.end_of_day_by_key["CASH"].minor == 2000000
    assert card.net.minor == -3000000
    assert card.net.formatted == "-30 000 F"


async def test_partner_lines_on_card(transactions, aggregator, clock, make_user, supervisor, as_actor):
    amadou = await make_user(UserRole.PARTNER, "Amadou")
    fatou = await make_user(UserRole.PARTNER, "Fatou")
    me = as_actor(supervisor)

    await transactions.post(me, supervisor.id, LedgerEntryType.DEPOSIT, Decimal("300"), partner_id=amadou.id)
    await transactions.post(me, supervisor.id, LedgerEntryType.DEPOSIT, Decimal("200"), partner_id=amadou.id)
    await transactions.post(me, supervisor.id, LedgerEntryType.WITHDRAWAL, Decimal("150"), partner_id=fatou.id)

    card = await aggregator.build_supervisor_card(supervisor.id, _today(clock))

    assert card.start_of_day_by_key["partner:Amadou"].minor == 50000
    assert "partner:Amadou" not in card.end_of_day_by_key
    assert card.end_of_day_by_key["partner:Fatou"].minor == 15000
    assert "partner:Fatou" not in card.start_of_day_by_key


async def test_partners_sharing_a_name_get_distinct_keys(transactions, aggregator, clock, make_user,
                                                         supervisor, as_actor):
    first = await make_user(UserRole.PARTNER, "Amadou")
    second = await make_user(UserRole.PARTNER, "Amadou")
    me = as_actor(supervisor)

    await transactions.post(me, supervisor.id, LedgerEntryType.DEPOSIT, Decimal("100"), partner_id=first.id)
    await transactions.post(me, supervisor.id, LedgerEntryType.DEPOSIT, Decimal("250"), partner_id=second.id)

    card = await aggregator.build_supervisor_card(supervisor.id, _today(clock))

    assert card.start_of_day_by_key[f"partner:Amadou#{first.id}"].minor == 10000
    assert card.start_of_day_by_key[f"partner:Amadou#{second.id}"].minor == 25000
    assert "partner:Amadou" not in card.start_of_day_by_key


async def test_partner_entries_outside_range_are_ignored(transactions, aggregator, clock, make_user,
                                                         supervisor, as_actor):
    amadou = await make_user(UserRole.PARTNER, "Amadou")
    await transactions.post(as_actor(supervisor), supervisor.id, LedgerEntryType.DEPOSIT, Decimal("100"),
                            partner_id=amadou.id)
    clock.advance(days=1)

    card = await aggregator.build_supervisor_card(supervisor.id, _today(clock))

    assert card.start_of_day_by_key == {}


async def test_partner_dashboard_groups_by_supervisor(db_session, transactions, aggregator, clock, make_user,
                                                      admin, supervisor, as_actor):
    amadou = await make_user(UserRole.PARTNER, "Amadou")
    fatou = await make_user(UserRole.PARTNER, "Fatou")
    binta = await make_user(UserRole.SUPERVISOR, "Binta")
    root = as_actor(admin)

    await transactions.post(root, supervisor.id, LedgerEntryType.DEPOSIT, Decimal("300"), partner_id=amadou.id)
    await transactions.post(root, supervisor.id, LedgerEntryType.WITHDRAWAL, Decimal("50"), partner_id=amadou.id)
    await transactions.post(root, binta.id, LedgerEntryType.WITHDRAWAL, Decimal("400"), partner_id=amadou.id)
    await transactions.post(root, binta.id, LedgerEntryType.DEPOSIT, Decimal("999"), partner_id=fatou.id)
    archived = await transactions.post(root, binta.id, LedgerEntryType.DEPOSIT, Decimal("70"),
                                       partner_id=amadou.id)
    await Ledger(db_session, clock=clock).archive(archived.id, admin.id, reason="Duplicate")
    await db_session.commit()

    dashboard = await aggregator.build_partner_dashboard(amadou.id, _today(clock))

    assert dashboard.partner_name == "Amadou"
    assert [line.supervisor_name for line in dashboard.supervisors] == ["Awa Ndiaye", "Binta"]
    awa_line, binta_line = dashboard.supervisors
    assert (awa_line.deposits.minor, awa_line.withdrawals.minor, awa_line.net.minor) == (30000, 5000, 25000)
    assert (binta_line.deposits.minor, binta_line.withdrawals.minor) == (0, 40000)
    assert dashboard.total_deposits.minor == 30000
    assert dashboard.total_withdrawals.minor == 45000
    assert dashboard.net.minor == -15000
    assert dashboard.net.formatted.startswith("-")
    assert dashboard.entry_count == 3
    assert len(dashboard.recent_entries) == 3


async def test_partner_dashboard_for_unknown_partner(aggregator, clock, supervisor):
    with pytest.raises(ResourceNotFoundError):
        await aggregator.build_partner_dashboard(supervisor.id, _today(clock))


async def test_global_dashboard(transactions, aggregator, clock, admin, make_user, as_actor):
    awa = await make_user(UserRole.SUPERVISOR, "Awa")
    binta = await make_user(UserRole.SUPERVISOR, "Binta")
    await make_user(UserRole.SUPERVISOR, "Suspended One", status=UserStatus.SUSPENDED)
    root = as_actor(admin)

    await transactions.post(root, awa.id, LedgerEntryType.START_OF_DAY, Decimal("1000"), channel=ChannelType.CASH)
    await transactions.post(root, binta.id, LedgerEntryType.END_OF_DAY, Decimal("400"), channel=ChannelType.CASH)
    await transactions.post(root, binta.id, LedgerEntryType.POOL_ALLOCATION, Decimal("5000"),
                            channel=ChannelType.FLOAT_POOL)

    dashboard = await aggregator.build_global_dashboard(_today(clock))

    assert [card.supervisor_name for card in dashboard.supervisors] == ["Awa", "Binta"]
    assert dashboard.start_total.minor == 100000 + 500000
    assert dashboard.end_total.minor == 40000
    assert dashboard.net.minor == 40000 - 600000
    assert dashboard.float_pool.opening.minor == 500000
    assert dashboard.float_pool.current.minor == 0
    assert dashboard.rollover_executed_today is False


async def test_yesterday_after_rollover_uses_previous_cycle(db_session, transactions, aggregator, clock,
                                                            admin, supervisor, as_actor):
    root = as_actor(admin)
    await transactions.post(root, supervisor.id, LedgerEntryType.START_OF_DAY, Decimal("100"),
                            channel=ChannelType.CASH)
    await transactions.post(root, supervisor.id, LedgerEntryType.END_OF_DAY, Decimal("80"),
                            channel=ChannelType.CASH)

    clock.advance(days=1)
    await RolloverEngine(db_session, clock=clock, tz=UTC).run()

    yesterday = aggregator.resolve_range(root, Period.YESTERDAY)
    card = await aggregator.build_supervisor_card(supervisor.id, yesterday)
    today = await aggregator.build_supervisor_card(supervisor.id, _today(clock))

    assert card.start_of_day_by_key["CASH"].minor == 10000
    assert card.end_of_day_by_key["CASH"].minor == 8000
    assert today.start_of_day_by_key["CASH"].minor == 8000


async def test_supervisor_dashboard_lists_recent_entries(transactions, aggregator, clock, admin, supervisor,
                                                         as_actor):
    await transactions.post(as_actor(admin), supervisor.id, LedgerEntryType.START_OF_DAY, Decimal("10"),
                            channel=ChannelType.CASH)

    dashboard = await aggregator.build_supervisor_dashboard(supervisor.id, _today(clock))

    assert len(dashboard.recent_entries) == 1
    assert dashboard.recent_entries[0].receiver_name == "Awa Ndiaye"
    assert dashboard.recent_entries[0].channel == ChannelType.CASH


# --- Periods ---

def test_today_starts_at_local_midnight(clock):
    date_range = resolve_period(Period.TODAY, clock(), UTC)

    assert date_range.start == datetime(2026, 3, 10)
    assert date_range.end == clock()


def test_yesterday_is_a_full_day(clock):
    date_range = resolve_period(Period.YESTERDAY, clock(), UTC)

    assert date_range.start == datetime(2026, 3, 9)
    assert date_range.end == datetime(2026, 3, 10) - timedelta(microseconds=1)


def test_month_and_year_to_date(clock):
    assert resolve_period(Period.MONTH, clock(), UTC).start == datetime(2026, 3, 1)
    assert resolve_period(Period.YEAR, clock(), UTC).start == datetime(2026, 1, 1)
    assert resolve_period(Period.ALL, clock(), UTC).start is None


def test_local_midnight_follows_the_operating_timezone(clock):
    cairo = local_timezone("Africa/Cairo")

    date_range = resolve_period(Period.TODAY, datetime(2026, 3, 10, 23, 30), cairo)

    # 01:30 local on the 11th; local midnight is 22:00 UTC on the 10th
    assert date_range.start == datetime(2026, 3, 10, 22, 0)


@pytest.mark.parametrize("start, end", [
    (None, datetime(2026, 3, 9)),
    (datetime(2026, 3, 9), None),
    (datetime(2026, 3, 9), datetime(2026, 3, 8)),
    (datetime(2026, 3, 9), datetime(2026, 3, 11)),
    (datetime(2024, 1, 1), datetime(2026, 3, 9)),
])
def test_invalid_custom_ranges(clock, start, end):
    with pytest.raises(ValidationError):
        resolve_period(Period.CUSTOM, clock(), UTC, start=start, end=end)


def test_custom_range_is_admin_only(aggregator):
    with pytest.raises(PermissionDeniedError):
        aggregator.resolve_range(Actor(id=5, role=UserRole.SUPERVISOR), Period.CUSTOM,
                                 datetime(2026, 3, 1), datetime(2026, 3, 2))

    date_range = aggregator.resolve_range(Actor(id=1, role=UserRole.ADMIN), Period.CUSTOM,
                                          datetime(2026, 3, 1), datetime(2026, 3, 2))
    assert date_range.start == datetime(2026, 3, 1)

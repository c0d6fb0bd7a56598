"""
Transaction posting.

Inbound deposit / withdrawal / start-of-day / end-of-day operations. The
account change and its ledger entry are one atomic unit; the supervisor is
notified afterwards on a best-effort basis.

Channel postings:
    START_OF_DAY     start_of_day += amount
    END_OF_DAY       end_of_day    = amount
    DEPOSIT          end_of_day   += amount
    TRANSFER_IN      end_of_day   += amount
    WITHDRAWAL       end_of_day   -= amount (refused below zero)
    TRANSFER_OUT     end_of_day   -= amount (refused below zero)
    POOL_ALLOCATION  start_of_day += amount (admin, FLOAT_POOL only)

Partner postings (DEPOSIT / WITHDRAWAL) are ledger-only: partners have no
account.
"""

import logging
from decimal import Decimal
from typing import Awaitable, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from floatledger.app.core.clock import Clock, utcnow
from floatledger.app.core.exceptions import PermissionDeniedError, ResourceNotFoundError, ValidationError
from floatledger.app.db.session import atomic
from floatledger.app.domain.ledger.accounts import AccountStore
from floatledger.app.domain.ledger.ledger import Ledger
from floatledger.app.domain.ledger.money import format_amount, to_minor_units
from floatledger.app.models.account import Account
from floatledger.app.models.enums import ChannelType, LedgerEntryType, UserRole
from floatledger.app.models.ledger_entry import LedgerEntry
from floatledger.app.models.notification import NotificationCategory
from floatledger.app.models.user import User
from floatledger.app.schemas.ledger import LedgerEntryCreate
from floatledger.app.schemas.notification import NotificationRequest
from floatledger.app.schemas.permissions import Actor
from floatledger.app.services.notification_service import NotificationDispatcher

logger = logging.getLogger(__name__)

PARTNER_ENTRY_TYPES = frozenset({LedgerEntryType.DEPOSIT, LedgerEntryType.WITHDRAWAL})

ENTRY_LABELS = {
    LedgerEntryType.DEPOSIT: "Deposit",
    LedgerEntryType.WITHDRAWAL: "Withdrawal",
    LedgerEntryType.START_OF_DAY: "Start of day",
    LedgerEntryType.END_OF_DAY: "End of day",
    LedgerEntryType.TRANSFER_OUT: "Transfer sent",
    LedgerEntryType.TRANSFER_IN: "Transfer received",
    LedgerEntryType.POOL_ALLOCATION: "Float pool allocation",
}

AccountPosting = Callable[[AccountStore, Account, int], Awaitable[Account]]


async def _increment_start(store: AccountStore, account: Account, amount: int) -> Account:
    return await store.increment_start_of_day(account.id, amount)


async def _set_end(store: AccountStore, account: Account, amount: int) -> Account:
    return await store.set_end_of_day(account.id, amount)


async def _credit_end(store: AccountStore, account: Account, amount: int) -> Account:
    return await store.adjust_end_of_day(account.id, amount)


async def _debit_end(store: AccountStore, account: Account, amount: int) -> Account:
    return await store.adjust_end_of_day(account.id, -amount)


CHANNEL_POSTINGS: Dict[LedgerEntryType, AccountPosting] = {
    LedgerEntryType.START_OF_DAY: _increment_start,
    LedgerEntryType.END_OF_DAY: _set_end,
    LedgerEntryType.DEPOSIT: _credit_end,
    LedgerEntryType.TRANSFER_IN: _credit_end,
    LedgerEntryType.WITHDRAWAL: _debit_end,
    LedgerEntryType.TRANSFER_OUT: _debit_end,
    LedgerEntryType.POOL_ALLOCATION: _increment_start,
}


class TransactionService:

    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[NotificationDispatcher] = None,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.notifier = notifier
        self.clock = clock
        self.accounts = AccountStore(db)
        self.ledger = Ledger(db, clock=clock)

    async def post(
        self,
        actor: Actor,
        supervisor_id: int,
        entry_type: LedgerEntryType,
        amount: Decimal,
        channel: Optional[ChannelType] = None,
        partner_id: Optional[int] = None,
        description: Optional[str] = None,
    ) -> LedgerEntry:
        """
        Record a movement for a supervisor.

        Args:
            actor: Authenticated caller
            supervisor_id: Supervisor the movement belongs to
            entry_type: Organic entry type
            amount: Display amount (major units)
            channel: Target channel, for account postings
            partner_id: Partner, for partner postings (exclusive with channel)
            description: Free text

        Returns:
            The persisted ledger entry

        Raises:
            ValidationError: Bad amount, missing/ambiguous target, unsupported type
            PermissionDeniedError: Role or ownership failure
            ResourceNotFoundError: Unknown supervisor or partner
        """
        minor = to_minor_units(amount)
        if minor <= 0:
            raise ValidationError("Amount must be greater than zero", details={"amount": str(amount)})
        if (channel is None) == (partner_id is None):
            raise ValidationError("Provide exactly one of channel or partner_id")

        self._authorize(actor, supervisor_id, entry_type, channel)
        supervisor = await self._get_user(supervisor_id, UserRole.SUPERVISOR, "Supervisor")

        if partner_id is not None:
            entry = await self._post_partner(actor, supervisor, entry_type, minor, partner_id, description)
        else:
            entry = await self._post_channel(actor, supervisor, entry_type, minor, channel, description)

        logger.info(
            "Transaction posted",
            extra={
                "entry_id": entry.id,
                "entry_type": entry_type.value,
                "supervisor_id": supervisor_id,
                "actor_id": actor.id,
                "amount": minor,
            }
        )
        self._notify(supervisor_id, entry_type, minor)
        return entry

    def _authorize(
        self,
        actor: Actor,
        supervisor_id: int,
        entry_type: LedgerEntryType,
        channel: Optional[ChannelType],
    ) -> None:
        if actor.role == UserRole.PARTNER:
            raise PermissionDeniedError("Partners cannot record transactions")
        if actor.role == UserRole.SUPERVISOR:
            if actor.id != supervisor_id:
                raise PermissionDeniedError("Supervisors can only record their own transactions")
            if channel == ChannelType.FLOAT_POOL:
                raise PermissionDeniedError("The float pool is managed by administrators")
        if entry_type == LedgerEntryType.POOL_ALLOCATION and channel != ChannelType.FLOAT_POOL:
            raise ValidationError("Pool allocations can only target the FLOAT_POOL channel")

    async def _post_partner(self, actor, supervisor, entry_type, minor, partner_id, description) -> LedgerEntry:
        if entry_type not in PARTNER_ENTRY_TYPES:
            raise ValidationError(
                f"{entry_type.value} cannot be recorded for a partner",
                details={"allowed": sorted(t.value for t in PARTNER_ENTRY_TYPES)}
            )
        partner = await self._get_user(partner_id, UserRole.PARTNER, "Partner")

        async with atomic(self.db):
            entry = await self.ledger.append(
                LedgerEntryCreate(
                    entry_type=entry_type,
                    amount=minor,
                    sender_id=actor.id,
                    receiver_id=supervisor.id,
                    partner_id=partner.id,
                    description=description or f"{ENTRY_LABELS[entry_type]} - {partner.display_name}",
                ),
                actor.role,
            )
        return entry

    async def _post_channel(self, actor, supervisor, entry_type, minor, channel, description) -> LedgerEntry:
        posting = CHANNEL_POSTINGS.get(entry_type)
        if posting is None:
            raise ValidationError(f"{entry_type.value} cannot be posted to a channel")

        async with atomic(self.db):
            account = await self.accounts.get_or_create(supervisor.id, channel)
            await posting(self.accounts, account, minor)
            entry = await self.ledger.append(
                LedgerEntryCreate(
                    entry_type=entry_type,
                    amount=minor,
                    sender_id=actor.id,
                    receiver_id=supervisor.id,
                    account_id=account.id,
                    description=description or f"{ENTRY_LABELS[entry_type]} - {channel.value}",
                ),
                actor.role,
            )
        return entry

    async def _get_user(self, user_id: int, role: UserRole, label: str) -> User:
        user = await self.db.get(User, user_id)
        if user is None or user.role != role:
            raise ResourceNotFoundError(label, user_id)
        return user

    def _notify(self, supervisor_id: int, entry_type: LedgerEntryType, minor: int) -> None:
        if self.notifier is None:
            return
        self.notifier.dispatch(NotificationRequest(
            user_id=supervisor_id,
            title=f"{ENTRY_LABELS[entry_type]} recorded",
            message=f"{ENTRY_LABELS[entry_type]} of {format_amount(minor)} was recorded on your account.",
            category=NotificationCategory.TRANSACTION,
        ))

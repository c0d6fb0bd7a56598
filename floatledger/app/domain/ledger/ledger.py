"""
Ledger (Domain Logic).

Append-only transaction log: the source of truth for every monetary
movement and for the audit trail of manual corrections.
"""

import logging
from typing import AsyncIterator, Dict, FrozenSet, List, Optional, Sequence

from sqlalchemy import and_, desc, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from floatledger.app.core.clock import Clock, to_utc, utcnow
from floatledger.app.core.config import settings
from floatledger.app.core.exceptions import PermissionDeniedError, ResourceNotFoundError, ValidationError
from floatledger.app.domain.ledger.money import money
from floatledger.app.models.account import Account
from floatledger.app.models.enums import AUDIT_ENTRY_TYPES, LedgerEntryType, UserRole
from floatledger.app.models.ledger_entry import LedgerEntry
from floatledger.app.models.user import User
from floatledger.app.schemas.ledger import (
    ArchivalMarker,
    EntryView,
    LedgerEntryCreate,
    LedgerFilters,
    LedgerStats,
    TypeTotals,
)

logger = logging.getLogger(__name__)

ARCHIVED_PREFIX = "[ARCHIVED] "

# Entry types each role may record. Partners never write to the ledger.
ROLE_ENTRY_TYPES: Dict[UserRole, FrozenSet[LedgerEntryType]] = {
    UserRole.ADMIN: frozenset(LedgerEntryType),
    UserRole.SUPERVISOR: frozenset({
        LedgerEntryType.DEPOSIT,
        LedgerEntryType.WITHDRAWAL,
        LedgerEntryType.START_OF_DAY,
        LedgerEntryType.END_OF_DAY,
        LedgerEntryType.TRANSFER_OUT,
        LedgerEntryType.TRANSFER_IN,
        LedgerEntryType.AUDIT_CORRECTION,
        LedgerEntryType.AUDIT_DELETION,
    }),
    UserRole.PARTNER: frozenset(),
}

TYPE_CATEGORIES: Dict[str, FrozenSet[LedgerEntryType]] = {
    "deposit": frozenset({LedgerEntryType.DEPOSIT, LedgerEntryType.START_OF_DAY}),
    "withdrawal": frozenset({LedgerEntryType.WITHDRAWAL, LedgerEntryType.END_OF_DAY}),
    "transfer": frozenset({LedgerEntryType.TRANSFER_OUT, LedgerEntryType.TRANSFER_IN}),
    "allocation": frozenset({LedgerEntryType.POOL_ALLOCATION}),
    "audit": AUDIT_ENTRY_TYPES,
}

INFLOW_TYPES = frozenset({
    LedgerEntryType.DEPOSIT,
    LedgerEntryType.START_OF_DAY,
    LedgerEntryType.TRANSFER_IN,
    LedgerEntryType.POOL_ALLOCATION,
})
OUTFLOW_TYPES = frozenset({
    LedgerEntryType.WITHDRAWAL,
    LedgerEntryType.END_OF_DAY,
    LedgerEntryType.TRANSFER_OUT,
})


def resolve_entry_types(value: str) -> FrozenSet[LedgerEntryType]:
    """
    Map a category name or an exact entry type name to a set of types.

    Raises:
        ValidationError: If the value is neither
    """
    category = TYPE_CATEGORIES.get(value.lower())
    if category is not None:
        return category
    try:
        return frozenset({LedgerEntryType(value.upper())})
    except ValueError:
        raise ValidationError(
            f"Unknown entry type or category '{value}'",
            details={"allowed_categories": sorted(TYPE_CATEGORIES)}
        )


def category_of(entry_type: LedgerEntryType) -> str:
    for name, types in TYPE_CATEGORIES.items():
        if entry_type in types:
            return name
    return "other"


def _name_matches(term: str):
    """Subquery of user ids whose display name contains ``term`` (case-insensitive)."""
    return select(User.id).where(User.display_name.ilike(f"%{term}%"))


class LedgerQuery:
    """
    Lazy, finite, restartable view over filtered entries.

    Iteration is ordered by ``created_at`` then ``id``, newest first, and
    fetched in keyset pages. Every ``async for`` starts a fresh scan.
    """

    def __init__(self, db: AsyncSession, filters: LedgerFilters, page_size: Optional[int] = None):
        self.db = db
        self.filters = filters
        self.page_size = page_size or settings.ledger_page_size

    def conditions(self) -> list:
        f = self.filters
        conditions = []

        if not f.include_archived:
            conditions.append(LedgerEntry.archived.is_(False))
        if f.start is not None:
            conditions.append(LedgerEntry.created_at >= to_utc(f.start))
        if f.end is not None:
            conditions.append(LedgerEntry.created_at <= to_utc(f.end))

        # Exact-id filters
        if f.sender_id is not None:
            conditions.append(LedgerEntry.sender_id == f.sender_id)
        if f.receiver_id is not None:
            conditions.append(LedgerEntry.receiver_id == f.receiver_id)
        if f.partner_id is not None:
            conditions.append(LedgerEntry.partner_id == f.partner_id)
        if f.participant_id is not None:
            conditions.append(or_(
                LedgerEntry.sender_id == f.participant_id,
                LedgerEntry.receiver_id == f.participant_id,
            ))
        if f.account_id is not None:
            conditions.append(LedgerEntry.account_id == f.account_id)
        if f.partner_only:
            conditions.append(LedgerEntry.partner_id.is_not(None))

        # Name filters
        if f.supervisor_name:
            supervisors = _name_matches(f.supervisor_name).where(User.role == UserRole.SUPERVISOR)
            conditions.append(or_(
                LedgerEntry.sender_id.in_(supervisors),
                LedgerEntry.receiver_id.in_(supervisors),
            ))
        if f.partner_name:
            partners = _name_matches(f.partner_name).where(User.role == UserRole.PARTNER)
            conditions.append(LedgerEntry.partner_id.in_(partners))
        if f.user_name:
            conditions.append(_any_participant_in(_name_matches(f.user_name)))
        if f.search:
            conditions.append(or_(
                _any_participant_in(_name_matches(f.search)),
                LedgerEntry.description.ilike(f"%{f.search}%"),
            ))

        # Types
        if f.entry_type:
            conditions.append(LedgerEntry.entry_type.in_(resolve_entry_types(f.entry_type)))
        if f.entry_types:
            conditions.append(LedgerEntry.entry_type.in_(f.entry_types))

        if f.channel is not None:
            conditions.append(LedgerEntry.account_id.in_(
                select(Account.id).where(Account.channel == f.channel)
            ))

        return conditions

    def statement(self):
        return (
            select(LedgerEntry)
            .where(*self.conditions())
            .order_by(desc(LedgerEntry.created_at), desc(LedgerEntry.id))
        )

    def __aiter__(self) -> AsyncIterator[LedgerEntry]:
        return self._scan()

    async def _scan(self) -> AsyncIterator[LedgerEntry]:
        cursor = None
        while True:
            stmt = self.statement()
            if cursor is not None:
                created_at, entry_id = cursor
                stmt = stmt.where(or_(
                    LedgerEntry.created_at < created_at,
                    and_(LedgerEntry.created_at == created_at, LedgerEntry.id < entry_id),
                ))
            rows = (await self.db.execute(stmt.limit(self.page_size))).scalars().all()
            for row in rows:
                yield row
            if len(rows) < self.page_size:
                return
            cursor = (rows[-1].created_at, rows[-1].id)

    async def all(self) -> List[LedgerEntry]:
        return [entry async for entry in self]

    async def page(self, page: int = 1, limit: int = 50) -> List[LedgerEntry]:
        if page < 1 or limit < 1:
            raise ValidationError("Page and limit must be positive", details={"page": page, "limit": limit})
        result = await self.db.execute(self.statement().offset((page - 1) * limit).limit(limit))
        return list(result.scalars().all())

    async def count(self) -> int:
        result = await self.db.execute(
            select(func.count(LedgerEntry.id)).where(*self.conditions())
        )
        return result.scalar() or 0

    async def stats(self) -> LedgerStats:
        """Counts and amounts per type, category counts, inflow and outflow."""
        stmt = (
            select(LedgerEntry.entry_type, func.count(LedgerEntry.id), func.coalesce(func.sum(LedgerEntry.amount), 0))
            .where(*self.conditions())
            .group_by(LedgerEntry.entry_type)
        )
        rows = (await self.db.execute(stmt)).all()

        by_type: Dict[str, TypeTotals] = {}
        by_category: Dict[str, int] = {name: 0 for name in TYPE_CATEGORIES}
        inflow = outflow = total_count = 0
        for entry_type, count, amount in rows:
            amount = int(amount)
            total_count += count
            by_type[entry_type.value] = TypeTotals(count=count, amount=money(amount))
            category = category_of(entry_type)
            by_category[category] = by_category.get(category, 0) + count
            if entry_type in INFLOW_TYPES:
                inflow += amount
            elif entry_type in OUTFLOW_TYPES:
                outflow += amount

        return LedgerStats(
            total_count=total_count,
            by_type=by_type,
            by_category=by_category,
            inflow=money(inflow),
            outflow=money(outflow),
        )


def _any_participant_in(user_ids):
    return or_(
        LedgerEntry.sender_id.in_(user_ids),
        LedgerEntry.receiver_id.in_(user_ids),
        LedgerEntry.partner_id.in_(user_ids),
    )


class Ledger:

    def __init__(self, db: AsyncSession, clock: Clock = utcnow, page_size: Optional[int] = None):
        self.db = db
        self.clock = clock
        self.page_size = page_size

    async def append(self, data: LedgerEntryCreate, actor_role: UserRole) -> LedgerEntry:
        """
        Validate and persist a new entry.

        Args:
            data: Entry payload, amount in minor units
            actor_role: Role of the user recording the entry

        Returns:
            The flushed entry with id and timestamp

        Raises:
            PermissionDeniedError: If the role may not record this entry type
            ValidationError: If an organic entry has a non-positive amount
        """
        if data.entry_type not in ROLE_ENTRY_TYPES[actor_role]:
            raise PermissionDeniedError(
                f"Role {actor_role.value} cannot record {data.entry_type.value} entries",
                details={"role": actor_role.value, "entry_type": data.entry_type.value}
            )
        if data.entry_type not in AUDIT_ENTRY_TYPES and data.amount <= 0:
            raise ValidationError("Amount must be greater than zero", details={"amount": data.amount})

        entry = LedgerEntry(
            entry_type=data.entry_type,
            amount=data.amount,
            sender_id=data.sender_id,
            receiver_id=data.receiver_id,
            partner_id=data.partner_id,
            account_id=data.account_id,
            description=data.description,
            metadata_payload=data.metadata,
            archived=False,
            created_at=self.clock(),
        )
        self.db.add(entry)
        await self.db.flush()

        logger.info(
            "Ledger entry appended",
            extra={"entry_id": entry.id, "entry_type": entry.entry_type.value, "amount": entry.amount}
        )
        return entry

    async def append_audit(
        self,
        entry_type: LedgerEntryType,
        amount: int,
        actor_id: int,
        actor_role: UserRole,
        supervisor_id: int,
        metadata,
        description: str,
        account_id: Optional[int] = None,
        partner_id: Optional[int] = None,
    ) -> LedgerEntry:
        """Append an AUDIT_* entry carrying a typed metadata snapshot."""
        if entry_type not in AUDIT_ENTRY_TYPES:
            raise ValidationError(f"{entry_type.value} is not an audit entry type")
        return await self.append(
            LedgerEntryCreate(
                entry_type=entry_type,
                amount=amount,
                sender_id=actor_id,
                receiver_id=supervisor_id,
                partner_id=partner_id,
                account_id=account_id,
                description=description,
                metadata=metadata.model_dump(mode="json"),
            ),
            actor_role,
        )

    async def get(self, entry_id: int) -> LedgerEntry:
        entry = await self.db.get(LedgerEntry, entry_id)
        if entry is None:
            raise ResourceNotFoundError("Ledger entry", entry_id)
        return entry

    def query(self, filters: LedgerFilters) -> LedgerQuery:
        return LedgerQuery(self.db, filters, page_size=self.page_size)

    async def archive(self, entry_id: int, actor_id: int, reason: str) -> LedgerEntry:
        """
        Soft-delete an entry.

        Marks it archived, prefixes the description and replaces the metadata
        with an archival marker that keeps the previous payload. Amount fields
        are left untouched.

        Raises:
            ResourceNotFoundError: If the entry does not exist
            ValidationError: If the entry is already archived
        """
        entry = await self.get(entry_id)
        if entry.archived:
            raise ValidationError("Entry is already archived", details={"entry_id": entry_id})

        now = self.clock()
        marker = ArchivalMarker(
            actor_id=actor_id,
            archived_at=now,
            reason=reason,
            original_description=entry.description,
            previous_metadata=entry.metadata_payload,
        )
        entry.archived = True
        entry.archived_at = now
        entry.description = f"{ARCHIVED_PREFIX}{entry.description or ''}".strip()
        entry.metadata_payload = marker.model_dump(mode="json")
        await self.db.flush()

        logger.info("Ledger entry archived", extra={"entry_id": entry.id, "actor_id": actor_id})
        return entry

    async def describe(self, entries: Sequence[LedgerEntry]) -> List[EntryView]:
        """Build display views, resolving participant names and channels in two queries."""
        user_ids = set()
        account_ids = set()
        for entry in entries:
            user_ids.update(i for i in (entry.sender_id, entry.receiver_id, entry.partner_id) if i is not None)
            if entry.account_id is not None:
                account_ids.add(entry.account_id)

        names: Dict[int, str] = {}
        if user_ids:
            rows = await self.db.execute(select(User.id, User.display_name).where(User.id.in_(user_ids)))
            names = {row.id: row.display_name for row in rows}
        channels = {}
        if account_ids:
            rows = await self.db.execute(select(Account.id, Account.channel).where(Account.id.in_(account_ids)))
            channels = {row.id: row.channel for row in rows}

        return [
            EntryView(
                id=entry.id,
                entry_type=entry.entry_type,
                amount=money(entry.amount),
                sender_id=entry.sender_id,
                sender_name=names.get(entry.sender_id),
                receiver_id=entry.receiver_id,
                receiver_name=names.get(entry.receiver_id),
                partner_id=entry.partner_id,
                partner_name=names.get(entry.partner_id),
                account_id=entry.account_id,
                channel=channels.get(entry.account_id),
                description=entry.description,
                metadata=entry.metadata_payload,
                archived=entry.archived,
                archived_at=entry.archived_at,
                created_at=entry.created_at,
            )
            for entry in entries
        ]

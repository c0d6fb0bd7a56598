"""
Partner sub-ledger keys.

Partners have no account; their movements are grouped under a line key
``partner:<display name>``. Display names are not unique, so a key may
carry the partner id as ``partner:<display name>#<id>``, which always
resolves exactly. Dashboard cards suffix every name shared on the card.
A bare name typed by a client and shared by several partners resolves to
the one with the most recent matching entry for the supervisor.
"""

import logging
from datetime import timedelta
from typing import Iterable, Optional

from pydantic import BaseModel
from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from floatledger.app.core.clock import Clock, utcnow
from floatledger.app.core.config import settings
from floatledger.app.core.exceptions import ResourceNotFoundError, ValidationError
from floatledger.app.models.enums import ChannelType, LedgerEntryType, LineKind, UserRole
from floatledger.app.models.ledger_entry import LedgerEntry
from floatledger.app.models.user import User

logger = logging.getLogger(__name__)

PARTNER_PREFIX = "partner:"

# Entry types relevant to each balance line. Partner entries only use the
# DEPOSIT / WITHDRAWAL half of each pair.
LINE_DIRECTION_TYPES = {
    LineKind.START_OF_DAY: (LedgerEntryType.DEPOSIT, LedgerEntryType.START_OF_DAY),
    LineKind.END_OF_DAY: (LedgerEntryType.WITHDRAWAL, LedgerEntryType.END_OF_DAY),
}
PARTNER_DIRECTION_TYPES = {
    LineKind.START_OF_DAY: (LedgerEntryType.DEPOSIT,),
    LineKind.END_OF_DAY: (LedgerEntryType.WITHDRAWAL,),
}


class LineTarget(BaseModel):
    """A parsed line key: either a channel or a partner reference."""
    key: str
    channel: Optional[ChannelType] = None
    partner_name: Optional[str] = None
    partner_id: Optional[int] = None

    @property
    def is_partner(self) -> bool:
        return self.channel is None


def partner_key(name: str, partner_id: Optional[int] = None) -> str:
    if partner_id is None:
        return f"{PARTNER_PREFIX}{name}"
    return f"{PARTNER_PREFIX}{name}#{partner_id}"


def parse_line_key(key: str) -> LineTarget:
    """
    Parse ``CASH`` / ``MOBILE_MONEY_A`` / ... or ``partner:<name>[#<id>]``.

    Raises:
        ValidationError: If the key names no channel and no partner
    """
    raw = (key or "").strip()
    if raw.lower().startswith(PARTNER_PREFIX):
        rest = raw[len(PARTNER_PREFIX):].strip()
        name, partner_id = rest, None
        if "#" in rest:
            name, _, suffix = rest.rpartition("#")
            if suffix.isdigit():
                partner_id = int(suffix)
            else:
                name = rest
        name = name.strip()
        if not name:
            raise ValidationError("Partner key has no partner name", details={"key": key})
        return LineTarget(key=partner_key(name, partner_id), partner_name=name, partner_id=partner_id)

    try:
        channel = ChannelType(raw.upper())
    except ValueError:
        raise ValidationError(
            f"Unsupported line key '{key}'",
            details={"allowed_channels": [c.value for c in ChannelType], "partner_format": "partner:<name>"}
        )
    return LineTarget(key=channel.value, channel=channel)


class PartnerResolver:

    def __init__(self, db: AsyncSession, clock: Clock = utcnow, lookback_hours: Optional[int] = None):
        self.db = db
        self.clock = clock
        self.lookback = timedelta(
            hours=lookback_hours if lookback_hours is not None else settings.partner_lookback_hours
        )

    async def resolve(
        self,
        target: LineTarget,
        supervisor_id: int,
        entry_types: Iterable[LedgerEntryType],
    ) -> User:
        """
        Resolve a partner line key to a PARTNER user.

        Args:
            target: Parsed partner key
            supervisor_id: Supervisor whose card the key belongs to
            entry_types: Direction of the line (DEPOSIT or WITHDRAWAL)

        Returns:
            The partner user

        Raises:
            ResourceNotFoundError: If no partner carries that id or name
        """
        if target.partner_id is not None:
            partner = await self.db.get(User, target.partner_id)
            if partner is None or partner.role != UserRole.PARTNER:
                raise ResourceNotFoundError("Partner", target.partner_id)
            return partner

        result = await self.db.execute(
            select(User)
            .where(User.role == UserRole.PARTNER, func.lower(User.display_name) == target.partner_name.lower())
            .order_by(User.id)
        )
        candidates = list(result.scalars().all())
        if not candidates:
            raise ResourceNotFoundError("Partner", target.partner_name)
        if len(candidates) == 1:
            return candidates[0]

        since = self.clock() - self.lookback
        recent = await self.db.execute(
            select(LedgerEntry.partner_id)
            .where(
                LedgerEntry.partner_id.in_([c.id for c in candidates]),
                LedgerEntry.receiver_id == supervisor_id,
                LedgerEntry.entry_type.in_(tuple(entry_types)),
                LedgerEntry.archived.is_(False),
                LedgerEntry.created_at >= since,
            )
            .order_by(desc(LedgerEntry.created_at), desc(LedgerEntry.id))
            .limit(1)
        )
        partner_id = recent.scalar_one_or_none()
        chosen = next((c for c in candidates if c.id == partner_id), candidates[0])

        logger.info(
            "Ambiguous partner name resolved",
            extra={
                "partner_name": target.partner_name,
                "candidates": [c.id for c in candidates],
                "chosen": chosen.id,
                "by_recent_activity": partner_id is not None,
            }
        )
        return chosen

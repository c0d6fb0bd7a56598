"""
Ledger Schemas.

Includes the typed audit metadata payloads stored on AUDIT_* entries and
on archived partner entries.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from floatledger.app.models.enums import ChannelType, LedgerEntryType, LineKind, UserRole


class MoneyValue(BaseModel):
    """An amount in stored minor units with its display forms."""
    minor: int
    amount: Decimal
    formatted: str


# --- Audit metadata (tagged union on ``kind``) ---

class AuditSnapshot(BaseModel):
    old_value: int
    new_value: int
    actor_id: int
    actor_role: UserRole
    timestamp: datetime
    reason: str


class LineResetSnapshot(AuditSnapshot):
    kind: Literal["line_reset"] = "line_reset"
    supervisor_id: int
    key: str
    line_kind: LineKind


class LineDeletionSnapshot(AuditSnapshot):
    kind: Literal["line_deletion"] = "line_deletion"
    supervisor_id: int
    key: str
    line_kind: LineKind


class PartnerArchivalSnapshot(AuditSnapshot):
    kind: Literal["partner_archival"] = "partner_archival"
    supervisor_id: int
    partner_id: int
    partner_name: str
    line_kind: LineKind
    entry_ids: List[int]


class ArchivalMarker(BaseModel):
    """Written onto an entry when it is archived. The amount never changes."""
    kind: Literal["archival_marker"] = "archival_marker"
    actor_id: int
    archived_at: datetime
    reason: str
    original_description: Optional[str] = None
    previous_metadata: Optional[Dict[str, Any]] = None


EntryMetadata = Annotated[
    Union[LineResetSnapshot, LineDeletionSnapshot, PartnerArchivalSnapshot, ArchivalMarker],
    Field(discriminator="kind"),
]

_entry_metadata_adapter = TypeAdapter(EntryMetadata)


def parse_entry_metadata(payload: Optional[Dict[str, Any]]):
    """Rebuild the typed metadata model stored on an entry, if any."""
    if not payload:
        return None
    return _entry_metadata_adapter.validate_python(payload)


# --- Writing and querying ---

class LedgerEntryCreate(BaseModel):
    entry_type: LedgerEntryType
    amount: int = Field(..., ge=0)
    sender_id: int
    receiver_id: Optional[int] = None
    partner_id: Optional[int] = None
    account_id: Optional[int] = None
    description: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class LedgerFilters(BaseModel):
    """
    Filters for ledger listings.

    ``entry_type`` accepts a category (deposit, withdrawal, transfer,
    allocation, audit) or an exact entry type name.
    """
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    sender_id: Optional[int] = None
    receiver_id: Optional[int] = None
    partner_id: Optional[int] = None
    participant_id: Optional[int] = None
    account_id: Optional[int] = None
    supervisor_name: Optional[str] = None
    partner_name: Optional[str] = None
    user_name: Optional[str] = None
    search: Optional[str] = None
    entry_type: Optional[str] = None
    entry_types: Optional[List[LedgerEntryType]] = None
    channel: Optional[ChannelType] = None
    partner_only: bool = False
    include_archived: bool = False


class PostEntryRequest(BaseModel):
    """Body of a deposit / withdrawal / start-of-day / end-of-day posting."""
    supervisor_id: int
    entry_type: LedgerEntryType
    amount: Decimal = Field(..., gt=0)
    channel: Optional[ChannelType] = None
    partner_id: Optional[int] = None
    description: Optional[str] = Field(None, max_length=400)


class EntryView(BaseModel):
    id: int
    entry_type: LedgerEntryType
    amount: MoneyValue
    sender_id: Optional[int] = None
    sender_name: Optional[str] = None
    receiver_id: Optional[int] = None
    receiver_name: Optional[str] = None
    partner_id: Optional[int] = None
    partner_name: Optional[str] = None
    account_id: Optional[int] = None
    channel: Optional[ChannelType] = None
    description: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    archived: bool
    archived_at: Optional[datetime] = None
    created_at: datetime


class EntryPage(BaseModel):
    items: List[EntryView]
    page: int
    limit: int
    total: int
    pages: int


class TypeTotals(BaseModel):
    count: int
    amount: MoneyValue


class LedgerStats(BaseModel):
    total_count: int
    by_type: Dict[str, TypeTotals]
    by_category: Dict[str, int]
    inflow: MoneyValue
    outflow: MoneyValue

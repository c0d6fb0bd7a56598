"""
Account line operation Schemas.
"""

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from floatledger.app.models.enums import ChannelType, LineKind
from floatledger.app.schemas.ledger import MoneyValue
from floatledger.app.schemas.permissions import Ownership


class LineResetRequest(BaseModel):
    key: str = Field(..., min_length=1, description="Channel name or partner:<name>[#<id>]")
    new_value: Decimal = Field(..., description="New balance, major units")


class LineDeleteRequest(BaseModel):
    key: str = Field(..., min_length=1)


class LineOperationResult(BaseModel):
    supervisor_id: int
    key: str
    line_kind: LineKind
    old_value: MoneyValue
    new_value: MoneyValue
    audit_entry_id: int
    archived_entry_ids: List[int] = []
    ownership: Ownership


class ReconciliationLine(BaseModel):
    account_id: int
    channel: ChannelType
    expected_end_of_day: MoneyValue
    actual_end_of_day: MoneyValue
    drift: MoneyValue
    balanced: bool
    anchor_entry_id: Optional[int] = None
    entries_replayed: int


class ReconciliationReport(BaseModel):
    supervisor_id: int
    lines: List[ReconciliationLine]
    balanced: bool

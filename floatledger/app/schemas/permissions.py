"""
Permission Schemas.
"""

import enum
from typing import Optional

from pydantic import BaseModel

from floatledger.app.models.enums import UserRole
from floatledger.app.schemas.ledger import EntryView


class Actor(BaseModel):
    """Authenticated caller as seen by the core."""
    id: int
    role: UserRole


class Ownership(str, enum.Enum):
    ADMIN = "admin"
    ORGANIC = "organic"
    DEFAULT = "default"
    NONE = "none"


class CorrectionDecision(BaseModel):
    allowed: bool
    reason: Optional[str] = None
    ownership: Ownership = Ownership.NONE
    last_entry_id: Optional[int] = None
    last_entry_age_seconds: Optional[float] = None


class EntryPermissions(BaseModel):
    can_view: bool
    can_modify: bool
    can_delete: bool
    age_days: int
    max_age_days: int
    reason: str


class EntryDetail(BaseModel):
    entry: EntryView
    permissions: EntryPermissions

"""
Dashboard Schemas.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel

from floatledger.app.models.enums import UserStatus
from floatledger.app.schemas.ledger import EntryView, MoneyValue


class DateRangeView(BaseModel):
    period: str
    start: Optional[datetime] = None
    end: datetime


class SupervisorCard(BaseModel):
    """Opening/closing position of one supervisor."""
    supervisor_id: int
    supervisor_name: str
    status: UserStatus
    start_of_day_by_key: Dict[str, MoneyValue]
    end_of_day_by_key: Dict[str, MoneyValue]
    start_total: MoneyValue
    end_total: MoneyValue
    net: MoneyValue


class FloatPoolSummary(BaseModel):
    """Fleet-wide FLOAT_POOL opening and current balances."""
    opening: MoneyValue
    current: MoneyValue


class GlobalDashboard(BaseModel):
    date_range: DateRangeView
    supervisors: List[SupervisorCard]
    start_total: MoneyValue
    end_total: MoneyValue
    net: MoneyValue
    float_pool: FloatPoolSummary
    rollover_executed_today: bool


class SupervisorDashboard(BaseModel):
    date_range: DateRangeView
    card: SupervisorCard
    float_pool: FloatPoolSummary
    recent_entries: List[EntryView]


class PartnerSupervisorLine(BaseModel):
    """Deposits and withdrawals a partner made through one supervisor."""
    supervisor_id: int
    supervisor_name: str
    deposits: MoneyValue
    withdrawals: MoneyValue
    net: MoneyValue


class PartnerDashboard(BaseModel):
    date_range: DateRangeView
    partner_id: int
    partner_name: str
    supervisors: List[PartnerSupervisorLine]
    total_deposits: MoneyValue
    total_withdrawals: MoneyValue
    net: MoneyValue
    entry_count: int
    recent_entries: List[EntryView]

"""
Rollover Schemas.
"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel


class RolloverResult(BaseModel):
    executed: bool
    run_date: date
    accounts_rolled: int = 0
    reason: Optional[str] = None


class RolloverStatus(BaseModel):
    last_run_date: Optional[date] = None
    executed_today: bool
    today: date
    next_run_at: datetime
    timezone: str

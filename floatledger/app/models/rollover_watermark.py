"""
Rollover watermark model.
"""

from sqlalchemy import Column, String, Date, DateTime
from floatledger.app.core.clock import utcnow
from floatledger.app.db.session import Base


class RolloverWatermark(Base):
    """Keyed row holding the local date of the last successful rollover."""
    __tablename__ = "rollover_watermarks"

    key = Column(String(64), primary_key=True)
    run_date = Column(Date, nullable=False)
    trigger = Column(String(64), nullable=True)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<RolloverWatermark(key='{self.key}', run_date={self.run_date})>"

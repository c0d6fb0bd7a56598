"""
Account database model.

One balance record per (user, channel).
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, Enum, BigInteger, UniqueConstraint
from floatledger.app.core.clock import utcnow
from floatledger.app.db.session import Base
from floatledger.app.models.enums import ChannelType


class Account(Base):
    """
    Per-channel float of a supervisor.

    Amounts are integer minor units. ``previous_start_of_day`` keeps the
    opening balance the last rollover replaced.
    """
    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("user_id", "channel", name="uq_account_user_channel"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    channel = Column(Enum(ChannelType), nullable=False)

    start_of_day = Column(BigInteger, default=0, nullable=False)
    end_of_day = Column(BigInteger, default=0, nullable=False)
    previous_start_of_day = Column(BigInteger, default=0, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return (
            f"<Account(id={self.id}, user={self.user_id}, channel='{self.channel.value}', "
            f"start={self.start_of_day}, end={self.end_of_day})>"
        )

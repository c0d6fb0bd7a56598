"""
Ledger Entry database model.

Append-only record of every monetary movement and manual correction.
"""

from sqlalchemy import Column, Integer, BigInteger, ForeignKey, DateTime, Enum, String, Boolean, JSON, Index
from floatledger.app.core.clock import utcnow
from floatledger.app.db.session import Base
from floatledger.app.models.enums import LedgerEntryType


class LedgerEntry(Base):
    """
    Ledger Entry model.

    Amount is a non-negative magnitude in minor units; direction comes from
    ``entry_type``. Rows are never deleted: partner entries may be archived,
    balance corrections are recorded as AUDIT_* entries.
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        Index("ix_ledger_entries_created_id", "created_at", "id"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    entry_type = Column(Enum(LedgerEntryType), nullable=False, index=True)
    amount = Column(BigInteger, nullable=False)

    # Participants
    sender_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    receiver_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    partner_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True, index=True)

    description = Column(String(500), nullable=True)
    metadata_payload = Column("metadata", JSON, nullable=True)

    # Soft delete, partner sub-ledgers only
    archived = Column(Boolean, default=False, nullable=False, index=True)
    archived_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<LedgerEntry(id={self.id}, type='{self.entry_type.value}', amount={self.amount})>"

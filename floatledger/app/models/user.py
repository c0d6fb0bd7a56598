"""
User database model.
"""

from sqlalchemy import Column, Integer, String, DateTime, Enum
from floatledger.app.core.clock import utcnow
from floatledger.app.db.session import Base
from floatledger.app.models.enums import UserRole, UserStatus


class User(Base):
    """
    Admin, supervisor or partner.

    Supervisors own one Account per channel; partners own none and only
    appear on ledger entries.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    display_name = Column(String(150), nullable=False, index=True)
    phone = Column(String(32), unique=True, index=True, nullable=False)
    access_code_hash = Column(String(255), nullable=False)

    role = Column(Enum(UserRole), default=UserRole.SUPERVISOR, nullable=False, index=True)
    status = Column(Enum(UserStatus), default=UserStatus.ACTIVE, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    def __repr__(self):
        return f"<User(id={self.id}, name='{self.display_name}', role='{self.role.value}')>"

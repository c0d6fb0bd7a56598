"""
Enumerations shared by the ledger models.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Supreme user with system-level access
        SUPERVISOR: Field agent holding one account per payment channel
        PARTNER: Third party whose movements are recorded against a supervisor
    """
    ADMIN = "ADMIN"
    SUPERVISOR = "SUPERVISOR"
    PARTNER = "PARTNER"


class UserStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    PENDING = "PENDING"


class ChannelType(str, enum.Enum):
    """Payment rails. FLOAT_POOL is the centrally allocated working capital."""
    CASH = "CASH"
    MOBILE_MONEY_A = "MOBILE_MONEY_A"
    MOBILE_MONEY_B = "MOBILE_MONEY_B"
    FLOAT_POOL = "FLOAT_POOL"


class LedgerEntryType(str, enum.Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    START_OF_DAY = "START_OF_DAY"
    END_OF_DAY = "END_OF_DAY"
    TRANSFER_OUT = "TRANSFER_OUT"
    TRANSFER_IN = "TRANSFER_IN"
    POOL_ALLOCATION = "POOL_ALLOCATION"
    AUDIT_CORRECTION = "AUDIT_CORRECTION"
    AUDIT_DELETION = "AUDIT_DELETION"


class LineKind(str, enum.Enum):
    """Which balance field of an account a correction targets."""
    START_OF_DAY = "start_of_day"
    END_OF_DAY = "end_of_day"


AUDIT_ENTRY_TYPES = frozenset({LedgerEntryType.AUDIT_CORRECTION, LedgerEntryType.AUDIT_DELETION})

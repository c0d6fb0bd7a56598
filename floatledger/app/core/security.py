"""
Access-code hashing.

Codes are stored as bcrypt hashes (``$2b$<cost>$<salt+digest>``).
"""

import bcrypt

from floatledger.app.core.config import settings


def get_password_hash(password: str) -> str:
    salt = bcrypt.gensalt(rounds=settings.access_code_bcrypt_rounds)
    return bcrypt.hashpw(password.encode(), salt).decode()


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(plain_password.encode(), hashed_password.encode())
    except ValueError:
        # Not a bcrypt hash
        return False

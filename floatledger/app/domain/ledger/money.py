"""
Monetary codec.

The only place where display amounts (major units, decimal) and stored
amounts (integer minor units) are converted. Nothing else does arithmetic
on floats.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from floatledger.app.core.config import settings
from floatledger.app.core.exceptions import ValidationError
from floatledger.app.schemas.ledger import MoneyValue

MINOR_UNITS_PER_MAJOR = 100
_CENT = Decimal("0.01")

AmountInput = Union[Decimal, int, float, str]


def to_minor_units(value: AmountInput) -> int:
    """
    Convert a display amount to integer minor units, rounding half-up.

    Raises:
        ValidationError: If the value is not a finite number
    """
    if isinstance(value, bool):
        raise ValidationError("Amount must be a number", details={"value": value})
    if isinstance(value, float):
        # str() gives the shortest repr, so 19.99 stays 19.99 instead of 19.989999...
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("Amount must be a number", details={"value": str(value)})
    if not amount.is_finite():
        raise ValidationError("Amount must be finite", details={"value": str(value)})

    minor = (amount * MINOR_UNITS_PER_MAJOR).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(minor)


def to_decimal(minor: int) -> Decimal:
    """Convert stored minor units back to a two-decimal display amount."""
    return (Decimal(int(minor)) / MINOR_UNITS_PER_MAJOR).quantize(_CENT)


def format_amount(minor: int, with_sign: bool = False) -> str:
    """
    Render an amount for display: ``-30 000 F``, ``+1 250,50 F``.

    Negatives always carry their sign; positives get ``+`` only with ``with_sign``.
    """
    units, cents = divmod(abs(int(minor)), MINOR_UNITS_PER_MAJOR)
    text = f"{units:,}".replace(",", " ")
    if cents:
        text = f"{text},{cents:02d}"

    sign = ""
    if minor < 0:
        sign = "-"
    elif with_sign and minor > 0:
        sign = "+"

    return f"{sign}{text} {settings.currency_suffix}"


def money(minor: int, with_sign: bool = False) -> MoneyValue:
    return MoneyValue(
        minor=int(minor),
        amount=to_decimal(minor),
        formatted=format_amount(minor, with_sign=with_sign),
    )

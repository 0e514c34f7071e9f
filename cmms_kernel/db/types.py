"""
Module: cmms_kernel.db.types
Responsibility: Annotated type aliases and rounding helpers for stock
    quantities and monetary values.  Centralizes precision so that every
    model, calculator, and selector uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats for quantities or money.  Quantities use Numeric(18, 4),
      money uses Numeric(38, 9); rounding goes through quantize_quantity()
      and round_money() only.
"""

from decimal import ROUND_HALF_EVEN, Decimal
from typing import Annotated

from sqlalchemy import BigInteger, Numeric, String

# Stock quantity (pieces, liters, meters...); 4 dp covers fractional units
Quantity = Annotated[Decimal, Numeric(18, 4)]

# Monetary amount with high precision
Money = Annotated[Decimal, Numeric(38, 9)]

# Monotonic sequence number for ordering
Sequence = Annotated[int, BigInteger]

# Short identifier strings
ShortCode = Annotated[str, String(50)]

# Long text for descriptions
LongText = Annotated[str, String(4000)]

QUANTITY_DECIMAL_PLACES = 4
MONEY_DECIMAL_PLACES = 4

_QUANTITY_QUANTUM = Decimal(1).scaleb(-QUANTITY_DECIMAL_PLACES)
_MONEY_QUANTUM = Decimal(1).scaleb(-MONEY_DECIMAL_PLACES)


def to_decimal(value) -> Decimal:
    """Coerce int/str/Decimal to Decimal without passing through float."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # repr() keeps the shortest round-tripping form, not the binary expansion
        return Decimal(repr(value))
    return Decimal(value)


def quantize_quantity(value) -> Decimal:
    """Round a quantity to the canonical storage precision."""
    return to_decimal(value).quantize(_QUANTITY_QUANTUM, rounding=ROUND_HALF_EVEN)


def round_money(value) -> Decimal:
    """Round a monetary amount using banker's rounding (no drift over many sums)."""
    return to_decimal(value).quantize(_MONEY_QUANTUM, rounding=ROUND_HALF_EVEN)

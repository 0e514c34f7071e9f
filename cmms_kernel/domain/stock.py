"""
Stock Calculator -- pure quantity, status, and value arithmetic.

Responsibility:
    Given current quantities and a transaction intent, compute the new
    on-hand / available quantities, stock status, and stock value.  Also
    hosts the catalog enums (transaction types, item types, units) shared by
    the ledger engine and selectors.

Architecture position:
    Kernel > Domain -- pure functional core.  ZERO I/O, no clock, no session.

Invariants enforced:
    - ADJUSTMENT sets on-hand to an absolute target; ISSUE subtracts;
      RETURN and PURCHASE add.  Downstream counters depend on this
      asymmetry, so it is never normalized to delta semantics.
    - available = on_hand - reserved, always recomputed, never carried.
    - All arithmetic is Decimal; values are quantized through db.types.

Failure modes:
    - None.  validate_quantity() reports problems as a QuantityCheck value
      instead of raising; the ledger engine turns it into a typed error.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from cmms_kernel.db.types import quantize_quantity, round_money, to_decimal

ZERO = Decimal("0")

PART_NUMBER_PREFIX = "PART-"
PART_NUMBER_WIDTH = 7


class TransactionType(str, Enum):
    """Stock movement kinds recorded by the ledger."""

    ISSUE = "issue"  # Stock out to a work order
    RETURN = "return"  # Stock back from a work order
    PURCHASE = "purchase"  # Stock in from a supplier
    ADJUSTMENT = "adjustment"  # Absolute recount / correction


class StockStatus(str, Enum):
    """Derived stock health, recomputed on every mutation."""

    OK = "ok"
    LOW = "low"
    OUT = "out"
    OVER = "over"


class ItemType(str, Enum):
    SPARE_PART = "Spare Part"
    CONSUMABLE = "Consumable"
    TOOL = "Tool"
    MATERIAL = "Material"
    SAFETY_EQUIPMENT = "Safety Equipment"
    CHEMICAL = "Chemical"
    OTHER = "Other"


class UnitOfMeasure(str, Enum):
    PIECE = "Piece"
    BOX = "Box"
    LITER = "Liter"
    KILOGRAM = "Kilogram"
    METER = "Meter"
    SQUARE_METER = "Square Meter"
    CUBIC_METER = "Cubic Meter"
    SET = "Set"
    ROLL = "Roll"
    PACK = "Pack"


_ADDITIVE = frozenset({TransactionType.RETURN, TransactionType.PURCHASE})

# (cumulative total column, last-event timestamp column) per type
_COUNTER_FIELDS: dict[TransactionType, tuple[str | None, str]] = {
    TransactionType.ISSUE: ("total_issued", "last_issued_at"),
    TransactionType.PURCHASE: ("total_purchased", "last_purchased_at"),
    TransactionType.RETURN: ("total_returned", "last_returned_at"),
    TransactionType.ADJUSTMENT: (None, "last_adjusted_at"),
}


@dataclass(frozen=True)
class QuantityCheck:
    """Outcome of validate_quantity(); ``reason_code`` is None when valid."""

    is_valid: bool
    reason_code: str | None = None
    message: str | None = None

    @classmethod
    def ok(cls) -> QuantityCheck:
        return cls(is_valid=True)

    @classmethod
    def fail(cls, reason_code: str, message: str) -> QuantityCheck:
        return cls(is_valid=False, reason_code=reason_code, message=message)


@dataclass(frozen=True)
class StockState:
    """Derived item state after applying a movement."""

    on_hand: Decimal
    reserved: Decimal
    available: Decimal
    status: StockStatus
    value: Decimal


def parse_transaction_type(value: TransactionType | str) -> TransactionType | None:
    """Resolve an enum member from its value or name; None when unknown."""
    if isinstance(value, TransactionType):
        return value
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    for member in TransactionType:
        if normalized.lower() == member.value or normalized.upper() == member.name:
            return member
    return None


def compute_status(
    on_hand: Decimal,
    min_level: Decimal | None,
    max_level: Decimal | None,
) -> StockStatus:
    """OUT at or below zero, LOW under min, OVER above a defined max, else OK."""
    if on_hand <= ZERO:
        return StockStatus.OUT
    if min_level is not None and on_hand < min_level:
        return StockStatus.LOW
    if max_level is not None and on_hand > max_level:
        return StockStatus.OVER
    return StockStatus.OK


def compute_value(on_hand: Decimal, unit_cost: Decimal | None) -> Decimal:
    """Exact on_hand x unit_cost, rounded half-even to money precision."""
    return round_money(to_decimal(on_hand) * to_decimal(unit_cost or ZERO))


def compute_available(on_hand: Decimal, reserved: Decimal | None) -> Decimal:
    return quantize_quantity(to_decimal(on_hand) - to_decimal(reserved or ZERO))


def apply_transaction(
    transaction_type: TransactionType,
    current_on_hand: Decimal,
    quantity: Decimal,
) -> Decimal:
    """New on-hand after the movement.  ADJUSTMENT is absolute, not a delta."""
    current = to_decimal(current_on_hand)
    qty = to_decimal(quantity)
    if transaction_type is TransactionType.ADJUSTMENT:
        return quantize_quantity(qty)
    if transaction_type is TransactionType.ISSUE:
        return quantize_quantity(current - qty)
    if transaction_type in _ADDITIVE:
        return quantize_quantity(current + qty)
    return quantize_quantity(current)


def validate_quantity(
    transaction_type: TransactionType,
    current_on_hand: Decimal,
    quantity: Decimal,
) -> QuantityCheck:
    """
    Check a movement against the freshly read on-hand.

    ISSUE/RETURN/PURCHASE need a strictly positive quantity and ISSUE may
    not exceed on-hand.  ADJUSTMENT accepts any non-negative target,
    including zero.
    """
    qty = to_decimal(quantity)
    if transaction_type is TransactionType.ADJUSTMENT:
        if qty < ZERO:
            return QuantityCheck.fail(
                "NEGATIVE_TARGET",
                f"Adjustment target cannot be negative: {qty}",
            )
        return QuantityCheck.ok()

    if qty <= ZERO:
        return QuantityCheck.fail(
            "NON_POSITIVE_QUANTITY",
            "Transaction quantity must be greater than 0",
        )

    if transaction_type is TransactionType.ISSUE and qty > to_decimal(current_on_hand):
        return QuantityCheck.fail(
            "INSUFFICIENT_STOCK",
            f"Insufficient stock. Current: {current_on_hand}, Requested: {qty}",
        )

    return QuantityCheck.ok()


def compute_stock_state(
    on_hand: Decimal,
    reserved: Decimal,
    min_level: Decimal | None,
    max_level: Decimal | None,
    unit_cost: Decimal | None,
) -> StockState:
    on_hand = quantize_quantity(on_hand)
    reserved = quantize_quantity(reserved)
    return StockState(
        on_hand=on_hand,
        reserved=reserved,
        available=compute_available(on_hand, reserved),
        status=compute_status(on_hand, min_level, max_level),
        value=compute_value(on_hand, unit_cost),
    )


def counter_field_for(transaction_type: TransactionType) -> tuple[str | None, str]:
    """Names of the cumulative total and last-event columns for a type."""
    return _COUNTER_FIELDS[transaction_type]


def needs_reorder(on_hand: Decimal, reorder_point: Decimal | None) -> bool:
    if reorder_point is None:
        return False
    return to_decimal(on_hand) <= to_decimal(reorder_point)


def compute_reorder_quantity(
    on_hand: Decimal,
    min_level: Decimal | None,
    max_level: Decimal | None,
    reorder_point: Decimal | None = None,
    reorder_quantity: Decimal | None = None,
) -> Decimal | None:
    """
    Recommended replenishment, or None when above the threshold.

    Refills to max when a max is defined, otherwise falls back to the
    item's fixed reorder quantity.
    """
    threshold = reorder_point if reorder_point is not None else min_level
    if threshold is None or to_decimal(on_hand) > to_decimal(threshold):
        return None
    if max_level is not None:
        return quantize_quantity(max(to_decimal(max_level) - to_decimal(on_hand), ZERO))
    if reorder_quantity is not None:
        return quantize_quantity(reorder_quantity)
    return None


def turnover_rate(total_issued: Decimal, average_stock: Decimal) -> Decimal:
    if to_decimal(average_stock) == ZERO:
        return ZERO
    return to_decimal(total_issued) / to_decimal(average_stock)


def days_of_stock(on_hand: Decimal, average_daily_usage: Decimal) -> Decimal | None:
    """Days the current stock lasts; None when there is no usage."""
    if to_decimal(average_daily_usage) == ZERO:
        return None
    return to_decimal(on_hand) / to_decimal(average_daily_usage)


def format_part_number(sequence_value: int) -> str:
    """PART- followed by the 7-digit zero-padded counter value."""
    if sequence_value <= 0:
        raise ValueError(f"Part number sequence must be positive: {sequence_value}")
    return f"{PART_NUMBER_PREFIX}{sequence_value:0{PART_NUMBER_WIDTH}d}"

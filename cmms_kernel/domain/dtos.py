"""
Frozen data transfer objects returned across the kernel boundary.

Services and selectors never hand raw ORM instances to callers; each
result is converted into one of these immutable snapshots while its
session is still open.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from cmms_kernel.domain.stock import StockStatus, TransactionType


@dataclass(frozen=True)
class InventoryItemDTO:
    id: UUID
    part_number: str
    name: str
    item_type: str
    unit: str
    unit_cost: Decimal
    quantity_on_hand: Decimal
    quantity_reserved: Decimal
    quantity_available: Decimal
    min_stock_level: Decimal
    max_stock_level: Decimal | None
    reorder_point: Decimal | None
    reorder_quantity: Decimal | None
    stock_status: StockStatus
    stock_value: Decimal
    total_issued: Decimal
    total_purchased: Decimal
    total_returned: Decimal
    last_issued_at: datetime | None
    last_purchased_at: datetime | None
    last_returned_at: datetime | None
    last_adjusted_at: datetime | None
    is_active: bool
    version: int
    description: str = ""
    category: str = ""
    location: str = ""
    bin_location: str = ""
    supplier: str = ""
    supplier_part_number: str = ""
    lead_time_days: int = 0
    notes: str = ""


@dataclass(frozen=True)
class StockTransactionDTO:
    id: UUID
    item_id: UUID
    part_number: str
    item_name: str
    transaction_type: TransactionType
    quantity: Decimal
    unit_cost: Decimal
    total_cost: Decimal
    quantity_before: Decimal
    quantity_after: Decimal
    item_seq: int
    occurred_at: datetime
    performed_by: UUID
    work_order_id: str | None = None
    reference: str | None = None
    notes: str = ""


@dataclass(frozen=True)
class LedgerResult:
    """Result of one atomic ledger mutation."""

    transaction: StockTransactionDTO | None
    item: InventoryItemDTO
    attempts: int = 1


@dataclass(frozen=True)
class TransactionStatistics:
    total: int
    by_type: dict[str, int] = field(default_factory=dict)
    total_value: Decimal = Decimal("0")


@dataclass(frozen=True)
class ReplayResult:
    """
    On-hand reconstructed from the ledger alone.

    ``chain_breaks`` lists the item_seq values whose quantity_before did
    not match the previous quantity_after, or whose quantity_after did not
    follow from applying the movement.
    """

    item_id: UUID
    replayed_on_hand: Decimal
    recorded_on_hand: Decimal
    transaction_count: int
    chain_breaks: tuple[int, ...] = ()

    @property
    def is_consistent(self) -> bool:
        return not self.chain_breaks and self.replayed_on_hand == self.recorded_on_hand

"""
Module: cmms_kernel.models.inventory
Responsibility: ORM persistence for inventory items and the append-only stock
    transaction ledger.
Architecture position: Kernel > Models.  May import from db/ only.
    MUST NOT import from services/, selectors/, or outer layers.

Invariants enforced:
    - Part number uniqueness (UNIQUE constraint on part_number).
    - Non-negative quantities and available = on_hand - reserved
      (CHECK constraints; the ledger engine recomputes available on every
      write so the constraint never trips in normal operation).
    - Optimistic commit: ``version`` is SQLAlchemy's version_id_col.  Every
      UPDATE carries ``WHERE version = :read_version``; a concurrent writer
      makes the flush raise StaleDataError.
    - Per-item ledger ordering: (item_id, item_seq) is UNIQUE.  item_seq is
      taken from the item's own ``transaction_count`` under the same
      versioned write, so sequence and chain advance together.
    - Immutability: StockTransactionModel rows are never updated or deleted
      (ORM listeners in db/immutability.py).

Failure modes:
    - IntegrityError on duplicate part_number or (item_id, item_seq).
    - StaleDataError on a stale versioned UPDATE.
    - ImmutabilityViolationError on UPDATE/DELETE of a stock transaction.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cmms_kernel.db.base import TrackedBase, UTCDateTime, UUIDString
from cmms_kernel.db.types import Money, Quantity, Sequence
from cmms_kernel.domain.dtos import InventoryItemDTO, StockTransactionDTO
from cmms_kernel.domain.stock import StockStatus, TransactionType

_ZERO = Decimal("0")


class InventoryItemModel(TrackedBase):
    """Stocked part with its live quantities, thresholds, and counters."""

    __tablename__ = "inventory_items"

    __table_args__ = (
        UniqueConstraint("part_number", name="uq_inventory_part_number"),
        CheckConstraint("quantity_on_hand >= 0", name="ck_inventory_on_hand_nonneg"),
        CheckConstraint("quantity_reserved >= 0", name="ck_inventory_reserved_nonneg"),
        CheckConstraint(
            "quantity_available = quantity_on_hand - quantity_reserved",
            name="ck_inventory_available_derived",
        ),
        Index("idx_inventory_item_type", "item_type"),
        Index("idx_inventory_location", "location"),
        Index("idx_inventory_active", "is_active"),
    )

    part_number: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    item_type: Mapped[str] = mapped_column(String(50), nullable=False)
    category: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    unit: Mapped[str] = mapped_column(String(30), nullable=False)

    unit_cost: Mapped[Money] = mapped_column(default=_ZERO, nullable=False)

    # Live quantities -- written only by StockLedgerService
    quantity_on_hand: Mapped[Quantity] = mapped_column(default=_ZERO, nullable=False)
    quantity_reserved: Mapped[Quantity] = mapped_column(default=_ZERO, nullable=False)
    quantity_available: Mapped[Quantity] = mapped_column(default=_ZERO, nullable=False)

    # Thresholds
    min_stock_level: Mapped[Quantity] = mapped_column(default=_ZERO, nullable=False)
    max_stock_level: Mapped[Quantity | None] = mapped_column(nullable=True)
    reorder_point: Mapped[Quantity | None] = mapped_column(nullable=True)
    reorder_quantity: Mapped[Quantity | None] = mapped_column(nullable=True)

    # Derived
    stock_status: Mapped[str] = mapped_column(
        String(10), default=StockStatus.OUT.value, nullable=False,
    )
    stock_value: Mapped[Money] = mapped_column(default=_ZERO, nullable=False)

    # Cumulative counters
    total_issued: Mapped[Quantity] = mapped_column(default=_ZERO, nullable=False)
    total_purchased: Mapped[Quantity] = mapped_column(default=_ZERO, nullable=False)
    total_returned: Mapped[Quantity] = mapped_column(default=_ZERO, nullable=False)
    last_issued_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_purchased_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_returned_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_adjusted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Number of ledger rows written for this item; the next row's item_seq
    transaction_count: Mapped[Sequence] = mapped_column(default=0, nullable=False)

    # Stocking details
    location: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    bin_location: Mapped[str] = mapped_column(String(50), default="", nullable=False)
    supplier: Mapped[str] = mapped_column(String(200), default="", nullable=False)
    supplier_part_number: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    lead_time_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    notes: Mapped[str] = mapped_column(Text, default="", nullable=False)

    # Soft delete
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Optimistic commit token
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    transactions: Mapped[list["StockTransactionModel"]] = relationship(
        "StockTransactionModel",
        back_populates="item",
        order_by="StockTransactionModel.item_seq",
        viewonly=True,
    )

    def __repr__(self) -> str:
        return (
            f"<InventoryItem {self.part_number} on_hand={self.quantity_on_hand} "
            f"reserved={self.quantity_reserved} v{self.version}>"
        )

    def to_dto(self) -> InventoryItemDTO:
        return InventoryItemDTO(
            id=self.id,
            part_number=self.part_number,
            name=self.name,
            item_type=self.item_type,
            unit=self.unit,
            unit_cost=self.unit_cost,
            quantity_on_hand=self.quantity_on_hand,
            quantity_reserved=self.quantity_reserved,
            quantity_available=self.quantity_available,
            min_stock_level=self.min_stock_level,
            max_stock_level=self.max_stock_level,
            reorder_point=self.reorder_point,
            reorder_quantity=self.reorder_quantity,
            stock_status=StockStatus(self.stock_status),
            stock_value=self.stock_value,
            total_issued=self.total_issued,
            total_purchased=self.total_purchased,
            total_returned=self.total_returned,
            last_issued_at=self.last_issued_at,
            last_purchased_at=self.last_purchased_at,
            last_returned_at=self.last_returned_at,
            last_adjusted_at=self.last_adjusted_at,
            is_active=self.is_active,
            version=self.version,
            description=self.description,
            category=self.category,
            location=self.location,
            bin_location=self.bin_location,
            supplier=self.supplier,
            supplier_part_number=self.supplier_part_number,
            lead_time_days=self.lead_time_days,
            notes=self.notes,
        )


class StockTransactionModel(TrackedBase):
    """
    One immutable stock movement.

    quantity_before is the on-hand read inside the same atomic scope that
    wrote quantity_after, so consecutive rows of one item chain exactly.
    """

    __tablename__ = "stock_transactions"

    __table_args__ = (
        UniqueConstraint("item_id", "item_seq", name="uq_stock_txn_item_seq"),
        CheckConstraint("quantity_after >= 0", name="ck_stock_txn_after_nonneg"),
        Index("idx_stock_txn_item", "item_id"),
        Index("idx_stock_txn_work_order", "work_order_id"),
        Index("idx_stock_txn_occurred_at", "occurred_at"),
        Index("idx_stock_txn_type", "transaction_type"),
    )

    item_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("inventory_items.id"),
        nullable=False,
    )
    part_number: Mapped[str] = mapped_column(String(50), nullable=False)
    item_name: Mapped[str] = mapped_column(String(200), nullable=False)

    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[Quantity] = mapped_column(nullable=False)
    unit_cost: Mapped[Money] = mapped_column(nullable=False)
    total_cost: Mapped[Money] = mapped_column(nullable=False)
    quantity_before: Mapped[Quantity] = mapped_column(nullable=False)
    quantity_after: Mapped[Quantity] = mapped_column(nullable=False)

    # 1-based position of this row in the item's ledger
    item_seq: Mapped[Sequence] = mapped_column(nullable=False)

    work_order_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reference: Mapped[str | None] = mapped_column(String(200), nullable=True)
    notes: Mapped[str] = mapped_column(Text, default="", nullable=False)

    performed_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    item: Mapped[InventoryItemModel] = relationship(
        InventoryItemModel,
        back_populates="transactions",
        foreign_keys=[item_id],
    )

    def __repr__(self) -> str:
        return (
            f"<StockTransaction {self.part_number}#{self.item_seq} "
            f"{self.transaction_type} {self.quantity_before}->{self.quantity_after}>"
        )

    def to_dto(self) -> StockTransactionDTO:
        return StockTransactionDTO(
            id=self.id,
            item_id=self.item_id,
            part_number=self.part_number,
            item_name=self.item_name,
            transaction_type=TransactionType(self.transaction_type),
            quantity=self.quantity,
            unit_cost=self.unit_cost,
            total_cost=self.total_cost,
            quantity_before=self.quantity_before,
            quantity_after=self.quantity_after,
            item_seq=self.item_seq,
            occurred_at=self.occurred_at,
            performed_by=self.performed_by,
            work_order_id=self.work_order_id,
            reference=self.reference,
            notes=self.notes,
        )

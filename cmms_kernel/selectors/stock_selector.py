"""
Module: cmms_kernel.selectors.stock_selector
Responsibility: Read-only queries over inventory items and the stock
    transaction ledger: reorder detection, history, statistics and replay.
Architecture position: Kernel > Selectors.  Imports models/ and the pure
    calculator in domain/stock.py.  Never mutates.

Invariants enforced:
    - Reorder detection filters on indexable columns in SQL, over-fetches
      twice the limit, then refines with needs_reorder() and truncates.
      An item can therefore be missed when more than 2x limit candidates
      precede it; callers that need completeness page by location/type.
    - History is newest first by item_seq (the per-item commit order),
      not by wall-clock time.
    - replay_on_hand() folds (transaction_type, quantity) from zero and
      never trusts the stored snapshots.  A row whose quantity_before or
      quantity_after disagrees with the running total is a chain break.

Failure modes:
    - InventoryItemNotFoundError from replay_on_hand() for an unknown id.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import or_, select

from cmms_kernel.db.types import round_money
from cmms_kernel.domain.dtos import (
    InventoryItemDTO,
    ReplayResult,
    StockTransactionDTO,
    TransactionStatistics,
)
from cmms_kernel.domain.stock import (
    ZERO,
    StockStatus,
    TransactionType,
    apply_transaction,
    needs_reorder,
)
from cmms_kernel.exceptions import InventoryItemNotFoundError
from cmms_kernel.logging_config import get_logger
from cmms_kernel.models.inventory import InventoryItemModel, StockTransactionModel
from cmms_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.stock")


def _enum_value(value):
    return value.value if hasattr(value, "value") else value


class StockSelector(BaseSelector):
    """Query service for stock levels and ledger history."""

    def get_item(self, item_id: UUID) -> InventoryItemDTO | None:
        item = self.session.get(InventoryItemModel, item_id)
        return item.to_dto() if item else None

    def get_by_part_number(self, part_number: str) -> InventoryItemDTO | None:
        item = self.session.execute(
            select(InventoryItemModel)
            .where(InventoryItemModel.part_number == part_number.strip().upper())
        ).scalar_one_or_none()
        return item.to_dto() if item else None

    def items_needing_reorder(
        self,
        item_type: str | None = None,
        location: str | None = None,
        limit: int = 100,
    ) -> list[InventoryItemDTO]:
        """
        Active items whose on-hand is at or below their reorder point.

        Args:
            item_type: Optional exact item type filter.
            location: Optional exact location filter.
            limit: Maximum number of items returned.

        Returns:
            Up to ``limit`` items, lowest on-hand first.  Empty list if none.
        """
        if limit <= 0:
            return []

        query = select(InventoryItemModel).where(InventoryItemModel.is_active.is_(True))
        if item_type:
            query = query.where(InventoryItemModel.item_type == _enum_value(item_type))
        if location:
            query = query.where(InventoryItemModel.location == location)
        query = query.order_by(
            InventoryItemModel.quantity_on_hand.asc(),
            InventoryItemModel.part_number.asc(),
        ).limit(limit * 2)

        candidates = self.session.execute(query).scalars().all()
        result = [
            item.to_dto()
            for item in candidates
            if needs_reorder(item.quantity_on_hand, item.reorder_point)
        ][:limit]

        logger.debug(
            "reorder_scan_completed",
            extra={
                "candidates": len(candidates),
                "matched": len(result),
                "item_type": _enum_value(item_type),
                "location": location,
            },
        )
        return result

    def search_items(
        self,
        *,
        text: str | None = None,
        item_type: str | None = None,
        location: str | None = None,
        stock_status: StockStatus | str | None = None,
        include_inactive: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[InventoryItemDTO]:
        """Filter items by type, location, status and a name/part-number substring."""
        query = select(InventoryItemModel)
        if not include_inactive:
            query = query.where(InventoryItemModel.is_active.is_(True))
        if item_type:
            query = query.where(InventoryItemModel.item_type == _enum_value(item_type))
        if location:
            query = query.where(InventoryItemModel.location == location)
        if stock_status:
            query = query.where(InventoryItemModel.stock_status == _enum_value(stock_status))
        if text:
            pattern = f"%{text.strip()}%"
            query = query.where(
                or_(
                    InventoryItemModel.name.ilike(pattern),
                    InventoryItemModel.part_number.ilike(pattern),
                )
            )
        query = query.order_by(InventoryItemModel.part_number).offset(offset).limit(limit)
        return [item.to_dto() for item in self.session.execute(query).scalars()]

    def transaction_history(
        self,
        item_id: UUID,
        transaction_type: TransactionType | str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[StockTransactionDTO]:
        """
        Ledger rows for one item, newest first.

        ``start`` is inclusive and ``end`` exclusive on occurred_at.
        """
        query = select(StockTransactionModel).where(StockTransactionModel.item_id == item_id)
        if transaction_type is not None:
            query = query.where(
                StockTransactionModel.transaction_type == _enum_value(transaction_type)
            )
        if start is not None:
            query = query.where(StockTransactionModel.occurred_at >= start)
        if end is not None:
            query = query.where(StockTransactionModel.occurred_at < end)
        query = (
            query.order_by(StockTransactionModel.item_seq.desc())
            .offset(offset)
            .limit(limit)
        )
        return [tx.to_dto() for tx in self.session.execute(query).scalars()]

    def transactions_by_work_order(self, work_order_id: str) -> list[StockTransactionDTO]:
        """Every movement booked against a work order, oldest first."""
        rows = self.session.execute(
            select(StockTransactionModel)
            .where(StockTransactionModel.work_order_id == work_order_id)
            .order_by(StockTransactionModel.occurred_at, StockTransactionModel.item_seq)
        ).scalars()
        return [tx.to_dto() for tx in rows]

    def transaction_statistics(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> TransactionStatistics:
        """Count per type and summed total_cost over a time window."""
        query = select(
            StockTransactionModel.transaction_type,
            StockTransactionModel.total_cost,
        )
        if start is not None:
            query = query.where(StockTransactionModel.occurred_at >= start)
        if end is not None:
            query = query.where(StockTransactionModel.occurred_at < end)

        by_type: Counter[str] = Counter()
        total_value = ZERO
        total = 0
        for ttype, cost in self.session.execute(query):
            by_type[ttype] += 1
            total_value += cost or ZERO
            total += 1

        return TransactionStatistics(
            total=total,
            by_type=dict(by_type),
            total_value=round_money(total_value),
        )

    def replay_on_hand(self, item_id: UUID) -> ReplayResult:
        item = self.session.get(InventoryItemModel, item_id)
        if item is None:
            raise InventoryItemNotFoundError(str(item_id))

        rows = self.session.execute(
            select(StockTransactionModel)
            .where(StockTransactionModel.item_id == item_id)
            .order_by(StockTransactionModel.item_seq.asc())
        ).scalars().all()

        on_hand = Decimal("0")
        breaks: list[int] = []
        for tx in rows:
            replayed = apply_transaction(
                TransactionType(tx.transaction_type), on_hand, tx.quantity,
            )
            if tx.quantity_before != on_hand or tx.quantity_after != replayed:
                breaks.append(tx.item_seq)
            on_hand = replayed

        result = ReplayResult(
            item_id=item_id,
            replayed_on_hand=on_hand,
            recorded_on_hand=item.quantity_on_hand,
            transaction_count=len(rows),
            chain_breaks=tuple(breaks),
        )
        if not result.is_consistent:
            logger.warning(
                "ledger_replay_inconsistent",
                extra={
                    "item_id": str(item_id),
                    "replayed_on_hand": str(on_hand),
                    "recorded_on_hand": str(item.quantity_on_hand),
                    "chain_breaks": list(breaks),
                },
            )
        return result

"""
InventoryService -- item master data and part number allocation.

Responsibility:
    Creates inventory items (allocating ``PART-nnnnnnn`` part numbers when
    the caller does not supply one), edits thresholds and descriptive
    fields, and soft-deletes items.  Quantities are NOT editable here:
    opening stock is booked through the ledger as a PURCHASE so that the
    transaction chain starts from zero.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - Part numbers are unique (pre-check plus UNIQUE constraint).
    - Part number allocation runs through the versioned sequence counter
      inside AtomicRetry, so concurrent callers receive distinct, strictly
      increasing numbers.
    - Derived status and value are recomputed whenever thresholds change.

Failure modes:
    - DuplicatePartNumberError, InvalidQuantityError (negative thresholds),
      InventoryItemNotFoundError.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cmms_kernel.db.types import quantize_quantity, round_money
from cmms_kernel.domain.dtos import InventoryItemDTO
from cmms_kernel.domain.stock import (
    ZERO,
    ItemType,
    UnitOfMeasure,
    compute_stock_state,
    format_part_number,
)
from cmms_kernel.exceptions import (
    DuplicatePartNumberError,
    InventoryItemNotFoundError,
)
from cmms_kernel.logging_config import LogContext, get_logger
from cmms_kernel.models.inventory import InventoryItemModel
from cmms_kernel.services.base import BaseService, checked_amount
from cmms_kernel.services.sequence_service import SequenceService

logger = get_logger("services.inventory")

_THRESHOLD_FIELDS = ("min_stock_level", "max_stock_level", "reorder_point", "reorder_quantity")

_DESCRIPTIVE_FIELDS = (
    "name",
    "description",
    "item_type",
    "category",
    "unit",
    "location",
    "bin_location",
    "supplier",
    "supplier_part_number",
    "lead_time_days",
    "notes",
)


def _enum_value(value: Any) -> Any:
    return value.value if isinstance(value, (ItemType, UnitOfMeasure)) else value


def _check_threshold(name: str, value) -> Decimal | None:
    if value is None:
        return None
    return checked_amount(name, value, quantize_quantity, allow_negative=False)


class InventoryService(BaseService):
    """Master data operations for inventory items."""

    def generate_part_number(self) -> str:
        """Allocate the next ``PART-`` + 7-digit part number."""
        outcome = self._atomic.run(
            "generate_part_number",
            SequenceService.INVENTORY_PART,
            lambda session: SequenceService(session).next_value(
                SequenceService.INVENTORY_PART
            ),
        )
        part_number = format_part_number(outcome.value)
        logger.debug(
            "part_number_generated",
            extra={"part_number": part_number, "attempts": outcome.attempts},
        )
        return part_number

    def create_item(
        self,
        *,
        name: str,
        actor_id: UUID,
        item_type: ItemType | str = ItemType.SPARE_PART,
        unit: UnitOfMeasure | str = UnitOfMeasure.PIECE,
        part_number: str | None = None,
        unit_cost=ZERO,
        min_stock_level=ZERO,
        max_stock_level=None,
        reorder_point=None,
        reorder_quantity=None,
        **descriptive: Any,
    ) -> InventoryItemDTO:
        """
        Create an item with zero stock.

        ``reorder_point`` defaults to ``min_stock_level``.  Unknown keyword
        arguments raise TypeError.

        Raises:
            DuplicatePartNumberError: part_number already assigned.
            InvalidQuantityError: negative threshold.
        """
        unknown = set(descriptive) - set(_DESCRIPTIVE_FIELDS)
        if unknown:
            raise TypeError(f"Unknown inventory item fields: {sorted(unknown)}")

        min_level = _check_threshold("min_stock_level", min_stock_level) or ZERO
        max_level = _check_threshold("max_stock_level", max_stock_level)
        point = _check_threshold("reorder_point", reorder_point)
        quantity = _check_threshold("reorder_quantity", reorder_quantity)
        cost = checked_amount("unit_cost", unit_cost or ZERO, round_money, allow_negative=False)

        if part_number is None:
            part_number = self.generate_part_number()
        part_number = part_number.strip().upper()

        def work(session: Session) -> InventoryItemDTO:
            existing = session.execute(
                select(InventoryItemModel.id)
                .where(InventoryItemModel.part_number == part_number)
            ).scalar_one_or_none()
            if existing is not None:
                raise DuplicatePartNumberError(part_number)

            state = compute_stock_state(ZERO, ZERO, min_level, max_level, cost)
            item = InventoryItemModel(
                part_number=part_number,
                name=name,
                item_type=_enum_value(item_type),
                unit=_enum_value(unit),
                unit_cost=cost,
                quantity_on_hand=state.on_hand,
                quantity_reserved=state.reserved,
                quantity_available=state.available,
                min_stock_level=min_level,
                max_stock_level=max_level,
                reorder_point=point if point is not None else min_level,
                reorder_quantity=quantity,
                stock_status=state.status.value,
                stock_value=state.value,
                created_by_id=actor_id,
                **descriptive,
            )
            session.add(item)
            try:
                session.flush()
            except IntegrityError as exc:
                raise DuplicatePartNumberError(part_number) from exc
            return item.to_dto()

        with LogContext.bind(actor_id=actor_id):
            outcome = self._atomic.run("create_item", part_number, work)
            item: InventoryItemDTO = outcome.value
            logger.info(
                "inventory_item_created",
                extra={
                    "item_id": str(item.id),
                    "part_number": item.part_number,
                    "item_type": item.item_type,
                },
            )
        return item

    def update_item(self, item_id: UUID, actor_id: UUID, **changes: Any) -> InventoryItemDTO:
        """
        Edit thresholds, unit cost, or descriptive fields.

        Quantity fields are rejected with TypeError: they belong to the
        ledger.  Status and value are recomputed from the new thresholds.
        """
        allowed = set(_THRESHOLD_FIELDS) | set(_DESCRIPTIVE_FIELDS) | {"unit_cost"}
        unknown = set(changes) - allowed
        if unknown:
            raise TypeError(f"Fields not editable through update_item: {sorted(unknown)}")

        normalized: dict[str, Any] = {}
        for field_name, value in changes.items():
            if field_name in _THRESHOLD_FIELDS:
                normalized[field_name] = _check_threshold(field_name, value)
            elif field_name == "unit_cost":
                normalized[field_name] = checked_amount(
                    field_name, value, round_money, allow_negative=False,
                )
            else:
                normalized[field_name] = _enum_value(value)
        if normalized.get("min_stock_level", ZERO) is None:
            normalized["min_stock_level"] = ZERO

        def work(session: Session) -> InventoryItemDTO:
            item = session.get(InventoryItemModel, item_id, populate_existing=True)
            if item is None:
                raise InventoryItemNotFoundError(str(item_id))
            for field_name, value in normalized.items():
                setattr(item, field_name, value)
            state = compute_stock_state(
                item.quantity_on_hand,
                item.quantity_reserved,
                item.min_stock_level,
                item.max_stock_level,
                item.unit_cost,
            )
            item.stock_status = state.status.value
            item.stock_value = state.value
            item.updated_by_id = actor_id
            session.flush()
            return item.to_dto()

        outcome = self._atomic.run("update_item", item_id, work)
        logger.info(
            "inventory_item_updated",
            extra={"item_id": str(item_id), "fields": sorted(normalized)},
        )
        return outcome.value

    def deactivate_item(self, item_id: UUID, actor_id: UUID) -> InventoryItemDTO:
        """Soft delete: the item keeps its history but accepts no movements."""

        def work(session: Session) -> InventoryItemDTO:
            item = session.get(InventoryItemModel, item_id, populate_existing=True)
            if item is None:
                raise InventoryItemNotFoundError(str(item_id))
            item.is_active = False
            item.updated_by_id = actor_id
            session.flush()
            return item.to_dto()

        outcome = self._atomic.run("deactivate_item", item_id, work)
        logger.info(
            "inventory_item_deactivated",
            extra={"item_id": str(item_id), "actor_id": str(actor_id)},
        )
        return outcome.value

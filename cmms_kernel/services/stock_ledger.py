"""
StockLedgerService -- the atomic read-validate-write-append primitive.

Responsibility:
    Applies one stock movement to an inventory item and appends the
    matching immutable StockTransaction row, as a single atomic commit.
    Every public mutation (issue, return, purchase, adjustment, reserve,
    release) funnels into ``_apply()``; no wrapper duplicates the atomic
    logic.

Architecture position:
    Kernel > Services -- imperative shell.
    Pure arithmetic is delegated to ``cmms_kernel.domain.stock``; this
    module only sequences I/O around it.

Invariants enforced:
    - available == on_hand - reserved after every commit.
    - on_hand >= 0, reserved >= 0, available >= 0.
    - Validation runs against the FRESH read inside the atomic scope, so
      a concurrent writer can never make an approved issue overdraw.
    - quantity_before of transaction n+1 equals quantity_after of
      transaction n for the same item (item_seq is taken from the item's
      versioned transaction_count in the same write).
    - A rejected movement leaves item and ledger untouched.

Failure modes:
    - InventoryItemNotFoundError, InventoryItemInactiveError,
      InvalidTransactionTypeError, InvalidQuantityError,
      InsufficientStockError -- never retried.
    - OptimisticLockError / StoreUnavailableError -- retry budget spent
      (raised by AtomicRetry).

Unit cost policy:
    A PURCHASE that carries an explicit unit_cost re-prices the item: the
    standing unit_cost and therefore stock_value follow the latest purchase
    price.  For every other type an explicit unit_cost prices only that
    transaction row.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from cmms_kernel.db.types import quantize_quantity, round_money, to_decimal
from cmms_kernel.domain.dtos import LedgerResult
from cmms_kernel.domain.stock import (
    ZERO,
    TransactionType,
    apply_transaction,
    compute_stock_state,
    counter_field_for,
    parse_transaction_type,
    validate_quantity,
)
from cmms_kernel.exceptions import (
    InsufficientStockError,
    InvalidQuantityError,
    InvalidTransactionTypeError,
    InventoryItemInactiveError,
    InventoryItemNotFoundError,
)
from cmms_kernel.logging_config import LogContext, get_logger
from cmms_kernel.models.inventory import InventoryItemModel, StockTransactionModel
from cmms_kernel.services.base import BaseService, checked_amount

logger = get_logger("services.stock_ledger")


@dataclass(frozen=True)
class _Movement:
    """Validated intent for one atomic attempt."""

    transaction_type: TransactionType
    quantity: Decimal
    actor_id: UUID
    work_order_id: str | None
    reference: str | None
    notes: str
    unit_cost: Decimal | None


def _load_item_for_update(session: Session, item_id: UUID) -> InventoryItemModel:
    item = session.execute(
        select(InventoryItemModel)
        .where(InventoryItemModel.id == item_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if item is None:
        raise InventoryItemNotFoundError(str(item_id))
    if not item.is_active:
        raise InventoryItemInactiveError(str(item_id), item.part_number)
    return item


def _refresh_derived(item: InventoryItemModel, on_hand: Decimal, reserved: Decimal) -> None:
    state = compute_stock_state(
        on_hand,
        reserved,
        item.min_stock_level,
        item.max_stock_level,
        item.unit_cost,
    )
    item.quantity_on_hand = state.on_hand
    item.quantity_reserved = state.reserved
    item.quantity_available = state.available
    item.stock_status = state.status.value
    item.stock_value = state.value


class StockLedgerService(BaseService):
    """
    Transaction ledger engine for inventory items.

    Contract:
        Each public method is one atomic operation.  On return the change
        is committed and the returned LedgerResult reflects the committed
        state.  On exception nothing was written.

    Non-goals:
        - Does NOT create or edit item master data (InventoryService).
        - Does NOT read history (StockSelector).
    """

    def record_transaction(
        self,
        item_id: UUID,
        transaction_type: TransactionType | str,
        quantity,
        *,
        actor_id: UUID,
        work_order_id: str | None = None,
        reference: str | None = None,
        notes: str = "",
        unit_cost=None,
    ) -> LedgerResult:
        """
        Apply one movement and append its ledger row.

        Preconditions:
            - ``quantity`` > 0 for ISSUE/RETURN/PURCHASE; >= 0 (the absolute
              target) for ADJUSTMENT.

        Postconditions:
            - Item quantities, status, value and counters updated.
            - Exactly one StockTransaction appended with the fresh
              quantity_before and the new quantity_after.

        Raises:
            InvalidTransactionTypeError: Unknown type.
            InvalidQuantityError: Non-positive quantity / negative target,
                input that is not a finite number, or a negative unit_cost.
            InsufficientStockError: Issue exceeds on-hand (or available
                when no work order can consume the reservation).
            InventoryItemNotFoundError / InventoryItemInactiveError.
            OptimisticLockError / StoreUnavailableError.
        """
        resolved = parse_transaction_type(transaction_type)
        if resolved is None:
            raise InvalidTransactionTypeError(
                str(transaction_type),
                [t.value for t in TransactionType],
            )

        movement = _Movement(
            transaction_type=resolved,
            quantity=checked_amount(resolved.value, quantity, quantize_quantity),
            actor_id=actor_id,
            work_order_id=work_order_id,
            reference=reference,
            notes=notes or "",
            unit_cost=(
                checked_amount("unit_cost", unit_cost, round_money, allow_negative=False)
                if unit_cost is not None else None
            ),
        )

        with LogContext.bind(actor_id=actor_id, item_id=item_id):
            outcome = self._atomic.run(
                resolved.value,
                item_id,
                lambda session: self._apply(session, item_id, movement),
            )
            result: LedgerResult = outcome.value
            tx = result.transaction
            logger.info(
                "stock_transaction_recorded",
                extra={
                    "transaction_id": str(tx.id),
                    "transaction_type": resolved.value,
                    "part_number": tx.part_number,
                    "quantity": str(tx.quantity),
                    "quantity_before": str(tx.quantity_before),
                    "quantity_after": str(tx.quantity_after),
                    "item_seq": tx.item_seq,
                    "work_order_id": work_order_id,
                    "attempts": outcome.attempts,
                },
            )
        return LedgerResult(
            transaction=result.transaction,
            item=result.item,
            attempts=outcome.attempts,
        )

    def _apply(self, session: Session, item_id: UUID, movement: _Movement) -> LedgerResult:
        """One attempt: fresh read, validate, compute, write, append."""
        item = _load_item_for_update(session, item_id)
        ttype = movement.transaction_type
        qty = movement.quantity

        on_hand = to_decimal(item.quantity_on_hand)
        reserved = to_decimal(item.quantity_reserved)

        check = validate_quantity(ttype, on_hand, qty)
        if not check.is_valid:
            logger.warning(
                "stock_transaction_rejected",
                extra={
                    "transaction_type": ttype.value,
                    "reason_code": check.reason_code,
                    "quantity": str(qty),
                    "quantity_on_hand": str(on_hand),
                },
            )
            if check.reason_code == "INSUFFICIENT_STOCK":
                raise InsufficientStockError(str(item_id), qty, on_hand)
            raise InvalidQuantityError(ttype.value, qty, check.message or "")

        new_on_hand = apply_transaction(ttype, on_hand, qty)
        new_reserved = reserved
        if new_on_hand < reserved:
            if ttype is TransactionType.ADJUSTMENT:
                # A recount below the reservation clamps it to what exists
                new_reserved = new_on_hand
            elif movement.work_order_id is not None:
                new_reserved = max(reserved - qty, ZERO)
            else:
                available = on_hand - reserved
                logger.warning(
                    "stock_transaction_rejected",
                    extra={
                        "transaction_type": ttype.value,
                        "reason_code": "INSUFFICIENT_AVAILABLE",
                        "quantity": str(qty),
                        "quantity_available": str(available),
                    },
                )
                raise InsufficientStockError(
                    str(item_id), qty, available, basis="available",
                )

        if ttype is TransactionType.PURCHASE and movement.unit_cost is not None:
            item.unit_cost = movement.unit_cost
        cost = movement.unit_cost if movement.unit_cost is not None else item.unit_cost

        now = self._clock.now()
        _refresh_derived(item, new_on_hand, new_reserved)

        total_field, last_field = counter_field_for(ttype)
        if total_field is not None:
            setattr(item, total_field, quantize_quantity(getattr(item, total_field) + qty))
        setattr(item, last_field, now)

        item.transaction_count += 1
        item.updated_by_id = movement.actor_id
        # Versioned UPDATE first: a lost race surfaces as StaleDataError before the append
        session.flush()

        tx = StockTransactionModel(
            item_id=item.id,
            part_number=item.part_number,
            item_name=item.name,
            transaction_type=ttype.value,
            quantity=qty,
            unit_cost=cost,
            total_cost=round_money(qty * to_decimal(cost)),
            quantity_before=quantize_quantity(on_hand),
            quantity_after=new_on_hand,
            item_seq=item.transaction_count,
            work_order_id=movement.work_order_id,
            reference=movement.reference,
            notes=movement.notes,
            performed_by=movement.actor_id,
            occurred_at=now,
            created_by_id=movement.actor_id,
        )
        session.add(tx)
        session.flush()

        return LedgerResult(transaction=tx.to_dto(), item=item.to_dto())

    # Wrappers

    def issue_stock(
        self,
        item_id: UUID,
        quantity,
        work_order_id: str | None,
        actor_id: UUID,
        notes: str = "",
    ) -> LedgerResult:
        return self.record_transaction(
            item_id,
            TransactionType.ISSUE,
            quantity,
            actor_id=actor_id,
            work_order_id=work_order_id,
            notes=notes,
        )

    def return_stock(
        self,
        item_id: UUID,
        quantity,
        work_order_id: str | None,
        actor_id: UUID,
        notes: str = "",
    ) -> LedgerResult:
        return self.record_transaction(
            item_id,
            TransactionType.RETURN,
            quantity,
            actor_id=actor_id,
            work_order_id=work_order_id,
            notes=notes,
        )

    def record_purchase(
        self,
        item_id: UUID,
        quantity,
        unit_cost,
        reference: str | None,
        actor_id: UUID,
        notes: str = "",
    ) -> LedgerResult:
        return self.record_transaction(
            item_id,
            TransactionType.PURCHASE,
            quantity,
            actor_id=actor_id,
            reference=reference,
            notes=notes,
            unit_cost=unit_cost,
        )

    def adjust_stock(
        self,
        item_id: UUID,
        new_quantity,
        reason: str,
        actor_id: UUID,
    ) -> LedgerResult:
        """Set on-hand to an absolute counted quantity."""
        return self.record_transaction(
            item_id,
            TransactionType.ADJUSTMENT,
            new_quantity,
            actor_id=actor_id,
            notes=reason,
        )

    # Reservations

    def reserve_stock(
        self,
        item_id: UUID,
        quantity,
        work_order_id: str | None,
        actor_id: UUID,
    ) -> LedgerResult:
        """
        Hold ``quantity`` of the available stock for a work order.

        On-hand is unchanged, so no StockTransaction is written; the
        returned LedgerResult has ``transaction=None``.

        Raises:
            InvalidQuantityError: quantity <= 0 or not a finite number.
            InsufficientStockError: quantity > available (basis "available").
        """
        return self._change_reservation(
            "reserve", item_id, checked_amount("reserve", quantity, quantize_quantity),
            actor_id, work_order_id,
        )

    def release_reservation(
        self,
        item_id: UUID,
        quantity,
        actor_id: UUID,
        work_order_id: str | None = None,
    ) -> LedgerResult:
        """
        Return reserved stock to available.

        Raises:
            InvalidQuantityError: quantity <= 0 or not a finite number.
            InsufficientStockError: quantity > reserved (basis "reserved").
        """
        return self._change_reservation(
            "release", item_id, checked_amount("release", quantity, quantize_quantity),
            actor_id, work_order_id,
        )

    def _change_reservation(
        self,
        operation: str,
        item_id: UUID,
        quantity: Decimal,
        actor_id: UUID,
        work_order_id: str | None,
    ) -> LedgerResult:
        if quantity <= ZERO:
            raise InvalidQuantityError(
                operation, quantity, "Reservation quantity must be greater than 0",
            )

        def work(session: Session) -> LedgerResult:
            item = _load_item_for_update(session, item_id)
            on_hand = to_decimal(item.quantity_on_hand)
            reserved = to_decimal(item.quantity_reserved)

            if operation == "reserve":
                available = on_hand - reserved
                if quantity > available:
                    raise InsufficientStockError(
                        str(item_id), quantity, available, basis="available",
                    )
                new_reserved = reserved + quantity
            else:
                if quantity > reserved:
                    raise InsufficientStockError(
                        str(item_id), quantity, reserved, basis="reserved",
                    )
                new_reserved = reserved - quantity

            _refresh_derived(item, on_hand, new_reserved)
            item.updated_by_id = actor_id
            session.flush()
            return LedgerResult(transaction=None, item=item.to_dto())

        with LogContext.bind(actor_id=actor_id, item_id=item_id):
            outcome = self._atomic.run(operation, item_id, work)
            result: LedgerResult = outcome.value
            logger.info(
                "stock_reservation_changed",
                extra={
                    "operation": operation,
                    "quantity": str(quantity),
                    "quantity_reserved": str(result.item.quantity_reserved),
                    "quantity_available": str(result.item.quantity_available),
                    "work_order_id": work_order_id,
                    "attempts": outcome.attempts,
                },
            )
        return LedgerResult(transaction=None, item=result.item, attempts=outcome.attempts)

"""
ORM-Level Immutability Enforcement for the stock ledger.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
Listeners registered here intercept them and check the append-only rules:

    session.flush()
         |
         v
    [before_flush]  --> _guard_item_deletion() --> ReferencedItemDeleteError
         |
         v
    [before_update] --> _reject_transaction_update() --> ImmutabilityViolationError
         |
         v
    [before_delete] --> _reject_transaction_delete() ----------^
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | When Immutable                     | Alternative
--------------------|------------------------------------|---------------------------
StockTransaction    | ALWAYS (from creation)             | Record a compensating ADJUSTMENT
InventoryItem       | DELETE once any transaction exists | Soft delete (is_active=False)

Item deletion is checked in Session.before_flush: mapper-level before_delete
fires after the flush plan is fixed, which is too late to keep the row.

===============================================================================
USAGE
===============================================================================

    from cmms_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

Tests that need to corrupt history on purpose call
unregister_immutability_listeners() and re-register afterwards.
"""

from sqlalchemy import event, func, select
from sqlalchemy.orm import Session

from cmms_kernel.exceptions import (
    ImmutabilityViolationError,
    ReferencedItemDeleteError,
)
from cmms_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _blocked(entity_type: str, entity_id, operation: str, **details) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            **details,
        },
    )


def _guard_item_deletion(session, flush_context, instances):
    """Reject physical deletion of an inventory item that has ledger rows."""
    from cmms_kernel.models.inventory import InventoryItemModel, StockTransactionModel

    doomed = [obj for obj in session.deleted if isinstance(obj, InventoryItemModel)]
    for item in doomed:
        with session.no_autoflush:
            history = session.scalar(
                select(func.count())
                .select_from(StockTransactionModel)
                .where(StockTransactionModel.item_id == item.id)
            )
        if history:
            _blocked("InventoryItem", item.id, "DELETE", transaction_count=history)
            raise ReferencedItemDeleteError(item_id=str(item.id), transaction_count=history)


def _reject_transaction_update(mapper, connection, target):
    _blocked("StockTransaction", target.id, "UPDATE")
    raise ImmutabilityViolationError(
        entity_type="StockTransaction",
        entity_id=str(target.id),
        reason="Stock transactions are immutable; record a compensating adjustment",
    )


def _reject_transaction_delete(mapper, connection, target):
    _blocked("StockTransaction", target.id, "DELETE")
    raise ImmutabilityViolationError(
        entity_type="StockTransaction",
        entity_id=str(target.id),
        reason="Stock transactions cannot be deleted",
    )


def _listeners():
    from cmms_kernel.models.inventory import StockTransactionModel

    return (
        (Session, "before_flush", _guard_item_deletion),
        (StockTransactionModel, "before_update", _reject_transaction_update),
        (StockTransactionModel, "before_delete", _reject_transaction_delete),
    )


def register_immutability_listeners() -> None:
    """Install the append-only guards. Safe to call more than once."""
    for target, name, fn in _listeners():
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def unregister_immutability_listeners() -> None:
    """Remove the guards. Only for tests that tamper with history on purpose."""
    for target, name, fn in _listeners():
        if event.contains(target, name, fn):
            event.remove(target, name, fn)

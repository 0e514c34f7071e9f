"""
Append-only enforcement: stock transactions are never updated or deleted,
and items with history are never physically removed.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from cmms_kernel.db.engine import session_scope
from cmms_kernel.exceptions import ImmutabilityViolationError, ReferencedItemDeleteError
from cmms_kernel.models.inventory import InventoryItemModel, StockTransactionModel


def _first_transaction(session, item_id):
    return session.execute(
        select(StockTransactionModel).where(StockTransactionModel.item_id == item_id)
    ).scalars().first()


class TestStockTransactionImmutability:
    def test_update_rejected(self, make_item, session_factory):
        item = make_item(on_hand="5")
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            with session_scope(session_factory) as session:
                tx = _first_transaction(session, item.id)
                tx.quantity = Decimal("500")
                session.flush()
        assert exc_info.value.entity_type == "StockTransaction"
        assert exc_info.value.code == "IMMUTABILITY_VIOLATION"

    def test_delete_rejected(self, make_item, session_factory):
        item = make_item(on_hand="5")
        with pytest.raises(ImmutabilityViolationError):
            with session_scope(session_factory) as session:
                session.delete(_first_transaction(session, item.id))
                session.flush()

    def test_rejected_change_not_persisted(self, make_item, session_factory, stock_queries):
        item = make_item(on_hand="5")
        with pytest.raises(ImmutabilityViolationError):
            with session_scope(session_factory) as session:
                _first_transaction(session, item.id).notes = "edited"
                session.flush()
        with stock_queries() as q:
            (tx,) = q.transaction_history(item.id)
        assert tx.notes == ""


class TestItemDeletion:
    def test_item_with_history_cannot_be_deleted(self, make_item, session_factory):
        item = make_item(on_hand="1")
        with pytest.raises(ReferencedItemDeleteError) as exc_info:
            with session_scope(session_factory) as session:
                session.delete(session.get(InventoryItemModel, item.id))
                session.flush()
        assert exc_info.value.transaction_count == 1

    def test_item_without_history_can_be_deleted(self, make_item, session_factory):
        item = make_item()
        with session_scope(session_factory) as session:
            session.delete(session.get(InventoryItemModel, item.id))
        with session_scope(session_factory) as session:
            assert session.get(InventoryItemModel, item.id) is None

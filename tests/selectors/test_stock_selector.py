"""
Tests for StockSelector -- read-only stock and ledger queries.
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from cmms_kernel.db.engine import session_scope
from cmms_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from cmms_kernel.domain.stock import ItemType, StockStatus, TransactionType
from cmms_kernel.exceptions import InventoryItemNotFoundError
from cmms_kernel.models.inventory import StockTransactionModel

D = Decimal


class TestItemsNeedingReorder:
    def test_only_items_at_or_below_reorder_point(self, make_item, stock_queries):
        low = make_item(on_hand="2", min_stock_level=D("5"), name="Seal kit", location="A")
        at_point = make_item(on_hand="5", min_stock_level=D("5"), name="O-ring", location="A")
        make_item(on_hand="10", min_stock_level=D("5"), name="Gasket", location="A")

        with stock_queries() as q:
            result = q.items_needing_reorder(location="A")

        assert [i.id for i in result] == [low.id, at_point.id]

    def test_inactive_excluded(self, make_item, inventory, stock_queries, test_actor_id):
        item = make_item(on_hand="1", min_stock_level=D("5"), location="B")
        inventory.deactivate_item(item.id, test_actor_id)
        with stock_queries() as q:
            assert q.items_needing_reorder(location="B") == []

    def test_type_filter_and_limit(self, make_item, stock_queries):
        for n in range(3):
            make_item(
                on_hand=str(n + 1),
                min_stock_level=D("5"),
                item_type=ItemType.TOOL,
                name=f"Tool {n}",
                location="C",
            )
        make_item(on_hand="1", min_stock_level=D("5"), item_type=ItemType.CHEMICAL, location="C")

        with stock_queries() as q:
            tools = q.items_needing_reorder(item_type=ItemType.TOOL, location="C", limit=2)
            assert q.items_needing_reorder(location="C", limit=0) == []

        assert len(tools) == 2
        assert all(t.item_type == ItemType.TOOL.value for t in tools)
        assert [t.quantity_on_hand for t in tools] == [D("1"), D("2")]


class TestSearchAndLookup:
    def test_search_by_text_and_status(self, make_item, stock_queries):
        make_item(on_hand="0", name="Drive chain")
        make_item(on_hand="3", name="Chain link")
        make_item(on_hand="3", name="Sprocket")

        with stock_queries() as q:
            chains = q.search_items(text="chain")
            out = q.search_items(stock_status=StockStatus.OUT)

        assert {i.name for i in chains} == {"Drive chain", "Chain link"}
        assert [i.name for i in out] == ["Drive chain"]

    def test_get_by_part_number(self, make_item, stock_queries):
        item = make_item(part_number="MTR-11")
        with stock_queries() as q:
            assert q.get_by_part_number("mtr-11").id == item.id
            assert q.get_by_part_number("missing") is None
            assert q.get_item(uuid4()) is None


class TestTransactionHistory:
    def test_newest_first_by_sequence(self, ledger, make_item, stock_queries, test_actor_id):
        item = make_item(on_hand="10")
        ledger.issue_stock(item.id, D("1"), None, test_actor_id)
        ledger.return_stock(item.id, D("1"), None, test_actor_id)

        with stock_queries() as q:
            history = q.transaction_history(item.id)

        assert [t.item_seq for t in history] == [3, 2, 1]
        assert [t.transaction_type for t in history] == [
            TransactionType.RETURN,
            TransactionType.ISSUE,
            TransactionType.PURCHASE,
        ]

    def test_type_and_window_filters(
        self, ledger, make_item, stock_queries, deterministic_clock, test_actor_id,
    ):
        item = make_item(on_hand="10")
        start = deterministic_clock.now()
        deterministic_clock.advance_days(1)
        ledger.issue_stock(item.id, D("1"), None, test_actor_id)
        deterministic_clock.advance_days(1)
        ledger.issue_stock(item.id, D("2"), None, test_actor_id)

        with stock_queries() as q:
            issues = q.transaction_history(item.id, transaction_type="issue")
            first_day = q.transaction_history(
                item.id, start=start, end=start + timedelta(days=1),
            )
            paged = q.transaction_history(item.id, limit=1, offset=1)

        assert [t.quantity for t in issues] == [D("2"), D("1")]
        assert [t.transaction_type for t in first_day] == [TransactionType.PURCHASE]
        assert [t.item_seq for t in paged] == [2]

    def test_by_work_order(self, ledger, make_item, stock_queries, test_actor_id):
        filters = make_item(on_hand="10", name="Filter")
        belts = make_item(on_hand="10", name="Belt")
        ledger.issue_stock(filters.id, D("2"), "WO-0000010", test_actor_id)
        ledger.issue_stock(belts.id, D("1"), "WO-0000010", test_actor_id)
        ledger.issue_stock(belts.id, D("1"), "WO-0000011", test_actor_id)

        with stock_queries() as q:
            rows = q.transactions_by_work_order("WO-0000010")

        assert {r.item_name for r in rows} == {"Filter", "Belt"}
        assert all(r.work_order_id == "WO-0000010" for r in rows)


class TestStatistics:
    def test_counts_and_value(self, ledger, make_item, stock_queries, test_actor_id):
        item = make_item(on_hand="10", unit_cost="2.50")
        ledger.issue_stock(item.id, D("4"), None, test_actor_id)

        with stock_queries() as q:
            stats = q.transaction_statistics()

        assert stats.total == 2
        assert stats.by_type == {"purchase": 1, "issue": 1}
        assert stats.total_value == D("35.00")

    def test_empty_window(self, make_item, stock_queries, deterministic_clock):
        make_item(on_hand="1")
        later = deterministic_clock.now() + timedelta(days=30)
        with stock_queries() as q:
            stats = q.transaction_statistics(start=later)
        assert stats.total == 0
        assert stats.by_type == {}


class TestReplay:
    def test_consistent_ledger(self, ledger, make_item, stock_queries, test_actor_id):
        item = make_item(on_hand="10")
        ledger.issue_stock(item.id, D("3"), None, test_actor_id)
        ledger.adjust_stock(item.id, D("5"), "recount", test_actor_id)
        ledger.record_purchase(item.id, D("2"), D("2.50"), "PO-1", test_actor_id)

        with stock_queries() as q:
            replay = q.replay_on_hand(item.id)

        assert replay.is_consistent
        assert replay.replayed_on_hand == D("7")
        assert replay.recorded_on_hand == D("7")
        assert replay.transaction_count == 4

    def test_tampered_row_reported(
        self, ledger, make_item, stock_queries, session_factory, captured_logs, test_actor_id,
    ):
        item = make_item(on_hand="10")
        ledger.issue_stock(item.id, D("3"), None, test_actor_id)

        unregister_immutability_listeners()
        try:
            with session_scope(session_factory) as session:
                tx = session.execute(
                    select(StockTransactionModel)
                    .where(StockTransactionModel.item_id == item.id)
                    .where(StockTransactionModel.item_seq == 2)
                ).scalar_one()
                tx.quantity_after = D("9")
        finally:
            register_immutability_listeners()

        with stock_queries() as q:
            replay = q.replay_on_hand(item.id)

        assert not replay.is_consistent
        assert replay.chain_breaks == (2,)
        assert replay.replayed_on_hand == D("7")
        assert replay.recorded_on_hand == D("7")
        assert any(r["message"] == "ledger_replay_inconsistent" for r in captured_logs())

    def test_tampered_quantity_changes_replayed_total(
        self, ledger, make_item, stock_queries, session_factory, test_actor_id,
    ):
        item = make_item(on_hand="10")
        ledger.issue_stock(item.id, D("3"), None, test_actor_id)
        ledger.issue_stock(item.id, D("2"), None, test_actor_id)

        unregister_immutability_listeners()
        try:
            with session_scope(session_factory) as session:
                tx = session.execute(
                    select(StockTransactionModel)
                    .where(StockTransactionModel.item_id == item.id)
                    .where(StockTransactionModel.item_seq == 2)
                ).scalar_one()
                tx.quantity = D("1")
        finally:
            register_immutability_listeners()

        with stock_queries() as q:
            replay = q.replay_on_hand(item.id)

        # 10 - 1 - 2; the stored snapshots still chain to 5
        assert replay.replayed_on_hand == D("7")
        assert replay.recorded_on_hand == D("5")
        assert replay.chain_breaks == (2, 3)
        assert not replay.is_consistent

    def test_unknown_item(self, stock_queries):
        with stock_queries() as q:
            with pytest.raises(InventoryItemNotFoundError):
                q.replay_on_hand(uuid4())

"""
Property-based tests for stock arithmetic and the ledger.

Boundaries fuzzed here:
- Calculator: arbitrary on-hand and movement quantities at 4 dp
- Ledger: random movement sequences against one item, including
  rejected over-issues and reservations

After every sequence the item must satisfy available == on_hand - reserved
with all three non-negative, and the ledger replay must reproduce on-hand.
"""

import re
from decimal import Decimal

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from sqlalchemy.orm import sessionmaker

from cmms_kernel.db.engine import build_engine, create_tables, session_scope
from cmms_kernel.db.immutability import register_immutability_listeners
from cmms_kernel.domain.clock import DeterministicClock
from cmms_kernel.domain.stock import (
    StockStatus,
    TransactionType,
    apply_transaction,
    compute_stock_state,
    format_part_number,
    validate_quantity,
)
from cmms_kernel.exceptions import InsufficientStockError
from cmms_kernel.selectors.stock_selector import StockSelector
from cmms_kernel.services.inventory_service import InventoryService
from cmms_kernel.services.retry import AtomicRetry, RetryPolicy
from cmms_kernel.services.stock_ledger import StockLedgerService
from tests.conftest import FIXED_NOW, TEST_ACTOR_ID

quantities = st.decimals(
    min_value=Decimal("0"),
    max_value=Decimal("100000"),
    places=4,
    allow_nan=False,
    allow_infinity=False,
)
positive_quantities = quantities.filter(lambda q: q > 0)
movement_types = st.sampled_from(list(TransactionType))

# Autouse log fixtures are function-scoped; no test here depends on their state
property_settings = settings(suppress_health_check=[HealthCheck.function_scoped_fixture])


class TestCalculatorProperties:
    @property_settings
    @given(movement_types, quantities, quantities)
    def test_valid_movement_never_goes_negative(self, ttype, on_hand, qty):
        check = validate_quantity(ttype, on_hand, qty)
        if check.is_valid:
            assert apply_transaction(ttype, on_hand, qty) >= 0

    @property_settings
    @given(quantities, positive_quantities)
    def test_issue_then_return_restores(self, on_hand, qty):
        if qty > on_hand:
            assert not validate_quantity(TransactionType.ISSUE, on_hand, qty).is_valid
            return
        after_issue = apply_transaction(TransactionType.ISSUE, on_hand, qty)
        assert apply_transaction(TransactionType.RETURN, after_issue, qty) == on_hand

    @property_settings
    @given(quantities, quantities)
    def test_adjustment_is_idempotent(self, on_hand, target):
        once = apply_transaction(TransactionType.ADJUSTMENT, on_hand, target)
        assert apply_transaction(TransactionType.ADJUSTMENT, once, target) == once

    @property_settings
    @given(quantities, quantities, quantities)
    def test_state_invariants(self, on_hand, reserved_seed, min_level):
        reserved = min(reserved_seed, on_hand)
        state = compute_stock_state(on_hand, reserved, min_level, None, Decimal("1.25"))
        assert state.available == state.on_hand - state.reserved
        assert state.available >= 0
        assert (state.status == StockStatus.OUT) == (state.on_hand == 0)

    @property_settings
    @given(st.integers(min_value=1, max_value=9_999_999))
    def test_part_number_shape(self, n):
        assert re.fullmatch(r"PART-\d{7}", format_part_number(n))


# =============================================================================
# Ledger sequences
# =============================================================================

operations = st.lists(
    st.tuples(
        st.sampled_from(["issue", "return", "purchase", "adjust", "reserve", "release"]),
        st.integers(min_value=0, max_value=30),
        st.booleans(),
    ),
    min_size=1,
    max_size=15,
)


def _fresh_services():
    engine = build_engine("sqlite://")
    create_tables(engine)
    register_immutability_listeners()
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    atomic = AtomicRetry(
        factory,
        RetryPolicy(max_attempts=2, initial_wait_seconds=0.0, max_wait_seconds=0.0),
        sleep=lambda _: None,
    )
    clock = DeterministicClock(FIXED_NOW)
    return engine, factory, InventoryService(atomic, clock), StockLedgerService(atomic, clock)


class TestLedgerSequenceProperties:
    @settings(
        max_examples=30,
        deadline=None,
        suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
    )
    @given(operations)
    def test_invariants_hold_after_any_sequence(self, ops):
        engine, factory, inventory, ledger = _fresh_services()
        try:
            item = inventory.create_item(name="Fuzzed part", actor_id=TEST_ACTOR_ID)
            expected_on_hand = Decimal("0")
            expected_rows = 0

            for op, amount, with_work_order in ops:
                qty = Decimal(amount)
                work_order = "WO-FUZZ" if with_work_order else None
                try:
                    if op == "issue" and qty > 0:
                        result = ledger.issue_stock(item.id, qty, work_order, TEST_ACTOR_ID)
                    elif op == "return" and qty > 0:
                        result = ledger.return_stock(item.id, qty, work_order, TEST_ACTOR_ID)
                    elif op == "purchase" and qty > 0:
                        result = ledger.record_purchase(
                            item.id, qty, Decimal("1.50"), None, TEST_ACTOR_ID,
                        )
                    elif op == "adjust":
                        result = ledger.adjust_stock(item.id, qty, "cycle count", TEST_ACTOR_ID)
                    elif op == "reserve" and qty > 0:
                        result = ledger.reserve_stock(item.id, qty, work_order, TEST_ACTOR_ID)
                    elif op == "release" and qty > 0:
                        result = ledger.release_reservation(item.id, qty, TEST_ACTOR_ID)
                    else:
                        continue
                except InsufficientStockError:
                    continue

                if result.transaction is not None:
                    expected_rows += 1
                    assert result.transaction.quantity_before == expected_on_hand
                expected_on_hand = result.item.quantity_on_hand

                current = result.item
                assert current.quantity_on_hand >= 0
                assert current.quantity_reserved >= 0
                assert current.quantity_available >= 0
                assert current.quantity_available == (
                    current.quantity_on_hand - current.quantity_reserved
                )

            with session_scope(factory) as session:
                replay = StockSelector(session).replay_on_hand(item.id)
            assert replay.is_consistent
            assert replay.replayed_on_hand == expected_on_hand
            assert replay.transaction_count == expected_rows
        finally:
            engine.dispose()

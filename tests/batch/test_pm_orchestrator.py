"""
Tests for PMGenerationOrchestrator wiring.
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from cmms_batch.domain.types import GenerationPolicy, ScheduleFrequency
from cmms_batch.orchestrator import PMGenerationOrchestrator
from cmms_kernel.db.engine import session_scope
from cmms_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from cmms_kernel.exceptions import ImmutabilityViolationError
from cmms_kernel.models.inventory import StockTransactionModel
from cmms_kernel.services.retry import RetryPolicy
from tests.conftest import FIXED_NOW


def _orchestrator(session_factory, clock, **kwargs):
    return PMGenerationOrchestrator.from_session_factory(
        session_factory,
        clock=clock,
        retry_policy=RetryPolicy(max_attempts=3, initial_wait_seconds=0.0, max_wait_seconds=0.0),
        sleep=lambda _: None,
        **kwargs,
    )


class TestOrchestrator:
    def test_services_share_clock_and_policy(self, session_factory, deterministic_clock):
        policy = GenerationPolicy(max_items_per_run=7, default_limit=3)
        orchestrator = _orchestrator(
            session_factory, deterministic_clock, generation_policy=policy,
        )
        assert orchestrator.clock is deterministic_clock
        assert orchestrator.ledger.clock is deterministic_clock
        assert orchestrator.generator.policy is policy

    def test_default_actor(self, session_factory, deterministic_clock):
        actor = uuid4()
        orchestrator = _orchestrator(session_factory, deterministic_clock, actor_id=actor)
        assert orchestrator.actor_id == actor

    def test_end_to_end(self, session_factory, deterministic_clock, test_actor_id):
        orchestrator = _orchestrator(session_factory, deterministic_clock, actor_id=test_actor_id)

        item = orchestrator.inventory.create_item(name="Bearing grease", actor_id=test_actor_id)
        orchestrator.ledger.record_purchase(
            item.id, Decimal("20"), Decimal("4.00"), "PO-1", test_actor_id,
        )
        schedule = orchestrator.schedules.create_schedule(
            title="Grease bearings",
            equipment_id="EQ-1",
            frequency=ScheduleFrequency.WEEKLY,
            actor_id=test_actor_id,
            start_date=FIXED_NOW,
            required_parts=[{"part_number": item.part_number, "quantity": 1}],
        )

        dry = orchestrator.run_pm_generation(dry_run=True)
        result = orchestrator.run_pm_generation()
        again = orchestrator.run_pm_generation()

        assert dry.generated == 1
        assert result.generated == 1
        assert result.details[0].schedule_id == schedule.id
        assert again.skipped == 1

        work_order_id = result.details[0].work_order_id
        orchestrator.ledger.issue_stock(item.id, Decimal("1"), work_order_id, test_actor_id)

        with orchestrator.stock_queries() as q:
            rows = q.transactions_by_work_order(work_order_id)
            current = q.get_item(item.id)
        assert len(rows) == 1
        assert current.quantity_on_hand == Decimal("19")

    def test_factory_installs_immutability_listeners(
        self, session_factory, deterministic_clock, test_actor_id,
    ):
        unregister_immutability_listeners()
        try:
            orchestrator = _orchestrator(session_factory, deterministic_clock)
            item = orchestrator.inventory.create_item(name="V-belt", actor_id=test_actor_id)
            orchestrator.ledger.record_purchase(
                item.id, Decimal("5"), Decimal("1.00"), "PO-2", test_actor_id,
            )

            with pytest.raises(ImmutabilityViolationError):
                with session_scope(session_factory) as session:
                    tx = session.execute(
                        select(StockTransactionModel)
                        .where(StockTransactionModel.item_id == item.id)
                    ).scalar_one()
                    tx.quantity_after = Decimal("50")
        finally:
            register_immutability_listeners()

    def test_overdue_schedules(self, session_factory, deterministic_clock, test_actor_id):
        orchestrator = _orchestrator(session_factory, deterministic_clock, actor_id=test_actor_id)
        overdue = orchestrator.schedules.create_schedule(
            title="Replace air filter",
            equipment_id="EQ-2",
            frequency=ScheduleFrequency.MONTHLY,
            actor_id=test_actor_id,
            next_due_date=FIXED_NOW - timedelta(days=10),
        )
        orchestrator.schedules.create_schedule(
            title="Inspect belts",
            equipment_id="EQ-3",
            frequency=ScheduleFrequency.MONTHLY,
            actor_id=test_actor_id,
            start_date=FIXED_NOW,
        )

        assert [s.id for s in orchestrator.overdue_schedules()] == [overdue.id]

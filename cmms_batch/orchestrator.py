"""
PMGenerationOrchestrator -- DI container for the ledger and PM generation.

Contract:
    Wires one AtomicRetry (session factory + retry policy) and one Clock
    into every service, so the stock ledger, the inventory catalogue, the
    schedule lifecycle and the PM generator share transaction semantics
    and time.  Single place where these dependencies are composed.

Architecture: cmms_batch (top-level).  Nothing in cmms_kernel imports
    this module.  Configuration arrives as already-built kernel and batch
    policies; use cmms_config.bridges to derive them from settings.

Invariants enforced:
    - Clock injection: every service receives the same Clock.
    - Every service shares one retry budget.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from cmms_batch.domain.types import GenerationPolicy, GenerationRunResult, PMScheduleSnapshot
from cmms_batch.services.generator import GatewayFactory, PMWorkOrderGenerator
from cmms_batch.services.schedules import PMScheduleService
from cmms_batch.services.work_orders import SqlWorkOrderGateway
from cmms_kernel.db.engine import session_scope
from cmms_kernel.db.immutability import register_immutability_listeners
from cmms_kernel.domain.clock import Clock, SystemClock
from cmms_kernel.logging_config import get_logger
from cmms_kernel.selectors.stock_selector import StockSelector
from cmms_kernel.services.inventory_service import InventoryService
from cmms_kernel.services.retry import AtomicRetry, RetryPolicy
from cmms_kernel.services.stock_ledger import StockLedgerService

logger = get_logger("batch.orchestrator")


class PMGenerationOrchestrator:
    """DI container for the CMMS services.

    Contract:
        - ``from_session_factory()`` creates a fully wired orchestrator.
        - ``run_pm_generation()`` is the entry point used by the cron
          trigger and the command-line script.
        - ``overdue_schedules()`` lists schedules late beyond the grace
          period.
        - ``stock_queries()`` yields a StockSelector inside a read scope.

    Non-goals:
        - Does NOT schedule itself; the caller decides when to run.
        - Does NOT own the engine; the caller disposes it.
    """

    def __init__(
        self,
        atomic: AtomicRetry,
        clock: Clock | None = None,
        generation_policy: GenerationPolicy | None = None,
        gateway_factory: GatewayFactory = SqlWorkOrderGateway,
        actor_id: UUID | None = None,
    ) -> None:
        self._atomic = atomic
        self._clock = clock or SystemClock()
        self._generation_policy = generation_policy or GenerationPolicy()
        self._actor_id = actor_id or uuid4()

        self._ledger = StockLedgerService(atomic, self._clock)
        self._inventory = InventoryService(atomic, self._clock)
        self._schedules = PMScheduleService(atomic, self._clock, self._generation_policy)
        self._generator = PMWorkOrderGenerator(
            atomic,
            self._clock,
            self._generation_policy,
            gateway_factory=gateway_factory,
        )

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_session_factory(
        cls,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        retry_policy: RetryPolicy | None = None,
        generation_policy: GenerationPolicy | None = None,
        gateway_factory: GatewayFactory = SqlWorkOrderGateway,
        actor_id: UUID | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> PMGenerationOrchestrator:
        """Create a fully wired orchestrator from a session factory.

        Also installs the ledger immutability listeners (idempotent).

        Args:
            session_factory: Factory producing one session per attempt.
            clock: Optional clock for deterministic testing.
            retry_policy: Attempt ceiling and backoff bounds.
            generation_policy: PM batch limits and timing defaults.
            gateway_factory: Work order collaborator, bound per session.
            actor_id: Actor recorded by scheduled runs.
            sleep: Backoff sleeper; tests pass a no-op.
        """
        register_immutability_listeners()
        atomic = AtomicRetry(session_factory, retry_policy, sleep=sleep)
        return cls(
            atomic=atomic,
            clock=clock,
            generation_policy=generation_policy,
            gateway_factory=gateway_factory,
            actor_id=actor_id,
        )

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    def run_pm_generation(
        self,
        limit: int | None = None,
        dry_run: bool = False,
        actor_id: UUID | None = None,
    ) -> GenerationRunResult:
        """Process the current due set with the orchestrator's actor."""
        result = self._generator.process_due_schedules(
            actor_id or self._actor_id,
            limit=limit,
            dry_run=dry_run,
        )
        logger.info(
            "pm_generation_run_finished",
            extra={
                "run_id": str(result.run_id),
                "generated": result.generated,
                "errors": result.errors,
            },
        )
        return result

    def overdue_schedules(self, limit: int | None = None) -> list[PMScheduleSnapshot]:
        """Schedules past due beyond the policy grace period, oldest first."""
        return self._generator.fetch_overdue_schedules(limit)

    @contextmanager
    def stock_queries(self) -> Iterator[StockSelector]:
        """Read-only selector bound to a session that closes on exit."""
        with session_scope(self._atomic.session_factory) as session:
            yield StockSelector(session)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def ledger(self) -> StockLedgerService:
        return self._ledger

    @property
    def inventory(self) -> InventoryService:
        return self._inventory

    @property
    def schedules(self) -> PMScheduleService:
        return self._schedules

    @property
    def generator(self) -> PMWorkOrderGenerator:
        return self._generator

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def actor_id(self) -> UUID:
        return self._actor_id

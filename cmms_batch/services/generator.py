"""
PMWorkOrderGenerator -- idempotent batch generation of PM work orders.

Contract:
    ``process_due_schedules()`` walks the due set sequentially.  Each
    schedule is one AtomicRetry unit of work in its own session:

        fresh read -> evaluate_schedule() -> build payload
            -> gateway.create() -> advance generation markers -> commit

    A failure inside one schedule is recorded as a FAILED detail and the
    run continues with the next schedule.  Only a failure to fetch the due
    set aborts the run (DependencyError).

Architecture: cmms_batch/services.  Pure decisions come from
    cmms_batch.domain.schedule; I/O goes through the repository and
    gateway factories, which receive the unit of work's session.

Invariants enforced:
    - Idempotency key (schedule id, next_due_date): the markers are
      compared against the freshly read due date inside the same commit
      that creates the work order.
    - The schedule row is written with its version, so a concurrent runner
      that advanced it first turns this attempt into a retry that re-reads
      and reports SKIPPED (already_generated).
    - dry_run never writes: no work order, no sequence number, no marker.
    - Each run processes at most min(limit, max_items_per_run) schedules.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import replace
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from cmms_batch.domain.schedule import build_work_order_payload, evaluate_schedule
from cmms_batch.domain.types import (
    GenerationDetail,
    GenerationPolicy,
    GenerationRunResult,
    PMScheduleSnapshot,
    ScheduleState,
)
from cmms_batch.services.schedules import PMScheduleRepository
from cmms_batch.services.work_orders import SqlWorkOrderGateway, WorkOrderGateway
from cmms_kernel.domain.clock import Clock
from cmms_kernel.exceptions import (
    CmmsKernelError,
    DependencyError,
    ScheduleInactiveError,
    ScheduleNotFoundError,
    StoreUnavailableError,
)
from cmms_kernel.logging_config import LogContext, get_logger
from cmms_kernel.services.base import BaseService
from cmms_kernel.services.retry import AtomicRetry

logger = get_logger("batch.pm_generator")

GatewayFactory = Callable[[Session], WorkOrderGateway]
RepositoryFactory = Callable[[Session], PMScheduleRepository]


class PMWorkOrderGenerator(BaseService):
    """
    Generates preventive maintenance work orders from due schedules.

    Non-goals:
        - Does NOT decide when to run; a cron trigger or operator calls it.
        - Does NOT roll next_due_date forward; completion does that.
    """

    def __init__(
        self,
        atomic: AtomicRetry,
        clock: Clock | None = None,
        policy: GenerationPolicy | None = None,
        gateway_factory: GatewayFactory = SqlWorkOrderGateway,
        repository_factory: RepositoryFactory = PMScheduleRepository,
    ):
        super().__init__(atomic, clock)
        self._policy = policy or GenerationPolicy()
        self._gateway_factory = gateway_factory
        self._repository_factory = repository_factory

    @property
    def policy(self) -> GenerationPolicy:
        return self._policy

    # -------------------------------------------------------------------------
    # Due set
    # -------------------------------------------------------------------------

    def fetch_due_schedules(self, limit: int | None = None) -> list[PMScheduleSnapshot]:
        """
        Due set capped at min(limit, max_items_per_run).

        Raises:
            DependencyError: The schedule store could not be read.
        """
        cap = self._policy.effective_limit(limit)
        as_of = self._clock.now()
        try:
            outcome = self._atomic.run(
                "fetch_due_schedules",
                "pm_schedules",
                lambda session: self._repository_factory(session).due_schedules(
                    cap, as_of, self._policy.include_overdue,
                ),
            )
        except DependencyError:
            raise
        except Exception as exc:
            logger.error(
                "pm_due_set_fetch_failed",
                extra={"error_type": type(exc).__name__, "error": str(exc)},
            )
            raise StoreUnavailableError("fetch_due_schedules", str(exc)) from exc
        return outcome.value

    def fetch_overdue_schedules(self, limit: int | None = None) -> list[PMScheduleSnapshot]:
        """
        Schedules past due by more than ``overdue_grace_days``, oldest first.

        Reporting only; generation ignores the grace period.

        Raises:
            DependencyError: The schedule store could not be read.
        """
        cap = self._policy.effective_limit(limit)
        as_of = self._clock.now()
        grace_days = self._policy.overdue_grace_days
        outcome = self._atomic.run(
            "fetch_overdue_schedules",
            "pm_schedules",
            lambda session: self._repository_factory(session).overdue_schedules(
                as_of, grace_days, cap,
            ),
        )
        overdue = outcome.value
        if overdue:
            logger.warning(
                "pm_schedules_overdue",
                extra={
                    "overdue_count": len(overdue),
                    "grace_days": grace_days,
                    "oldest_due_date": overdue[0].next_due_date.isoformat(),
                },
            )
        return overdue

    # -------------------------------------------------------------------------
    # Batch entry points
    # -------------------------------------------------------------------------

    def process_due_schedules(
        self,
        actor_id: UUID,
        *,
        schedules: Iterable[PMScheduleSnapshot | UUID] | None = None,
        limit: int | None = None,
        dry_run: bool = False,
    ) -> GenerationRunResult:
        """
        Generate work orders for every eligible schedule in the due set.

        Args:
            actor_id: Actor recorded on created work orders and schedules.
            schedules: Explicit due set; fetched from the repository when None.
            limit: Requested item cap, bounded by max_items_per_run.
            dry_run: Evaluate and build payloads only.

        Returns:
            GenerationRunResult with one detail per processed schedule.

        Raises:
            DependencyError: The due set could not be fetched.
        """
        run_id = uuid4()
        started_at = self._clock.now()
        start = time.monotonic()

        with LogContext.bind(actor_id=actor_id, batch_id=run_id):
            if schedules is None:
                due = self.fetch_due_schedules(limit)
            else:
                due = list(schedules)
                cap = self._policy.effective_limit(limit if limit is not None else len(due))
                due = due[:cap]

            logger.info(
                "pm_batch_started",
                extra={"schedule_count": len(due), "dry_run": dry_run},
            )

            details = [
                self._process_isolated(
                    item.id if isinstance(item, PMScheduleSnapshot) else item,
                    actor_id,
                    dry_run=dry_run,
                    manual=False,
                )
                for item in due
            ]

            result = GenerationRunResult.from_details(
                details,
                dry_run=dry_run,
                run_id=run_id,
                started_at=started_at,
                completed_at=self._clock.now(),
            )
            logger.info(
                "pm_batch_completed",
                extra={
                    "processed": result.processed,
                    "generated": result.generated,
                    "skipped": result.skipped,
                    "errors": result.errors,
                    "dry_run": dry_run,
                    "duration_ms": int((time.monotonic() - start) * 1000),
                },
            )
        return result

    def generate_for_schedule(self, schedule_id: UUID, actor_id: UUID) -> GenerationDetail:
        """
        Manually generate the work order for one schedule's current due date.

        Ignores ``auto_generate_work_order`` but still refuses to generate
        twice for the same due date (returns a SKIPPED detail).

        Raises:
            ScheduleNotFoundError: Unknown schedule.
            ScheduleInactiveError: Schedule is inactive.
            Any gateway or store error, unchanged.
        """
        with LogContext.bind(actor_id=actor_id, schedule_id=schedule_id):
            return self._generate(schedule_id, actor_id, dry_run=False, manual=True)

    def batch_generate(
        self,
        schedule_ids: Iterable[UUID],
        actor_id: UUID,
    ) -> GenerationRunResult:
        """generate_for_schedule() over a list, isolating per-schedule failures."""
        run_id = uuid4()
        started_at = self._clock.now()
        with LogContext.bind(actor_id=actor_id, batch_id=run_id):
            details = [
                self._process_isolated(schedule_id, actor_id, dry_run=False, manual=True)
                for schedule_id in schedule_ids
            ]
            result = GenerationRunResult.from_details(
                details,
                run_id=run_id,
                started_at=started_at,
                completed_at=self._clock.now(),
            )
            logger.info(
                "pm_batch_generate_completed",
                extra={
                    "processed": result.processed,
                    "generated": result.generated,
                    "skipped": result.skipped,
                    "errors": result.errors,
                },
            )
        return result

    # -------------------------------------------------------------------------
    # Per-schedule processing
    # -------------------------------------------------------------------------

    def _process_isolated(
        self,
        schedule_id: UUID,
        actor_id: UUID,
        *,
        dry_run: bool,
        manual: bool,
    ) -> GenerationDetail:
        """Run one schedule; any exception becomes a FAILED detail."""
        with LogContext.bind(schedule_id=schedule_id):
            try:
                return self._generate(schedule_id, actor_id, dry_run=dry_run, manual=manual)
            except CmmsKernelError as exc:
                error_code = exc.code
                error_message = str(exc)
            except Exception as exc:
                error_code = "UNHANDLED_EXCEPTION"
                error_message = str(exc)

            logger.warning(
                "pm_schedule_failed",
                extra={"error_code": error_code, "error_message": error_message},
            )
            return GenerationDetail(
                schedule_id=schedule_id,
                schedule_ref=None,
                state=ScheduleState.FAILED,
                dry_run=dry_run,
                error_code=error_code,
                error_message=error_message,
            )

    def _generate(
        self,
        schedule_id: UUID,
        actor_id: UUID,
        *,
        dry_run: bool,
        manual: bool,
    ) -> GenerationDetail:
        def work(session: Session) -> GenerationDetail:
            repo = self._repository_factory(session)
            schedule = repo.find_by_id(schedule_id, lock=True)
            if schedule is None:
                raise ScheduleNotFoundError(str(schedule_id))
            if manual:
                if not schedule.is_active:
                    raise ScheduleInactiveError(str(schedule_id))
                evaluation = evaluate_schedule(replace(schedule, auto_generate_work_order=True))
            else:
                evaluation = evaluate_schedule(schedule)

            if not evaluation.is_eligible:
                return GenerationDetail(
                    schedule_id=schedule.id,
                    schedule_ref=schedule.schedule_ref,
                    state=evaluation.state,
                    reason=evaluation.reason,
                    due_date=schedule.next_due_date,
                    dry_run=dry_run,
                )

            payload = build_work_order_payload(schedule)
            if dry_run:
                return GenerationDetail(
                    schedule_id=schedule.id,
                    schedule_ref=schedule.schedule_ref,
                    state=ScheduleState.ELIGIBLE,
                    due_date=schedule.next_due_date,
                    dry_run=True,
                    payload=payload,
                )

            ref = self._gateway_factory(session).create(payload, actor_id)
            repo.update(
                schedule.id,
                actor_id=actor_id,
                expected_version=schedule.version,
                last_generated_date=self._clock.now(),
                last_generated_due_date=schedule.next_due_date,
                last_generated_work_order_id=ref.work_order_id,
                total_scheduled=schedule.total_scheduled + 1,
            )
            return GenerationDetail(
                schedule_id=schedule.id,
                schedule_ref=schedule.schedule_ref,
                state=ScheduleState.GENERATED,
                work_order_id=ref.work_order_id,
                due_date=schedule.next_due_date,
                payload=payload,
            )

        outcome = self._atomic.run("generate_pm_work_order", schedule_id, work)
        detail = replace(outcome.value, attempts=outcome.attempts)

        if detail.state == ScheduleState.GENERATED:
            logger.info(
                "pm_work_order_generated",
                extra={
                    "schedule_ref": detail.schedule_ref,
                    "work_order_id": detail.work_order_id,
                    "due_date": detail.due_date.isoformat() if detail.due_date else None,
                    "attempts": detail.attempts,
                },
            )
        elif detail.state == ScheduleState.SKIPPED:
            logger.info(
                "pm_schedule_skipped",
                extra={
                    "schedule_ref": detail.schedule_ref,
                    "reason": detail.reason.value if detail.reason else None,
                },
            )
        else:
            logger.info(
                "pm_schedule_dry_run",
                extra={"schedule_ref": detail.schedule_ref},
            )
        return detail

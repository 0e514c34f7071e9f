"""
PM schedule collaborator: repository (session-scoped) and service (atomic).

Contract:
    ``PMScheduleRepository`` is bound to one session and exposes what the
    generator needs: ``find_by_id``, ``update``, ``due_schedules`` and the
    ``overdue_schedules`` report.  ``PMScheduleService`` wraps schedule lifecycle
    operations (create, record completion, activate/deactivate) in
    AtomicRetry units of work.

Architecture: cmms_batch/services.  Imports cmms_kernel services and the
    pure cmms_batch domain.

Invariants enforced:
    - Every returned schedule is a frozen PMScheduleSnapshot.
    - ``update(..., expected_version=n)`` raises StaleDataError when the row
      moved past version n, so a caller holding an old snapshot never
      overwrites a concurrent advance.
    - Due-set selection filters on indexable columns in SQL and streams
      rows, pending schedules before already-generated ones, applying the
      per-row lead-time rule until the limit is filled.  Schedules already
      generated for their due date stay in the due set behind the pending
      ones; the generator reports them as SKIPPED.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import case, or_, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from cmms_batch.domain.schedule import (
    calculate_next_due_date,
    is_schedule_due,
    is_schedule_overdue,
    priority_for_frequency,
)
from cmms_batch.domain.types import (
    GenerationPolicy,
    PMScheduleSnapshot,
    ScheduleFrequency,
    WorkOrderPriority,
)
from cmms_batch.models.schedule import PMScheduleModel
from cmms_kernel.domain.clock import Clock
from cmms_kernel.exceptions import ScheduleNotFoundError
from cmms_kernel.logging_config import LogContext, get_logger
from cmms_kernel.services.base import BaseService
from cmms_kernel.services.retry import AtomicRetry
from cmms_kernel.services.sequence_service import SequenceService

logger = get_logger("batch.schedules")

SCHEDULE_REF_PREFIX = "PM-"

# Fields the generator may advance through update()
GENERATION_FIELDS = frozenset({
    "last_generated_date",
    "last_generated_due_date",
    "last_generated_work_order_id",
    "total_scheduled",
})

_EDITABLE_FIELDS = GENERATION_FIELDS | frozenset({
    "title",
    "description",
    "equipment_name",
    "next_due_date",
    "last_completed_date",
    "lead_time_days",
    "custom_interval_days",
    "priority",
    "assigned_to_id",
    "assigned_to_name",
    "estimated_duration_hours",
    "checklist",
    "required_parts",
    "is_active",
    "auto_generate_work_order",
    "total_completed",
    "total_on_time",
    "total_overdue",
})


def format_schedule_ref(sequence_value: int) -> str:
    return f"{SCHEDULE_REF_PREFIX}{sequence_value:07d}"


_DUE_SET_PAGE = 200


def _already_generated_rank():
    """0 while the current due date still needs a work order, 1 once generated."""
    due = PMScheduleModel.next_due_date
    generated = or_(
        PMScheduleModel.last_generated_due_date >= due,
        PMScheduleModel.last_generated_date >= due,
    )
    return case((generated, 1), else_=0)


class PMScheduleRepository:
    """Session-scoped access to PM schedules."""

    def __init__(self, session: Session):
        self._session = session

    def _get_model(self, schedule_id: UUID, lock: bool = False) -> PMScheduleModel | None:
        query = select(PMScheduleModel).where(PMScheduleModel.id == schedule_id)
        if lock:
            query = query.with_for_update()
        return self._session.execute(
            query.execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def find_by_id(self, schedule_id: UUID, lock: bool = False) -> PMScheduleSnapshot | None:
        """Fresh read of one schedule; ``lock`` adds FOR UPDATE where supported."""
        model = self._get_model(schedule_id, lock=lock)
        return model.to_dto() if model else None

    def update(
        self,
        schedule_id: UUID,
        *,
        actor_id: UUID | None = None,
        expected_version: int | None = None,
        **fields: Any,
    ) -> PMScheduleSnapshot:
        """
        Apply field changes and flush.

        Raises:
            ScheduleNotFoundError: Unknown schedule.
            StaleDataError: Row version differs from ``expected_version``,
                or a concurrent writer committed first.
            TypeError: Field is not editable.
        """
        unknown = set(fields) - _EDITABLE_FIELDS
        if unknown:
            raise TypeError(f"Fields not editable on PM schedule: {sorted(unknown)}")

        model = self._get_model(schedule_id)
        if model is None:
            raise ScheduleNotFoundError(str(schedule_id))
        if expected_version is not None and model.version != expected_version:
            raise StaleDataError(
                f"PM schedule {schedule_id} is at version {model.version}, "
                f"expected {expected_version}"
            )

        for name, value in fields.items():
            if isinstance(value, (ScheduleFrequency, WorkOrderPriority)):
                value = value.value
            setattr(model, name, value)
        if actor_id is not None:
            model.updated_by_id = actor_id
        self._session.flush()
        return model.to_dto()

    def due_schedules(
        self,
        limit: int,
        as_of: datetime,
        include_overdue: bool = True,
    ) -> list[PMScheduleSnapshot]:
        """
        Active, auto-generating, date-based schedules that are due at ``as_of``.

        A schedule is due once ``as_of`` reaches its next_due_date minus its
        own lead time.  With ``include_overdue=False`` schedules already past
        their due date are left out.

        Schedules still waiting for a work order come first, earliest due
        date first; those already generated for their due date fill whatever
        room the limit leaves.  Generated-but-uncompleted schedules therefore
        never crowd a pending one out of a capped run.
        """
        if limit <= 0:
            return []

        stmt = (
            select(PMScheduleModel)
            .where(
                PMScheduleModel.is_active.is_(True),
                PMScheduleModel.auto_generate_work_order.is_(True),
                PMScheduleModel.next_due_date.is_not(None),
                PMScheduleModel.frequency != ScheduleFrequency.METER_BASED.value,
            )
            .order_by(
                _already_generated_rank(),
                PMScheduleModel.next_due_date.asc(),
                PMScheduleModel.schedule_ref.asc(),
            )
        )

        due: list[PMScheduleSnapshot] = []
        offset = 0
        # Lead time is per row, so the due rule is applied page by page
        while len(due) < limit:
            page = self._session.scalars(stmt.offset(offset).limit(_DUE_SET_PAGE)).all()
            for model in page:
                if not is_schedule_due(model.next_due_date, as_of, model.lead_time_days):
                    continue
                if not include_overdue and is_schedule_overdue(model.next_due_date, as_of, 0):
                    continue
                due.append(model.to_dto())
                if len(due) == limit:
                    break
            if len(page) < _DUE_SET_PAGE:
                break
            offset += _DUE_SET_PAGE
        return due

    def overdue_schedules(
        self,
        as_of: datetime,
        grace_days: int = 0,
        limit: int = 100,
    ) -> list[PMScheduleSnapshot]:
        """Active date-based schedules past their due date plus the grace period, oldest first."""
        if limit <= 0:
            return []
        cutoff = as_of - timedelta(days=grace_days)
        return [
            model.to_dto()
            for model in self._session.scalars(
                select(PMScheduleModel)
                .where(
                    PMScheduleModel.is_active.is_(True),
                    PMScheduleModel.next_due_date < cutoff,
                    PMScheduleModel.frequency != ScheduleFrequency.METER_BASED.value,
                )
                .order_by(PMScheduleModel.next_due_date.asc(), PMScheduleModel.schedule_ref.asc())
                .limit(limit)
            )
        ]


class PMScheduleService(BaseService):
    """Atomic lifecycle operations on PM schedules."""

    def __init__(
        self,
        atomic: AtomicRetry,
        clock: Clock | None = None,
        policy: GenerationPolicy | None = None,
    ):
        super().__init__(atomic, clock)
        self._policy = policy or GenerationPolicy()

    def create_schedule(
        self,
        *,
        title: str,
        equipment_id: str,
        frequency: ScheduleFrequency | str,
        actor_id: UUID,
        next_due_date: datetime | None = None,
        start_date: datetime | None = None,
        custom_interval_days: int | None = None,
        lead_time_days: int | None = None,
        priority: WorkOrderPriority | str | None = None,
        checklist: list[dict[str, Any]] | None = None,
        required_parts: list[dict[str, Any]] | None = None,
        estimated_duration_hours: Decimal | None = None,
        **details: Any,
    ) -> PMScheduleSnapshot:
        """
        Create a schedule with a ``PM-`` reference.

        When ``next_due_date`` is omitted it is computed from ``start_date``
        (default: now) and the frequency.  Priority defaults to the
        frequency's standard priority.
        """
        frequency = ScheduleFrequency(frequency)
        if frequency == ScheduleFrequency.CUSTOM and not custom_interval_days:
            raise ValueError("Custom frequency requires custom_interval_days")
        if next_due_date is None:
            next_due_date = calculate_next_due_date(
                start_date or self._clock.now(), frequency, custom_interval_days,
            )
        resolved_priority = (
            WorkOrderPriority(priority) if priority is not None
            else priority_for_frequency(frequency)
        )
        lead_time = (
            self._policy.default_lead_time_days if lead_time_days is None else lead_time_days
        )

        def work(session: Session) -> PMScheduleSnapshot:
            ref = format_schedule_ref(
                SequenceService(session).next_value(SequenceService.PM_SCHEDULE)
            )
            model = PMScheduleModel(
                schedule_ref=ref,
                title=title,
                equipment_id=equipment_id,
                frequency=frequency.value,
                custom_interval_days=custom_interval_days,
                lead_time_days=lead_time,
                next_due_date=next_due_date,
                priority=resolved_priority.value,
                checklist=list(checklist or []),
                required_parts=list(required_parts or []),
                estimated_duration_hours=estimated_duration_hours,
                created_by_id=actor_id,
                **details,
            )
            session.add(model)
            session.flush()
            return model.to_dto()

        with LogContext.bind(actor_id=actor_id):
            outcome = self._atomic.run("create_pm_schedule", equipment_id, work)
            schedule: PMScheduleSnapshot = outcome.value
            logger.info(
                "pm_schedule_created",
                extra={
                    "schedule_id": str(schedule.id),
                    "schedule_ref": schedule.schedule_ref,
                    "frequency": frequency.value,
                    "next_due_date": next_due_date.isoformat() if next_due_date else None,
                },
            )
        return schedule

    def record_completion(
        self,
        schedule_id: UUID,
        actor_id: UUID,
        completed_at: datetime | None = None,
    ) -> PMScheduleSnapshot:
        """
        Register completion of the current cycle and roll next_due_date forward.

        The new due date is computed from the completion date.  On-time
        means completed no later than the due date being closed.
        """
        completed = completed_at or self._clock.now()

        def work(session: Session) -> PMScheduleSnapshot:
            repo = PMScheduleRepository(session)
            schedule = repo.find_by_id(schedule_id, lock=True)
            if schedule is None:
                raise ScheduleNotFoundError(str(schedule_id))
            on_time = schedule.next_due_date is None or completed <= schedule.next_due_date
            next_due = calculate_next_due_date(
                completed, schedule.frequency, schedule.custom_interval_days,
            )
            return repo.update(
                schedule_id,
                actor_id=actor_id,
                expected_version=schedule.version,
                last_completed_date=completed,
                next_due_date=next_due,
                total_completed=schedule.total_completed + 1,
                total_on_time=schedule.total_on_time + (1 if on_time else 0),
                total_overdue=schedule.total_overdue + (0 if on_time else 1),
            )

        outcome = self._atomic.run("record_pm_completion", schedule_id, work)
        schedule: PMScheduleSnapshot = outcome.value
        logger.info(
            "pm_schedule_completed",
            extra={
                "schedule_id": str(schedule_id),
                "schedule_ref": schedule.schedule_ref,
                "next_due_date": (
                    schedule.next_due_date.isoformat() if schedule.next_due_date else None
                ),
            },
        )
        return schedule

    def set_active(self, schedule_id: UUID, is_active: bool, actor_id: UUID) -> PMScheduleSnapshot:
        def work(session: Session) -> PMScheduleSnapshot:
            return PMScheduleRepository(session).update(
                schedule_id, actor_id=actor_id, is_active=is_active,
            )

        outcome = self._atomic.run("set_pm_schedule_active", schedule_id, work)
        logger.info(
            "pm_schedule_status_changed",
            extra={"schedule_id": str(schedule_id), "is_active": is_active},
        )
        return outcome.value

    def get_schedule(self, schedule_id: UUID) -> PMScheduleSnapshot:
        def work(session: Session) -> PMScheduleSnapshot:
            schedule = PMScheduleRepository(session).find_by_id(schedule_id)
            if schedule is None:
                raise ScheduleNotFoundError(str(schedule_id))
            return schedule

        return self._atomic.run("get_pm_schedule", schedule_id, work).value

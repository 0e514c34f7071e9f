"""
Work order collaborator.

Contract:
    ``WorkOrderGateway.create(payload, actor_id) -> WorkOrderRef`` is the
    only thing the PM generator asks of the work order subsystem.  The
    gateway runs inside the generator's unit of work, so the work order row
    and the schedule markers commit together.  Failures propagate
    unchanged to the generator, which records them per item.

Architecture: cmms_batch/services.

Invariants enforced:
    - ``SqlWorkOrderGateway`` numbers work orders ``WO-`` + 7 digits from
      the versioned sequence counter.
    - A UNIQUE (pm_schedule_id, pm_due_date) violation means another
      runner generated the same due date first; it is reported as
      StaleDataError so the caller's retry re-reads and skips.
"""

from __future__ import annotations

from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from cmms_batch.domain.types import WorkOrderPayload, WorkOrderRef
from cmms_batch.models.work_order import WorkOrderModel
from cmms_kernel.logging_config import get_logger
from cmms_kernel.services.sequence_service import SequenceService

logger = get_logger("batch.work_orders")

WORK_ORDER_PREFIX = "WO-"


def format_work_order_id(sequence_value: int) -> str:
    return f"{WORK_ORDER_PREFIX}{sequence_value:07d}"


class WorkOrderGateway(Protocol):
    """Creates a work order within the caller's transaction."""

    def create(self, payload: WorkOrderPayload, actor_id: UUID) -> WorkOrderRef:
        ...


class SqlWorkOrderGateway:
    """Default gateway: persists WorkOrderModel rows in the same session."""

    def __init__(self, session: Session):
        self._session = session

    def create(self, payload: WorkOrderPayload, actor_id: UUID) -> WorkOrderRef:
        work_order_id = format_work_order_id(
            SequenceService(self._session).next_value(SequenceService.WORK_ORDER)
        )
        model = WorkOrderModel(
            work_order_id=work_order_id,
            title=payload.title,
            description=payload.description,
            work_type=payload.work_type.value,
            priority=payload.priority.value,
            equipment_id=payload.equipment_id,
            assigned_to_id=payload.assigned_to_id,
            assigned_to_name=payload.assigned_to_name,
            due_date=payload.due_date,
            estimated_duration_hours=payload.estimated_duration_hours,
            checklist=[dict(item) for item in payload.checklist],
            parts_requested=[dict(part) for part in payload.parts_requested],
            pm_schedule_id=payload.pm_schedule_id,
            pm_schedule_ref=payload.pm_schedule_ref,
            pm_due_date=payload.pm_due_date,
            source=payload.source,
            created_by_id=actor_id,
        )
        self._session.add(model)
        try:
            self._session.flush()
        except IntegrityError as exc:
            logger.warning(
                "work_order_duplicate_due_date",
                extra={
                    "pm_schedule_id": str(payload.pm_schedule_id),
                    "pm_due_date": payload.pm_due_date.isoformat() if payload.pm_due_date else None,
                },
            )
            raise StaleDataError(
                f"Work order for schedule {payload.pm_schedule_ref} due "
                f"{payload.pm_due_date} was created concurrently"
            ) from exc

        logger.debug(
            "work_order_created",
            extra={
                "work_order_id": work_order_id,
                "pm_schedule_ref": payload.pm_schedule_ref,
            },
        )
        return model.to_ref()

    def find_for_schedule(self, schedule_id: UUID) -> list[WorkOrderRef]:
        """Work orders generated from a schedule, oldest due date first."""
        rows = self._session.execute(
            select(WorkOrderModel)
            .where(WorkOrderModel.pm_schedule_id == schedule_id)
            .order_by(WorkOrderModel.pm_due_date.asc())
        ).scalars()
        return [row.to_ref() for row in rows]

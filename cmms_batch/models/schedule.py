"""
ORM model for preventive maintenance schedules.

Contract:
    PMScheduleModel persists a recurring maintenance plan and the markers
    the generator uses to stay idempotent.  ``to_dto()`` returns the pure
    PMScheduleSnapshot consumed by cmms_batch.domain.schedule.

Architecture: cmms_batch/models. Imports from cmms_kernel.db only.

Invariants enforced:
    - ``version`` is the optimistic-commit token (version_id_col): two
      runners advancing the same schedule cannot both commit.
    - ``schedule_ref`` is UNIQUE (PM-0000001 format).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, Boolean, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from cmms_batch.domain.types import PMScheduleSnapshot, ScheduleFrequency, WorkOrderPriority
from cmms_kernel.db.base import TrackedBase, UTCDateTime


class PMScheduleModel(TrackedBase):
    """Persistent PM schedule."""

    __tablename__ = "pm_schedules"

    __table_args__ = (
        Index("ix_pm_schedules_due", "is_active", "auto_generate_work_order", "next_due_date"),
        Index("ix_pm_schedules_equipment", "equipment_id"),
    )

    schedule_ref: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)

    equipment_id: Mapped[str] = mapped_column(String(100), nullable=False)
    equipment_name: Mapped[str] = mapped_column(String(200), default="", nullable=False)

    frequency: Mapped[str] = mapped_column(String(20), nullable=False)
    custom_interval_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    lead_time_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    next_due_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_completed_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Generation markers -- the only fields the generator writes
    last_generated_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_generated_due_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_generated_work_order_id: Mapped[str | None] = mapped_column(String(20), nullable=True)
    total_scheduled: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Completion metrics
    total_completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_on_time: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_overdue: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    auto_generate_work_order: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    priority: Mapped[str] = mapped_column(
        String(20), default=WorkOrderPriority.MEDIUM.value, nullable=False,
    )
    assigned_to_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    assigned_to_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    estimated_duration_hours: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)

    checklist: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    required_parts: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<PMSchedule {self.schedule_ref} due={self.next_due_date} v{self.version}>"

    def to_dto(self) -> PMScheduleSnapshot:
        return PMScheduleSnapshot(
            id=self.id,
            schedule_ref=self.schedule_ref,
            title=self.title,
            equipment_id=self.equipment_id,
            frequency=ScheduleFrequency(self.frequency),
            next_due_date=self.next_due_date,
            is_active=self.is_active,
            auto_generate_work_order=self.auto_generate_work_order,
            equipment_name=self.equipment_name,
            description=self.description,
            priority=WorkOrderPriority(self.priority),
            custom_interval_days=self.custom_interval_days,
            lead_time_days=self.lead_time_days,
            last_generated_date=self.last_generated_date,
            last_generated_due_date=self.last_generated_due_date,
            last_completed_date=self.last_completed_date,
            assigned_to_id=self.assigned_to_id,
            assigned_to_name=self.assigned_to_name,
            estimated_duration_hours=self.estimated_duration_hours,
            checklist=tuple(dict(item) for item in self.checklist or ()),
            required_parts=tuple(dict(part) for part in self.required_parts or ()),
            total_scheduled=self.total_scheduled,
            total_completed=self.total_completed,
            total_on_time=self.total_on_time,
            total_overdue=self.total_overdue,
            last_generated_work_order_id=self.last_generated_work_order_id,
            version=self.version,
        )

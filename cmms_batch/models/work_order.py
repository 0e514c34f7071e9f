"""
ORM model for work orders created by the in-store work order gateway.

Architecture: cmms_batch/models. Imports from cmms_kernel.db only.

Invariants enforced:
    - ``work_order_id`` (WO-0000001) is UNIQUE and allocated through the
      sequence counter.
    - (pm_schedule_id, pm_due_date) is UNIQUE: the storage-level backstop
      against two work orders for the same schedule due date.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Index, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from cmms_batch.domain.types import WorkOrderRef
from cmms_kernel.db.base import TrackedBase, UTCDateTime, UUIDString


class WorkOrderModel(TrackedBase):
    """Work order header with its checklist and requested parts."""

    __tablename__ = "work_orders"

    __table_args__ = (
        UniqueConstraint("pm_schedule_id", "pm_due_date", name="uq_work_order_pm_due"),
        Index("ix_work_orders_equipment", "equipment_id"),
        Index("ix_work_orders_status", "status"),
    )

    work_order_id: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    work_type: Mapped[str] = mapped_column(String(30), nullable=False)
    priority: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(30), default="Open", nullable=False)

    equipment_id: Mapped[str] = mapped_column(String(100), nullable=False)
    assigned_to_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    assigned_to_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    due_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    estimated_duration_hours: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)

    checklist: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    parts_requested: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)

    # PM back-reference; NULL for work orders not created from a schedule
    pm_schedule_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    pm_schedule_ref: Mapped[str | None] = mapped_column(String(20), nullable=True)
    pm_due_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    source: Mapped[str] = mapped_column(String(100), default="", nullable=False)

    def __repr__(self) -> str:
        return f"<WorkOrder {self.work_order_id} pm={self.pm_schedule_ref}>"

    def to_ref(self) -> WorkOrderRef:
        return WorkOrderRef(id=self.id, work_order_id=self.work_order_id)

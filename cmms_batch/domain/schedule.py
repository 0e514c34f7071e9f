"""
Pure PM schedule evaluation and work order payload construction.

Contract:
    Every function here is PURE -- no I/O, no clock.  ``as_of`` is always
    passed in by the caller.

Architecture: cmms_batch/domain.  ZERO I/O.

Invariants enforced:
    - A schedule is evaluated exactly once per attempt into an explicit
      ScheduleEvaluation; the generator branches on that value only.
    - already_generated compares the generation markers against the
      CURRENT next_due_date, so a schedule whose due date moved forward
      (completion recorded) becomes eligible again.
"""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta
from typing import Any

from cmms_batch.domain.types import (
    AUTO_GENERATED_SOURCE,
    ChecklistItemStatus,
    PMScheduleSnapshot,
    ScheduleEvaluation,
    ScheduleFrequency,
    ScheduleState,
    SkipReason,
    WorkOrderPayload,
    WorkOrderPriority,
    WorkType,
)

# Checklist keys copied verbatim from the schedule template
_CHECKLIST_COPIED_KEYS = (
    "description",
    "type",
    "requires_measurement",
    "measurement_unit",
    "expected_range",
    "instructions",
    "safety_notes",
    "is_required",
)

# Execution keys reset on every generated work order
_CHECKLIST_RESET_KEYS = ("completed_at", "completed_by", "actual_value", "notes")

_PRIORITY_BY_FREQUENCY: dict[ScheduleFrequency, WorkOrderPriority] = {
    ScheduleFrequency.DAILY: WorkOrderPriority.HIGH,
    ScheduleFrequency.WEEKLY: WorkOrderPriority.MEDIUM,
    ScheduleFrequency.MONTHLY: WorkOrderPriority.MEDIUM,
    ScheduleFrequency.QUARTERLY: WorkOrderPriority.LOW,
    ScheduleFrequency.SEMI_ANNUAL: WorkOrderPriority.LOW,
    ScheduleFrequency.ANNUAL: WorkOrderPriority.LOW,
    ScheduleFrequency.METER_BASED: WorkOrderPriority.MEDIUM,
    ScheduleFrequency.CUSTOM: WorkOrderPriority.MEDIUM,
}

_MONTHS_BY_FREQUENCY = {
    ScheduleFrequency.MONTHLY: 1,
    ScheduleFrequency.QUARTERLY: 3,
    ScheduleFrequency.SEMI_ANNUAL: 6,
    ScheduleFrequency.ANNUAL: 12,
}


# =============================================================================
# Eligibility
# =============================================================================


def is_already_generated(schedule: PMScheduleSnapshot) -> bool:
    """True when a work order already exists for the current next_due_date."""
    due = schedule.next_due_date
    if due is None:
        return False
    if schedule.last_generated_due_date is not None and schedule.last_generated_due_date >= due:
        return True
    return schedule.last_generated_date is not None and schedule.last_generated_date >= due


def evaluate_schedule(schedule: PMScheduleSnapshot) -> ScheduleEvaluation:
    """Classify a schedule as ELIGIBLE or SKIPPED (with the first failing reason)."""
    if not schedule.is_active:
        return ScheduleEvaluation(ScheduleState.SKIPPED, SkipReason.INACTIVE)
    if not schedule.auto_generate_work_order:
        return ScheduleEvaluation(ScheduleState.SKIPPED, SkipReason.AUTO_GENERATE_DISABLED)
    if schedule.next_due_date is None:
        return ScheduleEvaluation(ScheduleState.SKIPPED, SkipReason.NO_DUE_DATE)
    if is_already_generated(schedule):
        return ScheduleEvaluation(ScheduleState.SKIPPED, SkipReason.ALREADY_GENERATED)
    return ScheduleEvaluation(ScheduleState.ELIGIBLE)


# =============================================================================
# Due-date arithmetic
# =============================================================================


def _add_months(value: datetime, months: int) -> datetime:
    """Calendar month shift, clamping the day to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def calculate_next_due_date(
    from_date: datetime,
    frequency: ScheduleFrequency | str,
    custom_days: int | None = None,
) -> datetime | None:
    """
    Next due date after ``from_date``.

    Returns None for meter-based schedules, which are due by reading.

    Raises:
        ValueError: CUSTOM without a positive custom_days, or an unknown
            frequency.
    """
    frequency = ScheduleFrequency(frequency)

    if frequency == ScheduleFrequency.METER_BASED:
        return None
    if frequency == ScheduleFrequency.DAILY:
        return from_date + timedelta(days=1)
    if frequency == ScheduleFrequency.WEEKLY:
        return from_date + timedelta(days=7)
    if frequency == ScheduleFrequency.CUSTOM:
        if not custom_days or custom_days <= 0:
            raise ValueError("Custom frequency requires a positive custom_days")
        return from_date + timedelta(days=custom_days)
    return _add_months(from_date, _MONTHS_BY_FREQUENCY[frequency])


def is_schedule_due(
    next_due_date: datetime | None,
    as_of: datetime,
    lead_time_days: int = 0,
) -> bool:
    """Due once ``as_of`` reaches next_due_date minus the lead time."""
    if next_due_date is None:
        return False
    return as_of >= next_due_date - timedelta(days=lead_time_days)


def is_schedule_overdue(
    next_due_date: datetime | None,
    as_of: datetime,
    grace_days: int = 0,
) -> bool:
    """Overdue once ``as_of`` is past next_due_date plus the grace period."""
    if next_due_date is None:
        return False
    return as_of > next_due_date + timedelta(days=grace_days)


def priority_for_frequency(frequency: ScheduleFrequency | str) -> WorkOrderPriority:
    return _PRIORITY_BY_FREQUENCY[ScheduleFrequency(frequency)]


# =============================================================================
# Payload construction
# =============================================================================


def generate_description(schedule: PMScheduleSnapshot) -> str:
    """Schedule description followed by the PM context block."""
    lines = [
        schedule.description or "",
        "",
        "--- Preventive Maintenance ---",
        f"Schedule: {schedule.schedule_ref}",
        f"Frequency: {schedule.frequency.value}",
        f"Equipment: {schedule.equipment_name}",
    ]
    if schedule.last_completed_date is not None:
        lines.append(f"Last Completed: {schedule.last_completed_date.date().isoformat()}")
    return "\n".join(lines).strip()


def prepare_checklist(items: tuple[dict[str, Any], ...] | list[dict[str, Any]]) -> tuple[dict[str, Any], ...]:
    """Fresh execution copy of a checklist: metadata kept, progress cleared."""
    prepared = []
    for item in items or ():
        entry = {key: item.get(key) for key in _CHECKLIST_COPIED_KEYS}
        entry["status"] = ChecklistItemStatus.PENDING.value
        for key in _CHECKLIST_RESET_KEYS:
            entry[key] = None
        prepared.append(entry)
    return tuple(prepared)


def build_work_order_payload(schedule: PMScheduleSnapshot) -> WorkOrderPayload:
    """Work order data derived from a schedule for its current due date."""
    return WorkOrderPayload(
        title=schedule.title,
        description=generate_description(schedule),
        work_type=WorkType.PREVENTIVE,
        priority=schedule.priority,
        equipment_id=schedule.equipment_id,
        due_date=schedule.next_due_date,
        pm_schedule_id=schedule.id,
        pm_schedule_ref=schedule.schedule_ref,
        pm_due_date=schedule.next_due_date,
        assigned_to_id=schedule.assigned_to_id,
        assigned_to_name=schedule.assigned_to_name,
        estimated_duration_hours=schedule.estimated_duration_hours,
        checklist=prepare_checklist(schedule.checklist),
        parts_requested=tuple(dict(part) for part in schedule.required_parts or ()),
        source=AUTO_GENERATED_SOURCE,
    )

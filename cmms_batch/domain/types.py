"""
cmms_batch.domain.types -- Pure frozen dataclasses for PM work order generation.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.

Invariants enforced:
    - Every schedule outcome is an explicit ScheduleState; there is no
      "generated unless something threw" implicit path.
    - Idempotency key of a generation is (schedule id, next_due_date).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


# =============================================================================
# Enums
# =============================================================================


class ScheduleFrequency(str, Enum):
    """Recurrence of a PM schedule."""

    DAILY = "Daily"
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"
    QUARTERLY = "Quarterly"
    SEMI_ANNUAL = "Semi-Annual"
    ANNUAL = "Annual"
    METER_BASED = "Meter-Based"  # Due by meter reading, never by date
    CUSTOM = "Custom"  # Every custom_interval_days


class WorkOrderPriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class WorkType(str, Enum):
    PREVENTIVE = "Preventive"
    CORRECTIVE = "Corrective"


class ChecklistItemStatus(str, Enum):
    PENDING = "Pending"
    COMPLETED = "Completed"
    SKIPPED = "Skipped"
    FAILED = "Failed"
    NOT_APPLICABLE = "Not Applicable"


class ScheduleState(str, Enum):
    """Per-schedule outcome within one generation run."""

    ELIGIBLE = "eligible"  # Passed evaluation, not yet written
    SKIPPED = "skipped"  # Evaluated ineligible; nothing written
    GENERATED = "generated"  # Work order created and schedule advanced
    FAILED = "failed"  # Error while generating; nothing written


class SkipReason(str, Enum):
    INACTIVE = "inactive"
    AUTO_GENERATE_DISABLED = "auto_generate_disabled"
    ALREADY_GENERATED = "already_generated"
    NO_DUE_DATE = "no_due_date"


AUTO_GENERATED_SOURCE = "PM Schedule - Auto Generated"


# =============================================================================
# Schedule snapshot
# =============================================================================


@dataclass(frozen=True)
class PMScheduleSnapshot:
    """Immutable view of a PM schedule as read inside one attempt."""

    id: UUID
    schedule_ref: str
    title: str
    equipment_id: str
    frequency: ScheduleFrequency
    next_due_date: datetime | None
    is_active: bool = True
    auto_generate_work_order: bool = True
    equipment_name: str = ""
    description: str = ""
    priority: WorkOrderPriority = WorkOrderPriority.MEDIUM
    custom_interval_days: int | None = None
    lead_time_days: int = 0
    last_generated_date: datetime | None = None
    last_generated_due_date: datetime | None = None
    last_completed_date: datetime | None = None
    assigned_to_id: str | None = None
    assigned_to_name: str | None = None
    estimated_duration_hours: Decimal | None = None
    checklist: tuple[dict[str, Any], ...] = ()
    required_parts: tuple[dict[str, Any], ...] = ()
    total_scheduled: int = 0
    total_completed: int = 0
    total_on_time: int = 0
    total_overdue: int = 0
    last_generated_work_order_id: str | None = None
    version: int = 1


@dataclass(frozen=True)
class ScheduleEvaluation:
    """Result of evaluate_schedule(); ``reason`` is set only when SKIPPED."""

    state: ScheduleState
    reason: SkipReason | None = None

    @property
    def is_eligible(self) -> bool:
        return self.state == ScheduleState.ELIGIBLE


# =============================================================================
# Work order payload
# =============================================================================


@dataclass(frozen=True)
class WorkOrderPayload:
    """Everything the work order collaborator needs to create one PM work order."""

    title: str
    description: str
    work_type: WorkType
    priority: WorkOrderPriority
    equipment_id: str
    due_date: datetime | None
    pm_schedule_id: UUID
    pm_schedule_ref: str
    pm_due_date: datetime | None
    assigned_to_id: str | None = None
    assigned_to_name: str | None = None
    estimated_duration_hours: Decimal | None = None
    checklist: tuple[dict[str, Any], ...] = ()
    parts_requested: tuple[dict[str, Any], ...] = ()
    source: str = AUTO_GENERATED_SOURCE

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["work_type"] = self.work_type.value
        data["priority"] = self.priority.value
        data["checklist"] = [dict(item) for item in self.checklist]
        data["parts_requested"] = [dict(part) for part in self.parts_requested]
        return data


@dataclass(frozen=True)
class WorkOrderRef:
    """Identity of a created work order: storage id plus human number."""

    id: UUID
    work_order_id: str


# =============================================================================
# Run results
# =============================================================================


@dataclass(frozen=True)
class GenerationDetail:
    """Outcome for one schedule in a run."""

    schedule_id: UUID
    schedule_ref: str | None
    state: ScheduleState
    reason: SkipReason | None = None
    work_order_id: str | None = None
    due_date: datetime | None = None
    dry_run: bool = False
    payload: WorkOrderPayload | None = None
    error_code: str | None = None
    error_message: str | None = None
    attempts: int = 0

    @property
    def counts_as_generated(self) -> bool:
        """GENERATED, or ELIGIBLE in a dry run (would have been generated)."""
        if self.state == ScheduleState.GENERATED:
            return True
        return self.dry_run and self.state == ScheduleState.ELIGIBLE

    def to_dict(self) -> dict[str, Any]:
        return {
            "schedule_id": str(self.schedule_id),
            "schedule_ref": self.schedule_ref,
            "state": self.state.value,
            "reason": self.reason.value if self.reason else None,
            "work_order_id": self.work_order_id,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "dry_run": self.dry_run,
            "payload": self.payload.to_dict() if self.payload else None,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "attempts": self.attempts,
        }


@dataclass(frozen=True)
class GenerationRunResult:
    """Aggregate of one process_due_schedules / batch_generate call."""

    processed: int
    generated: int
    skipped: int
    errors: int
    details: tuple[GenerationDetail, ...] = ()
    dry_run: bool = False
    run_id: UUID | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_details(
        cls,
        details: list[GenerationDetail],
        *,
        dry_run: bool = False,
        run_id: UUID | None = None,
        started_at: datetime | None = None,
        completed_at: datetime | None = None,
    ) -> GenerationRunResult:
        return cls(
            processed=len(details),
            generated=sum(1 for d in details if d.counts_as_generated),
            skipped=sum(1 for d in details if d.state == ScheduleState.SKIPPED),
            errors=sum(1 for d in details if d.state == ScheduleState.FAILED),
            details=tuple(details),
            dry_run=dry_run,
            run_id=run_id,
            started_at=started_at,
            completed_at=completed_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": str(self.run_id) if self.run_id else None,
            "processed": self.processed,
            "generated": self.generated,
            "skipped": self.skipped,
            "errors": self.errors,
            "dry_run": self.dry_run,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "details": [d.to_dict() for d in self.details],
        }


# =============================================================================
# Policy
# =============================================================================


@dataclass(frozen=True)
class GenerationPolicy:
    """Batch limits and PM timing defaults injected into the generator."""

    max_items_per_run: int = 500
    default_limit: int = 50
    default_lead_time_days: int = 7
    overdue_grace_days: int = 2
    include_overdue: bool = True

    def __post_init__(self) -> None:
        if self.max_items_per_run < 1:
            raise ValueError("max_items_per_run must be >= 1")
        if self.default_limit < 1:
            raise ValueError("default_limit must be >= 1")
        if self.default_lead_time_days < 0 or self.overdue_grace_days < 0:
            raise ValueError("Lead time and grace period cannot be negative")

    def effective_limit(self, limit: int | None) -> int:
        """Caller limit capped by the per-run ceiling."""
        requested = self.default_limit if limit is None else limit
        return max(0, min(requested, self.max_items_per_run))


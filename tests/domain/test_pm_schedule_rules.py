"""
Tests for cmms_batch.domain.schedule -- pure PM evaluation and payloads.
"""

from dataclasses import replace
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from cmms_batch.domain.schedule import (
    build_work_order_payload,
    calculate_next_due_date,
    evaluate_schedule,
    generate_description,
    is_already_generated,
    is_schedule_due,
    is_schedule_overdue,
    prepare_checklist,
    priority_for_frequency,
)
from cmms_batch.domain.types import (
    AUTO_GENERATED_SOURCE,
    GenerationDetail,
    GenerationPolicy,
    GenerationRunResult,
    PMScheduleSnapshot,
    ScheduleFrequency,
    ScheduleState,
    SkipReason,
    WorkOrderPriority,
    WorkType,
)

DUE = datetime(2026, 3, 3, 8, 0, tzinfo=UTC)


def _snapshot(**overrides) -> PMScheduleSnapshot:
    base = PMScheduleSnapshot(
        id=uuid4(),
        schedule_ref="PM-0000001",
        title="Inspect pump",
        equipment_id="EQ-7",
        frequency=ScheduleFrequency.MONTHLY,
        next_due_date=DUE,
        equipment_name="Cooling pump",
        description="Check seals and vibration.",
        priority=WorkOrderPriority.MEDIUM,
    )
    return replace(base, **overrides)


# =============================================================================
# evaluate_schedule
# =============================================================================


class TestEvaluateSchedule:
    def test_active_auto_due_is_eligible(self):
        evaluation = evaluate_schedule(_snapshot())
        assert evaluation.state == ScheduleState.ELIGIBLE
        assert evaluation.reason is None
        assert evaluation.is_eligible

    def test_inactive(self):
        evaluation = evaluate_schedule(_snapshot(is_active=False))
        assert evaluation.state == ScheduleState.SKIPPED
        assert evaluation.reason == SkipReason.INACTIVE

    def test_auto_generate_disabled(self):
        evaluation = evaluate_schedule(_snapshot(auto_generate_work_order=False))
        assert evaluation.reason == SkipReason.AUTO_GENERATE_DISABLED

    def test_no_due_date(self):
        evaluation = evaluate_schedule(_snapshot(next_due_date=None))
        assert evaluation.reason == SkipReason.NO_DUE_DATE

    def test_already_generated_by_due_marker(self):
        evaluation = evaluate_schedule(_snapshot(last_generated_due_date=DUE))
        assert evaluation.reason == SkipReason.ALREADY_GENERATED

    def test_already_generated_by_generation_date(self):
        evaluation = evaluate_schedule(_snapshot(last_generated_date=DUE + timedelta(hours=1)))
        assert evaluation.reason == SkipReason.ALREADY_GENERATED

    def test_generated_for_previous_due_date_is_eligible(self):
        schedule = _snapshot(
            last_generated_due_date=DUE - timedelta(days=30),
            last_generated_date=DUE - timedelta(days=33),
        )
        assert evaluate_schedule(schedule).is_eligible

    def test_inactive_reported_before_already_generated(self):
        schedule = _snapshot(is_active=False, last_generated_due_date=DUE)
        assert evaluate_schedule(schedule).reason == SkipReason.INACTIVE

    def test_is_already_generated_without_due_date(self):
        assert not is_already_generated(_snapshot(next_due_date=None, last_generated_date=DUE))


# =============================================================================
# Due-date arithmetic
# =============================================================================


class TestCalculateNextDueDate:
    @pytest.mark.parametrize(
        ("frequency", "expected"),
        [
            (ScheduleFrequency.DAILY, datetime(2026, 1, 16, tzinfo=UTC)),
            (ScheduleFrequency.WEEKLY, datetime(2026, 1, 22, tzinfo=UTC)),
            (ScheduleFrequency.MONTHLY, datetime(2026, 2, 15, tzinfo=UTC)),
            (ScheduleFrequency.QUARTERLY, datetime(2026, 4, 15, tzinfo=UTC)),
            (ScheduleFrequency.SEMI_ANNUAL, datetime(2026, 7, 15, tzinfo=UTC)),
            (ScheduleFrequency.ANNUAL, datetime(2027, 1, 15, tzinfo=UTC)),
        ],
    )
    def test_calendar_frequencies(self, frequency, expected):
        start = datetime(2026, 1, 15, tzinfo=UTC)
        assert calculate_next_due_date(start, frequency) == expected

    def test_month_end_clamped(self):
        start = datetime(2026, 1, 31, tzinfo=UTC)
        assert calculate_next_due_date(start, ScheduleFrequency.MONTHLY) == datetime(
            2026, 2, 28, tzinfo=UTC,
        )

    def test_leap_year_clamp(self):
        start = datetime(2027, 11, 30, tzinfo=UTC)
        assert calculate_next_due_date(start, ScheduleFrequency.QUARTERLY) == datetime(
            2028, 2, 29, tzinfo=UTC,
        )

    def test_year_rollover(self):
        start = datetime(2026, 11, 10, tzinfo=UTC)
        assert calculate_next_due_date(start, ScheduleFrequency.QUARTERLY) == datetime(
            2027, 2, 10, tzinfo=UTC,
        )

    def test_custom_days(self):
        start = datetime(2026, 1, 1, tzinfo=UTC)
        assert calculate_next_due_date(start, "Custom", 10) == datetime(2026, 1, 11, tzinfo=UTC)

    def test_custom_without_days(self):
        with pytest.raises(ValueError):
            calculate_next_due_date(datetime(2026, 1, 1, tzinfo=UTC), ScheduleFrequency.CUSTOM)

    def test_meter_based_has_no_date(self):
        assert calculate_next_due_date(DUE, ScheduleFrequency.METER_BASED) is None

    def test_unknown_frequency(self):
        with pytest.raises(ValueError):
            calculate_next_due_date(DUE, "Fortnightly")


class TestDueAndOverdue:
    def test_due_inside_lead_time(self):
        assert is_schedule_due(DUE, DUE - timedelta(days=7), lead_time_days=7)

    def test_not_due_before_lead_time(self):
        assert not is_schedule_due(DUE, DUE - timedelta(days=8), lead_time_days=7)

    def test_due_without_date(self):
        assert not is_schedule_due(None, DUE)

    def test_overdue_after_grace(self):
        assert is_schedule_overdue(DUE, DUE + timedelta(days=2, seconds=1), grace_days=2)

    def test_not_overdue_within_grace(self):
        assert not is_schedule_overdue(DUE, DUE + timedelta(days=2), grace_days=2)


class TestPriorityForFrequency:
    def test_daily_is_high(self):
        assert priority_for_frequency(ScheduleFrequency.DAILY) == WorkOrderPriority.HIGH

    def test_annual_is_low(self):
        assert priority_for_frequency("Annual") == WorkOrderPriority.LOW


# =============================================================================
# Payload
# =============================================================================


class TestPayload:
    def test_description_context_block(self):
        text = generate_description(
            _snapshot(last_completed_date=datetime(2026, 2, 1, 9, 30, tzinfo=UTC)),
        )
        assert text.splitlines() == [
            "Check seals and vibration.",
            "",
            "--- Preventive Maintenance ---",
            "Schedule: PM-0000001",
            "Frequency: Monthly",
            "Equipment: Cooling pump",
            "Last Completed: 2026-02-01",
        ]

    def test_description_without_schedule_text(self):
        text = generate_description(_snapshot(description=""))
        assert text.startswith("--- Preventive Maintenance ---")
        assert "Last Completed" not in text

    def test_checklist_reset(self):
        template = [
            {
                "description": "Measure vibration",
                "type": "Measurement",
                "requires_measurement": True,
                "measurement_unit": "mm/s",
                "expected_range": {"min": 0, "max": 4.5},
                "safety_notes": "Lockout first",
                "is_required": True,
                "status": "Completed",
                "completed_by": "tech-1",
                "actual_value": 3.1,
            }
        ]
        (item,) = prepare_checklist(template)
        assert item["status"] == "Pending"
        assert item["completed_by"] is None
        assert item["actual_value"] is None
        assert item["measurement_unit"] == "mm/s"
        assert item["expected_range"] == {"min": 0, "max": 4.5}
        assert item["safety_notes"] == "Lockout first"

    def test_build_payload(self):
        schedule = _snapshot(
            priority=WorkOrderPriority.HIGH,
            assigned_to_id="tech-9",
            estimated_duration_hours=Decimal("1.5"),
            required_parts=({"part_number": "PART-0000001", "quantity": 2},),
        )
        payload = build_work_order_payload(schedule)
        assert payload.title == "Inspect pump"
        assert payload.work_type == WorkType.PREVENTIVE
        assert payload.priority == WorkOrderPriority.HIGH
        assert payload.due_date == DUE
        assert payload.pm_due_date == DUE
        assert payload.pm_schedule_id == schedule.id
        assert payload.pm_schedule_ref == "PM-0000001"
        assert payload.parts_requested == ({"part_number": "PART-0000001", "quantity": 2},)
        assert payload.source == AUTO_GENERATED_SOURCE

    def test_payload_to_dict_uses_enum_values(self):
        data = build_work_order_payload(_snapshot()).to_dict()
        assert data["work_type"] == "Preventive"
        assert data["priority"] == "Medium"
        assert isinstance(data["checklist"], list)


# =============================================================================
# Results and policy
# =============================================================================


class TestRunResult:
    def test_counts(self):
        sid = uuid4()
        details = [
            GenerationDetail(sid, "PM-1", ScheduleState.GENERATED, work_order_id="WO-0000001"),
            GenerationDetail(sid, "PM-2", ScheduleState.SKIPPED, reason=SkipReason.INACTIVE),
            GenerationDetail(sid, None, ScheduleState.FAILED, error_code="X"),
        ]
        result = GenerationRunResult.from_details(details)
        assert (result.processed, result.generated, result.skipped, result.errors) == (3, 1, 1, 1)

    def test_dry_run_eligible_counts_as_generated(self):
        detail = GenerationDetail(uuid4(), "PM-1", ScheduleState.ELIGIBLE, dry_run=True)
        result = GenerationRunResult.from_details([detail], dry_run=True)
        assert result.generated == 1
        assert result.to_dict()["details"][0]["work_order_id"] is None


class TestGenerationPolicy:
    def test_limit_capped(self):
        policy = GenerationPolicy(max_items_per_run=10, default_limit=5)
        assert policy.effective_limit(None) == 5
        assert policy.effective_limit(50) == 10
        assert policy.effective_limit(3) == 3

    def test_negative_limit_is_zero(self):
        assert GenerationPolicy().effective_limit(-1) == 0

    def test_invalid_policy(self):
        with pytest.raises(ValueError):
            GenerationPolicy(max_items_per_run=0)

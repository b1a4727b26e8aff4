from __future__ import annotations

from datetime import date, timedelta

import pytest

from allocation_engine.domain.errors import AllocationNotFoundError
from allocation_engine.domain.models import Allocation, AllocationInput, AllocationStatus
from allocation_engine.services.utilization_service import (
    UtilizationCalculator,
    compute_segments,
    compute_utilization,
    compute_weekly_breakdown,
    current_week,
    to_percent,
)


def _allocation(
    allocation_id: str,
    start: date,
    end: date,
    hours: float,
    status: AllocationStatus = AllocationStatus.CONFIRMED,
) -> Allocation:
    return Allocation(
        allocation_id=allocation_id,
        employee_id="emp-1",
        project_id="prj-a",
        start_date=start,
        end_date=end,
        allocated_hours=hours,
        status=status,
    )


STAGGERED = [
    _allocation("a-30", date(2025, 3, 1), date(2025, 3, 31), 12.0),
    _allocation("a-25", date(2025, 3, 15), date(2025, 4, 15), 10.0),
    _allocation("a-20", date(2025, 3, 20), date(2025, 4, 5), 8.0),
]


def test_staggered_allocations_partition_into_constant_segments() -> None:
    segments = compute_segments(STAGGERED, date(2025, 3, 1), date(2025, 4, 15), 40.0)

    assert [
        (segment.start_date, segment.end_date, segment.utilization_percent)
        for segment in segments
    ] == [
        (date(2025, 3, 1), date(2025, 3, 14), 30.0),
        (date(2025, 3, 15), date(2025, 3, 19), 55.0),
        (date(2025, 3, 20), date(2025, 3, 31), 75.0),
        (date(2025, 4, 1), date(2025, 4, 5), 45.0),
        (date(2025, 4, 6), date(2025, 4, 15), 25.0),
    ]
    assert segments[2].allocation_ids == ("a-20", "a-25", "a-30")


def test_daily_breakdown_is_additive_for_every_day() -> None:
    result = compute_utilization("emp-1", 40.0, STAGGERED)

    assert result.start_date == date(2025, 3, 1)
    assert result.end_date == date(2025, 4, 15)
    assert len(result.daily_breakdown) == 46
    for entry in result.daily_breakdown:
        covering = sum(item.allocated_hours for item in STAGGERED if item.covers(entry.day))
        assert entry.allocated_hours == pytest.approx(covering)
        assert entry.utilization_percent == pytest.approx(100.0 * covering / 40.0)


def test_summary_totals_are_a_flat_sum_and_peak_is_daily() -> None:
    result = compute_utilization("emp-1", 40.0, STAGGERED)

    assert result.total_allocated_hours == pytest.approx(30.0)
    assert result.utilization_rate_percent == pytest.approx(75.0)
    assert result.peak_allocated_hours == pytest.approx(30.0)
    assert result.peak_utilization_percent == pytest.approx(75.0)
    assert result.allocation_count == 3


def test_gaps_appear_as_zero_hour_segments() -> None:
    allocations = [
        _allocation("a-1", date(2025, 3, 1), date(2025, 3, 5), 20.0),
        _allocation("a-2", date(2025, 3, 10), date(2025, 3, 12), 20.0),
    ]

    segments = compute_segments(allocations, date(2025, 3, 1), date(2025, 3, 12), 40.0)

    assert [(segment.start_date, segment.allocated_hours) for segment in segments] == [
        (date(2025, 3, 1), 20.0),
        (date(2025, 3, 6), 0.0),
        (date(2025, 3, 10), 20.0),
    ]


def test_adjacent_equal_loads_merge_into_one_segment() -> None:
    allocations = [
        _allocation("a-1", date(2025, 3, 1), date(2025, 3, 10), 20.0),
        _allocation("a-2", date(2025, 3, 11), date(2025, 3, 20), 20.0),
    ]

    segments = compute_segments(allocations, date(2025, 3, 1), date(2025, 3, 20), 40.0)

    assert len(segments) == 1
    assert segments[0].days == 20
    assert segments[0].allocation_ids == ("a-1", "a-2")


def test_single_day_allocation_contributes_only_on_that_day() -> None:
    allocations = [_allocation("a-1", date(2025, 3, 10), date(2025, 3, 10), 8.0)]

    result = compute_utilization(
        "emp-1", 40.0, allocations, date(2025, 3, 9), date(2025, 3, 11)
    )

    assert [entry.utilization_percent for entry in result.daily_breakdown] == [0.0, 20.0, 0.0]


def test_zero_capacity_yields_zero_utilization() -> None:
    result = compute_utilization("emp-1", 0.0, STAGGERED)

    assert to_percent(10.0, 0.0) == 0.0
    assert result.utilization_rate_percent == 0.0
    assert all(entry.utilization_percent == 0.0 for entry in result.daily_breakdown)


def test_inactive_allocations_do_not_count() -> None:
    allocations = [
        _allocation("a-1", date(2025, 3, 1), date(2025, 3, 31), 20.0),
        _allocation("a-2", date(2025, 3, 1), date(2025, 3, 31), 20.0, AllocationStatus.CANCELLED),
    ]

    result = compute_utilization("emp-1", 40.0, allocations)

    assert result.peak_utilization_percent == 50.0
    assert result.allocation_count == 1


def test_no_allocations_without_range_returns_empty_result() -> None:
    result = compute_utilization("emp-1", 40.0, [])

    assert result.start_date is None
    assert result.total_allocated_hours == 0.0
    assert result.daily_breakdown == []


def test_weekly_buckets_count_full_hours_for_any_overlap() -> None:
    allocations = [
        _allocation("a-1", date(2025, 3, 3), date(2025, 3, 4), 10.0),
        _allocation("a-2", date(2025, 3, 9), date(2025, 3, 12), 16.0),
    ]

    weeks = compute_weekly_breakdown(allocations, date(2025, 3, 3), date(2025, 3, 19), 40.0)

    assert [(week.week_start, week.week_end) for week in weeks] == [
        (date(2025, 3, 3), date(2025, 3, 9)),
        (date(2025, 3, 10), date(2025, 3, 16)),
        (date(2025, 3, 17), date(2025, 3, 19)),
    ]
    assert [week.utilization_percent for week in weeks] == [65.0, 40.0, 0.0]


def test_current_week_runs_monday_to_sunday() -> None:
    start, end = current_week(date(2025, 3, 13))

    assert start == date(2025, 3, 10)
    assert end == start + timedelta(days=6)


def test_calculator_reads_repository_snapshot(repository, service) -> None:
    service.create_allocation(
        AllocationInput("emp-1", "prj-a", date(2025, 3, 1), date(2025, 3, 31), 12.0)
    )
    service.create_allocation(
        AllocationInput("emp-1", "prj-b", date(2025, 3, 15), date(2025, 4, 15), 10.0)
    )
    calculator = UtilizationCalculator(repository=repository)

    result = calculator.get_employee_utilization("emp-1", date(2025, 3, 10), date(2025, 3, 20))

    assert result.peak_utilization_percent == 55.0
    assert [segment.utilization_percent for segment in result.segments] == [30.0, 55.0]


def test_calculator_rejects_unknown_employee(repository) -> None:
    with pytest.raises(AllocationNotFoundError):
        UtilizationCalculator(repository=repository).get_employee_utilization("emp-missing")


def test_team_summary_uses_peak_utilization(repository, service) -> None:
    window = (date(2025, 3, 3), date(2025, 3, 9))
    service.create_allocation(
        AllocationInput("emp-1", "prj-a", date(2025, 3, 1), date(2025, 3, 31), 34.0)
    )
    service.create_allocation(
        AllocationInput("emp-part", "prj-a", date(2025, 3, 5), date(2025, 3, 6), 16.0)
    )

    summary = UtilizationCalculator(repository=repository).summarize_team(*window)

    # emp-1 85%, emp-2 0%, emp-part 80%; the inactive employee is excluded.
    assert summary.total_employees == 3
    assert summary.average_utilization_percent == pytest.approx(55.0)
    assert summary.overutilized_count == 0
    assert summary.underutilized_count == 1
    assert summary.total_active_allocations == 2
    assert summary.conflicting_employee_count == 2

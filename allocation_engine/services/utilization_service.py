"""Cumulative capacity utilization per day, per constant segment and per week.

Every allocation contributes its full weekly hours to each day it covers;
hours are never averaged across an allocation's range. Utilization is
`hours / weekly_capacity_hours * 100` and is always derived, never stored.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Iterable, Iterator, Optional, Sequence

from allocation_engine.domain.constraints import (
    FULL_CAPACITY_PERCENT,
    CapacityThresholds,
    validate_date_range,
)
from allocation_engine.domain.errors import AllocationNotFoundError
from allocation_engine.domain.models import (
    Allocation,
    DailyUtilization,
    TeamUtilizationSummary,
    UtilizationResult,
    UtilizationSegment,
    WeeklyUtilization,
)
from allocation_engine.repository.allocation_repository import AllocationRepository
from allocation_engine.services.overlap_service import ranges_overlap
from allocation_engine.utils.config import Settings, get_settings
from allocation_engine.utils.logger import get_logger


logger = get_logger(__name__)

ONE_DAY = timedelta(days=1)
WEEK_LENGTH_DAYS = 7
_HOURS_PRECISION = 6
_RATE_PRECISION = 9


def exact_percent(allocated_hours: float, weekly_capacity_hours: float) -> float:
    """Unrounded percentage used for threshold comparisons; zero capacity yields 0."""
    if weekly_capacity_hours <= 0:
        return 0.0
    return round(allocated_hours * 100.0 / weekly_capacity_hours, _RATE_PRECISION)


def to_percent(allocated_hours: float, weekly_capacity_hours: float) -> float:
    """Hours as a percentage of weekly capacity, rounded for display."""
    return round(exact_percent(allocated_hours, weekly_capacity_hours), 2)


def iter_days(start_date: date, end_date: date) -> Iterator[date]:
    current = start_date
    while current <= end_date:
        yield current
        current += ONE_DAY


def _intersecting(
    allocations: Iterable[Allocation],
    start_date: date,
    end_date: date,
) -> list[Allocation]:
    return [
        allocation
        for allocation in allocations
        if allocation.is_active
        and ranges_overlap(start_date, end_date, allocation.start_date, allocation.end_date)
    ]


def compute_daily_breakdown(
    allocations: Sequence[Allocation],
    start_date: date,
    end_date: date,
    weekly_capacity_hours: float,
) -> list[DailyUtilization]:
    relevant = _intersecting(allocations, start_date, end_date)
    breakdown: list[DailyUtilization] = []
    for day in iter_days(start_date, end_date):
        hours = round(
            sum(allocation.allocated_hours for allocation in relevant if allocation.covers(day)),
            _HOURS_PRECISION,
        )
        breakdown.append(
            DailyUtilization(
                day=day,
                allocated_hours=hours,
                utilization_percent=to_percent(hours, weekly_capacity_hours),
            )
        )
    return breakdown


def compute_segments(
    allocations: Sequence[Allocation],
    start_date: date,
    end_date: date,
    weekly_capacity_hours: float,
) -> list[UtilizationSegment]:
    """Partition the range into maximal runs of constant cumulative hours.

    Only allocation boundaries can change the running total, so the sweep
    evaluates one representative day per boundary-delimited piece and then
    merges neighbours that ended up with equal totals.
    """
    relevant = _intersecting(allocations, start_date, end_date)
    range_stop = end_date + ONE_DAY
    boundaries = {start_date, range_stop}
    for allocation in relevant:
        boundaries.add(max(allocation.start_date, start_date))
        boundaries.add(min(allocation.end_date, end_date) + ONE_DAY)
    points = sorted(point for point in boundaries if start_date <= point <= range_stop)

    segments: list[UtilizationSegment] = []
    for piece_start, next_start in zip(points, points[1:]):
        piece_end = next_start - ONE_DAY
        covering = [allocation for allocation in relevant if allocation.covers(piece_start)]
        hours = round(
            sum(allocation.allocated_hours for allocation in covering),
            _HOURS_PRECISION,
        )
        allocation_ids = tuple(sorted(allocation.allocation_id for allocation in covering))

        if segments and segments[-1].allocated_hours == hours:
            previous = segments[-1]
            merged_ids = tuple(sorted(set(previous.allocation_ids) | set(allocation_ids)))
            segments[-1] = UtilizationSegment(
                start_date=previous.start_date,
                end_date=piece_end,
                allocated_hours=hours,
                utilization_percent=previous.utilization_percent,
                allocation_ids=merged_ids,
            )
            continue

        segments.append(
            UtilizationSegment(
                start_date=piece_start,
                end_date=piece_end,
                allocated_hours=hours,
                utilization_percent=to_percent(hours, weekly_capacity_hours),
                allocation_ids=allocation_ids,
            )
        )
    return segments


def compute_weekly_breakdown(
    allocations: Sequence[Allocation],
    start_date: date,
    end_date: date,
    weekly_capacity_hours: float,
) -> list[WeeklyUtilization]:
    """7-day buckets from `start_date`; any overlap counts the full weekly hours."""
    relevant = _intersecting(allocations, start_date, end_date)
    weeks: list[WeeklyUtilization] = []
    week_start = start_date
    while week_start <= end_date:
        week_end = min(week_start + timedelta(days=WEEK_LENGTH_DAYS - 1), end_date)
        hours = round(
            sum(
                allocation.allocated_hours
                for allocation in relevant
                if ranges_overlap(week_start, week_end, allocation.start_date, allocation.end_date)
            ),
            _HOURS_PRECISION,
        )
        weeks.append(
            WeeklyUtilization(
                week_start=week_start,
                week_end=week_end,
                allocated_hours=hours,
                utilization_percent=to_percent(hours, weekly_capacity_hours),
            )
        )
        week_start = week_end + ONE_DAY
    return weeks


def compute_utilization(
    employee_id: str,
    weekly_capacity_hours: float,
    allocations: Sequence[Allocation],
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    *,
    include_daily: bool = True,
) -> UtilizationResult:
    """Aggregate an employee's active allocations over a reference range.

    Without an explicit range the span of the active allocations is used.
    """
    active = [
        allocation
        for allocation in allocations
        if allocation.employee_id == employee_id and allocation.is_active
    ]
    if start_date is None or end_date is None:
        if not active:
            return UtilizationResult(
                employee_id=employee_id,
                weekly_capacity_hours=weekly_capacity_hours,
                start_date=start_date,
                end_date=end_date,
                total_allocated_hours=0.0,
                utilization_rate_percent=0.0,
                peak_allocated_hours=0.0,
                peak_utilization_percent=0.0,
                allocation_count=0,
            )
        start_date = start_date or min(allocation.start_date for allocation in active)
        end_date = end_date or max(allocation.end_date for allocation in active)
    validate_date_range(start_date, end_date)

    relevant = _intersecting(active, start_date, end_date)
    total_hours = round(
        sum(allocation.allocated_hours for allocation in relevant),
        _HOURS_PRECISION,
    )
    segments = compute_segments(relevant, start_date, end_date, weekly_capacity_hours)
    peak_hours = max((segment.allocated_hours for segment in segments), default=0.0)

    return UtilizationResult(
        employee_id=employee_id,
        weekly_capacity_hours=weekly_capacity_hours,
        start_date=start_date,
        end_date=end_date,
        total_allocated_hours=total_hours,
        utilization_rate_percent=to_percent(total_hours, weekly_capacity_hours),
        peak_allocated_hours=peak_hours,
        peak_utilization_percent=to_percent(peak_hours, weekly_capacity_hours),
        allocation_count=len(relevant),
        daily_breakdown=(
            compute_daily_breakdown(relevant, start_date, end_date, weekly_capacity_hours)
            if include_daily
            else []
        ),
        segments=segments,
        weekly_breakdown=compute_weekly_breakdown(
            relevant, start_date, end_date, weekly_capacity_hours
        ),
    )


def current_week(today: Optional[date] = None) -> tuple[date, date]:
    """Monday..Sunday window containing `today`."""
    reference = today or date.today()
    week_start = reference - timedelta(days=reference.weekday())
    return week_start, week_start + timedelta(days=WEEK_LENGTH_DAYS - 1)


class UtilizationCalculator:
    """Loads repository snapshots and derives utilization for dashboards."""

    def __init__(
        self,
        repository: Optional[AllocationRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or AllocationRepository(self._settings)
        self._thresholds = CapacityThresholds.from_settings(self._settings)

    def get_employee_utilization(
        self,
        employee_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> UtilizationResult:
        if start_date is not None and end_date is not None:
            validate_date_range(start_date, end_date)
        employee = self._repository.get_employee(employee_id)
        if employee is None:
            raise AllocationNotFoundError(f"Employee {employee_id} not found")
        allocations = self._repository.list_active_allocations(
            employee_id=employee_id,
            start_date=start_date,
            end_date=end_date,
        )
        result = compute_utilization(
            employee_id=employee.employee_id,
            weekly_capacity_hours=employee.weekly_capacity_hours,
            allocations=allocations,
            start_date=start_date,
            end_date=end_date,
        )
        logger.info(
            "Utilization computed | employee_id=%s | allocations=%s | peak=%.2f%% | total=%.2f%%",
            employee_id,
            result.allocation_count,
            result.peak_utilization_percent,
            result.utilization_rate_percent,
        )
        return result

    def summarize_team(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> TeamUtilizationSummary:
        """Team-wide rollup over a window, defaulting to the current week."""
        if start_date is None or end_date is None:
            default_start, default_end = current_week()
            start_date = start_date or default_start
            end_date = end_date or default_end
        validate_date_range(start_date, end_date)

        employees = self._repository.list_employees(active_only=True)
        allocations = self._repository.list_active_allocations(
            start_date=start_date,
            end_date=end_date,
        )
        by_employee: dict[str, list[Allocation]] = {}
        for allocation in allocations:
            by_employee.setdefault(allocation.employee_id, []).append(allocation)

        peaks: list[float] = []
        exact_peaks: list[float] = []
        for employee in employees:
            result = compute_utilization(
                employee_id=employee.employee_id,
                weekly_capacity_hours=employee.weekly_capacity_hours,
                allocations=by_employee.get(employee.employee_id, []),
                start_date=start_date,
                end_date=end_date,
                include_daily=False,
            )
            peaks.append(result.peak_utilization_percent)
            exact_peaks.append(
                exact_percent(result.peak_allocated_hours, employee.weekly_capacity_hours)
            )

        total_employees = len(employees)
        average = round(sum(peaks) / total_employees, 2) if total_employees else 0.0
        employee_ids = {employee.employee_id for employee in employees}
        return TeamUtilizationSummary(
            total_employees=total_employees,
            average_utilization_percent=average,
            overutilized_count=sum(1 for peak in exact_peaks if peak > FULL_CAPACITY_PERCENT),
            underutilized_count=sum(
                1 for peak in peaks if peak < self._settings.underutilization_threshold
            ),
            total_active_allocations=sum(
                1 for allocation in allocations if allocation.employee_id in employee_ids
            ),
            conflicting_employee_count=sum(
                1 for peak in peaks if peak >= self._thresholds.warning_percent
            ),
        )

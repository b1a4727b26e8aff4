"""Domain-level validation rules for capacity thresholds and allocation ranges."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional

from allocation_engine.domain.errors import InvalidRangeError, ReferenceViolationError
from allocation_engine.domain.models import Employee, Project
from allocation_engine.utils.config import Settings


FULL_CAPACITY_PERCENT = 100.0


@dataclass(frozen=True)
class CapacityThresholds:
    comfortable_percent: float = 60.0
    warning_percent: float = 80.0
    critical_percent: float = 95.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "CapacityThresholds":
        thresholds = cls(
            comfortable_percent=settings.capacity_comfortable_threshold,
            warning_percent=settings.capacity_warning_threshold,
            critical_percent=settings.capacity_critical_threshold,
        )
        validate_capacity_thresholds(thresholds)
        return thresholds


def validate_capacity_thresholds(thresholds: CapacityThresholds) -> None:
    if thresholds.comfortable_percent <= 0.0:
        raise ValueError("comfortable_percent must be > 0")
    if thresholds.warning_percent < thresholds.comfortable_percent:
        raise ValueError("warning_percent must be >= comfortable_percent")
    if thresholds.critical_percent < thresholds.warning_percent:
        raise ValueError("critical_percent must be >= warning_percent")
    if thresholds.critical_percent > FULL_CAPACITY_PERCENT:
        raise ValueError("critical_percent must be <= 100")


def validate_date_range(start_date: date, end_date: date) -> None:
    if end_date < start_date:
        raise InvalidRangeError(
            f"end_date {end_date.isoformat()} is before start_date {start_date.isoformat()}"
        )


def validate_allocated_hours(
    allocated_hours: float,
    max_allocated_hours: Optional[float] = None,
) -> None:
    if allocated_hours <= 0:
        raise InvalidRangeError("allocated_hours must be > 0")
    if max_allocated_hours is not None and allocated_hours > max_allocated_hours:
        raise InvalidRangeError(
            f"allocated_hours {allocated_hours:g} exceeds the maximum of {max_allocated_hours:g}"
        )


def validate_within_project_window(
    start_date: date,
    end_date: date,
    project_start: Optional[date],
    project_end: Optional[date],
) -> None:
    if project_start is not None and start_date < project_start:
        raise InvalidRangeError(
            f"Allocation start date cannot be before project start date {project_start.isoformat()}"
        )
    if project_end is not None and end_date > project_end:
        raise InvalidRangeError(
            f"Allocation end date cannot be after project end date {project_end.isoformat()}"
        )


def validate_allocation_references(
    employee_id: str,
    employee: Optional[Employee],
    project_id: str,
    project: Optional[Project],
) -> None:
    """Capacity-bearing allocations need an active employee and an allocatable project."""
    if employee is None:
        raise ReferenceViolationError(f"Employee {employee_id} does not exist")
    if not employee.is_active:
        raise ReferenceViolationError(f"Employee {employee_id} is inactive")
    if project is None:
        raise ReferenceViolationError(f"Project {project_id} does not exist")
    if not project.is_allocatable:
        raise ReferenceViolationError(
            f"Project {project_id} is {project.status.value} and cannot take allocations"
        )

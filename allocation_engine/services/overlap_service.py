"""Closed-interval overlap detection over an employee's active allocations."""

from __future__ import annotations

import sqlite3
from datetime import date
from typing import Iterable, Optional

from allocation_engine.domain.constraints import validate_date_range
from allocation_engine.domain.models import Allocation, OverlapKind, OverlapRecord
from allocation_engine.repository.allocation_repository import AllocationRepository
from allocation_engine.utils.config import Settings, get_settings
from allocation_engine.utils.logger import get_logger


logger = get_logger(__name__)


def ranges_overlap(
    first_start: date,
    first_end: date,
    second_start: date,
    second_end: date,
) -> bool:
    """Inclusive intersection test; ranges touching on one day overlap."""
    return first_start <= second_end and second_start <= first_end


def to_overlap_record(allocation: Allocation) -> OverlapRecord:
    return OverlapRecord(
        allocation_id=allocation.allocation_id,
        project_id=allocation.project_id,
        project_name=allocation.project_name or f"Project {allocation.project_id}",
        start_date=allocation.start_date,
        end_date=allocation.end_date,
        allocated_hours=allocation.allocated_hours,
        status=allocation.status,
    )


def find_overlaps_in(
    allocations: Iterable[Allocation],
    employee_id: str,
    start_date: date,
    end_date: date,
    exclude_allocation_id: Optional[str] = None,
) -> list[OverlapRecord]:
    """Snapshot variant of `OverlapDetector.find_overlaps`; performs no I/O."""
    overlaps = [
        to_overlap_record(allocation)
        for allocation in allocations
        if allocation.employee_id == employee_id
        and allocation.is_active
        and allocation.allocation_id != exclude_allocation_id
        and ranges_overlap(start_date, end_date, allocation.start_date, allocation.end_date)
    ]
    overlaps.sort(key=lambda record: (record.start_date, record.allocation_id))
    return overlaps


def overlap_kind(
    start_date: date,
    end_date: date,
    overlaps: list[OverlapRecord],
) -> OverlapKind:
    """Contained when the range sits inside every overlapping allocation."""
    if not overlaps:
        return OverlapKind.NONE
    if all(
        record.start_date <= start_date and end_date <= record.end_date
        for record in overlaps
    ):
        return OverlapKind.CONTAINED
    return OverlapKind.PARTIAL


class OverlapDetector:
    """Finds active allocations intersecting a candidate date range."""

    def __init__(
        self,
        repository: Optional[AllocationRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or AllocationRepository(self._settings)

    def overlapping_allocations(
        self,
        employee_id: str,
        start_date: date,
        end_date: date,
        exclude_allocation_id: Optional[str] = None,
        *,
        connection: Optional[sqlite3.Connection] = None,
    ) -> list[Allocation]:
        """Full allocation snapshot behind `find_overlaps`, for utilization math."""
        validate_date_range(start_date, end_date)
        return [
            allocation
            for allocation in self._repository.list_active_allocations(
                employee_id=employee_id,
                start_date=start_date,
                end_date=end_date,
                exclude_allocation_id=exclude_allocation_id,
                connection=connection,
            )
            if ranges_overlap(start_date, end_date, allocation.start_date, allocation.end_date)
        ]

    def find_overlaps(
        self,
        employee_id: str,
        start_date: date,
        end_date: date,
        exclude_allocation_id: Optional[str] = None,
        *,
        connection: Optional[sqlite3.Connection] = None,
    ) -> list[OverlapRecord]:
        candidates = self.overlapping_allocations(
            employee_id,
            start_date,
            end_date,
            exclude_allocation_id,
            connection=connection,
        )
        overlaps = find_overlaps_in(
            candidates,
            employee_id=employee_id,
            start_date=start_date,
            end_date=end_date,
            exclude_allocation_id=exclude_allocation_id,
        )
        logger.debug(
            "Overlap lookup | employee_id=%s | range=%s..%s | exclude=%s | overlaps=%s",
            employee_id,
            start_date.isoformat(),
            end_date.isoformat(),
            exclude_allocation_id,
            len(overlaps),
        )
        return overlaps

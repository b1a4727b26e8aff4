"""Severity classification and conflict assembly for capacity checks."""

from __future__ import annotations

from datetime import date
from typing import Optional, Sequence

from allocation_engine.domain.constraints import (
    FULL_CAPACITY_PERCENT,
    CapacityThresholds,
    validate_capacity_thresholds,
)
from allocation_engine.domain.models import (
    Allocation,
    Classification,
    Conflict,
    ConflictLevel,
    ContributingAllocation,
    Employee,
    OverlapKind,
)
from allocation_engine.services.overlap_service import find_overlaps_in, overlap_kind
from allocation_engine.services.utilization_service import (
    compute_segments,
    exact_percent,
    to_percent,
)
from allocation_engine.utils.config import Settings, get_settings


_OVERLAP_PREFIXES = {
    OverlapKind.CONTAINED: "Overlaps existing allocation",
    OverlapKind.PARTIAL: "Multiple overlapping periods",
}


def format_percent(value: float) -> str:
    return f"{round(value, 2):g}%"


class ConflictClassifier:
    """Maps a utilization rate to a conflict level using injected thresholds."""

    def __init__(
        self,
        thresholds: Optional[CapacityThresholds] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        if thresholds is None:
            thresholds = CapacityThresholds.from_settings(settings or get_settings())
        validate_capacity_thresholds(thresholds)
        self._thresholds = thresholds

    @property
    def thresholds(self) -> CapacityThresholds:
        return self._thresholds

    def classify(
        self,
        utilization_rate_percent: float,
        is_new_allocation: bool,
        *,
        force: bool = False,
        overlap: OverlapKind = OverlapKind.NONE,
    ) -> Classification:
        rate = format_percent(utilization_rate_percent)
        if is_new_allocation:
            subject = f"Adding this allocation brings total utilization to {rate}"
        else:
            subject = f"Total utilization for this period is {rate}"

        if utilization_rate_percent > FULL_CAPACITY_PERCENT:
            if force:
                level = ConflictLevel.CRITICAL
                text = f"Over-allocation forced: {subject} (over 100%)"
            else:
                level = ConflictLevel.BLOCKING
                text = f"Over-allocation: {subject} (over 100%). Use force to override"
        elif utilization_rate_percent >= self._thresholds.critical_percent:
            level = ConflictLevel.INFO
            text = f"At full capacity: {subject}"
        elif utilization_rate_percent >= self._thresholds.warning_percent:
            level = ConflictLevel.WARNING
            text = f"High utilization: {subject}"
        elif utilization_rate_percent >= self._thresholds.comfortable_percent:
            level = ConflictLevel.INFO
            text = f"Nearing capacity: {subject}"
        else:
            level = ConflictLevel.INFO
            text = f"Plenty of capacity: {subject}"

        prefix = _OVERLAP_PREFIXES.get(overlap)
        if prefix:
            text = f"{prefix}. {text}"
        return Classification(level=level, message=text)


def _contributor(allocation: Allocation, weekly_capacity_hours: float) -> ContributingAllocation:
    return ContributingAllocation(
        allocation_id=allocation.allocation_id,
        project_id=allocation.project_id,
        project_name=allocation.project_name or f"Project {allocation.project_id}",
        start_date=allocation.start_date,
        end_date=allocation.end_date,
        allocated_hours=allocation.allocated_hours,
        utilization_percent=to_percent(allocation.allocated_hours, weekly_capacity_hours),
    )


def evaluate_candidate(
    employee: Employee,
    candidate: Allocation,
    existing: Sequence[Allocation],
    classifier: ConflictClassifier,
    *,
    is_new_allocation: bool,
    force: bool = False,
) -> Optional[Conflict]:
    """Classify `candidate` against a snapshot of the employee's allocations.

    `existing` may contain the stored version of the candidate; it is
    excluded by id. Returns None when nothing overlaps and the level is info.
    """
    capacity = employee.weekly_capacity_hours
    overlaps = find_overlaps_in(
        existing,
        employee_id=employee.employee_id,
        start_date=candidate.start_date,
        end_date=candidate.end_date,
        exclude_allocation_id=candidate.allocation_id,
    )
    overlap_ids = {record.allocation_id for record in overlaps}
    overlapping = [
        allocation for allocation in existing if allocation.allocation_id in overlap_ids
    ]
    segments = compute_segments(
        [*overlapping, candidate],
        candidate.start_date,
        candidate.end_date,
        capacity,
    )
    peak_hours = max((segment.allocated_hours for segment in segments), default=0.0)
    rate = to_percent(peak_hours, capacity)
    proposed = to_percent(candidate.allocated_hours, capacity)
    current = to_percent(max(0.0, peak_hours - candidate.allocated_hours), capacity)
    kind = overlap_kind(candidate.start_date, candidate.end_date, overlaps)

    classification = classifier.classify(
        exact_percent(peak_hours, capacity),
        is_new_allocation,
        force=force,
        overlap=kind,
    )
    if not overlaps and classification.level is ConflictLevel.INFO:
        return None

    contributors = [_contributor(allocation, capacity) for allocation in overlapping]
    contributors.append(
        ContributingAllocation(
            allocation_id=None if is_new_allocation else candidate.allocation_id,
            project_id=candidate.project_id,
            project_name=candidate.project_name or f"Project {candidate.project_id}",
            start_date=candidate.start_date,
            end_date=candidate.end_date,
            allocated_hours=candidate.allocated_hours,
            utilization_percent=proposed,
            is_candidate=True,
        )
    )
    verb = "would be" if classification.level is ConflictLevel.BLOCKING else "is"
    detail = (
        f"Current: {format_percent(current)}, Proposed: {format_percent(proposed)}, "
        f"Total {verb}: {format_percent(rate)}"
    )
    return Conflict(
        employee_id=employee.employee_id,
        level=classification.level,
        message=classification.message,
        start_date=candidate.start_date,
        end_date=candidate.end_date,
        utilization_rate_percent=rate,
        current_utilization_percent=current,
        proposed_utilization_percent=proposed,
        weekly_capacity_hours=capacity,
        overlap_kind=kind,
        allocation_id=None if is_new_allocation else candidate.allocation_id,
        detail=detail,
        contributing_allocations=contributors,
        segments=segments,
    )


def find_stored_conflicts(
    employee: Employee,
    allocations: Sequence[Allocation],
    classifier: ConflictClassifier,
    start_date: date,
    end_date: date,
    min_level: ConflictLevel = ConflictLevel.WARNING,
) -> list[Conflict]:
    """Report persisted segments whose cumulative load classifies at `min_level` or above.

    Stored over-allocations were necessarily forced, so they surface as critical.
    """
    capacity = employee.weekly_capacity_hours
    by_id = {allocation.allocation_id: allocation for allocation in allocations}
    conflicts: list[Conflict] = []
    for segment in compute_segments(allocations, start_date, end_date, capacity):
        if segment.allocated_hours <= 0:
            continue
        members = [by_id[allocation_id] for allocation_id in segment.allocation_ids]
        kind = OverlapKind.PARTIAL if len(members) > 1 else OverlapKind.NONE
        classification = classifier.classify(
            exact_percent(segment.allocated_hours, capacity),
            False,
            force=True,
            overlap=kind,
        )
        if classification.level.rank < min_level.rank:
            continue
        conflicts.append(
            Conflict(
                employee_id=employee.employee_id,
                level=classification.level,
                message=classification.message,
                start_date=segment.start_date,
                end_date=segment.end_date,
                utilization_rate_percent=segment.utilization_percent,
                current_utilization_percent=segment.utilization_percent,
                proposed_utilization_percent=0.0,
                weekly_capacity_hours=capacity,
                overlap_kind=kind,
                detail=(
                    f"{segment.start_date.isoformat()} to {segment.end_date.isoformat()}: "
                    f"{format_percent(segment.utilization_percent)}"
                ),
                contributing_allocations=[
                    _contributor(member, capacity) for member in members
                ],
                segments=[segment],
            )
        )
    return conflicts

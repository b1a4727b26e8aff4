from __future__ import annotations

from datetime import date

import pytest

from allocation_engine.domain.errors import InvalidRangeError
from allocation_engine.domain.models import (
    Allocation,
    AllocationInput,
    AllocationStatus,
    OverlapKind,
)
from allocation_engine.services.overlap_service import (
    OverlapDetector,
    find_overlaps_in,
    overlap_kind,
    ranges_overlap,
)


def _allocation(
    allocation_id: str,
    start: date,
    end: date,
    hours: float = 10.0,
    status: AllocationStatus = AllocationStatus.CONFIRMED,
    employee_id: str = "emp-1",
) -> Allocation:
    return Allocation(
        allocation_id=allocation_id,
        employee_id=employee_id,
        project_id="prj-a",
        start_date=start,
        end_date=end,
        allocated_hours=hours,
        status=status,
        project_name="Apollo",
    )


@pytest.mark.parametrize(
    ("first", "second", "expected"),
    [
        ((date(2025, 3, 1), date(2025, 3, 15)), (date(2025, 3, 15), date(2025, 3, 31)), True),
        ((date(2025, 3, 1), date(2025, 3, 14)), (date(2025, 3, 15), date(2025, 3, 31)), False),
        ((date(2025, 3, 1), date(2025, 3, 31)), (date(2025, 3, 10), date(2025, 3, 12)), True),
        ((date(2025, 3, 10), date(2025, 3, 10)), (date(2025, 3, 10), date(2025, 3, 10)), True),
        ((date(2025, 4, 1), date(2025, 4, 30)), (date(2025, 3, 1), date(2025, 3, 31)), False),
    ],
)
def test_ranges_overlap_uses_closed_intervals(first, second, expected) -> None:
    assert ranges_overlap(*first, *second) is expected
    assert ranges_overlap(*second, *first) is expected


def test_touching_ranges_are_reported_as_overlaps() -> None:
    existing = [_allocation("a-1", date(2025, 3, 1), date(2025, 3, 15))]

    overlaps = find_overlaps_in(existing, "emp-1", date(2025, 3, 15), date(2025, 3, 31))

    assert [record.allocation_id for record in overlaps] == ["a-1"]
    assert overlaps[0].project_name == "Apollo"
    assert overlaps[0].allocated_hours == 10.0


def test_inactive_allocations_are_ignored() -> None:
    existing = [
        _allocation("a-cancelled", date(2025, 3, 1), date(2025, 3, 31), status=AllocationStatus.CANCELLED),
        _allocation("a-completed", date(2025, 3, 1), date(2025, 3, 31), status=AllocationStatus.COMPLETED),
        _allocation("a-tentative", date(2025, 3, 1), date(2025, 3, 31), status=AllocationStatus.TENTATIVE),
    ]

    overlaps = find_overlaps_in(existing, "emp-1", date(2025, 3, 10), date(2025, 3, 20))

    assert [record.allocation_id for record in overlaps] == ["a-tentative"]


def test_excluded_allocation_never_overlaps_itself() -> None:
    existing = [
        _allocation("a-1", date(2025, 3, 1), date(2025, 3, 31)),
        _allocation("a-2", date(2025, 3, 20), date(2025, 4, 10)),
    ]

    overlaps = find_overlaps_in(
        existing,
        "emp-1",
        date(2025, 3, 5),
        date(2025, 3, 25),
        exclude_allocation_id="a-1",
    )

    assert [record.allocation_id for record in overlaps] == ["a-2"]


def test_other_employees_are_ignored() -> None:
    existing = [_allocation("a-1", date(2025, 3, 1), date(2025, 3, 31), employee_id="emp-2")]

    assert find_overlaps_in(existing, "emp-1", date(2025, 3, 1), date(2025, 3, 31)) == []


def test_overlap_kind_distinguishes_contained_and_partial() -> None:
    container = _allocation("a-1", date(2025, 3, 1), date(2025, 3, 31))
    tail = _allocation("a-2", date(2025, 3, 25), date(2025, 4, 15))

    contained = find_overlaps_in([container], "emp-1", date(2025, 3, 10), date(2025, 3, 20))
    partial = find_overlaps_in([container, tail], "emp-1", date(2025, 3, 20), date(2025, 4, 5))

    assert overlap_kind(date(2025, 3, 10), date(2025, 3, 20), contained) is OverlapKind.CONTAINED
    assert overlap_kind(date(2025, 3, 20), date(2025, 4, 5), partial) is OverlapKind.PARTIAL
    assert overlap_kind(date(2025, 3, 20), date(2025, 4, 5), []) is OverlapKind.NONE


def test_detector_reads_active_allocations_from_repository(repository, service) -> None:
    first = service.create_allocation(
        AllocationInput("emp-1", "prj-a", date(2025, 3, 1), date(2025, 3, 15), 10.0)
    ).allocation
    second = service.create_allocation(
        AllocationInput("emp-1", "prj-b", date(2025, 3, 15), date(2025, 3, 31), 10.0)
    ).allocation
    service.cancel_allocation(second.allocation_id)
    detector = OverlapDetector(repository=repository)

    overlaps = detector.find_overlaps("emp-1", date(2025, 3, 10), date(2025, 3, 20))

    assert [record.allocation_id for record in overlaps] == [first.allocation_id]
    assert overlaps[0].project_name == "Apollo"
    assert detector.find_overlaps(
        "emp-1",
        date(2025, 3, 10),
        date(2025, 3, 20),
        exclude_allocation_id=first.allocation_id,
    ) == []


def test_detector_rejects_inverted_range(repository) -> None:
    with pytest.raises(InvalidRangeError):
        OverlapDetector(repository=repository).find_overlaps(
            "emp-1", date(2025, 3, 20), date(2025, 3, 10)
        )

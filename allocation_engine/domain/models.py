"""Domain models for allocation conflict detection and capacity utilization."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Optional


class AllocationStatus(str, Enum):
    TENTATIVE = "tentative"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_ALLOCATION_STATUSES


ACTIVE_ALLOCATION_STATUSES = frozenset(
    {AllocationStatus.TENTATIVE, AllocationStatus.CONFIRMED}
)


class ProjectStatus(str, Enum):
    PLANNING = "planning"
    ACTIVE = "active"
    COMPLETED = "completed"
    INACTIVE = "inactive"


ALLOCATABLE_PROJECT_STATUSES = frozenset({ProjectStatus.PLANNING, ProjectStatus.ACTIVE})


class ConflictLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"
    BLOCKING = "blocking"

    @property
    def rank(self) -> int:
        return _CONFLICT_LEVEL_RANK[self]


_CONFLICT_LEVEL_RANK = {
    ConflictLevel.INFO: 0,
    ConflictLevel.WARNING: 1,
    ConflictLevel.CRITICAL: 2,
    ConflictLevel.BLOCKING: 3,
}


class OverlapKind(str, Enum):
    NONE = "none"
    CONTAINED = "contained"
    PARTIAL = "partial"


class SuggestionType(str, Enum):
    REDUCE_ALLOCATION = "reduce-allocation"
    REDISTRIBUTE_WORK = "redistribute-work"
    RESCHEDULE = "reschedule"
    HIRE_ADDITIONAL = "hire-additional"


@dataclass(frozen=True)
class Employee:
    employee_id: str
    name: str
    weekly_capacity_hours: float = 40.0
    is_active: bool = True


@dataclass(frozen=True)
class Project:
    project_id: str
    name: str
    status: ProjectStatus = ProjectStatus.ACTIVE
    priority: int = 0
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @property
    def is_allocatable(self) -> bool:
        return self.status in ALLOCATABLE_PROJECT_STATUSES


@dataclass(frozen=True)
class Allocation:
    """A time-bounded weekly hours commitment of an employee to a project."""

    allocation_id: str
    employee_id: str
    project_id: str
    start_date: date
    end_date: date
    allocated_hours: float
    status: AllocationStatus = AllocationStatus.TENTATIVE
    role: str = ""
    notes: str = ""
    actual_hours: Optional[float] = None
    project_name: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


@dataclass(frozen=True)
class AllocationInput:
    """Create payload; the id and status are assigned by the service."""

    employee_id: str
    project_id: str
    start_date: date
    end_date: date
    allocated_hours: float
    role: str = ""
    notes: str = ""


@dataclass(frozen=True)
class AllocationPatch:
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    allocated_hours: Optional[float] = None
    role: Optional[str] = None
    notes: Optional[str] = None

    @property
    def changes_capacity(self) -> bool:
        return (
            self.start_date is not None
            or self.end_date is not None
            or self.allocated_hours is not None
        )


@dataclass(frozen=True)
class AllocationUpdate:
    """One item of a bulk reschedule, typically produced by a drag gesture."""

    allocation_id: str
    start_date: date
    end_date: date
    allocated_hours: Optional[float] = None


@dataclass(frozen=True)
class OverlapRecord:
    allocation_id: str
    project_id: str
    project_name: str
    start_date: date
    end_date: date
    allocated_hours: float
    status: AllocationStatus


@dataclass(frozen=True)
class DailyUtilization:
    day: date
    allocated_hours: float
    utilization_percent: float


@dataclass(frozen=True)
class UtilizationSegment:
    """Maximal run of days sharing the same cumulative allocated hours."""

    start_date: date
    end_date: date
    allocated_hours: float
    utilization_percent: float
    allocation_ids: tuple[str, ...] = ()

    @property
    def days(self) -> int:
        return (self.end_date - self.start_date).days + 1


@dataclass(frozen=True)
class WeeklyUtilization:
    week_start: date
    week_end: date
    allocated_hours: float
    utilization_percent: float


@dataclass(frozen=True)
class UtilizationResult:
    employee_id: str
    weekly_capacity_hours: float
    start_date: Optional[date]
    end_date: Optional[date]
    total_allocated_hours: float
    utilization_rate_percent: float
    peak_allocated_hours: float
    peak_utilization_percent: float
    allocation_count: int
    daily_breakdown: list[DailyUtilization] = field(default_factory=list)
    segments: list[UtilizationSegment] = field(default_factory=list)
    weekly_breakdown: list[WeeklyUtilization] = field(default_factory=list)


@dataclass(frozen=True)
class TeamUtilizationSummary:
    total_employees: int
    average_utilization_percent: float
    overutilized_count: int
    underutilized_count: int
    total_active_allocations: int
    conflicting_employee_count: int


@dataclass(frozen=True)
class Classification:
    level: ConflictLevel
    message: str


@dataclass(frozen=True)
class ContributingAllocation:
    """One allocation's share of a conflict; `allocation_id` is None for a new candidate."""

    allocation_id: Optional[str]
    project_id: str
    project_name: str
    start_date: date
    end_date: date
    allocated_hours: float
    utilization_percent: float
    is_candidate: bool = False


@dataclass(frozen=True)
class Conflict:
    employee_id: str
    level: ConflictLevel
    message: str
    start_date: date
    end_date: date
    utilization_rate_percent: float
    current_utilization_percent: float
    proposed_utilization_percent: float
    weekly_capacity_hours: float
    overlap_kind: OverlapKind = OverlapKind.NONE
    allocation_id: Optional[str] = None
    detail: str = ""
    contributing_allocations: list[ContributingAllocation] = field(default_factory=list)
    segments: list[UtilizationSegment] = field(default_factory=list)

    @property
    def is_blocking(self) -> bool:
        return self.level is ConflictLevel.BLOCKING


@dataclass(frozen=True)
class ConflictFilters:
    employee_id: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    min_level: ConflictLevel = ConflictLevel.WARNING


@dataclass(frozen=True)
class Suggestion:
    suggestion_type: SuggestionType
    rationale: str
    hours_change: float
    estimated_utilization_delta: float
    allocation_id: Optional[str] = None
    suggested_start_date: Optional[date] = None


@dataclass(frozen=True)
class AllocationWriteResult:
    allocation: Allocation
    conflicts: list[Conflict] = field(default_factory=list)


@dataclass(frozen=True)
class OverAllocationBlocked:
    """Policy rejection returned instead of raised so callers can inspect and force."""

    utilization_rate_percent: float
    conflict: Conflict
    suggestions: list[Suggestion] = field(default_factory=list)

    @property
    def contributing_allocations(self) -> list[ContributingAllocation]:
        return self.conflict.contributing_allocations

    @property
    def message(self) -> str:
        return self.conflict.message


@dataclass(frozen=True)
class FailedUpdate:
    allocation_id: str
    error: str
    error_kind: str


@dataclass(frozen=True)
class BulkUpdateResult:
    updated: list[Allocation]
    conflicts: list[Conflict]
    failed: list[FailedUpdate]
    committed: bool

    @property
    def rolled_back(self) -> bool:
        return not self.committed

    @property
    def first_error(self) -> Optional[FailedUpdate]:
        return self.failed[0] if self.failed else None

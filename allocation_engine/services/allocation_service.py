"""Business logic orchestration for allocation writes and capacity queries."""

from __future__ import annotations

import sqlite3
from dataclasses import replace
from datetime import date
from typing import Optional, Sequence, Union
from uuid import uuid4

from allocation_engine.domain.constraints import (
    validate_allocated_hours,
    validate_allocation_references,
    validate_date_range,
    validate_within_project_window,
)
from allocation_engine.domain.errors import (
    AllocationNotFoundError,
    InvalidRangeError,
    InvalidTransitionError,
)
from allocation_engine.domain.models import (
    Allocation,
    AllocationInput,
    AllocationPatch,
    AllocationStatus,
    AllocationUpdate,
    AllocationWriteResult,
    BulkUpdateResult,
    Conflict,
    ConflictFilters,
    ConflictLevel,
    Employee,
    OverAllocationBlocked,
    Project,
    Suggestion,
    TeamUtilizationSummary,
    UtilizationResult,
)
from allocation_engine.repository.allocation_repository import AllocationRepository
from allocation_engine.services.advisor_service import ConflictResolutionAdvisor
from allocation_engine.services.conflict_service import (
    ConflictClassifier,
    evaluate_candidate,
    find_stored_conflicts,
)
from allocation_engine.services.notification_service import (
    AllocationEvent,
    AllocationEventNotifier,
)
from allocation_engine.services.overlap_service import OverlapDetector
from allocation_engine.services.rescheduler_service import BulkRescheduler
from allocation_engine.services.utilization_service import UtilizationCalculator
from allocation_engine.utils.config import Settings, get_settings
from allocation_engine.utils.logger import get_logger


logger = get_logger(__name__)

WriteOutcome = Union[AllocationWriteResult, OverAllocationBlocked]

_PREVIEW_ALLOCATION_ID = ""


class AllocationService:
    """Entry point used by controllers: preview, create, update, reschedule, report."""

    def __init__(
        self,
        repository: Optional[AllocationRepository] = None,
        settings: Optional[Settings] = None,
        overlap_detector: Optional[OverlapDetector] = None,
        utilization_calculator: Optional[UtilizationCalculator] = None,
        classifier: Optional[ConflictClassifier] = None,
        advisor: Optional[ConflictResolutionAdvisor] = None,
        rescheduler: Optional[BulkRescheduler] = None,
        notifier: Optional[AllocationEventNotifier] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or AllocationRepository(self._settings)
        self._overlap_detector = overlap_detector or OverlapDetector(
            repository=self._repository,
            settings=self._settings,
        )
        self._utilization_calculator = utilization_calculator or UtilizationCalculator(
            repository=self._repository,
            settings=self._settings,
        )
        self._classifier = classifier or ConflictClassifier(settings=self._settings)
        self._advisor = advisor or ConflictResolutionAdvisor(
            thresholds=self._classifier.thresholds,
        )
        self._rescheduler = rescheduler or BulkRescheduler(
            repository=self._repository,
            settings=self._settings,
            classifier=self._classifier,
        )
        self._notifier = notifier

    def _validate_input(self, payload: AllocationInput) -> None:
        validate_date_range(payload.start_date, payload.end_date)
        validate_allocated_hours(payload.allocated_hours, self._settings.max_allocated_hours)

    def _resolve_references(
        self,
        employee_id: str,
        project_id: str,
        start_date: date,
        end_date: date,
        connection: Optional[sqlite3.Connection] = None,
    ) -> tuple[Employee, Project]:
        employee = self._repository.get_employee(employee_id, connection=connection)
        project = self._repository.get_project(project_id, connection=connection)
        validate_allocation_references(employee_id, employee, project_id, project)
        validate_within_project_window(start_date, end_date, project.start_date, project.end_date)
        return employee, project

    def _require_allocation(
        self,
        allocation_id: str,
        connection: Optional[sqlite3.Connection] = None,
    ) -> Allocation:
        allocation = self._repository.get_allocation(allocation_id, connection=connection)
        if allocation is None:
            raise AllocationNotFoundError(f"Allocation {allocation_id} not found")
        return allocation

    def _evaluate(
        self,
        employee: Employee,
        candidate: Allocation,
        *,
        is_new_allocation: bool,
        force: bool,
        connection: Optional[sqlite3.Connection] = None,
    ) -> Optional[Conflict]:
        existing = self._overlap_detector.overlapping_allocations(
            employee.employee_id,
            candidate.start_date,
            candidate.end_date,
            exclude_allocation_id=None if is_new_allocation else candidate.allocation_id,
            connection=connection,
        )
        return evaluate_candidate(
            employee,
            candidate,
            existing,
            self._classifier,
            is_new_allocation=is_new_allocation,
            force=force,
        )

    def _blocked(self, conflict: Conflict) -> OverAllocationBlocked:
        logger.info(
            "Over-allocation blocked | employee_id=%s | utilization=%.2f%% | contributors=%s",
            conflict.employee_id,
            conflict.utilization_rate_percent,
            len(conflict.contributing_allocations),
        )
        return OverAllocationBlocked(
            utilization_rate_percent=conflict.utilization_rate_percent,
            conflict=conflict,
            suggestions=self._advisor.suggest(conflict),
        )

    def _notify(
        self,
        event_type: str,
        allocations: Sequence[Allocation],
        conflicts: Sequence[Conflict],
    ) -> None:
        if self._notifier is None:
            return
        alerts = [
            conflict for conflict in conflicts if conflict.level.rank >= ConflictLevel.WARNING.rank
        ]
        if not alerts:
            return
        self._notifier.publish(
            AllocationEvent(
                event_type=event_type,
                employee_ids=tuple(sorted({allocation.employee_id for allocation in allocations})),
                allocation_ids=tuple(allocation.allocation_id for allocation in allocations),
                conflicts=alerts,
            )
        )

    def get_allocation(self, allocation_id: str) -> Allocation:
        return self._require_allocation(allocation_id)

    def check_conflicts(
        self,
        candidate: AllocationInput,
        exclude_allocation_id: Optional[str] = None,
    ) -> list[Conflict]:
        """Preview conflicts for a prospective create or update without writing."""
        self._validate_input(candidate)
        employee, project = self._resolve_references(
            candidate.employee_id,
            candidate.project_id,
            candidate.start_date,
            candidate.end_date,
        )
        proposed = Allocation(
            allocation_id=exclude_allocation_id or _PREVIEW_ALLOCATION_ID,
            employee_id=employee.employee_id,
            project_id=project.project_id,
            start_date=candidate.start_date,
            end_date=candidate.end_date,
            allocated_hours=candidate.allocated_hours,
            role=candidate.role,
            notes=candidate.notes,
            project_name=project.name,
        )
        conflict = self._evaluate(
            employee,
            proposed,
            is_new_allocation=exclude_allocation_id is None,
            force=False,
        )
        return [conflict] if conflict is not None else []

    def create_allocation(
        self,
        payload: AllocationInput,
        *,
        check_conflicts: bool = True,
        force: bool = False,
    ) -> WriteOutcome:
        """Create a tentative allocation.

        With `check_conflicts` disabled the conflicts are still computed and
        reported, but over-allocation never blocks the write.
        """
        self._validate_input(payload)
        conflicts: list[Conflict] = []
        with self._repository.transaction() as conn:
            employee, project = self._resolve_references(
                payload.employee_id,
                payload.project_id,
                payload.start_date,
                payload.end_date,
                connection=conn,
            )
            allocation = Allocation(
                allocation_id=str(uuid4()),
                employee_id=employee.employee_id,
                project_id=project.project_id,
                start_date=payload.start_date,
                end_date=payload.end_date,
                allocated_hours=payload.allocated_hours,
                status=AllocationStatus.TENTATIVE,
                role=payload.role,
                notes=payload.notes,
                project_name=project.name,
            )
            conflict = self._evaluate(
                employee,
                allocation,
                is_new_allocation=True,
                force=force or not check_conflicts,
                connection=conn,
            )
            if conflict is not None:
                if conflict.is_blocking:
                    return self._blocked(conflict)
                conflicts.append(conflict)
            self._repository.insert_allocation(allocation, conn)

        logger.info(
            "Allocation created | allocation_id=%s | employee_id=%s | project_id=%s | hours=%.2f | conflicts=%s | force=%s",
            allocation.allocation_id,
            allocation.employee_id,
            allocation.project_id,
            allocation.allocated_hours,
            len(conflicts),
            force,
        )
        self._notify("allocation.created", [allocation], conflicts)
        return AllocationWriteResult(allocation=allocation, conflicts=conflicts)

    def update_allocation(
        self,
        allocation_id: str,
        patch: AllocationPatch,
        *,
        force: bool = False,
    ) -> WriteOutcome:
        """Apply a patch; date or hour changes are re-checked against the proposed range."""
        if patch.allocated_hours is not None:
            validate_allocated_hours(patch.allocated_hours, self._settings.max_allocated_hours)
        conflicts: list[Conflict] = []
        with self._repository.transaction() as conn:
            current = self._require_allocation(allocation_id, connection=conn)
            proposed = replace(
                current,
                start_date=patch.start_date or current.start_date,
                end_date=patch.end_date or current.end_date,
                allocated_hours=(
                    patch.allocated_hours
                    if patch.allocated_hours is not None
                    else current.allocated_hours
                ),
                role=patch.role if patch.role is not None else current.role,
                notes=patch.notes if patch.notes is not None else current.notes,
            )
            validate_date_range(proposed.start_date, proposed.end_date)

            if patch.changes_capacity:
                if not current.is_active:
                    raise InvalidTransitionError(
                        f"Cannot change dates or hours of a {current.status.value} allocation"
                    )
                employee, _ = self._resolve_references(
                    current.employee_id,
                    current.project_id,
                    proposed.start_date,
                    proposed.end_date,
                    connection=conn,
                )
                conflict = self._evaluate(
                    employee,
                    proposed,
                    is_new_allocation=False,
                    force=force,
                    connection=conn,
                )
                if conflict is not None:
                    if conflict.is_blocking:
                        return self._blocked(conflict)
                    conflicts.append(conflict)

            self._repository.save_allocation(proposed, conn)

        logger.info(
            "Allocation updated | allocation_id=%s | range=%s..%s | hours=%.2f | conflicts=%s | force=%s",
            allocation_id,
            proposed.start_date.isoformat(),
            proposed.end_date.isoformat(),
            proposed.allocated_hours,
            len(conflicts),
            force,
        )
        self._notify("allocation.updated", [proposed], conflicts)
        return AllocationWriteResult(allocation=proposed, conflicts=conflicts)

    def bulk_update_allocations(
        self,
        updates: Sequence[AllocationUpdate],
        *,
        force: bool = False,
    ) -> BulkUpdateResult:
        result = self._rescheduler.apply(updates, force=force)
        if result.committed:
            self._notify("allocations.rescheduled", result.updated, result.conflicts)
        return result

    def _transition(
        self,
        allocation_id: str,
        target: AllocationStatus,
        allowed_from: frozenset[AllocationStatus],
        actual_hours: Optional[float] = None,
    ) -> Allocation:
        with self._repository.transaction() as conn:
            current = self._require_allocation(allocation_id, connection=conn)
            if current.status not in allowed_from:
                raise InvalidTransitionError(
                    f"Cannot move allocation {allocation_id} from {current.status.value} to {target.value}"
                )
            updated = replace(
                current,
                status=target,
                actual_hours=actual_hours if actual_hours is not None else current.actual_hours,
            )
            self._repository.save_allocation(updated, conn)
        logger.info(
            "Allocation status changed | allocation_id=%s | from=%s | to=%s",
            allocation_id,
            current.status.value,
            target.value,
        )
        return updated

    def confirm_allocation(self, allocation_id: str) -> Allocation:
        return self._transition(
            allocation_id,
            AllocationStatus.CONFIRMED,
            frozenset({AllocationStatus.TENTATIVE}),
        )

    def complete_allocation(
        self,
        allocation_id: str,
        actual_hours: Optional[float] = None,
    ) -> Allocation:
        if actual_hours is not None and actual_hours < 0:
            raise InvalidRangeError("actual_hours must be >= 0")
        return self._transition(
            allocation_id,
            AllocationStatus.COMPLETED,
            frozenset({AllocationStatus.TENTATIVE, AllocationStatus.CONFIRMED}),
            actual_hours=actual_hours,
        )

    def cancel_allocation(self, allocation_id: str) -> Allocation:
        return self._transition(
            allocation_id,
            AllocationStatus.CANCELLED,
            frozenset({AllocationStatus.TENTATIVE, AllocationStatus.CONFIRMED}),
        )

    def get_employee_utilization(
        self,
        employee_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> UtilizationResult:
        return self._utilization_calculator.get_employee_utilization(
            employee_id,
            start_date=start_date,
            end_date=end_date,
        )

    def get_utilization_summary(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> TeamUtilizationSummary:
        return self._utilization_calculator.summarize_team(start_date, end_date)

    def get_conflicts(self, filters: Optional[ConflictFilters] = None) -> list[Conflict]:
        """Scan persisted allocations for periods classified at `min_level` or above."""
        filters = filters or ConflictFilters()
        if filters.start_date is not None and filters.end_date is not None:
            validate_date_range(filters.start_date, filters.end_date)

        if filters.employee_id is not None:
            employee = self._repository.get_employee(filters.employee_id)
            if employee is None:
                raise AllocationNotFoundError(f"Employee {filters.employee_id} not found")
            employees = [employee]
        else:
            employees = self._repository.list_employees(active_only=True)

        allocations = self._repository.list_active_allocations(
            employee_id=filters.employee_id,
            start_date=filters.start_date,
            end_date=filters.end_date,
        )
        by_employee: dict[str, list[Allocation]] = {}
        for allocation in allocations:
            by_employee.setdefault(allocation.employee_id, []).append(allocation)

        conflicts: list[Conflict] = []
        for employee in employees:
            owned = by_employee.get(employee.employee_id)
            if not owned:
                continue
            conflicts.extend(
                find_stored_conflicts(
                    employee,
                    owned,
                    self._classifier,
                    start_date=filters.start_date or min(item.start_date for item in owned),
                    end_date=filters.end_date or max(item.end_date for item in owned),
                    min_level=filters.min_level,
                )
            )
        conflicts.sort(key=lambda conflict: (conflict.start_date, conflict.employee_id))
        return conflicts

    def suggest_resolutions(self, conflict: Conflict) -> list[Suggestion]:
        return self._advisor.suggest(conflict)

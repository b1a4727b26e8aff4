"""Atomic multi-allocation rescheduling backing drag-to-move and drag-to-resize."""

from __future__ import annotations

import sqlite3
from collections import Counter
from dataclasses import replace
from typing import Optional, Sequence

from allocation_engine.domain.constraints import (
    validate_allocated_hours,
    validate_allocation_references,
    validate_date_range,
    validate_within_project_window,
)
from allocation_engine.domain.errors import (
    AllocationError,
    AllocationNotFoundError,
    InvalidTransitionError,
)
from allocation_engine.domain.models import (
    Allocation,
    AllocationUpdate,
    BulkUpdateResult,
    Conflict,
    Employee,
    FailedUpdate,
)
from allocation_engine.repository.allocation_repository import AllocationRepository
from allocation_engine.services.conflict_service import ConflictClassifier, evaluate_candidate
from allocation_engine.utils.config import Settings, get_settings
from allocation_engine.utils.logger import get_logger


logger = get_logger(__name__)

OVER_ALLOCATION_BLOCKED = "over_allocation_blocked"
DUPLICATE_UPDATE = "duplicate_update"


class BulkRescheduler:
    """Validates a batch against its own projected state, then commits it whole.

    Each item is checked against the pre-batch snapshot overlaid with every
    change in the batch, so swapping two allocations never reports a false
    conflict and two items moved onto the same days are caught. Nothing is
    written unless every item passes (or `force` downgrades over-allocation).
    """

    def __init__(
        self,
        repository: Optional[AllocationRepository] = None,
        settings: Optional[Settings] = None,
        classifier: Optional[ConflictClassifier] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or AllocationRepository(self._settings)
        self._classifier = classifier or ConflictClassifier(settings=self._settings)

    def apply(
        self,
        updates: Sequence[AllocationUpdate],
        *,
        force: bool = False,
    ) -> BulkUpdateResult:
        if not updates:
            return BulkUpdateResult(updated=[], conflicts=[], failed=[], committed=True)

        with self._repository.transaction() as conn:
            result = self._apply_in_transaction(updates, force=force, connection=conn)

        if result.committed:
            logger.info(
                "Bulk reschedule committed | updated=%s | conflicts=%s | force=%s",
                len(result.updated),
                len(result.conflicts),
                force,
            )
        else:
            first_error = result.first_error
            logger.warning(
                "Bulk reschedule rolled back | items=%s | failed=%s | first_allocation=%s | first_error=%s",
                len(updates),
                len(result.failed),
                first_error.allocation_id if first_error else None,
                first_error.error if first_error else None,
            )
        return result

    def _apply_in_transaction(
        self,
        updates: Sequence[AllocationUpdate],
        *,
        force: bool,
        connection: sqlite3.Connection,
    ) -> BulkUpdateResult:
        failed: list[FailedUpdate] = []
        counts = Counter(update.allocation_id for update in updates)
        stored = self._repository.get_allocations(list(counts), connection=connection)

        proposed: dict[str, Allocation] = {}
        for update in updates:
            if counts[update.allocation_id] > 1:
                if not any(item.allocation_id == update.allocation_id for item in failed):
                    failed.append(
                        FailedUpdate(
                            allocation_id=update.allocation_id,
                            error="Allocation appears more than once in the batch",
                            error_kind=DUPLICATE_UPDATE,
                        )
                    )
                continue
            try:
                proposed[update.allocation_id] = self._project_update(
                    update,
                    stored.get(update.allocation_id),
                    connection,
                )
            except AllocationError as exc:
                failed.append(
                    FailedUpdate(
                        allocation_id=update.allocation_id,
                        error=str(exc),
                        error_kind=exc.kind,
                    )
                )

        conflicts: list[Conflict] = []
        employees: dict[str, Employee] = {}
        snapshots: dict[str, list[Allocation]] = {}
        for update in updates:
            candidate = proposed.get(update.allocation_id)
            if candidate is None:
                continue
            employee_id = candidate.employee_id
            if employee_id not in employees:
                employees[employee_id] = self._repository.get_employee(
                    employee_id, connection=connection
                )
                snapshots[employee_id] = self._projected_snapshot(
                    employee_id, proposed, connection
                )
            conflict = evaluate_candidate(
                employees[employee_id],
                candidate,
                snapshots[employee_id],
                self._classifier,
                is_new_allocation=False,
                force=force,
            )
            if conflict is None:
                continue
            conflicts.append(conflict)
            if conflict.is_blocking:
                failed.append(
                    FailedUpdate(
                        allocation_id=update.allocation_id,
                        error=f"{conflict.message}. {conflict.detail}",
                        error_kind=OVER_ALLOCATION_BLOCKED,
                    )
                )

        if failed:
            order = {update.allocation_id: index for index, update in enumerate(updates)}
            failed.sort(key=lambda item: order.get(item.allocation_id, len(order)))
            return BulkUpdateResult(updated=[], conflicts=conflicts, failed=failed, committed=False)

        updated = [proposed[update.allocation_id] for update in updates]
        self._repository.save_allocations(updated, connection)
        return BulkUpdateResult(updated=updated, conflicts=conflicts, failed=[], committed=True)

    def _project_update(
        self,
        update: AllocationUpdate,
        current: Optional[Allocation],
        connection: sqlite3.Connection,
    ) -> Allocation:
        if current is None:
            raise AllocationNotFoundError(f"Allocation {update.allocation_id} not found")
        if not current.is_active:
            raise InvalidTransitionError(
                f"Cannot reschedule a {current.status.value} allocation"
            )
        validate_date_range(update.start_date, update.end_date)
        hours = (
            update.allocated_hours
            if update.allocated_hours is not None
            else current.allocated_hours
        )
        validate_allocated_hours(hours, self._settings.max_allocated_hours)
        employee = self._repository.get_employee(current.employee_id, connection=connection)
        project = self._repository.get_project(current.project_id, connection=connection)
        validate_allocation_references(current.employee_id, employee, current.project_id, project)
        validate_within_project_window(
            update.start_date,
            update.end_date,
            project.start_date,
            project.end_date,
        )
        return replace(
            current,
            start_date=update.start_date,
            end_date=update.end_date,
            allocated_hours=hours,
        )

    def _projected_snapshot(
        self,
        employee_id: str,
        proposed: dict[str, Allocation],
        connection: sqlite3.Connection,
    ) -> list[Allocation]:
        """Pre-batch active allocations with the batch's changes overlaid."""
        return [
            proposed.get(allocation.allocation_id, allocation)
            for allocation in self._repository.list_active_allocations(
                employee_id=employee_id,
                connection=connection,
            )
        ]

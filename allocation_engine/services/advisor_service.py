"""Advisory remediation suggestions for classified conflicts.

Suggestions never mutate state. They are ranked by the number of weekly
hours they move, smallest first, and hiring always ranks last.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

from allocation_engine.domain.constraints import FULL_CAPACITY_PERCENT, CapacityThresholds
from allocation_engine.domain.models import (
    Conflict,
    ConflictLevel,
    ContributingAllocation,
    Suggestion,
    SuggestionType,
)
from allocation_engine.services.conflict_service import format_percent
from allocation_engine.services.utilization_service import to_percent
from allocation_engine.utils.config import Settings, get_settings
from allocation_engine.utils.logger import get_logger


logger = get_logger(__name__)

_TYPE_ORDER = {
    SuggestionType.REDUCE_ALLOCATION: 0,
    SuggestionType.REDISTRIBUTE_WORK: 1,
    SuggestionType.RESCHEDULE: 2,
    SuggestionType.HIRE_ADDITIONAL: 3,
}


def _hours(value: float) -> str:
    return f"{round(value, 2):g}h/week"


class ConflictResolutionAdvisor:
    """Proposes ranked actions that would bring a conflict back under threshold."""

    def __init__(
        self,
        thresholds: Optional[CapacityThresholds] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._thresholds = thresholds or CapacityThresholds.from_settings(
            settings or get_settings()
        )

    def _target_percent(self, conflict: Conflict) -> float:
        if conflict.level is ConflictLevel.WARNING:
            return self._thresholds.warning_percent
        return FULL_CAPACITY_PERCENT

    def suggest(self, conflict: Conflict) -> list[Suggestion]:
        if conflict.level is ConflictLevel.INFO:
            return []

        capacity = conflict.weekly_capacity_hours
        target = self._target_percent(conflict)
        excess_percent = round(max(0.0, conflict.utilization_rate_percent - target), 2)
        excess_hours = round(excess_percent / 100.0 * capacity, 2)
        over_allocated = conflict.level in (ConflictLevel.BLOCKING, ConflictLevel.CRITICAL)

        contributors = list(conflict.contributing_allocations)
        candidate = next((item for item in contributors if item.is_candidate), None)
        others = [item for item in contributors if not item.is_candidate]

        suggestions: list[Suggestion] = []
        suggestions.extend(
            self._reduce_suggestions(candidate, others, excess_hours, capacity, target)
        )
        if not suggestions and over_allocated:
            suggestions.append(
                Suggestion(
                    suggestion_type=SuggestionType.REDUCE_ALLOCATION,
                    rationale=(
                        f"Reduce allocated hours by {_hours(excess_hours)} to bring "
                        f"utilization down to {format_percent(target)}"
                    ),
                    hours_change=excess_hours,
                    estimated_utilization_delta=-excess_percent,
                    allocation_id=conflict.allocation_id,
                )
            )

        suggestions.append(
            Suggestion(
                suggestion_type=SuggestionType.REDISTRIBUTE_WORK,
                rationale=(
                    f"Redistribute {_hours(excess_hours)} of this work to other team "
                    "members with available capacity"
                ),
                hours_change=excess_hours,
                estimated_utilization_delta=-excess_percent,
            )
        )

        reschedule = self._reschedule_suggestion(candidate, others, capacity)
        if reschedule is not None:
            suggestions.append(reschedule)

        suggestions.sort(
            key=lambda item: (item.hours_change, _TYPE_ORDER[item.suggestion_type])
        )
        if over_allocated:
            suggestions.append(
                Suggestion(
                    suggestion_type=SuggestionType.HIRE_ADDITIONAL,
                    rationale=(
                        f"Hire or contract additional capacity covering {_hours(excess_hours)} "
                        f"from {conflict.start_date.isoformat()} to {conflict.end_date.isoformat()}"
                    ),
                    hours_change=excess_hours,
                    estimated_utilization_delta=-excess_percent,
                )
            )

        logger.debug(
            "Suggestions generated | employee_id=%s | level=%s | count=%s",
            conflict.employee_id,
            conflict.level.value,
            len(suggestions),
        )
        return suggestions

    def _reduce_suggestions(
        self,
        candidate: Optional[ContributingAllocation],
        others: list[ContributingAllocation],
        excess_hours: float,
        capacity: float,
        target: float,
    ) -> list[Suggestion]:
        suggestions: list[Suggestion] = []
        if excess_hours <= 0:
            return suggestions

        if candidate is not None:
            change = min(excess_hours, candidate.allocated_hours)
            suggestions.append(
                Suggestion(
                    suggestion_type=SuggestionType.REDUCE_ALLOCATION,
                    rationale=(
                        f"Reduce the {candidate.project_name} allocation from "
                        f"{_hours(candidate.allocated_hours)} to "
                        f"{_hours(candidate.allocated_hours - change)} to stay within "
                        f"{format_percent(target)}"
                    ),
                    hours_change=change,
                    estimated_utilization_delta=-to_percent(change, capacity),
                    allocation_id=candidate.allocation_id,
                )
            )

        absorbers = [item for item in others if item.allocated_hours >= excess_hours]
        if absorbers:
            chosen = min(absorbers, key=lambda item: (item.allocated_hours, item.project_name))
        elif others and candidate is None:
            chosen = max(others, key=lambda item: (item.allocated_hours, item.project_name))
        else:
            chosen = None
        if chosen is not None:
            change = min(excess_hours, chosen.allocated_hours)
            suggestions.append(
                Suggestion(
                    suggestion_type=SuggestionType.REDUCE_ALLOCATION,
                    rationale=(
                        f"Reduce the existing {chosen.project_name} allocation by "
                        f"{_hours(change)}"
                    ),
                    hours_change=change,
                    estimated_utilization_delta=-to_percent(change, capacity),
                    allocation_id=chosen.allocation_id,
                )
            )
        return suggestions

    def _reschedule_suggestion(
        self,
        candidate: Optional[ContributingAllocation],
        others: list[ContributingAllocation],
        capacity: float,
    ) -> Optional[Suggestion]:
        if candidate is not None:
            mover, blockers = candidate, others
        elif len(others) > 1:
            mover = max(others, key=lambda item: (item.start_date, -item.allocated_hours))
            blockers = [item for item in others if item is not mover]
        else:
            return None
        if not blockers:
            return None

        suggested_start = max(item.end_date for item in blockers) + timedelta(days=1)
        return Suggestion(
            suggestion_type=SuggestionType.RESCHEDULE,
            rationale=(
                f"Consider starting {mover.project_name} after "
                f"{(suggested_start - timedelta(days=1)).isoformat()}, once the "
                "overlapping allocations end"
            ),
            hours_change=mover.allocated_hours,
            estimated_utilization_delta=-to_percent(mover.allocated_hours, capacity),
            allocation_id=mover.allocation_id,
            suggested_start_date=suggested_start,
        )

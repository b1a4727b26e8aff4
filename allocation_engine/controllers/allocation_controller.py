"""HTTP controller layer for allocation writes, conflicts and utilization."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from allocation_engine.controllers.dependencies import get_allocation_service
from allocation_engine.domain.errors import (
    AllocationError,
    AllocationNotFoundError,
    InvalidRangeError,
    InvalidTransitionError,
    ReferenceViolationError,
)
from allocation_engine.domain.models import (
    AllocationInput,
    AllocationPatch,
    AllocationStatus,
    AllocationUpdate,
    ConflictFilters,
    ConflictLevel,
    OverAllocationBlocked,
    OverlapKind,
    SuggestionType,
)
from allocation_engine.services.allocation_service import AllocationService, WriteOutcome
from allocation_engine.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["allocations"])

_ERROR_STATUS = (
    (AllocationNotFoundError, status.HTTP_404_NOT_FOUND),
    (ReferenceViolationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvalidRangeError, status.HTTP_400_BAD_REQUEST),
    (InvalidTransitionError, status.HTTP_400_BAD_REQUEST),
)


class _ResponseModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class AllocationCandidateRequest(BaseModel):
    """Input DTO; range and hour rules are enforced by the service layer."""

    employee_id: str = Field(min_length=1)
    project_id: str = Field(min_length=1)
    start_date: date
    end_date: date
    allocated_hours: float
    role: str = ""
    notes: str = ""

    def to_domain(self) -> AllocationInput:
        return AllocationInput(
            employee_id=self.employee_id,
            project_id=self.project_id,
            start_date=self.start_date,
            end_date=self.end_date,
            allocated_hours=self.allocated_hours,
            role=self.role,
            notes=self.notes,
        )


class CheckConflictsRequest(AllocationCandidateRequest):
    exclude_allocation_id: str | None = None


class CreateAllocationRequest(AllocationCandidateRequest):
    check_conflicts: bool = True
    force: bool = False


class UpdateAllocationRequest(BaseModel):
    start_date: date | None = None
    end_date: date | None = None
    allocated_hours: float | None = None
    role: str | None = None
    notes: str | None = None
    force: bool = False


class CompleteAllocationRequest(BaseModel):
    actual_hours: float | None = Field(default=None, ge=0.0)


class BulkUpdateItemRequest(BaseModel):
    allocation_id: str = Field(min_length=1)
    start_date: date
    end_date: date
    allocated_hours: float | None = None


class BulkUpdateRequest(BaseModel):
    updates: list[BulkUpdateItemRequest]
    force: bool = False


class AllocationResponse(_ResponseModel):
    allocation_id: str
    employee_id: str
    project_id: str
    project_name: str | None = None
    start_date: date
    end_date: date
    allocated_hours: float
    status: AllocationStatus
    role: str
    notes: str
    actual_hours: float | None = None


class SegmentResponse(_ResponseModel):
    start_date: date
    end_date: date
    allocated_hours: float
    utilization_percent: float
    allocation_ids: list[str] = Field(default_factory=list)


class ContributingAllocationResponse(_ResponseModel):
    allocation_id: str | None = None
    project_id: str
    project_name: str
    start_date: date
    end_date: date
    allocated_hours: float
    utilization_percent: float
    is_candidate: bool


class ConflictResponse(_ResponseModel):
    employee_id: str
    level: ConflictLevel
    message: str
    detail: str
    start_date: date
    end_date: date
    utilization_rate_percent: float
    current_utilization_percent: float
    proposed_utilization_percent: float
    weekly_capacity_hours: float
    overlap_kind: OverlapKind
    allocation_id: str | None = None
    contributing_allocations: list[ContributingAllocationResponse]
    segments: list[SegmentResponse]


class SuggestionResponse(_ResponseModel):
    suggestion_type: SuggestionType
    rationale: str
    hours_change: float
    estimated_utilization_delta: float
    allocation_id: str | None = None
    suggested_start_date: date | None = None


class ConflictWithSuggestionsResponse(BaseModel):
    conflict: ConflictResponse
    suggestions: list[SuggestionResponse]


class AllocationWriteResponse(_ResponseModel):
    allocation: AllocationResponse
    conflicts: list[ConflictResponse]


class OverAllocationBlockedResponse(_ResponseModel):
    message: str
    utilization_rate_percent: float
    contributing_allocations: list[ContributingAllocationResponse]
    conflict: ConflictResponse
    suggestions: list[SuggestionResponse]


class FailedUpdateResponse(_ResponseModel):
    allocation_id: str
    error: str
    error_kind: str


class BulkUpdateResponse(_ResponseModel):
    committed: bool
    updated: list[AllocationResponse]
    conflicts: list[ConflictResponse]
    failed: list[FailedUpdateResponse]
    first_error: FailedUpdateResponse | None = None


class DailyUtilizationResponse(_ResponseModel):
    day: date
    allocated_hours: float
    utilization_percent: float


class WeeklyUtilizationResponse(_ResponseModel):
    week_start: date
    week_end: date
    allocated_hours: float
    utilization_percent: float


class UtilizationResponse(_ResponseModel):
    employee_id: str
    weekly_capacity_hours: float
    start_date: date | None = None
    end_date: date | None = None
    total_allocated_hours: float
    utilization_rate_percent: float
    peak_allocated_hours: float
    peak_utilization_percent: float
    allocation_count: int
    daily_breakdown: list[DailyUtilizationResponse]
    segments: list[SegmentResponse]
    weekly_breakdown: list[WeeklyUtilizationResponse]


class TeamUtilizationSummaryResponse(_ResponseModel):
    total_employees: int
    average_utilization_percent: float
    overutilized_count: int
    underutilized_count: int
    total_active_allocations: int
    conflicting_employee_count: int


def _http_error(exc: AllocationError) -> HTTPException:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _unexpected(action: str) -> HTTPException:
    logger.exception("Unexpected failure while trying to %s", action)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}",
    )


def _write_response(result: WriteOutcome) -> AllocationWriteResponse:
    if isinstance(result, OverAllocationBlocked):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=OverAllocationBlockedResponse.model_validate(result).model_dump(mode="json"),
        )
    return AllocationWriteResponse.model_validate(result)


@router.post(
    "/allocations/check-conflicts",
    response_model=list[ConflictResponse],
    status_code=status.HTTP_200_OK,
)
async def check_conflicts(
    payload: CheckConflictsRequest,
    service: AllocationService = Depends(get_allocation_service),
) -> list[ConflictResponse]:
    """Preview conflicts for a prospective allocation without writing."""
    try:
        conflicts = service.check_conflicts(
            payload.to_domain(),
            exclude_allocation_id=payload.exclude_allocation_id,
        )
    except AllocationError as exc:
        raise _http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("check conflicts") from exc
    return [ConflictResponse.model_validate(conflict) for conflict in conflicts]


@router.post(
    "/allocations",
    response_model=AllocationWriteResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_allocation(
    payload: CreateAllocationRequest,
    service: AllocationService = Depends(get_allocation_service),
) -> AllocationWriteResponse:
    try:
        result = service.create_allocation(
            payload.to_domain(),
            check_conflicts=payload.check_conflicts,
            force=payload.force,
        )
    except AllocationError as exc:
        raise _http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("create allocation") from exc
    return _write_response(result)


@router.post(
    "/allocations/bulk-update",
    response_model=BulkUpdateResponse,
    status_code=status.HTTP_200_OK,
)
async def bulk_update_allocations(
    payload: BulkUpdateRequest,
    service: AllocationService = Depends(get_allocation_service),
) -> BulkUpdateResponse:
    """Apply a drag-and-drop batch atomically; a rolled-back batch answers 409."""
    try:
        result = service.bulk_update_allocations(
            [
                AllocationUpdate(
                    allocation_id=item.allocation_id,
                    start_date=item.start_date,
                    end_date=item.end_date,
                    allocated_hours=item.allocated_hours,
                )
                for item in payload.updates
            ],
            force=payload.force,
        )
    except AllocationError as exc:
        raise _http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("apply bulk update") from exc

    response = BulkUpdateResponse.model_validate(result)
    if not result.committed:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=response.model_dump(mode="json"),
        )
    return response


@router.get(
    "/allocations/{allocation_id}",
    response_model=AllocationResponse,
    status_code=status.HTTP_200_OK,
)
async def get_allocation(
    allocation_id: str,
    service: AllocationService = Depends(get_allocation_service),
) -> AllocationResponse:
    try:
        allocation = service.get_allocation(allocation_id)
    except AllocationError as exc:
        raise _http_error(exc) from exc
    return AllocationResponse.model_validate(allocation)


@router.patch(
    "/allocations/{allocation_id}",
    response_model=AllocationWriteResponse,
    status_code=status.HTTP_200_OK,
)
async def update_allocation(
    allocation_id: str,
    payload: UpdateAllocationRequest,
    service: AllocationService = Depends(get_allocation_service),
) -> AllocationWriteResponse:
    try:
        result = service.update_allocation(
            allocation_id,
            AllocationPatch(
                start_date=payload.start_date,
                end_date=payload.end_date,
                allocated_hours=payload.allocated_hours,
                role=payload.role,
                notes=payload.notes,
            ),
            force=payload.force,
        )
    except AllocationError as exc:
        raise _http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("update allocation") from exc
    return _write_response(result)


@router.post(
    "/allocations/{allocation_id}/confirm",
    response_model=AllocationResponse,
    status_code=status.HTTP_200_OK,
)
async def confirm_allocation(
    allocation_id: str,
    service: AllocationService = Depends(get_allocation_service),
) -> AllocationResponse:
    try:
        allocation = service.confirm_allocation(allocation_id)
    except AllocationError as exc:
        raise _http_error(exc) from exc
    return AllocationResponse.model_validate(allocation)


@router.post(
    "/allocations/{allocation_id}/complete",
    response_model=AllocationResponse,
    status_code=status.HTTP_200_OK,
)
async def complete_allocation(
    allocation_id: str,
    payload: CompleteAllocationRequest | None = None,
    service: AllocationService = Depends(get_allocation_service),
) -> AllocationResponse:
    try:
        allocation = service.complete_allocation(
            allocation_id,
            actual_hours=payload.actual_hours if payload is not None else None,
        )
    except AllocationError as exc:
        raise _http_error(exc) from exc
    return AllocationResponse.model_validate(allocation)


@router.post(
    "/allocations/{allocation_id}/cancel",
    response_model=AllocationResponse,
    status_code=status.HTTP_200_OK,
)
async def cancel_allocation(
    allocation_id: str,
    service: AllocationService = Depends(get_allocation_service),
) -> AllocationResponse:
    try:
        allocation = service.cancel_allocation(allocation_id)
    except AllocationError as exc:
        raise _http_error(exc) from exc
    return AllocationResponse.model_validate(allocation)


@router.get(
    "/employees/{employee_id}/utilization",
    response_model=UtilizationResponse,
    status_code=status.HTTP_200_OK,
)
async def get_employee_utilization(
    employee_id: str,
    start_date: date | None = None,
    end_date: date | None = None,
    service: AllocationService = Depends(get_allocation_service),
) -> UtilizationResponse:
    try:
        result = service.get_employee_utilization(employee_id, start_date, end_date)
    except AllocationError as exc:
        raise _http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("compute utilization") from exc
    return UtilizationResponse.model_validate(result)


@router.get(
    "/conflicts",
    response_model=list[ConflictResponse],
    status_code=status.HTTP_200_OK,
)
async def get_conflicts(
    employee_id: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    min_level: ConflictLevel = ConflictLevel.WARNING,
    service: AllocationService = Depends(get_allocation_service),
) -> list[ConflictResponse]:
    try:
        conflicts = service.get_conflicts(
            ConflictFilters(
                employee_id=employee_id,
                start_date=start_date,
                end_date=end_date,
                min_level=min_level,
            )
        )
    except AllocationError as exc:
        raise _http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("scan conflicts") from exc
    return [ConflictResponse.model_validate(conflict) for conflict in conflicts]


@router.post(
    "/conflicts/suggestions",
    response_model=list[ConflictWithSuggestionsResponse],
    status_code=status.HTTP_200_OK,
)
async def suggest_resolutions(
    payload: CheckConflictsRequest,
    service: AllocationService = Depends(get_allocation_service),
) -> list[ConflictWithSuggestionsResponse]:
    """Evaluate a candidate and attach ranked remediation options to each conflict."""
    try:
        conflicts = service.check_conflicts(
            payload.to_domain(),
            exclude_allocation_id=payload.exclude_allocation_id,
        )
        return [
            ConflictWithSuggestionsResponse(
                conflict=ConflictResponse.model_validate(conflict),
                suggestions=[
                    SuggestionResponse.model_validate(suggestion)
                    for suggestion in service.suggest_resolutions(conflict)
                ],
            )
            for conflict in conflicts
        ]
    except AllocationError as exc:
        raise _http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("suggest resolutions") from exc


@router.get(
    "/utilization/summary",
    response_model=TeamUtilizationSummaryResponse,
    status_code=status.HTTP_200_OK,
)
async def get_utilization_summary(
    start_date: date | None = None,
    end_date: date | None = None,
    service: AllocationService = Depends(get_allocation_service),
) -> TeamUtilizationSummaryResponse:
    try:
        summary = service.get_utilization_summary(start_date, end_date)
    except AllocationError as exc:
        raise _http_error(exc) from exc
    return TeamUtilizationSummaryResponse.model_validate(summary)

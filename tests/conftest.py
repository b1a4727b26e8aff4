from __future__ import annotations

from dataclasses import replace
from datetime import date

import pytest

from allocation_engine.domain.models import ProjectStatus
from allocation_engine.repository.allocation_repository import AllocationRepository
from allocation_engine.services.allocation_service import AllocationService
from allocation_engine.utils.config import get_settings


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / filename,
        database_timeout_seconds=10.0,
        seed_demo_data=False,
    )


@pytest.fixture
def settings(tmp_path):
    return _build_test_settings(tmp_path, "allocations.db")


@pytest.fixture
def repository(settings) -> AllocationRepository:
    repository = AllocationRepository(settings)
    repository.initialize_database()
    repository.create_employee("emp-1", "Ada Park", weekly_capacity_hours=40.0)
    repository.create_employee("emp-2", "Ben Osei", weekly_capacity_hours=40.0)
    repository.create_employee("emp-part", "Cy Lund", weekly_capacity_hours=20.0)
    repository.create_employee("emp-gone", "Dee Marsh", is_active=False)
    repository.create_project("prj-a", "Apollo")
    repository.create_project("prj-b", "Borealis")
    repository.create_project("prj-c", "Cobalt", status=ProjectStatus.PLANNING)
    repository.create_project("prj-done", "Dormant", status=ProjectStatus.COMPLETED)
    repository.create_project(
        "prj-window",
        "Windowed",
        start_date=date(2025, 3, 1),
        end_date=date(2025, 3, 31),
    )
    return repository


@pytest.fixture
def service(repository, settings) -> AllocationService:
    return AllocationService(repository=repository, settings=settings)


@pytest.fixture
def retire(repository):
    """Deactivate an employee or close a project after allocations already reference it."""

    def _retire(employee_id=None, project_id=None, project_status=ProjectStatus.COMPLETED) -> None:
        with repository.transaction() as conn:
            if employee_id is not None:
                conn.execute("UPDATE Employees SET is_active = 0 WHERE id = ?", (employee_id,))
            if project_id is not None:
                conn.execute(
                    "UPDATE Projects SET status = ? WHERE id = ?",
                    (project_status.value, project_id),
                )

    return _retire

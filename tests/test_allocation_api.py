from __future__ import annotations

from dataclasses import replace
from datetime import date

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from allocation_engine.controllers.allocation_controller import router as allocation_router
from allocation_engine.services.allocation_service import AllocationService
from allocation_engine.utils.config import get_settings
from app import create_app


def _build_test_app(repository, settings) -> FastAPI:
    app = FastAPI()
    app.include_router(allocation_router)
    app.state.repository = repository
    app.state.allocation_service = AllocationService(repository=repository, settings=settings)
    return app


@pytest.fixture
def client(repository, settings) -> TestClient:
    return TestClient(_build_test_app(repository, settings))


def _payload(hours: float, start: str = "2025-03-01", end: str = "2025-03-31", **extra) -> dict:
    body = {
        "employee_id": "emp-1",
        "project_id": "prj-a",
        "start_date": start,
        "end_date": end,
        "allocated_hours": hours,
    }
    body.update(extra)
    return body


def test_create_and_fetch_allocation(client) -> None:
    response = client.post("/allocations", json=_payload(20.0, role="Backend"))

    assert response.status_code == 201
    body = response.json()
    assert body["conflicts"] == []
    allocation_id = body["allocation"]["allocation_id"]
    fetched = client.get(f"/allocations/{allocation_id}")
    assert fetched.status_code == 200
    assert fetched.json()["status"] == "tentative"
    assert fetched.json()["role"] == "Backend"


def test_over_allocation_returns_conflict_detail(client) -> None:
    client.post("/allocations", json=_payload(28.0))

    response = client.post(
        "/allocations",
        json=_payload(16.0, "2025-03-10", "2025-03-20", project_id="prj-b"),
    )

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["utilization_rate_percent"] == 110.0
    assert detail["conflict"]["level"] == "blocking"
    assert [item["utilization_percent"] for item in detail["contributing_allocations"]] == [70.0, 40.0]
    assert detail["suggestions"][-1]["suggestion_type"] == "hire-additional"


def test_force_create_returns_critical_conflict(client) -> None:
    client.post("/allocations", json=_payload(28.0))

    response = client.post(
        "/allocations",
        json=_payload(16.0, "2025-03-10", "2025-03-20", project_id="prj-b", force=True),
    )

    assert response.status_code == 201
    assert response.json()["conflicts"][0]["level"] == "critical"


@pytest.mark.parametrize(
    ("payload", "status_code"),
    [
        (_payload(10.0, "2025-03-31", "2025-03-01"), 400),
        (_payload(0.0), 400),
        (_payload(10.0, employee_id="emp-missing"), 422),
        (_payload(10.0, project_id="prj-done"), 422),
    ],
)
def test_create_error_mapping(client, payload, status_code) -> None:
    response = client.post("/allocations", json=payload)

    assert response.status_code == status_code


def test_check_conflicts_preview(client) -> None:
    client.post("/allocations", json=_payload(24.0))

    response = client.post(
        "/allocations/check-conflicts",
        json=_payload(16.0, "2025-03-10", "2025-03-20", project_id="prj-b"),
    )

    assert response.status_code == 200
    conflicts = response.json()
    assert len(conflicts) == 1
    assert conflicts[0]["level"] == "info"
    assert conflicts[0]["overlap_kind"] == "contained"


def test_patch_and_lifecycle_routes(client) -> None:
    allocation_id = client.post("/allocations", json=_payload(10.0)).json()["allocation"]["allocation_id"]

    patched = client.patch(f"/allocations/{allocation_id}", json={"allocated_hours": 12.0})
    confirmed = client.post(f"/allocations/{allocation_id}/confirm")
    completed = client.post(f"/allocations/{allocation_id}/complete", json={"actual_hours": 50.0})
    cancelled = client.post(f"/allocations/{allocation_id}/cancel")

    assert patched.status_code == 200
    assert patched.json()["allocation"]["allocated_hours"] == 12.0
    assert confirmed.json()["status"] == "confirmed"
    assert completed.json()["status"] == "completed"
    assert completed.json()["actual_hours"] == 50.0
    assert cancelled.status_code == 400


def test_unknown_allocation_is_404(client) -> None:
    assert client.get("/allocations/missing").status_code == 404
    assert client.post("/allocations/missing/confirm").status_code == 404


def test_bulk_update_rollback_is_409(client, repository) -> None:
    first = client.post("/allocations", json=_payload(30.0)).json()["allocation"]
    second = client.post(
        "/allocations",
        json=_payload(30.0, "2025-04-01", "2025-04-30", project_id="prj-b"),
    ).json()["allocation"]

    response = client.post(
        "/allocations/bulk-update",
        json={
            "updates": [
                {
                    "allocation_id": second["allocation_id"],
                    "start_date": "2025-03-15",
                    "end_date": "2025-04-15",
                }
            ]
        },
    )

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["committed"] is False
    assert detail["first_error"]["error_kind"] == "over_allocation_blocked"
    assert repository.get_allocation(second["allocation_id"]).start_date == date(2025, 4, 1)
    assert repository.get_allocation(first["allocation_id"]).start_date == date(2025, 3, 1)


def test_bulk_update_commit(client) -> None:
    allocation = client.post("/allocations", json=_payload(10.0)).json()["allocation"]

    response = client.post(
        "/allocations/bulk-update",
        json={
            "updates": [
                {
                    "allocation_id": allocation["allocation_id"],
                    "start_date": "2025-05-01",
                    "end_date": "2025-05-31",
                    "allocated_hours": 12.0,
                }
            ]
        },
    )

    assert response.status_code == 200
    assert response.json()["committed"] is True
    assert response.json()["updated"][0]["allocated_hours"] == 12.0


def test_employee_utilization_route(client) -> None:
    client.post("/allocations", json=_payload(12.0))
    client.post("/allocations", json=_payload(10.0, "2025-03-15", "2025-04-15", project_id="prj-b"))
    client.post("/allocations", json=_payload(8.0, "2025-03-20", "2025-04-05", project_id="prj-c"))

    response = client.get(
        "/employees/emp-1/utilization",
        params={"start_date": "2025-03-01", "end_date": "2025-04-15"},
    )

    assert response.status_code == 200
    segments = [
        (item["start_date"], item["end_date"], item["utilization_percent"])
        for item in response.json()["segments"]
    ]
    assert segments == [
        ("2025-03-01", "2025-03-14", 30.0),
        ("2025-03-15", "2025-03-19", 55.0),
        ("2025-03-20", "2025-03-31", 75.0),
        ("2025-04-01", "2025-04-05", 45.0),
        ("2025-04-06", "2025-04-15", 25.0),
    ]
    assert client.get("/employees/emp-missing/utilization").status_code == 404


def test_conflict_scan_and_suggestions(client) -> None:
    client.post("/allocations", json=_payload(28.0))
    client.post(
        "/allocations",
        json=_payload(16.0, "2025-03-10", "2025-03-20", project_id="prj-b", force=True),
    )

    scanned = client.get("/conflicts", params={"min_level": "critical"})
    suggested = client.post(
        "/conflicts/suggestions",
        json=_payload(8.0, "2025-03-25", "2025-03-28", project_id="prj-c"),
    )

    assert scanned.status_code == 200
    assert [item["start_date"] for item in scanned.json()] == ["2025-03-10"]
    assert suggested.status_code == 200
    entry = suggested.json()[0]
    assert entry["conflict"]["level"] == "warning"
    assert entry["suggestions"][0]["suggestion_type"] == "reduce-allocation"


def test_utilization_summary_route(client) -> None:
    client.post("/allocations", json=_payload(34.0))

    response = client.get(
        "/utilization/summary",
        params={"start_date": "2025-03-03", "end_date": "2025-03-09"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["total_employees"] == 3
    assert body["conflicting_employee_count"] == 1
    assert body["total_active_allocations"] == 1


def test_application_factory_runs_startup(tmp_path) -> None:
    get_settings.cache_clear()
    settings = replace(get_settings(), database_path=tmp_path / "app.db", seed_demo_data=True)
    application = create_app(settings)

    with TestClient(application) as client:
        response = client.get(
            "/utilization/summary",
            params={"start_date": "2025-03-03", "end_date": "2025-03-09"},
        )
        assert application.state.notifier.is_running

    assert response.status_code == 200
    assert response.json()["total_employees"] == 4
    assert not application.state.notifier.is_running

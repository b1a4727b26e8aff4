"""Repository layer responsible for all database access."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, Optional, Sequence

from allocation_engine.domain.models import (
    Allocation,
    AllocationStatus,
    Employee,
    Project,
    ProjectStatus,
)
from allocation_engine.utils.config import Settings, get_settings
from allocation_engine.utils.logger import get_logger


logger = get_logger(__name__)

_ACTIVE_STATUS_VALUES = (
    AllocationStatus.TENTATIVE.value,
    AllocationStatus.CONFIRMED.value,
)

_ALLOCATION_COLUMNS = """
    a.id,
    a.employee_id,
    a.project_id,
    a.start_date,
    a.end_date,
    a.allocated_hours,
    a.status,
    a.role,
    a.notes,
    a.actual_hours,
    p.name AS project_name
"""


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _parse_optional_date(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    return date.fromisoformat(str(value))


def _allocation_from_row(row: sqlite3.Row) -> Allocation:
    return Allocation(
        allocation_id=str(row["id"]),
        employee_id=str(row["employee_id"]),
        project_id=str(row["project_id"]),
        start_date=date.fromisoformat(str(row["start_date"])),
        end_date=date.fromisoformat(str(row["end_date"])),
        allocated_hours=float(row["allocated_hours"]),
        status=AllocationStatus(str(row["status"])),
        role=str(row["role"] or ""),
        notes=str(row["notes"] or ""),
        actual_hours=(
            float(row["actual_hours"]) if row["actual_hours"] is not None else None
        ),
        project_name=str(row["project_name"]) if row["project_name"] is not None else None,
    )


class AllocationRepository:
    """Encapsulates SQLite access so the engine works on plain snapshots.

    Reads accept an optional connection so that a caller holding a write
    transaction sees the same state it is about to modify.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(
            self._db_path,
            timeout=self._settings.database_timeout_seconds,
            isolation_level=None,
        )
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    @contextmanager
    def _session(
        self,
        connection: Optional[sqlite3.Connection] = None,
    ) -> Iterator[sqlite3.Connection]:
        if connection is not None:
            yield connection
            return
        owned = self._connect()
        try:
            yield owned
        finally:
            owned.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Open a write transaction that serializes concurrent writers.

        `BEGIN IMMEDIATE` takes the database write lock up front, so a
        read-check-write sequence cannot interleave with another writer.
        Any exception rolls back every statement issued on the connection.
        """
        connection = self._connect()
        try:
            connection.execute("BEGIN IMMEDIATE;")
            try:
                yield connection
            except BaseException:
                connection.execute("ROLLBACK;")
                raise
            connection.execute("COMMIT;")
        finally:
            connection.close()

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._session() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Employees (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        weekly_capacity_hours REAL NOT NULL DEFAULT 40
                            CHECK (weekly_capacity_hours >= 0),
                        is_active INTEGER NOT NULL DEFAULT 1 CHECK (is_active IN (0,1))
                    );
                    """
                )
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Projects (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        status TEXT NOT NULL DEFAULT 'active'
                            CHECK (status IN ('planning','active','completed','inactive')),
                        priority INTEGER NOT NULL DEFAULT 0,
                        start_date TEXT,
                        end_date TEXT
                    );
                    """
                )
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Allocations (
                        id TEXT PRIMARY KEY,
                        employee_id TEXT NOT NULL,
                        project_id TEXT NOT NULL,
                        start_date TEXT NOT NULL,
                        end_date TEXT NOT NULL,
                        allocated_hours REAL NOT NULL CHECK (allocated_hours > 0),
                        status TEXT NOT NULL DEFAULT 'tentative'
                            CHECK (status IN ('tentative','confirmed','completed','cancelled')),
                        role TEXT NOT NULL DEFAULT '',
                        notes TEXT NOT NULL DEFAULT '',
                        actual_hours REAL,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        CHECK (start_date <= end_date),
                        FOREIGN KEY (employee_id) REFERENCES Employees(id),
                        FOREIGN KEY (project_id) REFERENCES Projects(id)
                    );
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_allocations_employee_status_range
                    ON Allocations(employee_id, status, start_date, end_date);
                    """
                )
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_demo_data(self) -> None:
        """Seed a small deterministic roster only when the database is empty."""
        try:
            with self.transaction() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT COUNT(*) AS count FROM Employees;")
                if int(cursor.fetchone()["count"]) > 0:
                    logger.info("Demo data already present; skipping seed")
                    return

                cursor.executemany(
                    """
                    INSERT INTO Employees (id, name, weekly_capacity_hours, is_active)
                    VALUES (?, ?, ?, 1);
                    """,
                    [
                        ("emp-001", "Alice Moreno", 40.0),
                        ("emp-002", "Bilal Chaudhry", 40.0),
                        ("emp-003", "Chen Wei", 32.0),
                        ("emp-004", "Dana Okafor", 20.0),
                    ],
                )
                cursor.executemany(
                    """
                    INSERT INTO Projects (id, name, status, priority)
                    VALUES (?, ?, ?, ?);
                    """,
                    [
                        ("prj-001", "Billing Platform Migration", "active", 10),
                        ("prj-002", "Mobile Onboarding", "active", 5),
                        ("prj-003", "Data Warehouse Refresh", "planning", 3),
                    ],
                )
            logger.info("Demo data seeded | employees=4 | projects=3")
        except sqlite3.Error as exc:
            raise RuntimeError(f"Demo data seeding failed: {exc}") from exc

    def create_employee(
        self,
        employee_id: str,
        name: str,
        weekly_capacity_hours: Optional[float] = None,
        is_active: bool = True,
    ) -> Employee:
        capacity = (
            weekly_capacity_hours
            if weekly_capacity_hours is not None
            else self._settings.default_weekly_capacity_hours
        )
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO Employees (id, name, weekly_capacity_hours, is_active)
                VALUES (?, ?, ?, ?);
                """,
                (employee_id, name, capacity, 1 if is_active else 0),
            )
        return Employee(
            employee_id=employee_id,
            name=name,
            weekly_capacity_hours=float(capacity),
            is_active=is_active,
        )

    def create_project(
        self,
        project_id: str,
        name: str,
        status: ProjectStatus = ProjectStatus.ACTIVE,
        priority: int = 0,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Project:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO Projects (id, name, status, priority, start_date, end_date)
                VALUES (?, ?, ?, ?, ?, ?);
                """,
                (
                    project_id,
                    name,
                    status.value,
                    priority,
                    start_date.isoformat() if start_date else None,
                    end_date.isoformat() if end_date else None,
                ),
            )
        return Project(
            project_id=project_id,
            name=name,
            status=status,
            priority=priority,
            start_date=start_date,
            end_date=end_date,
        )

    def get_employee(
        self,
        employee_id: str,
        connection: Optional[sqlite3.Connection] = None,
    ) -> Optional[Employee]:
        with self._session(connection) as conn:
            row = conn.execute(
                """
                SELECT id, name, weekly_capacity_hours, is_active
                FROM Employees
                WHERE id = ?;
                """,
                (employee_id,),
            ).fetchone()
        if row is None:
            return None
        return Employee(
            employee_id=str(row["id"]),
            name=str(row["name"]),
            weekly_capacity_hours=float(row["weekly_capacity_hours"]),
            is_active=bool(row["is_active"]),
        )

    def list_employees(
        self,
        active_only: bool = True,
        connection: Optional[sqlite3.Connection] = None,
    ) -> list[Employee]:
        query = "SELECT id, name, weekly_capacity_hours, is_active FROM Employees"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY id ASC;"
        with self._session(connection) as conn:
            rows = conn.execute(query).fetchall()
        return [
            Employee(
                employee_id=str(row["id"]),
                name=str(row["name"]),
                weekly_capacity_hours=float(row["weekly_capacity_hours"]),
                is_active=bool(row["is_active"]),
            )
            for row in rows
        ]

    def get_project(
        self,
        project_id: str,
        connection: Optional[sqlite3.Connection] = None,
    ) -> Optional[Project]:
        with self._session(connection) as conn:
            row = conn.execute(
                """
                SELECT id, name, status, priority, start_date, end_date
                FROM Projects
                WHERE id = ?;
                """,
                (project_id,),
            ).fetchone()
        if row is None:
            return None
        return Project(
            project_id=str(row["id"]),
            name=str(row["name"]),
            status=ProjectStatus(str(row["status"])),
            priority=int(row["priority"]),
            start_date=_parse_optional_date(row["start_date"]),
            end_date=_parse_optional_date(row["end_date"]),
        )

    def get_allocation(
        self,
        allocation_id: str,
        connection: Optional[sqlite3.Connection] = None,
    ) -> Optional[Allocation]:
        with self._session(connection) as conn:
            row = conn.execute(
                f"""
                SELECT {_ALLOCATION_COLUMNS}
                FROM Allocations AS a
                LEFT JOIN Projects AS p ON p.id = a.project_id
                WHERE a.id = ?;
                """,
                (allocation_id,),
            ).fetchone()
        if row is None:
            return None
        return _allocation_from_row(row)

    def get_allocations(
        self,
        allocation_ids: Sequence[str],
        connection: Optional[sqlite3.Connection] = None,
    ) -> dict[str, Allocation]:
        """Return the allocations that exist among `allocation_ids`, keyed by id."""
        if not allocation_ids:
            return {}
        placeholders = ",".join("?" for _ in allocation_ids)
        with self._session(connection) as conn:
            rows = conn.execute(
                f"""
                SELECT {_ALLOCATION_COLUMNS}
                FROM Allocations AS a
                LEFT JOIN Projects AS p ON p.id = a.project_id
                WHERE a.id IN ({placeholders});
                """,
                tuple(allocation_ids),
            ).fetchall()
        return {str(row["id"]): _allocation_from_row(row) for row in rows}

    def list_active_allocations(
        self,
        employee_id: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        *,
        exclude_allocation_id: Optional[str] = None,
        connection: Optional[sqlite3.Connection] = None,
    ) -> list[Allocation]:
        """Return tentative/confirmed allocations, optionally range-filtered.

        Range filtering uses closed-interval intersection:
        `a.start_date <= end_date AND start_date <= a.end_date`.
        """
        clauses = ["a.status IN (?, ?)"]
        params: list[object] = list(_ACTIVE_STATUS_VALUES)
        if employee_id is not None:
            clauses.append("a.employee_id = ?")
            params.append(employee_id)
        if end_date is not None:
            clauses.append("a.start_date <= ?")
            params.append(end_date.isoformat())
        if start_date is not None:
            clauses.append("a.end_date >= ?")
            params.append(start_date.isoformat())
        if exclude_allocation_id is not None:
            clauses.append("a.id <> ?")
            params.append(exclude_allocation_id)

        with self._session(connection) as conn:
            rows = conn.execute(
                f"""
                SELECT {_ALLOCATION_COLUMNS}
                FROM Allocations AS a
                LEFT JOIN Projects AS p ON p.id = a.project_id
                WHERE {' AND '.join(clauses)}
                ORDER BY a.employee_id ASC, a.start_date ASC, a.id ASC;
                """,
                tuple(params),
            ).fetchall()
        return [_allocation_from_row(row) for row in rows]

    def insert_allocation(
        self,
        allocation: Allocation,
        connection: sqlite3.Connection,
    ) -> None:
        now = _utc_now()
        connection.execute(
            """
            INSERT INTO Allocations (
                id,
                employee_id,
                project_id,
                start_date,
                end_date,
                allocated_hours,
                status,
                role,
                notes,
                actual_hours,
                created_at,
                updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                allocation.allocation_id,
                allocation.employee_id,
                allocation.project_id,
                allocation.start_date.isoformat(),
                allocation.end_date.isoformat(),
                allocation.allocated_hours,
                allocation.status.value,
                allocation.role,
                allocation.notes,
                allocation.actual_hours,
                now,
                now,
            ),
        )

    def save_allocation(
        self,
        allocation: Allocation,
        connection: sqlite3.Connection,
    ) -> None:
        """Overwrite the mutable fields of an existing allocation row."""
        cursor = connection.execute(
            """
            UPDATE Allocations
            SET start_date = ?,
                end_date = ?,
                allocated_hours = ?,
                status = ?,
                role = ?,
                notes = ?,
                actual_hours = ?,
                updated_at = ?
            WHERE id = ?;
            """,
            (
                allocation.start_date.isoformat(),
                allocation.end_date.isoformat(),
                allocation.allocated_hours,
                allocation.status.value,
                allocation.role,
                allocation.notes,
                allocation.actual_hours,
                _utc_now(),
                allocation.allocation_id,
            ),
        )
        if cursor.rowcount != 1:
            raise sqlite3.IntegrityError(
                f"Allocation {allocation.allocation_id} vanished during update"
            )

    def save_allocations(
        self,
        allocations: Iterable[Allocation],
        connection: sqlite3.Connection,
    ) -> None:
        for allocation in allocations:
            self.save_allocation(allocation, connection)

    def count_allocations(self, status: Optional[AllocationStatus] = None) -> int:
        """Return allocation row count for diagnostics and tests."""
        with self._session() as conn:
            if status is None:
                row = conn.execute("SELECT COUNT(*) AS count FROM Allocations;").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) AS count FROM Allocations WHERE status = ?;",
                    (status.value,),
                ).fetchone()
        return int(row["count"])

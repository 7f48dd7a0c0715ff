"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import json
import os
import sqlite3
from collections.abc import Callable, Generator
from contextlib import closing
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from pathlib import Path
from typing import Any

import pytest

from src.adapters.query_builders import LedgerQueryCriteria, format_timestamp
from src.adapters.repository_factory import create_repository
from src.config.settings import Settings
from src.domain.models import AwardRequest, AwardResult, LedgerEntry
from src.domain.protocols import RepositoryProtocol
from src.use_cases.award_points import award_points_use_case

# Tuesday 2025-03-04, 12:00 business-local (UTC+2)
BASE_TIME = datetime(2025, 3, 4, 10, 0, tzinfo=UTC)


@pytest.fixture
def settings(
    tmp_path_factory: pytest.TempPathFactory, request: pytest.FixtureRequest
) -> Settings:
    """Create settings configured for the requested database backend."""

    base_settings = Settings()

    if request.node.get_closest_marker("postgres"):
        if os.environ.get("TEST_POSTGRES", "0") != "1":
            pytest.skip("PostgreSQL tests disabled (TEST_POSTGRES!=1)")
        if not os.environ.get("POSTGRES_PASSWORD"):
            pytest.skip("POSTGRES_PASSWORD not set for PostgreSQL tests")
        return base_settings.model_copy(update={"database_type": "postgres"})

    temp_dir = tmp_path_factory.mktemp("db")
    db_path = temp_dir / "test.sqlite"
    return base_settings.model_copy(
        update={"database_type": "sqlite", "db_path": str(db_path)}
    )


@pytest.fixture
def repo(settings: Settings) -> Generator[RepositoryProtocol, None, None]:
    """Provide a repository instance for the configured backend."""

    repository = create_repository(settings)

    try:
        yield repository
    finally:
        repository.close()

        if settings.database_type == "sqlite":
            db_path = Path(settings.db_path)
            for path in (db_path, Path(f"{db_path}-wal"), Path(f"{db_path}-shm")):
                if path.exists():
                    try:
                        path.unlink()
                    except OSError:
                        pass


@dataclass
class Seeder:
    """Writes helpdesk-owned rows (tickets, schedules, users) directly."""

    db_path: Path

    def _execute(self, query: str, params: tuple[Any, ...]) -> None:
        with closing(sqlite3.connect(self.db_path)) as conn:
            conn.execute(query, params)
            conn.commit()

    def ticket(
        self,
        ticket_id: int,
        *,
        created_at: datetime,
        subject: str = "",
        priority: str | None = "Low",
        created_by: str | None = None,
        assigned_to_name: str | None = None,
        assigned_at: datetime | None = None,
        completed_by_name: str | None = None,
        completed_at: datetime | None = None,
        source: str | None = None,
        notes: list[tuple[str, datetime]] | None = None,
    ) -> None:
        notes_json = json.dumps(
            [
                {"user_id": user_id, "timestamp": format_timestamp(ts)}
                for user_id, ts in (notes or [])
            ]
        )
        self._execute(
            """
            INSERT INTO tickets (
                id, subject, priority, created_by, created_at, assigned_to_name,
                assigned_at, is_reopened, completed_by_name, completed_at, source, notes
            ) VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?, ?, ?, ?)
            """,
            (
                ticket_id,
                subject,
                priority,
                created_by,
                format_timestamp(created_at),
                assigned_to_name,
                format_timestamp(assigned_at) if assigned_at else None,
                completed_by_name,
                format_timestamp(completed_at) if completed_at else None,
                source,
                notes_json,
            ),
        )

    def user(self, user_id: str, display_name: str) -> None:
        self._execute(
            "INSERT INTO user_settings (user_id, display_name) VALUES (?, ?)",
            (user_id, display_name),
        )

    def schedule(self, user_id: str, day: date, shift_start: time) -> None:
        self._execute(
            "INSERT INTO schedules (user_id, date, shift_start_time) VALUES (?, ?, ?)",
            (user_id, day.isoformat(), shift_start.strftime("%H:%M:%S")),
        )

    def default_schedule(self, user_id: str, day_of_week: int, shift_start: time) -> None:
        self._execute(
            """
            INSERT INTO default_schedules (user_id, day_of_week, shift_start_time)
            VALUES (?, ?, ?)
            """,
            (user_id, day_of_week, shift_start.strftime("%H:%M:%S")),
        )


@pytest.fixture
def seed(repo: RepositoryProtocol, settings: Settings) -> Seeder:
    """Seed helper bound to the test SQLite database (schema already created)."""

    return Seeder(Path(settings.db_path))


@pytest.fixture
def award(
    repo: RepositoryProtocol, settings: Settings
) -> Callable[..., AwardResult]:
    """Run the award use case with a compact call signature."""

    def _award(
        event_type: str,
        user_id: str,
        username: str,
        data: dict[str, Any] | None = None,
        *,
        now: datetime = BASE_TIME,
    ) -> AwardResult:
        request = AwardRequest(
            eventType=event_type, userId=user_id, username=username, data=data or {}
        )
        return award_points_use_case(repo, settings, request, now=now)

    return _award


@pytest.fixture
def ledger(repo: RepositoryProtocol) -> Callable[..., list[LedgerEntry]]:
    """Read ledger entries, optionally filtered."""

    def _ledger(**criteria: Any) -> list[LedgerEntry]:
        with repo.transaction() as session:
            return session.query_entries(LedgerQueryCriteria(**criteria))

    return _ledger


def make_entry(
    user_id: str,
    event_type: str,
    points: int,
    *,
    ticket_id: int | None = None,
    created_at: datetime = BASE_TIME,
    username: str | None = None,
    details: dict[str, Any] | None = None,
) -> LedgerEntry:
    """Build a ledger entry for direct insertion."""

    return LedgerEntry(
        user_id=user_id,
        username=username or user_id,
        event_type=event_type,
        points_awarded=points,
        related_ticket_id=ticket_id,
        details={"reason": "seeded", **(details or {})},
        created_at=created_at,
    )


@pytest.fixture
def insert_entries(repo: RepositoryProtocol) -> Callable[..., list[LedgerEntry]]:
    """Insert ledger entries in order and return them with ids."""

    def _insert(*entries: LedgerEntry) -> list[LedgerEntry]:
        with repo.transaction() as session:
            return [session.insert_entry(entry) for entry in entries]

    return _insert


def minutes(value: float) -> timedelta:
    return timedelta(minutes=value)

"""Scoring session shared by the SQLite and PostgreSQL adapters.

Both backends speak the same SQL with ``%s`` placeholders. Subclasses bind a
live connection and implement ``_execute``/``_fetchall``/``_insert``. Row
decoding copes with both drivers' value types (ISO text and JSON text from
SQLite, native datetimes and dicts from psycopg2).
"""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, date, datetime, time
from enum import Enum
from typing import Any

from src.adapters.query_builders import (
    BadgeQueryCriteria,
    LedgerQueryCriteria,
    format_timestamp,
)
from src.domain.models import (
    Badge,
    BadgeCycleRun,
    BadgeNotification,
    LedgerEntry,
    MilestoneNotification,
    ScheduleSlot,
    TicketSnapshot,
    UserIdentity,
    UserPointsTotal,
)

Row = Mapping[str, Any]

TICKET_COLUMNS = (
    "id, subject, priority, created_by, created_at, assigned_to_name, "
    "assigned_at, is_reopened, completed_by_name, completed_at, source, notes"
)


class DatabaseBackend(str, Enum):
    """Supported database backends."""

    POSTGRES = "postgres"
    SQLITE = "sqlite"


def _to_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def _to_time(value: Any) -> time:
    if isinstance(value, time):
        return value
    return time.fromisoformat(str(value))


def _to_json(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str | bytes):
        return json.loads(value)
    return value


def _dump_json(value: Any) -> str:
    return json.dumps(value, default=str)


_IDENTIFIER_UNSAFE = re.compile(r"[^A-Za-z0-9_]")


def savepoint_identifier(name: str) -> str:
    """Turn a free-form scope name into a safe SQL savepoint identifier."""
    return "sp_" + _IDENTIFIER_UNSAFE.sub("_", name)


class SqlScoringSession(ABC):
    """ScoringSession implementation over a DB-API connection."""

    backend: DatabaseBackend

    @abstractmethod
    def _execute(self, query: str, params: Sequence[Any] = ()) -> int:
        """Run a statement and return the affected row count."""

    @abstractmethod
    def _fetchall(self, query: str, params: Sequence[Any] = ()) -> list[Row]:
        """Run a query and return rows addressable by column name."""

    @abstractmethod
    def _insert(self, query: str, params: Sequence[Any]) -> int:
        """Run an INSERT and return the new row id."""

    @contextmanager
    def savepoint(self, name: str) -> Iterator[None]:
        """Nested scope whose writes are rolled back alone if it raises."""
        identifier = savepoint_identifier(name)
        self._execute(f"SAVEPOINT {identifier}")
        try:
            yield
        except BaseException:
            self._execute(f"ROLLBACK TO SAVEPOINT {identifier}")
            self._execute(f"RELEASE SAVEPOINT {identifier}")
            raise
        self._execute(f"RELEASE SAVEPOINT {identifier}")

    def _fetchone(self, query: str, params: Sequence[Any] = ()) -> Row | None:
        rows = self._fetchall(query, params)
        return rows[0] if rows else None

    # Ledger

    def insert_entry(self, entry: LedgerEntry) -> LedgerEntry:
        entry_id = self._insert(
            """
            INSERT INTO points_ledger (
                user_id, username, event_type, points_awarded,
                related_ticket_id, details, created_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s)
            """,
            (
                entry.user_id,
                entry.username,
                entry.event_type,
                entry.points_awarded,
                entry.related_ticket_id,
                _dump_json(entry.details),
                format_timestamp(entry.created_at),
            ),
        )
        return entry.model_copy(update={"id": entry_id})

    def query_entries(self, criteria: LedgerQueryCriteria) -> list[LedgerEntry]:
        where_clause, where_params = criteria.to_where_clause()
        limit_clause, limit_params = criteria.to_limit_clause()
        rows = self._fetchall(
            f"""
            SELECT * FROM points_ledger
            WHERE {where_clause}
            ORDER BY {criteria.to_order_clause()}
            {limit_clause}
            """,
            where_params + limit_params,
        )
        return [self._row_to_entry(row) for row in rows]

    def delete_entries(self, entry_ids: Sequence[int]) -> int:
        if not entry_ids:
            return 0
        placeholders = ",".join(["%s"] * len(entry_ids))
        return self._execute(
            f"DELETE FROM points_ledger WHERE id IN ({placeholders})",
            list(entry_ids),
        )

    def sum_points_by_user(
        self, start: datetime, end: datetime
    ) -> list[UserPointsTotal]:
        rows = self._fetchall(
            """
            SELECT user_id, MAX(username) AS username,
                   SUM(points_awarded) AS total_points
            FROM points_ledger
            WHERE created_at >= %s AND created_at < %s
            GROUP BY user_id
            """,
            (format_timestamp(start), format_timestamp(end)),
        )
        return [
            UserPointsTotal(
                user_id=row["user_id"],
                username=row["username"],
                total_points=int(row["total_points"] or 0),
            )
            for row in rows
        ]

    # Tickets

    def get_ticket(self, ticket_id: int) -> TicketSnapshot | None:
        row = self._fetchone(
            f"SELECT {TICKET_COLUMNS} FROM tickets WHERE id = %s", (ticket_id,)
        )
        return self._row_to_ticket(row) if row else None

    def list_tickets_created_since(
        self, since: datetime, exclude_ticket_id: int | None = None
    ) -> list[TicketSnapshot]:
        query = f"SELECT {TICKET_COLUMNS} FROM tickets WHERE created_at >= %s"
        params: list[Any] = [format_timestamp(since)]
        if exclude_ticket_id is not None:
            query += " AND id <> %s"
            params.append(exclude_ticket_id)
        query += " ORDER BY created_at DESC, id DESC"
        return [self._row_to_ticket(row) for row in self._fetchall(query, params)]

    def list_tickets_completed_by(
        self, username: str, start: datetime, end: datetime
    ) -> list[TicketSnapshot]:
        rows = self._fetchall(
            f"""
            SELECT {TICKET_COLUMNS} FROM tickets
            WHERE completed_by_name = %s
              AND completed_at >= %s AND completed_at < %s
            ORDER BY completed_at ASC, id ASC
            """,
            (username, format_timestamp(start), format_timestamp(end)),
        )
        return [self._row_to_ticket(row) for row in rows]

    # Schedules

    def get_schedule_override(self, user_id: str, day: date) -> ScheduleSlot | None:
        row = self._fetchone(
            """
            SELECT user_id, date, shift_start_time FROM schedules
            WHERE user_id = %s AND date = %s
            """,
            (user_id, day.isoformat()),
        )
        if row is None or not row["shift_start_time"]:
            return None
        return ScheduleSlot(
            user_id=row["user_id"],
            shift_start_time=_to_time(row["shift_start_time"]),
            schedule_date=_to_date(row["date"]),
        )

    def get_default_schedule(
        self, user_id: str, day_of_week: int
    ) -> ScheduleSlot | None:
        row = self._fetchone(
            """
            SELECT user_id, day_of_week, shift_start_time FROM default_schedules
            WHERE user_id = %s AND day_of_week = %s
            """,
            (user_id, day_of_week),
        )
        if row is None or not row["shift_start_time"]:
            return None
        return ScheduleSlot(
            user_id=row["user_id"],
            shift_start_time=_to_time(row["shift_start_time"]),
            day_of_week=int(row["day_of_week"]),
        )

    # Identity

    def get_display_name(self, user_id: str) -> str | None:
        row = self._fetchone(
            "SELECT display_name FROM user_settings WHERE user_id = %s", (user_id,)
        )
        if row is None:
            return None
        return row["display_name"] or None

    def list_users(self) -> list[UserIdentity]:
        rows = self._fetchall(
            "SELECT user_id, display_name FROM user_settings ORDER BY user_id"
        )
        return [
            UserIdentity(user_id=row["user_id"], display_name=row["display_name"] or "")
            for row in rows
        ]

    # Badges

    def insert_badge(self, badge: Badge) -> Badge:
        badge_id = self._insert(
            """
            INSERT INTO user_badges (
                user_id, username, badge_id, achieved_at, award_date,
                reset_period, is_active, metadata
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                badge.user_id,
                badge.username,
                badge.badge_id,
                format_timestamp(badge.achieved_at),
                badge.award_date.isoformat(),
                badge.reset_period,
                badge.is_active,
                _dump_json(badge.metadata),
            ),
        )
        return badge.model_copy(update={"id": badge_id})

    def query_badges(self, criteria: BadgeQueryCriteria) -> list[Badge]:
        where_clause, params = criteria.to_where_clause()
        rows = self._fetchall(
            f"""
            SELECT * FROM user_badges
            WHERE {where_clause}
            ORDER BY {criteria.to_order_clause()}
            """,
            params,
        )
        return [self._row_to_badge(row) for row in rows]

    def deactivate_badges(
        self,
        *,
        badge_ids: Sequence[str] | None = None,
        exclude_badge_ids: Sequence[str] | None = None,
        reset_period: str | None = None,
    ) -> int:
        conditions = ["is_active = %s"]
        params: list[Any] = [True]
        if badge_ids:
            conditions.append(f"badge_id IN ({','.join(['%s'] * len(badge_ids))})")
            params.extend(badge_ids)
        if exclude_badge_ids:
            placeholders = ",".join(["%s"] * len(exclude_badge_ids))
            conditions.append(f"badge_id NOT IN ({placeholders})")
            params.extend(exclude_badge_ids)
        if reset_period is not None:
            conditions.append("reset_period = %s")
            params.append(reset_period)
        return self._execute(
            f"UPDATE user_badges SET is_active = %s WHERE {' AND '.join(conditions)}",
            [False, *params],
        )

    # Notifications

    def add_milestone_notification(
        self, notification: MilestoneNotification
    ) -> MilestoneNotification:
        row_id = self._insert(
            """
            INSERT INTO milestone_notifications (
                achieved_by_user_id, achieved_by_username, milestone_count,
                message, created_at, is_read
            ) VALUES (%s, %s, %s, %s, %s, %s)
            """,
            (
                notification.achieved_by_user_id,
                notification.achieved_by_username,
                notification.milestone_count,
                notification.message,
                format_timestamp(notification.created_at),
                notification.is_read,
            ),
        )
        return notification.model_copy(update={"id": row_id})

    def add_badge_notification(
        self, notification: BadgeNotification
    ) -> BadgeNotification:
        row_id = self._insert(
            """
            INSERT INTO badge_notifications (
                user_id, username, badge_id, badge_name, badge_emoji,
                message, created_at, is_read
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                notification.user_id,
                notification.username,
                notification.badge_id,
                notification.badge_name,
                notification.badge_emoji,
                notification.message,
                format_timestamp(notification.created_at),
                notification.is_read,
            ),
        )
        return notification.model_copy(update={"id": row_id})

    def list_milestone_notifications(
        self, achieved_by_user_id: str | None = None
    ) -> list[MilestoneNotification]:
        query = "SELECT * FROM milestone_notifications"
        params: list[Any] = []
        if achieved_by_user_id is not None:
            query += " WHERE achieved_by_user_id = %s"
            params.append(achieved_by_user_id)
        rows = self._fetchall(query + " ORDER BY id ASC", params)
        return [
            MilestoneNotification(
                id=row["id"],
                achieved_by_user_id=row["achieved_by_user_id"],
                achieved_by_username=row["achieved_by_username"],
                milestone_count=row["milestone_count"],
                message=row["message"],
                created_at=_to_datetime(row["created_at"]),
                is_read=bool(row["is_read"]),
            )
            for row in rows
        ]

    def list_badge_notifications(
        self, user_id: str | None = None
    ) -> list[BadgeNotification]:
        query = "SELECT * FROM badge_notifications"
        params: list[Any] = []
        if user_id is not None:
            query += " WHERE user_id = %s"
            params.append(user_id)
        rows = self._fetchall(query + " ORDER BY id ASC", params)
        return [
            BadgeNotification(
                id=row["id"],
                user_id=row["user_id"],
                username=row["username"],
                badge_id=row["badge_id"],
                badge_name=row["badge_name"],
                badge_emoji=row["badge_emoji"],
                message=row["message"],
                created_at=_to_datetime(row["created_at"]),
                is_read=bool(row["is_read"]),
            )
            for row in rows
        ]

    # Badge cycle runs

    def get_cycle_run(self, target_date: date) -> BadgeCycleRun | None:
        row = self._fetchone(
            "SELECT * FROM badge_cycle_runs WHERE target_date = %s",
            (target_date.isoformat(),),
        )
        if row is None:
            return None
        return BadgeCycleRun(
            target_date=_to_date(row["target_date"]),
            status=row["status"],
            winner_user_id=row["winner_user_id"],
            winner_points=row["winner_points"],
            completed_at=_to_datetime(row["completed_at"]),
        )

    def record_cycle_run(self, run: BadgeCycleRun) -> None:
        self._execute(
            """
            INSERT INTO badge_cycle_runs (
                target_date, status, winner_user_id, winner_points, completed_at
            ) VALUES (%s, %s, %s, %s, %s)
            """,
            (
                run.target_date.isoformat(),
                run.status.value,
                run.winner_user_id,
                run.winner_points,
                format_timestamp(run.completed_at),
            ),
        )

    # Row conversion

    def _row_to_entry(self, row: Row) -> LedgerEntry:
        return LedgerEntry(
            id=row["id"],
            user_id=row["user_id"],
            username=row["username"],
            event_type=row["event_type"],
            points_awarded=row["points_awarded"],
            related_ticket_id=row["related_ticket_id"],
            details=_to_json(row["details"]) or {},
            created_at=_to_datetime(row["created_at"]),
        )

    def _row_to_badge(self, row: Row) -> Badge:
        return Badge(
            id=row["id"],
            user_id=row["user_id"],
            username=row["username"],
            badge_id=row["badge_id"],
            achieved_at=_to_datetime(row["achieved_at"]),
            award_date=_to_date(row["award_date"]),
            reset_period=row["reset_period"],
            is_active=bool(row["is_active"]),
            metadata=_to_json(row["metadata"]) or {},
        )

    def _row_to_ticket(self, row: Row) -> TicketSnapshot:
        return TicketSnapshot(
            id=row["id"],
            subject=row["subject"],
            priority=row["priority"],
            created_by=row["created_by"],
            created_at=_to_datetime(row["created_at"]),
            assigned_to_name=row["assigned_to_name"],
            assigned_at=_to_datetime(row["assigned_at"]),
            is_reopened=bool(row["is_reopened"]),
            completed_by_name=row["completed_by_name"],
            completed_at=_to_datetime(row["completed_at"]),
            source=row["source"],
            notes=_to_json(row["notes"]) or [],
        )

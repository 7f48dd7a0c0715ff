"""SQLite repository adapter for local storage.

Implements RepositoryProtocol with SQLite backend. Every transaction opens
its own connection with ``BEGIN IMMEDIATE``, which takes the database write
lock up front; that lock also serializes the keyed sections callers ask for.
"""

import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from src.adapters.sql_session import DatabaseBackend, Row, SqlScoringSession
from src.config.logging_config import get_logger
from src.domain.exceptions import RepositoryError

logger = get_logger(__name__)

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS points_ledger (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        username TEXT NOT NULL,
        event_type TEXT NOT NULL,
        points_awarded INTEGER NOT NULL,
        related_ticket_id INTEGER,
        details TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_points_ledger_user_event_created
    ON points_ledger(user_id, event_type, created_at)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_points_ledger_ticket
    ON points_ledger(related_ticket_id)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_points_ledger_created
    ON points_ledger(created_at)
    """,
    """
    CREATE TABLE IF NOT EXISTS user_badges (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        username TEXT NOT NULL,
        badge_id TEXT NOT NULL,
        achieved_at TEXT NOT NULL,
        award_date TEXT NOT NULL,
        reset_period TEXT NOT NULL DEFAULT 'daily',
        is_active INTEGER NOT NULL DEFAULT 1,
        metadata TEXT NOT NULL DEFAULT '{}'
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_user_badges_user_badge_date
    ON user_badges(user_id, badge_id, award_date)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_user_badges_active
    ON user_badges(is_active, badge_id)
    """,
    """
    CREATE TABLE IF NOT EXISTS milestone_notifications (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        achieved_by_user_id TEXT NOT NULL,
        achieved_by_username TEXT NOT NULL,
        milestone_count INTEGER NOT NULL,
        message TEXT NOT NULL,
        created_at TEXT NOT NULL,
        is_read INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS badge_notifications (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        username TEXT NOT NULL,
        badge_id TEXT NOT NULL,
        badge_name TEXT NOT NULL,
        badge_emoji TEXT NOT NULL,
        message TEXT NOT NULL,
        created_at TEXT NOT NULL,
        is_read INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS badge_cycle_runs (
        target_date TEXT PRIMARY KEY,
        status TEXT NOT NULL,
        winner_user_id TEXT,
        winner_points INTEGER,
        completed_at TEXT NOT NULL
    )
    """,
    # Collaborator tables owned by the helpdesk application; created here so a
    # local database is self-contained.
    """
    CREATE TABLE IF NOT EXISTS tickets (
        id INTEGER PRIMARY KEY,
        subject TEXT,
        priority TEXT,
        created_by TEXT,
        created_at TEXT NOT NULL,
        assigned_to_name TEXT,
        assigned_at TEXT,
        is_reopened INTEGER NOT NULL DEFAULT 0,
        completed_by_name TEXT,
        completed_at TEXT,
        source TEXT,
        notes TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS schedules (
        user_id TEXT NOT NULL,
        date TEXT NOT NULL,
        shift_start_time TEXT,
        PRIMARY KEY (user_id, date)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS default_schedules (
        user_id TEXT NOT NULL,
        day_of_week INTEGER NOT NULL,
        shift_start_time TEXT,
        PRIMARY KEY (user_id, day_of_week)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_settings (
        user_id TEXT PRIMARY KEY,
        display_name TEXT
    )
    """,
)


class SQLiteScoringSession(SqlScoringSession):
    """Scoring session bound to one SQLite connection."""

    backend = DatabaseBackend.SQLITE

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    @staticmethod
    def _adapt(query: str) -> str:
        return query.replace("%s", "?")

    def _run(self, query: str, params: Sequence[Any]) -> sqlite3.Cursor:
        try:
            return self._conn.execute(self._adapt(query), tuple(params))
        except sqlite3.Error as e:
            raise RepositoryError(f"SQLite statement failed: {e}") from e

    def _execute(self, query: str, params: Sequence[Any] = ()) -> int:
        return self._run(query, params).rowcount

    def _fetchall(self, query: str, params: Sequence[Any] = ()) -> list[Row]:
        return [dict(row) for row in self._run(query, params).fetchall()]

    def _insert(self, query: str, params: Sequence[Any]) -> int:
        cursor = self._run(query, params)
        if cursor.lastrowid is None:
            raise RepositoryError("SQLite insert did not return a row id")
        return cursor.lastrowid


class SQLiteRepository:
    """SQLite-based repository for local runs and tests."""

    def __init__(self, db_path: str, *, busy_timeout_seconds: float = 30.0) -> None:
        """Initialize repository and ensure schema.

        Args:
            db_path: Path to SQLite database file
            busy_timeout_seconds: How long to wait for the write lock
        """
        self.db_path = db_path
        self._busy_timeout_seconds = busy_timeout_seconds

        # Ensure data directory exists
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._create_schema()

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection in autocommit mode.

        Returns:
            SQLite connection
        """
        conn = sqlite3.connect(
            self.db_path,
            timeout=self._busy_timeout_seconds,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        return conn

    def _create_schema(self) -> None:
        """Create database schema if not exists."""
        logger.info("sqlite_schema_creation_started", db_path=str(self.db_path))
        conn = self._get_connection()
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            for statement in SCHEMA_STATEMENTS:
                conn.execute(statement)
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to create SQLite schema: {e}") from e
        finally:
            conn.close()
        logger.info("sqlite_schema_creation_finished", db_path=str(self.db_path))

    @contextmanager
    def transaction(
        self, lock_keys: Sequence[str] = ()
    ) -> Iterator[SQLiteScoringSession]:
        """Open an immediate transaction and yield a scoring session.

        Args:
            lock_keys: Keys to serialize on; the database write lock covers them

        Raises:
            RepositoryError: If the write lock cannot be acquired in time
        """
        conn = self._get_connection()
        try:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise RepositoryError(
                    f"Failed to begin SQLite transaction: {e}"
                ) from e
            logger.debug("sqlite_transaction_started", lock_keys=list(lock_keys))

            try:
                yield SQLiteScoringSession(conn)
            except BaseException:
                conn.execute("ROLLBACK")
                raise

            try:
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                conn.execute("ROLLBACK")
                raise RepositoryError(f"Failed to commit SQLite transaction: {e}") from e
        finally:
            conn.close()

    def close(self) -> None:
        """Connections are per transaction; nothing to release."""

"""Tests for the PostgreSQL adapter with a mocked driver.

Live database runs need the alembic schema applied and are not part of the
default suite.
"""

from unittest.mock import MagicMock

import psycopg2
import pytest
from psycopg2 import extensions

from src.adapters.postgres_repository import PostgresRepository, PostgresScoringSession
from src.adapters.repository_factory import create_repository
from src.domain.exceptions import RepositoryError
from src.services.rule_table import _display_name_or_unknown
from tests.conftest import make_entry


def _connection(rows=None) -> tuple[MagicMock, MagicMock]:
    conn = MagicMock()
    cursor = conn.cursor.return_value.__enter__.return_value
    cursor.fetchall.return_value = rows or []
    cursor.rowcount = 1
    conn.get_transaction_status.return_value = extensions.TRANSACTION_STATUS_IDLE
    return conn, cursor


def _executed(cursor: MagicMock) -> list[tuple[str, tuple]]:
    return [(c.args[0], c.args[1] if len(c.args) > 1 else ()) for c in cursor.execute.call_args_list]


def test_insert_returns_generated_id() -> None:
    conn, cursor = _connection(rows=[{"id": 7}])
    session = PostgresScoringSession(conn)

    entry = session.insert_entry(make_entry("u-1", "NOTE_ADDED", 4, ticket_id=42))

    assert entry.id == 7
    query, params = _executed(cursor)[0]
    assert query.rstrip().endswith("RETURNING id")
    assert params[:4] == ("u-1", "u-1", "NOTE_ADDED", 4)


def test_insert_without_returned_row_raises() -> None:
    conn, _ = _connection(rows=[])
    session = PostgresScoringSession(conn)

    with pytest.raises(RepositoryError, match="did not return a row id"):
        session.insert_entry(make_entry("u-1", "NOTE_ADDED", 4))


def test_acquire_lock_uses_transaction_advisory_lock() -> None:
    conn, cursor = _connection()
    session = PostgresScoringSession(conn)

    session.acquire_lock("ticket:42")

    query, params = _executed(cursor)[0]
    assert "pg_advisory_xact_lock" in query
    assert params == ("ticket:42",)


def test_driver_errors_are_wrapped() -> None:
    conn, cursor = _connection()
    cursor.execute.side_effect = psycopg2.OperationalError("server closed the connection")
    session = PostgresScoringSession(conn)

    with pytest.raises(RepositoryError, match="server closed the connection"):
        session.delete_entries([1, 2])


def test_delete_entries_skips_empty_batch() -> None:
    conn, cursor = _connection()
    session = PostgresScoringSession(conn)

    assert session.delete_entries([]) == 0
    cursor.execute.assert_not_called()


@pytest.fixture
def pooled(mocker) -> tuple[PostgresRepository, MagicMock, MagicMock]:
    conn, cursor = _connection()
    pool_cls = mocker.patch(
        "src.adapters.postgres_repository.psycopg2_pool.ThreadedConnectionPool"
    )
    pool_cls.return_value.getconn.return_value = conn
    repository = PostgresRepository("localhost", 5432, "bpal", "postgres", "secret")
    cursor.execute.reset_mock()
    return repository, conn, cursor


def test_transaction_locks_sorted_keys_and_commits(pooled) -> None:
    repository, conn, cursor = pooled

    with repository.transaction(["user:u-2", "ticket:9", "user:u-2"]):
        pass

    locks = [params for query, params in _executed(cursor) if "pg_advisory_xact_lock" in query]
    assert locks == [("ticket:9",), ("user:u-2",)]
    conn.commit.assert_called_once()


def test_transaction_rolls_back_on_error(pooled) -> None:
    repository, conn, _ = pooled
    conn.get_transaction_status.return_value = extensions.TRANSACTION_STATUS_INTRANS

    with pytest.raises(ValueError), repository.transaction():
        raise ValueError("boom")

    conn.commit.assert_not_called()
    conn.rollback.assert_called_once()


def test_pool_size_validation() -> None:
    settings = MagicMock(
        postgres_statement_timeout_ms=1000,
        postgres_connect_timeout_seconds=5,
        postgres_application_name="bpal_scoring",
        postgres_min_connections=3,
        postgres_max_connections=2,
        postgres_ssl_mode=None,
    )

    with pytest.raises(RepositoryError, match="postgres_max_connections"):
        PostgresRepository("localhost", 5432, "bpal", "postgres", "secret", settings)


def test_factory_requires_password_for_postgres(settings) -> None:
    postgres_settings = settings.model_copy(
        update={"database_type": "postgres", "postgres_password": None}
    )

    with pytest.raises(ValueError, match="POSTGRES_PASSWORD"):
        create_repository(postgres_settings)


def test_failed_display_name_lookup_rolls_back_to_savepoint() -> None:
    conn, cursor = _connection()

    def _execute(query, params=()):
        if "user_settings" in query:
            raise psycopg2.OperationalError("relation user_settings does not exist")

    cursor.execute.side_effect = _execute
    session = PostgresScoringSession(conn)

    assert _display_name_or_unknown(session, "u-9") == "Unknown"
    statements = [query for query, _ in _executed(cursor)]
    assert statements[0] == "SAVEPOINT sp_display_name_lookup"
    assert "ROLLBACK TO SAVEPOINT sp_display_name_lookup" in statements

"""Tests for the SQLite repository and the shared SQL scoring session."""

from datetime import UTC, date, datetime, time

import pytest

from src.adapters.query_builders import BadgeQueryCriteria, LedgerQueryCriteria
from src.adapters.sql_session import DatabaseBackend, savepoint_identifier
from src.domain.exceptions import RepositoryError
from src.domain.models import Badge, BadgeCycleRun, BadgeCycleStatus
from tests.conftest import BASE_TIME, make_entry, minutes


def test_transaction_rolls_back_on_error(repo, ledger):
    with pytest.raises(RuntimeError), repo.transaction() as session:
        session.insert_entry(make_entry("u-1", "NOTE_ADDED", 4))
        raise RuntimeError("abort")

    assert ledger() == []


def test_savepoint_rollback_keeps_outer_writes(repo, ledger):
    with repo.transaction() as session:
        session.insert_entry(make_entry("u-1", "NOTE_ADDED", 4))
        with pytest.raises(RepositoryError), session.savepoint("secondary entry"):
            session.insert_entry(make_entry("u-2", "TICKET_CLOSED_ASSIST", 2))
            raise RepositoryError("assist failed")

    assert [e.user_id for e in ledger()] == ["u-1"]


def test_savepoint_identifier_is_sanitized():
    assert savepoint_identifier("badge_speed-demon 1") == "sp_badge_speed_demon_1"


def test_query_entries_filters_and_orders(repo, insert_entries, ledger):
    insert_entries(
        make_entry("u-1", "NOTE_ADDED", 4, ticket_id=1, created_at=BASE_TIME),
        make_entry("u-1", "TICKET_OPENED", 8, ticket_id=2, created_at=BASE_TIME + minutes(1)),
        make_entry("u-2", "NOTE_ADDED", 3, ticket_id=1, created_at=BASE_TIME + minutes(2)),
    )

    newest = ledger(related_ticket_id=1, order_desc=True, limit=1)
    notes = ledger(event_types=["NOTE_ADDED"], created_after=BASE_TIME + minutes(1))

    assert [(e.user_id, e.points_awarded) for e in newest] == [("u-2", 3)]
    assert [e.user_id for e in notes] == ["u-2"]
    assert newest[0].details == {"reason": "seeded"}
    assert newest[0].created_at == BASE_TIME + minutes(2)


def test_delete_entries(repo, insert_entries, ledger):
    first, second = insert_entries(
        make_entry("u-1", "NOTE_ADDED", 4), make_entry("u-1", "NOTE_ADDED", 3)
    )

    with repo.transaction() as session:
        removed = session.delete_entries([first.id])

    assert removed == 1
    assert [e.id for e in ledger()] == [second.id]


def test_sum_points_by_user_respects_bounds(repo, insert_entries):
    insert_entries(
        make_entry("u-1", "NOTE_ADDED", 4, username="Alice"),
        make_entry("u-1", "SHIFT_STARTED", -20, username="Alice"),
        make_entry("u-2", "KB_CREATED", 5, username="Bob"),
        make_entry("u-2", "KB_CREATED", 5, created_at=BASE_TIME + minutes(120)),
    )

    with repo.transaction() as session:
        totals = session.sum_points_by_user(BASE_TIME, BASE_TIME + minutes(60))

    assert {t.user_id: t.total_points for t in totals} == {"u-1": -16, "u-2": 5}


def test_ticket_snapshot_parses_notes(repo, seed):
    seed.ticket(
        9,
        created_at=BASE_TIME,
        subject="VPN down",
        created_by="u-1",
        completed_by_name="Alice",
        completed_at=BASE_TIME + minutes(20),
        source="Outlook",
        notes=[("u-1", BASE_TIME + minutes(5)), ("u-2", BASE_TIME + minutes(7))],
    )

    with repo.transaction() as session:
        ticket = session.get_ticket(9)
        completed = session.list_tickets_completed_by(
            "Alice", BASE_TIME, BASE_TIME + minutes(60)
        )
        missing = session.get_ticket(10)

    assert ticket is not None
    assert ticket.subject == "VPN down"
    assert [n.user_id for n in ticket.notes] == ["u-1", "u-2"]
    assert ticket.notes[0].timestamp == BASE_TIME + minutes(5)
    assert [t.id for t in completed] == [9]
    assert missing is None


def test_schedule_override_wins_over_default(repo, seed):
    seed.default_schedule("u-1", 2, time(8, 0))
    seed.schedule("u-1", date(2025, 3, 4), time(10, 30))

    with repo.transaction() as session:
        override = session.get_schedule_override("u-1", date(2025, 3, 4))
        default = session.get_default_schedule("u-1", 2)
        none = session.get_schedule_override("u-1", date(2025, 3, 5))

    assert override.shift_start_time == time(10, 30)
    assert default.shift_start_time == time(8, 0)
    assert none is None


def test_deactivate_badges_with_exclusion(repo):
    with repo.transaction() as session:
        for badge_id in ("sniper", "client_hero", "turtle"):
            session.insert_badge(
                Badge(
                    user_id="u-1",
                    username="Alice",
                    badge_id=badge_id,
                    achieved_at=BASE_TIME,
                    award_date=date(2025, 3, 4),
                )
            )
        changed = session.deactivate_badges(exclude_badge_ids=["client_hero"], reset_period="daily")
        active = session.query_badges(BadgeQueryCriteria(is_active=True))

    assert changed == 2
    assert [b.badge_id for b in active] == ["client_hero"]


def test_duplicate_badge_for_same_day_is_rejected(repo):
    badge = Badge(
        user_id="u-1",
        username="Alice",
        badge_id="sniper",
        achieved_at=BASE_TIME,
        award_date=date(2025, 3, 4),
    )

    with pytest.raises(RepositoryError), repo.transaction() as session:
        session.insert_badge(badge)
        session.insert_badge(badge)


def test_cycle_run_round_trip(repo):
    completed = datetime(2025, 3, 4, 21, 30, tzinfo=UTC)

    with repo.transaction() as session:
        session.record_cycle_run(
            BadgeCycleRun(
                target_date=date(2025, 3, 4),
                status=BadgeCycleStatus.AWARDED,
                winner_user_id="u-1",
                winner_points=42,
                completed_at=completed,
            )
        )
    with repo.transaction() as session:
        run = session.get_cycle_run(date(2025, 3, 4))

    assert run is not None
    assert run.status is BadgeCycleStatus.AWARDED
    assert run.winner_points == 42
    assert run.completed_at == completed


def test_empty_criteria_match_every_entry(repo, insert_entries):
    insert_entries(make_entry("u-1", "NOTE_ADDED", 4))

    with repo.transaction() as session:
        assert len(session.query_entries(LedgerQueryCriteria())) == 1


def test_session_reports_its_backend(repo):
    with repo.transaction() as session:
        assert session.backend is DatabaseBackend.SQLITE
        assert session.backend == "sqlite"

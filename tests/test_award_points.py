"""End-to-end tests for the award points use case."""

from collections import defaultdict
from datetime import UTC, date, datetime, time, timedelta

import pytest

from src.adapters.query_builders import BadgeQueryCriteria
from src.domain.badge_constants import TURTLE
from src.domain.exceptions import RepositoryError, ValidationError
from src.domain.models import EventType
from src.domain.scoring_constants import DUPLICATE_REQUEST_MESSAGE
from tests.conftest import BASE_TIME, minutes


def _net_by_user(entries) -> dict[str, int]:
    totals: dict[str, int] = defaultdict(int)
    for entry in entries:
        totals[entry.user_id] += entry.points_awarded
    return dict(totals)


def test_missing_username_is_rejected(award, ledger):
    with pytest.raises(ValidationError, match="Missing required parameters"):
        award("NOTE_ADDED", "u-1", "", {"ticketId": 42})

    assert ledger() == []


def test_first_note_scores_four(award, ledger, seed):
    seed.ticket(42, created_at=BASE_TIME - minutes(30), notes=[("u-1", BASE_TIME)])

    result = award("NOTE_ADDED", "u-1", "Alice", {"ticketId": 42})

    assert result.points_awarded == 4
    assert result.to_response() == {"success": True, "pointsAwarded": 4}
    (entry,) = ledger()
    assert entry.event_type == "NOTE_ADDED"
    assert entry.related_ticket_id == 42
    assert entry.details["reason"] == "First note added to ticket #42"


def test_repeated_request_inside_window_is_blocked(award, ledger):
    award("NOTE_ADDED", "u-1", "Alice", {"ticketId": 42})

    duplicate = award(
        "NOTE_ADDED", "u-1", "Alice", {"ticketId": 42}, now=BASE_TIME + timedelta(seconds=3)
    )
    processed = award(
        "NOTE_ADDED", "u-1", "Alice", {"ticketId": 42}, now=BASE_TIME + timedelta(seconds=9)
    )

    assert duplicate.duplicate
    assert duplicate.points_awarded == 0
    assert duplicate.to_response() == {
        "success": True,
        "pointsAwarded": 0,
        "duplicate": True,
        "message": DUPLICATE_REQUEST_MESSAGE,
    }
    assert not processed.duplicate
    assert len(ledger()) == 2


def test_close_by_other_user_splits_points(award, ledger, seed):
    seed.user("u-1", "Cara")
    seed.ticket(7, created_at=BASE_TIME - minutes(60), created_by="u-1")

    result = award("TICKET_CLOSED", "u-2", "Bob", {"ticketId": 7})

    assert result.points_awarded == 4
    entries = ledger(related_ticket_id=7)
    assert [(e.user_id, e.username, e.event_type, e.points_awarded) for e in entries] == [
        ("u-2", "Bob", "TICKET_CLOSED", 4),
        ("u-1", "Cara", "TICKET_CLOSED_ASSIST", 2),
    ]
    assert entries[1].details["closed_by_user_id"] == "u-2"


def test_creator_close_keeps_full_points(award, ledger, seed):
    seed.ticket(7, created_at=BASE_TIME - minutes(60), created_by="u-1")

    result = award("TICKET_CLOSED", "u-1", "Alice", {"ticketId": 7})

    assert result.points_awarded == 6
    assert [e.event_type for e in ledger(related_ticket_id=7)] == ["TICKET_CLOSED"]


def test_closing_twice_does_not_double_count(award, ledger, seed):
    seed.ticket(7, created_at=BASE_TIME - minutes(60), created_by="u-1")

    award("TICKET_CLOSED", "u-2", "Bob", {"ticketId": 7})
    second = award("TICKET_CLOSED", "u-2", "Bob", {"ticketId": 7}, now=BASE_TIME + minutes(1))

    assert second.points_awarded == 4
    entries = ledger(related_ticket_id=7)
    assert _net_by_user(entries) == {"u-2": 4, "u-1": 2}
    assert len(entries) == 2
    assert entries[0].details["removed_previous_awards"] == 1


def test_close_reopen_close_nets_one_closure(award, ledger, seed):
    seed.ticket(7, created_at=BASE_TIME - minutes(60), created_by="u-1")

    award("TICKET_CLOSED", "u-2", "Bob", {"ticketId": 7})
    reopened = award("TICKET_REOPENED", "u-3", "Dan", {"ticketId": 7}, now=BASE_TIME + minutes(1))
    award("TICKET_CLOSED", "u-2", "Bob", {"ticketId": 7}, now=BASE_TIME + minutes(2))

    assert reopened.points_awarded == 0
    entries = ledger(related_ticket_id=7)
    assert _net_by_user(entries) == {"u-2": 4, "u-1": 2, "u-3": 0}
    reversals = [
        e for e in entries if e.event_type == "TICKET_REOPENED" and e.points_awarded != 0
    ]
    assert sorted(e.points_awarded for e in reversals) == [-4, -2]


def test_reopen_without_closure_records_marker(award, ledger):
    result = award("TICKET_REOPENED", "u-3", "Dan", {"ticketId": 7})

    assert result.points_awarded == 0
    (entry,) = ledger(related_ticket_id=7)
    assert entry.event_type == "TICKET_REOPENED"
    assert entry.points_awarded == 0


def test_delete_reverses_every_users_points(award, ledger, seed):
    seed.ticket(7, created_at=BASE_TIME - minutes(60), created_by="u-1")

    award(
        "TICKET_OPENED",
        "u-1",
        "Alice",
        {"ticketId": 7, "priority": "Low", "subject": "Printer on fire"},
        now=BASE_TIME - minutes(30),
    )
    award("TICKET_CLOSED", "u-2", "Bob", {"ticketId": 7})
    deleted = award("TICKET_DELETED", "u-1", "Alice", {"ticketId": 7}, now=BASE_TIME + minutes(1))

    assert deleted.points_awarded == -10
    entries = ledger(related_ticket_id=7)
    assert _net_by_user(entries) == {"u-1": 0, "u-2": 0}
    deletions = [e for e in entries if e.event_type == "TICKET_DELETED"]
    assert [(e.user_id, e.points_awarded) for e in deletions] == [("u-1", -10), ("u-2", -4)]


def test_delete_of_unscored_ticket_records_marker(award, ledger):
    result = award("TICKET_DELETED", "u-1", "Alice", {"ticketId": 99})

    assert result.points_awarded == 0
    (entry,) = ledger(related_ticket_id=99)
    assert entry.details["reason"] == "Ticket deleted (no points to revert)"


def test_duplicate_subject_opens_for_zero(award, ledger, seed):
    seed.ticket(
        1, created_at=BASE_TIME - timedelta(hours=3), subject="Outlook keeps crashing"
    )

    result = award(
        "TICKET_OPENED",
        "u-1",
        "Alice",
        {"ticketId": 2, "priority": "High", "subject": "outlook keeps crashing!"},
    )

    assert result.points_awarded == 0
    (entry,) = ledger(related_ticket_id=2)
    assert entry.details["duplicate_detection"] is True
    assert entry.details["similar_ticket_id"] == 1


def test_tenth_opening_triggers_milestone(award, ledger, repo):
    for i in range(10):
        award(
            "TICKET_OPENED",
            "u-1",
            "Alice",
            {"ticketId": 100 + i, "priority": "Low"},
            now=BASE_TIME + minutes(i),
        )

    bonuses = ledger(event_types=[EventType.MILESTONE_BONUS])
    assert [(b.user_id, b.points_awarded) for b in bonuses] == [("u-1", 20)]
    with repo.transaction() as session:
        (notification,) = session.list_milestone_notifications()
    assert notification.milestone_count == 10


def test_failed_milestone_check_keeps_primary_points(award, ledger, mocker):
    mocker.patch(
        "src.use_cases.award_points.check_milestone",
        side_effect=RepositoryError("milestone table unavailable"),
    )

    result = award("TICKET_OPENED", "u-1", "Alice", {"ticketId": 5, "priority": "Low"})

    assert result.success
    assert result.points_awarded == 8
    assert [e.event_type for e in ledger()] == ["TICKET_OPENED"]


def test_failed_primary_write_propagates(award, mocker):
    mocker.patch(
        "src.adapters.sqlite_repository.SQLiteScoringSession.insert_entry",
        side_effect=RepositoryError("disk full"),
    )

    with pytest.raises(RepositoryError):
        award("NOTE_ADDED", "u-1", "Alice", {"ticketId": 42})


def test_unknown_event_type_records_nothing(award, ledger):
    result = award("SOMETHING_NEW", "u-1", "Alice", {"ticketId": 42})

    assert result.success
    assert result.points_awarded == 0
    assert ledger() == []


def test_late_shift_start_penalizes_and_awards_turtle(award, ledger, repo, seed):
    seed.schedule("u-1", date(2025, 3, 4), time(9, 0))

    # 09:21 local
    result = award("SHIFT_STARTED", "u-1", "Alice", now=datetime(2025, 3, 4, 7, 21, tzinfo=UTC))

    assert result.points_awarded == -20
    (entry,) = ledger()
    assert entry.details["late_minutes"] == 21
    with repo.transaction() as session:
        badges = session.query_badges(BadgeQueryCriteria(user_id="u-1", badge_ids=[TURTLE]))
    assert len(badges) == 1

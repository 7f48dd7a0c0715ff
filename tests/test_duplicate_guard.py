"""Tests for the short-window duplicate request guard."""

from datetime import timedelta

from src.domain.models import AwardRequest
from src.services.duplicate_guard import find_recent_duplicate
from tests.conftest import BASE_TIME, make_entry

WINDOW = 5.0


def _request(event_type: str = "NOTE_ADDED", ticket_id: int | None = 42) -> AwardRequest:
    data = {"ticketId": ticket_id} if ticket_id is not None else {}
    return AwardRequest(eventType=event_type, userId="u-1", username="alice", data=data)


def test_same_request_inside_window_is_duplicate(repo, insert_entries):
    (entry,) = insert_entries(make_entry("u-1", "NOTE_ADDED", 4, ticket_id=42))

    with repo.transaction() as session:
        duplicate = find_recent_duplicate(
            session, _request(), BASE_TIME + timedelta(seconds=3), WINDOW
        )

    assert duplicate is not None
    assert duplicate.id == entry.id


def test_same_request_after_window_is_processed(repo, insert_entries):
    insert_entries(make_entry("u-1", "NOTE_ADDED", 4, ticket_id=42))

    with repo.transaction() as session:
        duplicate = find_recent_duplicate(
            session, _request(), BASE_TIME + timedelta(seconds=6), WINDOW
        )

    assert duplicate is None


def test_other_ticket_is_not_duplicate(repo, insert_entries):
    insert_entries(make_entry("u-1", "NOTE_ADDED", 4, ticket_id=42))

    with repo.transaction() as session:
        duplicate = find_recent_duplicate(
            session, _request(ticket_id=43), BASE_TIME + timedelta(seconds=1), WINDOW
        )

    assert duplicate is None


def test_only_latest_entry_is_compared(repo, insert_entries):
    insert_entries(
        make_entry("u-1", "NOTE_ADDED", 4, ticket_id=42),
        make_entry("u-1", "NOTE_ADDED", 4, ticket_id=43, created_at=BASE_TIME + timedelta(seconds=1)),
    )

    with repo.transaction() as session:
        duplicate = find_recent_duplicate(
            session, _request(ticket_id=42), BASE_TIME + timedelta(seconds=2), WINDOW
        )

    assert duplicate is None


def test_requests_without_ticket_match_each_other(repo, insert_entries):
    insert_entries(make_entry("u-1", "SHIFT_STARTED", 10))

    with repo.transaction() as session:
        duplicate = find_recent_duplicate(
            session,
            _request("SHIFT_STARTED", ticket_id=None),
            BASE_TIME + timedelta(seconds=2),
            WINDOW,
        )

    assert duplicate is not None


def test_other_event_type_is_not_duplicate(repo, insert_entries):
    insert_entries(make_entry("u-1", "NOTE_ADDED", 4, ticket_id=42))

    with repo.transaction() as session:
        duplicate = find_recent_duplicate(
            session,
            _request("ATTACHMENT_ADDED"),
            BASE_TIME + timedelta(seconds=1),
            WINDOW,
        )

    assert duplicate is None

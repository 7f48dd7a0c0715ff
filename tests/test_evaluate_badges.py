"""Tests for request-triggered badge awarding."""

from datetime import date, timedelta

import pytest

from src.adapters.query_builders import BadgeQueryCriteria
from src.domain.badge_constants import LIGHTNING, SNIPER, SPEED_DEMON, TURTLE
from src.domain.exceptions import ValidationError
from src.use_cases.evaluate_badges import award_badge, badge_message, run_badge_check
from tests.conftest import BASE_TIME, make_entry, minutes

TODAY = date(2025, 3, 4)


def _badges(repo, user_id: str, badge_id: str):
    with repo.transaction() as session:
        return session.query_badges(BadgeQueryCriteria(user_id=user_id, badge_ids=[badge_id]))


def test_badge_message():
    assert badge_message(SNIPER) == "You earned the Sniper badge! 🎯"


def test_award_badge_once_per_day_with_notification(repo):
    with repo.transaction() as session:
        first = award_badge(
            session, "u-1", "Alice", SNIPER, award_date=TODAY, now=BASE_TIME
        )
        second = award_badge(
            session, "u-1", "Alice", SNIPER, award_date=TODAY, now=BASE_TIME
        )
        notifications = session.list_badge_notifications("u-1")

    assert first is not None
    assert first.id is not None
    assert first.is_active
    assert second is None
    assert [(n.badge_id, n.badge_name, n.badge_emoji) for n in notifications] == [
        (SNIPER, "Sniper", "🎯")
    ]


def test_deactivated_badge_still_blocks_same_day(repo):
    with repo.transaction() as session:
        award_badge(session, "u-1", "Alice", SNIPER, award_date=TODAY, now=BASE_TIME)
        session.deactivate_badges(badge_ids=[SNIPER])
        again = award_badge(
            session, "u-1", "Alice", SNIPER, award_date=TODAY, now=BASE_TIME
        )

    assert again is None


def test_award_badge_rejects_unknown_badge(repo):
    with repo.transaction() as session, pytest.raises(ValidationError):
        award_badge(session, "u-1", "Alice", "golden_goose", award_date=TODAY, now=BASE_TIME)


def test_run_badge_check_rejects_badge_without_check(repo, settings):
    with repo.transaction() as session, pytest.raises(ValidationError):
        run_badge_check(session, "client_hero", "u-1", "Alice", settings, BASE_TIME)


def _pickups(user_ids):
    return [
        make_entry(
            user_id,
            "TICKET_OPENED",
            8,
            ticket_id=i + 1,
            created_at=BASE_TIME - minutes(60 - i),
        )
        for i, user_id in enumerate(user_ids)
    ]


def test_sniper_after_four_pickups_in_a_row(repo, settings, insert_entries):
    insert_entries(*_pickups(["u-2", "u-1", "u-1", "u-1", "u-1"]))

    with repo.transaction() as session:
        badge = run_badge_check(session, SNIPER, "u-1", "Alice", settings, BASE_TIME)

    assert badge is not None
    assert badge.metadata == {"streak": 4}
    assert badge.award_date == TODAY


def test_sniper_not_awarded_for_three(repo, settings, insert_entries):
    insert_entries(*_pickups(["u-1", "u-2", "u-1", "u-1", "u-1"]))

    with repo.transaction() as session:
        badge = run_badge_check(session, SNIPER, "u-1", "Alice", settings, BASE_TIME)

    assert badge is None
    assert _badges(repo, "u-1", SNIPER) == []


def test_speed_demon_after_six_fast_closures(repo, settings, seed):
    for ticket_id in range(1, 7):
        created = BASE_TIME - minutes(90 - ticket_id)
        seed.ticket(
            ticket_id,
            created_at=created,
            created_by="u-1",
            completed_by_name="Alice",
            completed_at=created + minutes(25),
        )

    with repo.transaction() as session:
        badge = run_badge_check(session, SPEED_DEMON, "u-1", "Alice", settings, BASE_TIME)

    assert badge is not None
    assert badge.metadata["count"] == 6


def test_speed_demon_ignores_slow_and_foreign_closures(repo, settings, seed):
    for ticket_id in range(1, 6):
        created = BASE_TIME - minutes(90 - ticket_id)
        seed.ticket(
            ticket_id,
            created_at=created,
            created_by="u-1",
            completed_by_name="Alice",
            completed_at=created + minutes(25),
        )
    # Too slow
    seed.ticket(
        6,
        created_at=BASE_TIME - minutes(100),
        created_by="u-1",
        completed_by_name="Alice",
        completed_at=BASE_TIME - minutes(10),
    )
    # Closed by someone else
    seed.ticket(
        7,
        created_at=BASE_TIME - minutes(30),
        created_by="u-1",
        completed_by_name="Bob",
        completed_at=BASE_TIME - minutes(20),
    )

    with repo.transaction() as session:
        badge = run_badge_check(session, SPEED_DEMON, "u-1", "Alice", settings, BASE_TIME)

    assert badge is None


def test_lightning_after_three_outlook_tickets(repo, settings, seed):
    for ticket_id in range(1, 4):
        created = BASE_TIME - minutes(200 - ticket_id)
        seed.ticket(
            ticket_id,
            created_at=created,
            created_by="u-1",
            completed_by_name="Alice",
            completed_at=created + minutes(90),
            source="Outlook",
            notes=[("u-1", created + minutes(10))],
        )

    with repo.transaction() as session:
        badge = run_badge_check(session, LIGHTNING, "u-1", "Alice", settings, BASE_TIME)

    assert badge is not None
    assert badge.metadata == {"count": 3}


def test_lightning_needs_own_note(repo, settings, seed):
    for ticket_id in range(1, 4):
        created = BASE_TIME - minutes(200 - ticket_id)
        seed.ticket(
            ticket_id,
            created_at=created,
            created_by="u-1",
            completed_by_name="Alice",
            completed_at=created + minutes(90),
            source="Outlook",
            notes=[("u-2", created + minutes(10))],
        )

    with repo.transaction() as session:
        badge = run_badge_check(session, LIGHTNING, "u-1", "Alice", settings, BASE_TIME)

    assert badge is None


def test_turtle_records_delay(repo, settings):
    with repo.transaction() as session:
        badge = run_badge_check(
            session,
            TURTLE,
            "u-1",
            "Alice",
            settings,
            BASE_TIME,
            {"late_minutes": 21},
        )

    assert badge is not None
    assert badge.metadata == {"reason": "late_shift", "delay_minutes": 21}


def test_badge_date_follows_business_day(repo, settings):
    # 22:30 UTC is 00:30 local on the 5th
    after_midnight = BASE_TIME + timedelta(hours=12, minutes=30)

    with repo.transaction() as session:
        badge = run_badge_check(session, TURTLE, "u-1", "Alice", settings, after_midnight)

    assert badge is not None
    assert badge.award_date == date(2025, 3, 5)

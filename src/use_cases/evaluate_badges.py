"""Badge evaluation and awarding.

Badges triggered by award requests (Sniper, Speed Demon, Lightning, Turtle)
are checked right after the primary ledger write. A badge is awarded at most
once per user per business day, whether or not the earlier award was already
deactivated by the daily reset.
"""

from collections.abc import Callable
from datetime import date, datetime
from typing import Any

from src.adapters.query_builders import BadgeQueryCriteria, todays_entries_criteria
from src.config.logging_config import get_logger
from src.config.settings import Settings
from src.domain.badge_constants import (
    BADGE_CATALOG,
    LIGHTNING,
    LIGHTNING_REQUIRED_TICKETS,
    SNIPER,
    SNIPER_REQUIRED_STREAK,
    SPEED_DEMON,
    SPEED_DEMON_REQUIRED_CLOSURES,
    SPEED_DEMON_WINDOW_MINUTES,
    TURTLE,
)
from src.domain.exceptions import ValidationError
from src.domain.models import Badge, BadgeNotification, EventType
from src.domain.protocols import ScoringSession
from src.observability.metrics import BADGES_AWARDED_TOTAL
from src.services import badge_rules
from src.services.business_time import business_date, business_day_bounds

logger = get_logger(__name__)


def badge_message(badge_id: str) -> str:
    definition = BADGE_CATALOG[badge_id]
    return f"You earned the {definition.name} badge! {definition.emoji}"


def award_badge(
    session: ScoringSession,
    user_id: str,
    username: str,
    badge_id: str,
    *,
    award_date: date,
    now: datetime,
    metadata: dict[str, Any] | None = None,
) -> Badge | None:
    """Insert an active badge and notify its recipient.

    Args:
        session: Open scoring session
        user_id: Recipient
        username: Recipient display name
        badge_id: Catalog id
        award_date: Business date the badge counts for
        now: Award time
        metadata: Badge-specific facts (counts, streaks, delays)

    Returns:
        The new badge, or None if the user already has it for ``award_date``

    Raises:
        ValidationError: If ``badge_id`` is not in the catalog
        RepositoryError: On storage errors
    """
    definition = BADGE_CATALOG.get(badge_id)
    if definition is None:
        raise ValidationError(f"Unknown badge: {badge_id}")

    existing = session.query_badges(
        BadgeQueryCriteria(user_id=user_id, badge_ids=[badge_id], award_date=award_date)
    )
    if existing:
        logger.debug(
            "badge_already_awarded",
            user_id=user_id,
            badge_id=badge_id,
            award_date=award_date.isoformat(),
        )
        return None

    badge = session.insert_badge(
        Badge(
            user_id=user_id,
            username=username,
            badge_id=badge_id,
            achieved_at=now,
            award_date=award_date,
            reset_period=definition.reset_period,
            is_active=True,
            metadata=metadata or {},
        )
    )
    session.add_badge_notification(
        BadgeNotification(
            user_id=user_id,
            username=username,
            badge_id=badge_id,
            badge_name=definition.name,
            badge_emoji=definition.emoji,
            message=badge_message(badge_id),
            created_at=now,
        )
    )
    BADGES_AWARDED_TOTAL.labels(badge_id=badge_id).inc()
    logger.info(
        "badge_awarded",
        user_id=user_id,
        badge_id=badge_id,
        award_date=award_date.isoformat(),
    )
    return badge


BadgeCheck = Callable[
    [ScoringSession, str, str, Settings, datetime, dict[str, Any]], Badge | None
]


def _check_sniper(
    session: ScoringSession,
    user_id: str,
    username: str,
    settings: Settings,
    now: datetime,
    details: dict[str, Any],
) -> Badge | None:
    offset = settings.business_timezone_offset_hours
    day_start, day_end = business_day_bounds(now, offset)
    criteria = todays_entries_criteria(
        day_start,
        day_end,
        event_types=[EventType.TICKET_OPENED, EventType.ASSIGN_TO_SELF],
    )
    criteria.order_desc = True
    streak = badge_rules.current_pickup_streak(session.query_entries(criteria), user_id)
    if streak < SNIPER_REQUIRED_STREAK:
        return None
    return award_badge(
        session,
        user_id,
        username,
        SNIPER,
        award_date=business_date(now, offset),
        now=now,
        metadata={"streak": streak},
    )


def _check_speed_demon(
    session: ScoringSession,
    user_id: str,
    username: str,
    settings: Settings,
    now: datetime,
    details: dict[str, Any],
) -> Badge | None:
    offset = settings.business_timezone_offset_hours
    day_start, day_end = business_day_bounds(now, offset)
    tickets = session.list_tickets_completed_by(username, day_start, day_end)
    count = badge_rules.count_fast_closures(tickets, user_id)
    if count < SPEED_DEMON_REQUIRED_CLOSURES:
        return None
    return award_badge(
        session,
        user_id,
        username,
        SPEED_DEMON,
        award_date=business_date(now, offset),
        now=now,
        metadata={"count": count, "window_minutes": SPEED_DEMON_WINDOW_MINUTES},
    )


def _check_lightning(
    session: ScoringSession,
    user_id: str,
    username: str,
    settings: Settings,
    now: datetime,
    details: dict[str, Any],
) -> Badge | None:
    offset = settings.business_timezone_offset_hours
    day_start, day_end = business_day_bounds(now, offset)
    tickets = session.list_tickets_completed_by(username, day_start, day_end)
    count = badge_rules.count_lightning_tickets(tickets, user_id)
    if count < LIGHTNING_REQUIRED_TICKETS:
        return None
    return award_badge(
        session,
        user_id,
        username,
        LIGHTNING,
        award_date=business_date(now, offset),
        now=now,
        metadata={"count": count},
    )


def _check_turtle(
    session: ScoringSession,
    user_id: str,
    username: str,
    settings: Settings,
    now: datetime,
    details: dict[str, Any],
) -> Badge | None:
    return award_badge(
        session,
        user_id,
        username,
        TURTLE,
        award_date=business_date(now, settings.business_timezone_offset_hours),
        now=now,
        metadata={"reason": "late_shift", "delay_minutes": details.get("late_minutes")},
    )


BADGE_CHECKS: dict[str, BadgeCheck] = {
    SNIPER: _check_sniper,
    SPEED_DEMON: _check_speed_demon,
    LIGHTNING: _check_lightning,
    TURTLE: _check_turtle,
}


def run_badge_check(
    session: ScoringSession,
    badge_id: str,
    user_id: str,
    username: str,
    settings: Settings,
    now: datetime,
    details: dict[str, Any] | None = None,
) -> Badge | None:
    """Evaluate one request-triggered badge for a user and award it if earned.

    Args:
        session: Open scoring session
        badge_id: Badge to evaluate
        user_id: Acting user
        username: Acting user's display name
        settings: Application settings
        now: Request time
        details: Details of the primary outcome that triggered the check

    Returns:
        The newly awarded badge, or None

    Raises:
        ValidationError: If no check is registered for ``badge_id``
        RepositoryError: On storage errors
    """
    check = BADGE_CHECKS.get(badge_id)
    if check is None:
        raise ValidationError(f"No request-triggered check for badge: {badge_id}")
    return check(session, user_id, username, settings, now, details or {})

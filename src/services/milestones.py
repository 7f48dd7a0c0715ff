"""Daily ticket milestones.

A user's daily ticket count is their TICKET_OPENED entries (duplicate-flagged
openings excluded) plus ASSIGN_TO_SELF entries that earned points, within the
current business day. Tickets with a TICKET_DELETED entry recorded the same
business day do not count. Each threshold pays out at most once per user per
day; one call awards at most one threshold, the highest one reached.
"""

from collections.abc import Iterable, Sequence
from datetime import datetime

from src.adapters.query_builders import todays_entries_criteria
from src.config.logging_config import get_logger
from src.config.settings import Settings
from src.domain.models import (
    EventType,
    LedgerEntry,
    MilestoneNotification,
)
from src.domain.protocols import ScoringSession
from src.services.business_time import business_day_bounds

logger = get_logger(__name__)


def is_milestone_event(entry: LedgerEntry) -> bool:
    """Whether an entry counts as a handled ticket."""
    if entry.event_type == EventType.TICKET_OPENED.value:
        return entry.details.get("duplicate_detection") is not True
    if entry.event_type == EventType.ASSIGN_TO_SELF.value:
        return entry.points_awarded > 0
    return False


def count_milestone_events(
    entries: Iterable[LedgerEntry], deleted_ticket_ids: set[int]
) -> int:
    """Count handled tickets, skipping tickets deleted the same day."""
    return sum(
        1
        for entry in entries
        if is_milestone_event(entry)
        and not (
            entry.related_ticket_id is not None
            and entry.related_ticket_id in deleted_ticket_ids
        )
    )


def select_milestone(
    count: int, thresholds: Sequence[int], already_awarded: set[int]
) -> int | None:
    """Pick the threshold to award now, highest first.

    Example:
        >>> select_milestone(15, [10, 15], set())
        15
        >>> select_milestone(15, [10, 15], {15})
        10
        >>> select_milestone(9, [10, 15], set()) is None
        True
    """
    for threshold in sorted(thresholds, reverse=True):
        if count >= threshold and threshold not in already_awarded:
            return threshold
    return None


def milestone_message(username: str, milestone: int) -> str:
    return (
        f"🎉 Congratulations to {username} for handling {milestone} tickets today! "
        "Keep up the great work! 🎉"
    )


def check_milestone(
    session: ScoringSession,
    user_id: str,
    username: str,
    settings: Settings,
    now: datetime,
) -> int | None:
    """Award the next daily milestone for a user, if one was reached.

    Writes a broadcast MilestoneNotification and a MILESTONE_BONUS entry.

    Returns:
        The awarded threshold, or None

    Raises:
        RepositoryError: On storage errors
    """
    day_start, day_end = business_day_bounds(now, settings.business_timezone_offset_hours)

    todays_entries = session.query_entries(
        todays_entries_criteria(
            day_start,
            day_end,
            user_id=user_id,
            event_types=[
                EventType.TICKET_OPENED,
                EventType.ASSIGN_TO_SELF,
                EventType.MILESTONE_BONUS,
            ],
        )
    )
    deleted_today = session.query_entries(
        todays_entries_criteria(
            day_start, day_end, event_types=[EventType.TICKET_DELETED]
        )
    )
    deleted_ticket_ids = {
        e.related_ticket_id for e in deleted_today if e.related_ticket_id is not None
    }

    count = count_milestone_events(todays_entries, deleted_ticket_ids)
    already_awarded = {
        int(e.details["milestone"])
        for e in todays_entries
        if e.event_type == EventType.MILESTONE_BONUS.value
        and e.details.get("milestone") is not None
    }
    milestone = select_milestone(count, settings.milestone_thresholds, already_awarded)
    if milestone is None:
        return None

    session.add_milestone_notification(
        MilestoneNotification(
            achieved_by_user_id=user_id,
            achieved_by_username=username,
            milestone_count=milestone,
            message=milestone_message(username, milestone),
            created_at=now,
        )
    )
    session.insert_entry(
        LedgerEntry(
            user_id=user_id,
            username=username,
            event_type=EventType.MILESTONE_BONUS,
            points_awarded=settings.milestone_bonus_points,
            details={
                "reason": f"Hit the {milestone} tickets milestone today!",
                "milestone": milestone,
            },
            created_at=now,
        )
    )
    logger.info(
        "milestone_reached",
        user_id=user_id,
        milestone=milestone,
        ticket_count=count,
    )
    return milestone

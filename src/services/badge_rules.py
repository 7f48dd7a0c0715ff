"""Pure badge qualification rules.

Each function answers "how far along is this user" from plain data so the
thresholds can be tested without a database. Awarding lives in
``src.use_cases.evaluate_badges``.
"""

from collections.abc import Iterable, Sequence
from datetime import datetime

from src.domain.badge_constants import (
    LIGHTNING_CLOSURE_MINUTES,
    LIGHTNING_RESPONSE_MINUTES,
    LIGHTNING_SOURCE_MARKER,
    PERFECT_DAY_BLOCKING_BADGES,
    PERFECT_DAY_REQUIRED_BADGES,
    SPEED_DEMON_WINDOW_MINUTES,
)
from src.domain.models import LedgerEntry, TicketSnapshot
from src.services.milestones import is_milestone_event


def _minutes_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60


def closure_reference_time(ticket: TicketSnapshot, user_id: str) -> datetime | None:
    """Start of the clock for a closure: creation for own tickets, else assignment.

    Tickets the user neither created nor was assigned have no reference.
    """
    if ticket.created_by == user_id:
        return ticket.created_at
    return ticket.assigned_at


def count_fast_closures(
    tickets: Iterable[TicketSnapshot],
    user_id: str,
    window_minutes: float = SPEED_DEMON_WINDOW_MINUTES,
) -> int:
    """Completed tickets closed within ``window_minutes`` of their reference time."""
    count = 0
    for ticket in tickets:
        reference = closure_reference_time(ticket, user_id)
        if reference is None or ticket.completed_at is None:
            continue
        if _minutes_between(reference, ticket.completed_at) <= window_minutes:
            count += 1
    return count


def is_lightning_ticket(
    ticket: TicketSnapshot,
    user_id: str,
    *,
    response_minutes: float = LIGHTNING_RESPONSE_MINUTES,
    closure_minutes: float = LIGHTNING_CLOSURE_MINUTES,
    source_marker: str = LIGHTNING_SOURCE_MARKER,
) -> bool:
    """Mail-sourced ticket answered quickly and closed quickly by ``user_id``.

    The source must contain ``source_marker`` (case-insensitive), the user's
    first note must come within ``response_minutes`` of the reference time,
    and completion within ``closure_minutes``.
    """
    if not ticket.source or source_marker not in ticket.source.lower():
        return False

    reference = closure_reference_time(ticket, user_id)
    if reference is None or ticket.completed_at is None:
        return False
    if _minutes_between(reference, ticket.completed_at) > closure_minutes:
        return False

    note_times = [n.timestamp for n in ticket.notes_by(user_id) if n.timestamp is not None]
    if not note_times:
        return False
    return _minutes_between(reference, note_times[0]) <= response_minutes


def count_lightning_tickets(tickets: Iterable[TicketSnapshot], user_id: str) -> int:
    return sum(1 for ticket in tickets if is_lightning_ticket(ticket, user_id))


def current_pickup_streak(entries_newest_first: Sequence[LedgerEntry], user_id: str) -> int:
    """How many of the latest ticket pickups in a row belong to ``user_id``.

    Pickups are openings and point-earning self-assignments by anyone; the
    streak ends at the first pickup by someone else.
    """
    streak = 0
    for entry in entries_newest_first:
        if not is_milestone_event(entry):
            continue
        if entry.user_id != user_id:
            break
        streak += 1
    return streak


def perfect_day_reached(badge_ids: Iterable[str]) -> bool:
    """Whether a Client Hero winner's badges for the day make a Perfect Day.

    Example:
        >>> perfect_day_reached({"speed_demon", "sniper", "lightning", "client_hero"})
        True
        >>> perfect_day_reached({"speed_demon", "sniper", "lightning", "turtle"})
        False
    """
    held = set(badge_ids)
    return PERFECT_DAY_REQUIRED_BADGES <= held and not (held & PERFECT_DAY_BLOCKING_BADGES)

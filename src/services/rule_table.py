"""Award rule table.

Maps each event type to a handler that turns an award request into a
RuleOutcome. Handlers only read through the scoring session; every write
they need (assist points, reversals, supersession deletes) is described in
the outcome and applied by the award use case, which decides what is primary
and what is best effort.
"""

import math
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from src.adapters.query_builders import LedgerQueryCriteria, ticket_entries_criteria
from src.config.logging_config import get_logger
from src.config.settings import Settings
from src.domain.badge_constants import LIGHTNING, SNIPER, SPEED_DEMON, TURTLE
from src.domain.exceptions import RepositoryError
from src.domain.models import (
    AwardRequest,
    EventType,
    LedgerEntry,
    RuleOutcome,
)
from src.domain.protocols import ScoringSession
from src.domain.scoring_constants import (
    BREAK_EXCEEDED_POINTS,
    BREAK_TIME_PENALTY_DEFAULT_POINTS,
    NOTE_DELETED_POINTS,
    NOTE_POINTS_BY_ORDINAL,
    NOTE_POINTS_DEFAULT,
    NOTE_POINTS_UNREADABLE_TICKET,
    PRIORITY_POINTS,
    SCORE_ADJUST_FLAT_POINTS,
    SELF_ASSIGN_POINTS,
    SHIFT_BASELINE_POINTS,
    SHIFT_LATE_POINTS,
    SHIFT_ON_TIME_POINTS,
    TICKET_CLOSED_ASSIST_POINTS,
    TICKET_CLOSED_BY_CREATOR_POINTS,
    TICKET_CLOSED_CLOSER_POINTS,
)
from src.services.business_time import (
    local_clock_to_utc,
    parse_timestamp,
    to_business_time,
)
from src.services.similarity import find_similar_ticket

logger = get_logger(__name__)

CLOSE_EVENT_TYPES: tuple[str, ...] = (
    EventType.TICKET_CLOSED.value,
    EventType.TICKET_CLOSED_ASSIST.value,
)


@dataclass
class RuleContext:
    """Everything a rule handler may look at."""

    request: AwardRequest
    session: ScoringSession
    settings: Settings
    now: datetime

    @property
    def user_id(self) -> str:
        return self.request.user_id or ""

    @property
    def username(self) -> str:
        return self.request.username or ""

    @property
    def data(self) -> dict[str, Any]:
        return self.request.data

    @property
    def ticket_id(self) -> int | None:
        return self.request.ticket_id

    def entry(
        self,
        *,
        user_id: str,
        username: str,
        event_type: EventType,
        points: int,
        details: dict[str, Any],
        related_ticket_id: int | None = None,
    ) -> LedgerEntry:
        """Build a ledger entry stamped with the request time."""
        return LedgerEntry(
            user_id=user_id,
            username=username,
            event_type=event_type,
            points_awarded=points,
            related_ticket_id=related_ticket_id,
            details=details,
            created_at=self.now,
        )


RuleHandler = Callable[[RuleContext], RuleOutcome]


def priority_points(priority: Any) -> int:
    """Base points for a priority label; unknown labels are worth 0."""
    if not isinstance(priority, str):
        return 0
    return PRIORITY_POINTS.get(priority, 0)


def _as_number(value: Any) -> float | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _format_minutes(minutes: float) -> str:
    return str(int(minutes)) if float(minutes).is_integer() else f"{minutes:.1f}"


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _last_entry_id(entries: Iterable[LedgerEntry], event_type: EventType) -> int | None:
    ids = [e.id for e in entries if e.event_type == event_type.value and e.id is not None]
    return max(ids) if ids else None


def _display_name_or_unknown(session: ScoringSession, user_id: str) -> str:
    try:
        with session.savepoint("display_name_lookup"):
            return session.get_display_name(user_id) or "Unknown"
    except RepositoryError as e:
        logger.warning("display_name_lookup_failed", user_id=user_id, error=str(e))
        return "Unknown"


# Ticket creation


def _ticket_opened(ctx: RuleContext) -> RuleOutcome:
    settings = ctx.settings
    priority = ctx.data.get("priority")
    subject = ctx.data.get("subject") or ""

    since = ctx.now - timedelta(days=settings.duplicate_subject_lookback_days)
    candidates = ctx.session.list_tickets_created_since(
        since, exclude_ticket_id=ctx.ticket_id
    )
    match = find_similar_ticket(
        subject, candidates, settings.duplicate_subject_similarity
    )

    if match is not None:
        similar, score = match
        threshold_pct = round(settings.duplicate_subject_similarity * 100)
        logger.info(
            "ticket_duplicate_subject_detected",
            ticket_id=ctx.ticket_id,
            similar_ticket_id=similar.id,
            similarity=round(score, 4),
        )
        return RuleOutcome(
            points=0,
            reason=f"Ticket created with similar subject ({threshold_pct}%+ match)",
            details={
                "duplicate_detection": True,
                "similar_to": similar.subject,
                "similar_ticket_id": similar.id,
                "similarity": round(score, 4),
                "priority": priority,
            },
            related_ticket_id=ctx.ticket_id,
            force_record=True,
        )

    points = priority_points(priority) + settings.ticket_opened_flat_points
    reason = f"Ticket created ({priority} Priority Bonus)" if points > 0 else "Ticket created"
    return RuleOutcome(
        points=points,
        reason=reason,
        details={"priority": priority},
        related_ticket_id=ctx.ticket_id,
        check_milestone=True,
        force_record=True,
        badge_checks=[SNIPER],
    )


def _score_adjusted(ctx: RuleContext) -> RuleOutcome:
    data = ctx.data
    old_total = (SCORE_ADJUST_FLAT_POINTS + priority_points(data.get("oldPriority"))) * (
        _as_number(data.get("oldComplexity")) or 1
    )
    new_total = (SCORE_ADJUST_FLAT_POINTS + priority_points(data.get("newPriority"))) * (
        _as_number(data.get("newComplexity")) or 1
    )
    return RuleOutcome(
        points=_round_half_up(new_total - old_total),
        reason="Score adjusted by admin",
        details={
            "old_priority": data.get("oldPriority"),
            "new_priority": data.get("newPriority"),
            "old_complexity": data.get("oldComplexity"),
            "new_complexity": data.get("newComplexity"),
        },
        related_ticket_id=ctx.ticket_id,
    )


# Ticket closing and reopening


def _superseded_closures(
    entries: list[LedgerEntry], closer_id: str, after_id: int | None
) -> list[LedgerEntry]:
    """Closures by ``closer_id`` (and the assists they generated) not yet reversed."""
    superseded: list[LedgerEntry] = []
    for entry in entries:
        if entry.id is None or (after_id is not None and entry.id <= after_id):
            continue
        if entry.event_type == EventType.TICKET_CLOSED.value and entry.user_id == closer_id:
            superseded.append(entry)
        elif (
            entry.event_type == EventType.TICKET_CLOSED_ASSIST.value
            and entry.details.get("closed_by_user_id") == closer_id
        ):
            superseded.append(entry)
    return superseded


def _ticket_closed(ctx: RuleContext) -> RuleOutcome:
    ticket_id = ctx.ticket_id
    if ticket_id is None:
        return RuleOutcome(reason="Ticket closed without a ticket id")

    ticket = ctx.session.get_ticket(ticket_id)
    if ticket is None:
        return RuleOutcome(reason="Error fetching ticket data", related_ticket_id=ticket_id)

    entries = ctx.session.query_entries(ticket_entries_criteria(ticket_id))
    opened = next(
        (e for e in entries if e.event_type == EventType.TICKET_OPENED.value), None
    )
    if opened is not None and opened.details.get("duplicate_detection") is True:
        return RuleOutcome(
            reason="Ticket was flagged as duplicate - no points for closure",
            details={"action": "Duplicate ticket closed", "duplicate_ticket": True},
            related_ticket_id=ticket_id,
        )

    details: dict[str, Any] = {}
    last_reopen_id = _last_entry_id(entries, EventType.TICKET_REOPENED)
    superseded = _superseded_closures(entries, ctx.user_id, after_id=last_reopen_id)
    if superseded:
        details["removed_previous_awards"] = sum(
            1 for e in superseded if e.event_type == EventType.TICKET_CLOSED.value
        )
    elif last_reopen_id is not None:
        details["previous_close_reversed"] = True

    badge_checks = [SPEED_DEMON, LIGHTNING]
    superseded_ids = [e.id for e in superseded if e.id is not None]

    if ticket.created_by == ctx.user_id:
        details["action"] = "Creator closed own ticket"
        return RuleOutcome(
            points=TICKET_CLOSED_BY_CREATOR_POINTS,
            reason="Ticket closed (creator closed own ticket)",
            details=details,
            related_ticket_id=ticket_id,
            superseded_entry_ids=superseded_ids,
            badge_checks=badge_checks,
        )

    details.update(
        {
            "action": "Distributed score between creator and closer",
            "closer_points": TICKET_CLOSED_CLOSER_POINTS,
            "creator_points": TICKET_CLOSED_ASSIST_POINTS,
        }
    )
    secondary: list[LedgerEntry] = []
    if ticket.created_by:
        secondary.append(
            ctx.entry(
                user_id=ticket.created_by,
                username=_display_name_or_unknown(ctx.session, ticket.created_by),
                event_type=EventType.TICKET_CLOSED_ASSIST,
                points=TICKET_CLOSED_ASSIST_POINTS,
                details={
                    "reason": "Ticket closed by another user (40% share)",
                    "closed_by_user_id": ctx.user_id,
                    "closed_by_username": ctx.username,
                },
                related_ticket_id=ticket_id,
            )
        )
    return RuleOutcome(
        points=TICKET_CLOSED_CLOSER_POINTS,
        reason="Ticket closed (60% of points - creator gets 40%)",
        details=details,
        related_ticket_id=ticket_id,
        superseded_entry_ids=superseded_ids,
        secondary_entries=secondary,
        badge_checks=badge_checks,
    )


def _ticket_reopened(ctx: RuleContext) -> RuleOutcome:
    ticket_id = ctx.ticket_id
    if ticket_id is None:
        return RuleOutcome(reason="Ticket reopened without a ticket id")

    entries = ctx.session.query_entries(ticket_entries_criteria(ticket_id))
    last_reopen_id = _last_entry_id(entries, EventType.TICKET_REOPENED)
    open_closures = [
        e
        for e in reversed(entries)
        if e.event_type in CLOSE_EVENT_TYPES
        and e.points_awarded != 0
        and (last_reopen_id is None or (e.id is not None and e.id > last_reopen_id))
    ]

    if not open_closures:
        return RuleOutcome(
            reason="Ticket reopened (no close events to reverse)",
            details={"action": "Ticket reopened"},
            related_ticket_id=ticket_id,
            force_record=True,
        )

    reversals = [
        ctx.entry(
            user_id=closure.user_id,
            username=closure.username,
            event_type=EventType.TICKET_REOPENED,
            points=-closure.points_awarded,
            details={
                "reason": f"Ticket reopened (reversing {closure.points_awarded} close points)",
                "action": "Ticket reopened",
                "reversed_event_type": closure.event_type,
                "reversed_points": closure.points_awarded,
                "reversed_entry_id": closure.id,
                "reopened_by_user_id": ctx.user_id,
                "reopened_by_username": ctx.username,
            },
            related_ticket_id=ticket_id,
        )
        for closure in open_closures
    ]
    return RuleOutcome(
        reason="Ticket reopened (close points reversed for all closers)",
        details={"action": "Ticket reopened", "events_reversed": len(reversals)},
        related_ticket_id=ticket_id,
        force_record=True,
        secondary_entries=reversals,
    )


# Ticket deletion


@dataclass
class TicketReversal:
    """Net effect of one user's ledger entries on a ticket."""

    user_id: str
    username: str
    net_points: int = 0
    events: list[dict[str, Any]] = field(default_factory=list)

    @property
    def amount(self) -> int:
        """Signed amount that cancels the user's net total."""
        return -self.net_points


def plan_ticket_reversals(
    entries: Iterable[LedgerEntry], actor_id: str
) -> tuple[TicketReversal | None, list[TicketReversal]]:
    """Split a ticket's ledger history into per-user reversal pairs.

    The actor's own pair is returned separately so it becomes the primary
    entry; everyone else's pair is written as its own reversal entry. Users
    whose entries already net to zero need no reversal.

    Args:
        entries: Every ledger entry of the ticket
        actor_id: User deleting the ticket

    Returns:
        (actor's reversal or None, other users' reversals in first-seen order)
    """
    by_user: dict[str, TicketReversal] = {}
    for entry in entries:
        reversal = by_user.setdefault(
            entry.user_id, TicketReversal(user_id=entry.user_id, username=entry.username)
        )
        reversal.net_points += entry.points_awarded
        reversal.events.append(
            {"type": entry.event_type, "points": entry.points_awarded}
        )

    own = by_user.pop(actor_id, None)
    if own is not None and own.net_points == 0:
        own = None
    others = [r for r in by_user.values() if r.net_points != 0]
    return own, others


def _ticket_deleted(ctx: RuleContext) -> RuleOutcome:
    ticket_id = ctx.ticket_id
    if ticket_id is None:
        return RuleOutcome(reason="Ticket deleted without a ticket id")

    entries = ctx.session.query_entries(ticket_entries_criteria(ticket_id))
    if not entries:
        return RuleOutcome(
            reason="Ticket deleted (no points to revert)",
            details={"action": "Ticket deleted"},
            related_ticket_id=ticket_id,
            force_record=True,
        )

    own, others = plan_ticket_reversals(entries, ctx.user_id)
    users_affected = len({e.user_id for e in entries})
    secondary = [
        ctx.entry(
            user_id=reversal.user_id,
            username=reversal.username,
            event_type=EventType.TICKET_DELETED,
            points=reversal.amount,
            details={
                "reason": f"Ticket #{ticket_id} deleted - reversing all points",
                "action": "Ticket deleted",
                "reverted_points": reversal.net_points,
                "events_reversed": len(reversal.events),
                "deleted_by_user_id": ctx.user_id,
                "deleted_by_username": ctx.username,
                "affected_events": reversal.events,
            },
            related_ticket_id=ticket_id,
        )
        for reversal in others
    ]

    details: dict[str, Any] = {
        "action": "Ticket deleted",
        "total_users_affected": users_affected,
    }
    if own is None:
        return RuleOutcome(
            reason="Ticket deleted (you had no points from this ticket)",
            details=details,
            related_ticket_id=ticket_id,
            force_record=True,
            secondary_entries=secondary,
        )

    details["reverted_points"] = own.net_points
    details["events_reversed"] = len(own.events)
    return RuleOutcome(
        points=own.amount,
        reason=f"Ticket deleted (reversing {own.net_points} points from your actions)",
        details=details,
        related_ticket_id=ticket_id,
        force_record=True,
        secondary_entries=secondary,
    )


# Assignment


def _assign_to_self(ctx: RuleContext) -> RuleOutcome:
    ticket_id = ctx.ticket_id
    ticket = ctx.session.get_ticket(ticket_id) if ticket_id is not None else None
    if ticket is None:
        return RuleOutcome(
            reason="Error fetching ticket for assignment check.",
            related_ticket_id=ticket_id,
        )

    if ticket.created_by == ctx.user_id and not ticket.assigned_to_name:
        return RuleOutcome(
            reason="Creator assigned their own unassigned ticket.",
            details={"action": "Self-assigned own new/untouched ticket"},
            related_ticket_id=ticket_id,
        )

    last_assignment = ctx.session.query_entries(
        LedgerQueryCriteria(
            related_ticket_id=ticket_id,
            event_types=[EventType.ASSIGN_TO_SELF],
            order_desc=True,
            limit=1,
        )
    )
    if last_assignment and last_assignment[0].user_id == ctx.user_id:
        return RuleOutcome(
            reason="Cannot re-assign the same ticket to yourself for points.",
            details={"action": "Blocked self-reassignment"},
            related_ticket_id=ticket_id,
        )

    reference = parse_timestamp(ctx.data.get("referenceTimestamp"))
    reference_source = "assigned_at or created_at"
    if reference is None and ticket.assigned_at is not None:
        reference, reference_source = ticket.assigned_at, "ticket assignment time"
    if reference is None:
        reference, reference_source = ticket.created_at, "ticket creation time"

    min_age = timedelta(hours=ctx.settings.self_assign_min_age_hours)
    if reference < ctx.now - min_age:
        return RuleOutcome(
            points=SELF_ASSIGN_POINTS,
            reason=f"Assigned an aged ticket to self (based on {reference_source})",
            details={"action": "Assigned ticket after 2-hour window"},
            related_ticket_id=ticket_id,
            check_milestone=True,
            badge_checks=[SNIPER],
        )

    return RuleOutcome(
        reason=f"Assigned a ticket to self within the 2-hour window (based on {reference_source})",
        details={"action": "Assigned ticket too soon for points"},
        related_ticket_id=ticket_id,
    )


# Notes


def _note_added(ctx: RuleContext) -> RuleOutcome:
    ticket_id = ctx.ticket_id
    ticket = ctx.session.get_ticket(ticket_id) if ticket_id is not None else None
    if ticket is None:
        return RuleOutcome(
            points=NOTE_POINTS_UNREADABLE_TICKET,
            reason=f"Note added to ticket #{ticket_id} (default score)",
            related_ticket_id=ticket_id,
        )

    # The caller may report the note before the ticket row includes it.
    count = max(len(ticket.notes_by(ctx.user_id)), 1)
    points = NOTE_POINTS_BY_ORDINAL.get(count, NOTE_POINTS_DEFAULT)
    if count == 1:
        reason = f"First note added to ticket #{ticket_id}"
    elif count == 2:
        reason = f"Second note added to ticket #{ticket_id}"
    else:
        reason = f"Note #{count} added to ticket #{ticket_id}"
    return RuleOutcome(
        points=points,
        reason=reason,
        details={"note_number": count},
        related_ticket_id=ticket_id,
    )


# Shifts and breaks


def _shift_started(ctx: RuleContext) -> RuleOutcome:
    settings = ctx.settings
    offset = settings.business_timezone_offset_hours
    local_day = to_business_time(ctx.now, offset).date()

    slot = ctx.session.get_schedule_override(ctx.user_id, local_day)
    if slot is None:
        slot = ctx.session.get_default_schedule(ctx.user_id, local_day.isoweekday())

    if slot is None:
        return RuleOutcome(
            points=SHIFT_BASELINE_POINTS,
            reason="Shift started",
            details={"status": "No schedule found"},
        )

    scheduled = local_clock_to_utc(local_day, slot.shift_start_time, offset)
    delay_minutes = (ctx.now - scheduled).total_seconds() / 60
    details: dict[str, Any] = {
        "scheduled_start_time": slot.shift_start_time.strftime("%H:%M"),
    }

    if -settings.shift_early_window_minutes <= delay_minutes <= settings.shift_on_time_grace_minutes:
        details["status"] = "On-time"
        return RuleOutcome(
            points=SHIFT_ON_TIME_POINTS,
            reason="Shift started on time (Bonus)",
            details=details,
        )

    if delay_minutes >= settings.shift_late_threshold_minutes:
        late_minutes = _round_half_up(delay_minutes)
        details["status"] = "Late"
        details["late_minutes"] = late_minutes
        badge_checks = (
            [TURTLE] if delay_minutes > settings.shift_late_threshold_minutes else []
        )
        return RuleOutcome(
            points=SHIFT_LATE_POINTS,
            reason=f"Shift started late by {late_minutes} minutes",
            details=details,
            badge_checks=badge_checks,
        )

    details["status"] = "Normal"
    return RuleOutcome(
        points=SHIFT_BASELINE_POINTS, reason="Shift started", details=details
    )


def _break_exceeded(ctx: RuleContext) -> RuleOutcome:
    data = ctx.data
    exceeded = _as_number(data.get("minutesExceeded"))
    if exceeded is None:
        actual = _as_number(data.get("actualMinutes"))
        expected = _as_number(data.get("expectedDuration"))
        exceeded = actual - expected if actual is not None and expected is not None else 0.0

    if exceeded >= ctx.settings.break_grace_minutes:
        return RuleOutcome(
            points=BREAK_EXCEEDED_POINTS,
            reason=f"Break exceeded by {_format_minutes(exceeded)} minutes",
            details={
                "minutes_exceeded": exceeded,
                "break_type": data.get("breakType"),
                "expected_duration": data.get("expectedDuration"),
                "action": "Break time exceeded limit",
            },
        )
    return RuleOutcome(reason="Break ended within acceptable time")


def _break_time_penalty(ctx: RuleContext) -> RuleOutcome:
    data = ctx.data
    penalty = _as_number(data.get("penalty_points"))
    points = int(penalty) if penalty else BREAK_TIME_PENALTY_DEFAULT_POINTS
    total_minutes = data.get("total_break_minutes")
    return RuleOutcome(
        points=points,
        reason=data.get("reason")
        or f"Total break time exceeded 80 minutes ({total_minutes} minutes)",
        details={
            "total_break_minutes": total_minutes,
            "penalty_points": points,
            "action": "Break time limit penalty",
            "awarded_by": "system",
        },
    )


def _penalty_restored(ctx: RuleContext) -> RuleOutcome:
    return RuleOutcome(
        points=50,
        reason="Break penalty points restored by admin",
        details={
            "awarded_by": ctx.data.get("awardedBy") or "admin",
            "action": "Penalty points restored",
        },
    )


# Fixed-value events


@dataclass(frozen=True)
class FlatRule:
    """Event worth a fixed amount, with payload fields copied into details."""

    points: int
    reason: Callable[[Mapping[str, Any]], str]
    fields: Mapping[str, str] = field(default_factory=dict)
    """details key -> payload key"""

    action: str | None = None
    ticket_scoped: bool = True


FLAT_RULES: dict[str, FlatRule] = {
    EventType.ATTACHMENT_ADDED.value: FlatRule(
        3, lambda d: f"Added attachment: {d.get('fileName')}", {"fileName": "fileName"}
    ),
    EventType.ATTACHMENT_DELETED.value: FlatRule(
        -3, lambda d: f"Deleted attachment: {d.get('fileName')}", {"fileName": "fileName"}
    ),
    EventType.TICKET_LINKED.value: FlatRule(
        3,
        lambda d: f"Linked tickets #{d.get('ticketId')} and #{d.get('linkedTicketId')}",
        {"linkedTicketId": "linkedTicketId", "relationshipType": "relationshipType"},
    ),
    EventType.TICKET_UNLINKED.value: FlatRule(
        -3,
        lambda d: f"Unlinked tickets #{d.get('ticketId')} and #{d.get('unlinkedTicketId')}",
        {"unlinkedTicketId": "unlinkedTicketId"},
    ),
    EventType.NOTE_DELETED.value: FlatRule(
        NOTE_DELETED_POINTS,
        lambda d: f"Note deleted from ticket #{d.get('ticketId')}",
        action="Note deleted",
    ),
    EventType.TICKET_FOLLOWUP_ADDED.value: FlatRule(
        0, lambda d: "Ticket flagged for follow-up", action="Flagged for follow-up"
    ),
    EventType.ACCEPT_ASSIGNMENT_QUICKLY.value: FlatRule(
        5,
        lambda d: "Accepted assignment quickly",
        {"timeToAccept_seconds": "timeToAccept"},
    ),
    EventType.SLOW_ACCEPTANCE.value: FlatRule(
        -10,
        lambda d: "Slow to accept assignment",
        {"timeToAccept_seconds": "timeToAccept"},
    ),
    EventType.SCHEDULE_ITEM_ADDED.value: FlatRule(
        15,
        lambda d: f"{d.get('itemType') or 'Item'} added to schedule",
        {"itemType": "itemType"},
        ticket_scoped=False,
    ),
    EventType.SCHEDULE_ITEM_DELETED.value: FlatRule(
        -15,
        lambda d: "Schedule item deleted",
        action="Schedule item deleted",
        ticket_scoped=False,
    ),
    EventType.MEETING_COLLABORATION.value: FlatRule(
        10,
        lambda d: "Joined a meeting collaboration",
        {"meetingId": "meetingId"},
        ticket_scoped=False,
    ),
    EventType.MISSING_SHIFT_START.value: FlatRule(
        -50,
        lambda d: "Failed to start shift within 2 hours of scheduled time",
        {"scheduled_start_time": "scheduledStartTime", "hours_late": "hoursLate"},
        action="Missing shift start",
        ticket_scoped=False,
    ),
    EventType.PERFECT_DAY.value: FlatRule(
        50,
        lambda d: "Perfect Day achieved! All 4 positive badges earned with no Turtle badge",
        action="Perfect Day Achievement",
        ticket_scoped=False,
    ),
    EventType.KUDOS_RECEIVED.value: FlatRule(
        5,
        lambda d: f"Received kudos from {d.get('fromUsername')}",
        {"from_user": "fromUsername", "from_user_id": "fromUserId"},
    ),
    EventType.TAG_ADDED.value: FlatRule(
        1,
        lambda d: f"Tag added to ticket #{d.get('ticketId')}",
        {"tag": "tag"},
        action="Tag added",
    ),
    EventType.KB_CREATED.value: FlatRule(
        5,
        lambda d: f"Created knowledge base entry: {d.get('title')}",
        {"kb_id": "kbId", "kb_title": "title"},
        action="Knowledge base entry created",
    ),
    EventType.TRAINING_COMPLETED.value: FlatRule(
        50,
        lambda d: f"Training Session {d.get('sessionNumber')} Completed - {d.get('clientName')}",
        {"session_number": "sessionNumber", "client_name": "clientName"},
        action="Training session completed",
        ticket_scoped=False,
    ),
}


def _apply_flat_rule(rule: FlatRule, ctx: RuleContext) -> RuleOutcome:
    details = {key: ctx.data.get(source) for key, source in rule.fields.items()}
    if rule.action:
        details["action"] = rule.action
    return RuleOutcome(
        points=rule.points,
        reason=rule.reason(ctx.data),
        details=details,
        related_ticket_id=ctx.ticket_id if rule.ticket_scoped else None,
    )


RULES: dict[str, RuleHandler] = {
    EventType.TICKET_OPENED.value: _ticket_opened,
    EventType.TICKET_CLOSED.value: _ticket_closed,
    EventType.TICKET_REOPENED.value: _ticket_reopened,
    EventType.TICKET_DELETED.value: _ticket_deleted,
    EventType.SCORE_ADJUSTED.value: _score_adjusted,
    EventType.ASSIGN_TO_SELF.value: _assign_to_self,
    EventType.NOTE_ADDED.value: _note_added,
    EventType.SHIFT_STARTED.value: _shift_started,
    EventType.BREAK_EXCEEDED.value: _break_exceeded,
    EventType.BREAK_TIME_PENALTY.value: _break_time_penalty,
    EventType.PENALTY_RESTORED.value: _penalty_restored,
}


def evaluate_event(ctx: RuleContext) -> RuleOutcome:
    """Run the rule registered for the request's event type.

    Unknown event types are not an error; they score 0 with an explanatory
    reason.

    Raises:
        RepositoryError: If a read needed by the rule fails
    """
    event_type = ctx.request.event_type or ""
    handler = RULES.get(event_type)
    if handler is not None:
        return handler(ctx)

    flat_rule = FLAT_RULES.get(event_type)
    if flat_rule is not None:
        return _apply_flat_rule(flat_rule, ctx)

    logger.warning("unknown_event_type", event_type=event_type, user_id=ctx.user_id)
    return RuleOutcome(reason=f"Unknown event type: {event_type}")

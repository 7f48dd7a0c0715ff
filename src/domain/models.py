"""Domain models for the B-Pal scoring engine.

All models use Pydantic v2 for validation and serialization.
"""

from datetime import UTC, date, datetime, time
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.domain.scoring_constants import DUPLICATE_REQUEST_MESSAGE


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class EventType(str, Enum):
    """Ledger event types.

    Client-triggered types arrive through the award request; the rest are
    written by the engine itself as side effects.
    """

    TICKET_OPENED = "TICKET_OPENED"
    TICKET_CLOSED = "TICKET_CLOSED"
    TICKET_CLOSED_ASSIST = "TICKET_CLOSED_ASSIST"
    TICKET_REOPENED = "TICKET_REOPENED"
    TICKET_DELETED = "TICKET_DELETED"
    TICKET_LINKED = "TICKET_LINKED"
    TICKET_UNLINKED = "TICKET_UNLINKED"
    TICKET_FOLLOWUP_ADDED = "TICKET_FOLLOWUP_ADDED"
    SCORE_ADJUSTED = "SCORE_ADJUSTED"
    ASSIGN_TO_SELF = "ASSIGN_TO_SELF"
    ACCEPT_ASSIGNMENT_QUICKLY = "ACCEPT_ASSIGNMENT_QUICKLY"
    SLOW_ACCEPTANCE = "SLOW_ACCEPTANCE"
    NOTE_ADDED = "NOTE_ADDED"
    NOTE_DELETED = "NOTE_DELETED"
    ATTACHMENT_ADDED = "ATTACHMENT_ADDED"
    ATTACHMENT_DELETED = "ATTACHMENT_DELETED"
    TAG_ADDED = "TAG_ADDED"
    KB_CREATED = "KB_CREATED"
    SHIFT_STARTED = "SHIFT_STARTED"
    MISSING_SHIFT_START = "MISSING_SHIFT_START"
    BREAK_EXCEEDED = "BREAK_EXCEEDED"
    BREAK_TIME_PENALTY = "BREAK_TIME_PENALTY"
    PENALTY_RESTORED = "PENALTY_RESTORED"
    SCHEDULE_ITEM_ADDED = "SCHEDULE_ITEM_ADDED"
    SCHEDULE_ITEM_DELETED = "SCHEDULE_ITEM_DELETED"
    MEETING_COLLABORATION = "MEETING_COLLABORATION"
    KUDOS_RECEIVED = "KUDOS_RECEIVED"
    TRAINING_COMPLETED = "TRAINING_COMPLETED"
    MILESTONE_BONUS = "MILESTONE_BONUS"
    BADGE_EARNED = "BADGE_EARNED"
    PERFECT_DAY = "PERFECT_DAY"
    CLIENT_HERO_CHECK = "CLIENT_HERO_CHECK"


class LedgerEntry(BaseModel):
    """One immutable, signed point transaction.

    ``id`` is assigned by the store on insert and orders entries together
    with ``created_at``.
    """

    id: int | None = Field(default=None, description="Store-assigned identifier")
    user_id: str = Field(..., description="User the points belong to")
    username: str = Field(..., description="Display name copy at write time")
    event_type: str = Field(..., description="EventType value")
    points_awarded: int = Field(..., description="Signed point delta")
    related_ticket_id: int | None = Field(
        default=None, description="Ticket the entry refers to"
    )
    details: dict[str, Any] = Field(
        default_factory=dict, description="Reason plus event-specific metadata"
    )
    created_at: datetime = Field(..., description="UTC write time")

    @field_validator("event_type", mode="before")
    @classmethod
    def _event_type_value(cls, v: Any) -> Any:
        return v.value if isinstance(v, Enum) else v

    @field_validator("created_at")
    @classmethod
    def _created_at_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)  # type: ignore[return-value]

    @property
    def reason(self) -> str:
        return str(self.details.get("reason", ""))


class UserPointsTotal(BaseModel):
    """Aggregated points of one user over a time window."""

    user_id: str
    username: str
    total_points: int


class Badge(BaseModel):
    """A held or historical achievement.

    ``award_date`` is the business date the badge counts for; daily guards
    and the Perfect Day check compare against it.
    """

    id: int | None = None
    user_id: str
    username: str
    badge_id: str
    achieved_at: datetime
    award_date: date
    reset_period: str = "daily"
    is_active: bool = True
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("achieved_at")
    @classmethod
    def _achieved_at_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)  # type: ignore[return-value]


class TicketNote(BaseModel):
    """A note as stored on the external ticket record."""

    user_id: str | None = None
    timestamp: datetime | None = None

    @field_validator("timestamp")
    @classmethod
    def _timestamp_utc(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)


class TicketSnapshot(BaseModel):
    """Read-only view of an externally owned ticket."""

    id: int
    subject: str = ""
    priority: str | None = None
    created_by: str | None = None
    created_at: datetime
    assigned_to_name: str | None = None
    assigned_at: datetime | None = None
    is_reopened: bool = False
    completed_by_name: str | None = None
    completed_at: datetime | None = None
    source: str | None = None
    notes: list[TicketNote] = Field(default_factory=list)

    @field_validator("created_at", "assigned_at", "completed_at")
    @classmethod
    def _timestamps_utc(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)

    @field_validator("notes", mode="before")
    @classmethod
    def _notes_default(cls, v: Any) -> Any:
        return v or []

    @field_validator("subject", mode="before")
    @classmethod
    def _subject_default(cls, v: Any) -> Any:
        return v or ""

    def notes_by(self, user_id: str) -> list[TicketNote]:
        """Notes written by ``user_id``, oldest first."""
        own = [note for note in self.notes if note.user_id == user_id]
        return sorted(
            own, key=lambda note: note.timestamp or datetime.min.replace(tzinfo=UTC)
        )


class ScheduleSlot(BaseModel):
    """Scheduled shift start, either for a specific date or a weekday."""

    user_id: str
    shift_start_time: time
    schedule_date: date | None = None
    day_of_week: int | None = Field(default=None, ge=1, le=7)


class UserIdentity(BaseModel):
    """Entry of the external user directory."""

    user_id: str
    display_name: str


class MilestoneNotification(BaseModel):
    """Broadcast announcing that a user hit a daily ticket milestone."""

    id: int | None = None
    achieved_by_user_id: str
    achieved_by_username: str
    milestone_count: int
    message: str
    created_at: datetime
    is_read: bool = False


class BadgeNotification(BaseModel):
    """Per-user notice about an earned badge."""

    id: int | None = None
    user_id: str
    username: str
    badge_id: str
    badge_name: str
    badge_emoji: str
    message: str
    created_at: datetime
    is_read: bool = False


class AwardRequest(BaseModel):
    """Inbound award-points call.

    Field names follow the wire format (``eventType``, ``userId``) and the
    Python names are accepted too.
    """

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    event_type: str | None = Field(default=None, alias="eventType")
    user_id: str | None = Field(default=None, alias="userId")
    username: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("data", mode="before")
    @classmethod
    def _data_default(cls, v: Any) -> Any:
        return v or {}

    @property
    def ticket_id(self) -> int | None:
        """Ticket id from the payload, if any."""
        raw = self.data.get("ticketId")
        if raw is None or raw == "":
            return None
        try:
            return int(raw)
        except (TypeError, ValueError):
            return None

    def is_complete(self) -> bool:
        return bool(self.event_type and self.user_id and self.username)


class RuleOutcome(BaseModel):
    """Result of evaluating one event against the rule table.

    The primary entry is built from ``points``/``reason``/``details`` for the
    requesting user. Everything else is applied by the caller:
    ``superseded_entry_ids`` are removed before the primary write,
    ``secondary_entries`` and ``badge_checks`` run best effort afterwards.
    """

    points: int = 0
    reason: str = ""
    details: dict[str, Any] = Field(default_factory=dict)
    related_ticket_id: int | None = None
    check_milestone: bool = False
    force_record: bool = False
    superseded_entry_ids: list[int] = Field(default_factory=list)
    secondary_entries: list[LedgerEntry] = Field(default_factory=list)
    badge_checks: list[str] = Field(default_factory=list)

    def should_record(self) -> bool:
        """Primary entry is written for non-zero points or when forced."""
        return self.points != 0 or self.force_record


class AwardResult(BaseModel):
    """Outcome reported to the caller of award-points."""

    success: bool = True
    points_awarded: int = 0
    duplicate: bool = False
    message: str | None = None

    @classmethod
    def duplicate_request(cls) -> "AwardResult":
        return cls(points_awarded=0, duplicate=True, message=DUPLICATE_REQUEST_MESSAGE)

    def to_response(self) -> dict[str, Any]:
        """Serialize to the wire format."""
        body: dict[str, Any] = {
            "success": self.success,
            "pointsAwarded": self.points_awarded,
        }
        if self.duplicate:
            body["duplicate"] = True
        if self.message:
            body["message"] = self.message
        return body


class BadgeCycleStatus(str, Enum):
    """How a daily badge cycle run ended."""

    SKIPPED_WEEKEND = "skipped_weekend"
    ALREADY_PROCESSED = "already_processed"
    NO_WINNER = "no_winner"
    ALREADY_AWARDED = "already_awarded"
    AWARDED = "awarded"


class BadgeCycleRun(BaseModel):
    """Idempotency record, one per scored target date."""

    target_date: date
    status: BadgeCycleStatus
    winner_user_id: str | None = None
    winner_points: int | None = None
    completed_at: datetime


class BadgeCycleResult(BaseModel):
    """Summary of one daily badge cycle invocation."""

    status: BadgeCycleStatus
    target_date: date
    winner_user_id: str | None = None
    winner_username: str | None = None
    winner_points: int | None = None
    perfect_day: bool = False
    badges_deactivated: int = 0

    def to_response(self) -> dict[str, Any]:
        """Serialize to the wire format."""
        return {
            "success": True,
            "status": self.status.value,
            "targetDate": self.target_date.isoformat(),
            "winner": self.winner_username,
            "winnerUserId": self.winner_user_id,
            "points": self.winner_points,
            "perfectDay": self.perfect_day,
        }

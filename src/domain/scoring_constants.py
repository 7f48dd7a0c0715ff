"""Point values and thresholds for the award rule table.

Values that operators tune per deployment (time windows, similarity threshold,
milestone thresholds) live in Settings and only have their defaults here.
Fixed business rules are plain constants.
"""

from typing import Final

# Ticket creation
PRIORITY_POINTS: Final[dict[str, int]] = {
    "Low": 8,
    "Medium": 9,
    "High": 9,
    "Urgent": 9,
}
"""Base points for opening a ticket, by priority label.

Any other label (or a missing priority) is worth 0.
"""

SCORE_ADJUST_FLAT_POINTS: Final[int] = 5
"""Flat component of a ticket's total used when an admin re-scores it.

Business rule: ticket total = (5 + priority points) × complexity, and
SCORE_ADJUSTED awards the difference between the new and old totals.

Example:
    - Low, complexity 1 → (5 + 8) × 1 = 13
    - High, complexity 2 → (5 + 9) × 2 = 28 → adjustment +15
"""

DEFAULT_TICKET_OPENED_FLAT_POINTS: Final[int] = 0
"""Default flat bonus added to priority points on ticket creation."""

DEFAULT_DUPLICATE_SUBJECT_SIMILARITY: Final[float] = 0.80
"""Subjects at or above this normalized similarity count as duplicates."""

DEFAULT_DUPLICATE_SUBJECT_LOOKBACK_DAYS: Final[int] = 2
"""How far back ticket subjects are compared for duplicate detection."""

# Ticket closing
TICKET_CLOSED_BY_CREATOR_POINTS: Final[int] = 6
"""Creator closes their own ticket and keeps the full amount."""

TICKET_CLOSED_CLOSER_POINTS: Final[int] = 4
"""Closer's share when someone other than the creator closes the ticket."""

TICKET_CLOSED_ASSIST_POINTS: Final[int] = 2
"""Creator's share (TICKET_CLOSED_ASSIST) when another user closes the ticket.

Closer share + assist share always equals TICKET_CLOSED_BY_CREATOR_POINTS.
"""

# Self-assignment
SELF_ASSIGN_POINTS: Final[int] = 6
"""Points for picking up an aged ticket."""

DEFAULT_SELF_ASSIGN_MIN_AGE_HOURS: Final[float] = 2.0
"""A ticket must wait this long (since assignment or creation) to be worth points."""

# Notes
NOTE_POINTS_BY_ORDINAL: Final[dict[int, int]] = {1: 4, 2: 3}
"""Points for the user's 1st and 2nd note on a ticket."""

NOTE_POINTS_DEFAULT: Final[int] = 2
"""Points for the 3rd and every later note by the same user on a ticket."""

NOTE_POINTS_UNREADABLE_TICKET: Final[int] = 1
"""Fallback when the ticket's notes cannot be read."""

NOTE_DELETED_POINTS: Final[int] = -4
"""Deleting any note costs the same, regardless of its ordinal."""

# Shifts
SHIFT_ON_TIME_POINTS: Final[int] = 10
SHIFT_LATE_POINTS: Final[int] = -20
SHIFT_BASELINE_POINTS: Final[int] = 1

DEFAULT_SHIFT_EARLY_WINDOW_MINUTES: Final[int] = 30
"""Starting up to 30 minutes before the scheduled time is on time."""

DEFAULT_SHIFT_ON_TIME_GRACE_MINUTES: Final[int] = 10
"""Starting up to 10 minutes after the scheduled time is still on time."""

DEFAULT_SHIFT_LATE_THRESHOLD_MINUTES: Final[int] = 15
"""Starting this many minutes late or more is penalized.

Between the grace period and this threshold the user gets the baseline point.
"""

# Breaks
BREAK_EXCEEDED_POINTS: Final[int] = -20
DEFAULT_BREAK_GRACE_MINUTES: Final[float] = 10.0
"""Overage past the chosen break duration that is tolerated without penalty."""

BREAK_TIME_PENALTY_DEFAULT_POINTS: Final[int] = -50
"""Daily break-budget penalty when the caller does not supply penalty_points."""

# Milestones
DEFAULT_MILESTONE_THRESHOLDS: Final[tuple[int, ...]] = (10, 15)
"""Daily ticket counts that earn a one-time bonus each."""

DEFAULT_MILESTONE_BONUS_POINTS: Final[int] = 20

# Daily badge cycle
DEFAULT_CLIENT_HERO_POINTS: Final[int] = 10
DEFAULT_PERFECT_DAY_POINTS: Final[int] = 50
DEFAULT_BADGE_CYCLE_WINDOW_START: Final[str] = "23:00"
DEFAULT_BADGE_CYCLE_WINDOW_END: Final[str] = "23:55"
"""Cycle runs inside [start, end] business-local time score the current day.

Runs outside the window score the previous business day.
"""

# Request handling
DEFAULT_BUSINESS_TIMEZONE_OFFSET_HOURS: Final[float] = 2.0
DEFAULT_DUPLICATE_GUARD_WINDOW_SECONDS: Final[float] = 5.0

DUPLICATE_REQUEST_MESSAGE: Final[str] = "Duplicate request detected and blocked"
MISSING_PARAMETERS_MESSAGE: Final[str] = (
    "Missing required parameters: eventType, userId, or username."
)

"""Query builders for ledger and badge lookups.

Instead of building SQL WHERE clauses with string literals, use these
builders to create queries in a type-safe, testable way. Placeholders are
``%s``; the SQLite adapter rewrites them to ``?``.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Any


def format_timestamp(dt: datetime) -> str:
    """Canonical UTC text form used for stored and compared timestamps.

    Fixed microsecond precision keeps lexical and chronological order equal.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def _in_clause(column: str, values: Sequence[Any]) -> str:
    placeholders = ",".join(["%s"] * len(values))
    return f"{column} IN ({placeholders})"


@dataclass
class LedgerQueryCriteria:
    """Criteria for querying the points ledger.

    Example:
        >>> criteria = LedgerQueryCriteria(
        ...     related_ticket_id=42,
        ...     event_types=["TICKET_CLOSED", "TICKET_CLOSED_ASSIST"],
        ... )
        >>> where, params = criteria.to_where_clause()
        >>> where
        'related_ticket_id = %s AND event_type IN (%s,%s)'
    """

    user_id: str | None = None
    """Filter by owning user"""

    event_types: Sequence[str] | None = None
    """Filter by event types (OR logic)"""

    related_ticket_id: int | None = None
    """Filter by ticket"""

    created_after: datetime | None = None
    """Entries with created_at >= created_after"""

    created_before: datetime | None = None
    """Entries with created_at < created_before"""

    min_points_exclusive: int | None = None
    """Entries with points_awarded > this value"""

    after_id: int | None = None
    """Entries with id > after_id (entries written later)"""

    limit: int | None = None
    """Maximum number of results"""

    order_desc: bool = False
    """Newest first when True"""

    def to_where_clause(self) -> tuple[str, list[Any]]:
        """Build SQL WHERE clause with parameters."""
        conditions: list[str] = []
        params: list[Any] = []

        if self.user_id is not None:
            conditions.append("user_id = %s")
            params.append(self.user_id)

        if self.related_ticket_id is not None:
            conditions.append("related_ticket_id = %s")
            params.append(self.related_ticket_id)

        if self.event_types:
            conditions.append(_in_clause("event_type", self.event_types))
            params.extend(getattr(et, "value", et) for et in self.event_types)

        if self.created_after is not None:
            conditions.append("created_at >= %s")
            params.append(format_timestamp(self.created_after))

        if self.created_before is not None:
            conditions.append("created_at < %s")
            params.append(format_timestamp(self.created_before))

        if self.min_points_exclusive is not None:
            conditions.append("points_awarded > %s")
            params.append(self.min_points_exclusive)

        if self.after_id is not None:
            conditions.append("id > %s")
            params.append(self.after_id)

        where = " AND ".join(conditions) if conditions else "1=1"
        return where, params

    def to_order_clause(self) -> str:
        """Build SQL ORDER BY clause (creation time, then id)."""
        direction = "DESC" if self.order_desc else "ASC"
        return f"created_at {direction}, id {direction}"

    def to_limit_clause(self) -> tuple[str, list[Any]]:
        """Build SQL LIMIT clause."""
        if self.limit is None:
            return "", []
        return "LIMIT %s", [self.limit]


@dataclass
class BadgeQueryCriteria:
    """Criteria for querying badges.

    Example:
        >>> criteria = BadgeQueryCriteria(
        ...     user_id="u-1", award_date=date(2025, 3, 4), badge_ids=["client_hero"]
        ... )
        >>> where, params = criteria.to_where_clause()
    """

    user_id: str | None = None
    badge_ids: Sequence[str] | None = None
    award_date: date | None = None
    is_active: bool | None = None
    reset_period: str | None = None

    def to_where_clause(self) -> tuple[str, list[Any]]:
        """Build SQL WHERE clause with parameters."""
        conditions: list[str] = []
        params: list[Any] = []

        if self.user_id is not None:
            conditions.append("user_id = %s")
            params.append(self.user_id)

        if self.badge_ids:
            conditions.append(_in_clause("badge_id", self.badge_ids))
            params.extend(self.badge_ids)

        if self.award_date is not None:
            conditions.append("award_date = %s")
            params.append(self.award_date.isoformat())

        if self.is_active is not None:
            conditions.append("is_active = %s")
            params.append(self.is_active)

        if self.reset_period is not None:
            conditions.append("reset_period = %s")
            params.append(self.reset_period)

        where = " AND ".join(conditions) if conditions else "1=1"
        return where, params

    def to_order_clause(self) -> str:
        return "achieved_at ASC, id ASC"


def ticket_entries_criteria(ticket_id: int) -> LedgerQueryCriteria:
    """All ledger entries of a ticket, oldest first."""
    return LedgerQueryCriteria(related_ticket_id=ticket_id)


def todays_entries_criteria(
    day_start: datetime,
    day_end: datetime,
    *,
    user_id: str | None = None,
    event_types: Sequence[str] | None = None,
) -> LedgerQueryCriteria:
    """Entries inside one business day, optionally narrowed to a user and types."""
    return LedgerQueryCriteria(
        user_id=user_id,
        event_types=event_types,
        created_after=day_start,
        created_before=day_end,
    )

"""Protocol definitions for dependency inversion.

The rule table and use cases only see these interfaces. A scoring session is
one open transaction that implements every store protocol on the same
connection; repositories hand sessions out through ``transaction()``.
"""

from collections.abc import Sequence
from contextlib import AbstractContextManager
from datetime import date, datetime
from typing import TYPE_CHECKING, Protocol

from src.domain.models import (
    Badge,
    BadgeCycleRun,
    BadgeNotification,
    LedgerEntry,
    MilestoneNotification,
    ScheduleSlot,
    TicketSnapshot,
    UserIdentity,
    UserPointsTotal,
)

if TYPE_CHECKING:
    from src.adapters.query_builders import BadgeQueryCriteria, LedgerQueryCriteria


class LedgerStore(Protocol):
    """Append-only points ledger."""

    def insert_entry(self, entry: LedgerEntry) -> LedgerEntry:
        """Insert an entry and return it with its assigned id.

        Raises:
            RepositoryError: On storage errors
        """
        ...

    def query_entries(self, criteria: "LedgerQueryCriteria") -> list[LedgerEntry]:
        """Return entries matching the criteria."""
        ...

    def delete_entries(self, entry_ids: Sequence[int]) -> int:
        """Physically remove superseded entries. Returns rows deleted."""
        ...

    def sum_points_by_user(
        self, start: datetime, end: datetime
    ) -> list[UserPointsTotal]:
        """Total points per user for entries created in [start, end)."""
        ...


class TicketReader(Protocol):
    """Read access to externally owned tickets."""

    def get_ticket(self, ticket_id: int) -> TicketSnapshot | None:
        ...

    def list_tickets_created_since(
        self, since: datetime, exclude_ticket_id: int | None = None
    ) -> list[TicketSnapshot]:
        ...

    def list_tickets_completed_by(
        self, username: str, start: datetime, end: datetime
    ) -> list[TicketSnapshot]:
        """Tickets completed by ``username`` with completed_at in [start, end)."""
        ...


class ScheduleReader(Protocol):
    """Read access to shift schedules."""

    def get_schedule_override(self, user_id: str, day: date) -> ScheduleSlot | None:
        ...

    def get_default_schedule(
        self, user_id: str, day_of_week: int
    ) -> ScheduleSlot | None:
        """Weekday default, ``day_of_week`` 1=Monday .. 7=Sunday."""
        ...


class IdentityDirectory(Protocol):
    """User id to display name lookup."""

    def get_display_name(self, user_id: str) -> str | None:
        ...

    def list_users(self) -> list[UserIdentity]:
        ...


class BadgeStore(Protocol):
    """Badge records. Badges are deactivated, never deleted."""

    def insert_badge(self, badge: Badge) -> Badge:
        ...

    def query_badges(self, criteria: "BadgeQueryCriteria") -> list[Badge]:
        ...

    def deactivate_badges(
        self,
        *,
        badge_ids: Sequence[str] | None = None,
        exclude_badge_ids: Sequence[str] | None = None,
        reset_period: str | None = None,
    ) -> int:
        """Set is_active=false on matching active badges. Returns rows updated."""
        ...


class NotificationSink(Protocol):
    """Broadcast records consumed by the client notification layer."""

    def add_milestone_notification(
        self, notification: MilestoneNotification
    ) -> MilestoneNotification:
        ...

    def add_badge_notification(
        self, notification: BadgeNotification
    ) -> BadgeNotification:
        ...

    def list_milestone_notifications(
        self, achieved_by_user_id: str | None = None
    ) -> list[MilestoneNotification]:
        ...

    def list_badge_notifications(
        self, user_id: str | None = None
    ) -> list[BadgeNotification]:
        ...


class BadgeCycleRunStore(Protocol):
    """Idempotency records of the daily badge cycle."""

    def get_cycle_run(self, target_date: date) -> BadgeCycleRun | None:
        ...

    def record_cycle_run(self, run: BadgeCycleRun) -> None:
        ...


class ScoringSession(
    LedgerStore,
    TicketReader,
    ScheduleReader,
    IdentityDirectory,
    BadgeStore,
    NotificationSink,
    BadgeCycleRunStore,
    Protocol,
):
    """All stores bound to one open transaction."""

    def savepoint(self, name: str) -> AbstractContextManager[None]:
        """Nested scope whose writes are rolled back alone if it raises."""
        ...


class RepositoryProtocol(Protocol):
    """Factory for transactional scoring sessions."""

    def transaction(
        self, lock_keys: Sequence[str] = ()
    ) -> AbstractContextManager[ScoringSession]:
        """Open a transaction holding exclusive locks on ``lock_keys``.

        Commits when the block exits normally and rolls back otherwise.

        Raises:
            RepositoryError: If the transaction or a lock cannot be acquired
        """
        ...

    def close(self) -> None:
        ...

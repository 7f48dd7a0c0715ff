"""Daily badge cycle use case.

Crowns the Client Hero of a business day and performs the daily badge reset:

1. Resolve the target date (current day inside the end-of-day window,
   previous day otherwise); weekends are skipped
2. Stop if the target date already has a run record
3. Deactivate every active Client Hero badge
4. Sum the target day's points per user; the strictly highest positive
   total wins
5. Award the Client Hero badge plus the bonus, then check Perfect Day
6. Deactivate daily badges other than Client Hero
7. Record the run so repeated invocations are no-ops
"""

from collections.abc import Sequence
from datetime import date, datetime
from time import perf_counter

from src.adapters.query_builders import BadgeQueryCriteria
from src.config.logging_config import get_logger
from src.config.settings import Settings
from src.domain.badge_constants import BADGE_CATALOG, CLIENT_HERO, PERFECT_DAY
from src.domain.exceptions import BadgeCycleError, RepositoryError
from src.domain.models import (
    Badge,
    BadgeCycleResult,
    BadgeCycleRun,
    BadgeCycleStatus,
    BadgeNotification,
    EventType,
    LedgerEntry,
    UserPointsTotal,
)
from src.domain.protocols import RepositoryProtocol, ScoringSession
from src.observability.metrics import (
    BADGE_CYCLE_DURATION_SECONDS,
    BADGE_CYCLE_RUNS_TOTAL,
    BADGES_AWARDED_TOTAL,
)
from src.observability.tracing import correlation_scope
from src.services.badge_rules import perfect_day_reached
from src.services.business_time import (
    business_date,
    day_bounds,
    ensure_utc,
    is_weekend,
    resolve_target_date,
    utc_now,
)
from src.use_cases.award_points import run_best_effort
from src.use_cases.evaluate_badges import badge_message

logger = get_logger(__name__)


def select_winner(totals: Sequence[UserPointsTotal]) -> UserPointsTotal | None:
    """Highest positive total; ties go to the lowest user id.

    Example:
        >>> select_winner([
        ...     UserPointsTotal(user_id="b", username="Bo", total_points=12),
        ...     UserPointsTotal(user_id="a", username="Al", total_points=12),
        ... ]).user_id
        'a'
    """
    candidates = [t for t in totals if t.total_points > 0]
    if not candidates:
        return None
    return min(candidates, key=lambda t: (-t.total_points, t.user_id))


def perfect_day_message(winner_username: str) -> str:
    return (
        f"{winner_username} achieved a PERFECT DAY! "
        "All badges earned with no Turtle badge! 🎉"
    )


def _record_run(
    session: ScoringSession,
    target_date: date,
    status: BadgeCycleStatus,
    now: datetime,
    winner: UserPointsTotal | None = None,
) -> None:
    session.record_cycle_run(
        BadgeCycleRun(
            target_date=target_date,
            status=status,
            winner_user_id=winner.user_id if winner else None,
            winner_points=winner.total_points if winner else None,
            completed_at=now,
        )
    )


def _award_client_hero(
    session: ScoringSession,
    winner: UserPointsTotal,
    target_date: date,
    now: datetime,
    offset_hours: float,
) -> Badge:
    definition = BADGE_CATALOG[CLIENT_HERO]
    awarded_for = "today" if target_date == business_date(now, offset_hours) else "yesterday"
    badge = session.insert_badge(
        Badge(
            user_id=winner.user_id,
            username=winner.username,
            badge_id=CLIENT_HERO,
            achieved_at=now,
            award_date=target_date,
            reset_period=definition.reset_period,
            is_active=True,
            metadata={
                "total_points": winner.total_points,
                "target_date": target_date.isoformat(),
                "awarded_for": awarded_for,
            },
        )
    )
    BADGES_AWARDED_TOTAL.labels(badge_id=CLIENT_HERO).inc()
    return badge


def _write_client_hero_bonus(
    session: ScoringSession,
    winner: UserPointsTotal,
    target_date: date,
    settings: Settings,
    now: datetime,
) -> None:
    definition = BADGE_CATALOG[CLIENT_HERO]
    session.insert_entry(
        LedgerEntry(
            user_id=winner.user_id,
            username=winner.username,
            event_type=EventType.BADGE_EARNED,
            points_awarded=settings.client_hero_points,
            details={
                "reason": f"Earned the {definition.name} badge",
                "badge_id": CLIENT_HERO,
                "target_date": target_date.isoformat(),
                "total_points": winner.total_points,
            },
            created_at=now,
        )
    )
    session.add_badge_notification(
        BadgeNotification(
            user_id=winner.user_id,
            username=winner.username,
            badge_id=CLIENT_HERO,
            badge_name=definition.name,
            badge_emoji=definition.emoji,
            message=badge_message(CLIENT_HERO),
            created_at=now,
        )
    )


def _award_perfect_day(
    session: ScoringSession,
    winner: UserPointsTotal,
    target_date: date,
    settings: Settings,
    now: datetime,
) -> bool:
    held = {
        badge.badge_id
        for badge in session.query_badges(
            BadgeQueryCriteria(user_id=winner.user_id, award_date=target_date)
        )
    }
    if not perfect_day_reached(held):
        return False

    session.insert_entry(
        LedgerEntry(
            user_id=winner.user_id,
            username=winner.username,
            event_type=EventType.PERFECT_DAY,
            points_awarded=settings.perfect_day_points,
            details={
                "reason": "Perfect Day: all badges earned with no Turtle",
                "badges_earned": sorted(held),
                "target_date": target_date.isoformat(),
            },
            created_at=now,
        )
    )
    logger.info(
        "perfect_day_awarded",
        user_id=winner.user_id,
        target_date=target_date.isoformat(),
    )
    return True


def _broadcast_perfect_day(
    session: ScoringSession, winner: UserPointsTotal, now: datetime
) -> int:
    definition = BADGE_CATALOG[PERFECT_DAY]
    message = perfect_day_message(winner.username)
    users = session.list_users()
    for user in users:
        session.add_badge_notification(
            BadgeNotification(
                user_id=user.user_id,
                username=user.display_name,
                badge_id=PERFECT_DAY,
                badge_name=definition.name,
                badge_emoji=definition.emoji,
                message=message,
                created_at=now,
            )
        )
    return len(users)


def _run_cycle(
    session: ScoringSession,
    settings: Settings,
    target_date: date,
    now: datetime,
) -> BadgeCycleResult:
    offset = settings.business_timezone_offset_hours

    if session.get_cycle_run(target_date) is not None:
        logger.info("badge_cycle_already_processed", target_date=target_date.isoformat())
        return BadgeCycleResult(
            status=BadgeCycleStatus.ALREADY_PROCESSED, target_date=target_date
        )

    run_best_effort(
        session,
        "client_hero_reset",
        lambda: session.deactivate_badges(badge_ids=[CLIENT_HERO]),
        target_date=target_date.isoformat(),
    )

    day_start, day_end = day_bounds(target_date, offset)
    try:
        totals = session.sum_points_by_user(day_start, day_end)
    except RepositoryError as e:
        raise BadgeCycleError("score_aggregation", str(e)) from e

    winner = select_winner(totals)
    if winner is None:
        logger.info("badge_cycle_no_winner", target_date=target_date.isoformat())
        _record_run(session, target_date, BadgeCycleStatus.NO_WINNER, now)
        return BadgeCycleResult(status=BadgeCycleStatus.NO_WINNER, target_date=target_date)

    existing = session.query_badges(
        BadgeQueryCriteria(
            user_id=winner.user_id, badge_ids=[CLIENT_HERO], award_date=target_date
        )
    )
    if existing:
        logger.info(
            "client_hero_already_awarded",
            user_id=winner.user_id,
            target_date=target_date.isoformat(),
        )
        _record_run(session, target_date, BadgeCycleStatus.ALREADY_AWARDED, now, winner)
        return BadgeCycleResult(
            status=BadgeCycleStatus.ALREADY_AWARDED,
            target_date=target_date,
            winner_user_id=winner.user_id,
            winner_username=winner.username,
            winner_points=winner.total_points,
        )

    try:
        _award_client_hero(session, winner, target_date, now, offset)
    except RepositoryError as e:
        raise BadgeCycleError("client_hero_award", str(e)) from e
    logger.info(
        "client_hero_awarded",
        user_id=winner.user_id,
        total_points=winner.total_points,
        target_date=target_date.isoformat(),
    )

    run_best_effort(
        session,
        "client_hero_bonus",
        lambda: _write_client_hero_bonus(session, winner, target_date, settings, now),
        user_id=winner.user_id,
    )

    perfect_day = bool(
        run_best_effort(
            session,
            "perfect_day",
            lambda: _award_perfect_day(session, winner, target_date, settings, now),
            user_id=winner.user_id,
        )
    )
    if perfect_day:
        run_best_effort(
            session,
            "perfect_day_broadcast",
            lambda: _broadcast_perfect_day(session, winner, now),
            user_id=winner.user_id,
        )

    deactivated = run_best_effort(
        session,
        "daily_badge_reset",
        lambda: session.deactivate_badges(
            exclude_badge_ids=[CLIENT_HERO], reset_period="daily"
        ),
        target_date=target_date.isoformat(),
    )

    _record_run(session, target_date, BadgeCycleStatus.AWARDED, now, winner)
    return BadgeCycleResult(
        status=BadgeCycleStatus.AWARDED,
        target_date=target_date,
        winner_user_id=winner.user_id,
        winner_username=winner.username,
        winner_points=winner.total_points,
        perfect_day=perfect_day,
        badges_deactivated=deactivated or 0,
    )


def run_daily_badge_cycle(
    repository: RepositoryProtocol,
    settings: Settings,
    *,
    now: datetime | None = None,
    correlation_id: str | None = None,
) -> BadgeCycleResult:
    """Run the daily Client Hero selection and badge reset.

    Args:
        repository: Repository handing out transactional sessions
        settings: Application settings
        now: Invocation time (defaults to the current UTC time)
        correlation_id: Optional id bound to every log line of the run

    Returns:
        BadgeCycleResult describing how the run ended

    Raises:
        BadgeCycleError: If aggregation or the Client Hero award fails
        RepositoryError: If the transaction cannot be opened or committed
    """
    run_time = ensure_utc(now) if now is not None else utc_now()
    offset = settings.business_timezone_offset_hours

    with correlation_scope(correlation_id) as bound_correlation_id:
        started = perf_counter()
        result: BadgeCycleResult | None = None
        target_date = resolve_target_date(run_time, offset, settings.badge_cycle_window)
        logger.info(
            "badge_cycle_started",
            correlation_id=bound_correlation_id,
            target_date=target_date.isoformat(),
        )
        try:
            if is_weekend(target_date):
                result = BadgeCycleResult(
                    status=BadgeCycleStatus.SKIPPED_WEEKEND, target_date=target_date
                )
                return result

            with repository.transaction([f"badge-cycle:{target_date.isoformat()}"]) as session:
                cycle_result = _run_cycle(session, settings, target_date, run_time)
            result = cycle_result
            return result
        finally:
            duration = perf_counter() - started
            BADGE_CYCLE_DURATION_SECONDS.observe(duration)
            status = result.status.value if result is not None else "error"
            BADGE_CYCLE_RUNS_TOTAL.labels(status=status).inc()
            logger.info(
                "badge_cycle_finished",
                correlation_id=bound_correlation_id,
                target_date=target_date.isoformat(),
                status=status,
                winner_user_id=result.winner_user_id if result else None,
                duration_seconds=duration,
            )

"""Award points use case.

Runs one award request end to end inside a single transaction:

1. Validate the request
2. Lock the user and ticket, then consult the duplicate guard
3. Evaluate the rule table
4. Delete superseded entries and write the primary entry
5. Apply secondary effects (other users' entries, milestone, badges) best
   effort, each in its own savepoint
"""

from collections.abc import Callable
from datetime import datetime
from time import perf_counter
from typing import TypeVar

from src.config.logging_config import get_logger
from src.config.settings import Settings
from src.domain.exceptions import ScoringEngineError, ValidationError
from src.domain.models import AwardRequest, AwardResult, EventType, LedgerEntry
from src.domain.protocols import RepositoryProtocol, ScoringSession
from src.domain.scoring_constants import MISSING_PARAMETERS_MESSAGE
from src.observability.metrics import (
    AWARD_REQUEST_DURATION_SECONDS,
    AWARD_REQUESTS_TOTAL,
    DUPLICATE_REQUESTS_TOTAL,
    MILESTONES_REACHED_TOTAL,
    POINTS_AWARDED_TOTAL,
    SECONDARY_EFFECT_FAILURES_TOTAL,
)
from src.observability.tracing import correlation_scope
from src.services.business_time import ensure_utc, utc_now
from src.services.duplicate_guard import find_recent_duplicate
from src.services.milestones import check_milestone
from src.services.rule_table import RuleContext, evaluate_event
from src.use_cases.evaluate_badges import run_badge_check

logger = get_logger(__name__)

T = TypeVar("T")

_KNOWN_EVENT_TYPES = frozenset(e.value for e in EventType)


def _metric_event_type(event_type: str | None) -> str:
    return event_type if event_type in _KNOWN_EVENT_TYPES else "unknown"


def run_best_effort(
    session: ScoringSession,
    effect: str,
    action: Callable[[], T],
    **log_context: object,
) -> T | None:
    """Run a secondary write in a savepoint; log and swallow its failure.

    Only the savepoint's writes are rolled back; the caller's transaction
    and primary write stay intact.
    """
    try:
        with session.savepoint(effect):
            return action()
    except ScoringEngineError as e:
        SECONDARY_EFFECT_FAILURES_TOTAL.labels(effect=effect).inc()
        logger.error(
            "secondary_effect_failed",
            effect=effect,
            error=str(e),
            error_type=type(e).__name__,
            **log_context,
        )
        return None


def _lock_keys(request: AwardRequest) -> list[str]:
    keys = [f"user:{request.user_id}"]
    if request.ticket_id is not None:
        keys.append(f"ticket:{request.ticket_id}")
    return keys


def _record_points_metric(event_type: str, points: int) -> None:
    if points > 0:
        POINTS_AWARDED_TOTAL.labels(event_type=event_type, direction="awarded").inc(points)
    elif points < 0:
        POINTS_AWARDED_TOTAL.labels(event_type=event_type, direction="deducted").inc(-points)


def award_points_use_case(
    repository: RepositoryProtocol,
    settings: Settings,
    request: AwardRequest,
    *,
    now: datetime | None = None,
    correlation_id: str | None = None,
) -> AwardResult:
    """Score one user action.

    Args:
        repository: Repository handing out transactional sessions
        settings: Application settings
        request: Award request (eventType, userId, username, data)
        now: Request time (defaults to the current UTC time)
        correlation_id: Optional id bound to every log line of the request

    Returns:
        AwardResult with the caller's own points, or a duplicate result

    Raises:
        ValidationError: If eventType, userId or username is missing
        RepositoryError: If the primary write or the transaction fails

    Example:
        >>> request = AwardRequest(
        ...     eventType="NOTE_ADDED", userId="u-1", username="alice",
        ...     data={"ticketId": 42},
        ... )
        >>> award_points_use_case(repo, settings, request).points_awarded
        4
    """
    if not request.is_complete():
        raise ValidationError(MISSING_PARAMETERS_MESSAGE)

    request_time = ensure_utc(now) if now is not None else utc_now()
    metric_event_type = _metric_event_type(request.event_type)
    user_id = request.user_id or ""
    username = request.username or ""

    with correlation_scope(correlation_id) as bound_correlation_id:
        started = perf_counter()
        result: AwardResult | None = None
        try:
            with repository.transaction(_lock_keys(request)) as session:
                duplicate = find_recent_duplicate(
                    session,
                    request,
                    request_time,
                    settings.duplicate_guard_window_seconds,
                )
                if duplicate is not None:
                    DUPLICATE_REQUESTS_TOTAL.labels(event_type=metric_event_type).inc()
                    logger.info(
                        "duplicate_request_blocked",
                        correlation_id=bound_correlation_id,
                        user_id=user_id,
                        event_type=request.event_type,
                        ticket_id=request.ticket_id,
                        previous_entry_id=duplicate.id,
                    )
                    result = AwardResult.duplicate_request()
                    return result

                outcome = evaluate_event(
                    RuleContext(
                        request=request,
                        session=session,
                        settings=settings,
                        now=request_time,
                    )
                )

                if outcome.superseded_entry_ids:
                    removed = session.delete_entries(outcome.superseded_entry_ids)
                    logger.info(
                        "superseded_entries_removed",
                        correlation_id=bound_correlation_id,
                        ticket_id=outcome.related_ticket_id,
                        removed=removed,
                    )

                if outcome.should_record():
                    session.insert_entry(
                        LedgerEntry(
                            user_id=user_id,
                            username=username,
                            event_type=request.event_type or "",
                            points_awarded=outcome.points,
                            related_ticket_id=outcome.related_ticket_id,
                            details={"reason": outcome.reason, **outcome.details},
                            created_at=request_time,
                        )
                    )
                    _record_points_metric(metric_event_type, outcome.points)

                for entry in outcome.secondary_entries:
                    run_best_effort(
                        session,
                        "secondary_entry",
                        lambda entry=entry: session.insert_entry(entry),
                        correlation_id=bound_correlation_id,
                        affected_user_id=entry.user_id,
                        event_type=entry.event_type,
                    )

                if outcome.check_milestone:
                    milestone = run_best_effort(
                        session,
                        "milestone",
                        lambda: check_milestone(
                            session, user_id, username, settings, request_time
                        ),
                        correlation_id=bound_correlation_id,
                        user_id=user_id,
                    )
                    if milestone is not None:
                        MILESTONES_REACHED_TOTAL.labels(milestone=str(milestone)).inc()

                for badge_id in outcome.badge_checks:
                    run_best_effort(
                        session,
                        f"badge_{badge_id}",
                        lambda badge_id=badge_id: run_badge_check(
                            session,
                            badge_id,
                            user_id,
                            username,
                            settings,
                            request_time,
                            outcome.details,
                        ),
                        correlation_id=bound_correlation_id,
                        user_id=user_id,
                    )

                result = AwardResult(points_awarded=outcome.points)
                logger.info(
                    "points_awarded",
                    correlation_id=bound_correlation_id,
                    user_id=user_id,
                    event_type=request.event_type,
                    ticket_id=outcome.related_ticket_id,
                    points=outcome.points,
                    reason=outcome.reason,
                )
            return result
        finally:
            duration = perf_counter() - started
            AWARD_REQUEST_DURATION_SECONDS.labels(event_type=metric_event_type).observe(
                duration
            )
            if result is None:
                outcome_label = "error"
            elif result.duplicate:
                outcome_label = "duplicate"
            else:
                outcome_label = "scored"
            AWARD_REQUESTS_TOTAL.labels(
                event_type=metric_event_type, outcome=outcome_label
            ).inc()
            logger.info(
                "award_request_finished",
                correlation_id=bound_correlation_id,
                event_type=request.event_type,
                outcome=outcome_label,
                duration_seconds=duration,
            )

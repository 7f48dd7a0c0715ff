"""Short-window duplicate request detection.

A request repeats an earlier one when the same user sent the same event type
for the same ticket (or both without a ticket) within the guard window. The
check is the latest ledger entry only; an older identical entry hidden
behind a different ticket id is not a duplicate.
"""

from datetime import datetime, timedelta

from src.adapters.query_builders import LedgerQueryCriteria
from src.domain.models import AwardRequest, LedgerEntry
from src.domain.protocols import LedgerStore


def find_recent_duplicate(
    ledger: LedgerStore,
    request: AwardRequest,
    now: datetime,
    window_seconds: float,
) -> LedgerEntry | None:
    """Return the ledger entry the request duplicates, if any.

    Args:
        ledger: Ledger store (normally the open scoring session)
        request: Validated award request
        now: Request time
        window_seconds: Guard window length

    Returns:
        The matching entry, or None when the request should be processed
    """
    if not request.user_id or not request.event_type:
        return None

    criteria = LedgerQueryCriteria(
        user_id=request.user_id,
        event_types=[request.event_type],
        created_after=now - timedelta(seconds=window_seconds),
        order_desc=True,
        limit=1,
    )
    recent = ledger.query_entries(criteria)
    if not recent:
        return None

    latest = recent[0]
    if latest.related_ticket_id == request.ticket_id:
        return latest
    return None

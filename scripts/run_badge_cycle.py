"""Run the daily badge cycle once (cron entry point).

Examples:
  # Score today (inside the end-of-day window) or yesterday
  python scripts/run_badge_cycle.py

  # Replay the cycle as if invoked at a given time
  python scripts/run_badge_cycle.py --at 2025-03-04T21:30:00Z
"""

import argparse
import sys
from datetime import datetime
from pathlib import Path

from dateutil import parser as dateutil_parser
from dotenv import load_dotenv

sys.path.insert(0, str(Path(__file__).parent.parent))

from src.adapters.repository_factory import create_repository
from src.config.logging_config import get_logger, setup_logging
from src.config.settings import get_settings
from src.domain.exceptions import ScoringEngineError
from src.services.business_time import ensure_utc
from src.use_cases.daily_badge_cycle import run_daily_badge_cycle

logger = get_logger(__name__)


def _parse_at(value: str) -> datetime:
    try:
        return ensure_utc(dateutil_parser.isoparse(value))
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Invalid ISO 8601 timestamp: {value}") from e


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the B-Pal daily badge cycle",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--at",
        type=_parse_at,
        default=None,
        help="Invocation time as ISO 8601 (default: now); naive values are UTC",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs in JSON format",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Run one cycle.

    Returns:
        Exit code (0 = success, 1 = error)
    """
    load_dotenv()
    args = parse_args(argv)

    settings = get_settings()
    setup_logging(log_level=settings.log_level, json_logs=args.json_logs or settings.json_logs)

    repository = create_repository(settings)
    try:
        result = run_daily_badge_cycle(repository, settings, now=args.at)
    except ScoringEngineError as e:
        logger.error("badge_cycle_script_failed", error=str(e), error_type=type(e).__name__)
        return 1
    finally:
        repository.close()

    logger.info("badge_cycle_script_finished", **result.to_response())
    return 0


if __name__ == "__main__":
    sys.exit(main())

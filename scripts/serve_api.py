"""Serve the scoring HTTP API with uvicorn.

Examples:
  python scripts/serve_api.py --host 0.0.0.0 --port 8080
"""

import argparse
import sys
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

sys.path.insert(0, str(Path(__file__).parent.parent))

from src.config.logging_config import get_logger, setup_logging
from src.config.settings import get_settings
from src.presentation.http_api import create_app

logger = get_logger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve the B-Pal scoring API")
    parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    parser.add_argument("--port", type=int, default=8080, help="Bind port")
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs in JSON format",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = parse_args(argv)

    settings = get_settings()
    setup_logging(log_level=settings.log_level, json_logs=args.json_logs or settings.json_logs)

    app = create_app(settings)
    logger.info("http_api_serving", host=args.host, port=args.port)
    uvicorn.run(app, host=args.host, port=args.port, log_config=None)
    return 0


if __name__ == "__main__":
    sys.exit(main())

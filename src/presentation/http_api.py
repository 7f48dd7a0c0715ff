"""HTTP surface of the scoring engine.

``POST /award-points`` scores one user action, or runs the daily badge cycle
when called with ``{"eventType": "CLIENT_HERO_CHECK"}``. ``/health`` and the
Prometheus ``/metrics`` endpoint are served alongside.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Final

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from pydantic import ValidationError as PydanticValidationError
from starlette.concurrency import run_in_threadpool

from src.adapters.repository_factory import create_repository
from src.config.logging_config import get_logger
from src.config.settings import Settings, get_settings
from src.domain.exceptions import ScoringEngineError, ValidationError
from src.domain.models import AwardRequest, EventType
from src.domain.protocols import RepositoryProtocol
from src.observability.tracing import correlation_id_from_headers
from src.use_cases.award_points import award_points_use_case
from src.use_cases.daily_badge_cycle import run_daily_badge_cycle

logger = get_logger(__name__)

SERVICE_NAME: Final[str] = "bpal-scoring"
SERVICE_VERSION: Final[str] = "0.1.0"


async def _read_payload(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError as e:
        raise ValidationError("Request body must be a JSON object") from e
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def create_app(
    settings: Settings | None = None,
    repository: RepositoryProtocol | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Application settings (defaults to the global settings)
        repository: Repository to serve from (defaults to one built from settings)

    Returns:
        Configured FastAPI app
    """
    app_settings = settings or get_settings()
    app_repository = repository or create_repository(app_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("http_api_started", service=SERVICE_NAME)
        yield
        app_repository.close()
        logger.info("http_api_stopped", service=SERVICE_NAME)

    app = FastAPI(
        title="B-Pal Scoring Engine",
        description="Points, badges and milestones for the B-Pal helpdesk",
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )
    app.state.settings = app_settings
    app.state.repository = app_repository

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    app.mount("/metrics", make_asgi_app())

    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        logger.warning("award_request_rejected", path=request.url.path, error=str(exc))
        return _error_response(400, str(exc))

    @app.exception_handler(ScoringEngineError)
    async def _engine_error(request: Request, exc: ScoringEngineError) -> JSONResponse:
        logger.error(
            "award_request_failed",
            path=request.url.path,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return _error_response(500, str(exc))

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "award_request_failed",
            path=request.url.path,
            error=str(exc),
            error_type=type(exc).__name__,
            exc_info=True,
        )
        return _error_response(500, str(exc) or type(exc).__name__)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Liveness probe."""
        return {
            "status": "healthy",
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
        }

    @app.post("/award-points")
    async def award_points(request: Request) -> dict[str, Any]:
        """Score one user action or run the daily badge cycle."""
        payload = await _read_payload(request)
        correlation_id = correlation_id_from_headers(request.headers)

        if payload.get("eventType") == EventType.CLIENT_HERO_CHECK.value:
            cycle_result = await run_in_threadpool(
                run_daily_badge_cycle,
                app_repository,
                app_settings,
                correlation_id=correlation_id,
            )
            return cycle_result.to_response()

        try:
            award_request = AwardRequest.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid award request: {e.errors()[0]['msg']}") from e

        result = await run_in_threadpool(
            award_points_use_case,
            app_repository,
            app_settings,
            award_request,
            correlation_id=correlation_id,
        )
        return result.to_response()

    return app

"""FastAPI application for the Hide & Seek data service.

create_app() assembles everything a process serves:
- /api/v1 routers for games, players, and maintenance
- CORS for the configured client origins
- an access log written from raw ASGI messages (bodies are never buffered)
- error handlers that turn every failure into an ApiResponse envelope
- a lifespan that runs the cleanup schedule and closes the store

Run with: uvicorn hideseek.main:app --reload

Tier 5 orchestration module: imports from config, services, api/*, schemas.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from hideseek.api import deps
from hideseek.api.games import router as games_router
from hideseek.api.maintenance import router as maintenance_router
from hideseek.api.players import router as players_router
from hideseek.config import get_settings
from hideseek.errors import GameDataError, RateLimitError
from hideseek.schemas import ApiError, ApiResponse
from hideseek.services import build_services

logger = logging.getLogger("hideseek")

INTERNAL_ERROR_MESSAGE = "Internal server error."


# ---------------------------------------------------------------------------
# Access log
# ---------------------------------------------------------------------------


class AccessLogMiddleware:
    """One log line per HTTP request: method, path, status, elapsed time.

    Headers are never logged, so player ids stay out of the access log.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            return await self.app(scope, receive, send)

        seen = {"status": 0}
        started = time.perf_counter()

        async def send_and_capture(message: Message) -> None:
            if message["type"] == "http.response.start":
                seen["status"] = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_and_capture)
        finally:
            logger.info(
                "%s %s -> %d in %.1fms",
                scope.get("method", "?"),
                scope.get("path", "?"),
                seen["status"],
                (time.perf_counter() - started) * 1000,
            )


# ---------------------------------------------------------------------------
# Error envelopes
# ---------------------------------------------------------------------------


def _envelope(
    status_code: int, code: str, message: str, headers: dict[str, str] | None = None
) -> JSONResponse:
    body = ApiResponse(ok=False, error=ApiError(code=code, message=message))
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


def _on_game_error(request: Request, exc: GameDataError) -> JSONResponse:
    """Core errors carry their own status and code.

    A RateLimitError adds Retry-After in whole seconds, rounded up.
    """
    headers = None
    if isinstance(exc, RateLimitError) and exc.retry_after_ms > 0:
        headers = {"Retry-After": str(math.ceil(exc.retry_after_ms / 1000))}
    return _envelope(exc.status_code, exc.code, exc.message, headers)


def _on_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Dependencies raise with a ready-made envelope as the detail.
    if isinstance(exc.detail, dict) and "ok" in exc.detail:
        return JSONResponse(status_code=exc.status_code, content=exc.detail, headers=exc.headers)
    return _envelope(exc.status_code, "HTTP_ERROR", str(exc.detail), exc.headers)


def _on_request_invalid(request: Request, exc: RequestValidationError) -> JSONResponse:
    """422 naming the first offending field, e.g. "body -> rel_x: ..."."""
    problems = exc.errors()
    if not problems:
        return _envelope(422, "VALIDATION_ERROR", "Request validation failed.")
    first = problems[0]
    where = " -> ".join(str(part) for part in first.get("loc", ()))
    what = first.get("msg", "invalid value")
    return _envelope(422, "VALIDATION_ERROR", f"{where}: {what}" if where else what)


def _on_unexpected(request: Request, exc: Exception) -> JSONResponse:
    """500 with a fixed message; the traceback only goes to the log."""
    logger.exception("Unhandled error serving %s %s", request.method, request.url.path)
    return _envelope(500, "INTERNAL_ERROR", INTERNAL_ERROR_MESSAGE)


_ERROR_HANDLERS = (
    (GameDataError, _on_game_error),
    (StarletteHTTPException, _on_http_error),
    (RequestValidationError, _on_request_invalid),
    (Exception, _on_unexpected),
)


# ---------------------------------------------------------------------------
# App creation
# ---------------------------------------------------------------------------


def _install_services() -> None:
    settings = get_settings()
    deps._services = build_services(settings)
    logger.info("Game services ready (store_backend=%s)", settings.store_backend)


@asynccontextmanager
async def _lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Runs the cleanup schedule for the life of the process."""
    settings = get_settings()
    services = deps._services
    if services is not None and settings.cleanup_enabled:
        services.sweeper.schedule(settings.cleanup_interval_hours)
    try:
        yield
    finally:
        if services is not None:
            await services.sweeper.stop()
            await services.kv.close()


def create_app() -> FastAPI:
    """Builds the application and installs the game services singleton."""
    settings = get_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

    application = FastAPI(
        title="Hide & Seek",
        description="Session, guess, and rank persistence for Hide & Seek challenges",
        version="0.1.0",
        lifespan=_lifespan,
    )

    # Added last runs first: CORS must answer preflights before anything else.
    application.add_middleware(AccessLogMiddleware)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    for exc_class, handler in _ERROR_HANDLERS:
        application.add_exception_handler(exc_class, handler)

    application.include_router(_build_v1_router())
    _install_services()
    return application


def _build_v1_router() -> APIRouter:
    v1 = APIRouter(prefix="/api/v1")

    @v1.get("/health")
    async def health() -> dict[str, Any]:
        """Liveness only; never touches the store."""
        services = deps._services
        return ApiResponse(
            ok=True,
            data={
                "status": "healthy",
                "store_backend": get_settings().store_backend,
                "cleanup_running": services is not None and services.sweeper.running,
            },
        ).model_dump()

    v1.include_router(games_router, tags=["games"])
    v1.include_router(players_router, tags=["players"])
    v1.include_router(maintenance_router, prefix="/maintenance", tags=["maintenance"])
    return v1


app = create_app()

"""FastAPI application factory with engine error mapping and WebSocket hub."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from tradebox.api.routes import admin, trades, ws
from tradebox.api.routes.ws import EventHub
from tradebox.events import ALL_EVENTS
from tradebox.exceptions import (
    AccountNotFoundError,
    AssetDisabledError,
    InsufficientBalanceError,
    PriceUnavailableError,
    QuotaExhaustedError,
    TradeEngineError,
    TradeNotActiveError,
    TradeNotFoundError,
    TradeValidationError,
)

log = structlog.get_logger(__name__)

# Checked in order; the first matching class wins
_STATUS_BY_ERROR: list[tuple[type[TradeEngineError], int]] = [
    (AssetDisabledError, 403),
    (QuotaExhaustedError, 403),
    (TradeValidationError, 400),
    (InsufficientBalanceError, 400),
    (AccountNotFoundError, 404),
    (TradeNotFoundError, 404),
    (TradeNotActiveError, 409),
    (PriceUnavailableError, 503),
]

# Component names exposed on app.state for route handlers
STATE_COMPONENTS = ("store", "ledger", "intake", "processor", "admin", "events")


def status_for(exc: TradeEngineError) -> int:
    for error_cls, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return status_code
    return 500


async def _engine_error_handler(request: Request, exc: TradeEngineError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        log.error(
            "api_request_failed",
            path=request.url.path,
            code=exc.code,
            error=str(exc),
        )
    else:
        log.info(
            "api_request_rejected",
            path=request.url.path,
            code=exc.code,
            error=str(exc),
        )
    return JSONResponse(
        content={"error": str(exc), "code": exc.code},
        status_code=status_code,
    )


def create_app(components: dict[str, Any] | None = None, lifespan: Any = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        components: Optional engine components to place on app.state
                    (see STATE_COMPONENTS). main.py passes them in; tests
                    build their own.
        lifespan: Optional async context manager for application lifespan events.

    Returns:
        Configured FastAPI application with routes, error handler, and WebSocket hub.
    """
    app = FastAPI(title="Tradebox Trade Engine", lifespan=lifespan)

    app.state.hub = EventHub()
    if components is not None:
        for name in STATE_COMPONENTS:
            setattr(app.state, name, components[name])
        components["events"].subscribe(ALL_EVENTS, app.state.hub.on_event)

    app.add_exception_handler(TradeEngineError, _engine_error_handler)

    app.include_router(trades.router, prefix="/api")
    app.include_router(admin.router, prefix="/api/admin")
    app.include_router(ws.router)

    return app

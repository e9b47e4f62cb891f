"""
FastAPI application factory.

``create_app`` wires the routers to a :class:`~pharma_ledger.core.services.Services`
bundle and maps the service's exception types to HTTP status codes:

    ValidationError   -> 400
    NotFoundError     -> 404
    ConflictError     -> 409 (includes invalid state transitions)
    StoreError        -> 502
    QueueFullError    -> 503
    LedgerWriteError  -> 500

Background work (periodic sync, webhook workers) starts and stops with the
application lifespan.

Run with uvicorn:
    uvicorn pharma_ledger.api.server:create_app --factory
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pharma_ledger import __version__
from pharma_ledger.api.routes import register_routes
from pharma_ledger.core.services import Services, build_services
from pharma_ledger.errors import (
    ConflictError,
    LedgerError,
    LedgerWriteError,
    NotFoundError,
    QueueFullError,
    StoreError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# First match wins; subclasses must precede their bases.
_STATUS_CODES: tuple[tuple[type[LedgerError], int], ...] = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConflictError, 409),
    (StoreError, 502),
    (QueueFullError, 503),
    (LedgerWriteError, 500),
)


def status_code_for(exc: LedgerError) -> int:
    for exc_type, code in _STATUS_CODES:
        if isinstance(exc, exc_type):
            return code
    return 500


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    code = status_code_for(exc)
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=code, content={"detail": str(exc), "error": type(exc).__name__})


def create_app(services: Services | None = None, *, start_background: bool = True) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        services: Pre-built services; built from the module config when omitted.
        start_background: Start sync and webhook workers on startup.
    """
    services = services or build_services()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if start_background:
            services.start()
        try:
            yield
        finally:
            if start_background:
                services.stop()

    app = FastAPI(title="Pharma Ledger", version=__version__, lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(LedgerError, ledger_error_handler)
    register_routes(app, services)
    return app

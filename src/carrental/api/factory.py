"""FastAPI application factory with role-based route mounting.

public: /health and the booking API.
worker: additionally the /tasks/* routes (payment push, auto-cancel trigger).
When RUN_SCHEDULER is "true", the worker also runs the in-process
auto-cancel scheduler for the lifetime of the app.
"""

import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Literal

from fastapi import FastAPI, Request, Response

from carrental.observability.correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)

from .errors import register_error_handlers
from .routers import public, worker

AppRole = Literal["public", "worker"]


def _scheduler_enabled() -> bool:
    return os.environ.get("RUN_SCHEDULER", "false").lower() == "true"


@asynccontextmanager
async def _worker_lifespan(app: FastAPI) -> AsyncIterator[None]:
    from carrental.scheduler import start_scheduler, stop_scheduler

    start_scheduler()
    try:
        yield
    finally:
        stop_scheduler()


def create_app(role: AppRole | None = None) -> FastAPI:
    """Create FastAPI app with routes based on APP_ROLE.

    Args:
        role: Explicit role override. If None, reads from APP_ROLE env var.
              Defaults to "public" if env var is not set.

    Returns:
        Configured FastAPI application.
    """
    if role is None:
        role = os.environ.get("APP_ROLE", "public")  # type: ignore[assignment]

    lifespan = _worker_lifespan if role == "worker" and _scheduler_enabled() else None

    app = FastAPI(
        title="Car Rental Booking Service",
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
    )

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response
        finally:
            reset_correlation_id(token)

    register_error_handlers(app)

    app.include_router(public.router)

    if role == "worker":
        app.include_router(worker.router)

    return app

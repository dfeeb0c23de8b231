"""FastAPI application factory with role-based route mounting."""

from typing import Literal

from fastapi import FastAPI, Request, Response

from cityventure.config import get_settings
from cityventure.observability.correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)

from .routers import public, worker
from .routes import businesses, orders, refunds, rooms, tasks_refunds, webhooks_stripe

AppRole = Literal["public", "worker"]


def create_app(role: AppRole | None = None) -> FastAPI:
    """Create FastAPI app with routes based on APP_ROLE.

    Args:
        role: Explicit role override. If None, reads from APP_ROLE env var.
              Defaults to "public" if env var is not set.

    Returns:
        Configured FastAPI application.
    """
    settings = get_settings()
    if role is None:
        role = settings.app_role  # type: ignore[assignment]

    app = FastAPI(
        title="CityVenture Refunds",
        docs_url=None,
        redoc_url=None,
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

    # Mount public routes (always)
    app.include_router(public.router)
    app.include_router(refunds.router)
    app.include_router(orders.router)
    app.include_router(businesses.router)
    app.include_router(rooms.router)
    app.include_router(webhooks_stripe.router)

    # Mount worker routes only for worker role
    if role == "worker":
        app.include_router(worker.router)
        app.include_router(tasks_refunds.router)

    return app

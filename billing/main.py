"""Korner Billing Service - FastAPI Application."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from billing.core.config import get_settings
from billing.core.exceptions import BillingError
from billing.core.redis import close_redis, init_redis
from billing.db import async_session_factory, close_db, init_db
from billing.gateway.client import GatewayClient
from billing.services.notification_service import build_dispatcher, set_dispatcher
from billing.services.renewal_service import RenewalService
from billing.workers.renewal_scheduler import RenewalScheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler.

    Startup: tables, Redis pool, notification dispatcher, renewal scheduler
    Shutdown: in reverse order
    """
    settings = get_settings()

    # Startup
    await init_db()
    await init_redis()
    dispatcher = build_dispatcher(settings)
    set_dispatcher(dispatcher)
    await dispatcher.start()

    scheduler = None
    if settings.renewal_scheduler_enabled:
        scheduler = RenewalScheduler(
            RenewalService(
                async_session_factory,
                GatewayClient(settings.gateway_config()),
                notifier=dispatcher,
                delay_seconds=settings.renewal_delay_seconds,
                window_hours=settings.renewal_window_hours,
                retention_months=settings.subscription_retention_months,
            )
        )
        await scheduler.start()
    app.state.renewal_scheduler = scheduler

    yield

    # Shutdown
    if scheduler is not None:
        await scheduler.stop()
    await dispatcher.stop()
    set_dispatcher(None)
    await close_redis()
    await close_db()


async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {type(exc).__name__}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.message, "details": exc.details},
    )


async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [
        {"field": ".".join(str(part) for part in error["loc"][1:]), "message": error["msg"]}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": "Invalid request", "details": {"fields": fields}},
    )


def create_app() -> FastAPI:
    """Application factory.

    Returns:
        Configured FastAPI application instance
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Payments, wallets and subscriptions for Korner",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(BillingError, billing_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)  # type: ignore[arg-type]

    # Include routers
    from billing.api.cards import router as cards_router
    from billing.api.fees import router as fees_router
    from billing.api.payment import router as payment_router
    from billing.api.payout_requests import router as payout_requests_router
    from billing.api.subscriptions import router as subscriptions_router
    from billing.api.wallet import router as wallet_router

    app.include_router(payment_router)
    app.include_router(wallet_router)
    app.include_router(subscriptions_router)
    app.include_router(fees_router)
    app.include_router(payout_requests_router)
    app.include_router(cards_router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": settings.service_name}

    return app


# Application instance
app = create_app()

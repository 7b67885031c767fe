"""FastAPI application entry point for the StreamPay escrow coordinator.

Lifecycle:
    1. Startup: Initialize logging, database, Redis, the chain submitter and
       the services bundle.
    2. Running: Serve webhooks, approvals and escrow routes.
    3. Shutdown: Close the chain client, database and Redis gracefully.

Run with:
    uvicorn streampay_escrow.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from streampay_escrow.config import get_settings
from streampay_escrow.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info(
        "app.starting",
        env=settings.app_env,
        debug=settings.app_debug,
        chain_simulate=settings.chain_simulate,
    )

    # 2. Initialize database
    from streampay_escrow.infrastructure.database import (
        SqlEscrowStore,
        close_db,
        get_session_factory,
        init_db,
    )

    await init_db()
    store = SqlEscrowStore(get_session_factory())

    # 3. Initialize Redis (cross-process signing lock)
    from streampay_escrow.infrastructure.redis_client import (
        close_redis,
        init_redis,
        signing_lock_factory,
    )

    from streampay_escrow.api.deps import build_services
    from streampay_escrow.chain import build_submitter
    from streampay_escrow.domain.exceptions import SigningError

    submitter = build_submitter(settings)
    if settings.redis_url:
        try:
            redis = await init_redis()
            submitter.use_lock(signing_lock_factory(redis, submitter.signing_account))
        except SigningError as exc:
            logger.error("app.signing_key_unavailable", error=exc.message)
        except Exception as exc:
            logger.warning("app.redis_unavailable", error=str(exc), fallback="process_lock")

    # 4. Services
    app.state.services = build_services(settings, store, submitter)

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    await submitter.close()
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory — creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="StreamPay Escrow Coordinator",
        description=(
            "Matches task-completion events to escrow milestones, attests them "
            "on Soroban and gates fund release on multi-party approval."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from streampay_escrow.api.middleware import setup_middleware

    setup_middleware(app, allow_origins=settings.cors_allow_origins)

    # --- REST API Routes ---
    from streampay_escrow.api.routes.approvals import router as approvals_router
    from streampay_escrow.api.routes.escrows import router as escrows_router
    from streampay_escrow.api.routes.health import router as health_router
    from streampay_escrow.api.routes.webhooks import router as webhooks_router

    app.include_router(health_router)
    app.include_router(webhooks_router)
    app.include_router(approvals_router)
    app.include_router(escrows_router)

    return app


# The app instance used by Uvicorn
app = create_app()

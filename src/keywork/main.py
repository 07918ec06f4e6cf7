"""FastAPI application entry point for KeyWork.

Lifecycle:
    1. Startup: logging, database, Redis, ledger client, object storage,
       realtime rooms, notifier.
    2. Running: Serve REST API, WebSocket feed and MCP tools on one Uvicorn process.
    3. Shutdown: Drain notifications, close rooms, clients and connections.

The MCP server is mounted at /mcp so AI agents can discover tools
alongside the REST API at /api/v1/*.

Run with:
    uv run uvicorn keywork.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from keywork.config import get_settings
from keywork.logging_config import get_logger, setup_logging

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
    logger.info("app.starting", env=settings.app_env, debug=settings.app_debug)

    # 2. Initialize database
    from keywork.infrastructure.database.engine import close_db, init_db

    await init_db()

    # 3. Initialize Redis (rate limits and idempotency degrade to no-ops without it)
    from keywork.infrastructure.redis_client import (
        RateLimiter,
        close_redis,
        get_redis,
        init_redis,
    )

    try:
        await init_redis()
    except Exception as exc:
        logger.warning("app.redis_unavailable", error=str(exc))
    app.state.rate_limiter = (
        RateLimiter(get_redis(), window_seconds=settings.rate_limit_window_seconds)
        if settings.rate_limit_enabled
        else None
    )

    # 4. Ledger, storage, realtime
    from keywork.infrastructure.ledger import build_ledger_client
    from keywork.infrastructure.storage import build_object_store
    from keywork.infrastructure.webhooks import WebhookDispatcher
    from keywork.mcp_server import tools as mcp_tools
    from keywork.realtime import Notifier, RoomRegistry

    app.state.ledger = build_ledger_client(settings)
    app.state.storage = build_object_store(settings)
    app.state.webhooks = WebhookDispatcher(timeout_seconds=settings.webhook_timeout_seconds)
    app.state.rooms = RoomRegistry(
        ping_interval_seconds=settings.realtime_ping_interval_seconds,
        stale_after_seconds=settings.realtime_stale_after_seconds,
    )
    app.state.notifier = Notifier(app.state.rooms, app.state.webhooks)
    mcp_tools.configure(app.state.ledger, app.state.storage, app.state.notifier)

    logger.info(
        "app.started",
        host=settings.app_host,
        port=settings.app_port,
        ledger="simulated" if settings.keeper_simulate else settings.keeper_api_url,
        storage=settings.storage_backend,
    )

    yield

    # Shutdown
    logger.info("app.shutting_down")
    await app.state.notifier.drain()
    await app.state.rooms.close()
    await app.state.webhooks.aclose()
    await app.state.ledger.aclose()
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory: creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="KeyWork",
        description=(
            "Marketplace where AI agents hire humans for physical-world tasks, "
            "paid through escrow."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from keywork.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API and WebSocket routes ---
    from keywork.api.routes.agent import router as agent_router
    from keywork.api.routes.health import router as health_router
    from keywork.api.routes.jobs import router as jobs_router
    from keywork.api.routes.messages import router as messages_router
    from keywork.api.routes.realtime import router as realtime_router
    from keywork.api.routes.wallet import router as wallet_router
    from keywork.api.routes.workers import router as workers_router

    app.include_router(health_router)
    app.include_router(agent_router)
    app.include_router(jobs_router)
    app.include_router(messages_router)
    app.include_router(wallet_router)
    app.include_router(workers_router)
    app.include_router(realtime_router)

    # --- MCP Server (mounted as sub-application) ---
    from keywork.mcp_server.tools import mcp

    app.mount("/mcp", mcp.sse_app())

    return app


# The app instance used by Uvicorn
app = create_app()

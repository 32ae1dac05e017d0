"""
Rental Portal - Main API Server

FastAPI process behind the rental marketplace's browser shell. It owns the
account-security bookkeeping (login attempts, lockouts, password history,
session activity), runs the account flows against the remote rental API and
gates page navigation on password expiry.
"""
import os
from dotenv import load_dotenv

# Load environment variables from .env file BEFORE other imports
load_dotenv()

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from config.loader import PortalConfig, get_config
from rental_portal.api import include_routers, limiter
from rental_portal.middleware.request_id_middleware import RequestIdMiddleware
from rental_portal.middleware.route_guard import RouteGuardMiddleware
from rental_portal.services.countdown_ticker import CountdownTicker
from rental_portal.services.rental_api_client import RentalApiClient
from rental_portal.services.security_store import (
    SecurityStore,
    configure_security_store,
    reset_security_store,
)
from rental_portal.services.storage import JsonFileStorage, KeyValueStorage, MemoryStorage
from rental_portal.utils.structured_logger import setup_structured_logging

logger = logging.getLogger(__name__)


def build_storage(config: PortalConfig) -> KeyValueStorage:
    if config.storage_backend == "memory":
        return MemoryStorage()
    return JsonFileStorage(config.storage_path)


def create_app(
    config: Optional[PortalConfig] = None,
    storage: Optional[KeyValueStorage] = None,
    api_client: Optional[RentalApiClient] = None,
    configure_logging: bool = True
) -> FastAPI:
    """
    Build the portal application.

    Args:
        config: Portal configuration (defaults to get_config())
        storage: Durable storage backend (defaults to the configured one)
        api_client: Remote API client (defaults to one built from config)
        configure_logging: Install the structured logging handlers
    """
    config = config or get_config()

    if configure_logging:
        setup_structured_logging(
            level=config.log_level,
            json_output=config.log_json,
            service_name=config.service_name
        )

    storage = storage or build_storage(config)
    api_client = api_client or RentalApiClient(config.api_base_url, timeout=config.api_timeout)

    store = SecurityStore(
        storage,
        policy=config.password_policy,
        session_timeout_ms=config.session_timeout_ms,
        warning_window_ms=config.warning_window_ms
    )
    ticker = CountdownTicker(interval=config.ticker_interval)

    def report_session_warning(_tick: int) -> None:
        for key, status in store.expiring_sessions().items():
            logger.info(f"Session {key[:8]} expires in {status.remaining_minutes} minutes")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler"""
        logger.info("Starting Rental Portal...")
        store.load()
        configure_security_store(store)

        unsubscribe = ticker.subscribe(report_session_warning)
        await ticker.start()
        try:
            yield
        finally:
            await ticker.stop()
            unsubscribe()
            reset_security_store()
            logger.info("Shutting down...")

    app = FastAPI(
        title="Rental Portal",
        description="Account security and password lifecycle for the vehicle rental portal",
        version="1.0.0",
        lifespan=lifespan
    )

    app.state.config = config
    app.state.storage = storage
    app.state.api_client = api_client
    app.state.security_store = store
    app.state.ticker = ticker
    app.state.limiter = limiter

    # ==================== Middleware Setup ====================
    # NOTE: middleware runs in REVERSE order of addition.

    # 1. Route guard - password-expiry redirects for protected pages
    app.add_middleware(RouteGuardMiddleware)

    # 2. Request ID - contextvars for logging
    app.add_middleware(RequestIdMiddleware)

    # 3. CORS - added last so it runs first
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Internal server error"}
        )

    @app.get("/health")
    async def health_check():
        """Basic health check endpoint for load balancers"""
        return {
            "status": "healthy",
            "security_store_ready": store.is_ready,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    include_routers(app)
    return app


app = create_app()


# ==================== Run Server ====================

if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8080))
    host = os.getenv("HOST", "127.0.0.1")

    logger.info(f"Starting server on {host}:{port}")

    uvicorn.run(app, host=host, port=port, log_level="info")

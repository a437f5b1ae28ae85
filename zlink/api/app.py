"""
FastAPI application for the claim page
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from config.config import (
    API_RATE_LIMIT,
    BOT_TOKEN,
    BOT_USERNAME,
    CLAIM_BASE_URL,
    WEB_REDEMPTION_ENABLED,
)
from zlink import __version__
from zlink.api.claim_page import router as claim_router
from zlink.database.engine import dispose_engine, get_session_maker
from zlink.services.container import Services, build_services


def create_app(
    services: Optional[Services] = None,
    web_redemption_enabled: bool = WEB_REDEMPTION_ENABLED,
    bot_token: str = BOT_TOKEN,
    bot_username: str = BOT_USERNAME,
    rate_limit: str = API_RATE_LIMIT,
) -> FastAPI:
    """
    Build the claim page app

    Args:
        services: Prebuilt service graph; built in lifespan when None
        web_redemption_enabled: Accept POST /claim/{token_id}
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.services is None
        if owned:
            # No messenger here: the bot process owns Telegram delivery
            app.state.services = build_services(get_session_maker())
        logger.info(f"Claim API started (web redemption {'enabled' if web_redemption_enabled else 'disabled'})")

        yield

        logger.info("Shutting down claim API...")
        if owned:
            await app.state.services.close()
            await dispose_engine()
            logger.info("Database connections closed")

    app = FastAPI(
        title="Zlink Claim API",
        description="Claim link status and redemption",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services
    app.state.web_redemption_enabled = web_redemption_enabled
    app.state.bot_token = bot_token
    app.state.bot_username = bot_username

    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[rate_limit],
        storage_uri="memory://",
    )
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    allowed_origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
    if CLAIM_BASE_URL and CLAIM_BASE_URL not in allowed_origins:
        allowed_origins.append(CLAIM_BASE_URL.rstrip("/"))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "SAMEORIGIN"
        response.headers["Referrer-Policy"] = "no-referrer"
        return response

    app.include_router(claim_router)

    @app.get("/health")
    async def health():
        """
        Health check endpoint
        """
        try:
            async with app.state.services.session_maker() as session:
                await session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error(f"Health check failed: {e}")
            return JSONResponse(status_code=503, content={"status": "unhealthy"})
        return {"status": "healthy"}

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        if exc.status_code >= 500:
            logger.error(f"HTTP {exc.status_code}: {exc.detail}")
        elif exc.status_code >= 400:
            logger.warning(f"HTTP {exc.status_code} on {request.url.path}: {exc.detail}")

        content = exc.detail if isinstance(exc.detail, dict) else {"detail": exc.detail}
        return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    return app

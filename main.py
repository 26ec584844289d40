"""
Main Entry Point - FastAPI Application.

This file contains:
- FastAPI app initialization
- Route mounting from api/routes/
- Middleware setup from api/middleware.py
- Health check endpoints

NO BUSINESS LOGIC - just wiring and setup.

Usage:
    uvicorn main:app --reload
    python main.py
"""

import os
import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.responses import JSONResponse

# Load environment variables with explicit path (works when run from any directory)
_env_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env")
load_dotenv(_env_path)

# ============================================================================
# NON-BLOCKING LOGGING SETUP (MUST BE BEFORE OTHER IMPORTS)
# ============================================================================
from utils.logger import configure_non_blocking_logging

_log_listener = configure_non_blocking_logging(level=os.getenv("LOG_LEVEL"))

from api.routes import auth_router
from api.middleware import setup_middlewares, setup_request_logging
from auth.providers import configured_providers

logger = logging.getLogger(__name__)

SERVICE_VERSION = "1.0.0"


# =============================================================================
# LIFESPAN EVENTS
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    providers = [info.id for info in configured_providers()]
    logger.info("Sign-in API starting up (providers=%s)", providers or "none")
    yield
    logger.info("Sign-in API shutting down...")


# =============================================================================
# FASTAPI APPLICATION
# =============================================================================

app = FastAPI(
    title="Sign-in API",
    description="Discord OAuth and Telegram login with encrypted cookie sessions",
    version=SERVICE_VERSION,
    lifespan=lifespan,
)

# Setup middlewares (CORS, rate limiting)
setup_middlewares(app)
setup_request_logging(app)


# =============================================================================
# ROUTES
# =============================================================================

# Sign-in, callbacks and session (router has /auth prefix)
app.include_router(auth_router, tags=["Auth"])


# =============================================================================
# HEALTH CHECK
# =============================================================================

@app.get("/", include_in_schema=False)
async def root():
    """Root endpoint - health check."""
    return {"status": "ok", "version": SERVICE_VERSION, "service": "signin-api"}


@app.get("/healthz", include_in_schema=False)
async def healthz():
    """Liveness probe."""
    return {"status": "healthy"}


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler for unhandled errors."""
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# =============================================================================
# MAIN
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8000"))

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        log_level=os.getenv("UVICORN_LOG_LEVEL", "info").lower(),
    )

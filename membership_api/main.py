"""Membership Billing API - Main Application.

FastAPI application providing payment verification and webhook
reconciliation for premium memberships.

Security: Client endpoints require Firebase Auth. The webhook is
authenticated by its Razorpay HMAC signature. /api/health is public.

Usage:
    uvicorn membership_api.main:app --host 127.0.0.1 --port 8000
"""

from __future__ import annotations

import os
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_billing_settings
from .dependencies import get_firebase_app, get_firestore
from .routers import billing, health
from .routers.health import API_VERSION
from .middleware.rate_limit import setup_rate_limiting

# =============================================================================
# CONFIGURATION
# =============================================================================

# Environment
DEBUG_MODE = os.environ.get("DEBUG", "false").lower() == "true"

# CORS - strict origin allowlist
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.environ.get(
        "ALLOWED_ORIGINS",
        "http://localhost:3000",
    ).split(",")
    if origin.strip()
]

# Logging setup
logging.basicConfig(
    level=logging.DEBUG if DEBUG_MODE else logging.INFO,
    format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
)
logger = logging.getLogger("api.main")


# =============================================================================
# LIFESPAN (Startup/Shutdown)
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown hooks."""
    # Startup
    logger.info(f"Starting Membership Billing API v{API_VERSION}")
    logger.info(f"Debug mode: {DEBUG_MODE}")

    # Billing routes answer 500 while the backend is unconfigured; do not
    # refuse to start.
    try:
        get_firebase_app()
        get_firestore()
        logger.info("Firestore connected")
    except (RuntimeError, ValueError) as e:
        logger.error(f"Firebase not configured: {e}")

    settings = get_billing_settings()
    if not settings.razorpay_configured:
        logger.warning("RAZORPAY_KEY_ID/RAZORPAY_KEY_SECRET not set; verification will fail")
    if not settings.webhook_configured:
        logger.warning("RAZORPAY_WEBHOOK_SECRET not set; webhooks will be rejected")

    yield

    # Shutdown
    logger.info("Shutting down Membership Billing API")


# =============================================================================
# APPLICATION
# =============================================================================

# Docs endpoints only in debug mode
app = FastAPI(
    title="Membership Billing API",
    version=API_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if DEBUG_MODE else None,
    redoc_url="/redoc" if DEBUG_MODE else None,
    openapi_url="/openapi.json" if DEBUG_MODE else None,
)


# =============================================================================
# MIDDLEWARE
# =============================================================================

setup_rate_limiting(app)

# CORS - strict origins only. The webhook is server-to-server and needs none.
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type"],
    max_age=3600,
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Add security headers to all responses."""
    response = await call_next(request)

    # Remove headers that reveal implementation
    if "server" in response.headers:
        del response.headers["server"]
    if "x-powered-by" in response.headers:
        del response.headers["x-powered-by"]

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Cache-Control"] = "no-store"

    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests for debugging."""
    start_time = datetime.now(timezone.utc)

    response = await call_next(request)

    duration_ms = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000

    # Log request (never the body or auth header)
    logger.debug(
        f"{request.method} {request.url.path} "
        f"-> {response.status_code} ({duration_ms:.0f}ms)"
    )

    return response


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions with generic error response."""
    # Log full error internally
    logger.exception(f"Unhandled exception on {request.url.path}")

    # Return generic error to client (no stack traces)
    if DEBUG_MODE:
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": str(exc),
                "code": "INTERNAL_ERROR",
                "type": type(exc).__name__
            }
        )
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal server error",
            "code": "INTERNAL_ERROR"
        }
    )


# =============================================================================
# ROUTERS
# =============================================================================

app.include_router(health.router, prefix="/api", tags=["Health"])
app.include_router(billing.router, prefix="/api", tags=["Billing"])


# =============================================================================
# ROOT ENDPOINT
# =============================================================================

@app.get("/")
async def root():
    """Root endpoint - API info."""
    return {
        "name": "Membership Billing API",
        "version": API_VERSION,
        "status": "running"
    }


@app.get("/api")
async def api_root():
    """API root - available endpoints."""
    return {
        "endpoints": {
            "health": "/api/health",
            "verify": "/api/billing/verify",
            "webhook": "/api/billing/webhook",
            "membership": "/api/billing/membership",
        }
    }

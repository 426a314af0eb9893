"""Rate limiting middleware using slowapi.

Per-IP request limits in front of the billing endpoints. The per-user
verification ceiling lives in Firestore (see ``billing.attempt_limit``).

Default limits:
- Global: 100 req/min per IP
- Verify endpoint: 20 req/min
- Webhook endpoint: 300 req/min (Razorpay retries in bursts)
- Read endpoints: 60 req/min
"""

from __future__ import annotations

import logging

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from ..utils.client_ip import get_client_ip
from ..utils.security_logger import security_logger

logger = logging.getLogger("api.rate_limit")


# Create limiter with custom key function
limiter = Limiter(
    key_func=get_client_ip,
    default_limits=["100/minute"],  # Global default
    storage_uri="memory://",  # In-memory storage (simple, no Redis needed)
)


# Usage: @rate_limit_verify on the verify endpoint
rate_limit_verify = limiter.limit("20/minute")
rate_limit_webhook = limiter.limit("300/minute")
rate_limit_read = limiter.limit("60/minute")


def setup_rate_limiting(app):
    """Configure rate limiting on the FastAPI app.

    Call this in main.py after creating the app.
    """
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _custom_rate_limit_handler)
    app.add_middleware(SlowAPIMiddleware)
    logger.info("Rate limiting enabled")


async def _custom_rate_limit_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Custom handler for rate limit exceeded.

    Logs the event and returns 429 with Retry-After header.
    """
    security_logger.rate_limit_exceeded(
        ip=get_client_ip(request),
        path=request.url.path,
        limit=str(exc.detail),
    )

    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "error": "Too many requests",
            "code": "RATE_LIMIT_EXCEEDED",
        },
        headers={"Retry-After": "60"},
    )

"""Health check router - API status and billing configuration.

Endpoints:
    GET /api/health - Overall health status
    GET /api/health/firebase - Firestore connectivity and billing credential status
"""

import logging
import os
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from ..config import BillingSettings, get_billing_settings
from ..dependencies import get_optional_firestore
from ..store import VERIFICATIONS_COLLECTION

router = APIRouter()
logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"

# Only expose detailed errors in debug mode
DEBUG_MODE = os.environ.get("DEBUG", "false").lower() == "true"


@router.get("/health")
async def health_check() -> dict:
    """Basic health check - no auth required.

    Returns overall API status.
    """
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": API_VERSION,
    }


@router.get("/health/firebase")
async def firebase_health(
    settings: BillingSettings = Depends(get_billing_settings),
    db=Depends(get_optional_firestore),
) -> dict:
    """Firestore reachability plus which billing credentials are present.

    Returns:
    - healthy: Firestore reachable and all billing credentials configured
    - degraded: Firestore reachable but Razorpay or webhook credentials missing
    - unhealthy: Firestore not configured or unreachable
    """
    result = {
        "firestore": False,
        "razorpayConfigured": settings.razorpay_configured,
        "webhookConfigured": settings.webhook_configured,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if db is None:
        return {"status": "unhealthy", **result}

    try:
        # Cheap read; existence does not matter.
        db.collection(VERIFICATIONS_COLLECTION).document("_health").get()
        result["firestore"] = True
    except Exception as e:
        logger.error(f"Firestore health check failed: {e}")
        return {
            "status": "unhealthy",
            **result,
            "error": str(e) if DEBUG_MODE else "Firestore unreachable",
        }

    if settings.razorpay_configured and settings.webhook_configured:
        return {"status": "healthy", **result}
    return {"status": "degraded", **result}

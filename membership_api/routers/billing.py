"""Billing router - Razorpay payment verification, webhook, and membership reads.

Endpoints:
    POST /api/billing/verify - Client-triggered verification after checkout
    POST /api/billing/webhook - Razorpay payment.captured webhook
    GET /api/billing/membership - Caller's current membership
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from google.api_core import exceptions as gcp_exceptions

from .. import store
from ..billing.attempt_limit import enforce_attempt_limit
from ..billing.errors import (
    AuthenticationError,
    BillingError,
    ConfigurationError,
    OwnershipError,
    PaymentConflictError,
    PaymentValidationError,
    RateLimitError,
)
from ..billing.verification import parse_verify_request, verify_client_payment
from ..billing.webhook import handle_webhook
from ..config import PREMIUM_PLAN, SIGNATURE_HEADER, BillingSettings, get_billing_settings
from ..dependencies import (
    authenticate_request,
    get_identity_verifier,
    get_optional_firestore,
    get_payment_gateway_factory,
)
from ..middleware.rate_limit import rate_limit_read, rate_limit_verify, rate_limit_webhook
from ..models import (
    ErrorResponse,
    MembershipPayload,
    MembershipStatus,
    MembershipStatusResponse,
    VerifyPaymentResponse,
    WebhookAck,
    WebhookErrorResponse,
)
from ..utils.client_ip import get_client_ip
from ..utils.security_logger import security_logger

router = APIRouter()
logger = logging.getLogger("api.billing")

BACKEND_NOT_CONFIGURED = "Billing verification backend is not configured."


def _error_response(exc: BillingError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.error, code=exc.code).model_dump(),
    )


def _webhook_error(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=WebhookErrorResponse(error=error).model_dump(),
    )


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_iso(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return _as_utc(value).isoformat()
    return str(value)


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError as exc:
        raise PaymentValidationError(
            "Invalid payment verification payload.",
            code="INVALID_PAYLOAD",
        ) from exc


# =============================================================================
# CLIENT VERIFY
# =============================================================================

@router.post(
    "/billing/verify",
    response_model=VerifyPaymentResponse,
    response_model_exclude_none=True,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
@rate_limit_verify
async def verify_payment(
    request: Request,
    settings: BillingSettings = Depends(get_billing_settings),
    db=Depends(get_optional_firestore),
    verifier=Depends(get_identity_verifier),
    gateway_factory=Depends(get_payment_gateway_factory),
):
    """Verify a completed Razorpay checkout and activate premium membership.

    Each step is a hard gate: configuration, identity, attempt limit, payload,
    provider credentials, prior verification, Razorpay lookup, capture and
    ownership checks, then one reconciliation transaction.
    """
    ip = get_client_ip(request)
    uid: Optional[str] = None
    payment_id: Optional[str] = None
    try:
        if db is None:
            raise ConfigurationError(BACKEND_NOT_CONFIGURED)

        uid = authenticate_request(request, verifier)
        enforce_attempt_limit(db, uid=uid, ip=ip, settings=settings)

        body = await _read_json(request)
        payment_id, plan = parse_verify_request(body, settings)
        gateway = gateway_factory(settings)

        result = verify_client_payment(
            db,
            uid=uid,
            payment_id=payment_id,
            plan=plan,
            gateway=gateway,
            settings=settings,
        )
    except RateLimitError as exc:
        security_logger.rate_limit_exceeded(
            ip=ip,
            path=request.url.path,
            limit=f"{settings.verify_max_attempts}/{settings.verify_window_seconds}s",
            uid=uid,
        )
        return _error_response(exc)
    except (PaymentConflictError, OwnershipError) as exc:
        security_logger.payment_rejected(
            ip=ip,
            uid=uid or "",
            path=request.url.path,
            payment_id=payment_id or "",
            code=exc.code,
        )
        return _error_response(exc)
    except BillingError as exc:
        if exc.status_code >= 500:
            logger.error("Billing verification unavailable uid=%s code=%s: %s", uid, exc.code, exc.error)
        return _error_response(exc)
    except gcp_exceptions.GoogleAPICallError:
        logger.exception("Billing verification error uid=%s payment=%s", uid, payment_id)
        return _error_response(BillingError("Internal verification error.", code="INTERNAL_ERROR"))

    if result.already_verified:
        return VerifyPaymentResponse(
            success=True,
            message="Membership already verified for this payment.",
        )

    return VerifyPaymentResponse(
        success=True,
        message="Membership activated successfully.",
        membership=MembershipPayload(
            plan=PREMIUM_PLAN,
            status="active",
            planType=result.plan_type,
            periodEnd=_to_iso(result.period_end),
        ),
    )


# =============================================================================
# WEBHOOK
# =============================================================================

@router.post(
    "/billing/webhook",
    response_model=WebhookAck,
    response_model_exclude_none=True,
    responses={
        401: {"model": WebhookErrorResponse},
        500: {"model": WebhookErrorResponse},
    },
)
@rate_limit_webhook
async def razorpay_webhook(
    request: Request,
    settings: BillingSettings = Depends(get_billing_settings),
    db=Depends(get_optional_firestore),
):
    """Reconcile a Razorpay webhook delivery.

    Anything other than a forged signature or an infrastructure failure is
    acknowledged with 200 so Razorpay does not retry it.
    """
    if db is None:
        return _webhook_error(500, "Billing backend is not configured.")

    # Signature covers the exact bytes; parse only after verifying.
    raw_body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    try:
        result = handle_webhook(
            db,
            raw_body=raw_body,
            signature=signature,
            settings=settings,
        )
    except AuthenticationError as exc:
        security_logger.webhook_signature_failure(
            ip=get_client_ip(request),
            path=request.url.path,
            reason=exc.code.lower(),
        )
        return _webhook_error(exc.status_code, exc.error)
    except ConfigurationError as exc:
        logger.error("Razorpay webhook not configured: %s", exc.error)
        return _webhook_error(exc.status_code, exc.error)
    except Exception:
        # Includes exhausted transaction retries, which surface as ValueError.
        logger.exception("Razorpay webhook error")
        return _webhook_error(500, "Webhook processing failed.")

    if result.ignored:
        return WebhookAck(ok=True, ignored=True)
    return WebhookAck(ok=True)


# =============================================================================
# MEMBERSHIP READ
# =============================================================================

@router.get(
    "/billing/membership",
    response_model=MembershipStatusResponse,
    responses={
        401: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
@rate_limit_read
async def get_membership(
    request: Request,
    db=Depends(get_optional_firestore),
    verifier=Depends(get_identity_verifier),
):
    """Current membership for the caller, derived from the subscription document."""
    try:
        if db is None:
            raise ConfigurationError(BACKEND_NOT_CONFIGURED)
        uid = authenticate_request(request, verifier)
    except BillingError as exc:
        return _error_response(exc)

    snap = store.subscription_ref(db, uid).get()
    if not snap.exists:
        return MembershipStatusResponse(
            membership=MembershipStatus(plan="free", status="inactive", active=False),
        )

    data = snap.to_dict() or {}
    status = str(data.get("status") or "inactive")
    period_end = data.get("periodEnd")
    active = (
        status == "active"
        and isinstance(period_end, datetime)
        and _as_utc(period_end) > datetime.now(timezone.utc)
    )

    return MembershipStatusResponse(
        membership=MembershipStatus(
            plan=str(data.get("plan") or "free"),
            status=status,
            planType=data.get("planType"),
            planName=data.get("planName"),
            periodEnd=_to_iso(period_end),
            active=active,
        ),
    )

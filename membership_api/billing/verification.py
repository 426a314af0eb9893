"""Client-triggered payment verification.

The caller has already been authenticated and rate limited by the route.
This module validates the submitted payload, re-checks the payment against
Razorpay and hands a validated payment to the reconciliation engine.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Tuple

from google.cloud import firestore
from pydantic import BaseModel, ValidationError, field_validator

from .. import store
from ..config import BillingSettings, PlanMeta
from .errors import OwnershipError, PaymentConflictError, PaymentValidationError
from .reconcile import CapturedPayment, ReconcileOutcome, capture_failures, reconcile_payment

logger = logging.getLogger("api.billing.verification")

INVALID_PAYLOAD_MESSAGE = "Invalid payment verification payload."


class VerifyPaymentRequest(BaseModel):
    paymentId: str = ""
    planType: str = ""

    @field_validator("paymentId", mode="before")
    @classmethod
    def _strip_payment_id(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("planType", mode="before")
    @classmethod
    def _normalize_plan_type(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


@dataclass
class VerifyResult:
    payment_id: str
    plan_type: str
    already_verified: bool
    period_end: Optional[datetime] = None


def parse_verify_request(body: Any, settings: BillingSettings) -> Tuple[str, PlanMeta]:
    """Validate a ``{paymentId, planType}`` body.

    Raises:
        PaymentValidationError: wrong shape, missing or malformed payment ID,
            or unknown plan type.
    """
    if not isinstance(body, dict):
        raise PaymentValidationError(INVALID_PAYLOAD_MESSAGE, code="INVALID_PAYLOAD")
    try:
        payload = VerifyPaymentRequest.model_validate(body)
    except ValidationError as exc:
        raise PaymentValidationError(INVALID_PAYLOAD_MESSAGE, code="INVALID_PAYLOAD") from exc

    plan = settings.plan_for(payload.planType)
    if (
        not payload.paymentId.startswith(settings.payment_id_prefix)
        or not store.is_document_id(payload.paymentId)
        or plan is None
    ):
        raise PaymentValidationError(INVALID_PAYLOAD_MESSAGE, code="INVALID_PAYLOAD")
    return payload.paymentId, plan


def verify_client_payment(
    db: firestore.Client,
    *,
    uid: str,
    payment_id: str,
    plan: PlanMeta,
    gateway,
    settings: BillingSettings,
    now: Optional[datetime] = None,
) -> VerifyResult:
    """Verify ``payment_id`` for ``uid`` and activate membership.

    ``gateway`` is anything with ``fetch_payment(payment_id) -> dict``
    (normally ``RazorpayClient``).

    Raises:
        PaymentConflictError: the payment is bound to another uid or plan.
        ProviderError: the Razorpay lookup failed.
        PaymentValidationError: the payment is not a full capture of the plan price.
        OwnershipError: the payment notes name another uid or plan.
    """
    existing_snap = store.verification_ref(db, payment_id).get()
    if existing_snap.exists:
        existing = existing_snap.to_dict() or {}
        if existing.get("uid") != uid or existing.get("planType") != plan.plan_type:
            logger.warning(
                "Payment already linked payment=%s uid=%s existingUid=%s",
                payment_id,
                uid,
                existing.get("uid"),
            )
            raise PaymentConflictError(
                "This payment is already linked to another subscription.",
                code="PAYMENT_LINKED_ELSEWHERE",
            )
        return VerifyResult(payment_id=payment_id, plan_type=plan.plan_type, already_verified=True)

    entity = gateway.fetch_payment(payment_id)
    payment = CapturedPayment.from_razorpay(entity)

    failures = capture_failures(payment, plan, settings.currency)
    if payment.payment_id != payment_id:
        failures.append("id")
    if failures:
        logger.warning("Payment mismatch payment=%s uid=%s failed=%s", payment_id, uid, failures)
        raise PaymentValidationError(
            "Payment verification failed due to amount/status mismatch.",
            code="PAYMENT_MISMATCH",
            details={"failed": failures},
        )

    if payment.uid != uid or payment.plan_type != plan.plan_type:
        raise OwnershipError(
            "Payment ownership validation failed.",
            details={"notesUid": payment.uid, "notesPlanType": payment.plan_type},
        )

    result = reconcile_payment(db, payment, plan, source="api", now=now)
    if result.outcome == ReconcileOutcome.CONFLICT:
        raise PaymentConflictError("This payment has already been used.")
    if result.outcome == ReconcileOutcome.ALREADY_VERIFIED:
        return VerifyResult(payment_id=payment_id, plan_type=plan.plan_type, already_verified=True)

    return VerifyResult(
        payment_id=payment_id,
        plan_type=plan.plan_type,
        already_verified=False,
        period_end=result.period_end,
    )

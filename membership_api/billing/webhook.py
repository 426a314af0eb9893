"""Razorpay webhook verification and reconciliation.

Only ``payment.captured`` events change state. Anything that cannot be
acted on (other events, missing notes, invalid amounts) is acknowledged as
ignored so Razorpay does not keep redelivering it.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from google.cloud import firestore

from .. import store
from ..config import CAPTURED_EVENT, BillingSettings
from .errors import AuthenticationError, ConfigurationError
from .reconcile import CapturedPayment, capture_failures, reconcile_payment

logger = logging.getLogger("api.billing.webhook")


class WebhookOutcome(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


@dataclass
class WebhookResult:
    outcome: WebhookOutcome
    reason: Optional[str] = None
    payment_id: Optional[str] = None

    @property
    def ignored(self) -> bool:
        return self.outcome == WebhookOutcome.IGNORED


def compute_signature(secret: str, raw_body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def signature_matches(secret: str, raw_body: bytes, signature: str) -> bool:
    expected = compute_signature(secret, raw_body)
    return hmac.compare_digest(signature.strip().encode("utf-8"), expected.encode("utf-8"))


def verify_signature(raw_body: bytes, signature: Optional[str], settings: BillingSettings) -> None:
    """Check the signature over the unparsed request bytes.

    Raises:
        ConfigurationError: no webhook secret configured.
        AuthenticationError: signature missing or wrong.
    """
    if not settings.webhook_configured:
        raise ConfigurationError("Webhook secret missing.", code="WEBHOOK_SECRET_MISSING")
    if not signature:
        raise AuthenticationError("Missing webhook signature.", code="WEBHOOK_SIGNATURE_MISSING")
    if not signature_matches(settings.webhook_secret, raw_body, signature):
        raise AuthenticationError("Invalid webhook signature.", code="WEBHOOK_SIGNATURE_INVALID")


def _payment_entity(event: Dict[str, Any]) -> Dict[str, Any]:
    payload = event.get("payload")
    payment = payload.get("payment") if isinstance(payload, dict) else None
    entity = payment.get("entity") if isinstance(payment, dict) else None
    return entity if isinstance(entity, dict) else {}


def _ignored(reason: str, payment_id: Optional[str] = None) -> WebhookResult:
    logger.info("Webhook ignored reason=%s payment=%s", reason, payment_id)
    return WebhookResult(outcome=WebhookOutcome.IGNORED, reason=reason, payment_id=payment_id)


def handle_webhook(
    db: firestore.Client,
    *,
    raw_body: bytes,
    signature: Optional[str],
    settings: BillingSettings,
    now: Optional[datetime] = None,
) -> WebhookResult:
    """Authenticate and reconcile one webhook delivery."""
    verify_signature(raw_body, signature, settings)

    try:
        event = json.loads(raw_body)
    except ValueError:
        return _ignored("malformed_body")
    if not isinstance(event, dict):
        return _ignored("malformed_body")

    if event.get("event") != CAPTURED_EVENT:
        return _ignored("unhandled_event")

    payment = CapturedPayment.from_razorpay(_payment_entity(event))
    plan = settings.plan_for(payment.plan_type)
    # Both IDs become Firestore document IDs.
    if (
        not store.is_document_id(payment.payment_id)
        or not store.is_document_id(payment.uid)
        or plan is None
    ):
        return _ignored("unresolvable_payment", payment.payment_id or None)

    failures = capture_failures(payment, plan, settings.currency)
    if failures:
        logger.warning(
            "Webhook payment failed validation payment=%s failed=%s",
            payment.payment_id,
            failures,
        )
        return _ignored("invalid_payment", payment.payment_id)

    result = reconcile_payment(db, payment, plan, source="webhook", now=now)
    if not result.activated:
        return WebhookResult(outcome=WebhookOutcome.DUPLICATE, payment_id=payment.payment_id)
    return WebhookResult(outcome=WebhookOutcome.PROCESSED, payment_id=payment.payment_id)

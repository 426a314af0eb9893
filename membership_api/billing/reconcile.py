"""Payment reconciliation shared by the verify endpoint and the webhook.

Both paths end in ``reconcile_payment``. The payment verification record
(``payment_verifications/{paymentId}``) is created with a create-only write in
the same transaction as the subscription, transaction-record and public
marker writes, so a payment ID activates membership at most once no matter
which path gets there first.
"""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from google.api_core import exceptions as gcp_exceptions
from google.cloud import firestore

from .. import store
from ..config import CURRENCY, PREMIUM_PLAN, PROVIDER_NAME, PlanMeta

logger = logging.getLogger("api.billing.reconcile")


# =============================================================================
# PAYMENT FACTS
# =============================================================================

def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


@dataclass(frozen=True)
class CapturedPayment:
    """Normalized view of a Razorpay payment entity."""
    payment_id: str
    uid: str
    plan_type: str
    status: str
    captured: bool
    currency: str
    amount: Optional[int]
    method: str = ""
    email: str = ""
    contact: str = ""
    provider_created_at: Optional[int] = None

    @classmethod
    def from_razorpay(cls, entity: Dict[str, Any]) -> "CapturedPayment":
        notes = entity.get("notes")
        if not isinstance(notes, dict):
            notes = {}
        return cls(
            payment_id=_clean(entity.get("id")),
            uid=_clean(notes.get("user_uid")),
            plan_type=_clean(notes.get("plan_type")).lower(),
            status=_clean(entity.get("status")).lower(),
            captured=entity.get("captured") is True,
            currency=_clean(entity.get("currency")).upper(),
            amount=_as_int(entity.get("amount")),
            method=_clean(entity.get("method")),
            email=_clean(entity.get("email")),
            contact=_clean(entity.get("contact")),
            provider_created_at=_as_int(entity.get("created_at")),
        )


def capture_failures(payment: CapturedPayment, plan: PlanMeta, currency: str = CURRENCY) -> List[str]:
    """Names of the capture checks ``payment`` fails for ``plan`` (empty if valid)."""
    failures = []
    if payment.status != "captured" or not payment.captured:
        failures.append("status")
    if payment.currency != currency.upper():
        failures.append("currency")
    if payment.amount != plan.amount_paisa:
        failures.append("amount")
    return failures


# =============================================================================
# PERIOD ARITHMETIC
# =============================================================================

def add_months(value: datetime, months: int) -> datetime:
    """Calendar-month addition; the day is clamped to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def period_end_for(plan: PlanMeta, now: datetime) -> datetime:
    # Starts from now, not from any unexpired period end.
    return add_months(now, plan.months)


# =============================================================================
# RECONCILIATION
# =============================================================================

class ReconcileOutcome(str, Enum):
    ACTIVATED = "activated"
    ALREADY_VERIFIED = "already_verified"
    CONFLICT = "conflict"


@dataclass
class ReconcileResult:
    outcome: ReconcileOutcome
    payment_id: str
    uid: str
    plan_type: str
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    existing: Dict[str, Any] = field(default_factory=dict)

    @property
    def activated(self) -> bool:
        return self.outcome == ReconcileOutcome.ACTIVATED


def _result_for_existing(payment: CapturedPayment, existing: Dict[str, Any]) -> ReconcileResult:
    matches = existing.get("uid") == payment.uid and existing.get("planType") == payment.plan_type
    return ReconcileResult(
        outcome=ReconcileOutcome.ALREADY_VERIFIED if matches else ReconcileOutcome.CONFLICT,
        payment_id=payment.payment_id,
        uid=payment.uid,
        plan_type=payment.plan_type,
        existing=existing,
    )


def reconcile_payment(
    db: firestore.Client,
    payment: CapturedPayment,
    plan: PlanMeta,
    *,
    source: str,
    now: Optional[datetime] = None,
) -> ReconcileResult:
    """Activate premium membership for a validated, captured payment.

    Callers must have validated ``payment`` against ``plan`` already. If a
    verification record for the payment ID exists, nothing is written and the
    result reports whether it belongs to the same uid and plan.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    period_end = period_end_for(plan, now)

    verification = store.verification_ref(db, payment.payment_id)
    subscription = store.subscription_ref(db, payment.uid)
    tx_record = store.transaction_record_ref(db, payment.uid, payment.payment_id)
    public_user = store.public_user_ref(db, payment.uid)

    def _apply(transaction) -> ReconcileResult:
        lock = verification.get(transaction=transaction)
        if lock.exists:
            return _result_for_existing(payment, lock.to_dict() or {})

        transaction.create(verification, {
            "paymentId": payment.payment_id,
            "uid": payment.uid,
            "planType": payment.plan_type,
            "provider": PROVIDER_NAME,
            "source": source,
            "verifiedAt": firestore.SERVER_TIMESTAMP,
        })

        transaction.set(subscription, {
            "plan": PREMIUM_PLAN,
            "planType": payment.plan_type,
            "planName": plan.plan_name,
            "status": "active",
            "isPremium": True,
            "provider": PROVIDER_NAME,
            "paymentId": payment.payment_id,
            "amountInr": plan.amount_inr,
            "currency": CURRENCY,
            "source": source,
            "verifiedAt": firestore.SERVER_TIMESTAMP,
            "updatedAt": firestore.SERVER_TIMESTAMP,
            "periodStart": now,
            "periodEnd": period_end,
        }, merge=True)

        transaction.set(tx_record, {
            "paymentId": payment.payment_id,
            "planType": payment.plan_type,
            "planName": plan.plan_name,
            "amountInr": plan.amount_inr,
            "amountPaisa": plan.amount_paisa,
            "provider": PROVIDER_NAME,
            "razorpayStatus": payment.status,
            "razorpayCaptured": payment.captured,
            "method": payment.method,
            "email": payment.email,
            "contact": payment.contact,
            "razorpayCreatedAt": payment.provider_created_at,
            "source": source,
            "createdAt": firestore.SERVER_TIMESTAMP,
        }, merge=True)

        # Public premium marker read by the site renderer.
        transaction.set(public_user, {
            "isPremium": True,
            "plan": PREMIUM_PLAN,
            "status": "active",
            "membershipUpdatedAt": firestore.SERVER_TIMESTAMP,
        }, merge=True)

        return ReconcileResult(
            outcome=ReconcileOutcome.ACTIVATED,
            payment_id=payment.payment_id,
            uid=payment.uid,
            plan_type=payment.plan_type,
            period_start=now,
            period_end=period_end,
        )

    try:
        result = store.run_transaction(db, _apply)
    except (gcp_exceptions.AlreadyExists, gcp_exceptions.Conflict):
        # Lost the create race to a concurrent reconcile of the same payment.
        snap = verification.get()
        if not snap.exists:
            raise
        result = _result_for_existing(payment, snap.to_dict() or {})

    logger.info(
        "Reconcile payment=%s uid=%s plan=%s source=%s outcome=%s periodEnd=%s",
        payment.payment_id,
        payment.uid,
        payment.plan_type,
        source,
        result.outcome.value,
        result.period_end.isoformat() if result.period_end else None,
    )
    return result

"""Billing configuration: plan table and environment-derived settings.

Settings are read from the environment once per process and frozen. Routes
receive them through ``Depends(get_billing_settings)`` so tests can override
them without touching ``os.environ``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from types import MappingProxyType
from typing import Mapping, Optional


def _str_env(name: str, default: str = "") -> str:
    return str(os.environ.get(name, default)).strip()


def _int_env(name: str, default: int) -> int:
    raw = _str_env(name)
    if not raw:
        return default
    return int(raw)


def _float_env(name: str, default: float) -> float:
    raw = _str_env(name)
    if not raw:
        return default
    return float(raw)


# =============================================================================
# PLAN TABLE
# =============================================================================

@dataclass(frozen=True)
class PlanMeta:
    """Static price and label for a purchasable plan."""
    plan_type: str
    amount_inr: int
    plan_name: str
    months: int

    @property
    def amount_paisa(self) -> int:
        return self.amount_inr * 100


PLAN_META: Mapping[str, PlanMeta] = MappingProxyType({
    "monthly": PlanMeta(plan_type="monthly", amount_inr=100, plan_name="premium_monthly", months=1),
    "yearly": PlanMeta(plan_type="yearly", amount_inr=500, plan_name="premium_yearly", months=12),
})

PREMIUM_PLAN = "premium"
PROVIDER_NAME = "razorpay"
PAYMENT_ID_PREFIX = "pay_"
CURRENCY = "INR"
SIGNATURE_HEADER = "x-razorpay-signature"
CAPTURED_EVENT = "payment.captured"


# =============================================================================
# SETTINGS
# =============================================================================

@dataclass(frozen=True)
class BillingSettings:
    razorpay_key_id: str = ""
    razorpay_key_secret: str = ""
    webhook_secret: str = ""
    api_base_url: str = "https://api.razorpay.com/v1"
    api_timeout_sec: float = 8.0
    verify_window_seconds: int = 300
    verify_max_attempts: int = 8
    currency: str = CURRENCY
    payment_id_prefix: str = PAYMENT_ID_PREFIX
    plans: Mapping[str, PlanMeta] = field(default_factory=lambda: PLAN_META)

    @property
    def razorpay_configured(self) -> bool:
        return bool(self.razorpay_key_id and self.razorpay_key_secret)

    @property
    def webhook_configured(self) -> bool:
        return bool(self.webhook_secret)

    @property
    def verify_window_ms(self) -> int:
        return self.verify_window_seconds * 1000

    def plan_for(self, plan_type: Optional[str]) -> Optional[PlanMeta]:
        normalized = str(plan_type or "").strip().lower()
        return self.plans.get(normalized)


def load_billing_settings() -> BillingSettings:
    return BillingSettings(
        razorpay_key_id=_str_env("RAZORPAY_KEY_ID"),
        razorpay_key_secret=_str_env("RAZORPAY_KEY_SECRET"),
        webhook_secret=_str_env("RAZORPAY_WEBHOOK_SECRET"),
        api_base_url=_str_env("RAZORPAY_API_BASE_URL", "https://api.razorpay.com/v1").rstrip("/"),
        api_timeout_sec=_float_env("RAZORPAY_API_TIMEOUT_SEC", 8.0),
        verify_window_seconds=_int_env("BILLING_VERIFY_WINDOW_SECONDS", 300),
        verify_max_attempts=_int_env("BILLING_VERIFY_MAX_ATTEMPTS", 8),
    )


@lru_cache(maxsize=1)
def get_billing_settings() -> BillingSettings:
    """Process-wide billing settings (loaded on first use)."""
    return load_billing_settings()

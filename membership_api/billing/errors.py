"""Billing error taxonomy.

Every failure on the client-verify path is raised as a ``BillingError``
subclass and rendered at the route boundary. Webhook events that cannot be
acted on are not errors; see ``WebhookOutcome`` in the webhook module.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class BillingError(Exception):
    status_code = 500
    code = "BILLING_ERROR"

    def __init__(
        self,
        error: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(error)
        self.error = error
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}


class ConfigurationError(BillingError):
    status_code = 500
    code = "BILLING_NOT_CONFIGURED"


class AuthenticationError(BillingError):
    status_code = 401
    code = "AUTHENTICATION_FAILED"


class RateLimitError(BillingError):
    status_code = 429
    code = "RATE_LIMITED"


class PaymentValidationError(BillingError):
    status_code = 400
    code = "INVALID_PAYMENT"


class OwnershipError(BillingError):
    status_code = 403
    code = "PAYMENT_OWNERSHIP_MISMATCH"


class PaymentConflictError(BillingError):
    status_code = 409
    code = "PAYMENT_ALREADY_USED"


class ProviderError(BillingError):
    status_code = 400
    code = "PROVIDER_LOOKUP_FAILED"

"""Payment verification, webhook reconciliation and attempt limiting."""

from .errors import (
    AuthenticationError,
    BillingError,
    ConfigurationError,
    OwnershipError,
    PaymentConflictError,
    PaymentValidationError,
    ProviderError,
    RateLimitError,
)
from .reconcile import ReconcileOutcome, reconcile_payment

__all__ = [
    'AuthenticationError',
    'BillingError',
    'ConfigurationError',
    'OwnershipError',
    'PaymentConflictError',
    'PaymentValidationError',
    'ProviderError',
    'RateLimitError',
    'ReconcileOutcome',
    'reconcile_payment',
]

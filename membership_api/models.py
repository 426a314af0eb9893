"""Pydantic response models for the Membership Billing API.

Request bodies for the billing endpoints are parsed inside the handlers
(see ``billing.verification``) so that auth and rate limiting run before
payload validation.
"""

from __future__ import annotations

from typing import Literal, Optional
from pydantic import BaseModel


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class MembershipPayload(BaseModel):
    """Membership state returned after a successful verification."""
    plan: str
    status: str
    planType: Literal["monthly", "yearly"]
    periodEnd: str  # ISO-8601


class VerifyPaymentResponse(BaseModel):
    success: bool = True
    message: str
    membership: Optional[MembershipPayload] = None


class MembershipStatus(BaseModel):
    plan: str
    status: str
    planType: Optional[str] = None
    planName: Optional[str] = None
    periodEnd: Optional[str] = None
    active: bool = False


class MembershipStatusResponse(BaseModel):
    success: bool = True
    membership: MembershipStatus


class WebhookAck(BaseModel):
    ok: bool = True
    ignored: Optional[bool] = None


# =============================================================================
# ERROR MODELS
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard billing error response format."""
    success: bool = False
    error: str
    code: str


class WebhookErrorResponse(BaseModel):
    ok: bool = False
    error: str

"""Thin Razorpay REST client used for out-of-band payment lookups."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib import parse as url_parse

import requests

from ..config import BillingSettings
from .errors import ConfigurationError, ProviderError

logger = logging.getLogger("api.billing.razorpay")

USER_AGENT = "membership-billing-api/1.0"


class RazorpayClient:
    """Fetches authoritative payment objects from the Razorpay API."""

    def __init__(self, settings: BillingSettings, session: Optional[requests.Session] = None) -> None:
        if not settings.razorpay_configured:
            raise ConfigurationError(
                "Server Razorpay credentials are missing.",
                code="RAZORPAY_CREDENTIALS_MISSING",
                details={"required": ["RAZORPAY_KEY_ID", "RAZORPAY_KEY_SECRET"]},
            )
        self._settings = settings
        self._session = session or requests.Session()

    def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        """GET /payments/{id}.

        Raises:
            ProviderError: transport failure, non-2xx status, or a body that is
                not a JSON object.
        """
        url = f"{self._settings.api_base_url}/payments/{url_parse.quote(payment_id, safe='')}"
        try:
            resp = self._session.get(
                url,
                auth=(self._settings.razorpay_key_id, self._settings.razorpay_key_secret),
                headers={"Accept": "application/json", "User-Agent": USER_AGENT},
                timeout=self._settings.api_timeout_sec,
            )
        except requests.RequestException as exc:
            logger.warning("Razorpay lookup unreachable payment=%s: %s", payment_id, exc)
            raise ProviderError(
                "Unable to verify payment with Razorpay.",
                code="RAZORPAY_UNREACHABLE",
            ) from exc

        if not resp.ok:
            logger.warning(
                "Razorpay lookup failed payment=%s status=%s",
                payment_id,
                resp.status_code,
            )
            raise ProviderError(
                "Unable to verify payment with Razorpay.",
                code="RAZORPAY_HTTP_ERROR",
                details={"httpStatus": resp.status_code},
            )

        try:
            parsed = resp.json()
        except ValueError as exc:
            raise ProviderError(
                "Unable to verify payment with Razorpay.",
                code="RAZORPAY_INVALID_RESPONSE",
            ) from exc
        if not isinstance(parsed, dict):
            raise ProviderError(
                "Unable to verify payment with Razorpay.",
                code="RAZORPAY_INVALID_RESPONSE",
            )
        return parsed

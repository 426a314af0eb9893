"""FastAPI dependencies for authentication, Firestore access, and billing collaborators.

All endpoints use these dependencies for:
- Firebase Admin initialization (env credentials or service account file)
- Firestore client access
- Firebase ID token verification
- Razorpay client construction
"""

from __future__ import annotations

import os
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any, Callable

from fastapi import Request

import firebase_admin
from firebase_admin import auth, credentials, firestore

from .billing.errors import AuthenticationError
from .billing.razorpay_client import RazorpayClient
from .utils.client_ip import get_client_ip
from .utils.security_logger import security_logger

# =============================================================================
# CONFIGURATION
# =============================================================================

# Service account file (fallback when env credentials are not set)
SERVICE_ACCOUNT_PATH = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS", "")

# Inline service account fields
FIREBASE_ADMIN_PROJECT_ID = os.environ.get(
    "FIREBASE_ADMIN_PROJECT_ID",
    os.environ.get("NEXT_PUBLIC_FIREBASE_PROJECT_ID", ""),
).strip()
FIREBASE_ADMIN_CLIENT_EMAIL = os.environ.get("FIREBASE_ADMIN_CLIENT_EMAIL", "").strip()
FIREBASE_ADMIN_PRIVATE_KEY = os.environ.get("FIREBASE_ADMIN_PRIVATE_KEY", "")

# Security settings
MAX_TOKEN_AGE_SECONDS = int(os.environ.get("MAX_TOKEN_AGE_SECONDS", 3600))  # Default 1 hour
CLOCK_SKEW_SECONDS = int(os.environ.get("CLOCK_SKEW_SECONDS", 300))  # Default 5 min
SKIP_TOKEN_AGE_CHECK = os.environ.get("SKIP_TOKEN_AGE_CHECK", "").lower() in ("1", "true")

logger = logging.getLogger("api.dependencies")


# =============================================================================
# FIREBASE INITIALIZATION
# =============================================================================

_firebase_app: Optional[firebase_admin.App] = None
_firestore_client = None


def _service_account_credentials() -> credentials.Certificate:
    if FIREBASE_ADMIN_PROJECT_ID and FIREBASE_ADMIN_CLIENT_EMAIL and FIREBASE_ADMIN_PRIVATE_KEY:
        return credentials.Certificate({
            "type": "service_account",
            "project_id": FIREBASE_ADMIN_PROJECT_ID,
            "client_email": FIREBASE_ADMIN_CLIENT_EMAIL,
            "private_key": FIREBASE_ADMIN_PRIVATE_KEY.replace("\\n", "\n"),
            "token_uri": "https://oauth2.googleapis.com/token",
        })

    if SERVICE_ACCOUNT_PATH and Path(SERVICE_ACCOUNT_PATH).exists():
        return credentials.Certificate(SERVICE_ACCOUNT_PATH)

    raise RuntimeError("Missing Firebase Admin credentials in environment variables.")


def get_firebase_app() -> firebase_admin.App:
    """Get or initialize Firebase Admin app."""
    global _firebase_app

    if _firebase_app is not None:
        return _firebase_app

    # Check if already initialized
    try:
        _firebase_app = firebase_admin.get_app()
        return _firebase_app
    except ValueError:
        pass

    cred = _service_account_credentials()
    options = {"projectId": FIREBASE_ADMIN_PROJECT_ID} if FIREBASE_ADMIN_PROJECT_ID else None
    _firebase_app = firebase_admin.initialize_app(cred, options)
    logger.info("Firebase Admin initialized")
    return _firebase_app


def get_firestore():
    """Get Firestore client (singleton)."""
    global _firestore_client

    if _firestore_client is None:
        get_firebase_app()  # Ensure initialized
        _firestore_client = firestore.client()
        logger.info("Firestore client initialized")

    return _firestore_client


def get_optional_firestore():
    """Firestore client, or None when Firebase Admin is not configured.

    Billing routes turn None into a 500 configuration error themselves so the
    caller gets a structured billing response.
    """
    try:
        return get_firestore()
    except (RuntimeError, ValueError) as exc:
        logger.error(f"Firestore unavailable: {exc}")
        return None


# =============================================================================
# AUTHENTICATION
# =============================================================================

def verify_id_token(token: str) -> Dict[str, Any]:
    """Verify a Firebase ID token and return its decoded claims.

    Security checks:
    - Valid signature (RS256)
    - Not expired
    - Not revoked
    - Token age < MAX_TOKEN_AGE_SECONDS
    - Not from the future (clock skew attack)

    Raises:
        AuthenticationError on any failure
    """
    try:
        get_firebase_app()
        decoded = auth.verify_id_token(token, check_revoked=True)
    except auth.RevokedIdTokenError as exc:
        raise AuthenticationError("Token has been revoked", code="TOKEN_REVOKED") from exc
    except auth.ExpiredIdTokenError as exc:
        raise AuthenticationError("Token has expired", code="TOKEN_EXPIRED") from exc
    except (auth.InvalidIdTokenError, auth.UserDisabledError, ValueError) as exc:
        raise AuthenticationError("Invalid token", code="TOKEN_INVALID") from exc
    except auth.CertificateFetchError as exc:
        raise AuthenticationError("Authentication failed", code="AUTH_UNAVAILABLE") from exc

    if not SKIP_TOKEN_AGE_CHECK:
        now = datetime.now(timezone.utc).timestamp()
        issued_at = decoded.get("iat", 0)

        if now - issued_at > MAX_TOKEN_AGE_SECONDS:
            raise AuthenticationError("Token too old, please re-authenticate", code="TOKEN_TOO_OLD")
        if issued_at > now + CLOCK_SKEW_SECONDS:
            raise AuthenticationError("Invalid token timestamp", code="TOKEN_FROM_FUTURE")

    return decoded


def get_identity_verifier() -> Callable[[str], Dict[str, Any]]:
    """Dependency returning the ID token verifier."""
    return verify_id_token


def bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization") or ""
    if not header.lower().startswith("bearer "):
        return None
    token = header[7:].strip()
    return token or None


def authenticate_request(
    request: Request,
    verifier: Callable[[str], Dict[str, Any]],
) -> str:
    """Resolve the caller's uid from the bearer token.

    Raises:
        AuthenticationError (401) when the header is missing or the token fails.
    """
    token = bearer_token(request)
    if token is None:
        _log_auth_failure(request, "missing_auth_header")
        raise AuthenticationError("Missing auth token.", code="AUTH_TOKEN_MISSING")

    try:
        decoded = verifier(token)
    except AuthenticationError as exc:
        _log_auth_failure(request, exc.code.lower())
        raise

    uid = str(decoded.get("uid") or "").strip()
    if not uid:
        _log_auth_failure(request, "missing_uid")
        raise AuthenticationError("Invalid token", code="TOKEN_INVALID")
    return uid


def _log_auth_failure(request: Request, reason: str):
    """Log authentication failure for security monitoring."""
    security_logger.auth_failure(
        ip=get_client_ip(request),
        reason=reason,
        path=request.url.path,
        user_agent=request.headers.get("user-agent", "unknown"),
    )


# =============================================================================
# PAYMENT PROVIDER
# =============================================================================

def get_payment_gateway_factory():
    """Dependency returning a callable that builds the Razorpay client from settings.

    Construction raises ConfigurationError when credentials are missing.
    """
    return RazorpayClient

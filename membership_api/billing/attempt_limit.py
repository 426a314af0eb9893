"""Per-user fixed-window limiter for payment verification attempts.

slowapi (see ``middleware.rate_limit``) only throttles per IP and keeps its
counters in process memory. Verification attempts are also capped per user
in Firestore so the ceiling holds across workers and IPs.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from google.cloud import firestore

from .. import store
from ..config import BillingSettings
from .errors import RateLimitError

logger = logging.getLogger("api.billing.attempt_limit")


def window_bucket(now_ms: int, window_ms: int) -> int:
    return now_ms // window_ms


def bucket_key(uid: str, bucket: int) -> str:
    return f"billing_verify_{uid}_{bucket}"


def enforce_attempt_limit(
    db: firestore.Client,
    *,
    uid: str,
    ip: str,
    settings: BillingSettings,
    now_ms: Optional[int] = None,
) -> int:
    """Count one verification attempt for ``uid`` in the current window.

    The read, ceiling check and increment share one transaction, so
    concurrent attempts serialize on the bucket document. Returns the
    attempt count after the increment.

    Raises:
        RateLimitError: the window already holds ``verify_max_attempts``.
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    bucket = window_bucket(now_ms, settings.verify_window_ms)
    ref = store.rate_limit_ref(db, bucket_key(uid, bucket))

    def _count_attempt(transaction) -> int:
        snap = ref.get(transaction=transaction)
        data = (snap.to_dict() or {}) if snap.exists else {}
        current = int(data.get("count") or 0)

        if current >= settings.verify_max_attempts:
            raise RateLimitError(
                "Too many verification attempts. Try again in a few minutes.",
                details={"bucket": bucket, "count": current},
            )

        transaction.set(
            ref,
            {
                "uid": uid,
                "ip": ip,
                "count": current + 1,
                "bucket": bucket,
                "updatedAt": firestore.SERVER_TIMESTAMP,
                "createdAt": data.get("createdAt") or firestore.SERVER_TIMESTAMP,
            },
            merge=True,
        )
        return current + 1

    attempts = store.run_transaction(db, _count_attempt)
    logger.debug("Verify attempt uid=%s bucket=%s count=%s", uid, bucket, attempts)
    return attempts

"""Firestore document references and transaction runner for billing state."""

from __future__ import annotations

from typing import Any, Callable, TypeVar

from google.cloud import firestore

T = TypeVar("T")

VERIFICATIONS_COLLECTION = "payment_verifications"
USERS_COLLECTION = "users"
RATE_LIMITS_COLLECTION = "security_rate_limits"


def is_document_id(value: str) -> bool:
    """Whether ``value`` can name a single Firestore document."""
    if not value or "/" in value or value in (".", ".."):
        return False
    if value.startswith("__") and value.endswith("__"):
        return False
    return len(value.encode("utf-8")) <= 1500


def verification_ref(db: firestore.Client, payment_id: str) -> firestore.DocumentReference:
    return db.collection(VERIFICATIONS_COLLECTION).document(payment_id)


def public_user_ref(db: firestore.Client, uid: str) -> firestore.DocumentReference:
    return db.collection(USERS_COLLECTION).document(uid)


def subscription_ref(db: firestore.Client, uid: str) -> firestore.DocumentReference:
    return public_user_ref(db, uid).collection("billing").document("subscription")


def transaction_record_ref(db: firestore.Client, uid: str, payment_id: str) -> firestore.DocumentReference:
    return subscription_ref(db, uid).collection("transactions").document(payment_id)


def rate_limit_ref(db: firestore.Client, key: str) -> firestore.DocumentReference:
    return db.collection(RATE_LIMITS_COLLECTION).document(key)


def run_transaction(db: firestore.Client, callback: Callable[[Any], T]) -> T:
    """Run ``callback(transaction)`` inside a retrying Firestore transaction.

    Exceptions raised by the callback roll the transaction back and propagate.
    """

    @firestore.transactional
    def _run(transaction):
        return callback(transaction)

    transaction = db.transaction()
    return _run(transaction)

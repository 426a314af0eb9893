# membership_api/tests/conftest.py
import os
import copy
import tempfile
import threading
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest

# Keep security logs out of the repo during tests
os.environ.setdefault("SECURITY_LOG_DIR", tempfile.mkdtemp(prefix="membership-security-logs-"))

from fastapi.testclient import TestClient
from google.api_core.exceptions import AlreadyExists
from google.cloud import firestore

from membership_api import store
from membership_api.billing.errors import AuthenticationError
from membership_api.billing.razorpay_client import RazorpayClient
from membership_api.config import BillingSettings, get_billing_settings
from membership_api.dependencies import (
    get_identity_verifier,
    get_optional_firestore,
    get_payment_gateway_factory,
)
from membership_api.main import app
from membership_api.middleware.rate_limit import limiter

from payloads import WEBHOOK_SECRET


# =============================================================================
# IN-MEMORY FIRESTORE
# =============================================================================

def _merge(target, updates):
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge(target[key], value)
        else:
            target[key] = value


class FakeSnapshot:
    def __init__(self, ref, data):
        self.reference = ref
        self.id = ref.id
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return copy.deepcopy(self._data) if self._data is not None else None


class FakeCollection:
    def __init__(self, db, path):
        self._db = db
        self.path = path

    def document(self, doc_id):
        return FakeDocument(self._db, f"{self.path}/{doc_id}")


class FakeDocument:
    def __init__(self, db, path):
        self._db = db
        self.path = path
        self.id = path.rsplit("/", 1)[-1]

    def collection(self, name):
        return FakeCollection(self._db, f"{self.path}/{name}")

    def get(self, transaction=None):
        self._db.reads.append(self.path)
        return FakeSnapshot(self, copy.deepcopy(self._db.docs.get(self.path)))

    def set(self, data, merge=False):
        self._db.apply([("set", self, data, merge)])

    def create(self, data):
        self._db.apply([("create", self, data, False)])


class FakeTransaction:
    def __init__(self, db):
        self._db = db
        self._writes = []

    def create(self, ref, data):
        self._writes.append(("create", ref, data, False))

    def set(self, ref, data, merge=False):
        self._writes.append(("set", ref, data, merge))

    def commit(self):
        self._db.apply(self._writes)


class FakeFirestore:
    """Dict-backed stand-in for ``firestore.Client``.

    Transactions buffer writes and apply them all-or-nothing under a lock.
    ``transaction.create`` on an existing document fails the whole commit
    with ``AlreadyExists``, like Firestore.
    """

    def __init__(self):
        self.docs = {}
        self.reads = []
        self.commits = 0
        self.before_commit = None
        self._lock = threading.RLock()

    def collection(self, name):
        return FakeCollection(self, name)

    def transaction(self):
        return FakeTransaction(self)

    def run_transaction(self, callback):
        with self._lock:
            transaction = FakeTransaction(self)
            result = callback(transaction)
            if self.before_commit is not None:
                hook, self.before_commit = self.before_commit, None
                hook()
            transaction.commit()
            return result

    def apply(self, writes):
        if not writes:
            return
        with self._lock:
            for op, ref, _, _ in writes:
                if op == "create" and ref.path in self.docs:
                    raise AlreadyExists(f"Document already exists: {ref.path}")
            now = datetime.now(timezone.utc)
            for op, ref, data, merge in writes:
                resolved = {
                    k: (now if v is firestore.SERVER_TIMESTAMP else copy.deepcopy(v))
                    for k, v in data.items()
                }
                if merge and ref.path in self.docs:
                    _merge(self.docs[ref.path], resolved)
                else:
                    self.docs[ref.path] = resolved
            self.commits += 1

    # Test helpers

    def put(self, path, data):
        with self._lock:
            self.docs[path] = copy.deepcopy(data)

    def doc(self, path):
        return copy.deepcopy(self.docs.get(path))

    def paths(self, prefix):
        return sorted(p for p in self.docs if p.startswith(prefix))


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def fake_db(monkeypatch):
    db = FakeFirestore()
    monkeypatch.setattr(store, "run_transaction", lambda client, callback: client.run_transaction(callback))
    return db


@pytest.fixture
def settings():
    return BillingSettings(
        razorpay_key_id="rzp_test_key",
        razorpay_key_secret="rzp_test_secret",
        webhook_secret=WEBHOOK_SECRET,
        verify_window_seconds=300,
        verify_max_attempts=8,
    )


@pytest.fixture
def razorpay_session():
    """Mock ``requests.Session``; set ``.get.return_value`` via ``payment_response``."""
    return Mock()


def verify_token(token):
    if not token.startswith("token-"):
        raise AuthenticationError("Invalid token", code="TOKEN_INVALID")
    return {"uid": token[len("token-"):]}


@pytest.fixture(autouse=True)
def reset_rate_limits():
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def client(fake_db, settings, razorpay_session):
    app.dependency_overrides[get_optional_firestore] = lambda: fake_db
    app.dependency_overrides[get_billing_settings] = lambda: settings
    app.dependency_overrides[get_identity_verifier] = lambda: verify_token
    app.dependency_overrides[get_payment_gateway_factory] = (
        lambda: lambda s: RazorpayClient(s, session=razorpay_session)
    )
    yield TestClient(app)
    app.dependency_overrides.clear()

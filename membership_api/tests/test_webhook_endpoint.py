"""
POST /api/billing/webhook - signed Razorpay payment.captured deliveries.
"""
import json

import pytest

from membership_api.config import BillingSettings, get_billing_settings
from membership_api.dependencies import get_optional_firestore
from membership_api.main import app

from payloads import (
    make_event,
    make_payment,
    signed,
    subscription_path,
    transaction_path,
    verification_path,
)

WEBHOOK_URL = "/api/billing/webhook"


def _deliver(client, body, secret=None):
    raw, headers = signed(body) if secret is None else signed(body, secret)
    return client.post(WEBHOOK_URL, content=raw, headers=headers)


class TestWebhookProcessing:
    def test_captured_payment_activates_membership(self, client, fake_db, razorpay_session):
        resp = _deliver(client, make_event(make_payment(payment_id="pay_X")))

        assert resp.status_code == 200
        assert resp.json() == {"ok": True}
        assert fake_db.doc(verification_path("pay_X"))["source"] == "webhook"
        assert fake_db.doc(subscription_path("user_alice"))["status"] == "active"
        assert fake_db.doc(transaction_path("user_alice", "pay_X"))["amountPaisa"] == 10000
        assert fake_db.doc("users/user_alice")["isPremium"] is True
        # The signed event is authoritative; no provider lookup.
        razorpay_session.get.assert_not_called()

    def test_yearly_plan_from_notes(self, client, fake_db):
        resp = _deliver(client, make_event(make_payment(payment_id="pay_Y", plan_type="yearly")))

        assert resp.json() == {"ok": True}
        assert fake_db.doc(subscription_path("user_alice"))["planName"] == "premium_yearly"

    def test_redelivery_is_a_no_op(self, client, fake_db):
        event = make_event(make_payment(payment_id="pay_X"))
        _deliver(client, event)
        subscription = fake_db.doc(subscription_path("user_alice"))
        commits = fake_db.commits

        resp = _deliver(client, event)

        assert resp.status_code == 200
        assert resp.json() == {"ok": True}
        assert fake_db.commits == commits
        assert fake_db.doc(subscription_path("user_alice")) == subscription

    def test_payment_verified_by_client_is_not_reapplied(self, client, fake_db):
        fake_db.put(verification_path("pay_X"), {"uid": "user_alice", "planType": "monthly", "source": "api"})

        resp = _deliver(client, make_event(make_payment(payment_id="pay_X")))

        assert resp.json() == {"ok": True}
        assert fake_db.doc(subscription_path("user_alice")) is None
        assert fake_db.doc(verification_path("pay_X"))["source"] == "api"


class TestWebhookSignature:
    def test_forged_signature_is_rejected(self, client, fake_db):
        resp = _deliver(client, make_event(make_payment()), secret="not-the-secret")

        assert resp.status_code == 401
        assert resp.json() == {"ok": False, "error": "Invalid webhook signature."}
        assert fake_db.commits == 0

    def test_tampered_body_is_rejected(self, client, fake_db):
        raw, headers = signed(make_event(make_payment()))
        tampered = raw.replace(b'"amount": 10000', b'"amount": 50000')
        assert tampered != raw

        resp = client.post(WEBHOOK_URL, content=tampered, headers=headers)

        assert resp.status_code == 401
        assert fake_db.docs == {}

    def test_signature_is_over_raw_bytes(self, client, fake_db):
        # Same JSON, different whitespace: the signature no longer matches.
        raw, headers = signed(make_event(make_payment()))
        reformatted = json.dumps(json.loads(raw), indent=2).encode("utf-8")

        resp = client.post(WEBHOOK_URL, content=reformatted, headers=headers)

        assert resp.status_code == 401

    def test_missing_signature(self, client, fake_db):
        raw, _ = signed(make_event(make_payment()))

        resp = client.post(WEBHOOK_URL, content=raw, headers={"Content-Type": "application/json"})

        assert resp.status_code == 401
        assert resp.json()["error"] == "Missing webhook signature."
        assert fake_db.commits == 0

    def test_secret_not_configured(self, client, fake_db):
        app.dependency_overrides[get_billing_settings] = lambda: BillingSettings(
            razorpay_key_id="rzp_test_key",
            razorpay_key_secret="rzp_test_secret",
        )

        resp = _deliver(client, make_event(make_payment()))

        assert resp.status_code == 500
        assert resp.json() == {"ok": False, "error": "Webhook secret missing."}
        assert fake_db.commits == 0

    def test_backend_not_configured(self, client):
        app.dependency_overrides[get_optional_firestore] = lambda: None

        resp = _deliver(client, make_event(make_payment()))

        assert resp.status_code == 500
        assert resp.json()["ok"] is False


class TestWebhookInfrastructureFailure:
    def test_exhausted_transaction_retries(self, client, fake_db, monkeypatch):
        def _exhausted(callback):
            raise ValueError("Failed to commit transaction in 5 attempts.")

        monkeypatch.setattr(fake_db, "run_transaction", _exhausted)

        resp = _deliver(client, make_event(make_payment()))

        assert resp.status_code == 500
        assert resp.json() == {"ok": False, "error": "Webhook processing failed."}
        assert fake_db.docs == {}


class TestWebhookIgnored:
    def test_other_event_types(self, client, fake_db):
        resp = _deliver(client, make_event(make_payment(), event="payment.failed"))

        assert resp.status_code == 200
        assert resp.json() == {"ok": True, "ignored": True}
        assert fake_db.docs == {}

    @pytest.mark.parametrize("overrides", [
        {"amount": 5000},
        {"currency": "USD"},
        {"status": "authorized"},
        {"captured": False},
    ])
    def test_invalid_capture(self, client, fake_db, overrides):
        resp = _deliver(client, make_event(make_payment(**overrides)))

        assert resp.json() == {"ok": True, "ignored": True}
        assert fake_db.docs == {}

    @pytest.mark.parametrize("overrides", [
        {"notes": {}},
        {"notes": {"plan_type": "monthly"}},
        {"notes": {"user_uid": "user_alice", "plan_type": "lifetime"}},
        {"id": ""},
        {"notes": {"user_uid": "a/b", "plan_type": "monthly"}},
        {"notes": {"user_uid": "..", "plan_type": "monthly"}},
        {"notes": {"user_uid": "__admin__", "plan_type": "monthly"}},
        {"id": "pay_a/b"},
    ])
    def test_unresolvable_payment(self, client, fake_db, overrides):
        resp = _deliver(client, make_event(make_payment(**overrides)))

        assert resp.json() == {"ok": True, "ignored": True}
        assert fake_db.docs == {}

    def test_missing_payment_entity(self, client, fake_db):
        resp = _deliver(client, {"event": "payment.captured", "payload": {}})

        assert resp.json() == {"ok": True, "ignored": True}
        assert fake_db.docs == {}

    @pytest.mark.parametrize("raw", [b"not json", b"[1, 2, 3]", b""])
    def test_malformed_body_with_valid_signature(self, client, fake_db, raw):
        raw, headers = signed(raw)

        resp = client.post(WEBHOOK_URL, content=raw, headers=headers)

        assert resp.status_code == 200
        assert resp.json() == {"ok": True, "ignored": True}
        assert fake_db.docs == {}

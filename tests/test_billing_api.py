import json
import os
import uuid
from types import SimpleNamespace

import pytest
import stripe
from fastapi.testclient import TestClient

os.environ.setdefault("PERSISTENCE_BACKEND", "memory")

from flowly.billing import BillingConfig, BillingError, BillingService  # noqa: E402
from flowly.main import app  # noqa: E402
from flowly.repositories import get_repository  # noqa: E402
from flowly.routers.billing import get_billing_service  # noqa: E402

client = TestClient(app)

PERIOD_END = 1735689600  # 2025-01-01T00:00:00Z


class FakeStripe:
    """Records calls made through the subset of the stripe module used by billing."""

    def __init__(self):
        self.calls = []
        self.event = None
        self.subscription = {
            "id": "sub_123",
            "status": "active",
            "current_period_end": PERIOD_END,
            "items": {"data": [{"price": {"recurring": {"interval": "month"}}}]},
        }
        self.checkout = SimpleNamespace(Session=SimpleNamespace(create=self._checkout))
        self.billing_portal = SimpleNamespace(Session=SimpleNamespace(create=self._portal))
        self.Webhook = SimpleNamespace(construct_event=self._construct_event)
        self.Subscription = SimpleNamespace(retrieve=self._retrieve)

    def _checkout(self, **kwargs):
        self.calls.append(("checkout", kwargs))
        return {"id": "cs_1", "url": "https://checkout.stripe.test/cs_1"}

    def _portal(self, **kwargs):
        self.calls.append(("portal", kwargs))
        return {"id": "bps_1", "url": "https://billing.stripe.test/bps_1"}

    def _construct_event(self, payload, signature, secret):
        if signature != "good":
            raise stripe.SignatureVerificationError("bad signature", signature)
        return json.loads(payload)

    def _retrieve(self, subscription_id, **kwargs):
        self.calls.append(("retrieve", subscription_id))
        return dict(self.subscription, id=subscription_id)


CONFIG = BillingConfig(
    secret_key="sk_test",
    webhook_secret="whsec_test",
    pro_price_id="price_live_pro",
    basic_price_id=None,
    site_url="https://app.example.com",
)


@pytest.fixture
def gateway():
    fake = FakeStripe()
    app.dependency_overrides[get_billing_service] = lambda: BillingService(CONFIG, gateway=fake)
    yield fake
    app.dependency_overrides.pop(get_billing_service, None)


def new_user():
    return {"X-User-Id": f"user-{uuid.uuid4()}"}


def send_event(event, signature="good"):
    return client.post(
        "/api/v1/billing/webhook",
        content=json.dumps(event),
        headers={"Stripe-Signature": signature, "Content-Type": "application/json"},
    )


def checkout_completed(user_id):
    return {
        "type": "checkout.session.completed",
        "data": {"object": {
            "id": "cs_1",
            "metadata": {"userId": user_id},
            "customer": "cus_1",
            "subscription": f"sub_{user_id}",
        }},
    }


class TestPriceResolution:
    def test_aliases_and_raw_ids(self):
        service = BillingService(CONFIG, gateway=FakeStripe())
        assert service.resolve_price("price_pro_monthly") == "price_live_pro"
        assert service.resolve_price("price_raw_42") == "price_raw_42"
        with pytest.raises(BillingError):
            service.resolve_price("price_basic_monthly")


class TestCheckout:
    def test_returns_session_url(self, gateway):
        user = new_user()
        res = client.post("/api/v1/billing/checkout", json={"plan": "price_pro_monthly"}, headers=user)
        assert res.status_code == 200
        assert res.json() == {"url": "https://checkout.stripe.test/cs_1"}

        kind, kwargs = gateway.calls[-1]
        assert kind == "checkout"
        assert kwargs["mode"] == "subscription"
        assert kwargs["line_items"] == [{"price": "price_live_pro", "quantity": 1}]
        assert kwargs["metadata"] == {"userId": user["X-User-Id"]}
        assert kwargs["success_url"] == "https://app.example.com/dashboard?success=true"

    def test_unconfigured_price_is_bad_request(self, gateway):
        res = client.post("/api/v1/billing/checkout", json={"plan": "price_basic_monthly"}, headers=new_user())
        assert res.status_code == 400

    def test_billing_not_configured(self, monkeypatch):
        monkeypatch.delenv("STRIPE_SECRET_KEY", raising=False)
        res = client.post("/api/v1/billing/checkout", json={"plan": "price_pro_monthly"}, headers=new_user())
        assert res.status_code == 503


class TestPortal:
    def test_requires_subscription(self, gateway):
        res = client.post("/api/v1/billing/portal", headers=new_user())
        assert res.status_code == 400
        assert res.json()["detail"] == "No subscription found"

    def test_uses_stored_customer(self, gateway):
        user = new_user()
        assert send_event(checkout_completed(user["X-User-Id"])).status_code == 200

        res = client.post("/api/v1/billing/portal", headers=user)
        assert res.status_code == 200
        assert res.json()["url"] == "https://billing.stripe.test/bps_1"
        kind, kwargs = gateway.calls[-1]
        assert kind == "portal"
        assert kwargs["customer"] == "cus_1"


class TestWebhook:
    def test_bad_signature_is_rejected(self, gateway):
        res = send_event(checkout_completed("someone"), signature="forged")
        assert res.status_code == 400

    def test_missing_signature_is_rejected(self, gateway):
        res = client.post("/api/v1/billing/webhook", content=b"{}")
        assert res.status_code == 400

    def test_checkout_completed_upgrades_user(self, gateway):
        user = new_user()
        res = send_event(checkout_completed(user["X-User-Id"]))
        assert res.status_code == 200
        assert res.json() == {"received": True}
        assert ("retrieve", f"sub_{user['X-User-Id']}") in gateway.calls

        profile = client.get("/api/v1/profile", headers=user).json()
        assert profile["role"] == "pro_user"
        assert profile["subscription"]["stripe_customer_id"] == "cus_1"
        assert profile["subscription"]["status"] == "active"
        assert profile["subscription"]["plan_type"] == "month"
        assert profile["subscription"]["current_period_end"].startswith("2025-01-01")

    def test_subscription_deleted_downgrades_user(self, gateway):
        user = new_user()
        send_event(checkout_completed(user["X-User-Id"]))
        res = send_event({
            "type": "customer.subscription.deleted",
            "data": {"object": {"id": f"sub_{user['X-User-Id']}", "status": "canceled"}},
        })
        assert res.status_code == 200

        profile = client.get("/api/v1/profile", headers=user).json()
        assert profile["role"] == "free_user"
        assert profile["subscription"]["status"] == "canceled"

    def test_subscription_past_due_downgrades_user(self, gateway):
        user = new_user()
        send_event(checkout_completed(user["X-User-Id"]))
        send_event({
            "type": "customer.subscription.updated",
            "data": {"object": {"id": f"sub_{user['X-User-Id']}", "status": "past_due"}},
        })
        assert get_repository().get_profile(user["X-User-Id"])["role"] == "free_user"

    def test_unrelated_events_are_acknowledged(self, gateway):
        res = send_event({"type": "invoice.paid", "data": {"object": {}}})
        assert res.status_code == 200

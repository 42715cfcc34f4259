"""
Test billing API endpoints.

Webhooks are signed with the test secret; checkout uses the fake provider
injected by the app fixture, so no request ever reaches Polar.
"""
import asyncio

import pytest
from fastapi.testclient import TestClient

from relay.core.metrics import checkout_requests_total, webhook_events_total, webhook_rejections_total
from relay.main import create_app
from relay.tests.mocks import (
    FakeCheckoutProvider,
    byte_signed_headers,
    event_body,
    order_data,
    signed_headers,
    subscription_data,
)


def _post_webhook(client, body, headers=None):
    headers = signed_headers(body) if headers is None else headers
    return client.post("/api/webhooks/polar", content=body, headers=headers)


def _purchases(client, customer_id="c1"):
    response = client.get(f"/purchases/{customer_id}")
    assert response.status_code == 200
    return response.json()


# --- webhooks --------------------------------------------------------------


def test_subscription_active_webhook_grants_plan(client):
    body = event_body("subscription.active", subscription_data())

    response = _post_webhook(client, body)

    assert response.status_code == 200
    assert response.json() == {"received": True, "event_type": "subscription.active", "outcome": "recorded"}
    assert _purchases(client) == {"customerId": "c1", "purchasedPlans": ["pro"]}


def test_redelivered_webhook_is_idempotent(client, app):
    body = event_body("subscription.active", subscription_data())

    first = _post_webhook(client, body)
    second = _post_webhook(client, body)

    assert first.json()["outcome"] == "recorded"
    assert second.status_code == 200
    assert second.json()["outcome"] == "duplicate"
    assert len(app.state.billing.ledger.history("c1")) == 1


def test_order_paid_webhook_grants_plan(client):
    _post_webhook(client, event_body("order.paid", order_data()))
    assert _purchases(client)["purchasedPlans"] == ["master"]


def test_unknown_product_is_acknowledged_without_recording(client):
    body = event_body("subscription.active", subscription_data(product_id="prod_unknown"))

    response = _post_webhook(client, body)

    assert response.status_code == 200
    assert response.json()["outcome"] == "unknown_product"
    assert _purchases(client)["purchasedPlans"] == []


def test_unrecognized_event_is_acknowledged(client):
    response = _post_webhook(client, event_body("customer.updated", {"id": "cus_1"}))

    assert response.status_code == 200
    assert response.json()["outcome"] == "unhandled"
    assert webhook_events_total.value({"event_type": "customer.updated", "outcome": "unhandled"}) == 1


def test_revoked_webhook_removes_plan(client):
    _post_webhook(client, event_body("subscription.active", subscription_data()))
    revoke = event_body("subscription.revoked", subscription_data(status="revoked"))
    response = _post_webhook(client, revoke, headers=signed_headers(revoke, webhook_id="msg_test_2"))

    assert response.json()["outcome"] == "revoked"
    assert _purchases(client)["purchasedPlans"] == []


def test_tampered_body_is_rejected_and_ledger_untouched(client):
    body = event_body("subscription.active", subscription_data())
    headers = signed_headers(body)
    tampered = body.replace(b'"c1"', b'"c2"')

    response = _post_webhook(client, tampered, headers=headers)

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "invalid_signature"
    assert _purchases(client, "c1")["purchasedPlans"] == []
    assert _purchases(client, "c2")["purchasedPlans"] == []
    assert webhook_rejections_total.value({"reason": "invalid_signature"}) == 1


def test_missing_signature_headers_are_rejected(client):
    body = event_body("subscription.active", subscription_data())
    response = _post_webhook(client, body, headers={"content-type": "application/json"})

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "invalid_signature"


def test_stale_webhook_is_rejected(client):
    body = event_body("subscription.active", subscription_data())
    response = _post_webhook(client, body, headers=signed_headers(body, timestamp=1_000_000_000))

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "stale_event"


def test_verified_malformed_body_returns_400(client):
    body = b'{"hello": "world"}'
    response = _post_webhook(client, body)

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "malformed_event"


def test_missing_webhook_secret_returns_500(test_settings, fake_provider):
    cfg = test_settings.model_copy(update={"POLAR_WEBHOOK_SECRET": None})
    client = TestClient(create_app(cfg, provider_factory=lambda: fake_provider))
    body = event_body("subscription.active", subscription_data())

    response = _post_webhook(client, body)

    assert response.status_code == 500
    assert response.json()["error"]["code"] == "server_misconfigured"


# --- checkout --------------------------------------------------------------


def test_checkout_returns_provider_url(client, fake_provider):
    response = client.post("/checkout", json={"planId": "pro"}, headers={"X-Customer-Id": "c1"})

    assert response.status_code == 200
    assert response.json() == {"url": fake_provider.url}
    [call] = fake_provider.calls
    assert call == {
        "product_id": "prod_pro",
        "external_customer_id": "c1",
        "success_url": "http://localhost:5173/payment?status=success&plan=pro",
        "return_url": "http://localhost:5173",
    }
    assert checkout_requests_total.value({"outcome": "created"}) == 1


def test_checkout_accepts_snake_case_plan_id(client, fake_provider):
    response = client.post("/checkout", json={"plan_id": "master"})

    assert response.status_code == 200
    assert fake_provider.calls[0]["product_id"] == "prod_master"


def test_checkout_defaults_to_poc_customer(client, fake_provider):
    client.post("/checkout", json={"planId": "pro"})
    assert fake_provider.calls[0]["external_customer_id"] == "poc_user_001"


@pytest.mark.parametrize("plan_id", ["enterprise", "", "PRO"])
def test_checkout_rejects_unknown_plan(client, fake_provider, plan_id):
    response = client.post("/checkout", json={"planId": plan_id})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "validation_error"
    assert fake_provider.calls == []


def test_checkout_without_plan_returns_400(client):
    response = client.post("/checkout", json={})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "validation_error"


def test_checkout_for_purchased_plan_is_conflict_without_provider_call(client, fake_provider):
    _post_webhook(client, event_body("subscription.active", subscription_data()))

    response = client.post("/checkout", json={"planId": "pro"}, headers={"X-Customer-Id": "c1"})

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "already_purchased"
    assert fake_provider.calls == []


def test_purchased_plan_does_not_block_other_plan(client, fake_provider):
    _post_webhook(client, event_body("subscription.active", subscription_data()))

    response = client.post("/checkout", json={"planId": "master"}, headers={"X-Customer-Id": "c1"})

    assert response.status_code == 200
    assert len(fake_provider.calls) == 1


def test_checkout_allowed_again_after_revocation(client, fake_provider):
    _post_webhook(client, event_body("subscription.active", subscription_data()))
    revoke = event_body("subscription.revoked", subscription_data())
    _post_webhook(client, revoke, headers=signed_headers(revoke, webhook_id="msg_test_2"))

    response = client.post("/checkout", json={"planId": "pro"}, headers={"X-Customer-Id": "c1"})
    assert response.status_code == 200


def test_checkout_without_token_returns_503(test_settings, fake_provider):
    cfg = test_settings.model_copy(update={"POLAR_ACCESS_TOKEN": None})
    client = TestClient(create_app(cfg, provider_factory=lambda: fake_provider))

    response = client.post("/checkout", json={"planId": "pro"})

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "billing_disabled"
    assert fake_provider.calls == []


def test_checkout_with_unconfigured_product_returns_500(test_settings, fake_provider):
    cfg = test_settings.model_copy(update={"POLAR_MASTER_PRODUCT_ID": None})
    client = TestClient(create_app(cfg, provider_factory=lambda: fake_provider))

    response = client.post("/checkout", json={"planId": "master"})

    assert response.status_code == 500
    assert response.json()["error"]["code"] == "plan_not_configured"


def test_checkout_provider_failure_returns_502(test_settings):
    failing = FakeCheckoutProvider(fail=True)
    client = TestClient(create_app(test_settings, provider_factory=lambda: failing))

    response = client.post("/checkout", json={"planId": "pro"})

    assert response.status_code == 502
    assert response.json()["error"]["code"] == "provider_error"
    assert checkout_requests_total.value({"outcome": "provider_error"}) == 1


# --- purchases -------------------------------------------------------------


def test_purchases_for_unknown_customer_is_empty(client):
    assert _purchases(client, "nobody") == {"customerId": "nobody", "purchasedPlans": []}


def test_purchases_are_sorted(client):
    _post_webhook(client, event_body("subscription.active", subscription_data()))
    order = event_body("order.paid", order_data())
    _post_webhook(client, order, headers=signed_headers(order, webhook_id="msg_test_2"))

    assert _purchases(client)["purchasedPlans"] == ["master", "pro"]


def test_apps_do_not_share_ledgers(test_settings, fake_provider, client):
    _post_webhook(client, event_body("subscription.active", subscription_data()))

    other = TestClient(create_app(test_settings, provider_factory=lambda: fake_provider))
    assert _purchases(other)["purchasedPlans"] == []


def test_activation_retry_after_revoke_keeps_access_revoked(client):
    activation = event_body("subscription.active", subscription_data())
    activation_headers = signed_headers(activation, webhook_id="msg_a")
    _post_webhook(client, activation, headers=activation_headers)
    revoke = event_body("subscription.revoked", subscription_data(status="revoked"))
    _post_webhook(client, revoke, headers=signed_headers(revoke, webhook_id="msg_b"))

    retry = _post_webhook(client, activation, headers=signed_headers(activation, webhook_id="msg_a"))

    assert retry.status_code == 200
    assert retry.json()["outcome"] == "duplicate"
    assert _purchases(client)["purchasedPlans"] == []


def test_new_subscription_after_revoke_restores_access(client):
    _post_webhook(client, event_body("subscription.active", subscription_data()))
    revoke = event_body("subscription.revoked", subscription_data())
    _post_webhook(client, revoke, headers=signed_headers(revoke, webhook_id="msg_test_2"))

    renewal = event_body("subscription.active", subscription_data(subscription_id="sub_2"))
    response = _post_webhook(client, renewal, headers=signed_headers(renewal, webhook_id="msg_test_3"))

    assert response.json()["outcome"] == "recorded"
    assert _purchases(client)["purchasedPlans"] == ["pro"]


def test_authentic_non_utf8_body_returns_400(client):
    body = b'{"type":"subscription.active","data":{"id":"\xff"}}'

    response = _post_webhook(client, body, headers=byte_signed_headers(body))

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "malformed_event"
    assert webhook_rejections_total.value({"reason": "malformed_event"}) == 1
    assert webhook_rejections_total.value({"reason": "invalid_signature"}) == 0


def test_webhook_processing_runs_off_the_event_loop(app, client, monkeypatch):
    billing = app.state.billing
    original = billing.process_webhook
    seen = {}

    def spy(headers, body):
        try:
            asyncio.get_running_loop()
            seen["on_loop"] = True
        except RuntimeError:
            seen["on_loop"] = False
        return original(headers, body)

    monkeypatch.setattr(billing, "process_webhook", spy)
    _post_webhook(client, event_body("subscription.active", subscription_data()))

    assert seen == {"on_loop": False}

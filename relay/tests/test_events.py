import json

import pytest

from relay.features.billing.errors import MalformedEvent
from relay.features.billing.events import (
    EventKind,
    OrderData,
    SubscriptionData,
    parse_event,
)
from relay.tests.mocks import event_body, order_data, subscription_data


def test_every_recognized_kind_round_trips_from_type():
    for kind in EventKind:
        if kind is EventKind.UNRECOGNIZED:
            continue
        assert EventKind.from_type(kind.value) is kind


def test_unknown_type_maps_to_unrecognized():
    assert EventKind.from_type("customer.updated") is EventKind.UNRECOGNIZED
    assert EventKind.from_type("") is EventKind.UNRECOGNIZED


def test_subscription_payload_is_typed():
    event = parse_event(event_body("subscription.canceled", subscription_data()), webhook_id="msg_1")

    assert event.kind is EventKind.SUBSCRIPTION_CANCELED
    assert isinstance(event.data, SubscriptionData)
    assert event.data.cancel_at_period_end is False
    assert event.webhook_id == "msg_1"


def test_order_payload_is_typed():
    event = parse_event(event_body("order.paid", order_data()))

    assert isinstance(event.data, OrderData)
    assert event.data.billing_reason == "purchase"
    assert event.data.id == "o1"


def test_camel_case_fields_are_accepted():
    data = {
        "id": "sub_9",
        "customerId": "polar_cus_9",
        "productId": "prod_pro",
        "customer": {"id": "polar_cus_9", "externalId": "user_9"},
    }
    event = parse_event(event_body("subscription.active", data))

    assert event.data.customer_identity == "user_9"
    assert event.data.product_identity == "prod_pro"


def test_customer_identity_falls_back_to_provider_id():
    data = {"id": "sub_1", "customer_id": "polar_cus_1", "product_id": "prod_pro"}
    event = parse_event(event_body("subscription.active", data))
    assert event.data.customer_identity == "polar_cus_1"


def test_product_identity_falls_back_to_nested_product():
    data = {"id": "o1", "customer": {"external_id": "c1"}, "product": {"id": "prod_master"}}
    event = parse_event(event_body("order.paid", data))
    assert event.data.product_identity == "prod_master"


def test_unknown_fields_are_ignored():
    data = dict(subscription_data(), amount=1900, metadata={"k": "v"})
    event = parse_event(event_body("subscription.active", data))
    assert event.data.id == "sub_1"


@pytest.mark.parametrize(
    "body",
    [
        b"not json",
        b"[1, 2, 3]",
        json.dumps({"data": {}}).encode(),
        json.dumps({"type": "", "data": {}}).encode(),
        json.dumps({"type": "order.paid"}).encode(),
        json.dumps({"type": "order.paid", "data": "nope"}).encode(),
    ],
)
def test_malformed_bodies_raise(body):
    with pytest.raises(MalformedEvent):
        parse_event(body)


def test_recognized_kind_with_wrong_field_type_raises():
    with pytest.raises(MalformedEvent):
        parse_event(event_body("order.paid", {"id": "o1", "customer": "not-an-object"}))


def test_unrecognized_kind_skips_payload_validation():
    event = parse_event(event_body("benefit.created", {"customer": "anything"}))
    assert event.recognized is False
    assert event.data is None

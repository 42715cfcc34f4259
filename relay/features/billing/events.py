"""
Typed webhook events.

An event is a closed set of kinds plus an explicit UNRECOGNIZED kind. The
envelope is `{"type": str, "data": {...}}`; the data object is parsed into a
kind-specific model only for recognized kinds, so unknown event types never
fail on payload shape.
"""
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Type, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from relay.features.billing.errors import MalformedEvent


class EventKind(str, Enum):
    SUBSCRIPTION_CREATED = "subscription.created"
    SUBSCRIPTION_UPDATED = "subscription.updated"
    SUBSCRIPTION_ACTIVE = "subscription.active"
    SUBSCRIPTION_CANCELED = "subscription.canceled"
    SUBSCRIPTION_REVOKED = "subscription.revoked"
    CHECKOUT_CREATED = "checkout.created"
    CHECKOUT_UPDATED = "checkout.updated"
    ORDER_CREATED = "order.created"
    ORDER_PAID = "order.paid"
    UNRECOGNIZED = "unrecognized"

    @classmethod
    def from_type(cls, event_type: str) -> "EventKind":
        try:
            kind = cls(event_type)
        except ValueError:
            return cls.UNRECOGNIZED
        return kind


def _alias(snake: str, camel: str) -> Any:
    return Field(None, validation_alias=AliasChoices(snake, camel))


class CustomerRef(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    external_id: Optional[str] = _alias("external_id", "externalId")


class ProductRef(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    name: Optional[str] = None


class EventData(BaseModel):
    """Fields shared by subscription, order and checkout payloads."""
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    status: Optional[str] = None
    customer_id: Optional[str] = _alias("customer_id", "customerId")
    product_id: Optional[str] = _alias("product_id", "productId")
    customer: Optional[CustomerRef] = None
    product: Optional[ProductRef] = None

    @property
    def customer_identity(self) -> Optional[str]:
        """External id we assigned at checkout, else the provider's customer id."""
        if self.customer and self.customer.external_id:
            return self.customer.external_id
        if self.customer_id:
            return self.customer_id
        if self.customer and self.customer.id:
            return self.customer.id
        return None

    @property
    def product_identity(self) -> Optional[str]:
        if self.product_id:
            return self.product_id
        if self.product and self.product.id:
            return self.product.id
        return None


class SubscriptionData(EventData):
    cancel_at_period_end: Optional[bool] = _alias("cancel_at_period_end", "cancelAtPeriodEnd")
    ends_at: Optional[str] = _alias("ends_at", "endsAt")


class OrderData(EventData):
    billing_reason: Optional[str] = _alias("billing_reason", "billingReason")
    subscription_id: Optional[str] = _alias("subscription_id", "subscriptionId")


class CheckoutData(EventData):
    url: Optional[str] = None


PAYLOAD_MODELS: Dict[EventKind, Type[EventData]] = {
    EventKind.SUBSCRIPTION_CREATED: SubscriptionData,
    EventKind.SUBSCRIPTION_UPDATED: SubscriptionData,
    EventKind.SUBSCRIPTION_ACTIVE: SubscriptionData,
    EventKind.SUBSCRIPTION_CANCELED: SubscriptionData,
    EventKind.SUBSCRIPTION_REVOKED: SubscriptionData,
    EventKind.CHECKOUT_CREATED: CheckoutData,
    EventKind.CHECKOUT_UPDATED: CheckoutData,
    EventKind.ORDER_CREATED: OrderData,
    EventKind.ORDER_PAID: OrderData,
}


class WebhookEnvelope(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = Field(..., min_length=1)
    data: Dict[str, Any]


@dataclass(frozen=True)
class WebhookEvent:
    """An authenticated, parsed webhook event."""
    kind: EventKind
    type: str
    webhook_id: str
    data: Optional[EventData]
    raw_data: Dict[str, Any]

    @property
    def recognized(self) -> bool:
        return self.kind is not EventKind.UNRECOGNIZED


def parse_event(body: Union[bytes, str], webhook_id: str = "") -> WebhookEvent:
    """
    Parse verified body bytes into a WebhookEvent.

    Raises:
        MalformedEvent: body is not JSON, lacks type/data, or a recognized
            kind carries a payload of the wrong shape.
    """
    try:
        decoded = json.loads(body)
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedEvent(f"Webhook body is not valid JSON: {e}")

    if not isinstance(decoded, dict):
        raise MalformedEvent("Webhook body must be a JSON object")

    try:
        envelope = WebhookEnvelope.model_validate(decoded)
    except PydanticValidationError as e:
        raise MalformedEvent(f"Webhook envelope invalid: {e.errors()[0].get('msg', 'invalid')}")

    kind = EventKind.from_type(envelope.type)
    data: Optional[EventData] = None
    if kind is not EventKind.UNRECOGNIZED:
        try:
            data = PAYLOAD_MODELS[kind].model_validate(envelope.data)
        except PydanticValidationError as e:
            raise MalformedEvent(f"Payload for {envelope.type} invalid: {e.errors()[0].get('msg', 'invalid')}")

    return WebhookEvent(
        kind=kind,
        type=envelope.type,
        webhook_id=webhook_id,
        data=data,
        raw_data=envelope.data,
    )

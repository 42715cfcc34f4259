"""
Event router: dispatches authenticated webhook events to ledger handlers.

Unrecognized event types are logged and acknowledged so the provider never
retries an event this service does not act on. Ledger-level no-ops (unknown
product, duplicate activation, nothing to cancel) are outcomes, not errors.
"""
import logging
from enum import Enum
from typing import Callable, Dict

from relay.features.billing.events import EventKind, WebhookEvent
from relay.features.billing.ledger import PurchaseLedger

logger = logging.getLogger("relay")


class DispatchOutcome(str, Enum):
    RECORDED = "recorded"
    DUPLICATE = "duplicate"
    CANCELED = "canceled"
    REVOKED = "revoked"
    NOT_ACTIVE = "not_active"
    UNKNOWN_PRODUCT = "unknown_product"
    MISSING_FIELDS = "missing_fields"
    INFORMATIONAL = "informational"
    UNHANDLED = "unhandled"


Handler = Callable[[WebhookEvent], DispatchOutcome]


class EventRouter:
    """Maps each EventKind to a handler; every kind must be covered."""

    def __init__(self, ledger: PurchaseLedger):
        self._ledger = ledger
        self._handlers: Dict[EventKind, Handler] = {
            EventKind.SUBSCRIPTION_ACTIVE: self._on_activation,
            EventKind.ORDER_PAID: self._on_activation,
            EventKind.SUBSCRIPTION_CANCELED: self._on_cancellation,
            EventKind.SUBSCRIPTION_REVOKED: self._on_revocation,
            EventKind.SUBSCRIPTION_CREATED: self._on_informational,
            EventKind.SUBSCRIPTION_UPDATED: self._on_informational,
            EventKind.CHECKOUT_CREATED: self._on_informational,
            EventKind.CHECKOUT_UPDATED: self._on_informational,
            EventKind.ORDER_CREATED: self._on_informational,
            EventKind.UNRECOGNIZED: self._on_unrecognized,
        }
        missing = set(EventKind) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for event kinds: {sorted(k.value for k in missing)}")

    def dispatch(self, event: WebhookEvent) -> DispatchOutcome:
        outcome = self._handlers[event.kind](event)
        logger.info(
            "router.dispatched",
            extra={"event_type": event.type, "webhook_id": event.webhook_id, "outcome": outcome.value},
        )
        return outcome

    def _on_activation(self, event: WebhookEvent) -> DispatchOutcome:
        data = event.data
        customer_id = data.customer_identity
        product_id = data.product_identity
        order_id = data.id
        if not (customer_id and product_id and order_id):
            logger.warning(
                "router.missing_fields",
                extra={"event_type": event.type, "webhook_id": event.webhook_id},
            )
            return DispatchOutcome.MISSING_FIELDS

        if self._ledger.plan_for_product(product_id) is None:
            logger.warning(
                "router.unknown_product",
                extra={"event_type": event.type, "product_id": product_id, "customer_id": customer_id},
            )
            return DispatchOutcome.UNKNOWN_PRODUCT

        record = self._ledger.record_purchase(customer_id, product_id, order_id)
        return DispatchOutcome.RECORDED if record is not None else DispatchOutcome.DUPLICATE

    def _resolve_target(self, event: WebhookEvent):
        data = event.data
        customer_id = data.customer_identity
        product_id = data.product_identity
        if not (customer_id and product_id):
            logger.warning(
                "router.missing_fields",
                extra={"event_type": event.type, "webhook_id": event.webhook_id},
            )
            return None, DispatchOutcome.MISSING_FIELDS
        plan_id = self._ledger.plan_for_product(product_id)
        if plan_id is None:
            logger.warning(
                "router.unknown_product",
                extra={"event_type": event.type, "product_id": product_id, "customer_id": customer_id},
            )
            return None, DispatchOutcome.UNKNOWN_PRODUCT
        return (customer_id, plan_id), None

    def _on_cancellation(self, event: WebhookEvent) -> DispatchOutcome:
        target, failure = self._resolve_target(event)
        if target is None:
            return failure
        customer_id, plan_id = target
        if self._ledger.cancel_purchase(customer_id, plan_id):
            return DispatchOutcome.CANCELED
        return DispatchOutcome.NOT_ACTIVE

    def _on_revocation(self, event: WebhookEvent) -> DispatchOutcome:
        target, failure = self._resolve_target(event)
        if target is None:
            return failure
        customer_id, plan_id = target
        if self._ledger.revoke_purchase(customer_id, plan_id):
            return DispatchOutcome.REVOKED
        return DispatchOutcome.NOT_ACTIVE

    def _on_informational(self, event: WebhookEvent) -> DispatchOutcome:
        data = event.data
        logger.info(
            "router.informational",
            extra={
                "event_type": event.type,
                "webhook_id": event.webhook_id,
                "order_id": data.id,
                "status": data.status,
            },
        )
        return DispatchOutcome.INFORMATIONAL

    def _on_unrecognized(self, event: WebhookEvent) -> DispatchOutcome:
        logger.info(
            "router.unhandled",
            extra={"event_type": event.type, "webhook_id": event.webhook_id},
        )
        return DispatchOutcome.UNHANDLED

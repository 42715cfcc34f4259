"""
Billing service orchestrator.

Coordinates:
- Webhook processing (authenticate -> route -> ledger)
- Checkout gating (plan validation -> duplicate check -> provider)
- Purchased-plan queries

All Polar HTTP code is in polar_provider.py. One BillingService is built per
app and injected into the API layer; nothing here reaches for module globals.
"""
from dataclasses import dataclass
from typing import Callable, List, Mapping, Optional

from relay.core.config import Settings
from relay.core.errors import ValidationError
from relay.core.logging import log_event
from relay.core.metrics import checkout_requests_total, webhook_events_total, webhook_rejections_total
from relay.features.billing.authenticator import EventAuthenticator
from relay.features.billing.errors import (
    AlreadyPurchasedError,
    BillingDisabledError,
    PlanNotConfiguredError,
    WebhookError,
)
from relay.features.billing.ledger import PurchaseLedger
from relay.features.billing.plans import PLAN_IDS, is_valid_plan
from relay.features.billing.polar_provider import PolarProvider
from relay.features.billing.provider import CheckoutProvider
from relay.features.billing.resolver import ProductPlanResolver
from relay.features.billing.router import DispatchOutcome, EventRouter


@dataclass(frozen=True)
class WebhookResult:
    """Result of processing one webhook delivery."""
    webhook_id: str
    event_type: str
    outcome: DispatchOutcome


class BillingService:
    def __init__(
        self,
        settings_obj: Settings,
        provider_factory: Optional[Callable[[], CheckoutProvider]] = None,
    ):
        self.settings = settings_obj
        self.resolver = ProductPlanResolver()
        self.resolver.initialize(settings_obj)
        self.ledger = PurchaseLedger(self.resolver)
        self.router = EventRouter(self.ledger)
        self.authenticator = EventAuthenticator(
            settings_obj.POLAR_WEBHOOK_SECRET,
            tolerance_seconds=settings_obj.WEBHOOK_TOLERANCE_SECONDS,
        )
        self._provider_factory = provider_factory or self._default_provider

    def _default_provider(self) -> CheckoutProvider:
        return PolarProvider(
            access_token=self.settings.POLAR_ACCESS_TOKEN,
            server=self.settings.POLAR_SERVER,
            timeout_seconds=self.settings.POLAR_API_TIMEOUT_SECONDS,
        )

    def billing_enabled(self) -> bool:
        """Check if checkout is possible (Polar token configured)."""
        return bool(self.settings.POLAR_ACCESS_TOKEN)

    def webhooks_enabled(self) -> bool:
        return self.authenticator.configured

    def process_webhook(self, headers: Mapping[str, str], body: bytes) -> WebhookResult:
        """
        Authenticate and dispatch one webhook delivery.

        1. Verify signature and freshness over the raw body
        2. Parse into a typed event
        3. Route to the ledger

        Raises:
            WebhookError subclasses for authentication, parse or
            configuration failures. Ledger no-ops never raise.
        """
        try:
            event = self.authenticator.verify(body, headers)
        except WebhookError as e:
            webhook_rejections_total.inc(labels={"reason": e.code})
            log_event("warning", "webhook.rejected", error_code=e.code, extra={"reason": e.message})
            raise

        log_event("info", "webhook.received", event_type=event.type)
        outcome = self.router.dispatch(event)
        webhook_events_total.inc(labels={"event_type": event.type, "outcome": outcome.value})
        return WebhookResult(webhook_id=event.webhook_id, event_type=event.type, outcome=outcome)

    def start_checkout(self, customer_id: str, plan_id: str) -> str:
        """
        Start a checkout session for a plan.

        Args:
            customer_id: Customer identity (sent to Polar as external id)
            plan_id: Internal plan ID (pro, master)

        Returns:
            Checkout URL

        Raises:
            ValidationError: Unknown plan_id
            AlreadyPurchasedError: Customer already holds the plan
            BillingDisabledError: No Polar token configured
            PlanNotConfiguredError: Plan has no product id configured
            CheckoutProviderError: Polar call failed
        """
        if not is_valid_plan(plan_id):
            checkout_requests_total.inc(labels={"outcome": "invalid_plan"})
            raise ValidationError(f"Invalid plan selected. Choose one of: {', '.join(PLAN_IDS)}")

        if self.ledger.has_purchased_plan(customer_id, plan_id):
            checkout_requests_total.inc(labels={"outcome": "already_purchased"})
            log_event("info", "checkout.already_purchased", customer_id=customer_id, plan_id=plan_id)
            raise AlreadyPurchasedError(f"Plan '{plan_id}' has already been purchased")

        if not self.billing_enabled():
            checkout_requests_total.inc(labels={"outcome": "billing_disabled"})
            raise BillingDisabledError("Polar is not configured. Set POLAR_ACCESS_TOKEN.")

        product_id = self.resolver.product_for_plan(plan_id)
        if not product_id:
            checkout_requests_total.inc(labels={"outcome": "plan_not_configured"})
            raise PlanNotConfiguredError(f"Missing product ID for plan: {plan_id}")

        base_url = self.settings.FRONTEND_URL.rstrip("/")
        provider = self._provider_factory()
        try:
            url = provider.create_checkout_session(
                product_id=product_id,
                external_customer_id=customer_id,
                success_url=f"{base_url}/payment?status=success&plan={plan_id}",
                return_url=base_url,
            )
        except Exception:
            checkout_requests_total.inc(labels={"outcome": "provider_error"})
            raise

        checkout_requests_total.inc(labels={"outcome": "created"})
        log_event("info", "checkout.created", customer_id=customer_id, plan_id=plan_id)
        return url

    def get_purchased_plans(self, customer_id: str) -> List[str]:
        """Active plan ids for the customer, sorted for stable output."""
        return sorted(self.ledger.get_purchased_plan_ids(customer_id))

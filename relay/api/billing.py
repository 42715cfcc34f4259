"""
Billing API routes.

Minimal surface:
- POST /checkout: Create checkout session for a plan
- POST /api/webhooks/polar: Receive Polar webhooks
- GET  /purchases/{customer_id}: Plans the customer currently holds
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import AliasChoices, BaseModel, Field

from relay.features.billing.service import BillingService


router = APIRouter(tags=["billing"])


def get_billing_service(request: Request) -> BillingService:
    """The per-app BillingService built in create_app()."""
    return request.app.state.billing


class CheckoutRequest(BaseModel):
    """Request to create checkout session."""
    plan_id: str = Field(..., validation_alias=AliasChoices("planId", "plan_id"))


class CheckoutResponse(BaseModel):
    """Response with checkout URL."""
    url: str


class PurchasesResponse(BaseModel):
    customerId: str
    purchasedPlans: List[str]


class WebhookAck(BaseModel):
    received: bool
    event_type: str
    outcome: str


@router.post("/checkout", response_model=CheckoutResponse)
def create_checkout(
    request: CheckoutRequest,
    billing: BillingService = Depends(get_billing_service),
    x_customer_id: Optional[str] = Header(None),
):
    """
    Create Polar checkout session.

    The customer comes from X-Customer-Id, falling back to the POC customer
    (there is no authentication in front of this service).

    Returns:
        {"url": "https://sandbox.polar.sh/checkout/..."}

    Errors:
        400: Invalid plan
        409: Plan already purchased (no Polar call is made)
        503: Billing disabled (POLAR_ACCESS_TOKEN not set)
        502: Polar API error
    """
    customer_id = (x_customer_id or "").strip() or billing.settings.POC_CUSTOMER_ID
    url = billing.start_checkout(customer_id=customer_id, plan_id=request.plan_id)
    return {"url": url}


@router.post("/api/webhooks/polar", response_model=WebhookAck)
async def handle_webhook(request: Request, billing: BillingService = Depends(get_billing_service)):
    """
    Handle Polar webhook events.

    Verifies the Standard Webhooks signature over the raw body, then routes
    the event into the purchase ledger. Events this service does not act on
    are still acknowledged so Polar does not retry them.

    Errors:
        401: Invalid signature or stale timestamp
        400: Verified body is not a valid event
        500: POLAR_WEBHOOK_SECRET not configured
    """
    # Raw bytes: the signature covers exactly what was sent
    body = await request.body()
    # Ledger and resolver take thread locks; keep them off the event loop
    result = await run_in_threadpool(billing.process_webhook, request.headers, body)
    return {"received": True, "event_type": result.event_type, "outcome": result.outcome.value}


@router.get("/purchases/{customer_id}", response_model=PurchasesResponse)
def get_purchases(customer_id: str, billing: BillingService = Depends(get_billing_service)):
    """Plans with an active purchase for the customer (empty when unknown)."""
    return {"customerId": customer_id, "purchasedPlans": billing.get_purchased_plans(customer_id)}

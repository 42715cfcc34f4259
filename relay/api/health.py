"""
Health and diagnostics API.

Provides lightweight endpoints for operational monitoring without exposing secrets.
"""

import logging

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse

from relay.api.billing import get_billing_service
from relay.core.metrics import METRICS
from relay.features.billing.service import BillingService

logger = logging.getLogger("relay")

root_router = APIRouter(tags=["health"])


@root_router.get("/")
def status(billing: BillingService = Depends(get_billing_service)):
    """Service banner with configuration presence flags (never values)."""
    cfg = billing.settings
    return {
        "status": "ok",
        "message": "Polar Payments POC Backend",
        "env_check": {
            "has_polar_token": bool(cfg.POLAR_ACCESS_TOKEN),
            "has_webhook_secret": bool(cfg.POLAR_WEBHOOK_SECRET),
            "has_pro_product": bool(cfg.POLAR_PRO_PRODUCT_ID),
            "has_master_product": bool(cfg.POLAR_MASTER_PRODUCT_ID),
        },
    }


@root_router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz(billing: BillingService = Depends(get_billing_service)):
    """Readiness check: webhook secret present and product map built."""
    problems = []
    if not billing.webhooks_enabled():
        problems.append("webhook secret not configured")
    if not billing.resolver.initialized:
        problems.append("product resolver not initialized")

    if problems:
        detail = "; ".join(problems)
        logger.warning("readyz.failed", extra={"error_code": "not_ready"})
        return JSONResponse(status_code=503, content={"status": "error", "detail": detail})
    return {"status": "ok"}


@root_router.get("/metrics")
def metrics_endpoint():
    """Prometheus text exposition of the in-memory counters."""
    return Response(content=METRICS.export_prometheus(), media_type="text/plain")

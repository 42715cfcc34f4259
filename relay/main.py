import os
from contextlib import asynccontextmanager
from typing import Callable, Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

# Load .env before settings are read
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from relay.api import billing, health
from relay.core.config import Settings, settings, validate_config
from relay.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from relay.core.logging import configure_logging, get_logger
from relay.core.middleware.request_context import RequestContextMiddleware
from relay.features.billing.provider import CheckoutProvider
from relay.features.billing.service import BillingService


@asynccontextmanager
async def lifespan(app: FastAPI):
    billing: BillingService = app.state.billing
    get_logger().info(
        "relay.start server=%s billing=%s webhooks=%s",
        billing.settings.POLAR_SERVER,
        "on" if billing.billing_enabled() else "off",
        "on" if billing.webhooks_enabled() else "off",
    )
    try:
        yield
    finally:
        get_logger().info("relay.stop")


def create_app(
    settings_obj: Optional[Settings] = None,
    provider_factory: Optional[Callable[[], CheckoutProvider]] = None,
) -> FastAPI:
    """Build an app that owns its BillingService (resolver, ledger, authenticator)."""
    cfg = settings_obj or settings
    configure_logging(cfg.ENV)
    validate_config(settings_obj=cfg)

    app = FastAPI(title="Checkout Relay", lifespan=lifespan)
    app.state.billing = BillingService(cfg, provider_factory=provider_factory)

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[cfg.FRONTEND_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppError, app_error_handler)
    # Starlette's base class so routing 404/405 are normalized too
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health.root_router)
    app.include_router(billing.router)
    return app


app = create_app()


def run() -> None:
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)


if __name__ == "__main__":
    run()

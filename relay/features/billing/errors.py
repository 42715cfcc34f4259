"""Billing error types, rendered by the app error handlers."""
from relay.core.errors import AppError, ConflictError, ServiceUnavailableError, UpstreamError


class WebhookError(AppError):
    """Base exception for webhook processing errors."""
    code = "invalid_webhook"
    status_code = 400


class SignatureInvalid(WebhookError):
    code = "invalid_signature"
    status_code = 401


class EventStale(WebhookError):
    code = "stale_event"
    status_code = 401


class MalformedEvent(WebhookError):
    code = "malformed_event"
    status_code = 400


class WebhookSecretMissing(WebhookError):
    code = "server_misconfigured"
    status_code = 500


class AlreadyPurchasedError(ConflictError):
    code = "already_purchased"


class BillingDisabledError(ServiceUnavailableError):
    code = "billing_disabled"


class PlanNotConfiguredError(AppError):
    code = "plan_not_configured"
    status_code = 500


class CheckoutProviderError(UpstreamError):
    code = "provider_error"

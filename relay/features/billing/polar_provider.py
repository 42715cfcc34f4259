"""
Polar checkout provider.

Implements CheckoutProvider over the Polar REST API with httpx.
"""
import logging
from typing import Any, Dict, Optional

import httpx

from relay.features.billing.errors import BillingDisabledError, CheckoutProviderError

logger = logging.getLogger("relay")

POLAR_SERVERS = {
    "sandbox": "https://sandbox-api.polar.sh",
    "production": "https://api.polar.sh",
}

CHECKOUTS_PATH = "/v1/checkouts/"


class PolarProvider:
    """Polar implementation of CheckoutProvider protocol."""

    def __init__(
        self,
        access_token: Optional[str],
        server: str = "sandbox",
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize Polar provider.

        Args:
            access_token: Polar organization access token
            server: "sandbox" or "production"
            timeout_seconds: HTTP timeout for API calls
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        if not access_token:
            raise BillingDisabledError("POLAR_ACCESS_TOKEN not configured")
        if server not in POLAR_SERVERS:
            raise BillingDisabledError(f"Unknown POLAR_SERVER: {server}")

        self.base_url = POLAR_SERVERS[server]
        self._access_token = access_token
        self._timeout = timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=self._timeout,
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {self._access_token}",
                "Accept": "application/json",
                "User-Agent": "checkout-relay/0.1",
            },
        )

    def create_checkout_session(
        self,
        product_id: str,
        external_customer_id: str,
        success_url: str,
        return_url: str,
    ) -> str:
        """Create Polar checkout session and return its hosted URL."""
        payload: Dict[str, Any] = {
            "products": [product_id],
            "external_customer_id": external_customer_id,
            "success_url": success_url,
            "return_url": return_url,
        }
        try:
            with self._client() as client:
                response = client.post(CHECKOUTS_PATH, json=payload)
        except httpx.HTTPError as e:
            logger.error("polar.checkout_transport_error", extra={"product_id": product_id})
            raise CheckoutProviderError(f"Polar checkout request failed: {e}")

        if response.status_code >= 400:
            logger.error(
                "polar.checkout_rejected",
                extra={"product_id": product_id, "status": response.status_code},
            )
            raise CheckoutProviderError(f"Polar checkout creation failed with status {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            raise CheckoutProviderError("Polar checkout response was not JSON")

        url = body.get("url") if isinstance(body, dict) else None
        if not url:
            raise CheckoutProviderError("Polar checkout response did not include a url")

        logger.info(
            "polar.checkout_created",
            extra={"product_id": product_id, "customer_id": external_customer_id},
        )
        return str(url)

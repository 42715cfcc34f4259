"""
Checkout provider protocol.

Defines the interface for the payment provider that mints checkout sessions
(Polar, or a fake in tests). Business logic only depends on this protocol.
"""
from typing import Protocol


class CheckoutProvider(Protocol):
    """
    Protocol for checkout providers.

    The provider is an opaque collaborator: create a checkout session for a
    product, get back a redirect URL.
    """

    def create_checkout_session(
        self,
        product_id: str,
        external_customer_id: str,
        success_url: str,
        return_url: str,
    ) -> str:
        """
        Create a hosted checkout session.

        Args:
            product_id: Provider product ID
            external_customer_id: Our customer identity, echoed back on webhooks
            success_url: URL to redirect to after payment
            return_url: URL for the checkout's back link

        Returns:
            Checkout session URL

        Raises:
            CheckoutProviderError: If session creation fails
        """
        ...

"""Payment gateway adapter. The gateway's own processing is opaque to the core."""
from abc import ABC, abstractmethod
from urllib.parse import urlencode

from domain.entities import PaymentIntent


class PaymentGateway(ABC):

    @abstractmethod
    async def create_checkout(self, intent: PaymentIntent) -> str:
        """Register the transaction with the gateway and return the checkout URL"""
        pass


class HostedCheckoutGateway(PaymentGateway):
    """Hosted checkout page: the customer is redirected there with the tx_ref.

    The gateway reports back through the callback endpoint and redirects the
    customer to the intent's return_url.
    """

    def __init__(self, checkout_base_url: str):
        self.checkout_base_url = checkout_base_url.rstrip("/")

    async def create_checkout(self, intent: PaymentIntent) -> str:
        query = urlencode({
            "tx_ref": intent.tx_ref,
            "amount": str(intent.amount.amount),
            "currency": intent.amount.currency,
            "return_url": intent.return_url,
        })
        return f"{self.checkout_base_url}?{query}"

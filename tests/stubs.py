"""In-memory stand-in for a payment gateway client."""

from services.checkout_service.errors import PaymentNotSuccessful
from services.checkout_service.models import PaymentProvider


class StubGateway:
    """Returns canned receipts by reference and records every verify call."""

    def __init__(self, provider: PaymentProvider = PaymentProvider.PAYSTACK):
        self.provider = provider
        self.receipts = {}
        self.calls = []

    def add(self, receipt):
        self.receipts[receipt.reference] = receipt
        return receipt

    def resolve(self, provider: PaymentProvider) -> "StubGateway":
        return self

    async def verify(self, *, reference: str, transaction_id=None):
        self.calls.append(reference)
        receipt = self.receipts.get(reference)
        if receipt is None:
            raise PaymentNotSuccessful("Paystack verify failed")
        return receipt

"""FastAPI dependencies for the payment provider switch and gateway clients."""

from libs.common.config import get_settings
from services.checkout_service.gateways import GatewayResolver, resolve_gateway
from services.checkout_service.models import PaymentProvider


def get_payments_provider() -> PaymentProvider:
    """The active gateway: Flutterwave (primary) or Paystack (legacy)."""
    return PaymentProvider(get_settings().PAYMENTS_PROVIDER)


def get_gateway_resolver() -> GatewayResolver:
    return resolve_gateway
